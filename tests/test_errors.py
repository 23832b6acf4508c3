"""Unit tests for foldervault.engine.errors — Error hierarchy & serialization."""

import json

import pytest

from foldervault.documents.cascade import CascadeDeleteReport
from foldervault.engine.errors import (
    ArchiveStreamError,
    NothingToArchiveError,
    NotFoundError,
    PartialFailureError,
    UpstreamFailureError,
    VaultConfigError,
    VaultError,
    VaultTimeoutError,
    VaultValidationError,
)


class TestVaultError:
    """Base error class tests."""

    def test_basic_creation(self):
        err = VaultError("something broke")
        assert err.message == "something broke"
        assert str(err) == "something broke"
        assert err.error_type == "VaultError"
        assert err.folder_id is None
        assert err.report is None

    def test_context_fields(self):
        err = VaultError("fail", folder_id="f1", file_id="x1", locator="mem://a", backend="memory")
        assert err.folder_id == "f1"
        assert err.file_id == "x1"
        assert err.locator == "mem://a"
        assert err.backend == "memory"

    def test_to_dict(self):
        err = VaultError("fail", folder_id="f1")
        d = err.to_dict()
        assert d["error_type"] == "VaultError"
        assert d["message"] == "fail"
        assert d["folder_id"] == "f1"
        assert "timestamp" in d

    def test_to_json(self):
        parsed = json.loads(VaultError("fail").to_json())
        assert parsed["error_type"] == "VaultError"

    def test_repr(self):
        r = repr(VaultError("fail", folder_id="f1", locator="mem://a"))
        assert "VaultError" in r
        assert "f1" in r
        assert "mem://a" in r

    def test_extra_context_serialized(self):
        d = VaultError("fail", attempt=3).to_dict()
        assert d["context"]["attempt"] == "3"

    def test_report_serialized(self):
        report = CascadeDeleteReport(folder_id="f1", removed_file_ids=["a"])
        d = VaultError("fail", report=report).to_dict()
        assert d["report"]["removed_file_ids"] == ["a"]
        assert "report" not in d["context"]


class TestSubclasses:
    @pytest.mark.parametrize("cls,parent", [
        (NotFoundError, VaultError),
        (VaultValidationError, VaultError),
        (NothingToArchiveError, VaultValidationError),
        (UpstreamFailureError, VaultError),
        (VaultTimeoutError, UpstreamFailureError),
        (ArchiveStreamError, UpstreamFailureError),
        (PartialFailureError, VaultError),
        (VaultConfigError, VaultError),
    ])
    def test_hierarchy(self, cls, parent):
        assert issubclass(cls, parent)
        assert cls("x").error_type == cls.__name__

    def test_upstream_fields(self):
        err = UpstreamFailureError("bad", status_code=503, operation="delete")
        d = err.to_dict()
        assert d["status_code"] == 503
        assert d["operation"] == "delete"

    def test_validation_errors(self):
        err = VaultValidationError("bad", validation_errors=[{"field": "name", "error": "empty"}])
        assert err.to_dict()["validation_errors"][0]["field"] == "name"

    def test_timeout_seconds(self):
        assert VaultTimeoutError("slow", timeout_seconds=2.5).timeout_seconds == 2.5

    def test_archive_entry_name(self):
        assert ArchiveStreamError("x", entry_name="a.txt").entry_name == "a.txt"

    def test_partial_cause(self):
        cause = UpstreamFailureError("blob")
        assert PartialFailureError("partial", cause=cause).cause is cause

    def test_not_found_record_type(self):
        assert NotFoundError("gone", record_type="folder").record_type == "folder"
