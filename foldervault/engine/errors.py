"""
FolderVault Error Hierarchy — Structured exceptions shared by every component.

All errors carry the message plus keyword context (folder_id, file_id,
locator, ...), and serialize to JSON for the operation log.

Hierarchy:
    VaultError
    ├── NotFoundError              — Record or blob absent
    ├── VaultValidationError       — Malformed input, bad locator, folder cycle
    │   └── NothingToArchiveError  — Folder has no archivable files
    ├── UpstreamFailureError       — Metadata or blob back end failed
    │   ├── VaultTimeoutError      — Bounded timeout elapsed
    │   └── ArchiveStreamError     — In-flight archive entry failed (terminal)
    ├── PartialFailureError        — Some sub-items done, then a failure
    └── VaultConfigError           — Invalid foldervault.yaml
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Dict, Optional

_CORE_CONTEXT_KEYS = ("folder_id", "file_id", "locator", "backend", "report")


class VaultError(Exception):
    """
    Base error for all FolderVault failures.
    Context is kept as given and serialized with str() for the log.
    """

    def __init__(self, message: str, **context: Any):
        self.message = message
        self.folder_id: Optional[str] = context.get("folder_id")
        self.file_id: Optional[str] = context.get("file_id")
        self.locator: Optional[str] = context.get("locator")
        self.backend: Optional[str] = context.get("backend")
        self.report: Any = context.get("report")
        self.error_type: str = self.__class__.__name__
        self.context: Dict[str, Any] = context
        self.timestamp: str = datetime.now(timezone.utc).isoformat()
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize error to a JSON-compatible dict for logging."""
        report = self.report
        if report is not None and hasattr(report, "to_dict"):
            report = report.to_dict()
        return {
            "error_type": self.error_type,
            "message": self.message,
            "folder_id": self.folder_id,
            "file_id": self.file_id,
            "locator": self.locator,
            "backend": self.backend,
            "report": report,
            "timestamp": self.timestamp,
            "context": {
                k: str(v) for k, v in self.context.items()
                if k not in _CORE_CONTEXT_KEYS
            },
        }

    def to_json(self) -> str:
        """Serialize to JSON string."""
        return json.dumps(self.to_dict(), default=str)

    def __repr__(self) -> str:
        parts = [f"{self.error_type}: {self.message}"]
        if self.folder_id:
            parts.append(f"folder_id={self.folder_id}")
        if self.file_id:
            parts.append(f"file_id={self.file_id}")
        if self.locator:
            parts.append(f"locator={self.locator}")
        return " | ".join(parts)


class NotFoundError(VaultError):
    """Target record or blob is absent."""

    def __init__(self, message: str, **context: Any):
        self.record_type: Optional[str] = context.get("record_type")
        super().__init__(message, **context)


class VaultValidationError(VaultError):
    """
    Input validation failed (names, locators, folder moves).
    Includes field-level error details when available.
    """

    def __init__(self, message: str, **context: Any):
        self.validation_errors: Optional[list] = context.get("validation_errors")
        super().__init__(message, **context)

    def to_dict(self) -> Dict[str, Any]:
        d = super().to_dict()
        d["validation_errors"] = self.validation_errors
        return d


class NothingToArchiveError(VaultValidationError):
    """The folder has no direct files (or none could be opened)."""
    pass


class UpstreamFailureError(VaultError):
    """Blob-store or metadata-store operation failed (transient or permission)."""

    def __init__(self, message: str, **context: Any):
        self.status_code: Optional[int] = context.get("status_code")
        self.operation: Optional[str] = context.get("operation")
        super().__init__(message, **context)

    def to_dict(self) -> Dict[str, Any]:
        d = super().to_dict()
        d["status_code"] = self.status_code
        d["operation"] = self.operation
        return d


class VaultTimeoutError(UpstreamFailureError):
    """A blob or metadata operation exceeded its bounded timeout."""

    def __init__(self, message: str, **context: Any):
        self.timeout_seconds: Optional[float] = context.get("timeout_seconds")
        super().__init__(message, **context)


class ArchiveStreamError(UpstreamFailureError):
    """
    An entry's source failed after its bytes began flowing into the archive.
    The archive is left unfinalized; the stream terminates with this error.
    """

    def __init__(self, message: str, **context: Any):
        self.entry_name: Optional[str] = context.get("entry_name")
        super().__init__(message, **context)


class PartialFailureError(VaultError):
    """
    A multi-item operation completed some sub-items, then hit a hard failure.
    ``report`` describes what was completed and what failed.
    """

    def __init__(self, message: str, **context: Any):
        self.cause: Optional[BaseException] = context.get("cause")
        super().__init__(message, **context)


class VaultConfigError(VaultError):
    """Configuration error — invalid or unreadable foldervault.yaml."""
    pass
