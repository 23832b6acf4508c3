"""
FolderVault Test Suite — Shared fixtures and configuration.

Run:  pytest tests/ -v
"""

from __future__ import annotations

import asyncio
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator, Dict, List, Optional, Set

import pytest

from foldervault.documents.models import File, Folder
from foldervault.engine.errors import UpstreamFailureError
from foldervault.store.base import DEFAULT_CHUNK_SIZE, EntityStore, iter_source
from foldervault.store.memory import MemoryBlobStore, MemoryMetadataStore


# ---------------------------------------------------------------------------
# Global state isolation
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def _isolate_globals():
    """Reset module-level singletons between tests."""
    import foldervault.engine.config as cfg_mod
    from foldervault.engine.logging import shutdown_logging

    cfg_mod._vault_config = None
    yield
    cfg_mod._vault_config = None
    shutdown_logging()


# ---------------------------------------------------------------------------
# Fault-injecting back ends
# ---------------------------------------------------------------------------

class FaultyBlobStore(MemoryBlobStore):
    """
    MemoryBlobStore with switchable failures, keyed by locator.

    fail_open:   opening the stream raises UpstreamFailureError
    fail_delete: delete raises UpstreamFailureError
    fail_after:  locator → n; the read fails after n chunks
    stall_after: locator → n; the read hangs after n chunks
    fail_write_after: n; every write stores only its first n bytes, then fails
    """

    def __init__(self):
        super().__init__()
        self.fail_open: Set[str] = set()
        self.fail_delete: Set[str] = set()
        self.fail_after: Dict[str, int] = {}
        self.stall_after: Dict[str, int] = {}
        self.fail_write_after: Optional[int] = None
        self.delete_calls: List[str] = []
        self.opened: List[str] = []
        self.closed: List[str] = []

    @asynccontextmanager
    async def open_read_stream(
        self, locator: str, chunk_size: int = DEFAULT_CHUNK_SIZE
    ) -> AsyncIterator[AsyncIterator[bytes]]:
        if locator in self.fail_open:
            raise UpstreamFailureError("injected open failure", locator=locator, backend=self.name)
        data = self.get(locator)
        fail_after = self.fail_after.get(locator)
        stall_after = self.stall_after.get(locator)

        async def chunks() -> AsyncIterator[bytes]:
            for n, start in enumerate(range(0, len(data), chunk_size)):
                if fail_after is not None and n >= fail_after:
                    raise UpstreamFailureError("injected read failure", locator=locator, backend=self.name)
                if stall_after is not None and n >= stall_after:
                    await asyncio.sleep(3600)
                yield data[start:start + chunk_size]

        self.opened.append(locator)
        try:
            yield chunks()
        finally:
            self.closed.append(locator)

    async def write(self, locator: str, data) -> int:
        if self.fail_write_after is None:
            return await super().write(locator, data)
        received = b"".join([chunk async for chunk in iter_source(data)])
        self.put(locator, received[:self.fail_write_after])
        raise UpstreamFailureError("injected write failure", locator=locator, backend=self.name)

    async def delete(self, locator: str) -> None:
        self.delete_calls.append(locator)
        if locator in self.fail_delete:
            raise UpstreamFailureError("injected delete failure", locator=locator, backend=self.name)
        await super().delete(locator)


class FaultyMetadataStore(MemoryMetadataStore):
    """MemoryMetadataStore whose record deletes can be made to fail."""

    def __init__(self):
        super().__init__()
        self.fail_file_delete: Set[str] = set()
        self.fail_folder_delete: Set[str] = set()
        self.delete_calls: List[str] = []

    def delete_file_record(self, file_id: str) -> None:
        self.delete_calls.append(file_id)
        if file_id in self.fail_file_delete:
            raise UpstreamFailureError("injected row failure", file_id=file_id, backend="memory")
        super().delete_file_record(file_id)

    def delete_folder_record(self, folder_id: str) -> None:
        self.delete_calls.append(folder_id)
        if folder_id in self.fail_folder_delete:
            raise UpstreamFailureError("injected row failure", folder_id=folder_id, backend="memory")
        super().delete_folder_record(folder_id)


class RecordingLogQueue:
    """Stands in for OperationLogQueue; keeps pushed records in memory."""

    def __init__(self):
        self.entries = []

    def push(self, entry) -> bool:
        self.entries.append(entry)
        return True

    def events(self) -> List[str]:
        return [e.payload["event"] for e in self.entries]


# ---------------------------------------------------------------------------
# Stores
# ---------------------------------------------------------------------------

@pytest.fixture
def memory_store():
    """EntityStore over fresh in-memory metadata and blob stores."""
    return EntityStore(MemoryMetadataStore(), MemoryBlobStore(), blob_timeout=5.0)


@pytest.fixture
def faulty_store():
    """EntityStore over fault-injecting memory stores."""
    return EntityStore(FaultyMetadataStore(), FaultyBlobStore(), blob_timeout=5.0)


@pytest.fixture
def sql_session_factory(tmp_path):
    """A SQLite file database with the vault tables, disposed after the test."""
    from foldervault.db.session import close_metadata_db, init_metadata_db

    name = f"test_{uuid.uuid4().hex[:8]}"
    factory = init_metadata_db(f"sqlite:///{tmp_path / 'meta.db'}", create_tables=True, name=name)
    yield factory
    close_metadata_db(name)


@pytest.fixture
def log_queue():
    return RecordingLogQueue()


# ---------------------------------------------------------------------------
# Seeding
# ---------------------------------------------------------------------------

class Seeder:
    """Writes folders, files and blobs straight into memory stores."""

    def __init__(self, store: EntityStore, namespace: str = "acct"):
        self.store = store
        self.namespace = namespace
        self._tick = 0

    def _stamp(self) -> datetime:
        # Distinct, increasing timestamps keep listing order deterministic
        self._tick += 1
        return datetime(2024, 1, 1, tzinfo=timezone.utc).replace(second=self._tick % 60, minute=self._tick // 60)

    def folder(self, name: str, parent_id: Optional[str] = None, folder_id: Optional[str] = None) -> Folder:
        when = self._stamp()
        folder = Folder(
            id=folder_id or uuid.uuid4().hex,
            namespace=self.namespace,
            name=name,
            parent_id=parent_id,
            created_at=when,
            modified_at=when,
        )
        return self.store.metadata.save_folder(folder)

    def file(
        self,
        folder_id: str,
        name: str,
        data: bytes = b"",
        file_id: Optional[str] = None,
        locator: Optional[str] = None,
        with_blob: bool = True,
    ) -> File:
        file_id = file_id or uuid.uuid4().hex
        locator = locator or self.store.make_locator(f"{self.namespace}/{folder_id}/{file_id}")
        if with_blob:
            self.store.blobs.put(locator, data)
        when = self._stamp()
        file = File.create(
            name, folder_id, locator,
            id=file_id,
            namespace=self.namespace,
            size=len(data),
            created_at=when,
            modified_at=when,
        )
        return self.store.metadata.save_file(file)


@pytest.fixture
def seed(memory_store):
    return Seeder(memory_store)


@pytest.fixture
def faulty_seed(faulty_store):
    return Seeder(faulty_store)
