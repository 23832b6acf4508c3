"""
In-memory Entity Store adapters.

Used for the ``memory`` blob back end, local development and tests.
Records are copied in and out so callers never share mutable state with
the store.
"""

from __future__ import annotations

import threading
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, Dict, List, Optional

from foldervault.documents.models import File, Folder
from foldervault.engine.errors import NotFoundError
from foldervault.store.base import DEFAULT_CHUNK_SIZE, BlobSource, iter_source
from foldervault.store.locators import check_key, parse_locator


class MemoryMetadataStore:
    """Dict-backed MetadataStore, lock-protected for worker-thread access."""

    def __init__(self):
        self._folders: Dict[str, Folder] = {}
        self._files: Dict[str, File] = {}
        self._lock = threading.Lock()

    def list_folders(self, namespace: str) -> List[Folder]:
        with self._lock:
            return [f.model_copy() for f in self._folders.values() if f.namespace == namespace]

    def list_files(self, namespace: str, folder_id: Optional[str] = None) -> List[File]:
        with self._lock:
            return [
                f.model_copy() for f in self._files.values()
                if f.namespace == namespace and (folder_id is None or f.folder_id == folder_id)
            ]

    def get_folder(self, folder_id: str) -> Folder:
        with self._lock:
            folder = self._folders.get(folder_id)
        if folder is None:
            raise NotFoundError(f"Folder not found: {folder_id}", folder_id=folder_id, record_type="folder")
        return folder.model_copy()

    def get_file(self, file_id: str) -> File:
        with self._lock:
            file = self._files.get(file_id)
        if file is None:
            raise NotFoundError(f"File not found: {file_id}", file_id=file_id, record_type="file")
        return file.model_copy()

    def save_folder(self, folder: Folder) -> Folder:
        stored = Folder(**folder.model_dump(exclude={"children", "files"}))
        with self._lock:
            self._folders[stored.id] = stored
        return stored.model_copy()

    def save_file(self, file: File) -> File:
        with self._lock:
            self._files[file.id] = file.model_copy()
        return file.model_copy()

    def delete_folder_record(self, folder_id: str) -> None:
        with self._lock:
            removed = self._folders.pop(folder_id, None)
        if removed is None:
            raise NotFoundError(f"Folder not found: {folder_id}", folder_id=folder_id, record_type="folder")

    def delete_file_record(self, file_id: str) -> None:
        with self._lock:
            removed = self._files.pop(file_id, None)
        if removed is None:
            raise NotFoundError(f"File not found: {file_id}", file_id=file_id, record_type="file")

    def touch_folder(self, folder_id: str, when: datetime) -> None:
        with self._lock:
            folder = self._folders.get(folder_id)
            if folder is None:
                raise NotFoundError(f"Folder not found: {folder_id}", folder_id=folder_id, record_type="folder")
            folder.modified_at = when


class MemoryBlobStore:
    """Dict-backed BlobStore. Locators look like ``mem://<key>``."""

    name = "memory"
    scheme = "mem"

    def __init__(self):
        self._blobs: Dict[str, bytes] = {}

    def make_locator(self, key: str) -> str:
        return f"{self.scheme}://{check_key(key)}"

    def _key(self, locator: str) -> str:
        _, key = parse_locator(locator, (self.scheme,))
        return key

    def __contains__(self, locator: str) -> bool:
        return self._key(locator) in self._blobs

    def put(self, locator: str, data: bytes) -> None:
        """Store a blob synchronously (seeding without an event loop)."""
        self._blobs[self._key(locator)] = bytes(data)

    def get(self, locator: str) -> bytes:
        key = self._key(locator)
        if key not in self._blobs:
            raise NotFoundError(f"Blob not found: {locator}", locator=locator, backend=self.name)
        return self._blobs[key]

    @asynccontextmanager
    async def open_read_stream(
        self, locator: str, chunk_size: int = DEFAULT_CHUNK_SIZE
    ) -> AsyncIterator[AsyncIterator[bytes]]:
        data = self.get(locator)

        async def chunks() -> AsyncIterator[bytes]:
            for start in range(0, len(data), chunk_size):
                yield data[start:start + chunk_size]

        stream = chunks()
        try:
            yield stream
        finally:
            await stream.aclose()

    async def write(self, locator: str, data: BlobSource) -> int:
        key = self._key(locator)
        parts = [chunk async for chunk in iter_source(data)]
        self._blobs[key] = b"".join(parts)
        return len(self._blobs[key])

    async def delete(self, locator: str) -> None:
        key = self._key(locator)
        if self._blobs.pop(key, None) is None:
            raise NotFoundError(f"Blob not found: {locator}", locator=locator, backend=self.name)

    async def aclose(self) -> None:
        return None
