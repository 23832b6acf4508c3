"""
FolderVault Entity Store — the contract the core components depend on.

Two injected capabilities:

- MetadataStore: synchronous CRUD over Folder / File records
  (SQLAlchemy or in-memory).
- BlobStore: asynchronous read / write / delete of byte blobs addressed by
  storage locator (HTTP object store, local filesystem or in-memory).

EntityStore composes them into one async facade. Metadata calls run on a
worker thread so SQL round-trips never block the event loop; blob calls
carry a bounded timeout. Every call is independently failable: nothing here
assumes the two back ends succeed or fail together.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import AsyncExitStack, asynccontextmanager
from datetime import datetime
from typing import (
    Any,
    AsyncContextManager,
    AsyncIterable,
    AsyncIterator,
    Callable,
    List,
    Optional,
    Protocol,
    TypeVar,
    Union,
    runtime_checkable,
)

from foldervault.documents.models import File, Folder
from foldervault.engine.errors import VaultTimeoutError

logger = logging.getLogger("foldervault.store")

T = TypeVar("T")

BlobSource = Union[bytes, AsyncIterable[bytes]]

DEFAULT_CHUNK_SIZE = 64 * 1024


@runtime_checkable
class MetadataStore(Protocol):
    """Folder / File record persistence. Raises NotFoundError for absent ids."""

    def list_folders(self, namespace: str) -> List[Folder]: ...

    def list_files(self, namespace: str, folder_id: Optional[str] = None) -> List[File]: ...

    def get_folder(self, folder_id: str) -> Folder: ...

    def get_file(self, file_id: str) -> File: ...

    def save_folder(self, folder: Folder) -> Folder: ...

    def save_file(self, file: File) -> File: ...

    def delete_folder_record(self, folder_id: str) -> None: ...

    def delete_file_record(self, file_id: str) -> None: ...

    def touch_folder(self, folder_id: str, when: datetime) -> None: ...


@runtime_checkable
class BlobStore(Protocol):
    """Byte blob persistence addressed by storage locator."""

    name: str

    def make_locator(self, key: str) -> str: ...

    def open_read_stream(
        self, locator: str, chunk_size: int = DEFAULT_CHUNK_SIZE
    ) -> AsyncContextManager[AsyncIterator[bytes]]: ...

    async def write(self, locator: str, data: BlobSource) -> int: ...

    async def delete(self, locator: str) -> None: ...

    async def aclose(self) -> None: ...


async def iter_source(data: BlobSource) -> AsyncIterator[bytes]:
    """Normalize bytes or an async byte iterable into an async iterator."""
    if isinstance(data, (bytes, bytearray, memoryview)):
        if data:
            yield bytes(data)
        return
    async for chunk in data:
        if chunk:
            yield bytes(chunk)


class EntityStore:
    """
    Async facade over one MetadataStore and one BlobStore.

    This is the only store object the tree, cascade and archive components
    see, so tests substitute fakes at this seam.
    """

    def __init__(
        self,
        metadata: MetadataStore,
        blobs: BlobStore,
        blob_timeout: float = 30.0,
    ):
        self._metadata = metadata
        self._blobs = blobs
        self._blob_timeout = blob_timeout

    @property
    def metadata(self) -> MetadataStore:
        return self._metadata

    @property
    def blobs(self) -> BlobStore:
        return self._blobs

    @property
    def blob_timeout(self) -> float:
        return self._blob_timeout

    # -------------------------------------------------------------------
    # Metadata
    # -------------------------------------------------------------------

    async def _run_metadata(self, func: Callable[..., T], *args: Any) -> T:
        return await asyncio.to_thread(func, *args)

    async def list_folders(self, namespace: str) -> List[Folder]:
        return await self._run_metadata(self._metadata.list_folders, namespace)

    async def list_files(self, namespace: str, folder_id: Optional[str] = None) -> List[File]:
        return await self._run_metadata(self._metadata.list_files, namespace, folder_id)

    async def get_folder(self, folder_id: str) -> Folder:
        return await self._run_metadata(self._metadata.get_folder, folder_id)

    async def get_file(self, file_id: str) -> File:
        return await self._run_metadata(self._metadata.get_file, file_id)

    async def save_folder(self, folder: Folder) -> Folder:
        return await self._run_metadata(self._metadata.save_folder, folder)

    async def save_file(self, file: File) -> File:
        return await self._run_metadata(self._metadata.save_file, file)

    async def delete_folder_record(self, folder_id: str) -> None:
        await self._run_metadata(self._metadata.delete_folder_record, folder_id)

    async def delete_file_record(self, file_id: str) -> None:
        await self._run_metadata(self._metadata.delete_file_record, file_id)

    async def touch_folder(self, folder_id: str, when: datetime) -> None:
        await self._run_metadata(self._metadata.touch_folder, folder_id, when)

    # -------------------------------------------------------------------
    # Blobs
    # -------------------------------------------------------------------

    def make_locator(self, key: str) -> str:
        return self._blobs.make_locator(key)

    async def _with_timeout(self, awaitable: Any, operation: str, locator: str) -> Any:
        try:
            return await asyncio.wait_for(awaitable, self._blob_timeout)
        except asyncio.TimeoutError as e:
            raise self._timeout_error(operation, locator) from e

    def _timeout_error(self, operation: str, locator: str) -> VaultTimeoutError:
        return VaultTimeoutError(
            f"Blob {operation} timed out after {self._blob_timeout}s",
            locator=locator,
            backend=self._blobs.name,
            operation=operation,
            timeout_seconds=self._blob_timeout,
        )

    @asynccontextmanager
    async def open_blob_read_stream(
        self,
        locator: str,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> AsyncIterator[AsyncIterator[bytes]]:
        """
        Open a blob for streaming reads.

        Opening is bounded by the blob timeout; reads are not (callers bound
        each chunk themselves). The stream is released on exit, including
        on cancellation.
        """
        async with AsyncExitStack() as stack:
            # Entered in this task so a timed-out open is unwound here too
            try:
                async with asyncio.timeout(self._blob_timeout):
                    stream = await stack.enter_async_context(
                        self._blobs.open_read_stream(locator, chunk_size)
                    )
            except TimeoutError as e:
                raise self._timeout_error("open", locator) from e
            yield stream

    async def write_blob(self, locator: str, data: BlobSource) -> int:
        return await self._with_timeout(self._blobs.write(locator, data), "write", locator)

    async def delete_blob(self, locator: str) -> None:
        await self._with_timeout(self._blobs.delete(locator), "delete", locator)

    async def aclose(self) -> None:
        await self._blobs.aclose()
