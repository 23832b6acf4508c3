"""
FolderVault Streaming Archive Assembler — many blob streams in, one ZIP
byte stream out.

The ZIP is written by ``zipfile`` into an unseekable in-memory sink, so
every entry uses a data descriptor and nothing is ever rewritten. After
each source chunk is written the sink is drained and its bytes yielded;
the next source chunk is only pulled when the consumer asks for more.

Failure contract:
- before an entry's first byte reaches the archive (bad locator, missing
  blob, open/first-read failure or timeout) → the entry is skipped and
  recorded in ``report.skipped``;
- after that → ArchiveStreamError terminates the stream and the central
  directory is never written, so a truncated download can't pass for a
  valid archive;
- no files, or every file skipped → NothingToArchiveError, never an empty
  ZIP.
"""

from __future__ import annotations

import asyncio
import logging
import os
import time
import zipfile
from contextlib import AsyncExitStack
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence, Set, Tuple

from foldervault.documents.models import File
from foldervault.engine.errors import (
    ArchiveStreamError,
    NothingToArchiveError,
    VaultError,
    VaultTimeoutError,
)
from foldervault.engine.logging import log_archive_event
from foldervault.store.base import DEFAULT_CHUNK_SIZE, EntityStore

logger = logging.getLogger("foldervault.documents.archive")

ZIP_MEDIA_TYPE = "application/zip"

_COMPRESSION = {
    "deflated": zipfile.ZIP_DEFLATED,
    "stored": zipfile.ZIP_STORED,
}


@dataclass
class SkippedEntry:
    file_id: str
    name: str
    locator: str
    reason: str
    error_type: str

    def to_dict(self) -> Dict[str, str]:
        return {
            "file_id": self.file_id,
            "name": self.name,
            "locator": self.locator,
            "reason": self.reason,
            "error_type": self.error_type,
        }


@dataclass
class ArchivedEntry:
    file_id: str
    entry_name: str
    size: int


@dataclass
class ArchiveReport:
    folder_id: Optional[str] = None
    written: List[ArchivedEntry] = field(default_factory=list)
    skipped: List[SkippedEntry] = field(default_factory=list)
    bytes_emitted: int = 0
    completed: bool = False
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "folder_id": self.folder_id,
            "written": [e.entry_name for e in self.written],
            "skipped": [s.to_dict() for s in self.skipped],
            "bytes_emitted": self.bytes_emitted,
            "completed": self.completed,
            "error": self.error,
        }


class _ChunkSink:
    """
    Write target handed to zipfile. It has no tell()/seek(), which puts
    zipfile in streaming mode. Bytes written after ``abort()`` are discarded.
    """

    def __init__(self):
        self._parts: List[bytes] = []
        self._aborted = False

    def write(self, data: Any) -> int:
        if not self._aborted:
            self._parts.append(bytes(data))
        return len(data)

    def flush(self) -> None:
        pass

    def drain(self) -> bytes:
        data = b"".join(self._parts)
        self._parts.clear()
        return data

    def abort(self) -> None:
        self._aborted = True
        self._parts.clear()


class _EntryNamer:
    """Turns display names into unique, flat entry names."""

    def __init__(self):
        self._used: Set[str] = set()

    def assign(self, display_name: str) -> str:
        name = display_name.replace("/", "_").replace("\\", "_").replace("\x00", "")
        name = name.strip() or "unnamed"
        candidate = name
        base, ext = os.path.splitext(name)
        n = 1
        while candidate in self._used:
            candidate = f"{base} ({n}){ext}"
            n += 1
        self._used.add(candidate)
        return candidate


class ArchiveStream:
    """
    One archive download: an async iterator of ZIP byte chunks.

    Iterate it exactly once (e.g. hand it to a streaming HTTP response).
    ``report`` fills in as the stream advances; after exhaustion
    ``report.completed`` is True. ``aclose()`` stops the download early,
    releasing the open source stream.
    """

    media_type = ZIP_MEDIA_TYPE

    def __init__(
        self,
        assembler: "StreamingArchiveAssembler",
        files: Sequence[File],
        folder_id: Optional[str] = None,
    ):
        self._assembler = assembler
        self._files = list(files)
        self.report = ArchiveReport(folder_id=folder_id)
        self._iterator: Optional[AsyncIterator[bytes]] = None

    @property
    def file_count(self) -> int:
        return len(self._files)

    def __aiter__(self) -> AsyncIterator[bytes]:
        if self._iterator is not None:
            raise RuntimeError("ArchiveStream can only be iterated once")
        self._iterator = self._assembler._generate(self._files, self.report)
        return self._iterator

    async def aclose(self) -> None:
        if self._iterator is not None:
            await self._iterator.aclose()


class StreamingArchiveAssembler:
    """Builds ArchiveStreams over an EntityStore."""

    def __init__(
        self,
        store: EntityStore,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        read_timeout: float = 30.0,
        compression: str = "deflated",
        log_queue=None,
    ):
        if compression not in _COMPRESSION:
            raise ValueError(f"Unknown compression '{compression}'")
        self._store = store
        self._chunk_size = chunk_size
        self._read_timeout = read_timeout
        self._compress_type = _COMPRESSION[compression]
        self._log_queue = log_queue

    @classmethod
    def from_config(cls, store: EntityStore, config, log_queue=None) -> "StreamingArchiveAssembler":
        archive = config.archive
        return cls(
            store,
            chunk_size=archive.chunk_size,
            read_timeout=archive.read_timeout_seconds,
            compression=archive.compression,
            log_queue=log_queue,
        )

    def open_archive(self, files: Sequence[File], folder_id: Optional[str] = None) -> ArchiveStream:
        """
        Prepare a streamed archive of ``files`` (in listing order).

        Raises NothingToArchiveError immediately for an empty list. Nothing
        is fetched until the returned stream is iterated.
        """
        if not files:
            raise NothingToArchiveError(
                "Nothing to archive: folder has no files",
                folder_id=folder_id,
            )
        return ArchiveStream(self, files, folder_id=folder_id)

    # -------------------------------------------------------------------
    # Generation
    # -------------------------------------------------------------------

    async def _generate(self, files: List[File], report: ArchiveReport) -> AsyncIterator[bytes]:
        start = time.monotonic()
        sink = _ChunkSink()
        zf = zipfile.ZipFile(sink, mode="w", compression=self._compress_type, allowZip64=True)
        namer = _EntryNamer()
        dest = None

        try:
            for file in files:
                async with AsyncExitStack() as stack:
                    opened = await self._open_source(stack, file, report)
                    if opened is None:
                        continue
                    source, chunk = opened

                    entry_name = namer.assign(file.name)
                    dest = zf.open(self._zip_info(entry_name, file), mode="w")
                    written = 0
                    while chunk is not None:
                        dest.write(chunk)
                        written += len(chunk)
                        data = sink.drain()
                        if data:
                            report.bytes_emitted += len(data)
                            yield data
                        try:
                            chunk = await self._next_chunk(source, file.storage_locator)
                        except VaultError as e:
                            raise ArchiveStreamError(
                                f"Archive entry '{entry_name}' failed mid-stream: {e.message}",
                                file_id=file.id,
                                locator=file.storage_locator,
                                entry_name=entry_name,
                                folder_id=report.folder_id,
                            ) from e
                    dest.close()
                    dest = None
                    report.written.append(ArchivedEntry(file.id, entry_name, written))

                data = sink.drain()
                if data:
                    report.bytes_emitted += len(data)
                    yield data

            if not report.written:
                raise NothingToArchiveError(
                    f"Nothing to archive: all {len(files)} file(s) were skipped",
                    folder_id=report.folder_id,
                    skipped=len(report.skipped),
                )

            # Central directory
            zf.close()
            data = sink.drain()
            if data:
                report.bytes_emitted += len(data)
                yield data
            report.completed = True
            self._log(report, files[0].namespace, start)
            logger.info(
                f"Archive for folder {report.folder_id} complete: {len(report.written)} entries, "
                f"{len(report.skipped)} skipped, {report.bytes_emitted} bytes"
            )
        except VaultError as e:
            _abandon(zf, dest, sink)
            report.error = e.message
            self._log(report, files[0].namespace, start)
            logger.error(f"Archive for folder {report.folder_id} aborted: {e.message}")
            raise
        except (asyncio.CancelledError, GeneratorExit):
            _abandon(zf, dest, sink)
            report.error = "cancelled"
            logger.info(f"Archive for folder {report.folder_id} cancelled by consumer")
            raise

    async def _open_source(
        self,
        stack: AsyncExitStack,
        file: File,
        report: ArchiveReport,
    ) -> Optional[Tuple[AsyncIterator[bytes], Optional[bytes]]]:
        """
        Open the blob and pull its first chunk. Returns None (entry skipped)
        on any failure; nothing has been written to the archive yet.
        """
        try:
            source = await stack.enter_async_context(
                self._store.open_blob_read_stream(file.storage_locator, self._chunk_size)
            )
            first = await self._next_chunk(source, file.storage_locator)
        except VaultError as e:
            report.skipped.append(SkippedEntry(
                file_id=file.id,
                name=file.name,
                locator=file.storage_locator,
                reason=e.message,
                error_type=e.error_type,
            ))
            logger.warning(f"Skipping archive entry '{file.name}' ({file.id}): {e.message}")
            return None
        # An empty blob still gets an (empty) entry
        return source, first if first is not None else b""

    async def _next_chunk(self, source: AsyncIterator[bytes], locator: str) -> Optional[bytes]:
        """Pull one chunk under the read timeout; None at end of stream."""
        try:
            async with asyncio.timeout(self._read_timeout):
                return await anext(source)
        except StopAsyncIteration:
            return None
        except TimeoutError as e:
            raise VaultTimeoutError(
                f"Blob read stalled for {self._read_timeout}s",
                locator=locator,
                operation="read",
                timeout_seconds=self._read_timeout,
            ) from e

    def _zip_info(self, entry_name: str, file: File) -> zipfile.ZipInfo:
        info = zipfile.ZipInfo(entry_name, date_time=_zip_timestamp(file.modified_at))
        info.compress_type = self._compress_type
        info.external_attr = 0o644 << 16
        # Hint only; zipfile records the real size when the entry closes
        info.file_size = file.size
        return info

    def _log(self, report: ArchiveReport, namespace: Optional[str], start: float) -> None:
        if self._log_queue is None:
            return
        self._log_queue.push(log_archive_event(
            report.to_dict(),
            namespace=namespace,
            duration_ms=(time.monotonic() - start) * 1000,
        ))


def _zip_timestamp(value: Optional[datetime]) -> Tuple[int, int, int, int, int, int]:
    # ZIP timestamps cannot predate 1980
    if value is None:
        value = datetime.now(timezone.utc)
    if value.year < 1980:
        return (1980, 1, 1, 0, 0, 0)
    return value.timetuple()[:6]


def _abandon(zf: zipfile.ZipFile, dest: Optional[Any], sink: _ChunkSink) -> None:
    """Close an unfinished archive without emitting its trailer."""
    sink.abort()
    try:
        if dest is not None:
            dest.close()
        zf.close()
    except (OSError, ValueError, RuntimeError) as e:
        logger.debug(f"Discarding unfinished archive: {e}")
