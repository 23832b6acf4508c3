"""Unit tests for foldervault.documents.archive — streamed ZIP assembly."""

import io
import zipfile
from datetime import datetime, timezone

import pytest

from foldervault.documents.archive import StreamingArchiveAssembler, _EntryNamer, _zip_timestamp
from foldervault.engine.errors import (
    ArchiveStreamError,
    NothingToArchiveError,
    UpstreamFailureError,
    VaultTimeoutError,
)


async def _collect(stream):
    chunks = []
    async for chunk in stream:
        chunks.append(chunk)
    return b"".join(chunks)


def _assembler(store, **kwargs):
    kwargs.setdefault("chunk_size", 1024)
    kwargs.setdefault("read_timeout", 2.0)
    return StreamingArchiveAssembler(store, **kwargs)


class TestArchiveHappyPath:
    @pytest.mark.asyncio
    async def test_archive_contains_every_file(self, memory_store, seed):
        folder = seed.folder("docs")
        a = seed.file(folder.id, "a.txt", b"alpha" * 1000)
        b = seed.file(folder.id, "b.bin", bytes(range(256)) * 20)

        stream = _assembler(memory_store).open_archive([a, b], folder_id=folder.id)
        data = await _collect(stream)

        with zipfile.ZipFile(io.BytesIO(data)) as zf:
            assert zf.testzip() is None
            assert zf.namelist() == ["a.txt", "b.bin"]
            assert zf.read("a.txt") == b"alpha" * 1000
            assert zf.read("b.bin") == bytes(range(256)) * 20
        assert stream.report.completed
        assert stream.report.bytes_emitted == len(data)
        assert [e.file_id for e in stream.report.written] == [a.id, b.id]
        assert stream.media_type == "application/zip"

    @pytest.mark.asyncio
    async def test_stored_compression(self, memory_store, seed):
        folder = seed.folder("docs")
        a = seed.file(folder.id, "a.txt", b"plain")

        data = await _collect(_assembler(memory_store, compression="stored").open_archive([a]))

        with zipfile.ZipFile(io.BytesIO(data)) as zf:
            assert zf.getinfo("a.txt").compress_type == zipfile.ZIP_STORED
            assert zf.read("a.txt") == b"plain"

    @pytest.mark.asyncio
    async def test_empty_blob_gets_empty_entry(self, memory_store, seed):
        folder = seed.folder("docs")
        empty = seed.file(folder.id, "empty.txt", b"")

        data = await _collect(_assembler(memory_store).open_archive([empty]))

        with zipfile.ZipFile(io.BytesIO(data)) as zf:
            assert zf.read("empty.txt") == b""

    @pytest.mark.asyncio
    async def test_duplicate_names_get_suffix(self, memory_store, seed):
        folder = seed.folder("docs")
        files = [seed.file(folder.id, "report.pdf", bytes([i])) for i in range(3)]

        stream = _assembler(memory_store).open_archive(files)
        data = await _collect(stream)

        with zipfile.ZipFile(io.BytesIO(data)) as zf:
            assert zf.namelist() == ["report.pdf", "report (1).pdf", "report (2).pdf"]
            assert zf.read("report (2).pdf") == bytes([2])

    @pytest.mark.asyncio
    async def test_output_is_chunked(self, memory_store, seed):
        folder = seed.folder("docs")
        a = seed.file(folder.id, "a.bin", bytes(range(256)) * 400)

        chunks = []
        async for chunk in _assembler(memory_store, compression="stored").open_archive([a]):
            chunks.append(chunk)

        assert len(chunks) > 10
        assert all(chunks)


class TestArchiveSkips:
    @pytest.mark.asyncio
    async def test_missing_blob_is_skipped(self, memory_store, seed):
        folder = seed.folder("docs")
        a = seed.file(folder.id, "A.txt", b"aaa")
        b = seed.file(folder.id, "B.txt", with_blob=False)
        c = seed.file(folder.id, "C.txt", b"ccc")

        stream = _assembler(memory_store).open_archive([a, b, c], folder_id=folder.id)
        data = await _collect(stream)

        with zipfile.ZipFile(io.BytesIO(data)) as zf:
            assert zf.namelist() == ["A.txt", "C.txt"]
        skipped = stream.report.skipped
        assert [s.file_id for s in skipped] == [b.id]
        assert skipped[0].error_type == "NotFoundError"
        assert stream.report.completed

    @pytest.mark.asyncio
    async def test_malformed_locator_is_skipped(self, memory_store, seed):
        folder = seed.folder("docs")
        a = seed.file(folder.id, "a.txt", b"a")
        bad = seed.file(folder.id, "bad.txt", with_blob=False, locator="mem://../escape")

        stream = _assembler(memory_store).open_archive([bad, a])
        data = await _collect(stream)

        with zipfile.ZipFile(io.BytesIO(data)) as zf:
            assert zf.namelist() == ["a.txt"]
        assert stream.report.skipped[0].error_type == "VaultValidationError"

    @pytest.mark.asyncio
    async def test_open_failure_is_skipped(self, faulty_store, faulty_seed):
        folder = faulty_seed.folder("docs")
        a = faulty_seed.file(folder.id, "a.txt", b"a")
        b = faulty_seed.file(folder.id, "b.txt", b"b")
        faulty_store.blobs.fail_open.add(a.storage_locator)

        stream = _assembler(faulty_store).open_archive([a, b])
        data = await _collect(stream)

        with zipfile.ZipFile(io.BytesIO(data)) as zf:
            assert zf.namelist() == ["b.txt"]
        assert stream.report.skipped[0].error_type == "UpstreamFailureError"

    @pytest.mark.asyncio
    async def test_first_read_failure_is_skipped(self, faulty_store, faulty_seed):
        folder = faulty_seed.folder("docs")
        a = faulty_seed.file(folder.id, "a.txt", b"a")
        b = faulty_seed.file(folder.id, "b.txt", b"b")
        faulty_store.blobs.fail_after[a.storage_locator] = 0

        stream = _assembler(faulty_store).open_archive([a, b])
        data = await _collect(stream)

        with zipfile.ZipFile(io.BytesIO(data)) as zf:
            assert zf.namelist() == ["b.txt"]
        assert faulty_store.blobs.closed == [a.storage_locator, b.storage_locator]

    @pytest.mark.asyncio
    async def test_no_files_raises_before_streaming(self, memory_store):
        with pytest.raises(NothingToArchiveError):
            _assembler(memory_store).open_archive([], folder_id="f")

    @pytest.mark.asyncio
    async def test_all_skipped_emits_no_bytes(self, memory_store, seed):
        folder = seed.folder("docs")
        files = [seed.file(folder.id, f"{i}.txt", with_blob=False) for i in range(2)]

        stream = _assembler(memory_store).open_archive(files)
        chunks = []
        with pytest.raises(NothingToArchiveError):
            async for chunk in stream:
                chunks.append(chunk)

        assert chunks == []
        assert len(stream.report.skipped) == 2
        assert not stream.report.completed


class TestArchiveTerminalFailure:
    @pytest.mark.asyncio
    async def test_mid_stream_failure_never_finalizes(self, faulty_store, faulty_seed):
        folder = faulty_seed.folder("docs")
        a = faulty_seed.file(folder.id, "a.txt", b"a" * 500)
        b = faulty_seed.file(folder.id, "b.bin", bytes(range(256)) * 40)
        c = faulty_seed.file(folder.id, "c.txt", b"c")
        faulty_store.blobs.fail_after[b.storage_locator] = 2

        stream = _assembler(faulty_store).open_archive([a, b, c])
        chunks = []
        with pytest.raises(ArchiveStreamError) as exc_info:
            async for chunk in stream:
                chunks.append(chunk)

        assert exc_info.value.file_id == b.id
        assert exc_info.value.entry_name == "b.bin"
        assert isinstance(exc_info.value, UpstreamFailureError)
        data = b"".join(chunks)
        # End-of-central-directory signature never written
        assert b"PK\x05\x06" not in data
        with pytest.raises(zipfile.BadZipFile):
            zipfile.ZipFile(io.BytesIO(data))
        assert not stream.report.completed
        assert stream.report.error
        # Nothing opened after the failure
        assert c.storage_locator not in faulty_store.blobs.opened
        assert b.storage_locator in faulty_store.blobs.closed

    @pytest.mark.asyncio
    async def test_stalled_read_times_out(self, faulty_store, faulty_seed):
        folder = faulty_seed.folder("docs")
        a = faulty_seed.file(folder.id, "a.bin", bytes(3000))
        faulty_store.blobs.stall_after[a.storage_locator] = 1

        stream = _assembler(faulty_store, read_timeout=0.05).open_archive([a])
        with pytest.raises(ArchiveStreamError) as exc_info:
            await _collect(stream)

        assert isinstance(exc_info.value.__cause__, VaultTimeoutError)

    @pytest.mark.asyncio
    async def test_stall_before_first_chunk_is_skipped(self, faulty_store, faulty_seed):
        folder = faulty_seed.folder("docs")
        a = faulty_seed.file(folder.id, "a.bin", bytes(10))
        b = faulty_seed.file(folder.id, "b.bin", b"b")
        faulty_store.blobs.stall_after[a.storage_locator] = 0

        stream = _assembler(faulty_store, read_timeout=0.05).open_archive([a, b])
        data = await _collect(stream)

        with zipfile.ZipFile(io.BytesIO(data)) as zf:
            assert zf.namelist() == ["b.bin"]
        assert stream.report.skipped[0].error_type == "VaultTimeoutError"


class TestArchiveCancellation:
    @pytest.mark.asyncio
    async def test_aclose_releases_source(self, faulty_store, faulty_seed):
        folder = faulty_seed.folder("docs")
        a = faulty_seed.file(folder.id, "a.bin", bytes(range(256)) * 40)
        b = faulty_seed.file(folder.id, "b.bin", b"b")

        stream = _assembler(faulty_store, compression="stored").open_archive([a, b])
        iterator = stream.__aiter__()
        first = await iterator.__anext__()
        assert first.startswith(b"PK\x03\x04")

        await stream.aclose()

        assert faulty_store.blobs.opened == [a.storage_locator]
        assert faulty_store.blobs.closed == [a.storage_locator]
        assert stream.report.error == "cancelled"
        assert not stream.report.completed

    @pytest.mark.asyncio
    async def test_stream_iterates_once(self, memory_store, seed):
        folder = seed.folder("docs")
        a = seed.file(folder.id, "a.txt", b"a")
        stream = _assembler(memory_store).open_archive([a])
        await _collect(stream)
        with pytest.raises(RuntimeError):
            stream.__aiter__()


class TestArchiveLogging:
    @pytest.mark.asyncio
    async def test_completed_event(self, memory_store, seed, log_queue):
        folder = seed.folder("docs")
        a = seed.file(folder.id, "a.txt", b"a")

        await _collect(_assembler(memory_store, log_queue=log_queue).open_archive([a], folder_id=folder.id))

        assert log_queue.events() == ["archive_completed"]
        entry = log_queue.entries[0]
        assert entry.stream == "archives"
        assert entry.namespace == "acct"
        assert entry.payload["entries_written"] == 1
        assert entry.payload["folder_id"] == folder.id

    @pytest.mark.asyncio
    async def test_failed_event(self, faulty_store, faulty_seed, log_queue):
        folder = faulty_seed.folder("docs")
        a = faulty_seed.file(folder.id, "a.bin", bytes(4000))
        faulty_store.blobs.fail_after[a.storage_locator] = 1

        with pytest.raises(ArchiveStreamError):
            await _collect(_assembler(faulty_store, log_queue=log_queue).open_archive([a]))

        assert log_queue.events() == ["archive_failed"]
        entry = log_queue.entries[0]
        assert entry.stream == "archives"
        assert entry.payload["success"] is False
        assert entry.payload["entries_written"] == 0
        assert "mid-stream" in entry.payload["error"]


class TestHelpers:
    def test_entry_namer_flattens_paths(self):
        namer = _EntryNamer()
        assert namer.assign("a/b\\c.txt") == "a_b_c.txt"
        assert namer.assign("   ") == "unnamed"
        assert namer.assign("noext") == "noext"
        assert namer.assign("noext") == "noext (1)"

    def test_zip_timestamp_clamps_to_1980(self):
        assert _zip_timestamp(datetime(1970, 1, 1, tzinfo=timezone.utc)) == (1980, 1, 1, 0, 0, 0)
        assert _zip_timestamp(datetime(2024, 5, 6, 7, 8, 9, tzinfo=timezone.utc)) == (2024, 5, 6, 7, 8, 9)

    def test_unknown_compression_rejected(self, memory_store):
        with pytest.raises(ValueError):
            StreamingArchiveAssembler(memory_store, compression="bzip9")
