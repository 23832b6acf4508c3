"""
FolderVault Operation Log — append-only JSONL trail of vault operations.

Layout:
    <log_dir>/<namespace>/<stream>/<YYYY-MM-DD>.jsonl

``stream`` is one of folders, files or archives. Records without a known
namespace (e.g. a failed lookup) land under ``_unscoped``. Directories are
created the first time a record needs them.

OperationLogWriter appends records. OperationLogQueue takes pushes from
request code and hands them to the writer on a daemon thread, so service
calls never wait on disk.

Module-level diagnostics still go through ``logging.getLogger(...)``.
"""

from __future__ import annotations

import json
import logging
import re
import threading
import time
from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime, timezone
from pathlib import Path
from queue import Empty, SimpleQueue
from typing import Any, Dict, Iterable, List, Optional, Set

logger = logging.getLogger("foldervault.engine.logging")

STREAMS = ("folders", "files", "archives")
UNSCOPED = "_unscoped"

_UNSAFE_SEGMENT = re.compile(r"[^A-Za-z0-9._-]")


def namespace_segment(namespace: Optional[str]) -> str:
    """Map a namespace onto a single safe directory name."""
    if not namespace:
        return UNSCOPED
    segment = _UNSAFE_SEGMENT.sub("_", namespace)
    if segment in (".", ".."):
        return UNSCOPED
    return segment


@dataclass
class OperationRecord:
    """One line of the operation log."""

    stream: str
    namespace: Optional[str]
    payload: Dict[str, Any]

    def to_json(self) -> str:
        return json.dumps(self.payload, default=str, separators=(",", ":"))


class OperationLogWriter:
    """Appends records to the daily file of their namespace and stream."""

    def __init__(self, log_dir: str = ".foldervault/logs"):
        self._root = Path(log_dir)
        self._lock = threading.Lock()
        self._created: Set[Path] = set()

    @property
    def root(self) -> Path:
        return self._root

    def path_for(self, record: OperationRecord, day: Optional[date] = None) -> Path:
        day = day or date.today()
        return self._root / namespace_segment(record.namespace) / record.stream / f"{day.isoformat()}.jsonl"

    def append(self, records: Iterable[OperationRecord]) -> int:
        """Write ``records``, one open per target file. Returns the count written."""
        by_path: Dict[Path, List[str]] = defaultdict(list)
        for record in records:
            by_path[self.path_for(record)].append(record.to_json())

        written = 0
        with self._lock:
            for path, lines in by_path.items():
                if path.parent not in self._created:
                    path.parent.mkdir(parents=True, exist_ok=True)
                    self._created.add(path.parent)
                with open(path, "a", encoding="utf-8") as fh:
                    fh.write("\n".join(lines))
                    fh.write("\n")
                written += len(lines)
        return written


_STOP = object()


class OperationLogQueue:
    """
    Bounded hand-off between request code and the writer thread.

    ``push`` never blocks: past ``max_queue_size`` pending records it drops
    the record and counts it. The thread writes whenever ``flush_batch_size``
    records are pending or the oldest pending record is
    ``flush_interval_ms`` old. ``stop`` writes everything still queued.
    """

    def __init__(
        self,
        writer: OperationLogWriter,
        flush_interval_ms: int = 100,
        flush_batch_size: int = 50,
        max_queue_size: int = 10000,
    ):
        self._writer = writer
        self._interval = flush_interval_ms / 1000.0
        self._batch_size = flush_batch_size
        self._max_pending = max_queue_size
        self._queue: SimpleQueue = SimpleQueue()
        self._thread: Optional[threading.Thread] = None
        self._dropped = 0

    @property
    def writer(self) -> OperationLogWriter:
        return self._writer

    @property
    def pending_count(self) -> int:
        return self._queue.qsize()

    @property
    def dropped_count(self) -> int:
        return self._dropped

    def start(self) -> None:
        if self._thread is not None:
            return
        self._thread = threading.Thread(target=self._run, name="foldervault-oplog", daemon=True)
        self._thread.start()
        logger.debug(f"Operation log writing to {self._writer.root}")

    def push(self, record: OperationRecord) -> bool:
        """Queue a record. False when it was dropped because the queue is full."""
        if self._queue.qsize() >= self._max_pending:
            self._dropped += 1
            if self._dropped == 1:
                logger.warning("Operation log queue full; dropping records")
            return False
        self._queue.put(record)
        return True

    def stop(self, timeout: float = 5.0) -> None:
        thread, self._thread = self._thread, None
        if thread is not None:
            self._queue.put(_STOP)
            thread.join(timeout=timeout)
        # Not started, or the thread did not finish in time
        self._write(self._take_all())
        if self._dropped:
            logger.warning(f"Operation log dropped {self._dropped} record(s)")

    def _run(self) -> None:
        pending: List[OperationRecord] = []
        oldest = 0.0
        while True:
            wait = self._interval if not pending else max(0.0, oldest + self._interval - time.monotonic())
            try:
                item = self._queue.get(timeout=wait)
            except Empty:
                item = None

            if item is _STOP:
                pending.extend(self._take_all())
                self._write(pending)
                return
            if item is not None:
                if not pending:
                    oldest = time.monotonic()
                pending.append(item)

            due = pending and (
                len(pending) >= self._batch_size or time.monotonic() - oldest >= self._interval
            )
            if due:
                self._write(pending)
                pending = []

    def _take_all(self) -> List[OperationRecord]:
        records: List[OperationRecord] = []
        while True:
            try:
                item = self._queue.get_nowait()
            except Empty:
                return records
            if item is not _STOP:
                records.append(item)

    def _write(self, records: List[OperationRecord]) -> None:
        if not records:
            return
        try:
            self._writer.append(records)
        except OSError as e:
            logger.error(f"Could not write {len(records)} operation log record(s): {e}")


# ---------------------------------------------------------------------------
# Record builders
# ---------------------------------------------------------------------------

def _record(
    stream: str,
    event: str,
    success: bool,
    namespace: Optional[str],
    duration_ms: Optional[float] = None,
    **fields: Any,
) -> OperationRecord:
    payload: Dict[str, Any] = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "event": event,
        "level": "INFO" if success else "ERROR",
        "success": success,
    }
    if namespace:
        payload["namespace"] = namespace
    if duration_ms is not None:
        payload["duration_ms"] = round(duration_ms, 3)
    payload.update({k: v for k, v in fields.items() if v is not None})
    return OperationRecord(stream, namespace, payload)


def log_folder_operation(
    operation: str,
    folder_id: str,
    success: bool,
    namespace: Optional[str] = None,
    duration_ms: Optional[float] = None,
    details: Optional[Dict[str, Any]] = None,
    error: Optional[str] = None,
) -> OperationRecord:
    """create / rename / move / download on one folder."""
    return _record(
        "folders", f"folder_{operation}", success, namespace, duration_ms,
        folder_id=folder_id, details=details or None, error=error,
    )


def log_folder_performance(
    operation: str,
    namespace: str,
    duration_ms: float,
    **counts: int,
) -> OperationRecord:
    """Timing plus TreeStats counts for a namespace-wide read."""
    return _record(
        "folders", f"folder_{operation}_performance", True, namespace, duration_ms,
        kind="performance", **counts,
    )


def log_cascade_delete(
    report: Dict[str, Any],
    success: bool,
    namespace: Optional[str] = None,
    duration_ms: Optional[float] = None,
    error: Optional[str] = None,
) -> OperationRecord:
    """
    A cascade delete outcome. ``report`` is CascadeDeleteReport.to_dict();
    the counts and the failure point are lifted to the top level so the
    line reads without unpacking the report.
    """
    return _record(
        "folders", "folder_delete", success, namespace, duration_ms,
        folder_id=report.get("folder_id"),
        files_removed=len(report.get("removed_file_ids", [])),
        folders_removed=len(report.get("removed_folder_ids", [])),
        already_absent=report.get("already_absent") or None,
        partial=report.get("partial") or None,
        failed_stage=report.get("failed_stage"),
        failed_file_id=report.get("failed_file_id"),
        report=report,
        error=error,
    )


def log_file_operation(
    operation: str,
    file_id: str,
    success: bool,
    namespace: Optional[str] = None,
    folder_id: Optional[str] = None,
    size: Optional[int] = None,
    error: Optional[str] = None,
) -> OperationRecord:
    """upload / rename / move / delete on one file."""
    return _record(
        "files", f"file_{operation}", success, namespace,
        file_id=file_id, folder_id=folder_id, size=size, error=error,
    )


def log_archive_event(
    report: Dict[str, Any],
    namespace: Optional[str] = None,
    duration_ms: Optional[float] = None,
) -> OperationRecord:
    """
    Final state of one archive download. ``report`` is
    ArchiveReport.to_dict(); skipped entries are kept in full.
    """
    completed = bool(report.get("completed"))
    return _record(
        "archives", "archive_completed" if completed else "archive_failed", completed,
        namespace, duration_ms,
        folder_id=report.get("folder_id"),
        entries_written=len(report.get("written", [])),
        entries_skipped=len(report.get("skipped", [])),
        bytes_emitted=report.get("bytes_emitted", 0),
        skipped=report.get("skipped") or None,
        error=report.get("error"),
    )


# ---------------------------------------------------------------------------
# Process-wide queue
# ---------------------------------------------------------------------------

_global_queue: Optional[OperationLogQueue] = None


def init_logging(
    log_dir: str = ".foldervault/logs",
    flush_interval_ms: int = 100,
    flush_batch_size: int = 50,
    max_queue_size: int = 10000,
    level: str = "INFO",
) -> OperationLogQueue:
    """Start the process-wide operation log queue (idempotent)."""
    global _global_queue

    logging.getLogger("foldervault").setLevel(level.upper())
    if _global_queue is None:
        _global_queue = OperationLogQueue(
            OperationLogWriter(log_dir),
            flush_interval_ms=flush_interval_ms,
            flush_batch_size=flush_batch_size,
            max_queue_size=max_queue_size,
        )
        _global_queue.start()
    return _global_queue


def get_log_queue() -> Optional[OperationLogQueue]:
    return _global_queue


def shutdown_logging() -> None:
    """Stop the process-wide queue, writing anything still pending."""
    global _global_queue
    queue, _global_queue = _global_queue, None
    if queue is not None:
        queue.stop()
