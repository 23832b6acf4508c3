"""
SQLAlchemy MetadataStore — Folder / File records in vault_folders / vault_files.

Each call runs in its own ``session_scope`` (commit on success, rollback on
error). SQLAlchemyError is translated to UpstreamFailureError so callers only
ever see the FolderVault taxonomy.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable, List, Optional, TypeVar

from sqlalchemy import delete, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from foldervault.db.models import FileRow, FolderRow
from foldervault.db.session import session_scope
from foldervault.documents.models import File, Folder
from foldervault.engine.errors import NotFoundError, UpstreamFailureError

logger = logging.getLogger("foldervault.store.sql")

T = TypeVar("T")


def _aware(value: datetime) -> datetime:
    # SQLite drops tzinfo on the way back
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _folder_from_row(row: FolderRow) -> Folder:
    return Folder(
        id=row.id,
        namespace=row.namespace,
        name=row.name,
        parent_id=row.parent_id,
        created_at=_aware(row.created_at),
        modified_at=_aware(row.modified_at),
    )


def _file_from_row(row: FileRow) -> File:
    return File(
        id=row.id,
        namespace=row.namespace,
        name=row.name,
        type=row.type,
        size=row.size,
        folder_id=row.folder_id,
        storage_locator=row.storage_locator,
        created_at=_aware(row.created_at),
        modified_at=_aware(row.modified_at),
    )


class SqlMetadataStore:
    """MetadataStore backed by a SQLAlchemy session factory."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def _run(self, operation: str, func: Callable[[Session], T], **context: Any) -> T:
        try:
            with session_scope(self._session_factory) as session:
                return func(session)
        except SQLAlchemyError as e:
            logger.error(f"Metadata {operation} failed: {e}")
            raise UpstreamFailureError(
                f"Metadata store {operation} failed: {e}",
                backend="sql",
                operation=operation,
                **context,
            ) from e

    # -------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------

    def list_folders(self, namespace: str) -> List[Folder]:
        def q(session: Session) -> List[Folder]:
            rows = session.scalars(
                select(FolderRow).where(FolderRow.namespace == namespace).order_by(FolderRow.created_at, FolderRow.id)
            )
            return [_folder_from_row(r) for r in rows]

        return self._run("list_folders", q)

    def list_files(self, namespace: str, folder_id: Optional[str] = None) -> List[File]:
        def q(session: Session) -> List[File]:
            stmt = select(FileRow).where(FileRow.namespace == namespace)
            if folder_id is not None:
                stmt = stmt.where(FileRow.folder_id == folder_id)
            rows = session.scalars(stmt.order_by(FileRow.created_at, FileRow.id))
            return [_file_from_row(r) for r in rows]

        return self._run("list_files", q, folder_id=folder_id)

    def get_folder(self, folder_id: str) -> Folder:
        def q(session: Session) -> Optional[Folder]:
            row = session.get(FolderRow, folder_id)
            return _folder_from_row(row) if row is not None else None

        folder = self._run("get_folder", q, folder_id=folder_id)
        if folder is None:
            raise NotFoundError(f"Folder not found: {folder_id}", folder_id=folder_id, record_type="folder")
        return folder

    def get_file(self, file_id: str) -> File:
        def q(session: Session) -> Optional[File]:
            row = session.get(FileRow, file_id)
            return _file_from_row(row) if row is not None else None

        file = self._run("get_file", q, file_id=file_id)
        if file is None:
            raise NotFoundError(f"File not found: {file_id}", file_id=file_id, record_type="file")
        return file

    # -------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------

    def save_folder(self, folder: Folder) -> Folder:
        def q(session: Session) -> None:
            session.merge(FolderRow(
                id=folder.id,
                namespace=folder.namespace,
                name=folder.name,
                parent_id=folder.parent_id,
                created_at=folder.created_at,
                modified_at=folder.modified_at,
            ))

        self._run("save_folder", q, folder_id=folder.id)
        return Folder(**folder.model_dump(exclude={"children", "files"}))

    def save_file(self, file: File) -> File:
        def q(session: Session) -> None:
            session.merge(FileRow(
                id=file.id,
                namespace=file.namespace,
                name=file.name,
                type=file.type,
                size=file.size,
                folder_id=file.folder_id,
                storage_locator=file.storage_locator,
                created_at=file.created_at,
                modified_at=file.modified_at,
            ))

        self._run("save_file", q, file_id=file.id)
        return file.model_copy()

    def delete_folder_record(self, folder_id: str) -> None:
        deleted = self._run(
            "delete_folder_record",
            lambda s: s.execute(delete(FolderRow).where(FolderRow.id == folder_id)).rowcount,
            folder_id=folder_id,
        )
        if not deleted:
            raise NotFoundError(f"Folder not found: {folder_id}", folder_id=folder_id, record_type="folder")

    def delete_file_record(self, file_id: str) -> None:
        deleted = self._run(
            "delete_file_record",
            lambda s: s.execute(delete(FileRow).where(FileRow.id == file_id)).rowcount,
            file_id=file_id,
        )
        if not deleted:
            raise NotFoundError(f"File not found: {file_id}", file_id=file_id, record_type="file")

    def touch_folder(self, folder_id: str, when: datetime) -> None:
        updated = self._run(
            "touch_folder",
            lambda s: s.execute(
                update(FolderRow).where(FolderRow.id == folder_id).values(modified_at=when)
            ).rowcount,
            folder_id=folder_id,
        )
        if not updated:
            raise NotFoundError(f"Folder not found: {folder_id}", folder_id=folder_id, record_type="folder")
