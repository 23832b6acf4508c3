"""
FolderVault metadata rows — the relational layout behind Folder and File.

Tables:
    vault_folders(id, namespace, name, parent_id, created_at, modified_at)
    vault_files(id, namespace, name, type, size, folder_id, storage_locator,
                created_at, modified_at)

parent_id and folder_id are plain indexed columns, not foreign keys: the
cascade coordinator owns deletion order, and dangling references must stay
representable so the tree materializer can degrade gracefully.
"""

from __future__ import annotations

from sqlalchemy import BigInteger, Column, Index, String

from foldervault.db.base import Base, TimestampMixin


class FolderRow(TimestampMixin, Base):
    __tablename__ = "vault_folders"

    id = Column(String(64), primary_key=True)
    namespace = Column(String(128), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    parent_id = Column(String(64), nullable=True, index=True)

    def __repr__(self) -> str:
        return f"<FolderRow {self.id} '{self.name}' parent={self.parent_id}>"


class FileRow(TimestampMixin, Base):
    __tablename__ = "vault_files"

    id = Column(String(64), primary_key=True)
    namespace = Column(String(128), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    type = Column(String(32), nullable=False, default="")
    size = Column(BigInteger, nullable=False, default=0)
    folder_id = Column(String(64), nullable=False, index=True)
    storage_locator = Column(String(1024), nullable=False)

    __table_args__ = (
        Index("ix_vault_files_namespace_folder", "namespace", "folder_id"),
    )

    def __repr__(self) -> str:
        return f"<FileRow {self.id} '{self.name}' folder={self.folder_id}>"
