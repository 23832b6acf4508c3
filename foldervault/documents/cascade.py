"""
FolderVault Cascade Delete Coordinator — delete a folder subtree across the
blob store and the metadata store.

Order (never changed):
    for each folder, deepest first:
        for each direct file, in listing order:
            1. delete blob
            2. delete file row        (only after 1 succeeded)
        3. delete folder row          (only after all its files are gone)

Policy:
- Fail fast: the first blob or row failure stops the cascade.
- Idempotent: NotFound on a blob or row counts as already deleted, so a
  retry after a partial failure (or a concurrent delete) converges.
- No retries, no locks; the caller decides whether to retry or reconcile.

Outcome:
- success → CascadeDeleteReport
- failure after something was removed → PartialFailureError(report=...)
- failure before anything was removed → the original error, with
  ``error.report`` attached
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from foldervault.documents.models import File, Folder, FolderNode
from foldervault.documents.tree import find_node, iter_subtree_post_order, materialize_tree
from foldervault.engine.errors import (
    NotFoundError,
    PartialFailureError,
    VaultError,
    VaultValidationError,
)
from foldervault.store.base import EntityStore

logger = logging.getLogger("foldervault.documents.cascade")


@dataclass
class CascadeDeleteReport:
    """What a cascade removed, and where it stopped if it failed."""

    folder_id: str
    recursive: bool = True
    already_absent: bool = False
    removed_file_ids: List[str] = field(default_factory=list)
    removed_folder_ids: List[str] = field(default_factory=list)
    scope_file_ids: List[str] = field(default_factory=list)
    scope_folder_ids: List[str] = field(default_factory=list)
    absent_blob_file_ids: List[str] = field(default_factory=list)
    blob_deletes: int = 0
    metadata_deletes: int = 0
    failed_file_id: Optional[str] = None
    failed_folder_id: Optional[str] = None
    failed_locator: Optional[str] = None
    failed_stage: Optional[str] = None
    error: Optional[str] = None

    @property
    def remaining_file_ids(self) -> List[str]:
        removed = set(self.removed_file_ids)
        return [i for i in self.scope_file_ids if i not in removed]

    @property
    def remaining_folder_ids(self) -> List[str]:
        removed = set(self.removed_folder_ids)
        return [i for i in self.scope_folder_ids if i not in removed]

    @property
    def completed(self) -> bool:
        return self.error is None

    @property
    def partial(self) -> bool:
        return self.error is not None and bool(self.removed_file_ids or self.removed_folder_ids)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "folder_id": self.folder_id,
            "recursive": self.recursive,
            "completed": self.completed,
            "partial": self.partial,
            "already_absent": self.already_absent,
            "removed_file_ids": list(self.removed_file_ids),
            "removed_folder_ids": list(self.removed_folder_ids),
            "remaining_file_ids": list(self.remaining_file_ids),
            "remaining_folder_ids": list(self.remaining_folder_ids),
            "absent_blob_file_ids": list(self.absent_blob_file_ids),
            "blob_deletes": self.blob_deletes,
            "metadata_deletes": self.metadata_deletes,
            "failed_file_id": self.failed_file_id,
            "failed_folder_id": self.failed_folder_id,
            "failed_locator": self.failed_locator,
            "failed_stage": self.failed_stage,
            "error": self.error,
        }


# (folder id, direct files) in processing order
DeletePlan = List[Tuple[str, List[File]]]


class CascadeDeleteCoordinator:
    """Deletes folder subtrees through an EntityStore. Stateless per call."""

    def __init__(self, store: EntityStore):
        self._store = store

    async def delete_folder(self, folder_id: str, recursive: bool = True) -> CascadeDeleteReport:
        """
        Delete a folder, its files, and (recursive=True) every descendant.

        With recursive=False a folder that still has child folders is
        rejected up front with VaultValidationError; nothing is deleted.
        """
        report = CascadeDeleteReport(folder_id=folder_id, recursive=recursive)

        try:
            target = await self._store.get_folder(folder_id)
        except NotFoundError:
            logger.info(f"Cascade delete: folder {folder_id} already absent")
            report.already_absent = True
            return report
        except VaultError as e:
            e.report = report
            raise

        try:
            plan = await self._plan(target, recursive)
        except VaultError as e:
            e.report = report
            raise

        report.scope_file_ids = [f.id for _, files in plan for f in files]
        report.scope_folder_ids = [fid for fid, _ in plan]

        try:
            for current_folder_id, files in plan:
                for file in files:
                    await self._delete_file(current_folder_id, file, report)
                await self._delete_folder_row(current_folder_id, report)
        except VaultError as e:
            raise self._failure(e, report)

        logger.info(
            f"Cascade delete of folder {folder_id} complete: "
            f"{len(report.removed_file_ids)} file(s), {len(report.removed_folder_ids)} folder(s)"
        )
        return report

    # -------------------------------------------------------------------
    # Planning
    # -------------------------------------------------------------------

    async def _plan(self, target: Folder, recursive: bool) -> DeletePlan:
        namespace = target.namespace
        if not recursive:
            folders = await self._store.list_folders(namespace)
            children = [f.id for f in folders if f.parent_id == target.id and f.id != target.id]
            if children:
                raise VaultValidationError(
                    f"Folder {target.id} has {len(children)} child folder(s); "
                    f"use a recursive delete",
                    folder_id=target.id,
                    child_folder_ids=children,
                )
            files = await self._store.list_files(namespace, target.id)
            return [(target.id, files)]

        folders = await self._store.list_folders(namespace)
        files = await self._store.list_files(namespace)
        roots = materialize_tree(folders, files)
        node = find_node(roots, target.id)
        if node is None:
            # Row vanished between get and list (concurrent delete)
            node = FolderNode.from_folder(target)
            node.files = [f for f in files if f.folder_id == target.id]
        return [(n.id, list(n.files)) for n in iter_subtree_post_order(node)]

    # -------------------------------------------------------------------
    # Steps
    # -------------------------------------------------------------------

    async def _delete_file(self, folder_id: str, file: File, report: CascadeDeleteReport) -> None:
        report.blob_deletes += 1
        try:
            await self._store.delete_blob(file.storage_locator)
        except NotFoundError:
            report.absent_blob_file_ids.append(file.id)
        except VaultError:
            self._mark_failed(report, "blob", folder_id, file)
            raise

        report.metadata_deletes += 1
        try:
            await self._store.delete_file_record(file.id)
        except NotFoundError:
            pass
        except VaultError:
            self._mark_failed(report, "metadata", folder_id, file)
            raise

        report.removed_file_ids.append(file.id)

    async def _delete_folder_row(self, folder_id: str, report: CascadeDeleteReport) -> None:
        report.metadata_deletes += 1
        try:
            await self._store.delete_folder_record(folder_id)
        except NotFoundError:
            pass
        except VaultError:
            self._mark_failed(report, "metadata", folder_id, None)
            raise
        report.removed_folder_ids.append(folder_id)

    @staticmethod
    def _mark_failed(
        report: CascadeDeleteReport,
        stage: str,
        folder_id: str,
        file: Optional[File],
    ) -> None:
        report.failed_stage = stage
        report.failed_folder_id = folder_id
        if file is not None:
            report.failed_file_id = file.id
            report.failed_locator = file.storage_locator

    def _failure(self, error: VaultError, report: CascadeDeleteReport) -> VaultError:
        report.error = error.message
        target = report.failed_file_id or report.failed_folder_id
        logger.error(
            f"Cascade delete of folder {report.folder_id} stopped at "
            f"{report.failed_stage} delete of {target}: {error.message} "
            f"(removed {len(report.removed_file_ids)} file(s) before failing)"
        )
        if report.partial:
            partial = PartialFailureError(
                f"Cascade delete of folder {report.folder_id} partially failed at "
                f"{report.failed_stage} delete of {target}",
                folder_id=report.folder_id,
                file_id=report.failed_file_id,
                locator=report.failed_locator,
                report=report,
                cause=error,
            )
            partial.__cause__ = error
            return partial
        error.report = report
        return error
