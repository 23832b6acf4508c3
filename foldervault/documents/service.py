"""
FolderVault Folder Service — folder/file operations over one EntityStore.

Handles:
- Tree listing (Tree Materializer over a namespace's flat rows)
- Folder create / rename / move, with cycle prevention on moves
- File upload (blob first, then record), rename, move, delete
- Cascade folder delete (Cascade Delete Coordinator)
- Folder download as a streamed ZIP (Streaming Archive Assembler)

Structural changes touch the affected folders' ``modified_at``: the parent
on folder create/delete/move, the owner on file upload/delete/move.

Every operation writes a structured entry to the operation log queue, when
one is configured.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, List, Optional

from foldervault.documents.archive import ArchiveStream, StreamingArchiveAssembler
from foldervault.documents.cascade import CascadeDeleteCoordinator, CascadeDeleteReport
from foldervault.documents.models import (
    File,
    Folder,
    FolderNode,
    check_entry_name,
    new_id,
    utcnow,
)
from foldervault.documents.tree import materialize_tree_with_stats
from foldervault.engine.errors import NotFoundError, VaultError, VaultValidationError
from foldervault.engine.logging import (
    log_cascade_delete,
    log_file_operation,
    log_folder_operation,
    log_folder_performance,
)
from foldervault.store.base import BlobSource, EntityStore

logger = logging.getLogger("foldervault.documents.service")


class FolderService:
    """
    Async facade wiring the store, tree, cascade and archive components.

    Instantiate one per EntityStore; it holds no per-request state.
    """

    def __init__(
        self,
        store: EntityStore,
        assembler: Optional[StreamingArchiveAssembler] = None,
        log_queue=None,
    ):
        self._store = store
        self._log_queue = log_queue
        self._assembler = assembler or StreamingArchiveAssembler(store, log_queue=log_queue)
        self._cascade = CascadeDeleteCoordinator(store)

    @property
    def store(self) -> EntityStore:
        return self._store

    @property
    def assembler(self) -> StreamingArchiveAssembler:
        return self._assembler

    # -------------------------------------------------------------------
    # Listing
    # -------------------------------------------------------------------

    async def list_tree(self, namespace: str) -> List[FolderNode]:
        """Materialize the namespace's folders and files into root nodes."""
        start = time.monotonic()
        folders = await self._store.list_folders(namespace)
        files = await self._store.list_files(namespace)
        roots, stats = materialize_tree_with_stats(folders, files)
        duration_ms = (time.monotonic() - start) * 1000
        if stats.dangling_files or stats.dangling_parents or stats.cycle_breaks:
            logger.warning(f"Tree for namespace '{namespace}' has inconsistencies: {stats.to_dict()}")
        self._push(log_folder_performance("list_tree", namespace, duration_ms, **stats.to_dict()))
        return roots

    # -------------------------------------------------------------------
    # Folders
    # -------------------------------------------------------------------

    async def create_folder(
        self,
        namespace: str,
        name: str,
        parent_id: Optional[str] = None,
    ) -> Folder:
        start = time.monotonic()
        try:
            name = check_entry_name(name, "folder name")
            if parent_id is not None:
                await self._resolve_folder(namespace, parent_id, "parent")
            folder = await self._store.save_folder(
                Folder(namespace=namespace, name=name, parent_id=parent_id)
            )
            if parent_id is not None:
                await self._touch(parent_id)
        except VaultError as e:
            self._log_folder("create", parent_id or "-", False, namespace, start, error=e.message)
            raise

        logger.info(f"Created folder '{folder.name}' ({folder.id}) in namespace '{namespace}'")
        self._log_folder("create", folder.id, True, namespace, start, {"parent_id": parent_id})
        return folder

    async def rename_folder(self, folder_id: str, name: str) -> Folder:
        start = time.monotonic()
        namespace = None
        try:
            name = check_entry_name(name, "folder name")
            folder = await self._store.get_folder(folder_id)
            namespace = folder.namespace
            folder = await self._store.save_folder(
                folder.model_copy(update={"name": name, "modified_at": utcnow()})
            )
        except VaultError as e:
            self._log_folder("rename", folder_id, False, namespace, start, error=e.message)
            raise

        self._log_folder("rename", folder_id, True, namespace, start, {"name": name})
        return folder

    async def move_folder(self, folder_id: str, new_parent_id: Optional[str]) -> Folder:
        """
        Reparent a folder (new_parent_id None → root-level).

        Raises VaultValidationError when the new parent is the folder itself,
        one of its descendants, or lives in another namespace.
        """
        start = time.monotonic()
        namespace = None
        try:
            folder = await self._store.get_folder(folder_id)
            namespace = folder.namespace
            old_parent_id = folder.parent_id
            if new_parent_id == old_parent_id:
                return folder

            if new_parent_id is not None:
                await self._resolve_folder(namespace, new_parent_id, "parent")
                await self._check_no_cycle(folder, new_parent_id)

            folder = await self._store.save_folder(
                folder.model_copy(update={"parent_id": new_parent_id, "modified_at": utcnow()})
            )
            if old_parent_id is not None:
                await self._touch(old_parent_id)
            if new_parent_id is not None:
                await self._touch(new_parent_id)
        except VaultError as e:
            self._log_folder("move", folder_id, False, namespace, start, error=e.message)
            raise

        self._log_folder(
            "move", folder_id, True, namespace, start,
            {"from_parent_id": old_parent_id, "to_parent_id": new_parent_id},
        )
        return folder

    async def delete_folder(self, folder_id: str, recursive: bool = True) -> CascadeDeleteReport:
        """
        Cascade-delete a folder (see CascadeDeleteCoordinator for the failure
        contract). Deleting an absent folder succeeds with
        ``report.already_absent``.
        """
        start = time.monotonic()
        parent_id = None
        namespace = None
        try:
            folder = await self._store.get_folder(folder_id)
            parent_id = folder.parent_id
            namespace = folder.namespace
        except NotFoundError:
            pass
        except VaultError as e:
            self._log_cascade({"folder_id": folder_id}, False, namespace, start, error=e.message)
            raise

        try:
            report = await self._cascade.delete_folder(folder_id, recursive=recursive)
        except VaultError as e:
            details = e.report.to_dict() if e.report is not None else {"folder_id": folder_id}
            self._log_cascade(details, False, namespace, start, error=e.message)
            raise

        if parent_id is not None and not report.already_absent:
            await self._touch(parent_id)
        self._log_cascade(report.to_dict(), True, namespace, start)
        return report

    async def download_folder(self, folder_id: str) -> ArchiveStream:
        """
        Open a streamed ZIP of the folder's direct files.

        Raises NotFoundError for an unknown folder and NothingToArchiveError
        when it has no files; per-entry failures surface while streaming.
        """
        start = time.monotonic()
        namespace = None
        try:
            folder = await self._store.get_folder(folder_id)
            namespace = folder.namespace
            files = await self._store.list_files(namespace, folder_id)
            stream = self._assembler.open_archive(files, folder_id=folder_id)
        except VaultError as e:
            self._log_folder("download", folder_id, False, namespace, start, error=e.message)
            raise

        self._log_folder("download", folder_id, True, namespace, start, {"files": len(files)})
        return stream

    # -------------------------------------------------------------------
    # Files
    # -------------------------------------------------------------------

    async def upload_file(
        self,
        folder_id: str,
        name: str,
        data: BlobSource,
        locator: Optional[str] = None,
    ) -> File:
        """
        Store a new file in a folder.

        The record is validated before any byte is stored, then the blob is
        written and the record saved after it, so a visible record always
        has content. If the write or the save fails, whatever reached the
        blob store is removed before the error propagates.
        """
        namespace = None
        try:
            name = check_entry_name(name, "file name")
            folder = await self._store.get_folder(folder_id)
            namespace = folder.namespace
            file_id = new_id()
            if locator is None:
                locator = self._store.make_locator(f"{folder.namespace}/{folder.id}/{file_id}")
            record = File.create(name, folder.id, locator, id=file_id, namespace=folder.namespace)
            try:
                size = await self._store.write_blob(locator, data)
                file = await self._store.save_file(record.model_copy(update={"size": size}))
            except Exception:
                await self._discard_blob(locator)
                raise
            await self._touch(folder.id)
        except VaultError as e:
            self._push(log_file_operation(
                "upload", "-", False, namespace=namespace, folder_id=folder_id, error=e.message,
            ))
            raise

        logger.info(f"Uploaded '{file.name}' ({file.id}, {file.size} bytes) to folder {folder_id}")
        self._push(log_file_operation(
            "upload", file.id, True, namespace=namespace, folder_id=folder_id, size=file.size,
        ))
        return file

    async def rename_file(self, file_id: str, name: str) -> File:
        """Rename a file. Its stored ``type`` is left as it was."""
        try:
            name = check_entry_name(name, "file name")
            file = await self._store.get_file(file_id)
            file = await self._store.save_file(
                file.model_copy(update={"name": name, "modified_at": utcnow()})
            )
        except VaultError as e:
            self._push(log_file_operation("rename", file_id, False, error=e.message))
            raise

        self._push(log_file_operation(
            "rename", file_id, True, namespace=file.namespace, folder_id=file.folder_id,
        ))
        return file

    async def move_file(self, file_id: str, folder_id: str) -> File:
        try:
            file = await self._store.get_file(file_id)
            old_folder_id = file.folder_id
            if folder_id == old_folder_id:
                return file
            await self._resolve_folder(file.namespace, folder_id, "target")
            file = await self._store.save_file(
                file.model_copy(update={"folder_id": folder_id, "modified_at": utcnow()})
            )
            await self._touch(old_folder_id)
            await self._touch(folder_id)
        except VaultError as e:
            self._push(log_file_operation("move", file_id, False, folder_id=folder_id, error=e.message))
            raise

        self._push(log_file_operation("move", file_id, True, namespace=file.namespace, folder_id=folder_id))
        return file

    async def delete_file(self, file_id: str) -> bool:
        """
        Delete one file: blob first, then its record.

        Returns False when the file was already gone. A missing blob under
        an existing record is treated as already deleted.
        """
        try:
            try:
                file = await self._store.get_file(file_id)
            except NotFoundError:
                self._push(log_file_operation("delete", file_id, True))
                return False
            try:
                await self._store.delete_blob(file.storage_locator)
            except NotFoundError:
                logger.info(f"Blob for file {file_id} already absent: {file.storage_locator}")
            try:
                await self._store.delete_file_record(file_id)
            except NotFoundError:
                pass
            await self._touch(file.folder_id)
        except VaultError as e:
            self._push(log_file_operation("delete", file_id, False, error=e.message))
            raise

        self._push(log_file_operation(
            "delete", file_id, True, namespace=file.namespace, folder_id=file.folder_id, size=file.size,
        ))
        return True

    # -------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------

    async def _resolve_folder(self, namespace: str, folder_id: str, role: str) -> Folder:
        try:
            folder = await self._store.get_folder(folder_id)
        except NotFoundError as e:
            raise VaultValidationError(
                f"The {role} folder {folder_id} does not exist",
                folder_id=folder_id,
            ) from e
        if folder.namespace != namespace:
            raise VaultValidationError(
                f"The {role} folder {folder_id} belongs to namespace '{folder.namespace}', "
                f"not '{namespace}'",
                folder_id=folder_id,
            )
        return folder

    async def _check_no_cycle(self, folder: Folder, new_parent_id: str) -> None:
        """Walk the new parent's ancestor chain; reaching ``folder`` is a cycle."""
        if new_parent_id == folder.id:
            raise VaultValidationError(
                f"Folder {folder.id} cannot be its own parent",
                folder_id=folder.id,
            )
        folders = await self._store.list_folders(folder.namespace)
        parents: Dict[str, Optional[str]] = {f.id: f.parent_id for f in folders}
        seen = set()
        current: Optional[str] = new_parent_id
        while current is not None and current not in seen:
            if current == folder.id:
                raise VaultValidationError(
                    f"Cannot move folder {folder.id} under its own descendant {new_parent_id}",
                    folder_id=folder.id,
                    new_parent_id=new_parent_id,
                )
            seen.add(current)
            current = parents.get(current)

    async def _touch(self, folder_id: str) -> None:
        # The folder may have been removed concurrently
        try:
            await self._store.touch_folder(folder_id, utcnow())
        except NotFoundError:
            logger.debug(f"Skipped touching absent folder {folder_id}")

    async def _discard_blob(self, locator: str) -> None:
        try:
            await self._store.delete_blob(locator)
        except NotFoundError:
            logger.debug(f"No blob to remove at {locator}")
        except VaultError as e:
            logger.warning(f"Could not remove orphaned blob {locator}: {e.message}")

    def _log_folder(
        self,
        operation: str,
        folder_id: str,
        success: bool,
        namespace: Optional[str],
        start: float,
        details: Optional[Dict[str, Any]] = None,
        error: Optional[str] = None,
    ) -> None:
        self._push(log_folder_operation(
            operation,
            folder_id,
            success,
            namespace=namespace,
            duration_ms=(time.monotonic() - start) * 1000,
            details=details,
            error=error,
        ))

    def _log_cascade(
        self,
        report: Dict[str, Any],
        success: bool,
        namespace: Optional[str],
        start: float,
        error: Optional[str] = None,
    ) -> None:
        self._push(log_cascade_delete(
            report,
            success,
            namespace=namespace,
            duration_ms=(time.monotonic() - start) * 1000,
            error=error,
        ))

    def _push(self, entry) -> None:
        if self._log_queue is not None:
            self._log_queue.push(entry)
