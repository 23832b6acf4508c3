"""
FolderVault CLI — Metadata bootstrap and folder maintenance commands.

Commands:
- foldervault init           — Create the metadata tables
- foldervault tree           — Print a namespace's folder tree
- foldervault delete-folder  — Cascade-delete a folder and its contents
- foldervault archive        — Stream a folder's files into a ZIP file

Exit codes:
    0  success
    1  failure (nothing usable produced)
    2  delete-folder stopped part way (some items removed)
    3  archive had nothing to archive
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from typing import List, Optional

logger = logging.getLogger("foldervault.cli")

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_PARTIAL = 2
EXIT_NOTHING_TO_ARCHIVE = 3


def main(argv: Optional[list] = None) -> int:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="foldervault",
        description="FolderVault — folder trees over a metadata DB and a blob store",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    def add_config(sub: argparse.ArgumentParser) -> None:
        sub.add_argument(
            "--config", default=None,
            help="Path to foldervault.yaml (default: auto-discover from the working directory)",
        )

    # foldervault init
    init_parser = subparsers.add_parser("init", help="Create the metadata tables")
    add_config(init_parser)

    # foldervault tree
    tree_parser = subparsers.add_parser("tree", help="Print a namespace's folder tree")
    tree_parser.add_argument("namespace", help="Namespace to list")
    tree_parser.add_argument("--json", action="store_true", help="Print the tree as JSON")
    add_config(tree_parser)

    # foldervault delete-folder
    delete_parser = subparsers.add_parser("delete-folder", help="Cascade-delete a folder")
    delete_parser.add_argument("folder_id", help="Folder to delete")
    delete_parser.add_argument(
        "--shallow", action="store_true",
        help="Only delete the folder's own files; refuse if it has child folders",
    )
    add_config(delete_parser)

    # foldervault archive
    archive_parser = subparsers.add_parser("archive", help="Write a folder's files to a ZIP")
    archive_parser.add_argument("folder_id", help="Folder to archive")
    archive_parser.add_argument("output", help="Destination .zip path")
    add_config(archive_parser)

    args = parser.parse_args(argv)

    if args.command == "init":
        return cmd_init(args)
    elif args.command == "tree":
        return asyncio.run(cmd_tree(args))
    elif args.command == "delete-folder":
        return asyncio.run(cmd_delete_folder(args))
    elif args.command == "archive":
        return asyncio.run(cmd_archive(args))
    else:
        parser.print_help()
        return EXIT_OK


# ---------------------------------------------------------------------------
# Bootstrap helpers
# ---------------------------------------------------------------------------

def _load_config(config_path: Optional[str]):
    from foldervault.engine.config import load_vault_config
    from foldervault.engine.errors import VaultConfigError

    try:
        return load_vault_config(config_path)
    except VaultConfigError as e:
        print(f"[ERROR] {e.message}", file=sys.stderr)
        return None


def _start_logging(config) -> None:
    from foldervault.engine.logging import init_logging

    logging.basicConfig(
        level=config.logging.level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    queue = config.logging.async_queue
    init_logging(
        log_dir=config.logging.directory,
        flush_interval_ms=queue.flush_interval_ms,
        flush_batch_size=queue.flush_batch_size,
        max_queue_size=queue.max_queue_size,
        level=config.logging.level,
    )


def _build_service(config):
    from foldervault.db.session import close_metadata_db
    from foldervault.documents.archive import StreamingArchiveAssembler
    from foldervault.documents.service import FolderService
    from foldervault.engine.errors import VaultConfigError
    from foldervault.engine.logging import get_log_queue, shutdown_logging
    from foldervault.store.factory import build_entity_store

    try:
        store = build_entity_store(config)
    except VaultConfigError as e:
        print(f"[ERROR] {e.message}", file=sys.stderr)
        close_metadata_db()
        shutdown_logging()
        return None
    log_queue = get_log_queue()
    assembler = StreamingArchiveAssembler.from_config(store, config, log_queue=log_queue)
    return FolderService(store, assembler=assembler, log_queue=log_queue)


async def _close_service(service) -> None:
    from foldervault.db.session import close_metadata_db
    from foldervault.engine.logging import shutdown_logging

    await service.store.aclose()
    close_metadata_db()
    shutdown_logging()


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

def cmd_init(args: argparse.Namespace) -> int:
    """Create vault_folders / vault_files in the configured database."""
    from sqlalchemy.exc import SQLAlchemyError

    from foldervault.db.session import close_metadata_db, init_metadata_db

    config = _load_config(args.config)
    if config is None:
        return EXIT_FAILURE

    db = config.database
    try:
        init_metadata_db(db.url, create_tables=True)
    except SQLAlchemyError as e:
        print(f"[ERROR] Failed to create tables: {e}", file=sys.stderr)
        return EXIT_FAILURE
    finally:
        close_metadata_db()

    print(f"[OK] Metadata tables ready ({db.url.split('://', 1)[0]})")
    return EXIT_OK


async def cmd_tree(args: argparse.Namespace) -> int:
    from foldervault.engine.errors import VaultError

    config = _load_config(args.config)
    if config is None:
        return EXIT_FAILURE
    _start_logging(config)
    service = _build_service(config)
    if service is None:
        return EXIT_FAILURE

    try:
        roots = await service.list_tree(args.namespace)
    except VaultError as e:
        print(f"[ERROR] {e.message}", file=sys.stderr)
        return EXIT_FAILURE
    finally:
        await _close_service(service)

    if args.json:
        print(json.dumps([r.to_dict() for r in roots], indent=2))
    else:
        for line in _render_tree(roots):
            print(line)
    return EXIT_OK


def _render_tree(roots) -> List[str]:
    lines: List[str] = []
    stack = [(node, 0) for node in reversed(roots)]
    while stack:
        node, depth = stack.pop()
        indent = "  " * depth
        lines.append(f"{indent}{node.name}/  [{node.id}]")
        for file in node.files:
            lines.append(f"{indent}  {file.name}  ({file.size} bytes) [{file.id}]")
        stack.extend((child, depth + 1) for child in reversed(node.children))
    return lines


async def cmd_delete_folder(args: argparse.Namespace) -> int:
    from foldervault.engine.errors import PartialFailureError, VaultError

    config = _load_config(args.config)
    if config is None:
        return EXIT_FAILURE
    _start_logging(config)
    service = _build_service(config)
    if service is None:
        return EXIT_FAILURE

    try:
        report = await service.delete_folder(args.folder_id, recursive=not args.shallow)
    except PartialFailureError as e:
        print(f"[PARTIAL] {e.message}", file=sys.stderr)
        print(json.dumps(e.report.to_dict(), indent=2))
        return EXIT_PARTIAL
    except VaultError as e:
        print(f"[ERROR] {e.message}", file=sys.stderr)
        if e.report is not None:
            print(json.dumps(e.report.to_dict(), indent=2))
        return EXIT_FAILURE
    finally:
        await _close_service(service)

    if report.already_absent:
        print(f"[OK] Folder {args.folder_id} was already absent")
    else:
        print(
            f"[OK] Deleted {len(report.removed_folder_ids)} folder(s) and "
            f"{len(report.removed_file_ids)} file(s)"
        )
    print(json.dumps(report.to_dict(), indent=2))
    return EXIT_OK


async def cmd_archive(args: argparse.Namespace) -> int:
    """
    Stream the archive to ``args.output``.

    Bytes go to a sibling ``.part`` file that replaces the output only once
    the archive is complete, so a failed run leaves any existing file alone.
    """
    from foldervault.engine.errors import NothingToArchiveError, VaultError

    config = _load_config(args.config)
    if config is None:
        return EXIT_FAILURE
    _start_logging(config)
    service = _build_service(config)
    if service is None:
        return EXIT_FAILURE

    stream = None
    partial = f"{args.output}.part"
    try:
        stream = await service.download_folder(args.folder_id)
        with open(partial, "wb") as out:
            async for chunk in stream:
                out.write(chunk)
        os.replace(partial, args.output)
    except NothingToArchiveError as e:
        _remove_partial(partial)
        print(f"[EMPTY] {e.message}", file=sys.stderr)
        return EXIT_NOTHING_TO_ARCHIVE
    except (VaultError, OSError) as e:
        _remove_partial(partial)
        message = e.message if isinstance(e, VaultError) else str(e)
        print(f"[ERROR] Archive failed: {message}", file=sys.stderr)
        return EXIT_FAILURE
    finally:
        if stream is not None:
            await stream.aclose()
        await _close_service(service)

    report = stream.report
    for skipped in report.skipped:
        print(f"[SKIP] {skipped.name} ({skipped.file_id}): {skipped.reason}")
    print(
        f"[OK] Wrote {len(report.written)} entr{'y' if len(report.written) == 1 else 'ies'} "
        f"({report.bytes_emitted} bytes) to {args.output}"
    )
    return EXIT_OK


def _remove_partial(path: str) -> None:
    try:
        os.remove(path)
    except FileNotFoundError:
        pass


if __name__ == "__main__":
    sys.exit(main())
