"""
Build an EntityStore from configuration.

The metadata side always goes through SQLAlchemy (``database.url``; SQLite
by default). The blob side is picked by ``blobs.backend``.
"""

from __future__ import annotations

import logging
from typing import Optional

from foldervault.db.session import init_metadata_db
from foldervault.engine.config import VaultConfig, get_vault_config
from foldervault.engine.errors import VaultConfigError
from foldervault.store.base import BlobStore, EntityStore, MetadataStore
from foldervault.store.blobs import HttpBlobStore, LocalBlobStore
from foldervault.store.memory import MemoryBlobStore
from foldervault.store.sql import SqlMetadataStore

logger = logging.getLogger("foldervault.store.factory")


def build_blob_store(config: VaultConfig) -> BlobStore:
    blobs = config.blobs
    if blobs.backend == "http":
        if not blobs.base_url:
            raise VaultConfigError("blobs.base_url is required for the http back end")
        return HttpBlobStore(
            blobs.base_url,
            timeout=blobs.timeout_seconds,
            connect_timeout=blobs.connect_timeout_seconds,
            max_connections=blobs.max_connections,
            headers=blobs.headers,
        )
    if blobs.backend == "local":
        return LocalBlobStore(blobs.root)
    return MemoryBlobStore()


def build_metadata_store(config: VaultConfig, create_tables: Optional[bool] = None) -> MetadataStore:
    db = config.database
    factory = init_metadata_db(
        db.url,
        create_tables=db.create_tables if create_tables is None else create_tables,
        pool_size=db.pool_size,
        max_overflow=db.max_overflow,
        pool_timeout=db.pool_timeout,
        pool_recycle=db.pool_recycle,
        pool_pre_ping=db.pool_pre_ping,
    )
    return SqlMetadataStore(factory)


def build_entity_store(
    config: Optional[VaultConfig] = None,
    create_tables: Optional[bool] = None,
) -> EntityStore:
    """Wire the configured metadata and blob back ends into one EntityStore."""
    config = config or get_vault_config()
    store = EntityStore(
        build_metadata_store(config, create_tables=create_tables),
        build_blob_store(config),
        blob_timeout=config.blobs.timeout_seconds,
    )
    logger.info(
        f"Entity store ready (metadata={config.database.url.split('://', 1)[0]}, "
        f"blobs={config.blobs.backend})"
    )
    return store
