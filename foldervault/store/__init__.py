"""
FolderVault Entity Store — metadata + blob back ends behind one async facade.
"""

from foldervault.store.base import BlobStore, EntityStore, MetadataStore
from foldervault.store.blobs import HttpBlobStore, LocalBlobStore
from foldervault.store.memory import MemoryBlobStore, MemoryMetadataStore
from foldervault.store.sql import SqlMetadataStore

__all__ = [
    "EntityStore",
    "MetadataStore",
    "BlobStore",
    "HttpBlobStore",
    "LocalBlobStore",
    "MemoryBlobStore",
    "MemoryMetadataStore",
    "SqlMetadataStore",
]
