"""
FolderVault — hierarchical folder/file storage over a metadata database and
a blob store.

Components:
    foldervault.documents.tree     flat rows → nested folder tree
    foldervault.documents.cascade  subtree delete across both back ends
    foldervault.documents.archive  streamed ZIP download of a folder
    foldervault.documents.service  FolderService facade
    foldervault.store              EntityStore and its adapters
"""

__version__ = "0.1.0"
__all__ = ["engine", "db", "documents", "store"]
