"""
FolderVault Folders & Files.

Records, tree materialization, cascade delete and streamed archive download.
The service, cascade and archive modules depend on ``foldervault.store`` and
are imported from their own modules.
"""

from foldervault.documents.models import File, Folder, FolderNode
from foldervault.documents.tree import TreeStats, materialize_tree, materialize_tree_with_stats

__all__ = [
    "File",
    "Folder",
    "FolderNode",
    "TreeStats",
    "materialize_tree",
    "materialize_tree_with_stats",
]
