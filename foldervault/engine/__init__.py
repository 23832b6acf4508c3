"""FolderVault Engine — Errors, configuration, structured operation logging."""

from foldervault.engine.errors import (  # noqa: F401
    ArchiveStreamError,
    NothingToArchiveError,
    NotFoundError,
    PartialFailureError,
    UpstreamFailureError,
    VaultConfigError,
    VaultError,
    VaultTimeoutError,
    VaultValidationError,
)

__all__ = [
    "VaultError",
    "NotFoundError",
    "VaultValidationError",
    "NothingToArchiveError",
    "UpstreamFailureError",
    "VaultTimeoutError",
    "ArchiveStreamError",
    "PartialFailureError",
    "VaultConfigError",
]
