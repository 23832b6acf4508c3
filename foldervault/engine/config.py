"""
FolderVault Configuration — Load and validate foldervault.yaml at startup.

Usage:
    from foldervault.engine.config import load_vault_config, get_vault_config
"""

from __future__ import annotations

from pathlib import Path
from typing import Dict, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from foldervault.engine.errors import VaultConfigError

CONFIG_FILENAME = "foldervault.yaml"


# ---------------------------------------------------------------------------
# Pydantic models for foldervault.yaml
# ---------------------------------------------------------------------------

class DatabaseConfig(BaseModel):
    url: str = "sqlite:///foldervault.db"
    pool_size: int = 10
    max_overflow: int = 20
    pool_timeout: int = 30
    pool_recycle: int = 1800
    pool_pre_ping: bool = True
    create_tables: bool = False


class BlobConfig(BaseModel):
    backend: str = "local"
    base_url: Optional[str] = None
    root: str = ".foldervault/blobs"
    timeout_seconds: float = 30.0
    connect_timeout_seconds: float = 10.0
    max_connections: int = 10
    headers: Dict[str, str] = Field(default_factory=dict)

    @field_validator("backend")
    @classmethod
    def validate_backend(cls, v: str) -> str:
        if v not in ("http", "local", "memory"):
            raise ValueError(f"blobs.backend must be http/local/memory, got '{v}'")
        return v

    @field_validator("timeout_seconds", "connect_timeout_seconds")
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("timeouts must be positive")
        return v


class ArchiveConfig(BaseModel):
    chunk_size: int = 64 * 1024
    read_timeout_seconds: float = 30.0
    compression: str = "deflated"

    @field_validator("compression")
    @classmethod
    def validate_compression(cls, v: str) -> str:
        if v not in ("deflated", "stored"):
            raise ValueError(f"archive.compression must be deflated/stored, got '{v}'")
        return v

    @field_validator("chunk_size")
    @classmethod
    def validate_chunk_size(cls, v: int) -> int:
        if v < 1024:
            raise ValueError("archive.chunk_size must be at least 1024 bytes")
        return v


class LogAsyncQueueConfig(BaseModel):
    flush_interval_ms: int = 100
    flush_batch_size: int = 50
    max_queue_size: int = 10000


class LoggingConfig(BaseModel):
    level: str = "INFO"
    directory: str = ".foldervault/logs"
    async_queue: LogAsyncQueueConfig = LogAsyncQueueConfig()


class VaultConfig(BaseModel):
    """Root model for foldervault.yaml."""
    name: str = "FolderVault"
    environment: str = "dev"

    database: DatabaseConfig = DatabaseConfig()
    blobs: BlobConfig = BlobConfig()
    archive: ArchiveConfig = ArchiveConfig()
    logging: LoggingConfig = LoggingConfig()

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        if v not in ("dev", "staging", "prod"):
            raise ValueError(f"environment must be dev/staging/prod, got '{v}'")
        return v


# ---------------------------------------------------------------------------
# Config Loading Functions
# ---------------------------------------------------------------------------

_vault_config: Optional[VaultConfig] = None


def _find_project_root() -> Path:
    """Find the project root by looking for foldervault.yaml."""
    current = Path.cwd()
    for parent in [current, *current.parents]:
        if (parent / CONFIG_FILENAME).exists():
            return parent
    return current


def load_vault_config(config_path: Optional[str] = None) -> VaultConfig:
    """
    Load and validate foldervault.yaml.

    Args:
        config_path: Explicit path to foldervault.yaml. If None, auto-discovers.

    Returns:
        Validated VaultConfig instance (defaults when the file is missing).

    Raises:
        VaultConfigError if the file cannot be parsed or fails validation.
    """
    global _vault_config

    if config_path is None:
        config_path = str(_find_project_root() / CONFIG_FILENAME)

    path = Path(config_path)
    if not path.exists():
        _vault_config = VaultConfig()
        return _vault_config

    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise VaultConfigError(f"Cannot read config {path}: {e}", path=str(path)) from e

    if not isinstance(raw, dict):
        raise VaultConfigError(f"Config {path} must be a mapping", path=str(path))

    # A top-level "vault" key may carry name/environment
    vault_data = raw.get("vault", {}) or {}
    config_data = {
        "name": vault_data.get("name", raw.get("name", "FolderVault")),
        "environment": vault_data.get("environment", raw.get("environment", "dev")),
        "database": raw.get("database", {}) or {},
        "blobs": raw.get("blobs", {}) or {},
        "archive": raw.get("archive", {}) or {},
        "logging": raw.get("logging", {}) or {},
    }

    try:
        _vault_config = VaultConfig(**config_data)
    except ValidationError as e:
        raise VaultConfigError(
            f"Invalid config {path}: {e.error_count()} error(s)",
            path=str(path),
            errors=e.errors(),
        ) from e
    return _vault_config


def get_vault_config() -> VaultConfig:
    """Get the currently loaded config, loading if necessary."""
    global _vault_config
    if _vault_config is None:
        _vault_config = load_vault_config()
    return _vault_config


def get_environment() -> str:
    """Get the current environment."""
    return get_vault_config().environment
