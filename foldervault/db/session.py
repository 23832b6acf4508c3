"""
FolderVault Database Session Management.

Single entry point for metadata DB initialisation plus a context manager
for transactional access. Uses the EngineRegistry for named engines.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Generator

from sqlalchemy.orm import Session, sessionmaker

from foldervault.db.base import Base, engine_registry

METADATA_ENGINE = "metadata"


def init_metadata_db(
    db_url: str,
    create_tables: bool = False,
    name: str = METADATA_ENGINE,
    pool_size: int = 10,
    max_overflow: int = 20,
    pool_timeout: int = 30,
    pool_recycle: int = 1800,
    pool_pre_ping: bool = True,
) -> sessionmaker:
    """
    Initialise the metadata database.

    1. Registers a named engine in the EngineRegistry.
    2. Optionally runs ``Base.metadata.create_all()`` (dev / ``foldervault init``
       only; production relies on external migrations).
    3. Returns the session factory bound to the engine.
    """
    # Importing the rows registers their tables on Base.metadata
    from foldervault.db import models  # noqa: F401

    engine = engine_registry.register(
        name, db_url,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_timeout=pool_timeout,
        pool_recycle=pool_recycle,
        pool_pre_ping=pool_pre_ping,
    )

    if create_tables:
        Base.metadata.create_all(engine)

    return engine_registry.get_session_factory(name)


@contextmanager
def session_scope(factory: sessionmaker) -> Generator[Session, None, None]:
    """
    Context manager for sessions with auto-commit/rollback.

    Usage:
        with session_scope(factory) as session:
            row = session.get(FolderRow, folder_id)
    """
    session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def close_metadata_db(name: str = METADATA_ENGINE) -> None:
    """Dispose the named engine. Used during shutdown and in tests."""
    engine_registry.dispose(name)
