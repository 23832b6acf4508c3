"""FolderVault Database — SQLAlchemy base, metadata rows, session management."""
