"""
FolderVault Folder & File Models — Pydantic records handed between components.

Folder: Hierarchical container; parent_id None means root-level.
File: Metadata for one blob; content lives behind storage_locator.
FolderNode: Folder plus the derived ``children`` / ``files`` view fields,
rebuilt on every materialization and never persisted.
"""

from __future__ import annotations

import os
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, ValidationError

from foldervault.engine.errors import VaultValidationError

MAX_NAME_LENGTH = 255
MAX_TYPE_LENGTH = 32
_FORBIDDEN_NAME_CHARS = ("/", "\\", "\x00")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    """Generate a stable, opaque record identifier."""
    return uuid.uuid4().hex


def derive_file_type(name: str) -> str:
    """
    Derive a file's type from its name: the lower-cased extension without
    the dot, or "" when there is none. ".bashrc" has no extension, and a
    suffix longer than MAX_TYPE_LENGTH is not treated as one.
    """
    _, ext = os.path.splitext(name)
    ext = ext[1:].lower()
    return ext if len(ext) <= MAX_TYPE_LENGTH else ""


def check_entry_name(name: str, kind: str = "name") -> str:
    """
    Validate a folder or file display name and return it stripped.

    Raises VaultValidationError for empty names, names over 255 chars,
    "." / "..", and names containing path separators or NUL.
    """
    if not isinstance(name, str):
        raise VaultValidationError(f"{kind} must be a string", field=kind)
    cleaned = name.strip()
    errors = []
    if not cleaned:
        errors.append("must not be empty")
    if len(cleaned) > MAX_NAME_LENGTH:
        errors.append(f"must be at most {MAX_NAME_LENGTH} characters")
    if cleaned in (".", ".."):
        errors.append("must not be '.' or '..'")
    if any(c in cleaned for c in _FORBIDDEN_NAME_CHARS):
        errors.append("must not contain '/', '\\' or NUL")
    if errors:
        raise VaultValidationError(
            f"Invalid {kind} {name!r}: {'; '.join(errors)}",
            field=kind,
            validation_errors=[{"field": kind, "error": e} for e in errors],
        )
    return cleaned


# ---------------------------------------------------------------------------
# Folder record
# ---------------------------------------------------------------------------

class Folder(BaseModel):
    """Folder metadata. parent_id None means the folder is root-level."""

    id: str = Field(default_factory=new_id, description="Unique, stable identifier")
    namespace: str = Field(default="default", description="Listing scope, e.g. an account")
    name: str = Field(max_length=MAX_NAME_LENGTH, description="Display name (mutable)")
    parent_id: Optional[str] = Field(default=None, description="Parent folder id")
    created_at: datetime = Field(default_factory=utcnow)
    modified_at: datetime = Field(default_factory=utcnow)


# ---------------------------------------------------------------------------
# File record
# ---------------------------------------------------------------------------

class File(BaseModel):
    """
    File metadata. ``type`` is derived from the extension at creation and
    stored; renames never re-derive it.
    """

    id: str = Field(default_factory=new_id, description="Unique, stable identifier")
    namespace: str = Field(default="default")
    name: str = Field(max_length=MAX_NAME_LENGTH, description="Display name (mutable)")
    type: str = Field(default="", max_length=MAX_TYPE_LENGTH, description="Extension captured at creation")
    size: int = Field(default=0, ge=0, description="Size in bytes")
    folder_id: str = Field(description="Owning folder id")
    storage_locator: str = Field(description="Opaque blob reference")
    created_at: datetime = Field(default_factory=utcnow)
    modified_at: datetime = Field(default_factory=utcnow)

    @classmethod
    def create(cls, name: str, folder_id: str, storage_locator: str, **fields: Any) -> "File":
        """
        Build a new File, deriving ``type`` from the name.

        Raises VaultValidationError when the fields do not form a valid record.
        """
        fields.setdefault("type", derive_file_type(name))
        try:
            return cls(name=name, folder_id=folder_id, storage_locator=storage_locator, **fields)
        except ValidationError as e:
            raise VaultValidationError(
                f"Invalid file record for {name!r}",
                file_id=fields.get("id"),
                validation_errors=[
                    {"field": ".".join(str(p) for p in err["loc"]), "error": err["msg"]}
                    for err in e.errors()
                ],
            ) from e


# ---------------------------------------------------------------------------
# Tree view
# ---------------------------------------------------------------------------

class FolderNode(Folder):
    """A Folder carrying its materialized child folders and direct files."""

    children: List["FolderNode"] = Field(default_factory=list)
    files: List[File] = Field(default_factory=list)

    @classmethod
    def from_folder(cls, folder: Folder) -> "FolderNode":
        return cls(**folder.model_dump(exclude={"children", "files"}))

    def to_dict(self) -> Dict[str, Any]:
        """
        Serialize the subtree to JSON-compatible dicts.

        Iterative, so deep trees do not hit the recursion limit.
        """
        def shallow(node: "FolderNode") -> Dict[str, Any]:
            d = node.model_dump(mode="json", exclude={"children", "files"})
            d["files"] = [f.model_dump(mode="json") for f in node.files]
            d["children"] = []
            return d

        root = shallow(self)
        stack = [(self, root)]
        while stack:
            node, out = stack.pop()
            for child in node.children:
                child_out = shallow(child)
                out["children"].append(child_out)
                stack.append((child, child_out))
        return root
