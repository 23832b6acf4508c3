"""
Storage locator parsing.

A locator is ``<scheme>://<key>`` or a bare ``<key>``. The scheme must be
one the blob back end understands; the key must be a relative, non-empty
path with no ``..`` segment, backslash or NUL. Anything else is a
VaultValidationError, raised before any I/O is attempted.
"""

from __future__ import annotations

from typing import Iterable, Optional, Tuple

from foldervault.engine.errors import VaultValidationError


def parse_locator(locator: str, schemes: Iterable[str]) -> Tuple[Optional[str], str]:
    """
    Split a locator into (scheme, key), validating both.

    Returns scheme None for bare keys.
    """
    if not isinstance(locator, str) or not locator.strip():
        raise VaultValidationError("Storage locator is empty", locator=locator)

    scheme: Optional[str] = None
    key = locator
    if "://" in locator:
        scheme, key = locator.split("://", 1)
        scheme = scheme.lower()
        allowed = tuple(schemes)
        if scheme not in allowed:
            raise VaultValidationError(
                f"Unsupported locator scheme '{scheme}' (expected one of {list(allowed)})",
                locator=locator,
            )

    return scheme, check_key(key, locator)


def check_key(key: str, locator: Optional[str] = None) -> str:
    """Validate a blob key and return it without leading/trailing slashes."""
    ref = locator if locator is not None else key
    if "\x00" in key or "\\" in key:
        raise VaultValidationError("Locator key contains an illegal character", locator=ref)
    if key.startswith("/"):
        raise VaultValidationError("Locator key must be relative", locator=ref)
    cleaned = key.strip("/")
    if not cleaned:
        raise VaultValidationError("Locator key is empty", locator=ref)
    if any(part in ("", ".", "..") for part in cleaned.split("/")):
        raise VaultValidationError("Locator key has an empty, '.' or '..' segment", locator=ref)
    return cleaned
