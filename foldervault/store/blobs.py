"""
Blob store adapters — HTTP object store (httpx) and local filesystem.

HttpBlobStore
    Locators are ``<base_url>/<key>`` URLs (or bare keys). GET is streamed,
    PUT uploads from an async iterator, DELETE removes. 404 → NotFoundError,
    any other non-2xx or transport error → UpstreamFailureError, httpx
    timeouts → VaultTimeoutError.

LocalBlobStore
    Locators are ``local://<key>`` (or bare keys) resolved under a root
    directory. Keys may not escape the root. File I/O runs on worker threads.
"""

from __future__ import annotations

import asyncio
import logging
import os
import uuid
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Dict, Optional
from urllib.parse import quote

import httpx

from foldervault.engine.errors import (
    NotFoundError,
    UpstreamFailureError,
    VaultTimeoutError,
    VaultValidationError,
)
from foldervault.store.base import DEFAULT_CHUNK_SIZE, BlobSource, iter_source
from foldervault.store.locators import check_key, parse_locator

logger = logging.getLogger("foldervault.store.blobs")


# ---------------------------------------------------------------------------
# HTTP object store
# ---------------------------------------------------------------------------

class HttpBlobStore:
    """
    Blob store behind a plain HTTP object API (S3-compatible presigned
    gateways, MinIO behind a proxy, WebDAV-style servers).

    One pooled httpx.AsyncClient per store, created on first use and
    closed by ``aclose()``.
    """

    name = "http"

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        connect_timeout: float = 10.0,
        max_connections: int = 10,
        headers: Optional[Dict[str, str]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if not base_url or "://" not in base_url:
            raise VaultValidationError(f"Blob base_url must be an absolute URL, got {base_url!r}")
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._connect_timeout = connect_timeout
        self._max_connections = max_connections
        self._headers = dict(headers or {})
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def base_url(self) -> str:
        return self._base_url

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            kwargs: Dict[str, Any] = {}
            if self._transport is not None:
                kwargs["transport"] = self._transport
            self._client = httpx.AsyncClient(
                headers=self._headers,
                limits=httpx.Limits(
                    max_connections=self._max_connections,
                    max_keepalive_connections=max(1, self._max_connections // 2),
                ),
                timeout=httpx.Timeout(self._timeout, connect=self._connect_timeout),
                follow_redirects=True,
                **kwargs,
            )
            logger.info(f"Created httpx client for blob store {self._base_url}")
        return self._client

    def make_locator(self, key: str) -> str:
        return f"{self._base_url}/{check_key(key)}"

    def _url(self, locator: str) -> str:
        if not isinstance(locator, str) or not locator.strip():
            raise VaultValidationError("Storage locator is empty", locator=locator)
        if "://" in locator:
            prefix = self._base_url + "/"
            if not locator.startswith(prefix):
                raise VaultValidationError(
                    f"Locator is outside blob store {self._base_url}", locator=locator
                )
            key = check_key(locator[len(prefix):], locator)
        else:
            key = check_key(locator)
        return f"{self._base_url}/{quote(key, safe='/')}"

    def _raise_for_status(self, response: httpx.Response, operation: str, locator: str) -> None:
        status = response.status_code
        if status == 404:
            raise NotFoundError(f"Blob not found: {locator}", locator=locator, backend=self.name)
        if status >= 400:
            raise UpstreamFailureError(
                f"Blob {operation} failed with HTTP {status}",
                locator=locator,
                backend=self.name,
                operation=operation,
                status_code=status,
            )

    def _translate(self, exc: httpx.HTTPError, operation: str, locator: str) -> UpstreamFailureError:
        if isinstance(exc, httpx.TimeoutException):
            return VaultTimeoutError(
                f"Blob {operation} timed out: {exc}",
                locator=locator,
                backend=self.name,
                operation=operation,
                timeout_seconds=self._timeout,
            )
        return UpstreamFailureError(
            f"Blob {operation} failed: {exc}",
            locator=locator,
            backend=self.name,
            operation=operation,
        )

    @asynccontextmanager
    async def open_read_stream(
        self, locator: str, chunk_size: int = DEFAULT_CHUNK_SIZE
    ) -> AsyncIterator[AsyncIterator[bytes]]:
        url = self._url(locator)
        client = self._get_client()
        try:
            request = client.build_request("GET", url)
            response = await client.send(request, stream=True)
        except httpx.HTTPError as e:
            raise self._translate(e, "open", locator) from e
        try:
            self._raise_for_status(response, "open", locator)
            yield self._iter_body(response, chunk_size, locator)
        finally:
            await response.aclose()

    async def _iter_body(
        self, response: httpx.Response, chunk_size: int, locator: str
    ) -> AsyncIterator[bytes]:
        try:
            async for chunk in response.aiter_bytes(chunk_size):
                yield chunk
        except httpx.HTTPError as e:
            raise self._translate(e, "read", locator) from e

    async def write(self, locator: str, data: BlobSource) -> int:
        url = self._url(locator)
        written = 0

        async def body() -> AsyncIterator[bytes]:
            nonlocal written
            async for chunk in iter_source(data):
                written += len(chunk)
                yield chunk

        try:
            response = await self._get_client().put(url, content=body())
        except httpx.HTTPError as e:
            raise self._translate(e, "write", locator) from e
        self._raise_for_status(response, "write", locator)
        return written

    async def delete(self, locator: str) -> None:
        url = self._url(locator)
        try:
            response = await self._get_client().delete(url)
        except httpx.HTTPError as e:
            raise self._translate(e, "delete", locator) from e
        self._raise_for_status(response, "delete", locator)

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
            logger.info(f"Closed httpx client for blob store {self._base_url}")


# ---------------------------------------------------------------------------
# Local filesystem
# ---------------------------------------------------------------------------

class LocalBlobStore:
    """Blob store rooted at a local directory."""

    name = "local"
    scheme = "local"

    def __init__(self, root: str):
        self._root = Path(root).resolve()

    @property
    def root(self) -> Path:
        return self._root

    def make_locator(self, key: str) -> str:
        return f"{self.scheme}://{check_key(key)}"

    def _path(self, locator: str) -> Path:
        _, key = parse_locator(locator, (self.scheme,))
        path = (self._root / key).resolve()
        if path != self._root and self._root not in path.parents:
            raise VaultValidationError("Locator resolves outside the blob root", locator=locator)
        return path

    def _upstream(self, exc: OSError, operation: str, locator: str) -> UpstreamFailureError:
        return UpstreamFailureError(
            f"Blob {operation} failed: {exc}",
            locator=locator,
            backend=self.name,
            operation=operation,
        )

    @asynccontextmanager
    async def open_read_stream(
        self, locator: str, chunk_size: int = DEFAULT_CHUNK_SIZE
    ) -> AsyncIterator[AsyncIterator[bytes]]:
        path = self._path(locator)
        try:
            fh = await asyncio.to_thread(open, path, "rb")
        except (FileNotFoundError, IsADirectoryError) as e:
            raise NotFoundError(f"Blob not found: {locator}", locator=locator, backend=self.name) from e
        except OSError as e:
            raise self._upstream(e, "open", locator) from e

        async def chunks() -> AsyncIterator[bytes]:
            while True:
                try:
                    chunk = await asyncio.to_thread(fh.read, chunk_size)
                except OSError as e:
                    raise self._upstream(e, "read", locator) from e
                if not chunk:
                    return
                yield chunk

        try:
            yield chunks()
        finally:
            fh.close()

    async def write(self, locator: str, data: BlobSource) -> int:
        path = self._path(locator)
        tmp = path.with_name(f".{path.name}.{uuid.uuid4().hex}.part")
        written = 0
        try:
            await asyncio.to_thread(path.parent.mkdir, parents=True, exist_ok=True)
            fh = await asyncio.to_thread(open, tmp, "wb")
            try:
                async for chunk in iter_source(data):
                    await asyncio.to_thread(fh.write, chunk)
                    written += len(chunk)
            finally:
                fh.close()
            await asyncio.to_thread(os.replace, tmp, path)
        except OSError as e:
            raise self._upstream(e, "write", locator) from e
        finally:
            # Gone after a successful replace; a leftover means the write failed
            tmp.unlink(missing_ok=True)
        return written

    async def delete(self, locator: str) -> None:
        path = self._path(locator)
        try:
            await asyncio.to_thread(path.unlink)
        except FileNotFoundError as e:
            raise NotFoundError(f"Blob not found: {locator}", locator=locator, backend=self.name) from e
        except OSError as e:
            raise self._upstream(e, "delete", locator) from e

    async def aclose(self) -> None:
        return None
