"""
Integration test fixtures: real SQLite metadata plus local-disk or HTTP blobs.

The HTTP back end talks to an in-process object server through
httpx.MockTransport, so no network is needed.
Mark with @pytest.mark.integration to skip in unit-only runs.

Run: pytest tests/integration/ -v -m integration
"""

from __future__ import annotations

import uuid
from typing import Dict, List, Set, Tuple

import httpx
import pytest
import pytest_asyncio

from foldervault.db.session import close_metadata_db, init_metadata_db
from foldervault.documents.service import FolderService
from foldervault.store.base import EntityStore
from foldervault.store.blobs import HttpBlobStore, LocalBlobStore
from foldervault.store.sql import SqlMetadataStore

BASE_URL = "https://objects.example.com/vault"


def pytest_configure(config):
    config.addinivalue_line("markers", "integration: multi-component workflows over real back ends")


class ObjectServer:
    """
    Dict-backed object API: GET / PUT / DELETE on <BASE_URL>/<key>.

    ``broken`` holds keys answered with HTTP 503 for every method.
    """

    def __init__(self):
        self.objects: Dict[str, bytes] = {}
        self.broken: Set[str] = set()
        self.requests: List[Tuple[str, str]] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        key = request.url.path[len("/vault/"):]
        self.requests.append((request.method, key))
        if key in self.broken:
            return httpx.Response(503)
        if request.method == "PUT":
            self.objects[key] = request.content
            return httpx.Response(201)
        if key not in self.objects:
            return httpx.Response(404)
        if request.method == "GET":
            return httpx.Response(200, content=self.objects[key])
        if request.method == "DELETE":
            del self.objects[key]
            return httpx.Response(204)
        return httpx.Response(405)


@pytest.fixture
def sql_metadata(tmp_path):
    name = f"it_{uuid.uuid4().hex[:8]}"
    factory = init_metadata_db(f"sqlite:///{tmp_path / 'vault.db'}", create_tables=True, name=name)
    yield SqlMetadataStore(factory)
    close_metadata_db(name)


@pytest.fixture
def object_server():
    return ObjectServer()


@pytest_asyncio.fixture
async def local_service(tmp_path, sql_metadata):
    store = EntityStore(sql_metadata, LocalBlobStore(str(tmp_path / "blobs")), blob_timeout=5.0)
    yield FolderService(store)
    await store.aclose()


@pytest_asyncio.fixture
async def http_service(sql_metadata, object_server):
    blobs = HttpBlobStore(BASE_URL, transport=httpx.MockTransport(object_server.handler))
    store = EntityStore(sql_metadata, blobs, blob_timeout=5.0)
    yield FolderService(store)
    await store.aclose()
