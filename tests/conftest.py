"""
Shared pytest fixtures for the Navigator Vault test suite.

Key derivation runs with a low PBKDF2 work factor and sessions use a
manually advanced clock, so expiry can be tested without sleeping.
"""
import asyncio

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

import orjson

from navigator_vault import (
    MemoryCredentialStore,
    PinManager,
    Vault,
    VaultConfig,
    VaultItemStore,
    VaultSession,
)
from navigator_vault.storages import MemoryDocumentStore

TEST_PIN = "1234"
OWNER = "user-1"


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingStore(MemoryDocumentStore):
    """Memory store that records every call made to it."""

    def __init__(self):
        super().__init__()
        self.calls: list[str] = []

    async def put_document(self, collection, document_id, fields):
        self.calls.append("put_document")
        return await super().put_document(collection, document_id, fields)

    async def get_document(self, collection, document_id):
        self.calls.append("get_document")
        return await super().get_document(collection, document_id)

    async def list_documents(self, collection, order_by, direction="desc"):
        self.calls.append("list_documents")
        return await super().list_documents(collection, order_by, direction)

    async def delete_document(self, collection, document_id):
        self.calls.append("delete_document")
        return await super().delete_document(collection, document_id)

    async def update_fields(self, collection, document_id, fields):
        self.calls.append("update_fields")
        return await super().update_fields(collection, document_id, fields)


class FailingStore(MemoryDocumentStore):
    """Memory store whose writes fail like a dropped connection."""

    async def put_document(self, collection, document_id, fields):
        raise ConnectionError("network unreachable")

    async def update_fields(self, collection, document_id, fields):
        raise ConnectionError("network unreachable")


@pytest.fixture
def config():
    return VaultConfig(pbkdf2_iterations=1000, session_ttl=900)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def session(config, clock):
    return VaultSession(ttl=config.session_ttl, clock=clock)


@pytest.fixture
def unlocked_session(session):
    session.start()
    return session


@pytest.fixture
def doc_store():
    return RecordingStore()


@pytest.fixture
def items(doc_store, unlocked_session, config):
    return VaultItemStore(doc_store, unlocked_session, config)


@pytest.fixture
def credentials():
    return MemoryCredentialStore()


@pytest.fixture
def pins(credentials, session, config):
    return PinManager(credentials, session, config)


@pytest.fixture
def vault(doc_store, credentials, config, session):
    return Vault(doc_store, credentials, config=config, session=session)


# --- HTTP document store server ---

def make_document_app(backend: MemoryDocumentStore) -> web.Application:
    """Small JSON REST app exposing a MemoryDocumentStore."""

    def _json(data, status=200):
        return web.Response(
            body=orjson.dumps(data), status=status,
            content_type="application/json",
        )

    async def collection_handler(request: web.Request) -> web.Response:
        collection = request.match_info["collection"]
        if request.method == "POST":
            fields = orjson.loads(await request.read())
            doc_id = await backend.put_document(collection, None, fields)
            return _json({"id": doc_id}, status=201)
        try:
            docs = await backend.list_documents(
                collection,
                request.query.get("orderBy", "updatedAt"),
                request.query.get("direction", "desc"),
            )
        except ValueError as err:
            return _json({"error": str(err)}, status=400)
        return _json({
            "documents": [{"id": i, "fields": f} for i, f in docs]
        })

    async def document_handler(request: web.Request) -> web.Response:
        collection, _, doc_id = request.match_info["path"].rpartition("/")
        if request.method == "GET":
            fields = await backend.get_document(collection, doc_id)
            if fields is None:
                return _json({"error": "not found"}, status=404)
            return _json(fields)
        if request.method == "PUT":
            fields = orjson.loads(await request.read())
            await backend.put_document(collection, doc_id, fields)
            return _json({"id": doc_id})
        if request.method == "PATCH":
            fields = orjson.loads(await request.read())
            try:
                await backend.update_fields(collection, doc_id, fields)
            except KeyError:
                return _json({"error": "not found"}, status=404)
            return _json({"id": doc_id})
        await backend.delete_document(collection, doc_id)
        return web.Response(status=204)

    async def broken_handler(request: web.Request) -> web.Response:
        return _json({"error": "boom"}, status=500)

    async def slow_handler(request: web.Request) -> web.Response:
        await asyncio.sleep(1)
        return _json({})

    app = web.Application()
    # collections used in tests have the shape vault/{owner}/items
    app.router.add_route(
        "*", r"/{collection:vault/[^/]+/items}", collection_handler
    )
    app.router.add_route("*", r"/{path:vault/[^/]+/items/[^/]+}", document_handler)
    app.router.add_route("*", "/broken/{tail:.*}", broken_handler)
    app.router.add_route("*", "/slow/{tail:.*}", slow_handler)
    return app


@pytest.fixture
def http_backend():
    return MemoryDocumentStore()


@pytest.fixture
async def document_server(http_backend):
    server = TestServer(make_document_app(http_backend))
    await server.start_server()
    yield server
    await server.close()


@pytest.fixture
def failing_store():
    return FailingStore()


@pytest.fixture
def pin():
    return TEST_PIN


@pytest.fixture
def owner():
    return OWNER
