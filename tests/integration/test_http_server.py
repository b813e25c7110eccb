"""
Integration tests for the HTTP API.

Runs the aiohttp application against an in-memory store.

Tests cover:
- Routing and method dispatch
- Identity resolution (dev mode and bearer tokens)
- Error status mapping
- CORS headers
- Server lifecycle
"""

import aiohttp
import pytest
from aiohttp import test_utils

from dbaas.simplyput_server.api import HttpServer, create_http_app
from dbaas.simplyput_server.config import HttpConfig
from dbaas.simplyput_server.documents import DocumentService
from dbaas.simplyput_server.errors import AuthError, BackendError
from dbaas.simplyput_server.store import InMemoryPropertyStore


class StaticProvider:
    """Identity provider with a fixed token table."""

    def __init__(self, identities):
        self.identities = identities

    async def resolve(self, token: str) -> str:
        if token not in self.identities:
            raise AuthError("invalid auth")
        return self.identities[token]


class BrokenStore(InMemoryPropertyStore):
    """Store whose writes fail."""

    def __init__(self, error: Exception) -> None:
        super().__init__()
        self.error = error

    async def put(self, storage_kind, entity_id, properties):
        raise self.error


@pytest.fixture
async def store():
    store = InMemoryPropertyStore()
    await store.connect()
    yield store
    await store.close()


@pytest.fixture
async def client(store):
    """Dev-mode client; pass ?user_id= to choose the caller."""
    app = create_http_app(DocumentService(store), None, dev_mode=True)
    async with test_utils.TestClient(test_utils.TestServer(app)) as client:
        yield client


@pytest.fixture
async def token_client(store):
    """Client that authenticates with bearer tokens."""
    provider = StaticProvider({"alice-token": "alice", "bob-token": "bob"})
    config = HttpConfig(cors_origins=("https://app.example",))
    app = create_http_app(DocumentService(store), provider, config=config)
    async with test_utils.TestClient(test_utils.TestServer(app)) as client:
        yield client


def bearer(token):
    return {"Authorization": f"Bearer {token}"}


class TestDocumentRoutes:
    """CRUD over HTTP."""

    @pytest.mark.asyncio
    async def test_insert(self, client):
        resp = await client.post("/contact?user_id=u1", json={"name": "Alice", "tags": ["a", "b"]})

        assert resp.status == 200
        body = await resp.json()
        assert isinstance(body["_id"], int)
        assert isinstance(body["_created"], int)
        assert body["name"] == "Alice"
        assert body["tags"] == ["a", "b"]
        assert body["_kind"] == "contact"

    @pytest.mark.asyncio
    async def test_get(self, client):
        created = await (await client.post("/contact?user_id=u1", json={"name": "Alice"})).json()

        resp = await client.get(f"/contact/{created['_id']}?user_id=u1")

        assert resp.status == 200
        assert await resp.json() == created

    @pytest.mark.asyncio
    async def test_update_replaces(self, client):
        created = await (
            await client.post("/contact?user_id=u1", json={"name": "Alice", "tags": ["a", "b"]})
        ).json()
        path = f"/contact/{created['_id']}?user_id=u1"

        resp = await client.post(path, json={"name": "Bob"})
        assert resp.status == 200

        fetched = await (await client.get(path)).json()
        assert fetched["name"] == "Bob"
        assert "tags" not in fetched
        assert fetched["_created"] == created["_created"]
        assert "_updated" in fetched

    @pytest.mark.asyncio
    async def test_delete(self, client):
        created = await (await client.post("/contact?user_id=u1", json={"name": "Alice"})).json()
        path = f"/contact/{created['_id']}?user_id=u1"

        resp = await client.delete(path)

        assert resp.status == 200
        assert await resp.text() == ""
        assert (await client.get(path)).status == 404

    @pytest.mark.asyncio
    async def test_list_pages(self, client):
        for name in ("a", "b", "c"):
            await client.post("/item?user_id=u1", json={"name": name})

        names = []
        token = ""
        for _ in range(3):
            resp = await client.get(
                "/item", params={"user_id": "u1", "limit": "1", "start": token}
            )
            assert resp.status == 200
            body = await resp.json()
            assert set(body) == {"items", "nextStartToken"}
            names.extend(item["name"] for item in body["items"])
            token = body["nextStartToken"]

        assert names == ["a", "b", "c"]

    @pytest.mark.asyncio
    async def test_list_filter_and_sort(self, client):
        for name, city in (("a", "X"), ("b", "Y"), ("c", "X")):
            await client.post("/item?user_id=u1", json={"name": name, "city": city})

        resp = await client.get(
            "/item",
            params=[("user_id", "u1"), ("where", "city=X"), ("sort", "-name")],
        )

        body = await resp.json()
        assert [item["name"] for item in body["items"]] == ["c", "a"]


class TestErrors:
    """Error status mapping."""

    @pytest.mark.asyncio
    async def test_not_found(self, client):
        resp = await client.get("/contact/999?user_id=u1")

        assert resp.status == 404
        body = await resp.json()
        assert body["error_code"] == "NOT_FOUND"
        assert "error" in body

    @pytest.mark.asyncio
    async def test_update_missing_is_not_found(self, client):
        resp = await client.post("/contact/999?user_id=u1", json={"name": "Bob"})

        assert resp.status == 404

    @pytest.mark.asyncio
    @pytest.mark.parametrize("path", ["/", "/contact/abc", "/contact/1/extra", "/contact/"])
    async def test_bad_path(self, client, path):
        resp = await client.get(path, params={"user_id": "u1"})

        assert resp.status == 400
        assert (await resp.json())["error_code"] == "INVALID_PATH"

    @pytest.mark.asyncio
    async def test_bad_query(self, client):
        resp = await client.get("/contact", params={"user_id": "u1", "limit": "many"})

        assert resp.status == 400
        assert (await resp.json())["error_code"] == "INVALID_QUERY"

    @pytest.mark.asyncio
    async def test_limit_beyond_int64(self, client):
        resp = await client.get("/contact", params={"user_id": "u1", "limit": "1" + "0" * 30})

        assert resp.status == 400
        assert (await resp.json())["error_code"] == "INVALID_QUERY"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "method,path",
        [("PUT", "/contact/1"), ("PATCH", "/contact"), ("DELETE", "/contact"), ("PUT", "/contact")],
    )
    async def test_unsupported_method(self, client, method, path):
        resp = await client.request(method, path, params={"user_id": "u1"})

        assert resp.status == 405
        assert (await resp.json())["error_code"] == "UNSUPPORTED_METHOD"

    @pytest.mark.asyncio
    async def test_missing_user_id_in_dev_mode(self, client):
        resp = await client.get("/contact")

        assert resp.status == 401

    @pytest.mark.asyncio
    async def test_invalid_body_is_server_error(self, client):
        resp = await client.post("/contact?user_id=u1", data=b"[1, 2, 3]")

        assert resp.status == 500
        assert (await resp.json())["error_code"] == "ENCODING_ERROR"

    @pytest.mark.asyncio
    async def test_backend_failure(self):
        store = BrokenStore(BackendError("disk full"))
        await store.connect()
        app = create_http_app(DocumentService(store), None, dev_mode=True)

        async with test_utils.TestClient(test_utils.TestServer(app)) as client:
            resp = await client.post("/contact?user_id=u1", json={"a": 1})

            assert resp.status == 500
            assert (await resp.json())["error_code"] == "BACKEND_ERROR"

    @pytest.mark.asyncio
    async def test_unexpected_failure(self):
        store = BrokenStore(RuntimeError("boom"))
        await store.connect()
        app = create_http_app(DocumentService(store), None, dev_mode=True)

        async with test_utils.TestClient(test_utils.TestServer(app)) as client:
            resp = await client.post("/contact?user_id=u1", json={"a": 1})

            assert resp.status == 500
            assert (await resp.json())["error_code"] == "INTERNAL"


class TestBearerAuth:
    """Token-based identity."""

    @pytest.mark.asyncio
    async def test_requires_token(self, token_client):
        resp = await token_client.get("/contact")

        assert resp.status == 401
        assert (await resp.json())["error_code"] == "UNAUTHORIZED"

    @pytest.mark.asyncio
    async def test_rejects_unknown_token(self, token_client):
        resp = await token_client.get("/contact", headers=bearer("stolen"))

        assert resp.status == 401

    @pytest.mark.asyncio
    async def test_user_id_does_not_bypass(self, token_client):
        resp = await token_client.get("/contact?user_id=alice")

        assert resp.status == 401

    @pytest.mark.asyncio
    async def test_access_token_parameter(self, token_client):
        resp = await token_client.post("/note?access_token=alice-token", json={"t": "hi"})

        assert resp.status == 200

    @pytest.mark.asyncio
    async def test_callers_are_isolated(self, token_client):
        created = await (
            await token_client.post("/note", json={"t": "secret"}, headers=bearer("alice-token"))
        ).json()

        resp = await token_client.get(f"/note/{created['_id']}", headers=bearer("bob-token"))
        assert resp.status == 404

        listing = await (await token_client.get("/note", headers=bearer("bob-token"))).json()
        assert listing["items"] == []

        resp = await token_client.get(f"/note/{created['_id']}", headers=bearer("alice-token"))
        assert (await resp.json())["t"] == "secret"


class TestCors:
    """CORS headers."""

    @pytest.mark.asyncio
    async def test_preflight(self, token_client):
        resp = await token_client.options("/contact", headers={"Origin": "https://app.example"})

        assert resp.status == 200
        assert resp.headers["Access-Control-Allow-Origin"] == "https://app.example"
        assert "DELETE" in resp.headers["Access-Control-Allow-Methods"]

    @pytest.mark.asyncio
    async def test_error_responses_carry_headers(self, client):
        resp = await client.get("/contact/999?user_id=u1", headers={"Origin": "https://x.example"})

        assert resp.status == 404
        assert resp.headers["Access-Control-Allow-Origin"] == "https://x.example"

    @pytest.mark.asyncio
    async def test_unlisted_origin(self, token_client):
        resp = await token_client.options("/contact", headers={"Origin": "https://evil.example"})

        assert "Access-Control-Allow-Origin" not in resp.headers


class TestHttpServer:
    """HttpServer lifecycle."""

    @pytest.mark.asyncio
    async def test_start_serve_stop(self, store):
        app = create_http_app(DocumentService(store), None, dev_mode=True)
        port = test_utils.unused_port()
        server = HttpServer(app, host="127.0.0.1", port=port)

        await server.start()
        try:
            assert server.is_running
            async with aiohttp.ClientSession() as session:
                async with session.post(
                    f"http://127.0.0.1:{port}/contact?user_id=u1", json={"a": 1}
                ) as resp:
                    assert resp.status == 200
                    assert (await resp.json())["a"] == 1
        finally:
            await server.stop()

        assert not server.is_running
