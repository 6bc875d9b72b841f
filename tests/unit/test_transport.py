"""
Unit tests for the HTTP transport and settings.

Tests cover:
- Request addressing and body
- Authorization headers
- API and connection error mapping
- Environment-driven settings
"""

import json

import httpx
import pytest

from sdk.datastore_sdk.config import Settings
from sdk.datastore_sdk.errors import ApiError, ConnectionError, DatastoreError
from sdk.datastore_sdk.transport import HttpTransport, Operation, Transport

LOOKUP = Operation("Datastore", "lookup")


def make_transport(handler, **settings):
    settings = Settings(**{"project_id": "settings-project", **settings})
    client = httpx.AsyncClient(
        base_url=settings.base_url,
        transport=httpx.MockTransport(handler),
    )
    return HttpTransport(settings, client=client), client


class TestHttpTransport:
    """Tests for HttpTransport.dispatch()."""

    def test_satisfies_protocol(self):
        transport, _ = make_transport(lambda request: httpx.Response(200, json={}))

        assert isinstance(transport, Transport)

    @pytest.mark.asyncio
    async def test_posts_to_project_method_url(self):
        """projectId moves from the body into the URL."""
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"found": []})

        transport, client = make_transport(handler)
        req_opts = {"projectId": "project-id", "keys": [{"path": [{"kind": "A", "id": "1"}]}]}

        response = await transport.dispatch(LOOKUP, req_opts)

        [request] = seen
        assert request.method == "POST"
        assert str(request.url) == "https://datastore.googleapis.com/v1/projects/project-id:lookup"
        assert json.loads(request.content) == {"keys": [{"path": [{"kind": "A", "id": "1"}]}]}
        assert response == {"found": []}

        # The caller's body is left as it was
        assert req_opts["projectId"] == "project-id"
        await client.aclose()

    @pytest.mark.asyncio
    async def test_falls_back_to_settings_project(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={})

        transport, client = make_transport(handler)

        await transport.dispatch(Operation("Datastore", "commit"), {})

        assert seen[0].url.path == "/v1/projects/settings-project:commit"
        await client.aclose()

    @pytest.mark.asyncio
    async def test_empty_response_body(self):
        transport, client = make_transport(lambda request: httpx.Response(200))

        assert await transport.dispatch(LOOKUP, {"projectId": "p"}) == {}
        await client.aclose()

    @pytest.mark.asyncio
    async def test_bearer_token(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={})

        transport, client = make_transport(handler, access_token="secret")

        await transport.dispatch(LOOKUP, {"projectId": "p"})

        assert seen[0].headers["Authorization"] == "Bearer secret"
        await client.aclose()

    @pytest.mark.asyncio
    async def test_no_token_for_emulator(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={})

        transport, client = make_transport(
            handler, access_token="secret", emulator_host="localhost:8081"
        )

        await transport.dispatch(LOOKUP, {"projectId": "p"})

        assert "Authorization" not in seen[0].headers
        assert str(seen[0].url) == "http://localhost:8081/v1/projects/p:lookup"
        await client.aclose()

    @pytest.mark.asyncio
    async def test_api_error(self):
        body = {"error": {"code": 400, "message": "Key path is empty.", "status": "INVALID_ARGUMENT"}}
        transport, client = make_transport(lambda request: httpx.Response(400, json=body))

        with pytest.raises(ApiError) as excinfo:
            await transport.dispatch(LOOKUP, {"projectId": "p"})

        error = excinfo.value
        assert error.message == "Key path is empty."
        assert error.code == "INVALID_ARGUMENT"
        assert error.status_code == 400
        assert error.response == body
        await client.aclose()

    @pytest.mark.asyncio
    async def test_api_error_without_json(self):
        transport, client = make_transport(lambda request: httpx.Response(502, text="Bad Gateway"))

        with pytest.raises(ApiError) as excinfo:
            await transport.dispatch(LOOKUP, {"projectId": "p"})

        assert excinfo.value.code == "API_ERROR"
        assert excinfo.value.message == "Bad Gateway"
        await client.aclose()

    @pytest.mark.asyncio
    async def test_connection_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        transport, client = make_transport(handler)

        with pytest.raises(ConnectionError) as excinfo:
            await transport.dispatch(LOOKUP, {"projectId": "p"})

        assert isinstance(excinfo.value, DatastoreError)
        assert excinfo.value.address == "https://datastore.googleapis.com"
        assert isinstance(excinfo.value.__cause__, httpx.ConnectError)
        await client.aclose()

    @pytest.mark.asyncio
    async def test_injected_client_not_closed(self):
        transport, client = make_transport(lambda request: httpx.Response(200, json={}))

        async with transport:
            pass

        assert not client.is_closed
        await client.aclose()


class TestSettings:
    """Tests for Settings."""

    @pytest.fixture(autouse=True)
    def clean_env(self, monkeypatch):
        for name in ("PROJECT_ID", "NAMESPACE", "EMULATOR_HOST", "API_ENDPOINT", "ACCESS_TOKEN"):
            monkeypatch.delenv(f"DATASTORE_{name}", raising=False)

    def test_defaults(self):
        settings = Settings()

        assert settings.project_id == ""
        assert settings.namespace is None
        assert settings.base_url == "https://datastore.googleapis.com"
        assert settings.stream_buffer_size == 1

    def test_from_environment(self, monkeypatch):
        monkeypatch.setenv("DATASTORE_PROJECT_ID", "env-project")
        monkeypatch.setenv("DATASTORE_NAMESPACE", "tenant-a")
        monkeypatch.setenv("DATASTORE_TIMEOUT", "5")

        settings = Settings()

        assert settings.project_id == "env-project"
        assert settings.namespace == "tenant-a"
        assert settings.timeout == 5.0

    def test_emulator_host_overrides_endpoint(self, monkeypatch):
        monkeypatch.setenv("DATASTORE_EMULATOR_HOST", "localhost:8081")

        assert Settings().base_url == "http://localhost:8081"

    def test_endpoint_trailing_slash(self):
        settings = Settings(api_endpoint="https://example.test/")

        assert settings.base_url == "https://example.test"
