import json

import httpx
import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from pagechat.config import get_settings
from pagechat.dependencies import get_config_store, get_http_client
from pagechat.models.schemas import ChatRequest
from pagechat.routers import chat, config, health, providers
from pagechat.services.config_store import ConfigStore
from pagechat.services.llm_router import LLMRouter

CHAT_REQUEST = {
    "title": "Sourdough",
    "url": "https://example.com/sourdough",
    "text": "Mix flour and water, wait a week.",
    "question": "How long does the starter take?",
}

OPENAI_BODY = (
    b'data: {"choices":[{"delta":{"role":"assistant"}}]}\n\n'
    b'data: {"choices":[{"delta":{"content":"About"}}]}\n\n'
    b'data: {"choices":[{"delta":{"content":" a week."}}]}\n\n'
    b"data: [DONE]\n\n"
)


def _create_test_app(settings, store, handler) -> tuple[FastAPI, list[httpx.Request]]:
    requests = []

    def record(request):
        requests.append(request)
        return handler(request)

    client = httpx.AsyncClient(transport=httpx.MockTransport(record))

    app = FastAPI()
    app.include_router(chat.router)
    app.include_router(config.router)
    app.include_router(providers.router)
    app.include_router(health.router)
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_config_store] = lambda: store
    app.dependency_overrides[get_http_client] = lambda: client
    return app, requests


def sse_data(response) -> list[str]:
    """The ``data:`` payloads of an SSE response body, in order."""
    return [
        line[len("data:"):].strip()
        for line in response.text.splitlines()
        if line.startswith("data:")
    ]


def stream_response(body: bytes, status_code: int = 200):
    return lambda request: httpx.Response(
        status_code, content=body, headers={"content-type": "text/event-stream"}
    )


@pytest.fixture
def make_app(test_settings, config_store):
    def _make(handler=None, store=None):
        return _create_test_app(
            test_settings, store or config_store, handler or stream_response(OPENAI_BODY)
        )

    return _make


class TestChatStream:
    def test_streams_tokens_then_done(self, make_app, config_store):
        config_store.set_active_provider("openai")
        app, requests = make_app()
        with TestClient(app) as client:
            response = client.post("/chat-stream", json=CHAT_REQUEST)
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        assert sse_data(response) == [
            json.dumps({"token": "About"}),
            json.dumps({"token": " a week."}),
            "[DONE]",
        ]
        assert len(requests) == 1
        assert str(requests[0].url) == "https://api.openai.com/v1/chat/completions"

    def test_request_provider_overrides_active(self, make_app):
        body = (
            b'data: {"candidates":[{"content":{"parts":[{"text":"Seven days"}]}}]}\n\n'
        )
        app, requests = make_app(stream_response(body))
        with TestClient(app) as client:
            response = client.post("/chat-stream", json={**CHAT_REQUEST, "provider": "gemini"})
        assert sse_data(response) == [json.dumps({"token": "Seven days"}), "[DONE]"]
        assert requests[0].url.params["alt"] == "sse"

    def test_history_is_forwarded(self, make_app, config_store):
        config_store.set_active_provider("openai")
        app, requests = make_app()
        history = [
            {"type": "user", "content": "What is this?"},
            {"type": "assistant", "content": "A bread recipe."},
        ]
        with TestClient(app) as client:
            client.post("/chat-stream", json={**CHAT_REQUEST, "history": history})
        messages = json.loads(requests[0].content)["messages"]
        assert [m["role"] for m in messages] == ["system", "user", "assistant", "user"]

    def test_provider_error_status_is_streamed(self, make_app, config_store):
        config_store.set_active_provider("anthropic")
        handler = stream_response(
            b'{"type":"error","error":{"type":"overloaded_error","message":"Overloaded"}}', 529
        )
        app, _ = make_app(handler)
        with TestClient(app) as client:
            response = client.post("/chat-stream", json=CHAT_REQUEST)
        assert response.status_code == 200
        data = sse_data(response)
        assert data == [json.dumps({"error": "anthropic server error: 529 (Overloaded)"})]

    def test_interrupted_stream_ends_with_error(self, make_app, config_store):
        config_store.set_active_provider("openai")

        class BrokenStream(httpx.AsyncByteStream):
            async def __aiter__(self):
                yield b'data: {"choices":[{"delta":{"content":"Half"}}]}\n\n'
                raise httpx.RemoteProtocolError("peer closed connection")

        app, _ = make_app(lambda request: httpx.Response(200, stream=BrokenStream()))
        with TestClient(app) as client:
            response = client.post("/chat-stream", json=CHAT_REQUEST)
        data = sse_data(response)
        assert data[0] == json.dumps({"token": "Half"})
        assert "error" in json.loads(data[1])
        assert len(data) == 2

    def test_missing_api_key_is_rejected_before_streaming(self, make_app, keyless_settings):
        store = ConfigStore(keyless_settings.config_path, keyless_settings)
        store.set_active_provider("openai")
        app, requests = make_app(store=store)
        with TestClient(app) as client:
            response = client.post("/chat-stream", json=CHAT_REQUEST)
        assert response.status_code == 400
        assert "API key not configured" in response.json()["detail"]
        assert requests == []

    def test_unknown_provider(self, make_app):
        app, requests = make_app()
        with TestClient(app) as client:
            response = client.post("/chat-stream", json={**CHAT_REQUEST, "provider": "mystery"})
        assert response.status_code == 400
        assert requests == []

    def test_unreachable_provider(self, make_app):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        app, _ = make_app(refuse)
        with TestClient(app) as client:
            response = client.post("/chat-stream", json=CHAT_REQUEST)
        assert response.status_code == 502
        assert "lmstudio" in response.json()["detail"]

    @pytest.mark.parametrize("missing", ["title", "url", "text", "question"])
    def test_missing_fields(self, make_app, missing):
        app, requests = make_app()
        payload = {k: v for k, v in CHAT_REQUEST.items() if k != missing}
        with TestClient(app) as client:
            response = client.post("/chat-stream", json=payload)
        assert response.status_code == 422
        assert requests == []

    def test_empty_question(self, make_app):
        app, _ = make_app()
        with TestClient(app) as client:
            response = client.post("/chat-stream", json={**CHAT_REQUEST, "question": ""})
        assert response.status_code == 422


class TestConfigEndpoints:
    def test_get_config_masks_keys(self, make_app):
        app, _ = make_app()
        with TestClient(app) as client:
            data = client.get("/config").json()
        assert data["active_provider"] == "lmstudio"
        assert data["providers"]["openai"]["api_key"] == "***"
        assert "sk-test-fake" not in json.dumps(data)

    def test_switch_active_provider(self, make_app, config_store):
        app, _ = make_app()
        with TestClient(app) as client:
            response = client.post("/config", json={"active_provider": "gemini"})
        assert response.status_code == 200
        assert response.json() == {"success": True, "active_provider": "gemini"}
        assert config_store.active_provider == "gemini"

    def test_invalid_active_provider(self, make_app):
        app, _ = make_app()
        with TestClient(app) as client:
            response = client.post("/config", json={"active_provider": "mystery"})
        assert response.status_code == 400
        assert response.json()["detail"] == "Invalid provider"

    def test_update_provider_settings(self, make_app, config_store):
        app, _ = make_app()
        with TestClient(app) as client:
            response = client.post(
                "/config", json={"provider": "openai", "model": "gpt-4o", "temperature": 0.5}
            )
        assert response.status_code == 200
        openai = config_store.snapshot("openai")
        assert openai.model == "gpt-4o"
        assert openai.temperature == 0.5

    def test_update_unknown_provider(self, make_app):
        app, _ = make_app()
        with TestClient(app) as client:
            response = client.post("/config", json={"provider": "mystery", "model": "x"})
        assert response.status_code == 400

    def test_update_with_invalid_value(self, make_app, config_store):
        app, _ = make_app()
        with TestClient(app) as client:
            response = client.post("/config", json={"provider": "openai", "temperature": 5})
        assert response.status_code == 400
        assert response.json()["detail"][0]["loc"] == ["temperature"]
        assert config_store.snapshot("openai").temperature == 0.1

    def test_update_with_unknown_key(self, make_app, config_store):
        app, _ = make_app()
        with TestClient(app) as client:
            response = client.post("/config", json={"provider": "openai", "maxTokens": 50})
        assert response.status_code == 400
        assert response.json()["detail"][0]["loc"] == ["maxTokens"]
        assert config_store.snapshot("openai").max_tokens == 1000

    def test_reset(self, make_app, config_store):
        config_store.set_active_provider("anthropic")
        app, _ = make_app()
        with TestClient(app) as client:
            response = client.post("/config/reset")
        assert response.json()["success"] is True
        assert config_store.active_provider == "lmstudio"


class TestProvidersEndpoint:
    def test_lists_providers(self, make_app):
        app, _ = make_app()
        with TestClient(app) as client:
            data = client.get("/providers").json()
        assert data["active"] == "lmstudio"
        assert data["available"] == ["lmstudio", "openai", "anthropic", "gemini"]
        assert data["providers"]["lmstudio"]["status"] == "local"
        assert data["providers"]["gemini"]["status"] == "configured"


class TestHealth:
    def test_local_provider_reachable(self, make_app):
        app, requests = make_app(lambda request: httpx.Response(200, json={"data": []}))
        with TestClient(app) as client:
            data = client.get("/health").json()
        assert data["status"] == "ok"
        assert data["active_provider"] == "lmstudio"
        assert data["provider_status"] == "healthy"
        assert requests[0].url.path == "/v1/models"

    def test_local_provider_error(self, make_app):
        app, _ = make_app(lambda request: httpx.Response(500))
        with TestClient(app) as client:
            assert client.get("/health").json()["provider_status"] == "error"

    def test_local_provider_unreachable(self, make_app):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        app, _ = make_app(refuse)
        with TestClient(app) as client:
            response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["provider_status"] == "unreachable"

    def test_hosted_provider_with_key(self, make_app, config_store):
        config_store.set_active_provider("anthropic")
        app, requests = make_app()
        with TestClient(app) as client:
            assert client.get("/health").json()["provider_status"] == "configured"
        assert requests == []

    def test_hosted_provider_without_key(self, make_app, keyless_settings):
        store = ConfigStore(keyless_settings.config_path, keyless_settings)
        store.set_active_provider("gemini")
        app, _ = make_app(store=store)
        with TestClient(app) as client:
            assert client.get("/health").json()["provider_status"] == "needs-key"


def test_root_lists_endpoints(config_store):
    from pagechat.main import app

    app.dependency_overrides[get_config_store] = lambda: config_store
    try:
        data = TestClient(app).get("/").json()
    finally:
        app.dependency_overrides.clear()
    assert data["active_provider"] == "lmstudio"
    assert "POST /chat-stream" in data["endpoints"]
    assert data["supported_providers"] == ["lmstudio", "openai", "anthropic", "gemini"]


@pytest.mark.asyncio
async def test_upstream_closed_when_stream_never_starts(test_settings, config_store):
    class TrackedStream(httpx.AsyncByteStream):
        closed = False

        async def __aiter__(self):
            yield OPENAI_BODY

        async def aclose(self):
            self.closed = True

    upstream = TrackedStream()
    transport = httpx.MockTransport(lambda request: httpx.Response(200, stream=upstream))
    async with httpx.AsyncClient(transport=transport) as client:
        llm_router = LLMRouter(test_settings, config_store, client)
        response = await chat.chat_stream(ChatRequest(**CHAT_REQUEST), llm_router=llm_router)
        assert not upstream.closed
        # Cleanup after the response, with the event generator never iterated
        await response.background()
    assert upstream.closed
