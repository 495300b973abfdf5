import httpx
import pytest

from pagechat.config import Settings
from pagechat.services.config_store import ConfigStore


@pytest.fixture
def test_settings(tmp_path):
    return Settings(
        _env_file=None,
        openai_api_key="sk-test-fake",
        anthropic_api_key="sk-ant-test-fake",
        gemini_api_key="fake-gemini-key",
        config_path=str(tmp_path / "config" / "llm-config.yaml"),
    )


@pytest.fixture
def keyless_settings(tmp_path):
    return Settings(
        _env_file=None,
        openai_api_key="",
        anthropic_api_key="",
        gemini_api_key="",
        config_path=str(tmp_path / "config" / "llm-config.yaml"),
    )


@pytest.fixture
def config_store(test_settings):
    return ConfigStore(test_settings.config_path, test_settings)


class ChunkedStream(httpx.AsyncByteStream):
    """Response body delivered in fixed chunks, optionally cut off by ``fail_with``."""

    def __init__(self, chunks: list[bytes], fail_with: Exception | None = None):
        self._chunks = chunks
        self._fail_with = fail_with
        self.reads = 0
        self.closed = False

    async def __aiter__(self):
        for chunk in self._chunks:
            self.reads += 1
            yield chunk
        if self._fail_with is not None:
            raise self._fail_with

    async def aclose(self):
        self.closed = True


@pytest.fixture
def make_response():
    """Build a streamed ``httpx.Response`` from raw chunks."""

    def _make(chunks, status_code=200, fail_with=None):
        stream = ChunkedStream(list(chunks), fail_with=fail_with)
        response = httpx.Response(
            status_code,
            headers={"content-type": "text/event-stream"},
            stream=stream,
            request=httpx.Request("POST", "https://llm.test/v1/stream"),
        )
        return response, stream

    return _make


@pytest.fixture(autouse=True)
def reset_sse_exit_event():
    """sse-starlette keeps a class-level exit event bound to the first event loop."""
    from sse_starlette import sse

    app_status = getattr(sse, "AppStatus", None)
    if app_status is not None and hasattr(app_status, "should_exit_event"):
        app_status.should_exit_event = None
    yield
