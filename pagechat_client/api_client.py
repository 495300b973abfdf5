import json
import os
from pathlib import Path
from typing import Iterator, Optional

import httpx
from dotenv import load_dotenv
from httpx_sse import connect_sse

load_dotenv(Path(__file__).parent.parent / ".env")

SERVER_URL = os.environ.get("PAGECHAT_SERVER_URL", "http://127.0.0.1:4000")

DONE_MARKER = "[DONE]"


class ChatStreamError(Exception):
    """The server reported an error in the middle of an answer."""


class PageChatClient:
    """Synchronous client for the PageChat proxy."""

    def __init__(
        self,
        base_url: str = SERVER_URL,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._transport = transport

    def _client(self, timeout: float) -> httpx.Client:
        return httpx.Client(timeout=timeout, transport=self._transport)

    # --- Streaming chat ---

    def stream_chat(
        self,
        title: str,
        url: str,
        text: str,
        question: str,
        history: Optional[list[dict]] = None,
        provider: Optional[str] = None,
    ) -> Iterator[str]:
        """Yield answer tokens until the server's done marker.

        Raises ``ChatStreamError`` if the stream ends with an error record.
        """
        payload = {
            "title": title,
            "url": url,
            "text": text,
            "question": question,
            "history": history or [],
            "provider": provider,
        }
        with self._client(300.0) as client:
            with connect_sse(
                client, "POST", f"{self.base_url}/chat-stream", json=payload,
            ) as event_source:
                event_source.response.raise_for_status()
                for sse in event_source.iter_sse():
                    if sse.data == DONE_MARKER:
                        return
                    try:
                        data = json.loads(sse.data) if sse.data else {}
                    except json.JSONDecodeError:
                        continue
                    if "error" in data:
                        raise ChatStreamError(data["error"])
                    if data.get("token"):
                        yield data["token"]

    def ask(self, title: str, url: str, text: str, question: str, **kwargs) -> str:
        """Collect a whole streamed answer into one string."""
        return "".join(self.stream_chat(title, url, text, question, **kwargs))

    # --- REST calls ---

    def get_config(self) -> dict:
        with self._client(10.0) as client:
            r = client.get(f"{self.base_url}/config")
            r.raise_for_status()
            return r.json()

    def update_config(
        self,
        active_provider: Optional[str] = None,
        provider: Optional[str] = None,
        **settings,
    ) -> dict:
        body = dict(settings)
        if active_provider:
            body["active_provider"] = active_provider
        if provider:
            body["provider"] = provider
        with self._client(10.0) as client:
            r = client.post(f"{self.base_url}/config", json=body)
            r.raise_for_status()
            return r.json()

    def reset_config(self) -> dict:
        with self._client(10.0) as client:
            r = client.post(f"{self.base_url}/config/reset")
            r.raise_for_status()
            return r.json()

    def list_providers(self) -> dict:
        with self._client(10.0) as client:
            r = client.get(f"{self.base_url}/providers")
            r.raise_for_status()
            return r.json()

    def health_check(self) -> dict:
        with self._client(5.0) as client:
            r = client.get(f"{self.base_url}/health")
            r.raise_for_status()
            return r.json()
