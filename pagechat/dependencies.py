from functools import lru_cache

import httpx
from fastapi import Depends, Request

from pagechat.config import Settings, get_settings
from pagechat.services.config_store import ConfigStore
from pagechat.services.llm_router import LLMRouter


def build_http_client(settings: Settings) -> httpx.AsyncClient:
    """Outbound client shared by all requests. Timeouts live here, not in the core."""
    return httpx.AsyncClient(
        timeout=httpx.Timeout(settings.request_timeout, connect=settings.connect_timeout)
    )


@lru_cache
def get_config_store() -> ConfigStore:
    settings = get_settings()
    return ConfigStore(settings.config_path, settings)


def get_http_client(request: Request) -> httpx.AsyncClient:
    return request.app.state.http_client


def get_llm_router(
    settings: Settings = Depends(get_settings),
    store: ConfigStore = Depends(get_config_store),
    client: httpx.AsyncClient = Depends(get_http_client),
) -> LLMRouter:
    return LLMRouter(settings, store, client)
