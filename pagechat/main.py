import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware

from pagechat.config import get_settings
from pagechat.dependencies import build_http_client, get_config_store
from pagechat.routers import chat, config, health, providers
from pagechat.services.config_store import ConfigStore

logger = logging.getLogger(__name__)

VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    logging.basicConfig(level=settings.log_level)

    store = get_config_store()
    app.state.http_client = build_http_client(settings)
    logger.info(
        "PageChat proxy started (active provider: %s, available: %s)",
        store.active_provider, ", ".join(store.config.providers),
    )

    yield

    await app.state.http_client.aclose()
    logger.info("PageChat proxy shutting down")


def create_app() -> FastAPI:
    settings = get_settings()
    app = FastAPI(
        title="PageChat API",
        description="Ask questions about web pages, answered by a configurable LLM",
        version=VERSION,
        lifespan=lifespan,
    )

    app.include_router(chat.router)
    app.include_router(config.router)
    app.include_router(providers.router)
    app.include_router(health.router)

    # The client runs inside arbitrary pages, so any origin is allowed by default
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.origins or ["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    return app


app = create_app()


@app.get("/")
async def read_root(store: ConfigStore = Depends(get_config_store)):
    return {
        "name": "PageChat LLM proxy",
        "version": VERSION,
        "active_provider": store.active_provider,
        "endpoints": {
            "POST /chat-stream": "Stream an answer about a page",
            "GET /config": "Current configuration (keys masked)",
            "POST /config": "Update configuration",
            "POST /config/reset": "Reset configuration to defaults",
            "GET /providers": "Provider status",
            "GET /health": "Health check",
        },
        "supported_providers": list(store.config.providers),
    }
