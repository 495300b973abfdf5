import logging
from datetime import datetime, timezone

import httpx
from fastapi import APIRouter, Depends

from pagechat.dependencies import get_config_store, get_http_client
from pagechat.models.schemas import HealthResponse
from pagechat.services.config_store import LOCAL_PROVIDERS, ConfigStore

logger = logging.getLogger(__name__)
router = APIRouter(tags=["health"])

PROBE_TIMEOUT = 5.0


@router.get("/health", response_model=HealthResponse)
async def health_check(
    store: ConfigStore = Depends(get_config_store),
    client: httpx.AsyncClient = Depends(get_http_client),
):
    """Service health plus the state of the active provider.

    Local providers are probed with ``GET {base_url}/models``; hosted ones
    only report whether a key is configured.
    """
    active = store.active_provider
    config = store.get_active_provider()

    if active in LOCAL_PROVIDERS:
        try:
            r = await client.get(f"{config.base_url}/models", timeout=PROBE_TIMEOUT)
            provider_status = "healthy" if r.is_success else "error"
        except httpx.RequestError as exc:
            logger.warning("Health check: %s unreachable (%s)", active, exc)
            provider_status = "unreachable"
    else:
        provider_status = "configured" if config.api_key else "needs-key"

    return HealthResponse(
        timestamp=datetime.now(timezone.utc).isoformat(),
        active_provider=active,
        provider_status=provider_status,
    )
