import logging

from fastapi import APIRouter, Depends, HTTPException
from pydantic import ValidationError

from pagechat.dependencies import get_config_store
from pagechat.models.schemas import ConfigUpdate, ConfigUpdateResponse, ResetResponse
from pagechat.services.config_store import ConfigStore

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/config", tags=["config"])


@router.get("")
async def get_config(store: ConfigStore = Depends(get_config_store)):
    """Current configuration with API keys masked."""
    return store.safe_config()


@router.post("", response_model=ConfigUpdateResponse)
async def update_config(
    body: ConfigUpdate,
    store: ConfigStore = Depends(get_config_store),
):
    if body.active_provider and not store.set_active_provider(body.active_provider):
        raise HTTPException(status_code=400, detail="Invalid provider")

    settings = body.model_extra or {}
    if body.provider and settings:
        try:
            updated = store.update_provider(body.provider, settings)
        except ValidationError as e:
            raise HTTPException(status_code=400, detail=e.errors(include_url=False, include_context=False))
        if not updated:
            raise HTTPException(status_code=400, detail="Invalid provider")

    return ConfigUpdateResponse(active_provider=store.active_provider)


@router.post("/reset", response_model=ResetResponse)
async def reset_config(store: ConfigStore = Depends(get_config_store)):
    store.reset_to_defaults()
    return ResetResponse()
