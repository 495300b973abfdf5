from fastapi import APIRouter, Depends

from pagechat.dependencies import get_config_store
from pagechat.models.schemas import ProviderStatusResponse
from pagechat.services.config_store import ConfigStore

router = APIRouter(tags=["providers"])


@router.get("/providers", response_model=ProviderStatusResponse)
async def list_providers(store: ConfigStore = Depends(get_config_store)):
    return store.provider_status()
