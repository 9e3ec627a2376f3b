from __future__ import annotations

from fastapi import APIRouter, Depends

from certconsole.core.deps import Caller, get_caller, get_provider_config_cache
from certconsole.schemas.provider import ProviderPublicConfig
from certconsole.services.provider_config import ProviderConfigCache

router = APIRouter(prefix="/payments", tags=["Payments"])


@router.get("/provider-config", response_model=ProviderPublicConfig)
async def provider_config(
    cache: ProviderConfigCache = Depends(get_provider_config_cache),
    caller: Caller = Depends(get_caller),
) -> ProviderPublicConfig:
    return await cache.get_config()
