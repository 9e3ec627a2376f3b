from __future__ import annotations

from dataclasses import dataclass

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer

from certconsole.core.security import TokenError, caller_identity
from certconsole.integrations.backend_client import ConsoleApiClient
from certconsole.services.dialogs import DialogRegistry
from certconsole.services.provider_config import ProviderConfigCache
from certconsole.services.purchase_flow import PurchaseFlow

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login", auto_error=False)


@dataclass(frozen=True)
class Caller:
    token: str
    owner: str


async def get_caller(token: str | None = Depends(oauth2_scheme)) -> Caller:
    if not token:
        raise HTTPException(status_code=401, detail="Missing bearer token")

    try:
        owner = caller_identity(token)
    except TokenError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
        )
    return Caller(token=token, owner=owner)


def get_api_client(request: Request, caller: Caller = Depends(get_caller)) -> ConsoleApiClient:
    # tests swap the transport through app.state
    transport = getattr(request.app.state, "backend_transport", None)
    return ConsoleApiClient(caller.token, transport=transport)


def get_registry(request: Request) -> DialogRegistry:
    return request.app.state.dialogs


def get_provider_config_cache(request: Request) -> ProviderConfigCache:
    return request.app.state.provider_config


def get_flow(flow: str, request: Request) -> PurchaseFlow:
    flows: dict[str, PurchaseFlow] = request.app.state.flows
    found = flows.get(flow)
    if found is None:
        raise HTTPException(status_code=404, detail=f"Unknown purchase flow: {flow}")
    return found
