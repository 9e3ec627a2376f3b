from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from certconsole.core.config import settings
from certconsole.core.db import SessionLocal, init_models
from certconsole.core.errors import PaymentFlowError, http_status_for
from certconsole.core.logging_setup import configure_logging
from certconsole.integrations.backend_client import ConsoleApiClient
from certconsole.integrations.stripe_client import StripeCardConfirmer
from certconsole.routers.payment_attempts import router as payment_attempts_router
from certconsole.routers.payments import router as payments_router
from certconsole.routers.purchases import router as purchases_router
from certconsole.services.attempts import AttemptJournal, SqlAttemptJournal
from certconsole.services.dialogs import DialogNotFoundError, DialogRegistry
from certconsole.services.flows import FLOW_SPECS
from certconsole.services.provider import CardConfirmer, PaymentProviderAdapter
from certconsole.services.provider_config import ProviderConfigCache, backend_config_fetcher
from certconsole.services.purchase_flow import build_flows

logger = logging.getLogger(__name__)

_DEFAULT_JOURNAL = object()


async def payment_error_handler(request: Request, exc: PaymentFlowError) -> JSONResponse:
    status_code = 404 if isinstance(exc, DialogNotFoundError) else http_status_for(exc)
    return JSONResponse(status_code=status_code, content={"detail": exc.to_dict()})


def create_app(
    *,
    provider_config: ProviderConfigCache | None = None,
    confirmer: CardConfirmer | None = None,
    journal: AttemptJournal | None | object = _DEFAULT_JOURNAL,
    backend_transport: httpx.AsyncBaseTransport | None = None,
    init_db: bool = True,
) -> FastAPI:
    if provider_config is None:
        service_client = ConsoleApiClient(settings.BACKEND_SERVICE_TOKEN, transport=backend_transport)
        provider_config = ProviderConfigCache(
            backend_config_fetcher(service_client),
            fallback_key=settings.STRIPE_PUBLISHABLE_KEY,
        )
    if confirmer is None:
        confirmer = StripeCardConfirmer(provider_config)
    if journal is _DEFAULT_JOURNAL:
        journal = SqlAttemptJournal(SessionLocal)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging("certconsole")
        if init_db:
            await init_models()
        # warm the cache so the first payment dialog does not wait for it
        provider_config.init()
        yield

    app = FastAPI(title="Certification purchase console", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(PaymentFlowError, payment_error_handler)

    registry = DialogRegistry()
    app.state.provider_config = provider_config
    app.state.dialogs = registry
    app.state.backend_transport = backend_transport
    app.state.flows = build_flows(FLOW_SPECS, PaymentProviderAdapter(confirmer), registry, journal)

    # Payments
    app.include_router(payments_router)

    # Purchases
    app.include_router(purchases_router)
    app.include_router(payment_attempts_router)

    return app


app = create_app()
