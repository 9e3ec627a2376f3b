"""Stripe adapter layer for card confirmation.

Isolates the Stripe SDK from the rest of the codebase. Confirmation uses the
publishable key plus the intent's client secret, the same capability the
browser SDK has; no secret key ever reaches the console.

The SDK is synchronous, so calls run in a worker thread via
anyio.to_thread.run_sync to avoid blocking the event loop.
"""

from __future__ import annotations

import logging
from typing import Any

import anyio
import stripe

from certconsole.core.errors import (
    NetworkError,
    PaymentFlowError,
    ProviderNotConfiguredError,
    ResponseDecodeError,
)
from certconsole.core.logging_setup import mask_key
from certconsole.services.provider_config import ProviderConfigCache

logger = logging.getLogger(__name__)


def intent_id_from_client_secret(client_secret: str) -> str:
    # "pi_123_secret_abc" -> "pi_123"
    intent_id, sep, _ = (client_secret or "").partition("_secret_")
    if not sep or not intent_id:
        raise ResponseDecodeError("The payment reference from the server is malformed.")
    return intent_id


def _declined(intent_id: str, e: stripe.StripeError) -> dict[str, Any]:
    return {"status": "failed", "id": intent_id, "error": {"message": e.user_message or str(e)}}


def _provider_error(action: str, intent_id: str, e: stripe.StripeError) -> PaymentFlowError:
    """Map a Stripe error that is not a decline.

    Server errors, rate limits and lost connections leave the charge outcome
    unknown, so they surface as NetworkError and the intent is looked up
    later. Bad credentials mean card payments are not usable at all.
    """
    if isinstance(e, (stripe.AuthenticationError, stripe.PermissionError)):
        logger.error("Stripe %s for %s refused our key: %s", action, intent_id, e)
        return ProviderNotConfiguredError(
            "Card payments are not configured. Please contact support to enable credit card payments."
        )
    logger.warning("Stripe %s for %s has no known outcome: %s", action, intent_id, e)
    return NetworkError()


class StripeCardConfirmer:
    provider_name = "stripe"

    def __init__(self, config_cache: ProviderConfigCache):
        self._config_cache = config_cache

    async def _client(self) -> stripe.StripeClient:
        config = await self._config_cache.get_config()
        if not config.is_configured or not config.publishable_key:
            raise ProviderNotConfiguredError(
                "Card payments are not configured. Please contact support to enable credit card payments."
            )
        logger.debug("Using Stripe key %s", mask_key(config.publishable_key))
        return stripe.StripeClient(config.publishable_key)

    async def confirm_card_payment(self, client_secret: str, payment_method: str) -> dict[str, Any]:
        client = await self._client()
        intent_id = intent_id_from_client_secret(client_secret)

        def _confirm() -> dict[str, Any]:
            try:
                pi = client.payment_intents.confirm(
                    intent_id,
                    params={"client_secret": client_secret, "payment_method": payment_method},
                )
            except stripe.CardError as e:
                return _declined(intent_id, e)
            except stripe.InvalidRequestError as e:
                if e.code != "payment_intent_unexpected_state":
                    # rejected before any charge was attempted
                    return _declined(intent_id, e)
                # already confirmed elsewhere: report what the intent says now
                pi = client.payment_intents.retrieve(intent_id, params={"client_secret": client_secret})
            return pi.to_dict() if hasattr(pi, "to_dict") else dict(pi)

        try:
            return await anyio.to_thread.run_sync(_confirm)
        except stripe.StripeError as e:
            raise _provider_error("confirm", intent_id, e) from e

    async def retrieve(self, client_secret: str) -> dict[str, Any]:
        client = await self._client()
        intent_id = intent_id_from_client_secret(client_secret)

        def _retrieve() -> dict[str, Any]:
            pi = client.payment_intents.retrieve(intent_id, params={"client_secret": client_secret})
            return pi.to_dict() if hasattr(pi, "to_dict") else dict(pi)

        try:
            return await anyio.to_thread.run_sync(_retrieve)
        except stripe.StripeError as e:
            raise _provider_error("lookup", intent_id, e) from e
