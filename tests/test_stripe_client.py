from __future__ import annotations

from typing import Any

import pytest
import stripe

from certconsole.core.errors import NetworkError, ProviderNotConfiguredError, ResponseDecodeError
from certconsole.integrations.stripe_client import StripeCardConfirmer, intent_id_from_client_secret
from certconsole.schemas.provider import ConfigSource, ProviderPublicConfig
from certconsole.schemas.purchases import PaymentIntent
from certconsole.services.dialogs import DialogRegistry, FlowState
from certconsole.services.flows import CODES
from certconsole.services.provider import PaymentProviderAdapter, TokenizedCard
from certconsole.services.provider_config import ProviderConfigCache
from certconsole.services.purchase_flow import PurchaseFlow

from conftest import intent_body, make_dialog

KEY = "pk_test_1234567890abcdef"
SECRET = "pi_9_secret_abc"


class FakeIntents:
    def __init__(self) -> None:
        self.confirm_error: Exception | None = None
        self.retrieve_error: Exception | None = None
        self.status = "succeeded"
        self.retrieved: list[str] = []

    def confirm(self, intent_id: str, params: dict[str, Any]) -> dict[str, Any]:
        if self.confirm_error is not None:
            raise self.confirm_error
        return {"id": intent_id, "status": self.status}

    def retrieve(self, intent_id: str, params: dict[str, Any]) -> dict[str, Any]:
        self.retrieved.append(intent_id)
        if self.retrieve_error is not None:
            raise self.retrieve_error
        return {"id": intent_id, "status": self.status}


class FakeStripeClient:
    def __init__(self, intents: FakeIntents) -> None:
        self.payment_intents = intents


@pytest.fixture
def intents(monkeypatch) -> FakeIntents:
    fake = FakeIntents()
    monkeypatch.setattr(stripe, "StripeClient", lambda key: FakeStripeClient(fake))
    return fake


@pytest.fixture
def stripe_confirmer() -> StripeCardConfirmer:
    async def fetch() -> ProviderPublicConfig:
        return ProviderPublicConfig(is_configured=True, publishable_key=KEY, source=ConfigSource.BACKEND)

    return StripeCardConfirmer(ProviderConfigCache(fetch))


def test_intent_id_comes_from_client_secret():
    assert intent_id_from_client_secret(SECRET) == "pi_9"
    with pytest.raises(ResponseDecodeError):
        intent_id_from_client_secret("not-a-secret")


@pytest.mark.anyio
async def test_card_decline_is_a_failed_confirmation(intents, stripe_confirmer):
    intents.confirm_error = stripe.CardError("Your card was declined.", None, "card_declined")
    raw = await stripe_confirmer.confirm_card_payment(SECRET, "pm_1")
    assert raw["status"] == "failed"
    assert raw["id"] == "pi_9"


@pytest.mark.anyio
async def test_already_confirmed_intent_reports_current_status(intents, stripe_confirmer):
    intents.confirm_error = stripe.InvalidRequestError("bad state", None, code="payment_intent_unexpected_state")
    raw = await stripe_confirmer.confirm_card_payment(SECRET, "pm_1")
    assert raw["status"] == "succeeded"
    assert intents.retrieved == ["pi_9"]


@pytest.mark.anyio
@pytest.mark.parametrize(
    "error",
    [
        stripe.APIError("Stripe had a problem"),
        stripe.RateLimitError("slow down"),
        stripe.APIConnectionError("connection reset"),
    ],
)
async def test_unknown_outcome_is_not_a_decline(intents, stripe_confirmer, error):
    intents.confirm_error = error
    with pytest.raises(NetworkError):
        await stripe_confirmer.confirm_card_payment(SECRET, "pm_1")


@pytest.mark.anyio
async def test_rejected_key_means_not_configured(intents, stripe_confirmer):
    intents.confirm_error = stripe.AuthenticationError("Invalid API Key provided")
    with pytest.raises(ProviderNotConfiguredError):
        await stripe_confirmer.confirm_card_payment(SECRET, "pm_1")


@pytest.mark.anyio
async def test_lookup_errors_are_wrapped(intents, stripe_confirmer):
    intents.retrieve_error = stripe.APIError("Stripe had a problem")
    with pytest.raises(NetworkError):
        await stripe_confirmer.retrieve(SECRET)
    with pytest.raises(ResponseDecodeError):
        await stripe_confirmer.retrieve("garbage")


@pytest.mark.anyio
async def test_stripe_outage_leaves_payment_open_for_refresh(intents, stripe_confirmer, api_client):
    flow = PurchaseFlow(CODES, PaymentProviderAdapter(stripe_confirmer), DialogRegistry())
    dialog = make_dialog(api_client)
    dialog.intent = PaymentIntent.model_validate(intent_body("pi_9"))
    dialog.state = FlowState.INTENT_CREATED
    intents.confirm_error = stripe.APIError("Stripe had a problem")

    with pytest.raises(NetworkError):
        await flow.confirm(dialog, TokenizedCard("pm_1"))

    # not startable: no second intent while the first may have charged
    assert dialog.state is FlowState.CONFIRMING

    intents.status = "succeeded"
    confirmation = await flow.refresh(dialog)
    assert confirmation.succeeded
    assert dialog.state is FlowState.CONFIRMED
