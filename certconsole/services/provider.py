"""Card confirmation behind a provider-neutral interface.

Purchase flows only see ``ProviderConfirmation``. The card input is cleared
after a successful confirmation and left intact otherwise, so the user can fix
the card and retry.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Protocol

from certconsole.core.errors import ValidationError
from certconsole.schemas.purchases import ConfirmationStatus, ProviderConfirmation

logger = logging.getLogger(__name__)


class CardConfirmer(Protocol):
    provider_name: str

    async def confirm_card_payment(self, client_secret: str, payment_method: str) -> dict[str, Any]: ...

    async def retrieve(self, client_secret: str) -> dict[str, Any]: ...


class CardInput(Protocol):
    @property
    def payment_method(self) -> str | None: ...

    def clear(self) -> None: ...


@dataclass
class TokenizedCard:
    """Card details already tokenized in the browser (a payment method id)."""

    payment_method_id: str | None

    @property
    def payment_method(self) -> str | None:
        return self.payment_method_id

    def clear(self) -> None:
        self.payment_method_id = None


# provider status -> what the flow acts on
_STATUS_MAP: dict[str, ConfirmationStatus] = {
    "succeeded": ConfirmationStatus.SUCCEEDED,
    "processing": ConfirmationStatus.PROCESSING,
    "requires_capture": ConfirmationStatus.PROCESSING,
    "requires_action": ConfirmationStatus.REQUIRES_ACTION,
    "requires_confirmation": ConfirmationStatus.REQUIRES_ACTION,
    "requires_payment_method": ConfirmationStatus.FAILED,
    "canceled": ConfirmationStatus.CANCELED,
    "failed": ConfirmationStatus.FAILED,
}


def normalize_confirmation(raw: dict[str, Any]) -> ProviderConfirmation:
    status_raw = str(raw.get("status") or "").lower()
    status = _STATUS_MAP.get(status_raw, ConfirmationStatus.FAILED)

    message = None
    error = raw.get("error") or raw.get("last_payment_error")
    if isinstance(error, dict):
        message = error.get("message")
    if status is ConfirmationStatus.FAILED and status_raw not in _STATUS_MAP:
        logger.warning("Unknown provider status %r treated as failed", status_raw)
        message = message or "Payment failed. Please try again."

    return ProviderConfirmation(
        status=status,
        provider_transaction_id=raw.get("id"),
        message=message,
    )


class PaymentProviderAdapter:
    def __init__(self, confirmer: CardConfirmer):
        self._confirmer = confirmer

    @property
    def provider_name(self) -> str:
        return self._confirmer.provider_name

    async def confirm(self, client_secret: str, card: CardInput) -> ProviderConfirmation:
        payment_method = card.payment_method
        if not payment_method:
            msg = "Please enter your card details."
            raise ValidationError(msg, field_errors={"card": msg})

        raw = await self._confirmer.confirm_card_payment(client_secret, payment_method)
        confirmation = normalize_confirmation(raw)
        logger.info(
            "%s confirmation for %s: %s",
            self.provider_name,
            confirmation.provider_transaction_id,
            confirmation.status.value,
        )
        if confirmation.succeeded:
            card.clear()
        return confirmation

    async def lookup(self, client_secret: str) -> ProviderConfirmation:
        """Current provider view of an intent, for late results."""
        return normalize_confirmation(await self._confirmer.retrieve(client_secret))
