from __future__ import annotations

import logging

from certconsole.core.errors import ConfigurationError, ValidationError
from certconsole.integrations.backend_client import decode_response
from certconsole.schemas.purchases import PaymentIntent, PurchaseRequest
from certconsole.services.attempts import AttemptJournal
from certconsole.services.dialogs import STARTABLE_STATES, FlowState, PurchaseDialog
from certconsole.services.flows import FlowSpec
from certconsole.services.pricing import amounts_match

logger = logging.getLogger(__name__)


class PriceMismatchError(ConfigurationError):
    pass


class PurchaseIntentRequester:
    """Asks the backend for a payment intent for one dialog's request."""

    def __init__(self, spec: FlowSpec, journal: AttemptJournal | None = None):
        self.spec = spec
        self._journal = journal

    async def create_intent(self, dialog: PurchaseDialog, request: PurchaseRequest) -> PaymentIntent:
        with dialog.stage("creating_intent", "A payment is already being prepared."):
            if dialog.confirming or dialog.completing or dialog.submitting_manual:
                raise ValidationError("A payment is already in progress for this dialog.")
            if dialog.state not in STARTABLE_STATES:
                raise ValidationError("A payment is already in progress for this dialog.")

            request = self.spec.validate_request(request)
            priced = self.spec.resolve_price(
                request,
                unit_price=dialog.unit_price,
                known_code=dialog.known_code(request.discount_code),
                currency=dialog.currency,
            )

            path = self.spec.path(self.spec.intent_path, request.subject_ids)
            body = await dialog.client.post_json(path, request.wire_fields())
            intent = decode_response(self.spec.intent_model, body, what="payment intent")

            if dialog.closed:
                # never confirmed, so nothing is charged
                logger.info("dialog=%s closed while intent %s was created", dialog.id, intent.payment_intent_id)
                raise ValidationError("This payment dialog has been closed.")

            if priced is not None and not amounts_match(intent.final_amount, priced.final_amount):
                logger.warning(
                    "dialog=%s intent=%s quoted %s, expected %s; abandoning",
                    dialog.id,
                    intent.payment_intent_id,
                    intent.final_amount,
                    priced.final_amount,
                )
                raise PriceMismatchError(
                    f"The server quoted {intent.final_amount} {intent.currency} but "
                    f"{priced.final_amount} {priced.currency} was expected. Please reopen the payment dialog."
                )

            if dialog.intent is not None:
                logger.info("dialog=%s replacing unconfirmed intent %s", dialog.id, dialog.intent.payment_intent_id)

            dialog.request = request
            dialog.priced = priced
            dialog.intent = intent
            dialog.confirmation = None
            dialog.remember_error(None)
            dialog.transition(FlowState.INTENT_CREATED)

        if self._journal is not None:
            await self._journal.record(dialog)
        return intent
