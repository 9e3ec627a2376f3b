"""One purchase type end to end: open, price, pay by card or transfer, close."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Generic, TypeVar

from certconsole.core.config import settings
from certconsole.core.errors import AlreadyCompletingError, NetworkError, PaymentFlowError, ValidationError
from certconsole.integrations.backend_client import ConsoleApiClient
from certconsole.schemas.purchases import (
    ConfirmationStatus,
    ManualPaymentSubmission,
    PaymentIntent,
    ProviderConfirmation,
    PurchaseRequest,
)
from certconsole.schemas.records import PurchaseRecord
from certconsole.services.attempts import AttemptJournal, journal_quietly
from certconsole.services.completion import PurchaseCompletionCoordinator
from certconsole.services.dialogs import (
    STARTABLE_STATES,
    UNSAFE_TO_CLOSE,
    DialogRegistry,
    FlowState,
    PurchaseDialog,
)
from certconsole.services.flows import FlowSpec
from certconsole.services.intents import PurchaseIntentRequester
from certconsole.services.manual_payments import ManualPaymentPathway, ReceiptFile
from certconsole.services.provider import CardInput, PaymentProviderAdapter

logger = logging.getLogger(__name__)

RecordT = TypeVar("RecordT", bound=PurchaseRecord)

_CONFIRMATION_TARGET: dict[ConfirmationStatus, FlowState] = {
    ConfirmationStatus.SUCCEEDED: FlowState.CONFIRMED,
    ConfirmationStatus.PROCESSING: FlowState.CONFIRMING,
    ConfirmationStatus.REQUIRES_ACTION: FlowState.INTENT_CREATED,
    ConfirmationStatus.CANCELED: FlowState.CONFIRM_FAILED,
    ConfirmationStatus.FAILED: FlowState.CONFIRM_FAILED,
}


@dataclass(frozen=True)
class PayOutcome(Generic[RecordT]):
    confirmation: ProviderConfirmation
    record: RecordT | None = None


@dataclass(frozen=True)
class CloseOutcome:
    aborted: bool
    state: FlowState
    payment_intent_id: str | None = None


class PurchaseFlow(Generic[RecordT]):
    def __init__(
        self,
        spec: FlowSpec,
        provider: PaymentProviderAdapter,
        registry: DialogRegistry,
        journal: AttemptJournal | None = None,
    ):
        self.spec = spec
        self.provider = provider
        self.registry = registry
        self.journal = journal
        self.requester = PurchaseIntentRequester(spec, journal)
        self.coordinator: PurchaseCompletionCoordinator[RecordT] = PurchaseCompletionCoordinator(spec, journal)
        self.manual = ManualPaymentPathway(spec)

    @property
    def name(self) -> str:
        return self.spec.name

    # -------------------------
    # Dialog lifecycle
    # -------------------------
    async def open_dialog(
        self,
        client: ConsoleApiClient,
        owner: str,
        subject_ids: dict[str, Any],
        *,
        unit_price: Decimal | None = None,
        currency: str | None = None,
    ) -> PurchaseDialog:
        subjects = self.spec.validate_subjects(subject_ids)
        setup = await self.spec.prepare(client, subjects)
        dialog = PurchaseDialog(
            flow=self.spec.name,
            owner=owner,
            client=client,
            subject_ids=subjects,
            unit_price=setup.unit_price if setup.unit_price is not None else unit_price,
            currency=currency or settings.DEFAULT_CURRENCY,
            known_codes=setup.known_codes,
            eligible_codes=setup.eligible_codes,
        )
        self.registry.add(dialog)
        logger.info("flow=%s dialog=%s opened subjects=%s", self.spec.name, dialog.id, subjects)
        return dialog

    async def close(self, dialog: PurchaseDialog) -> CloseOutcome:
        """Close ``dialog``.

        Before confirmation this aborts cleanly. Afterwards money may already
        have moved, so the dialog is only marked closed and its intent id is
        handed back for reconciliation.
        """
        intent_id = dialog.payment_intent_id
        if dialog.state in UNSAFE_TO_CLOSE or dialog.confirming or dialog.completing or dialog.submitting_manual:
            dialog.closed = True
            logger.warning(
                "flow=%s dialog=%s closed during %s; intent %s stays open for reconciliation",
                self.spec.name,
                dialog.id,
                dialog.state.value,
                intent_id,
            )
            return CloseOutcome(aborted=False, state=dialog.state, payment_intent_id=intent_id)

        dialog.closed = True
        aborted = False
        if dialog.state in STARTABLE_STATES:
            dialog.transition(FlowState.ABORTED)
            aborted = True
            await journal_quietly(self.journal, dialog)
        self.registry.discard(dialog.id)
        return CloseOutcome(aborted=aborted, state=dialog.state, payment_intent_id=intent_id)

    # -------------------------
    # Card path
    # -------------------------
    async def create_intent(self, dialog: PurchaseDialog, request: PurchaseRequest) -> PaymentIntent:
        try:
            return await self.requester.create_intent(dialog, request)
        except PaymentFlowError as e:
            dialog.remember_error(e)
            raise

    async def confirm(self, dialog: PurchaseDialog, card: CardInput) -> ProviderConfirmation:
        with dialog.stage("confirming", "This payment is already being confirmed."):
            if dialog.creating_intent or dialog.submitting_manual:
                raise ValidationError("A payment is already being prepared for this dialog.")
            if dialog.completing or dialog.state is FlowState.COMPLETING:
                raise AlreadyCompletingError(
                    "This payment is already being completed.",
                    payment_intent_id=dialog.payment_intent_id,
                )
            if dialog.intent is None or dialog.state not in (FlowState.INTENT_CREATED, FlowState.CONFIRMING):
                raise ValidationError("There is no payment waiting for card confirmation.")

            previous = dialog.state
            if previous is FlowState.INTENT_CREATED:
                dialog.transition(FlowState.CONFIRMING)
            await journal_quietly(self.journal, dialog)

            try:
                confirmation = await self.provider.confirm(dialog.intent.client_secret, card)
            except NetworkError as e:
                # outcome unknown: stay in CONFIRMING and let refresh find out
                dialog.remember_error(e)
                await journal_quietly(self.journal, dialog, e)
                raise
            except PaymentFlowError as e:
                # rejected before the provider saw the card
                if previous is FlowState.INTENT_CREATED:
                    dialog.transition(FlowState.INTENT_CREATED)
                dialog.remember_error(e)
                raise

            self._apply_confirmation(dialog, confirmation)
            await journal_quietly(self.journal, dialog)
            return confirmation

    async def pay(self, dialog: PurchaseDialog, card: CardInput, request: PurchaseRequest) -> PayOutcome[RecordT]:
        """Confirm the card and, only on success, complete the purchase.

        The purchase is checked against the dialog's frozen request before the
        card is touched.
        """
        intent_id = dialog.payment_intent_id
        if intent_id is None:
            raise ValidationError("There is no payment waiting for card confirmation.")
        try:
            self.coordinator.check_request(dialog, intent_id, request)
        except PaymentFlowError as e:
            dialog.remember_error(e)
            raise
        confirmation = await self.confirm(dialog, card)
        if not confirmation.succeeded:
            return PayOutcome(confirmation=confirmation)
        record = await self.complete(dialog, request)
        return PayOutcome(confirmation=confirmation, record=record)

    async def complete(self, dialog: PurchaseDialog, request: PurchaseRequest) -> RecordT:
        intent_id = dialog.payment_intent_id
        if intent_id is None:
            raise ValidationError("There is no payment to complete.")
        # a closed dialog may still be completed by its owner; the charge is real
        try:
            return await self.coordinator.complete(dialog, intent_id, request)
        finally:
            self._forget_if_settled(dialog)

    async def refresh(self, dialog: PurchaseDialog) -> ProviderConfirmation | None:
        """Look up a confirmation whose outcome was unknown or still processing."""
        if dialog.state is not FlowState.CONFIRMING or dialog.intent is None:
            return dialog.confirmation
        with dialog.stage("confirming", "This payment is already being confirmed.", allow_closed=True):
            confirmation = await self.provider.lookup(dialog.intent.client_secret)
            self._apply_confirmation(dialog, confirmation)
        await journal_quietly(self.journal, dialog)
        if dialog.closed and dialog.state in STARTABLE_STATES:
            # nothing was charged and nobody is looking any more
            dialog.transition(FlowState.ABORTED)
            await journal_quietly(self.journal, dialog)
        self._forget_if_settled(dialog)
        return confirmation

    def _forget_if_settled(self, dialog: PurchaseDialog) -> None:
        if dialog.closed and not dialog.busy and dialog.state not in UNSAFE_TO_CLOSE:
            self.registry.discard(dialog.id)

    def _apply_confirmation(self, dialog: PurchaseDialog, confirmation: ProviderConfirmation) -> None:
        dialog.confirmation = confirmation
        target = _CONFIRMATION_TARGET[confirmation.status]
        dialog.transition(target)

        if confirmation.status is ConfirmationStatus.SUCCEEDED:
            dialog.remember_error(None)
        elif confirmation.status is ConfirmationStatus.REQUIRES_ACTION:
            dialog.remember_error(
                ValidationError(
                    confirmation.message or "Your bank needs additional verification. Please try again.",
                    payment_intent_id=dialog.payment_intent_id,
                )
            )
        elif confirmation.status is ConfirmationStatus.PROCESSING:
            dialog.remember_error(None)
        else:
            dialog.remember_error(
                ValidationError(
                    confirmation.message or "Payment failed. Please try again.",
                    payment_intent_id=dialog.payment_intent_id,
                )
            )

    # -------------------------
    # Manual path
    # -------------------------
    async def submit_manual(
        self,
        dialog: PurchaseDialog,
        amount: Decimal | str,
        receipt: ReceiptFile,
        request: PurchaseRequest,
    ) -> ManualPaymentSubmission:
        try:
            return await self.manual.submit(dialog, amount, receipt, request)
        except PaymentFlowError as e:
            dialog.remember_error(e)
            raise


def build_flows(
    specs: dict[str, FlowSpec],
    provider: PaymentProviderAdapter,
    registry: DialogRegistry,
    journal: AttemptJournal | None = None,
) -> dict[str, PurchaseFlow]:
    return {name: PurchaseFlow(spec, provider, registry, journal) for name, spec in specs.items()}
