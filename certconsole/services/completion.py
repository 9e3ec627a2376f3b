"""Turning a confirmed card payment into a backend purchase record.

Completion happens at most once per intent id. Concurrent callers for the same
intent share one backend call. Once a completion has failed the intent is
never submitted again: the charge is captured, so the only safe next step is a
human with the intent id.

The outcome lives on the dialog, so nothing here outlives the dialog that
paid.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Generic, TypeVar

from certconsole.core.errors import (
    CompletionFailedError,
    PaymentFlowError,
    PaymentNotConfirmedError,
    RequestMismatchError,
)
from certconsole.integrations.backend_client import decode_response
from certconsole.schemas.purchases import PurchaseRequest
from certconsole.schemas.records import PurchaseRecord
from certconsole.services.attempts import AttemptJournal, journal_quietly
from certconsole.services.dialogs import FlowState, PurchaseDialog
from certconsole.services.flows import FlowSpec

logger = logging.getLogger(__name__)

RecordT = TypeVar("RecordT", bound=PurchaseRecord)


class PurchaseCompletionCoordinator(Generic[RecordT]):
    def __init__(self, spec: FlowSpec, journal: AttemptJournal | None = None):
        self.spec = spec
        self._journal = journal
        self._in_flight: dict[str, asyncio.Future[RecordT]] = {}

    def in_flight(self, payment_intent_id: str) -> bool:
        return payment_intent_id in self._in_flight

    async def complete(self, dialog: PurchaseDialog, payment_intent_id: str, request: PurchaseRequest) -> RecordT:
        self.check_request(dialog, payment_intent_id, request)

        if dialog.state is FlowState.COMPLETED and dialog.record is not None:
            return dialog.record  # type: ignore[return-value]
        if dialog.completion_error is not None:
            raise dialog.completion_error
        pending = self._in_flight.get(payment_intent_id)
        if pending is not None:
            return await asyncio.shield(pending)

        self._check_confirmed(dialog, payment_intent_id)

        fut: asyncio.Future[RecordT] = asyncio.get_running_loop().create_future()
        self._in_flight[payment_intent_id] = fut
        dialog.completing = True
        try:
            dialog.transition(FlowState.COMPLETING)
            record = await self._submit(dialog, payment_intent_id)
        except asyncio.CancelledError:
            err = self._fail(dialog, payment_intent_id, fut, None, "cancelled while waiting for the backend")
            await journal_quietly(self._journal, dialog, err)
            raise
        except PaymentFlowError as e:
            err = self._fail(dialog, payment_intent_id, fut, e, e.message)
            await journal_quietly(self._journal, dialog, err)
            raise err from e
        except Exception as e:
            err = self._fail(dialog, payment_intent_id, fut, None, repr(e))
            await journal_quietly(self._journal, dialog, err)
            raise err from e
        else:
            dialog.record = record
            dialog.transition(FlowState.COMPLETED)
            dialog.remember_error(None)
            logger.info("flow=%s dialog=%s intent=%s completed", self.spec.name, dialog.id, payment_intent_id)
            fut.set_result(record)
            await journal_quietly(self._journal, dialog)
            return record
        finally:
            dialog.completing = False
            self._in_flight.pop(payment_intent_id, None)
            if not fut.done():
                fut.cancel()

    def _fail(
        self,
        dialog: PurchaseDialog,
        payment_intent_id: str,
        fut: asyncio.Future[RecordT],
        cause: PaymentFlowError | None,
        reason: str,
    ) -> CompletionFailedError:
        err = CompletionFailedError(payment_intent_id, cause=cause)
        dialog.completion_error = err
        dialog.transition(FlowState.COMPLETION_FAILED)
        dialog.remember_error(err)
        logger.error(
            "COMPLETION FAILED flow=%s dialog=%s intent=%s: %s",
            self.spec.name,
            dialog.id,
            payment_intent_id,
            reason,
        )
        fut.set_exception(err)
        fut.exception()  # waiters may not exist; mark retrieved
        return err

    def check_request(self, dialog: PurchaseDialog, payment_intent_id: str, request: PurchaseRequest) -> None:
        """Refuse an intent id or purchase that differs from what the dialog froze."""
        if dialog.intent is None or dialog.intent.payment_intent_id != payment_intent_id:
            raise RequestMismatchError("This payment does not belong to the open dialog.")
        if dialog.request is None or not dialog.request.same_purchase(self.spec.validate_request(request)):
            raise RequestMismatchError(
                "The purchase details changed after payment was started. Please start a new payment.",
                payment_intent_id=payment_intent_id,
            )

    def _check_confirmed(self, dialog: PurchaseDialog, payment_intent_id: str) -> None:
        if (
            dialog.state is not FlowState.CONFIRMED
            or dialog.confirmation is None
            or not dialog.confirmation.succeeded
        ):
            raise PaymentNotConfirmedError(
                "The card payment has not been confirmed yet.",
                payment_intent_id=payment_intent_id,
            )

    async def _submit(self, dialog: PurchaseDialog, payment_intent_id: str) -> RecordT:
        # the request frozen at intent creation is what the charge was for
        frozen = dialog.request
        if frozen is None:
            raise PaymentNotConfirmedError("There is no purchase to complete.", payment_intent_id=payment_intent_id)
        path = self.spec.path(self.spec.complete_path, frozen.subject_ids)
        body = await dialog.client.request(
            self.spec.complete_method,
            path,
            json=self.spec.complete_payload(frozen, payment_intent_id),
        )
        return decode_response(self.spec.record_model, body, what=f"{self.spec.title} record")
