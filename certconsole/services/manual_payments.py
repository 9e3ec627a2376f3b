"""Bank transfer payments with an uploaded receipt.

The console checks the receipt and the paid amount, then hands the submission
to the backend where a reviewer approves or rejects it later.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any

from certconsole.core.config import settings
from certconsole.core.errors import ConfigurationError, ValidationError
from certconsole.integrations.backend_client import decode_response
from certconsole.schemas.purchases import (
    ManualPaymentAck,
    ManualPaymentSubmission,
    PaymentMethod,
    PurchaseRequest,
)
from certconsole.services.dialogs import STARTABLE_STATES, FlowState, PurchaseDialog
from certconsole.services.flows import FlowSpec
from certconsole.services.pricing import amounts_match

logger = logging.getLogger(__name__)

RECEIPT_FIELD = "receipt"


@dataclass(frozen=True)
class ReceiptFile:
    filename: str
    content_type: str
    content: bytes

    @property
    def size(self) -> int:
        return len(self.content)


def _invalid(field: str, msg: str) -> ValidationError:
    return ValidationError(msg, field_errors={field: msg})


class ManualPaymentPathway:
    def __init__(
        self,
        spec: FlowSpec,
        *,
        allowed_types: list[str] | None = None,
        max_bytes: int | None = None,
        tolerance: Decimal | None = None,
    ):
        self.spec = spec
        self.allowed_types = [t.lower() for t in (allowed_types or settings.RECEIPT_ALLOWED_TYPES)]
        self.max_bytes = max_bytes if max_bytes is not None else settings.RECEIPT_MAX_BYTES
        self.tolerance = tolerance if tolerance is not None else settings.MANUAL_AMOUNT_TOLERANCE

    @property
    def enabled(self) -> bool:
        return PaymentMethod.MANUAL in self.spec.payment_methods and bool(self.spec.manual_path)

    def check_receipt(self, receipt: ReceiptFile) -> None:
        content_type = (receipt.content_type or "").split(";")[0].strip().lower()
        if content_type not in self.allowed_types:
            raise _invalid(RECEIPT_FIELD, "Receipt must be a PDF, JPEG or PNG file.")
        if receipt.size == 0:
            raise _invalid(RECEIPT_FIELD, "Receipt file is empty.")
        if receipt.size > self.max_bytes:
            mb = self.max_bytes / (1024 * 1024)
            raise _invalid(RECEIPT_FIELD, f"Receipt must be at most {mb:g} MB.")

    async def submit(
        self,
        dialog: PurchaseDialog,
        amount: Decimal | str,
        receipt: ReceiptFile,
        request: PurchaseRequest,
    ) -> ManualPaymentSubmission:
        if not self.enabled:
            raise ConfigurationError("Manual payment is not available for this purchase.")

        with dialog.stage("submitting_manual", "A manual payment is already being submitted."):
            if dialog.creating_intent or dialog.confirming or dialog.completing:
                raise ValidationError("A payment is already in progress for this dialog.")
            if dialog.state not in STARTABLE_STATES:
                raise ValidationError("A payment is already in progress for this dialog.")

            request = self.spec.validate_request(request)
            try:
                paid = Decimal(str(amount).strip())
            except InvalidOperation:
                raise _invalid("payment_amount", "Invalid payment amount.") from None
            if paid <= 0:
                raise _invalid("payment_amount", "Payment amount must be greater than zero.")

            self.check_receipt(receipt)

            priced = self.spec.resolve_price(
                request,
                unit_price=dialog.unit_price,
                known_code=dialog.known_code(request.discount_code),
                currency=dialog.currency,
            )
            if priced is None:
                raise ValidationError(
                    "The total for this purchase could not be determined. Please reopen the payment dialog."
                )
            if not amounts_match(paid, priced.final_amount, self.tolerance):
                raise _invalid(
                    "payment_amount",
                    f"Payment amount must equal the total of {priced.final_amount} {priced.currency}.",
                )

            fields: dict[str, Any] = request.wire_fields()
            fields["payment_method"] = PaymentMethod.MANUAL.value
            fields["payment_amount"] = str(paid)
            files = {RECEIPT_FIELD: (receipt.filename, receipt.content, receipt.content_type)}

            path = self.spec.path(self.spec.manual_path or "", request.subject_ids)
            body = await dialog.client.post_multipart(path, fields, files)
            ack = decode_response(ManualPaymentAck, body, what="manual payment")

            submission = ManualPaymentSubmission(
                amount=paid,
                receipt_filename=receipt.filename,
                receipt_content_type=receipt.content_type,
                receipt_size=receipt.size,
                request=request,
                status=ack.status,
                submission_id=ack.id,
            )
            dialog.request = request
            dialog.priced = priced
            dialog.manual_submission = submission
            dialog.remember_error(None)
            dialog.transition(FlowState.PENDING_REVIEW)

        logger.info(
            "flow=%s dialog=%s manual payment submitted (submission=%s)",
            self.spec.name,
            dialog.id,
            ack.id,
        )
        return submission
