"""Purchase flow definitions.

Each purchase type (subscription, renewal, certificate codes, instructor
authorization) differs only in its endpoints, the subjects it needs, its
response models and the payment methods it accepts. Everything else is
shared by ``PurchaseFlow``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any

from certconsole.core.config import settings
from certconsole.core.errors import DiscountInvalid, InvalidQuantity, ValidationError
from certconsole.integrations.backend_client import ConsoleApiClient, decode_response
from certconsole.schemas.coupons import DiscountCode, DiscountCodeList
from certconsole.schemas.purchases import (
    AuthorizationPaymentIntent,
    PaymentIntent,
    PaymentMethod,
    PricedAmount,
    PurchaseRequest,
)
from certconsole.schemas.records import (
    AuthorizationRecord,
    CodeBatchRecord,
    InstructorAuthorization,
    PurchaseRecord,
    SubscriptionRecord,
)
from certconsole.services.pricing import compute_final_amount, discount_problem, filter_eligible_codes

logger = logging.getLogger(__name__)

_SUBJECT_LABELS = {
    "acc_id": "accreditation body",
    "course_id": "course",
    "authorization_id": "authorization",
}


@dataclass
class FlowSetup:
    """What a dialog learns about its subject when it opens."""

    unit_price: Decimal | None = None
    known_codes: list[DiscountCode] = field(default_factory=list)
    eligible_codes: list[DiscountCode] = field(default_factory=list)


def _coerce_id(name: str, value: Any) -> int:
    label = _SUBJECT_LABELS.get(name, name)
    if isinstance(value, bool):
        raise ValidationError(f"Invalid {label}.", field_errors={name: f"Invalid {label}."})
    if isinstance(value, int):
        out = value
    else:
        try:
            out = int(str(value).strip())
        except ValueError:
            raise ValidationError(f"Invalid {label}.", field_errors={name: f"Invalid {label}."}) from None
    if out < 1:
        raise ValidationError(f"Invalid {label}.", field_errors={name: f"Invalid {label}."})
    return out


def _coerce_quantity(value: Any) -> int:
    msg = "Quantity must be a whole number of at least 1."
    if isinstance(value, bool):
        raise InvalidQuantity(msg, field_errors={"quantity": msg})
    try:
        qty = int(str(value).strip()) if not isinstance(value, int) else value
    except ValueError:
        raise InvalidQuantity(msg, field_errors={"quantity": msg}) from None
    if qty < 1:
        raise InvalidQuantity(msg, field_errors={"quantity": msg})
    return qty


@dataclass(frozen=True)
class FlowSpec:
    name: str
    title: str
    intent_path: str
    complete_path: str
    record_model: type[PurchaseRecord]
    intent_model: type[PaymentIntent] = PaymentIntent
    complete_method: str = "POST"
    required_subjects: tuple[str, ...] = ()
    payment_methods: frozenset[PaymentMethod] = frozenset({PaymentMethod.CARD})
    manual_path: str | None = None
    priced_by_amount: bool = False
    supports_discounts: bool = False
    # commission and provider share; hidden from training centers
    show_breakdown: bool = False

    def path(self, template: str, subject_ids: dict[str, Any]) -> str:
        return template.format(**subject_ids)

    # -------------------------
    # Request preconditions
    # -------------------------
    def validate_subjects(self, subject_ids: dict[str, Any]) -> dict[str, int]:
        out: dict[str, int] = {}
        for name in self.required_subjects:
            value = subject_ids.get(name)
            if value is None or (isinstance(value, str) and not value.strip()):
                label = _SUBJECT_LABELS.get(name, name)
                msg = f"Please select a {label}."
                raise ValidationError(msg, field_errors={name: msg})
        for name, value in subject_ids.items():
            if value is None or (isinstance(value, str) and not value.strip()):
                continue
            out[name] = _coerce_id(name, value)
        return out

    def validate_request(self, request: PurchaseRequest) -> PurchaseRequest:
        """Normalized copy of ``request``, or ValidationError before any network call."""
        subject_ids = self.validate_subjects(request.subject_ids)
        quantity = _coerce_quantity(request.quantity)

        amount = request.amount
        if self.priced_by_amount:
            if amount is None:
                raise ValidationError("Please enter an amount.", field_errors={"amount": "Please enter an amount."})
            try:
                amount = Decimal(amount)
            except InvalidOperation:
                raise ValidationError("Invalid amount.", field_errors={"amount": "Invalid amount."}) from None
            if amount < settings.MIN_SUBSCRIPTION_AMOUNT:
                msg = f"Amount must be at least {settings.MIN_SUBSCRIPTION_AMOUNT}."
                raise ValidationError(msg, field_errors={"amount": msg})
            if quantity != 1:
                raise InvalidQuantity("This purchase is for a single item.", field_errors={"quantity": "Must be 1."})
        else:
            amount = None

        if request.discount_code and not self.supports_discounts:
            msg = "Discount codes cannot be used for this purchase."
            raise DiscountInvalid(msg, field_errors={"discount_code": msg})

        return PurchaseRequest(
            subject_ids=subject_ids,
            quantity=quantity,
            discount_code=request.discount_code,
            amount=amount,
            auto_renew=request.auto_renew,
        )

    def resolve_price(
        self,
        request: PurchaseRequest,
        *,
        unit_price: Decimal | None,
        known_code: DiscountCode | None,
        currency: str | None = None,
    ) -> PricedAmount | None:
        """Local price of a validated request, or None when it cannot be known here.

        A code the dialog knows about is always checked, even when the price is
        unknown. A code it has never seen is left to the backend.
        """
        base = request.amount if self.priced_by_amount else unit_price
        if request.discount_code and known_code is None:
            return None
        if base is None:
            if known_code is not None:
                problem = discount_problem(known_code, request.course_id)
                if problem is not None:
                    msg = f"Discount code {known_code.code} {problem}."
                    raise DiscountInvalid(msg, field_errors={"discount_code": msg})
            return None
        return compute_final_amount(
            base,
            int(request.quantity),
            known_code,
            course_id=request.course_id,
            currency=currency,
        )

    def complete_payload(self, request: PurchaseRequest, payment_intent_id: str) -> dict[str, Any]:
        out = request.wire_fields()
        out["payment_method"] = PaymentMethod.CARD.value
        out["payment_intent_id"] = payment_intent_id
        return out

    async def prepare(self, client: ConsoleApiClient, subject_ids: dict[str, int]) -> FlowSetup:
        return FlowSetup()


@dataclass(frozen=True)
class CodePurchaseFlowSpec(FlowSpec):
    discount_codes_path: str = ""

    async def prepare(self, client: ConsoleApiClient, subject_ids: dict[str, int]) -> FlowSetup:
        if not self.discount_codes_path or "course_id" not in subject_ids:
            return FlowSetup()
        body = await client.get_json(self.path(self.discount_codes_path, subject_ids))
        known = decode_response(DiscountCodeList, body, what="discount codes").discount_codes
        eligible = filter_eligible_codes(known, subject_ids["course_id"])
        logger.info(
            "course=%s discount codes: %d listed, %d eligible",
            subject_ids["course_id"],
            len(known),
            len(eligible),
        )
        return FlowSetup(known_codes=list(known), eligible_codes=eligible)


@dataclass(frozen=True)
class AuthorizationFlowSpec(FlowSpec):
    authorization_path: str = ""

    async def prepare(self, client: ConsoleApiClient, subject_ids: dict[str, int]) -> FlowSetup:
        body = await client.get_json(self.path(self.authorization_path, subject_ids))
        if isinstance(body, dict) and isinstance(body.get("authorization"), dict):
            body = body["authorization"]
        auth = decode_response(InstructorAuthorization, body, what="instructor authorization")
        if auth.payment_status == "paid":
            raise ValidationError("This authorization has already been paid.")
        if not auth.payable():
            raise ValidationError(
                "This authorization is not ready for payment. "
                "It must be approved with the commission set by the group admin."
            )
        return FlowSetup(unit_price=auth.authorization_price)


SUBSCRIPTION = FlowSpec(
    name="subscription",
    title="Subscription payment",
    intent_path="/acc/subscription/payment-intent",
    complete_path="/acc/subscription/payment",
    record_model=SubscriptionRecord,
    priced_by_amount=True,
    show_breakdown=True,
)

SUBSCRIPTION_RENEWAL = FlowSpec(
    name="subscription-renewal",
    title="Subscription renewal",
    intent_path="/acc/subscription/renew-payment-intent",
    complete_path="/acc/subscription/renew",
    complete_method="PUT",
    record_model=SubscriptionRecord,
    priced_by_amount=True,
    show_breakdown=True,
)

CODES = CodePurchaseFlowSpec(
    name="codes",
    title="Certificate code purchase",
    intent_path="/training-center/codes/create-payment-intent",
    complete_path="/training-center/codes/purchase",
    manual_path="/training-center/codes/purchase",
    record_model=CodeBatchRecord,
    required_subjects=("acc_id", "course_id"),
    payment_methods=frozenset({PaymentMethod.CARD, PaymentMethod.MANUAL}),
    supports_discounts=True,
    discount_codes_path="/training-center/accs/{acc_id}/courses/{course_id}/discount-codes",
)

INSTRUCTOR_AUTHORIZATION = AuthorizationFlowSpec(
    name="instructor-authorization",
    title="Instructor authorization payment",
    intent_path="/training-center/instructors/authorizations/{authorization_id}/payment-intent",
    complete_path="/training-center/instructors/authorizations/{authorization_id}/pay",
    intent_model=AuthorizationPaymentIntent,
    record_model=AuthorizationRecord,
    required_subjects=("authorization_id",),
    authorization_path="/training-center/instructors/authorizations/{authorization_id}",
)

FLOW_SPECS: dict[str, FlowSpec] = {
    s.name: s for s in (SUBSCRIPTION, SUBSCRIPTION_RENEWAL, CODES, INSTRUCTOR_AUTHORIZATION)
}
