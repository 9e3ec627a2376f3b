from __future__ import annotations

from decimal import Decimal
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator


class PaymentMethod(str, Enum):
    CARD = "card"
    MANUAL = "manual"


class PurchaseRequest(BaseModel):
    """What the user is buying. Frozen once an intent has been created from it."""

    model_config = ConfigDict(frozen=True)

    # e.g. {"acc_id": 3, "course_id": 12} or {"authorization_id": 41}
    subject_ids: dict[str, int | str | None] = Field(default_factory=dict)
    quantity: int | str = 1
    discount_code: str | None = None

    # subscription flows are priced by an entered amount
    amount: Decimal | None = None
    auto_renew: bool | None = None

    @field_validator("discount_code")
    @classmethod
    def _strip_code(cls, v: str | None) -> str | None:
        if v is None:
            return None
        v = v.strip()
        return v or None

    @property
    def course_id(self) -> int | None:
        value = self.subject_ids.get("course_id")
        return value if isinstance(value, int) else None

    def wire_fields(self) -> dict[str, Any]:
        """Fields shared by the create-intent, complete and manual calls."""
        out: dict[str, Any] = dict(self.subject_ids)
        out["quantity"] = self.quantity
        if self.amount is not None:
            out["amount"] = str(self.amount)
        if self.auto_renew is not None:
            out["auto_renew"] = self.auto_renew
        if self.discount_code:
            out["discount_code"] = self.discount_code
        return out

    def same_purchase(self, other: "PurchaseRequest") -> bool:
        return (
            self.subject_ids == other.subject_ids
            and self.quantity == other.quantity
            and self.discount_code == other.discount_code
            and self.amount == other.amount
        )


class PricedAmount(BaseModel):
    model_config = ConfigDict(frozen=True)

    base_amount: Decimal
    discount_applied: Decimal
    final_amount: Decimal
    currency: str = "USD"


class PaymentIntent(BaseModel):
    """Decoded create-intent response. Single use per purchase attempt."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    success: bool
    client_secret: str = Field(min_length=1)
    payment_intent_id: str = Field(min_length=1)
    final_amount: Decimal
    total_amount: Decimal | None = None
    discount_amount: Decimal | None = None
    currency: str = "USD"
    commission_amount: Decimal | None = None
    provider_amount: Decimal | None = None
    unit_price: Decimal | None = None
    quantity: int | None = None
    payment_type: str | None = None
    manual_payment_info: dict[str, Any] | None = None

    @field_validator("success")
    @classmethod
    def _must_succeed(cls, v: bool) -> bool:
        if not v:
            raise ValueError("create-intent response reported success=false")
        return v

    @property
    def id(self) -> str:
        return self.payment_intent_id


class AuthorizationPaymentIntent(PaymentIntent):
    # the authorization endpoint reports the charge as `amount`
    final_amount: Decimal = Field(validation_alias="amount")


class ConfirmationStatus(str, Enum):
    SUCCEEDED = "succeeded"
    REQUIRES_ACTION = "requires_action"
    PROCESSING = "processing"
    CANCELED = "canceled"
    FAILED = "failed"


class ProviderConfirmation(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: ConfirmationStatus
    provider_transaction_id: str | None = None
    message: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.status is ConfirmationStatus.SUCCEEDED

    @property
    def terminal(self) -> bool:
        return self.status in (
            ConfirmationStatus.SUCCEEDED,
            ConfirmationStatus.CANCELED,
            ConfirmationStatus.FAILED,
        )


class ManualPaymentAck(BaseModel):
    """Wire shape of the manual-payment response."""

    model_config = ConfigDict(extra="ignore")

    status: Literal["pending_review"]
    id: int | None = None
    message: str | None = None


class ManualPaymentSubmission(BaseModel):
    model_config = ConfigDict(frozen=True)

    amount: Decimal
    receipt_filename: str
    receipt_content_type: str
    receipt_size: int
    request: PurchaseRequest
    status: Literal["pending_review", "approved", "rejected"] = "pending_review"
    submission_id: int | None = None


# -------------------------
# Console API (in / out)
# -------------------------

class DialogOpenIn(BaseModel):
    subject_ids: dict[str, int | str | None] = Field(default_factory=dict)
    unit_price: Decimal | None = Field(default=None, ge=0)
    currency: str | None = None


class PurchaseRequestIn(BaseModel):
    subject_ids: dict[str, int | str | None] = Field(default_factory=dict)
    quantity: int | str = 1
    discount_code: str | None = None
    amount: Decimal | None = None
    auto_renew: bool | None = None

    def to_request(self) -> PurchaseRequest:
        return PurchaseRequest(**self.model_dump())


class PayIn(BaseModel):
    payment_method_id: str = Field(min_length=1)


class PaymentSummaryOut(BaseModel):
    payment_intent_id: str
    final_amount: Decimal
    total_amount: Decimal | None = None
    discount_amount: Decimal | None = None
    currency: str
    quantity: int | None = None
    unit_price: Decimal | None = None

    # hidden from training centers
    commission_amount: Decimal | None = None
    provider_amount: Decimal | None = None

    @classmethod
    def from_intent(cls, intent: PaymentIntent, *, show_breakdown: bool) -> "PaymentSummaryOut":
        return cls(
            payment_intent_id=intent.payment_intent_id,
            final_amount=intent.final_amount,
            total_amount=intent.total_amount,
            discount_amount=intent.discount_amount,
            currency=intent.currency,
            quantity=intent.quantity,
            unit_price=intent.unit_price,
            commission_amount=intent.commission_amount if show_breakdown else None,
            provider_amount=intent.provider_amount if show_breakdown else None,
        )
