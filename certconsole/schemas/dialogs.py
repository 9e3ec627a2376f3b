from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict

from certconsole.schemas.coupons import DiscountCodeOut
from certconsole.schemas.purchases import PaymentSummaryOut, PricedAmount, ProviderConfirmation


class DialogOut(BaseModel):
    id: str
    flow: str
    state: str
    closed: bool
    subject_ids: dict[str, int]
    unit_price: Optional[Decimal] = None
    currency: str
    payment_methods: List[str]
    discount_codes: List[DiscountCodeOut] = []

    priced: Optional[PricedAmount] = None
    payment: Optional[PaymentSummaryOut] = None
    confirmation: Optional[ProviderConfirmation] = None
    record: Optional[dict[str, Any]] = None
    manual_submission_id: Optional[int] = None
    error: Optional[dict[str, Any]] = None


class IntentOut(BaseModel):
    dialog: DialogOut
    # the browser confirms with this; never logged
    client_secret: str


class CloseOut(BaseModel):
    aborted: bool
    state: str
    payment_intent_id: Optional[str] = None


class PaymentAttemptOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    payment_intent_id: str
    flow: str
    dialog_id: str
    state: str
    provider_status: Optional[str] = None
    provider_transaction_id: Optional[str] = None
    subject_ids: dict[str, Any]
    quantity: int
    discount_code: Optional[str] = None
    error_kind: Optional[str] = None
    error_message: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class PaymentAttemptsListOut(BaseModel):
    items: List[PaymentAttemptOut]
    total: int
