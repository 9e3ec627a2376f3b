"""Backend-owned purchase records returned by the completion endpoints."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field


class PurchaseRecord(BaseModel):
    # keep unknown fields: the record belongs to the backend
    model_config = ConfigDict(frozen=True, extra="allow")

    message: str | None = None


class SubscriptionRecord(PurchaseRecord):
    subscription_id: int
    status: str
    amount: Decimal | None = None
    subscription_start_date: datetime | None = None
    subscription_end_date: datetime | None = None
    auto_renew: bool = False


class CodeBatchRecord(PurchaseRecord):
    batch_id: int
    quantity: int = Field(ge=1)
    codes: list[str] = Field(default_factory=list)
    total_amount: Decimal | None = None
    payment_status: str | None = None


class AuthorizationRecord(PurchaseRecord):
    authorization_id: int
    payment_status: str
    status: str | None = None


class InstructorAuthorization(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int
    status: str
    group_admin_status: str | None = None
    payment_status: str = "pending"
    authorization_price: Decimal | None = None

    def payable(self) -> bool:
        return (
            self.status == "approved"
            and self.group_admin_status == "commission_set"
            and self.payment_status == "pending"
        )
