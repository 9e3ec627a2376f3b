# certconsole/schemas/coupons.py
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator


class DiscountKind(str, Enum):
    PERCENTAGE = "percentage"
    FIXED_AMOUNT = "fixed_amount"


def _present(value: Any) -> bool:
    return value not in (None, "", 0, "0")


class DiscountCode(BaseModel):
    """A discount code as the console prices it.

    The backend lists codes as ``discount_percentage`` or ``discount_amount``
    with ``applicable_course_ids``, ``start_date``/``end_date`` and, for
    quantity based codes, ``total_quantity``/``used_quantity``. Those are
    folded into the fields below before validation.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    id: int | None = None
    code: str = Field(min_length=1)
    kind: DiscountKind
    value: Decimal = Field(gt=0)
    discount_type: str | None = None

    # empty = unscoped
    course_ids: tuple[int, ...] = ()

    status: str = "active"
    starts_at: datetime | None = None
    expires_at: datetime | None = None
    max_uses: int | None = Field(default=None, ge=0)
    used_count: int = Field(default=0, ge=0)

    @model_validator(mode="before")
    @classmethod
    def _from_backend(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)

        if not data.get("code") and data.get("discount_code"):
            data["code"] = data["discount_code"]

        if "kind" not in data:
            if _present(data.get("discount_percentage")):
                data["kind"] = DiscountKind.PERCENTAGE
                data["value"] = data["discount_percentage"]
            elif _present(data.get("discount_amount")):
                data["kind"] = DiscountKind.FIXED_AMOUNT
                data["value"] = data["discount_amount"]

        if "course_ids" not in data:
            ids = data.get("applicable_course_ids") or data.get("course_ids")
            if not ids and data.get("courses"):
                ids = [c.get("id") for c in data["courses"] if isinstance(c, dict) and c.get("id") is not None]
            if not ids and data.get("course_id") is not None:
                ids = [data["course_id"]]
            data["course_ids"] = tuple(ids or ())

        if data.get("starts_at") is None and data.get("start_date"):
            data["starts_at"] = data["start_date"]
        if data.get("expires_at") is None and data.get("end_date"):
            data["expires_at"] = data["end_date"]
        if data.get("max_uses") is None and data.get("total_quantity") is not None:
            data["max_uses"] = data["total_quantity"]
        if "used_count" not in data and data.get("used_quantity") is not None:
            data["used_count"] = data["used_quantity"]
        if data.get("used_count") is None:
            data.pop("used_count", None)

        if data.get("status") is None:
            data["status"] = "inactive" if data.get("is_active") is False else "active"
        return data

    def applies_to(self, course_id: int | None) -> bool:
        return course_id is not None and course_id in self.course_ids


class DiscountCodeList(BaseModel):
    discount_codes: list[DiscountCode]

    @model_validator(mode="before")
    @classmethod
    def _unwrap(cls, data: Any) -> Any:
        if isinstance(data, list):
            return {"discount_codes": data}
        if isinstance(data, dict) and "discount_codes" not in data:
            for key in ("discountCodes", "codes", "data"):
                if isinstance(data.get(key), list):
                    return {"discount_codes": data[key]}
        return data


class DiscountCodeOut(BaseModel):
    code: str
    kind: DiscountKind
    value: Decimal
    course_ids: list[int]
    expires_at: datetime | None
    uses_left: int | None

    @classmethod
    def from_code(cls, code: DiscountCode) -> "DiscountCodeOut":
        uses_left = None
        if code.max_uses is not None:
            uses_left = max(0, code.max_uses - code.used_count)
        return cls(
            code=code.code,
            kind=code.kind,
            value=code.value,
            course_ids=list(code.course_ids),
            expires_at=code.expires_at,
            uses_left=uses_left,
        )
