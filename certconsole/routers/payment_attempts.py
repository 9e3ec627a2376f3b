from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from certconsole.core.db import get_db
from certconsole.core.deps import Caller, get_caller
from certconsole.schemas.dialogs import PaymentAttemptOut, PaymentAttemptsListOut
from certconsole.services.attempts import get_attempt, list_attempts

router = APIRouter(prefix="/payment-attempts", tags=["Payment Attempts"])


@router.get("", response_model=PaymentAttemptsListOut)
async def list_my_attempts(
    flow: Optional[str] = None,
    state: Optional[str] = None,
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: AsyncSession = Depends(get_db),
    caller: Caller = Depends(get_caller),
) -> PaymentAttemptsListOut:
    data = await list_attempts(db, owner=caller.owner, flow=flow, state=state, limit=limit, offset=offset)
    return PaymentAttemptsListOut(
        items=[PaymentAttemptOut.model_validate(row) for row in data["items"]],
        total=data["total"],
    )


@router.get("/{payment_intent_id}", response_model=PaymentAttemptOut)
async def get_my_attempt(
    payment_intent_id: str,
    db: AsyncSession = Depends(get_db),
    caller: Caller = Depends(get_caller),
) -> PaymentAttemptOut:
    row = await get_attempt(db, owner=caller.owner, payment_intent_id=payment_intent_id)
    if row is None:
        raise HTTPException(status_code=404, detail="Payment attempt not found")
    return PaymentAttemptOut.model_validate(row)
