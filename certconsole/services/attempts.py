"""Journal of card payment attempts.

Written at each state change of a dialog that has an intent, so a captured
payment can always be traced to its intent id, even after the dialog is closed
or the process restarts.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Optional, Protocol

from sqlalchemy import and_, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from certconsole.core.errors import PaymentFlowError
from certconsole.models.payment_attempt import PaymentAttempt

if TYPE_CHECKING:
    from certconsole.services.dialogs import PurchaseDialog

logger = logging.getLogger(__name__)


class AttemptJournal(Protocol):
    async def record(self, dialog: "PurchaseDialog", *, error: PaymentFlowError | None = None) -> None: ...


def _apply(row: PaymentAttempt, dialog: "PurchaseDialog", error: PaymentFlowError | None) -> None:
    row.state = dialog.state.value
    if dialog.request is not None:
        row.subject_ids = {k: v for k, v in dialog.request.subject_ids.items()}
        row.quantity = int(dialog.request.quantity)
        row.discount_code = dialog.request.discount_code
    if dialog.confirmation is not None:
        row.provider_status = dialog.confirmation.status.value
        row.provider_transaction_id = dialog.confirmation.provider_transaction_id
    if error is not None:
        row.error_kind = error.kind.value
        row.error_message = error.message


class SqlAttemptJournal:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def record(self, dialog: "PurchaseDialog", *, error: PaymentFlowError | None = None) -> None:
        intent_id = dialog.payment_intent_id
        if intent_id is None:
            return

        async with self._session_factory() as db:
            res = await db.execute(select(PaymentAttempt).where(PaymentAttempt.payment_intent_id == intent_id))
            row = res.scalar_one_or_none()
            if row is None:
                row = PaymentAttempt(
                    payment_intent_id=intent_id,
                    flow=dialog.flow,
                    dialog_id=dialog.id,
                    owner=dialog.owner,
                    state=dialog.state.value,
                )
                db.add(row)
            _apply(row, dialog, error)
            await db.commit()

        logger.debug("journal intent=%s state=%s", intent_id, dialog.state.value)


async def list_attempts(
    db: AsyncSession,
    *,
    owner: str,
    flow: Optional[str] = None,
    state: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
) -> dict:
    filters = [PaymentAttempt.owner == owner]
    if flow is not None:
        filters.append(PaymentAttempt.flow == flow)
    if state is not None:
        filters.append(PaymentAttempt.state == state)

    where_clause = and_(*filters)

    total = (await db.execute(select(func.count(PaymentAttempt.id)).where(where_clause))).scalar_one()
    res = await db.execute(
        select(PaymentAttempt)
        .where(where_clause)
        .order_by(PaymentAttempt.created_at.desc(), PaymentAttempt.id.desc())
        .limit(limit)
        .offset(offset)
    )
    return {"items": list(res.scalars().all()), "total": int(total)}


async def get_attempt(db: AsyncSession, *, owner: str, payment_intent_id: str) -> PaymentAttempt | None:
    res = await db.execute(
        select(PaymentAttempt).where(
            PaymentAttempt.payment_intent_id == payment_intent_id,
            PaymentAttempt.owner == owner,
        )
    )
    return res.scalar_one_or_none()


async def journal_quietly(
    journal: AttemptJournal | None,
    dialog: "PurchaseDialog",
    error: PaymentFlowError | None = None,
) -> None:
    """Record ``dialog`` once money may have moved.

    From confirmation on the dialog state is authoritative and is returned to
    the user with the intent id; a journal outage is logged, not raised.
    """
    if journal is None:
        return
    try:
        await journal.record(dialog, error=error)
    except SQLAlchemyError:
        logger.exception("Could not journal intent %s (state=%s)", dialog.payment_intent_id, dialog.state.value)
