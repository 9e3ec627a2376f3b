from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, DateTime, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from certconsole.core.db import Base


class PaymentAttempt(Base):
    """One card payment attempt, keyed by the provider's intent id.

    Amounts are not stored here: the backend owns them. The row exists so an
    intent id stays findable after the dialog that created it is gone.
    """

    __tablename__ = "payment_attempts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    payment_intent_id: Mapped[str] = mapped_column(String(255), nullable=False, unique=True, index=True)
    flow: Mapped[str] = mapped_column(String(64), nullable=False)
    dialog_id: Mapped[str] = mapped_column(String(32), nullable=False)
    owner: Mapped[str] = mapped_column(String(128), nullable=False, index=True)

    state: Mapped[str] = mapped_column(String(32), nullable=False)
    provider_status: Mapped[str | None] = mapped_column(String(32), nullable=True)
    provider_transaction_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    subject_ids: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    discount_code: Mapped[str | None] = mapped_column(String(64), nullable=True)

    error_kind: Mapped[str | None] = mapped_column(String(32), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )
