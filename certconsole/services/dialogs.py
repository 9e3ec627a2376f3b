"""Purchase dialog sessions and their state machine.

A dialog is one user's attempt to pay for one thing. It owns its request,
intent, provider confirmation and busy flags; nothing here is shared between
dialogs.

    DRAFT -> INTENT_CREATED -> CONFIRMING -> CONFIRMED -> COMPLETING -> COMPLETED
                                   |                          |
                             CONFIRM_FAILED           COMPLETION_FAILED

``requires_action`` sends CONFIRMING back to INTENT_CREATED so the user can
retry with the same intent. Nothing ever goes back from CONFIRMED.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Iterator
from uuid import uuid4

from certconsole.core.errors import (
    AuthorizationError,
    CompletionFailedError,
    FlowBusyError,
    PaymentFlowError,
    ValidationError,
)
from certconsole.core.security import same_owner
from certconsole.integrations.backend_client import ConsoleApiClient
from certconsole.schemas.coupons import DiscountCode
from certconsole.schemas.purchases import (
    ManualPaymentSubmission,
    PaymentIntent,
    PricedAmount,
    ProviderConfirmation,
    PurchaseRequest,
)
from certconsole.schemas.records import PurchaseRecord

logger = logging.getLogger(__name__)

DIALOG_MAX_AGE = timedelta(hours=24)


class FlowState(str, Enum):
    DRAFT = "draft"
    INTENT_CREATED = "intent_created"
    CONFIRMING = "confirming"
    CONFIRMED = "confirmed"
    COMPLETING = "completing"
    COMPLETED = "completed"
    CONFIRM_FAILED = "confirm_failed"
    COMPLETION_FAILED = "completion_failed"
    PENDING_REVIEW = "pending_review"
    ABORTED = "aborted"


_TRANSITIONS: dict[FlowState, frozenset[FlowState]] = {
    FlowState.DRAFT: frozenset({FlowState.INTENT_CREATED, FlowState.PENDING_REVIEW, FlowState.ABORTED}),
    FlowState.INTENT_CREATED: frozenset(
        {FlowState.INTENT_CREATED, FlowState.CONFIRMING, FlowState.PENDING_REVIEW, FlowState.ABORTED}
    ),
    FlowState.CONFIRMING: frozenset(
        {FlowState.CONFIRMING, FlowState.CONFIRMED, FlowState.CONFIRM_FAILED, FlowState.INTENT_CREATED}
    ),
    FlowState.CONFIRMED: frozenset({FlowState.COMPLETING}),
    FlowState.COMPLETING: frozenset({FlowState.COMPLETED, FlowState.COMPLETION_FAILED}),
    FlowState.CONFIRM_FAILED: frozenset({FlowState.INTENT_CREATED, FlowState.PENDING_REVIEW, FlowState.ABORTED}),
    FlowState.COMPLETED: frozenset(),
    FlowState.COMPLETION_FAILED: frozenset(),
    FlowState.PENDING_REVIEW: frozenset(),
    FlowState.ABORTED: frozenset(),
}

# states from which a new intent (or a manual submission) may start
STARTABLE_STATES = frozenset({FlowState.DRAFT, FlowState.INTENT_CREATED, FlowState.CONFIRM_FAILED})

# closing in these states leaves a charge that may still happen
UNSAFE_TO_CLOSE = frozenset({FlowState.CONFIRMING, FlowState.CONFIRMED, FlowState.COMPLETING})


class InvalidTransition(ValidationError):
    pass


class DialogNotFoundError(ValidationError):
    pass


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(eq=False)
class PurchaseDialog:
    flow: str
    owner: str
    client: ConsoleApiClient
    subject_ids: dict[str, int] = field(default_factory=dict)
    unit_price: Decimal | None = None
    currency: str = "USD"
    known_codes: list[DiscountCode] = field(default_factory=list)
    eligible_codes: list[DiscountCode] = field(default_factory=list)

    id: str = field(default_factory=lambda: uuid4().hex)
    created_at: datetime = field(default_factory=_now_utc)
    state: FlowState = FlowState.DRAFT

    request: PurchaseRequest | None = None
    priced: PricedAmount | None = None
    intent: PaymentIntent | None = None
    confirmation: ProviderConfirmation | None = None
    record: PurchaseRecord | None = None
    manual_submission: ManualPaymentSubmission | None = None
    last_error: dict[str, Any] | None = None
    completion_error: CompletionFailedError | None = None
    closed: bool = False

    # one outstanding call per stage
    creating_intent: bool = False
    confirming: bool = False
    completing: bool = False
    submitting_manual: bool = False

    @property
    def payment_intent_id(self) -> str | None:
        return self.intent.payment_intent_id if self.intent is not None else None

    @property
    def busy(self) -> bool:
        return self.creating_intent or self.confirming or self.completing or self.submitting_manual

    def known_code(self, code: str | None) -> DiscountCode | None:
        if not code:
            return None
        wanted = code.strip().lower()
        for c in self.known_codes:
            if c.code.strip().lower() == wanted:
                return c
        return None

    def transition(self, new_state: FlowState) -> None:
        if new_state not in _TRANSITIONS[self.state]:
            raise InvalidTransition(f"Cannot move payment from {self.state.value} to {new_state.value}.")
        logger.info(
            "dialog=%s flow=%s intent=%s %s -> %s",
            self.id,
            self.flow,
            self.payment_intent_id,
            self.state.value,
            new_state.value,
        )
        self.state = new_state

    def remember_error(self, exc: PaymentFlowError | None) -> None:
        self.last_error = exc.to_dict() if exc is not None else None

    @contextmanager
    def stage(self, flag: str, busy_message: str, *, allow_closed: bool = False) -> Iterator[None]:
        """Hold the busy flag ``flag`` for the duration of one network call.

        Closed dialogs refuse new work unless ``allow_closed`` is set, which is
        only for settling a payment that was already under way.
        """
        if self.closed and not allow_closed:
            raise ValidationError("This payment dialog has been closed.")
        if getattr(self, flag):
            raise FlowBusyError(busy_message)
        setattr(self, flag, True)
        try:
            yield
        finally:
            setattr(self, flag, False)


class DialogRegistry:
    """Open dialogs of this process, by id."""

    def __init__(self, *, max_age: timedelta = DIALOG_MAX_AGE):
        self._dialogs: dict[str, PurchaseDialog] = {}
        self._max_age = max_age

    def __len__(self) -> int:
        return len(self._dialogs)

    def add(self, dialog: PurchaseDialog) -> PurchaseDialog:
        self.prune()
        self._dialogs[dialog.id] = dialog
        return dialog

    def get(self, dialog_id: str, *, owner: str, flow: str | None = None) -> PurchaseDialog:
        dialog = self._dialogs.get(dialog_id)
        if dialog is None or (flow is not None and dialog.flow != flow):
            raise DialogNotFoundError("Payment dialog not found.")
        if not same_owner(dialog.owner, owner):
            raise AuthorizationError("This payment dialog belongs to another session.")
        return dialog

    def discard(self, dialog_id: str) -> None:
        self._dialogs.pop(dialog_id, None)

    def prune(self, now: datetime | None = None) -> int:
        """Drop idle dialogs older than the maximum age.

        A dialog left with a payment under way is still dropped once it is old
        and idle. Its last state is in the attempt journal, and the intent id
        is logged so support can reconcile it.
        """
        now = now or _now_utc()
        stale = [d for d in self._dialogs.values() if now - d.created_at > self._max_age and not d.busy]
        for dialog in stale:
            if dialog.state in UNSAFE_TO_CLOSE:
                logger.warning(
                    "dialog=%s flow=%s dropped in %s; intent %s needs reconciliation",
                    dialog.id,
                    dialog.flow,
                    dialog.state.value,
                    dialog.payment_intent_id,
                )
            del self._dialogs[dialog.id]
        return len(stale)
