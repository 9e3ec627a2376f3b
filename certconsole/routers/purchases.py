from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile
from pydantic import BaseModel

from certconsole.core.config import settings
from certconsole.core.deps import Caller, get_api_client, get_caller, get_flow, get_registry
from certconsole.integrations.backend_client import ConsoleApiClient
from certconsole.schemas.coupons import DiscountCodeOut
from certconsole.schemas.dialogs import CloseOut, DialogOut, IntentOut
from certconsole.schemas.purchases import (
    DialogOpenIn,
    PayIn,
    PaymentSummaryOut,
    PurchaseRequest,
    PurchaseRequestIn,
)
from certconsole.services.dialogs import DialogRegistry, PurchaseDialog
from certconsole.services.manual_payments import ReceiptFile
from certconsole.services.provider import TokenizedCard
from certconsole.services.purchase_flow import PurchaseFlow

router = APIRouter(prefix="/purchases", tags=["Purchases"])


class PayBody(PayIn):
    # when given, must match the purchase the intent was created for
    purchase: Optional[PurchaseRequestIn] = None


class CompleteBody(BaseModel):
    purchase: Optional[PurchaseRequestIn] = None


def dialog_out(flow: PurchaseFlow, dialog: PurchaseDialog) -> DialogOut:
    spec = flow.spec
    return DialogOut(
        id=dialog.id,
        flow=dialog.flow,
        state=dialog.state.value,
        closed=dialog.closed,
        subject_ids=dialog.subject_ids,
        unit_price=dialog.unit_price,
        currency=dialog.currency,
        payment_methods=sorted(m.value for m in spec.payment_methods),
        discount_codes=[DiscountCodeOut.from_code(c) for c in dialog.eligible_codes],
        priced=dialog.priced,
        payment=(
            PaymentSummaryOut.from_intent(dialog.intent, show_breakdown=spec.show_breakdown)
            if dialog.intent is not None
            else None
        ),
        confirmation=dialog.confirmation,
        record=dialog.record.model_dump(mode="json") if dialog.record is not None else None,
        manual_submission_id=dialog.manual_submission.submission_id if dialog.manual_submission else None,
        error=dialog.last_error,
    )


def _request_for(dialog: PurchaseDialog, payload: PurchaseRequestIn) -> PurchaseRequest:
    req = payload.to_request()
    # the dialog's subjects are the default; the body may only add to them
    subject_ids = {**dialog.subject_ids, **{k: v for k, v in req.subject_ids.items() if v is not None}}
    return req.model_copy(update={"subject_ids": subject_ids})


def _load(
    dialog_id: str,
    flow: PurchaseFlow,
    registry: DialogRegistry,
    caller: Caller,
    client: ConsoleApiClient,
) -> PurchaseDialog:
    dialog = registry.get(dialog_id, owner=caller.owner, flow=flow.name)
    # the caller's token may have been refreshed since the dialog opened
    dialog.client = client
    return dialog


@router.post("/{flow}/dialogs", response_model=DialogOut, status_code=201)
async def open_dialog(
    payload: DialogOpenIn,
    flow: PurchaseFlow = Depends(get_flow),
    caller: Caller = Depends(get_caller),
    client: ConsoleApiClient = Depends(get_api_client),
) -> DialogOut:
    dialog = await flow.open_dialog(
        client,
        caller.owner,
        payload.subject_ids,
        unit_price=payload.unit_price,
        currency=payload.currency,
    )
    return dialog_out(flow, dialog)


@router.get("/{flow}/dialogs/{dialog_id}", response_model=DialogOut)
async def get_dialog(
    dialog_id: str,
    flow: PurchaseFlow = Depends(get_flow),
    registry: DialogRegistry = Depends(get_registry),
    caller: Caller = Depends(get_caller),
    client: ConsoleApiClient = Depends(get_api_client),
) -> DialogOut:
    dialog = _load(dialog_id, flow, registry, caller, client)
    return dialog_out(flow, dialog)


@router.post("/{flow}/dialogs/{dialog_id}/intent", response_model=IntentOut)
async def create_intent(
    dialog_id: str,
    payload: PurchaseRequestIn,
    flow: PurchaseFlow = Depends(get_flow),
    registry: DialogRegistry = Depends(get_registry),
    caller: Caller = Depends(get_caller),
    client: ConsoleApiClient = Depends(get_api_client),
) -> IntentOut:
    dialog = _load(dialog_id, flow, registry, caller, client)
    intent = await flow.create_intent(dialog, _request_for(dialog, payload))
    return IntentOut(dialog=dialog_out(flow, dialog), client_secret=intent.client_secret)


@router.post("/{flow}/dialogs/{dialog_id}/pay", response_model=DialogOut)
async def pay(
    dialog_id: str,
    payload: PayBody,
    flow: PurchaseFlow = Depends(get_flow),
    registry: DialogRegistry = Depends(get_registry),
    caller: Caller = Depends(get_caller),
    client: ConsoleApiClient = Depends(get_api_client),
) -> DialogOut:
    dialog = _load(dialog_id, flow, registry, caller, client)
    request = _request_for(dialog, payload.purchase) if payload.purchase is not None else dialog.request
    card = TokenizedCard(payload.payment_method_id)
    if request is None:
        # no intent yet; confirm() reports it
        await flow.confirm(dialog, card)
    else:
        await flow.pay(dialog, card, request)
    return dialog_out(flow, dialog)


@router.post("/{flow}/dialogs/{dialog_id}/refresh", response_model=DialogOut)
async def refresh(
    dialog_id: str,
    flow: PurchaseFlow = Depends(get_flow),
    registry: DialogRegistry = Depends(get_registry),
    caller: Caller = Depends(get_caller),
    client: ConsoleApiClient = Depends(get_api_client),
) -> DialogOut:
    dialog = _load(dialog_id, flow, registry, caller, client)
    await flow.refresh(dialog)
    return dialog_out(flow, dialog)


@router.post("/{flow}/dialogs/{dialog_id}/complete", response_model=DialogOut)
async def complete(
    dialog_id: str,
    payload: CompleteBody,
    flow: PurchaseFlow = Depends(get_flow),
    registry: DialogRegistry = Depends(get_registry),
    caller: Caller = Depends(get_caller),
    client: ConsoleApiClient = Depends(get_api_client),
) -> DialogOut:
    """Complete a payment whose success was observed after the pay call returned."""
    dialog = _load(dialog_id, flow, registry, caller, client)
    request = _request_for(dialog, payload.purchase) if payload.purchase is not None else dialog.request
    if request is None:
        request = PurchaseRequest(subject_ids=dialog.subject_ids)
    await flow.complete(dialog, request)
    return dialog_out(flow, dialog)


@router.post("/{flow}/dialogs/{dialog_id}/manual-payment", response_model=DialogOut)
async def manual_payment(
    dialog_id: str,
    payment_amount: str = Form(...),
    quantity: str = Form("1"),
    discount_code: Optional[str] = Form(None),
    receipt: UploadFile = File(...),
    flow: PurchaseFlow = Depends(get_flow),
    registry: DialogRegistry = Depends(get_registry),
    caller: Caller = Depends(get_caller),
    client: ConsoleApiClient = Depends(get_api_client),
) -> DialogOut:
    dialog = _load(dialog_id, flow, registry, caller, client)
    # one byte over the limit is enough to reject it
    content = await receipt.read(settings.RECEIPT_MAX_BYTES + 1)
    file = ReceiptFile(
        filename=receipt.filename or "receipt",
        content_type=receipt.content_type or "",
        content=content,
    )
    request = _request_for(dialog, PurchaseRequestIn(quantity=quantity, discount_code=discount_code))
    await flow.submit_manual(dialog, payment_amount, file, request)
    return dialog_out(flow, dialog)


@router.delete("/{flow}/dialogs/{dialog_id}", response_model=CloseOut)
async def close_dialog(
    dialog_id: str,
    flow: PurchaseFlow = Depends(get_flow),
    registry: DialogRegistry = Depends(get_registry),
    caller: Caller = Depends(get_caller),
    client: ConsoleApiClient = Depends(get_api_client),
) -> CloseOut:
    dialog = _load(dialog_id, flow, registry, caller, client)
    outcome = await flow.close(dialog)
    return CloseOut(aborted=outcome.aborted, state=outcome.state.value, payment_intent_id=outcome.payment_intent_id)
