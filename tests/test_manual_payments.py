from __future__ import annotations

import pytest

from certconsole.core.errors import ConfigurationError, FlowBusyError, ResponseDecodeError, ValidationError
from certconsole.schemas.purchases import PurchaseRequest
from certconsole.services.dialogs import FlowState
from certconsole.services.flows import CODES, SUBSCRIPTION
from certconsole.services.manual_payments import ManualPaymentPathway, ReceiptFile

from conftest import make_dialog

PURCHASE_PATH = "/training-center/codes/purchase"
PDF = ReceiptFile(filename="transfer.pdf", content_type="application/pdf", content=b"%PDF-1.4 receipt")


def request() -> PurchaseRequest:
    return PurchaseRequest(subject_ids={"acc_id": 3, "course_id": 12}, quantity=2)


@pytest.mark.anyio
async def test_submission_goes_to_review(backend, api_client):
    backend.on("POST", PURCHASE_PATH, body={"status": "pending_review", "id": 55, "message": "Submitted"})
    dialog = make_dialog(api_client)

    submission = await ManualPaymentPathway(CODES).submit(dialog, "100.00", PDF, request())

    assert submission.status == "pending_review"
    assert submission.submission_id == 55
    assert submission.receipt_size == len(PDF.content)
    assert dialog.state is FlowState.PENDING_REVIEW

    content = backend.calls[0].content
    assert b'name="payment_method"\r\n\r\nmanual' in content
    assert b'name="payment_amount"\r\n\r\n100.00' in content
    assert b'name="receipt"; filename="transfer.pdf"' in content


@pytest.mark.anyio
async def test_amount_within_a_cent_is_accepted(backend, api_client):
    backend.on("POST", PURCHASE_PATH, body={"status": "pending_review", "id": 1})
    dialog = make_dialog(api_client)
    await ManualPaymentPathway(CODES).submit(dialog, "99.99", PDF, request())
    assert dialog.state is FlowState.PENDING_REVIEW


@pytest.mark.anyio
async def test_amount_mismatch_is_rejected(backend, api_client):
    dialog = make_dialog(api_client)
    with pytest.raises(ValidationError) as ei:
        await ManualPaymentPathway(CODES).submit(dialog, "90.00", PDF, request())
    assert "payment_amount" in ei.value.field_errors
    assert backend.calls == []
    assert dialog.state is FlowState.DRAFT


@pytest.mark.anyio
async def test_unsupported_receipt_type_is_rejected(backend, api_client):
    dialog = make_dialog(api_client)
    gif = ReceiptFile(filename="r.gif", content_type="image/gif", content=b"GIF89a")
    with pytest.raises(ValidationError) as ei:
        await ManualPaymentPathway(CODES).submit(dialog, "100.00", gif, request())
    assert "receipt" in ei.value.field_errors
    assert backend.calls == []


@pytest.mark.anyio
async def test_oversized_receipt_is_rejected(backend, api_client):
    dialog = make_dialog(api_client)
    big = ReceiptFile(filename="r.png", content_type="image/png", content=b"x" * 11)
    with pytest.raises(ValidationError):
        await ManualPaymentPathway(CODES, max_bytes=10).submit(dialog, "100.00", big, request())
    assert backend.calls == []


@pytest.mark.anyio
async def test_unexpected_ack_status_is_a_decode_error(backend, api_client):
    backend.on("POST", PURCHASE_PATH, body={"status": "approved", "id": 1})
    dialog = make_dialog(api_client)
    with pytest.raises(ResponseDecodeError):
        await ManualPaymentPathway(CODES).submit(dialog, "100.00", PDF, request())
    assert dialog.state is FlowState.DRAFT


@pytest.mark.anyio
async def test_not_offered_for_subscriptions(api_client):
    dialog = make_dialog(api_client, flow="subscription", subject_ids={})
    with pytest.raises(ConfigurationError):
        await ManualPaymentPathway(SUBSCRIPTION).submit(dialog, "10.00", PDF, PurchaseRequest(amount="10.00"))


@pytest.mark.anyio
async def test_second_submission_is_refused(api_client):
    dialog = make_dialog(api_client)
    dialog.submitting_manual = True
    with pytest.raises(FlowBusyError):
        await ManualPaymentPathway(CODES).submit(dialog, "100.00", PDF, request())
