from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from certconsole.core.errors import DiscountInvalid, FlowBusyError, InvalidQuantity, ResponseDecodeError, ValidationError
from certconsole.schemas.coupons import DiscountCode
from certconsole.schemas.purchases import PurchaseRequest
from certconsole.services.dialogs import FlowState
from certconsole.services.flows import CODES, INSTRUCTOR_AUTHORIZATION, SUBSCRIPTION
from certconsole.services.intents import PriceMismatchError, PurchaseIntentRequester

from conftest import intent_body, json_body, make_dialog

INTENT_PATH = "/training-center/codes/create-payment-intent"


def codes_request(**kw) -> PurchaseRequest:
    kw.setdefault("subject_ids", {"acc_id": "3", "course_id": 12})
    kw.setdefault("quantity", "2")
    return PurchaseRequest(**kw)


@pytest.mark.anyio
async def test_creates_intent_and_freezes_request(backend, api_client):
    backend.on("POST", INTENT_PATH, body=intent_body(final_amount="100.00"))
    dialog = make_dialog(api_client)

    intent = await PurchaseIntentRequester(CODES).create_intent(dialog, codes_request())

    assert intent.payment_intent_id == "pi_1"
    assert dialog.state is FlowState.INTENT_CREATED
    assert dialog.intent is intent
    assert dialog.request.subject_ids == {"acc_id": 3, "course_id": 12}
    assert dialog.request.quantity == 2
    assert dialog.priced.final_amount == Decimal("100.00")
    assert json_body(backend.calls[0]) == {"acc_id": 3, "course_id": 12, "quantity": 2}


@pytest.mark.anyio
async def test_missing_course_fails_before_any_call(backend, api_client):
    dialog = make_dialog(api_client)
    with pytest.raises(ValidationError) as ei:
        await PurchaseIntentRequester(CODES).create_intent(dialog, codes_request(subject_ids={"acc_id": 3}))
    assert "course_id" in ei.value.field_errors
    assert backend.calls == []
    assert dialog.state is FlowState.DRAFT


@pytest.mark.anyio
@pytest.mark.parametrize("qty", ["0", "abc", -3, "1.5"])
async def test_bad_quantity_fails_before_any_call(backend, api_client, qty):
    dialog = make_dialog(api_client)
    with pytest.raises(InvalidQuantity):
        await PurchaseIntentRequester(CODES).create_intent(dialog, codes_request(quantity=qty))
    assert backend.calls == []


@pytest.mark.anyio
async def test_non_numeric_subject_id_is_rejected(backend, api_client):
    dialog = make_dialog(api_client)
    with pytest.raises(ValidationError):
        await PurchaseIntentRequester(CODES).create_intent(
            dialog, codes_request(subject_ids={"acc_id": "three", "course_id": 12})
        )
    assert backend.calls == []


@pytest.mark.anyio
async def test_expired_discount_fails_locally(backend, api_client):
    expired = DiscountCode(
        code="OLD",
        kind="percentage",
        value=Decimal("10"),
        course_id=12,
        expires_at=datetime.now(timezone.utc) - timedelta(days=1),
    )
    dialog = make_dialog(api_client, known_codes=[expired])
    with pytest.raises(DiscountInvalid):
        await PurchaseIntentRequester(CODES).create_intent(dialog, codes_request(discount_code="old"))
    assert backend.calls == []
    assert dialog.intent is None


@pytest.mark.anyio
async def test_discounted_quote_is_checked(backend, api_client):
    code = DiscountCode(code="SAVE10", kind="percentage", value=Decimal("10"), course_id=12)
    backend.on("POST", INTENT_PATH, body=intent_body(final_amount="90.00", discount_amount="10.00"))
    dialog = make_dialog(api_client, known_codes=[code])

    await PurchaseIntentRequester(CODES).create_intent(dialog, codes_request(discount_code="SAVE10"))

    assert dialog.priced.discount_applied == Decimal("10.00")
    assert json_body(backend.calls[0])["discount_code"] == "SAVE10"


@pytest.mark.anyio
async def test_quote_that_disagrees_with_local_price_is_abandoned(backend, api_client):
    backend.on("POST", INTENT_PATH, body=intent_body(final_amount="80.00"))
    dialog = make_dialog(api_client)

    with pytest.raises(PriceMismatchError):
        await PurchaseIntentRequester(CODES).create_intent(dialog, codes_request())

    assert dialog.intent is None
    assert dialog.state is FlowState.DRAFT


@pytest.mark.anyio
async def test_unknown_code_is_left_to_the_backend(backend, api_client):
    backend.on("POST", INTENT_PATH, body=intent_body(final_amount="75.00"))
    dialog = make_dialog(api_client)

    await PurchaseIntentRequester(CODES).create_intent(dialog, codes_request(discount_code="PARTNER"))

    assert dialog.priced is None
    assert dialog.intent.final_amount == Decimal("75.00")


@pytest.mark.anyio
async def test_second_request_while_one_is_outstanding_is_refused(backend, api_client):
    dialog = make_dialog(api_client)
    dialog.creating_intent = True
    with pytest.raises(FlowBusyError):
        await PurchaseIntentRequester(CODES).create_intent(dialog, codes_request())
    assert backend.calls == []


@pytest.mark.anyio
async def test_intent_without_client_secret_is_a_decode_error(backend, api_client):
    body = intent_body()
    del body["client_secret"]
    backend.on("POST", INTENT_PATH, body=body)
    dialog = make_dialog(api_client)

    with pytest.raises(ResponseDecodeError):
        await PurchaseIntentRequester(CODES).create_intent(dialog, codes_request())
    assert dialog.state is FlowState.DRAFT
    assert dialog.creating_intent is False


@pytest.mark.anyio
async def test_subscription_amount_must_reach_minimum(backend, api_client):
    dialog = make_dialog(api_client, flow="subscription", subject_ids={}, unit_price=None)
    with pytest.raises(ValidationError) as ei:
        await PurchaseIntentRequester(SUBSCRIPTION).create_intent(
            dialog, PurchaseRequest(amount=Decimal("0.50"))
        )
    assert "amount" in ei.value.field_errors
    assert backend.calls == []


@pytest.mark.anyio
async def test_authorization_intent_reads_amount_field(backend, api_client):
    backend.on(
        "POST",
        "/training-center/instructors/authorizations/41/payment-intent",
        body={"success": True, "client_secret": "pi_9_secret_x", "payment_intent_id": "pi_9", "amount": "250.00"},
    )
    dialog = make_dialog(
        api_client,
        flow="instructor-authorization",
        subject_ids={"authorization_id": 41},
        unit_price=Decimal("250.00"),
    )

    intent = await PurchaseIntentRequester(INSTRUCTOR_AUTHORIZATION).create_intent(
        dialog, PurchaseRequest(subject_ids={"authorization_id": 41})
    )
    assert intent.final_amount == Decimal("250.00")
