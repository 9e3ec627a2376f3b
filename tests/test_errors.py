from __future__ import annotations

from certconsole.core.errors import (
    CompletionFailedError,
    ErrorKind,
    FlowBusyError,
    NetworkError,
    ServerError,
    ValidationError,
    classify,
    error_from_response,
    http_status_for,
)


def test_classify_known_statuses():
    assert classify(422).kind is ErrorKind.VALIDATION
    assert classify(400).kind is ErrorKind.CONFIGURATION
    assert classify(402).kind is ErrorKind.INSUFFICIENT_FUNDS
    assert classify(403).kind is ErrorKind.AUTHORIZATION
    assert classify(500).kind is ErrorKind.SERVER


def test_classify_without_response_is_network_and_retryable():
    c = classify(None)
    assert c.kind is ErrorKind.NETWORK
    assert c.retryable is True


def test_classify_unlisted_status_is_unknown():
    c = classify(418, {"message": "teapot"})
    assert c.kind is ErrorKind.UNKNOWN
    assert c.message == "teapot"
    assert c.retryable is False


def test_only_server_and_network_are_retryable():
    retryable = {k for k in ErrorKind if classify(_status_for(k)).retryable}
    assert retryable == {ErrorKind.SERVER, ErrorKind.NETWORK}


def _status_for(kind: ErrorKind) -> int | None:
    return {
        ErrorKind.VALIDATION: 422,
        ErrorKind.CONFIGURATION: 400,
        ErrorKind.INSUFFICIENT_FUNDS: 402,
        ErrorKind.AUTHORIZATION: 403,
        ErrorKind.SERVER: 500,
        ErrorKind.NETWORK: None,
        ErrorKind.UNKNOWN: 418,
    }[kind]


def test_validation_errors_become_field_messages():
    exc = error_from_response(
        422,
        {"message": "The given data was invalid.", "errors": {"quantity": ["Too many codes."], "course_id": "Missing"}},
    )
    assert isinstance(exc, ValidationError)
    assert exc.message == "The given data was invalid."
    assert exc.field_errors == {"quantity": "Too many codes.", "course_id": "Missing"}
    assert exc.status_code == 422


def test_default_message_when_body_has_none():
    exc = error_from_response(500, None)
    assert isinstance(exc, ServerError)
    assert "try again" in exc.message


def test_completion_failed_carries_intent_id_and_is_final():
    cause = ServerError("boom", status_code=500)
    exc = CompletionFailedError("pi_42", cause=cause)
    assert exc.payment_intent_id == "pi_42"
    assert "pi_42" in exc.message
    assert exc.retryable is False
    assert exc.to_dict()["payment_intent_id"] == "pi_42"


def test_http_status_mapping():
    assert http_status_for(FlowBusyError()) == 409
    assert http_status_for(NetworkError()) == 503
    assert http_status_for(ValidationError()) == 422
