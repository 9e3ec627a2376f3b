"""Error taxonomy for purchase flows and the backend error classifier.

Every error raised by a purchase flow is a ``PaymentFlowError``. The kind and
retry guidance come from one table (``_POLICY``) so the API layer, the log
lines and the dialog banners agree on what the user should do next.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    VALIDATION = "validation_error"
    CONFIGURATION = "configuration_error"
    INSUFFICIENT_FUNDS = "insufficient_funds_error"
    AUTHORIZATION = "authorization_error"
    SERVER = "server_error"
    NETWORK = "network_error"
    UNKNOWN = "unknown_error"


@dataclass(frozen=True)
class ClassifiedError:
    kind: ErrorKind
    message: str
    retryable: bool
    status_code: int | None = None
    field_errors: dict[str, str] = field(default_factory=dict)


_STATUS_TO_KIND: dict[int, ErrorKind] = {
    422: ErrorKind.VALIDATION,
    400: ErrorKind.CONFIGURATION,
    402: ErrorKind.INSUFFICIENT_FUNDS,
    403: ErrorKind.AUTHORIZATION,
    500: ErrorKind.SERVER,
}

# kind -> (retryable, default message)
_POLICY: dict[ErrorKind, tuple[bool, str]] = {
    ErrorKind.VALIDATION: (False, "Validation failed. Please check your input."),
    ErrorKind.CONFIGURATION: (False, "Payment service unavailable. Please contact support."),
    ErrorKind.INSUFFICIENT_FUNDS: (False, "Insufficient funds. Please use a different payment method."),
    ErrorKind.AUTHORIZATION: (False, "You are not allowed to perform this payment."),
    ErrorKind.SERVER: (True, "The server failed to process the payment request. Please try again later."),
    ErrorKind.NETWORK: (True, "Could not reach the payment service. Check your connection and try again."),
    ErrorKind.UNKNOWN: (False, "Unexpected response from the payment service."),
}


def _field_errors(body: Any) -> dict[str, str]:
    if not isinstance(body, dict):
        return {}
    raw = body.get("errors")
    if not isinstance(raw, dict):
        return {}

    out: dict[str, str] = {}
    for name, messages in raw.items():
        if isinstance(messages, list):
            if messages:
                out[str(name)] = str(messages[0])
        elif messages is not None:
            out[str(name)] = str(messages)
    return out


def classify(status_code: int | None, body: Any = None) -> ClassifiedError:
    """Map a backend response (or the lack of one) to a classified error.

    ``status_code=None`` means no response arrived at all.
    """
    if status_code is None:
        kind = ErrorKind.NETWORK
    else:
        kind = _STATUS_TO_KIND.get(int(status_code), ErrorKind.UNKNOWN)

    retryable, default_message = _POLICY[kind]

    message = default_message
    if isinstance(body, dict):
        raw_message = body.get("message") or body.get("detail")
        if isinstance(raw_message, str) and raw_message.strip():
            message = raw_message.strip()

    return ClassifiedError(
        kind=kind,
        message=message,
        retryable=retryable,
        status_code=status_code,
        field_errors=_field_errors(body),
    )


# -------------------------
# Exceptions
# -------------------------

class PaymentFlowError(Exception):
    kind: ErrorKind = ErrorKind.UNKNOWN

    def __init__(
        self,
        message: str | None = None,
        *,
        field_errors: dict[str, str] | None = None,
        status_code: int | None = None,
        payment_intent_id: str | None = None,
    ):
        self.message = message or _POLICY[self.kind][1]
        self.field_errors = dict(field_errors or {})
        self.status_code = status_code
        self.payment_intent_id = payment_intent_id
        super().__init__(self.message)

    @property
    def retryable(self) -> bool:
        return _POLICY[self.kind][0]

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "kind": self.kind.value,
            "message": self.message,
            "retryable": self.retryable,
            "field_errors": self.field_errors,
        }
        if self.payment_intent_id:
            out["payment_intent_id"] = self.payment_intent_id
        return out


class ValidationError(PaymentFlowError):
    kind = ErrorKind.VALIDATION


class ConfigurationError(PaymentFlowError):
    kind = ErrorKind.CONFIGURATION


class InsufficientFundsError(PaymentFlowError):
    kind = ErrorKind.INSUFFICIENT_FUNDS


class AuthorizationError(PaymentFlowError):
    kind = ErrorKind.AUTHORIZATION


class ServerError(PaymentFlowError):
    kind = ErrorKind.SERVER


class NetworkError(PaymentFlowError):
    kind = ErrorKind.NETWORK


class UnknownError(PaymentFlowError):
    kind = ErrorKind.UNKNOWN


class DiscountInvalid(ValidationError):
    pass


class InvalidQuantity(ValidationError):
    pass


class RequestMismatchError(ValidationError):
    pass


class ResponseDecodeError(UnknownError):
    pass


class ProviderNotConfiguredError(ConfigurationError):
    pass


class FlowBusyError(PaymentFlowError):
    """A call for the same dialog stage is already outstanding."""

    kind = ErrorKind.VALIDATION


class AlreadyCompletingError(FlowBusyError):
    pass


class PaymentNotConfirmedError(PaymentFlowError):
    kind = ErrorKind.VALIDATION


class CompletionFailedError(PaymentFlowError):
    """The charge went through but the backend did not provision the purchase.

    Never retried by the client. ``payment_intent_id`` is always set so support
    can reconcile the captured payment.
    """

    kind = ErrorKind.SERVER

    def __init__(self, payment_intent_id: str, cause: PaymentFlowError | None = None):
        detail = f" ({cause.message})" if cause is not None else ""
        super().__init__(
            "Payment succeeded but the purchase could not be completed"
            f"{detail}. Please contact support and quote payment reference {payment_intent_id}.",
            status_code=cause.status_code if cause is not None else None,
            payment_intent_id=payment_intent_id,
        )
        self.cause = cause

    @property
    def retryable(self) -> bool:
        return False


_KIND_TO_EXCEPTION: dict[ErrorKind, type[PaymentFlowError]] = {
    ErrorKind.VALIDATION: ValidationError,
    ErrorKind.CONFIGURATION: ConfigurationError,
    ErrorKind.INSUFFICIENT_FUNDS: InsufficientFundsError,
    ErrorKind.AUTHORIZATION: AuthorizationError,
    ErrorKind.SERVER: ServerError,
    ErrorKind.NETWORK: NetworkError,
    ErrorKind.UNKNOWN: UnknownError,
}


def error_from_response(status_code: int | None, body: Any = None) -> PaymentFlowError:
    classified = classify(status_code, body)
    exc_type = _KIND_TO_EXCEPTION[classified.kind]
    return exc_type(
        classified.message,
        field_errors=classified.field_errors,
        status_code=classified.status_code,
    )


# HTTP status the console API answers with, per kind.
HTTP_STATUS_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.VALIDATION: 422,
    ErrorKind.CONFIGURATION: 400,
    ErrorKind.INSUFFICIENT_FUNDS: 402,
    ErrorKind.AUTHORIZATION: 403,
    ErrorKind.SERVER: 502,
    ErrorKind.NETWORK: 503,
    ErrorKind.UNKNOWN: 502,
}


def http_status_for(exc: PaymentFlowError) -> int:
    if isinstance(exc, FlowBusyError):
        return 409
    return HTTP_STATUS_BY_KIND[exc.kind]
