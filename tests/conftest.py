"""Shared fixtures.

- No network: the backend is an httpx.MockTransport, the card provider a fake.
- AnyIO is the async runner (@pytest.mark.anyio) on the asyncio loop.
"""

from __future__ import annotations

import json
from decimal import Decimal
from typing import Any, Callable

import httpx
import pytest

from certconsole.integrations.backend_client import ConsoleApiClient
from certconsole.services.dialogs import PurchaseDialog

BASE_URL = "http://backend.test/v1/api"


@pytest.fixture(scope="session")
def anyio_backend() -> str:
    """Force pytest-anyio to use asyncio event loop."""

    return "asyncio"


class FakeBackend:
    """Routes (method, path) to canned answers and records every call."""

    def __init__(self) -> None:
        self.routes: dict[tuple[str, str], Callable[[httpx.Request], httpx.Response]] = {}
        self.calls: list[httpx.Request] = []

    def on(self, method: str, path: str, status: int = 200, body: Any = None) -> None:
        def _answer(request: httpx.Request) -> httpx.Response:
            return httpx.Response(status, json=body)

        self.routes[(method, path)] = _answer

    def on_call(self, method: str, path: str, handler: Callable[[httpx.Request], httpx.Response]) -> None:
        self.routes[(method, path)] = handler

    def calls_to(self, path: str) -> list[httpx.Request]:
        return [r for r in self.calls if r.url.path.endswith(path)]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        path = request.url.path
        prefix = httpx.URL(BASE_URL).path
        if path.startswith(prefix):
            path = path[len(prefix):]
        answer = self.routes.get((request.method, path))
        if answer is None:
            return httpx.Response(404, json={"message": f"no route for {request.method} {path}"})
        return answer(request)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def api_client(backend: FakeBackend) -> ConsoleApiClient:
    return ConsoleApiClient("user-token", base_url=BASE_URL, transport=backend.transport)


class FakeConfirmer:
    provider_name = "fake"

    def __init__(self, status: str = "succeeded", intent_id: str = "pi_1") -> None:
        self.status = status
        self.intent_id = intent_id
        self.confirm_calls: list[tuple[str, str]] = []
        self.retrieve_calls: list[str] = []
        self.raise_on_confirm: Exception | None = None
        self.retrieve_status: str | None = None

    async def confirm_card_payment(self, client_secret: str, payment_method: str) -> dict[str, Any]:
        self.confirm_calls.append((client_secret, payment_method))
        if self.raise_on_confirm is not None:
            raise self.raise_on_confirm
        return {"id": self.intent_id, "status": self.status}

    async def retrieve(self, client_secret: str) -> dict[str, Any]:
        self.retrieve_calls.append(client_secret)
        return {"id": self.intent_id, "status": self.retrieve_status or self.status}


@pytest.fixture
def confirmer() -> FakeConfirmer:
    return FakeConfirmer()


def intent_body(intent_id: str = "pi_1", final_amount: str = "100.00", **extra: Any) -> dict[str, Any]:
    body = {
        "success": True,
        "client_secret": f"{intent_id}_secret_abc",
        "payment_intent_id": intent_id,
        "final_amount": final_amount,
        "currency": "USD",
    }
    body.update(extra)
    return body


def json_body(request: httpx.Request) -> dict[str, Any]:
    return json.loads(request.content)


def make_dialog(client: ConsoleApiClient, flow: str = "codes", **kwargs: Any) -> PurchaseDialog:
    kwargs.setdefault("subject_ids", {"acc_id": 3, "course_id": 12})
    kwargs.setdefault("unit_price", Decimal("50.00"))
    return PurchaseDialog(flow=flow, owner="tok:owner", client=client, **kwargs)
