from __future__ import annotations

import logging
from typing import Any, TypeVar

import httpx
from pydantic import BaseModel
from pydantic import ValidationError as SchemaError

from certconsole.core.config import settings
from certconsole.core.errors import NetworkError, ResponseDecodeError, error_from_response

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


def decode_response(model: type[ModelT], payload: Any, *, what: str) -> ModelT:
    """Decode a backend payload into ``model`` or raise ResponseDecodeError."""
    try:
        return model.model_validate(payload)
    except SchemaError as e:
        logger.warning("Unexpected %s response shape: %s", what, e.errors(include_url=False))
        raise ResponseDecodeError(f"Unexpected {what} response from the server.") from e


def _json_or_none(r: httpx.Response) -> Any:
    try:
        return r.json()
    except ValueError:
        return None


class ConsoleApiClient:
    """Thin async client for the certification REST backend.

    The caller's bearer token is forwarded unchanged. Every non-2xx answer is
    raised through the error classifier; transport failures become NetworkError.
    """

    def __init__(
        self,
        token: str | None = None,
        *,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = (base_url or settings.BACKEND_API_BASE_URL).rstrip("/")
        self.token = token
        self.timeout = timeout if timeout is not None else settings.BACKEND_TIMEOUT_SECONDS
        self.transport = transport

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        data: dict[str, Any] | None = None,
        files: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> Any:
        url = f"{self.base_url}{path}"

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                r = await client.request(
                    method,
                    url,
                    json=json,
                    data=data,
                    files=files,
                    params=params,
                    headers=self._headers(),
                )
        except httpx.HTTPError as e:
            # transport failures, redirect loops and undecodable bodies alike
            logger.warning("%s %s failed without a response: %s", method, path, e)
            raise NetworkError() from e

        body = _json_or_none(r)

        if r.status_code >= 400:
            exc = error_from_response(r.status_code, body)
            logger.info("%s %s -> %s (%s)", method, path, r.status_code, exc.kind.value)
            raise exc

        if body is None:
            raise ResponseDecodeError(f"Empty or non-JSON response from {path}.")
        return body

    async def get_json(self, path: str, *, params: dict[str, Any] | None = None) -> Any:
        return await self.request("GET", path, params=params)

    async def post_json(self, path: str, payload: dict[str, Any]) -> Any:
        return await self.request("POST", path, json=payload)

    async def post_multipart(
        self,
        path: str,
        fields: dict[str, Any],
        files: dict[str, tuple[str, bytes, str]],
    ) -> Any:
        data: dict[str, str] = {}
        for k, v in fields.items():
            if v is None:
                continue
            if isinstance(v, bool):
                data[k] = "1" if v else "0"
            else:
                data[k] = str(v)
        return await self.request("POST", path, data=data, files=files)
