"""Async REST client for the billing backend built on httpx."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Mapping, Protocol

import httpx

from ..errors import TransportError
from ..normalization.shapes import is_empty_payload

_MISSING = object()


@dataclass(frozen=True)
class TransportResponse:
    """Normalized response returned for every HTTP status."""

    status_code: int
    url: str
    text: str
    payload: Any = None
    json_error: str | None = None

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    @property
    def is_empty(self) -> bool:
        if self.json_error is not None:
            return False
        return is_empty_payload(self.payload)


class BillingClientProtocol(Protocol):
    """Protocol describing the transport dependency used by the resolver."""

    async def get(self, path: str, params: Mapping[str, Any] | None = None) -> TransportResponse:
        ...


def bearer_header(token: str | None) -> str | None:
    text = (token or "").strip()
    if not text:
        return None
    if text.lower().startswith("bearer "):
        return text
    return f"Bearer {text}"


class BillingRESTClient:
    """Thin GET-only client; HTTP errors are returned, network errors raised."""

    DEFAULT_TIMEOUT = 20.0

    def __init__(
        self,
        base_url: str,
        *,
        token: str | None = None,
        timeout: float | None = None,
        user_agent: str = "billing-recon/1.0",
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        headers = {"Accept": "application/json", "User-Agent": user_agent}
        authorization = bearer_header(token)
        if authorization:
            headers["Authorization"] = authorization
        self.base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=timeout if timeout is not None else self.DEFAULT_TIMEOUT,
            transport=transport,
        )

    async def get(self, path: str, params: Mapping[str, Any] | None = None) -> TransportResponse:
        query = {key: value for key, value in (params or {}).items() if value is not None}
        try:
            response = await self._client.get(path, params=query or None)
        except httpx.HTTPError as exc:
            raise TransportError(f"Network failure contacting {self.base_url}{path}: {exc}") from exc
        return _to_transport_response(response)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "BillingRESTClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()


def _to_transport_response(response: httpx.Response) -> TransportResponse:
    text = response.text or ""
    payload: Any = None
    json_error: str | None = None
    if text.strip():
        decoded = _decode_json(text)
        if decoded is _MISSING:
            payload = text
            if 200 <= response.status_code < 300:
                json_error = "response body is not JSON"
        else:
            payload = decoded
    return TransportResponse(
        status_code=response.status_code,
        url=str(response.request.url),
        text=text,
        payload=payload,
        json_error=json_error,
    )


def _decode_json(text: str) -> Any:
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return _MISSING


__all__ = [
    "BillingClientProtocol",
    "BillingRESTClient",
    "TransportResponse",
    "bearer_header",
]
