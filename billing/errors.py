"""Error taxonomy shared by the resolver, classifier and query boundary."""

from __future__ import annotations

from dataclasses import dataclass
import json
from typing import Any, Mapping, Sequence

_BACKEND_MESSAGE_KEYS = ("error", "message", "detail", "msg", "reason")


class BillingError(RuntimeError):
    """Base error for billing reconciliation failures."""


class TransportError(BillingError):
    """Raised by the HTTP client when no response could be obtained."""


class ValidationError(BillingError, ValueError):
    """Raised for malformed user input before any request is issued."""


class AuthFailure(BillingError):
    """Raised when the backend answers 401/403; aborts every fallback chain."""

    def __init__(self, message: str, *, status_code: int, url: str, body: Any = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.url = url
        self.body = body


class UnrecognizedPayload(BillingError):
    """Raised when no known billing shape matches a payload."""

    def __init__(self, message: str, *, payload: Any) -> None:
        super().__init__(message)
        self.payload = payload


class PartialDataWarning(UserWarning):
    """Informational: some candidates failed before a later one succeeded."""


@dataclass(frozen=True)
class EndpointAttempt:
    """One tried request target and how it ended."""

    url: str
    outcome: str  # success, http, network, empty, invalid_json
    status_code: int | None = None
    message: str | None = None

    @property
    def ok(self) -> bool:
        return self.outcome == "success"

    def status_label(self) -> str:
        if self.outcome in {"empty", "invalid_json"}:
            return self.outcome
        if self.status_code is not None:
            return str(self.status_code)
        if self.outcome == "network":
            return "netfail"
        return self.outcome

    def note(self) -> str:
        if self.ok:
            return f"GET {self.url} -> {self.status_code} OK"
        text = f"GET {self.url} -> {self.status_label()}"
        if self.message:
            text = f"{text} ({self.message})"
        return text


class RouteNotFound(BillingError):
    """Raised once every candidate target (and secondary strategy) failed."""

    def __init__(self, message: str, *, attempts: Sequence[EndpointAttempt]) -> None:
        super().__init__(message)
        self.attempts = list(attempts)

    @classmethod
    def from_attempts(cls, label: str, attempts: Sequence[EndpointAttempt]) -> "RouteNotFound":
        lines = [f"{label}: no candidate route succeeded."]
        last_http = next((item for item in reversed(attempts) if item.status_code is not None), None)
        if last_http is not None:
            lines.append(
                describe_http_failure(last_http.status_code, last_http.url, None, message=last_http.message)
            )
        lines.append("Tried:")
        lines.extend(f"  {item.url} -> {item.status_label()}" for item in attempts)
        return cls("\n".join(lines), attempts=attempts)


NoRouteFound = RouteNotFound


def backend_message(body: Any) -> str | None:
    """Pick the human readable error field out of a backend error body."""

    if body is None or body == "":
        return None
    if isinstance(body, str):
        return body.strip() or None
    if isinstance(body, Mapping):
        for key in _BACKEND_MESSAGE_KEYS:
            value = body.get(key)
            if value is None or value == "":
                continue
            if isinstance(value, str):
                return value
            if isinstance(value, Mapping) and isinstance(value.get("message"), str):
                return value["message"]
            return _serialize(value)
    return _serialize(body)


def describe_http_failure(
    status_code: int | None,
    url: str | None,
    body: Any,
    *,
    message: str | None = None,
) -> str:
    """Deterministic terminal error text: status, attempted URL, backend message."""

    parts: list[str] = []
    if status_code is not None:
        parts.append(f"HTTP {status_code}")
    if url:
        parts.append(f"GET {url}")
    detail = message if message is not None else backend_message(body)
    if detail:
        parts.append(detail)
    return " - ".join(parts)


def _serialize(value: Any) -> str:
    try:
        return json.dumps(value, sort_keys=True, default=str)
    except (TypeError, ValueError):
        return str(value)


__all__ = [
    "AuthFailure",
    "BillingError",
    "EndpointAttempt",
    "NoRouteFound",
    "PartialDataWarning",
    "RouteNotFound",
    "TransportError",
    "UnrecognizedPayload",
    "ValidationError",
    "backend_message",
    "describe_http_failure",
]
