"""Ordered endpoint fallback with per-session route-prefix memory."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, List, Sequence

from ..errors import (
    AuthFailure,
    EndpointAttempt,
    PartialDataWarning,
    RouteNotFound,
    TransportError,
    describe_http_failure,
)
from .client import BillingClientProtocol, TransportResponse
from .routes import RouteCandidate

LOGGER = logging.getLogger(__name__)

AUTH_STATUSES = frozenset({401, 403})


@dataclass
class Resolution:
    """Winning response plus the attempt trail that led to it."""

    payload: Any
    url: str
    attempts: List[EndpointAttempt] = field(default_factory=list)

    @property
    def notes(self) -> list[str]:
        return [attempt.note() for attempt in self.attempts]

    @property
    def warnings(self) -> list[PartialDataWarning]:
        failed = [attempt for attempt in self.attempts if not attempt.ok]
        if not failed:
            return []
        return [
            PartialDataWarning(
                f"{len(failed)} candidate route(s) failed before {self.url} succeeded"
            )
        ]


class EndpointResolver:
    """Tries request targets strictly in order and returns the first usable body.

    Prefixed targets are expanded over ``prefixes``. The prefix that last
    answered is remembered on the instance and tried first next time; a 404 at
    the remembered prefix forgets it.
    """

    def __init__(self, client: BillingClientProtocol, *, prefixes: Sequence[str] = ("",)) -> None:
        self.client = client
        self.prefixes = tuple(dict.fromkeys(prefixes)) or ("",)
        self.detected_prefix: str | None = None

    async def resolve(self, candidates: Sequence[RouteCandidate], *, label: str = "request") -> Resolution:
        """Return the first successful response or raise ``RouteNotFound``.

        401/403 raise ``AuthFailure`` immediately without trying later targets.
        """

        if not candidates:
            raise ValueError("resolve() requires at least one route candidate")
        attempts: list[EndpointAttempt] = []
        tried: set[tuple[str, str]] = set()
        for candidate in candidates:
            for prefix in self._prefix_order(candidate):
                path = candidate.with_prefix(prefix)
                key = (path, repr(sorted((candidate.params or {}).items())))
                if key in tried:
                    continue
                tried.add(key)
                attempt, payload = await self._try_target(path, candidate)
                attempts.append(attempt)
                if attempt.ok:
                    if candidate.prefixed:
                        self.detected_prefix = prefix
                    LOGGER.info("%s resolved via %s", label, attempt.url)
                    return Resolution(payload=payload, url=attempt.url, attempts=attempts)
                if candidate.prefixed and attempt.status_code == 404 and prefix == self.detected_prefix:
                    LOGGER.debug("Forgetting route prefix %r after 404", prefix)
                    self.detected_prefix = None
                LOGGER.debug("%s candidate failed: %s", label, attempt.note())
        raise RouteNotFound.from_attempts(label, attempts)

    def _prefix_order(self, candidate: RouteCandidate) -> Iterable[str]:
        if not candidate.prefixed:
            return ("",)
        if self.detected_prefix is None or self.detected_prefix not in self.prefixes:
            return self.prefixes
        return (self.detected_prefix, *[p for p in self.prefixes if p != self.detected_prefix])

    async def _try_target(self, path: str, candidate: RouteCandidate) -> tuple[EndpointAttempt, Any]:
        try:
            response = await self.client.get(path, candidate.params)
        except TransportError as exc:
            return EndpointAttempt(url=path, outcome="network", message=str(exc)), None
        if response.status_code in AUTH_STATUSES:
            raise AuthFailure(
                describe_http_failure(response.status_code, response.url, response.payload),
                status_code=response.status_code,
                url=response.url,
                body=response.payload,
            )
        return _classify_response(response), response.payload


def _classify_response(response: TransportResponse) -> EndpointAttempt:
    if not response.ok:
        message = describe_http_failure(None, None, response.payload) or None
        if message is None and response.status_code == 404:
            message = "route absent"
        return EndpointAttempt(
            url=response.url,
            outcome="http",
            status_code=response.status_code,
            message=message,
        )
    if response.json_error:
        return EndpointAttempt(
            url=response.url,
            outcome="invalid_json",
            status_code=response.status_code,
            message=response.json_error,
        )
    if response.is_empty:
        return EndpointAttempt(
            url=response.url,
            outcome="empty",
            status_code=response.status_code,
            message="empty response body",
        )
    return EndpointAttempt(url=response.url, outcome="success", status_code=response.status_code)


__all__ = ["AUTH_STATUSES", "EndpointResolver", "Resolution"]
