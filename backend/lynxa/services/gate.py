"""
Request gate — the composition root for every metered call.

State machine per request:

    START → VERIFY_KEY ─┬─ REJECTED (401)
                        └─ RATE_CHECK ─┬─ THROTTLED (429) → RECORD
                                       └─ EXECUTE → RECORD → DONE

  • VERIFY_KEY failures short-circuit: no rate-limit slot is consumed and
    no usage row is written. A key store outage answers 503 (fail closed).
  • RATE_CHECK buckets on the resolved key id, never the raw credential,
    using the key's own limit/window.
  • THROTTLED writes one usage row (status 429) so throttling shows up in
    analytics.
  • RECORD runs in a `finally` block — once per executed request, with the
    handler's real status code, whether it returned or raised.
"""

from __future__ import annotations

import logging
import math
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from fastapi import HTTPException, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from lynxa.auth.errors import StorageUnavailable
from lynxa.auth.hashing import extract_bearer
from lynxa.auth.verifier import KeyVerifier, Rejected, VerifiedIdentity
from lynxa.core.config import settings
from lynxa.services.rate_limiter import Admission, RateLimitStore
from lynxa.services.usage import RecordResult, UsageAccountant
from lynxa.stores.usage import UsageEntry

logger = logging.getLogger(__name__)

BUCKET_PREFIX = "api_usage"

_AUTH_FAILED_BODY = {
    "error": "invalid_api_key",
    "message": "Invalid or expired API key.",
}


def epoch_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True, slots=True)
class GateRequest:
    """The parts of an inbound HTTP request the gate needs."""

    authorization: str | None
    endpoint: str
    method: str
    ip_address: str | None = None
    user_agent: str | None = None

    @classmethod
    def from_request(cls, request: Request) -> GateRequest:
        return cls(
            authorization=request.headers.get("authorization"),
            endpoint=request.url.path,
            method=request.method,
            ip_address=client_ip(request),
            user_agent=request.headers.get("user-agent"),
        )


def client_ip(
    request: Request,
    trusted_proxies: frozenset[str] | None = None,
) -> str | None:
    """
    Caller address for usage and audit rows.

    X-Forwarded-For is only honoured when the direct peer is one of the
    configured trusted proxies; anyone else could write any value there.
    """
    if trusted_proxies is None:
        trusted_proxies = settings.trusted_proxies
    peer = request.client.host if request.client else None

    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for and peer in trusted_proxies:
        return forwarded_for.split(",")[0].strip() or peer
    return peer


@dataclass(frozen=True, slots=True)
class HandlerResult:
    """What a gated handler produced."""

    body: dict[str, Any]
    status_code: int = status.HTTP_200_OK
    tokens_used: int = 0
    model_name: str | None = None


@dataclass(frozen=True, slots=True)
class GateResponse:
    status: int
    body: dict[str, Any]
    headers: dict[str, str] = field(default_factory=dict)

    def to_response(self) -> JSONResponse:
        return JSONResponse(
            status_code=self.status,
            content=jsonable_encoder(self.body),
            headers=self.headers,
        )


Handler = Callable[[VerifiedIdentity], Awaitable[HandlerResult]]


def rate_limit_headers(limit: int, admission: Admission) -> dict[str, str]:
    return {
        "X-RateLimit-Limit": str(limit),
        "X-RateLimit-Remaining": str(admission.remaining),
        "X-RateLimit-Reset": str(admission.reset_at),
    }


class RequestGate:
    """verify → rate-limit → execute → record, for one request at a time."""

    def __init__(
        self,
        verifier: KeyVerifier,
        limiter: RateLimitStore,
        accountant: UsageAccountant,
        clock: Callable[[], int] = epoch_ms,
    ) -> None:
        self.verifier = verifier
        self.limiter = limiter
        self.accountant = accountant
        self.clock = clock

    async def handle(self, request: GateRequest, handler: Handler) -> GateResponse:
        started = time.perf_counter()

        # ── 1. VERIFY_KEY ───────────────────────────────────
        raw_key = extract_bearer(request.authorization)
        if raw_key is None:
            return self._unauthorized()

        try:
            outcome = await self.verifier.verify(raw_key)
        except StorageUnavailable:
            logger.error("Key store unavailable — rejecting %s", request.endpoint)
            return self._unavailable()

        if isinstance(outcome, Rejected):
            return self._unauthorized()

        identity = outcome

        # ── 2. RATE_CHECK ───────────────────────────────────
        now = self.clock()
        try:
            admission = self.limiter.admit(
                f"{BUCKET_PREFIX}:{identity.key_id}",
                identity.rate_limit,
                identity.rate_limit_window_ms,
                now,
            )
        except Exception:
            logger.exception("Rate limiter failed for key %s", identity.key_prefix)
            await self._record(identity, request, started, status.HTTP_503_SERVICE_UNAVAILABLE)
            return self._unavailable()

        headers = rate_limit_headers(identity.rate_limit, admission)

        if not admission.allowed:
            logger.info("Rate limit exceeded for key %s", identity.key_prefix)
            await self._record(identity, request, started, status.HTTP_429_TOO_MANY_REQUESTS)
            retry_after = max(0, math.ceil((admission.reset_at - now) / 1000))
            return GateResponse(
                status=status.HTTP_429_TOO_MANY_REQUESTS,
                body={
                    "error": "rate_limit_exceeded",
                    "message": (
                        f"API key rate limit of {identity.rate_limit} "
                        "requests exceeded"
                    ),
                    "remaining": admission.remaining,
                    "reset_at": admission.reset_at,
                },
                headers={**headers, "Retry-After": str(retry_after)},
            )

        # ── 3. EXECUTE → 4. RECORD ──────────────────────────
        status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
        tokens_used = 0
        model_name: str | None = None
        error_message: str | None = None
        try:
            result = await handler(identity)
            status_code = result.status_code
            tokens_used = result.tokens_used
            model_name = result.model_name
            response = GateResponse(status_code, result.body, headers)
        except HTTPException as exc:
            status_code = exc.status_code
            error_message = str(exc.detail)
            response = GateResponse(
                status_code,
                {"error": "request_failed", "detail": exc.detail},
                {**headers, **(exc.headers or {})},
            )
        except Exception as exc:
            logger.exception("Handler failed for %s %s", request.method, request.endpoint)
            error_message = type(exc).__name__
            response = GateResponse(
                status_code,
                {
                    "error": "internal_error",
                    "message": "An error occurred while processing your request.",
                },
                headers,
            )
        finally:
            await self._record(
                identity,
                request,
                started,
                status_code,
                tokens_used=tokens_used,
                model_name=model_name,
                error_message=error_message,
            )

        return response

    # ── Helpers ─────────────────────────────────────────────
    async def _record(
        self,
        identity: VerifiedIdentity,
        request: GateRequest,
        started: float,
        status_code: int,
        *,
        tokens_used: int = 0,
        model_name: str | None = None,
        error_message: str | None = None,
    ) -> RecordResult:
        entry = UsageEntry(
            owner_id=identity.owner_id,
            api_key_id=identity.key_id,
            endpoint=request.endpoint,
            method=request.method,
            status_code=status_code,
            latency_ms=int((time.perf_counter() - started) * 1000),
            tokens_used=tokens_used,
            model_name=model_name,
            ip_address=request.ip_address,
            user_agent=request.user_agent,
            error_message=error_message,
        )
        return await self.accountant.record(entry)

    @staticmethod
    def _unauthorized() -> GateResponse:
        return GateResponse(
            status=status.HTTP_401_UNAUTHORIZED,
            body=dict(_AUTH_FAILED_BODY),
            headers={"WWW-Authenticate": "Bearer"},
        )

    @staticmethod
    def _unavailable() -> GateResponse:
        return GateResponse(
            status=status.HTTP_503_SERVICE_UNAVAILABLE,
            body={
                "error": "service_unavailable",
                "message": "Authentication service is temporarily unavailable.",
            },
        )
