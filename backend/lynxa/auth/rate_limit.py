"""
FastAPI dependencies for permissions, roles and the per-owner rate limits.

Order in the request pipeline: AUTH → PERMISSION / ROLE → RATE LIMIT → ROUTER.

Management, analytics and billing calls share one bucket per owner
("manage:<owner_id>", MANAGEMENT_RATE_LIMIT per MANAGEMENT_RATE_LIMIT_WINDOW_MS).
Admin calls have their own ("admin:<owner_id>", ADMIN_RATE_LIMIT per
ADMIN_RATE_LIMIT_WINDOW_MS). The metered chat endpoint does not use these —
it goes through the RequestGate, which buckets per key.
"""

from __future__ import annotations

import math
from collections.abc import Awaitable, Callable

from fastapi import Depends, HTTPException, status

from lynxa.auth.dependencies import get_current_identity, get_gate
from lynxa.auth.errors import RateLimitExceeded
from lynxa.auth.permissions import ADMIN_ROLES
from lynxa.auth.verifier import VerifiedIdentity
from lynxa.core.config import settings
from lynxa.services.gate import RequestGate
from lynxa.services.rate_limiter import enforce

MANAGEMENT_BUCKET_PREFIX = "manage"
ADMIN_BUCKET_PREFIX = "admin"


def enforce_owner_rate_limit(
    gate: RequestGate,
    identity: VerifiedIdentity,
    bucket_prefix: str = MANAGEMENT_BUCKET_PREFIX,
    limit: int | None = None,
    window_ms: int | None = None,
) -> None:
    """
    Consume one slot from the owner's `bucket_prefix` bucket.

    Limit and window default to the management settings.
    Raises 429 with Retry-After when the bucket is exhausted.
    """
    now = gate.clock()
    try:
        enforce(
            gate.limiter,
            f"{bucket_prefix}:{identity.owner_id}",
            limit if limit is not None else settings.MANAGEMENT_RATE_LIMIT,
            window_ms if window_ms is not None else settings.MANAGEMENT_RATE_LIMIT_WINDOW_MS,
            now,
        )
    except RateLimitExceeded as exc:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Rate limit exceeded. Please try again later.",
            headers={
                "Retry-After": str(max(0, math.ceil((exc.reset_at - now) / 1000))),
                "X-RateLimit-Limit": str(exc.limit),
                "X-RateLimit-Remaining": str(exc.remaining),
                "X-RateLimit-Reset": str(exc.reset_at),
            },
        )


def require_permission(
    permission: str,
) -> Callable[..., Awaitable[VerifiedIdentity]]:
    """
    Build a dependency that authenticates, checks that the presented key
    carries `permission` (403 otherwise), then applies the owner limit.

    Usage in routers:
        Manager = Annotated[VerifiedIdentity, Depends(require_permission(MANAGE_KEYS))]
    """

    async def _dependency(
        identity: VerifiedIdentity = Depends(get_current_identity),
        gate: RequestGate = Depends(get_gate),
    ) -> VerifiedIdentity:
        if not identity.has_permission(permission):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"This API key lacks the '{permission}' permission.",
            )
        enforce_owner_rate_limit(gate, identity)
        return identity

    return _dependency


async def require_admin(
    identity: VerifiedIdentity = Depends(get_current_identity),
    gate: RequestGate = Depends(get_gate),
) -> VerifiedIdentity:
    """Admin-role owners only (403 otherwise), on the admin bucket."""
    if identity.role not in ADMIN_ROLES:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required.",
        )
    enforce_owner_rate_limit(
        gate,
        identity,
        ADMIN_BUCKET_PREFIX,
        settings.ADMIN_RATE_LIMIT,
        settings.ADMIN_RATE_LIMIT_WINDOW_MS,
    )
    return identity
