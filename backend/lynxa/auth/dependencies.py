"""
FastAPI dependencies for API key authentication.

Flow:
  1. Extract Bearer token from the Authorization header
  2. KeyVerifier.authenticate() — hash, look up, check active/expiry,
     bump the usage counter
  3. Return the VerifiedIdentity (owner, key id, permissions, policy)

Security:
  • Generic 401 for ALL rejection reasons (missing, unknown, revoked, expired)
  • Raw keys are NEVER logged
  • Key store outage → 503; the request is never let through

Collaborators (gate, key store) are built once in the app lifespan and
stored on app.state; tests replace them through dependency_overrides.
"""

from __future__ import annotations

import logging

from fastapi import Depends, Header, HTTPException, Request, status

from lynxa.auth.errors import AuthenticationError, StorageUnavailable
from lynxa.auth.hashing import extract_bearer
from lynxa.auth.verifier import VerifiedIdentity
from lynxa.services.gate import RequestGate
from lynxa.stores.keys import KeyStore

logger = logging.getLogger(__name__)

# Generic 401 — same message for all auth failures to avoid leaking info
_AUTH_FAILED = HTTPException(
    status_code=status.HTTP_401_UNAUTHORIZED,
    detail="Invalid or expired API key.",
    headers={"WWW-Authenticate": "Bearer"},
)

_AUTH_UNAVAILABLE = HTTPException(
    status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
    detail="Authentication service is temporarily unavailable.",
)


def get_gate(request: Request) -> RequestGate:
    return request.app.state.gate


def get_key_store(request: Request) -> KeyStore:
    return request.app.state.key_store


async def get_current_identity(
    authorization: str | None = Header(default=None, alias="Authorization"),
    gate: RequestGate = Depends(get_gate),
) -> VerifiedIdentity:
    """
    FastAPI dependency — resolves a Bearer key to a VerifiedIdentity.

    Raises 401 for:
      - Missing Authorization header
      - Non-Bearer scheme
      - Unknown, revoked or expired key
    """
    raw_key = extract_bearer(authorization)
    if raw_key is None:
        raise _AUTH_FAILED

    try:
        return await gate.verifier.authenticate(raw_key)
    except AuthenticationError as exc:
        logger.info("Management call rejected: %s", exc.reason.value)
        raise _AUTH_FAILED
    except StorageUnavailable:
        logger.error("Key store unavailable during management auth")
        raise _AUTH_UNAVAILABLE
