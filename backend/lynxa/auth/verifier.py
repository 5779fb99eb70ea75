"""
Key verifier — turns a presented credential into an identity.

Flow:
  1. Hash the presented string (SHA-256)
  2. Look up api_keys by exact hash (no caching — every call re-reads)
  3. First failing check wins:
       no row             → unknown_key
       inactive key/owner → revoked
       now > expires_at   → expired
  4. On accept, increment the key's usage counter exactly once
     (atomic UPDATE in the store) and return a VerifiedIdentity

Security:
  • Raw keys are NEVER logged — only prefixes and ids
  • Storage failures propagate as StorageUnavailable so callers fail closed
  • No retries: a failed verification is terminal for the request
"""

from __future__ import annotations

import datetime
import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass

from lynxa.auth.errors import (
    AuthenticationError,
    ExpiredKey,
    RejectReason,
    RevokedKey,
    UnknownKey,
)
from lynxa.auth.hashing import hash_api_key
from lynxa.core.database import utcnow
from lynxa.stores.keys import KeyStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class VerifiedIdentity:
    """Authenticated caller plus the policy of the key it presented.

    Attributes:
        owner_id:   Owning account.
        role:       Owner role (user/admin).
        key_id:     The specific key used — rate-limit bucket identity.
        key_prefix: Non-secret display prefix, safe for logs.
        permissions, rate_limit, rate_limit_window_ms: key policy.
    """

    owner_id: uuid.UUID
    role: str
    key_id: uuid.UUID
    key_prefix: str
    permissions: frozenset[str]
    rate_limit: int
    rate_limit_window_ms: int

    def has_permission(self, permission: str) -> bool:
        return permission in self.permissions


@dataclass(frozen=True, slots=True)
class Rejected:
    reason: RejectReason


class KeyVerifier:
    """Resolves presented keys against a KeyStore."""

    def __init__(
        self,
        key_store: KeyStore,
        clock: Callable[[], datetime.datetime] = utcnow,
    ) -> None:
        self._store = key_store
        self._clock = clock

    async def authenticate(self, presented_key: str) -> VerifiedIdentity:
        """
        Verify and return the identity, raising on rejection.

        Raises:
            UnknownKey, RevokedKey, ExpiredKey: rejected credential.
            StorageUnavailable: the key store could not be reached.
        """
        record = await self._store.find_by_hash(hash_api_key(presented_key))

        if record is None:
            raise UnknownKey("no key matches the presented digest")

        if not record.is_active or not record.owner_active:
            raise RevokedKey(f"key {record.prefix} is revoked")

        now = self._clock()
        if record.is_expired(now):
            raise ExpiredKey(f"key {record.prefix} expired at {record.expires_at}")

        await self._store.increment_usage(record.id, now)

        return VerifiedIdentity(
            owner_id=record.owner_id,
            role=record.owner_role,
            key_id=record.id,
            key_prefix=record.prefix,
            permissions=frozenset(record.permissions),
            rate_limit=record.rate_limit,
            rate_limit_window_ms=record.rate_limit_window_ms,
        )

    async def verify(self, presented_key: str) -> VerifiedIdentity | Rejected:
        """Result-returning variant used by the request gate."""
        try:
            return await self.authenticate(presented_key)
        except AuthenticationError as exc:
            logger.info("API key rejected: %s", exc.reason.value)
            return Rejected(reason=exc.reason)
