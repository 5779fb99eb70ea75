"""
Gateway error taxonomy.

Authentication errors carry a machine-readable reason for internal logs;
clients always receive the same generic 401 so key states can't be probed.
"""

from __future__ import annotations

import enum
import uuid


class RejectReason(str, enum.Enum):
    UNKNOWN_KEY = "unknown_key"
    REVOKED = "revoked"
    EXPIRED = "expired"


class AuthenticationError(Exception):
    """Raised when API key authentication fails.

    The error message is for internal logging only —
    the client always receives a generic 401.
    """

    reason: RejectReason


class UnknownKey(AuthenticationError):
    reason = RejectReason.UNKNOWN_KEY


class RevokedKey(AuthenticationError):
    reason = RejectReason.REVOKED


class ExpiredKey(AuthenticationError):
    reason = RejectReason.EXPIRED


class RateLimitExceeded(Exception):
    """Raised when a bucket has no remaining requests in its window."""

    def __init__(self, limit: int, remaining: int, reset_at: int) -> None:
        super().__init__(f"rate limit of {limit} exceeded")
        self.limit = limit
        self.remaining = remaining
        self.reset_at = reset_at


class StorageUnavailable(Exception):
    """Key store or usage store could not be reached."""


class KeyLimitReached(Exception):
    """Owner already holds the maximum number of live keys."""

    def __init__(self, owner_id: uuid.UUID, limit: int) -> None:
        super().__init__(f"owner {owner_id} already has {limit} live keys")
        self.limit = limit
