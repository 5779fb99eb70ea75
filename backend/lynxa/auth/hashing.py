"""
API key hashing utilities.

Security notes:
  • SHA-256 is used for key hashing — acceptable for API keys because
    they are high-entropy random strings (not low-entropy passwords).
    bcrypt/argon2 would add latency to every gated request.
  • Raw keys look like `lynxa_<64 hex chars>`; the prefix is a namespace
    marker, not a secret.
  • generate_api_key() returns the raw key exactly once — the caller
    must display it to the owner immediately. It is never stored.
"""

import hashlib
import secrets

from lynxa.core.config import settings

# Characters of the raw key kept for display / logs.
DISPLAY_PREFIX_LENGTH = 12


def hash_api_key(raw_key: str) -> str:
    """
    Hash a raw API key using SHA-256.

    Returns the hex digest string for storage/lookup.
    """
    return hashlib.sha256(raw_key.encode("utf-8")).hexdigest()


def generate_api_key(prefix: str | None = None) -> tuple[str, str]:
    """
    Generate a new API key.

    Returns:
        (raw_key, key_hash) — raw_key is shown once, key_hash is stored.
    """
    namespace = settings.API_KEY_PREFIX if prefix is None else prefix
    random_part = secrets.token_hex(settings.API_KEY_BYTES)  # 32 bytes = 256 bits
    raw_key = f"{namespace}{random_part}"
    return raw_key, hash_api_key(raw_key)


def display_prefix(raw_key: str) -> str:
    return raw_key[:DISPLAY_PREFIX_LENGTH]


def extract_bearer(authorization: str | None) -> str | None:
    """Return the token of an `Authorization: Bearer <token>` header, else None."""
    if not authorization:
        return None

    parts = authorization.split(" ", maxsplit=1)
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return None

    token = parts[1].strip()
    return token or None
