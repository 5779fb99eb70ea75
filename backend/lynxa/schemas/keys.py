"""
Pydantic v2 schemas for API key management.

Responses are built from ApiKeyRecord snapshots (from_attributes=True).
The hash never appears in any response; the raw key only in KeyCreated.
"""

from __future__ import annotations

import datetime
import uuid
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from lynxa.auth.permissions import ALL_PERMISSIONS, DEFAULT_PERMISSIONS
from lynxa.core.config import settings

RAW_KEY_WARNING = "Store this key securely. It will not be shown again."


class KeyCreate(BaseModel):
    """Payload accepted by POST /keys."""

    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., min_length=1, max_length=100, examples=["production"])
    permissions: list[str] = Field(default_factory=lambda: list(DEFAULT_PERMISSIONS))
    rate_limit: int = Field(
        default=settings.DEFAULT_RATE_LIMIT, ge=1, le=settings.MAX_RATE_LIMIT,
    )
    rate_limit_window_ms: int = Field(
        default=settings.DEFAULT_RATE_LIMIT_WINDOW_MS,
        ge=1,
        le=settings.MAX_RATE_LIMIT_WINDOW_MS,
    )
    expires_at: datetime.datetime | None = None

    @field_validator("name", mode="before")
    @classmethod
    def _strip_name(cls, value: Any) -> Any:
        return value.strip() if isinstance(value, str) else value

    @field_validator("permissions")
    @classmethod
    def _known_permissions(cls, value: list[str]) -> list[str]:
        unknown = sorted(set(value) - ALL_PERMISSIONS)
        if unknown:
            raise ValueError(f"unknown permissions: {', '.join(unknown)}")
        # de-duplicate, keep caller order
        return list(dict.fromkeys(value))

    @field_validator("expires_at")
    @classmethod
    def _aware_expiry(
        cls, value: datetime.datetime | None,
    ) -> datetime.datetime | None:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=datetime.timezone.utc)
        return value


class KeyRename(BaseModel):
    """PATCH /keys/{key_id} — only the display name is mutable."""

    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., min_length=1, max_length=100)

    @field_validator("name", mode="before")
    @classmethod
    def _strip_name(cls, value: Any) -> Any:
        return value.strip() if isinstance(value, str) else value


class KeyOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    prefix: str
    permissions: list[str]
    rate_limit: int
    rate_limit_window_ms: int
    is_active: bool
    expires_at: datetime.datetime | None
    usage_count: int
    last_used_at: datetime.datetime | None
    created_at: datetime.datetime


class KeyCreated(KeyOut):
    """Returned once, at creation time."""

    key: str
    warning: str = RAW_KEY_WARNING
