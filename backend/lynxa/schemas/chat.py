"""
Pydantic v2 schemas for the chat endpoint.

Out-of-range tuning values fall back to defaults instead of failing the
request; only a missing, blank or oversized message is rejected.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field, field_validator

from lynxa.services.cost_calculator import DEFAULT_MODEL, MODEL_PRICING

MAX_MESSAGE_LENGTH = 4000
DEFAULT_TEMPERATURE = 0.7
DEFAULT_MAX_TOKENS = 1000


class ChatRequest(BaseModel):
    """Payload accepted by POST /v1/chat."""

    message: str = Field(
        ...,
        min_length=1,
        max_length=MAX_MESSAGE_LENGTH,
        examples=["Summarise the history of the printing press."],
    )
    model: str = Field(default=DEFAULT_MODEL, examples=["lynxa-pro", "lynxa-code"])
    temperature: float = Field(default=DEFAULT_TEMPERATURE, ge=0, le=2)
    max_tokens: int = Field(default=DEFAULT_MAX_TOKENS, gt=0, le=4000)

    @field_validator("message", mode="before")
    @classmethod
    def _strip_message(cls, value: Any) -> Any:
        return value.strip() if isinstance(value, str) else value

    @field_validator("model", mode="before")
    @classmethod
    def _known_model(cls, value: Any) -> str:
        return value if value in MODEL_PRICING else DEFAULT_MODEL

    @field_validator("temperature", mode="before")
    @classmethod
    def _temperature_in_range(cls, value: Any) -> Any:
        ok = isinstance(value, (int, float)) and not isinstance(value, bool)
        return value if ok and 0 <= value <= 2 else DEFAULT_TEMPERATURE

    @field_validator("max_tokens", mode="before")
    @classmethod
    def _max_tokens_in_range(cls, value: Any) -> Any:
        ok = isinstance(value, int) and not isinstance(value, bool)
        return value if ok and 0 < value <= 4000 else DEFAULT_MAX_TOKENS


class ChatUsage(BaseModel):
    prompt_tokens: int
    completion_tokens: int
    total_tokens: int


class ChatResponse(BaseModel):
    success: bool = True
    request_id: str
    response: str
    model: str
    usage: ChatUsage
