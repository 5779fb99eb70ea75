"""
Placeholder completion engine behind POST /v1/chat.

There is no model here: replies are a fixed template per model so the
gate, metering and billing paths have a deterministic workload.
Token counts use the ~4 characters/token rule of thumb.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass

_MODEL_SUFFIXES: dict[str, str] = {
    "lynxa-pro": (
        "This analysis weighs current practice, trade-offs and longer-term "
        "implications."
    ),
    "lynxa-fast": "Quick summary: focus on the two or three points that matter most.",
    "lynxa-creative": (
        "From a creative angle, consider approaches that question the usual "
        "framing."
    ),
    "lynxa-code": (
        "```python\ndef example():\n    return 'illustrative implementation'\n```"
    ),
}

_SNIPPET_LENGTH = 50


@dataclass(frozen=True, slots=True)
class Completion:
    text: str
    model: str
    prompt_tokens: int
    completion_tokens: int

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


def estimate_tokens(text: str) -> int:
    return len(text) // 4


def new_request_id() -> str:
    return f"req_{uuid.uuid4().hex[:16]}"


def generate_completion(message: str, model: str) -> Completion:
    snippet = message[:_SNIPPET_LENGTH]
    if len(message) > _SNIPPET_LENGTH:
        snippet += "..."

    text = (
        f'Regarding "{snippet}", here is a structured response.\n\n'
        + _MODEL_SUFFIXES.get(model, _MODEL_SUFFIXES["lynxa-pro"])
    )
    return Completion(
        text=text,
        model=model,
        prompt_tokens=estimate_tokens(message),
        completion_tokens=estimate_tokens(text),
    )
