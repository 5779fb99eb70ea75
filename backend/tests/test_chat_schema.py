"""Tests for chat request validation and the completion stub."""

import pytest
from pydantic import ValidationError

from lynxa.schemas.chat import ChatRequest
from lynxa.services.completion import estimate_tokens, generate_completion, new_request_id


def test_defaults():
    body = ChatRequest(message="hello")
    assert (body.model, body.temperature, body.max_tokens) == ("lynxa-pro", 0.7, 1000)


def test_out_of_range_values_fall_back():
    body = ChatRequest.model_validate(
        {"message": "hi", "model": "gpt-4", "temperature": 5, "max_tokens": 0},
    )
    assert (body.model, body.temperature, body.max_tokens) == ("lynxa-pro", 0.7, 1000)


def test_valid_values_kept():
    body = ChatRequest.model_validate(
        {"message": "hi", "model": "lynxa-code", "temperature": 0, "max_tokens": 4000},
    )
    assert (body.model, body.temperature, body.max_tokens) == ("lynxa-code", 0, 4000)


@pytest.mark.parametrize("message", ["", "   ", "x" * 4001, None])
def test_bad_message_rejected(message):
    with pytest.raises(ValidationError):
        ChatRequest.model_validate({"message": message})


def test_message_is_stripped():
    assert ChatRequest(message="  hi  ").message == "hi"


def test_completion_is_deterministic():
    first = generate_completion("Explain rate limiting", "lynxa-fast")
    second = generate_completion("Explain rate limiting", "lynxa-fast")

    assert first == second
    assert first.model == "lynxa-fast"
    assert first.prompt_tokens == estimate_tokens("Explain rate limiting")
    assert first.total_tokens == first.prompt_tokens + first.completion_tokens


def test_long_message_is_truncated_in_reply():
    completion = generate_completion("a" * 80, "lynxa-pro")
    assert "a" * 50 + "..." in completion.text
    assert "a" * 51 not in completion.text


def test_request_id_shape():
    request_id = new_request_id()
    assert request_id.startswith("req_")
    assert len(request_id) == 20
