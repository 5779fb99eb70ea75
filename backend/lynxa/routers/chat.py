"""
Chat router — the metered completion endpoint.

Every call runs through the RequestGate:
  verify key → per-key rate limit → handler → usage row.

Permission and body validation happen inside the handler so that a 403
or 400 is still recorded against the key that made the call.
"""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from lynxa.auth.dependencies import get_gate
from lynxa.auth.permissions import WRITE
from lynxa.auth.verifier import VerifiedIdentity
from lynxa.schemas.chat import ChatRequest, ChatResponse, ChatUsage
from lynxa.services.completion import generate_completion, new_request_id
from lynxa.services.gate import GateRequest, HandlerResult, RequestGate

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Chat"])

Gate = Annotated[RequestGate, Depends(get_gate)]


async def _read_chat_request(request: Request) -> ChatRequest:
    try:
        payload = await request.json()
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Request body must be valid JSON.",
        )

    try:
        return ChatRequest.model_validate(payload)
    except ValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=[
                {"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]}
                for err in exc.errors()
            ],
        )


@router.post(
    "/chat",
    response_model=ChatResponse,
    summary="Generate a chat completion",
    description=(
        "Requires a Bearer API key with the `lynxa:write` permission. "
        "Rate limited per key; every executed call is metered."
    ),
    responses={
        401: {"description": "Missing, unknown, revoked or expired key"},
        429: {"description": "Per-key rate limit exceeded"},
    },
)
async def chat(request: Request, gate: Gate) -> JSONResponse:
    async def handler(identity: VerifiedIdentity) -> HandlerResult:
        if not identity.has_permission(WRITE):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"This API key lacks the '{WRITE}' permission.",
            )

        body = await _read_chat_request(request)
        completion = generate_completion(body.message, body.model)

        logger.debug(
            "Completion for key %s: model=%s tokens=%d",
            identity.key_prefix,
            completion.model,
            completion.total_tokens,
        )
        response = ChatResponse(
            request_id=new_request_id(),
            response=completion.text,
            model=completion.model,
            usage=ChatUsage(
                prompt_tokens=completion.prompt_tokens,
                completion_tokens=completion.completion_tokens,
                total_tokens=completion.total_tokens,
            ),
        )
        return HandlerResult(
            body=response.model_dump(),
            tokens_used=completion.total_tokens,
            model_name=completion.model,
        )

    outcome = await gate.handle(GateRequest.from_request(request), handler)
    return outcome.to_response()
