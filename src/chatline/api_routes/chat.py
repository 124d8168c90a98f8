"""AI completion and orchestrated turn endpoints."""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Header

from chatline import api_state as state
from chatline.api_errors import AUTH_RESPONSES, ErrorResponse
from chatline.chat.models import (
    CompletionRequest,
    CompletionResponse,
    MessageResponse,
    SendTurnRequest,
    TurnResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["chat"])

_GATEWAY_RESPONSES = {500: {"model": ErrorResponse, "description": "AI backend failure"}}


@router.post(
    "/ai-chat",
    response_model=CompletionResponse,
    responses={**AUTH_RESPONSES, **_GATEWAY_RESPONSES},
)
async def ai_chat(
    request: CompletionRequest,
    authorization: Optional[str] = Header(None),
) -> CompletionResponse:
    """Get an AI reply to a client-supplied transcript. Nothing is stored."""
    orchestrator = state.get_components().orchestrator
    transcript = [entry.to_turn() for entry in request.messages]
    reply = await orchestrator.complete(authorization, transcript)
    return CompletionResponse(reply=reply)


@router.post(
    "/chat",
    response_model=TurnResponse,
    responses={**AUTH_RESPONSES, **_GATEWAY_RESPONSES},
)
async def send_turn(
    request: SendTurnRequest,
    authorization: Optional[str] = Header(None),
) -> TurnResponse:
    """Store the caller's message, get the AI reply, store and broadcast it.

    AI failures are answered with fallback text rather than an error.
    """
    orchestrator = state.get_components().orchestrator
    result = await orchestrator.run_turn(authorization, request.text)
    result.raise_for_error()

    return TurnResponse(
        reply=result.reply,
        state=result.state.value,
        degraded=result.degraded,
        error=result.error,
        user_message=MessageResponse.from_message(result.user_message)
        if result.user_message
        else None,
        assistant_message=MessageResponse.from_message(result.assistant_message)
        if result.assistant_message
        else None,
    )
