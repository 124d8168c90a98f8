"""Message history endpoints."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Header

from chatline import api_state as state
from chatline.api_errors import AUTH_RESPONSES, STORE_RESPONSES
from chatline.chat.models import CreateMessageRequest, MessageResponse

router = APIRouter(tags=["messages"])


@router.get(
    "/messages",
    response_model=list[MessageResponse],
    responses={**AUTH_RESPONSES, **STORE_RESPONSES},
)
def list_messages(authorization: Optional[str] = Header(None)) -> list[MessageResponse]:
    """List the caller's messages, oldest first."""
    orchestrator = state.get_components().orchestrator
    return [MessageResponse.from_message(m) for m in orchestrator.list_history(authorization)]


@router.post(
    "/messages",
    status_code=201,
    response_model=MessageResponse,
    responses={**AUTH_RESPONSES, **STORE_RESPONSES},
)
def create_message(
    request: CreateMessageRequest,
    authorization: Optional[str] = Header(None),
) -> MessageResponse:
    """Save a message for the caller."""
    orchestrator = state.get_components().orchestrator
    message = orchestrator.append_message(authorization, request.text, request.sender)
    return MessageResponse.from_message(message)
