"""Real-time message channel."""

from __future__ import annotations

import json
import logging
from typing import Any, Optional

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect, status

from chatline import api_state as state
from chatline.errors import AuthError
from chatline.websocket import CONNECTED, RECEIVE_MESSAGE, SEND_MESSAGE, BroadcastEvent

logger = logging.getLogger(__name__)

router = APIRouter()

_IGNORED = object()


def _decode_frame(message: dict) -> Any:
    """Parse one ASGI receive event as JSON, from a text or binary frame.

    Frames that are not UTF-8 JSON yield ``_IGNORED``.

    Raises:
        WebSocketDisconnect: The client closed the connection.
    """
    if message["type"] == "websocket.disconnect":
        raise WebSocketDisconnect(code=message.get("code", 1000))
    raw = message.get("text")
    if raw is None:
        raw = message.get("bytes")
    if raw is None:
        return _IGNORED
    try:
        return json.loads(raw)
    except ValueError:
        return _IGNORED


def _authenticate(websocket: WebSocket, token: Optional[str]) -> str:
    validator = state.get_components().validator
    if token:
        return validator.validate_token(token)
    return validator.validate(websocket.headers.get("authorization"))


@router.websocket("/ws")
async def message_stream(
    websocket: WebSocket,
    token: Optional[str] = Query(None),
) -> None:
    """Push the caller's new messages as they are stored.

    Clients may also send ``{"type": "sendMessage", "payload": ...}``; the
    payload is relayed to the same user's other connections.
    """
    try:
        user_id = _authenticate(websocket, token)
    except AuthError as e:
        logger.info("Rejected WebSocket connection: %s", e.message)
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason=e.message)
        return

    hub = state.get_components().hub
    await websocket.accept()
    subscription = hub.register(websocket, user_id=user_id)
    hub.send(
        subscription,
        BroadcastEvent(
            type=CONNECTED,
            payload={"connection_id": subscription.id, "user_id": user_id},
        ),
    )
    try:
        while True:
            data = _decode_frame(await websocket.receive())
            if isinstance(data, dict) and data.get("type") == SEND_MESSAGE:
                hub.publish(
                    BroadcastEvent(
                        type=RECEIVE_MESSAGE,
                        payload=data.get("payload"),
                        user_id=user_id,
                    )
                )
            elif data is _IGNORED:
                logger.debug(
                    "Ignoring undecodable frame on connection %s",
                    subscription.id,
                    extra={"connection_id": subscription.id, "user_id": user_id},
                )
    except WebSocketDisconnect:
        logger.debug("Connection %s closed by client", subscription.id)
    finally:
        hub.unregister(websocket)
