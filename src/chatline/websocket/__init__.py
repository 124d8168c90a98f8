"""Real-time notification channel."""

from .manager import (
    CONNECTED,
    DROPPED_CLOSE_CODE,
    RECEIVE_MESSAGE,
    SEND_MESSAGE,
    BroadcastEvent,
    BroadcastHub,
    Connection,
    ConnectionManager,
    Subscription,
)

__all__ = [
    "CONNECTED",
    "DROPPED_CLOSE_CODE",
    "RECEIVE_MESSAGE",
    "SEND_MESSAGE",
    "BroadcastEvent",
    "BroadcastHub",
    "Connection",
    "ConnectionManager",
    "Subscription",
]
