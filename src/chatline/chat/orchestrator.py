"""Coordinates authentication, persistence, fan-out and the AI turn.

Every operation runs the same short pipeline: the Authorization header
is validated into a :class:`RequestContext`, then the handler registered
for the :class:`Operation` runs with that context. A failing stage
raises and nothing after it executes.

The human->AI turn is a small state machine::

    IDLE -> VALIDATING -> PERSISTING_USER -> AWAITING_AI
         -> PERSISTING_ASSISTANT -> DONE

with ERROR reachable from any step. The user's message is stored before
the AI is called, and nothing is rolled back when a later step fails.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Optional, Protocol, Sequence

from chatline.errors import (
    AuthError,
    BadRequestError,
    ChatlineError,
    GatewayError,
    StoreError,
    UpstreamUnavailable,
)
from chatline.websocket.manager import RECEIVE_MESSAGE, BroadcastEvent

from .models import Message, MessageRole, TranscriptTurn

if TYPE_CHECKING:
    from chatline.auth.token_auth import TokenValidator
    from chatline.websocket.manager import ConnectionManager

    from .message_store import MessageStore

logger = logging.getLogger(__name__)

GATEWAY_FAILURE_FALLBACK = "Sorry, something went wrong. Please try again."


def _require_text(text: Any) -> str:
    if not isinstance(text, str) or not text.strip():
        raise BadRequestError("A message text is required")
    return text


class Gateway(Protocol):
    async def complete(self, transcript: Sequence[TranscriptTurn]) -> str: ...


class Operation(str, Enum):
    """Operations the orchestrator can dispatch."""

    LIST = "list"
    APPEND = "append"
    TURN = "turn"
    COMPLETE = "complete"


class TurnState(str, Enum):
    """States of a human->AI turn."""

    IDLE = "idle"
    VALIDATING = "validating"
    PERSISTING_USER = "persisting_user"
    AWAITING_AI = "awaiting_ai"
    PERSISTING_ASSISTANT = "persisting_assistant"
    DONE = "done"
    ERROR = "error"


@dataclass(frozen=True)
class RequestContext:
    """Output of the authentication stage."""

    user_id: str


@dataclass
class TurnResult:
    """Outcome of :meth:`ChatOrchestrator.run_turn`."""

    state: TurnState = TurnState.IDLE
    reply: Optional[str] = None
    user_message: Optional[Message] = None
    assistant_message: Optional[Message] = None
    error: Optional[str] = None
    exception: Optional[ChatlineError] = None
    transitions: list[TurnState] = field(default_factory=lambda: [TurnState.IDLE])

    @property
    def degraded(self) -> bool:
        """A reply was delivered but some step failed."""
        return self.reply is not None and self.error is not None

    def advance(self, state: TurnState) -> None:
        self.state = state
        self.transitions.append(state)

    def fail(self, exc: ChatlineError) -> None:
        self.error = exc.error_code
        self.exception = exc
        self.advance(TurnState.ERROR)

    def raise_for_error(self) -> None:
        """Raise the failure if the turn produced no reply."""
        if self.reply is None and self.exception is not None:
            raise self.exception


class ChatOrchestrator:
    """Top-level coordinator for the chat pipeline."""

    def __init__(
        self,
        validator: "TokenValidator",
        store: "MessageStore",
        hub: Optional["ConnectionManager"] = None,
        gateway: Optional[Gateway] = None,
        fallback_reply: str = GATEWAY_FAILURE_FALLBACK,
    ):
        self.validator = validator
        self.store = store
        self.hub = hub
        self.gateway = gateway
        self.fallback_reply = fallback_reply
        self._handlers: dict[Operation, Callable[[RequestContext, Any], Any]] = {
            Operation.LIST: self._handle_list,
            Operation.APPEND: self._handle_append,
            Operation.COMPLETE: self._handle_complete,
        }

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    def authenticate(self, authorization: Optional[str]) -> RequestContext:
        """Validate the Authorization header into a request context."""
        return RequestContext(user_id=self.validator.validate(authorization))

    async def dispatch(
        self,
        operation: Operation | str,
        authorization: Optional[str],
        payload: Any = None,
    ) -> Any:
        """Authenticate, then run the handler for ``operation``.

        Raises:
            BadRequestError: Unknown operation.
            AuthError: Missing or invalid credential (except for TURN,
                which reports it in the returned TurnResult).
        """
        try:
            op = Operation(operation)
        except ValueError as e:
            raise BadRequestError(f"Unknown operation: {operation!r}") from e

        if op is Operation.TURN:
            return await self.run_turn(authorization, payload)

        context = self.authenticate(authorization)
        handler = self._handlers[op]
        if inspect.iscoroutinefunction(handler):
            return await handler(context, payload)
        # Store-backed handlers block on the database lock.
        return await asyncio.to_thread(handler, context, payload)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def list_history(self, authorization: Optional[str]) -> list[Message]:
        """Return the caller's messages, oldest first."""
        return self._handle_list(self.authenticate(authorization), None)

    def append_message(
        self,
        authorization: Optional[str],
        text: str,
        sender: MessageRole | str = MessageRole.USER,
    ) -> Message:
        """Persist a message for the caller and notify live connections."""
        context = self.authenticate(authorization)
        return self._handle_append(context, {"text": text, "sender": sender})

    async def complete(
        self,
        authorization: Optional[str],
        transcript: Sequence[TranscriptTurn],
    ) -> str:
        """Ask the AI for a reply to a caller-supplied transcript.

        Nothing is persisted or published.

        Raises:
            GatewayError: The upstream call failed.
        """
        context = self.authenticate(authorization)
        return await self._handle_complete(context, transcript)

    async def run_turn(self, authorization: Optional[str], text: str) -> TurnResult:
        """Run a full human->AI turn for the caller.

        Never raises taxonomy errors; the returned TurnResult records the
        final state and, on failure, the error code and exception.
        """
        result = TurnResult()

        result.advance(TurnState.VALIDATING)
        try:
            context = self.authenticate(authorization)
        except AuthError as e:
            result.fail(e)
            return result

        return await self._run_turn(context, text, result)

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    def _handle_list(self, context: RequestContext, payload: Any) -> list[Message]:
        return self.store.list_by_user(context.user_id)

    def _handle_append(self, context: RequestContext, payload: Any) -> Message:
        text = payload.get("text") if isinstance(payload, dict) else None
        _require_text(text)
        message = self.store.append(
            context.user_id, payload.get("sender", MessageRole.USER), text
        )
        self._publish(message)
        return message

    async def _handle_complete(self, context: RequestContext, payload: Any) -> str:
        transcript = list(payload or [])
        if not transcript:
            raise BadRequestError("Transcript must contain at least one message")
        gateway = self._require_gateway()
        logger.debug(
            "Completing %d-turn transcript",
            len(transcript),
            extra={"user_id": context.user_id},
        )
        return await gateway.complete(transcript)

    async def _run_turn(
        self, context: RequestContext, text: Any, result: TurnResult
    ) -> TurnResult:
        user_id = context.user_id

        def log_extra() -> dict:
            return {"user_id": user_id, "turn_state": result.state.value}

        result.advance(TurnState.PERSISTING_USER)
        try:
            _require_text(text)
            # Store calls run off the event loop; the backend serialises them.
            result.user_message = await asyncio.to_thread(
                self.store.append, user_id, MessageRole.USER, text
            )
            history = await asyncio.to_thread(self.store.list_by_user, user_id)
        except (StoreError, BadRequestError) as e:
            logger.error("Turn aborted: user message not stored", extra=log_extra())
            result.fail(e)
            return result

        # No store or hub lock is held while the upstream call is in flight.
        result.advance(TurnState.AWAITING_AI)
        transcript = [TranscriptTurn.from_message(m) for m in history]
        try:
            reply = await self._require_gateway().complete(transcript)
        except GatewayError as e:
            logger.warning("AI turn failed: %s", e.message, extra=log_extra())
            result.reply = self.fallback_reply
            result.fail(e)
            self._publish(result.user_message)
            return result

        result.reply = reply
        result.advance(TurnState.PERSISTING_ASSISTANT)
        try:
            result.assistant_message = await asyncio.to_thread(
                self.store.append, user_id, MessageRole.ASSISTANT, reply
            )
        except StoreError as e:
            logger.error("Assistant reply was not stored", extra=log_extra())
            result.fail(e)
            self._publish(result.user_message)
            return result

        self._publish(result.user_message, result.assistant_message)
        result.advance(TurnState.DONE)
        return result

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _require_gateway(self) -> Gateway:
        if self.gateway is None:
            raise UpstreamUnavailable("AI backend is not configured")
        return self.gateway

    def _publish(self, *messages: Optional[Message]) -> None:
        """Fan out new messages to the owner's live connections."""
        if self.hub is None:
            return
        for message in messages:
            if message is None:
                continue
            event = BroadcastEvent(
                type=RECEIVE_MESSAGE,
                payload=message.to_public(),
                user_id=message.user_id,
            )
            try:
                self.hub.publish(event)
            except Exception:
                logger.warning(
                    "Broadcast of message %s failed", message.id, exc_info=True
                )
