"""Process-wide service components.

Components are built once by :func:`init_components` (normally from the
FastAPI lifespan) and read through :func:`get_components`. Route modules
import this *module* so they always see the current instance:

    from chatline import api_state as state
    state.get_components().orchestrator
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Optional

from slowapi import Limiter
from slowapi.util import get_remote_address

from chatline.api_clients import OpenAIGateway
from chatline.auth import TokenValidator, UserStore
from chatline.chat import ChatOrchestrator, MessageStore
from chatline.config import Settings, get_settings
from chatline.errors import NotInitializedError
from chatline.state import DatabaseBackend, create_backend
from chatline.websocket import ConnectionManager

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Rate limiter
# ---------------------------------------------------------------------------
limiter = Limiter(key_func=get_remote_address)


@dataclass
class Components:
    """Everything a request handler needs."""

    settings: Settings
    backend: DatabaseBackend
    messages: MessageStore
    users: UserStore
    validator: TokenValidator
    gateway: OpenAIGateway
    hub: ConnectionManager
    orchestrator: ChatOrchestrator


_components: Optional[Components] = None
_init_lock = threading.Lock()


def init_components(
    settings: Optional[Settings] = None,
    backend: Optional[DatabaseBackend] = None,
    gateway: Optional[OpenAIGateway] = None,
    force: bool = False,
) -> Components:
    """Build the service components once.

    A second call returns the existing components unless ``force`` is set,
    in which case the previous backend is closed and everything is rebuilt.
    """
    global _components
    with _init_lock:
        if _components is not None and not force:
            logger.debug("Components already initialized")
            return _components
        if _components is not None:
            _components.backend.close()

        settings = settings or get_settings()
        backend = backend or create_backend(settings.database_url)
        gateway = gateway or OpenAIGateway(
            api_key=settings.openai_api_key,
            system_prompt=settings.system_prompt,
            model=settings.openai_model,
            timeout=settings.ai_timeout_seconds,
        )
        validator = TokenValidator(
            settings.secret_key,
            algorithm=settings.jwt_algorithm,
            expires_minutes=settings.access_token_expire_minutes,
        )
        messages = MessageStore(backend)
        hub = ConnectionManager(
            send_timeout=settings.ws_send_timeout_seconds,
            queue_size=settings.ws_queue_size,
        )
        _components = Components(
            settings=settings,
            backend=backend,
            messages=messages,
            users=UserStore(backend),
            validator=validator,
            gateway=gateway,
            hub=hub,
            orchestrator=ChatOrchestrator(
                validator=validator, store=messages, hub=hub, gateway=gateway
            ),
        )
        if not gateway.is_configured:
            logger.warning("OPENAI_API_KEY is not set; AI replies will use fallback text")
        logger.info("Chat components initialized (database=%s)", settings.database_url)
        return _components


def get_components() -> Components:
    """Return the initialized components.

    Raises:
        NotInitializedError: If init_components() has not run.
    """
    if _components is None:
        raise NotInitializedError("Chat service not initialized")
    return _components


def is_initialized() -> bool:
    return _components is not None


async def shutdown_components() -> None:
    """Close live connections and the database, then forget the components."""
    global _components
    with _init_lock:
        components, _components = _components, None
    if components is None:
        return
    await components.hub.close()
    components.backend.close()
    logger.info("Chat components shut down")
