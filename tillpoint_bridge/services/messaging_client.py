"""
TillPoint Bridge — Messaging Client Interface
The capabilities the bridge needs from the automation layer that owns
the actual WhatsApp session.
"""

import inspect
from abc import ABC, abstractmethod
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from tillpoint_bridge.models.enums import ClientEvent
from tillpoint_bridge.services.base import BaseExternalService

EventHandler = Callable[[Any], Any]


@dataclass(frozen=True)
class ClientInfo:
    """Identity of the connected account."""

    wid_user: str | None = None


@dataclass(frozen=True)
class SentMessage:
    id: str
    chat_id: str
    timestamp: str | None = None


class BaseMessagingClient(BaseExternalService, ABC):
    """
    Base class for messaging clients.

    Subclasses drive the session and report lifecycle changes through
    ``_emit``; the bridge subscribes with ``on``. Handlers may be plain
    callables or coroutine functions. A failing handler is logged and
    never interrupts the client.
    """

    service_name = "MessagingClient"

    def __init__(self, settings: Any = None):
        super().__init__(settings)
        self._handlers: dict[ClientEvent, list[EventHandler]] = defaultdict(list)
        self.info: ClientInfo | None = None

    def on(self, event: ClientEvent | str, handler: EventHandler) -> None:
        """Subscribe ``handler`` to a lifecycle event."""
        self._handlers[ClientEvent(event)].append(handler)

    async def _emit(self, event: ClientEvent, payload: Any = None) -> None:
        for handler in list(self._handlers.get(event, ())):
            try:
                result = handler(payload)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                self.logger.exception("Handler for '%s' failed", event)

    # ── Capabilities ─────────────────────────────────────────────────────

    @abstractmethod
    async def initialize(self) -> None:
        """Start bringing the session up. Progress is reported via events."""
        raise NotImplementedError

    @abstractmethod
    async def destroy(self) -> None:
        """Tear the session down, keeping stored credentials."""
        raise NotImplementedError

    @abstractmethod
    async def logout(self) -> None:
        """Log the account out and discard stored credentials."""
        raise NotImplementedError

    @abstractmethod
    async def get_state(self) -> str | None:
        """Current state as reported live by the session, or None if unknown."""
        raise NotImplementedError

    @abstractmethod
    async def send_message(self, chat_id: str, content: Any, *, send_seen: bool = False) -> SentMessage:
        raise NotImplementedError
