"""Seam between the relay and the third-party game protocol library.

The relay only talks to :class:`GameClient`. Adapters translate a concrete
library's callbacks into :meth:`GameClient.emit` calls on the event loop,
and observers see every event before the handlers do.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections import defaultdict
from typing import Any, Callable, Optional

from app.core.errors import UpstreamError

logger = logging.getLogger(__name__)

# Relay-side event names. Adapters map their library's names onto these.
JOINED = "Joined"
READY = "Ready"
QUIZ_START = "QuizStart"
QUESTION_READY = "QuestionReady"
QUESTION_START = "QuestionStart"
QUESTION_END = "QuestionEnd"
QUIZ_END = "QuizEnd"
DISCONNECT = "Disconnect"
JOIN_FAILED = "JoinFailed"

# Event names emitted by ``kahoot.client`` (KahootPY). These are a
# compatibility surface with the live service.
KAHOOT_EVENTS = {
    "joined": JOINED,
    "ready": READY,
    "quizStart": QUIZ_START,
    "question": QUESTION_READY,
    "questionStart": QUESTION_START,
    "questionEnd": QUESTION_END,
    "quizEnd": QUIZ_END,
    "disconnect": DISCONNECT,
    "handshakeFailed": JOIN_FAILED,
    "invalidName": JOIN_FAILED,
}

Handler = Callable[..., Any]
Observer = Callable[[str, tuple], None]


class GameClient(ABC):
    """One connection to a live game."""

    def __init__(self):
        self._handlers: dict[str, list[Handler]] = defaultdict(list)
        self._observers: list[Observer] = []

    def on(self, event: str, handler: Handler) -> None:
        self._handlers[event].append(handler)

    def add_observer(self, observer: Observer) -> None:
        self._observers.append(observer)

    def emit(self, event: str, *args: Any) -> None:
        """Dispatch an upstream event to observers, then handlers.

        A failing handler is logged and does not stop the others.
        """
        for observer in self._observers:
            observer(event, args)
        for handler in list(self._handlers.get(event, ())):
            try:
                handler(*args)
            except Exception:
                logger.exception("Handler for %s failed", event)

    @abstractmethod
    async def join(self, pin: str, name: str) -> None:
        """Start joining the game. Success arrives later as a ``Joined`` event."""

    @abstractmethod
    async def leave(self) -> None:
        pass


class LoggingObserver:
    """Logs every protocol event passing through a client."""

    def __init__(self, log: logging.Logger | None = None):
        self.log = log or logger

    def __call__(self, event: str, args: tuple) -> None:
        self.log.debug("Event fired: %s %r", event, args)
        if event in (JOINED, QUIZ_START, QUIZ_END, DISCONNECT, JOIN_FAILED):
            self.log.info("Protocol event %s", event)


def unwrap_payload(value: Any) -> Any:
    """Library event objects carry the raw protocol message on ``rawEvent``."""
    raw = getattr(value, "rawEvent", None)
    if isinstance(raw, dict):
        return raw
    return value


class KahootGameClient(GameClient):
    """Adapter over ``kahoot.client`` from the KahootPY library.

    The library is synchronous: ``join`` blocks on HTTP and events fire from
    its websocket thread. Blocking calls run in a worker thread and events are
    handed back to the event loop that created the adapter.
    """

    def __init__(self, client_cls: Optional[Callable[[], Any]] = None):
        super().__init__()
        if client_cls is None:
            try:
                import kahoot
            except ImportError as e:
                raise UpstreamError("Game client library is not installed") from e
            client_cls = kahoot.client

        self._loop = asyncio.get_running_loop()
        self._client = client_cls()
        for upstream, event in KAHOOT_EVENTS.items():
            self._client.on(upstream, self._forwarder(event))

    def _forwarder(self, event: str) -> Handler:
        def forward(*args: Any) -> None:
            if self._loop.is_closed():
                return
            payload = tuple(unwrap_payload(arg) for arg in args)
            self._loop.call_soon_threadsafe(self.emit, event, *payload)
        return forward

    async def join(self, pin: str, name: str) -> None:
        result = await asyncio.to_thread(self._client.join, pin, name)
        if result is False:
            raise UpstreamError("Game rejected the join")

    async def leave(self) -> None:
        await asyncio.to_thread(self._client.leave)


def create_game_client(client_type: str = "kahoot") -> GameClient:
    """Factory function to create a protocol client by adapter name.

    Raises:
        ValueError: If client_type is not supported
    """
    client_type = client_type.lower()

    if client_type == "kahoot":
        client = KahootGameClient()
    else:
        raise ValueError(
            f"Unsupported game client: '{client_type}'. "
            f"Supported types are: 'kahoot'"
        )

    client.add_observer(LoggingObserver())
    return client


def get_game_client_factory() -> Callable[[str], GameClient]:
    return create_game_client
