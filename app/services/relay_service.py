"""Relay between one live game connection and one browser.

``GameRelay`` backs the streaming endpoint: it subscribes to the protocol
client's events and republishes them as SSE through an ``EventChannel``.
``join_once`` backs the one-shot join endpoint.
"""

import asyncio
import logging
from typing import Any, AsyncIterator, Awaitable, Callable, Optional

from app.config import Settings
from app.core.errors import AppError, ConnectTimeout, UpstreamError
from app.core.logging import bind_session_id
from app.models.schemas import JoinResponse, QuizResponse
from app.models.session import Session
from app.services import game_client as events
from app.services.event_channel import EventChannel
from app.services.game_client import GameClient
from app.services.question_service import QuestionEvent, QuestionState, derive_question
from app.services.quiz_service import fetch_quiz
from app.services.session_manager import SessionManager

logger = logging.getLogger(__name__)

ClientFactory = Callable[[str], GameClient]
Fetcher = Callable[..., Awaitable[QuizResponse]]

QUIZ_ID_FIELDS = ("quizId", "quizUuid", "uuid")

# Teardown tasks outlive their relay; keep them referenced until they finish
_teardown_tasks: set[asyncio.Task] = set()


def embedded_quiz_id(quiz: Any) -> Optional[str]:
    if not isinstance(quiz, dict):
        return None
    for name in QUIZ_ID_FIELDS:
        value = quiz.get(name)
        if isinstance(value, str) and value:
            return value
    return None


class GameRelay:
    def __init__(
        self,
        pin: str,
        name: str,
        *,
        settings: Settings,
        sessions: SessionManager,
        client_factory: ClientFactory,
        fetcher: Fetcher = fetch_quiz,
    ):
        self.pin = pin
        self.name = name
        self.settings = settings
        self.sessions = sessions
        self.client_factory = client_factory
        self.fetcher = fetcher

        self.channel = EventChannel()
        self.state = QuestionState()
        self.session: Optional[Session] = None
        self.joined = False
        self._closed = False
        self._tasks: set[asyncio.Task] = set()

    @property
    def closed(self) -> bool:
        return self._closed

    def start(self) -> None:
        """Create the protocol client and begin joining. Must run inside the event loop."""
        self.channel.send("connected", {"message": "Connecting to game..."})

        try:
            client = self.client_factory(self.settings.game_client)
        except Exception:
            logger.exception("Could not create game client")
            self.channel.send("error", {"message": "Failed to join game"})
            self.close(leave=False)
            return

        self.session = self.sessions.create(self.pin, self.name, client)
        bind_session_id(self.session.session_id)

        client.on(events.JOINED, self._on_joined)
        client.on(events.QUIZ_START, self._on_quiz_start)
        client.on(events.QUESTION_READY, self._question_handler(events.QUESTION_READY))
        client.on(events.QUESTION_START, self._question_handler(events.QUESTION_START))
        client.on(events.QUESTION_END, self._on_question_end)
        client.on(events.QUIZ_END, self._on_quiz_end)
        client.on(events.DISCONNECT, self._on_disconnect)
        client.on(events.JOIN_FAILED, self._on_join_failed)

        logger.info("Joining game %s as %s", self.pin, self.name)
        self._spawn(self._join(client))
        self._spawn(self._joined_fallback())

    async def stream(self) -> AsyncIterator[str]:
        try:
            async for frame in self.channel:
                yield frame
        finally:
            if not self._closed:
                logger.info("Client disconnected from browser")
                self.close()

    def close(self, *, leave: bool = True) -> None:
        """Release the session. Only the first call has any effect."""
        if self._closed:
            return
        self._closed = True
        self.channel.close()

        current = asyncio.current_task()
        for task in self._tasks:
            if task is not current:
                task.cancel()

        if self.session is None:
            return
        self.session.closed = True
        self.sessions.remove(self.session.session_id)
        if leave:
            # Not tracked in _tasks so close() never cancels its own teardown
            task = asyncio.ensure_future(self._leave(self.session.client))
            _teardown_tasks.add(task)
            task.add_done_callback(_teardown_tasks.discard)
        logger.info("Session %s closed", self.session.session_id)

    def _spawn(self, coro: Awaitable[Any]) -> None:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _join(self, client: GameClient) -> None:
        try:
            await client.join(self.pin, self.name)
        except Exception:
            logger.exception("Error joining game %s", self.pin)
            self.channel.send("error", {"message": "Failed to join game"})
            self.close()

    async def _joined_fallback(self) -> None:
        await asyncio.sleep(self.settings.joined_fallback_seconds)
        if not self.joined:
            self.channel.send("joined", {"message": "Connected! Waiting for questions..."})

    async def _leave(self, client: GameClient) -> None:
        try:
            await client.leave()
        except Exception:
            logger.warning("Leaving game %s failed", self.pin, exc_info=True)

    async def _prefetch(self, quiz_id: str) -> None:
        try:
            quiz = await self.fetcher(quiz_id, settings=self.settings)
        except UpstreamError as e:
            logger.warning("Could not prefetch quiz %s: %s", quiz_id, e.message)
            return
        except Exception:
            logger.exception("Could not prefetch quiz %s", quiz_id)
            return
        self.state.store(quiz.questions)
        logger.info("Stored %d questions for quiz %s", len(quiz.questions), quiz_id)

    def _send_question(self, event: QuestionEvent) -> None:
        record = derive_question(self.state, event)
        self.state.last_index = record.questionIndex
        self.channel.send("question", record.to_wire())

    # Protocol event handlers

    def _on_joined(self, *args: Any) -> None:
        self.joined = True
        self.channel.send("joined", {"message": "Successfully joined the game!"})

    def _on_quiz_start(self, quiz: Any = None, *args: Any) -> None:
        self.channel.send("quizStart", {"quiz": quiz})

        quiz_id = embedded_quiz_id(quiz)
        if quiz_id:
            self._spawn(self._prefetch(quiz_id))

        first_block = quiz.get("firstGameBlockData") if isinstance(quiz, dict) else None
        if isinstance(first_block, dict):
            self._send_question(QuestionEvent(events.QUIZ_START, first_block))

    def _question_handler(self, name: str) -> Callable[..., None]:
        def handle(question: Any = None, *args: Any) -> None:
            self._send_question(QuestionEvent(name, question))
        return handle

    def _on_question_end(self, result: Any = None, *args: Any) -> None:
        self.channel.send("questionEnd", result if result is not None else {})

    def _on_quiz_end(self, *args: Any) -> None:
        self.channel.send("finish", {"message": "Quiz has ended!"})
        self.close()

    def _on_disconnect(self, reason: Any = None, *args: Any) -> None:
        self.channel.send("disconnect", {"reason": reason})
        self.close(leave=False)

    def _on_join_failed(self, *args: Any) -> None:
        logger.info("Game %s rejected the join", self.pin)
        self.channel.send("error", {"message": "Failed to join game"})
        self.close()


async def join_once(
    pin: str,
    name: str,
    *,
    settings: Settings,
    client_factory: ClientFactory,
) -> JoinResponse:
    """Join a game and wait for confirmation, then leave again.

    Raises:
        ConnectTimeout: no join confirmation within the configured bound
        UpstreamError: the protocol client failed
    """
    client = client_factory(settings.game_client)
    joined = asyncio.get_running_loop().create_future()

    def on_joined(*args: Any) -> None:
        if not joined.done():
            joined.set_result(True)

    client.on(events.JOINED, on_joined)
    client.on(events.READY, on_joined)

    def on_failed(*args: Any) -> None:
        if not joined.done():
            joined.set_exception(UpstreamError("Game rejected the join"))

    client.on(events.JOIN_FAILED, on_failed)

    async def join_and_wait() -> None:
        logger.info("Attempting to join game %s as %s", pin, name)
        await client.join(pin, name)
        await joined

    try:
        await asyncio.wait_for(join_and_wait(), settings.connect_timeout_seconds)
    except asyncio.TimeoutError as e:
        logger.info("Connection timeout reached for game %s", pin)
        raise ConnectTimeout() from e
    except AppError:
        raise
    except Exception as e:
        logger.exception("Game connection error")
        raise UpstreamError("Failed to connect") from e
    finally:
        try:
            await client.leave()
        except Exception:
            logger.warning("Leaving game %s failed", pin, exc_info=True)

    return JoinResponse(message="Successfully connected to Kahoot game!", pin=pin)
