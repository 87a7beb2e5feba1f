import asyncio
import logging
import threading
import time

import pytest
from pymitter import EventEmitter

from app.services.event_channel import EventChannel, format_sse
from app.core.errors import UpstreamError
from app.services.game_client import (
    JOINED, QUESTION_READY, QUIZ_END, QUIZ_START,
    KahootGameClient, LoggingObserver, create_game_client, unwrap_payload,
)
from app.services.relay_service import GameRelay, join_once
from app.services.session_manager import SessionManager

from conftest import FakeGameClient, four_choices, parse_sse


def test_session_manager_lifecycle():
    sessions = SessionManager()

    session = sessions.create("123456", "Alice", client=object())

    assert session.session_id.startswith("123456-Alice-")
    assert sessions.lookup(session.session_id) is session
    assert len(sessions) == 1
    assert sessions.remove(session.session_id) is session
    assert sessions.lookup(session.session_id) is None
    assert sessions.remove(session.session_id) is None


def test_session_ids_are_unique_for_same_player():
    sessions = SessionManager()

    first = sessions.create("123456", "Alice", client=object())
    second = sessions.create("123456", "Alice", client=object())

    assert first.session_id != second.session_id
    assert sorted(sessions.list_session_ids()) == sorted([first.session_id, second.session_id])


def test_format_sse():
    assert format_sse("joined", {"message": "hi"}) == 'event: joined\ndata: {"message": "hi"}\n\n'


def test_channel_close_is_idempotent_and_drops_later_sends():
    async def scenario():
        channel = EventChannel()
        assert channel.send("connected", {"message": "Connecting to game..."})
        channel.close()
        channel.close()
        dropped = channel.send("question", {"question": "late"})
        frames = [frame async for frame in channel]
        return dropped, frames

    dropped, frames = asyncio.run(scenario())

    assert dropped is False
    assert frames == [format_sse("connected", {"message": "Connecting to game..."})]


def test_observers_see_events_before_handlers():
    client = FakeGameClient()
    calls = []
    client.add_observer(lambda event, args: calls.append(("observer", event, args)))
    client.on(JOINED, lambda *args: calls.append(("handler", JOINED, args)))

    client.emit(JOINED, "payload")

    assert calls == [("observer", JOINED, ("payload",)), ("handler", JOINED, ("payload",))]


def test_failing_handler_does_not_stop_others():
    client = FakeGameClient()
    seen = []

    def broken(*args):
        raise RuntimeError("boom")

    client.on(JOINED, broken)
    client.on(JOINED, lambda *args: seen.append(args))

    client.emit(JOINED)

    assert seen == [()]


def test_logging_observer(caplog):
    caplog.set_level(logging.DEBUG, logger="test.protocol")

    LoggingObserver(logging.getLogger("test.protocol"))(JOINED, ())

    assert "Protocol event Joined" in caplog.text


def test_unknown_game_client_type():
    with pytest.raises(ValueError):
        create_game_client("carrier-pigeon")


class StandInKahoot(EventEmitter):
    """Shaped like ``kahoot.client``: blocking join/leave, events from its own thread."""

    def __init__(self, script=(), join_result=True):
        super().__init__()
        self.script = list(script)
        self.join_result = join_result
        self.join_thread = None
        self.left = 0

    def join(self, pin, name):
        self.join_thread = threading.get_ident()
        if self.join_result:
            threading.Thread(target=self._play, daemon=True).start()
        return self.join_result

    def _play(self):
        time.sleep(0.01)
        for event, args in self.script:
            self.emit(event, *args)

    def leave(self):
        self.left += 1


class LibraryEvent:
    def __init__(self, raw):
        self.rawEvent = raw


def adapter_relay(settings, library, seen=None):
    def factory(client_type):
        client = KahootGameClient(client_cls=lambda: library)
        if seen is not None:
            client.add_observer(lambda event, args: seen.append((event, args, threading.get_ident())))
        return client

    return GameRelay(
        "123456", "Alice", settings=settings, sessions=SessionManager(), client_factory=factory,
    )


async def collect_frames(relay):
    frames = [frame async for frame in relay.stream()]
    return parse_sse("".join(frames))


def test_kahoot_adapter_delivers_library_events_on_loop(settings):
    library = StandInKahoot(script=[
        ("joined", ()),
        ("quizStart", (LibraryEvent({"firstGameBlockData": {"choices": four_choices()}}),)),
        ("question", (LibraryEvent({"gameBlockIndex": 1, "title": "Q2", "choices": [{"answer": "A"}]}),)),
        ("quizEnd", ()),
    ])
    seen = []

    async def scenario():
        relay = adapter_relay(settings, library, seen)
        relay.start()
        frames = await asyncio.wait_for(collect_frames(relay), 2)
        for _ in range(100):
            if library.left:
                break
            await asyncio.sleep(0.01)
        return threading.get_ident(), frames

    loop_thread, frames = asyncio.run(scenario())

    assert [event for event, _ in frames] == [
        "connected", "joined", "quizStart", "question", "question", "finish",
    ]
    assert len(frames[3][1]["answers"]) == 4
    assert frames[4][1] == {
        "question": "Q2", "answers": [{"text": "A"}], "questionIndex": 1, "early": True,
    }
    assert [event for event, _, _ in seen] == [JOINED, QUIZ_START, QUESTION_READY, QUIZ_END]
    assert all(thread == loop_thread for _, _, thread in seen)
    assert isinstance(seen[1][1][0], dict)
    assert library.join_thread != loop_thread
    assert library.left == 1


def test_kahoot_adapter_rejected_join_emits_error(settings):
    library = StandInKahoot(join_result=False)

    async def scenario():
        relay = adapter_relay(settings, library)
        relay.start()
        return await asyncio.wait_for(collect_frames(relay), 2)

    frames = asyncio.run(scenario())

    assert frames == [
        ("connected", {"message": "Connecting to game..."}),
        ("error", {"message": "Failed to join game"}),
    ]


def test_kahoot_adapter_handshake_failure_emits_error(settings):
    library = StandInKahoot(script=[("handshakeFailed", ())])

    async def scenario():
        relay = adapter_relay(settings, library)
        relay.start()
        return await asyncio.wait_for(collect_frames(relay), 2)

    frames = asyncio.run(scenario())

    assert frames[-1] == ("error", {"message": "Failed to join game"})


def test_join_once_rejects_invalid_name(settings):
    def factory(client_type):
        return KahootGameClient(client_cls=lambda: StandInKahoot(script=[("invalidName", ())]))

    with pytest.raises(UpstreamError) as excinfo:
        asyncio.run(join_once("123456", "Alice", settings=settings, client_factory=factory))
    assert excinfo.value.message == "Game rejected the join"


def test_unwrap_payload():
    assert unwrap_payload(LibraryEvent({"gameBlockIndex": 2})) == {"gameBlockIndex": 2}
    assert unwrap_payload("Kicked") == "Kicked"
