import asyncio
import json

import pytest
from fastapi.testclient import TestClient

from app.config import Settings, get_settings
from app.core.app_factory import create_app
from app.services.game_client import GameClient, get_game_client_factory
from app.services.session_manager import SessionManager, get_session_manager


class FakeGameClient(GameClient):
    """Protocol client that replays a fixed script of events after ``join``."""

    def __init__(self, script=(), join_error=None):
        super().__init__()
        self.script = list(script)
        self.join_error = join_error
        self.joined_with = None
        self.left = 0

    async def join(self, pin, name):
        self.joined_with = (pin, name)
        if self.join_error is not None:
            raise self.join_error
        loop = asyncio.get_running_loop()
        for event, args in self.script:
            loop.call_soon(self.emit, event, *args)

    async def leave(self):
        self.left += 1


class FakeClientFactory:
    def __init__(self, script=(), join_error=None):
        self.script = script
        self.join_error = join_error
        self.clients: list[FakeGameClient] = []

    def __call__(self, client_type):
        client = FakeGameClient(self.script, self.join_error)
        self.clients.append(client)
        return client


def parse_sse(body: str) -> list[tuple[str, object]]:
    frames = []
    for block in body.strip().split("\n\n"):
        if not block:
            continue
        event, data = None, None
        for line in block.split("\n"):
            if line.startswith("event: "):
                event = line[len("event: "):]
            elif line.startswith("data: "):
                data = json.loads(line[len("data: "):])
        frames.append((event, data))
    return frames


def four_choices():
    return [
        {"answer": "Paris", "correct": True},
        {"answer": "Lyon", "correct": False},
        {"answer": "Nice", "correct": False},
        {"answer": "Lille", "correct": False},
    ]


@pytest.fixture()
def settings():
    return Settings(
        quiz_api_url="https://quiz.test/rest/kahoots",
        connect_timeout_seconds=0.2,
        joined_fallback_seconds=60,
    )


@pytest.fixture()
def sessions():
    return SessionManager()


@pytest.fixture()
def app(settings, sessions):
    application = create_app()
    application.dependency_overrides[get_settings] = lambda: settings
    application.dependency_overrides[get_session_manager] = lambda: sessions
    yield application
    application.dependency_overrides.clear()


@pytest.fixture()
def use_factory(app):
    def install(factory):
        app.dependency_overrides[get_game_client_factory] = lambda: factory
        return factory
    return install


@pytest.fixture()
def client(app):
    return TestClient(app)
