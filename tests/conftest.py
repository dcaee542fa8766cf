"""
Pytest-Konfiguration: Fake-Backend (FastAPI ueber ASGITransport) fuer die
REST-Aufrufe und ein In-Memory-Socketserver fuer die Echtzeitverbindung.
"""
import asyncio
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from httpx import ASGITransport

from collabchat.schemas.message import Message
from collabchat.services.api import ChatApi
from collabchat.services.timeline import TimelineStore
from collabchat.websocket.transport import TransportSession
from tests.fake_backend import FakeBackend
from tests.fake_socket import FakeServer

BASE_URL = "http://test/api"
EPOCH = datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def backend():
    backend = FakeBackend()
    backend.add_user("alice", "Alice", "Arendt")
    backend.add_user("bob", "Bob", "Brecht")
    return backend


@pytest_asyncio.fixture
async def api(backend):
    """ChatApi gegen das Fake-Backend, angemeldet als alice."""
    async with ChatApi(BASE_URL, lambda: "alice", transport=ASGITransport(app=backend.app)) as client:
        yield client


@pytest.fixture
def store():
    return TimelineStore("alice")


@pytest.fixture
def server():
    return FakeServer()


@pytest_asyncio.fixture
async def transport(server):
    session = TransportSession("ws://test/ws", lambda: "alice", connector=server, reconnect_delay=0)
    yield session
    await session.disconnect()


def make_message(
    message_id: str,
    room_id: str = "r1",
    sender_id: str = "bob",
    content: str | None = "Hallo",
    seconds: int = 0,
    **extra,
) -> Message:
    """Hilfsfunktion: Baut eine bestaetigte Nachricht mit fester Uhrzeit."""
    return Message(
        id=message_id,
        room_id=room_id,
        sender_id=sender_id,
        content=content,
        created_at=EPOCH + timedelta(seconds=seconds),
        **extra,
    )


async def wait_until(predicate, timeout: float = 2.0) -> None:
    """Hilfsfunktion: Wartet, bis ``predicate()`` wahr ist."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("Bedingung nicht rechtzeitig erfuellt")
        await asyncio.sleep(0.001)
