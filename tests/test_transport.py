"""Tests fuer die TransportSession (Verbindung, Frames, Reconnect)."""
import pytest
from websockets.exceptions import WebSocketException

from tests.conftest import wait_until


@pytest.mark.asyncio
async def test_connect_sends_token(server, transport):
    events = []
    transport.on("connect", events.append)
    await transport.connect()
    await wait_until(lambda: transport.connected)

    assert server.headers == [{"Authorization": "Bearer alice"}]
    assert transport.generation == 1
    assert events == [None]


@pytest.mark.asyncio
async def test_emit_requires_connection(server, transport):
    assert transport.emit("joinRoom", "r1") is False

    await transport.connect()
    await wait_until(lambda: transport.connected)
    assert transport.emit("joinRoom", "r1") is True
    await wait_until(lambda: server.socket.sent)
    assert server.socket.sent == [{"type": "joinRoom", "data": "r1"}]


@pytest.mark.asyncio
async def test_inbound_frames_in_order(server, transport):
    received = []
    transport.on("receiveMessage", received.append)
    await transport.connect()
    await wait_until(lambda: transport.connected)

    server.socket.push("receiveMessage", {"id": "m1"})
    server.socket.push_raw("kein json")
    server.socket.push_raw('{"data": "ohne typ"}')
    server.socket.push("receiveMessage", {"id": "m2"})
    await wait_until(lambda: len(received) == 2)
    assert received == [{"id": "m1"}, {"id": "m2"}]


@pytest.mark.asyncio
async def test_failing_handler_does_not_stop_dispatch(server, transport):
    received = []

    def broken(_payload):
        raise RuntimeError("kaputt")

    transport.on("messageUpdated", broken)
    transport.on("messageUpdated", received.append)
    await transport.connect()
    await wait_until(lambda: transport.connected)

    server.socket.push("messageUpdated", {"id": "m1"})
    await wait_until(lambda: received)
    assert received == [{"id": "m1"}]


@pytest.mark.asyncio
async def test_unsubscribe(server, transport):
    received = []
    unsubscribe = transport.on("receiveMessage", received.append)
    unsubscribe()
    transport.dispatch("receiveMessage", {"id": "m1"})
    assert received == []


@pytest.mark.asyncio
async def test_reconnect_after_server_close(server, transport):
    reasons = []
    transport.on("disconnect", reasons.append)
    await transport.connect()
    await wait_until(lambda: transport.connected)

    server.socket.drop()
    await wait_until(lambda: transport.generation == 2 and transport.connected)
    assert reasons == ["transport close"]
    assert len(server.sockets) == 2


@pytest.mark.asyncio
async def test_connect_error(server, transport):
    errors = []
    transport.on("connect_error", errors.append)
    server.reject(WebSocketException("Authentication error"), OSError("Connection refused"))
    await transport.connect()

    await wait_until(lambda: transport.connected)
    assert errors == ["Authentication error", "Connection refused"]
    assert transport.last_error is None
    assert transport.generation == 1


@pytest.mark.asyncio
async def test_client_disconnect(server, transport):
    reasons = []
    transport.on("disconnect", reasons.append)
    await transport.connect()
    await wait_until(lambda: transport.connected)

    await transport.disconnect()
    assert not transport.connected
    assert reasons == ["io client disconnect"]
    assert transport.emit("leaveRoom", "r1") is False
