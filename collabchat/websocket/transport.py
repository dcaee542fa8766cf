"""Realtime socket session.

One process-wide connection to the chat server, carrying JSON text frames
``{"type": <event>, "data": <payload>}``. Inbound frames are dispatched to
registered handlers one at a time, in receipt order. The session reconnects
on its own; anything a consumer registered server-side (room joins) must be
reasserted from a ``connect`` handler.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from contextlib import suppress
from typing import Any, Callable

from pydantic import ValidationError
from websockets.asyncio.client import connect
from websockets.exceptions import WebSocketException

from collabchat.config import settings
from collabchat.schemas.events import TransportFrame

logger = logging.getLogger(__name__)

Handler = Callable[[Any], None]

CLIENT_DISCONNECT = "io client disconnect"


class TransportSession:
    def __init__(
        self,
        url: str | None = None,
        credentials: Callable[[], str | None] | None = None,
        *,
        connector: Callable[..., Any] = connect,
        reconnect_delay: float | None = None,
        max_reconnect_delay: float | None = None,
    ):
        self.url = url or settings.socket_url
        self._credentials = credentials
        self._connector = connector
        self.reconnect_delay = settings.reconnect_delay if reconnect_delay is None else reconnect_delay
        self.max_reconnect_delay = (
            settings.max_reconnect_delay if max_reconnect_delay is None else max_reconnect_delay
        )
        self._handlers: dict[str, list[Handler]] = defaultdict(list)
        self._outbox: asyncio.Queue[str] | None = None
        self._task: asyncio.Task | None = None
        self._closing = False
        self.connected = False
        # Incremented on every successful connection
        self.generation = 0
        self.last_error: str | None = None

    # -- subscriptions -----------------------------------------------------

    def on(self, event: str, handler: Handler) -> Callable[[], None]:
        self._handlers[event].append(handler)
        return lambda: self.off(event, handler)

    def off(self, event: str, handler: Handler) -> None:
        handlers = self._handlers.get(event, [])
        if handler in handlers:
            handlers.remove(handler)

    def dispatch(self, event: str, payload: Any = None) -> None:
        for handler in list(self._handlers.get(event, ())):
            try:
                handler(payload)
            except Exception:
                logger.exception("Handler for %r failed", event)

    # -- outbound ----------------------------------------------------------

    def emit(self, event: str, payload: Any = None) -> bool:
        """Queue a frame for sending; a no-op returning False while disconnected."""
        if not self.connected or self._outbox is None:
            logger.warning("Socket not connected. Cannot emit event: %s", event)
            return False
        self._outbox.put_nowait(TransportFrame(type=event, data=payload).model_dump_json())
        return True

    # -- lifecycle ---------------------------------------------------------

    async def connect(self) -> None:
        if self._task is not None and not self._task.done():
            return
        self._closing = False
        self._task = asyncio.ensure_future(self._run())

    async def disconnect(self) -> None:
        self._closing = True
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task
        if self.connected:
            self._mark_disconnected(CLIENT_DISCONNECT)

    def _headers(self) -> dict[str, str]:
        token = self._credentials() if self._credentials else None
        return {"Authorization": f"Bearer {token}"} if token else {}

    async def _run(self) -> None:
        delay = self.reconnect_delay
        while not self._closing:
            try:
                async with self._connector(self.url, additional_headers=self._headers()) as ws:
                    delay = self.reconnect_delay
                    await self._serve(ws)
            except (OSError, WebSocketException) as exc:
                reason = str(exc) or exc.__class__.__name__
                if self.connected:
                    self._mark_disconnected(reason)
                else:
                    self.last_error = reason
                    logger.warning("Socket connection error: %s", reason)
                    self.dispatch("connect_error", reason)
            else:
                if self.connected:
                    self._mark_disconnected("transport close")
            if self._closing:
                break
            await asyncio.sleep(delay)
            delay = min(delay * 2, self.max_reconnect_delay)

    async def _serve(self, ws) -> None:
        self._outbox = asyncio.Queue()
        self.generation += 1
        self.connected = True
        self.last_error = None
        logger.info("Socket connected to %s", self.url)
        self.dispatch("connect")

        writer = asyncio.ensure_future(self._drain(ws, self._outbox))
        try:
            async for raw in ws:
                self._receive(raw)
        finally:
            writer.cancel()
            with suppress(asyncio.CancelledError, WebSocketException):
                await writer

    async def _drain(self, ws, outbox: asyncio.Queue[str]) -> None:
        while True:
            frame = await outbox.get()
            await ws.send(frame)

    def _receive(self, raw: str | bytes) -> None:
        try:
            frame = TransportFrame.model_validate_json(raw)
        except ValidationError:
            logger.warning("Dropping malformed frame: %.200r", raw)
            return
        self.dispatch(frame.type, frame.data)

    def _mark_disconnected(self, reason: str) -> None:
        self.connected = False
        self._outbox = None
        logger.info("Socket disconnected: %s", reason)
        self.dispatch("disconnect", reason)
