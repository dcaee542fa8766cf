import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable

import httpx

from collabchat.config import settings
from collabchat.schemas.events import Notice
from collabchat.schemas.message import DeliveryState
from collabchat.schemas.user import PeerInfo
from collabchat.services.api import ApiError, ChatApi
from collabchat.services.mutations import MutationController
from collabchat.services.peers import PeerInfoCache
from collabchat.services.render import MessageView, render_timeline
from collabchat.services.timeline import RoomTimeline, TimelineStore
from collabchat.websocket.handlers import register_chat_handlers
from collabchat.websocket.membership import RoomMembershipManager
from collabchat.websocket.transport import CLIENT_DISCONNECT, TransportSession

logger = logging.getLogger(__name__)


class ChatSession:
    """Wires the transport, store, membership and mutations for one user."""

    def __init__(
        self,
        viewer: PeerInfo | str,
        api: ChatApi,
        transport: TransportSession,
    ):
        if isinstance(viewer, str):
            viewer = PeerInfo(id=viewer)
        self.viewer = viewer
        self.api = api
        self.transport = transport
        self.notices: list[Notice] = []
        self.store = TimelineStore(viewer.id)
        self.peers = PeerInfoCache(api)
        self.peers.seed(viewer)
        self.membership = RoomMembershipManager(transport)
        self.mutations = MutationController(self.store, api, notify=self.notify)
        self._unsubscribe = register_chat_handlers(transport, self.store, self.peers)
        self._unsubscribe.append(transport.on("disconnect", self._on_disconnect))
        self._unsubscribe.append(transport.on("connect_error", self._on_connect_error))

    @property
    def active_room(self) -> str | None:
        return self.membership.active_room

    def notify(self, notice: Notice) -> None:
        self.notices.append(notice)

    # -- rooms -------------------------------------------------------------

    async def open_room(self, room_id: str) -> RoomTimeline | None:
        """Activate ``room_id`` and load its snapshot.

        Returns None when another room was activated before the snapshot
        arrived; the stale snapshot is dropped.
        """
        previous = self.membership.active_room
        if not self.membership.activate(room_id):
            return self.store.timeline(room_id)
        timeline = self.store.open(room_id)
        if previous is not None and previous != room_id:
            self.store.release(previous)
        return await self._load(timeline)

    async def reload_room(self) -> RoomTimeline | None:
        """Fetch the active room's snapshot again, e.g. after a failed load."""
        room_id = self.membership.active_room
        if room_id is None:
            return None
        return await self._load(self.store.open(room_id))

    async def _load(self, timeline: RoomTimeline) -> RoomTimeline | None:
        room_id = timeline.room_id
        try:
            messages = await self.api.get_messages(room_id)
        except ApiError as exc:
            logger.warning("Failed to fetch messages for room %s: %s", room_id, exc)
            timeline.loading = False
            self.notify(Notice(title="Error Loading Messages", description=str(exc)))
            raise

        if self.membership.active_room != room_id:
            logger.debug("Room %s was left before its snapshot arrived", room_id)
            return None
        self.store.apply_snapshot(room_id, messages)
        for sender_id in {m.sender_id for m in messages}:
            self.peers.request(sender_id)
        return timeline

    def close_room(self) -> None:
        room_id = self.membership.active_room
        self.membership.deactivate()
        if room_id is not None:
            self.store.release(room_id)

    def timeline(self) -> RoomTimeline | None:
        room_id = self.membership.active_room
        return self.store.timeline(room_id) if room_id else None

    def render(self) -> list[MessageView]:
        timeline = self.timeline()
        return render_timeline(timeline, self.peers) if timeline else []

    def mark_room_read(self) -> int:
        """Mark other users' visible messages in the active room as read."""
        timeline = self.timeline()
        if timeline is None:
            return 0
        unread = [
            m for m in timeline.messages()
            if m.sender_id != self.viewer.id and not m.is_local and m.delivery_state is not DeliveryState.READ
        ]
        for message in unread:
            self.mutations.update_status(message.id, DeliveryState.READ)
        return len(unread)

    # -- transport events --------------------------------------------------

    def _on_disconnect(self, reason) -> None:
        if reason != CLIENT_DISCONNECT:
            self.notify(Notice(
                title="Disconnected",
                description=f"Real-time connection lost: {reason}. Reconnecting...",
            ))

    def _on_connect_error(self, reason) -> None:
        if reason and "Authentication error" in reason:
            description = "Real-time connection failed (invalid token?). Please try logging in again."
            self.notify(Notice(title="Authentication Error", description=description))
        else:
            self.notify(Notice(title="Connection Error", description="Could not connect to real-time server."))

    async def aclose(self) -> None:
        await self.mutations.drain()
        for unsubscribe in self._unsubscribe:
            unsubscribe()
        await self.peers.aclose()


@asynccontextmanager
async def open_session(
    viewer: PeerInfo | str,
    credentials: Callable[[], str | None] | None = None,
    *,
    api_base_url: str | None = None,
    socket_url: str | None = None,
    http_transport: httpx.AsyncBaseTransport | None = None,
    connector=None,
) -> AsyncIterator[ChatSession]:
    api = ChatApi(api_base_url or settings.api_base_url, credentials, transport=http_transport)
    transport_kwargs = {"connector": connector} if connector is not None else {}
    transport = TransportSession(socket_url or settings.socket_url, credentials, **transport_kwargs)
    session = ChatSession(viewer, api, transport)
    await transport.connect()
    try:
        # Sender names for the room list, before any room is opened
        await session.peers.prefetch()
        yield session
    finally:
        session.close_room()
        await session.aclose()
        await transport.disconnect()
        await api.aclose()

