import logging
from enum import Enum

from collabchat.websocket.transport import TransportSession

logger = logging.getLogger(__name__)


class RoomState(str, Enum):
    IDLE = "idle"
    JOINING = "joining"
    JOINED = "joined"


class RoomMembershipManager:
    """Tracks the single active room and keeps the server's membership in sync.

    Joins are fire-and-forget: the server sends no ack, so the manager
    assumes Joined as soon as the join is emitted. Membership on the server
    is scoped to one connection, hence the rejoin on every reconnect.
    """

    def __init__(self, transport: TransportSession):
        self.transport = transport
        self.state = RoomState.IDLE
        self.active_room: str | None = None
        # Connection generation the current join was emitted on
        self._joined_generation: int | None = None
        transport.on("connect", self._on_connect)

    def activate(self, room_id: str) -> bool:
        """Make ``room_id`` the active room; returns False if it already was."""
        if self.state is RoomState.JOINED and self.active_room == room_id:
            return False
        if self.active_room is not None and self.active_room != room_id:
            self._leave(self.active_room)
        self.active_room = room_id
        self._join(room_id)
        return True

    def deactivate(self) -> None:
        if self.active_room is not None:
            self._leave(self.active_room)
        self.active_room = None
        self.state = RoomState.IDLE
        self._joined_generation = None

    def _join(self, room_id: str) -> None:
        self.state = RoomState.JOINING
        logger.debug("Joining room: %s", room_id)
        if self.transport.emit("joinRoom", room_id):
            self._joined_generation = self.transport.generation
        else:
            # Joined again from the next connect event
            self._joined_generation = None
        self.state = RoomState.JOINED

    def _leave(self, room_id: str) -> None:
        logger.debug("Leaving room: %s", room_id)
        self.transport.emit("leaveRoom", room_id)

    def _on_connect(self, _payload=None) -> None:
        if self.state is not RoomState.JOINED or self.active_room is None:
            return
        if self._joined_generation == self.transport.generation:
            return
        logger.info("Rejoining room %s after reconnect", self.active_room)
        self._join(self.active_room)
