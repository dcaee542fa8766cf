import logging
from typing import Any, Callable

from pydantic import ValidationError

from collabchat.schemas.message import Message, MessagePatch
from collabchat.services.peers import PeerInfoCache
from collabchat.services.timeline import TimelineStore
from collabchat.websocket.transport import TransportSession

logger = logging.getLogger(__name__)


def handle_receive_message(store: TimelineStore, peers: PeerInfoCache | None, data: Any) -> bool:
    try:
        message = Message.model_validate(data)
    except ValidationError as exc:
        logger.warning("Dropping malformed receiveMessage payload: %s", exc)
        return False
    applied = store.apply_live_event(message)
    if applied and peers is not None and message.sender_id != store.viewer_id:
        peers.request(message.sender_id)
    return applied


def handle_message_updated(store: TimelineStore, data: Any) -> bool:
    try:
        patch = MessagePatch.model_validate(data)
    except ValidationError as exc:
        logger.warning("Dropping malformed messageUpdated payload: %s", exc)
        return False
    return store.apply_live_event(patch)


def register_chat_handlers(
    transport: TransportSession,
    store: TimelineStore,
    peers: PeerInfoCache | None = None,
) -> list[Callable[[], None]]:
    """Route inbound chat events into the store; returns the unsubscribe callables."""
    return [
        transport.on("receiveMessage", lambda data: handle_receive_message(store, peers, data)),
        transport.on("messageUpdated", lambda data: handle_message_updated(store, data)),
    ]
