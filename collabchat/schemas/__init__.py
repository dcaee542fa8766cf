from collabchat.schemas.events import Notice, TransportFrame
from collabchat.schemas.message import (
    DeliveryState,
    Message,
    MessageCreate,
    MessagePatch,
    MessageType,
    Reaction,
    ReactionCreate,
    ReplyCreate,
    StatusUpdate,
    is_local_id,
)
from collabchat.schemas.user import PeerInfo

__all__ = [
    "DeliveryState",
    "Message",
    "MessageCreate",
    "MessagePatch",
    "MessageType",
    "Notice",
    "PeerInfo",
    "Reaction",
    "ReactionCreate",
    "ReplyCreate",
    "StatusUpdate",
    "TransportFrame",
    "is_local_id",
]
