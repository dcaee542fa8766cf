from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime

from collabchat.schemas.message import DeliveryState, Message, MessageType
from collabchat.services.peers import PeerInfoCache
from collabchat.services.timeline import RoomTimeline

REPLY_PLACEHOLDER = "message"


@dataclass
class MessageView:
    id: str
    sender_id: str
    sender_name: str
    sender_initials: str
    own: bool
    pending: bool
    content: str | None
    type: MessageType
    attachment_ref: str | None
    created_at: datetime | None
    delivery_state: DeliveryState
    reply_preview: str | None = None
    # emoji -> count, in first-seen order
    reactions: dict[str, int] = field(default_factory=dict)


def reply_preview(timeline: RoomTimeline, message: Message) -> str | None:
    if not message.reply_to_id:
        return None
    parent = timeline.reply_parent(message)
    if parent is None:
        return REPLY_PLACEHOLDER
    if parent.type is MessageType.TEXT and parent.content:
        return parent.content
    return parent.type.value


def render_timeline(timeline: RoomTimeline, peers: PeerInfoCache) -> list[MessageView]:
    views = []
    for message in timeline.messages():
        sender = peers.get(message.sender_id)
        views.append(
            MessageView(
                id=message.id,
                sender_id=message.sender_id,
                sender_name=sender.display_name,
                sender_initials=sender.initials,
                own=message.sender_id == timeline.viewer_id,
                pending=timeline.is_pending(message.id),
                content=message.content,
                type=message.type,
                attachment_ref=message.attachment_ref,
                created_at=message.created_at,
                delivery_state=message.delivery_state,
                reply_preview=reply_preview(timeline, message),
                reactions=dict(Counter(r.emoji for r in message.reactions)),
            )
        )
    return views
