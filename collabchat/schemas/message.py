from datetime import datetime, timezone
from enum import Enum
from typing import Literal

from pydantic import AliasChoices, BaseModel, Field, field_validator, model_validator

LOCAL_ID_PREFIX = "local-"


def is_local_id(message_id: str) -> bool:
    return message_id.startswith(LOCAL_ID_PREFIX)


def _alias(name: str, *wire: str) -> dict:
    # Accept the snake_case name, the camelCase wire name and the legacy
    # Mongo field name; always serialize to the camelCase wire name.
    return {"validation_alias": AliasChoices(name, *wire), "serialization_alias": wire[0]}


class MessageType(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    FILE = "file"
    VOICE = "voice"


class DeliveryState(str, Enum):
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"

    @property
    def rank(self) -> int:
        return _DELIVERY_RANK[self]


_DELIVERY_RANK = {DeliveryState.SENT: 0, DeliveryState.DELIVERED: 1, DeliveryState.READ: 2}


def later_state(a: DeliveryState, b: DeliveryState) -> DeliveryState:
    """Return whichever state is further along; delivery never regresses."""
    return a if a.rank >= b.rank else b


class Reaction(BaseModel):
    user_id: str = Field(**_alias("user_id", "userId", "user"))
    emoji: str

    model_config = {"frozen": True}


def _unique_reactions(reactions) -> tuple[Reaction, ...]:
    seen: set[tuple[str, str]] = set()
    out = []
    for reaction in reactions:
        key = (reaction.user_id, reaction.emoji)
        if key not in seen:
            seen.add(key)
            out.append(reaction)
    return tuple(out)


def _as_utc(value: datetime | None) -> datetime | None:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class Message(BaseModel):
    id: str = Field(**_alias("id", "id", "_id"))
    room_id: str = Field(**_alias("room_id", "roomId", "chatRoom"))
    sender_id: str = Field(**_alias("sender_id", "senderId", "sender"))
    content: str | None = None
    type: MessageType = Field(default=MessageType.TEXT, **_alias("type", "type", "messageType"))
    attachment_ref: str | None = Field(default=None, **_alias("attachment_ref", "attachmentRef", "fileUrl"))
    reply_to_id: str | None = Field(default=None, **_alias("reply_to_id", "replyToId", "replyTo"))
    reactions: tuple[Reaction, ...] = ()
    deletion_set: frozenset[str] = Field(
        default_factory=frozenset, **_alias("deletion_set", "deletionSet", "deletedFor")
    )
    delivery_state: DeliveryState = Field(
        default=DeliveryState.SENT, **_alias("delivery_state", "deliveryState", "status")
    )
    created_at: datetime | None = Field(default=None, **_alias("created_at", "createdAt", "timestamp"))

    model_config = {"frozen": True}

    @field_validator("reactions")
    @classmethod
    def _dedupe_reactions(cls, value):
        return _unique_reactions(value)

    @field_validator("created_at")
    @classmethod
    def _created_at_utc(cls, value):
        return _as_utc(value)

    @property
    def is_local(self) -> bool:
        return is_local_id(self.id)

    def hidden_for(self, user_id: str) -> bool:
        return user_id in self.deletion_set

    def has_reaction(self, user_id: str, emoji: str) -> bool:
        return any(r.user_id == user_id and r.emoji == emoji for r in self.reactions)


class MessagePatch(BaseModel):
    """Partial message update as delivered by ``messageUpdated``.

    Only the fields present in the payload are applied; a field sent as
    ``null`` clears the stored value.
    """

    id: str = Field(**_alias("id", "id", "_id"))
    room_id: str | None = Field(default=None, **_alias("room_id", "roomId", "chatRoom"))
    sender_id: str | None = Field(default=None, **_alias("sender_id", "senderId", "sender"))
    content: str | None = None
    type: MessageType | None = Field(default=None, **_alias("type", "type", "messageType"))
    attachment_ref: str | None = Field(default=None, **_alias("attachment_ref", "attachmentRef", "fileUrl"))
    reply_to_id: str | None = Field(default=None, **_alias("reply_to_id", "replyToId", "replyTo"))
    reactions: tuple[Reaction, ...] | None = None
    deletion_set: frozenset[str] | None = Field(
        default=None, **_alias("deletion_set", "deletionSet", "deletedFor")
    )
    delivery_state: DeliveryState | None = Field(
        default=None, **_alias("delivery_state", "deliveryState", "status")
    )
    created_at: datetime | None = Field(default=None, **_alias("created_at", "createdAt", "timestamp"))

    @field_validator("reactions")
    @classmethod
    def _dedupe_reactions(cls, value):
        return None if value is None else _unique_reactions(value)

    @field_validator("created_at")
    @classmethod
    def _created_at_utc(cls, value):
        return _as_utc(value)


def _check_body(type_: MessageType, content: str | None, attachment_ref: str | None) -> None:
    if type_ is MessageType.TEXT:
        if not content or not content.strip():
            raise ValueError("text messages need content")
    elif not attachment_ref:
        raise ValueError(f"{type_.value} messages need an attachment reference")


class MessageCreate(BaseModel):
    room_id: str = Field(serialization_alias="roomId")
    content: str | None = None
    type: MessageType = MessageType.TEXT
    attachment_ref: str | None = Field(default=None, serialization_alias="attachmentRef")
    reply_to_id: str | None = Field(default=None, serialization_alias="replyToId")

    @model_validator(mode="after")
    def _check(self):
        _check_body(self.type, self.content, self.attachment_ref)
        return self


class ReplyCreate(BaseModel):
    content: str | None = None
    type: MessageType = MessageType.TEXT
    attachment_ref: str | None = Field(default=None, serialization_alias="attachmentRef")

    @model_validator(mode="after")
    def _check(self):
        _check_body(self.type, self.content, self.attachment_ref)
        return self


class ReactionCreate(BaseModel):
    emoji: str


class StatusUpdate(BaseModel):
    status: Literal["delivered", "read"]
