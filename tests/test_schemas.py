"""Tests fuer die Pydantic-Schemas (Wire-Format, Aliase, Validierung)."""
from datetime import timezone

import pytest
from pydantic import ValidationError

from collabchat.schemas import (
    DeliveryState,
    Message,
    MessageCreate,
    MessagePatch,
    MessageType,
    PeerInfo,
    ReplyCreate,
    TransportFrame,
)
from collabchat.schemas.message import is_local_id, later_state


def test_message_from_camel_case():
    msg = Message.model_validate({
        "id": "m1",
        "roomId": "r1",
        "senderId": "bob",
        "content": "Hallo",
        "reactions": [{"userId": "alice", "emoji": "👍"}],
        "deletionSet": ["carol"],
        "deliveryState": "delivered",
        "createdAt": "2024-01-01T09:00:00Z",
    })
    assert msg.room_id == "r1"
    assert msg.sender_id == "bob"
    assert msg.reactions[0].user_id == "alice"
    assert msg.deletion_set == frozenset({"carol"})
    assert msg.delivery_state is DeliveryState.DELIVERED
    assert msg.type is MessageType.TEXT


def test_message_from_legacy_field_names():
    msg = Message.model_validate({
        "_id": "65a1",
        "chatRoom": "r1",
        "sender": "bob",
        "messageType": "image",
        "fileUrl": "/uploads/cat.png",
        "replyTo": "64ff",
        "deletedFor": ["alice"],
        "status": "read",
        "reactions": [{"user": "bob", "emoji": "🎉"}],
        "timestamp": "2024-01-01T09:00:00",
    })
    assert msg.id == "65a1"
    assert msg.type is MessageType.IMAGE
    assert msg.attachment_ref == "/uploads/cat.png"
    assert msg.reply_to_id == "64ff"
    assert msg.hidden_for("alice")
    assert msg.reactions[0].user_id == "bob"
    # Zeitstempel ohne Zeitzone gelten als UTC
    assert msg.created_at.tzinfo == timezone.utc


def test_duplicate_reactions_collapse():
    msg = Message(
        id="m1",
        room_id="r1",
        sender_id="bob",
        reactions=[
            {"userId": "alice", "emoji": "👍"},
            {"userId": "alice", "emoji": "👍"},
            {"userId": "alice", "emoji": "❤️"},
        ],
    )
    assert len(msg.reactions) == 2
    assert msg.has_reaction("alice", "❤️")
    assert not msg.has_reaction("bob", "👍")


def test_patch_remembers_present_fields():
    patch = MessagePatch.model_validate({"id": "m1", "content": None})
    assert patch.model_fields_set == {"id", "content"}


def test_local_ids():
    assert is_local_id("local-abc")
    assert not is_local_id("m1")


def test_delivery_state_order():
    assert later_state(DeliveryState.READ, DeliveryState.DELIVERED) is DeliveryState.READ
    assert later_state(DeliveryState.SENT, DeliveryState.DELIVERED) is DeliveryState.DELIVERED


def test_message_create_wire_format():
    body = MessageCreate(room_id="r1", content="Hallo", reply_to_id="m1")
    assert body.model_dump(by_alias=True, exclude_none=True, mode="json") == {
        "roomId": "r1",
        "content": "Hallo",
        "type": "text",
        "replyToId": "m1",
    }


def test_message_create_rejects_blank_text():
    with pytest.raises(ValidationError):
        MessageCreate(room_id="r1", content="   ")


def test_attachment_needs_reference():
    with pytest.raises(ValidationError):
        ReplyCreate(type=MessageType.FILE)
    body = ReplyCreate(type=MessageType.FILE, attachment_ref="/uploads/plan.pdf")
    assert body.content is None


def test_peer_display_name_fallbacks():
    assert PeerInfo.model_validate({"_id": "u1", "firstName": "Ada", "lastName": "Lovelace"}).display_name == "Ada Lovelace"
    assert PeerInfo(id="u2", email="x@collab.local").display_name == "x@collab.local"
    assert PeerInfo(id="u3").display_name == "User"
    assert PeerInfo(id="u3").initials == "??"
    assert PeerInfo.unknown("u4").display_name == "Unknown User"
    assert PeerInfo.unknown("u4").initials == "UU"


def test_transport_frame_roundtrip():
    frame = TransportFrame.model_validate_json('{"type": "joinRoom", "data": "r1"}')
    assert frame.type == "joinRoom"
    assert frame.data == "r1"
