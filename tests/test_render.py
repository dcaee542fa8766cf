"""Tests fuer das Render-Modell der Nachrichtenliste."""
import pytest

from collabchat.schemas.message import Message, MessageType
from collabchat.schemas.user import PeerInfo
from collabchat.services.peers import PeerInfoCache
from collabchat.services.render import REPLY_PLACEHOLDER, render_timeline
from collabchat.services.timeline import Append
from tests.conftest import make_message


@pytest.fixture
def peers(api):
    cache = PeerInfoCache(api)
    cache.seed(PeerInfo(id="alice", first_name="Alice", last_name="Arendt"))
    cache.seed(PeerInfo(id="bob", first_name="Bob", last_name="Brecht"))
    return cache


@pytest.mark.asyncio
async def test_render_names_and_ownership(store, peers):
    store.open("r1")
    store.apply_snapshot("r1", [
        make_message("m1", sender_id="bob"),
        make_message("m2", sender_id="alice", seconds=1),
        make_message("m3", sender_id="carol", seconds=2),
    ])
    views = render_timeline(store.timeline("r1"), peers)

    assert [(v.sender_name, v.own) for v in views] == [
        ("Bob Brecht", False),
        ("Alice Arendt", True),
        ("Loading...", False),
    ]
    assert views[0].sender_initials == "BB"


@pytest.mark.asyncio
async def test_render_pending_and_reactions(store, peers):
    store.open("r1")
    store.apply_snapshot("r1", [
        make_message("m1", reactions=[
            {"userId": "alice", "emoji": "👍"},
            {"userId": "bob", "emoji": "👍"},
            {"userId": "bob", "emoji": "🎉"},
        ]),
    ])
    store.apply_optimistic("r1", Append(Message(id="local-1", room_id="r1", sender_id="alice", content="gleich")))

    views = render_timeline(store.timeline("r1"), peers)
    assert views[0].reactions == {"👍": 2, "🎉": 1}
    assert not views[0].pending
    assert views[1].pending
    assert views[1].own


@pytest.mark.asyncio
async def test_reply_previews(store, peers):
    store.open("r1")
    store.apply_snapshot("r1", [
        make_message("m1", content="Original"),
        make_message("m2", content=None, type=MessageType.IMAGE, attachment_ref="/uploads/cat.png", seconds=1),
        make_message("m3", deletion_set={"alice"}, seconds=2),
        make_message("r-text", reply_to_id="m1", seconds=3),
        make_message("r-image", reply_to_id="m2", seconds=4),
        make_message("r-hidden", reply_to_id="m3", seconds=5),
        make_message("r-missing", reply_to_id="m404", seconds=6),
    ])
    previews = {v.id: v.reply_preview for v in render_timeline(store.timeline("r1"), peers)}

    assert previews["m1"] is None
    assert previews["r-text"] == "Original"
    assert previews["r-image"] == "image"
    assert previews["r-hidden"] == REPLY_PLACEHOLDER
    assert previews["r-missing"] == REPLY_PLACEHOLDER
    assert "m3" not in previews
