"""Per-room message timelines.

The store is the only writer of message state. Three unordered sources feed
it: the REST snapshot (``apply_snapshot``), the live socket
(``apply_live_event``) and local optimistic mutations (``apply_optimistic``,
settled later by ``reconcile`` or ``rollback``). All methods are synchronous,
so each transition is atomic on the event loop.

Whatever the order of those operations, a message id maps to exactly one
entry in its room.
"""

from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from collabchat.schemas.message import (
    DeliveryState,
    Message,
    MessagePatch,
    Reaction,
    later_state,
)

logger = logging.getLogger(__name__)

# Fields that a patch may not clear
_REQUIRED = {"type", "delivery_state", "created_at", "deletion_set"}


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _scrub(message: Message) -> Message:
    """Drop reactions held by users the message is deleted for."""
    if not message.deletion_set:
        return message
    kept = tuple(r for r in message.reactions if r.user_id not in message.deletion_set)
    if len(kept) == len(message.reactions):
        return message
    return message.model_copy(update={"reactions": kept})


def merge_message(existing: Message, update: Message | MessagePatch) -> Message:
    """Patch ``existing`` with the fields present in ``update``.

    Room and sender never change, the deletion set only grows and the
    delivery state never moves backwards.
    """
    changes: dict[str, Any] = {}
    for name in update.model_fields_set - {"id"}:
        value = getattr(update, name)
        if name in ("room_id", "sender_id"):
            if value is not None and value != getattr(existing, name):
                logger.warning("Ignoring %s change on message %s", name, existing.id)
            continue
        if value is None and name in _REQUIRED:
            continue
        if name == "deletion_set":
            value = existing.deletion_set | value
        elif name == "delivery_state":
            value = later_state(existing.delivery_state, value)
        elif name == "reactions" and value is None:
            value = ()
        changes[name] = value
    return _scrub(existing.model_copy(update=changes))


# ---------------------------------------------------------------------------
# Optimistic operations
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Append:
    message: Message


@dataclass(frozen=True)
class Hide:
    message_id: str


@dataclass(frozen=True)
class SetReactions:
    message_id: str
    reactions: tuple[Reaction, ...]


@dataclass(frozen=True)
class SetStatus:
    message_id: str
    state: DeliveryState


OptimisticOp = Append | Hide | SetReactions | SetStatus


@dataclass
class Pending:
    """An applied optimistic operation awaiting its server outcome."""

    room_id: str
    op: OptimisticOp
    prior: Any = None
    settled: bool = False

    @property
    def message_id(self) -> str:
        if isinstance(self.op, Append):
            return self.op.message.id
        return self.op.message_id


# ---------------------------------------------------------------------------
# Timelines
# ---------------------------------------------------------------------------


@dataclass
class RoomTimeline:
    room_id: str
    viewer_id: str
    active: bool = True
    loading: bool = False
    pending: int = 0
    _entries: dict[str, Message] = field(default_factory=dict)
    # local id -> call sequence, so concurrent sends keep call order
    _local_order: dict[str, int] = field(default_factory=dict)
    # ids hidden by an in-flight delete-for-self
    _hidden: set[str] = field(default_factory=set)
    _live_during_load: set[str] = field(default_factory=set)
    # patches for ids not yet seen, applied when the snapshot lands
    _patches_during_load: list[MessagePatch] = field(default_factory=list)
    # highest delivery state the server has reported per message
    _server_state: dict[str, DeliveryState] = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, message_id: str) -> bool:
        return message_id in self._entries

    def get(self, message_id: str) -> Message | None:
        return self._entries.get(message_id)

    def is_visible(self, message: Message) -> bool:
        return message.id not in self._hidden and not message.hidden_for(self.viewer_id)

    def is_pending(self, message_id: str) -> bool:
        return message_id in self._local_order

    def _sort_key(self, message: Message):
        seq = self._local_order.get(message.id)
        if seq is not None:
            return (message.created_at, 1, seq, "")
        return (message.created_at, 0, 0, message.id)

    def messages(self) -> list[Message]:
        """Rendered order: visible messages, oldest first."""
        return sorted(
            (m for m in self._entries.values() if self.is_visible(m)),
            key=self._sort_key,
        )

    def reply_parent(self, message: Message) -> Message | None:
        if not message.reply_to_id:
            return None
        parent = self._entries.get(message.reply_to_id)
        if parent is None or not self.is_visible(parent):
            return None
        return parent

    def _require(self, message_id: str) -> Message:
        message = self._entries.get(message_id)
        if message is None:
            raise KeyError(f"message {message_id} is not in room {self.room_id}")
        return message

    def _upsert(self, update: Message | MessagePatch) -> Message | None:
        existing = self._entries.get(update.id)
        if existing is not None:
            message = merge_message(existing, update)
        elif isinstance(update, MessagePatch):
            return None
        else:
            message = update
            if message.created_at is None:
                message = message.model_copy(update={"created_at": _now()})
            message = _scrub(message)
        self._entries[message.id] = message
        reported = update.delivery_state
        if reported is not None:
            known = self._server_state.get(message.id)
            self._server_state[message.id] = reported if known is None else later_state(known, reported)
        return message

    def _drop_local(self, local_id: str) -> None:
        self._entries.pop(local_id, None)
        self._local_order.pop(local_id, None)


class TimelineStore:
    def __init__(self, viewer_id: str):
        self.viewer_id = viewer_id
        self._timelines: dict[str, RoomTimeline] = {}
        self._seq = itertools.count()

    def timeline(self, room_id: str) -> RoomTimeline | None:
        return self._timelines.get(room_id)

    def rooms(self) -> list[str]:
        return list(self._timelines)

    def find(self, message_id: str) -> RoomTimeline | None:
        for timeline in self._timelines.values():
            if message_id in timeline:
                return timeline
        return None

    # -- lifecycle ---------------------------------------------------------

    def open(self, room_id: str) -> RoomTimeline:
        """Hold a timeline for ``room_id`` and start a snapshot load window."""
        timeline = self._timelines.get(room_id)
        if timeline is None:
            timeline = RoomTimeline(room_id=room_id, viewer_id=self.viewer_id)
            self._timelines[room_id] = timeline
        timeline.active = True
        timeline.loading = True
        timeline._live_during_load.clear()
        timeline._patches_during_load.clear()
        self._sweep()
        return timeline

    def release(self, room_id: str) -> None:
        timeline = self._timelines.get(room_id)
        if timeline is None:
            return
        timeline.active = False
        timeline.loading = False
        timeline._patches_during_load.clear()
        self._sweep()

    def _sweep(self) -> None:
        # Inactive rooms stay in memory only while they have in-flight mutations
        for room_id in [r for r, t in self._timelines.items() if not t.active and t.pending == 0]:
            logger.debug("Discarding timeline for room %s", room_id)
            del self._timelines[room_id]

    # -- snapshot & live ---------------------------------------------------

    def apply_snapshot(self, room_id: str, messages: list[Message]) -> bool:
        """Replace the server entries of a room with a REST snapshot.

        Optimistic entries still in flight, and entries that arrived over the
        socket while the snapshot was loading, survive the replacement. Patches
        for ids the room had not seen yet are applied on top of the snapshot.
        """
        timeline = self._timelines.get(room_id)
        if timeline is None:
            logger.debug("Dropping snapshot for room %s (not held)", room_id)
            return False

        entries: dict[str, Message] = {}
        reported: dict[str, DeliveryState] = {}
        for message in messages:
            if message.room_id != room_id:
                logger.warning("Snapshot for room %s contains message %s of room %s", room_id, message.id, message.room_id)
                continue
            if message.created_at is None:
                message = message.model_copy(update={"created_at": _now()})
            entries[message.id] = _scrub(message)
            reported[message.id] = message.delivery_state

        for patch in timeline._patches_during_load:
            snap = entries.get(patch.id)
            if snap is None:
                continue
            entries[patch.id] = merge_message(snap, patch)
            if patch.delivery_state is not None:
                reported[patch.id] = later_state(reported[patch.id], patch.delivery_state)

        for message_id in timeline._live_during_load:
            live = timeline._entries.get(message_id)
            if live is None:
                continue
            snap = entries.get(message_id)
            entries[message_id] = live if snap is None else merge_message(snap, live)
        for message_id, state in timeline._server_state.items():
            if message_id in entries:
                reported[message_id] = later_state(reported.get(message_id, state), state)
        for local_id in timeline._local_order:
            entries[local_id] = timeline._entries[local_id]

        timeline._entries = entries
        timeline._server_state = reported
        timeline.loading = False
        timeline._live_during_load.clear()
        timeline._patches_during_load.clear()
        logger.debug("Loaded %d messages for room %s", len(messages), room_id)
        return True

    def apply_live_event(self, update: Message | MessagePatch) -> bool:
        """Insert a new message or patch an existing one; returns False if ignored."""
        if update.room_id:
            timeline = self._timelines.get(update.room_id)
        else:
            timeline = self.find(update.id)
        if timeline is None:
            if isinstance(update, MessagePatch) and not update.room_id:
                return self._defer(update, [t for t in self._timelines.values() if t.loading])
            logger.debug("Ignoring event for message %s (room %s not held)", update.id, update.room_id)
            return False
        message = timeline._upsert(update)
        if message is None:
            return self._defer(update, [timeline] if timeline.loading else [])
        if timeline.loading:
            timeline._live_during_load.add(message.id)
        return True

    def _defer(self, patch: MessagePatch, timelines: list[RoomTimeline]) -> bool:
        # Held until the loading snapshot lands; the snapshot may contain the id
        if not timelines:
            logger.debug("Ignoring update for unknown message %s", patch.id)
            return False
        for timeline in timelines:
            timeline._patches_during_load.append(patch)
        return True

    # -- optimistic --------------------------------------------------------

    def apply_optimistic(self, room_id: str, op: OptimisticOp) -> Pending:
        timeline = self._timelines.get(room_id)
        if timeline is None:
            raise KeyError(f"room {room_id} is not held")

        prior: Any = None
        if isinstance(op, Append):
            # Provisional key: local capture time, never ahead of what is already shown
            captured = max([_now(), *(m.created_at for m in timeline._entries.values())])
            timeline._entries[op.message.id] = op.message.model_copy(update={"created_at": captured})
            timeline._local_order[op.message.id] = next(self._seq)
        elif isinstance(op, Hide):
            timeline._require(op.message_id)
            prior = op.message_id in timeline._hidden
            timeline._hidden.add(op.message_id)
        elif isinstance(op, SetReactions):
            current = timeline._require(op.message_id)
            prior = current.reactions
            timeline._entries[op.message_id] = _scrub(current.model_copy(update={"reactions": op.reactions}))
        elif isinstance(op, SetStatus):
            current = timeline._require(op.message_id)
            prior = current.delivery_state
            state = later_state(current.delivery_state, op.state)
            timeline._entries[op.message_id] = current.model_copy(update={"delivery_state": state})
        else:
            raise TypeError(f"unknown optimistic operation {op!r}")

        timeline.pending += 1
        return Pending(room_id=room_id, op=op, prior=prior)

    def _settle(self, pending: Pending) -> RoomTimeline | None:
        if pending.settled:
            raise RuntimeError(f"mutation on {pending.message_id} already settled")
        pending.settled = True
        timeline = self._timelines.get(pending.room_id)
        if timeline is None:
            logger.warning("Timeline for room %s vanished with a mutation in flight", pending.room_id)
            return None
        timeline.pending -= 1
        if not timeline.active and timeline.pending == 0:
            self._sweep()
        return timeline

    def reconcile(self, pending: Pending, server_message: Message | None = None) -> Message | None:
        """Settle an optimistic operation with the server-confirmed state."""
        timeline = self._settle(pending)
        if timeline is None:
            return None
        op = pending.op

        if isinstance(op, Append):
            timeline._drop_local(op.message.id)
            if server_message is None:
                return None
            if server_message.room_id != pending.room_id:
                logger.warning(
                    "Server placed message %s in room %s, expected %s",
                    server_message.id, server_message.room_id, pending.room_id,
                )
            return timeline._upsert(server_message)

        if server_message is not None:
            timeline._upsert(server_message)

        if isinstance(op, Hide):
            if not pending.prior:
                timeline._hidden.discard(op.message_id)
            current = timeline.get(op.message_id)
            if current is not None and not current.hidden_for(self.viewer_id):
                current = _scrub(current.model_copy(update={"deletion_set": current.deletion_set | {self.viewer_id}}))
                timeline._entries[op.message_id] = current
            return current

        return timeline.get(pending.message_id)

    def rollback(self, pending: Pending) -> None:
        """Undo an optimistic operation, restoring the captured prior state."""
        timeline = self._settle(pending)
        if timeline is None:
            return
        op = pending.op

        if isinstance(op, Append):
            timeline._drop_local(op.message.id)
        elif isinstance(op, Hide):
            if not pending.prior:
                timeline._hidden.discard(op.message_id)
        else:
            current = timeline.get(op.message_id)
            if current is None:
                return
            if isinstance(op, SetReactions):
                timeline._entries[op.message_id] = current.model_copy(update={"reactions": pending.prior})
            else:
                observed = timeline._server_state.get(op.message_id)
                state = pending.prior if observed is None else later_state(pending.prior, observed)
                timeline._entries[op.message_id] = current.model_copy(update={"delivery_state": state})
