"""Optimistic chat mutations.

Each mutation applies its change to the timeline store synchronously, at
call time, then returns a task that issues the request and reconciles the
store with the server's answer, or rolls the change back. The room a
mutation reconciles into is fixed when it is applied, so switching rooms
while a request is in flight cannot touch another room's timeline.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass
from typing import Awaitable, Callable

from collabchat.schemas.events import Notice
from collabchat.schemas.message import (
    LOCAL_ID_PREFIX,
    DeliveryState,
    Message,
    MessageCreate,
    MessageType,
    Reaction,
    ReplyCreate,
    is_local_id,
)
from collabchat.services.api import ApiError, ChatApi
from collabchat.services.timeline import (
    Append,
    Hide,
    Pending,
    RoomTimeline,
    SetReactions,
    SetStatus,
    TimelineStore,
)

logger = logging.getLogger(__name__)

Notifier = Callable[[Notice], None]
Request = Callable[[], Awaitable[Message | None]]


def new_local_id() -> str:
    return f"{LOCAL_ID_PREFIX}{uuid.uuid4().hex}"


def toggled_reactions(message: Message, user_id: str, emoji: str) -> tuple[Reaction, ...]:
    """Remove the user's ``emoji`` reaction if present, otherwise add it."""
    if message.has_reaction(user_id, emoji):
        return tuple(r for r in message.reactions if not (r.user_id == user_id and r.emoji == emoji))
    return (*message.reactions, Reaction(user_id=user_id, emoji=emoji))


@dataclass
class MutationResult:
    ok: bool
    message: Message | None = None
    # Original compose text, handed back when a send or reply fails
    restored_input: str | None = None
    error: ApiError | None = None


class MutationController:
    def __init__(self, store: TimelineStore, api: ChatApi, *, notify: Notifier | None = None):
        self.store = store
        self.api = api
        self._notify = notify
        self._tasks: set[asyncio.Task] = set()

    @property
    def viewer_id(self) -> str:
        return self.store.viewer_id

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait for every in-flight mutation to settle."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # -- mutations ---------------------------------------------------------

    def send(
        self,
        room_id: str,
        content: str | None,
        *,
        type: MessageType = MessageType.TEXT,
        attachment_ref: str | None = None,
        reply_to_id: str | None = None,
    ) -> asyncio.Task[MutationResult]:
        body = MessageCreate(
            room_id=room_id,
            content=content,
            type=type,
            attachment_ref=attachment_ref,
            reply_to_id=reply_to_id,
        )
        pending = self._append(room_id, body.content, body.type, body.attachment_ref, body.reply_to_id)
        return self._launch(
            pending,
            lambda: self.api.send_message(body),
            "Error Sending Message",
            restored_input=content,
        )

    def reply(
        self,
        parent_id: str,
        content: str | None,
        *,
        room_id: str | None = None,
        type: MessageType = MessageType.TEXT,
        attachment_ref: str | None = None,
    ) -> asyncio.Task[MutationResult]:
        self._check_confirmed(parent_id, "reply to")
        if room_id is None:
            room_id = self._owner(parent_id).room_id
        body = ReplyCreate(content=content, type=type, attachment_ref=attachment_ref)
        pending = self._append(room_id, body.content, body.type, body.attachment_ref, parent_id)
        return self._launch(
            pending,
            lambda: self.api.reply(parent_id, body),
            "Error Sending Reply",
            restored_input=content,
        )

    def delete_for_self(self, message_id: str) -> asyncio.Task[MutationResult]:
        self._check_confirmed(message_id, "delete")
        timeline = self._owner(message_id)
        pending = self.store.apply_optimistic(timeline.room_id, Hide(message_id))

        async def request() -> None:
            await self.api.delete_message(message_id)

        return self._launch(pending, request, "Error Deleting Message")

    def react(self, message_id: str, emoji: str) -> asyncio.Task[MutationResult]:
        self._check_confirmed(message_id, "react to")
        timeline = self._owner(message_id)
        reactions = toggled_reactions(timeline.get(message_id), self.viewer_id, emoji)
        pending = self.store.apply_optimistic(timeline.room_id, SetReactions(message_id, reactions))
        return self._launch(pending, lambda: self.api.react(message_id, emoji), "Error Reacting")

    def update_status(self, message_id: str, status: DeliveryState | str) -> asyncio.Task[MutationResult]:
        state = DeliveryState(status)
        if state is DeliveryState.SENT:
            raise ValueError("status can only move to delivered or read")
        self._check_confirmed(message_id, "update")
        timeline = self._owner(message_id)
        pending = self.store.apply_optimistic(timeline.room_id, SetStatus(message_id, state))
        return self._launch(
            pending,
            lambda: self.api.update_status(message_id, state.value),
            "Error Updating Message Status",
        )

    # -- helpers -----------------------------------------------------------

    def _owner(self, message_id: str) -> RoomTimeline:
        timeline = self.store.find(message_id)
        if timeline is None:
            raise KeyError(f"message {message_id} is not loaded")
        return timeline

    @staticmethod
    def _check_confirmed(message_id: str, action: str) -> None:
        if is_local_id(message_id):
            raise ValueError(f"cannot {action} message {message_id} before the server confirms it")

    def _append(
        self,
        room_id: str,
        content: str | None,
        type: MessageType,
        attachment_ref: str | None,
        reply_to_id: str | None,
    ) -> Pending:
        provisional = Message(
            id=new_local_id(),
            room_id=room_id,
            sender_id=self.viewer_id,
            content=content,
            type=type,
            attachment_ref=attachment_ref,
            reply_to_id=reply_to_id,
            delivery_state=DeliveryState.SENT,
        )
        return self.store.apply_optimistic(room_id, Append(provisional))

    def _launch(
        self,
        pending: Pending,
        request: Request,
        title: str,
        restored_input: str | None = None,
    ) -> asyncio.Task[MutationResult]:
        task = asyncio.ensure_future(self._complete(pending, request, title, restored_input))
        self._tasks.add(task)
        task.add_done_callback(lambda t: self._finished(t, pending))
        return task

    async def _complete(
        self,
        pending: Pending,
        request: Request,
        title: str,
        restored_input: str | None,
    ) -> MutationResult:
        try:
            message = await request()
        except ApiError as exc:
            self.store.rollback(pending)
            self._report(title, exc)
            return MutationResult(ok=False, restored_input=restored_input, error=exc)
        except BaseException:
            self.store.rollback(pending)
            raise
        return MutationResult(ok=True, message=self.store.reconcile(pending, message))

    def _finished(self, task: asyncio.Task, pending: Pending) -> None:
        self._tasks.discard(task)
        if not pending.settled:
            # Cancelled before the request was issued
            self.store.rollback(pending)

    def _report(self, title: str, exc: ApiError) -> None:
        logger.warning("%s: %s", title, exc)
        if self._notify is not None:
            self._notify(Notice(title=title, description=str(exc)))

