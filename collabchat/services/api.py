"""REST client for the chat backend.

A thin wrapper over the ``/messages`` and ``/users`` endpoints. Every
failure, HTTP or network, leaves this module as an :class:`ApiError` so the
mutation layer has exactly one thing to catch.
"""

from __future__ import annotations

import logging
from typing import Any, Callable

import httpx
from pydantic import BaseModel, ValidationError

from collabchat.config import settings
from collabchat.schemas.message import (
    Message,
    MessageCreate,
    ReactionCreate,
    ReplyCreate,
    StatusUpdate,
)
from collabchat.schemas.user import PeerInfo

logger = logging.getLogger(__name__)

CredentialSupplier = Callable[[], str | None]


class ApiError(Exception):
    """Raised when the chat backend rejects a request or cannot be reached."""

    def __init__(self, context: str, status_code: int, detail: str = ""):
        self.context = context
        self.status_code = status_code
        self.detail = detail
        super().__init__(detail or f"Failed to {context} ({status_code})")


def _parse(model: type[BaseModel], data: Any, context: str):
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        logger.warning("Malformed response (%s): %s", context, exc)
        raise ApiError(context, 502, f"Malformed response: cannot {context}")


def _unwrap(data: Any, *keys: str) -> Any:
    # The backend wraps created/updated documents, e.g. {"message": "...", "newMessage": {...}}
    if isinstance(data, dict):
        for key in keys:
            if isinstance(data.get(key), dict):
                return data[key]
    return data


class ChatApi:
    def __init__(
        self,
        base_url: str | None = None,
        credentials: CredentialSupplier | None = None,
        *,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._credentials = credentials
        self._client = httpx.AsyncClient(
            base_url=base_url or settings.api_base_url,
            timeout=timeout if timeout is not None else settings.request_timeout,
            transport=transport,
        )

    async def __aenter__(self) -> ChatApi:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        token = self._credentials() if self._credentials else None
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    async def _request(self, method: str, url: str, context: str, json: Any = None) -> Any:
        try:
            resp = await self._client.request(method, url, json=json, headers=self._headers())
        except httpx.HTTPError as exc:
            logger.warning("Could not %s: %s", context, exc)
            raise ApiError(context, 503, f"Could not reach the chat server: {exc}")

        if resp.status_code >= 400:
            detail = ""
            try:
                body = resp.json()
                if isinstance(body, dict):
                    detail = str(body.get("message") or body.get("detail") or "")
            except ValueError:
                pass
            if resp.status_code in (401, 403):
                detail = f"Unauthorized: Cannot {context}. Please log in."
            logger.warning("API error (%s): HTTP %d – %s", context, resp.status_code, detail)
            raise ApiError(context, resp.status_code, detail or f"Failed to {context} ({resp.status_code})")

        if not resp.content:
            return None
        try:
            return resp.json()
        except ValueError:
            raise ApiError(context, 502, f"Malformed response: cannot {context}")

    # -- messages ----------------------------------------------------------

    async def get_messages(self, room_id: str) -> list[Message]:
        data = await self._request("GET", f"/messages/{room_id}", f"fetch messages for room {room_id}")
        items = data.get("messages", []) if isinstance(data, dict) else data or []
        context = f"fetch messages for room {room_id}"
        return [_parse(Message, item, context) for item in items]

    async def send_message(self, data: MessageCreate) -> Message:
        body = await self._request(
            "POST",
            "/messages/send",
            f"send message to room {data.room_id}",
            json=data.model_dump(by_alias=True, exclude_none=True, mode="json"),
        )
        return _parse(Message, _unwrap(body, "newMessage"), "send message")

    async def delete_message(self, message_id: str) -> str:
        body = await self._request("DELETE", f"/messages/{message_id}", f"delete message {message_id}")
        if isinstance(body, dict):
            return str(body.get("message", ""))
        return ""

    async def react(self, message_id: str, emoji: str) -> Message:
        body = await self._request(
            "POST",
            f"/messages/{message_id}/react",
            f"react to message {message_id}",
            json=ReactionCreate(emoji=emoji).model_dump(),
        )
        return _parse(Message, _unwrap(body, "updatedMessage"), "react to message")

    async def reply(self, message_id: str, data: ReplyCreate) -> Message:
        body = await self._request(
            "POST",
            f"/messages/{message_id}/reply",
            f"reply to message {message_id}",
            json=data.model_dump(by_alias=True, exclude_none=True, mode="json"),
        )
        return _parse(Message, _unwrap(body, "replyMessage", "newMessage"), "reply to message")

    async def update_status(self, message_id: str, status: str) -> Message:
        body = await self._request(
            "PUT",
            f"/messages/{message_id}/status",
            f"update message {message_id} status",
            json=StatusUpdate(status=status).model_dump(),
        )
        return _parse(Message, _unwrap(body, "updatedMessage"), "update message status")

    # -- users -------------------------------------------------------------

    async def get_user(self, user_id: str) -> PeerInfo:
        body = await self._request("GET", f"/users/{user_id}", f"fetch user {user_id}")
        return _parse(PeerInfo, body, f"fetch user {user_id}")

    async def get_users(self) -> list[PeerInfo]:
        body = await self._request("GET", "/users", "fetch all users")
        items = body.get("users", []) if isinstance(body, dict) else body or []
        return [_parse(PeerInfo, item, "fetch all users") for item in items]
