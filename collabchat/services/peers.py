import asyncio
import logging

from collabchat.schemas.user import PeerInfo
from collabchat.services.api import ApiError, ChatApi

logger = logging.getLogger(__name__)


class PeerInfoCache:
    """Read-through cache of sender display identities.

    Entries are never invalidated within a session. A failed lookup is
    remembered as an "Unknown User" placeholder so it is not retried.
    """

    def __init__(self, api: ChatApi):
        self.api = api
        self._peers: dict[str, PeerInfo] = {}
        self._inflight: dict[str, asyncio.Task] = {}

    def __contains__(self, user_id: str) -> bool:
        return user_id in self._peers

    def get(self, user_id: str) -> PeerInfo:
        return self._peers.get(user_id) or PeerInfo.loading(user_id)

    def seed(self, peer: PeerInfo) -> None:
        self._peers[peer.id] = peer

    async def resolve(self, user_id: str) -> PeerInfo:
        cached = self._peers.get(user_id)
        if cached is not None:
            return cached
        task = self._inflight.get(user_id)
        if task is None:
            task = asyncio.ensure_future(self._fetch(user_id))
            self._inflight[user_id] = task
        return await asyncio.shield(task)

    def request(self, user_id: str) -> None:
        """Start resolving ``user_id`` in the background if it is unknown."""
        if user_id not in self._peers and user_id not in self._inflight:
            self._inflight[user_id] = asyncio.ensure_future(self._fetch(user_id))

    async def prefetch(self) -> int:
        try:
            peers = await self.api.get_users()
        except ApiError as exc:
            logger.warning("Could not prefetch users: %s", exc)
            return 0
        for peer in peers:
            self._peers.setdefault(peer.id, peer)
        return len(peers)

    async def _fetch(self, user_id: str) -> PeerInfo:
        try:
            peer = await self.api.get_user(user_id)
        except ApiError as exc:
            if exc.status_code == 404:
                logger.warning("User with ID %s not found", user_id)
            else:
                logger.warning("Failed to fetch user info for %s: %s", user_id, exc)
            peer = PeerInfo.unknown(user_id)
        finally:
            self._inflight.pop(user_id, None)
        self._peers[user_id] = peer
        return peer

    async def aclose(self) -> None:
        tasks = list(self._inflight.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
