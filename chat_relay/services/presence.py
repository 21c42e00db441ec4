# chat_relay/services/presence.py
"""Online/offline tracking shared by every instance."""

from __future__ import annotations

import logging
from typing import Any, Dict, Set

from chat_relay.core.errors import StorageUnavailable
from chat_relay.models.ids import UserId
from chat_relay.models.models import PresenceNotice, UserProfile
from chat_relay.services.connection_manager import ConnectionManager
from chat_relay.services.event_bus import EventBus
from chat_relay.services.store import RedisMessageStore

logger = logging.getLogger(__name__)


class PresenceTracker:
    """
    Maintains the shared online set and announces transitions.

    A user may hold several connections at once (two browser tabs), so the
    tracker keeps a local reference count per user and only announces
    "offline" when the last local connection closes. Instances merge only
    through the shared online set in the store.
    """

    def __init__(
        self,
        store: RedisMessageStore,
        bus: EventBus,
        connection_manager: ConnectionManager,
    ) -> None:
        self.store = store
        self.bus = bus
        self.connection_manager = connection_manager
        self._counts: Dict[str, int] = {}

    def connection_count(self, user_id: UserId | str) -> int:
        return self._counts.get(str(user_id), 0)

    async def on_connect(self, profile: UserProfile, exclude: Any = None) -> PresenceNotice:
        """
        Mark a user online and announce it.

        Local connections (except `exclude`, the one that just connected)
        are told directly; peers learn it from the bus.
        """
        user_id = UserId.of(profile.id)
        key = str(user_id)
        self._counts[key] = self._counts.get(key, 0) + 1

        try:
            await self.store.add_online(user_id)
        except StorageUnavailable:
            self._release(key)
            raise

        notice = PresenceNotice(**profile.model_dump(), online=True)
        logger.info("✓ User %s online (%d local connections)", key, self._counts.get(key, 0))
        await self._announce("user.connected", notice, exclude)
        return notice

    async def on_disconnect(self, profile: UserProfile, exclude: Any = None) -> bool:
        """
        Release one connection of a user.

        Returns:
            True if this was the user's last local connection and the user
            was marked offline.
        """
        user_id = UserId.of(profile.id)
        key = str(user_id)
        if self._release(key) > 0:
            logger.info("User %s still has %d local connections", key, self._counts[key])
            return False

        await self.store.remove_online(user_id)
        if self._counts.get(key, 0) > 0:
            # Reconnected while the removal was in flight
            await self.store.add_online(user_id)
            return False

        notice = PresenceNotice(**profile.model_dump(), online=False)
        logger.info("✗ User %s offline", key)
        await self._announce("user.disconnected", notice, exclude)
        return True

    async def touch(self, user_id: UserId) -> None:
        """Re-assert that a user is online without counting a connection."""
        await self.store.add_online(user_id)

    async def list_online(self) -> Set[str]:
        return await self.store.list_online()

    async def is_online(self, user_id: UserId) -> bool:
        return await self.store.is_online(user_id)

    def _release(self, key: str) -> int:
        remaining = self._counts.get(key, 0) - 1
        if remaining > 0:
            self._counts[key] = remaining
            return remaining
        self._counts.pop(key, None)
        return 0

    async def _announce(self, event_type: str, notice: PresenceNotice, exclude: Any) -> None:
        payload = notice.model_dump()
        await self.connection_manager.emit_to_authenticated(
            {"type": event_type, "data": payload}, exclude=exclude
        )
        await self.bus.publish(event_type, payload)
