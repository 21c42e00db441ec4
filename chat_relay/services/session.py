# chat_relay/services/session.py

from __future__ import annotations

import enum
import logging
from typing import Any, Optional, Set

from chat_relay.models.ids import RoomId, UserId
from chat_relay.models.models import UserProfile
from chat_relay.services.connection_manager import ConnectionManager
from chat_relay.services.presence import PresenceTracker

logger = logging.getLogger(__name__)


class SessionState(str, enum.Enum):
    ANONYMOUS = "anonymous"
    AUTHENTICATED = "authenticated"
    CLOSED = "closed"


class ConnectionSession:
    """
    Per-socket state: the user behind it and the rooms it joined.

    Lifecycle:
        ANONYMOUS -> AUTHENTICATED -> CLOSED
        ANONYMOUS -> CLOSED

    Identity is fixed at open() time. A connection opened without one stays
    anonymous: it receives no events and its messages are dropped. Closing
    an authenticated session releases its presence exactly once, however
    many times close() is called.
    """

    def __init__(
        self,
        websocket: Any,
        connection_manager: ConnectionManager,
        presence: PresenceTracker,
    ) -> None:
        self.websocket = websocket
        self.connection_manager = connection_manager
        self.presence = presence
        self.state = SessionState.ANONYMOUS
        self.profile: Optional[UserProfile] = None
        self.rooms: Set[RoomId] = set()

    @property
    def is_authenticated(self) -> bool:
        return self.state is SessionState.AUTHENTICATED

    @property
    def user_id(self) -> Optional[UserId]:
        return UserId.of(self.profile.id) if self.profile else None

    async def open(self, profile: Optional[UserProfile]) -> SessionState:
        """Register the connection and, if an identity is attached, go online."""
        if self.state is not SessionState.ANONYMOUS or self.connection_manager.is_registered(self.websocket):
            raise RuntimeError("Session already opened")

        if profile is None:
            self.connection_manager.register(self.websocket)
            logger.info("Anonymous connection - no events will be relayed to it")
            return self.state

        self.connection_manager.register(self.websocket, user_id=str(profile.id))
        try:
            await self.presence.on_connect(profile, exclude=self.websocket)
        except Exception:
            self.connection_manager.unregister(self.websocket)
            raise
        self.profile = profile
        self.state = SessionState.AUTHENTICATED
        return self.state

    async def close(self) -> bool:
        """
        Tear the session down.

        Returns:
            True on the first call, False on repeated calls.
        """
        if self.state is SessionState.CLOSED:
            return False

        was_authenticated = self.is_authenticated
        self.state = SessionState.CLOSED
        self.connection_manager.unregister(self.websocket)
        self.rooms.clear()

        if was_authenticated:
            await self.presence.on_disconnect(self.profile, exclude=self.websocket)
        return True
