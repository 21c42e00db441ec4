# chat_relay/core/state.py
from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from chat_relay.core.config import settings
from chat_relay.services.connection_manager import ConnectionManager
from chat_relay.services.event_bus import BusEventDispatcher, EventBus
from chat_relay.services.fanout import RoomFanoutEngine
from chat_relay.services.identity import SessionIdentityResolver
from chat_relay.services.presence import PresenceTracker
from chat_relay.services.store import RedisMessageStore

# Global singletons for app state
connection_manager = ConnectionManager()

# Wired on startup by configure()
redis_client = None
store: Optional[RedisMessageStore] = None
bus: Optional[EventBus] = None
presence: Optional[PresenceTracker] = None
fanout: Optional[RoomFanoutEngine] = None
identity_resolver: Optional[SessionIdentityResolver] = None

# Metrics
app_start_time: datetime = datetime.now(timezone.utc)


def configure(client, event_bus: EventBus) -> None:
    """Build the services of this instance around a Redis client and a bus."""
    global redis_client, store, bus, presence, fanout, identity_resolver

    redis_client = client
    bus = event_bus
    store = RedisMessageStore(client)
    presence = PresenceTracker(store, bus, connection_manager)
    fanout = RoomFanoutEngine(
        store,
        bus,
        presence,
        connection_manager,
        page_size=settings.DEFAULT_PAGE_SIZE,
        preload_size=settings.PRELOAD_SIZE,
    )
    identity_resolver = SessionIdentityResolver(
        client,
        cookie_name=settings.SESSION_COOKIE_NAME,
        key_prefix=settings.SESSION_KEY_PREFIX,
    )
    bus.subscribe(BusEventDispatcher(bus.server_id, connection_manager))
