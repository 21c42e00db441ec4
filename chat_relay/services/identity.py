# chat_relay/services/identity.py
"""
Identity lookup against the session store written by the login layer.

The login layer keeps one JSON record per browser session under
`<SESSION_KEY_PREFIX><session id>`, with the signed-in user under "user":

    {"cookie": {...}, "user": {"id": "3", "username": "alice", "role": "1"}}

The session id travels in a cookie. Only that cookie counts: a connection
that brings no valid session is anonymous, whatever else happened on this
instance before.
"""

import json
import logging
from typing import Optional

import redis.asyncio as redis
from pydantic import ValidationError
from redis.exceptions import RedisError
from fastapi.requests import HTTPConnection

from chat_relay.core.errors import StorageUnavailable
from chat_relay.models.models import UserProfile

logger = logging.getLogger(__name__)


class SessionIdentityResolver:
    def __init__(self, client: redis.Redis, cookie_name: str = "session_id", key_prefix: str = "sess:"):
        self.client = client
        self.cookie_name = cookie_name
        self.key_prefix = key_prefix

    async def resolve(self, connection: HTTPConnection) -> Optional[UserProfile]:
        """Return the user attached to a request or WebSocket, or None."""
        session_id = connection.cookies.get(self.cookie_name)
        if not session_id:
            return None
        return await self.lookup(session_id)

    async def lookup(self, session_id: str) -> Optional[UserProfile]:
        try:
            raw = await self.client.get(f"{self.key_prefix}{session_id}")
        except RedisError as e:
            raise StorageUnavailable(f"session lookup failed: {e}") from e

        if not raw:
            return None

        try:
            user = json.loads(raw).get("user")
            if not user:
                return None
            return UserProfile.model_validate(user)
        except (ValueError, AttributeError, ValidationError) as e:
            logger.warning("Unreadable session record %s: %s", session_id, e)
            return None
