# chat_relay/api/routes/utils.py

from __future__ import annotations

from fastapi import Request

from chat_relay.core import state
from chat_relay.core.errors import Unauthenticated
from chat_relay.models.models import UserProfile


async def require_user(request: Request) -> UserProfile:
    """
    Dependency resolving the caller's identity from the session cookie.

    Raises:
        Unauthenticated: no valid login session (answered with 403)
    """
    profile = await state.identity_resolver.resolve(request)
    if profile is None:
        raise Unauthenticated("Login required")
    return profile
