# chat_relay/api/routes/users.py

from typing import Dict, List

from fastapi import APIRouter, Depends, Query

from chat_relay.core import state
from chat_relay.models.ids import UserId
from chat_relay.models.models import UserProfile
from chat_relay.api.routes.utils import require_user

router = APIRouter()


@router.get("/users/online")
async def online_users(_: UserProfile = Depends(require_user)) -> Dict[str, dict]:
    """
    Users currently online on any instance.

    Requires a login session.
    """
    online_ids = await state.presence.list_online()
    ids = [UserId.of(uid) for uid in sorted(online_ids)]
    names = await state.store.get_usernames(ids)
    return {
        str(uid): {"id": str(uid), "username": names[str(uid)], "online": True}
        for uid in ids
    }


@router.get("/users")
async def users_by_id(ids: List[str] = Query(...)) -> Dict[str, dict]:
    """Usernames and online flags for the given user ids."""
    user_ids = [UserId.of(uid) for uid in ids]
    names = await state.store.get_usernames(user_ids)
    result = {}
    for uid in user_ids:
        result[str(uid)] = {
            "id": str(uid),
            "username": names[str(uid)],
            "online": await state.presence.is_online(uid),
        }
    return result
