# chat_relay/api/routes/metrics.py
from fastapi import APIRouter
from datetime import datetime, timezone

from chat_relay.core import state

router = APIRouter()

@router.get("/metrics")
async def get_metrics():
    """
    Per-instance traffic metrics.

    Message counts cover messages sent through THIS instance only; sum
    over instances for the service total.

    Example Response:
        {
            "server_id": "4f1c...",
            "total_messages": 1200,
            "uptime_hours": 5.2,
            "messages_per_second": 0.06,
            "concurrent_connections": 40,
            "active_rooms": {"room:0": 38, "room:1:2": 2}
        }
    """
    uptime_seconds = (datetime.now(timezone.utc) - state.app_start_time).total_seconds()
    total = state.fanout.message_count

    if uptime_seconds > 0:
        messages_per_second = total / uptime_seconds
    else:
        messages_per_second = 0

    return {
        "server_id": state.bus.server_id,
        "total_messages": total,
        "uptime_hours": round(uptime_seconds / 3600, 2) if uptime_seconds > 0 else 0,
        "messages_per_second": round(messages_per_second, 2),
        "concurrent_connections": len(state.connection_manager.connection_groups),
        "active_rooms": state.connection_manager.get_groups_info(),
    }
