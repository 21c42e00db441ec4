# chat_relay/api/routes/health.py

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from chat_relay.core import state
from chat_relay.core.errors import StorageUnavailable

router = APIRouter()

@router.get("/health")
async def health(request: Request):
    """
    Health check endpoint.

    Returns the Redis status, the bus listener status and this instance's
    connection counts. Used by load balancer health probes; answers 503
    when Redis is down or when the bus listener task has exited.
    """
    bus_task = getattr(request.app.state, "bus_task", None)
    bus_stopped = bus_task is not None and bus_task.done()
    body = {
        "status": "healthy",
        "server_id": state.bus.server_id,
        "bus": "stopped" if bus_stopped else "listening",
        "connections": len(state.connection_manager.connection_groups),
        "authenticated_connections": len(state.connection_manager.connection_users),
        "active_rooms_with_members": len(state.connection_manager.groups),
    }
    try:
        await state.store.ping()
    except StorageUnavailable:
        body["status"] = "degraded"
        return JSONResponse(status_code=503, content=body)
    if bus_stopped:
        body["status"] = "degraded"
        return JSONResponse(status_code=503, content=body)
    return body
