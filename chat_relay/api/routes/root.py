# chat_relay/api/routes/root.py

from fastapi import APIRouter

router = APIRouter()


@router.get("/")
async def root():
    """
    Root endpoint - API information.
    """
    return {
        "message": "Chat relay",
        "version": "1.0",
        "architecture": "stateless instances + shared Redis + one broadcast topic",
        "endpoints": {
            "websocket": "/ws",
            "preload": "/room/0/preload",
            "history": "/room/{id}/messages",
            "private_room": "/room",
            "online_users": "/users/online",
            "health": "/health",
            "metrics": "/metrics",
        },
    }
