# chat_relay/main.py

from __future__ import annotations

import asyncio
import contextlib
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from chat_relay.core import state
from chat_relay.core.config import settings
from chat_relay.core.errors import InvalidIdentifier, StorageUnavailable, Unauthenticated
from chat_relay.core.logging import setup_logging
from chat_relay.services.redis_pub_sub import AsyncRedisPubSubService, connect_redis
from chat_relay.api.routes import root, health, metrics, rooms, users
from chat_relay.api import websocket as websocket_module

# Configure logging first
setup_logging(settings.SERVER_ID, settings.LOG_LEVEL)
logger = logging.getLogger(__name__)

# FastAPI app
app = FastAPI(title="Chat Relay")

# CORS (relaxed for now – tighten in prod)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # TODO: Restrict to the web client origins once they are fixed
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# REST routes
app.include_router(root.router)
app.include_router(health.router)
app.include_router(metrics.router)
app.include_router(rooms.router)
app.include_router(users.router)

# WebSocket routes
app.include_router(websocket_module.router)


@app.exception_handler(StorageUnavailable)
async def storage_unavailable_handler(request: Request, exc: StorageUnavailable):
    return JSONResponse(status_code=503, content={"detail": "Storage unavailable"})


@app.exception_handler(InvalidIdentifier)
async def invalid_identifier_handler(request: Request, exc: InvalidIdentifier):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(Unauthenticated)
async def unauthenticated_handler(request: Request, exc: Unauthenticated):
    return JSONResponse(status_code=403, content={"detail": str(exc)})


def build_event_bus(client):
    if settings.PUB_SUB_SERVICE == "google_pub_sub":
        from chat_relay.services.gcloud_pub_sub import GooglePubSubEventBus

        return GooglePubSubEventBus(
            server_id=settings.SERVER_ID,
            project_id=settings.PROJECT_ID,
            topic_id=settings.TOPIC_ID,
            subscription_id=settings.SUBSCRIPTION_ID,
        )
    return AsyncRedisPubSubService(client, server_id=settings.SERVER_ID, channel=settings.PUBSUB_CHANNEL)


def _log_bus_exit(task: asyncio.Task) -> None:
    if not task.cancelled() and task.exception() is not None:
        logger.error("Bus listener stopped: %s", task.exception())


@app.on_event("startup")
async def startup_event():
    logger.info("🚀 Chat relay starting (server id %s, bus %s)", settings.SERVER_ID, settings.PUB_SUB_SERVICE)

    client = await connect_redis(settings.redis_url())
    state.configure(client, build_event_bus(client))
    await state.store.ensure_defaults()

    # Start bus listener in the background
    app.state.bus_task = asyncio.create_task(state.bus.listen())
    app.state.bus_task.add_done_callback(_log_bus_exit)


@app.on_event("shutdown")
async def on_shutdown():
    task = getattr(app.state, "bus_task", None)
    if task is not None:
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
    if state.bus is not None:
        await state.bus.close()
    if state.redis_client is not None:
        await state.redis_client.aclose()
    logger.info("Chat relay stopped")


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("chat_relay.main:app", host="0.0.0.0", port=8000)
