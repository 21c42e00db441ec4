# chat_relay/services/redis_pub_sub.py
import redis.asyncio as redis
import logging

from chat_relay.services.event_bus import EventBus

logger = logging.getLogger(__name__)


async def connect_redis(url: str) -> redis.Redis:
    """Establish the shared async connection to Redis."""
    client = redis.from_url(url, decode_responses=True)
    await client.ping()
    logger.info("✓ Connected to Redis")
    return client


class AsyncRedisPubSubService(EventBus):
    """
    Event bus over Redis pub/sub.

    All event types travel on one fixed channel, so a single SUBSCRIBE
    gives every instance every event.
    """

    def __init__(self, client: redis.Redis, server_id: str, channel: str = "MESSAGES"):
        super().__init__(server_id=server_id, channel=channel)
        self.client = client
        self.pubsub = None

    async def _send(self, data: str) -> None:
        await self.client.publish(self.channel, data)

    async def listen(self) -> None:
        """
        Listen to the bus channel and hand each event to the subscriber.

        Runs until cancelled; start it as a background task.
        """
        self.pubsub = self.client.pubsub()
        await self.pubsub.subscribe(self.channel)
        logger.info(f"✓ Subscribed to Redis channel '{self.channel}'")

        async for message in self.pubsub.listen():
            if message["type"] == "message":
                await self._dispatch(message["data"])

    async def close(self) -> None:
        """Close the subscription."""
        if self.pubsub:
            await self.pubsub.unsubscribe()
            await self.pubsub.aclose()
            self.pubsub = None
        logger.info("Redis pub/sub closed")
