# chat_relay/services/gcloud_pub_sub.py
import asyncio
import logging
from typing import Optional

from google.cloud import pubsub_v1

from chat_relay.services.event_bus import EventBus

logger = logging.getLogger(__name__)


class GooglePubSubEventBus(EventBus):
    """
    Event bus over Google Cloud Pub/Sub.

    Every instance publishes to one topic. Each instance must own a
    separate subscription on that topic (SUBSCRIPTION_ID per instance),
    otherwise Pub/Sub load-balances events between instances instead of
    broadcasting them.
    """

    def __init__(
        self,
        server_id: str,
        project_id: str,
        topic_id: str,
        subscription_id: str,
        publisher: Optional[pubsub_v1.PublisherClient] = None,
        subscriber: Optional[pubsub_v1.SubscriberClient] = None,
    ) -> None:
        super().__init__(server_id=server_id, channel=topic_id)
        self.publisher = publisher or pubsub_v1.PublisherClient()
        self.subscriber = subscriber or pubsub_v1.SubscriberClient()
        self.topic_path = self.publisher.topic_path(project_id, topic_id)
        self.subscription_path = self.subscriber.subscription_path(project_id, subscription_id)
        self._streaming_future = None

    async def _send(self, data: str) -> None:
        # The client batches in its own threads; do not wait for the result.
        future = self.publisher.publish(self.topic_path, data=data.encode("utf-8"))
        future.add_done_callback(self._log_publish_failure)

    @staticmethod
    def _log_publish_failure(future) -> None:
        if future.cancelled():
            return
        exc = future.exception()
        if exc is not None:
            logger.warning("Pub/Sub publish failed: %s", exc)

    async def listen(self) -> None:
        """
        Stream the subscription and schedule each event on this event loop.

        Runs until cancelled.
        """
        loop = asyncio.get_running_loop()

        def _callback(message: pubsub_v1.subscriber.message.Message):
            # Runs on a Pub/Sub worker thread
            asyncio.run_coroutine_threadsafe(self._dispatch(message.data), loop)
            message.ack()

        self._streaming_future = self.subscriber.subscribe(self.subscription_path, callback=_callback)
        logger.info(f"✓ Listening for events on {self.subscription_path}")

        try:
            await asyncio.wrap_future(self._streaming_future)
        finally:
            self._streaming_future.cancel()

    async def close(self) -> None:
        if self._streaming_future is not None:
            self._streaming_future.cancel()
            self._streaming_future = None
        self.subscriber.close()
        logger.info("Pub/Sub subscriber closed")
