# chat_relay/core/config.py
import os
import uuid
from typing import Literal
from dotenv import load_dotenv

class Settings:
    """
    Setup environment variables.
        - PUB_SUB_SERVICE the event bus transport: "redis" or "google_pub_sub"
        - PUBSUB_CHANNEL the single topic every instance publishes and listens on
        - SERVER_ID the origin id stamped on events published by this instance
          and on its log lines
        - LOG_LEVEL root log level (default INFO)
        - PROJECT_ID / TOPIC_ID / SUBSCRIPTION_ID for Google Pub/Sub; each
          instance needs its own subscription so that every instance sees
          every event
        - SESSION_COOKIE_NAME / SESSION_KEY_PREFIX locate the login session
          written by the auth layer
    """

    # Load environment variables from the .env file
    load_dotenv()

    PUB_SUB_SERVICE: Literal["redis", "google_pub_sub"] = os.getenv("PUB_SUB_SERVICE", "redis")
    PUBSUB_CHANNEL: str = os.getenv("PUBSUB_CHANNEL", "MESSAGES")
    SERVER_ID: str = os.getenv("SERVER_ID") or uuid.uuid4().hex
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    REDIS_URL: str = os.getenv("REDIS_URL", "")
    REDIS_HOST: str = os.getenv("REDIS_HOST", "localhost")
    REDIS_PORT: int = int(os.getenv("REDIS_PORT", "6379"))
    REDIS_ACCESS_KEY: str = os.getenv("REDIS_ACCESS_KEY", "")
    REDIS_SSL: bool = os.getenv("REDIS_SSL", "false").lower() == "true"

    PROJECT_ID = os.getenv("PROJECT_ID", "")
    TOPIC_ID = os.getenv("TOPIC_ID", "")
    SUBSCRIPTION_ID = os.getenv("SUBSCRIPTION_ID", "")

    SESSION_COOKIE_NAME: str = os.getenv("SESSION_COOKIE_NAME", "session_id")
    SESSION_KEY_PREFIX: str = os.getenv("SESSION_KEY_PREFIX", "sess:")

    DEFAULT_PAGE_SIZE: int = int(os.getenv("DEFAULT_PAGE_SIZE", "50"))
    PRELOAD_SIZE: int = int(os.getenv("PRELOAD_SIZE", "20"))

    def redis_url(self) -> str:
        """Build the Redis connection URL, honouring REDIS_URL when given."""
        if self.REDIS_URL:
            return self.REDIS_URL
        scheme = "rediss" if self.REDIS_SSL else "redis"
        auth = f":{self.REDIS_ACCESS_KEY}@" if self.REDIS_ACCESS_KEY else ""
        return f"{scheme}://{auth}{self.REDIS_HOST}:{self.REDIS_PORT}"

settings = Settings()
