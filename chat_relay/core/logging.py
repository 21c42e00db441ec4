# chat_relay/core/logging.py

import logging
import sys


DEFAULT_FORMAT = "%(asctime)s | %(levelname)s | %(server_id)s | %(name)s | %(message)s"


class ServerIdFilter(logging.Filter):
    """Stamp every record with the id of the instance that emitted it."""

    def __init__(self, server_id: str) -> None:
        super().__init__()
        self.server_id = server_id

    def filter(self, record: logging.LogRecord) -> bool:
        record.server_id = self.server_id
        return True


def setup_logging(server_id: str, level_name: str = "INFO") -> None:
    """
    Configure application-wide logging.

    Logs go to stdout, one line per record, tagged with the server id so
    that the merged log stream of all instances can be told apart.
    """
    level = getattr(logging, level_name.upper(), logging.INFO)

    # If logging is already configured (e.g. by Uvicorn), don't re-add handlers
    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    if root_logger.handlers:
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(DEFAULT_FORMAT))
    handler.addFilter(ServerIdFilter(server_id))
    root_logger.addHandler(handler)

    # The Pub/Sub client logs every streaming pull reconnect at INFO
    logging.getLogger("google.cloud.pubsub_v1").setLevel(logging.WARNING)
