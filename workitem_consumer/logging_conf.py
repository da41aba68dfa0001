"""Logging configuration with Betterstack and broker forwarding support."""
import logging
import queue
import sys
import threading
from logging.handlers import QueueHandler, QueueListener, RotatingFileHandler
from logtail import LogtailHandler

from workitem_consumer import settings


class BrokerLogHandler(logging.Handler):
    """Forwards log records to the broker's log operation."""

    def __init__(self, client, level=logging.INFO):
        super().__init__(level)
        self.client = client
        self._local = threading.local()

    def is_forwarding(self) -> bool:
        """True on the thread currently inside `client.log`."""
        return getattr(self._local, "busy", False)

    def emit(self, record):
        if self.is_forwarding():
            return
        self._local.busy = True
        try:
            self.client.log(record.levelname.lower(), self.format(record))
        except Exception:
            self.handleError(record)
        finally:
            self._local.busy = False


class BrokerLogForwarder:
    """Mirrors root logger records to the broker from a background thread.

    Logging threads only enqueue; the broker call happens on the
    QueueListener thread. Records logged while forwarding are dropped.
    """

    def __init__(self, client, level=logging.INFO):
        self.handler = BrokerLogHandler(client, level)
        self.handler.setFormatter(logging.Formatter("%(message)s"))
        self.queue = queue.SimpleQueue()
        self.queue_handler = QueueHandler(self.queue)
        self.queue_handler.setLevel(level)
        self.queue_handler.addFilter(lambda record: not self.handler.is_forwarding())
        self.listener = QueueListener(self.queue, self.handler, respect_handler_level=True)

    def start(self):
        self.listener.start()
        logging.getLogger().addHandler(self.queue_handler)

    def stop(self):
        """Detach and flush whatever is still queued."""
        logging.getLogger().removeHandler(self.queue_handler)
        self.listener.stop()


def setup_logging():
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, settings.LOG_LEVEL, logging.INFO))
    root_logger.handlers = []

    # Console handler
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(getattr(logging, settings.LOG_LEVEL, logging.INFO))
    console_formatter = logging.Formatter("%(asctime)s - %(name)s - %(threadName)s - %(levelname)s - %(message)s")
    console_handler.setFormatter(console_formatter)
    root_logger.addHandler(console_handler)

    # File handler
    log_file = settings.LOGS_DIR / "app.log"
    file_handler = RotatingFileHandler(log_file, maxBytes=10 * 1024 * 1024, backupCount=5)
    file_handler.setLevel(logging.INFO)
    file_handler.setFormatter(console_formatter)
    root_logger.addHandler(file_handler)

    # BetterStack handler
    if settings.BETTERSTACK_SOURCE_TOKEN:
        try:
            handler_kwargs = {"source_token": settings.BETTERSTACK_SOURCE_TOKEN}
            if settings.BETTERSTACK_INGEST_HOST:
                handler_kwargs["host"] = settings.BETTERSTACK_INGEST_HOST
            betterstack_handler = LogtailHandler(**handler_kwargs)
            betterstack_handler.setLevel(logging.DEBUG)
            betterstack_handler.setFormatter(console_formatter)
            root_logger.addHandler(betterstack_handler)
            host_info = settings.BETTERSTACK_INGEST_HOST or "default (in.logs.betterstack.com)"
            root_logger.info(f"BetterStack logging enabled (host: {host_info})")
        except Exception as e:
            root_logger.warning(f"Failed to initialize BetterStack logging: {e}")

    logging.getLogger("urllib3").setLevel(logging.WARNING)
    return root_logger


def attach_broker_handler(client) -> BrokerLogForwarder:
    """Start mirroring log records to the broker once a session exists."""
    forwarder = BrokerLogForwarder(client)
    forwarder.start()
    return forwarder


def detach_broker_handler(forwarder: BrokerLogForwarder) -> None:
    forwarder.stop()


logger = setup_logging()
