"""Main application - consumes workitems from a broker queue as notifications arrive."""
import signal
import sys
import threading
from pathlib import Path
from typing import Optional

from workitem_consumer.logging_conf import logger, attach_broker_handler, detach_broker_handler
from workitem_consumer import settings
from workitem_consumer.errors import ConsumerError
from workitem_consumer.handler import NotificationHandler
from workitem_consumer.processor import WorkitemProcessor, load_processor
from workitem_consumer.reporting import Reporter
from workitem_consumer.broker.client import HttpBrokerClient
from workitem_consumer.broker.models import EVENT_SIGNED_IN, ClientEvent


class Application:
    """Connects to the broker, subscribes on sign-in and waits for shutdown."""

    def __init__(self, client=None, processor: Optional[WorkitemProcessor] = None,
                 work_dir: Optional[Path] = None, workitem_queue: Optional[str] = None,
                 subscription_queue: Optional[str] = None, max_workers: Optional[int] = None):
        self.client = client
        self.processor = processor
        self.work_dir = Path(work_dir or settings.WORK_DIR)
        self.workitem_queue = workitem_queue or settings.WORKITEM_QUEUE
        self.subscription_queue = subscription_queue or settings.SUBSCRIPTION_QUEUE
        self.max_workers = max_workers or settings.MAX_WORKERS
        self.handler: Optional[NotificationHandler] = None
        self.queue_id: Optional[str] = None
        self.running = False

        self.shutdown_event = threading.Event()
        self._startup_error: Optional[BaseException] = None
        self._log_forwarder = None
        self._stop_lock = threading.Lock()
        self._stopped = False

    def start(self):
        """Start the application."""
        logger.info("=" * 50)
        logger.info("Workitem Queue Consumer")
        logger.info("=" * 50)
        logger.info(f"Workitem queue: {self.workitem_queue}")
        logger.info(f"Subscription queue: {self.subscription_queue}")
        logger.info(f"Working directory: {self.work_dir}")
        logger.info(f"Max workers: {self.max_workers}")
        logger.info("=" * 50)

        if self.client is None:
            settings.validate_config()
            self.client = HttpBrokerClient(
                settings.BROKER_URL,
                token=settings.BROKER_TOKEN,
                timeout=settings.REQUEST_TIMEOUT,
                poll_wait=settings.POLL_WAIT,
            )
        if self.processor is None:
            self.processor = load_processor(settings.PROCESSOR, self.work_dir)

        self.handler = NotificationHandler(
            self.client,
            self.processor,
            Reporter(self.client, self.work_dir),
            workitem_queue=self.workitem_queue,
            work_dir=self.work_dir,
            max_workers=self.max_workers,
        )

        self.client.on_client_event(self._on_client_event)
        self.client.connect()
        self._log_forwarder = attach_broker_handler(self.client)
        self.running = True

    def request_shutdown(self):
        """Release the main thread; `run` then stops the application."""
        self.shutdown_event.set()

    def stop(self):
        """Stop the application. Runs once; later calls do nothing."""
        with self._stop_lock:
            if self._stopped:
                return
            self._stopped = True

        logger.info("Shutting down application...")
        self.running = False
        if self._log_forwarder is not None:
            detach_broker_handler(self._log_forwarder)
            self._log_forwarder = None
        if self.client is not None:
            try:
                self.client.close()
            except Exception as e:
                logger.error(f"Error closing client: {e}")
        if self.handler is not None:
            self.handler.shutdown(wait=True)
        self.shutdown_event.set()
        logger.info("Stopped")

    def run(self):
        """Start, then block until shutdown is requested."""
        try:
            self.start()
            logger.info("Application started and waiting for workitems...")
            self.shutdown_event.wait()
        finally:
            self.stop()

        if self._startup_error is not None:
            raise self._startup_error

    def on_connected(self):
        """Register for queue notifications. The registration persists for the session."""
        self.queue_id = self.client.register_queue(self.subscription_queue, self.handler.handle)
        logger.info(f"Consuming queue: {self.queue_id}")

    def _on_client_event(self, event: ClientEvent):
        if event.event != EVENT_SIGNED_IN:
            logger.debug(f"Client event: {event.event}")
            return
        try:
            self.on_connected()
        except Exception as e:
            logger.error(f"Error in on_connected: {e}", exc_info=True)
            self._startup_error = e
            self.request_shutdown()


def main():
    """Entry point."""
    app = Application()

    def signal_handler(sig, frame):
        logger.info(f"Received signal {sig}")
        app.request_shutdown()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        app.run()
    except ValueError as e:
        logger.error(f"Configuration error: {e}")
        sys.exit(1)
    except ConsumerError as e:
        logger.error(f"Error in main: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
