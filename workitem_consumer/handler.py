"""Queue notification handler: dispatches each notification to a worker thread."""
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from typing import Any, Dict, FrozenSet, Optional

from workitem_consumer.logging_conf import logger
from workitem_consumer.processor import WorkitemProcessor
from workitem_consumer.reporting import Reporter
from workitem_consumer.snapshot import snapshot
from workitem_consumer.broker.models import QueueEvent


class NotificationHandler:
    """Reacts to "queue has work" notifications.

    The broker delivers notifications on a single thread and waits for each
    callback to return, so `handle` only snapshots the working directory,
    submits a worker and acknowledges. Each worker pops at most one workitem.
    """

    def __init__(self, client, processor: WorkitemProcessor, reporter: Reporter,
                 workitem_queue: str, work_dir: Path, max_workers: int = 4):
        self.client = client
        self.processor = processor
        self.reporter = reporter
        self.workitem_queue = workitem_queue
        self.work_dir = Path(work_dir)
        self.executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="worker")
        self.accepting = True
        self._lock = threading.Lock()

    def handle(self, event: QueueEvent) -> Dict[str, Any]:
        """Notification callback. Returns the acknowledgement immediately."""
        logger.info(f"{self.workitem_queue} received message notification on {event.queuename}, processing...")

        # Taken before the worker starts so its own output counts as new.
        original_files = snapshot(self.work_dir)

        if self.submit(original_files) is None:
            logger.info("Shutting down; notification not dispatched")
        return {}

    def submit(self, original_files: FrozenSet[str]) -> Optional[Future]:
        """Dispatch a worker. None once the handler is shut down."""
        with self._lock:
            if not self.accepting:
                return None
            return self.executor.submit(self._work, original_files)

    def shutdown(self, wait: bool = True) -> None:
        """Stop dispatching. Running workers are never interrupted."""
        with self._lock:
            if not self.accepting:
                return
            self.accepting = False
        self.executor.shutdown(wait=wait)
        logger.info("Notification handler stopped")

    def _work(self, original_files: FrozenSet[str]) -> None:
        """Pop one workitem, process it, report it. Never raises."""
        try:
            logger.info(f"Popping workitem from {self.workitem_queue} in worker thread")
            workitem = self.client.pop_workitem(self.workitem_queue)
        except Exception as e:
            logger.error(f"Error popping workitem from {self.workitem_queue}: {e}", exc_info=True)
            return

        if workitem is None:
            # A worker that popped nothing must not touch files other workers are producing.
            logger.info(f"No workitem found in {self.workitem_queue} (someone else might have picked it up)")
            return

        try:
            error = None
            try:
                result = self.processor.process(workitem)
                if result is not None:
                    workitem = result
            except Exception as e:
                logger.error(f"Processing workitem {workitem.id} failed: {e}", exc_info=True)
                error = e

            self.reporter.report(original_files, workitem, error)
        except Exception as e:
            logger.error(f"Error in worker thread: {e}", exc_info=True)
        finally:
            self.reporter.cleanup(original_files)
