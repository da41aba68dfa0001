"""Workitem processors: the domain logic run for each dequeued workitem."""
from importlib import import_module
from pathlib import Path

from workitem_consumer.errors import ProcessingError
from workitem_consumer.logging_conf import logger
from workitem_consumer.broker.models import Workitem


class WorkitemProcessor:
    """Base class for processors.

    `process` may mutate the workitem in place or return a new one. Raise
    ProcessingError to have the workitem retried; files written to the
    working directory are attached to the update and removed afterwards.
    """

    def __init__(self, work_dir: Path):
        self.work_dir = Path(work_dir)

    def process(self, workitem: Workitem) -> Workitem:
        raise NotImplementedError


class HelloKittyProcessor(WorkitemProcessor):
    """Example processor: names the workitem and writes hello.txt."""

    NAME = "Hello kitty"
    OUTPUT_FILENAME = "hello.txt"

    def process(self, workitem: Workitem) -> Workitem:
        logger.info(f"Processing workitem id {workitem.id}, retry #{workitem.retries}")

        if workitem.payload is None:
            workitem.payload = {}
        if not isinstance(workitem.payload, dict):
            raise ProcessingError(f"Payload of workitem {workitem.id} is not an object")

        workitem.payload["name"] = self.NAME
        workitem.name = self.NAME

        (self.work_dir / self.OUTPUT_FILENAME).write_text(self.NAME)
        return workitem


def load_processor(dotted_path: str, work_dir: Path) -> WorkitemProcessor:
    """Instantiate a processor class given as `package.module.ClassName`."""
    module_name, _, class_name = dotted_path.rpartition(".")
    if not module_name:
        raise ValueError(f"PROCESSOR must be a dotted path: {dotted_path}")
    try:
        processor_cls = getattr(import_module(module_name), class_name)
    except (ImportError, AttributeError) as e:
        raise ValueError(f"Cannot load processor {dotted_path}: {e}") from e
    if not (isinstance(processor_cls, type) and issubclass(processor_cls, WorkitemProcessor)):
        raise ValueError(f"{dotted_path} is not a WorkitemProcessor")
    return processor_cls(work_dir)
