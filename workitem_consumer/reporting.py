"""Record a processing outcome on the workitem and send it to the broker."""
import traceback
from pathlib import Path
from typing import FrozenSet, List, Optional

from workitem_consumer.logging_conf import logger
from workitem_consumer.snapshot import diff, snapshot
from workitem_consumer.broker.models import (
    ERROR_APPLICATION,
    STATE_RETRY,
    STATE_SUCCESSFUL,
    Workitem,
    WorkitemFile,
)


class Reporter:
    """Sends the final state of a workitem along with the files it produced."""

    def __init__(self, client, work_dir: Path):
        self.client = client
        self.work_dir = Path(work_dir)

    def apply_outcome(self, workitem: Workitem, error: Optional[BaseException] = None) -> Workitem:
        """Set a terminal state: successful, or retry with the failure's details."""
        if error is None:
            workitem.state = STATE_SUCCESSFUL
            workitem.clear_error()
        else:
            workitem.state = STATE_RETRY
            workitem.errortype = ERROR_APPLICATION
            workitem.errormessage = str(error)
            workitem.errorsource = self._error_source(error)
        return workitem

    def report(self, original_files: FrozenSet[str], workitem: Workitem,
               error: Optional[BaseException] = None) -> Workitem:
        """
        Update the workitem on the broker and clean up the files it produced.

        Args:
            original_files: snapshot of the working directory taken before the pop
            workitem: the processed workitem
            error: the processing failure, if any

        Returns:
            The workitem as accepted by the broker

        Raises:
            TransportError if the update fails; cleanup has run by then
        """
        self.apply_outcome(workitem, error)

        added = sorted(diff(original_files, snapshot(self.work_dir)))
        files = [WorkitemFile(filename=name, path=self.work_dir / name) for name in added]
        workitem.files = added

        try:
            if added:
                logger.info(f"Attaching {len(added)} file(s) to workitem {workitem.id}: {', '.join(added)}")
            updated = self.client.update_workitem(workitem, files)
            logger.info(f"Updated workitem {workitem.id} to state {workitem.state}")
            return updated
        except Exception as e:
            logger.error(f"Error updating workitem {workitem.id}: {e}")
            raise
        finally:
            self.cleanup(original_files)

    def cleanup(self, original_files: FrozenSet[str]) -> List[str]:
        """Delete files added since `original_files` was taken. Returns the names removed."""
        removed = []
        for name in sorted(diff(original_files, snapshot(self.work_dir))):
            try:
                (self.work_dir / name).unlink(missing_ok=True)
                removed.append(name)
            except OSError as e:
                logger.error(f"Error cleaning up file {name}: {e}")
        if removed:
            logger.debug(f"Removed {len(removed)} scratch file(s): {', '.join(removed)}")
        return removed

    @staticmethod
    def _error_source(error: BaseException) -> str:
        if error.__traceback__ is None:
            return "Unknown source"
        return "".join(traceback.format_exception(type(error), error, error.__traceback__))
