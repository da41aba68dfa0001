"""Shared test fixtures."""
import copy
import threading
from typing import Dict, List, Optional

import pytest

from workitem_consumer.processor import HelloKittyProcessor
from workitem_consumer.reporting import Reporter
from workitem_consumer.handler import NotificationHandler
from workitem_consumer.broker.models import EVENT_SIGNED_IN, ClientEvent, QueueEvent, Workitem


class FakeBroker:
    """In-process stand-in for a broker session."""

    def __init__(self, workitems=()):
        self.pending: List[Workitem] = list(workitems)
        self.updates: List[Workitem] = []
        self.uploads: List[Dict[str, str]] = []
        self.logs = []
        self.pops = 0
        self.popped_from = []
        self.close_calls = 0
        self.callbacks = {}
        self.event_callbacks = []
        self.connected = False
        self.closed = False
        self.fail_update: Optional[Exception] = None
        self._lock = threading.Lock()

    def on_client_event(self, callback):
        self.event_callbacks.append(callback)

    def connect(self):
        self.connected = True
        for callback in self.event_callbacks:
            callback(ClientEvent(EVENT_SIGNED_IN))

    def register_queue(self, queuename, callback):
        self.callbacks[queuename] = callback
        return queuename

    def notify(self, queuename):
        return self.callbacks[queuename](QueueEvent(queuename))

    def pop_workitem(self, wiq):
        with self._lock:
            self.pops += 1
            self.popped_from.append(wiq)
            return self.pending.pop(0) if self.pending else None

    def update_workitem(self, workitem, files=()):
        if self.fail_update is not None:
            raise self.fail_update
        # Read the uploads now; cleanup deletes them right after
        uploaded = {f.filename: f.path.read_text() for f in files}
        with self._lock:
            self.updates.append(copy.deepcopy(workitem))
            self.uploads.append(uploaded)
        return workitem

    def log(self, level, message):
        self.logs.append((level, message))

    def close(self):
        self.closed = True
        self.close_calls += 1


@pytest.fixture
def work_dir(tmp_path):
    path = tmp_path / "work"
    path.mkdir()
    return path


@pytest.fixture
def broker():
    return FakeBroker()


@pytest.fixture
def make_handler(broker, work_dir):
    """Build a NotificationHandler around the fake broker; shut down after the test."""
    handlers = []

    def _make(processor=None, workitem_queue="pythonqueue", max_workers=2):
        handler = NotificationHandler(
            broker,
            processor or HelloKittyProcessor(work_dir),
            Reporter(broker, work_dir),
            workitem_queue=workitem_queue,
            work_dir=work_dir,
            max_workers=max_workers,
        )
        handlers.append(handler)
        return handler

    yield _make
    for handler in handlers:
        handler.shutdown(wait=True)
