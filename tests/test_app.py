import logging
import threading
import time

import pytest

from workitem_consumer import app as app_module
from workitem_consumer.app import Application
from workitem_consumer.errors import TransportError
from workitem_consumer.processor import HelloKittyProcessor
from workitem_consumer.broker.models import Workitem


@pytest.fixture
def application(broker, work_dir):
    application = Application(
        client=broker,
        work_dir=work_dir,
        workitem_queue="billing",
        subscription_queue="billing-events",
        max_workers=2,
    )
    yield application
    application.stop()


def test_sign_in_registers_subscription_queue(application, broker):
    application.start()

    assert broker.connected
    assert list(broker.callbacks) == ["billing-events"]
    assert application.queue_id == "billing-events"


def test_default_processor_comes_from_settings(application):
    application.start()

    assert isinstance(application.processor, HelloKittyProcessor)


def test_notification_is_acknowledged_and_workitem_reported(application, broker, work_dir):
    broker.pending.append(Workitem(id="w1", wiq="billing"))
    application.start()

    assert broker.notify("billing-events") == {}
    application.stop()

    assert broker.popped_from == ["billing"]
    sent = broker.updates[0]
    assert sent.state == "successful"
    assert sent.payload == {"name": "Hello kitty"}
    assert broker.uploads[0] == {"hello.txt": "Hello kitty"}
    assert not (work_dir / "hello.txt").exists()


def test_duplicate_notifications_are_harmless(application, broker):
    broker.pending.append(Workitem(id="w1"))
    application.start()

    broker.notify("billing-events")
    broker.notify("billing-events")
    application.stop()

    assert broker.pops == 2
    assert [w.id for w in broker.updates] == ["w1"]


def test_stop_closes_connection_once(application, broker):
    application.start()

    application.stop()
    application.stop()

    assert broker.close_calls == 1
    assert application.shutdown_event.is_set()
    assert not application.running


def test_run_blocks_until_shutdown_requested(application, broker):
    thread = threading.Thread(target=application.run)
    thread.start()
    try:
        for _ in range(50):
            if application.running:
                break
            time.sleep(0.1)
        assert application.running
        assert thread.is_alive()
    finally:
        application.request_shutdown()
        thread.join(5)

    assert not thread.is_alive()
    assert broker.closed


def test_registration_failure_is_fatal(application, broker):
    def broken_register(queuename, callback):
        raise TransportError("queue registration refused")

    broker.register_queue = broken_register

    with pytest.raises(TransportError, match="refused"):
        application.run()

    assert broker.closed


def test_logs_are_forwarded_to_broker_while_connected(application, broker):
    application.start()
    logging.getLogger("workitem_consumer.test").info("forward me")
    application.stop()
    logging.getLogger("workitem_consumer.test").info("not after stop")

    messages = [message for _, message in broker.logs]
    assert "forward me" in messages
    assert "not after stop" not in messages


def test_main_exits_with_error_on_bad_config(monkeypatch):
    class BrokenApplication:
        def run(self):
            raise ValueError("Config errors:\n  apiurl is required")

        def request_shutdown(self):
            pass

    monkeypatch.setattr(app_module, "Application", BrokenApplication)
    monkeypatch.setattr(app_module.signal, "signal", lambda *args: None)

    with pytest.raises(SystemExit) as exc_info:
        app_module.main()

    assert exc_info.value.code == 1


def test_main_signal_handler_requests_shutdown(monkeypatch):
    handlers = {}

    class RecordingApplication:
        shutdown_requested = False

        def run(self):
            handlers[app_module.signal.SIGTERM](app_module.signal.SIGTERM, None)

        def request_shutdown(self):
            RecordingApplication.shutdown_requested = True

    monkeypatch.setattr(app_module, "Application", RecordingApplication)
    monkeypatch.setattr(app_module.signal, "signal", lambda sig, handler: handlers.__setitem__(sig, handler))

    app_module.main()

    assert RecordingApplication.shutdown_requested
    assert set(handlers) == {app_module.signal.SIGINT, app_module.signal.SIGTERM}
