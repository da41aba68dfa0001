import pytest

from workitem_consumer import settings
from workitem_consumer.settings import DEFAULT_WORKITEM_QUEUE, resolve_queue_names


def test_no_overrides_use_default_queue():
    assert resolve_queue_names({}) == (DEFAULT_WORKITEM_QUEUE, DEFAULT_WORKITEM_QUEUE)


def test_subscription_queue_follows_workitem_queue():
    assert resolve_queue_names({"wiq": "billing"}) == ("billing", "billing")


def test_separate_subscription_queue():
    assert resolve_queue_names({"wiq": "billing", "queue": "billing-events"}) == ("billing", "billing-events")


def test_empty_values_count_as_unset():
    assert resolve_queue_names({"wiq": "", "queue": ""}) == (DEFAULT_WORKITEM_QUEUE, DEFAULT_WORKITEM_QUEUE)


def test_subscription_queue_alone_keeps_default_workitem_queue():
    assert resolve_queue_names({"queue": "events"}) == (DEFAULT_WORKITEM_QUEUE, "events")


def test_reads_process_environment(monkeypatch):
    monkeypatch.setenv("wiq", "invoices")
    monkeypatch.delenv("queue", raising=False)

    assert resolve_queue_names() == ("invoices", "invoices")


def test_validate_config_accepts_valid_settings(monkeypatch, tmp_path):
    monkeypatch.setattr(settings, "BROKER_URL", "https://broker.example.com")
    monkeypatch.setattr(settings, "WORK_DIR", tmp_path)
    monkeypatch.setattr(settings, "MAX_WORKERS", 2)

    settings.validate_config()


def test_validate_config_reports_every_problem(monkeypatch, tmp_path):
    monkeypatch.setattr(settings, "BROKER_URL", None)
    monkeypatch.setattr(settings, "WORK_DIR", tmp_path / "missing")
    monkeypatch.setattr(settings, "MAX_WORKERS", 0)

    with pytest.raises(ValueError) as exc_info:
        settings.validate_config()

    message = str(exc_info.value)
    assert "apiurl is required" in message
    assert "MAX_WORKERS" in message
    assert "WORK_DIR" in message


def test_validate_config_rejects_non_http_url(monkeypatch, tmp_path):
    monkeypatch.setattr(settings, "BROKER_URL", "grpc://broker:50051")
    monkeypatch.setattr(settings, "WORK_DIR", tmp_path)
    monkeypatch.setattr(settings, "MAX_WORKERS", 1)

    with pytest.raises(ValueError, match="http"):
        settings.validate_config()


def test_non_numeric_integer_setting_falls_back_to_default(monkeypatch):
    monkeypatch.setattr(settings, "_PARSE_ERRORS", [])
    monkeypatch.setenv("MAX_WORKERS", "four")

    assert settings._int_env("MAX_WORKERS", 4) == 4
    assert settings._PARSE_ERRORS == ["MAX_WORKERS must be an integer: four"]


def test_validate_config_reports_non_numeric_settings(monkeypatch, tmp_path):
    monkeypatch.setattr(settings, "_PARSE_ERRORS", [])
    monkeypatch.setenv("POLL_WAIT", "soon")
    settings._int_env("POLL_WAIT", 30)
    monkeypatch.setattr(settings, "BROKER_URL", "https://broker.example.com")
    monkeypatch.setattr(settings, "WORK_DIR", tmp_path)
    monkeypatch.setattr(settings, "MAX_WORKERS", 2)

    with pytest.raises(ValueError, match="POLL_WAIT must be an integer: soon"):
        settings.validate_config()
