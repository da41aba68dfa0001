"""Configuration for the workitem queue consumer."""
import os
from pathlib import Path
from typing import Mapping, Optional, Tuple
from dotenv import load_dotenv

load_dotenv()

# Base paths
BASE_DIR = Path(__file__).resolve().parent.parent
LOGS_DIR = BASE_DIR / "logs"
LOGS_DIR.mkdir(exist_ok=True)

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
BETTERSTACK_SOURCE_TOKEN = os.getenv("BETTERSTACK_SOURCE_TOKEN")
BETTERSTACK_INGEST_HOST = os.getenv("BETTERSTACK_INGEST_HOST")

# Problems found while parsing the environment; reported by validate_config
_PARSE_ERRORS = []


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        _PARSE_ERRORS.append(f"{name} must be an integer: {raw}")
        return default


# Queues
DEFAULT_WORKITEM_QUEUE = "pythonqueue"


def resolve_queue_names(environ: Optional[Mapping[str, str]] = None) -> Tuple[str, str]:
    """
    Resolve the workitem queue and the subscription queue from the environment.

    `wiq` names the queue workitems are popped from, `queue` the queue whose
    notifications we subscribe to. A missing subscription queue follows the
    workitem queue; if neither is set the default name is used.

    Returns:
        (workitem_queue, subscription_queue)
    """
    if environ is None:
        environ = os.environ
    wiq = environ.get("wiq") or DEFAULT_WORKITEM_QUEUE
    queue = environ.get("queue") or wiq
    return wiq, queue


WORKITEM_QUEUE, SUBSCRIPTION_QUEUE = resolve_queue_names()

# Broker connection
BROKER_URL = os.getenv("apiurl")
BROKER_TOKEN = os.getenv("jwt", "")
REQUEST_TIMEOUT = _int_env("REQUEST_TIMEOUT", 30)
POLL_WAIT = _int_env("POLL_WAIT", 30)  # seconds a notification long-poll may hang

# Worker settings
WORK_DIR = Path(os.getenv("WORK_DIR", ".")).resolve()
MAX_WORKERS = _int_env("MAX_WORKERS", 4)
PROCESSOR = os.getenv("PROCESSOR", "workitem_consumer.processor.HelloKittyProcessor")


def validate_config():
    """Validate required configuration."""
    errors = list(_PARSE_ERRORS)

    if not BROKER_URL:
        errors.append("apiurl is required")
    elif not BROKER_URL.startswith(("http://", "https://")):
        errors.append(f"apiurl must be an http(s) URL: {BROKER_URL}")

    if MAX_WORKERS < 1:
        errors.append(f"MAX_WORKERS must be at least 1: {MAX_WORKERS}")

    if not WORK_DIR.is_dir():
        errors.append(f"WORK_DIR is not a directory: {WORK_DIR}")

    if errors:
        raise ValueError("Config errors:\n  " + "\n  ".join(errors))
