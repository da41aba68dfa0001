"""Broker data models."""
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Dict, Any, List, Optional

# Workitem states
STATE_NEW = "new"
STATE_PENDING = "pending"
STATE_PROCESSING = "processing"
STATE_SUCCESSFUL = "successful"
STATE_RETRY = "retry"
STATE_FAILED = "failed"

# Error types
ERROR_APPLICATION = "application"  # retryable
ERROR_BUSINESS = "business"  # not retryable

# Client events
EVENT_CONNECTED = "Connected"
EVENT_SIGNED_IN = "SignedIn"
EVENT_DISCONNECTED = "Disconnected"


@dataclass
class Workitem:
    """A unit of work owned by the broker; the consumer holds a local copy."""

    id: str
    wiq: str = ""
    name: str = ""
    payload: Optional[Dict[str, Any]] = field(default_factory=dict)
    state: str = STATE_PENDING
    retries: int = 0
    priority: int = 2
    errortype: Optional[str] = None
    errormessage: Optional[str] = None
    errorsource: Optional[str] = None
    files: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Workitem":
        """Build a Workitem from broker JSON, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in data.items() if k in known}
        # The broker reports the id as `_id`
        if "id" not in values and "_id" in data:
            values["id"] = data["_id"]
        if values.get("payload") is None:
            values["payload"] = {}
        files = values.get("files") or []
        values["files"] = [f["filename"] if isinstance(f, dict) else f for f in files]
        return cls(**values)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for an update call. Unset error fields are left out."""
        data = {
            "id": self.id,
            "wiq": self.wiq,
            "name": self.name,
            "payload": self.payload if self.payload is not None else {},
            "state": self.state,
            "retries": self.retries,
            "priority": self.priority,
        }
        for key in ("errortype", "errormessage", "errorsource"):
            value = getattr(self, key)
            if value is not None:
                data[key] = value
        return data

    def clear_error(self) -> None:
        self.errortype = None
        self.errormessage = None
        self.errorsource = None


@dataclass(frozen=True)
class WorkitemFile:
    """A file produced during processing, uploaded with the update."""

    filename: str
    path: Path


@dataclass(frozen=True)
class QueueEvent:
    """Notification that a queue may have work. Carries no workitem."""

    queuename: str
    correlation_id: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "QueueEvent":
        return cls(queuename=data.get("queuename", ""), correlation_id=data.get("correlation_id"))


@dataclass(frozen=True)
class ClientEvent:
    """Connection level event emitted by a broker client."""

    event: str
    reason: str = ""
