"""Broker client: sign-in, queue notifications and the workitem lifecycle calls."""
import json
import threading
import time
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence
import requests

from workitem_consumer.errors import TransportError
from workitem_consumer.logging_conf import logger
from workitem_consumer.broker.models import (
    EVENT_CONNECTED,
    EVENT_DISCONNECTED,
    EVENT_SIGNED_IN,
    ClientEvent,
    QueueEvent,
    Workitem,
    WorkitemFile,
)

ClientEventCallback = Callable[[ClientEvent], None]
QueueCallback = Callable[[QueueEvent], Optional[Dict[str, Any]]]


class BrokerClient(Protocol):
    """Operations the consumer needs from a broker session."""

    def on_client_event(self, callback: ClientEventCallback) -> None:
        ...

    def connect(self) -> None:
        ...

    def register_queue(self, queuename: str, callback: QueueCallback) -> str:
        """Subscribe to notifications for a queue. The callback is invoked once per notification."""
        ...

    def pop_workitem(self, wiq: str) -> Optional[Workitem]:
        """Claim at most one workitem. None when the queue is empty."""
        ...

    def update_workitem(self, workitem: Workitem, files: Sequence[WorkitemFile] = ()) -> Workitem:
        ...

    def log(self, level: str, message: str) -> None:
        ...

    def close(self) -> None:
        ...


class HttpBrokerClient:
    """Talks to the broker's JSON/HTTP API.

    Notifications are long-polled by one listener thread per registered queue
    and delivered to the callback on that thread, one at a time. Callbacks must
    therefore return quickly.
    """

    MAX_RETRIES = 3
    POLL_RETRY_DELAY = 5  # seconds between failed notification polls

    def __init__(self, base_url: str, token: str = "", timeout: int = 30, poll_wait: int = 30):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self.poll_wait = poll_wait
        self.poll_retry_delay = self.POLL_RETRY_DELAY
        self.session = requests.Session()
        self.session.headers.update({"Accept": "application/json"})
        if token:
            self.session.headers["Authorization"] = f"Bearer {token}"
        self.user: Optional[Dict[str, Any]] = None

        self._event_callbacks: List[ClientEventCallback] = []
        self._listeners: Dict[str, threading.Thread] = {}
        self._signed_in = False
        self._closed = threading.Event()
        self._close_lock = threading.Lock()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def on_client_event(self, callback: ClientEventCallback) -> None:
        self._event_callbacks.append(callback)

    def connect(self) -> None:
        """Sign in and emit Connected, then SignedIn (once per client)."""
        response = self._request("POST", "/api/signin", json={"jwt": self.token})
        self.user = response.get("user") or {}
        logger.info(f"Connected to {self.base_url} as {self.user.get('username', 'anonymous')}")
        self._emit(ClientEvent(EVENT_CONNECTED))
        if not self._signed_in:
            self._signed_in = True
            self._emit(ClientEvent(EVENT_SIGNED_IN))

    def register_queue(self, queuename: str, callback: QueueCallback) -> str:
        response = self._request("POST", "/api/queues", json={"queuename": queuename})
        registered = response.get("queuename") or queuename
        if registered in self._listeners:
            logger.warning(f"Queue {registered} is already registered")
            return registered

        thread = threading.Thread(
            target=self._listen,
            args=(registered, callback),
            name=f"queue-{registered}",
            daemon=True,
        )
        self._listeners[registered] = thread
        thread.start()
        return registered

    def pop_workitem(self, wiq: str) -> Optional[Workitem]:
        response = self._request("POST", "/api/workitems/pop", json={"wiq": wiq})
        data = response.get("workitem")
        if not data:
            return None
        return Workitem.from_dict(data)

    def update_workitem(self, workitem: Workitem, files: Sequence[WorkitemFile] = ()) -> Workitem:
        """
        Send the workitem's state, payload and error fields, uploading files.

        The update carries the full state, so repeating it is harmless.

        Raises:
            TransportError if the broker rejects the update or is unreachable
        """
        parts = []
        for item in files:
            try:
                parts.append(("files", (item.filename, item.path.read_bytes())))
            except OSError as e:
                logger.warning(f"Skipping attachment {item.filename} for workitem {workitem.id}: {e}")

        response = self._request(
            "PUT",
            f"/api/workitems/{workitem.id}",
            data={"workitem": json.dumps(workitem.to_dict())},
            files=parts or None,
        )
        data = response.get("workitem")
        return Workitem.from_dict(data) if data else workitem

    def log(self, level: str, message: str) -> None:
        """Best effort; a failed log call is dropped."""
        if self.closed:
            return
        try:
            self._request("POST", "/api/log", json={"level": level, "message": message}, retries=0)
        except TransportError as e:
            logger.debug(f"Dropped broker log message: {e}")

    def close(self) -> None:
        """Close the connection. Safe to call more than once."""
        with self._close_lock:
            if self._closed.is_set():
                return
            self._closed.set()
        self.session.close()
        logger.info("Broker connection closed")
        self._emit(ClientEvent(EVENT_DISCONNECTED, reason="closed"))

    def _emit(self, event: ClientEvent) -> None:
        for callback in list(self._event_callbacks):
            try:
                callback(event)
            except Exception as e:
                logger.error(f"Client event handler failed for {event.event}: {e}", exc_info=True)

    def _listen(self, queuename: str, callback: QueueCallback) -> None:
        """Long-poll notifications for one queue until the client is closed. Never raises."""
        logger.info(f"Listening for notifications on {queuename}")

        while not self.closed:
            try:
                self._poll_once(queuename, callback)
            except TransportError as e:
                if self.closed:
                    break
                logger.error(f"Notification poll on {queuename} failed: {e}")
                self._closed.wait(self.poll_retry_delay)
            except Exception as e:
                logger.error(f"Unexpected error polling {queuename}: {e}", exc_info=True)
                self._closed.wait(self.poll_retry_delay)

        logger.info(f"Stopped listening on {queuename}")

    def _poll_once(self, queuename: str, callback: QueueCallback) -> None:
        response = self._request(
            "GET",
            f"/api/queues/{queuename}/messages",
            params={"wait": self.poll_wait},
            timeout=self.poll_wait + self.timeout,
        )
        messages = response.get("messages") or []
        if not isinstance(messages, list):
            raise TransportError(f"Malformed notification batch on {queuename}: {messages!r}")

        for message in messages:
            if not isinstance(message, dict):
                logger.warning(f"Skipping malformed notification on {queuename}: {message!r}")
                continue
            event = QueueEvent.from_dict({**message, "queuename": message.get("queuename") or queuename})
            try:
                reply = callback(event)
            except Exception as e:
                logger.error(f"Queue callback for {queuename} failed: {e}", exc_info=True)
                reply = None
            self._ack(queuename, event, reply)

    def _ack(self, queuename: str, event: QueueEvent, reply: Optional[Dict[str, Any]]) -> None:
        try:
            self._request(
                "POST",
                f"/api/queues/{queuename}/ack",
                json={"correlation_id": event.correlation_id, "data": reply if reply is not None else {}},
                retries=0,
            )
        except TransportError as e:
            if not self.closed:
                logger.warning(f"Failed to acknowledge notification on {queuename}: {e}")

    def _request(self, method: str, endpoint: str, retries: int = MAX_RETRIES, retry_count: int = 0,
                 timeout: Optional[int] = None, **kwargs) -> Dict[str, Any]:
        """Make API request with retry logic."""
        if self.closed:
            raise TransportError("Broker connection is closed")

        url = f"{self.base_url}{endpoint}"

        try:
            response = self.session.request(method=method, url=url, timeout=timeout or self.timeout, **kwargs)
        except (requests.exceptions.ConnectionError, requests.exceptions.Timeout) as e:
            if retry_count < retries and not self.closed:
                wait_time = 2 ** retry_count
                logger.warning(f"{method} {endpoint} failed ({e}). Retrying in {wait_time}s...")
                time.sleep(wait_time)
                return self._request(method, endpoint, retries, retry_count + 1, timeout, **kwargs)
            raise TransportError(f"{method} {endpoint} failed: {e}") from e
        except requests.exceptions.RequestException as e:
            raise TransportError(f"{method} {endpoint} failed: {e}") from e

        if response.status_code == 429 and retry_count < retries:
            retry_after = self._retry_after(response, retry_count)
            logger.warning(f"Rate limited. Waiting {retry_after}s...")
            time.sleep(retry_after)
            return self._request(method, endpoint, retries, retry_count + 1, timeout, **kwargs)

        if response.status_code >= 500 and retry_count < retries:
            wait_time = 2 ** retry_count
            logger.warning(f"Server error {response.status_code}. Retrying in {wait_time}s...")
            time.sleep(wait_time)
            return self._request(method, endpoint, retries, retry_count + 1, timeout, **kwargs)

        try:
            response.raise_for_status()
        except requests.exceptions.HTTPError as e:
            raise TransportError(f"{method} {endpoint} failed: {e}", status_code=response.status_code) from e

        if not response.content:
            return {}
        try:
            body = response.json()
        except ValueError as e:
            raise TransportError(f"{method} {endpoint} returned invalid JSON: {e}") from e
        if not isinstance(body, dict):
            raise TransportError(f"{method} {endpoint} returned {type(body).__name__}, expected an object")
        return body

    @staticmethod
    def _retry_after(response: requests.Response, retry_count: int) -> int:
        """Seconds from a numeric Retry-After header; exponential backoff for dates or garbage."""
        value = response.headers.get("Retry-After")
        if value is None:
            return 60
        try:
            return max(0, int(value))
        except ValueError:
            return 2 ** retry_count
