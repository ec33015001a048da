"""
Polling sync client for the chat API.

ChatApi wraps the HTTP endpoints; SyncEngine keeps a DisplayedList in step
with the server by doing one full fetch and then periodic delta fetches.
"""

import logging
import threading
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, List, Optional

import httpx
from pydantic import BaseModel, ValidationError as SchemaError

from chatroom.error_actions import ClientAction, resolve_action
from chatroom.reconcile import DisplayedList, ReconcileResult
from chatroom.schemas import (
    ClassifiedMessageResponse,
    ClassifiedMessagesEnvelope,
    MessageEnvelope,
    MessageResponse,
    MessagesEnvelope,
    UserEnvelope,
    UserResponse,
)
from chatroom.utils import format_timestamp

logger = logging.getLogger(__name__)

API_URL = "/api/message"
DEFAULT_POLL_INTERVAL = 10.0
DEFAULT_TIMEOUT = 10.0


class ApiError(Exception):
    """A request failed; status_code is None when no response arrived."""

    def __init__(self, status_code: Optional[int], message: Optional[str] = None):
        self.status_code = status_code
        self.message = message
        super().__init__(f"{status_code}: {message}")


class ChatApi:
    """Thin client for the chat endpoints. Every call carries a timeout."""

    def __init__(self, http: httpx.Client, timeout: float = DEFAULT_TIMEOUT):
        self._http = http
        self._timeout = timeout

    @classmethod
    def connect(cls, base_url: str, timeout: float = DEFAULT_TIMEOUT) -> "ChatApi":
        return cls(httpx.Client(base_url=base_url, timeout=timeout), timeout=timeout)

    def close(self) -> None:
        self._http.close()

    def _call(self, method: str, url: str, **kwargs) -> dict:
        try:
            response = self._http.request(method, url, timeout=self._timeout, **kwargs)
        except httpx.HTTPError as exc:
            logger.warning(f"{method} {url} failed: {exc}")
            raise ApiError(None, str(exc)) from exc

        if response.is_error:
            raise ApiError(response.status_code, _server_message(response))
        try:
            return response.json()
        except ValueError as exc:
            raise ApiError(response.status_code, "Malformed response body") from exc

    @staticmethod
    def _parse(model: type[BaseModel], body: dict):
        try:
            return model.model_validate(body)
        except SchemaError as exc:
            raise ApiError(None, f"Unexpected response shape: {exc.error_count()} errors") from exc

    # Account

    def login(self, email: str, password: str) -> UserResponse:
        body = self._call("POST", "/login", json={"email": email, "password": password})
        return self._parse(UserEnvelope, body).data

    def logout(self) -> None:
        self._call("POST", "/signout")

    def me(self) -> UserResponse:
        return self._parse(UserEnvelope, self._call("GET", "/api/me")).data

    # Messages

    def fetch_all(self) -> List[MessageResponse]:
        body = self._call("GET", API_URL)
        return self._parse(MessagesEnvelope, body).data.messages

    def fetch_since(self, cursor: datetime) -> List[ClassifiedMessageResponse]:
        body = self._call("GET", f"{API_URL}/date", params={"lastFetchTimeStamp": format_timestamp(cursor)})
        return self._parse(ClassifiedMessagesEnvelope, body).data.messages

    def search(self, text: str) -> List[MessageResponse]:
        body = self._call("GET", f"{API_URL}/search", params={"string": text})
        return self._parse(MessagesEnvelope, body).data.messages

    def send(self, content: str) -> MessageResponse:
        body = self._call("POST", API_URL, json={"messageContent": content})
        return self._parse(MessageEnvelope, body).data

    def edit(self, message_id: int, content: str) -> MessageResponse:
        body = self._call("PUT", API_URL, json={"messageId": message_id, "messageContent": content})
        return self._parse(MessageEnvelope, body).data

    def delete(self, message_id: int) -> None:
        self._call("DELETE", f"{API_URL}/{message_id}")


def _server_message(response: httpx.Response) -> Optional[str]:
    try:
        body = response.json()
    except ValueError:
        return None
    if isinstance(body, dict):
        return body.get("message")
    return None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def log_action(action: ClientAction) -> None:
    """Default notifier: report the action in the log."""
    logger.warning(
        f"Request failed ({action.kind.value}): {action.action.value}"
        f"{' -> ' + action.location if action.location else ''}"
        f"{': ' + action.notice if action.notice else ''}"
    )


class SyncState(str, Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    RECONCILING = "reconciling"


class SyncEngine:
    """
    Keeps a DisplayedList in step with the server.

    The cursor is the time captured just before the last successful
    request was sent. A failed request leaves it alone, so the next poll
    asks for the same window again. A re-entrant lock keeps at most one
    request in flight between the polling thread and user actions.
    """

    def __init__(
        self,
        api: ChatApi,
        notifier: Optional[Callable[[ClientAction], None]] = None,
        interval: float = DEFAULT_POLL_INTERVAL,
        clock: Optional[Callable[[], datetime]] = None,
        on_change: Optional[Callable[[ReconcileResult], None]] = None,
    ):
        self.api = api
        self.notifier = notifier or log_action
        self.interval = interval
        self.on_change = on_change
        self._clock = clock or _utcnow
        self._lock = threading.RLock()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

        self.displayed = DisplayedList()
        self.cursor: Optional[datetime] = None
        self.state = SyncState.IDLE

    # -------------------------------------------------------------------------
    # Sync cycles
    # -------------------------------------------------------------------------

    def load(self) -> bool:
        """Full fetch: replace the displayed list and set the cursor."""
        with self._lock:
            candidate = self._clock()
            self.state = SyncState.FETCHING
            try:
                messages = self.api.fetch_all()
            except ApiError as exc:
                self._fail(exc)
                return False

            self.state = SyncState.RECONCILING
            self.displayed.replace_all(messages)
            self._commit(candidate)
            self.state = SyncState.IDLE
            logger.info(f"Loaded {len(self.displayed)} messages")
            return True

    def refresh(self) -> bool:
        """One delta cycle. Falls back to a full fetch before the first load."""
        with self._lock:
            if self.cursor is None:
                return self.load()

            candidate = self._clock()
            self.state = SyncState.FETCHING
            try:
                batch = self.api.fetch_since(self.cursor)
            except ApiError as exc:
                self._fail(exc)
                return False

            self.state = SyncState.RECONCILING
            result = self.displayed.apply(batch)
            self._commit(candidate)
            self.state = SyncState.IDLE

        if result.changed and self.on_change is not None:
            self.on_change(result)
        return True

    def _commit(self, candidate: datetime) -> None:
        if self.cursor is None or candidate > self.cursor:
            self.cursor = candidate

    def _fail(self, exc: ApiError) -> None:
        self.state = SyncState.IDLE
        logger.warning(f"Sync request failed: {exc}")
        self.notifier(resolve_action(exc.status_code, exc.message))

    # -------------------------------------------------------------------------
    # Polling loop
    # -------------------------------------------------------------------------

    def run(self, stop_event: Optional[threading.Event] = None) -> None:
        """
        Load, then refresh every interval until stop_event is set.

        The next wait starts only after the previous cycle has finished.
        """
        stop = stop_event or self._stop
        if self.cursor is None:
            self._guarded(self.load)
        while not stop.wait(self.interval):
            self._guarded(self.refresh)

    def _guarded(self, cycle: Callable[[], bool]) -> None:
        try:
            cycle()
        except Exception:
            self.state = SyncState.IDLE
            logger.exception("Polling cycle failed, continuing on next tick")

    def start(self) -> threading.Thread:
        """Run the polling loop on a daemon thread."""
        self._stop.clear()
        self._thread = threading.Thread(target=self.run, name="chatroom-sync", daemon=True)
        self._thread.start()
        return self._thread

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    # -------------------------------------------------------------------------
    # User actions (each followed by an immediate refresh)
    # -------------------------------------------------------------------------

    def send(self, content: str) -> Optional[MessageResponse]:
        with self._lock:
            try:
                message = self.api.send(content)
            except ApiError as exc:
                self._fail(exc)
                return None
            self.refresh()
        return message

    def edit(self, message_id: int, content: str) -> Optional[MessageResponse]:
        with self._lock:
            try:
                message = self.api.edit(message_id, content)
            except ApiError as exc:
                self._fail(exc)
                return None
            self.refresh()
        return message

    def delete(self, message_id: int) -> bool:
        with self._lock:
            try:
                self.api.delete(message_id)
            except ApiError as exc:
                self._fail(exc)
                return False
            self.refresh()
        return True

    def search(self, text: str) -> Optional[List[MessageResponse]]:
        """Search without touching the displayed list."""
        with self._lock:
            try:
                return self.api.search(text.strip())
            except ApiError as exc:
                self._fail(exc)
                return None
