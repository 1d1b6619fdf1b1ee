"""
Session state module.

A Session is created by the connection service on a successful connect and
lives until the transport is closed. It owns the roster, a bounded history of
received messages and the bounded queue of inbound events. Consumers only get
read-only views; the connection service is the single writer.
"""

import queue
import threading
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Tuple

from relay_common.constants import INBOUND_QUEUE_SIZE, MAX_CHAT_HISTORY
from relay_common.protocol_definitions import Message, RosterEntry

PUBLISH_POLL_INTERVAL = 0.2  # seconds


class EventKind(Enum):
    """Kinds of inbound session events."""
    MESSAGE = 'message'
    ROSTER = 'roster'
    PROTOCOL_ERROR = 'protocol_error'
    DISCONNECTED = 'disconnected'


@dataclass(frozen=True)
class SessionEvent:
    """One item of the inbound stream."""
    kind: EventKind
    message: Optional[Message] = None
    roster: Optional[Tuple[RosterEntry, ...]] = None
    error: Optional[Exception] = None

    @property
    def is_terminal(self) -> bool:
        return self.kind is EventKind.DISCONNECTED


class Session:
    """State of one connected session."""

    def __init__(self, username: str, queue_size: int = INBOUND_QUEUE_SIZE,
                 history_size: int = MAX_CHAT_HISTORY):
        self.username = username
        self._lock = threading.Lock()
        self._roster: Tuple[RosterEntry, ...] = ()
        self._history = deque(maxlen=history_size)
        self.events: "queue.Queue[SessionEvent]" = queue.Queue(maxsize=queue_size)

    @property
    def roster(self) -> Tuple[RosterEntry, ...]:
        """Current roster, replaced wholesale on every update."""
        with self._lock:
            return self._roster

    @property
    def history(self) -> Tuple[Message, ...]:
        """Most recent received messages, oldest first."""
        with self._lock:
            return tuple(self._history)

    def online_usernames(self) -> List[str]:
        return [entry.username for entry in self.roster if entry.online]

    def replace_roster(self, roster: Tuple[RosterEntry, ...]):
        with self._lock:
            self._roster = tuple(roster)

    def record(self, message: Message):
        with self._lock:
            self._history.append(message)

    def publish(self, event: SessionEvent, running: Optional[threading.Event] = None) -> bool:
        """Queue an event, blocking while the queue is full.

        Terminal events never block: the oldest queued event is dropped to
        make room. When ``running`` is given, a blocked put gives up once it
        is cleared. Returns whether the event was queued.
        """
        if event.is_terminal:
            while True:
                try:
                    self.events.put_nowait(event)
                    return True
                except queue.Full:
                    try:
                        self.events.get_nowait()
                    except queue.Empty:
                        pass

        while True:
            try:
                self.events.put(event, timeout=PUBLISH_POLL_INTERVAL)
                return True
            except queue.Full:
                if running is not None and not running.is_set():
                    return False

    def next_event(self, timeout: Optional[float] = None) -> Optional[SessionEvent]:
        """Return the next event, or None if none arrives within ``timeout``."""
        try:
            return self.events.get(timeout=timeout)
        except queue.Empty:
            return None

    def drain_events(self) -> List[SessionEvent]:
        """Return every event queued so far without blocking."""
        items: List[SessionEvent] = []
        while True:
            try:
                items.append(self.events.get_nowait())
            except queue.Empty:
                break
        return items
