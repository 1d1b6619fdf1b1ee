"""
Message dispatcher module.

Drains a session's event queue on its own thread and hands each event to
consumer callbacks, so slow consumers never run on the receive thread.
"""

import threading
from typing import Callable, Optional

from relay_client.connection.session import EventKind, Session, SessionEvent
from relay_client.utils.logger import logger

POLL_INTERVAL = 0.2  # seconds


class MessageDispatcher(threading.Thread):
    """Calls ``on_message`` for every inbound message of a session.

    ``on_event`` (optional) sees every event, including roster updates,
    protocol errors and the final DISCONNECTED event that stops the thread.
    """

    def __init__(self, session: Session,
                 on_message: Optional[Callable] = None,
                 on_event: Optional[Callable[[SessionEvent], None]] = None):
        super().__init__(name=f"relay-dispatch-{session.username}", daemon=True)
        self.session = session
        self.on_message = on_message
        self.on_event = on_event
        self._stopped = threading.Event()

    def run(self):
        while not self._stopped.is_set():
            event = self.session.next_event(timeout=POLL_INTERVAL)
            if event is None:
                continue
            self._deliver(event)
            if event.is_terminal:
                break

    def _deliver(self, event: SessionEvent):
        try:
            if self.on_event:
                self.on_event(event)
            if event.kind is EventKind.MESSAGE and self.on_message:
                self.on_message(event.message)
        except Exception as e:
            logger.log_error(f"{event.kind.value} handler", e)

    def stop(self):
        """Stop after the event currently being delivered."""
        self._stopped.set()
