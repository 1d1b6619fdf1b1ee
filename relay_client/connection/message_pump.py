"""
Qt bridge for the inbound stream.

MessagePump drains a session's event queue on a QThread and re-emits each
event as a Qt signal. Receivers living in the GUI thread get the signals
queued onto their own event loop, so the network side never touches widgets.
"""

from PyQt6.QtCore import QThread, pyqtSignal

from relay_client.connection.session import EventKind, Session

POLL_INTERVAL = 0.2  # seconds


class MessagePump(QThread):
    """Thread that turns session events into Qt signals."""

    message_received = pyqtSignal(object)  # Message
    roster_updated = pyqtSignal(object)  # tuple of RosterEntry
    protocol_error = pyqtSignal(object)  # ProtocolError
    disconnected = pyqtSignal(object)  # ConnectionError or None

    def __init__(self, session: Session, parent=None):
        super().__init__(parent)
        self.session = session
        self.running = False

    def run(self):
        """Emit one signal per event until the session ends."""
        self.running = True
        while self.running:
            event = self.session.next_event(timeout=POLL_INTERVAL)
            if event is None:
                continue

            if event.kind is EventKind.MESSAGE:
                self.message_received.emit(event.message)
            elif event.kind is EventKind.ROSTER:
                self.roster_updated.emit(event.roster)
            elif event.kind is EventKind.PROTOCOL_ERROR:
                self.protocol_error.emit(event.error)
            elif event.kind is EventKind.DISCONNECTED:
                self.disconnected.emit(event.error)
                break
        self.running = False

    def stop(self):
        """Stop pumping."""
        self.running = False
