"""
Connection service module.

Owns the single stream connection to the relay server. One daemon thread per
session reads frames and publishes decoded messages to the session's bounded
event queue; any number of threads may send, serialized by one write lock so
frames never interleave on the wire.
"""

import socket
import threading
from typing import List, Optional

from relay_client.connection.session import EventKind, Session, SessionEvent
from relay_client.presence.roster import PresenceHandler
from relay_client.utils.config import ClientConfig
from relay_client.utils.logger import logger
from relay_common.constants import FRAME_HEADER_SIZE, RECEIVE_THREAD_JOIN_TIMEOUT, RECV_BUFFER_SIZE
from relay_common.errors import ConnectionError, ProtocolError
from relay_common.protocol_definitions import (
    Message, create_logout_message, decode_body, encode, encode_handshake, read_frame_header
)


class ConnectionService:
    """Client-side connection to the relay server."""

    def __init__(self, config: Optional[ClientConfig] = None,
                 presence: Optional[PresenceHandler] = None):
        self.config = config or ClientConfig()
        self.presence = presence or PresenceHandler()
        self.sock: Optional[socket.socket] = None
        self.session: Optional[Session] = None
        self.username: Optional[str] = None
        self.recv_thread: Optional[threading.Thread] = None

        self._connected = False
        self._running = threading.Event()
        self._state_lock = threading.RLock()  # connect/disconnect/terminate; taken before _write_lock
        self._write_lock = threading.Lock()

    def is_connected(self) -> bool:
        """Whether the transport is open."""
        return self._connected

    def connect(self, address: str, port: int, username: str) -> bool:
        """Open the transport, announce ``username`` and start the receive loop.

        Returns False on any transport or handshake failure. Nothing is retried.
        """
        with self._state_lock:
            if self._connected:
                logger.warning(f"[WARNING] Already connected as '{self.username}'")
                return True

            try:
                handshake = encode_handshake(username)
            except ProtocolError as e:
                logger.log_error("handshake", e)
                return False

            sock = None
            try:
                sock = socket.create_connection((address, port), timeout=self.config.connect_timeout)
                sock.settimeout(None)
                sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
                sock.sendall(handshake)
            except OSError as e:
                logger.log_connection(address, port, False)
                logger.log_error("connect", e)
                if sock is not None:
                    self._close_socket(sock)
                return False

            logger.log_connection(address, port, True)
            logger.log_handshake(username)

            self.sock = sock
            self.username = username
            self.session = Session(username, queue_size=self.config.inbound_queue_size)
            self._connected = True
            self._running.set()

            self.recv_thread = threading.Thread(
                target=self._receive_loop, args=(sock, self.session),
                name=f"relay-recv-{username}", daemon=True
            )
            self.recv_thread.start()
            return True

    def send_message(self, message: Message):
        """Encode ``message`` and write it as one frame.

        Raises ProtocolError for an invalid message and ConnectionError when
        not connected or when the write fails; a failed write ends the session.
        """
        frame = encode(message)
        with self._write_lock:
            sock = self.sock
            if not self._connected or sock is None:
                raise ConnectionError("Not connected to server")
            try:
                sock.sendall(frame)
                return
            except OSError as e:
                error = ConnectionError(f"Failed to send message: {e}")

        self._terminate(sock, error)
        raise error

    def disconnect(self):
        """Send LOGOUT, then close the transport. Safe to call repeatedly."""
        with self._state_lock:
            if not self._connected:
                return
            sock, session, username = self.sock, self.session, self.username
            self._running.clear()

            frame = encode(create_logout_message(username))
            with self._write_lock:
                try:
                    sock.sendall(frame)
                except OSError as e:
                    logger.log_error("logout", e)

                # Nothing may follow LOGOUT on the wire
                self._close_socket(sock)
                self._connected = False
                self.sock = None

        session.publish(SessionEvent(EventKind.DISCONNECTED))
        logger.log_disconnect(username)
        self._join_receive_thread()

    # ------------------------------------------------------------------
    # Inbound stream
    # ------------------------------------------------------------------

    def next_event(self, timeout: Optional[float] = None) -> Optional[SessionEvent]:
        """Next inbound event of the current session."""
        if self.session is None:
            return None
        return self.session.next_event(timeout)

    def drain_events(self) -> List[SessionEvent]:
        """All inbound events queued so far."""
        if self.session is None:
            return []
        return self.session.drain_events()

    def _receive_loop(self, sock: socket.socket, session: Session):
        """Read frames until the transport closes."""
        try:
            while self._running.is_set():
                header = self._recv_exactly(sock, FRAME_HEADER_SIZE)
                try:
                    length = read_frame_header(header)
                except ProtocolError as e:
                    raise ConnectionError(f"Frame stream out of sync: {e}")
                body = self._recv_exactly(sock, length)

                try:
                    message = decode_body(body)
                except ProtocolError as e:
                    logger.log_protocol_error(e)
                    session.publish(SessionEvent(EventKind.PROTOCOL_ERROR, error=e), self._running)
                    continue

                self._dispatch(message, session)
        except OSError as e:
            if self._running.is_set():
                if not isinstance(e, ConnectionError):
                    e = ConnectionError(f"Connection lost: {e}")
                self._terminate(sock, e)
        except Exception as e:
            logger.log_error("receive loop", e)
            self._terminate(sock, ConnectionError(f"Receive loop failed: {e}"))

    def _dispatch(self, message: Message, session: Session):
        roster = self.presence.handle_message(message, session)
        if roster is not None:
            logger.show_roster([entry.username for entry in roster])
            session.publish(SessionEvent(EventKind.ROSTER, message=message, roster=roster), self._running)
            return

        session.record(message)
        session.publish(SessionEvent(EventKind.MESSAGE, message=message), self._running)

    @staticmethod
    def _recv_exactly(sock: socket.socket, size: int) -> bytes:
        buf = bytearray()
        while len(buf) < size:
            chunk = sock.recv(min(size - len(buf), RECV_BUFFER_SIZE))
            if not chunk:
                raise ConnectionError("Connection closed by server")
            buf.extend(chunk)
        return bytes(buf)

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    def _terminate(self, sock: socket.socket, error: ConnectionError):
        """End the session after a transport failure."""
        with self._state_lock:
            if not self._connected or self.sock is not sock:
                return
            session, username = self.session, self.username
            self._running.clear()
            self._close_socket(sock)
            self._connected = False
            self.sock = None

        session.publish(SessionEvent(EventKind.DISCONNECTED, error=error))
        logger.log_disconnect(username, str(error))

    def _join_receive_thread(self):
        thread = self.recv_thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=RECEIVE_THREAD_JOIN_TIMEOUT)

    @staticmethod
    def _close_socket(sock: socket.socket):
        try:
            sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass  # already disconnected
        sock.close()
