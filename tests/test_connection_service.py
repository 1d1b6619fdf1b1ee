#!/usr/bin/env python3
"""
Unit tests for relay_client.connection against a loopback relay server.

Tests:
- Handshake and connect failure
- Inbound delivery, roster pushes and recoverable protocol errors
- Remote closure ending the session
- LOGOUT before close on disconnect
- Whole-frame writes under concurrent senders
"""

import json
import socket
import struct
import threading
import time
import unittest
from unittest.mock import Mock

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from relay_client.connection import ConnectionService, EventKind, MessageDispatcher
from relay_client.utils.config import ClientConfig
from relay_common.errors import ConnectionError, ProtocolError
from relay_common.protocol_definitions import (
    MessageType, create_roster_message, create_text_message, decode_body, encode
)

TIMEOUT = 5.0


def recv_exactly(conn: socket.socket, size: int) -> bytes:
    buf = bytearray()
    while len(buf) < size:
        chunk = conn.recv(size - len(buf))
        if not chunk:
            raise EOFError("peer closed")
        buf.extend(chunk)
    return bytes(buf)


def wait_until(predicate, timeout: float = TIMEOUT) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return bool(predicate())


def read_body(conn: socket.socket) -> bytes:
    (length,) = struct.unpack('!I', recv_exactly(conn, 4))
    return recv_exactly(conn, length)


class FakeRelayServer:
    """Single-client loopback server speaking the frame format."""

    def __init__(self):
        self.listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self.listener.bind(('127.0.0.1', 0))
        self.listener.listen(1)
        self.listener.settimeout(TIMEOUT)
        self.port = self.listener.getsockname()[1]
        self.conn = None

    def accept(self) -> socket.socket:
        self.conn, _ = self.listener.accept()
        self.conn.settimeout(TIMEOUT)
        return self.conn

    def read_handshake(self) -> dict:
        return json.loads(read_body(self.conn).decode('utf-8'))

    def send(self, data: bytes):
        self.conn.sendall(data)

    def close(self):
        if self.conn is not None:
            self.conn.close()
        self.listener.close()


class ConnectionTestCase(unittest.TestCase):
    """Connects a ConnectionService to a fresh FakeRelayServer."""

    def setUp(self):
        """Set up test fixtures."""
        self.server = FakeRelayServer()
        self.service = ConnectionService(ClientConfig(username="alice"))
        self.assertTrue(self.service.connect('127.0.0.1', self.server.port, "alice"))
        self.server.accept()

    def tearDown(self):
        """Clean up after tests."""
        self.service.disconnect()
        self.server.close()

    def next_event(self, kind: EventKind):
        event = self.service.next_event(timeout=TIMEOUT)
        self.assertIsNotNone(event, f"no {kind.value} event")
        self.assertEqual(event.kind, kind)
        return event


class TestConnect(ConnectionTestCase):
    """Test cases for connect and the handshake."""

    def test_handshake_announces_username(self):
        self.assertEqual(self.server.read_handshake(), {"username": "alice"})
        self.assertTrue(self.service.is_connected())
        self.assertEqual(self.service.session.username, "alice")

    def test_second_connect_keeps_session(self):
        session = self.service.session
        thread = self.service.recv_thread
        self.assertTrue(self.service.connect('127.0.0.1', self.server.port, "alice"))
        self.assertIs(self.service.session, session)
        self.assertIs(self.service.recv_thread, thread)


class TestConnectFailure(unittest.TestCase):
    """Test cases for failed connects."""

    def test_refused_connection_returns_false(self):
        probe = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        probe.bind(('127.0.0.1', 0))
        port = probe.getsockname()[1]
        probe.close()

        service = ConnectionService()
        self.assertFalse(service.connect('127.0.0.1', port, "alice"))
        self.assertFalse(service.is_connected())
        self.assertIsNone(service.recv_thread)

    def test_empty_username_returns_false(self):
        server = FakeRelayServer()
        try:
            service = ConnectionService()
            self.assertFalse(service.connect('127.0.0.1', server.port, ""))
            self.assertFalse(service.is_connected())
        finally:
            server.close()

    def test_send_without_connection_raises(self):
        service = ConnectionService()
        with self.assertRaises(ConnectionError):
            service.send_message(create_text_message("alice", "hi"))
        service.disconnect()  # no-op


class TestInbound(ConnectionTestCase):
    """Test cases for the receive loop."""

    def test_message_is_queued_and_recorded(self):
        message = create_text_message("bob", "hello", recipient="alice")
        self.server.send(encode(message))

        event = self.next_event(EventKind.MESSAGE)
        self.assertEqual(event.message, message)
        self.assertEqual(self.service.session.history, (message,))

    def test_roster_push_updates_session(self):
        self.server.send(encode(create_roster_message("server", ["alice", "bob", "carol"])))

        event = self.next_event(EventKind.ROSTER)
        self.assertEqual([e.username for e in event.roster], ["alice", "bob", "carol"])
        self.assertEqual(self.service.session.online_usernames(), ["alice", "bob", "carol"])
        self.assertEqual(self.service.session.history, ())

    def test_corrupt_frame_is_dropped_and_loop_continues(self):
        garbage = b'{"type": "TEXT", "sender"'
        self.server.send(struct.pack('!I', len(garbage)) + garbage)
        self.server.send(encode(create_text_message("bob", "still here")))

        error_event = self.next_event(EventKind.PROTOCOL_ERROR)
        self.assertIsInstance(error_event.error, ProtocolError)
        event = self.next_event(EventKind.MESSAGE)
        self.assertEqual(event.message.text, "still here")
        self.assertTrue(self.service.is_connected())

    def test_remote_close_ends_session(self):
        self.server.conn.close()
        self.server.conn = None

        event = self.next_event(EventKind.DISCONNECTED)
        self.assertIsInstance(event.error, ConnectionError)
        self.assertFalse(self.service.is_connected())
        with self.assertRaises(ConnectionError):
            self.service.send_message(create_text_message("alice", "anyone?"))

    def test_out_of_sync_header_ends_session(self):
        self.server.send(struct.pack('!I', 0))

        event = self.next_event(EventKind.DISCONNECTED)
        self.assertIsInstance(event.error, ConnectionError)
        self.assertFalse(self.service.is_connected())

    def test_dispatcher_invokes_callback(self):
        on_message = Mock()
        on_event = Mock()
        dispatcher = MessageDispatcher(self.service.session, on_message, on_event)
        dispatcher.start()

        message = create_text_message("bob", "hi")
        self.server.send(encode(message))
        self.server.send(encode(create_roster_message("server", ["bob"])))
        session = self.service.session
        self.assertTrue(wait_until(lambda: session.roster and session.history))
        self.service.disconnect()
        dispatcher.join(TIMEOUT)

        self.assertFalse(dispatcher.is_alive())
        on_message.assert_called_once_with(message)
        kinds = [c.args[0].kind for c in on_event.call_args_list]
        self.assertEqual(kinds[-1], EventKind.DISCONNECTED)


class TestOutbound(ConnectionTestCase):
    """Test cases for send_message and disconnect."""

    def test_disconnect_sends_logout_before_close(self):
        self.server.read_handshake()

        self.service.disconnect()
        self.assertFalse(self.service.is_connected())

        logout = decode_body(read_body(self.server.conn))
        self.assertEqual(logout.type, MessageType.LOGOUT)
        self.assertEqual(logout.sender, "alice")
        self.assertEqual(self.server.conn.recv(1), b'')

        event = self.service.drain_events()[-1]
        self.assertEqual(event.kind, EventKind.DISCONNECTED)
        self.assertIsNone(event.error)

    def test_disconnect_is_idempotent(self):
        self.service.disconnect()
        self.service.disconnect()
        self.assertFalse(self.service.is_connected())
        kinds = [e.kind for e in self.service.drain_events()]
        self.assertEqual(kinds.count(EventKind.DISCONNECTED), 1)

    def test_failed_write_ends_session(self):
        broken = Mock(wraps=self.service.sock)
        broken.sendall.side_effect = OSError("broken pipe")
        self.service.sock = broken

        with self.assertRaises(ConnectionError):
            self.service.send_message(create_text_message("alice", "lost"))

        self.assertFalse(self.service.is_connected())
        event = self.next_event(EventKind.DISCONNECTED)
        self.assertIsInstance(event.error, ConnectionError)
        self.assertIn("broken pipe", str(event.error))

    def test_nothing_follows_logout(self):
        self.server.read_handshake()
        errors = []

        def send_late():
            try:
                self.service.send_message(create_text_message("alice", "late"))
            except ConnectionError as e:
                errors.append(e)

        with self.service._write_lock:
            closer = threading.Thread(target=self.service.disconnect)
            sender = threading.Thread(target=send_late)
            closer.start()
            sender.start()
            time.sleep(0.1)
        closer.join(TIMEOUT)
        sender.join(TIMEOUT)

        frames = []
        while True:
            try:
                frames.append(decode_body(read_body(self.server.conn)))
            except EOFError:
                break
        self.assertEqual(frames[-1].type, MessageType.LOGOUT)
        self.assertEqual(len(frames) + len(errors), 2)

    def test_invalid_message_is_not_written(self):
        with self.assertRaises(ProtocolError):
            self.service.send_message(create_text_message("", "no sender"))
        self.assertTrue(self.service.is_connected())

    def test_concurrent_senders_never_split_frames(self):
        """Frames from many threads arrive whole and in per-thread order."""
        self.server.read_handshake()
        senders, per_sender = 8, 25
        received = []

        def read_all():
            for _ in range(senders * per_sender):
                received.append(decode_body(read_body(self.server.conn)))

        reader = threading.Thread(target=read_all)
        reader.start()

        def send_many(index: int):
            for n in range(per_sender):
                text = f"{index}:{n}:" + "x" * (n * 997 + index * 131)
                self.service.send_message(create_text_message(f"user{index}", text))

        threads = [threading.Thread(target=send_many, args=(i,)) for i in range(senders)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(TIMEOUT * 4)
        reader.join(TIMEOUT * 4)

        self.assertEqual(len(received), senders * per_sender)
        for index in range(senders):
            sequence = [int(m.text.split(':')[1]) for m in received if m.sender == f"user{index}"]
            self.assertEqual(sequence, list(range(per_sender)))


if __name__ == '__main__':
    unittest.main()
