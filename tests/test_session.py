#!/usr/bin/env python3
"""
Unit tests for session state, the event queue, the Qt message pump and
client configuration.
"""

import logging
import threading
import unittest
from unittest.mock import patch

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from PyQt6.QtCore import QCoreApplication, Qt

from relay_client.connection.message_pump import MessagePump
from relay_client.connection.session import EventKind, Session, SessionEvent
from relay_client.utils.config import ClientConfig
from relay_client.utils.logger import logger
from relay_common.errors import ConnectionError, ProtocolError
from relay_common.protocol_definitions import RosterEntry, create_text_message


class TestSession(unittest.TestCase):
    """Test cases for Session."""

    def test_history_is_bounded(self):
        session = Session("alice", history_size=3)
        messages = [create_text_message("bob", str(n)) for n in range(5)]
        for message in messages:
            session.record(message)
        self.assertEqual(session.history, tuple(messages[2:]))

    def test_full_queue_gives_up_when_not_running(self):
        session = Session("alice", queue_size=1)
        running = threading.Event()
        self.assertTrue(session.publish(SessionEvent(EventKind.MESSAGE), running))
        with patch('relay_client.connection.session.PUBLISH_POLL_INTERVAL', 0.01):
            self.assertFalse(session.publish(SessionEvent(EventKind.MESSAGE), running))

    def test_terminal_event_never_blocks(self):
        session = Session("alice", queue_size=2)
        session.publish(SessionEvent(EventKind.MESSAGE))
        session.publish(SessionEvent(EventKind.PROTOCOL_ERROR))
        session.publish(SessionEvent(EventKind.DISCONNECTED))

        kinds = [e.kind for e in session.drain_events()]
        self.assertEqual(kinds, [EventKind.PROTOCOL_ERROR, EventKind.DISCONNECTED])
        self.assertIsNone(session.next_event(timeout=0.01))


class TestMessagePump(unittest.TestCase):
    """Test cases for the Qt bridge."""

    @classmethod
    def setUpClass(cls):
        """Create QCoreApplication once for all tests."""
        cls.app = QCoreApplication.instance() or QCoreApplication([])

    def test_events_become_signals(self):
        session = Session("alice")
        message = create_text_message("bob", "hi")
        roster = (RosterEntry("bob"),)
        protocol_error = ProtocolError("bad frame")
        lost = ConnectionError("gone")
        for event in (
            SessionEvent(EventKind.MESSAGE, message=message),
            SessionEvent(EventKind.ROSTER, roster=roster),
            SessionEvent(EventKind.PROTOCOL_ERROR, error=protocol_error),
            SessionEvent(EventKind.DISCONNECTED, error=lost),
        ):
            session.publish(event)

        pump = MessagePump(session)
        seen = []
        direct = Qt.ConnectionType.DirectConnection
        pump.message_received.connect(lambda m: seen.append(('message', m)), direct)
        pump.roster_updated.connect(lambda r: seen.append(('roster', r)), direct)
        pump.protocol_error.connect(lambda e: seen.append(('protocol_error', e)), direct)
        pump.disconnected.connect(lambda e: seen.append(('disconnected', e)), direct)

        pump.start()
        self.assertTrue(pump.wait(5000))
        self.assertEqual(seen, [
            ('message', message),
            ('roster', roster),
            ('protocol_error', protocol_error),
            ('disconnected', lost),
        ])


class TestClientConfig(unittest.TestCase):
    """Test cases for ClientConfig."""

    def test_from_env(self):
        config = ClientConfig.from_env({'SERVER_IP': '10.0.0.5', 'SERVER_PORT': '7000', 'CHAT_USERNAME': 'alice'})
        self.assertEqual(config.get_connection_info(), {'host': '10.0.0.5', 'port': 7000, 'username': 'alice'})

    def test_defaults(self):
        config = ClientConfig.from_env({})
        self.assertEqual(config.port, 9000)
        self.assertTrue(config.username.startswith('user_'))
        self.assertEqual(config.get_transfer_settings()['chunk_size'], 8192)


class TestClientLogger(unittest.TestCase):
    """Test cases for ClientLogger."""

    def tearDown(self):
        logger.set_level(logging.INFO)

    def test_set_level_applies_to_handlers(self):
        logger.set_level(logging.DEBUG)
        self.assertEqual(logger.logger.level, logging.DEBUG)
        self.assertTrue(all(h.level == logging.DEBUG for h in logger.logger.handlers))


if __name__ == '__main__':
    unittest.main()
