"""
Connection module for the client's session with the relay server.

Handles:
- Connecting and announcing the username
- Receiving and decoding frames on a dedicated thread
- Serialized outbound writes
- Session state and the inbound event queue
"""

from relay_client.connection.connection_service import ConnectionService
from relay_client.connection.dispatcher import MessageDispatcher
from relay_client.connection.session import EventKind, Session, SessionEvent

__all__ = ["ConnectionService", "MessageDispatcher", "EventKind", "Session", "SessionEvent"]
