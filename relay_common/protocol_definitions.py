"""
Protocol definitions for the relay chat client.

This module defines the message record exchanged with the relay server and
its wire format. A frame is a 4-byte big-endian length header followed by a
UTF-8 JSON body; binary payloads travel base64-encoded inside the body.
"""

import base64
import binascii
import json
import os
import struct
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

from relay_common.constants import (
    AUDIO_EXTENSIONS, ENCODING, FRAME_HEADER_FORMAT, FRAME_HEADER_SIZE,
    MAX_FRAME_SIZE, NOTE_EXTENSIONS, USERLIST_PREFIX, USERLIST_SEPARATOR,
    VIDEO_EXTENSIONS
)
from relay_common.errors import ProtocolError


class MessageType(Enum):
    """Message types understood by the relay server."""
    TEXT = 'TEXT'
    FILE = 'FILE'
    AUDIO = 'AUDIO'
    VIDEO = 'VIDEO'
    NOTE = 'NOTE'
    LOGOUT = 'LOGOUT'

    @property
    def carries_payload(self) -> bool:
        return self in PAYLOAD_TYPES


PAYLOAD_TYPES = frozenset({
    MessageType.FILE, MessageType.AUDIO, MessageType.VIDEO, MessageType.NOTE
})


def now_millis() -> int:
    """Current time as epoch milliseconds."""
    return int(time.time() * 1000)


@dataclass
class Message:
    """Protocol record. ``recipient`` of None means broadcast."""
    type: MessageType
    sender: str
    recipient: Optional[str] = None
    text: Optional[str] = None
    filename: Optional[str] = None
    file_size: Optional[int] = None
    payload: Optional[bytes] = field(default=None, repr=False)
    timestamp: int = field(default_factory=now_millis)

    @property
    def is_broadcast(self) -> bool:
        return self.recipient is None

    @property
    def is_private(self) -> bool:
        return self.recipient is not None

    @property
    def is_file(self) -> bool:
        return self.type.carries_payload

    @property
    def is_roster_update(self) -> bool:
        return is_roster_update(self)


@dataclass(frozen=True)
class RosterEntry:
    """One user in the client's view of who is online."""
    username: str
    online: bool = True


# ============================================================================
# MESSAGE FACTORIES
# ============================================================================

def create_text_message(sender: str, text: str, recipient: Optional[str] = None) -> Message:
    """Create a text message; a recipient makes it private."""
    return Message(MessageType.TEXT, sender, recipient=recipient, text=text)


def create_file_message(sender: str, filename: str, payload: bytes,
                        message_type: MessageType = MessageType.FILE,
                        recipient: Optional[str] = None) -> Message:
    """Create an attachment message carrying ``payload``."""
    if not message_type.carries_payload:
        raise ProtocolError(f"{message_type.value} messages cannot carry a payload")
    return Message(message_type, sender, recipient=recipient, filename=filename,
                   file_size=len(payload), payload=payload)


def create_logout_message(sender: str) -> Message:
    """Create a logout message."""
    return Message(MessageType.LOGOUT, sender)


def create_roster_message(sender: str, usernames) -> Message:
    """Create the text message a relay server uses to push the roster."""
    return create_text_message(sender, USERLIST_PREFIX + USERLIST_SEPARATOR.join(usernames))


# ============================================================================
# SEMANTICS
# ============================================================================

def is_roster_update(message: Message) -> bool:
    """Whether ``message`` is a roster push rather than user content.

    The relay server overloads TEXT messages: a text starting with the
    reserved ``USERLIST:`` token is the complete list of online users.
    """
    return (message.type is MessageType.TEXT
            and isinstance(message.text, str)
            and message.text.startswith(USERLIST_PREFIX))


def is_deliverable_to(message: Message, username: str) -> bool:
    """Whether the relay delivers ``message`` to ``username``.

    Broadcasts reach everybody; private messages reach the recipient and are
    echoed to the sender.
    """
    if message.recipient is None:
        return True
    return username in (message.recipient, message.sender)


def determine_file_type(filename: str) -> MessageType:
    """Map a filename's extension to the attachment type used for display."""
    _, ext = os.path.splitext(filename or '')
    ext = ext[1:].lower()
    if ext in AUDIO_EXTENSIONS:
        return MessageType.AUDIO
    if ext in VIDEO_EXTENSIONS:
        return MessageType.VIDEO
    if ext in NOTE_EXTENSIONS:
        return MessageType.NOTE
    return MessageType.FILE


def validate_message(message: Message) -> None:
    """Check the per-type invariants, raising ProtocolError on violation."""
    if not isinstance(message.type, MessageType):
        raise ProtocolError(f"Unknown message type: {message.type!r}")
    if not isinstance(message.sender, str) or not message.sender:
        raise ProtocolError("Message sender is required")
    if message.recipient is not None and (not isinstance(message.recipient, str) or not message.recipient):
        raise ProtocolError("Message recipient must be a non-empty string when present")
    if not isinstance(message.timestamp, int) or isinstance(message.timestamp, bool):
        raise ProtocolError("Message timestamp must be an integer")

    if message.type is MessageType.TEXT:
        if not isinstance(message.text, str):
            raise ProtocolError("TEXT message requires text")
        if message.payload is not None or message.filename is not None or message.file_size is not None:
            raise ProtocolError("TEXT message cannot carry a file")
    elif message.type.carries_payload:
        if message.text is not None:
            raise ProtocolError(f"{message.type.value} message cannot carry text")
        if not isinstance(message.filename, str) or not message.filename:
            raise ProtocolError(f"{message.type.value} message requires a filename")
        if not isinstance(message.payload, (bytes, bytearray)):
            raise ProtocolError(f"{message.type.value} message requires a payload")
        if type(message.file_size) is not int:
            raise ProtocolError(f"{message.type.value} message requires an integer file size")
        if message.file_size != len(message.payload):
            raise ProtocolError(
                f"File size mismatch: declared {message.file_size}, payload {len(message.payload)} bytes"
            )
    else:
        if message.text is not None or message.payload is not None or message.file_size is not None:
            raise ProtocolError("LOGOUT message carries no content")


# ============================================================================
# WIRE FORMAT
# ============================================================================

def message_to_dict(message: Message) -> Dict[str, Any]:
    """Convert a validated message to its JSON body fields."""
    validate_message(message)
    body = {
        "type": message.type.value,
        "sender": message.sender,
        "timestamp": message.timestamp,
    }
    if message.recipient is not None:
        body["recipient"] = message.recipient
    if message.text is not None:
        body["text"] = message.text
    if message.type.carries_payload:
        body["filename"] = message.filename
        body["fileSize"] = message.file_size
        body["payload"] = base64.b64encode(bytes(message.payload)).decode('ascii')
    return body


def message_from_dict(body: Dict[str, Any]) -> Message:
    """Build a message from JSON body fields, raising ProtocolError if invalid."""
    if not isinstance(body, dict):
        raise ProtocolError("Frame body is not a JSON object")

    try:
        message_type = MessageType(body.get("type"))
    except ValueError:
        raise ProtocolError(f"Unknown message type: {body.get('type')!r}")

    payload = body.get("payload")
    if payload is not None:
        if not isinstance(payload, str):
            raise ProtocolError("Payload must be base64 text")
        try:
            payload = base64.b64decode(payload.encode('ascii'), validate=True)
        except (binascii.Error, UnicodeEncodeError) as e:
            raise ProtocolError(f"Invalid payload encoding: {e}")

    message = Message(
        type=message_type,
        sender=body.get("sender"),
        recipient=body.get("recipient"),
        text=body.get("text"),
        filename=body.get("filename"),
        file_size=body.get("fileSize"),
        payload=payload,
        timestamp=body.get("timestamp"),
    )
    validate_message(message)
    return message


def pack_frame(body: bytes) -> bytes:
    """Prefix ``body`` with its length header."""
    if len(body) > MAX_FRAME_SIZE:
        raise ProtocolError(f"Frame too large: {len(body)} bytes (max: {MAX_FRAME_SIZE} bytes)")
    return struct.pack(FRAME_HEADER_FORMAT, len(body)) + body


def read_frame_header(header: bytes) -> int:
    """Parse a frame header and return the body length."""
    if len(header) != FRAME_HEADER_SIZE:
        raise ProtocolError(f"Truncated frame header: {len(header)} bytes")
    length = struct.unpack(FRAME_HEADER_FORMAT, header)[0]
    if length == 0 or length > MAX_FRAME_SIZE:
        raise ProtocolError(f"Invalid frame length: {length}")
    return length


def encode(message: Message) -> bytes:
    """Encode a message into one frame."""
    body = json.dumps(message_to_dict(message), ensure_ascii=False).encode(ENCODING)
    return pack_frame(body)


def decode_body(body: bytes) -> Message:
    """Decode a frame body whose header has already been consumed."""
    try:
        data = json.loads(bytes(body).decode(ENCODING))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ProtocolError(f"Malformed frame body: {e}")
    return message_from_dict(data)


def decode(frame: bytes) -> Message:
    """Decode one complete frame into a message."""
    length = read_frame_header(bytes(frame[:FRAME_HEADER_SIZE]))
    body = frame[FRAME_HEADER_SIZE:]
    if len(body) != length:
        raise ProtocolError(f"Frame length mismatch: header says {length}, got {len(body)} bytes")
    return decode_body(body)


def encode_handshake(username: str) -> bytes:
    """Encode the frame that announces ``username`` right after connecting."""
    if not isinstance(username, str) or not username.strip():
        raise ProtocolError("Username is required for the handshake")
    body = json.dumps({"username": username}, ensure_ascii=False).encode(ENCODING)
    return pack_frame(body)
