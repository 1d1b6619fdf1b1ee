"""
Display formatting for chat messages.

Turns protocol messages into the single lines a presentation layer shows.
"""

from dataclasses import dataclass
from datetime import datetime

from relay_common.constants import BYTES_PER_MB, TIME_FORMAT
from relay_common.protocol_definitions import Message, MessageType


@dataclass(frozen=True)
class DisplayMessage:
    """A rendered chat line."""
    content: str
    is_self: bool


def format_timestamp(timestamp: int) -> str:
    """Format epoch milliseconds as local HH:MM."""
    return datetime.fromtimestamp(timestamp / 1000).strftime(TIME_FORMAT)


def format_size_mb(size: int) -> str:
    return f"{size / BYTES_PER_MB:.2f} MB"


def format_text_message(message: Message, local_username: str) -> DisplayMessage:
    """``HH:MM [sender] text`` for broadcasts, ``HH:MM [PM from sender] text`` otherwise."""
    if message.recipient is not None:
        prefix = f"[PM from {message.sender}] "
    else:
        prefix = f"[{message.sender}] "
    content = f"{format_timestamp(message.timestamp)} {prefix}{message.text}"
    return DisplayMessage(content, message.sender == local_username)


def format_file_received(message: Message) -> DisplayMessage:
    content = (f"Received {message.type.value.lower()} file: {message.filename} "
               f"({format_size_mb(message.file_size or 0)})")
    return DisplayMessage(content, False)


def format_file_sent(filename: str, message_type: MessageType, size: int) -> DisplayMessage:
    content = f"Sent {message_type.value.lower()} file: {filename} ({format_size_mb(size)})"
    return DisplayMessage(content, True)
