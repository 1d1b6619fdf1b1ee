"""
Chat client module.

This module handles client-side chat messaging functionality.
"""

from typing import Optional

from relay_client.chat.display import DisplayMessage, format_file_received, format_text_message
from relay_client.utils.logger import logger
from relay_common.constants import USERLIST_PREFIX
from relay_common.errors import UserError
from relay_common.protocol_definitions import Message, MessageType, create_text_message


def validate_outbound_text(text: str) -> str:
    """Return the trimmed text, or raise UserError if it must not be sent.

    Text starting with the roster token would be read as a roster push by
    every receiving client, so it is refused rather than rewritten.
    """
    text = (text or '').strip()
    if not text:
        raise UserError("Empty message")
    if text.startswith(USERLIST_PREFIX):
        raise UserError(f"Messages cannot start with the reserved token '{USERLIST_PREFIX}'")
    return text


class ChatClient:
    """Client-side chat functionality."""

    def __init__(self, connection):
        self.connection = connection

    @property
    def username(self) -> Optional[str]:
        return self.connection.username

    def send_text(self, text: str, recipient: Optional[str] = None) -> Optional[Message]:
        """Send a text message; a recipient makes it private.

        Invalid input is a no-op returning None. Transport failures raise
        ConnectionError.
        """
        try:
            text = validate_outbound_text(text)
        except UserError as e:
            logger.warning(f"[WARNING] Message not sent: {e}")
            return None

        message = create_text_message(self.username, text, recipient)
        self.connection.send_message(message)
        return message

    def send_broadcast(self, text: str) -> Optional[Message]:
        """Send a text message to all users."""
        return self.send_text(text)

    def send_private(self, recipient: str, text: str) -> Optional[Message]:
        """Send a private message to a specific user."""
        if not recipient:
            logger.warning("[WARNING] Message not sent: no recipient")
            return None
        return self.send_text(text, recipient)

    def handle_message(self, message: Message) -> Optional[DisplayMessage]:
        """Render an inbound message for display; None if it is not chat content."""
        if message.is_roster_update:
            return None
        if message.type is MessageType.TEXT:
            return format_text_message(message, self.username)
        if message.is_file:
            return format_file_received(message)
        return None
