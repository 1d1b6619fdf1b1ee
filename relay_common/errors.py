"""
Error taxonomy for the relay chat client.

- ConnectionError: handshake/transport failure, or a fatal receive-loop I/O error.
- ProtocolError: malformed frame; the frame is dropped and the session continues.
- TransferError: read/write failure in a file transfer task.
- UserError: invalid user input such as empty text; handled as a no-op.
"""

import builtins


class RelayError(Exception):
    """Base class for all relay chat client errors."""


class ConnectionError(RelayError, builtins.ConnectionError):
    """Raised when the session transport cannot be opened or has failed."""


class ProtocolError(RelayError):
    """Raised when a frame or message does not follow the wire protocol."""


class TransferError(RelayError):
    """Raised when a file send or save task fails."""

    def __init__(self, message: str, path: str = None):
        super().__init__(message)
        self.path = path


class UserError(RelayError):
    """Raised for invalid user input; callers treat it as a no-op."""
