"""
Client logging module.

This module handles client-side logging functionality.
"""

import logging
import sys


class ClientLogger:
    """Client logging class."""

    def __init__(self, log_level: int = logging.INFO):
        self.logger = logging.getLogger('relay_client')
        self.logger.setLevel(log_level)

        # Remove existing handlers
        for handler in self.logger.handlers[:]:
            self.logger.removeHandler(handler)

        # Create console handler
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(log_level)

        # Create formatter
        formatter = logging.Formatter(
            '%(asctime)s [%(levelname)s] %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )
        console_handler.setFormatter(formatter)

        # Add handler to logger
        self.logger.addHandler(console_handler)

    def set_level(self, log_level: int):
        """Change the level of the logger and its handlers."""
        self.logger.setLevel(log_level)
        for handler in self.logger.handlers:
            handler.setLevel(log_level)

    def info(self, message: str):
        """Log info message."""
        self.logger.info(message)

    def error(self, message: str):
        """Log error message."""
        self.logger.error(message)

    def warning(self, message: str):
        """Log warning message."""
        self.logger.warning(message)

    def debug(self, message: str):
        """Log debug message."""
        self.logger.debug(message)

    def log_connection(self, host: str, port: int, success: bool):
        """Log connection attempt."""
        status = "Connected" if success else "Failed to connect"
        self.info(f"{status} to {host}:{port}")

    def log_handshake(self, username: str):
        """Log the username announcement."""
        self.info(f"Announced username '{username}'")

    def log_disconnect(self, username: str, reason: str = None):
        """Log session end."""
        if reason:
            self.warning(f"Session for '{username}' ended: {reason}")
        else:
            self.info(f"Disconnected '{username}'")

    def log_protocol_error(self, error: Exception):
        """Log a dropped frame."""
        self.warning(f"Dropped malformed frame: {error}")

    def log_transfer_progress(self, action: str, name: str, done: int, total: int):
        """Log transfer progress."""
        percent = (done / total) * 100 if total else 100.0
        self.info(f"[{action}] {name}: {done}/{total} bytes ({percent:.1f}%)")

    def log_file_sent(self, filename: str, size: int, recipient: str = None):
        """Log a prepared outbound file."""
        target = recipient or "everyone"
        self.info(f"File ready: {filename} ({size} bytes) for {target}")

    def log_file_saved(self, filename: str, size: int, path: str):
        """Log a saved inbound file."""
        self.info(f"File saved: {filename} ({size} bytes) to {path}")

    def show_roster(self, usernames: list):
        """Show roster."""
        self.info(f"[INFO] Online users ({len(usernames)}): {', '.join(usernames)}")

    def log_error(self, operation: str, error: Exception):
        """Log error with operation context."""
        self.error(f"Error in {operation}: {error}")


# Global logger instance
logger = ClientLogger()
