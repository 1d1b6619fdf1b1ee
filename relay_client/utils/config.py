"""
Client configuration module.

This module handles client-side configuration settings.
"""

import os

from relay_common.constants import (
    CHUNK_SIZE, CONNECT_TIMEOUT, DEFAULT_HOST, DEFAULT_PORT, DOWNLOAD_DIR,
    INBOUND_QUEUE_SIZE, MAX_FILE_SIZE, MAX_TRANSFER_WORKERS, PROGRESS_LOG_INTERVAL
)


class ClientConfig:
    """Client configuration class."""

    def __init__(self, host: str = DEFAULT_HOST, port: int = DEFAULT_PORT, username: str = None):
        self.host = host
        self.port = port
        self.username = username or f"user_{id(self) % 10000}"

        # File transfer settings
        self.chunk_size = CHUNK_SIZE
        self.progress_log_interval = PROGRESS_LOG_INTERVAL
        self.max_file_size = MAX_FILE_SIZE
        self.max_transfer_workers = MAX_TRANSFER_WORKERS
        self.download_dir = DOWNLOAD_DIR

        # Connection settings
        self.connect_timeout = CONNECT_TIMEOUT
        self.inbound_queue_size = INBOUND_QUEUE_SIZE

    @classmethod
    def from_env(cls, environ=None) -> 'ClientConfig':
        """Build a configuration from SERVER_IP, SERVER_PORT and CHAT_USERNAME."""
        environ = os.environ if environ is None else environ
        return cls(
            host=environ.get('SERVER_IP', DEFAULT_HOST),
            port=int(environ.get('SERVER_PORT', DEFAULT_PORT)),
            username=environ.get('CHAT_USERNAME') or None,
        )

    def get_connection_info(self):
        """Get connection information."""
        return {
            'host': self.host,
            'port': self.port,
            'username': self.username
        }

    def get_transfer_settings(self):
        """Get file transfer settings."""
        return {
            'chunk_size': self.chunk_size,
            'progress_log_interval': self.progress_log_interval,
            'max_file_size': self.max_file_size,
            'max_transfer_workers': self.max_transfer_workers,
            'download_dir': self.download_dir
        }
