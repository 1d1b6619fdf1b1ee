"""
Shared constants for the relay chat client.

This module contains the network defaults, buffer sizes and reserved
protocol tokens used across the protocol and client packages.
"""

# Network Configuration
DEFAULT_HOST = 'localhost'
DEFAULT_PORT = 9000
CONNECT_TIMEOUT = 10.0  # seconds, TCP connect only

# Framing
FRAME_HEADER_SIZE = 4  # bytes for frame length header
FRAME_HEADER_FORMAT = '!I'
MAX_FRAME_SIZE = 160 * 1024 * 1024  # base64 payload of MAX_FILE_SIZE plus envelope
ENCODING = 'utf-8'

# Buffer Sizes
CHUNK_SIZE = 8192
PROGRESS_LOG_INTERVAL = 1024 * 1024  # Log progress every 1MB
RECV_BUFFER_SIZE = 65536

# File Transfer
MAX_FILE_SIZE = 100 * 1024 * 1024  # 100MB
MAX_TRANSFER_WORKERS = 4
DOWNLOAD_DIR = 'downloads'

# Session
INBOUND_QUEUE_SIZE = 256
MAX_CHAT_HISTORY = 500
RECEIVE_THREAD_JOIN_TIMEOUT = 2.0  # seconds

# Presence
USERLIST_PREFIX = 'USERLIST:'
USERLIST_SEPARATOR = ','

# Display
BYTES_PER_MB = 1024.0 * 1024.0
TIME_FORMAT = '%H:%M'

# Attachment classification (lowercase, without the dot)
AUDIO_EXTENSIONS = frozenset({
    'mp3', 'wav', 'ogg', 'flac', 'aac', 'm4a', 'wma', 'opus',
})
VIDEO_EXTENSIONS = frozenset({
    'mp4', 'avi', 'mkv', 'mov', 'wmv', 'flv', 'webm', 'm4v',
})
NOTE_EXTENSIONS = frozenset({
    'txt', 'md', 'rtf', 'pdf', 'doc', 'docx', 'odt',
    'png', 'jpg', 'jpeg', 'gif', 'bmp',
})
