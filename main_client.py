#!/usr/bin/env python3
"""
Relay Chat Client - Main Entry Point

Command-line client that integrates:
- Broadcast and private text chat
- Online user list
- File sending with progress tracking
- Automatic saving of received files

Usage:
    python main_client.py [--username NAME] [--server-ip HOST] [--port PORT] [--verbose]

Commands:
    <text>                  Send to everyone
    /msg <user> <text>      Send a private message
    /send <path> [user]     Send a file (to everyone or to one user)
    /users                  Show online users
    /quit                   Log out and exit
"""

import argparse
import logging
import os
import sys

from relay_client.chat.chat_client import ChatClient
from relay_client.chat.display import format_file_sent
from relay_client.connection import ConnectionService, EventKind, MessageDispatcher
from relay_client.files.file_transfer import FileTransferService
from relay_client.utils.config import ClientConfig
from relay_client.utils.logger import logger
from relay_common.errors import ConnectionError, TransferError

HELP_TEXT = """Commands:
  <text>                  Send to everyone
  /msg <user> <text>      Send a private message
  /send <path> [user]     Send a file
  /users                  Show online users
  /help                   Show this help
  /quit                   Log out and exit"""


class RelayChatClient:
    """Main client class that integrates all functionality."""

    def __init__(self, config: ClientConfig):
        self.config = config
        self.connection = ConnectionService(config)
        self.chat_client = ChatClient(self.connection)
        self.transfers = FileTransferService(config)
        self.dispatcher = None

    def start(self) -> bool:
        """Connect and start delivering inbound events."""
        if not self.connection.connect(self.config.host, self.config.port, self.config.username):
            return False
        self.dispatcher = MessageDispatcher(self.connection.session, on_event=self.handle_event)
        self.dispatcher.start()
        return True

    def handle_event(self, event):
        """Print inbound events; save received files."""
        if event.kind is EventKind.MESSAGE:
            message = event.message
            line = self.chat_client.handle_message(message)
            if line is not None:
                print(line.content)
            if message.is_file and message.sender != self.connection.username:
                self.transfers.save_file(message, self.config.download_dir)
        elif event.kind is EventKind.ROSTER:
            names = [entry.username for entry in event.roster]
            print(f"[USERS] {', '.join(names) or '(none)'}")
        elif event.kind is EventKind.PROTOCOL_ERROR:
            print(f"[ERROR] Dropped malformed message: {event.error}")
        elif event.kind is EventKind.DISCONNECTED:
            reason = f": {event.error}" if event.error else ""
            print(f"[INFO] Disconnected{reason}")

    def handle_command(self, line: str) -> bool:
        """Handle one line of input. Returns False when the user quits."""
        line = line.strip()
        if not line:
            return True

        if line in ('/quit', '/exit'):
            return False
        if line == '/help':
            print(HELP_TEXT)
        elif line == '/users':
            session = self.connection.session
            names = session.online_usernames() if session else []
            print(f"[USERS] {', '.join(names) or '(none)'}")
        elif line.startswith('/msg '):
            parts = line.split(maxsplit=2)
            if len(parts) < 3:
                print("Usage: /msg <user> <text>")
            else:
                self.chat_client.send_private(parts[1], parts[2])
        elif line.startswith('/send '):
            self._send_file(line.split(maxsplit=2)[1:])
        elif line.startswith('/'):
            print(f"Unknown command: {line.split()[0]} (try /help)")
        else:
            self.chat_client.send_broadcast(line)
        return True

    def _send_file(self, args):
        path = os.path.expanduser(args[0])
        recipient = args[1] if len(args) > 1 else None
        task = self.transfers.send_file(self.connection, path, recipient)

        def _report(finished):
            try:
                message = finished.result()
            except TransferError as e:
                print(f"[ERROR] Upload failed: {e}")
                return
            print(format_file_sent(message.filename, message.type, message.file_size).content)

        task.add_done_callback(_report)

    def run_interactive(self):
        """Read commands from stdin until /quit, EOF or disconnect."""
        print(HELP_TEXT)
        try:
            for line in sys.stdin:
                if not self.connection.is_connected():
                    break
                try:
                    if not self.handle_command(line):
                        break
                except ConnectionError as e:
                    logger.log_error("send", e)
                    break
        except KeyboardInterrupt:
            print("\n[INFO] Interrupted by user")
        finally:
            self.stop()

    def stop(self):
        """Log out and wait for transfers in flight."""
        self.connection.disconnect()
        self.transfers.shutdown(wait=True)
        if self.dispatcher is not None:
            self.dispatcher.join(timeout=1.0)


def main():
    """Main entry point."""
    defaults = ClientConfig.from_env()
    parser = argparse.ArgumentParser(description='Relay Chat Client')
    parser.add_argument('--username', type=str, default=None,
                        help='Username for chat (default: asked on start)')
    parser.add_argument('--server-ip', type=str, default=defaults.host,
                        help=f'Server IP address (default: {defaults.host})')
    parser.add_argument('--port', type=int, default=defaults.port,
                        help=f'Server port (default: {defaults.port})')
    parser.add_argument('--download-dir', type=str, default=defaults.download_dir,
                        help=f'Where received files are saved (default: {defaults.download_dir})')
    parser.add_argument('--verbose', action='store_true',
                        help='Show debug logging')

    args = parser.parse_args()
    if args.verbose:
        logger.set_level(logging.DEBUG)

    username = args.username or os.environ.get('CHAT_USERNAME')
    if not username:
        username = input("Enter username: ").strip() or "anonymous"

    config = ClientConfig(args.server_ip, args.port, username)
    config.download_dir = args.download_dir

    client = RelayChatClient(config)
    if not client.start():
        print(f"[ERROR] Failed to connect to {config.host}:{config.port}")
        sys.exit(1)
    client.run_interactive()


if __name__ == "__main__":
    main()
