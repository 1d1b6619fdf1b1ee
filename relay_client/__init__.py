"""
Client package for the relay chat client.

This package contains the client-side session layer:
- Connection and session management
- Presence (roster) handling
- File transfer tasks
- Chat helpers and display formatting
- Configuration and utilities
"""
