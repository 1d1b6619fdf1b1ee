"""
Presence module for the client's view of online users.

Handles:
- Parsing roster pushes
- Replacing the session roster
"""

from relay_client.presence.roster import PresenceHandler, parse_roster

__all__ = ["PresenceHandler", "parse_roster"]
