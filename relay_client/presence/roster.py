"""
Presence module.

The relay server pushes the complete list of online users as a TEXT message
whose text is ``USERLIST:`` followed by comma-separated usernames. Every push
replaces the whole roster; there is no incremental add/remove.
"""

from typing import List, Optional, Tuple

from relay_common.constants import USERLIST_PREFIX, USERLIST_SEPARATOR
from relay_common.errors import ProtocolError
from relay_common.protocol_definitions import Message, RosterEntry, is_roster_update


def parse_roster(text: str) -> Tuple[RosterEntry, ...]:
    """Parse a roster push into one online entry per username."""
    if not isinstance(text, str) or not text.startswith(USERLIST_PREFIX):
        raise ProtocolError("Not a roster update")

    seen = set()
    entries: List[RosterEntry] = []
    for name in text[len(USERLIST_PREFIX):].split(USERLIST_SEPARATOR):
        name = name.strip()
        if not name or name in seen:
            continue
        seen.add(name)
        entries.append(RosterEntry(username=name, online=True))
    return tuple(entries)


class PresenceHandler:
    """Applies roster pushes to a session."""

    def handle_message(self, message: Message, session) -> Optional[Tuple[RosterEntry, ...]]:
        """Replace the session roster if ``message`` is a roster push.

        Returns the new roster, or None when the message is ordinary content.
        """
        if not is_roster_update(message):
            return None
        roster = parse_roster(message.text)
        session.replace_roster(roster)
        return roster
