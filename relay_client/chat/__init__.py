"""
Chat module for client-side messaging functionality.

Handles:
- Sending broadcast and private text messages
- Formatting received messages and file notices for display
"""
