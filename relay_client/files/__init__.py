"""
File transfer module for client-side file operations.

Handles:
- Building attachment messages from files (chunked reads)
- Saving received attachments to disk (chunked writes)
- File transfer progress tracking
- Bounded worker pool for concurrent transfers
"""
