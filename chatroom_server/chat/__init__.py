"""
Chat module for server-side messaging functionality.

Handles:
- User presence tracking
- Message log persistence
- Per-connection sessions
- Message broadcasting
"""
