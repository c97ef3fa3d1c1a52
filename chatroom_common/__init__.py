"""
Shared definitions for the chatroom service.

Contains:
- Network, storage and logging defaults
- Wire message types and user-facing error texts
- Message structures and frame builders
"""
