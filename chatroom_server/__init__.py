"""
Server package for the chatroom service.

This package contains all server-side functionality including:
- Presence tracking and name uniqueness
- Durable message log
- Command handling and event broadcast
- WebSocket listener and health endpoint
- Configuration and utilities
"""
