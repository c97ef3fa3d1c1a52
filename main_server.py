#!/usr/bin/env python3
"""
Chatroom Server - Main Entry Point

Real-time group chat over WebSocket:
- Login with a unique display name
- Message history on login
- Message broadcast and owner-only deletion
- Online user list

Usage:
    python main_server.py

Optional arguments:
    --host HOST           Bind address (default: $HOST or 0.0.0.0)
    --port PORT           WebSocket and /health port (default: $PORT or 3000)
    --db PATH             Message log file (default: $CHAT_DB_PATH or db.json)
    --log-dir DIR         Chat history log directory (default: $LOG_DIR or logs)
    --debug               Enable debug logging
"""

if __name__ == "__main__":
    from chatroom_server.main_server import main

    main()
