"""
Server configuration module.

This module handles server-side configuration settings.
"""

import os

from chatroom_common.constants import (
    DEFAULT_SERVER_HOST, DEFAULT_PORT, DB_PATH, LOG_DIR, OUTBOX_SIZE,
    PING_INTERVAL, PING_TIMEOUT, MAX_MESSAGE_SIZE,
    ENV_HOST, ENV_PORT, ENV_DB_PATH, ENV_LOG_DIR
)


class ServerConfig:
    """Server configuration class."""

    def __init__(self, host: str = DEFAULT_SERVER_HOST, port: int = DEFAULT_PORT,
                 db_path: str = DB_PATH, logs_dir: str = LOG_DIR):
        self.host = host
        self.port = port

        # Message log storage
        self.db_path = db_path

        # Logging configuration
        self.logs_dir = logs_dir

        # Broadcast settings
        self.outbox_size = OUTBOX_SIZE

        # Connection settings
        self.ping_interval = PING_INTERVAL  # seconds
        self.ping_timeout = PING_TIMEOUT  # seconds
        self.max_message_size = MAX_MESSAGE_SIZE

    @classmethod
    def from_env(cls, environ=None) -> "ServerConfig":
        """Build a configuration from HOST, PORT, CHAT_DB_PATH and LOG_DIR."""
        environ = os.environ if environ is None else environ
        port = environ.get(ENV_PORT)
        try:
            port = int(port) if port else DEFAULT_PORT
        except ValueError:
            raise ValueError(f"Invalid {ENV_PORT} value: {port!r}")
        return cls(
            host=environ.get(ENV_HOST) or DEFAULT_SERVER_HOST,
            port=port,
            db_path=environ.get(ENV_DB_PATH) or DB_PATH,
            logs_dir=environ.get(ENV_LOG_DIR) or LOG_DIR
        )

    def get_connection_info(self):
        """Get connection information."""
        return {
            'host': self.host,
            'port': self.port
        }

    def get_storage_settings(self):
        """Get message log storage settings."""
        return {
            'db_path': self.db_path
        }

    def get_log_settings(self):
        """Get logging settings."""
        return {
            'logs_dir': self.logs_dir
        }
