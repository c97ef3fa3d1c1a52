"""
Server logging module.

This module handles server-side logging functionality.
"""

import logging
import os
from datetime import datetime
from pathlib import Path

from chatroom_common.constants import LOG_DIR, CHAT_LOG_FILE, ENV_LOG_DIR, ENV_LOG_LEVEL


class ServerLogger:
    """Server logging class."""

    def __init__(self, logs_dir: str = LOG_DIR, log_level: int = logging.INFO):
        # Set up main logger
        self.logger = logging.getLogger('chatroom_server')
        self.logger.setLevel(log_level)

        # Remove existing handlers
        for handler in self.logger.handlers[:]:
            self.logger.removeHandler(handler)

        # Create console handler
        console_handler = logging.StreamHandler()
        console_handler.setLevel(log_level)

        # Create formatter
        formatter = logging.Formatter(
            '%(asctime)s [%(levelname)s] %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )
        console_handler.setFormatter(formatter)

        # Add handler to logger
        self.logger.addHandler(console_handler)

        self.set_logs_dir(logs_dir)

    def set_logs_dir(self, logs_dir: str):
        """Point the chat history file at a new directory."""
        self.logs_dir = Path(logs_dir)
        self.chat_log_path = self.logs_dir / CHAT_LOG_FILE

    def set_level(self, log_level: int):
        """Change the level of the logger and its handlers."""
        self.logger.setLevel(log_level)
        for handler in self.logger.handlers:
            handler.setLevel(log_level)

    def info(self, message: str):
        """Log info message."""
        self.logger.info(message)

    def error(self, message: str):
        """Log error message."""
        self.logger.error(message)

    def warning(self, message: str):
        """Log warning message."""
        self.logger.warning(message)

    def debug(self, message: str):
        """Log debug message."""
        self.logger.debug(message)

    def log_connection(self, addr, connection_id: int):
        """Log client connection."""
        self.info(f"New connection from {addr}, assigned connection_id={connection_id}")

    def log_login(self, username: str, connection_id: int):
        """Log user login."""
        self.info(f"User '{username}' logged in on connection_id={connection_id}")

    def log_disconnect(self, username: str, connection_id: int):
        """Log client disconnect."""
        if username:
            self.info(f"User '{username}' (connection_id={connection_id}) left")
        else:
            self.info(f"Connection {connection_id} closed before login")

    def log_chat(self, username: str, message_id: str, text: str):
        """Log chat message."""
        self.info(f"Chat from {username} ({message_id}): {text}")
        self._write_to_file(self.chat_log_path, f"{datetime.now().isoformat()} | CREATE | {username} | {message_id} | {text}")

    def log_delete(self, username: str, message_id: str):
        """Log message deletion."""
        self.info(f"Message {message_id} deleted by {username}")
        self._write_to_file(self.chat_log_path, f"{datetime.now().isoformat()} | DELETE | {username} | {message_id}")

    def log_error(self, operation: str, error: Exception):
        """Log error with operation context."""
        self.error(f"Error in {operation}: {error}")

    def _write_to_file(self, file_path: Path, content: str):
        """Write content to log file."""
        try:
            file_path.parent.mkdir(parents=True, exist_ok=True)
            with open(file_path, 'a', encoding='utf-8') as f:
                f.write(content + '\n')
        except OSError as e:
            self.error(f"Failed to write to log file {file_path}: {e}")


def _level_from_env() -> int:
    level = logging.getLevelName(os.environ.get(ENV_LOG_LEVEL, 'INFO').upper())
    return level if isinstance(level, int) else logging.INFO


# Global logger instance
logger = ServerLogger(os.environ.get(ENV_LOG_DIR, LOG_DIR), _level_from_env())
