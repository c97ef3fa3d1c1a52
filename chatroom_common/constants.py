"""
Shared constants for the chatroom service.

This module contains all constants used by the server and its wire protocol.
"""

# Network Configuration
DEFAULT_SERVER_HOST = '0.0.0.0'
DEFAULT_PORT = 3000
HEALTH_PATH = '/health'

# Environment overrides
ENV_HOST = 'HOST'
ENV_PORT = 'PORT'
ENV_DB_PATH = 'CHAT_DB_PATH'
ENV_LOG_DIR = 'LOG_DIR'
ENV_LOG_LEVEL = 'LOG_LEVEL'

# Keepalive (seconds)
PING_INTERVAL = 15
PING_TIMEOUT = 45

# Limits
MAX_MESSAGE_SIZE = 1024 * 1024  # 1MB per frame
OUTBOX_SIZE = 256  # queued events per connection before it is dropped

# Storage
DB_PATH = 'db.json'

# Logging
LOG_DIR = 'logs'
CHAT_LOG_FILE = 'chat_history.log'

# User-facing error texts
EMPTY_NAME_ERROR = 'Username cannot be empty.'
NAME_TAKEN_ERROR = 'This username is already in use.'
NOT_OWNER_ERROR = 'You can only delete your own messages.'
MALFORMED_FRAME_ERROR = 'Malformed JSON'


# Message Types
class MessageTypes:
    # Client to Server
    LOGIN = 'login'
    SEND_MESSAGE = 'sendMessage'
    DELETE_MESSAGE = 'deleteMessage'

    # Server to Client
    LOGIN_ERROR = 'loginError'
    LOGIN_SUCCESS = 'loginSuccess'
    USER_LIST = 'userList'
    MESSAGE_CREATED = 'messageCreated'
    MESSAGE_DELETED = 'messageDeleted'
    ACTION_ERROR = 'actionError'
    ERROR = 'error'
