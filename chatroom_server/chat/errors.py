"""
Chat error types.

Login rejections and delete authorization failures are reported to the acting
connection only; a missing delete target is never surfaced to clients.
"""

from chatroom_common.constants import EMPTY_NAME_ERROR, NAME_TAKEN_ERROR, NOT_OWNER_ERROR


class ChatError(Exception):
    """Base class for chat errors with a user-facing message."""

    default_message = ''

    def __init__(self, message: str = None):
        super().__init__(message or self.default_message)


class EmptyNameError(ChatError):
    """Login name is blank after trimming."""
    default_message = EMPTY_NAME_ERROR


class NameTakenError(ChatError):
    """Login name is already claimed by another connection."""
    default_message = NAME_TAKEN_ERROR

    def __init__(self, name: str, message: str = None):
        super().__init__(message)
        self.name = name


class ActionError(ChatError):
    """Requester is not allowed to act on a message."""
    default_message = NOT_OWNER_ERROR


class MessageNotFoundError(ChatError):
    """No message with the given id exists in the log."""

    def __init__(self, message_id: str):
        super().__init__(f"Message {message_id} not found")
        self.message_id = message_id
