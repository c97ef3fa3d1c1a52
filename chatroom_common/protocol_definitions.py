"""
Protocol definitions for the chatroom service.

This module defines the message structures and data formats used in communication
between the server and its clients. Every frame is a single JSON object carrying
a ``type`` field.
"""

import json
import math
import time
import uuid
from dataclasses import dataclass, replace
from typing import Dict, Any, Optional, List

from chatroom_common.constants import MessageTypes


@dataclass(frozen=True)
class ChatMessage:
    """Chat message structure. ``sender`` is serialized as ``from``."""
    sender: str
    text: str
    id: Optional[str] = None
    time: Optional[int] = None

    def with_defaults(self) -> "ChatMessage":
        """Return a copy with ``id`` and ``time`` assigned where missing."""
        stamp = self.time if self.time is not None else current_time_ms()
        message_id = self.id or new_message_id(stamp)
        return replace(self, id=message_id, time=stamp)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "from": self.sender,
            "text": self.text,
            "time": self.time
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChatMessage":
        """Build a message from its stored form, raising ValueError if malformed."""
        if not isinstance(data, dict):
            raise ValueError(f"Message entry must be an object, got {type(data).__name__}")
        message_id = data.get("id")
        sender = data.get("from")
        text = data.get("text")
        stamp = data.get("time")
        if not isinstance(message_id, str) or not message_id:
            raise ValueError("Message entry has no id")
        if not isinstance(sender, str) or not isinstance(text, str):
            raise ValueError(f"Message {message_id} has invalid from/text")
        if isinstance(stamp, bool) or not isinstance(stamp, (int, float)) or not math.isfinite(stamp):
            raise ValueError(f"Message {message_id} has invalid time")
        return cls(sender=sender, text=text, id=message_id, time=int(stamp))


def current_time_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def new_message_id(stamp: Optional[int] = None) -> str:
    """Create a message id: creation timestamp plus a random suffix."""
    if stamp is None:
        stamp = current_time_ms()
    return f"{stamp}-{uuid.uuid4().hex[:12]}"


def coerce_text(value: Any) -> str:
    """Normalize a client-supplied argument to a trimmed string."""
    if not value:
        return ""
    if not isinstance(value, str):
        value = str(value)
    return value.strip()


def encode_frame(message: Dict[str, Any]) -> str:
    """Serialize an event for a text frame."""
    return json.dumps(message, ensure_ascii=False)


def decode_frame(raw) -> Dict[str, Any]:
    """
    Parse an inbound frame.

    Raises ValueError if the frame is not a JSON object with a string ``type``.
    """
    if isinstance(raw, (bytes, bytearray)):
        raw = raw.decode('utf-8')
    try:
        message = json.loads(raw)
    except RecursionError:
        raise ValueError("Frame is nested too deeply")
    if not isinstance(message, dict):
        raise ValueError("Frame must be a JSON object")
    msg_type = message.get('type')
    if not isinstance(msg_type, str) or len(msg_type) == 0:
        raise ValueError("Frame has no message type")
    return message


# Client to server

def create_login_message(username: str) -> Dict[str, Any]:
    """Create a login message."""
    return {
        "type": MessageTypes.LOGIN,
        "username": username
    }


def create_send_message(text: str) -> Dict[str, Any]:
    """Create a send message command."""
    return {
        "type": MessageTypes.SEND_MESSAGE,
        "text": text
    }


def create_delete_message(message_id: str) -> Dict[str, Any]:
    """Create a delete message command."""
    return {
        "type": MessageTypes.DELETE_MESSAGE,
        "id": message_id
    }


# Server to client

def create_login_error_message(message: str) -> Dict[str, Any]:
    """Create a login error message."""
    return {
        "type": MessageTypes.LOGIN_ERROR,
        "message": message
    }


def create_login_success_message(username: str, messages: List[ChatMessage]) -> Dict[str, Any]:
    """
    Create a login success message carrying the full history.

    The claimed name is sent as both ``name`` and ``username``.
    """
    return {
        "type": MessageTypes.LOGIN_SUCCESS,
        "name": username,
        "username": username,
        "messages": [m.to_dict() for m in messages]
    }


def create_user_list_message(users: List[str]) -> Dict[str, Any]:
    """Create a user list message."""
    return {
        "type": MessageTypes.USER_LIST,
        "users": list(users)
    }


def create_message_created_message(message: ChatMessage) -> Dict[str, Any]:
    """Create a message created notice."""
    return {
        "type": MessageTypes.MESSAGE_CREATED,
        "message": message.to_dict()
    }


def create_message_deleted_message(message_id: str) -> Dict[str, Any]:
    """Create a message deleted notice."""
    return {
        "type": MessageTypes.MESSAGE_DELETED,
        "id": message_id
    }


def create_action_error_message(message: str) -> Dict[str, Any]:
    """Create an action error message."""
    return {
        "type": MessageTypes.ACTION_ERROR,
        "message": message
    }


def create_error_message(message: str) -> Dict[str, Any]:
    """Create an error message."""
    return {
        "type": MessageTypes.ERROR,
        "message": message
    }
