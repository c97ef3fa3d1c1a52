"""
Message log module.

Ordered, durable store of chat messages backed by a single JSON document:

    {"messages": [{"id": ..., "from": ..., "text": ..., "time": ...}, ...]}

The document is rewritten in full on every mutation. ``append`` and ``remove``
return only after the new document has been fsynced and renamed into place.
A failed write is logged and the mutation is kept in memory only.
"""

import asyncio
import json
import os
from pathlib import Path
from typing import Any, List, Optional

from chatroom_common.protocol_definitions import ChatMessage
from chatroom_server.chat.errors import MessageNotFoundError
from chatroom_server.utils.logger import logger


class MessageLog:
    """Append/remove-capable ordered message store."""

    def __init__(self, path):
        self.path = Path(path)
        self.messages: List[ChatMessage] = []
        # Entries that failed to parse, written back unchanged after the messages
        self.unparsed: List[Any] = []

    def load(self) -> int:
        """
        Load the log from disk, returning the number of messages loaded.

        Missing or corrupt storage leaves an empty log.
        Malformed entries are skipped but kept for the next rewrite.
        """
        self.messages = []
        self.unparsed = []
        if not self.path.exists():
            logger.info(f"No message log at {self.path}, starting empty")
            return 0

        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                document = json.load(f)
        except (OSError, ValueError, RecursionError) as e:
            logger.log_error(f"message log read ({self.path})", e)
            return 0

        entries = document.get('messages') if isinstance(document, dict) else None
        if not isinstance(entries, list):
            logger.warning(f"Message log {self.path} has no message list, starting empty")
            return 0

        for entry in entries:
            try:
                self.messages.append(ChatMessage.from_dict(entry))
            except ValueError as e:
                logger.warning(f"Skipping malformed message log entry: {e}")
                self.unparsed.append(entry)

        logger.info(f"Loaded {len(self.messages)} messages from {self.path}")
        return len(self.messages)

    async def append(self, message: ChatMessage) -> ChatMessage:
        """Assign id/time if missing, append and persist."""
        message = message.with_defaults()
        self.messages.append(message)
        await self._persist()
        return message

    async def remove(self, message_id: str) -> ChatMessage:
        """Remove the first message with ``message_id`` and persist."""
        index = self._index_of(message_id)
        if index is None:
            raise MessageNotFoundError(message_id)
        message = self.messages.pop(index)
        await self._persist()
        return message

    def find_owner(self, message_id: str) -> str:
        """Return the sender name of a message."""
        index = self._index_of(message_id)
        if index is None:
            raise MessageNotFoundError(message_id)
        return self.messages[index].sender

    def snapshot(self) -> List[ChatMessage]:
        """Full log in creation order."""
        return list(self.messages)

    def __len__(self):
        return len(self.messages)

    def _index_of(self, message_id: str) -> Optional[int]:
        for index, message in enumerate(self.messages):
            if message.id == message_id:
                return index
        return None

    async def _persist(self):
        # Serialize on the loop so the written document matches this mutation
        payload = json.dumps(
            {"messages": [m.to_dict() for m in self.messages] + self.unparsed},
            ensure_ascii=False,
            indent=2
        )
        try:
            await asyncio.to_thread(self._write, payload)
        except OSError as e:
            logger.log_error(f"message log write ({self.path})", e)

    def _write(self, payload: str):
        tmp_path = self.path.with_name(self.path.name + '.tmp')
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(tmp_path, 'w', encoding='utf-8') as f:
            f.write(payload)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, self.path)
