"""
WebSocket transport adapter.

Wraps a websockets server connection so the chat core only deals with
``send(event)`` and ``close()``.
"""

from typing import Any, Dict

from chatroom_common.protocol_definitions import encode_frame


class WebSocketTransport:
    """One JSON object per text frame."""

    def __init__(self, connection):
        self.connection = connection

    @property
    def peer(self):
        return self.connection.remote_address

    async def send(self, event: Dict[str, Any]):
        await self.connection.send(encode_frame(event))

    async def close(self):
        await self.connection.close()
