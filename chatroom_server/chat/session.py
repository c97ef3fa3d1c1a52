"""
Session module.

One Session per open connection. Events for a connection are queued on its
outbox and written by a dedicated sender task, so a slow peer only ever
delays itself.
"""

import asyncio
from enum import Enum
from typing import Optional

from chatroom_common.constants import OUTBOX_SIZE
from chatroom_server.utils.logger import logger


class SessionState(Enum):
    CONNECTED = 'connected'
    AUTHENTICATED = 'authenticated'
    DISCONNECTED = 'disconnected'


class Session:
    """
    Per-connection runtime state.

    ``transport`` is any object with ``async send(event: dict)`` and
    ``async close()``.
    """

    def __init__(self, connection_id: int, transport, outbox_size: int = OUTBOX_SIZE):
        self.connection_id = connection_id
        self.transport = transport
        self.username: Optional[str] = None
        self.state = SessionState.CONNECTED
        self.outbox: asyncio.Queue = asyncio.Queue(maxsize=outbox_size)
        self._sender_task: Optional[asyncio.Task] = None
        self._close_task: Optional[asyncio.Task] = None
        self._send_failed = False

    @property
    def is_authenticated(self) -> bool:
        return self.state == SessionState.AUTHENTICATED

    @property
    def is_open(self) -> bool:
        return self.state != SessionState.DISCONNECTED

    @property
    def is_closing(self) -> bool:
        """True once the transport close has been started by ``abort``."""
        return self._close_task is not None

    def bind(self, username: str):
        """Bind the claimed name. A session is bound at most once."""
        if self.state != SessionState.CONNECTED:
            raise RuntimeError(f"Session {self.connection_id} cannot bind from state {self.state.value}")
        self.username = username
        self.state = SessionState.AUTHENTICATED

    def start(self):
        """Start the sender task."""
        if self._sender_task is None:
            self._sender_task = asyncio.create_task(self._run_sender())

    def enqueue(self, event: dict) -> bool:
        """Queue an event without blocking. Returns False if it was not accepted."""
        if not self.is_open or self._send_failed:
            return False
        try:
            self.outbox.put_nowait(event)
            return True
        except asyncio.QueueFull:
            return False

    async def flush(self):
        """Wait until every queued event has been handed to the transport."""
        await self.outbox.join()

    def abort(self):
        """Close the transport in the background; the connection handler then disconnects."""
        if self._close_task is None and self.is_open:
            self._close_task = asyncio.create_task(self._close_transport())

    async def close(self):
        """Mark the session disconnected, stop the sender and close the transport."""
        self.state = SessionState.DISCONNECTED
        if self._sender_task is not None:
            self._sender_task.cancel()
            try:
                await self._sender_task
            except asyncio.CancelledError:
                pass
        self._discard_pending()
        if self._close_task is None:
            await self._close_transport()

    async def _run_sender(self):
        while True:
            event = await self.outbox.get()
            try:
                await self.transport.send(event)
            except Exception as e:
                logger.error(f"Failed to send to connection_id={self.connection_id}: {e}")
                self._send_failed = True
                self.outbox.task_done()
                self._discard_pending()
                self.abort()
                return
            self.outbox.task_done()

    def _discard_pending(self):
        while not self.outbox.empty():
            self.outbox.get_nowait()
            self.outbox.task_done()

    async def _close_transport(self):
        try:
            await self.transport.close()
        except Exception as e:
            logger.debug(f"Error closing connection_id={self.connection_id}: {e}")

    def __repr__(self):
        return f"Session(connection_id={self.connection_id}, username={self.username!r}, state={self.state.value})"
