"""
Chat server module.

The ChatServer is the single authority over presence and the message log.
Every command that reads or mutates shared state runs under one asyncio lock;
events are queued on session outboxes inside that same critical section, so
all connections observe state changes in the same order.
"""

import asyncio
from typing import Dict, List

from chatroom_common.constants import OUTBOX_SIZE
from chatroom_common.protocol_definitions import (
    ChatMessage, coerce_text,
    create_login_error_message, create_login_success_message, create_user_list_message,
    create_message_created_message, create_message_deleted_message, create_action_error_message
)
from chatroom_server.chat.errors import (
    EmptyNameError, NameTakenError, ActionError, MessageNotFoundError
)
from chatroom_server.chat.message_log import MessageLog
from chatroom_server.chat.presence import PresenceRegistry
from chatroom_server.chat.session import Session, SessionState
from chatroom_server.utils.logger import logger


class ChatServer:
    """Server-side presence and message coordinator."""

    def __init__(self, message_log: MessageLog, outbox_size: int = OUTBOX_SIZE):
        self.message_log = message_log
        self.presence = PresenceRegistry()
        self.sessions: Dict[int, Session] = {}  # connection_id -> session
        self.outbox_size = outbox_size
        self.next_connection_id = 1
        self.lock = asyncio.Lock()  # Protect shared state

    async def connect(self, transport) -> Session:
        """Register a new connection. It receives broadcasts from now on."""
        async with self.lock:
            session = Session(self.get_next_connection_id(), transport, self.outbox_size)
            self.sessions[session.connection_id] = session
            session.start()
        return session

    def broadcast(self, message: dict) -> int:
        """
        Queue an event for every open session. Caller must hold the lock.

        Sessions that cannot accept the event are dropped once; sessions
        already being dropped are skipped.
        """
        delivered = 0
        for session in list(self.sessions.values()):
            if session.is_closing:
                continue
            if session.enqueue(message):
                delivered += 1
            else:
                logger.warning(f"Dropping slow connection_id={session.connection_id} "
                               f"on {message.get('type')}")
                session.abort()
        return delivered

    def send_private(self, session: Session, message: dict) -> bool:
        """Queue an event for one session. Caller must hold the lock."""
        if session.is_closing:
            return False
        if session.enqueue(message):
            return True
        logger.warning(f"Dropping slow connection_id={session.connection_id} on {message.get('type')}")
        session.abort()
        return False

    async def reply(self, session: Session, message: dict) -> bool:
        """Send a private event outside of any command."""
        async with self.lock:
            return self.send_private(session, message)

    async def handle_login(self, session: Session, data: dict):
        """Claim a name, send history privately, then broadcast presence."""
        async with self.lock:
            if not session.is_open or session.is_authenticated:
                logger.debug(f"Ignoring login on connection_id={session.connection_id} ({session.state.value})")
                return

            try:
                username = self.presence.claim(session.connection_id, data.get('username'))
            except (EmptyNameError, NameTakenError) as e:
                logger.info(f"Login rejected on connection_id={session.connection_id}: {e}")
                self.send_private(session, create_login_error_message(str(e)))
                return

            session.bind(username)
            self.send_private(session, create_login_success_message(username, self.message_log.snapshot()))
            self.broadcast(create_user_list_message(self.presence.list_names()))

        logger.log_login(username, session.connection_id)

    async def handle_send_message(self, session: Session, data: dict):
        """Append a message from the session's user and broadcast it."""
        text = coerce_text(data.get('text'))

        async with self.lock:
            if not session.is_authenticated or not text:
                return
            message = await self.message_log.append(ChatMessage(sender=session.username, text=text))
            self.broadcast(create_message_created_message(message))

        logger.log_chat(message.sender, message.id, message.text)

    async def handle_delete_message(self, session: Session, data: dict):
        """Delete one of the session's own messages and broadcast the removal."""
        message_id = data.get('id')

        async with self.lock:
            if not session.is_authenticated:
                return
            try:
                self.authorize_delete(session, message_id)
            except MessageNotFoundError as e:
                logger.debug(f"Delete from {session.username} ignored: {e}")
                return
            except ActionError as e:
                logger.info(f"{session.username} tried to delete message {message_id} they do not own")
                self.send_private(session, create_action_error_message(str(e)))
                return

            await self.message_log.remove(message_id)
            self.broadcast(create_message_deleted_message(message_id))

        logger.log_delete(session.username, message_id)

    def authorize_delete(self, session: Session, message_id) -> str:
        """Return the owner of a message, raising ActionError if it is not the session's user."""
        owner = self.message_log.find_owner(message_id)
        if owner != session.username:
            raise ActionError()
        return owner

    async def disconnect(self, session: Session):
        """Remove a session; release its name and broadcast presence if it had one."""
        async with self.lock:
            if self.sessions.pop(session.connection_id, None) is None:
                return
            session.state = SessionState.DISCONNECTED
            username = self.presence.release(session.connection_id)
            if username is not None:
                self.broadcast(create_user_list_message(self.presence.list_names()))

        await session.close()
        logger.log_disconnect(username, session.connection_id)

    async def flush(self):
        """Wait until all queued events have been handed to their transports."""
        async with self.lock:
            sessions = list(self.sessions.values())
        await asyncio.gather(*(s.flush() for s in sessions))

    def get_next_connection_id(self) -> int:
        """Get the next available connection id."""
        connection_id = self.next_connection_id
        self.next_connection_id += 1
        return connection_id

    def get_online_users(self) -> List[str]:
        """Get the claimed names in login order."""
        return self.presence.list_names()

    def get_connection_count(self) -> int:
        """Get the number of open connections."""
        return len(self.sessions)
