#!/usr/bin/env python3
"""
Chatroom Server - Main Entry Point

Serves the chat protocol over WebSocket and a liveness endpoint
(``GET /health``) on the same port.
"""

import argparse
import asyncio
import logging
from http import HTTPStatus
from typing import Optional
from urllib.parse import urlsplit

from websockets.asyncio.server import serve
from websockets.exceptions import ConnectionClosedError

from chatroom_common.constants import MessageTypes, HEALTH_PATH, MALFORMED_FRAME_ERROR
from chatroom_common.protocol_definitions import decode_frame, create_error_message
from chatroom_server.chat.chat_server import ChatServer
from chatroom_server.chat.message_log import MessageLog
from chatroom_server.chat.session import Session
from chatroom_server.transport import WebSocketTransport
from chatroom_server.utils.config import ServerConfig
from chatroom_server.utils.logger import logger


class ChatroomServer:
    """Main server class: owns the listener and routes frames to the ChatServer."""

    def __init__(self, config: Optional[ServerConfig] = None):
        self.config = config or ServerConfig.from_env()
        self.message_log = MessageLog(self.config.db_path)
        self.chat_server = ChatServer(self.message_log, self.config.outbox_size)
        self.server = None

        self.handlers = {
            MessageTypes.LOGIN: self.chat_server.handle_login,
            MessageTypes.SEND_MESSAGE: self.chat_server.handle_send_message,
            MessageTypes.DELETE_MESSAGE: self.chat_server.handle_delete_message,
        }

    @property
    def port(self) -> Optional[int]:
        """Port actually bound, once listening."""
        if self.server is None:
            return None
        for sock in self.server.sockets:
            return sock.getsockname()[1]
        return None

    def process_request(self, connection, request):
        """Answer plain HTTP requests before the WebSocket handshake."""
        path = urlsplit(request.path).path
        if path == HEALTH_PATH:
            return connection.respond(HTTPStatus.OK, "OK")
        if request.headers.get("Upgrade", "").lower() != "websocket":
            return connection.respond(HTTPStatus.NOT_FOUND, "Not Found")
        return None

    async def handle_client(self, connection):
        """Handle individual client connection."""
        transport = WebSocketTransport(connection)
        session = await self.chat_server.connect(transport)
        logger.log_connection(transport.peer, session.connection_id)

        try:
            async for raw in connection:
                await self.dispatch(session, raw)
        except ConnectionClosedError as e:
            logger.info(f"Connection {session.connection_id} closed abnormally: {e}")
        except asyncio.CancelledError:
            logger.info(f"Connection cancelled for connection_id={session.connection_id}")
            raise
        finally:
            await self.chat_server.disconnect(session)

    async def dispatch(self, session: Session, raw):
        """Decode one frame and hand it to the matching ChatServer handler."""
        try:
            message = decode_frame(raw)
        except ValueError as e:
            logger.error(f"Malformed frame from connection_id={session.connection_id}: {e}")
            await self.chat_server.reply(session, create_error_message(MALFORMED_FRAME_ERROR))
            return

        msg_type = message['type']
        logger.debug(f"Received from connection_id={session.connection_id}: {msg_type}")

        handler = self.handlers.get(msg_type)
        if handler is None:
            logger.warning(f"Unknown message type '{msg_type}' from connection_id={session.connection_id}")
            return

        try:
            await handler(session, message)
        except Exception as e:
            logger.error(f"Error processing {msg_type} from connection_id={session.connection_id}: {e}")

    async def listen(self):
        """Load the message log and start accepting connections."""
        self.message_log.load()
        self.server = await serve(
            self.handle_client,
            self.config.host,
            self.config.port,
            process_request=self.process_request,
            ping_interval=self.config.ping_interval,
            ping_timeout=self.config.ping_timeout,
            max_size=self.config.max_message_size,
        )
        addr = ', '.join(str(sock.getsockname()) for sock in self.server.sockets)
        logger.info(f"Server listening on {addr}")
        return self.server

    async def start(self):
        """Start the server and serve until cancelled."""
        server = await self.listen()
        async with server:
            await server.serve_forever()

    async def stop(self):
        """Stop accepting connections and close the open ones."""
        if self.server is not None:
            self.server.close()
            await self.server.wait_closed()
            self.server = None


def build_parser(defaults: ServerConfig) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='Chatroom Server')
    parser.add_argument('--host', type=str, default=defaults.host,
                        help=f'Host to bind to (default: {defaults.host})')
    parser.add_argument('--port', type=int, default=defaults.port,
                        help=f'Port for WebSocket and /health (default: {defaults.port})')
    parser.add_argument('--db', type=str, default=defaults.db_path,
                        help=f'Message log file (default: {defaults.db_path})')
    parser.add_argument('--log-dir', type=str, default=defaults.logs_dir,
                        help=f'Directory for chat history log (default: {defaults.logs_dir})')
    parser.add_argument('--debug', action='store_true',
                        help='Enable debug logging')
    return parser


def main(argv=None):
    defaults = ServerConfig.from_env()
    args = build_parser(defaults).parse_args(argv)

    config = ServerConfig(host=args.host, port=args.port, db_path=args.db, logs_dir=args.log_dir)
    logger.set_logs_dir(config.logs_dir)
    if args.debug:
        logger.set_level(logging.DEBUG)

    server = ChatroomServer(config)
    try:
        logger.info(f"Server binding to {config.host}:{config.port}")
        asyncio.run(server.start())
    except KeyboardInterrupt:
        logger.info("Server shutting down...")


if __name__ == "__main__":
    main()
