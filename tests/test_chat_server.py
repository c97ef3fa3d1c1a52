#!/usr/bin/env python3
"""
Unit tests for the ChatServer coordinator.

Drives the coordinator with in-memory transports and checks which events
reach which connections.
"""

import asyncio
import tempfile
import unittest
from unittest.mock import patch

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from chatroom_common.constants import (
    MessageTypes, EMPTY_NAME_ERROR, NAME_TAKEN_ERROR, NOT_OWNER_ERROR
)
from chatroom_server.chat.chat_server import ChatServer
from chatroom_server.chat.message_log import MessageLog
from chatroom_server.chat.session import SessionState
from chatroom_server.utils.logger import logger


class FakeTransport:
    """Records every event sent to a connection."""

    def __init__(self):
        self.events = []
        self.closed = False

    async def send(self, event):
        self.events.append(event)

    async def close(self):
        self.closed = True

    def of_type(self, msg_type):
        return [e for e in self.events if e['type'] == msg_type]


class StalledTransport(FakeTransport):
    """A peer that never finishes reading."""

    def __init__(self):
        super().__init__()
        self.release = asyncio.Event()

    async def send(self, event):
        await self.release.wait()
        self.events.append(event)


class ChatServerTestCase(unittest.IsolatedAsyncioTestCase):

    async def asyncSetUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.previous_logs_dir = logger.logs_dir
        logger.set_logs_dir(self.tmp.name)
        self.db_path = Path(self.tmp.name) / "db.json"
        self.log = MessageLog(self.db_path)
        self.server = ChatServer(self.log)

    async def asyncTearDown(self):
        for session in list(self.server.sessions.values()):
            await self.server.disconnect(session)
        logger.set_logs_dir(self.previous_logs_dir)
        self.tmp.cleanup()

    async def open(self, transport=None):
        transport = transport or FakeTransport()
        session = await self.server.connect(transport)
        return session, transport

    async def login(self, name):
        session, transport = await self.open()
        await self.server.handle_login(session, {"type": MessageTypes.LOGIN, "username": name})
        await self.server.flush()
        return session, transport


class TestLogin(ChatServerTestCase):

    async def test_login_on_empty_log(self):
        alice, alice_t = await self.open()
        observer, observer_t = await self.open()

        await self.server.handle_login(alice, {"username": "alice"})
        await self.server.flush()

        self.assertEqual(alice_t.events, [
            {"type": "loginSuccess", "name": "alice", "username": "alice", "messages": []},
            {"type": "userList", "users": ["alice"]},
        ])
        self.assertEqual(observer_t.events, [{"type": "userList", "users": ["alice"]}])
        self.assertEqual(alice.state, SessionState.AUTHENTICATED)
        self.assertEqual(alice.username, "alice")
        self.assertEqual(observer.state, SessionState.CONNECTED)

    async def test_login_name_is_trimmed(self):
        session, transport = await self.login("  alice \n")
        self.assertEqual(session.username, "alice")
        self.assertEqual(self.server.get_online_users(), ["alice"])

    async def test_login_sends_existing_history(self):
        alice, _ = await self.login("alice")
        await self.server.handle_send_message(alice, {"text": "first"})
        await self.server.handle_send_message(alice, {"text": "second"})

        _, bob_t = await self.login("bob")

        success = bob_t.of_type(MessageTypes.LOGIN_SUCCESS)[0]
        self.assertEqual([m["text"] for m in success["messages"]], ["first", "second"])
        self.assertEqual({m["from"] for m in success["messages"]}, {"alice"})

    async def test_duplicate_name_is_rejected(self):
        await self.login("alice")
        bob, bob_t = await self.open()
        before = len(bob_t.events)

        await self.server.handle_login(bob, {"username": "alice"})
        await self.server.flush()

        self.assertEqual(bob_t.events[before:], [{"type": "loginError", "message": NAME_TAKEN_ERROR}])
        self.assertEqual(bob.state, SessionState.CONNECTED)
        self.assertIsNone(bob.username)
        self.assertEqual(self.server.get_online_users(), ["alice"])

    async def test_rejected_login_can_retry(self):
        await self.login("alice")
        bob, bob_t = await self.open()

        await self.server.handle_login(bob, {"username": "alice"})
        await self.server.handle_login(bob, {"username": "bob"})
        await self.server.flush()

        self.assertEqual(bob.username, "bob")
        self.assertEqual(bob_t.events[-1], {"type": "userList", "users": ["alice", "bob"]})

    async def test_empty_name_is_rejected(self):
        session, transport = await self.open()

        await self.server.handle_login(session, {"username": "   "})
        await self.server.handle_login(session, {})
        await self.server.flush()

        self.assertEqual(transport.events, [
            {"type": "loginError", "message": EMPTY_NAME_ERROR},
            {"type": "loginError", "message": EMPTY_NAME_ERROR},
        ])
        self.assertEqual(session.state, SessionState.CONNECTED)

    async def test_second_login_is_ignored(self):
        alice, alice_t = await self.login("alice")
        before = len(alice_t.events)

        await self.server.handle_login(alice, {"username": "carol"})
        await self.server.flush()

        self.assertEqual(alice.username, "alice")
        self.assertEqual(len(alice_t.events), before)
        self.assertEqual(self.server.get_online_users(), ["alice"])

    async def test_concurrent_claims_only_one_wins(self):
        first, first_t = await self.open()
        second, second_t = await self.open()

        await asyncio.gather(
            self.server.handle_login(first, {"username": "alice"}),
            self.server.handle_login(second, {"username": "alice"}),
        )
        await self.server.flush()

        successes = first_t.of_type(MessageTypes.LOGIN_SUCCESS) + second_t.of_type(MessageTypes.LOGIN_SUCCESS)
        errors = first_t.of_type(MessageTypes.LOGIN_ERROR) + second_t.of_type(MessageTypes.LOGIN_ERROR)
        self.assertEqual(len(successes), 1)
        self.assertEqual(len(errors), 1)
        self.assertEqual(self.server.get_online_users(), ["alice"])


class TestMessages(ChatServerTestCase):

    async def test_send_message_is_broadcast(self):
        alice, alice_t = await self.login("alice")
        observer, observer_t = await self.open()

        await self.server.handle_send_message(alice, {"text": " hi "})
        await self.server.flush()

        for transport in (alice_t, observer_t):
            created = transport.of_type(MessageTypes.MESSAGE_CREATED)
            self.assertEqual(len(created), 1)
            self.assertEqual(created[0]["message"]["from"], "alice")
            self.assertEqual(created[0]["message"]["text"], "hi")
        self.assertEqual(len(self.log.snapshot()), 1)
        self.assertEqual(alice_t.events[-1]["message"]["id"], self.log.snapshot()[0].id)

    async def test_message_is_persisted_before_broadcast(self):
        alice, alice_t = await self.login("alice")

        await self.server.handle_send_message(alice, {"text": "durable"})
        await self.server.flush()

        reloaded = MessageLog(self.db_path)
        reloaded.load()
        created = alice_t.of_type(MessageTypes.MESSAGE_CREATED)[0]["message"]
        self.assertEqual([m.to_dict() for m in reloaded.snapshot()], [created])

    async def test_blank_message_is_ignored(self):
        alice, alice_t = await self.login("alice")
        before = len(alice_t.events)

        for text in ("", "   ", None):
            await self.server.handle_send_message(alice, {"text": text})
        await self.server.flush()

        self.assertEqual(len(alice_t.events), before)
        self.assertEqual(self.log.snapshot(), [])

    async def test_commands_before_login_are_ignored(self):
        alice, _ = await self.login("alice")
        await self.server.handle_send_message(alice, {"text": "mine"})
        message_id = self.log.snapshot()[0].id

        guest, guest_t = await self.open()
        await self.server.handle_send_message(guest, {"text": "hello"})
        await self.server.handle_delete_message(guest, {"id": message_id})
        await self.server.flush()

        self.assertEqual(guest_t.events, [])
        self.assertEqual(len(self.log.snapshot()), 1)

    async def test_delete_own_message(self):
        alice, alice_t = await self.login("alice")
        bob, bob_t = await self.login("bob")
        await self.server.handle_send_message(alice, {"text": "oops"})
        message_id = self.log.snapshot()[0].id

        await self.server.handle_delete_message(alice, {"id": message_id})
        await self.server.flush()

        for transport in (alice_t, bob_t):
            self.assertEqual(transport.events[-1], {"type": "messageDeleted", "id": message_id})
        self.assertEqual(self.log.snapshot(), [])

    async def test_delete_other_users_message_is_rejected(self):
        alice, alice_t = await self.login("alice")
        bob, bob_t = await self.login("bob")
        await self.server.handle_send_message(alice, {"text": "mine"})
        await self.server.flush()
        message_id = self.log.snapshot()[0].id
        alice_before = len(alice_t.events)

        await self.server.handle_delete_message(bob, {"id": message_id})
        await self.server.flush()

        self.assertEqual(bob_t.events[-1], {"type": "actionError", "message": NOT_OWNER_ERROR})
        self.assertEqual(len(alice_t.events), alice_before)
        self.assertEqual([m.id for m in self.log.snapshot()], [message_id])
        self.assertEqual(bob.state, SessionState.AUTHENTICATED)

    async def test_delete_unknown_id_is_silent(self):
        alice, alice_t = await self.login("alice")
        bob, bob_t = await self.login("bob")
        await self.server.handle_send_message(alice, {"text": "keep"})
        await self.server.flush()
        counts = (len(alice_t.events), len(bob_t.events))

        await self.server.handle_delete_message(alice, {"id": "no-such-id"})
        await self.server.handle_delete_message(alice, {})
        await self.server.flush()

        self.assertEqual((len(alice_t.events), len(bob_t.events)), counts)
        self.assertEqual(len(self.log.snapshot()), 1)

    async def test_delete_twice_only_broadcasts_once(self):
        alice, alice_t = await self.login("alice")
        await self.server.handle_send_message(alice, {"text": "once"})
        message_id = self.log.snapshot()[0].id

        await self.server.handle_delete_message(alice, {"id": message_id})
        await self.server.handle_delete_message(alice, {"id": message_id})
        await self.server.flush()

        self.assertEqual(len(alice_t.of_type(MessageTypes.MESSAGE_DELETED)), 1)

    async def test_all_connections_see_the_same_order(self):
        alice, alice_t = await self.login("alice")
        bob, bob_t = await self.login("bob")
        observer, observer_t = await self.open()

        await asyncio.gather(*(
            self.server.handle_send_message(sender, {"text": f"{sender.username}-{i}"})
            for i in range(10)
            for sender in (alice, bob)
        ))
        await self.server.flush()

        def created_ids(transport):
            return [e["message"]["id"] for e in transport.of_type(MessageTypes.MESSAGE_CREATED)]

        expected = [m.id for m in self.log.snapshot()]
        self.assertEqual(len(expected), 20)
        self.assertEqual(created_ids(alice_t), expected)
        self.assertEqual(created_ids(bob_t), expected)
        self.assertEqual(created_ids(observer_t), expected)


class TestDisconnect(ChatServerTestCase):

    async def test_disconnect_releases_name(self):
        alice, alice_t = await self.login("alice")
        observer, observer_t = await self.open()

        await self.server.disconnect(alice)
        await self.server.flush()

        self.assertEqual(observer_t.events[-1], {"type": "userList", "users": []})
        self.assertTrue(alice_t.closed)
        self.assertEqual(alice.state, SessionState.DISCONNECTED)
        self.assertEqual(self.server.get_connection_count(), 1)

        again, again_t = await self.login("alice")
        self.assertEqual(again.username, "alice")
        self.assertEqual(again_t.of_type(MessageTypes.LOGIN_SUCCESS)[0]["username"], "alice")

    async def test_disconnect_without_login_does_not_broadcast(self):
        _, alice_t = await self.login("alice")
        guest, guest_t = await self.open()
        before = len(alice_t.events)

        await self.server.disconnect(guest)
        await self.server.flush()

        self.assertEqual(len(alice_t.events), before)
        self.assertTrue(guest_t.closed)
        self.assertEqual(self.server.get_online_users(), ["alice"])

    async def test_disconnect_twice_is_noop(self):
        alice, _ = await self.login("alice")
        observer, observer_t = await self.open()

        await self.server.disconnect(alice)
        await self.server.disconnect(alice)
        await self.server.flush()

        self.assertEqual(observer_t.of_type(MessageTypes.USER_LIST), [{"type": "userList", "users": []}])

    async def test_no_events_after_disconnect(self):
        alice, _ = await self.login("alice")
        bob, bob_t = await self.login("bob")
        await self.server.disconnect(bob)
        count = len(bob_t.events)

        await self.server.handle_send_message(alice, {"text": "anyone?"})
        await self.server.handle_send_message(bob, {"text": "ghost"})
        await self.server.flush()

        self.assertEqual(len(bob_t.events), count)
        self.assertEqual([m.text for m in self.log.snapshot()], ["anyone?"])


class TestSlowConsumer(ChatServerTestCase):

    async def asyncSetUp(self):
        await super().asyncSetUp()
        self.server = ChatServer(self.log, outbox_size=2)

    async def test_stalled_connection_does_not_block_others(self):
        stalled, stalled_t = await self.open(StalledTransport())
        alice, alice_t = await self.open()
        await self.server.handle_login(alice, {"username": "alice"})

        for i in range(5):
            await self.server.handle_send_message(alice, {"text": f"m{i}"})
        await alice.flush()
        await asyncio.sleep(0)

        self.assertEqual(len(alice_t.of_type(MessageTypes.MESSAGE_CREATED)), 5)
        self.assertTrue(stalled_t.closed)
        self.assertEqual(stalled_t.events, [])

        await self.server.disconnect(stalled)
        self.assertEqual(stalled.state, SessionState.DISCONNECTED)

    async def test_dropped_connection_is_warned_about_once(self):
        stalled, stalled_t = await self.open(StalledTransport())
        alice, alice_t = await self.open()
        await self.server.handle_login(alice, {"username": "alice"})

        with patch.object(logger, 'warning') as warning:
            for i in range(6):
                await self.server.handle_send_message(alice, {"text": f"m{i}"})
            sent = self.server.send_private(stalled, {"type": MessageTypes.ERROR, "message": "late"})

        drops = [c for c in warning.call_args_list if "Dropping" in c.args[0]]
        self.assertEqual(len(drops), 1)
        self.assertTrue(stalled.is_closing)
        self.assertFalse(alice.is_closing)
        self.assertFalse(sent)

        await alice.flush()
        self.assertEqual(len(alice_t.of_type(MessageTypes.MESSAGE_CREATED)), 6)


if __name__ == '__main__':
    unittest.main()
