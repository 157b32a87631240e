import asyncio
import json
import unittest
from unittest.mock import MagicMock

from fakes import FakeNetwork, settle

from rippled_remote.config import ServerConfig
from rippled_remote.connection import Connection
from rippled_remote.constants import TransportState
from rippled_remote.remote import Remote
from rippled_remote.request import Request

URL = "ws://a:6006"


def make_connection():
    remote = MagicMock()
    remote.next_id.side_effect = iter(range(1, 100))
    return remote, Connection(remote, URL)


class TestConnectionMessages(unittest.TestCase):
    def test_response_resolves_pending_request(self):
        remote, conn = make_connection()
        req = Request(remote, "server_info")
        conn.request(req)
        self.assertEqual(req.id, 1)
        self.assertIs(conn.pending[1], req)

        conn.handle_message(json.dumps({"type": "response", "id": 1, "status": "success", "result": {"info": {}}}))

        self.assertEqual(req.outcome, ("success", {"info": {}}))
        self.assertEqual(conn.pending, {})

    def test_error_response_wraps_remote_message(self):
        remote, conn = make_connection()
        req = Request(remote, "tx")
        conn.request(req)
        message = {"type": "response", "id": 1, "status": "error", "error": "txnNotFound"}
        conn.handle_message(json.dumps(message))

        kind, error = req.outcome
        self.assertEqual(kind, "error")
        self.assertEqual(error["error"], "remoteError")
        self.assertEqual(error["remote"], message)

    def test_unknown_response_id_is_ignored(self):
        remote, conn = make_connection()
        conn.handle_message(json.dumps({"type": "response", "id": 99, "status": "success"}))
        remote.events.emit.assert_not_called()

    def test_bad_payload_reports_unexpected(self):
        remote, conn = make_connection()
        conn.handle_message("not json")
        conn.handle_message("[1, 2]")

        self.assertEqual(remote.events.emit.call_count, 2)
        event, error = remote.events.emit.call_args.args
        self.assertEqual(event, "error")
        self.assertEqual(error["error"], "remoteUnexpected")

    def test_notifications_go_to_the_pool(self):
        _, conn = make_connection()
        seen = MagicMock()
        conn.events.on("message", seen)
        conn.handle_message(json.dumps({"type": "ledgerClosed", "ledger_index": 5}))
        seen.assert_called_once_with({"type": "ledgerClosed", "ledger_index": 5})

    def test_close_fails_written_and_reroutes_unwritten(self):
        remote, conn = make_connection()
        written, unwritten = Request(remote, "a"), Request(remote, "b")
        conn.request(written)
        conn._outbox.get_nowait()  # picked up by the writer
        conn.request(unwritten)
        disconnected = MagicMock()
        conn.events.on("disconnect", disconnected)

        conn._closed()

        disconnected.assert_called_once_with()
        self.assertEqual(written.outcome[0], "error")
        self.assertEqual(written.outcome[1]["error"], "remoteDisconnected")
        self.assertIsNone(unwritten.outcome)
        self.assertIsNone(unwritten.id)
        remote.request.assert_called_once_with(unwritten)
        self.assertEqual(conn.pending, {})

    def test_close_fails_unwritten_requests_pinned_to_it(self):
        remote, conn = make_connection()
        pinned = Request(remote, "unsubscribe").request(conn)
        routed = Request(remote, "ping")
        conn.request(routed)

        conn._closed()

        self.assertIs(pinned.server, conn)
        self.assertEqual(pinned.outcome[0], "error")
        self.assertEqual(pinned.outcome[1]["error"], "remoteDisconnected")
        self.assertIsNone(routed.outcome)
        remote.request.assert_called_once_with(routed)


class TestConnectionLifecycle(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.network = FakeNetwork()
        self.remote = Remote([ServerConfig.from_url(URL)], transport_factory=self.network, reconnect_base=0.05)
        self.conn = self.remote.connections[0]

    async def asyncTearDown(self):
        await self.remote.close()

    async def test_connects_and_sends_subscribe(self):
        self.remote.connect()
        await settle()

        self.assertEqual(self.conn.state, TransportState.OPEN)
        subscribe = self.network.latest(URL).commands("subscribe")
        self.assertEqual(len(subscribe), 1)
        self.assertEqual(subscribe[0]["streams"], ["ledger", "server"])

    async def test_reconnects_after_drop(self):
        self.remote.connect()
        await settle()
        self.network.latest(URL).drop()
        await settle()
        self.assertFalse(self.remote.is_online)

        await self._wait_online()
        self.assertEqual(len(self.network.transports[URL]), 2)

    async def test_retries_refused_connect(self):
        self.network.refuse.add(URL)
        self.remote.connect()
        await settle()
        self.assertEqual(self.conn.state, TransportState.CLOSED)

        self.network.refuse.clear()
        await self._wait_online()
        self.assertGreaterEqual(len(self.network.transports[URL]), 2)

    async def test_disconnect_stops_reconnecting(self):
        self.remote.connect()
        await settle()
        await self.remote.disconnect()
        count = len(self.network.transports[URL])

        await asyncio.sleep(0.05)
        self.assertEqual(len(self.network.transports[URL]), count)
        self.assertEqual(self.conn.state, TransportState.CLOSED)

    async def _wait_online(self):
        for _ in range(200):
            if self.remote.is_online:
                return
            await asyncio.sleep(0.01)
        self.fail("remote never came back online")

