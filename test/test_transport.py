import unittest
from unittest.mock import AsyncMock, patch

import websockets

from rippled_remote.transport import Transport, TransportClosed, WebsocketTransport


class TestWebsocketTransport(unittest.IsolatedAsyncioTestCase):
    async def test_round_trip(self):
        ws = AsyncMock()
        ws.recv.return_value = b'{"type": "ledgerClosed"}'
        with patch("websockets.connect", AsyncMock(return_value=ws)) as connect:
            transport = WebsocketTransport("ws://a:6006")
            await transport.open()

        connect.assert_awaited_once_with("ws://a:6006", ping_interval=20, ping_timeout=20, close_timeout=1)
        await transport.send('{"command": "ping"}')
        ws.send.assert_awaited_once_with('{"command": "ping"}')
        self.assertEqual(await transport.recv(), '{"type": "ledgerClosed"}')

        await transport.close()
        ws.close.assert_awaited_once()
        with self.assertRaises(TransportClosed):
            await transport.recv()

    async def test_library_errors_become_transport_closed(self):
        ws = AsyncMock()
        ws.recv.side_effect = websockets.ConnectionClosed(None, None)
        ws.send.side_effect = websockets.ConnectionClosed(None, None)
        with patch("websockets.connect", AsyncMock(return_value=ws)):
            transport = WebsocketTransport("ws://a:6006")
            await transport.open()

        with self.assertRaises(TransportClosed):
            await transport.recv()
        with self.assertRaises(TransportClosed):
            await transport.send("x")

    async def test_refused_connect(self):
        with patch("websockets.connect", AsyncMock(side_effect=OSError("refused"))):
            with self.assertRaises(TransportClosed):
                await WebsocketTransport("ws://a:6006").open()

    def test_satisfies_protocol(self):
        self.assertIsInstance(WebsocketTransport("ws://a:6006"), Transport)
