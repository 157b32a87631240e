# rippled_remote/transport.py
"""
Duplex text channel between a Connection and one rippled server.

A Connection only needs four operations: open, send a text frame, receive a
text frame and close. Anything satisfying :class:`Transport` can be plugged in
(tests use an in-memory one); :class:`WebsocketTransport` is the real thing.
"""
import logging
from typing import Protocol, runtime_checkable

import websockets

from rippled_remote.constants import WS_CLOSE_TIMEOUT, WS_PING_INTERVAL, WS_PING_TIMEOUT

log = logging.getLogger("rippled_remote.transport")


class TransportClosed(Exception):
    """The channel went away (peer close, network error or local close)."""


@runtime_checkable
class Transport(Protocol):
    url: str

    async def open(self) -> None: ...

    async def send(self, text: str) -> None: ...

    async def recv(self) -> str: ...

    async def close(self) -> None: ...


class WebsocketTransport:
    def __init__(
        self,
        url: str,
        *,
        ping_interval: float | None = WS_PING_INTERVAL,
        ping_timeout: float | None = WS_PING_TIMEOUT,
        close_timeout: float | None = WS_CLOSE_TIMEOUT,
    ):
        self.url = url
        self.ping_interval = ping_interval
        self.ping_timeout = ping_timeout
        self.close_timeout = close_timeout
        self._ws = None

    async def open(self) -> None:
        try:
            self._ws = await websockets.connect(
                self.url,
                ping_interval=self.ping_interval,
                ping_timeout=self.ping_timeout,
                close_timeout=self.close_timeout,
            )
        except (OSError, websockets.WebSocketException) as e:
            raise TransportClosed(f"connect {self.url} failed: {e}") from e
        log.debug(f"WS open: {self.url}")

    async def send(self, text: str) -> None:
        if self._ws is None:
            raise TransportClosed(f"{self.url} is not open")
        try:
            await self._ws.send(text)
        except websockets.ConnectionClosed as e:
            raise TransportClosed(str(e)) from e

    async def recv(self) -> str:
        if self._ws is None:
            raise TransportClosed(f"{self.url} is not open")
        try:
            msg = await self._ws.recv()
        except websockets.ConnectionClosed as e:
            raise TransportClosed(str(e)) from e
        if isinstance(msg, bytes):
            msg = msg.decode("utf-8", errors="replace")
        return msg

    async def close(self) -> None:
        ws, self._ws = self._ws, None
        if ws is not None:
            await ws.close()
            log.debug(f"WS closed: {self.url}")
