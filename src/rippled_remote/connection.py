# rippled_remote/connection.py
"""
One logical link to one rippled server.

The connection task:
1. Opens the transport (bounded by a connect timeout)
2. Starts a writer draining the outbox, then tells the pool we're up
3. Reads messages sequentially: responses resolve pending Requests,
   everything else is handed to the pool
4. On an unexpected close, fails what was written, hands back what wasn't,
   and reconnects with exponential backoff until disconnect() is called

Events emitted on ``connection.events``:
    connect    : transport opened
    disconnect : transport lost or closed
    message    : a non-response message (dict) for the pool
"""
import asyncio
import contextlib
import json
import logging
from collections.abc import Callable
from typing import TYPE_CHECKING

from rippled_remote.constants import CONNECT_TIMEOUT, RECONNECT_BASE, RECONNECT_MAX, TransportState
from rippled_remote.errors import disconnected_error, remote_error, unexpected_error
from rippled_remote.events import Emitter
from rippled_remote.request import Request
from rippled_remote.transport import Transport, TransportClosed, WebsocketTransport

if TYPE_CHECKING:
    from rippled_remote.remote import Remote

log = logging.getLogger("rippled_remote.connection")

TransportFactory = Callable[[str], Transport]


class Connection:
    def __init__(
        self,
        remote: "Remote",
        url: str,
        *,
        primary: bool = False,
        transport_factory: TransportFactory = WebsocketTransport,
        reconnect_base: float = RECONNECT_BASE,
        reconnect_max: float = RECONNECT_MAX,
        connect_timeout: float = CONNECT_TIMEOUT,
    ):
        self.remote = remote
        self.url = url
        # Endpoint asked to be primary whenever it is up
        self.preferred = primary
        # Currently selected as primary by the pool
        self.primary = False
        self.state = TransportState.CLOSED
        self.pending: dict[int, Request] = {}
        self.events = Emitter()
        self.reconnect_base = reconnect_base
        self.reconnect_max = reconnect_max
        self.connect_timeout = connect_timeout
        self._transport_factory = transport_factory
        self._transport: Transport | None = None
        self._outbox: asyncio.Queue[Request] = asyncio.Queue()
        self._task: asyncio.Task | None = None
        self._should_connect = False

    def __repr__(self):
        return f"<Connection {self.url} {self.state}{' primary' if self.primary else ''}>"

    @property
    def is_open(self) -> bool:
        return self.state == TransportState.OPEN

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def connect(self) -> None:
        self._should_connect = True
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run(), name=f"connection:{self.url}")

    async def disconnect(self) -> None:
        self._should_connect = False
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self.state = TransportState.CLOSED

    async def _run(self) -> None:
        backoff = self.reconnect_base
        while self._should_connect:
            transport = self._transport_factory(self.url)
            self.state = TransportState.CONNECTING
            try:
                async with asyncio.timeout(self.connect_timeout):
                    await transport.open()
            except (TransportClosed, TimeoutError, OSError) as e:
                log.warning(f"Connect to {self.url} failed: {e}")
                self.state = TransportState.CLOSED
            else:
                backoff = self.reconnect_base
                await self._serve(transport)

            if not self._should_connect:
                break
            log.info(f"Reconnecting to {self.url} in {backoff:.1f}s")
            await asyncio.sleep(backoff)
            backoff = min(backoff * 2, self.reconnect_max)
        self.state = TransportState.CLOSED
        log.debug(f"Connection task for {self.url} stopped")

    async def _serve(self, transport: Transport) -> None:
        self._transport = transport
        self.state = TransportState.OPEN
        log.info(f"Connected: {self.url}")
        writer = asyncio.create_task(self._write_loop(transport), name=f"writer:{self.url}")
        try:
            self.events.emit("connect")
            await self._read_loop(transport)
        finally:
            writer.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await writer
            self._closed()
            with contextlib.suppress(TransportClosed, OSError):
                await transport.close()
            self.state = TransportState.CLOSED

    async def _read_loop(self, transport: Transport) -> None:
        while True:
            try:
                raw = await transport.recv()
            except TransportClosed as e:
                log.warning(f"Connection to {self.url} lost: {e}")
                return
            try:
                self.handle_message(raw)
            except Exception as e:
                log.error(f"Error processing message from {self.url}: {e}", exc_info=True)

    async def _write_loop(self, transport: Transport) -> None:
        while True:
            req = await self._outbox.get()
            if self.pending.get(req.id) is not req:
                # Resolved (e.g. timed out) before we got to it
                continue
            try:
                await transport.send(json.dumps(req.message))
            except TransportClosed as e:
                log.warning(f"Write to {self.url} failed: {e}")
                await transport.close()
                return

    def _closed(self) -> None:
        self.state = TransportState.CLOSING
        self._transport = None

        unwritten = []
        while not self._outbox.empty():
            req = self._outbox.get_nowait()
            if self.pending.pop(req.id, None) is req:
                unwritten.append(req)
        written = list(self.pending.values())
        self.pending.clear()

        self.events.emit("disconnect")

        for req in unwritten:
            req.message["id"] = None
            if req.server is self:
                # Meant for this server only
                req.set_error(disconnected_error(self.url))
            else:
                self.remote.request(req)
        if written:
            log.info(f"Failing {len(written)} in-flight request(s) on {self.url}")
        for req in written:
            req.set_error(disconnected_error(self.url))

    # ------------------------------------------------------------------
    # Traffic
    # ------------------------------------------------------------------
    def request(self, req: Request) -> None:
        req.message["id"] = self.remote.next_id()
        self.pending[req.id] = req
        self._outbox.put_nowait(req)

    def handle_message(self, raw: str) -> None:
        try:
            message = json.loads(raw)
        except (TypeError, ValueError):
            message = None
        if not isinstance(message, dict):
            log.warning(f"Unexpected message from {self.url}: {raw[:200]}")
            self.remote.events.emit("error", unexpected_error(raw))
            return

        if message.get("type") != "response":
            self.events.emit("message", message)
            return

        req = self.pending.pop(message.get("id"), None)
        if req is None:
            log.debug(f"Response for unknown id {message.get('id')} from {self.url}")
            return
        if message.get("status") == "success":
            req.set_success(message.get("result", {}))
        else:
            req.set_error(remote_error(message))
