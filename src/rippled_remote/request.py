"""A single outbound command and its one-shot outcome.

Events emitted on ``request.events``:
    request  : handed to the remote for sending
    success  : the server answered with a success payload
    error    : the request failed (structured dict, see errors.py)
    timeout  : no answer within the attached timeout

A request can be awaited; ``await req`` sends it if needed and returns the
success payload (after any ``transform``) or raises RemoteError.
"""
import asyncio
import logging
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from rippled_remote import amount as A
from rippled_remote.errors import RemoteError, timeout_error
from rippled_remote.events import Emitter

if TYPE_CHECKING:
    from rippled_remote.connection import Connection
    from rippled_remote.remote import Remote

log = logging.getLogger("rippled_remote.request")

SUCCESS = "success"
ERROR = "error"


class Request:
    def __init__(self, remote: "Remote", command: str):
        self.remote = remote
        self.requested = False
        # Connection this request was pinned to, None when the pool picks one
        self.server: "Connection | None" = None
        self.message: dict[str, Any] = {"command": command, "id": None}
        self.events = Emitter()
        self.outcome: tuple[str, Any] | None = None
        self.timed_out = False
        # Short-circuit hook used by the transparent ledger_entry cache
        self.intercept: Callable[["Request"], bool] | None = None
        self._transform: Callable[[Any], Any] | None = None
        self._timer: asyncio.TimerHandle | None = None
        self._waiters: list[asyncio.Future] = []

    def __repr__(self):
        return f"<Request {self.command} id={self.id} outcome={self.outcome and self.outcome[0]}>"

    @property
    def command(self) -> str:
        return self.message["command"]

    @property
    def id(self) -> int | None:
        return self.message.get("id")

    @property
    def resolved(self) -> bool:
        return self.outcome is not None

    # ------------------------------------------------------------------
    # Listener helpers
    # ------------------------------------------------------------------
    def on(self, event: str, listener) -> "Request":
        self.events.on(event, listener)
        return self

    def once(self, event: str, listener) -> "Request":
        self.events.once(event, listener)
        return self

    def callback(self, callback, success_event: str = SUCCESS, error_event: str = ERROR) -> "Request":
        """Node-style ``callback(err, result)``; sends the request."""
        if callable(callback):
            self.events.once(success_event, lambda *args: callback(None, *args))
            self.events.once(error_event, callback)
            self.request()
        return self

    def transform(self, fn: Callable[[Any], Any]) -> "Request":
        """Post-process the success payload returned by ``await``."""
        self._transform = fn
        return self

    # ------------------------------------------------------------------
    # Sending and outcome
    # ------------------------------------------------------------------
    def request(self, server: "Connection | None" = None) -> "Request":
        if self.requested:
            return self
        self.requested = True
        if self.intercept is not None and self.intercept(self):
            return self
        if server is not None:
            self.server = server
            server.request(self)
        else:
            self.remote.request(self)
        self.events.emit("request", server)
        return self

    def set_success(self, message: Any) -> bool:
        return self._settle(SUCCESS, message)

    def set_error(self, error: dict) -> bool:
        return self._settle(ERROR, error)

    def _settle(self, kind: str, payload: Any) -> bool:
        # First writer wins: late responses after a timeout or disconnect are dropped.
        if self.outcome is not None:
            log.debug(f"Dropping late {kind} for {self!r}")
            return False
        self.outcome = (kind, payload)
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        for fut in self._waiters:
            if not fut.done():
                fut.set_result(None)
        self._waiters.clear()
        self.events.emit(kind, payload)
        return True

    def timeout(self, duration: float, callback: Callable[[], object] | None = None) -> "Request":
        """Fail with a timeout error unless resolved within ``duration`` seconds."""
        if not self.requested:
            self.events.once("request", lambda _server: self.timeout(duration, callback))
            return self
        if self.outcome is not None:
            return self

        def fire():
            self._timer = None
            if self.outcome is not None:
                return
            self.timed_out = True
            if callback is not None:
                callback()
            self.events.emit("timeout")
            self.set_error(timeout_error(duration))

        self._timer = asyncio.get_running_loop().call_later(duration, fire)
        return self

    async def _wait(self) -> Any:
        if self.outcome is None:
            fut = asyncio.get_running_loop().create_future()
            self._waiters.append(fut)
            self.request()
            if self.outcome is None:
                await fut
        kind, payload = self.outcome
        if kind == ERROR:
            raise RemoteError.from_dict(payload)
        return self._transform(payload) if self._transform else payload

    def __await__(self):
        return self._wait().__await__()

    # ------------------------------------------------------------------
    # Message builders
    # ------------------------------------------------------------------
    def build_path(self, build: bool) -> "Request":
        if build:
            self.message["build_path"] = True
        return self

    def ledger_choose(self, current: bool) -> "Request":
        """Target the current open ledger, or the last closed one."""
        if current:
            self.message["ledger_index"] = self.remote.ledger_current_index or "current"
        elif self.remote.ledger_hash:
            self.message["ledger_hash"] = self.remote.ledger_hash
        else:
            self.message["ledger_index"] = "closed"
        return self

    def ledger_hash(self, h: str) -> "Request":
        self.message["ledger_hash"] = h
        return self

    def ledger_index(self, ledger_index: int | str) -> "Request":
        self.message["ledger_index"] = ledger_index
        return self

    def ledger_select(self, ledger_spec: int | str) -> "Request":
        if ledger_spec in ("current", "closed", "validated"):
            self.message["ledger_index"] = ledger_spec
        elif isinstance(ledger_spec, str) and len(ledger_spec) == 64:
            self.message["ledger_hash"] = ledger_spec
        else:
            self.message["ledger_index"] = int(ledger_spec)
        return self

    def account_root(self, account: str) -> "Request":
        self.message["account_root"] = A.account_json(account)
        return self

    def index(self, hash_: str) -> "Request":
        self.message["index"] = hash_
        return self

    def offer_id(self, account: str, seq: int) -> "Request":
        self.message["offer"] = {"account": A.account_json(account), "seq": seq}
        return self

    def offer_index(self, index: str) -> "Request":
        self.message["offer"] = index
        return self

    def secret(self, s: str | None) -> "Request":
        if s:
            self.message["secret"] = s
        return self

    def tx_hash(self, h: str) -> "Request":
        self.message["tx_hash"] = h
        return self

    def tx_json(self, j: dict) -> "Request":
        self.message["tx_json"] = j
        return self

    def tx_blob(self, blob: str) -> "Request":
        self.message["tx_blob"] = blob
        return self

    def ripple_state(self, account: str, issuer: str, currency: str) -> "Request":
        self.message["ripple_state"] = {
            "accounts": [A.account_json(account), A.account_json(issuer)],
            "currency": A.currency_json(currency),
        }
        return self

    def accounts(self, accounts: str | list[str], realtime: bool = False) -> "Request":
        if isinstance(accounts, str):
            accounts = [accounts]
        key = "rt_accounts" if realtime else "accounts"
        self.message[key] = [A.account_json(a) for a in accounts]
        return self

    def rt_accounts(self, accounts: str | list[str]) -> "Request":
        return self.accounts(accounts, realtime=True)

    def books(self, books: list[dict], snapshot: bool = False) -> "Request":
        """Each book is ``{"taker_gets": issue, "taker_pays": issue, "both"?: bool}``."""
        out = []
        for book in books:
            entry = {}
            for side in ("taker_gets", "taker_pays"):
                if not book.get(side):
                    raise ValueError(f"Missing {side}")
                entry[side] = A.issue_json(book[side])
            if snapshot:
                entry["snapshot"] = True
            if book.get("both"):
                entry["both"] = True
            out.append(entry)
        self.message["books"] = out
        return self

    def streams(self, streams: str | list[str] | None) -> "Request":
        if streams:
            self.message["streams"] = [streams] if isinstance(streams, str) else list(streams)
        return self
