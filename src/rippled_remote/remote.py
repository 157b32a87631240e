# rippled_remote/remote.py
"""
Connection pool presenting one logical rippled network.

Events emitted on ``remote.events``:
    state             : aggregate state changed (OnlineState)
    connect           : offline -> online edge
    disconnect        : online -> offline edge
    subscribed        : a subscribe response was applied
    prepare_subscribe : a primary subscribe is being built (Request), extend it here
    ledger_closed     : a strictly newer ledger closed
    transaction       : a (deduplicated) transaction from our subscriptions
    transaction_all   : same; listening subscribes to the global transaction feed
    path_find_all     : every path_find update
    load              : load_base/load_factor changed
    net_<type>        : any other message type, untouched
    error             : unexpected payload from a server
"""
import asyncio
import logging
from collections.abc import Iterable
from typing import TYPE_CHECKING

from rippled_remote import amount as A
from rippled_remote.account import Account
from rippled_remote.connection import Connection, TransportFactory
from rippled_remote.constants import (
    ACCOUNT_ONE,
    BASE_FEEDS,
    CONNECT_TIMEOUT,
    DEFAULT_FEE_CUSHION,
    RECONNECT_BASE,
    RECONNECT_MAX,
    OnlineState,
    SeqAdjust,
)
from rippled_remote.errors import ConfigurationError, LocalError, no_servers_error
from rippled_remote.events import Emitter
from rippled_remote.fee_info import FeeSchedule
from rippled_remote.meta import Meta
from rippled_remote.orderbook import OrderBook
from rippled_remote.pathfind import PathFind
from rippled_remote.request import Request
from rippled_remote.sequence import SequenceCache
from rippled_remote.transport import WebsocketTransport

if TYPE_CHECKING:
    from rippled_remote.config import RemoteConfig, ServerConfig
    from rippled_remote.transaction import Transaction

log = logging.getLogger("rippled_remote.remote")

ACCOUNT_TX_OPTIONS = ("ledger_index_min", "ledger_index_max", "binary", "count", "descending", "offset", "limit")


class Remote:
    def __init__(
        self,
        servers: Iterable["ServerConfig"] = (),
        *,
        trusted: bool = False,
        local_signing: bool = True,
        local_sequence: bool | None = None,
        local_fee: bool | None = None,
        fee_cushion: float = DEFAULT_FEE_CUSHION,
        reconnect_base: float = RECONNECT_BASE,
        reconnect_max: float = RECONNECT_MAX,
        connect_timeout: float = CONNECT_TIMEOUT,
        transport_factory: TransportFactory = WebsocketTransport,
    ):
        self.trusted = trusted
        self.local_signing = local_signing
        # Local signing implies local fees and sequences
        self.local_sequence = True if local_signing else bool(local_sequence)
        self.local_fee = True if local_signing else bool(local_fee)
        self.fees = FeeSchedule(fee_cushion=fee_cushion)
        self.reconnect_base = reconnect_base
        self.reconnect_max = reconnect_max
        self.connect_timeout = connect_timeout
        self.transport_factory = transport_factory

        self.events = Emitter(
            on_add=self._transaction_listener_added,
            on_remove=self._transaction_listener_removed,
            watch=("transaction_all",),
        )
        self.state = OnlineState.OFFLINE
        self.ledger_current_index: int | None = None
        self.ledger_hash: str | None = None
        self.ledger_time: int | None = None
        self.stand_alone: bool | None = None
        self.testnet: bool | None = None
        self.transaction_subs = 0
        self.last_tx: str | None = None
        self.secrets: dict[str, str] = {}

        self.connections: list[Connection] = []
        self.primary: Connection | None = None
        self._next_id = 0
        self._stopping = False
        self._deferred: list[Request] = []
        self._accounts: dict[str, Account] = {}
        self._books: dict[str, OrderBook] = {}
        self._cur_path_find: PathFind | None = None
        self._account_root_cache: dict[tuple[str, str], dict] = {}
        self._sequences = SequenceCache(self)

        for server in servers:
            self.add_server(server)

    def __repr__(self):
        return f"<Remote {self.state} connections={len(self.connections)} ledger={self.ledger_current_index}>"

    @classmethod
    def from_config(cls, cfg: "RemoteConfig", **kwargs) -> "Remote":
        remote = cls(
            cfg.servers,
            trusted=cfg.trusted,
            local_signing=cfg.local_signing,
            local_sequence=cfg.local_sequence,
            local_fee=cfg.local_fee,
            fee_cushion=cfg.fee_cushion,
            reconnect_base=cfg.reconnect_base,
            reconnect_max=cfg.reconnect_max,
            connect_timeout=cfg.connect_timeout,
            **kwargs,
        )
        for nickname, info in cfg.accounts.items():
            # Index by nickname and by account id
            remote.set_secret(nickname, info.secret)
            remote.set_secret(info.account, info.secret)
        return remote

    @property
    def is_online(self) -> bool:
        return self.state == OnlineState.ONLINE

    # Fee schedule passthroughs, read-only
    @property
    def load_base(self) -> int:
        return self.fees.load_base

    @property
    def load_factor(self) -> int:
        return self.fees.load_factor

    @property
    def fee_base(self) -> int:
        return self.fees.fee_base

    @property
    def fee_ref(self) -> int:
        return self.fees.fee_ref

    @property
    def reserve_base(self) -> int | None:
        return self.fees.reserve_base

    @property
    def reserve_inc(self) -> int | None:
        return self.fees.reserve_inc

    # ------------------------------------------------------------------
    # Servers and aggregate state
    # ------------------------------------------------------------------
    def add_server(self, server: "ServerConfig") -> "Remote":
        for _ in range(server.pool):
            conn = Connection(
                self,
                server.url,
                primary=server.primary,
                transport_factory=self.transport_factory,
                reconnect_base=self.reconnect_base,
                reconnect_max=self.reconnect_max,
                connect_timeout=self.connect_timeout,
            )
            conn.events.on("connect", lambda conn=conn: self._on_connection_open(conn))
            conn.events.on("disconnect", lambda conn=conn: self._on_connection_close(conn))
            conn.events.on("message", lambda message, conn=conn: self._handle_message(message, conn))
            self.connections.append(conn)
        return self

    def connect(self) -> "Remote":
        if not self.connections:
            raise ConfigurationError("noServers", "No servers available.")
        self._stopping = False
        if self.state == OnlineState.OFFLINE:
            self._set_state(OnlineState.CONNECTING)
        for conn in self.connections:
            conn.connect()
        return self

    async def disconnect(self) -> None:
        self._stopping = True
        await asyncio.gather(*(conn.disconnect() for conn in self.connections))
        self._set_primary(None)
        self._set_state(OnlineState.OFFLINE)

    async def close(self) -> None:
        """Tear down: disconnect, fail whatever is still waiting, drop caches."""
        await self.disconnect()
        deferred, self._deferred = self._deferred, []
        for req in deferred:
            req.set_error(no_servers_error())
        if self._cur_path_find is not None:
            self._cur_path_find.notify_superceded()
            self._cur_path_find = None
        self._accounts.clear()
        self._books.clear()
        self._account_root_cache.clear()
        self._sequences.clear()

    async def __aenter__(self) -> "Remote":
        return self.connect()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    def _set_state(self, state: OnlineState) -> None:
        if self.state == state:
            return
        previous, self.state = self.state, state
        log.info(f"Remote state: {previous} -> {state}")
        self.events.emit("state", state)
        if state == OnlineState.ONLINE:
            self._flush_deferred()
            self.events.emit("connect")
        elif previous == OnlineState.ONLINE:
            self.events.emit("disconnect")

    def _update_state(self) -> None:
        if any(conn.is_open for conn in self.connections):
            self._set_state(OnlineState.ONLINE)
        elif self.state == OnlineState.ONLINE:
            self._set_state(OnlineState.OFFLINE)

    def _flush_deferred(self) -> None:
        deferred, self._deferred = self._deferred, []
        for req in deferred:
            if not req.resolved:
                self.request(req)

    def _set_primary(self, conn: Connection | None) -> None:
        if self.primary is not None:
            self.primary.primary = False
        self.primary = conn
        if conn is not None:
            conn.primary = True
            log.info(f"Primary server: {conn.url}")

    def _next_server(self) -> Connection | None:
        for conn in self.connections:
            if conn.is_open:
                return conn
        return None

    def _get_server(self) -> Connection | None:
        if self.primary is not None and self.primary.is_open:
            return self.primary
        conn = self._next_server()
        if conn is not None:
            self._set_primary(conn)
        return conn

    def _on_connection_open(self, conn: Connection) -> None:
        current = self.primary
        takes_over = current is None or not current.is_open or (conn.preferred and not current.preferred)
        if takes_over:
            self._set_primary(conn)
            self._server_prepare_subscribe().request(conn)
            if current is not None and current.is_open:
                unsubscribe = self._standing_request(self.request_unsubscribe())
                if unsubscribe is not None:
                    unsubscribe.request(current)
        else:
            self._base_subscribe().request(conn)
        self._update_state()

    def _on_connection_close(self, conn: Connection) -> None:
        if conn is self.primary and not self._stopping:
            self._set_primary(None)
            promoted = self._next_server()
            if promoted is not None:
                self._set_primary(promoted)
                subscribe = self._standing_request(self.request_subscribe())
                if subscribe is not None:
                    subscribe.request(promoted)
        self._update_state()

    def server_states(self) -> list[dict]:
        return [
            {
                "url": conn.url,
                "state": str(conn.state),
                "primary": conn.primary,
                "pending": len(conn.pending),
            }
            for conn in self.connections
        ]

    # ------------------------------------------------------------------
    # Feeds
    # ------------------------------------------------------------------
    def _transaction_listener_added(self, event: str) -> None:
        if not self.transaction_subs and self.is_online:
            self.request_subscribe("transactions").request()
        self.transaction_subs += 1

    def _transaction_listener_removed(self, event: str) -> None:
        self.transaction_subs -= 1
        if not self.transaction_subs and self.is_online:
            self.request_unsubscribe("transactions").request()

    def _standing_request(self, req: Request) -> Request | None:
        """Fill ``req`` with the standing feeds, or None if there are none."""
        if self.transaction_subs:
            streams = req.message.setdefault("streams", [])
            if "transactions" not in streams:
                streams.append("transactions")
        for entity in (*self._accounts.values(), *self._books.values()):
            if entity.subs:
                entity.add_to_subscribe(req)
        if not any(key in req.message for key in ("streams", "accounts", "books")):
            return None
        return req

    def _base_subscribe(self) -> Request:
        return self.request_subscribe(list(BASE_FEEDS)).on("success", self._on_subscribed)

    def _server_prepare_subscribe(self) -> Request:
        """Subscribe request for a (new) primary: base feeds plus standing feeds."""
        req = self.request_subscribe(list(BASE_FEEDS))
        self._standing_request(req)
        req.on("success", self._on_subscribed)
        self.events.emit("prepare_subscribe", req)
        return req

    def _on_subscribed(self, result: dict) -> None:
        self.stand_alone = bool(result.get("stand_alone"))
        self.testnet = bool(result.get("testnet"))
        if self.fees.update(result):
            self.events.emit("load", {"load_base": self.fees.load_base, "load_factor": self.fees.load_factor})
        if result.get("ledger_hash") and result.get("ledger_index"):
            self._on_ledger_closed(result)
        self.events.emit("subscribed")

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------
    def _handle_message(self, message: dict, conn: Connection | None = None) -> None:
        match message.get("type"):
            case "ledgerClosed":
                self._on_ledger_closed(message)
            case "transaction":
                self._on_transaction(message)
            case "path_find":
                if self._cur_path_find is not None:
                    self._cur_path_find.notify_update(message)
                self.events.emit("path_find_all", message)
            case "serverStatus":
                if "load_base" in message and "load_factor" in message:
                    load = {"load_base": message["load_base"], "load_factor": message["load_factor"]}
                    if self.fees.update(load):
                        self.events.emit("load", load)
            case msg_type:
                log.debug(f"net_{msg_type} from {conn.url if conn else '?'}")
                self.events.emit(f"net_{msg_type}", message)

    def _on_ledger_closed(self, message: dict) -> None:
        ledger_index = message.get("ledger_index")
        if not isinstance(ledger_index, int):
            log.warning(f"ledgerClosed without a usable ledger_index: {message}")
            return
        # Several connections report the same close; only strictly newer ledgers go out
        if self.ledger_current_index is not None and ledger_index < self.ledger_current_index:
            return
        self.ledger_time = message.get("ledger_time")
        self.ledger_hash = message.get("ledger_hash")
        self.ledger_current_index = ledger_index + 1
        self.fees.update({k: message.get(k) for k in ("fee_base", "fee_ref", "reserve_base", "reserve_inc")})
        self._account_root_cache.clear()
        log.debug(f"Ledger {ledger_index} closed")
        self.events.emit("ledger_closed", message)

    def _on_transaction(self, message: dict) -> None:
        tx_hash = (message.get("transaction") or {}).get("hash")
        # Drop a transaction delivered twice in a row (e.g. account + global feed)
        if tx_hash is not None and tx_hash == self.last_tx:
            return
        self.last_tx = tx_hash

        mmeta = message["mmeta"] = Meta(message.get("meta"))
        for account_id in mmeta.affected_accounts():
            account = self._accounts.get(account_id)
            if account is not None:
                account.notify_tx(message)
        for key in mmeta.affected_books():
            book = self._books.get(key)
            if book is not None:
                book.notify_tx(message)

        self.events.emit("transaction", message)
        self.events.emit("transaction_all", message)

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------
    def next_id(self) -> int:
        self._next_id += 1
        return self._next_id

    def request(self, req: Request) -> None:
        if not self.connections:
            raise ConfigurationError("noServers", "No servers available.")
        server = self._get_server() if self.is_online else None
        if server is None:
            log.debug(f"Deferring {req!r} until online")
            self._deferred.append(req)
            return
        server.request(req)

    # ------------------------------------------------------------------
    # Request builders
    # ------------------------------------------------------------------
    def request_server_info(self) -> Request:
        return Request(self, "server_info")

    def request_ledger(self, *, full=False, expand=False, transactions=False, accounts=False) -> Request:
        req = Request(self, "ledger")
        for name, flag in (("full", full), ("expand", expand), ("transactions", transactions), ("accounts", accounts)):
            if flag:
                req.message[name] = True
        return req

    def request_ledger_closed(self) -> Request:
        return Request(self, "ledger_closed")

    def request_ledger_header(self) -> Request:
        return Request(self, "ledger_header")

    def request_ledger_current(self) -> Request:
        return Request(self, "ledger_current")

    def request_ledger_entry(self, entry_type: str | None = None) -> Request:
        """``ledger_entry``; ``account_root`` lookups go through the current-ledger cache."""
        req = Request(self, "ledger_entry")
        if entry_type == "account_root":
            req.intercept = self._account_root_intercept
        return req

    def _account_root_key(self, req: Request) -> tuple[str, str] | None:
        account = req.message.get("account_root")
        if account is None:
            return None
        if "ledger_hash" in req.message:
            return account, req.message["ledger_hash"]
        return account, str(req.message.get("ledger_index", "current"))

    def _account_root_intercept(self, req: Request) -> bool:
        key = self._account_root_key(req)
        if key is None:
            return False
        node = self._account_root_cache.get(key)
        if node is not None:
            req.set_success({"node": node})
            return True

        def store(result):
            if result.get("node"):
                self._account_root_cache[key] = result["node"]

        req.on("success", store)
        return False

    def request_subscribe(self, streams: str | list[str] | None = None) -> Request:
        return Request(self, "subscribe").streams(streams)

    def request_unsubscribe(self, streams: str | list[str] | None = None) -> Request:
        return Request(self, "unsubscribe").streams(streams)

    def request_transaction_entry(self, tx_hash: str, ledger_hash: str | None = None) -> Request:
        req = Request(self, "transaction_entry").tx_hash(tx_hash)
        if ledger_hash is not None:
            req.ledger_hash(ledger_hash)
        return req

    def request_tx(self, tx_hash: str) -> Request:
        req = Request(self, "tx")
        req.message["transaction"] = tx_hash
        return req

    def request_account_info(self, account: str) -> Request:
        req = Request(self, "account_info")
        req.message["account"] = A.account_json(account)
        return req

    def request_account_lines(self, account: str, account_index: int | None = None, current: bool = False) -> Request:
        req = Request(self, "account_lines")
        req.message["account"] = A.account_json(account)
        if account_index:
            req.message["index"] = account_index
        return req.ledger_choose(current)

    def request_account_offers(self, account: str, account_index: int | None = None, current: bool = False) -> Request:
        req = Request(self, "account_offers")
        req.message["account"] = A.account_json(account)
        if account_index:
            req.message["index"] = account_index
        return req.ledger_choose(current)

    def request_account_tx(self, account: str, **options) -> Request:
        unknown = set(options) - set(ACCOUNT_TX_OPTIONS)
        if unknown:
            raise LocalError("invalidParams", f"Unknown account_tx options: {sorted(unknown)}")
        req = Request(self, "account_tx")
        req.message["account"] = A.account_json(account)
        req.message.update({k: v for k, v in options.items() if v is not None})
        return req

    def request_book_offers(self, taker_gets: dict, taker_pays: dict, taker: str | None = None) -> Request:
        req = Request(self, "book_offers")
        req.message["taker_gets"] = A.issue_json(taker_gets)
        req.message["taker_pays"] = A.issue_json(taker_pays)
        req.message["taker"] = A.account_json(taker) if taker else ACCOUNT_ONE
        return req

    def _require_trusted(self, command: str) -> None:
        # Don't send secrets to a server we don't trust
        if not self.trusted:
            raise LocalError("serverUntrusted", f"Refusing to send a secret with {command} to an untrusted server.")

    def request_wallet_accounts(self, seed: str) -> Request:
        self._require_trusted("wallet_accounts")
        req = Request(self, "wallet_accounts")
        req.message["seed"] = seed
        return req

    def request_sign(self, secret: str, tx_json: dict) -> Request:
        self._require_trusted("sign")
        return Request(self, "sign").secret(secret).tx_json(tx_json)

    def request_submit(self) -> Request:
        return Request(self, "submit")

    def request_account_balance(self, account: str, current: bool = False) -> Request:
        req = self.request_ledger_entry("account_root").account_root(account).ledger_choose(current)
        req.on("success", lambda result: req.events.emit("account_balance", int(result["node"]["Balance"])))
        return req.transform(lambda result: int(result["node"]["Balance"]))

    def request_account_flags(self, account: str, current: bool = False) -> Request:
        req = self.request_ledger_entry("account_root").account_root(account).ledger_choose(current)
        req.on("success", lambda result: req.events.emit("account_flags", result["node"]["Flags"]))
        return req.transform(lambda result: result["node"]["Flags"])

    def request_owner_count(self, account: str, current: bool = False) -> Request:
        req = self.request_ledger_entry("account_root").account_root(account).ledger_choose(current)
        req.on("success", lambda result: req.events.emit("owner_count", result["node"]["OwnerCount"]))
        return req.transform(lambda result: result["node"]["OwnerCount"])

    def request_ripple_balance(self, account: str, issuer: str, currency: str, current: bool = False) -> Request:
        """Trust line state between ``account`` and ``issuer``, from ``account``'s side.

        A missing line fails with ``remoteError`` / ``entryNotFound``.
        """
        req = self.request_ledger_entry("ripple_state").ripple_state(account, issuer, currency).ledger_choose(current)

        def ripple_state(result):
            node = result["node"]
            low, high, balance = node["LowLimit"], node["HighLimit"], node["Balance"]
            # The stored balance is from the low account's side
            account_high = high["issuer"] == account
            mine = A.negate_value(balance) if account_high else dict(balance)
            theirs = dict(balance) if account_high else A.negate_value(balance)
            return {
                "account_balance": {**mine, "issuer": account},
                "peer_balance": {**theirs, "issuer": issuer},
                "account_limit": {**(high if account_high else low), "issuer": issuer},
                "peer_limit": {**(low if account_high else high), "issuer": account},
                "account_quality_in": node.get("HighQualityIn" if account_high else "LowQualityIn"),
                "peer_quality_in": node.get("LowQualityIn" if account_high else "HighQualityIn"),
                "account_quality_out": node.get("HighQualityOut" if account_high else "LowQualityOut"),
                "peer_quality_out": node.get("LowQualityOut" if account_high else "HighQualityOut"),
            }

        req.on("success", lambda result: req.events.emit("ripple_state", ripple_state(result)))
        return req.transform(ripple_state)

    @staticmethod
    def _source_currencies(src_currencies) -> list[dict]:
        out = []
        for ci in src_currencies:
            entry = {}
            if "issuer" in ci:
                entry["issuer"] = A.account_json(ci["issuer"])
            if "currency" in ci:
                entry["currency"] = A.currency_json(ci["currency"])
            out.append(entry)
        return out

    def _path_request(self, command: str, src_account, dst_account, dst_amount, src_currencies) -> Request:
        req = Request(self, command)
        req.message["source_account"] = A.account_json(src_account)
        req.message["destination_account"] = A.account_json(dst_account)
        req.message["destination_amount"] = A.amount_json(dst_amount)
        if src_currencies:
            req.message["source_currencies"] = self._source_currencies(src_currencies)
        return req

    def request_ripple_path_find(self, src_account, dst_account, dst_amount, src_currencies=None) -> Request:
        return self._path_request("ripple_path_find", src_account, dst_account, dst_amount, src_currencies)

    def request_path_find_create(self, src_account, dst_account, dst_amount, src_currencies=None) -> Request:
        req = self._path_request("path_find", src_account, dst_account, dst_amount, src_currencies)
        req.message["subcommand"] = "create"
        return req

    def request_path_find_close(self) -> Request:
        req = Request(self, "path_find")
        req.message["subcommand"] = "close"
        return req

    def request_unl_list(self) -> Request:
        return Request(self, "unl_list")

    def request_unl_add(self, addr: str, comment: str | None = None) -> Request:
        req = Request(self, "unl_add")
        req.message["node"] = addr
        if comment:
            req.message["comment"] = comment
        return req

    def request_unl_delete(self, node: str) -> Request:
        req = Request(self, "unl_delete")
        req.message["node"] = node
        return req

    def request_peers(self) -> Request:
        return Request(self, "peers")

    def request_connect(self, ip: str, port: int | None = None) -> Request:
        req = Request(self, "connect")
        req.message["ip"] = ip
        if port:
            req.message["port"] = port
        return req

    def ledger_accept(self) -> Request:
        """Ask a stand-alone server to close the current ledger."""
        if not self.stand_alone:
            raise LocalError("notStandAlone", "ledger_accept is only available in stand-alone mode.")
        return Request(self, "ledger_accept").request()

    # ------------------------------------------------------------------
    # Higher level
    # ------------------------------------------------------------------
    def account(self, account_id: str) -> Account:
        account_id = A.account_json(account_id)
        account = self._accounts.get(account_id)
        if account is None:
            account = self._accounts[account_id] = Account(self, account_id)
        return account

    def book(self, taker_gets: dict, taker_pays: dict) -> OrderBook:
        book = OrderBook(self, taker_gets, taker_pays)
        return self._books.setdefault(book.key, book)

    def path_find(self, src_account, dst_account, dst_amount, src_currencies=None) -> PathFind:
        path_find = PathFind(self, src_account, dst_account, dst_amount, src_currencies)
        if self._cur_path_find is not None:
            self._cur_path_find.notify_superceded()
        self._cur_path_find = path_find
        path_find.create()
        return path_find

    def transaction(self) -> "Transaction":
        from rippled_remote.transaction import Transaction

        return Transaction(self)

    def account_seq(self, account: str, advance: SeqAdjust | None = None) -> int | None:
        return self._sequences.get(A.account_json(account), advance)

    def set_account_seq(self, account: str, seq: int) -> None:
        self._sequences.set(A.account_json(account), seq)

    def release_account_seq(self, account: str, seq: int) -> bool:
        return self._sequences.release(A.account_json(account), seq)

    def account_seq_cache(self, account: str, current: bool = False) -> Request:
        return self._sequences.fetch(A.account_json(account), current)

    def dirty_account_root(self, account: str) -> None:
        account = A.account_json(account)
        for key in [k for k in self._account_root_cache if k[0] == account]:
            del self._account_root_cache[key]

    def set_secret(self, account: str, secret: str) -> None:
        self.secrets[account] = secret

    def fee_tx(self, units: int) -> int:
        """Fee in drops for ``units`` fee units at the current load."""
        return self.fees.fee_for(units)

    def fee_tx_unit(self) -> float:
        return self.fees.fee_unit()

    def reserve(self, owner_count: int = 0) -> int:
        return self.fees.reserve(owner_count)
