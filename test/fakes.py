"""In-memory transport and server doubles for driving Remote/Connection in tests."""
import asyncio
import json
from collections import defaultdict

from rippled_remote.transport import TransportClosed

GENESIS = "rHb9CJAWyB4rj91VRWn96DkukG4bwdtyTh"
GENESIS_SEED = "snoPBrXtMeMyMHUVTgbuqAfg1SUTb"
ALICE = "rPT1Sjq2YGrBMTttX4GZHjKu9dyfzbpAYe"
BOB = "r9cZA1mLK5R5Am25ArfXFmqgNwjZgnfk59"

LEDGER_HASH = "A" * 64

SUBSCRIBE_RESULT = {
    "ledger_index": 100,
    "ledger_hash": LEDGER_HASH,
    "ledger_time": 780000000,
    "fee_base": 10,
    "fee_ref": 10,
    "reserve_base": 10_000_000,
    "reserve_inc": 2_000_000,
    "load_base": 256,
    "load_factor": 256,
}

_CLOSED = object()


async def settle(rounds: int = 100):
    """Let every ready task run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


class FakeTransport:
    def __init__(self, url: str, network: "FakeNetwork"):
        self.url = url
        self.network = network
        self.sent: list[dict] = []
        self.closed = False
        self._inbox: asyncio.Queue = asyncio.Queue()

    async def open(self):
        if self.url in self.network.refuse:
            raise TransportClosed(f"refused: {self.url}")

    async def send(self, data: str):
        if self.closed:
            raise TransportClosed("closed")
        message = json.loads(data)
        self.sent.append(message)
        self.network.answer(self, message)

    async def recv(self) -> str:
        item = await self._inbox.get()
        if item is _CLOSED:
            raise TransportClosed("closed")
        return item

    async def close(self):
        self.drop()

    def drop(self):
        if not self.closed:
            self.closed = True
            self._inbox.put_nowait(_CLOSED)

    def feed(self, message: dict | str):
        self._inbox.put_nowait(message if isinstance(message, str) else json.dumps(message))

    def respond(self, request: dict, result: dict | None = None):
        self.feed({"type": "response", "id": request["id"], "status": "success", "result": result or {}})

    def respond_error(self, request: dict, error: str):
        self.feed({"type": "response", "id": request["id"], "status": "error", "error": error, "request": request})

    def commands(self, command: str) -> list[dict]:
        return [m for m in self.sent if m["command"] == command]


class FakeNetwork:
    """``transport_factory`` handing out FakeTransports and auto-answering commands.

    ``replies[command]`` is a result dict, a callable ``(message) -> result``
    (None for no answer), or an ``Error(code)``.
    """

    class Error(str):
        pass

    def __init__(self):
        self.transports: dict[str, list[FakeTransport]] = defaultdict(list)
        self.refuse: set[str] = set()
        self.replies: dict = {
            "subscribe": SUBSCRIBE_RESULT,
            "unsubscribe": {},
        }

    def __call__(self, url: str) -> FakeTransport:
        transport = FakeTransport(url, self)
        self.transports[url].append(transport)
        return transport

    def latest(self, url: str) -> FakeTransport:
        return self.transports[url][-1]

    def sent(self, command: str) -> list[dict]:
        return [m for ts in self.transports.values() for t in ts for m in t.commands(command)]

    def answer(self, transport: FakeTransport, message: dict):
        reply = self.replies.get(message["command"])
        if reply is None:
            return
        if isinstance(reply, FakeNetwork.Error):
            transport.respond_error(message, str(reply))
            return
        result = reply(message) if callable(reply) else reply
        if result is not None:
            transport.respond(message, result)


def account_root(account: str, balance: str, sequence: int = 1, index: str = "1") -> dict:
    return {
        "ModifiedNode": {
            "LedgerEntryType": "AccountRoot",
            "LedgerIndex": index * 64,
            "FinalFields": {"Account": account, "Balance": balance, "Sequence": sequence, "Flags": 0, "OwnerCount": 0},
            "PreviousFields": {"Balance": "0"},
        }
    }


def transaction_message(tx_hash: str, nodes: list[dict], account: str = GENESIS, ledger_index: int = 101) -> dict:
    return {
        "type": "transaction",
        "engine_result": "tesSUCCESS",
        "engine_result_code": 0,
        "ledger_index": ledger_index,
        "validated": True,
        "transaction": {"TransactionType": "Payment", "Account": account, "hash": tx_hash},
        "meta": {"TransactionIndex": 0, "TransactionResult": "tesSUCCESS", "AffectedNodes": nodes},
    }


def payment_message(tx_hash: str, src: str = GENESIS, dst: str = ALICE) -> dict:
    return transaction_message(tx_hash, [account_root(src, "900", 2, "1"), account_root(dst, "100", 1, "2")], src)
