from typing import Final
from enum import StrEnum


# Black hole account - valid address that nobody can sign for
ACCOUNT_ZERO: Final = "rrrrrrrrrrrrrrrrrrrrrhoLvTp"
ACCOUNT_ONE: Final = "rrrrrrrrrrrrrrrrrrrrBZbvji"


class TransportState(StrEnum):
    CLOSED     = "closed"
    CONNECTING = "connecting"
    OPEN       = "open"
    CLOSING    = "closing"


class OnlineState(StrEnum):
    OFFLINE    = "offline"
    CONNECTING = "connecting"
    ONLINE     = "online"


class TxState(StrEnum):
    BUILDING         = "building"
    CLIENT_SUBMITTED = "client_submitted"
    REMOTE_ERROR     = "remoteError"
    CLIENT_PROPOSED  = "client_proposed"
    CLIENT_MISSING   = "client_missing"
    CLIENT_LOST      = "client_lost"


class ResultBand(StrEnum):
    LOCAL     = "local"
    MALFORMED = "malformed"
    FAILURE   = "failure"
    RETRY     = "retry"
    SUCCESS   = "success"
    CLAIMED   = "claimed"


class SeqAdjust(StrEnum):
    ADVANCE = "ADVANCE"
    REWIND  = "REWIND"


# Lower bound (inclusive) of each engine result band, highest first.
# Anything below MALFORMED_FLOOR is a local error.
CLAIMED_FLOOR   = 100
SUCCESS_FLOOR   = 0
RETRY_FLOOR     = -199
FAILURE_FLOOR   = -299
MALFORMED_FLOOR = -399

RESULT_PREFIX_BANDS: Final = {
    "tej": ResultBand.LOCAL,
    "tel": ResultBand.LOCAL,
    "tem": ResultBand.MALFORMED,
    "tef": ResultBand.FAILURE,
    "ter": ResultBand.RETRY,
    "tes": ResultBand.SUCCESS,
    "tec": ResultBand.CLAIMED,
}

REJECTED_BANDS: Final = frozenset({ResultBand.LOCAL, ResultBand.MALFORMED, ResultBand.FAILURE})

# Ledgers after submission before a transaction is reported missing / given up on.
SUBMIT_MISSING = 4
SUBMIT_LOST = 8

# Fee/load defaults until the server tells us otherwise
DEFAULT_LOAD_BASE = 256
DEFAULT_LOAD_FACTOR = 256
DEFAULT_FEE_REF = 10
DEFAULT_FEE_BASE = 10
DEFAULT_FEE_CUSHION = 1.5
DEFAULT_FEE_UNITS = 10

MIN_TRANSFER_RATE = 1_000_000_000

RECONNECT_BASE = 1.0
RECONNECT_MAX = 10.0
CONNECT_TIMEOUT = 10.0
WS_PING_INTERVAL = 20
WS_PING_TIMEOUT = 20
WS_CLOSE_TIMEOUT = 1

BASE_FEEDS: Final = ("ledger", "server")

__all__ = [
    "ACCOUNT_ONE",
    "ACCOUNT_ZERO",
    "BASE_FEEDS",
    "CLAIMED_FLOOR",
    "CONNECT_TIMEOUT",
    "DEFAULT_FEE_BASE",
    "DEFAULT_FEE_CUSHION",
    "DEFAULT_FEE_REF",
    "DEFAULT_FEE_UNITS",
    "DEFAULT_LOAD_BASE",
    "DEFAULT_LOAD_FACTOR",
    "FAILURE_FLOOR",
    "MALFORMED_FLOOR",
    "MIN_TRANSFER_RATE",
    "RECONNECT_BASE",
    "RECONNECT_MAX",
    "REJECTED_BANDS",
    "RESULT_PREFIX_BANDS",
    "RETRY_FLOOR",
    "SUBMIT_LOST",
    "SUBMIT_MISSING",
    "SUCCESS_FLOOR",
    "WS_CLOSE_TIMEOUT",
    "WS_PING_INTERVAL",
    "WS_PING_TIMEOUT",

    ######
    "OnlineState",
    "ResultBand",
    "SeqAdjust",
    "TransportState",
    "TxState",
]
