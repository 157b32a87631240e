# rippled_remote/transaction.py
"""
Transaction builder and submission state machine.

    remote.transaction()          # build
        .payment(src, dst, amt)   # major parameters
        .set_flags(...)           # options
        .on("final", ...)         # listen
        .submit()                 # send

Events emitted on ``tx.events``:
    success  : the submit request succeeded (raw response)
    error    : submission failed, locally or remotely
    proposed : advisory result from the server we submitted to
    pending  : not found in the ledger that just closed
    lost     : gave up looking
    final    : authoritative result (or gave up), exactly once
    state    : state changed

State flow:
    client_submitted
     |- remoteError          submit request failed
      \\- client_proposed    server provisionally handled it
       |- client_missing     not in a ledger when expected
       |  \\- client_lost    stopped looking
       |- tesSUCCESS / ter* / tec*   found in a closed ledger
"""
import asyncio
import hashlib
import logging
from collections.abc import Callable
from datetime import datetime
from typing import TYPE_CHECKING, Any

from xrpl import XRPLException
from xrpl.core.binarycodec import encode, encode_for_signing
from xrpl.core.keypairs import derive_keypair, sign
from xrpl.models.transactions import OfferCreateFlag, PaymentFlag, TrustSetFlag
from xrpl.models.transactions.transaction import Transaction as XRPLTransaction
from xrpl.utils import datetime_to_ripple_time

from rippled_remote import amount as A
from rippled_remote.constants import (
    CLAIMED_FLOOR,
    DEFAULT_FEE_UNITS,
    FAILURE_FLOOR,
    MALFORMED_FLOOR,
    MIN_TRANSFER_RATE,
    REJECTED_BANDS,
    RESULT_PREFIX_BANDS,
    RETRY_FLOOR,
    SUBMIT_LOST,
    SUBMIT_MISSING,
    SUCCESS_FLOOR,
    ResultBand,
    SeqAdjust,
    TxState,
)
from rippled_remote.errors import LocalError, RemoteError, RemoteException
from rippled_remote.events import Emitter

if TYPE_CHECKING:
    from rippled_remote.remote import Remote
    from rippled_remote.request import Request

log = logging.getLogger("rippled_remote.transaction")

NOT_FOUND_ERRORS = frozenset({"transactionNotFound", "txnNotFound"})

# Flag names per transaction type
FLAGS: dict[str, dict[str, int]] = {
    "AccountSet": {
        "RequireDestTag": 0x00010000,
        "OptionalDestTag": 0x00020000,
        "RequireAuth": 0x00040000,
        "OptionalAuth": 0x00080000,
        "DisallowXRP": 0x00100000,
        "AllowXRP": 0x00200000,
    },
    "OfferCreate": {
        "Passive": OfferCreateFlag.TF_PASSIVE,
        "ImmediateOrCancel": OfferCreateFlag.TF_IMMEDIATE_OR_CANCEL,
        "FillOrKill": OfferCreateFlag.TF_FILL_OR_KILL,
        "Sell": OfferCreateFlag.TF_SELL,
    },
    "Payment": {
        "NoRippleDirect": PaymentFlag.TF_NO_RIPPLE_DIRECT,
        "PartialPayment": PaymentFlag.TF_PARTIAL_PAYMENT,
        "LimitQuality": PaymentFlag.TF_LIMIT_QUALITY,
    },
    "TrustSet": {
        "SetAuth": TrustSetFlag.TF_SET_AUTH,
        "NoRipple": TrustSetFlag.TF_SET_NO_RIPPLE,
        "ClearNoRipple": TrustSetFlag.TF_CLEAR_NO_RIPPLE,
        "SetFreeze": TrustSetFlag.TF_SET_FREEZE,
        "ClearFreeze": TrustSetFlag.TF_CLEAR_FREEZE,
    },
}

FEE_UNITS = {"default": DEFAULT_FEE_UNITS}


def result_band(code: int | None = None, result: str | None = None) -> ResultBand | None:
    """Classify an engine result by numeric code, or by its prefix if there is no code."""
    if isinstance(code, int) and not isinstance(code, bool):
        if code >= CLAIMED_FLOOR:
            return ResultBand.CLAIMED
        if code >= SUCCESS_FLOOR:
            return ResultBand.SUCCESS
        if code >= RETRY_FLOOR:
            return ResultBand.RETRY
        if code >= FAILURE_FLOOR:
            return ResultBand.FAILURE
        if code >= MALFORMED_FLOOR:
            return ResultBand.MALFORMED
        return ResultBand.LOCAL
    if isinstance(result, str):
        return RESULT_PREFIX_BANDS.get(result[:3])
    return None


def is_rejected(code: int | None = None, result: str | None = None) -> bool:
    """Rejected by the server we talked to. Informational: other servers may still apply it."""
    return result_band(code, result) in REJECTED_BANDS


def _sha512half(b: bytes) -> bytes:
    return hashlib.sha512(b).digest()[:32]


def txid_from_signed_blob_hex(signed_blob_hex: str) -> str:
    # XRPL txid = SHA512Half(0x54584E00 || signed_bytes)
    return _sha512half(bytes.fromhex("54584E00") + bytes.fromhex(signed_blob_hex)).hex().upper()


StatusCallback = Callable[[str, Any], object]


class Transaction:
    def __init__(self, remote: "Remote"):
        self.remote = remote
        self.events = Emitter()
        self.tx_json: dict[str, Any] = {"Flags": 0}
        self.hash: str | None = None
        self.submit_index: int | None = None
        self.state: str = TxState.BUILDING
        self.finalized = False
        self.result: dict | None = None
        self.error: dict | None = None
        self._secret: str | None = None
        self._build_path = False
        self._callback: StatusCallback | None = None
        self._allocated_seq: int | None = None
        self._submit_request: "Request | None" = None
        self._task: asyncio.Task | None = None
        self._waiters: list[asyncio.Future] = []

    def __repr__(self):
        return f"<Transaction {self.tx_json.get('TransactionType')} {self.hash} {self.state}>"

    @classmethod
    def from_model(cls, remote: "Remote", model: XRPLTransaction, secret: str | None = None) -> "Transaction":
        """Wrap an xrpl-py transaction model."""
        tx = cls(remote)
        tx.tx_json = model.to_xrpl()
        tx.tx_json.setdefault("Flags", 0)
        tx._secret = secret or tx._account_secret(tx.tx_json.get("Account"))
        return tx

    def on(self, event: str, listener) -> "Transaction":
        self.events.on(event, listener)
        return self

    def once(self, event: str, listener) -> "Transaction":
        self.events.once(event, listener)
        return self

    def _set_state(self, state: str) -> None:
        if self.state != state:
            self.state = state
            self.events.emit("state", state)

    # ------------------------------------------------------------------
    # Classification
    # ------------------------------------------------------------------
    def fee_units(self) -> int:
        return FEE_UNITS["default"]

    @staticmethod
    def band(code: int | None = None, result: str | None = None) -> ResultBand | None:
        return result_band(code, result)

    @staticmethod
    def is_rejected(code: int | None = None, result: str | None = None) -> bool:
        return is_rejected(code, result)

    # ------------------------------------------------------------------
    # Completion and signing
    # ------------------------------------------------------------------
    def complete(self) -> dict:
        """Fill Fee and SigningPubKey if absent."""
        if "Fee" not in self.tx_json and self.remote.local_fee:
            self.tx_json["Fee"] = str(self.remote.fee_tx(self.fee_units()))
        if not self.tx_json.get("SigningPubKey") and self.remote.local_signing and self._secret:
            public_key, _ = derive_keypair(self._secret)
            self.tx_json["SigningPubKey"] = public_key
        return self.tx_json

    def serialize(self) -> str:
        return encode(self.tx_json)

    def sign(self) -> str:
        """Sign locally, set the hash and return the signed blob."""
        public_key, private_key = derive_keypair(self._secret)
        if not self.tx_json.get("SigningPubKey"):
            self.tx_json["SigningPubKey"] = public_key
        signing_blob = encode_for_signing(self.tx_json)
        to_sign = signing_blob if isinstance(signing_blob, str) else signing_blob.hex()
        self.tx_json["TxnSignature"] = sign(to_sign, private_key)
        signed_blob_hex = self.serialize()
        self.hash = txid_from_signed_blob_hex(signed_blob_hex)
        return signed_blob_hex

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------
    def submit(self, callback: StatusCallback | None = None) -> "Transaction":
        """Send to the network.

        ``callback(status, info)`` gets the final status: a result code
        (``tesSUCCESS``, ``tec*``...), a ``tej*`` local code or ``tejLost``.
        """
        self._callback = callback
        account = self.tx_json.get("Account")

        if not A.is_valid_account(account):
            return self._fail_local("tejInvalidAccount", "Bad account.")
        if self._secret is None:
            self._secret = self._account_secret(account)
        presigned = bool(self.tx_json.get("TxnSignature"))
        if not self._secret and not presigned:
            return self._fail_local("tejSecretUnknown", "Could not sign transaction because the secret is unknown.")
        if not presigned and not self.remote.local_signing and not self.remote.trusted:
            return self._fail_local("tejServerUntrusted", "Attempt to give a secret to an untrusted server.")

        self.submit_index = self.remote.ledger_current_index
        self.remote.events.on("ledger_closed", self._on_ledger_closed)
        self._set_state(TxState.CLIENT_SUBMITTED)
        self._task = asyncio.create_task(self._submit_pipeline(), name=f"submit:{account}")
        return self

    async def _submit_pipeline(self) -> None:
        try:
            if self.remote.local_sequence and not self.tx_json.get("Sequence"):
                await self._allocate_sequence()
            self.complete()
            req = self._prepare_submit()
            self._submit_request = req
            req.on("success", self._on_submit_success).on("error", self._on_submit_error)
            req.request()
        except RemoteException as e:
            self._on_submit_error(e.to_dict())
        except (XRPLException, ValueError) as e:
            log.warning(f"Could not prepare {self!r}: {e}")
            self._on_submit_error({"error": "tejLocalError", "error_message": str(e)})

    async def _allocate_sequence(self) -> None:
        account = self.tx_json["Account"]
        seq = self.remote.account_seq(account, SeqAdjust.ADVANCE)
        if seq is None:
            # Last closed ledger first, then the current one
            try:
                await self.remote.account_seq_cache(account, False)
            except RemoteError as e:
                log.debug(f"Closed-ledger sequence fetch for {account} failed ({e.error}), trying current")
                await self.remote.account_seq_cache(account, True)
            seq = self.remote.account_seq(account, SeqAdjust.ADVANCE)
            if seq is None:
                raise RemoteError("sequenceUnavailable", f"No sequence for {account}")
        self.tx_json["Sequence"] = seq
        self._allocated_seq = seq

    def _prepare_submit(self) -> "Request":
        req = self.remote.request_submit()
        if self.remote.local_signing and self._secret:
            req.tx_blob(self.sign())
        elif self.tx_json.get("TxnSignature"):
            blob = self.serialize()
            self.hash = txid_from_signed_blob_hex(blob)
            req.tx_blob(blob)
        else:
            req.secret(self._secret).build_path(self._build_path).tx_json(self.tx_json)
        return req

    def _on_submit_success(self, result: dict) -> None:
        if self.finalized:
            return
        self.events.emit("success", result)
        engine_result = result.get("engine_result")
        if not engine_result:
            return
        self.hash = (result.get("tx_json") or {}).get("hash", self.hash)
        code = result.get("engine_result_code")
        # The numeric code decides when present, so tefPAST_SEQ at -190 keeps its sequence
        rejected = is_rejected(code, engine_result)
        if rejected and self._allocated_seq is not None:
            # Never reached the ledger, hand the sequence back
            self.remote.release_account_seq(self.tx_json["Account"], self._allocated_seq)
            self._allocated_seq = None
        self._set_state(TxState.CLIENT_PROPOSED)
        log.debug(f"{self.hash} proposed: {engine_result} ({code})")
        self.events.emit(
            "proposed",
            {
                "tx_json": result.get("tx_json"),
                "result": engine_result,
                "result_code": code,
                "result_message": result.get("engine_result_message"),
                "rejected": rejected,
            },
        )

    def _on_submit_error(self, error: dict) -> None:
        if self.finalized:
            return
        self._set_state(TxState.REMOTE_ERROR)
        self._detach()
        self.finalized = True
        self.error = error
        self.events.emit("error", error)
        self._notify(error.get("error"), error)
        self._wake()

    def _fail_local(self, code: str, message: str) -> "Transaction":
        error = {"error": code, "error_message": message}
        self.finalized = True
        self.error = error
        self.events.emit("error", error)
        self._notify(code, error)
        self._wake()
        return self

    # ------------------------------------------------------------------
    # Finality
    # ------------------------------------------------------------------
    def _on_ledger_closed(self, message: dict) -> None:
        if self.finalized:
            return
        ledger_index = message.get("ledger_index")
        if self.submit_index is None:
            self.submit_index = ledger_index
        if self.hash is None:
            # Sequence fetch or remote-signed submit still unanswered
            if self.submit_index + SUBMIT_LOST < ledger_index:
                self._give_up(
                    {"error": "tejLost", "error_message": "No submit response before giving up."}, ledger_index
                )
            return
        req = self.remote.request_transaction_entry(self.hash, message.get("ledger_hash"))
        req.on("success", self._on_entry_found)
        req.on("error", lambda error: self._on_entry_missing(error, ledger_index))
        req.request()

    def _on_entry_found(self, result: dict) -> None:
        if self.finalized:
            return
        code = (result.get("metadata") or {}).get("TransactionResult")
        self._detach()
        self.finalized = True
        self.result = result
        self._set_state(code)
        log.debug(f"{self.hash} final: {code}")
        self.events.emit("final", result)
        self._notify(code, result)
        self._wake()

    def _on_entry_missing(self, error: dict, ledger_index: int) -> None:
        if self.finalized:
            return
        if error.get("error") != "remoteError" or (error.get("remote") or {}).get("error") not in NOT_FOUND_ERRORS:
            log.debug(f"transaction_entry for {self.hash} failed: {error}")
            return
        if self.submit_index + SUBMIT_LOST < ledger_index:
            self._give_up(error, ledger_index)
        elif self.submit_index + SUBMIT_MISSING < ledger_index:
            self._set_state(TxState.CLIENT_MISSING)
            self.events.emit("pending", error)
        else:
            self.events.emit("pending", error)

    def _give_up(self, error: dict, ledger_index: int) -> None:
        self._set_state(TxState.CLIENT_LOST)
        self._detach()
        self.finalized = True
        if self._task is not None and not self._task.done():
            self._task.cancel()
        if self._submit_request is None and self._allocated_seq is not None:
            # Never sent
            self.remote.release_account_seq(self.tx_json["Account"], self._allocated_seq)
            self._allocated_seq = None
        self.error = {"error": "tejLost", "error_message": "Gave up looking for transaction.", "remote": error}
        log.info(f"{self.hash or self} lost after ledger {ledger_index}")
        self.events.emit("lost", error)
        self._notify("tejLost", error)
        self.events.emit("final", error)
        self._wake()

    def _detach(self) -> None:
        self.remote.events.remove_listener("ledger_closed", self._on_ledger_closed)

    def _notify(self, status: str | None, info: Any) -> None:
        if self._callback is not None:
            self._callback(status, info)

    def _wake(self) -> None:
        for fut in self._waiters:
            if not fut.done():
                fut.set_result(None)
        self._waiters.clear()

    async def final(self) -> dict:
        """Wait for the final result. Raises RemoteError on error, or when lost."""
        if not self.finalized:
            fut = asyncio.get_running_loop().create_future()
            self._waiters.append(fut)
            await fut
        if self.result is not None:
            return self.result
        raise RemoteError.from_dict(self.error)

    # ------------------------------------------------------------------
    # Options
    # ------------------------------------------------------------------
    def _account_secret(self, account: str | None) -> str | None:
        return self.remote.secrets.get(account) if account else None

    def secret(self, secret: str) -> "Transaction":
        self._secret = secret
        return self

    def build_path(self, build: bool) -> "Transaction":
        """Have the server construct a path (only with remote signing)."""
        self._build_path = build
        return self

    def destination_tag(self, tag: int | None) -> "Transaction":
        if tag is not None:
            self.tx_json["DestinationTag"] = tag
        return self

    def source_tag(self, tag: int | None) -> "Transaction":
        if tag:
            self.tx_json["SourceTag"] = tag
        return self

    def send_max(self, send_max) -> "Transaction":
        if send_max:
            self.tx_json["SendMax"] = A.amount_json(send_max)
        return self

    @staticmethod
    def _path_rewrite(path: list[dict]) -> list[dict]:
        out = []
        for node in path:
            step = {}
            if "account" in node:
                step["account"] = A.account_json(node["account"])
            if "issuer" in node:
                step["issuer"] = A.account_json(node["issuer"])
            if "currency" in node:
                step["currency"] = A.currency_json(node["currency"])
            out.append(step)
        return out

    def path_add(self, path: list[dict]) -> "Transaction":
        self.tx_json.setdefault("Paths", []).append(self._path_rewrite(path))
        return self

    def paths(self, paths: list[list[dict]]) -> "Transaction":
        for path in paths:
            self.path_add(path)
        return self

    def transfer_rate(self, rate: int) -> "Transaction":
        """Rate in billionths; 1e9 means no fee."""
        rate = int(rate)
        if rate < MIN_TRANSFER_RATE:
            raise LocalError("invalidTransferRate", f"Transfer rate {rate} is below {MIN_TRANSFER_RATE}")
        self.tx_json["TransferRate"] = rate
        return self

    def set_flags(self, flags: str | list[str] | None) -> "Transaction":
        if not flags:
            return self
        known = FLAGS.get(self.tx_json.get("TransactionType"), {})
        for flag in [flags] if isinstance(flags, str) else flags:
            if flag not in known:
                raise LocalError("invalidFlag", f"{flag} is not a {self.tx_json.get('TransactionType')} flag")
            self.tx_json["Flags"] = self.tx_json.get("Flags", 0) | int(known[flag])
        return self

    # ------------------------------------------------------------------
    # Transaction types
    # ------------------------------------------------------------------
    def _start(self, transaction_type: str, src: str) -> None:
        self.tx_json["TransactionType"] = transaction_type
        self.tx_json["Account"] = A.account_json(src)
        self._secret = self._account_secret(src)

    def account_set(self, src: str) -> "Transaction":
        self._start("AccountSet", src)
        return self

    def offer_cancel(self, src: str, sequence: int) -> "Transaction":
        self._start("OfferCancel", src)
        self.tx_json["OfferSequence"] = int(sequence)
        return self

    def offer_create(self, src: str, taker_pays, taker_gets, expiration=None, cancel_sequence=None) -> "Transaction":
        self._start("OfferCreate", src)
        self.tx_json["TakerPays"] = A.amount_json(taker_pays)
        self.tx_json["TakerGets"] = A.amount_json(taker_gets)
        if expiration:
            self.tx_json["Expiration"] = (
                datetime_to_ripple_time(expiration) if isinstance(expiration, datetime) else int(expiration)
            )
        if cancel_sequence:
            self.tx_json["OfferSequence"] = int(cancel_sequence)
        return self

    def payment(self, src: str, dst: str, deliver_amount) -> "Transaction":
        self._start("Payment", src)
        self.tx_json["Amount"] = A.amount_json(deliver_amount)
        self.tx_json["Destination"] = A.account_json(dst)
        return self

    def ripple_line_set(self, src: str, limit=None, quality_in: int | None = None, quality_out: int | None = None) -> "Transaction":
        self._start("TrustSet", src)
        # A limit of 0 is allowed through
        if limit is not None:
            self.tx_json["LimitAmount"] = A.amount_json(limit)
        if quality_in:
            self.tx_json["QualityIn"] = quality_in
        if quality_out:
            self.tx_json["QualityOut"] = quality_out
        return self
