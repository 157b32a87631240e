"""Per-account sequence allocation.

Sequences are handed out locally so several transactions from one account can
be in flight at once. A miss fetches the AccountRoot, with exactly one fetch
per account outstanding no matter how many submitters are waiting on it.
"""
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from rippled_remote.constants import SeqAdjust

if TYPE_CHECKING:
    from rippled_remote.remote import Remote
    from rippled_remote.request import Request

log = logging.getLogger("rippled_remote.sequence")


@dataclass
class AccountRecord:
    next_seq: int | None = None
    fetch: "Request | None" = None


class SequenceCache:
    def __init__(self, remote: "Remote"):
        self.remote = remote
        self._records: dict[str, AccountRecord] = {}

    def _record_for(self, account: str) -> AccountRecord:
        rec = self._records.get(account)
        if rec is None:
            rec = self._records[account] = AccountRecord()
        return rec

    def get(self, account: str, adjust: SeqAdjust | None = None) -> int | None:
        """Current cached sequence, optionally moving the cursor afterwards."""
        rec = self._records.get(account)
        if rec is None or rec.next_seq is None:
            return None
        seq = rec.next_seq
        if adjust == SeqAdjust.ADVANCE:
            rec.next_seq += 1
        elif adjust == SeqAdjust.REWIND:
            rec.next_seq -= 1
        return seq

    def set(self, account: str, seq: int) -> None:
        self._record_for(account).next_seq = seq

    def release(self, account: str, seq: int) -> bool:
        """Give back ``seq`` if it was the most recent allocation.

        Used when a transaction was rejected before reaching the ledger. Only
        rolls back when nothing was allocated after it, otherwise a gap would
        be created.
        """
        rec = self._records.get(account)
        if rec is not None and rec.next_seq == seq + 1:
            rec.next_seq = seq
            log.debug(f"Released sequence {seq} for {account}")
            return True
        next_seq = rec.next_seq if rec else None
        log.warning(f"Cannot release sequence {seq} for {account} - next_seq is {next_seq} (gap would be created)")
        return False

    def in_flight(self, account: str) -> "Request | None":
        rec = self._records.get(account)
        return rec.fetch if rec else None

    def fetch(self, account: str, current: bool = False) -> "Request":
        """Request refreshing the cached sequence from the AccountRoot.

        Returns the outstanding fetch if one exists. Emits
        ``success_account_seq_cache`` / ``error_account_seq_cache`` on the
        request after the cache has been updated.
        """
        rec = self._record_for(account)
        if rec.fetch is not None:
            return rec.fetch

        req = self.remote.request_ledger_entry("account_root").account_root(account).ledger_choose(current)

        def on_success(message):
            rec.fetch = None
            rec.next_seq = message["node"]["Sequence"]
            log.debug(f"Cached sequence {rec.next_seq} for {account}")
            req.events.emit("success_account_seq_cache", message)

        def on_error(error):
            rec.fetch = None
            req.events.emit("error_account_seq_cache", error)

        req.on("success", on_success).on("error", on_error)
        rec.fetch = req
        return req

    def clear(self) -> None:
        self._records.clear()
