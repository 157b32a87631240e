"""Routines for working with one account.

Don't build these yourself, use ``remote.account(account_id)``.

Events:
    transaction : a transaction touching this account (only while subscribed)
    entry       : the cached AccountRoot entry changed
    lines       : trust lines were fetched
"""
from typing import TYPE_CHECKING

from rippled_remote import amount as A
from rippled_remote.entity import SubscribedEntity

if TYPE_CHECKING:
    from rippled_remote.remote import Remote
    from rippled_remote.request import Request


class Account(SubscribedEntity):
    subscribe_events = ("transaction", "entry")

    def __init__(self, remote: "Remote", account_id: str):
        super().__init__(remote, A.account_json(account_id))
        # Only ever updated in place: deltas carry partial field sets
        self._entry: dict = {}
        self._lines: list[dict] | None = None

    @property
    def account_id(self) -> str:
        return self.key

    @property
    def entry_cache(self) -> dict:
        return self._entry

    def add_to_subscribe(self, request: "Request", snapshot: bool = False) -> "Request":
        existing = request.message.get("accounts", [])
        if self.key not in existing:
            request.message["accounts"] = [*existing, self.key]
        return request

    def entry(self) -> "Request":
        """Fetch the AccountRoot, merge it into the cache and emit ``entry``."""
        req = self.remote.request_account_info(self.key)

        def on_success(result):
            self._entry.update(result.get("account_data", {}))
            self.events.emit("entry", self._entry)

        return req.on("success", on_success).request()

    def lines(self) -> "Request":
        req = self.remote.request_account_lines(self.key)

        def on_success(result):
            self._lines = result.get("lines", [])
            self.events.emit("lines", self._lines)

        return req.on("success", on_success).request()

    def notify_tx(self, message: dict) -> None:
        """Called by the remote for each transaction that touched this account."""
        if not self.subs:
            return
        self.events.emit("transaction", message)
        changed = False
        for node in message["mmeta"].nodes_of("AccountRoot"):
            new_fields = node.get("NewFields") or {}
            final_fields = node.get("FinalFields") or {}
            if (final_fields.get("Account") or new_fields.get("Account")) == self.key:
                self._entry.update(new_fields)
                self._entry.update(final_fields)
                changed = True
        if changed:
            self.events.emit("entry", self._entry)
