"""Routines for working with one order book.

Don't build these yourself, use ``remote.book(taker_gets, taker_pays)``.

Events:
    transaction : a transaction touching an offer in this book (only while subscribed)
    model       : the cached offer list changed
"""
import logging
from typing import TYPE_CHECKING

from rippled_remote import amount as A
from rippled_remote.entity import SubscribedEntity
from rippled_remote.errors import LocalError

if TYPE_CHECKING:
    from rippled_remote.remote import Remote
    from rippled_remote.request import Request

log = logging.getLogger("rippled_remote.orderbook")


class OrderBook(SubscribedEntity):
    subscribe_events = ("transaction", "model")

    def __init__(self, remote: "Remote", taker_gets: dict, taker_pays: dict):
        try:
            gets = A.issue_json(taker_gets)
            pays = A.issue_json(taker_pays)
        except LocalError as e:
            raise LocalError("invalidBook", f"Bad order book: {e.error_message}") from None
        if gets == pays:
            raise LocalError("invalidBook", "Order book sides must differ.")
        super().__init__(remote, A.book_key(gets, pays))
        self.taker_gets = gets
        self.taker_pays = pays
        self._offers: list[dict] = []

    @property
    def offers_cache(self) -> list[dict]:
        return self._offers

    def _book(self) -> dict:
        return {"taker_gets": self.taker_gets, "taker_pays": self.taker_pays}

    def add_to_subscribe(self, request: "Request", snapshot: bool = False) -> "Request":
        entry = {**self._book()}
        if snapshot:
            entry["snapshot"] = True
        request.message.setdefault("books", []).append(entry)
        return request

    def _send_subscribe(self) -> None:
        req = self.add_to_subscribe(self.remote.request_subscribe(), snapshot=True)
        req.on("success", lambda result: self._seed(result.get("offers", [])))
        req.request()

    def _seed(self, offers: list[dict]) -> None:
        self._offers = [dict(o) for o in offers]
        self.events.emit("model", self._offers)

    def offers(self, taker: str | None = None) -> "Request":
        req = self.remote.request_book_offers(self.taker_gets, self.taker_pays, taker)
        req.on("success", lambda result: self._seed(result.get("offers", [])))
        return req.request()

    def _find(self, index: str) -> int | None:
        for i, offer in enumerate(self._offers):
            if offer.get("index") == index:
                return i
        return None

    def notify_tx(self, message: dict) -> None:
        """Called by the remote for each transaction that touched this book."""
        if not self.subs:
            return
        self.events.emit("transaction", message)
        changed = False
        for node in message["mmeta"].nodes_of("Offer"):
            fields = message["mmeta"].fields(node)
            gets, pays = fields.get("TakerGets"), fields.get("TakerPays")
            if gets is None or pays is None:
                continue
            if A.book_key(A.amount_issue(gets), A.amount_issue(pays)) != self.key:
                continue
            index = node["LedgerIndex"]
            pos = self._find(index)
            match node["NodeType"]:
                case "CreatedNode":
                    if pos is None:
                        self._offers.append({**(node.get("NewFields") or {}), "index": index})
                        changed = True
                case "ModifiedNode":
                    if pos is not None:
                        self._offers[pos].update(node.get("FinalFields") or {})
                        changed = True
                case "DeletedNode":
                    if pos is not None:
                        del self._offers[pos]
                        changed = True
        if changed:
            self.events.emit("model", self._offers)
