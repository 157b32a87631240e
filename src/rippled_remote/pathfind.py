"""A multi-step ``path_find`` session.

Only one session is open per remote; starting a new one supersedes the old.

Events:
    update     : new alternatives for this source/destination pair
    end        : the session is over (closed or superseded)
    close      : closed by the caller
    superceded : replaced by a newer session
"""
from typing import TYPE_CHECKING

from rippled_remote import amount as A
from rippled_remote.events import Emitter

if TYPE_CHECKING:
    from rippled_remote.remote import Remote
    from rippled_remote.request import Request


class PathFind:
    def __init__(self, remote: "Remote", src_account: str, dst_account: str, dst_amount, src_currencies=None):
        self.remote = remote
        self.src_account = A.account_json(src_account)
        self.dst_account = A.account_json(dst_account)
        self.dst_amount = A.amount_json(dst_amount)
        self.src_currencies = src_currencies
        self.events = Emitter()
        self.last_update: dict | None = None
        self.finished = False

    def on(self, event: str, listener):
        return self.events.on(event, listener)

    def create(self) -> "Request":
        req = self.remote.request_path_find_create(
            self.src_account, self.dst_account, self.dst_amount, self.src_currencies
        )
        req.on("success", self.notify_update)
        return req.request()

    def close(self) -> "Request":
        req = self.remote.request_path_find_close().request()
        self._finish("close")
        return req

    def notify_update(self, message: dict) -> None:
        if self.finished:
            return
        if message.get("source_account") != self.src_account or message.get("destination_account") != self.dst_account:
            return
        self.last_update = message
        self.events.emit("update", message)

    def notify_superceded(self) -> None:
        self._finish("superceded")

    def _finish(self, reason: str) -> None:
        if self.finished:
            return
        self.finished = True
        self.events.emit("end")
        self.events.emit(reason)
