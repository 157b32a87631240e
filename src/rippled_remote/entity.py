"""Shared listener reference counting for subscribable entities (accounts, books)."""
import logging
from typing import TYPE_CHECKING

from rippled_remote.events import Emitter

if TYPE_CHECKING:
    from rippled_remote.remote import Remote
    from rippled_remote.request import Request

log = logging.getLogger("rippled_remote.entity")


class SubscribedEntity:
    """Subscribes on the 0->1 listener edge and unsubscribes on 1->0.

    Subclasses set ``subscribe_events`` and fill subscribe/unsubscribe
    requests in :meth:`add_to_subscribe`. While the remote is offline no
    command is sent; the next online transition picks the entity up through
    the remote's prepared subscribe.
    """

    subscribe_events: tuple[str, ...] = ()

    def __init__(self, remote: "Remote", key: str):
        self.remote = remote
        self.key = key
        self.subs = 0
        self.events = Emitter(
            on_add=self._listener_added,
            on_remove=self._listener_removed,
            watch=self.subscribe_events,
        )

    def __repr__(self):
        return f"<{type(self).__name__} {self.key} subs={self.subs}>"

    def on(self, event: str, listener):
        return self.events.on(event, listener)

    def once(self, event: str, listener):
        return self.events.once(event, listener)

    def remove_listener(self, event: str, listener) -> bool:
        return self.events.remove_listener(event, listener)

    def _listener_added(self, event: str) -> None:
        if not self.subs and self.remote.is_online:
            log.debug(f"Subscribing {self!r}")
            self._send_subscribe()
        self.subs += 1

    def _listener_removed(self, event: str) -> None:
        self.subs -= 1
        if not self.subs and self.remote.is_online:
            log.debug(f"Unsubscribing {self!r}")
            self.add_to_subscribe(self.remote.request_unsubscribe()).request()

    def _send_subscribe(self) -> None:
        self.add_to_subscribe(self.remote.request_subscribe()).request()

    def add_to_subscribe(self, request: "Request", snapshot: bool = False) -> "Request":
        raise NotImplementedError
