"""Per-component notification dispatch.

Components own an :class:`Emitter` (``self.events``) instead of inheriting from
one. Listener add/remove hooks let a component react to the number of
listeners on a given event, which is what drives subscription reference
counting for accounts, order books and the global transaction feed.
"""
import logging
from collections import defaultdict
from collections.abc import Callable, Iterable

log = logging.getLogger("rippled_remote.events")

Listener = Callable[..., object]
Hook = Callable[[str], None]


class Emitter:
    def __init__(self, *, on_add: Hook | None = None, on_remove: Hook | None = None, watch: Iterable[str] = ()):
        self._listeners: dict[str, list[Listener]] = defaultdict(list)
        self._on_add = on_add
        self._on_remove = on_remove
        self._watched = frozenset(watch)

    def _watching(self, event: str) -> bool:
        return not self._watched or event in self._watched

    def on(self, event: str, listener: Listener) -> Listener:
        self._listeners[event].append(listener)
        if self._on_add is not None and self._watching(event):
            self._on_add(event)
        return listener

    def once(self, event: str, listener: Listener) -> Listener:
        def wrapper(*args):
            self.remove_listener(event, wrapper)
            return listener(*args)

        wrapper.listener = listener
        return self.on(event, wrapper)

    def remove_listener(self, event: str, listener: Listener) -> bool:
        listeners = self._listeners.get(event)
        if not listeners:
            return False
        for i, registered in enumerate(listeners):
            # == so bound methods match their re-bound selves
            if registered == listener or getattr(registered, "listener", None) == listener:
                del listeners[i]
                break
        else:
            return False
        if not listeners:
            del self._listeners[event]
        if self._on_remove is not None and self._watching(event):
            self._on_remove(event)
        return True

    def remove_all_listeners(self, event: str | None = None) -> None:
        events = [event] if event is not None else list(self._listeners)
        for name in events:
            for listener in list(self._listeners.get(name, ())):
                self.remove_listener(name, listener)

    def listeners(self, event: str) -> list[Listener]:
        return list(self._listeners.get(event, ()))

    def listener_count(self, event: str) -> int:
        return len(self._listeners.get(event, ()))

    def emit(self, event: str, *args) -> bool:
        """Call every listener of ``event`` in registration order.

        Returns False when nobody was listening. An ``error`` event without
        listeners is logged rather than silently dropped.
        """
        listeners = self._listeners.get(event)
        if not listeners:
            if event == "error":
                log.warning(f"Unhandled error event: {args[0] if args else None}")
            return False
        for listener in list(listeners):
            listener(*args)
        return True
