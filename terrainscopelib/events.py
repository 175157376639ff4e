"""Publish/subscribe bus carrying session lifecycle events.

Event names and their keyword payloads:

``load.start``          generation, source
``load.complete``       generation, source
``load.failed``         generation, source, error
``load.discarded``      generation
``playback.start``      generation, pcm, clock
``playback.stop``       generation
``playback.finished``   generation

Load events arrive on worker threads, playback events on the thread
driving :meth:`AnalyzerSession.tick`.  Handlers run synchronously on
whichever thread emits; a GUI must marshal them itself.
"""

from __future__ import annotations

import threading
from collections import defaultdict
from typing import Any, Callable

Handler = Callable[..., Any]


class EventBus:
    def __init__(self) -> None:
        self._subscribers: defaultdict[str, list[Handler]] = defaultdict(list)
        self._guard = threading.Lock()

    def subscribe(self, event_type: str, handler: Handler) -> Handler:
        """Add *handler* for *event_type*; returns it so this works as a decorator."""
        with self._guard:
            self._subscribers[event_type].append(handler)
        return handler

    def unsubscribe(self, event_type: str, handler: Handler) -> None:
        """Drop *handler*.  Unknown handlers are ignored."""
        with self._guard:
            registered = self._subscribers.get(event_type)
            if registered and handler in registered:
                registered.remove(handler)

    def emit(self, event_type: str, **data: Any) -> None:
        # snapshot so handlers may (un)subscribe while being called
        with self._guard:
            targets = tuple(self._subscribers.get(event_type, ()))
        for handler in targets:
            handler(**data)
