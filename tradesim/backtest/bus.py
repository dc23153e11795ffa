"""
Event Bus - synchronous publisher/subscriber for simulation events.

One ordered dispatch list per run. Listeners subscribe to one or more
`EventKind`s (or to everything) and receive each event exactly once, in
registration order. Events published while a dispatch is in progress are
queued and delivered after it finishes, so the stream every listener sees is
the order in which events were generated.

Usage:
    bus = EventBus()
    bus.subscribe(statistics.event, EventKind.CASH, EventKind.ORDER)
    bus.subscribe(sink.submit)          # every kind
    bus.publish(CashEvent(...))
"""

import logging
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, FrozenSet, List, Optional

from tradesim.backtest.events import Event, EventKind

logger = logging.getLogger(__name__)

Listener = Callable[[Event], None]


@dataclass(frozen=True)
class Subscription:
    listener: Listener
    kinds: FrozenSet[EventKind]

    def accepts(self, event: Event) -> bool:
        return not self.kinds or event.kind in self.kinds


class EventBus:
    """Single-threaded, in-order event fan-out. Listener errors propagate."""

    def __init__(self, record_history: bool = False):
        self._subscriptions: List[Subscription] = []
        self._pending: Deque[Event] = deque()
        self._dispatching = False
        self._record_history = record_history
        self.history: List[Event] = []
        self.published = 0

    def subscribe(self, listener: Listener, *kinds: EventKind) -> None:
        self._subscriptions.append(Subscription(listener, frozenset(kinds)))
        logger.debug(
            f"Subscribed {getattr(listener, '__qualname__', listener)} "
            f"to {[k.value for k in kinds] or 'ALL'}"
        )

    def unsubscribe(self, listener: Listener) -> None:
        self._subscriptions = [s for s in self._subscriptions if s.listener != listener]

    def publish(self, event: Event) -> None:
        self._pending.append(event)
        if self._dispatching:
            return

        self._dispatching = True
        try:
            while self._pending:
                self._dispatch(self._pending.popleft())
        finally:
            self._dispatching = False
            self._pending.clear()

    def _dispatch(self, event: Event) -> None:
        self.published += 1
        if self._record_history:
            self.history.append(event)
        for subscription in list(self._subscriptions):
            if subscription.accepts(event):
                subscription.listener(event)

    def events_of(self, kind: EventKind, type_: Optional[str] = None) -> List[Event]:
        """Recorded events of one kind (and optionally one `type`)."""
        return [
            e
            for e in self.history
            if e.kind == kind and (type_ is None or getattr(e, "type", None) == type_)
        ]

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)
