"""Observer protocol and EventBus for typed synchronous event dispatch.

Observers react to run and stage lifecycle events (timing, console progress)
without touching the SharedContext or controlling execution.

- Delivery is synchronous and happens on the orchestrating thread, including
  during fan-out runs.
- Subscription is typed: subscribe to an ``Event`` subclass, or to ``Event``
  itself to receive everything.
- Dispatch is fault-tolerant: an observer that raises is logged and skipped.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Protocol, runtime_checkable

from pointfit.engine.events import Event

logger = logging.getLogger(__name__)


@runtime_checkable
class Observer(Protocol):
    """Structural protocol for pipeline event observers.

    Example::

        class PrintObserver:
            def on_event(self, event: Event) -> None:
                print(type(event).__name__)

        bus = EventBus()
        bus.subscribe(StageStart, PrintObserver())
    """

    def on_event(self, event: Event) -> None:
        """Receive a dispatched event."""
        ...


class EventBus:
    """Typed, synchronous event dispatcher.

    An emitted event reaches the observers subscribed to its exact type first,
    then those subscribed to each ancestor type in MRO order. An observer
    subscribed at several levels receives the event once.
    """

    def __init__(self) -> None:
        self._subscriptions: dict[type[Event], list[Observer]] = defaultdict(list)

    def subscribe(self, event_type: type[Event], observer: Observer) -> None:
        """Register *observer* for *event_type* and its subclasses."""
        self._subscriptions[event_type].append(observer)

    def unsubscribe(self, event_type: type[Event], observer: Observer) -> None:
        """Remove *observer* from *event_type*. No-op when not subscribed."""
        observers = self._subscriptions.get(event_type)
        if observers and observer in observers:
            observers.remove(observer)

    def unsubscribe_all(self, observer: Observer) -> None:
        """Remove *observer* from every event type."""
        for observers in self._subscriptions.values():
            while observer in observers:
                observers.remove(observer)

    def emit(self, event: Event) -> None:
        """Deliver *event* to all matching observers.

        If an observer's ``on_event`` raises, a warning is logged and delivery
        continues to the remaining observers.
        """
        seen: set[int] = set()
        for ancestor in type(event).__mro__:
            if not (isinstance(ancestor, type) and issubclass(ancestor, Event)):
                continue
            for obs in list(self._subscriptions.get(ancestor, [])):
                if id(obs) in seen:
                    continue
                seen.add(id(obs))
                try:
                    obs.on_event(event)
                except Exception:
                    logger.warning(
                        "Observer %r raised on event %r; continuing delivery",
                        obs,
                        event,
                        exc_info=True,
                    )


__all__ = ["EventBus", "Observer"]
