"""In-process publish/subscribe for control signals.

Two ways to receive events:

* ``subscribe(*kinds)`` returns a ``Subscription`` with a blocking ``get``.
  One durable channel exists per event kind; it is created on the first
  subscribe and reused after that.
* ``add_listener(fn)`` registers a callable that receives every event,
  whatever its kind.

Publishing is fire-and-forget and never replays: only subscribers and
listeners present at publish time see an event.
"""

from __future__ import annotations

import logging
import queue
import threading
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from typing import Callable, Dict, FrozenSet, List, Optional

from .models import ControlEvent, EventKind

logger = logging.getLogger(__name__)

Listener = Callable[[ControlEvent], None]

SUBSCRIPTION_CAPACITY = 16
DEFAULT_LISTENER_TIMEOUT_SECONDS = 5.0


class Subscription:
    """Bounded queue of events for one or more kinds."""

    def __init__(self, bus: "EventBus", kinds: FrozenSet[EventKind], capacity: int):
        self.kinds = kinds
        self._bus = bus
        self._queue: "queue.Queue[ControlEvent]" = queue.Queue(maxsize=capacity)
        self.closed = False

    def get(self, timeout: Optional[float] = None) -> Optional[ControlEvent]:
        """Block until an event arrives; None if ``timeout`` expires first."""
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def pending(self) -> int:
        return self._queue.qsize()

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._bus._detach(self)

    def _deliver(self, event: ControlEvent) -> None:
        while True:
            try:
                self._queue.put_nowait(event)
                return
            except queue.Full:
                try:
                    dropped = self._queue.get_nowait()
                except queue.Empty:
                    continue
                logger.warning(f"Subscriber lagging, dropped {dropped.kind.value} event")

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


class _Channel:
    def __init__(self, kind: EventKind):
        self.kind = kind
        self.subscribers: List[Subscription] = []


class EventBus:
    def __init__(
        self,
        listener_timeout: float = DEFAULT_LISTENER_TIMEOUT_SECONDS,
        capacity: int = SUBSCRIPTION_CAPACITY,
    ):
        self.listener_timeout = listener_timeout
        self.capacity = capacity
        self._lock = threading.Lock()
        self._channels: Dict[EventKind, _Channel] = {}
        self._listeners: List[Listener] = []
        self._executor: Optional[ThreadPoolExecutor] = None

    # =========================================================================
    # Registration
    # =========================================================================

    def subscribe(self, *kinds: EventKind) -> Subscription:
        if not kinds:
            raise ValueError("subscribe() needs at least one event kind")
        subscription = Subscription(self, frozenset(kinds), self.capacity)
        with self._lock:
            for kind in subscription.kinds:
                channel = self._channels.get(kind)
                if channel is None:
                    channel = self._channels[kind] = _Channel(kind)
                    logger.debug(f"Created event channel: {kind.value}")
                channel.subscribers.append(subscription)
        return subscription

    def add_listener(self, listener: Listener) -> None:
        with self._lock:
            self._listeners.append(listener)
            count = len(self._listeners)
        logger.debug(f"Registered event listener, {count} total")

    def remove_listener(self, listener: Listener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def has_channel(self, kind: EventKind) -> bool:
        with self._lock:
            return kind in self._channels

    def _detach(self, subscription: Subscription) -> None:
        with self._lock:
            for kind in subscription.kinds:
                channel = self._channels.get(kind)
                if channel and subscription in channel.subscribers:
                    channel.subscribers.remove(subscription)

    # =========================================================================
    # Publishing
    # =========================================================================

    def publish(self, event: ControlEvent) -> None:
        suffix = f" ({event.payload})" if event.payload else ""
        logger.info(f"Publishing event: {event.kind.value}{suffix}")

        with self._lock:
            channel = self._channels.get(event.kind)
            subscribers = list(channel.subscribers) if channel else []
            listeners = list(self._listeners)

        for subscription in subscribers:
            subscription._deliver(event)

        for listener in listeners:
            self._notify(listener, event)

    def restart_all(self) -> None:
        self.publish(ControlEvent(EventKind.RESTART_ALL))

    def force_update(self, record_name: Optional[str] = None) -> None:
        self.publish(ControlEvent(EventKind.FORCE_UPDATE, record_name))

    def config_changed(self) -> None:
        self.publish(ControlEvent(EventKind.CONFIG_CHANGED))

    def close(self) -> None:
        with self._lock:
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=False)

    def _notify(self, listener: Listener, event: ControlEvent) -> None:
        future = self._listener_pool().submit(listener, event)
        try:
            future.result(timeout=self.listener_timeout)
        except FutureTimeout:
            logger.warning(
                f"Event listener {listener!r} still busy after {self.listener_timeout}s, "
                f"continuing delivery of {event.kind.value}"
            )
        except Exception as e:
            logger.error(f"Event listener {listener!r} failed on {event.kind.value}: {e}")

    def _listener_pool(self) -> ThreadPoolExecutor:
        with self._lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=4, thread_name_prefix="event-listener"
                )
            return self._executor
