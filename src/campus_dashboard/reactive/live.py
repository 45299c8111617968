from __future__ import annotations

import threading
from collections.abc import Callable
from typing import Generic, Protocol, TypeVar, runtime_checkable

from loguru import logger

T = TypeVar("T")
T_co = TypeVar("T_co", covariant=True)

Listener = Callable[[T], None]
ErrorHandler = Callable[[BaseException], None]


class Subscription:
    """Handle returned by every ``subscribe`` call."""

    def __init__(self, on_cancel: Callable[[], None]):
        self._on_cancel = on_cancel
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def cancel(self) -> None:
        if not self._active:
            return
        self._active = False
        self._on_cancel()

    def terminate(self) -> None:
        """Mark as finished without running the cancel callback (delivery failure)."""
        self._active = False

    def __enter__(self) -> Subscription:
        return self

    def __exit__(self, *exc_info) -> None:
        self.cancel()


@runtime_checkable
class Source(Protocol[T_co]):
    def subscribe(self, listener: Listener, on_error: ErrorHandler | None = None) -> Subscription: ...


class _Entry:
    __slots__ = ("listener", "on_error", "on_removed", "subscription")

    def __init__(self, listener: Listener, on_error: ErrorHandler | None, on_removed: Callable[[], None] | None):
        self.listener = listener
        self.on_error = on_error
        self.on_removed = on_removed
        self.subscription: Subscription | None = None


class ListenerSet(Generic[T]):
    """Ordered listener registry with per-listener failure isolation."""

    def __init__(self, name: str = ""):
        self._name = name
        self._entries: list[_Entry] = []
        self._lock = threading.RLock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def add(
        self,
        listener: Listener,
        on_error: ErrorHandler | None = None,
        *,
        on_removed: Callable[[], None] | None = None,
    ) -> tuple[Subscription, Callable[[T], None]]:
        """Register a listener.

        Returns the subscription and a function delivering a value to this
        listener only (used to replay the latest value on subscribe).
        """
        entry = _Entry(listener, on_error, on_removed)

        def _cancel() -> None:
            with self._lock:
                if entry in self._entries:
                    self._entries.remove(entry)
            if entry.on_removed is not None:
                entry.on_removed()

        entry.subscription = Subscription(_cancel)
        with self._lock:
            self._entries.append(entry)
        return entry.subscription, lambda value: self._deliver_one(entry, value)

    def deliver(self, value: T) -> None:
        with self._lock:
            entries = list(self._entries)
        for entry in entries:
            self._deliver_one(entry, value)

    def fail(self, error: BaseException) -> None:
        with self._lock:
            entries = list(self._entries)
            self._entries.clear()
        for entry in entries:
            self._terminate(entry, error)

    def _deliver_one(self, entry: _Entry, value: T) -> None:
        if entry.subscription is None or not entry.subscription.active:
            return
        try:
            entry.listener(value)
        except Exception as ex:
            with self._lock:
                if entry in self._entries:
                    self._entries.remove(entry)
            self._terminate(entry, ex)
            if entry.on_removed is not None:
                entry.on_removed()

    def _terminate(self, entry: _Entry, error: BaseException) -> None:
        if entry.subscription is not None:
            entry.subscription.terminate()
        if entry.on_error is not None:
            entry.on_error(error)
        else:
            logger.error(f"Delivery failed for {self._name or 'listener'}: {type(error).__name__}: {error}")


class LiveValue(Generic[T]):
    """A mutable value whose subscribers see every distinct change, synchronously."""

    def __init__(self, initial: T, *, name: str = ""):
        self._value = initial
        self._name = name
        self._listeners: ListenerSet[T] = ListenerSet(name)

    @property
    def value(self) -> T:
        return self._value

    @property
    def subscriber_count(self) -> int:
        return len(self._listeners)

    def set(self, value: T) -> bool:
        if value == self._value:
            return False
        self._value = value
        self._listeners.deliver(value)
        return True

    def subscribe(self, listener: Listener, on_error: ErrorHandler | None = None) -> Subscription:
        subscription, replay = self._listeners.add(listener, on_error)
        replay(self._value)
        return subscription
