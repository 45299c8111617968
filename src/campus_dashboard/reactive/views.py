from __future__ import annotations

import threading
from collections.abc import Callable, Sequence
from typing import Any, Generic, TypeVar

from loguru import logger

from campus_dashboard.reactive.live import ErrorHandler, Listener, ListenerSet, Source, Subscription

T = TypeVar("T")
R = TypeVar("R")

DEFAULT_GRACE_SECONDS = 5.0

_UNSET: Any = object()


def _schedule(delay: float, callback: Callable[[], None]) -> Callable[[], None]:
    """Run ``callback`` on a daemon timer thread after ``delay`` seconds, independent of any event loop.

    Returns a cancel function.
    """
    timer = threading.Timer(delay, callback)
    timer.daemon = True
    timer.start()
    return timer.cancel


class SharedView(Generic[T]):
    """Lazy, shared projection of an upstream source.

    The upstream is subscribed when the first consumer arrives and released
    ``grace_seconds`` after the last consumer leaves. All consumers share the
    one upstream subscription; late consumers get the latest snapshot replayed.
    Equal consecutive snapshots are not re-delivered.
    """

    def __init__(
        self,
        upstream: Source,
        *,
        transform: Callable[[Any], T] | None = None,
        initial: T | None = None,
        grace_seconds: float = DEFAULT_GRACE_SECONDS,
        name: str = "",
    ):
        self._upstream = upstream
        self._transform = transform
        self._initial = initial
        self._grace_seconds = max(0.0, grace_seconds)
        self._name = name or "view"
        self._listeners: ListenerSet[T] = ListenerSet(self._name)
        self._lock = threading.RLock()
        self._upstream_subscription: Subscription | None = None
        self._snapshot: Any = _UNSET
        self._cancel_release: Callable[[], None] | None = None
        self._release_token = 0
        self._activation_count = 0
        self._generation = 0

    @property
    def name(self) -> str:
        return self._name

    @property
    def value(self) -> T | None:
        snapshot = self._snapshot
        return self._initial if snapshot is _UNSET else snapshot

    @property
    def is_active(self) -> bool:
        return self._upstream_subscription is not None

    @property
    def activation_count(self) -> int:
        return self._activation_count

    @property
    def subscriber_count(self) -> int:
        return len(self._listeners)

    def subscribe(self, listener: Listener, on_error: ErrorHandler | None = None) -> Subscription:
        with self._lock:
            self._cancel_pending_release()
            subscription, replay = self._listeners.add(listener, on_error, on_removed=self._on_consumer_removed)
            if self._upstream_subscription is None:
                self._activate()
            elif self._snapshot is not _UNSET:
                replay(self._snapshot)
        return subscription

    def _activate(self) -> None:
        self._activation_count += 1
        logger.debug(f"Activating {self._name} (activation {self._activation_count})")
        generation = self._generation
        upstream_subscription = self._upstream.subscribe(self._on_upstream_value, self._on_upstream_error)
        if self._generation != generation:
            # Failed during the initial delivery.
            upstream_subscription.cancel()
            return
        if upstream_subscription.active:
            self._upstream_subscription = upstream_subscription
            if len(self._listeners) == 0:
                self._on_consumer_removed()

    def _on_upstream_value(self, raw: Any) -> None:
        try:
            value = raw if self._transform is None else self._transform(raw)
        except Exception as ex:
            logger.warning(f"Derivation failed in {self._name}: {type(ex).__name__}: {ex}")
            self._fail(ex, release_upstream=True)
            return
        with self._lock:
            if self._snapshot is not _UNSET and value == self._snapshot:
                return
            self._snapshot = value
            self._listeners.deliver(value)

    def _on_upstream_error(self, error: BaseException) -> None:
        logger.warning(f"Upstream of {self._name} failed: {type(error).__name__}: {error}")
        self._fail(error, release_upstream=False)

    def _fail(self, error: BaseException, *, release_upstream: bool) -> None:
        with self._lock:
            self._generation += 1
            self._cancel_pending_release()
            upstream_subscription = self._upstream_subscription
            self._upstream_subscription = None
            self._snapshot = _UNSET
        if release_upstream and upstream_subscription is not None:
            upstream_subscription.cancel()
        self._listeners.fail(error)

    def _on_consumer_removed(self) -> None:
        with self._lock:
            if len(self._listeners) > 0 or self._upstream_subscription is None:
                return
            if self._grace_seconds == 0:
                self._release()
                return
            self._cancel_pending_release()
            token = self._release_token
            self._cancel_release = _schedule(self._grace_seconds, lambda: self._release(token))

    def _cancel_pending_release(self) -> None:
        # A timer that already fired may be waiting on the lock; the new token makes it stale.
        self._release_token += 1
        if self._cancel_release is not None:
            self._cancel_release()
            self._cancel_release = None

    def _release(self, token: int | None = None) -> None:
        with self._lock:
            if token is not None and token != self._release_token:
                return
            self._cancel_release = None
            if len(self._listeners) > 0 or self._upstream_subscription is None:
                return
            upstream_subscription = self._upstream_subscription
            self._upstream_subscription = None
            self._snapshot = _UNSET
        upstream_subscription.cancel()
        logger.debug(f"Released {self._name}")


class _CombinedSource:
    """Emits a tuple of the latest values once every source has delivered."""

    def __init__(self, sources: Sequence[Source]):
        self._sources = list(sources)

    def subscribe(self, listener: Listener, on_error: ErrorHandler | None = None) -> Subscription:
        latest: list[Any] = [_UNSET] * len(self._sources)
        inner: list[Subscription] = []

        def _cancel_all() -> None:
            for sub in inner:
                sub.cancel()

        outer = Subscription(_cancel_all)

        def _on_value(index: int) -> Listener:
            def _receive(value: Any) -> None:
                latest[index] = value
                if outer.active and all(v is not _UNSET for v in latest):
                    listener(tuple(latest))

            return _receive

        def _on_error(error: BaseException) -> None:
            if not outer.active:
                return
            outer.terminate()
            _cancel_all()
            if on_error is not None:
                on_error(error)

        for index, source in enumerate(self._sources):
            if not outer.active:
                break
            inner.append(source.subscribe(_on_value(index), _on_error))
        return outer


def derive_filtered(
    source: Source,
    predicate: Callable[[Any], bool],
    *,
    grace_seconds: float = DEFAULT_GRACE_SECONDS,
    name: str = "",
) -> SharedView[tuple]:
    return SharedView(
        source,
        transform=lambda records: tuple(r for r in records if predicate(r)),
        initial=(),
        grace_seconds=grace_seconds,
        name=name or "filtered",
    )


def derive_count(
    source: Source,
    predicate: Callable[[Any], bool],
    *,
    grace_seconds: float = DEFAULT_GRACE_SECONDS,
    name: str = "",
) -> SharedView[int]:
    return SharedView(
        source,
        transform=lambda records: sum(1 for r in records if predicate(r)),
        initial=0,
        grace_seconds=grace_seconds,
        name=name or "count",
    )


def derive_map(
    source: Source,
    fn: Callable[[Any], R],
    *,
    initial: R | None = None,
    grace_seconds: float = DEFAULT_GRACE_SECONDS,
    name: str = "",
) -> SharedView[R]:
    return SharedView(source, transform=fn, initial=initial, grace_seconds=grace_seconds, name=name or "mapped")


def combine(
    sources: Sequence[Source],
    fn: Callable[..., R],
    *,
    initial: R | None = None,
    grace_seconds: float = DEFAULT_GRACE_SECONDS,
    name: str = "",
) -> SharedView[R]:
    return SharedView(
        _CombinedSource(sources),
        transform=lambda values: fn(*values),
        initial=initial,
        grace_seconds=grace_seconds,
        name=name or "combined",
    )
