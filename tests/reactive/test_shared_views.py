import asyncio
import time
import unittest

from campus_dashboard.reactive.live import ErrorHandler, Listener, LiveValue, Subscription
from campus_dashboard.reactive.views import SharedView, combine, derive_count, derive_filtered, derive_map


class CountingSource:
    """Wraps a ``LiveValue`` and records how often it is subscribed."""

    def __init__(self, initial):
        self.value = LiveValue(initial)
        self.subscriptions = 0
        self.fail_on_subscribe: BaseException | None = None

    @property
    def active(self) -> int:
        return self.value.subscriber_count

    def subscribe(self, listener: Listener, on_error: ErrorHandler | None = None) -> Subscription:
        self.subscriptions += 1
        if self.fail_on_subscribe is not None:
            subscription = Subscription(lambda: None)
            subscription.terminate()
            if on_error is not None:
                on_error(self.fail_on_subscribe)
            return subscription
        return self.value.subscribe(listener, on_error)


class SharedViewTests(unittest.TestCase):
    def test_upstream_is_not_touched_until_first_consumer(self) -> None:
        source = CountingSource((1, 2, 3))
        view = derive_count(source, lambda n: n > 1, grace_seconds=0)

        self.assertEqual(0, source.subscriptions)
        self.assertEqual(0, view.value)
        self.assertFalse(view.is_active)

        seen: list[int] = []
        with view.subscribe(seen.append):
            self.assertEqual([2], seen)
            self.assertEqual(1, source.subscriptions)

    def test_consumers_share_one_upstream_subscription(self) -> None:
        source = CountingSource(("a",))
        view = derive_filtered(source, lambda s: s != "b", grace_seconds=0)
        first: list[tuple] = []
        second: list[tuple] = []

        sub_one = view.subscribe(first.append)
        sub_two = view.subscribe(second.append)
        source.value.set(("a", "b", "c"))

        self.assertEqual(1, source.subscriptions)
        self.assertEqual(1, source.active)
        self.assertEqual([("a",), ("a", "c")], first)
        self.assertEqual([("a",), ("a", "c")], second)
        self.assertEqual(2, view.subscriber_count)

        sub_one.cancel()
        self.assertTrue(view.is_active)
        sub_two.cancel()
        self.assertFalse(view.is_active)
        self.assertEqual(0, source.active)

    def test_equal_derived_snapshots_are_not_redelivered(self) -> None:
        source = CountingSource((1,))
        view = derive_count(source, lambda n: n % 2 == 0, grace_seconds=0)
        seen: list[int] = []

        with view.subscribe(seen.append):
            source.value.set((1, 3))
            source.value.set((1, 3, 4))

        self.assertEqual([0, 1], seen)

    def test_view_reactivates_after_release(self) -> None:
        source = CountingSource(0)
        view = derive_map(source, lambda n: n * 10, initial=-1, grace_seconds=0)

        with view.subscribe(lambda _: None):
            pass
        self.assertEqual(-1, view.value)
        with view.subscribe(lambda _: None):
            self.assertEqual(0, view.value)

        self.assertEqual(2, source.subscriptions)
        self.assertEqual(2, view.activation_count)

    def test_transform_failure_reaches_consumers_and_releases_upstream(self) -> None:
        source = CountingSource(1)
        view = derive_map(source, lambda n: 10 // n, grace_seconds=0)
        errors: list[BaseException] = []

        subscription = view.subscribe(lambda _: None, errors.append)
        source.value.set(0)

        self.assertEqual(1, len(errors))
        self.assertIsInstance(errors[0], ZeroDivisionError)
        self.assertFalse(subscription.active)
        self.assertFalse(view.is_active)
        self.assertEqual(0, source.active)

    def test_failure_during_activation_does_not_leak_upstream(self) -> None:
        source = CountingSource(0)
        view = derive_map(source, lambda n: 1 // n, grace_seconds=0)
        errors: list[BaseException] = []

        subscription = view.subscribe(lambda _: None, errors.append)

        self.assertEqual(1, len(errors))
        self.assertFalse(subscription.active)
        self.assertFalse(view.is_active)
        self.assertEqual(0, source.active)

    def test_upstream_error_is_forwarded(self) -> None:
        source = CountingSource(0)
        source.fail_on_subscribe = RuntimeError("store offline")
        view = SharedView(source, grace_seconds=0)
        errors: list[BaseException] = []

        subscription = view.subscribe(lambda _: None, errors.append)

        self.assertEqual(["store offline"], [str(e) for e in errors])
        self.assertFalse(subscription.active)
        self.assertFalse(view.is_active)

    def test_combine_waits_for_every_source(self) -> None:
        left = CountingSource(2)
        right = CountingSource(3)
        view = combine([left, right], lambda a, b: a * b, initial=0, grace_seconds=0)
        seen: list[int] = []

        with view.subscribe(seen.append):
            left.value.set(4)
            right.value.set(5)

        self.assertEqual([6, 12, 20], seen)
        self.assertEqual(0, left.active)
        self.assertEqual(0, right.active)


class GracePeriodTests(unittest.TestCase):
    def test_upstream_survives_within_grace_period(self) -> None:
        source = CountingSource(7)
        view = SharedView(source, grace_seconds=0.2)

        async def scenario() -> None:
            with view.subscribe(lambda _: None):
                pass
            await asyncio.sleep(0.01)
            self.assertTrue(view.is_active)
            seen: list[int] = []
            with view.subscribe(seen.append):
                self.assertEqual([7], seen)
            await asyncio.sleep(0.3)

        asyncio.run(scenario())

        self.assertEqual(1, source.subscriptions)
        self.assertFalse(view.is_active)
        self.assertEqual(0, source.active)

    def test_upstream_released_after_grace_period(self) -> None:
        source = CountingSource(7)
        view = SharedView(source, grace_seconds=0.02)

        async def scenario() -> None:
            with view.subscribe(lambda _: None):
                pass
            await asyncio.sleep(0.1)

        asyncio.run(scenario())

        self.assertFalse(view.is_active)
        self.assertIsNone(view.value)
        self.assertEqual(0, source.active)

    def test_release_happens_after_the_event_loop_has_stopped(self) -> None:
        source = CountingSource(1)
        view = SharedView(source, grace_seconds=0.05)

        async def scenario() -> None:
            with view.subscribe(lambda _: None):
                pass

        asyncio.run(scenario())
        time.sleep(0.3)

        self.assertFalse(view.is_active)
        self.assertEqual(0, source.active)

    def test_release_happens_while_the_loop_is_blocked(self) -> None:
        source = CountingSource(1)
        view = SharedView(source, grace_seconds=0.05)

        async def scenario() -> bool:
            with view.subscribe(lambda _: None):
                pass
            # Blocking call, as the console does while waiting for input.
            time.sleep(0.3)
            return view.is_active

        self.assertFalse(asyncio.run(scenario()))
        self.assertEqual(0, source.active)


if __name__ == "__main__":
    unittest.main()
