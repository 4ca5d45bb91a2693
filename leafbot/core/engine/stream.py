"""
Push-based stream primitives.

A subject is both an observable (``subscribe``) and an observer (``next`` /
``complete``). Deliveries are strictly sequential: each observer is awaited
before the next one is notified, in subscription order. Nothing here catches
observer exceptions; they propagate to whoever called ``next``/``complete``.
"""
from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Generic, Optional, Sequence, TypeVar

from leafbot.core.engine.domain import NextResult
from leafbot.core.engine.ports import Observable, Observer, Subscription
from leafbot.core.engine.utils import map_series, resolve

T = TypeVar("T")
I = TypeVar("I")
O = TypeVar("O")

Combiner = Callable[[Sequence[NextResult]], NextResult]


def all_break(results: Sequence[NextResult]) -> NextResult:
    """BREAK only if every observer answered BREAK (vacuously true)."""
    if all(result == NextResult.BREAK for result in results):
        return NextResult.BREAK
    return NextResult.FALLTHROUGH


class CallbackSubscription:
    """Subscription running ``unsubscribe`` exactly once."""

    def __init__(self, unsubscribe: Callable[[], Any]):
        self._unsubscribe = unsubscribe
        self._is_unsubscribed = False

    @property
    def is_unsubscribed(self) -> bool:
        return self._is_unsubscribed

    async def unsubscribe(self) -> None:
        if self._is_unsubscribed:
            return
        self._is_unsubscribed = True
        await resolve(self._unsubscribe())


def create_subscription(unsubscribe: Callable[[], Any]) -> CallbackSubscription:
    return CallbackSubscription(unsubscribe)


def create_composite_subscription(*subscriptions: Subscription) -> CallbackSubscription:
    """Release every subscription in order, once."""
    return CallbackSubscription(
        lambda: map_series(subscriptions, lambda sub: sub.unsubscribe())
    )


class FunctionObserver(Generic[T]):
    """Adapt plain callables (sync or async) to the observer protocol."""

    def __init__(
        self,
        on_next: Callable[[T], Any],
        on_complete: Optional[Callable[[], Any]] = None,
    ):
        self._on_next = on_next
        self._on_complete = on_complete

    async def next(self, value: T) -> NextResult:
        result = await resolve(self._on_next(value))
        return result if isinstance(result, NextResult) else NextResult.BREAK

    async def complete(self) -> None:
        if self._on_complete is not None:
            await resolve(self._on_complete())


def create_observer(
    on_next: Callable[[T], Any],
    on_complete: Optional[Callable[[], Any]] = None,
) -> FunctionObserver[T]:
    return FunctionObserver(on_next, on_complete)


async def complete_observer(observer: Any) -> None:
    """Call ``observer.complete()`` if the observer defines one."""
    complete = getattr(observer, "complete", None)
    if complete is not None:
        await resolve(complete())


class ContentSubject(Generic[T]):
    """Broadcasts values to registered observers, one at a time."""

    def __init__(self, combine: Optional[Combiner] = None):
        self._observers: dict[int, Observer[T]] = {}
        self._current_id = 0
        self._combine = combine
        self._is_completed = False

    @property
    def is_completed(self) -> bool:
        return self._is_completed

    @property
    def observer_count(self) -> int:
        return len(self._observers)

    async def subscribe(self, observer: Observer[T]) -> Subscription:
        observer_id = self._current_id
        self._current_id += 1
        self._observers[observer_id] = observer
        return CallbackSubscription(lambda: self._observers.pop(observer_id, None))

    async def next(self, value: T) -> NextResult:
        if self._is_completed:
            return NextResult.FALLTHROUGH

        results: list[NextResult] = []
        for observer_id, observer in list(self._observers.items()):
            # Released while an earlier observer was being notified.
            if observer_id not in self._observers:
                continue
            results.append(await observer.next(value))

        if self._combine is not None:
            return self._combine(results)
        return results[-1] if results else NextResult.FALLTHROUGH

    async def complete(self) -> None:
        if self._is_completed:
            return
        self._is_completed = True
        for observer in list(self._observers.values()):
            await complete_observer(observer)


def create_subject(combine: Optional[Combiner] = None) -> ContentSubject[Any]:
    return ContentSubject(combine)


class MergedObservable(Generic[T]):
    """Forwards emissions of several observables to one observer."""

    def __init__(self, observables: Sequence[Observable[T]]):
        self._observables = tuple(observables)

    async def subscribe(self, observer: Observer[T]) -> Subscription:
        subscriptions = await map_series(
            self._observables, lambda observable: observable.subscribe(observer)
        )
        return create_composite_subscription(*subscriptions)


def merge_observables(*observables: Observable[T]) -> MergedObservable[T]:
    return MergedObservable(observables)


def bridge_emission(source: Any) -> Callable[[I], Awaitable[O]]:
    """
    Turn an observer/observable pair into ``await fn(input) -> first output``.

    Each call subscribes, pushes ``input`` and unsubscribes after the first
    emission. Useful for driving a single leaf from tests or scripts.
    """

    async def bridged(value: I) -> O:
        loop = asyncio.get_running_loop()
        future: asyncio.Future = loop.create_future()
        subscription: Optional[Subscription] = None

        async def on_next(content: O) -> NextResult:
            if not future.done():
                future.set_result(content)
            if subscription is not None:
                await subscription.unsubscribe()
            return NextResult.BREAK

        subscription = await source.subscribe(FunctionObserver(on_next))
        try:
            await source.next(value)
        except BaseException:
            await subscription.unsubscribe()
            raise
        return await future

    return bridged
