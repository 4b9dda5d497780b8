"""Observable state containers.

``LiveValue`` is what the state holders expose to a UI: a synchronous
snapshot through ``value`` and change notifications through ``subscribe`` or
the ``changes()`` async iterator. New listeners always receive the cached
value first.

``combine_latest`` joins two live store queries into a single handler call.
"""

from __future__ import annotations

import asyncio
import inspect
from typing import (
    Any,
    AsyncIterator,
    Awaitable,
    Callable,
    Generic,
    Optional,
    Protocol,
    TypeVar,
    Union,
)

T = TypeVar("T")

Handler = Callable[..., Union[Awaitable[None], None]]
ErrorHandler = Callable[[Exception], None]


async def deliver(handler: Handler, *args: Any) -> None:
    result = handler(*args)
    if inspect.isawaitable(result):
        await result


class Subscription:
    def __init__(self, on_cancel: Optional[Callable[[], None]] = None) -> None:
        self._on_cancel = on_cancel
        self.active = True

    def cancel(self) -> None:
        if not self.active:
            return
        self.active = False
        if self._on_cancel is not None:
            self._on_cancel()
            self._on_cancel = None


class LiveValue(Generic[T]):
    def __init__(self, initial: T) -> None:
        self._value = initial
        self._listeners: list[tuple[Subscription, Callable[[T], None]]] = []

    @property
    def value(self) -> T:
        return self._value

    @property
    def subscriber_count(self) -> int:
        return len(self._listeners)

    def set(self, value: T) -> None:
        self._value = value
        for subscription, listener in list(self._listeners):
            if subscription.active:
                listener(value)

    def update(self, fn: Callable[[T], T]) -> T:
        value = fn(self._value)
        self.set(value)
        return value

    def subscribe(self, listener: Callable[[T], None]) -> Subscription:
        subscription = Subscription()
        entry = (subscription, listener)

        def _remove() -> None:
            if entry in self._listeners:
                self._listeners.remove(entry)

        subscription._on_cancel = _remove
        self._listeners.append(entry)
        listener(self._value)
        return subscription

    async def changes(self) -> AsyncIterator[T]:
        queue: asyncio.Queue[T] = asyncio.Queue()
        subscription = self.subscribe(queue.put_nowait)
        try:
            while True:
                yield await queue.get()
        finally:
            subscription.cancel()


class Subscribable(Protocol[T]):
    async def subscribe(
        self, handler: Handler, on_error: Optional[ErrorHandler] = None
    ) -> Subscription: ...


async def combine_latest(
    first: Subscribable[Any],
    second: Subscribable[Any],
    handler: Handler,
    on_error: Optional[ErrorHandler] = None,
) -> Subscription:
    latest: dict[int, Any] = {}

    async def _emit(slot: int, value: Any) -> None:
        latest[slot] = value
        if len(latest) == 2:
            await deliver(handler, latest[0], latest[1])

    first_sub = await first.subscribe(lambda value: _emit(0, value), on_error)
    try:
        second_sub = await second.subscribe(lambda value: _emit(1, value), on_error)
    except Exception:
        first_sub.cancel()
        raise

    def _cancel() -> None:
        first_sub.cancel()
        second_sub.cancel()

    return Subscription(_cancel)
