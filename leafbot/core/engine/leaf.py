"""
Leaves: the units of conversational logic.

A leaf is built from a factory receiving an emitter. The factory returns the
base logic (an object with ``next`` and optionally ``complete``); the leaf
wraps it so every emission is tagged with the request that caused it.
"""
from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass, replace
from typing import Any, Awaitable, Callable, Optional, Protocol

from leafbot.config import settings
from leafbot.core.engine.domain import (
    GenericRequest,
    GenericResponse,
    NextResult,
    text_response,
)
from leafbot.core.engine.ports import AsyncOrSync, Leaf, Observer, Subscription
from leafbot.core.engine.stream import ContentSubject, all_break
from leafbot.core.engine.utils import resolve
from leafbot.infra.logging_config import get_logger

logger = get_logger(__name__)


class LeafLogic(Protocol):
    def next(self, request: GenericRequest) -> AsyncOrSync[NextResult]: ...

    # Optional: def complete(self) -> AsyncOrSync[None]


@dataclass
class BaseLeaf:
    """Plain holder for leaf logic built from callables."""
    next: Callable[[GenericRequest], AsyncOrSync[NextResult]]
    complete: Optional[Callable[[], AsyncOrSync[Any]]] = None


LeafFactory = Callable[[Observer[GenericResponse]], AsyncOrSync[LeafLogic]]


class RequestCache:
    """
    Latest request per conversation target, least-recently-used eviction.

    Emissions usually happen while the triggering request is still in
    flight, so a small bound is enough to correlate them.
    """

    def __init__(self, max_size: int):
        self._max_size = max_size
        self._entries: OrderedDict[str, GenericRequest] = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    def put(self, key: str, request: GenericRequest) -> None:
        if self._max_size < 1:
            return
        self._entries[key] = request
        self._entries.move_to_end(key)
        while len(self._entries) > self._max_size:
            self._entries.popitem(last=False)

    def get(self, key: str) -> Optional[GenericRequest]:
        request = self._entries.get(key)
        if request is not None:
            self._entries.move_to_end(key)
        return request


class _LeafEmitter:
    """Restricted observer handed to leaf factories."""

    def __init__(self, leaf: "ObservableLeaf"):
        self._leaf = leaf

    async def next(self, response: GenericResponse) -> NextResult:
        return await self._leaf._emit(response)

    async def complete(self) -> None:
        await self._leaf.complete()


class ObservableLeaf:
    """Leaf produced by ``create_leaf``."""

    def __init__(self, cache_size: Optional[int] = None):
        self._subject: ContentSubject[GenericResponse] = ContentSubject(all_break)
        self._original_requests = RequestCache(
            settings.leaf_request_cache_size if cache_size is None else cache_size
        )
        self._base: Optional[LeafLogic] = None
        self._is_completed = False

    async def _emit(self, response: GenericResponse) -> NextResult:
        if response.original_request is None:
            original_request = self._original_requests.get(response.target_key)
            if original_request is not None:
                response = replace(response, original_request=original_request)
        return await self._subject.next(response)

    async def next(self, request: GenericRequest) -> NextResult:
        if self._base is None:
            raise RuntimeError("Leaf logic has not been attached")

        self._original_requests.put(request.target_key, request)

        try:
            return await resolve(self._base.next(request))
        except Exception as error:
            if getattr(error, "current_leaf_name", None) is None:
                error.current_leaf_name = request.current_leaf_name
            logger.debug(
                "Leaf %s raised %s", error.current_leaf_name, error.__class__.__name__
            )
            raise

    async def subscribe(self, observer: Observer[GenericResponse]) -> Subscription:
        return await self._subject.subscribe(observer)

    async def complete(self) -> None:
        if self._is_completed:
            return
        self._is_completed = True

        base_complete = getattr(self._base, "complete", None)
        if base_complete is not None:
            await resolve(base_complete())
        await self._subject.complete()


async def create_leaf(factory: LeafFactory, *, cache_size: Optional[int] = None) -> ObservableLeaf:
    """
    Create a leaf from a factory.

    Example::

        async def greeting(observer):
            async def on_request(request):
                if request.input.type != "text":
                    return NextResult.FALLTHROUGH
                return await observer.next(
                    text_response(request.target_id, request.target_platform, "Hi!")
                )
            return BaseLeaf(next=on_request)

        leaf = await create_leaf(greeting)
    """
    leaf = ObservableLeaf(cache_size)
    leaf._base = await resolve(factory(_LeafEmitter(leaf)))
    return leaf


class DelegatingLeaf:
    """
    Forwards every leaf operation to ``inner``. Decorators subclass this and
    override only the operations they change.
    """

    def __init__(self, inner: Leaf):
        self.inner = inner

    async def next(self, request: GenericRequest) -> NextResult:
        return await self.inner.next(request)

    async def subscribe(self, observer: Observer[GenericResponse]) -> Subscription:
        return await self.inner.subscribe(observer)

    async def complete(self) -> None:
        complete = getattr(self.inner, "complete", None)
        if complete is not None:
            await resolve(complete())


# ============================================================================
# DEFAULT ERROR LEAF
# ============================================================================

@dataclass(frozen=True)
class ErrorTrackingArgs:
    error: BaseException
    errored_leaf: Optional[str]
    target_id: str
    target_platform: str


async def create_default_error_leaf(
    format_error_message: Callable[[BaseException], str],
    track_error: Optional[Callable[[ErrorTrackingArgs], Awaitable[Any] | Any]] = None,
) -> ObservableLeaf:
    """
    Leaf delivering a user-facing message for error inputs. Pair it with
    ``catch_error`` so failing leaves never leak stack traces to users.
    """

    async def factory(observer: Observer[GenericResponse]) -> BaseLeaf:
        async def on_request(request: GenericRequest) -> NextResult:
            if request.input.type != "error":
                return NextResult.FALLTHROUGH

            error = request.input.error
            errored_leaf = request.input.errored_leaf

            if track_error is not None:
                await resolve(track_error(ErrorTrackingArgs(
                    error=error,
                    errored_leaf=errored_leaf,
                    target_id=request.target_id,
                    target_platform=request.target_platform,
                )))

            return await observer.next(text_response(
                request.target_id,
                request.target_platform,
                format_error_message(error),
            ))

        return BaseLeaf(next=on_request)

    return await create_leaf(factory)
