"""
Small reusable leaf transformers for gating and rewriting traffic.
"""
from __future__ import annotations

from typing import Any, Callable, Optional

from leafbot.core.engine.domain import GenericRequest, GenericResponse, NextResult
from leafbot.core.engine.leaf import BaseLeaf, DelegatingLeaf, create_leaf
from leafbot.core.engine.ports import AsyncOrSync, Leaf, LeafTransformer, Observer, Subscription
from leafbot.core.engine.stream import FunctionObserver, create_composite_subscription
from leafbot.core.engine.transform import transform
from leafbot.core.engine.utils import has_keys, map_series, resolve

RequestMapper = Callable[[GenericRequest], AsyncOrSync[Optional[GenericRequest]]]


class _MapInputLeaf(DelegatingLeaf):
    def __init__(self, inner: Leaf, fn: RequestMapper):
        super().__init__(inner)
        self._fn = fn

    async def next(self, request: GenericRequest) -> NextResult:
        mapped = await resolve(self._fn(request))
        if mapped is None:
            return NextResult.FALLTHROUGH
        return await self.inner.next(mapped)


def map_input(fn: Callable[[GenericRequest], AsyncOrSync[GenericRequest]]) -> LeafTransformer:
    """Rewrite every request before the wrapped leaf sees it."""
    return lambda leaf: _MapInputLeaf(leaf, fn)


def compact_map_input(fn: RequestMapper) -> LeafTransformer:
    """Like ``map_input``; a ``None`` result skips the leaf (FALLTHROUGH)."""
    return lambda leaf: _MapInputLeaf(leaf, fn)


def filter_input(predicate: Callable[[GenericRequest], AsyncOrSync[Any]]) -> LeafTransformer:
    async def keep_if_passed(request: GenericRequest) -> Optional[GenericRequest]:
        return request if await resolve(predicate(request)) else None

    return compact_map_input(keep_if_passed)


def require_context_keys(*keys: str) -> LeafTransformer:
    """Only let requests through when every key is set in current_context."""
    return filter_input(lambda request: has_keys(request.current_context, *keys))


def map_output(fn: Callable[[GenericResponse], AsyncOrSync[GenericResponse]]) -> LeafTransformer:
    """Rewrite every response the wrapped leaf emits."""

    async def transformer(leaf: Leaf) -> Leaf:
        async def factory(observer: Observer[GenericResponse]) -> BaseLeaf:
            async def forward(response: GenericResponse) -> NextResult:
                return await observer.next(await resolve(fn(response)))

            await leaf.subscribe(FunctionObserver(forward))

            async def complete() -> None:
                inner_complete = getattr(leaf, "complete", None)
                if inner_complete is not None:
                    await resolve(inner_complete())

            return BaseLeaf(next=leaf.next, complete=complete)

        return await create_leaf(factory)

    return transformer


def _emission_source(leaf: Leaf) -> Leaf:
    """The leaf whose observers actually receive ``leaf``'s responses."""
    while isinstance(leaf, DelegatingLeaf) and type(leaf).subscribe is DelegatingLeaf.subscribe:
        leaf = leaf.inner
    return leaf


class FirstValidLeaf:
    def __init__(self, variants: list[Leaf]):
        self.variants = variants

    async def next(self, request: GenericRequest) -> NextResult:
        for variant in self.variants:
            if await variant.next(request) == NextResult.BREAK:
                return NextResult.BREAK
        return NextResult.FALLTHROUGH

    async def subscribe(self, observer: Observer[GenericResponse]) -> Subscription:
        # Delegating variants share the wrapped leaf's stream: subscribe to each source once.
        sources: list[Leaf] = []
        for variant in self.variants:
            source = _emission_source(variant)
            if not any(source is seen for seen in sources):
                sources.append(source)

        subscriptions = await map_series(sources, lambda source: source.subscribe(observer))
        return create_composite_subscription(*subscriptions)

    async def complete(self) -> None:
        async def complete_variant(variant: Leaf) -> None:
            complete = getattr(variant, "complete", None)
            if complete is not None:
                await resolve(complete())

        await map_series(self.variants, complete_variant)


def first_valid_result(*transformers: LeafTransformer) -> LeafTransformer:
    """
    Apply each transformer to the same leaf and use the first variant that
    handles the request.
    """

    async def transformer(leaf: Leaf) -> Leaf:
        variants = await map_series(transformers, lambda fn: transform(leaf, fn))
        return FirstValidLeaf(variants)

    return transformer
