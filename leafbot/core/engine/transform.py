from __future__ import annotations

from typing import Awaitable, Callable, TypeVar, Union

from leafbot.core.engine.ports import Leaf, LeafTransformer
from leafbot.core.engine.utils import resolve

T = TypeVar("T")

Transformer = Callable[[T], Union[T, Awaitable[T]]]


async def transform(original: T, *transformers: Transformer[T]) -> T:
    """Feed ``original`` through every transformer, in order."""
    transformed = original
    for fn in transformers:
        transformed = await resolve(fn(transformed))
    return transformed


class TransformChain:
    """
    Declarative leaf decoration::

        leaf = await (
            create_transform_chain()
            .pipe(retry_with_wit(wit_client))
            .pipe(catch_error(error_leaf))
            .transform(base_leaf)
        )

    Transformers run in ``pipe`` order, so the last one piped is the
    outermost wrapper.
    """

    def __init__(self) -> None:
        self._transformers: list[LeafTransformer] = []

    def pipe(self, transformer: LeafTransformer) -> "TransformChain":
        self._transformers.append(transformer)
        return self

    async def transform(self, leaf: Leaf) -> Leaf:
        return await transform(leaf, *self._transformers)


def create_transform_chain() -> TransformChain:
    return TransformChain()
