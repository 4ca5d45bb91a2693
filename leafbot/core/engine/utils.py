from __future__ import annotations

import inspect
from typing import Any, Awaitable, Callable, Iterable, Mapping, TypeVar

T = TypeVar("T")
R = TypeVar("R")


async def resolve(value: T | Awaitable[T]) -> T:
    """Await ``value`` if it is awaitable, return it unchanged otherwise."""
    if inspect.isawaitable(value):
        return await value
    return value


async def map_series(items: Iterable[T], fn: Callable[[T], R | Awaitable[R]]) -> list[R]:
    """Apply ``fn`` to each item one after another, keeping order."""
    results: list[R] = []
    for item in list(items):
        results.append(await resolve(fn(item)))
    return results


def join_objects(old: Mapping[str, Any] | None, new: Mapping[str, Any] | None) -> dict[str, Any]:
    """Shallow merge: keys of ``new`` win."""
    return {**(old or {}), **(new or {})}


def has_keys(mapping: Mapping[str, Any], *keys: str) -> bool:
    """True if every key is present and not None."""
    return all(mapping.get(key) is not None for key in keys)


def chunk_string(text: str, length: int) -> list[str]:
    """Split ``text`` into pieces of at most ``length`` characters."""
    if length <= 0:
        raise ValueError("length must be positive")
    if not text:
        return [""]
    return [text[i:i + length] for i in range(0, len(text), length)]
