"""
Leaf tree enumeration and first-match dispatch.

A branch is a mapping whose values are leaves or nested branches::

    {
        "onboarding": {"welcome": welcome_leaf, "consent": consent_leaf},
        "z_catch_all": fallback_leaf,
    }

Leaves are tried in pre-order (key order at every level); the first leaf
returning BREAK wins and later leaves are never triggered.
"""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Mapping, Optional

from leafbot.core.engine.domain import GenericRequest, GenericResponse, NextResult
from leafbot.core.engine.errors import (
    EmptyLeafTreeError,
    InvalidBranchError,
    MultipleSubscriptionError,
)
from leafbot.core.engine.ports import Leaf, Observer, Subscription
from leafbot.core.engine.stream import MergedObservable, merge_observables
from leafbot.core.engine.utils import map_series, resolve
from leafbot.infra.logging_config import get_logger, LogContext
from leafbot.infra.metrics import EngineMetrics

logger = get_logger(__name__)

Branch = Mapping[str, Any]


@dataclass(frozen=True)
class LeafEnumeration:
    current_leaf: Leaf
    current_leaf_name: str
    prefix_leaf_paths: tuple[str, ...]
    parent_branch: Branch = field(repr=False)


def is_leaf(value: Any) -> bool:
    return callable(getattr(value, "next", None)) and callable(getattr(value, "subscribe", None))


def enumerate_leaves(branch: Branch) -> list[LeafEnumeration]:
    """Flatten ``branch`` depth-first, pre-order, in key order."""

    def enumerate_branch(current: Branch, prefix_paths: tuple[str, ...]) -> list[LeafEnumeration]:
        entries: list[LeafEnumeration] = []

        for name, leaf_or_branch in current.items():
            paths = prefix_paths + (name,)

            if is_leaf(leaf_or_branch):
                entries.append(LeafEnumeration(
                    current_leaf=leaf_or_branch,
                    current_leaf_name=name,
                    prefix_leaf_paths=paths,
                    parent_branch=current,
                ))
            elif isinstance(leaf_or_branch, Mapping):
                entries.extend(enumerate_branch(leaf_or_branch, paths))
            else:
                raise InvalidBranchError(
                    f"Value at {'.'.join(paths)} is neither a leaf nor a branch: "
                    f"{type(leaf_or_branch).__name__}"
                )

        return entries

    return enumerate_branch(branch, ())


class LeafSelector:
    """
    A leaf that picks the first leaf of a tree willing to handle a request.

    Its output is the merged output of every enumerated leaf. Subscribe to a
    selector exactly once; build another selector if a second consumer is
    needed.
    """

    def __init__(self, branch: Branch):
        self._enumerated_leaves = tuple(enumerate_leaves(branch))
        self._output_observable: Optional[MergedObservable[GenericResponse]] = None
        self._subscribe_count = 0

    def enumerate_leaves(self) -> tuple[LeafEnumeration, ...]:
        return self._enumerated_leaves

    def subscribe_count(self) -> int:
        return self._subscribe_count

    async def trigger_leaf(self, entry: LeafEnumeration, request: GenericRequest) -> NextResult:
        """Run one leaf; does not guarantee it handles the request."""
        return await entry.current_leaf.next(
            replace(request, current_leaf_name=entry.current_leaf_name)
        )

    async def next(self, request: GenericRequest) -> NextResult:
        enumerated_leaves = self.enumerate_leaves()

        if not enumerated_leaves:
            raise EmptyLeafTreeError("Cannot dispatch a request: the leaf tree has no leaves")

        for entry in enumerated_leaves:
            result = await self.trigger_leaf(entry, request)

            if result == NextResult.BREAK:
                LogContext.for_target(logger, request, leaf=entry.current_leaf_name).debug(
                    f"Request ({request.input.type}) handled by {'.'.join(entry.prefix_leaf_paths)}"
                )
                EngineMetrics.leaf_selected(entry.current_leaf_name)
                return NextResult.BREAK

        LogContext.for_target(logger, request).info(
            f"No leaf handled request ({request.input.type})"
        )
        return NextResult.FALLTHROUGH

    async def complete(self) -> None:
        async def complete_leaf(entry: LeafEnumeration) -> None:
            complete = getattr(entry.current_leaf, "complete", None)
            if complete is not None:
                await resolve(complete())

        await map_series(self.enumerate_leaves(), complete_leaf)

    async def subscribe(self, observer: Observer[GenericResponse]) -> Subscription:
        self._subscribe_count += 1

        if self._subscribe_count > 1:
            raise MultipleSubscriptionError(
                "Please do not subscribe to leaf selectors multiple times. "
                "Create another one to avoid unexpected behaviours."
            )

        if self._output_observable is None:
            self._output_observable = merge_observables(
                *(entry.current_leaf for entry in self.enumerate_leaves())
            )

        return await self._output_observable.subscribe(observer)


def create_leaf_selector(branch: Branch) -> LeafSelector:
    return LeafSelector(branch)
