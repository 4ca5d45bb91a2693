from __future__ import annotations

from typing import Any, Callable

from leafbot.core.engine.domain import GenericRequest, NextResult
from leafbot.core.engine.leaf import DelegatingLeaf
from leafbot.core.engine.ports import Leaf, LeafTransformer
from leafbot.core.engine.utils import resolve
from leafbot.infra.logging_config import get_logger, LogContext
from leafbot.infra.metrics import EngineMetrics

logger = get_logger(__name__)


class CatchAllLeaf(DelegatingLeaf):
    def __init__(self, inner: Leaf, on_unhandled: Callable[[GenericRequest], Any]):
        super().__init__(inner)
        self._on_unhandled = on_unhandled

    async def next(self, request: GenericRequest) -> NextResult:
        result = await self.inner.next(request)

        # Nobody is expected to claim context changes.
        if request.input.type == "context_change" or result == NextResult.BREAK:
            return result

        LogContext.for_target(logger, request).info(
            f"Unhandled {request.input.type} input, invoking catch-all"
        )
        EngineMetrics.leaf_unhandled(request.target_platform)
        await resolve(self._on_unhandled(request))
        return NextResult.BREAK


def catch_all(on_unhandled: Callable[[GenericRequest], Any]) -> LeafTransformer:
    """
    Turn "no leaf handled this" into a callback. Wrap the root selector with
    it so real user input never silently falls through.
    """
    return lambda leaf: CatchAllLeaf(leaf, on_unhandled)
