from __future__ import annotations

from dataclasses import replace

from leafbot.core.engine.domain import ErrorInput, GenericRequest, GenericResponse, NextResult
from leafbot.core.engine.leaf import DelegatingLeaf
from leafbot.core.engine.ports import Leaf, LeafTransformer, Observer, Subscription
from leafbot.core.engine.stream import create_composite_subscription
from leafbot.core.engine.utils import resolve
from leafbot.infra.logging_config import get_logger, LogContext
from leafbot.infra.metrics import EngineMetrics

logger = get_logger(__name__)


class CatchErrorLeaf(DelegatingLeaf):
    def __init__(self, inner: Leaf, fallback_leaf: Leaf):
        super().__init__(inner)
        self.fallback_leaf = fallback_leaf

    async def next(self, request: GenericRequest) -> NextResult:
        try:
            return await self.inner.next(request)
        except Exception as error:
            errored_leaf = getattr(error, "current_leaf_name", None)
            if not isinstance(errored_leaf, str):
                errored_leaf = request.current_leaf_name

            LogContext.for_target(logger, request, leaf=errored_leaf).error(
                f"Leaf failed: {error.__class__.__name__}: {error}",
                exc_info=True,
            )
            EngineMetrics.leaf_error_recovered(errored_leaf)

            return await self.fallback_leaf.next(replace(
                request,
                input=ErrorInput(error=error, errored_leaf=errored_leaf),
                raw_request=None,
                trigger_type="manual",
                original_request=request,
            ))

    async def subscribe(self, observer: Observer[GenericResponse]) -> Subscription:
        return create_composite_subscription(
            await self.inner.subscribe(observer),
            await self.fallback_leaf.subscribe(observer),
        )

    async def complete(self) -> None:
        await super().complete()
        complete = getattr(self.fallback_leaf, "complete", None)
        if complete is not None:
            await resolve(complete())


def catch_error(fallback_leaf: Leaf) -> LeafTransformer:
    """If a leaf raises while handling a request, hand it to ``fallback_leaf``."""
    return lambda leaf: CatchErrorLeaf(leaf, fallback_leaf)
