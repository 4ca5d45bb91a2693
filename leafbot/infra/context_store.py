# leafbot/infra/context_store.py
"""
In-process context store.

Keeps one context mapping per (platform, target) in memory. Every operation
runs under a single asyncio.Lock so concurrent appends for the same target
never lose keys. Useful for development and tests; contexts are lost on
restart.
"""
from __future__ import annotations

import asyncio
from typing import Any, Optional

from leafbot.core.engine.domain import Context, ContextUpdate
from leafbot.core.engine.utils import join_objects
from leafbot.infra.logging_config import get_logger

logger = get_logger(__name__)


class InMemoryContextStore:
    """ContextStore backed by a nested dict: {platform: {target_id: context}}."""

    def __init__(self) -> None:
        self._storage: dict[str, dict[str, dict[str, Any]]] = {}
        self._lock = asyncio.Lock()

    def _get_unlocked(self, target_id: str, target_platform: str) -> dict[str, Any]:
        return self._storage.setdefault(target_platform, {}).setdefault(target_id, {})

    async def get_context(self, target_id: str, target_platform: str) -> Context:
        async with self._lock:
            return dict(self._get_unlocked(target_id, target_platform))

    async def append_context(
        self,
        target_id: str,
        target_platform: str,
        additional_context: Context,
        old_context: Optional[Context] = None,
    ) -> ContextUpdate:
        async with self._lock:
            if old_context is None:
                old_context = dict(self._get_unlocked(target_id, target_platform))

            new_context = join_objects(old_context, additional_context)
            self._storage.setdefault(target_platform, {})[target_id] = new_context
            return ContextUpdate(old_context=old_context, new_context=dict(new_context))

    async def reset_context(self, target_id: str, target_platform: str) -> None:
        async with self._lock:
            self._storage.get(target_platform, {}).pop(target_id, None)

    async def get_all_context(self) -> dict[str, dict[str, dict[str, Any]]]:
        """Snapshot of every stored context, grouped by platform."""
        async with self._lock:
            return {
                platform: {target: dict(ctx) for target, ctx in targets.items()}
                for platform, targets in self._storage.items()
            }

    async def reset_storage(self) -> None:
        async with self._lock:
            self._storage.clear()
            logger.debug("In-memory context storage reset")
