from __future__ import annotations
import json
from typing import Any, AsyncContextManager, Callable, Optional

import asyncpg

from leafbot.core.engine.domain import Context, ContextUpdate
from leafbot.core.engine.utils import join_objects
from leafbot.infra.db_async import db_conn
from leafbot.infra.logging_config import get_logger, mask_target_id
from leafbot.infra.metrics import EngineMetrics

logger = get_logger(__name__)

ConnFactory = Callable[..., AsyncContextManager[asyncpg.Connection]]


def _load(raw: Any) -> dict[str, Any]:
    if raw is None:
        return {}
    if isinstance(raw, (bytes, str)):
        return json.loads(raw)
    return dict(raw)


class PostgresContextStore:
    """
    ContextStore persisted in the ``contexts`` table (JSONB per target).

    ``append_context`` reads the row with SELECT ... FOR UPDATE and upserts
    inside one transaction, so concurrent appends for the same target are
    serialized by Postgres.
    """

    def __init__(self, conn_factory: ConnFactory = db_conn):
        self._conn = conn_factory

    async def get_context(self, target_id: str, target_platform: str) -> Context:
        try:
            async with self._conn() as conn:
                raw = await conn.fetchval(
                    "SELECT context::text FROM contexts WHERE target_platform=$1 AND target_id=$2",
                    target_platform, target_id
                )
                return _load(raw)
        except Exception:
            logger.error(
                f"Failed to get context: platform={target_platform}, target={mask_target_id(target_id)}",
                exc_info=True,
            )
            EngineMetrics.context_store_error("context_get")
            raise

    async def append_context(
        self,
        target_id: str,
        target_platform: str,
        additional_context: Context,
        old_context: Optional[Context] = None,
    ) -> ContextUpdate:
        try:
            async with self._conn(autocommit=False) as conn:
                if old_context is None:
                    raw = await conn.fetchval(
                        """
                        SELECT context::text FROM contexts
                        WHERE target_platform=$1 AND target_id=$2
                        FOR UPDATE
                        """,
                        target_platform, target_id
                    )
                    old_context = _load(raw)

                new_context = join_objects(old_context, additional_context)
                await conn.execute(
                    """
                    INSERT INTO contexts(target_platform, target_id, context)
                    VALUES ($1, $2, $3::jsonb)
                    ON CONFLICT (target_platform, target_id)
                    DO UPDATE SET
                      context = EXCLUDED.context,
                      updated_at = now()
                    """,
                    target_platform, target_id, json.dumps(new_context)
                )
                return ContextUpdate(old_context=old_context, new_context=new_context)
        except Exception:
            logger.error(
                f"Failed to append context: platform={target_platform}, target={mask_target_id(target_id)}",
                exc_info=True,
            )
            EngineMetrics.context_store_error("context_append")
            raise

    async def reset_context(self, target_id: str, target_platform: str) -> None:
        try:
            async with self._conn() as conn:
                await conn.execute(
                    "DELETE FROM contexts WHERE target_platform=$1 AND target_id=$2",
                    target_platform, target_id
                )
        except Exception:
            logger.error(
                f"Failed to reset context: platform={target_platform}, target={mask_target_id(target_id)}",
                exc_info=True,
            )
            EngineMetrics.context_store_error("context_reset")
            raise
