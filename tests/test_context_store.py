# tests/test_context_store.py
"""Tests for the in-memory and Postgres context stores."""
from __future__ import annotations

import asyncio
import json
from contextlib import asynccontextmanager
from unittest.mock import AsyncMock

import pytest

from leafbot.infra.context_store import InMemoryContextStore
from leafbot.infra.metrics import get_metrics_collector
from leafbot.infra.pg_context_store import PostgresContextStore


# ============================================================================
# In-memory
# ============================================================================

class TestInMemoryContextStore:
    @pytest.mark.asyncio
    async def test_unknown_target_is_empty(self):
        assert await InMemoryContextStore().get_context("1", "telegram") == {}

    @pytest.mark.asyncio
    async def test_append_merges_additively(self):
        store = InMemoryContextStore()
        await store.append_context("1", "telegram", {"a": 1, "b": 1})

        update = await store.append_context("1", "telegram", {"b": 2, "c": 3})

        assert update.old_context == {"a": 1, "b": 1}
        assert update.new_context == {"a": 1, "b": 2, "c": 3}
        assert await store.get_context("1", "telegram") == {"a": 1, "b": 2, "c": 3}

    @pytest.mark.asyncio
    async def test_explicit_old_context_skips_read(self):
        store = InMemoryContextStore()
        await store.append_context("1", "telegram", {"stored": True})

        update = await store.append_context("1", "telegram", {"b": 2}, old_context={"a": 1})

        assert update.new_context == {"a": 1, "b": 2}

    @pytest.mark.asyncio
    async def test_targets_and_platforms_are_isolated(self):
        store = InMemoryContextStore()
        await store.append_context("1", "telegram", {"a": 1})
        await store.append_context("1", "facebook", {"b": 2})

        assert await store.get_context("1", "telegram") == {"a": 1}
        assert await store.get_context("1", "facebook") == {"b": 2}
        assert await store.get_context("2", "telegram") == {}

    @pytest.mark.asyncio
    async def test_returned_context_is_a_copy(self):
        store = InMemoryContextStore()
        await store.append_context("1", "telegram", {"a": 1})

        context = await store.get_context("1", "telegram")
        context["a"] = 99

        assert await store.get_context("1", "telegram") == {"a": 1}

    @pytest.mark.asyncio
    async def test_concurrent_appends_keep_every_key(self):
        store = InMemoryContextStore()

        await asyncio.gather(*(
            store.append_context("1", "telegram", {f"k{i}": i}) for i in range(50)
        ))

        assert len(await store.get_context("1", "telegram")) == 50

    @pytest.mark.asyncio
    async def test_reset_context_and_storage(self):
        store = InMemoryContextStore()
        await store.append_context("1", "telegram", {"a": 1})
        await store.append_context("2", "telegram", {"b": 1})

        await store.reset_context("1", "telegram")
        assert await store.get_all_context() == {"telegram": {"2": {"b": 1}}}

        await store.reset_storage()
        assert await store.get_all_context() == {}


# ============================================================================
# Postgres
# ============================================================================

def _fake_factory(conn):
    calls = []

    @asynccontextmanager
    async def factory(autocommit=True):
        calls.append(autocommit)
        yield conn

    factory.calls = calls
    return factory


class TestPostgresContextStore:
    @pytest.mark.asyncio
    async def test_get_context_parses_json(self):
        conn = AsyncMock()
        conn.fetchval.return_value = '{"a": 1}'
        store = PostgresContextStore(_fake_factory(conn))

        assert await store.get_context("1", "telegram") == {"a": 1}
        assert conn.fetchval.await_args.args[1:] == ("telegram", "1")

    @pytest.mark.asyncio
    async def test_missing_row_is_empty(self):
        conn = AsyncMock()
        conn.fetchval.return_value = None
        store = PostgresContextStore(_fake_factory(conn))

        assert await store.get_context("1", "telegram") == {}

    @pytest.mark.asyncio
    async def test_append_locks_row_and_upserts_in_transaction(self):
        conn = AsyncMock()
        conn.fetchval.return_value = '{"a": 1}'
        factory = _fake_factory(conn)
        store = PostgresContextStore(factory)

        update = await store.append_context("1", "telegram", {"b": 2})

        assert factory.calls == [False]
        assert "FOR UPDATE" in conn.fetchval.await_args.args[0]
        sql, platform, target, payload = conn.execute.await_args.args
        assert "ON CONFLICT" in sql
        assert (platform, target) == ("telegram", "1")
        assert json.loads(payload) == {"a": 1, "b": 2}
        assert update.old_context == {"a": 1}
        assert update.new_context == {"a": 1, "b": 2}

    @pytest.mark.asyncio
    async def test_append_with_old_context_skips_select(self):
        conn = AsyncMock()
        store = PostgresContextStore(_fake_factory(conn))

        update = await store.append_context("1", "telegram", {"b": 2}, old_context={"a": 1})

        conn.fetchval.assert_not_awaited()
        assert update.new_context == {"a": 1, "b": 2}

    @pytest.mark.asyncio
    async def test_reset_deletes_row(self):
        conn = AsyncMock()
        store = PostgresContextStore(_fake_factory(conn))

        await store.reset_context("1", "telegram")

        assert conn.execute.await_args.args[0].startswith("DELETE FROM contexts")

    @pytest.mark.asyncio
    async def test_failure_is_counted_and_reraised(self):
        conn = AsyncMock()
        conn.fetchval.side_effect = ConnectionError("db down")
        store = PostgresContextStore(_fake_factory(conn))

        with pytest.raises(ConnectionError):
            await store.get_context("1", "telegram")

        assert get_metrics_collector().get_counter(
            "context_store_errors_total", operation="context_get"
        ) == 1
