# tests/test_selector.py
"""Tests for leafbot/core/engine/selector.py: enumeration and first-match dispatch."""
from __future__ import annotations

import pytest

from conftest import RecordingObserver, make_reply_leaf
from leafbot.core.engine.domain import NextResult
from leafbot.core.engine.errors import (
    EmptyLeafTreeError,
    InvalidBranchError,
    MultipleSubscriptionError,
)
from leafbot.core.engine.selector import create_leaf_selector, enumerate_leaves
from leafbot.infra.metrics import get_metrics_collector


# ============================================================================
# Enumeration
# ============================================================================

class TestEnumerateLeaves:
    @pytest.mark.asyncio
    async def test_pre_order_skips_empty_branches(self):
        leaf1, leaf2 = await make_reply_leaf("1"), await make_reply_leaf("2")
        branch = {"a": {"x": leaf1, "y": {}}, "b": {"z": leaf2}}

        entries = enumerate_leaves(branch)

        assert [e.current_leaf_name for e in entries] == ["x", "z"]
        assert [e.prefix_leaf_paths for e in entries] == [("a", "x"), ("b", "z")]
        assert entries[0].current_leaf is leaf1
        assert entries[0].parent_branch is branch["a"]

    def test_empty_tree(self):
        assert enumerate_leaves({}) == []

    def test_invalid_value_raises(self):
        with pytest.raises(InvalidBranchError, match="a.b"):
            enumerate_leaves({"a": {"b": 42}})


# ============================================================================
# Dispatch
# ============================================================================

class TestLeafSelector:
    @pytest.mark.asyncio
    async def test_first_match_stops_the_scan(self, make_request):
        calls: list = []
        handle_at = 500
        branch = {}
        for i in range(1000):
            branch[f"leaf_{i:04d}"] = await make_reply_leaf(
                str(i),
                should_handle=lambda request, i=i: i == handle_at,
                calls=calls,
            )

        selector = create_leaf_selector(branch)
        result = await selector.next(make_request())

        assert result == NextResult.BREAK
        assert len(calls) == handle_at + 1

    @pytest.mark.asyncio
    async def test_sets_current_leaf_name(self, make_request):
        calls: list = []
        selector = create_leaf_selector({"greeting": {"hello": await make_reply_leaf(calls=calls)}})

        await selector.next(make_request())

        assert calls[0].current_leaf_name == "hello"

    @pytest.mark.asyncio
    async def test_nothing_handles_is_fallthrough(self, make_request):
        selector = create_leaf_selector({
            "a": await make_reply_leaf(should_handle=lambda request: False),
        })

        assert await selector.next(make_request()) == NextResult.FALLTHROUGH

    @pytest.mark.asyncio
    async def test_empty_tree_raises(self, make_request):
        with pytest.raises(EmptyLeafTreeError):
            await create_leaf_selector({"a": {}}).next(make_request())

    @pytest.mark.asyncio
    async def test_records_selected_leaf_metric(self, make_request):
        selector = create_leaf_selector({"hello": await make_reply_leaf()})

        await selector.next(make_request())

        assert get_metrics_collector().get_counter("leaf_selected_total", leaf="hello") == 1


class TestLeafSelectorOutput:
    @pytest.mark.asyncio
    async def test_merges_every_leaf_output(self, make_request):
        selector = create_leaf_selector({
            "a": await make_reply_leaf("from a", should_handle=lambda r: r.input.text == "a"),
            "b": await make_reply_leaf("from b", should_handle=lambda r: r.input.text == "b"),
        })
        observer = RecordingObserver()
        await selector.subscribe(observer)

        await selector.next(make_request("a"))
        await selector.next(make_request("b"))

        assert [v.output[0].content.text for v in observer.values] == ["from a", "from b"]

    @pytest.mark.asyncio
    async def test_second_subscribe_raises(self):
        selector = create_leaf_selector({"a": await make_reply_leaf()})
        await selector.subscribe(RecordingObserver())

        with pytest.raises(MultipleSubscriptionError):
            await selector.subscribe(RecordingObserver())
        assert selector.subscribe_count() == 2

    @pytest.mark.asyncio
    async def test_complete_completes_every_leaf(self):
        selector = create_leaf_selector({
            "a": await make_reply_leaf(),
            "nested": {"b": await make_reply_leaf()},
        })
        observer = RecordingObserver()
        await selector.subscribe(observer)

        await selector.complete()

        # One completion per leaf subject the observer is attached to.
        assert observer.completed == 2
