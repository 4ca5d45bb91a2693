# tests/test_transform_chain.py
"""Tests for leafbot/core/engine/transform.py."""
from __future__ import annotations

import pytest

from conftest import make_reply_leaf
from leafbot.core.engine.leaf import DelegatingLeaf
from leafbot.core.engine.transform import create_transform_chain, transform


class _Tagged(DelegatingLeaf):
    def __init__(self, inner, tag):
        super().__init__(inner)
        self.tag = tag


def _tag(tag):
    return lambda leaf: _Tagged(leaf, tag)


class TestTransform:
    @pytest.mark.asyncio
    async def test_applies_in_order(self):
        assert await transform(1, lambda x: x + 1, lambda x: x * 10) == 20

    @pytest.mark.asyncio
    async def test_accepts_async_transformers(self):
        async def double(x):
            return x * 2

        assert await transform(3, double) == 6

    @pytest.mark.asyncio
    async def test_no_transformers_returns_original(self):
        marker = object()
        assert await transform(marker) is marker


class TestTransformChain:
    @pytest.mark.asyncio
    async def test_last_piped_is_outermost(self):
        base = await make_reply_leaf()

        leaf = await create_transform_chain().pipe(_tag("first")).pipe(_tag("second")).transform(base)

        assert leaf.tag == "second"
        assert leaf.inner.tag == "first"
        assert leaf.inner.inner is base

    def test_pipe_returns_chain(self):
        chain = create_transform_chain()
        assert chain.pipe(_tag("x")) is chain
