# tests/test_processor_middleware.py
"""Tests for leafbot/transport/processor_middleware.py."""
from __future__ import annotations

from dataclasses import replace
from unittest.mock import AsyncMock, MagicMock

import pytest

from leafbot.core.engine.domain import ContextChangeInput, text_response
from leafbot.infra.context_store import InMemoryContextStore
from leafbot.transport.processor import ProcessorConfig, create_message_processor
from leafbot.transport.processor_middleware import (
    inject_context_on_receive,
    log_processing,
    save_context_on_send,
    save_user_for_target_id,
    set_typing_indicator,
)


def _config(platform="facebook", events=None):
    events = events if events is not None else []
    selector = MagicMock()
    selector.next = AsyncMock()
    client = MagicMock()

    async def send(payload):
        events.append(f"send:{payload}")
        return payload

    async def typing(target_id, enabled):
        events.append(f"typing:{enabled}")

    client.send_response = AsyncMock(side_effect=send)
    client.set_typing_indicator = AsyncMock(side_effect=typing)
    return ProcessorConfig(
        target_platform=platform,
        leaf_selector=selector,
        client=client,
        map_request=lambda raw: [],
        map_response=lambda response: [o.content.text for o in response.output],
    )


# ============================================================================
# inject_context_on_receive
# ============================================================================

class TestInjectContext:
    @pytest.mark.asyncio
    async def test_request_context_wins_over_stored(self, make_request):
        store = InMemoryContextStore()
        await store.append_context("T", "facebook", {"a": 1, "b": 1})
        config = _config()
        processor = await create_message_processor(config, inject_context_on_receive(store))

        await processor.receive_request(make_request(current_context={"b": 2}))

        dispatched = config.leaf_selector.next.await_args.args[0]
        assert dispatched.current_context == {"a": 1, "b": 2}

    @pytest.mark.asyncio
    async def test_context_change_skips_store(self, make_request):
        store = MagicMock()
        store.get_context = AsyncMock()
        config = _config()
        processor = await create_message_processor(config, inject_context_on_receive(store))
        request = make_request(input=ContextChangeInput(changed_context={}, new_context={}, old_context={}))

        await processor.receive_request(request)

        store.get_context.assert_not_awaited()
        config.leaf_selector.next.assert_awaited_once_with(request)


# ============================================================================
# save_context_on_send
# ============================================================================

class TestSaveContext:
    @pytest.mark.asyncio
    async def test_saves_then_dispatches_context_change(self, make_request):
        events: list[str] = []
        store = InMemoryContextStore()
        await store.append_context("T", "facebook", {"a": 1})
        config = _config(events=events)
        config.leaf_selector.next.side_effect = lambda request: events.append(f"receive:{request.input.type}")
        processor = await create_message_processor(
            config, inject_context_on_receive(store), save_context_on_send(store),
        )
        original = make_request(current_context={"a": 1})

        await processor.send_response(text_response(
            "T", "facebook", "hi", additional_context={"b": 2}, original_request=original,
        ))

        assert events == ["send:hi", "receive:context_change"]
        assert await store.get_context("T", "facebook") == {"a": 1, "b": 2}

        change = config.leaf_selector.next.await_args.args[0]
        assert change.trigger_type == "manual"
        assert change.input.changed_context == {"b": 2}
        assert change.input.old_context == {"a": 1}
        assert change.input.new_context == {"a": 1, "b": 2}
        assert change.current_context == {"a": 1, "b": 2}
        assert change.original_request is original

    @pytest.mark.asyncio
    async def test_no_additional_context_only_sends(self):
        store = MagicMock()
        store.append_context = AsyncMock()
        config = _config()
        processor = await create_message_processor(config, save_context_on_send(store))

        assert await processor.send_response(text_response("T", "facebook", "hi")) == ["hi"]

        store.append_context.assert_not_awaited()
        config.leaf_selector.next.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_pre_save_mapper(self):
        store = InMemoryContextStore()
        config = _config()
        processor = await create_message_processor(
            config,
            save_context_on_send(store, lambda context: {k.upper(): v for k, v in context.items()}),
        )

        await processor.send_response(text_response("T", "facebook", "hi", additional_context={"x": 1}))

        assert await store.get_context("T", "facebook") == {"X": 1}

    @pytest.mark.asyncio
    async def test_other_platform_response_still_saves(self):
        store = InMemoryContextStore()
        config = _config(platform="telegram")
        processor = await create_message_processor(config, save_context_on_send(store))

        await processor.send_response(text_response("T", "facebook", "hi", additional_context={"x": 1}))

        config.client.send_response.assert_not_awaited()
        assert await store.get_context("T", "facebook") == {"x": 1}


# ============================================================================
# save_user_for_target_id
# ============================================================================

class TestSaveUser:
    @pytest.mark.asyncio
    async def test_saves_user_when_enabled(self, make_request):
        store = InMemoryContextStore()
        config = _config()
        get_user = AsyncMock(return_value={"first_name": "Ada"})
        save_user = AsyncMock(return_value={"user": "Ada"})
        processor = await create_message_processor(config, save_user_for_target_id(
            store, get_user, lambda context: "user" not in context, save_user,
        ))

        await processor.receive_request(make_request())

        get_user.assert_awaited_once_with("T")
        save_user.assert_awaited_once_with({"first_name": "Ada"})
        assert config.leaf_selector.next.await_args.args[0].current_context == {"user": "Ada"}
        assert await store.get_context("T", "facebook") == {"user": "Ada"}

    @pytest.mark.asyncio
    async def test_skipped_when_disabled(self, make_request):
        get_user = AsyncMock()
        config = _config()
        processor = await create_message_processor(config, save_user_for_target_id(
            InMemoryContextStore(), get_user, lambda context: False, AsyncMock(),
        ))

        await processor.receive_request(make_request())

        get_user.assert_not_awaited()
        config.leaf_selector.next.assert_awaited_once()


# ============================================================================
# set_typing_indicator
# ============================================================================

class TestTypingIndicator:
    @pytest.mark.asyncio
    async def test_wraps_send(self):
        events: list[str] = []
        config = _config(events=events)
        processor = await create_message_processor(config, set_typing_indicator(config.client))

        await processor.send_response(text_response("T", "facebook", "hi"))

        assert events == ["typing:True", "send:hi", "typing:False"]

    @pytest.mark.asyncio
    async def test_errors_go_to_handler(self):
        config = _config()
        config.client.set_typing_indicator = AsyncMock(side_effect=RuntimeError("typing failed"))
        errors: list[Exception] = []
        processor = await create_message_processor(config, set_typing_indicator(config.client, errors.append))

        assert await processor.send_response(text_response("T", "facebook", "hi")) == ["hi"]
        assert len(errors) == 2

    @pytest.mark.asyncio
    async def test_errors_raise_without_handler(self):
        config = _config()
        config.client.set_typing_indicator = AsyncMock(side_effect=RuntimeError("typing failed"))
        processor = await create_message_processor(config, set_typing_indicator(config.client))

        with pytest.raises(RuntimeError, match="typing failed"):
            await processor.send_response(text_response("T", "facebook", "hi"))
        config.client.send_response.assert_not_awaited()


class TestLogProcessing:
    @pytest.mark.asyncio
    async def test_passes_everything_through(self, make_request):
        config = _config()
        processor = await create_message_processor(config, log_processing())
        request = replace(make_request(), current_context={"a": 1})

        await processor.receive_request(request)
        assert await processor.send_response(text_response("T", "facebook", "hi")) == ["hi"]
        assert await processor.generalize_request({}) == []

        config.leaf_selector.next.assert_awaited_once_with(request)
