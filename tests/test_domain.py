# tests/test_domain.py
"""Tests for leafbot/core/engine/domain.py and utils.py"""
import pytest

from leafbot.core.engine.domain import (
    GenericRequest,
    GenericResponse,
    ResponseOutput,
    TextContent,
    TextInput,
    target_key,
    text_response,
)
from leafbot.core.engine.utils import chunk_string, has_keys, join_objects, map_series, resolve


class TestGenericRequest:
    def test_message_trigger_requires_raw_request(self):
        with pytest.raises(ValueError):
            GenericRequest(target_id="1", target_platform="telegram", input=TextInput(text="x"), trigger_type="message")

    def test_manual_trigger_rejects_raw_request(self):
        with pytest.raises(ValueError):
            GenericRequest(
                target_id="1", target_platform="telegram", input=TextInput(text="x"),
                trigger_type="manual", raw_request={"update_id": 1},
            )

    def test_trigger_type_is_required(self):
        with pytest.raises(TypeError):
            GenericRequest(target_id="1", target_platform="telegram", input=TextInput(text="x"))

    def test_defaults(self):
        request = GenericRequest(
            target_id="1", target_platform="telegram", input=TextInput(text="x"), trigger_type="manual",
        )

        assert request.current_context == {}
        assert request.current_leaf_name is None
        assert request.target_key == "telegram_1"


class TestGenericResponse:
    def test_requires_output(self):
        with pytest.raises(ValueError):
            GenericResponse(target_id="1", target_platform="telegram", output=())

    def test_list_output_is_stored_as_tuple(self):
        response = GenericResponse(
            target_id="1", target_platform="telegram",
            output=[ResponseOutput(content=TextContent(text="a"))],
        )

        assert isinstance(response.output, tuple)

    def test_text_response(self):
        response = text_response("1", "facebook", "a", "b", additional_context={"k": 1})

        assert [o.content.text for o in response.output] == ["a", "b"]
        assert response.additional_context == {"k": 1}
        assert response.target_key == target_key("1", "facebook")


class TestUtils:
    def test_join_objects_new_wins(self):
        assert join_objects({"a": 1, "b": 1}, {"b": 2}) == {"a": 1, "b": 2}
        assert join_objects(None, None) == {}

    def test_has_keys_treats_none_as_missing(self):
        assert has_keys({"a": 0, "b": ""}, "a", "b")
        assert not has_keys({"a": None}, "a")
        assert not has_keys({}, "a")

    def test_chunk_string(self):
        assert chunk_string("abcde", 2) == ["ab", "cd", "e"]
        assert chunk_string("", 3) == [""]
        with pytest.raises(ValueError):
            chunk_string("abc", 0)

    @pytest.mark.asyncio
    async def test_resolve(self):
        async def value():
            return 5

        assert await resolve(value()) == 5
        assert await resolve(6) == 6

    @pytest.mark.asyncio
    async def test_map_series_keeps_order(self):
        order = []

        async def record(item):
            order.append(item)
            return item * 2

        assert await map_series([3, 1, 2], record) == [6, 2, 4]
        assert order == [3, 1, 2]
