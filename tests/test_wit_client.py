# tests/test_wit_client.py
from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import aiohttp
import pytest

from leafbot.infra.metrics import get_metrics_collector
from leafbot.infra.wit_client import WitClient, WitClientError


def _make_mock_session(status=200, json_data=None, text=""):
    resp = AsyncMock()
    resp.status = status
    resp.json = AsyncMock(return_value=json_data)
    resp.text = AsyncMock(return_value=text)

    ctx = AsyncMock()
    ctx.__aenter__ = AsyncMock(return_value=resp)
    ctx.__aexit__ = AsyncMock(return_value=False)

    session = MagicMock()
    session.get = MagicMock(return_value=ctx)
    return session


class TestWitClient:
    @pytest.mark.asyncio
    async def test_parses_message_response(self):
        session = _make_mock_session(json_data={
            "text": "hello",
            "intents": [{"id": "1", "name": "greet", "confidence": 0.98}],
            "entities": {"wit$contact:contact": [{"id": "2", "name": "wit$contact", "value": "Ada", "confidence": 0.7}]},
            "traits": {"wit$sentiment": [{"id": "3", "value": "positive", "confidence": 0.6}]},
        })
        client = WitClient("WIT", api_base="https://api.wit.ai/", api_version="20240101", session=session)

        response = await client.validate("hello")

        assert response.intents[0].name == "greet"
        assert response.traits["wit$sentiment"][0].value == "positive"
        assert response.entities["wit$contact:contact"][0].value == "Ada"

        url = session.get.call_args.args[0]
        assert url == "https://api.wit.ai/message"
        assert session.get.call_args.kwargs["params"] == {"q": "hello", "v": "20240101"}
        assert session.get.call_args.kwargs["headers"] == {"Authorization": "Bearer WIT"}

    @pytest.mark.asyncio
    async def test_missing_sections_default_to_empty(self):
        client = WitClient("WIT", session=_make_mock_session(json_data={"text": "hm"}))

        response = await client.validate("hm")

        assert response.intents == []
        assert response.traits == {}

    @pytest.mark.asyncio
    async def test_http_error(self):
        client = WitClient("WIT", session=_make_mock_session(status=400, text="bad token"))

        with pytest.raises(WitClientError) as exc_info:
            await client.validate("hello")

        assert exc_info.value.status == 400
        assert get_metrics_collector().get_counter("wit_request_error", status=400) == 1

    @pytest.mark.asyncio
    async def test_connection_error(self):
        ctx = AsyncMock()
        ctx.__aenter__ = AsyncMock(side_effect=aiohttp.ClientError("Connection refused"))
        ctx.__aexit__ = AsyncMock(return_value=False)
        session = MagicMock()
        session.get = MagicMock(return_value=ctx)

        with pytest.raises(WitClientError) as exc_info:
            await WitClient("WIT", session=session).validate("hello")

        assert exc_info.value.status == 0

    @pytest.mark.asyncio
    async def test_unexpected_shape(self):
        client = WitClient("WIT", session=_make_mock_session(json_data={"intents": "not a list"}))

        with pytest.raises(WitClientError):
            await client.validate("hello")

    def test_requires_token(self, monkeypatch):
        monkeypatch.setattr("leafbot.infra.wit_client.settings.wit_authorization_token", None)

        with pytest.raises(ValueError):
            WitClient()
