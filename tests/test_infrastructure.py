# tests/test_infrastructure.py
"""Tests for logging, metrics, HTTP sessions and the connection pool guards."""
import json
import logging
from unittest.mock import patch

import pytest

from leafbot.infra import db_async, http_client
from leafbot.infra.logging_config import JSONFormatter, LogContext, mask_target_id
from leafbot.infra.metrics import EngineMetrics, Timer, get_metrics_collector, inc_counter


# ============================================================================
# Logging
# ============================================================================

class TestMaskTargetId:
    @pytest.mark.parametrize("target_id,masked", [
        ("123456789", "1234***89"),
        ("12345", "12***"),
        ("", "***"),
    ])
    def test_mask(self, target_id, masked):
        assert mask_target_id(target_id) == masked


class TestJSONFormatter:
    def test_context_fields_are_emitted_and_target_masked(self):
        record = logging.LogRecord("leafbot.test", logging.INFO, __file__, 1, "hello", None, None)
        record.target_id = "123456789"
        record.target_platform = "telegram"

        data = json.loads(JSONFormatter().format(record))

        assert data["message"] == "hello"
        assert data["target_id"] == "1234***89"
        assert data["target_platform"] == "telegram"


class TestLogContext:
    def test_for_target_adds_extra(self, caplog, make_request):
        logger = logging.getLogger("leafbot.test")

        with caplog.at_level(logging.INFO, logger="leafbot.test"):
            LogContext.for_target(logger, make_request(), leaf="greeting").info("handled")

        record = caplog.records[-1]
        assert record.target_id == "T"
        assert record.target_platform == "facebook"
        assert record.leaf == "greeting"


# ============================================================================
# Metrics
# ============================================================================

class TestMetrics:
    def test_counters_with_labels(self):
        inc_counter("sent", platform="telegram")
        inc_counter("sent", 2, platform="telegram")
        inc_counter("sent", platform="facebook")

        collector = get_metrics_collector()
        assert collector.get_counter("sent", platform="telegram") == 3
        assert collector.get_counter("sent", platform="facebook") == 1
        assert collector.get_counter("sent") == 0

    def test_timer_records_histogram(self):
        with Timer("work_seconds", step="a"):
            pass

        stats = get_metrics_collector().get_metrics()["histograms"]["work_seconds{step=a}"]
        assert stats["count"] == 1

    def test_engine_metrics_unknown_leaf(self):
        EngineMetrics.leaf_error_recovered(None)

        assert get_metrics_collector().get_counter("leaf_error_recovered_total", leaf="unknown") == 1


# ============================================================================
# HTTP sessions
# ============================================================================

class TestHttpSessions:
    @pytest.mark.asyncio
    async def test_sessions_are_shared_and_closed(self):
        sender = http_client.get_sender_session()
        assert http_client.get_sender_session() is sender
        assert http_client.get_nlu_session() is not sender

        await http_client.close_all_sessions()

        assert sender.closed
        assert http_client.get_sender_session() is not sender
        await http_client.close_all_sessions()


# ============================================================================
# Connection pool
# ============================================================================

class TestDbPool:
    @pytest.mark.asyncio
    async def test_conn_requires_pool(self):
        with pytest.raises(RuntimeError, match="not initialized"):
            async with db_async.db_conn():
                pass

    @pytest.mark.asyncio
    @patch("leafbot.infra.db_async.settings")
    async def test_init_pool_requires_dsn(self, mock_settings):
        mock_settings.database_url = None

        with pytest.raises(RuntimeError, match="database_url"):
            await db_async.init_pool()

    @pytest.mark.asyncio
    async def test_close_without_pool_is_noop(self):
        await db_async.close_pool()
