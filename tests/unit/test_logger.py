"""
Unit Tests for structured logging
=================================
"""

import json
import logging

import pytest

from liquidity.core.logger import JsonFormatter, get_logger, reset_logger_cache
from liquidity.domain.models.engine import EngineSignal
from liquidity.infrastructure.config.settings import LoggingSettings, LogLevel


@pytest.fixture(autouse=True)
def clean_cache():
    reset_logger_cache()
    yield
    reset_logger_cache()


def format_event(payload, exc_info=None):
    record = logging.LogRecord("liquidity.test", logging.INFO, __file__, 1, payload, None, exc_info)
    return json.loads(JsonFormatter().format(record))


class TestJsonFormatter:

    def test_event_payload_is_flattened(self):
        entry = format_event({"event_type": "engine.done", "data": {"engine_id": "zscore"}})

        assert entry["event_type"] == "engine.done"
        assert entry["data"] == {"engine_id": "zscore"}
        assert entry["level"] == "INFO"
        assert entry["logger"] == "liquidity.test"

    def test_non_json_values_are_converted(self):
        entry = format_event({"event_type": "x", "data": {
            "signal": EngineSignal.RISK_ON,
            "sources": {"b", "a"},
        }})

        assert entry["data"] == {"signal": "RISK_ON", "sources": ["a", "b"]}

    def test_plain_message(self):
        assert format_event("hello")["message"] == "hello"


class TestGetLogger:

    def test_cached_per_name(self):
        assert get_logger("liquidity.a") is get_logger("liquidity.a")
        assert get_logger("liquidity.a") is not get_logger("liquidity.b")

    def test_handlers_not_duplicated(self):
        config = LoggingSettings(console_enabled=True)
        first = get_logger("liquidity.dup", config)
        reset_logger_cache()
        second = get_logger("liquidity.dup", config)

        assert first.logger is second.logger
        assert len(second.logger.handlers) == 1

    def test_file_output(self, tmp_path):
        config = LoggingSettings(console_enabled=False, file_enabled=True, log_dir=str(tmp_path),
                                 level=LogLevel.DEBUG)
        logger = get_logger("liquidity.file", config)

        logger.debug("cache.hit", {"key": "engine:zscore"})
        for handler in logger.logger.handlers:
            handler.flush()

        lines = (tmp_path / "liquidity.file.jsonl").read_text(encoding="utf-8").splitlines()
        assert json.loads(lines[-1])["data"] == {"key": "engine:zscore"}

    def test_level_filters_events(self, tmp_path):
        config = LoggingSettings(console_enabled=False, file_enabled=True, log_dir=str(tmp_path),
                                 level=LogLevel.WARNING)
        logger = get_logger("liquidity.quiet", config)

        logger.info("ignored")
        logger.error("kept", {"n": 1})
        for handler in logger.logger.handlers:
            handler.flush()

        lines = (tmp_path / "liquidity.quiet.jsonl").read_text(encoding="utf-8").splitlines()
        assert [json.loads(line)["event_type"] for line in lines] == ["kept"]
