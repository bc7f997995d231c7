"""
Unit tests for core.logger module.

Tests:
- format_kv_pairs escaping, truncation and prefix
- StructuredFormatter output layout
- Logger key=value and JSON output modes
- All log levels
"""

import json
import logging
from unittest.mock import MagicMock

import pytest

from searchsync.core.logger import Logger, StructuredFormatter, format_kv_pairs


class TestFormatKvPairs:
    def test_empty_dict(self):
        assert format_kv_pairs({}) == ""

    def test_simple(self):
        assert format_kv_pairs({"index": "tags"}) == " index=tags"
        assert format_kv_pairs({"offset": 200}) == " offset=200"

    def test_none_and_bool(self):
        assert format_kv_pairs({"a": None, "b": True}) == " a=None b=True"

    def test_with_spaces(self):
        assert format_kv_pairs({"error": "connection refused"}) == ' error="connection refused"'

    def test_with_equals(self):
        assert format_kv_pairs({"key": "foo=bar"}) == ' key="foo=bar"'

    def test_with_double_quotes(self):
        assert format_kv_pairs({"key": 'say "hi"'}) == ' key="say \\"hi\\""'

    def test_empty_value(self):
        assert format_kv_pairs({"key": ""}) == ' key=""'

    def test_backslash_with_spaces(self):
        assert format_kv_pairs({"path": "C:\\a b"}) == ' path="C:\\\\a b"'

    def test_truncation(self):
        result = format_kv_pairs({"key": "x" * 20}, max_value_length=5)
        assert "...<truncated 15 chars>" in result

    def test_no_truncation_when_disabled(self):
        assert format_kv_pairs({"key": "x" * 2000}, max_value_length=None) == " key=" + "x" * 2000

    def test_custom_prefix(self):
        assert format_kv_pairs({"a": 1, "b": 2}, prefix="") == "a=1 b=2"


class TestStructuredFormatter:
    def _record(self, **extra):
        record = logging.LogRecord("indexer", logging.INFO, __file__, 1, "run_committed", None, None)
        for key, value in extra.items():
            setattr(record, key, value)
        return record

    def test_plain(self):
        assert StructuredFormatter().format(self._record()) == "info indexer run_committed"

    def test_with_fields(self):
        record = self._record(structured_kv={"index": "tags", "documents": 4})
        assert StructuredFormatter().format(record) == (
            "info indexer run_committed index=tags documents=4"
        )


class TestLoggerInit:
    def test_name(self):
        assert Logger("indexer").name == "indexer"

    def test_default_not_json(self):
        assert Logger("test")._json_output is False

    def test_default_max_value_length(self):
        assert Logger("test")._max_value_length == 1000


class TestLogLevels:
    @pytest.fixture
    def mock_logger(self):
        logger = Logger("test")
        inner = MagicMock()
        inner.isEnabledFor.return_value = True
        logger._logger = inner
        return logger, inner

    @pytest.mark.parametrize(
        ("method", "level"),
        [
            ("debug", logging.DEBUG),
            ("info", logging.INFO),
            ("warning", logging.WARNING),
            ("error", logging.ERROR),
            ("critical", logging.CRITICAL),
        ],
    )
    def test_levels(self, mock_logger, method, level):
        logger, inner = mock_logger
        getattr(logger, method)("event", index="tags")
        inner.log.assert_called_once_with(
            level, "event", extra={"structured_kv": {"index": "tags"}}, exc_info=False
        )

    def test_exception_includes_traceback(self, mock_logger):
        logger, inner = mock_logger
        logger.exception("failed")
        inner.log.assert_called_once_with(logging.ERROR, "failed", extra={}, exc_info=True)

    def test_disabled_level_skips(self, mock_logger):
        logger, inner = mock_logger
        inner.isEnabledFor.return_value = False
        logger.debug("quiet")
        inner.log.assert_not_called()

    def test_long_value_truncated(self, mock_logger):
        logger, inner = mock_logger
        logger._max_value_length = 10
        logger.info("event", payload="y" * 50)
        fields = inner.log.call_args.kwargs["extra"]["structured_kv"]
        assert fields["payload"].startswith("y" * 10 + "...<truncated 40 chars>")


class TestJsonOutput:
    def test_json_record(self, caplog):
        logger = Logger("json_test", json_output=True)
        with caplog.at_level(logging.INFO, logger="json_test"):
            logger.info("run_committed", index="tags", documents=4)

        payload = json.loads(caplog.records[-1].getMessage())
        assert payload["level"] == "info"
        assert payload["service"] == "json_test"
        assert payload["message"] == "run_committed"
        assert payload["documents"] == 4
        assert "timestamp" in payload

    def test_non_serializable_values_stringified(self, caplog):
        logger = Logger("json_test", json_output=True)
        with caplog.at_level(logging.INFO, logger="json_test"):
            logger.info("event", value=object())
        payload = json.loads(caplog.records[-1].getMessage())
        assert payload["value"].startswith("<object object")


class TestIntegration:
    def test_fields_attached_to_record(self, caplog):
        logger = Logger("kv_test")
        with caplog.at_level(logging.INFO, logger="kv_test"):
            logger.info("page_fetched", offset=100)
        assert caplog.records[-1].structured_kv == {"offset": 100}
