"""
Tests for formatting, parsing, redaction and metrics helpers.

Run with: pytest tests/ -v
"""

import json
import logging
import sys
from decimal import Decimal
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from logging_utils import MetricsCollector, timed_operation
from utils import (
    SecureLogger,
    format_address,
    format_tx_hash,
    format_wei,
    normalize_private_key,
    parse_amount,
    sanitize_error_message,
    to_base_units,
    validate_address,
    validate_private_key,
)


class TestParsing:

    def test_commas_and_spaces(self):
        assert parse_amount("1,000,000") == Decimal("1000000")
        assert parse_amount(" 2 500.5 ") == Decimal("2500.5")

    @pytest.mark.parametrize("raw", ["abc", "-1", "nan", "inf", ""])
    def test_rejects(self, raw):
        with pytest.raises(ValueError):
            parse_amount(raw)

    def test_to_base_units(self):
        assert to_base_units("0.15") == 150000000000000000
        assert to_base_units("1,000", decimals=6) == 1_000_000_000

    def test_to_base_units_too_precise(self):
        with pytest.raises(ValueError):
            to_base_units("0.0000001", decimals=6)


class TestValidation:

    def test_private_key(self):
        assert validate_private_key("0x" + "a" * 64)
        assert validate_private_key("b" * 64)
        assert not validate_private_key("0x" + "g" * 64)
        assert not validate_private_key("0x1234")
        assert not validate_private_key("")

    def test_normalize_private_key(self):
        assert normalize_private_key(" " + "a" * 64 + "\n") == "0x" + "a" * 64
        assert normalize_private_key("0x" + "a" * 64) == "0x" + "a" * 64

    def test_address(self):
        assert validate_address("0x7a250d5630B4cF539739dF2C5dAcb4c659F2488D")
        assert validate_address("0x" + "ab" * 20)
        assert not validate_address("0x123")
        assert not validate_address(None)
        assert not validate_address("")


class TestFormatting:

    def test_format_wei(self):
        assert format_wei(0) == "0"
        assert format_wei(10**17) == "0.100000"
        assert format_wei(15 * 10**17) == "1.5000"

    def test_format_address(self):
        assert format_address("0x7a250d5630B4cF539739dF2C5dAcb4c659F2488D") == "0x7a250d...F2488D"
        assert format_address("0x1234") == "0x1234"

    def test_format_tx_hash_short(self):
        short = format_tx_hash("0x" + "ab" * 32)
        assert "..." in short
        assert len(short) < 66


class TestRedaction:

    def test_secure_logger_redacts_keys(self, caplog):
        base = logging.getLogger("test_redaction")
        base.propagate = True
        secure = SecureLogger(base)

        with caplog.at_level(logging.INFO, logger="test_redaction"):
            secure.info("loaded key 0x" + "ab" * 32 + " password=hunter2")

        assert "ab" * 32 not in caplog.text
        assert "hunter2" not in caplog.text
        assert "[PRIVATE_KEY_REDACTED]" in caplog.text

    def test_sanitize_error_message(self):
        message = sanitize_error_message("failed https://rpc.example/key123 with 0x" + "cd" * 32)
        assert "rpc.example" not in message
        assert "cd" * 32 not in message


class TestMetrics:

    def test_timed_operation_success(self):
        collector = MetricsCollector()
        with timed_operation("relay_submit", collector) as metric:
            metric.tx_count = 3

        summary = collector.get_summary()
        assert summary['total_operations'] == 1
        assert summary['operations']['relay_submit']['success'] == 1
        assert collector.metrics[0].tx_count == 3
        assert collector.metrics[0].duration_ms is not None

    def test_timed_operation_failure_reraises(self):
        collector = MetricsCollector()
        with pytest.raises(RuntimeError):
            with timed_operation("settlement_wait", collector):
                raise RuntimeError("boom")

        assert collector.metrics[0].success is False
        assert collector.metrics[0].error == "boom"

    def test_save_to_file(self, tmp_path):
        collector = MetricsCollector()
        with timed_operation("relay_submit", collector):
            pass
        path = tmp_path / "metrics" / "run.json"
        collector.save_to_file(str(path))

        data = json.loads(path.read_text())
        assert data['summary']['total_operations'] == 1
        assert data['metrics'][0]['operation'] == "relay_submit"
