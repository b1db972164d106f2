# tests/unit/tracking/test_unit_call_logger.py - v1
"""Tests for tracking/call_logger.py."""

from __future__ import annotations

import json

from bulkdoc.tracking.call_logger import CallLogger


def _logger() -> CallLogger:
    calls = CallLogger()
    calls.record("b1", 1, 1, "remote", 100, "retry", "UPSTREAM_TRANSIENT")
    calls.record("b1", 1, 2, "remote", 300, "success", output_bytes=2048)
    calls.record("b1", 2, 1, "remote", 50, "failed", "UPSTREAM_FATAL")
    calls.record("b2", 1, 1, "local", 10, "abandoned")
    return calls


class TestCallLogger:
    def test_record(self):
        record = CallLogger().record("b1", 3, 1, "local", 12)
        assert record.status == "success"
        assert record.row_index == 3
        assert record.call_id

    def test_stats_per_batch(self):
        stats = _logger().stats("b1")
        assert stats.total_calls == 3
        assert (stats.successes, stats.retries, stats.failures) == (1, 1, 1)
        assert stats.avg_latency_ms == 150.0
        assert stats.max_latency_ms == 300
        assert stats.by_error_code == {"UPSTREAM_TRANSIENT": 1, "UPSTREAM_FATAL": 1}

    def test_stats_all(self):
        stats = _logger().stats()
        assert stats.total_calls == 4
        assert stats.abandoned == 1

    def test_empty_stats(self):
        assert CallLogger().stats().total_calls == 0

    def test_forget(self):
        calls = _logger()
        calls.forget("b1")
        assert calls.for_batch("b1") == []
        assert calls.total_calls == 1

    def test_save_jsonl(self, tmp_path):
        path = tmp_path / "b1" / "calls_log.jsonl"
        _logger().save(path, "b1")
        lines = path.read_text().splitlines()
        assert len(lines) == 3
        first = json.loads(lines[0])
        assert first["batch_id"] == "b1"
        assert first["status"] == "retry"
