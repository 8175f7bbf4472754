"""Unit tests for the latency recorder."""

from __future__ import annotations

import pytest

from cortexmcp.observability import LatencyRecorder


class TestLatencyRecorder:
    def test_records_latency_aggregates(self):
        recorder = LatencyRecorder()
        recorder.record(operation="tool.get_context", duration_ms=10.0, ok=True)
        recorder.record(operation="tool.get_context", duration_ms=30.0, ok=False)

        metrics = recorder.snapshot()["tool.get_context"]
        assert metrics["count"] == 2
        assert metrics["error_count"] == 1
        assert metrics["error_rate"] == 0.5
        assert metrics["avg_ms"] == 20.0
        assert metrics["p50_ms"] == 10.0
        assert metrics["p95_ms"] == 30.0
        assert metrics["max_ms"] == 30.0

    def test_percentiles_use_recent_window(self):
        recorder = LatencyRecorder(window=20)
        for _ in range(50):
            recorder.record(operation="job.nightly_context_refresh", duration_ms=1000.0)
        for i in range(1, 21):
            recorder.record(operation="job.nightly_context_refresh", duration_ms=float(i))

        metrics = recorder.snapshot()["job.nightly_context_refresh"]
        assert metrics["count"] == 70
        assert metrics["p50_ms"] == 10.0
        assert metrics["p95_ms"] == 19.0
        assert metrics["max_ms"] == 1000.0

    def test_snapshot_prefix_filter(self):
        recorder = LatencyRecorder()
        recorder.record(operation="tool.health", duration_ms=1.0)
        recorder.record(operation="job.self_anneal", duration_ms=2.0)

        assert list(recorder.snapshot("job.")) == ["job.self_anneal"]

    def test_negative_duration_clamped(self):
        recorder = LatencyRecorder()
        recorder.record(operation="job.self_anneal", duration_ms=-5.0)
        assert recorder.snapshot()["job.self_anneal"]["max_ms"] == 0.0

    def test_reset_clears_all_metrics(self):
        recorder = LatencyRecorder()
        recorder.record(operation="job.self_anneal", duration_ms=12.0, ok=True)
        recorder.reset()
        assert recorder.snapshot() == {}

    def test_window_must_be_positive(self):
        with pytest.raises(ValueError, match="window"):
            LatencyRecorder(window=0)
