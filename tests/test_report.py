from __future__ import annotations

import time

from crate_lens.models import CheckResult
from crate_lens.report import aggregate, is_successful


def test_is_successful_requires_existence_and_no_error() -> None:
    """
    只有存在且无错误的结果才算成功。
    """
    assert is_successful(CheckResult(name="serde", exists=True))
    assert not is_successful(CheckResult(name="nope", exists=False))
    assert not is_successful(CheckResult(name="bad", exists=False, error="Network error: boom"))


def test_aggregate_counts_and_keeps_order() -> None:
    """
    汇总应保持结果顺序，successful + failed == total_processed。
    """
    results = [
        CheckResult(name="serde", exists=True, latest_version="1.0.0"),
        CheckResult(name="missing", exists=False),
        CheckResult(name="broken", exists=False, error="Service temporarily unavailable"),
        CheckResult(name="tokio", exists=True),
    ]
    summary = aggregate(results, started_at=time.perf_counter())
    assert [r.name for r in summary.results] == ["serde", "missing", "broken", "tokio"]
    assert summary.total_processed == 4
    assert summary.successful == 2
    assert summary.failed == 2
    assert summary.processing_time_ms >= 0


def test_aggregate_empty() -> None:
    summary = aggregate([], started_at=time.perf_counter())
    assert summary.total_processed == 0
    assert summary.successful == 0
    assert summary.failed == 0
