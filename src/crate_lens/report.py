from __future__ import annotations

import time
from dataclasses import dataclass

from crate_lens.models import CheckResult


def is_successful(result: CheckResult) -> bool:
    """
    成功的判定：没有错误且包存在。
    """
    return result.error is None and result.exists


@dataclass(frozen=True, slots=True)
class BatchSummary:
    """
    一次批量查询的汇总结果。
    """

    results: list[CheckResult]
    total_processed: int
    successful: int
    failed: int
    processing_time_ms: int


def aggregate(results: list[CheckResult], *, started_at: float) -> BatchSummary:
    """
    统计成功/失败数量；started_at 为批量开始时的 time.perf_counter() 读数。
    """
    successful = sum(1 for r in results if is_successful(r))
    return BatchSummary(
        results=list(results),
        total_processed=len(results),
        successful=successful,
        failed=len(results) - successful,
        processing_time_ms=int((time.perf_counter() - started_at) * 1000),
    )
