from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import replace
from typing import Any, Callable

from crate_lens.batch import normalize
from crate_lens.cache import ResponseCache
from crate_lens.checker import check
from crate_lens.errors import InvalidBatchInput
from crate_lens.metrics import MetricsRecorder
from crate_lens.models import LATEST, BatchInput, CheckResult, ExecutionMode, PackageQuery
from crate_lens.registry_client import RegistryClient
from crate_lens.report import BatchSummary, aggregate, is_successful

log = logging.getLogger(__name__)


def cache_key_for(query: PackageQuery) -> str:
    """
    生成单项查询的缓存键（未指定版本时按 latest 处理）。
    """
    return f"check:{query.name}:{query.requested_version or LATEST}"


def _restamp(cached: CheckResult, query: PackageQuery) -> CheckResult:
    """
    未指定版本与 latest 共用同一缓存键；命中时按本次查询重写请求版本相关字段。
    """
    requested = query.requested_version
    if requested == LATEST:
        version_exists = True if cached.exists else None
    elif requested is None:
        version_exists = None
    else:
        version_exists = cached.version_exists
    return replace(cached, requested_version=requested, version_exists=version_exists)


async def _check_with_cache(
    query: PackageQuery,
    *,
    client: RegistryClient,
    cache: ResponseCache | None,
    metrics: MetricsRecorder | None,
) -> CheckResult:
    """
    先查缓存，未命中时执行真实检查；只有无错误的结果才写入缓存。
    """
    key = cache_key_for(query)
    cached = cache.get(key) if cache is not None else None
    if isinstance(cached, CheckResult):
        if metrics is not None:
            metrics.record_cache_hit()
        return _restamp(cached, query)

    result = await check(query, client=client)
    if metrics is not None:
        metrics.record_cache_miss()
    if cache is not None and result.error is None:
        cache.set(key, result)
    return result


async def execute_queries(
    queries: list[PackageQuery],
    *,
    client: RegistryClient,
    mode: ExecutionMode,
    cache: ResponseCache | None = None,
    metrics: MetricsRecorder | None = None,
    on_fetch_start: Callable[[int], Any] | None = None,
    on_fetch_complete: Callable[[], Any] | None = None,
) -> list[CheckResult]:
    """
    顺序或有界并发地执行查询；返回结果与输入一一对应、顺序一致。
    """
    if on_fetch_start:
        on_fetch_start(len(queries))

    async def run_one(query: PackageQuery) -> CheckResult:
        result = await _check_with_cache(query, client=client, cache=cache, metrics=metrics)
        if on_fetch_complete:
            on_fetch_complete()
        return result

    if not mode.concurrent:
        return [await run_one(q) for q in queries]

    results: list[CheckResult | None] = [None] * len(queries)
    sem = asyncio.Semaphore(max(1, mode.max_in_flight))

    async def worker(index: int, query: PackageQuery) -> None:
        async with sem:
            results[index] = await run_one(query)

    await asyncio.gather(*(worker(i, q) for i, q in enumerate(queries)))
    return [r for r in results if r is not None]


async def resolve_batch(
    raw: str | dict[str, Any] | BatchInput,
    *,
    client: RegistryClient,
    mode: ExecutionMode,
    cache: ResponseCache | None = None,
    metrics: MetricsRecorder | None = None,
    on_fetch_start: Callable[[int], Any] | None = None,
    on_fetch_complete: Callable[[], Any] | None = None,
) -> BatchSummary:
    """
    批量查询入口：归一化 → 执行 → 汇总。

    输入结构非法时在发起任何上游请求前抛出 InvalidBatchInput；单项失败只记录在结果中。
    """
    started_at = time.perf_counter()
    try:
        queries = normalize(raw)
    except InvalidBatchInput:
        if metrics is not None:
            metrics.record_request(False, int((time.perf_counter() - started_at) * 1000))
        raise
    log.info(
        "processing batch of %d crates (%s)",
        len(queries),
        f"concurrent, max {mode.max_in_flight}" if mode.concurrent else "sequential",
    )

    results = await execute_queries(
        queries,
        client=client,
        mode=mode,
        cache=cache,
        metrics=metrics,
        on_fetch_start=on_fetch_start,
        on_fetch_complete=on_fetch_complete,
    )
    summary = aggregate(results, started_at=started_at)
    log.info(
        "batch completed: %d total, %d successful, %d failed in %dms",
        summary.total_processed,
        summary.successful,
        summary.failed,
        summary.processing_time_ms,
    )
    if metrics is not None:
        metrics.record_request(True, summary.processing_time_ms)
    return summary


async def resolve_one(
    name: str,
    version: str | None = None,
    *,
    client: RegistryClient,
    cache: ResponseCache | None = None,
    metrics: MetricsRecorder | None = None,
) -> CheckResult:
    """
    单项查询入口，与批量查询共用同一缓存。
    """
    started_at = time.perf_counter()
    result = await _check_with_cache(
        PackageQuery(name=name, requested_version=version), client=client, cache=cache, metrics=metrics
    )
    if metrics is not None:
        metrics.record_request(is_successful(result), int((time.perf_counter() - started_at) * 1000))
    return result
