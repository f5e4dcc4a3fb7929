from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, TypeVar

from rich.console import Console
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn

from crate_lens.cache import ResponseCache
from crate_lens.config import AppConfig
from crate_lens.metrics import MetricsRecorder
from crate_lens.models import BatchInput, ExecutionMode, NameList
from crate_lens.registry_client import RegistryClient
from crate_lens.report import BatchSummary
from crate_lens.resolver import resolve_batch

T = TypeVar("T")


def execution_mode(*, parallel: bool, max_concurrency: int) -> ExecutionMode:
    """
    根据 CLI/请求参数选择执行模式。
    """
    return ExecutionMode.parallel(max_concurrency) if parallel else ExecutionMode.sequential()


async def batch_check(
    raw: str | dict[str, Any] | BatchInput,
    *,
    config: AppConfig,
    mode: ExecutionMode,
    on_fetch_start: Callable[[int], Any] | None = None,
    on_fetch_complete: Callable[[], Any] | None = None,
) -> BatchSummary:
    """
    为一次 CLI 调用创建客户端与缓存，执行批量查询。
    """
    cache = ResponseCache(config.cache)
    metrics = MetricsRecorder()
    async with RegistryClient(config.registry) as client:
        return await resolve_batch(
            raw,
            client=client,
            mode=mode,
            cache=cache,
            metrics=metrics,
            on_fetch_start=on_fetch_start,
            on_fetch_complete=on_fetch_complete,
        )


def run_batch(raw: str | dict[str, Any] | BatchInput, *, config: AppConfig, mode: ExecutionMode) -> BatchSummary:
    """
    同步入口：运行批量查询（内部使用 asyncio），在 stderr 上显示进度条。
    """
    console = Console(stderr=True)
    state: dict[str, Any] = {"progress": None, "task_id": None}

    def on_start(total: int) -> None:
        if total > 0:
            progress = Progress(
                SpinnerColumn(),
                TextColumn("[progress.description]{task.description}"),
                BarColumn(),
                TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
                "({task.completed}/{task.total})",
                console=console,
                transient=True,
            )
            progress.start()
            task_id = progress.add_task("查询 crates.io...", total=total)
            state["progress"] = progress
            state["task_id"] = task_id

    def on_complete() -> None:
        progress = state["progress"]
        task_id = state["task_id"]
        if progress and task_id is not None:
            progress.advance(task_id)

    try:
        return asyncio.run(
            batch_check(raw, config=config, mode=mode, on_fetch_start=on_start, on_fetch_complete=on_complete)
        )
    finally:
        if state["progress"]:
            state["progress"].stop()


def run_check_multiple(names: list[str], *, config: AppConfig) -> BatchSummary:
    """
    逐个检查多个包（顺序执行，避免对上游造成突发压力）。
    """
    return run_batch(NameList(crates=list(names)), config=config, mode=ExecutionMode.sequential())


def run_with_client(config: AppConfig, fn: Callable[[RegistryClient], Awaitable[T]]) -> T:
    """
    同步入口：创建客户端并执行单次查询函数。
    """

    async def runner() -> T:
        async with RegistryClient(config.registry) as client:
            return await fn(client)

    return asyncio.run(runner())
