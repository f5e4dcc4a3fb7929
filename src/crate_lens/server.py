from __future__ import annotations

import asyncio
import logging
import math
import time
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse

from crate_lens import __version__
from crate_lens.app import execution_mode
from crate_lens.cache import ResponseCache
from crate_lens.config import AppConfig, validate_config
from crate_lens.errors import CrateLensError, NotFoundError, ValidationError
from crate_lens.formatters import check_result_to_json_obj, summary_to_json_obj, to_json_obj
from crate_lens.metrics import MetricsRecorder
from crate_lens.models import LATEST, CrateInfo
from crate_lens.registry_client import RegistryClient
from crate_lens.resolver import resolve_batch, resolve_one

log = logging.getLogger(__name__)

DEFAULT_BATCH_TIMEOUT_S = 30
DEFAULT_BATCH_CONCURRENCY = 10

API_DOCS = """# crate-lens API

## Health
- `GET /health` - 服务健康状态

## Crates
- `GET /api/crates/{name}` - 包信息
- `GET /api/crates/{name}/{version}` - 检查指定版本（latest 表示最新）
- `GET /api/crates/{name}/{version}/deps` - 依赖列表
- `GET /api/crates/{name}/stats` - 下载统计

## Search
- `GET /api/search?q={query}&limit={limit}` - 搜索包

## Batch
- `POST /api/batch` - 批量检查（包名→版本映射 / {"crates": [...]} / {"operations": [...]}，可附带 options）

## Monitoring
- `GET /metrics` - 服务指标

## Examples

```bash
curl http://localhost:3000/api/crates/serde
curl -X POST http://localhost:3000/api/batch \\
  -H "Content-Type: application/json" \\
  -d '{"serde": "1.0.0", "tokio": "latest"}'
```
"""


def _error_body(message: str) -> dict[str, str]:
    return {"error": message, "timestamp": datetime.now(timezone.utc).isoformat()}


def _elapsed_ms(started_at: float) -> int:
    return int((time.perf_counter() - started_at) * 1000)


@dataclass(frozen=True, slots=True)
class BatchOptions:
    """
    POST /api/batch 请求体中 options 对象的解析结果。
    """

    parallel: bool = False
    max_concurrent: int = DEFAULT_BATCH_CONCURRENCY
    timeout_seconds: float = DEFAULT_BATCH_TIMEOUT_S
    include_details: bool = False


def _option_flag(options: dict[str, Any], key: str) -> bool:
    value = options.get(key, False)
    if not isinstance(value, bool):
        raise ValidationError(f"'options.{key}' must be a boolean")
    return value


def _batch_options(payload: dict[str, Any]) -> tuple[dict[str, Any], BatchOptions]:
    """
    从请求体中拆出 options 对象并校验，其余部分作为批量输入。

    max_concurrent 须为不小于 1 的整数，timeout_seconds 须为大于 0 的数值。
    """
    body = dict(payload)
    options = body.pop("options", None)
    if options is None:
        return body, BatchOptions()
    if not isinstance(options, dict):
        raise ValidationError("'options' must be an object")

    max_concurrent = options.get("max_concurrent", DEFAULT_BATCH_CONCURRENCY)
    if isinstance(max_concurrent, bool) or not isinstance(max_concurrent, int) or max_concurrent < 1:
        raise ValidationError("'options.max_concurrent' must be an integer >= 1")

    timeout_seconds = options.get("timeout_seconds", DEFAULT_BATCH_TIMEOUT_S)
    if isinstance(timeout_seconds, bool) or not isinstance(timeout_seconds, (int, float)):
        raise ValidationError("'options.timeout_seconds' must be a number")
    if not math.isfinite(timeout_seconds) or timeout_seconds <= 0:
        raise ValidationError("'options.timeout_seconds' must be greater than 0")

    return body, BatchOptions(
        parallel=_option_flag(options, "parallel"),
        max_concurrent=max_concurrent,
        timeout_seconds=float(timeout_seconds),
        include_details=_option_flag(options, "include_details"),
    )


def make_app(config: AppConfig, *, client: RegistryClient | None = None) -> FastAPI:
    """
    创建 HTTP 服务；客户端、缓存与指标由应用实例持有并在各请求间共享。
    """
    registry = client or RegistryClient(config.registry)
    cache = ResponseCache(config.cache)
    metrics = MetricsRecorder()

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        yield
        await registry.aclose()

    app = FastAPI(title="crate-lens", version=__version__, lifespan=lifespan)
    app.state.registry = registry
    app.state.cache = cache
    app.state.metrics = metrics

    if config.server.enable_cors:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_methods=["GET", "POST"],
            allow_headers=["*"],
        )

    @app.exception_handler(CrateLensError)
    async def handle_crate_lens_error(_request: Request, exc: CrateLensError) -> JSONResponse:
        if isinstance(exc, (ValidationError, NotFoundError)):
            return JSONResponse(status_code=exc.status_code or 400, content=_error_body(str(exc)))
        log.error("internal error: %s", exc)
        return JSONResponse(status_code=500, content=_error_body("Internal server error"))

    @app.get("/health")
    async def health():
        return {
            "status": "healthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "version": __version__,
            "uptime_seconds": metrics.uptime_seconds(),
        }

    @app.get("/", response_class=PlainTextResponse)
    async def api_docs():
        return API_DOCS

    @app.get("/metrics")
    async def get_metrics():
        return to_json_obj(metrics.snapshot())

    @app.get("/api/search")
    async def search_crates(q: str | None = None, limit: int = 10):
        if not q:
            raise HTTPException(status_code=400, detail="Missing 'q' parameter")
        started_at = time.perf_counter()
        try:
            results = await registry.search_crates(q, limit)
        except CrateLensError as exc:
            log.error("search for '%s' failed: %s", q, exc)
            metrics.record_request(False, _elapsed_ms(started_at))
            raise
        metrics.record_request(True, _elapsed_ms(started_at))
        return to_json_obj(results)

    @app.get("/api/crates/{name}")
    async def get_crate(name: str):
        started_at = time.perf_counter()
        key = f"crate:{name}"
        cached = cache.get(key)
        if isinstance(cached, CrateInfo):
            metrics.record_cache_hit()
            metrics.record_request(True, _elapsed_ms(started_at))
            return to_json_obj(cached)

        metrics.record_cache_miss()
        try:
            info = await registry.get_crate_info(name)
        except CrateLensError as exc:
            log.error("failed to get crate info for '%s': %s", name, exc)
            metrics.record_request(False, _elapsed_ms(started_at))
            raise
        cache.set(key, info)
        metrics.record_request(True, _elapsed_ms(started_at))
        return to_json_obj(info)

    @app.get("/api/crates/{name}/stats")
    async def get_crate_stats(name: str):
        started_at = time.perf_counter()
        try:
            stats = await registry.get_download_stats(name)
        except CrateLensError as exc:
            log.error("failed to get stats for '%s': %s", name, exc)
            metrics.record_request(False, _elapsed_ms(started_at))
            raise
        metrics.record_request(True, _elapsed_ms(started_at))
        return to_json_obj(stats)

    @app.get("/api/crates/{name}/{version}")
    async def get_crate_version(name: str, version: str):
        result = await resolve_one(name, version, client=registry, cache=cache, metrics=metrics)
        return check_result_to_json_obj(result)

    @app.get("/api/crates/{name}/{version}/deps")
    async def get_crate_dependencies(name: str, version: str):
        started_at = time.perf_counter()
        try:
            actual = await registry.get_latest_version(name) if version == LATEST else version
            deps = await registry.get_crate_dependencies(name, actual)
        except CrateLensError as exc:
            log.error("failed to get dependencies for '%s:%s': %s", name, version, exc)
            metrics.record_request(False, _elapsed_ms(started_at))
            raise
        metrics.record_request(True, _elapsed_ms(started_at))
        return to_json_obj(deps)

    @app.post("/api/batch")
    async def handle_batch(payload: dict[str, Any]):
        body, options = _batch_options(payload)
        mode = execution_mode(parallel=options.parallel, max_concurrency=options.max_concurrent)
        timeout_s = options.timeout_seconds
        try:
            summary = await asyncio.wait_for(
                resolve_batch(body, client=registry, mode=mode, cache=cache, metrics=metrics),
                timeout=timeout_s,
            )
        except asyncio.TimeoutError:
            metrics.record_request(False, int(timeout_s * 1000))
            return JSONResponse(status_code=504, content=_error_body(f"Batch timed out after {timeout_s:g} seconds"))

        data = summary_to_json_obj(summary, include_details=options.include_details)
        return {"request_id": str(uuid.uuid4()), "status": "completed", **data}

    return app


def run_server(config: AppConfig) -> None:
    """
    校验配置并以 uvicorn 启动服务。
    """
    import uvicorn

    validate_config(config)
    log.info("starting server on %s", config.server.bind_address)
    log.info("health check: http://%s/health", config.server.bind_address)
    uvicorn.run(make_app(config), host=config.server.host, port=config.server.port, log_level=config.log_level)
