from __future__ import annotations

import csv
import io
import json
from dataclasses import asdict, is_dataclass
from datetime import datetime
from enum import Enum
from typing import Any, TextIO

import yaml
from rich.console import Console
from rich.table import Table

from crate_lens.models import CheckResult, CrateInfo, Dependency, DownloadStats, SearchResult, VersionRecord
from crate_lens.report import BatchSummary, is_successful

OUTPUT_FORMATS = ("table", "json", "yaml", "compact", "csv")


def to_json_obj(value: Any) -> Any:
    """
    将 dataclass / datetime / Enum 组成的结构转换为可 JSON 序列化的对象。
    """
    if is_dataclass(value) and not isinstance(value, type):
        return to_json_obj(asdict(value))
    if isinstance(value, dict):
        return {str(k): to_json_obj(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_json_obj(v) for v in value]
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    return value


def check_result_to_json_obj(result: CheckResult, *, include_details: bool = True) -> dict[str, Any]:
    """
    单项结果的 JSON 结构；字段名 name 对外输出为 crate_name。
    """
    data = to_json_obj(result)
    data["crate_name"] = data.pop("name")
    if not include_details:
        data["info"] = None
    return data


def summary_to_json_obj(summary: BatchSummary, *, include_details: bool = True) -> dict[str, Any]:
    return {
        "results": [check_result_to_json_obj(r, include_details=include_details) for r in summary.results],
        "total_processed": summary.total_processed,
        "successful": summary.successful,
        "failed": summary.failed,
        "processing_time_ms": summary.processing_time_ms,
    }


def render_json(value: Any) -> str:
    return json.dumps(to_json_obj(value), ensure_ascii=False, indent=2)


def render_compact(value: Any) -> str:
    return json.dumps(to_json_obj(value), ensure_ascii=False, separators=(",", ":"))


def render_yaml(value: Any) -> str:
    return yaml.safe_dump(to_json_obj(value), allow_unicode=True, sort_keys=False)


def render_csv(value: Any) -> str:
    """
    渲染 CSV：仅支持由扁平对象组成的列表，其它结构回退为 JSON。
    """
    data = to_json_obj(value)
    if not isinstance(data, list) or not data or not isinstance(data[0], dict):
        return render_json(value)

    headers = list(data[0].keys())
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow(headers)
    for row in data:
        writer.writerow(["N/A" if row.get(h) is None else _csv_cell(row.get(h)) for h in headers])
    return buf.getvalue()


def _csv_cell(value: Any) -> str:
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False)
    return str(value)


def render(value: Any, fmt: str) -> str:
    """
    按输出格式渲染非表格输出。
    """
    if fmt == "yaml":
        return render_yaml(value)
    if fmt == "compact":
        return render_compact(value)
    if fmt == "csv":
        return render_csv(value)
    return render_json(value)


def format_download_count(count: int) -> str:
    """
    将下载量格式化为 1.5K / 2.3M / 1.0B 形式。
    """
    if count < 1_000:
        return str(count)
    if count < 1_000_000:
        return f"{count / 1_000:.1f}K"
    if count < 1_000_000_000:
        return f"{count / 1_000_000:.1f}M"
    return f"{count / 1_000_000_000:.1f}B"


def format_file_size(size: int) -> str:
    units = ["B", "KB", "MB", "GB", "TB"]
    if size == 0:
        return "0 B"
    value = float(size)
    unit = 0
    while value >= 1024 and unit < len(units) - 1:
        value /= 1024
        unit += 1
    if unit == 0:
        return f"{size} B"
    return f"{value:.1f} {units[unit]}"


def format_duration(ms: int) -> str:
    """
    将毫秒数格式化为 850ms / 2.3s / 1m 5s。
    """
    if ms < 1000:
        return f"{ms}ms"
    secs, millis = divmod(ms, 1000)
    if secs < 60:
        return f"{secs}.{millis // 100}s"
    return f"{secs // 60}m {secs % 60}s"


def truncate_text(text: str, max_length: int) -> str:
    if len(text) <= max_length:
        return text
    return text[: max(0, max_length - 3)] + "..."


def _yes_no(value: bool | None) -> str:
    if value is None:
        return "-"
    return "是" if value else "否"


def print_summary_table(summary: BatchSummary, *, file: TextIO | None = None) -> None:
    """
    以控制台表格形式输出批量查询结果与统计。
    """
    console = Console(file=file)
    table = Table(title="crate-lens 批量检查")
    table.add_column("包", no_wrap=True)
    table.add_column("存在", no_wrap=True)
    table.add_column("最新", no_wrap=True)
    table.add_column("请求版本", no_wrap=True)
    table.add_column("版本存在", no_wrap=True)
    table.add_column("错误")
    for r in summary.results:
        table.add_row(
            r.name,
            _yes_no(r.exists),
            r.latest_version or "-",
            r.requested_version or "-",
            _yes_no(r.version_exists),
            r.error or "-",
        )
    console.print(table)
    console.print(
        f"共处理：{summary.total_processed}，成功：{summary.successful}，失败：{summary.failed}，"
        f"耗时：{format_duration(summary.processing_time_ms)}"
    )


def multi_check_rows(results: list[CheckResult]) -> list[dict[str, str]]:
    """
    check-multiple 的逐项状态：EXISTS / MISSING / ERROR。
    """
    rows: list[dict[str, str]] = []
    for r in results:
        if r.error is not None:
            status, version = "ERROR", "N/A"
        elif r.exists:
            status, version = "EXISTS", r.latest_version or "unknown"
        else:
            status, version = "MISSING", "N/A"
        rows.append({"crate": r.name, "status": status, "version": version})
    return rows


def multi_check_summary(results: list[CheckResult]) -> dict[str, Any]:
    existing = [r.name for r in results if is_successful(r)]
    missing = [r.name for r in results if not is_successful(r)]
    return {
        "total_checked": len(results),
        "existing": len(existing),
        "missing": len(missing),
        "existing_crates": existing,
        "missing_crates": missing,
    }


def print_multi_check(results: list[CheckResult], *, summary_only: bool, file: TextIO | None = None) -> None:
    console = Console(file=file)
    if not summary_only:
        table = Table(title="crate-lens 多包检查")
        table.add_column("包", no_wrap=True)
        table.add_column("状态", no_wrap=True)
        table.add_column("最新版本", no_wrap=True)
        for row in multi_check_rows(results):
            table.add_row(row["crate"], row["status"], row["version"])
        console.print(table)

    summary = multi_check_summary(results)
    total = summary["total_checked"] or 1
    console.print(f"共检查：{summary['total_checked']}")
    console.print(f"存在：{summary['existing']}（{round(summary['existing'] / total * 100)}%）")
    console.print(f"缺失：{summary['missing']}（{round(summary['missing'] / total * 100)}%）")
    for name in summary["existing_crates"]:
        console.print(f"  ✓ {name}")
    for name in summary["missing_crates"]:
        console.print(f"  ✗ {name}")


def print_crate_info(info: CrateInfo, *, file: TextIO | None = None) -> None:
    console = Console(file=file)
    table = Table()
    table.add_column("名称", no_wrap=True)
    table.add_column("版本", no_wrap=True)
    table.add_column("下载量", no_wrap=True)
    table.add_column("描述")
    table.add_row(info.name, info.newest_version, format_download_count(info.downloads), info.description or "N/A")
    console.print(table)
    if info.keywords:
        console.print(f"关键字：{', '.join(info.keywords)}")
    if info.categories:
        console.print(f"分类：{', '.join(info.categories)}")
    if info.repository:
        console.print(f"仓库：{info.repository}")
    if info.homepage:
        console.print(f"主页：{info.homepage}")


def print_versions(versions: list[VersionRecord], *, file: TextIO | None = None) -> None:
    console = Console(file=file)
    table = Table()
    table.add_column("版本", no_wrap=True)
    table.add_column("下载量", no_wrap=True)
    table.add_column("大小", no_wrap=True)
    table.add_column("发布日期", no_wrap=True)
    table.add_column("已撤回", no_wrap=True)
    for v in versions:
        published = v.created_at.strftime("%Y-%m-%d") if v.created_at else "-"
        size = format_file_size(v.crate_size) if v.crate_size is not None else "-"
        table.add_row(v.num, format_download_count(v.downloads), size, published, _yes_no(v.yanked))
    console.print(table)


def print_search_results(results: list[SearchResult], *, file: TextIO | None = None) -> None:
    console = Console(file=file)
    table = Table()
    table.add_column("名称", no_wrap=True)
    table.add_column("版本", no_wrap=True)
    table.add_column("下载量", no_wrap=True)
    table.add_column("描述")
    for r in results:
        table.add_row(
            r.name,
            r.newest_version,
            format_download_count(r.downloads),
            truncate_text(r.description or "N/A", 50),
        )
    console.print(table)


def print_dependencies(deps: list[Dependency], *, file: TextIO | None = None) -> None:
    console = Console(file=file)
    table = Table()
    table.add_column("名称", no_wrap=True)
    table.add_column("版本要求", no_wrap=True)
    table.add_column("类型", no_wrap=True)
    table.add_column("可选", no_wrap=True)
    for d in deps:
        table.add_row(d.name, d.req, d.kind, _yes_no(d.optional))
    console.print(table)


def print_download_stats(name: str, stats: DownloadStats, *, show_versions: bool, file: TextIO | None = None) -> None:
    console = Console(file=file)
    console.print(f"'{name}' 的下载统计：")
    console.print(f"总下载量：{format_download_count(stats.total)}")
    if show_versions and stats.versions:
        console.print("\n各版本下载量：")
        for v in stats.versions:
            console.print(f"  {v.version}: {format_download_count(v.downloads)}")
