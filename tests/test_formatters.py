from __future__ import annotations

import io
import json
from datetime import datetime, timezone

import pytest
import yaml

from crate_lens.formatters import (
    check_result_to_json_obj,
    format_download_count,
    format_duration,
    format_file_size,
    multi_check_rows,
    multi_check_summary,
    print_multi_check,
    print_versions,
    print_summary_table,
    render,
    render_csv,
    summary_to_json_obj,
    to_json_obj,
    truncate_text,
)
from crate_lens.models import CheckResult, CrateInfo, CrateStatus, VersionRecord
from crate_lens.report import BatchSummary


def _make_summary() -> BatchSummary:
    """
    构造一份包含存在、缺失与出错三种情况的批量结果。
    """
    info = CrateInfo(
        name="serde",
        newest_version="1.0.200",
        downloads=10,
        created_at=datetime(2014, 12, 5, tzinfo=timezone.utc),
        keywords=("serde",),
    )
    return BatchSummary(
        results=[
            CheckResult(
                name="serde",
                exists=True,
                latest_version="1.0.200",
                requested_version="1.0.0",
                version_exists=True,
                info=info,
            ),
            CheckResult(name="missing", exists=False),
            CheckResult(name="broken", exists=False, error="Network error: reset"),
        ],
        total_processed=3,
        successful=1,
        failed=2,
        processing_time_ms=1234,
    )


def test_to_json_obj_converts_datetimes_tuples_and_enums() -> None:
    """
    JSON 对象应可序列化：datetime 转 ISO 字符串，tuple 转列表，Enum 取值。
    """
    obj = to_json_obj({"info": _make_summary().results[0].info, "status": CrateStatus.YANKED})
    assert obj["info"]["created_at"] == "2014-12-05T00:00:00+00:00"
    assert obj["info"]["keywords"] == ["serde"]
    assert obj["status"] == "yanked"
    json.dumps(obj)


def test_check_result_json_uses_crate_name_and_can_strip_details() -> None:
    """
    对外 JSON 中 name 字段输出为 crate_name；不带详情时 info 为 null。
    """
    result = _make_summary().results[0]
    full = check_result_to_json_obj(result)
    assert full["crate_name"] == "serde"
    assert "name" not in full
    assert full["info"]["newest_version"] == "1.0.200"
    assert check_result_to_json_obj(result, include_details=False)["info"] is None


def test_summary_json_contains_counters() -> None:
    obj = summary_to_json_obj(_make_summary())
    assert obj["total_processed"] == 3
    assert obj["successful"] == 1
    assert obj["failed"] == 2
    assert obj["processing_time_ms"] == 1234
    assert [r["crate_name"] for r in obj["results"]] == ["serde", "missing", "broken"]


def test_render_formats() -> None:
    """
    json/compact/yaml 渲染结果应能被对应解析器读回。
    """
    value = {"crate": "serde", "exists": True}
    assert json.loads(render(value, "json")) == value
    assert "\n" not in render(value, "compact")
    assert yaml.safe_load(render(value, "yaml")) == value


def test_render_csv_flattens_rows_and_falls_back_to_json() -> None:
    """
    CSV 仅用于扁平对象列表：空值输出 N/A；其它结构回退为 JSON。
    """
    text = render_csv([{"crate": "serde", "version": None}, {"crate": "tokio", "version": "1.0"}])
    assert text.splitlines() == ["crate,version", "serde,N/A", "tokio,1.0"]
    assert json.loads(render_csv({"a": 1})) == {"a": 1}


@pytest.mark.parametrize(
    ("count", "expected"),
    [(999, "999"), (1_500, "1.5K"), (2_300_000, "2.3M"), (1_000_000_000, "1.0B")],
)
def test_format_download_count(count: int, expected: str) -> None:
    assert format_download_count(count) == expected


def test_format_helpers() -> None:
    assert format_file_size(0) == "0 B"
    assert format_file_size(512) == "512 B"
    assert format_file_size(1536) == "1.5 KB"
    assert format_duration(850) == "850ms"
    assert format_duration(2300) == "2.3s"
    assert format_duration(65_000) == "1m 5s"
    assert truncate_text("short", 10) == "short"
    assert truncate_text("a" * 20, 10) == "aaaaaaa..."


def test_multi_check_rows_and_summary() -> None:
    """
    多包检查按 EXISTS / MISSING / ERROR 标记每一项，汇总中出错项计入缺失。
    """
    results = _make_summary().results
    rows = multi_check_rows(results)
    assert [r["status"] for r in rows] == ["EXISTS", "MISSING", "ERROR"]
    assert rows[0]["version"] == "1.0.200"
    summary = multi_check_summary(results)
    assert summary["existing_crates"] == ["serde"]
    assert summary["missing_crates"] == ["missing", "broken"]


def test_table_printers_write_to_file() -> None:
    """
    rich 表格输出应包含包名与汇总统计。
    """
    buf = io.StringIO()
    print_summary_table(_make_summary(), file=buf)
    text = buf.getvalue()
    assert "serde" in text
    assert "共处理：3" in text

    buf = io.StringIO()
    print_multi_check(_make_summary().results, summary_only=True, file=buf)
    text = buf.getvalue()
    assert "共检查：3" in text
    assert "MISSING" not in text


def test_print_versions_shows_crate_size() -> None:
    """
    版本表格按 crate_size 显示包大小，未知大小显示为 "-"。
    """
    buf = io.StringIO()
    print_versions(
        [VersionRecord(num="1.0.1", downloads=10, crate_size=1536), VersionRecord(num="1.0.0", yanked=True)],
        file=buf,
    )
    text = buf.getvalue()
    assert "大小" in text
    assert "1.5 KB" in text
    assert "1.0.0" in text
