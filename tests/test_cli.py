from __future__ import annotations

import argparse
import json
from pathlib import Path

import pytest

from crate_lens.cli import _merge_cli_overrides, build_parser, main
from crate_lens.config import AppConfig
from crate_lens.errors import CrateNotFound, InvalidBatchInput
from crate_lens.models import CheckResult, CrateInfo, Dependency, ExecutionMode, SearchResult, VersionRecord
from crate_lens.registry_client import RegistrySettings
from crate_lens.report import BatchSummary


def _make_base_config() -> AppConfig:
    """
    构造一份用于 CLI 单测的基础配置，避免依赖外部文件与环境变量。
    """
    return AppConfig(registry=RegistrySettings(api_url="https://crates.test/api/v1"))


def _make_summary(*, failed: int = 0) -> BatchSummary:
    results = [CheckResult(name="serde", exists=True, latest_version="1.0.200")]
    results += [CheckResult(name=f"missing-{i}", exists=False) for i in range(failed)]
    return BatchSummary(
        results=results,
        total_processed=len(results),
        successful=1,
        failed=failed,
        processing_time_ms=5,
    )


class FakeRegistry:
    async def crate_exists(self, name: str) -> bool:
        return name == "serde"

    async def get_all_versions(self, name: str) -> list[VersionRecord]:
        if name != "serde":
            raise CrateNotFound(name)
        return [VersionRecord(num="1.0.0"), VersionRecord(num="1.0.200"), VersionRecord(num="1.1.0-rc.1")]

    async def get_crate_info(self, name: str) -> CrateInfo:
        return CrateInfo(name=name, newest_version="1.0.200", downloads=42)

    async def get_latest_version(self, name: str) -> str:
        return "1.0.200"

    async def get_crate_dependencies(self, name: str, version: str) -> list[Dependency]:
        return [Dependency(name="serde_derive", req="=" + version), Dependency(name="trybuild", req="1", kind="dev")]

    async def search_crates(self, query: str, limit: int | None = None) -> list[SearchResult]:
        return [
            SearchResult(name="serde", newest_version="1.0.200", exact_match=True),
            SearchResult(name="serde_json", newest_version="1.0.100"),
        ][: limit or 10]


@pytest.fixture
def fake_registry(monkeypatch: pytest.MonkeyPatch) -> FakeRegistry:
    """
    用内存中的 FakeRegistry 替换真实的 run_with_client。
    """
    import asyncio

    registry = FakeRegistry()
    monkeypatch.setattr("crate_lens.cli.load_config", lambda _: _make_base_config())
    monkeypatch.setattr("crate_lens.app.run_with_client", lambda _cfg, fn: asyncio.run(fn(registry)))
    return registry


def test_cli_version_flag_prints_version(capsys: pytest.CaptureFixture[str]) -> None:
    """
    --version 应输出版本号并以 0 退出。
    """
    rc = main(["--version"])
    out = capsys.readouterr().out.strip()
    assert rc == 0
    assert out == "0.1.0"


def test_cli_without_command_prints_help_and_returns_2(capsys: pytest.CaptureFixture[str]) -> None:
    rc = main([])
    assert rc == 2
    assert "crate-lens" in capsys.readouterr().err


def test_merge_cli_overrides_applies_api_url_and_timeout() -> None:
    """
    全局 --api-url 与 --timeout 应覆盖配置中的对应字段。
    """
    args = argparse.Namespace(api_url="https://mirror.test/api/v1", timeout="2m")
    merged = _merge_cli_overrides(_make_base_config(), args)
    assert merged.registry.api_url == "https://mirror.test/api/v1"
    assert merged.registry.timeout_s == 120.0

    untouched = _merge_cli_overrides(_make_base_config(), argparse.Namespace(api_url=None, timeout=None))
    assert untouched == _make_base_config()


def test_build_parser_rejects_batch_without_source() -> None:
    with pytest.raises(SystemExit):
        build_parser().parse_args(["batch"])


def test_cli_batch_json_output_and_mode(monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]) -> None:
    """
    batch --json --parallel 应以并发模式执行，并按 JSON 输出汇总。
    """
    observed: dict[str, object] = {}

    def fake_run_batch(raw, *, config: AppConfig, mode: ExecutionMode) -> BatchSummary:
        observed["raw"] = raw
        observed["mode"] = mode
        return _make_summary()

    monkeypatch.setattr("crate_lens.cli.load_config", lambda _: _make_base_config())
    monkeypatch.setattr("crate_lens.app.run_batch", fake_run_batch)

    rc = main(["--format", "json", "batch", "--json", '{"serde": "1.0.0"}', "--parallel", "--max-concurrency", "3"])
    out = json.loads(capsys.readouterr().out)
    assert rc == 0
    assert observed["mode"] == ExecutionMode.parallel(3)
    assert out["successful"] == 1
    assert out["results"][0]["crate_name"] == "serde"


def test_cli_batch_from_file_defaults_to_sequential(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    observed: dict[str, object] = {}

    def fake_run_batch(raw, *, config: AppConfig, mode: ExecutionMode) -> BatchSummary:
        observed["mode"] = mode
        return _make_summary()

    monkeypatch.setattr("crate_lens.cli.load_config", lambda _: _make_base_config())
    monkeypatch.setattr("crate_lens.app.run_batch", fake_run_batch)
    path = tmp_path / "input.json"
    path.write_text('{"crates": ["serde"]}', encoding="utf-8")

    assert main(["--format", "compact", "batch", "--file", str(path)]) == 0
    assert observed["mode"] == ExecutionMode.sequential()


def test_cli_batch_fail_on_missing(monkeypatch: pytest.MonkeyPatch) -> None:
    """
    --fail-on-missing 且存在失败项时以 1 退出；未指定时仍返回 0。
    """
    monkeypatch.setattr("crate_lens.cli.load_config", lambda _: _make_base_config())
    monkeypatch.setattr("crate_lens.app.run_batch", lambda *_a, **_k: _make_summary(failed=1))
    argv = ["--format", "json", "batch", "--json", '{"crates": ["serde", "missing-0"]}']
    assert main(argv) == 0
    assert main(argv + ["--fail-on-missing"]) == 1


def test_cli_batch_invalid_input_returns_1(
    monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    """
    批量输入结构非法时返回 1，并在 stderr 输出错误信息。
    """

    def boom(*_args, **_kwargs):
        raise InvalidBatchInput("Crates list cannot be empty")

    monkeypatch.setattr("crate_lens.cli.load_config", lambda _: _make_base_config())
    monkeypatch.setattr("crate_lens.app.run_batch", boom)
    rc = main(["batch", "--json", '{"crates": []}'])
    assert rc == 1
    assert "Crates list cannot be empty" in capsys.readouterr().err


def test_cli_check_multiple_summary_json(
    monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    """
    check-multiple --summary-only 输出汇总；--fail-on-missing 时缺失项导致返回 1。
    """
    observed: dict[str, list[str]] = {}

    def fake_check_multiple(names: list[str], *, config: AppConfig) -> BatchSummary:
        observed["names"] = names
        return _make_summary(failed=1)

    monkeypatch.setattr("crate_lens.cli.load_config", lambda _: _make_base_config())
    monkeypatch.setattr("crate_lens.app.run_check_multiple", fake_check_multiple)
    rc = main(["--format", "json", "check-multiple", "serde", "missing-0", "--summary-only", "--fail-on-missing"])
    out = json.loads(capsys.readouterr().out)
    assert rc == 1
    assert observed["names"] == ["serde", "missing-0"]
    assert out["existing_crates"] == ["serde"]
    assert out["missing_crates"] == ["missing-0"]


def test_cli_check_exit_codes(fake_registry: FakeRegistry, capsys: pytest.CaptureFixture[str]) -> None:
    """
    check 在包存在时返回 0，不存在时返回 1；指定版本时按版本列表判断。
    """
    assert main(["--format", "json", "check", "serde"]) == 0
    assert json.loads(capsys.readouterr().out) == {"crate": "serde", "exists": True}

    assert main(["check", "nope"]) == 1
    assert "不存在" in capsys.readouterr().out

    assert main(["--format", "json", "check", "serde", "--crate-version", "9.9.9"]) == 1
    assert json.loads(capsys.readouterr().out)["version"] == "9.9.9"


def test_cli_versions_filters_and_sorts(fake_registry: FakeRegistry, capsys: pytest.CaptureFixture[str]) -> None:
    """
    versions 按版本号从新到旧输出，--limit 截断结果。
    """
    assert main(["--format", "json", "versions", "serde", "--limit", "2"]) == 0
    out = json.loads(capsys.readouterr().out)
    assert [v["num"] for v in out] == ["1.1.0-rc.1", "1.0.200"]


def test_cli_search_exact_and_deps_runtime_only(
    fake_registry: FakeRegistry, capsys: pytest.CaptureFixture[str]
) -> None:
    assert main(["--format", "json", "search", "serde", "--exact"]) == 0
    assert [r["name"] for r in json.loads(capsys.readouterr().out)] == ["serde"]

    assert main(["--format", "json", "deps", "serde", "--runtime-only"]) == 0
    deps = json.loads(capsys.readouterr().out)
    assert [d["name"] for d in deps] == ["serde_derive"]
    assert deps[0]["req"] == "=1.0.200"


def test_cli_info_not_found_returns_1(monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]) -> None:
    """
    包不存在时 info 返回 1，并输出中文提示。
    """

    def not_found(_cfg, _fn):
        raise CrateNotFound("nope")

    monkeypatch.setattr("crate_lens.cli.load_config", lambda _: _make_base_config())
    monkeypatch.setattr("crate_lens.app.run_with_client", not_found)
    assert main(["info", "nope"]) == 1
    assert "nope" in capsys.readouterr().err


def test_cli_config_writes_sample_file(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setattr("crate_lens.cli.load_config", lambda _: _make_base_config())
    out_path = tmp_path / "crate-lens.toml"
    assert main(["config", "--output", str(out_path)]) == 0
    text = out_path.read_text(encoding="utf-8")
    assert "[crate_lens]" in text
    assert "https://crates.test/api/v1" in text


def test_cli_examples_lists_all_formats(monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]) -> None:
    monkeypatch.setattr("crate_lens.cli.load_config", lambda _: _make_base_config())
    assert main(["examples"]) == 0
    out = capsys.readouterr().out
    assert '"crates"' in out
    assert '"operations"' in out


def test_cli_server_merges_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    """
    server 子命令的 --host/--port 应覆盖配置后交给 run_server。
    """
    observed: dict[str, AppConfig] = {}
    monkeypatch.setattr("crate_lens.cli.load_config", lambda _: _make_base_config())
    monkeypatch.setattr("crate_lens.server.run_server", lambda cfg: observed.setdefault("cfg", cfg))
    assert main(["server", "--host", "127.0.0.1", "--port", "8088"]) == 0
    assert observed["cfg"].server.host == "127.0.0.1"
    assert observed["cfg"].server.port == 8088
