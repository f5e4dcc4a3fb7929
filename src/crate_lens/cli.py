from __future__ import annotations

import argparse
import logging
import sys
from dataclasses import replace
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler

from crate_lens.config import AppConfig, load_config, parse_timeout
from crate_lens.errors import CrateLensError, ValidationError
from crate_lens.formatters import OUTPUT_FORMATS

_MACHINE_FORMATS = {"json", "yaml", "compact", "csv"}
_LOG_LEVELS = {
    "trace": logging.DEBUG,
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


def build_parser() -> argparse.ArgumentParser:
    """
    构建 crate-lens 的命令行参数解析器。
    """
    parser = argparse.ArgumentParser(prog="crate-lens", description="查询 crates.io 上包的存在性、版本、依赖等信息")
    parser.add_argument("--version", action="store_true", help="输出版本号并退出")
    parser.add_argument("--config", help="配置文件路径（.toml 或 .yaml）")
    parser.add_argument("-f", "--format", choices=OUTPUT_FORMATS, default="table", help="输出格式")
    parser.add_argument("--verbose", action="store_true", help="输出调试日志")
    parser.add_argument("-q", "--quiet", action="store_true", help="仅输出错误日志")
    parser.add_argument("--timeout", help="单次请求超时（如 30s、2m、1h）")
    parser.add_argument("--api-url", help="crates.io API 基址")

    subparsers = parser.add_subparsers(dest="command")

    check = subparsers.add_parser("check", help="检查单个包是否存在")
    check.add_argument("crate_name", help="包名")
    check.add_argument("--crate-version", help="要检查的版本（可选）")

    multi = subparsers.add_parser("check-multiple", help="一次检查多个包并汇总输出")
    multi.add_argument("crate_names", nargs="+", help="包名（空格分隔）")
    multi.add_argument("-s", "--summary-only", action="store_true", help="只输出汇总")
    multi.add_argument("--fail-on-missing", action="store_true", help="存在缺失的包时以 1 退出")

    info = subparsers.add_parser("info", help="查看包的详细信息")
    info.add_argument("crate_name", help="包名")
    info.add_argument("-d", "--deps", action="store_true", help="附带依赖信息")
    info.add_argument("-s", "--stats", action="store_true", help="附带下载统计")

    versions = subparsers.add_parser("versions", help="列出包的全部版本")
    versions.add_argument("crate_name", help="包名")
    versions.add_argument("--no-yanked", action="store_true", help="只显示未撤回的版本")
    versions.add_argument("-l", "--limit", type=int, help="最多显示的版本数")

    search = subparsers.add_parser("search", help="按名称或关键字搜索包")
    search.add_argument("query", help="搜索关键字")
    search.add_argument("-l", "--limit", type=int, default=10, help="最多返回的结果数")
    search.add_argument("-e", "--exact", action="store_true", help="只显示完全匹配")

    deps = subparsers.add_parser("deps", help="查看某个版本的依赖")
    deps.add_argument("crate_name", help="包名")
    deps.add_argument("--crate-version", help="版本（默认最新）")
    deps.add_argument("--runtime-only", action="store_true", help="只显示运行时依赖")

    stats = subparsers.add_parser("stats", help="查看下载统计")
    stats.add_argument("crate_name", help="包名")
    stats.add_argument("--versions", action="store_true", help="显示各版本下载量")

    batch = subparsers.add_parser("batch", help="批量检查多个包")
    source = batch.add_mutually_exclusive_group(required=True)
    source.add_argument("--json", help="JSON 字符串形式的批量输入")
    source.add_argument("--file", help="包含批量输入的 JSON 文件")
    batch.add_argument("-p", "--parallel", action="store_true", help="并发执行")
    batch.add_argument("--max-concurrency", type=int, help="并发模式下的最大并发数")
    batch.add_argument("--fail-on-missing", action="store_true", help="存在失败项时以 1 退出")

    server = subparsers.add_parser("server", help="启动 HTTP API 服务")
    server.add_argument("--host", help="监听地址")
    server.add_argument("-p", "--port", type=int, help="监听端口")
    server.add_argument("--cors", action="store_true", help="启用 CORS")

    config = subparsers.add_parser("config", help="生成示例配置文件")
    config.add_argument("-o", "--output", help="输出到文件（默认 stdout）")

    subparsers.add_parser("examples", help="显示批量输入 JSON 示例")

    return parser


def _init_logging(args: argparse.Namespace, cfg: AppConfig) -> None:
    """
    初始化日志：日志统一写 stderr，机器可读格式下只保留错误日志。
    """
    if args.quiet or args.format in _MACHINE_FORMATS:
        level = logging.ERROR
    elif args.verbose:
        level = logging.DEBUG
    else:
        level = _LOG_LEVELS.get(cfg.log_level, logging.INFO)

    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def _merge_cli_overrides(cfg: AppConfig, args: argparse.Namespace) -> AppConfig:
    """
    将全局 CLI 参数覆盖合并到 AppConfig。
    """
    registry = cfg.registry
    if args.api_url:
        registry = replace(registry, api_url=args.api_url)
    if args.timeout:
        registry = replace(registry, timeout_s=parse_timeout(args.timeout))
    return replace(cfg, registry=registry)


def _emit(value: object, fmt: str) -> None:
    from crate_lens.formatters import render

    print(render(value, fmt))


def _cmd_check(args: argparse.Namespace, cfg: AppConfig) -> int:
    from crate_lens.app import run_with_client

    name = args.crate_name
    version = args.crate_version

    async def query(client):
        if version:
            versions = await client.get_all_versions(name)
            return any(v.num == version for v in versions)
        return await client.crate_exists(name)

    exists = run_with_client(cfg, query)
    payload: dict[str, object] = {"crate": name, "exists": exists}
    if version:
        payload["version"] = version

    if args.format == "table":
        target = f"{name}@{version}" if version else name
        print(f"{target}: {'存在' if exists else '不存在'}")
    else:
        _emit(payload, args.format)
    return 0 if exists else 1


def _cmd_check_multiple(args: argparse.Namespace, cfg: AppConfig) -> int:
    from crate_lens.app import run_check_multiple
    from crate_lens.formatters import multi_check_rows, multi_check_summary, print_multi_check

    summary = run_check_multiple(args.crate_names, config=cfg)
    if args.format == "table":
        print_multi_check(summary.results, summary_only=args.summary_only)
    elif args.summary_only:
        _emit(multi_check_summary(summary.results), args.format)
    elif args.format == "csv":
        _emit(multi_check_rows(summary.results), args.format)
    else:
        _emit(
            {"results": multi_check_rows(summary.results), "summary": multi_check_summary(summary.results)},
            args.format,
        )
    if args.fail_on_missing and summary.failed:
        return 1
    return 0


def _cmd_info(args: argparse.Namespace, cfg: AppConfig) -> int:
    from crate_lens.app import run_with_client
    from crate_lens.formatters import print_crate_info, to_json_obj

    log = logging.getLogger(__name__)
    name = args.crate_name

    async def query(client):
        info = await client.get_crate_info(name)
        extra: dict[str, object] = {}
        if args.deps:
            try:
                extra["dependencies"] = await client.get_crate_dependencies(name, info.newest_version)
            except CrateLensError as exc:
                log.warning("could not fetch dependencies for '%s': %s", name, exc)
        if args.stats:
            try:
                extra["download_stats"] = await client.get_download_stats(name)
            except CrateLensError as exc:
                log.warning("could not fetch download stats for '%s': %s", name, exc)
        return info, extra

    info, extra = run_with_client(cfg, query)
    if args.format == "table":
        print_crate_info(info)
        return 0

    data = to_json_obj(info)
    data.update(to_json_obj(extra))
    _emit(data, args.format)
    return 0


def _cmd_versions(args: argparse.Namespace, cfg: AppConfig) -> int:
    from crate_lens.app import run_with_client
    from crate_lens.formatters import print_versions
    from crate_lens.versions import pick_latest_stable, sort_versions

    versions = sort_versions(run_with_client(cfg, lambda client: client.get_all_versions(args.crate_name)))
    latest_stable = pick_latest_stable(versions)
    if args.no_yanked:
        versions = [v for v in versions if not v.yanked]
    if args.limit is not None:
        versions = versions[: args.limit]

    if args.format == "table":
        print_versions(versions)
        if latest_stable is not None:
            print(f"最新稳定版本：{latest_stable.num}")
    else:
        _emit(versions, args.format)
    return 0


def _cmd_search(args: argparse.Namespace, cfg: AppConfig) -> int:
    from crate_lens.app import run_with_client
    from crate_lens.formatters import print_search_results

    results = run_with_client(cfg, lambda client: client.search_crates(args.query, args.limit))
    if args.exact:
        results = [r for r in results if r.exact_match]
    if args.format == "table":
        print_search_results(results)
    else:
        _emit(results, args.format)
    return 0


def _cmd_deps(args: argparse.Namespace, cfg: AppConfig) -> int:
    from crate_lens.app import run_with_client
    from crate_lens.formatters import print_dependencies

    name = args.crate_name

    async def query(client):
        version = args.crate_version or await client.get_latest_version(name)
        return await client.get_crate_dependencies(name, version)

    deps = run_with_client(cfg, query)
    if args.runtime_only:
        deps = [d for d in deps if d.kind == "normal"]
    if args.format == "table":
        print_dependencies(deps)
    else:
        _emit(deps, args.format)
    return 0


def _cmd_stats(args: argparse.Namespace, cfg: AppConfig) -> int:
    from crate_lens.app import run_with_client
    from crate_lens.formatters import print_download_stats

    stats = run_with_client(cfg, lambda client: client.get_download_stats(args.crate_name))
    if args.format == "table":
        print_download_stats(args.crate_name, stats, show_versions=args.versions)
    else:
        _emit(stats, args.format)
    return 0


def _cmd_batch(args: argparse.Namespace, cfg: AppConfig) -> int:
    from crate_lens.app import execution_mode, run_batch
    from crate_lens.batch import parse_batch_file, parse_batch_input
    from crate_lens.formatters import print_summary_table, summary_to_json_obj

    batch_input = parse_batch_input(args.json) if args.json else parse_batch_file(Path(args.file))
    max_concurrency = cfg.max_concurrency if args.max_concurrency is None else args.max_concurrency
    mode = execution_mode(parallel=args.parallel, max_concurrency=max_concurrency)
    logging.getLogger(__name__).info("processing batch in %s mode", "parallel" if args.parallel else "sequential")

    summary = run_batch(batch_input, config=cfg, mode=mode)
    if args.format == "table":
        print_summary_table(summary)
    elif args.format == "csv":
        _emit(summary_to_json_obj(summary, include_details=False)["results"], args.format)
    else:
        _emit(summary_to_json_obj(summary), args.format)
    if args.fail_on_missing and summary.failed:
        return 1
    return 0


def _cmd_server(args: argparse.Namespace, cfg: AppConfig) -> int:
    from crate_lens.server import run_server

    server = cfg.server
    if args.host:
        server = replace(server, host=args.host)
    if args.port is not None:
        server = replace(server, port=args.port)
    if args.cors:
        server = replace(server, enable_cors=True)
    run_server(replace(cfg, server=server))
    return 0


def _cmd_config(args: argparse.Namespace, cfg: AppConfig) -> int:
    from crate_lens.config import render_sample_config

    text = render_sample_config(cfg)
    if args.output:
        Path(args.output).write_text(text, encoding="utf-8")
        print(f"配置已写入：{args.output}")
    else:
        print(text, end="")
    return 0


def _cmd_examples(_args: argparse.Namespace, _cfg: AppConfig) -> int:
    from crate_lens.batch import EXAMPLE_BATCH_INPUTS

    print("批量输入 JSON 示例：\n")
    for title, example in EXAMPLE_BATCH_INPUTS:
        print(f"{title}：")
        print(f"{example}\n")
    print("用法：")
    print("  crate-lens batch --json '<json_string>'")
    print("  crate-lens batch --file input.json")
    return 0


_COMMANDS = {
    "check": _cmd_check,
    "check-multiple": _cmd_check_multiple,
    "info": _cmd_info,
    "versions": _cmd_versions,
    "search": _cmd_search,
    "deps": _cmd_deps,
    "stats": _cmd_stats,
    "batch": _cmd_batch,
    "server": _cmd_server,
    "config": _cmd_config,
    "examples": _cmd_examples,
}


def main(argv: list[str] | None = None) -> int:
    """
    crate-lens 命令行入口。
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.version:
        from crate_lens import __version__

        print(__version__)
        return 0

    if args.command is None:
        parser.print_help(sys.stderr)
        return 2

    try:
        cfg = _merge_cli_overrides(load_config(args.config), args)
    except (CrateLensError, ValueError) as exc:
        print(f"crate-lens: 配置无效：{exc}", file=sys.stderr)
        return 2

    _init_logging(args, cfg)

    try:
        return _COMMANDS[args.command](args, cfg)
    except ValidationError as exc:
        print(f"crate-lens: {exc.user_message()}", file=sys.stderr)
        return 1
    except CrateLensError as exc:
        logging.getLogger(__name__).debug("command %s failed", args.command, exc_info=True)
        print(f"crate-lens: {exc.user_message()}", file=sys.stderr)
        return 1
    except OSError as exc:
        print(f"crate-lens: 读写文件失败：{exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
