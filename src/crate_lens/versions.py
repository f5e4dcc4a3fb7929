from __future__ import annotations

from packaging.version import InvalidVersion, Version

from crate_lens.models import VersionRecord


def parse_version(num: str) -> Version | None:
    """
    将 semver 版本号解析为可比较的 Version；无法解析时返回 None。
    """
    try:
        return Version(num)
    except InvalidVersion:
        return None


def is_prerelease(num: str) -> bool:
    """
    判断版本号是否为预发布版本（无法解析时按含 '-' 判断）。
    """
    parsed = parse_version(num)
    if parsed is None:
        return "-" in num.split("+", 1)[0]
    return parsed.is_prerelease or parsed.is_devrelease


def sort_versions(versions: list[VersionRecord]) -> list[VersionRecord]:
    """
    按版本号从新到旧排序；无法解析的版本排在末尾并保持原有顺序。
    """
    parsed = [(v, parse_version(v.num)) for v in versions]
    valid = sorted((p for p in parsed if p[1] is not None), key=lambda p: p[1], reverse=True)
    invalid = [p for p in parsed if p[1] is None]
    return [v for v, _ in valid + invalid]


def pick_latest_stable(versions: list[VersionRecord]) -> VersionRecord | None:
    """
    选出未撤回的最新稳定版本；没有稳定版时退回最新的未撤回版本。
    """
    candidates = [v for v in sort_versions(versions) if not v.yanked]
    if not candidates:
        return None
    stable = [v for v in candidates if not is_prerelease(v.num)]
    return stable[0] if stable else candidates[0]
