from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from crate_lens.errors import InvalidBatchInput
from crate_lens.models import (
    BatchInput,
    BatchOperation,
    MultipleTarget,
    NameList,
    OperationList,
    PackageQuery,
    SingleTarget,
    VersionMap,
)

log = logging.getLogger(__name__)


EXAMPLE_BATCH_INPUTS: list[tuple[str, str]] = [
    ("包名 → 版本映射", '{"serde": "1.0.0", "tokio": "1.28.0", "reqwest": "latest"}'),
    ("包名列表", '{"crates": ["serde", "tokio", "reqwest", "clap"]}'),
    (
        "高级操作列表",
        """{
  "operations": [
    {"crate": "serde", "version": "1.0.0", "operation": "check_version"},
    {"crate": "tokio", "operation": "info"},
    {"crates": ["tokio", "reqwest"], "operation": "batch_check"}
  ]
}""",
    ),
]


def _is_str_list(value: Any) -> bool:
    return isinstance(value, list) and all(isinstance(v, str) for v in value)


def _as_version_map(obj: dict[str, Any]) -> VersionMap | None:
    if not all(isinstance(v, str) for v in obj.values()):
        return None
    return VersionMap(versions=dict(obj))


def _as_name_list(obj: dict[str, Any]) -> NameList | None:
    crates = obj.get("crates")
    if not _is_str_list(crates):
        return None
    return NameList(crates=list(crates))


def _as_operation(raw: Any) -> BatchOperation | None:
    """
    解析单条操作：先尝试 Single（crate + 可选 version），再尝试 Multiple（crates）。
    """
    if not isinstance(raw, dict) or not isinstance(raw.get("operation"), str):
        return None

    name = raw.get("crate")
    version = raw.get("version")
    if isinstance(name, str) and (version is None or isinstance(version, str)):
        return BatchOperation(target=SingleTarget(name=name, version=version), operation=raw["operation"])

    names = raw.get("crates")
    if _is_str_list(names):
        return BatchOperation(target=MultipleTarget(names=list(names)), operation=raw["operation"])
    return None


def _as_operation_list(obj: dict[str, Any]) -> OperationList | None:
    raw_ops = obj.get("operations")
    if not isinstance(raw_ops, list):
        return None
    operations: list[BatchOperation] = []
    for raw in raw_ops:
        op = _as_operation(raw)
        if op is None:
            return None
        operations.append(op)
    return OperationList(operations=operations)


def _shape_hint(obj: Any) -> str:
    if not isinstance(obj, dict):
        return "Expected JSON object for batch input."
    if "operations" in obj:
        return "Invalid operations format. Expected array of operation objects."
    if "crates" in obj:
        return "Invalid crates list format. Expected array of strings."
    return "Looks like a crate-version map, but some values may be invalid."


def parse_batch_input(raw: str | dict[str, Any] | BatchInput) -> BatchInput:
    """
    将原始输入识别为三种批量格式之一。

    识别顺序固定：VersionMap → NameList → OperationList；全部不匹配时抛出 InvalidBatchInput。
    """
    if isinstance(raw, (VersionMap, NameList, OperationList)):
        return raw

    obj: Any = raw
    if isinstance(raw, str):
        try:
            obj = json.loads(raw)
        except ValueError as exc:
            raise InvalidBatchInput(f"Invalid JSON: {exc}") from exc

    if isinstance(obj, dict):
        for parser in (_as_version_map, _as_name_list, _as_operation_list):
            parsed = parser(obj)
            if parsed is not None:
                log.debug("parsed batch input as %s", type(parsed).__name__)
                return parsed

    raise InvalidBatchInput(_shape_hint(obj))


def parse_batch_file(path: Path) -> BatchInput:
    """
    读取 JSON 文件并解析为批量输入。
    """
    log.info("reading batch input from %s", path)
    return parse_batch_input(path.read_text(encoding="utf-8"))


def validate_batch_input(batch: BatchInput) -> None:
    """
    校验批量输入：集合不能为空，包名/版本/操作标签不能为空字符串。
    """
    if isinstance(batch, VersionMap):
        if not batch.versions:
            raise InvalidBatchInput("Crate version map cannot be empty")
        for name, version in batch.versions.items():
            if not name:
                raise InvalidBatchInput("Crate name cannot be empty")
            if not version:
                raise InvalidBatchInput(f"Version for crate '{name}' cannot be empty")
        return

    if isinstance(batch, NameList):
        if not batch.crates:
            raise InvalidBatchInput("Crates list cannot be empty")
        if any(not name for name in batch.crates):
            raise InvalidBatchInput("Crate name cannot be empty")
        return

    if not batch.operations:
        raise InvalidBatchInput("Operations list cannot be empty")
    for op in batch.operations:
        if not op.operation:
            raise InvalidBatchInput("Operation type cannot be empty")
        names = [op.target.name] if isinstance(op.target, SingleTarget) else op.target.names
        if any(not name for name in names):
            raise InvalidBatchInput("Crate name cannot be empty")


def expand_queries(batch: BatchInput) -> list[PackageQuery]:
    """
    将已校验的批量输入展开为有序的 PackageQuery 序列。
    """
    if isinstance(batch, VersionMap):
        return [PackageQuery(name=n, requested_version=v) for n, v in batch.versions.items()]

    if isinstance(batch, NameList):
        return [PackageQuery(name=n) for n in batch.crates]

    queries: list[PackageQuery] = []
    for op in batch.operations:
        if isinstance(op.target, SingleTarget):
            queries.append(PackageQuery(name=op.target.name, requested_version=op.target.version))
        else:
            queries.extend(PackageQuery(name=n) for n in op.target.names)
    return queries


def normalize(raw: str | dict[str, Any] | BatchInput) -> list[PackageQuery]:
    """
    解析 + 校验 + 展开；任何结构错误都在发起上游请求之前抛出。
    """
    batch = parse_batch_input(raw)
    validate_batch_input(batch)
    return expand_queries(batch)
