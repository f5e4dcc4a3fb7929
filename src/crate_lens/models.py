from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


LATEST = "latest"


class CrateStatus(str, Enum):
    """
    基于版本列表推断出的包状态。
    """

    EXISTS = "exists"
    NOT_FOUND = "not_found"
    YANKED = "yanked"
    PARTIALLY_YANKED = "partially_yanked"


@dataclass(frozen=True, slots=True)
class CrateInfo:
    """
    crates.io 上单个包的元数据。
    """

    name: str
    newest_version: str
    downloads: int = 0
    description: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    homepage: str | None = None
    repository: str | None = None
    documentation: str | None = None
    keywords: tuple[str, ...] = ()
    categories: tuple[str, ...] = ()
    max_upload_size: int | None = None
    recent_downloads: int | None = None


@dataclass(frozen=True, slots=True)
class VersionRecord:
    """
    包的一个已发布版本。
    """

    num: str
    yanked: bool = False
    downloads: int = 0
    created_at: datetime | None = None
    license: str | None = None
    crate_size: int | None = None


@dataclass(frozen=True, slots=True)
class Dependency:
    """
    某个版本声明的一条依赖。
    """

    name: str
    req: str
    kind: str = "normal"
    optional: bool = False
    default_features: bool = True
    features: tuple[str, ...] = ()
    target: str | None = None


@dataclass(frozen=True, slots=True)
class SearchResult:
    name: str
    newest_version: str
    downloads: int = 0
    description: str | None = None
    exact_match: bool = False


@dataclass(frozen=True, slots=True)
class VersionDownload:
    version: str
    downloads: int
    date: datetime | None = None


@dataclass(frozen=True, slots=True)
class DownloadStats:
    """
    下载量统计：总量 + 下载量最高的若干版本。
    """

    total: int
    versions: list[VersionDownload] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class PackageQuery:
    """
    归一化后的单项查询；requested_version 为 "latest" 表示不约束版本。
    """

    name: str
    requested_version: str | None = None


@dataclass(frozen=True, slots=True)
class CheckResult:
    """
    单项查询的结果；version_exists 为 None 表示未检查或检查失败。
    """

    name: str
    exists: bool
    latest_version: str | None = None
    requested_version: str | None = None
    version_exists: bool | None = None
    error: str | None = None
    info: CrateInfo | None = None


@dataclass(frozen=True, slots=True)
class VersionMap:
    """
    包名 → 版本号（允许 "latest"）。
    """

    versions: dict[str, str]


@dataclass(frozen=True, slots=True)
class NameList:
    """
    包名列表，一律按最新版本检查。
    """

    crates: list[str]


@dataclass(frozen=True, slots=True)
class SingleTarget:
    name: str
    version: str | None = None


@dataclass(frozen=True, slots=True)
class MultipleTarget:
    names: list[str]


@dataclass(frozen=True, slots=True)
class BatchOperation:
    """
    一条批量操作；operation 仅作标注，不影响执行语义。
    """

    target: SingleTarget | MultipleTarget
    operation: str


@dataclass(frozen=True, slots=True)
class OperationList:
    operations: list[BatchOperation]


BatchInput = VersionMap | NameList | OperationList


@dataclass(frozen=True, slots=True)
class ExecutionMode:
    """
    批量执行模式：顺序执行，或限制最大并发数的并发执行。
    """

    concurrent: bool = False
    max_in_flight: int = 1

    @classmethod
    def sequential(cls) -> ExecutionMode:
        return cls(concurrent=False, max_in_flight=1)

    @classmethod
    def parallel(cls, max_in_flight: int) -> ExecutionMode:
        return cls(concurrent=True, max_in_flight=max(1, max_in_flight))
