from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, TypeVar
from urllib.parse import quote

import httpx

from crate_lens import __version__
from crate_lens.errors import (
    CrateLensError,
    CrateNotFound,
    InvalidResponse,
    NetworkError,
    RequestTimeout,
    ValidationError,
    VersionNotFound,
    error_from_status,
)
from crate_lens.models import (
    CrateInfo,
    CrateStatus,
    Dependency,
    DownloadStats,
    SearchResult,
    VersionDownload,
    VersionRecord,
)
from crate_lens.names import validate_crate_name

log = logging.getLogger(__name__)

DEFAULT_API_URL = "https://crates.io/api/v1"
DEFAULT_USER_AGENT = f"crate-lens/{__version__}"
DEFAULT_TIMEOUT_S = 30.0
MAX_SEARCH_PAGE = 100
TOP_VERSION_DOWNLOADS = 10

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class RegistrySettings:
    """
    上游 crates.io API 的访问配置。
    """

    api_url: str = DEFAULT_API_URL
    user_agent: str = DEFAULT_USER_AGENT
    timeout_s: float = DEFAULT_TIMEOUT_S


def _build_headers(settings: RegistrySettings) -> dict[str, str]:
    """
    构造请求头（crates.io 要求携带 User-Agent）。
    """
    return {"Accept": "application/json", "User-Agent": settings.user_agent}


def create_async_client(settings: RegistrySettings) -> httpx.AsyncClient:
    """
    创建用于访问 crates.io 的 AsyncClient；timeout 即单次上游调用的超时。
    """
    timeout = httpx.Timeout(settings.timeout_s)
    return httpx.AsyncClient(headers=_build_headers(settings), timeout=timeout, follow_redirects=True)


def parse_timestamp(raw: Any) -> datetime | None:
    """
    解析 RFC 3339 时间戳；无法解析时返回 None。
    """
    if not isinstance(raw, str) or not raw:
        return None
    text = raw[:-1] + "+00:00" if raw.endswith("Z") else raw
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        return None


def _crate_info_from_json(data: dict[str, Any]) -> CrateInfo:
    """
    将 /crates/{name} 响应转换为 CrateInfo（合并 keywords/categories）。
    """
    raw = data.get("crate")
    if not isinstance(raw, dict) or "name" not in raw:
        raise InvalidResponse("missing 'crate' object")

    keywords = tuple(
        str(k["keyword"]) for k in data.get("keywords") or [] if isinstance(k, dict) and "keyword" in k
    )
    categories = tuple(
        str(c["category"]) for c in data.get("categories") or [] if isinstance(c, dict) and "category" in c
    )
    return CrateInfo(
        name=str(raw["name"]),
        newest_version=str(raw.get("newest_version") or raw.get("max_version") or ""),
        downloads=int(raw.get("downloads") or 0),
        description=raw.get("description"),
        created_at=parse_timestamp(raw.get("created_at")),
        updated_at=parse_timestamp(raw.get("updated_at")),
        homepage=raw.get("homepage"),
        repository=raw.get("repository"),
        documentation=raw.get("documentation"),
        keywords=keywords,
        categories=categories,
        max_upload_size=raw.get("max_upload_size"),
        recent_downloads=raw.get("recent_downloads"),
    )


def _version_from_json(raw: dict[str, Any]) -> VersionRecord:
    return VersionRecord(
        num=str(raw.get("num") or ""),
        yanked=bool(raw.get("yanked") or False),
        downloads=int(raw.get("downloads") or 0),
        created_at=parse_timestamp(raw.get("created_at")),
        license=raw.get("license"),
        crate_size=int(raw["crate_size"]) if raw.get("crate_size") is not None else None,
    )


def _dependency_from_json(raw: dict[str, Any]) -> Dependency:
    return Dependency(
        name=str(raw.get("crate_id") or raw.get("name") or ""),
        req=str(raw.get("req") or "*"),
        kind=str(raw.get("kind") or "normal"),
        optional=bool(raw.get("optional") or False),
        default_features=bool(raw.get("default_features", True)),
        features=tuple(raw.get("features") or ()),
        target=raw.get("target"),
    )


def _search_result_from_json(raw: dict[str, Any]) -> SearchResult:
    return SearchResult(
        name=str(raw.get("name") or ""),
        newest_version=str(raw.get("newest_version") or raw.get("max_version") or ""),
        downloads=int(raw.get("downloads") or 0),
        description=raw.get("description"),
        exact_match=bool(raw.get("exact_match") or False),
    )


def _build(builder: Callable[[dict[str, Any]], T], raw: dict[str, Any]) -> T:
    """
    用转换函数构造记录；字段类型不符（如 downloads 不是数字）时抛出 InvalidResponse。
    """
    try:
        return builder(raw)
    except (TypeError, ValueError) as exc:
        raise InvalidResponse(f"malformed record: {exc}") from exc


class RegistryClient:
    """
    crates.io API 的异步客户端；每个方法只对应单个包的查询。
    """

    def __init__(self, settings: RegistrySettings, *, client: httpx.AsyncClient | None = None) -> None:
        self.settings = settings
        self._base = settings.api_url.rstrip("/")
        self._client = client or create_async_client(settings)

    async def __aenter__(self) -> RegistryClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _get(self, path: str, *, params: dict[str, Any] | None = None) -> httpx.Response:
        """
        发起 GET 请求，将传输层异常映射为 crate-lens 的错误类型。
        """
        url = f"{self._base}{path}"
        try:
            return await self._client.get(url, params=params)
        except httpx.TimeoutException as exc:
            log.warning("timeout requesting %s: %s", url, exc)
            raise RequestTimeout(self.settings.timeout_s) from exc
        except httpx.HTTPError as exc:
            log.warning("network error requesting %s: %s", url, exc)
            raise NetworkError(str(exc) or exc.__class__.__name__) from exc

    @staticmethod
    def _json(resp: httpx.Response) -> dict[str, Any]:
        try:
            data = resp.json()
        except ValueError as exc:
            raise InvalidResponse(str(exc)) from exc
        if not isinstance(data, dict):
            raise InvalidResponse("expected a JSON object")
        return data

    async def crate_exists(self, name: str) -> bool:
        """
        检查包是否存在：200 为存在，404 为不存在，其它状态码抛出错误。
        """
        validate_crate_name(name)
        log.debug("checking if crate exists: %s", name)
        resp = await self._get(f"/crates/{quote(name)}")
        if resp.status_code == 200:
            log.info("crate '%s' exists", name)
            return True
        if resp.status_code == 404:
            log.info("crate '%s' not found", name)
            return False
        log.warning("unexpected status %s for crate '%s'", resp.status_code, name)
        raise error_from_status(resp.status_code, resp.reason_phrase)

    async def get_crate_info(self, name: str) -> CrateInfo:
        """
        获取包的完整元数据。
        """
        validate_crate_name(name)
        resp = await self._get(f"/crates/{quote(name)}")
        if resp.status_code == 404:
            raise CrateNotFound(name)
        if resp.status_code != 200:
            raise error_from_status(resp.status_code, resp.reason_phrase)
        return _build(_crate_info_from_json, self._json(resp))

    async def get_latest_version(self, name: str) -> str:
        info = await self.get_crate_info(name)
        return info.newest_version

    async def get_all_versions(self, name: str) -> list[VersionRecord]:
        """
        获取包的全部版本（按上游返回顺序，通常为从新到旧）。
        """
        validate_crate_name(name)
        resp = await self._get(f"/crates/{quote(name)}/versions")
        if resp.status_code == 404:
            raise CrateNotFound(name)
        if resp.status_code != 200:
            raise error_from_status(resp.status_code, resp.reason_phrase)
        raw_versions = self._json(resp).get("versions")
        if not isinstance(raw_versions, list):
            raise InvalidResponse("missing 'versions' list")
        versions = [_build(_version_from_json, v) for v in raw_versions if isinstance(v, dict)]
        log.info("found %d versions for crate '%s'", len(versions), name)
        return versions

    async def get_crate_dependencies(self, name: str, version: str) -> list[Dependency]:
        """
        获取指定版本声明的依赖列表。
        """
        validate_crate_name(name)
        resp = await self._get(f"/crates/{quote(name)}/{quote(version)}/dependencies")
        if resp.status_code == 404:
            raise VersionNotFound(name, version)
        if resp.status_code != 200:
            raise error_from_status(resp.status_code, resp.reason_phrase)
        raw_deps = self._json(resp).get("dependencies")
        if not isinstance(raw_deps, list):
            raise InvalidResponse("missing 'dependencies' list")
        return [_build(_dependency_from_json, d) for d in raw_deps if isinstance(d, dict)]

    async def search_crates(self, query: str, limit: int | None = None) -> list[SearchResult]:
        """
        按名称或关键字搜索包；每页最多 100 条。
        """
        if not query.strip():
            raise ValidationError("Search query cannot be empty")
        params: dict[str, Any] = {"q": query}
        if limit is not None:
            params["per_page"] = min(limit, MAX_SEARCH_PAGE)
        resp = await self._get("/crates", params=params)
        if resp.status_code != 200:
            raise error_from_status(resp.status_code, resp.reason_phrase)
        raw_crates = self._json(resp).get("crates")
        if not isinstance(raw_crates, list):
            raise InvalidResponse("missing 'crates' list")
        return [_build(_search_result_from_json, c) for c in raw_crates if isinstance(c, dict)]

    async def get_download_stats(self, name: str) -> DownloadStats:
        """
        下载统计：总下载量取自包元数据，版本明细取下载量最高的 10 个版本。
        """
        info = await self.get_crate_info(name)
        try:
            versions = await self.get_all_versions(name)
        except CrateLensError as exc:
            log.warning("could not fetch versions for '%s': %s", name, exc)
            versions = []

        top = sorted(versions, key=lambda v: v.downloads, reverse=True)[:TOP_VERSION_DOWNLOADS]
        return DownloadStats(
            total=info.downloads,
            versions=[VersionDownload(version=v.num, downloads=v.downloads, date=v.created_at) for v in top],
        )

    async def check_crate_status(self, name: str) -> CrateStatus:
        """
        根据版本列表判断包状态（存在/不存在/全部撤回/部分撤回）。
        """
        try:
            versions = await self.get_all_versions(name)
        except CrateNotFound:
            return CrateStatus.NOT_FOUND

        if not versions:
            return CrateStatus.NOT_FOUND
        yanked = sum(1 for v in versions if v.yanked)
        if yanked == len(versions):
            return CrateStatus.YANKED
        if yanked:
            return CrateStatus.PARTIALLY_YANKED
        return CrateStatus.EXISTS
