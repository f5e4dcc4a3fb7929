from __future__ import annotations

import logging

from crate_lens.errors import CrateLensError
from crate_lens.models import LATEST, CheckResult, CrateInfo, PackageQuery
from crate_lens.registry_client import RegistryClient

log = logging.getLogger(__name__)


async def check(query: PackageQuery, *, client: RegistryClient) -> CheckResult:
    """
    检查单个包（及可选版本）是否存在，并补充最新版本信息。

    存在性检查的失败写入 error 并视为不存在；元数据与版本列表属于尽力而为的补充信息，
    失败时只留空对应字段，不影响 exists，也不写 error。
    """
    name = query.name
    requested = query.requested_version

    try:
        exists = await client.crate_exists(name)
    except CrateLensError as exc:
        log.info("existence check failed for '%s': %s", name, exc)
        return CheckResult(name=name, exists=False, requested_version=requested, error=str(exc))

    if not exists:
        return CheckResult(name=name, exists=False, requested_version=requested)

    info: CrateInfo | None = None
    try:
        info = await client.get_crate_info(name)
    except CrateLensError as exc:
        log.debug("metadata lookup failed for '%s': %s", name, exc)

    version_exists: bool | None = None
    if requested == LATEST:
        version_exists = True
    elif requested is not None:
        try:
            versions = await client.get_all_versions(name)
        except CrateLensError as exc:
            log.debug("version list lookup failed for '%s': %s", name, exc)
        else:
            version_exists = any(v.num == requested for v in versions)

    return CheckResult(
        name=name,
        exists=True,
        latest_version=info.newest_version if info else None,
        requested_version=requested,
        version_exists=version_exists,
        info=info,
    )
