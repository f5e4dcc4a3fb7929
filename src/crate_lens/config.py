from __future__ import annotations

import os
import re
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

try:
    import tomllib
except ModuleNotFoundError:  # pragma: no cover
    import tomli as tomllib

import tomlkit

from crate_lens.cache import CacheSettings
from crate_lens.errors import ValidationError
from crate_lens.registry_client import DEFAULT_API_URL, DEFAULT_TIMEOUT_S, DEFAULT_USER_AGENT, RegistrySettings

LOG_LEVELS = ("trace", "debug", "info", "warning", "error")

_TIMEOUT_RE = re.compile(r"^(\d+)([smh]?)$")
_TIMEOUT_UNITS = {"": 1, "s": 1, "m": 60, "h": 3600}


@dataclass(frozen=True, slots=True)
class ServerSettings:
    """
    HTTP 服务的监听配置。
    """

    host: str = "0.0.0.0"
    port: int = 3000
    enable_cors: bool = True

    @property
    def bind_address(self) -> str:
        return f"{self.host}:{self.port}"


@dataclass(frozen=True, slots=True)
class AppConfig:
    """
    crate-lens 的运行配置（可来自配置文件、环境变量与 CLI 参数合并）。
    """

    registry: RegistrySettings = field(default_factory=RegistrySettings)
    cache: CacheSettings = field(default_factory=CacheSettings)
    server: ServerSettings = field(default_factory=ServerSettings)
    max_concurrency: int = 10
    log_level: str = "info"


def _find_default_config_file(cwd: Path) -> Path | None:
    """
    在当前目录查找默认配置文件路径。
    """
    candidates = [
        ".crate-lens.toml",
        ".crate-lens.yaml",
        ".crate-lens.yml",
        "crate-lens.toml",
        "crate-lens.yaml",
        "crate-lens.yml",
    ]
    for name in candidates:
        p = cwd / name
        if p.exists() and p.is_file():
            return p
    return None


def _load_yaml(path: Path) -> dict[str, Any]:
    """
    读取 YAML 配置文件（需要 PyYAML）。
    """
    import yaml

    with path.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        return {}
    return data


def _load_config_file(path: Path) -> dict[str, Any]:
    """
    读取 .toml 或 .yaml 配置文件，返回配置字典。
    """
    suffix = path.suffix.lower()
    if suffix == ".toml":
        data = tomllib.loads(path.read_text(encoding="utf-8"))
        return data if isinstance(data, dict) else {}
    if suffix in {".yaml", ".yml"}:
        return _load_yaml(path)
    return {}


def _env_bool(value: str) -> bool:
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _setting(tool_cfg: dict[str, Any], key: str, default: Any) -> Any:
    """
    读取单个配置项：环境变量 CRATE_LENS_<KEY> 优先，其次配置文件，最后默认值。
    """
    env_value = os.environ.get(f"CRATE_LENS_{key.upper()}")
    if env_value:
        if isinstance(default, bool):
            return _env_bool(env_value)
        return type(default)(env_value)
    if key in tool_cfg and tool_cfg[key] is not None:
        return type(default)(tool_cfg[key])
    return default


def _normalize_log_level(level: str) -> str:
    level = level.strip().lower()
    return "warning" if level == "warn" else level


def apply_environment_profile(cfg: AppConfig, profile: str | None) -> AppConfig:
    """
    按运行环境（development/production/test）覆盖日志级别与缓存开关。
    """
    env = (profile or "").strip().lower()
    if env in {"development", "dev"}:
        return replace(cfg, log_level="debug", cache=replace(cfg.cache, enabled=False))
    if env in {"production", "prod"}:
        return replace(cfg, log_level="info", cache=replace(cfg.cache, enabled=True))
    if env in {"test", "testing"}:
        return replace(cfg, log_level="warning", cache=replace(cfg.cache, enabled=False))
    return cfg


def load_config(config_path: str | None) -> AppConfig:
    """
    从配置文件与环境变量加载 AppConfig。
    """
    config_data: dict[str, Any] = {}
    if config_path:
        config_data = _load_config_file(Path(config_path))
    else:
        default = _find_default_config_file(Path.cwd())
        if default:
            config_data = _load_config_file(default)

    tool_cfg = config_data.get("crate_lens") if isinstance(config_data, dict) else {}
    if not isinstance(tool_cfg, dict):
        tool_cfg = {}

    registry = RegistrySettings(
        api_url=_setting(tool_cfg, "api_url", DEFAULT_API_URL),
        user_agent=_setting(tool_cfg, "user_agent", DEFAULT_USER_AGENT),
        timeout_s=_setting(tool_cfg, "timeout_s", float(DEFAULT_TIMEOUT_S)),
    )
    cache = CacheSettings(
        enabled=_setting(tool_cfg, "cache_enabled", True),
        ttl_s=_setting(tool_cfg, "cache_ttl_s", 300),
        max_entries=_setting(tool_cfg, "cache_max_entries", 1000),
    )
    server = ServerSettings(
        host=_setting(tool_cfg, "host", "0.0.0.0"),
        port=_setting(tool_cfg, "port", 3000),
        enable_cors=_setting(tool_cfg, "enable_cors", True),
    )

    cfg = AppConfig(
        registry=registry,
        cache=cache,
        server=server,
        max_concurrency=_setting(tool_cfg, "max_concurrency", 10),
        log_level=_normalize_log_level(_setting(tool_cfg, "log_level", "info")),
    )
    return apply_environment_profile(cfg, os.environ.get("CRATE_LENS_ENV"))


def validate_config(cfg: AppConfig) -> None:
    """
    校验配置取值范围，不合法时抛出 ValidationError。
    """
    if cfg.server.port == 0:
        raise ValidationError("Server port cannot be 0")
    if cfg.registry.timeout_s <= 0:
        raise ValidationError("API timeout must be positive")
    if cfg.max_concurrency <= 0:
        raise ValidationError("Max concurrent requests must be positive")
    if cfg.cache.enabled and cfg.cache.max_entries <= 0:
        raise ValidationError("Cache max entries must be positive when caching is enabled")
    if cfg.log_level not in LOG_LEVELS:
        raise ValidationError(f"Invalid log level: {cfg.log_level}")


def parse_timeout(raw: str) -> float:
    """
    解析超时时间字符串（如 30、45s、2m、1h），返回秒数。
    """
    text = raw.strip().lower()
    match = _TIMEOUT_RE.match(text)
    if not match:
        raise ValidationError(f"Invalid timeout format: '{text}'. Use formats like '30s', '5m', '1h'")
    return float(int(match.group(1)) * _TIMEOUT_UNITS[match.group(2)])


def render_sample_config(cfg: AppConfig | None = None) -> str:
    """
    以 TOML 文本输出完整配置，供 `crate-lens config` 生成示例文件。
    """
    cfg = cfg or AppConfig()
    doc = tomlkit.document()
    doc.add(tomlkit.comment("crate-lens 配置；环境变量 CRATE_LENS_<KEY> 可覆盖同名项"))
    table = tomlkit.table()
    table.add("api_url", cfg.registry.api_url)
    table.add("user_agent", cfg.registry.user_agent)
    table.add("timeout_s", cfg.registry.timeout_s)
    table.add("max_concurrency", cfg.max_concurrency)
    table.add("cache_enabled", cfg.cache.enabled)
    table.add("cache_ttl_s", cfg.cache.ttl_s)
    table.add("cache_max_entries", cfg.cache.max_entries)
    table.add("host", cfg.server.host)
    table.add("port", cfg.server.port)
    table.add("enable_cors", cfg.server.enable_cors)
    table.add("log_level", cfg.log_level)
    doc.add("crate_lens", table)
    return tomlkit.dumps(doc)
