from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

import yaml

from .utils import default_cache_dir


class ConfigError(RuntimeError):
    pass


class ConflictPolicy(str, Enum):
    RENAME = "rename"
    VERSION = "version"
    OVERWRITE = "overwrite"


DEFAULT_CONCURRENCY = 5
DEFAULT_MARKDOWN_EXT = [".md", ".markdown"]

_STORAGE_KEYS = (
    "provider",
    "bucket",
    "endpoint",
    "region",
    "custom_domain",
    "path_prefix",
    "root_dir",
    "public_base_url",
    "username",
    "password",
    "timeout_sec",
    "skip_verify",
)


@dataclass
class StorageConfig:
    name: str = ""
    provider: str = ""
    bucket: str = ""
    endpoint: str = ""
    region: str = ""
    custom_domain: str = ""
    path_prefix: str = ""
    root_dir: Path | None = None
    public_base_url: str = ""
    username: str = ""
    password: str = ""
    timeout_sec: float = 30.0
    skip_verify: bool = False
    options: dict[str, Any] = field(default_factory=dict)


@dataclass
class UploadConfig:
    concurrency: int = DEFAULT_CONCURRENCY
    force: bool = False
    dry_run: bool = False
    conflict_policy: ConflictPolicy = ConflictPolicy.RENAME
    cache_dir: Path = field(default_factory=default_cache_dir)
    markdown_ext: list[str] = field(default_factory=lambda: list(DEFAULT_MARKDOWN_EXT))
    exclude_globs: list[str] = field(default_factory=list)
    remote_dir: str = "images"
    hash_algo: str = "md5"
    match_cache_by_hash: bool = False


@dataclass
class RuntimeConfig:
    log_level: str = "INFO"


@dataclass
class AppConfig:
    upload: UploadConfig
    storages: dict[str, StorageConfig]
    default_storage: str
    runtime: RuntimeConfig


def load_config(path: str | Path, required: bool = True) -> AppConfig:
    path = Path(path)
    if not path.exists():
        if required:
            raise ConfigError(f"config file not found: {path}")
        return AppConfig(
            upload=UploadConfig(),
            storages={},
            default_storage="",
            runtime=RuntimeConfig(),
        )

    try:
        with path.open("r", encoding="utf-8") as handle:
            raw = yaml.safe_load(handle) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f"invalid YAML in {path}: {exc}") from exc
    if not isinstance(raw, dict):
        raise ConfigError(f"config root must be a mapping: {path}")

    upload_cfg = _parse_upload(_section(raw, "upload"))
    storages = _parse_storages(_section(raw, "storages"))
    runtime_cfg = _parse_runtime(_section(raw, "runtime"))
    default_storage = str(raw.get("default_storage") or "")
    if default_storage and default_storage not in storages:
        raise ConfigError(f"default_storage refers to unknown storage: {default_storage}")

    return AppConfig(
        upload=upload_cfg,
        storages=storages,
        default_storage=default_storage,
        runtime=runtime_cfg,
    )


def get_storage_config(config: AppConfig, name: str | None = None) -> StorageConfig:
    if name:
        if name not in config.storages:
            raise ConfigError(f"unknown storage: {name}")
        return config.storages[name]
    if config.default_storage:
        return config.storages[config.default_storage]
    if len(config.storages) == 1:
        return next(iter(config.storages.values()))
    if not config.storages:
        return StorageConfig()
    raise ConfigError("multiple storages configured; set default_storage or pass --storage")


def parse_conflict_policy(value: str | None) -> ConflictPolicy:
    if value is None:
        return ConflictPolicy.RENAME
    lowered = str(value).strip().lower()
    if not lowered:
        return ConflictPolicy.RENAME
    try:
        return ConflictPolicy(lowered)
    except ValueError:
        raise ConfigError(
            f"invalid conflict policy: {value} (must be rename, version, or overwrite)"
        ) from None


def _parse_upload(raw: dict[str, Any]) -> UploadConfig:
    concurrency = int(raw.get("concurrency", DEFAULT_CONCURRENCY))
    if concurrency < 1:
        raise ConfigError("upload.concurrency must be >= 1")
    cache_dir_raw = raw.get("cache_dir")
    cache_dir = Path(cache_dir_raw).expanduser() if cache_dir_raw else default_cache_dir()
    markdown_ext = normalize_exts(_as_list(raw.get("markdown_ext", DEFAULT_MARKDOWN_EXT)))

    return UploadConfig(
        concurrency=concurrency,
        force=bool(raw.get("force", False)),
        dry_run=bool(raw.get("dry_run", False)),
        conflict_policy=parse_conflict_policy(raw.get("conflict_policy")),
        cache_dir=cache_dir,
        markdown_ext=markdown_ext or list(DEFAULT_MARKDOWN_EXT),
        exclude_globs=_as_list(raw.get("exclude_globs", [])),
        remote_dir=str(raw.get("remote_dir", "images")).strip("/"),
        hash_algo=str(raw.get("hash_algo", "md5")),
        match_cache_by_hash=bool(raw.get("match_cache_by_hash", False)),
    )


def _parse_storages(raw: dict[str, Any]) -> dict[str, StorageConfig]:
    storages: dict[str, StorageConfig] = {}
    for name, entry in raw.items():
        if not isinstance(entry, dict):
            raise ConfigError(f"storages.{name} must be a mapping")
        storages[str(name)] = parse_storage(str(name), entry)
    return storages


def parse_storage(name: str, raw: dict[str, Any]) -> StorageConfig:
    provider = str(_require(raw, "provider", f"storages.{name}")).lower()
    root_dir = raw.get("root_dir")
    return StorageConfig(
        name=name,
        provider=provider,
        bucket=str(raw.get("bucket", "")),
        endpoint=str(raw.get("endpoint", "")),
        region=str(raw.get("region", "")),
        custom_domain=str(raw.get("custom_domain", "")),
        path_prefix=str(raw.get("path_prefix", "")).strip("/"),
        root_dir=Path(root_dir).expanduser() if root_dir else None,
        public_base_url=str(raw.get("public_base_url", "")),
        username=str(raw.get("username", "")),
        password=str(raw.get("password", "")),
        timeout_sec=float(raw.get("timeout_sec", 30)),
        skip_verify=bool(raw.get("skip_verify", False)),
        options={key: value for key, value in raw.items() if key not in _STORAGE_KEYS},
    )


def _parse_runtime(raw: dict[str, Any]) -> RuntimeConfig:
    return RuntimeConfig(log_level=str(raw.get("log_level", "INFO")))


def _section(raw: dict[str, Any], key: str) -> dict[str, Any]:
    value = raw.get(key) or {}
    if not isinstance(value, dict):
        raise ConfigError(f"{key} must be a mapping")
    return value


def _require(raw: dict[str, Any], key: str, section: str) -> Any:
    if key not in raw:
        raise ConfigError(f"missing required key: {section}.{key}")
    return raw[key]


def _as_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, list):
        return [str(item) for item in value]
    return [str(value)]


def normalize_exts(items: list[str]) -> list[str]:
    normalized = []
    for item in items:
        if not item:
            continue
        item = item.strip()
        if not item:
            continue
        if not item.startswith("."):
            item = "." + item
        normalized.append(item.lower())
    return normalized
