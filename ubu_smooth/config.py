"""Runtime settings: defaults match a stock Ubuntu install, overridable from a TOML file."""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Optional

CONFIG_ENV = "UBUSMOOTH_CONFIG"


class ConfigError(ValueError):
    pass


@dataclass(frozen=True)
class Settings:
    # [tweaks]
    sysctl_conf: Path = Path("/etc/sysctl.d/99-ubusmooth.conf")
    zram_conf: Path = Path("/etc/default/zramswap")
    backup_suffix: str = ".bak"
    zram_algorithm: str = "lz4"
    zram_percent: int = 50
    zram_priority: int = 100
    swappiness: int = 10
    vfs_cache_pressure: int = 50
    # [bench]
    bench_dir: Path = Path("bench")
    cpu_seconds: int = 10
    memory_seconds: int = 10
    fio_size: str = "1G"
    fio_block_size: str = "1M"
    fio_iodepth: int = 8
    command_timeout: Optional[float] = None
    # [logging]
    log_file: Path = Path("/var/log/ubusmooth.log")


_SECTIONS = {
    "tweaks": {
        "sysctl_conf",
        "zram_conf",
        "backup_suffix",
        "zram_algorithm",
        "zram_percent",
        "zram_priority",
        "swappiness",
        "vfs_cache_pressure",
    },
    "bench": {
        "bench_dir",
        "cpu_seconds",
        "memory_seconds",
        "fio_size",
        "fio_block_size",
        "fio_iodepth",
        "command_timeout",
    },
    "logging": {"log_file"},
}

_PATH_FIELDS = {f.name for f in fields(Settings) if f.type in ("Path", Path)}


def resolve_config_path(explicit: Optional[Path] = None) -> Optional[Path]:
    if explicit is not None:
        return explicit
    env = os.environ.get(CONFIG_ENV)
    return Path(env).expanduser() if env else None


def load_settings(path: Optional[Path] = None) -> Settings:
    """Build settings from defaults plus the optional TOML file at ``path`` or ``$UBUSMOOTH_CONFIG``."""
    config_path = resolve_config_path(path)
    if config_path is None:
        return Settings()
    if not config_path.exists():
        raise ConfigError(f"Config file not found: {config_path}")
    try:
        with config_path.open("rb") as handle:
            raw = tomllib.load(handle)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Invalid TOML in {config_path}: {exc}") from exc
    return Settings(**_flatten(raw, config_path))


def _flatten(raw: Dict[str, Any], source: Path) -> Dict[str, Any]:
    values: Dict[str, Any] = {}
    for section, table in raw.items():
        allowed = _SECTIONS.get(section)
        if allowed is None:
            raise ConfigError(f"Unknown section [{section}] in {source}")
        if not isinstance(table, dict):
            raise ConfigError(f"[{section}] must be a table in {source}")
        for key, value in table.items():
            if key not in allowed:
                raise ConfigError(f"Unknown key '{key}' in [{section}] of {source}")
            values[key] = Path(value).expanduser() if key in _PATH_FIELDS else value
    return values


def with_overrides(settings: Settings, **overrides: Any) -> Settings:
    """Apply command line overrides, ignoring the ones left unset."""
    return replace(settings, **{k: v for k, v in overrides.items() if v is not None})
