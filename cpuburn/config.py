from __future__ import annotations

import multiprocessing
import os
import time
from pathlib import Path
from typing import Any, Dict, Literal, Mapping, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from cpuburn.errors import ConfigurationError

ENV_PREFIX = "CPU_BURN_"

# key in config file / env suffix -> Session field
CONFIG_KEYS = {
    "duration": "duration_s",
    "workers": "workers",
    "log": "log_path",
    "set_governor": "set_governor",
    "sysfs_root": "sysfs_root",
    "procfs_root": "procfs_root",
    "fallback_method": "fallback_method",
    "write_meta": "write_meta",
}

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


class Session(BaseModel):
    """Run configuration. Frozen once built."""

    model_config = ConfigDict(frozen=True)

    duration_s: Optional[int] = Field(default=None, gt=0)
    workers: int = Field(ge=1)
    log_path: Path
    set_governor: bool = True
    sysfs_root: Path = Path("/sys")
    procfs_root: Path = Path("/proc")
    fallback_method: Literal["counter", "matrix"] = "counter"
    write_meta: bool = True

    @property
    def bounded(self) -> bool:
        return self.duration_s is not None

    @property
    def meta_path(self) -> Path:
        return self.log_path.with_suffix(".meta.json")

    @field_validator("log_path")
    @classmethod
    def _log_path_not_dir(cls, v: Path) -> Path:
        if not str(v) or v.is_dir():
            raise ValueError(f"log path {str(v)!r} is a directory")
        return v


def detect_workers() -> int:
    try:
        return multiprocessing.cpu_count()
    except NotImplementedError:
        return 1


def default_log_path(now: Optional[float] = None) -> Path:
    return Path(time.strftime("cpu_burn_%Y%m%d_%H%M%S.csv", time.localtime(now)))


def parse_duration(value: Any) -> Optional[int]:
    """Seconds as a non-negative integer; 0 or None means unbounded."""
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ConfigurationError(f"invalid duration: {value!r}")
    if isinstance(value, int):
        seconds = value
    else:
        text = str(value).strip()
        if text.endswith("s"):
            text = text[:-1]
        if not text.isdecimal():
            raise ConfigurationError(f"invalid duration: {value!r} (expected whole seconds)")
        seconds = int(text)
    if seconds < 0:
        raise ConfigurationError(f"invalid duration: {value!r} (must be >= 0)")
    return seconds or None


def parse_workers(value: Any) -> Optional[int]:
    """Worker count; 0 or None means autodetect."""
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ConfigurationError(f"invalid worker count: {value!r}")
    try:
        n = int(str(value).strip())
    except ValueError:
        raise ConfigurationError(f"invalid worker count: {value!r}") from None
    if n < 0:
        raise ConfigurationError(f"invalid worker count: {value!r} (must be >= 0)")
    return n or None


def parse_bool(value: Any, key: str) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    raise ConfigurationError(f"invalid boolean for {key}: {value!r}")


def load_config_file(path: Path) -> Dict[str, Any]:
    try:
        cfg = yaml.safe_load(Path(path).read_text()) or {}
    except OSError as exc:
        raise ConfigurationError(f"cannot read config file {path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"malformed config file {path}: {exc}") from exc
    if not isinstance(cfg, dict):
        raise ConfigurationError(f"config file {path} must be a mapping")
    unknown = sorted(set(cfg) - set(CONFIG_KEYS))
    if unknown:
        raise ConfigurationError(f"unknown keys in {path}: {', '.join(unknown)}")
    return cfg


def env_overrides(env: Mapping[str, str]) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for key in CONFIG_KEYS:
        name = ENV_PREFIX + key.upper()
        if name in env and env[name] != "":
            out[key] = env[name]
    return out


def resolve_session(
    *,
    duration: Any = None,
    workers: Any = None,
    log: Any = None,
    set_governor: Optional[bool] = None,
    sysfs_root: Any = None,
    procfs_root: Any = None,
    fallback_method: Optional[str] = None,
    write_meta: Optional[bool] = None,
    config_path: Optional[Path] = None,
    env: Optional[Mapping[str, str]] = None,
    now: Optional[float] = None,
) -> Session:
    """Build the Session from CLI values, environment and an optional YAML file.

    Precedence is CLI > environment > file > defaults. Worker count and log
    path are derived when left unset.
    """
    merged: Dict[str, Any] = {}
    if config_path is not None:
        merged.update(load_config_file(config_path))
    merged.update(env_overrides(os.environ if env is None else env))
    explicit = {
        "duration": duration,
        "workers": workers,
        "log": log,
        "set_governor": set_governor,
        "sysfs_root": sysfs_root,
        "procfs_root": procfs_root,
        "fallback_method": fallback_method,
        "write_meta": write_meta,
    }
    merged.update({k: v for k, v in explicit.items() if v is not None})

    fields: Dict[str, Any] = {
        "duration_s": parse_duration(merged.get("duration")),
        "workers": parse_workers(merged.get("workers")) or detect_workers(),
        "log_path": Path(merged["log"]) if merged.get("log") else default_log_path(now),
    }
    for key in ("set_governor", "write_meta"):
        if key in merged:
            fields[key] = parse_bool(merged[key], key)
    for key in ("sysfs_root", "procfs_root", "fallback_method"):
        if key in merged:
            fields[CONFIG_KEYS[key]] = merged[key]

    try:
        return Session(**fields)
    except ValidationError as exc:
        raise ConfigurationError(str(exc)) from exc
