# captra/config.py
from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Union

from .determinism import U64_MASK

SEED_ENV = "CAPTRA_SEED"
DEFAULT_CONFIG_NAME = "captra.toml"
_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class ConfigError(RuntimeError):
    pass


@dataclass(frozen=True)
class KeysConfig:
    signing_key: Optional[Path] = None


@dataclass(frozen=True)
class TraceConfig:
    out_dir: Path = Path("_out")


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"


@dataclass(frozen=True)
class RunConfig:
    seed: int
    manifest: Path
    keys: KeysConfig = field(default_factory=KeysConfig)
    trace: TraceConfig = field(default_factory=TraceConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def parse_seed(value: Any, source: str = "seed") -> int:
    if isinstance(value, bool):
        raise ConfigError(f"{source} must be an integer")
    if isinstance(value, str):
        try:
            value = int(value.strip(), 0)
        except ValueError:
            raise ConfigError(f"{source}={value!r} is not an integer")
    if not isinstance(value, int):
        raise ConfigError(f"{source} must be an integer")
    if value < 0 or value > U64_MASK:
        raise ConfigError(f"{source} must fit in an unsigned 64-bit integer")
    return value


def _section(data: Dict[str, Any], name: str) -> Dict[str, Any]:
    sec = data.get(name) or {}
    if not isinstance(sec, dict):
        raise ConfigError(f"[{name}] must be a table")
    return sec


def _resolve(base: Path, value: Any, key: str) -> Path:
    if not isinstance(value, str) or not value.strip():
        raise ConfigError(f"{key} must be a non-empty path string")
    p = Path(value).expanduser()
    return p if p.is_absolute() else (base / p)


def load_config(path: Union[str, Path], env: Optional[Dict[str, str]] = None) -> RunConfig:
    """
    Read a captra TOML file. Relative paths resolve against the file's folder;
    $CAPTRA_SEED overrides `seed`.
    """
    path = Path(path)
    env = os.environ if env is None else env
    try:
        with path.open("rb") as f:
            data = tomllib.load(f)
    except FileNotFoundError:
        raise ConfigError(f"config file not found: {path}")
    except OSError as e:
        raise ConfigError(f"cannot read config {path}: {e}")
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"invalid TOML in {path}: {e}")

    base = path.resolve().parent

    env_seed = (env.get(SEED_ENV) or "").strip()
    if env_seed:
        seed = parse_seed(env_seed, source=SEED_ENV)
    elif "seed" in data:
        seed = parse_seed(data["seed"])
    else:
        raise ConfigError(f"{path}: 'seed' is required (or set ${SEED_ENV})")

    if "manifest" not in data:
        raise ConfigError(f"{path}: 'manifest' is required")
    manifest = _resolve(base, data["manifest"], "manifest")

    keys_sec = _section(data, "keys")
    signing_key = None
    if keys_sec.get("signing_key"):
        signing_key = _resolve(base, keys_sec["signing_key"], "keys.signing_key")

    trace_sec = _section(data, "trace")
    out_dir = _resolve(base, trace_sec.get("out_dir", "_out"), "trace.out_dir")

    log_sec = _section(data, "logging")
    level = str(log_sec.get("level", "INFO")).upper()
    if level not in _LOG_LEVELS:
        raise ConfigError(f"logging.level={level!r} (expected one of {', '.join(_LOG_LEVELS)})")

    return RunConfig(
        seed=seed,
        manifest=manifest,
        keys=KeysConfig(signing_key=signing_key),
        trace=TraceConfig(out_dir=out_dir),
        logging=LoggingConfig(level=level),
    )


__all__ = [
    "ConfigError",
    "DEFAULT_CONFIG_NAME",
    "KeysConfig",
    "LoggingConfig",
    "RunConfig",
    "SEED_ENV",
    "TraceConfig",
    "load_config",
    "parse_seed",
]
