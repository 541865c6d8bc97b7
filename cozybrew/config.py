"""Runtime configuration for cozy-brew.

Settings come from defaults, an optional ``config.toml`` and environment
overrides, in increasing order of precedence. The config file is looked up at
``$COZYBREW_CONFIG`` or ``~/.config/cozybrew/config.toml``::

    [brew]
    path = "/opt/homebrew/bin/brew"

    [brew.env]
    HOMEBREW_NO_ANALYTICS = "1"

    [cache]
    dir = "~/.cache/cozybrew"
    ttl = 3600

    [cache.ttl_by_key]
    taps = 86400

    [logging]
    dir = "~/.local/state/cozybrew/logs"
    level = "INFO"
"""

import os
import sys
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Final, Mapping

from logly import logger

from cozybrew.infra.brew_cache import DEFAULT_TTL_SEC, CacheKey

DEFAULT_BREW_ENV: Final[Mapping[str, str]] = {
    "HOMEBREW_NO_ENV_HINTS": "1",
    "HOMEBREW_NO_AUTO_UPDATE": "1",
    "HOMEBREW_NO_COLOR": "1",
}


def _home_dir(environ: Mapping[str, str], xdg_var: str, fallback: str) -> Path:
    value = environ.get(xdg_var)
    if value:
        return Path(value).expanduser()
    return Path.home() / fallback


def default_cache_dir(environ: Mapping[str, str] = os.environ) -> Path:
    if sys.platform == "darwin":
        return Path.home() / "Library" / "Caches" / "CozyBrew"
    return _home_dir(environ, "XDG_CACHE_HOME", ".cache") / "cozybrew"


def default_log_dir(environ: Mapping[str, str] = os.environ) -> Path:
    if sys.platform == "darwin":
        return Path.home() / "Library" / "Logs" / "CozyBrew"
    return _home_dir(environ, "XDG_STATE_HOME", ".local/state") / "cozybrew" / "logs"


def default_config_path(environ: Mapping[str, str] = os.environ) -> Path:
    value = environ.get("COZYBREW_CONFIG")
    if value:
        return Path(value).expanduser()
    return _home_dir(environ, "XDG_CONFIG_HOME", ".config") / "cozybrew" / "config.toml"


@dataclass(frozen=True, slots=True)
class BrewSettings:
    """Resolved settings.

    Attributes:
        brew_path: Explicit `brew` path; None means auto-detect.
        brew_env: Environment overrides applied to every `brew` invocation.
        cache_dir: Root of the result cache.
        cache_ttl: Default cache max age in seconds.
        cache_ttl_by_key: Per-key max ages overriding `cache_ttl`.
        log_dir: Directory for the rotating log file.
        log_level: logly level name.
    """

    brew_path: str | None = None
    brew_env: Mapping[str, str] = field(default_factory=lambda: dict(DEFAULT_BREW_ENV))
    cache_dir: Path = field(default_factory=default_cache_dir)
    cache_ttl: float = DEFAULT_TTL_SEC
    cache_ttl_by_key: Mapping[CacheKey, float] = field(default_factory=dict)
    log_dir: Path = field(default_factory=default_log_dir)
    log_level: str = "INFO"


def _load_config_toml(path: Path) -> Dict[str, Any]:
    """Load configuration values from ``config.toml`` if present."""

    if not path.exists():
        return {}
    try:
        with path.open("rb") as config_file:
            return tomllib.load(config_file)
    except (OSError, tomllib.TOMLDecodeError) as e:
        logger.warning(f"Ignoring unreadable config file path={path}: {e}")
        return {}


def _table(config: Mapping[str, Any], *keys: str) -> Dict[str, Any]:
    node: Any = config
    for key in keys:
        node = node.get(key) if isinstance(node, Mapping) else None
    return dict(node) if isinstance(node, Mapping) else {}


def _as_seconds(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    try:
        seconds = float(value)
    except (TypeError, ValueError):
        return None
    return seconds if seconds >= 0 else None


def _ttl_by_key(raw: Mapping[str, Any]) -> Dict[CacheKey, float]:
    resolved: Dict[CacheKey, float] = {}
    for name, value in raw.items():
        try:
            key = CacheKey(name)
        except ValueError:
            logger.warning(f"Unknown cache key in config: {name}")
            continue
        seconds = _as_seconds(value)
        if seconds is not None:
            resolved[key] = seconds
    return resolved


def load_settings(
    path: Path | None = None, environ: Mapping[str, str] | None = None
) -> BrewSettings:
    """Resolves settings from defaults, the config file and the environment.

    Args:
        path: Config file to read; defaults to :func:`default_config_path`.
        environ: Environment to read overrides from; defaults to `os.environ`.

    Returns:
        The resolved settings. Invalid values fall back to defaults.
    """
    environ = os.environ if environ is None else environ
    config = _load_config_toml(path or default_config_path(environ))

    brew = _table(config, "brew")
    cache = _table(config, "cache")
    logging_cfg = _table(config, "logging")

    brew_env = dict(DEFAULT_BREW_ENV)
    brew_env.update({str(k): str(v) for k, v in _table(config, "brew", "env").items()})

    brew_path = environ.get("COZYBREW_BREW_PATH") or brew.get("path") or None
    cache_dir = environ.get("COZYBREW_CACHE_DIR") or cache.get("dir")
    log_dir = environ.get("COZYBREW_LOG_DIR") or logging_cfg.get("dir")

    cache_ttl = DEFAULT_TTL_SEC
    for candidate in (environ.get("COZYBREW_CACHE_TTL"), cache.get("ttl")):
        seconds = _as_seconds(candidate) if candidate is not None else None
        if seconds is not None:
            cache_ttl = seconds
            break

    return BrewSettings(
        brew_path=str(brew_path) if brew_path else None,
        brew_env=brew_env,
        cache_dir=Path(cache_dir).expanduser() if cache_dir else default_cache_dir(environ),
        cache_ttl=cache_ttl,
        cache_ttl_by_key=_ttl_by_key(_table(config, "cache", "ttl_by_key")),
        log_dir=Path(log_dir).expanduser() if log_dir else default_log_dir(environ),
        log_level=str(logging_cfg.get("level") or "INFO").upper(),
    )


__all__ = [
    "BrewSettings",
    "DEFAULT_BREW_ENV",
    "default_cache_dir",
    "default_config_path",
    "default_log_dir",
    "load_settings",
]
