"""Relay configuration loading and validation.

Reads a TOML file, resolves ``${VAR}`` environment references, and returns a
validated :class:`RelayConfig`. Module parameters are kept as the string bags
the module engine validates; the configuration layer never interprets them.
"""

from __future__ import annotations

import logging
import os
import re
import tomllib
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import tomli_w

from icalrelay.modules.base import DEFAULT_FETCH_TIMEOUT_S

logger = logging.getLogger(__name__)

DEFAULT_CLEANUP_INTERVAL_S = 3600
MIN_CLEANUP_INTERVAL_S = 1

# Pattern matching ${VAR_NAME}; supports alphanumeric + underscore variable names.
_ENV_VAR_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")
_PROFILE_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_.-]+$")


class ConfigError(Exception):
    """Raised when relay configuration is missing, malformed, or invalid."""


@dataclass
class LoggingConfig:
    """Logging configuration from the [logging] section."""

    level: str = "INFO"
    format: str = "text"  # "text" or "json"
    log_root: str | None = None


@dataclass
class ServerConfig:
    """Server settings from [server]; consumed by the HTTP layer."""

    addr: str = ":8080"
    url: str = ""
    storage_path: str = "."
    super_tokens: list[str] = field(default_factory=list)


@dataclass
class FetchConfig:
    timeout_s: float | None = DEFAULT_FETCH_TIMEOUT_S


@dataclass
class CleanupConfig:
    """Expired-module cleanup from [cleanup].

    ``interval_s`` is floored to one second so a zero interval cannot spin.
    """

    interval_s: int = DEFAULT_CLEANUP_INTERVAL_S
    enabled: bool = True


@dataclass
class ProfileConfig:
    """A single [profiles.<name>] entry."""

    name: str
    sources: list[str] = field(default_factory=list)
    public: bool = False
    admin_tokens: list[str] = field(default_factory=list)
    modules: list[dict[str, str]] = field(default_factory=list)


@dataclass
class NotifierConfig:
    """A single [notifiers.<name>] entry."""

    name: str
    source: str
    interval: str = "1h"
    recipients: list[str] = field(default_factory=list)


@dataclass
class RelayConfig:
    server: ServerConfig = field(default_factory=ServerConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    fetch: FetchConfig = field(default_factory=FetchConfig)
    cleanup: CleanupConfig = field(default_factory=CleanupConfig)
    profiles: dict[str, ProfileConfig] = field(default_factory=dict)
    notifiers: dict[str, NotifierConfig] = field(default_factory=dict)

    def public_profiles(self) -> list[str]:
        return sorted(name for name, p in self.profiles.items() if p.public)

    def profile_exists(self, name: str) -> bool:
        return name in self.profiles

    def notifier_exists(self, name: str) -> bool:
        return name in self.notifiers


def resolve_env_vars(value: Any) -> Any:
    """Recursively resolve ``${VAR_NAME}`` references in config values.

    Walks dicts, lists, and strings. Non-string leaf values (int, bool,
    float) are returned unchanged.

    Raises
    ------
    ConfigError
        If a referenced environment variable is not set.
    """
    if isinstance(value, dict):
        return {k: resolve_env_vars(v) for k, v in value.items()}

    if isinstance(value, list):
        return [resolve_env_vars(item) for item in value]

    if isinstance(value, str):
        return _resolve_string(value)

    return value


def _resolve_string(s: str) -> str:
    """Replace all ``${VAR_NAME}`` occurrences in *s* with env var values.

    Collects all missing variable names and reports them in a single error.
    """
    missing: list[str] = []

    def _replace(match: re.Match) -> str:
        var_name = match.group(1)
        env_value = os.environ.get(var_name)
        if env_value is None:
            missing.append(var_name)
            return match.group(0)
        return env_value

    result = _ENV_VAR_PATTERN.sub(_replace, s)

    if missing:
        vars_str = ", ".join(missing)
        raise ConfigError(
            f"Unresolved environment variable(s) in config value: {vars_str} (original: {s!r})"
        )

    return result


def _param_to_str(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _string_list(value: Any, where: str) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value] if value else []
    if isinstance(value, list) and all(isinstance(v, str) for v in value):
        return [v for v in value if v]
    raise ConfigError(f"{where} must be a string or a list of strings")


def _parse_modules(raw: Any, profile: str) -> list[dict[str, str]]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ConfigError(f"profiles.{profile}.modules must be an array of tables")
    modules: list[dict[str, str]] = []
    for index, entry in enumerate(raw):
        if not isinstance(entry, dict):
            raise ConfigError(f"profiles.{profile}.modules[{index}] must be a table")
        if not entry.get("name"):
            raise ConfigError(f"profiles.{profile}.modules[{index}] is missing 'name'")
        modules.append({str(k): _param_to_str(v) for k, v in entry.items()})
    return modules


def _parse_profile(name: str, section: Any) -> ProfileConfig:
    if not _PROFILE_NAME_PATTERN.fullmatch(name):
        raise ConfigError(f"Invalid profile name: {name!r}")
    if not isinstance(section, dict):
        raise ConfigError(f"profiles.{name} must be a table")
    return ProfileConfig(
        name=name,
        sources=_string_list(section.get("source"), f"profiles.{name}.source"),
        public=bool(section.get("public", False)),
        admin_tokens=_string_list(section.get("admin_tokens"), f"profiles.{name}.admin_tokens"),
        modules=_parse_modules(section.get("modules"), name),
    )


def _parse_notifier(name: str, section: Any) -> NotifierConfig:
    if not isinstance(section, dict):
        raise ConfigError(f"notifiers.{name} must be a table")
    source = section.get("source")
    if not source:
        raise ConfigError(f"Missing required field: notifiers.{name}.source")
    return NotifierConfig(
        name=name,
        source=str(source),
        interval=str(section.get("interval", "1h")),
        recipients=_string_list(section.get("recipients"), f"notifiers.{name}.recipients"),
    )


def parse_config(data: dict[str, Any], *, base_dir: Path | None = None) -> RelayConfig:
    """Build a :class:`RelayConfig` from already-decoded TOML data."""
    data = resolve_env_vars(data)

    # --- [server] ---
    server_section = data.get("server", {})
    storage_path = server_section.get("storage_path")
    if storage_path is None:
        storage_path = str(base_dir) if base_dir is not None else "."
    server = ServerConfig(
        addr=str(server_section.get("addr", ":8080")),
        url=str(server_section.get("url", "")).rstrip("/"),
        storage_path=str(storage_path),
        super_tokens=_string_list(server_section.get("super_tokens"), "server.super_tokens"),
    )

    # --- [logging] ---
    logging_section = data.get("logging", {})
    log_level = str(logging_section.get("level", "INFO")).upper()
    log_format = str(logging_section.get("format", "text")).lower()
    if log_format not in ("text", "json"):
        raise ConfigError(f"Invalid logging.format: {log_format!r}. Expected 'text' or 'json'.")
    logging_config = LoggingConfig(
        level=log_level,
        format=log_format,
        log_root=logging_section.get("log_root"),
    )

    # --- [fetch] ---
    fetch_section = data.get("fetch", {})
    raw_timeout = fetch_section.get("timeout_s", DEFAULT_FETCH_TIMEOUT_S)
    timeout_s = float(raw_timeout) if raw_timeout is not None else None
    if timeout_s is not None and timeout_s <= 0:
        raise ConfigError(f"Invalid fetch.timeout_s: {raw_timeout!r}. Must be positive.")

    # --- [cleanup] ---
    cleanup_section = data.get("cleanup", {})
    try:
        interval_s = int(cleanup_section.get("interval_s", DEFAULT_CLEANUP_INTERVAL_S))
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid cleanup.interval_s: {exc}") from exc
    cleanup = CleanupConfig(
        interval_s=max(MIN_CLEANUP_INTERVAL_S, interval_s),
        enabled=bool(cleanup_section.get("enabled", True)),
    )

    # --- [profiles.*] / [notifiers.*] ---
    profiles = {
        name: _parse_profile(name, section) for name, section in data.get("profiles", {}).items()
    }
    notifiers = {
        name: _parse_notifier(name, section)
        for name, section in data.get("notifiers", {}).items()
    }

    return RelayConfig(
        server=server,
        logging=logging_config,
        fetch=FetchConfig(timeout_s=timeout_s),
        cleanup=cleanup,
        profiles=profiles,
        notifiers=notifiers,
    )


def load_config(path: Path) -> RelayConfig:
    """Load and validate a relay TOML config file.

    Raises
    ------
    ConfigError
        If the file is missing, contains invalid TOML, or lacks required fields.
    """
    path = Path(path)
    if not path.is_file():
        raise ConfigError(f"Config file not found: {path}")

    try:
        data = tomllib.loads(path.read_bytes().decode())
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Invalid TOML in {path}: {exc}") from exc

    return parse_config(data, base_dir=path.parent)


# ---------------------------------------------------------------------------
# Writing
# ---------------------------------------------------------------------------


def _merge_modules(raw: list[Any], modules: list[dict[str, str]]) -> list[Any]:
    """Line up the file's module tables with the in-memory module list.

    Raw tables whose resolved form matches the next kept module are written
    back untouched, so ``${VAR}`` references survive. Tables with no match
    were removed in memory and are dropped; modules left over are appended.
    """
    merged: list[Any] = []
    pending = list(modules)
    for entry in raw:
        if not isinstance(entry, dict) or not pending:
            continue
        resolved = {str(k): _param_to_str(v) for k, v in resolve_env_vars(entry).items()}
        if resolved == pending[0]:
            merged.append(entry)
            pending.pop(0)
    merged.extend(dict(module) for module in pending)
    return merged


def save_config(config: RelayConfig, path: Path) -> None:
    """Write the module lists of *config* back into the TOML file at *path*.

    Only ``modules`` arrays of existing profiles are rewritten; every other
    key keeps its original value. The file is replaced atomically.
    """
    path = Path(path)
    try:
        data = tomllib.loads(path.read_bytes().decode())
    except (OSError, tomllib.TOMLDecodeError) as exc:
        raise ConfigError(f"Cannot rewrite config {path}: {exc}") from exc

    raw_profiles = data.get("profiles", {})
    for name, profile in config.profiles.items():
        section = raw_profiles.get(name)
        if not isinstance(section, dict):
            continue
        modules = _merge_modules(section.get("modules", []), profile.modules)
        if modules:
            section["modules"] = modules
        else:
            section.pop("modules", None)

    tmp = path.with_name(f".{path.name}.tmp")
    tmp.write_text(tomli_w.dumps(data))
    os.replace(tmp, path)


def config_writer(path: Path) -> Callable[[RelayConfig], None]:
    """Return a persist hook that saves module changes to *path*."""

    def _persist(config: RelayConfig) -> None:
        save_config(config, path)
        logger.info("Saved configuration to %s", path)

    return _persist
