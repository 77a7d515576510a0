"""Configuration loader for vhostctl.

Values are read from multiple sources, later sources winning:

1. Built-in defaults.
2. ``/etc/vhostctl/config.yml`` (or an override path).
3. Environment variables prefixed with ``VHOSTCTL_``.
4. Explicit overrides supplied programmatically (reserved for CLI flags).

Environment keys use double underscores to express nesting, e.g.::

    export VHOSTCTL_NGINX__SITES_AVAILABLE=/tmp/sites-available
    export VHOSTCTL_BACKUPS__SCOPE=domain

Values are coerced via PyYAML's ``safe_load`` so that booleans and numbers are
parsed naturally. The resulting configuration is exposed as immutable
``dataclasses``.
"""
from __future__ import annotations

import os
from collections.abc import Mapping, MutableMapping
from dataclasses import dataclass
from pathlib import Path
from typing import cast

import yaml

ENV_PREFIX = "VHOSTCTL_"
CONFIG_ENV_VAR = f"{ENV_PREFIX}CONFIG_FILE"
RESERVED_ENV_KEYS = {CONFIG_ENV_VAR}


class ConfigError(RuntimeError):
    """Raised when configuration parsing fails."""


@dataclass(frozen=True)
class NginxConfig:
    """Locations of the nginx site directories and the service name."""

    sites_available: Path = Path("/etc/nginx/sites-available")
    sites_enabled: Path = Path("/etc/nginx/sites-enabled")
    service: str = "nginx"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "sites_available": str(self.sites_available),
            "sites_enabled": str(self.sites_enabled),
            "service": self.service,
        }


@dataclass(frozen=True)
class TLSConfig:
    """Certificate generation settings."""

    openssl_bin: str = "openssl"
    key_size: int = 2048

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"openssl_bin": self.openssl_bin, "key_size": self.key_size}


@dataclass(frozen=True)
class BackupConfig:
    """Configuration backup lookup settings."""

    scope: str = "global"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"scope": self.scope}


@dataclass(frozen=True)
class SystemdConfig:
    """Systemd integration configuration values."""

    systemctl_bin: str = "systemctl"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"systemctl_bin": self.systemctl_bin}


@dataclass(frozen=True)
class PackagesConfig:
    """Package manager used to install missing prerequisites."""

    manager: str = "apt-get"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"manager": self.manager}


@dataclass(frozen=True)
class ProbeConfig:
    """Upstream connectivity probe settings."""

    timeout: float = 5.0

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"timeout": self.timeout}


@dataclass(frozen=True)
class PromptsConfig:
    """Interactive prompt policy."""

    attempts: int = 1

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"attempts": self.attempts}


@dataclass(frozen=True)
class AppConfig:
    """Resolved configuration values for vhostctl."""

    config_file: Path
    logs_dir: Path
    templates_dir: Path
    nginx: NginxConfig
    tls: TLSConfig
    backups: BackupConfig
    systemd: SystemdConfig
    packages: PackagesConfig
    probe: ProbeConfig
    prompts: PromptsConfig

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-serialisable representation of the config."""
        return {
            "config_file": str(self.config_file),
            "logs_dir": str(self.logs_dir),
            "templates_dir": str(self.templates_dir),
            "nginx": self.nginx.to_dict(),
            "tls": self.tls.to_dict(),
            "backups": self.backups.to_dict(),
            "systemd": self.systemd.to_dict(),
            "packages": self.packages.to_dict(),
            "probe": self.probe.to_dict(),
            "prompts": self.prompts.to_dict(),
        }


DEFAULTS: dict[str, object] = {
    "config_file": "/etc/vhostctl/config.yml",
    "logs_dir": "/var/log/vhostctl",
    "templates_dir": "/etc/vhostctl/templates",
    "nginx": {
        "sites_available": "/etc/nginx/sites-available",
        "sites_enabled": "/etc/nginx/sites-enabled",
        "service": "nginx",
    },
    "tls": {
        "openssl_bin": "openssl",
        "key_size": 2048,
    },
    "backups": {
        "scope": "global",
    },
    "systemd": {
        "systemctl_bin": "systemctl",
    },
    "packages": {
        "manager": "apt-get",
    },
    "probe": {
        "timeout": 5.0,
    },
    "prompts": {
        "attempts": 1,
    },
}

ALLOWED_TOP_LEVEL_KEYS = set(DEFAULTS.keys())
ALLOWED_SECTION_KEYS: dict[str, set[str]] = {
    key: set(cast(Mapping[str, object], value).keys())
    for key, value in DEFAULTS.items()
    if isinstance(value, Mapping)
}
ALLOWED_BACKUP_SCOPES = {"global", "domain"}


def load_config(
    config_file: str | os.PathLike[str] | None = None,
    *,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, object] | None = None,
) -> AppConfig:
    """Load and merge configuration sources into an :class:`AppConfig`."""
    merged: dict[str, object] = _deep_copy(DEFAULTS)
    resolved_env = dict(os.environ if env is None else env)

    config_default = _expect_str(merged["config_file"], "config_file")
    config_path = _determine_config_path(config_default, config_file, resolved_env)

    file_values = _load_yaml_file(config_path)
    if file_values:
        _deep_merge(merged, file_values)

    env_values = _build_env_overrides(resolved_env)
    if env_values:
        _deep_merge(merged, env_values)

    if overrides:
        _deep_merge(merged, dict(overrides))

    merged["config_file"] = str(config_path)

    _validate_structure(merged)

    return _build_app_config(merged)


def _determine_config_path(
    default_path: str,
    cli_override: str | os.PathLike[str] | None,
    env: Mapping[str, str],
) -> Path:
    if cli_override:
        return Path(cli_override)
    if CONFIG_ENV_VAR in env:
        return Path(env[CONFIG_ENV_VAR])
    return Path(default_path)


def _load_yaml_file(path: Path) -> dict[str, object]:
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:  # pragma: no cover - PyYAML owns detailed error
        raise ConfigError(f"Failed to parse config file {path}: {exc}") from exc
    if not isinstance(data, Mapping):
        raise ConfigError(f"Config file {path} must contain a mapping at the top level.")
    return _as_dict(data, f"file:{path}")


def _validate_structure(raw: Mapping[str, object]) -> None:
    unknown_keys = set(raw.keys()) - ALLOWED_TOP_LEVEL_KEYS
    if unknown_keys:
        joined = ", ".join(sorted(unknown_keys))
        raise ConfigError(f"Unknown configuration keys: {joined}.")

    for section, allowed in ALLOWED_SECTION_KEYS.items():
        section_map = _as_dict(raw.get(section), section)
        unknown = set(section_map.keys()) - allowed
        if unknown:
            joined = ", ".join(sorted(unknown))
            raise ConfigError(f"Unknown {section} configuration keys: {joined}.")

    scope = _as_dict(raw.get("backups"), "backups").get("scope")
    if scope is not None and str(scope) not in ALLOWED_BACKUP_SCOPES:
        allowed_scopes = ", ".join(sorted(ALLOWED_BACKUP_SCOPES))
        raise ConfigError(f"Unsupported backup scope '{scope}'. Allowed: {allowed_scopes}.")


def _build_app_config(raw: Mapping[str, object]) -> AppConfig:
    nginx_mapping = _as_dict(raw.get("nginx"), "nginx")
    nginx = NginxConfig(
        sites_available=_to_path(
            nginx_mapping.get("sites_available", "/etc/nginx/sites-available")
        ),
        sites_enabled=_to_path(nginx_mapping.get("sites_enabled", "/etc/nginx/sites-enabled")),
        service=_expect_str(nginx_mapping.get("service", "nginx"), "nginx.service"),
    )

    tls_mapping = _as_dict(raw.get("tls"), "tls")
    key_size = _expect_int(tls_mapping.get("key_size"), "tls.key_size", default=2048)
    if key_size < 1024:
        raise ConfigError("tls.key_size must be at least 1024 bits.")
    tls = TLSConfig(
        openssl_bin=_expect_str(tls_mapping.get("openssl_bin", "openssl"), "tls.openssl_bin"),
        key_size=key_size,
    )

    backups_mapping = _as_dict(raw.get("backups"), "backups")
    backups = BackupConfig(scope=str(backups_mapping.get("scope", "global")))

    systemd_mapping = _as_dict(raw.get("systemd"), "systemd")
    systemd = SystemdConfig(
        systemctl_bin=_expect_str(
            systemd_mapping.get("systemctl_bin", "systemctl"), "systemd.systemctl_bin"
        ),
    )

    packages_mapping = _as_dict(raw.get("packages"), "packages")
    packages = PackagesConfig(
        manager=_expect_str(packages_mapping.get("manager", "apt-get"), "packages.manager"),
    )

    probe_mapping = _as_dict(raw.get("probe"), "probe")
    probe = ProbeConfig(
        timeout=_expect_positive_float(probe_mapping.get("timeout"), "probe.timeout", default=5.0),
    )

    prompts_mapping = _as_dict(raw.get("prompts"), "prompts")
    attempts = _expect_int(prompts_mapping.get("attempts"), "prompts.attempts", default=1)
    if attempts < 1:
        raise ConfigError("prompts.attempts must be at least 1.")

    return AppConfig(
        config_file=_to_path(raw.get("config_file")),
        logs_dir=_to_path(raw.get("logs_dir")),
        templates_dir=_to_path(raw.get("templates_dir")),
        nginx=nginx,
        tls=tls,
        backups=backups,
        systemd=systemd,
        packages=packages,
        probe=probe,
        prompts=PromptsConfig(attempts=attempts),
    )


def _build_env_overrides(env: Mapping[str, str]) -> dict[str, object]:
    overrides: dict[str, object] = {}
    for key, value in env.items():
        if key in RESERVED_ENV_KEYS:
            continue
        if not key.startswith(ENV_PREFIX):
            continue
        suffix = key[len(ENV_PREFIX) :]
        path_segments = [segment.lower() for segment in suffix.split("__") if segment]
        if not path_segments:
            continue
        _assign_nested(overrides, path_segments, _coerce_value(value))
    return overrides


def _assign_nested(tree: MutableMapping[str, object], path: list[str], value: object) -> None:
    current: MutableMapping[str, object] = tree
    for segment in path[:-1]:
        existing = current.get(segment)
        if existing is None:
            new_child: MutableMapping[str, object] = {}
            current[segment] = new_child
            current = new_child
            continue
        if isinstance(existing, MutableMapping):
            current = cast(MutableMapping[str, object], existing)
            continue
        raise ConfigError(
            "Environment overrides conflict with existing scalar value at "
            f"{'.'.join(path)}"
        )
    current[path[-1]] = value


def _deep_merge(target: MutableMapping[str, object], overrides: Mapping[str, object]) -> None:
    for key, value in overrides.items():
        existing = target.get(key)
        if isinstance(existing, MutableMapping) and isinstance(value, Mapping):
            _deep_merge(existing, _as_dict(value, f"merge.{key}"))
            continue
        target[key] = value


def _deep_copy(source: Mapping[str, object]) -> dict[str, object]:
    result: dict[str, object] = {}
    for key, value in source.items():
        if isinstance(value, Mapping):
            result[key] = _deep_copy(_as_dict(value, f"copy.{key}"))
        else:
            result[key] = value
    return result


def _coerce_value(raw: str) -> object:
    raw = raw.strip()
    try:
        parsed = yaml.safe_load(raw)
    except yaml.YAMLError:  # pragma: no cover - treat as string if parsing fails
        return raw
    return parsed


def _to_path(value: object) -> Path:
    if value is None:
        raise ConfigError("Expected a filesystem path, received None.")
    if isinstance(value, Path):
        return value.expanduser()
    if isinstance(value, str):
        return Path(value).expanduser()
    raise ConfigError(f"Cannot convert value {value!r} to Path.")


def _expect_int(value: object | None, label: str, *, default: int) -> int:
    if value is None:
        return default
    if isinstance(value, bool):
        raise ConfigError(f"Expected {label} to be an integer. Got boolean {value!r}.")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value, 0)
        except ValueError as exc:
            raise ConfigError(f"Invalid integer for {label}: {value!r}.") from exc
    raise ConfigError(f"Expected {label} to be an integer. Got {type(value).__name__}.")


def _expect_str(value: object, key: str) -> str:
    if isinstance(value, str) and value.strip():
        return value
    raise ConfigError(f"Expected {key} to resolve to a non-empty string. Got {value!r}.")


def _expect_positive_float(
    value: object | None,
    label: str,
    *,
    default: float,
) -> float:
    if value is None:
        return float(default)
    if isinstance(value, bool):
        raise ConfigError(f"Expected {label} to be a number. Got boolean {value!r}.")
    if isinstance(value, (int, float)):
        numeric = float(value)
    elif isinstance(value, str):
        try:
            numeric = float(value)
        except ValueError as exc:
            raise ConfigError(f"Invalid number for {label}: {value!r}.") from exc
    else:
        raise ConfigError(
            f"Expected {label} to be numeric. Got {type(value).__name__}."
        )
    if numeric <= 0:
        raise ConfigError(f"{label} must be greater than zero. Got {numeric}.")
    return numeric


def _as_dict(value: object | None, label: str) -> dict[str, object]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"Expected {label} to be a mapping. Got {type(value).__name__}.")
    result: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            raise ConfigError(f"Mapping {label} must use string keys. Got {key!r}.")
        result[key] = item
    return result


__all__ = [
    "AppConfig",
    "BackupConfig",
    "ConfigError",
    "NginxConfig",
    "PackagesConfig",
    "ProbeConfig",
    "PromptsConfig",
    "SystemdConfig",
    "TLSConfig",
    "load_config",
]
