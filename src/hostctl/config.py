"""Configuration loader for hostctl.

Values are merged from several sources, later ones winning:

1. Built-in defaults.
2. ``/etc/hostctl/config.yml`` (or an override path).
3. Environment variables prefixed with ``HOSTCTL_``.
4. Explicit overrides supplied programmatically (reserved for CLI flags).

Environment keys use double underscores to express nesting, e.g.::

    export HOSTCTL_PHP__DEFAULT_VERSION=8.2
    export HOSTCTL_USE_SUDO=true

Values are coerced via PyYAML's ``safe_load`` so that booleans and numbers are
parsed naturally. The resulting configuration is exposed as immutable
``dataclasses``.
"""
from __future__ import annotations

import os
from collections.abc import Mapping, MutableMapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import cast

try:  # PyYAML is a runtime dependency (declared in pyproject.toml).
    import yaml
except Exception as exc:  # pragma: no cover - import failure covered in tests
    raise RuntimeError(
        "PyYAML is required to load hostctl configuration. Install with "
        "`pip install hostctl` or ensure PyYAML>=6.0 is available."
    ) from exc


ENV_PREFIX = "HOSTCTL_"
CONFIG_ENV_VAR = f"{ENV_PREFIX}CONFIG_FILE"
RESERVED_ENV_KEYS = {CONFIG_ENV_VAR}


class ConfigError(RuntimeError):
    """Raised when configuration parsing fails."""


@dataclass(frozen=True)
class AccountsConfig:
    """OS account defaults."""

    home_root: Path = Path("/home")
    default_shell: str = "/bin/bash"
    useradd_bin: str = "useradd"
    userdel_bin: str = "userdel"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "home_root": str(self.home_root),
            "default_shell": self.default_shell,
            "useradd_bin": self.useradd_bin,
            "userdel_bin": self.userdel_bin,
        }


@dataclass(frozen=True)
class NginxConfig:
    """Web-server locations and binaries."""

    sites_available: Path = Path("/etc/nginx/sites-available")
    sites_enabled: Path = Path("/etc/nginx/sites-enabled")
    nginx_bin: str = "nginx"
    systemctl_bin: str = "systemctl"
    service_name: str = "nginx"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "sites_available": str(self.sites_available),
            "sites_enabled": str(self.sites_enabled),
            "nginx_bin": self.nginx_bin,
            "systemctl_bin": self.systemctl_bin,
            "service_name": self.service_name,
        }


@dataclass(frozen=True)
class PhpConfig:
    """PHP-FPM runtime selectors."""

    versions: tuple[str, ...] = ("8.1", "8.2", "8.3")
    default_version: str = "8.3"
    socket_dir: Path = Path("/var/run/php")

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "versions": list(self.versions),
            "default_version": self.default_version,
            "socket_dir": str(self.socket_dir),
        }


@dataclass(frozen=True)
class CertbotConfig:
    """Certificate-authority client settings."""

    certbot_bin: str = "certbot"
    live_dir: Path = Path("/etc/letsencrypt/live")
    validity_days: int = 90
    timeout: float = 600.0
    renew_window_days: int = 30

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "certbot_bin": self.certbot_bin,
            "live_dir": str(self.live_dir),
            "validity_days": self.validity_days,
            "timeout": self.timeout,
            "renew_window_days": self.renew_window_days,
        }


@dataclass(frozen=True)
class CommandsConfig:
    """Execution defaults for privileged commands."""

    timeout: float = 60.0

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"timeout": self.timeout}


@dataclass(frozen=True)
class AppConfig:
    """Resolved configuration values for hostctl."""

    config_file: Path
    state_dir: Path
    registry_dir: Path
    logs_dir: Path
    runtime_dir: Path
    templates_dir: Path
    lock_timeout: float
    conflict_timeout: float
    use_sudo: bool
    workers: int
    accounts: AccountsConfig
    nginx: NginxConfig
    php: PhpConfig
    certbot: CertbotConfig
    commands: CommandsConfig

    @property
    def staging_dir(self) -> Path:
        """Directory where files are prepared before privileged moves."""
        return self.runtime_dir / "staging"

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-serialisable representation of the config."""
        return {
            "config_file": str(self.config_file),
            "state_dir": str(self.state_dir),
            "registry_dir": str(self.registry_dir),
            "logs_dir": str(self.logs_dir),
            "runtime_dir": str(self.runtime_dir),
            "templates_dir": str(self.templates_dir),
            "lock_timeout": self.lock_timeout,
            "conflict_timeout": self.conflict_timeout,
            "use_sudo": self.use_sudo,
            "workers": self.workers,
            "accounts": self.accounts.to_dict(),
            "nginx": self.nginx.to_dict(),
            "php": self.php.to_dict(),
            "certbot": self.certbot.to_dict(),
            "commands": self.commands.to_dict(),
        }


DEFAULTS: dict[str, object] = {
    "config_file": "/etc/hostctl/config.yml",
    "state_dir": "/var/lib/hostctl",
    "registry_dir": None,  # derived from state_dir when absent
    "logs_dir": "/var/log/hostctl",
    "runtime_dir": "/run/hostctl",
    "templates_dir": "/etc/hostctl/templates",
    "lock_timeout": 30.0,
    "conflict_timeout": 0.0,
    "use_sudo": False,
    "workers": 4,
    "accounts": {
        "home_root": "/home",
        "default_shell": "/bin/bash",
        "useradd_bin": "useradd",
        "userdel_bin": "userdel",
    },
    "nginx": {
        "sites_available": "/etc/nginx/sites-available",
        "sites_enabled": "/etc/nginx/sites-enabled",
        "nginx_bin": "nginx",
        "systemctl_bin": "systemctl",
        "service_name": "nginx",
    },
    "php": {
        "versions": ["8.1", "8.2", "8.3"],
        "default_version": "8.3",
        "socket_dir": "/var/run/php",
    },
    "certbot": {
        "certbot_bin": "certbot",
        "live_dir": "/etc/letsencrypt/live",
        "validity_days": 90,
        "timeout": 600.0,
        "renew_window_days": 30,
    },
    "commands": {
        "timeout": 60.0,
    },
}

ALLOWED_TOP_LEVEL_KEYS = set(DEFAULTS.keys())
_SECTION_KEYS: dict[str, set[str]] = {
    "accounts": {"home_root", "default_shell", "useradd_bin", "userdel_bin"},
    "nginx": {"sites_available", "sites_enabled", "nginx_bin", "systemctl_bin", "service_name"},
    "php": {"versions", "default_version", "socket_dir"},
    "certbot": {"certbot_bin", "live_dir", "validity_days", "timeout", "renew_window_days"},
    "commands": {"timeout"},
}


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

    for section, allowed in _SECTION_KEYS.items():
        value = raw.get(section)
        if value is None:
            continue
        mapping = _as_dict(value, section)
        unknown = set(mapping.keys()) - allowed
        if unknown:
            joined = ", ".join(sorted(unknown))
            raise ConfigError(f"Unknown {section} configuration keys: {joined}.")

    php_map = _as_dict(raw.get("php"), "php")
    versions = [str(item) for item in _as_sequence(php_map.get("versions", []), "php.versions")]
    if not versions:
        raise ConfigError("php.versions must list at least one runtime version.")
    default_version = str(php_map.get("default_version", versions[-1]))
    if default_version not in versions:
        raise ConfigError(
            f"php.default_version '{default_version}' is not one of: {', '.join(versions)}."
        )


def _build_app_config(raw: Mapping[str, object]) -> AppConfig:
    config_file = _to_path(raw.get("config_file"))
    state_dir = _to_path(raw.get("state_dir"))
    logs_dir = _to_path(raw.get("logs_dir"))
    runtime_dir = _to_path(raw.get("runtime_dir"))
    templates_dir = _to_path(raw.get("templates_dir"))
    lock_timeout = _expect_positive_float(raw.get("lock_timeout"), "lock_timeout", default=30.0)
    conflict_timeout = _expect_non_negative_float(
        raw.get("conflict_timeout"), "conflict_timeout", default=0.0
    )
    workers = _expect_int(raw.get("workers"), "workers", default=4)
    if workers < 1:
        raise ConfigError("workers must be at least 1.")

    registry_dir_value = raw.get("registry_dir")
    registry_dir = _to_path(registry_dir_value) if registry_dir_value else state_dir / "registry"

    accounts_map = _as_dict(raw.get("accounts"), "accounts")
    accounts = AccountsConfig(
        home_root=_to_path(accounts_map.get("home_root", "/home")),
        default_shell=str(accounts_map.get("default_shell", "/bin/bash")),
        useradd_bin=str(accounts_map.get("useradd_bin", "useradd")),
        userdel_bin=str(accounts_map.get("userdel_bin", "userdel")),
    )

    nginx_map = _as_dict(raw.get("nginx"), "nginx")
    nginx = NginxConfig(
        sites_available=_to_path(nginx_map.get("sites_available", "/etc/nginx/sites-available")),
        sites_enabled=_to_path(nginx_map.get("sites_enabled", "/etc/nginx/sites-enabled")),
        nginx_bin=str(nginx_map.get("nginx_bin", "nginx")),
        systemctl_bin=str(nginx_map.get("systemctl_bin", "systemctl")),
        service_name=str(nginx_map.get("service_name", "nginx")),
    )

    php_map = _as_dict(raw.get("php"), "php")
    versions = tuple(
        str(item) for item in _as_sequence(php_map.get("versions", []), "php.versions")
    )
    php = PhpConfig(
        versions=versions,
        default_version=str(php_map.get("default_version", versions[-1])),
        socket_dir=_to_path(php_map.get("socket_dir", "/var/run/php")),
    )

    certbot_map = _as_dict(raw.get("certbot"), "certbot")
    validity_days = _expect_int(
        certbot_map.get("validity_days"), "certbot.validity_days", default=90
    )
    if validity_days <= 0:
        raise ConfigError("certbot.validity_days must be greater than zero.")
    renew_window_days = _expect_int(
        certbot_map.get("renew_window_days"), "certbot.renew_window_days", default=30
    )
    if renew_window_days < 0:
        raise ConfigError("certbot.renew_window_days must be non-negative.")
    certbot = CertbotConfig(
        certbot_bin=str(certbot_map.get("certbot_bin", "certbot")),
        live_dir=_to_path(certbot_map.get("live_dir", "/etc/letsencrypt/live")),
        validity_days=validity_days,
        timeout=_expect_positive_float(
            certbot_map.get("timeout"), "certbot.timeout", default=600.0
        ),
        renew_window_days=renew_window_days,
    )

    commands_map = _as_dict(raw.get("commands"), "commands")
    commands = CommandsConfig(
        timeout=_expect_positive_float(
            commands_map.get("timeout"), "commands.timeout", default=60.0
        ),
    )

    return AppConfig(
        config_file=config_file,
        state_dir=state_dir,
        registry_dir=registry_dir,
        logs_dir=logs_dir,
        runtime_dir=runtime_dir,
        templates_dir=templates_dir,
        lock_timeout=lock_timeout,
        conflict_timeout=conflict_timeout,
        use_sudo=_expect_bool(raw.get("use_sudo"), "use_sudo", default=False),
        workers=workers,
        accounts=accounts,
        nginx=nginx,
        php=php,
        certbot=certbot,
        commands=commands,
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
        elif isinstance(value, list):
            result[key] = list(value)
        else:
            result[key] = value
    return result


def _as_sequence(value: object, label: str) -> Sequence[object]:
    if isinstance(value, str):
        # Allow comma separated lists from environment overrides.
        return [item.strip() for item in value.split(",") if item.strip()]
    if isinstance(value, bytes) or not isinstance(value, Sequence):
        raise ConfigError(f"Expected {label} to be a sequence. Got {type(value).__name__}.")
    return value


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


def _expect_bool(value: object | None, label: str, *, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    raise ConfigError(f"Expected {label} to be a boolean. Got {value!r}.")


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
    if isinstance(value, str):
        return value
    raise ConfigError(f"Expected {key} to resolve to a string. Got {value!r}.")


def _expect_number(value: object, label: str) -> float:
    if isinstance(value, bool):
        raise ConfigError(f"Expected {label} to be a number. Got boolean {value!r}.")
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError as exc:
            raise ConfigError(f"Invalid number for {label}: {value!r}.") from exc
    raise ConfigError(f"Expected {label} to be numeric. Got {type(value).__name__}.")


def _expect_positive_float(
    value: object | None,
    label: str,
    *,
    default: float,
) -> float:
    if value is None:
        return float(default)
    numeric = _expect_number(value, label)
    if numeric <= 0:
        raise ConfigError(f"{label} must be greater than zero. Got {numeric}.")
    return numeric


def _expect_non_negative_float(
    value: object | None,
    label: str,
    *,
    default: float,
) -> float:
    if value is None:
        return float(default)
    numeric = _expect_number(value, label)
    if numeric < 0:
        raise ConfigError(f"{label} must not be negative. Got {numeric}.")
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
    "AccountsConfig",
    "AppConfig",
    "CertbotConfig",
    "CommandsConfig",
    "ConfigError",
    "NginxConfig",
    "PhpConfig",
    "load_config",
]
