"""Entities persisted in the resource registry."""
from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path


class VhostStatus(str, Enum):
    """Lifecycle status of a virtual host."""

    PENDING = "pending"
    ACTIVE = "active"
    INACTIVE = "inactive"
    MAINTENANCE = "maintenance"

    @classmethod
    def user_selectable(cls) -> tuple[VhostStatus, ...]:
        """Statuses a caller may request; ``pending`` is internal."""
        return (cls.ACTIVE, cls.INACTIVE, cls.MAINTENANCE)

    @property
    def serves_traffic(self) -> bool:
        """Return ``True`` when the site definition should be enabled."""
        return self in (VhostStatus.ACTIVE, VhostStatus.MAINTENANCE)


@dataclass(slots=True)
class SystemUser:
    """An OS account managed by hostctl."""

    name: str
    home_directory: Path
    shell: str = "/bin/bash"
    ssh_enabled: bool = False
    ftp_enabled: bool = False
    description: str | None = None
    created_by: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def to_dict(self) -> dict[str, object]:
        """Return the registry representation."""
        return {
            "name": self.name,
            "home_directory": str(self.home_directory),
            "shell": self.shell,
            "ssh_enabled": self.ssh_enabled,
            "ftp_enabled": self.ftp_enabled,
            "description": self.description,
            "created_by": self.created_by,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> SystemUser:
        """Build a user from its registry representation."""
        return cls(
            name=str(data["name"]),
            home_directory=Path(str(data["home_directory"])),
            shell=str(data.get("shell") or "/bin/bash"),
            ssh_enabled=bool(data.get("ssh_enabled", False)),
            ftp_enabled=bool(data.get("ftp_enabled", False)),
            description=_opt_str(data.get("description")),
            created_by=_opt_str(data.get("created_by")),
            created_at=_parse(data.get("created_at")),
            updated_at=_parse(data.get("updated_at")),
        )


@dataclass(slots=True)
class VirtualHost:
    """A served site bound to a domain, document root and owning account."""

    domain: str
    document_root: Path
    system_user: str
    php_version: str = "8.3"
    ssl_enabled: bool = False
    status: VhostStatus = VhostStatus.ACTIVE
    nginx_config: str | None = None
    custom_config: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def to_dict(self) -> dict[str, object]:
        """Return the registry representation."""
        return {
            "domain": self.domain,
            "document_root": str(self.document_root),
            "system_user": self.system_user,
            "php_version": self.php_version,
            "ssl_enabled": self.ssl_enabled,
            "status": self.status.value,
            "nginx_config": self.nginx_config,
            "custom_config": self.custom_config,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> VirtualHost:
        """Build a virtual host from its registry representation."""
        return cls(
            domain=str(data["domain"]),
            document_root=Path(str(data["document_root"])),
            system_user=str(data["system_user"]),
            php_version=str(data.get("php_version") or "8.3"),
            ssl_enabled=bool(data.get("ssl_enabled", False)),
            status=VhostStatus(str(data.get("status") or VhostStatus.ACTIVE.value)),
            nginx_config=_opt_str(data.get("nginx_config")),
            custom_config=_opt_str(data.get("custom_config")),
            created_at=_parse(data.get("created_at")),
            updated_at=_parse(data.get("updated_at")),
        )


@dataclass(slots=True)
class Certificate:
    """TLS material recorded for exactly one virtual host."""

    domain: str
    cert_path: Path
    key_path: Path
    chain_path: Path | None
    expires_at: datetime
    auto_renew: bool = True
    issued_at: datetime | None = None
    contact: str | None = None
    last_renewed_at: datetime | None = None
    renewal_log: str | None = None

    def to_dict(self) -> dict[str, object]:
        """Return the registry representation."""
        return {
            "domain": self.domain,
            "cert_path": str(self.cert_path),
            "key_path": str(self.key_path),
            "chain_path": str(self.chain_path) if self.chain_path is not None else None,
            "expires_at": _iso(self.expires_at),
            "auto_renew": self.auto_renew,
            "issued_at": _iso(self.issued_at),
            "contact": self.contact,
            "last_renewed_at": _iso(self.last_renewed_at),
            "renewal_log": self.renewal_log,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> Certificate:
        """Build a certificate from its registry representation."""
        expires_at = _parse(data.get("expires_at"))
        if expires_at is None:
            raise ValueError(f"Certificate for {data.get('domain')} has no expires_at.")
        chain = data.get("chain_path")
        return cls(
            domain=str(data["domain"]),
            cert_path=Path(str(data["cert_path"])),
            key_path=Path(str(data["key_path"])),
            chain_path=Path(str(chain)) if chain else None,
            expires_at=expires_at,
            auto_renew=bool(data.get("auto_renew", True)),
            issued_at=_parse(data.get("issued_at")),
            contact=_opt_str(data.get("contact")),
            last_renewed_at=_parse(data.get("last_renewed_at")),
            renewal_log=_opt_str(data.get("renewal_log")),
        )


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _parse(value: object) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


def _opt_str(value: object) -> str | None:
    if value is None:
        return None
    return str(value)


__all__ = ["Certificate", "SystemUser", "VhostStatus", "VirtualHost"]
