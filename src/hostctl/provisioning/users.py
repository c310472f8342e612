"""OS account provisioning for hosting tenants."""
from __future__ import annotations

from dataclasses import dataclass, replace
from pathlib import Path

from ..errors import PersistenceError, ProvisioningError, ResourceNotFound, ValidationError
from ..locking import LockManager
from ..logging import OperationScope
from ..models import SystemUser, VirtualHost
from ..providers import AccountSpec, AccountsProvider, FileOperations
from ..repository import ResourceRegistry
from ..validation import validate_username
from .common import attempt, claim, record_step, utcnow
from .vhosts import VirtualHostProvisioner


@dataclass(slots=True)
class UserSpec:
    """Inputs for a new tenant account."""

    name: str
    shell: str | None = None
    ssh_enabled: bool = False
    ftp_enabled: bool = False
    description: str | None = None
    created_by: str | None = None


@dataclass(slots=True)
class UserChanges:
    """Non-identity fields that may change after creation."""

    description: str | None = None
    ssh_enabled: bool | None = None
    ftp_enabled: bool | None = None


class SystemUserProvisioner:
    """Create, update and remove OS accounts and their registry records."""

    def __init__(
        self,
        *,
        registry: ResourceRegistry,
        accounts: AccountsProvider,
        files: FileOperations,
        vhosts: VirtualHostProvisioner,
        locks: LockManager,
        home_root: Path = Path("/home"),
        default_shell: str = "/bin/bash",
        conflict_timeout: float = 0.0,
    ) -> None:
        """Wire the provisioner to its collaborators."""
        self._registry = registry
        self._accounts = accounts
        self._files = files
        self._vhosts = vhosts
        self._locks = locks
        self._home_root = Path(home_root)
        self._default_shell = default_shell
        self._conflict_timeout = conflict_timeout

    def home_for(self, name: str) -> Path:
        """Return the derived home directory for *name*."""
        return self._home_root / name

    def create(self, spec: UserSpec, *, op: OperationScope | None = None) -> SystemUser:
        """Create the OS account, prepare its home and record it.

        When the registry write fails after ``useradd`` succeeded the account
        is removed again; the resulting :class:`PersistenceError` reports
        whether that compensation worked.
        """
        name = validate_username(spec.name)
        home = self.home_for(name)
        shell = spec.shell or self._default_shell

        with claim(self._locks, "user", name, timeout=self._conflict_timeout, op=op):
            if self._registry.users.exists_by_unique_key(name):
                raise ValidationError(f"System user '{name}' already exists.")
            if self._accounts.exists(name):
                raise ValidationError(
                    f"OS account '{name}' already exists but is not managed by hostctl."
                )

            result = self._accounts.create(AccountSpec(name=name, home=home, shell=shell))
            record_step(op, "accounts.create", detail=result.output or name)

            now = utcnow()
            user = SystemUser(
                name=name,
                home_directory=home,
                shell=shell,
                ssh_enabled=spec.ssh_enabled,
                ftp_enabled=spec.ftp_enabled,
                description=spec.description,
                created_by=spec.created_by,
                created_at=now,
                updated_at=now,
            )
            try:
                self._files.chown(home, name)
                self._files.chmod(home, 0o755)
                record_step(op, "home.permissions", detail=f"{home} {name}:{name} 755")
                self._registry.users.create(user)
                record_step(op, "registry.create", detail=name)
            except ProvisioningError as exc:
                errors: list[str] = []
                compensated = attempt(
                    "accounts.remove",
                    lambda: self._accounts.remove(name),
                    errors,
                    op,
                )
                if isinstance(exc, PersistenceError):
                    exc.compensated = compensated
                    exc.compensation_error = errors[0] if errors else None
                exc.add_rollback_errors(errors)
                raise
            return user

    def update(
        self,
        name: str,
        changes: UserChanges,
        *,
        op: OperationScope | None = None,
    ) -> SystemUser:
        """Change description or access flags; no OS action is involved."""
        name = validate_username(name)
        with claim(self._locks, "user", name, timeout=self._conflict_timeout, op=op):
            current = self._registry.users.find(name)
            if current is None:
                raise ResourceNotFound(f"System user '{name}' not found.")
            updated = replace(current, updated_at=utcnow())
            if changes.description is not None:
                updated.description = changes.description or None
            if changes.ssh_enabled is not None:
                updated.ssh_enabled = changes.ssh_enabled
            if changes.ftp_enabled is not None:
                updated.ftp_enabled = changes.ftp_enabled
            self._registry.users.update(updated)
            record_step(op, "registry.update", detail=name)
            return updated

    def delete(
        self,
        name: str,
        *,
        op: OperationScope | None = None,
    ) -> tuple[SystemUser, list[VirtualHost]]:
        """Remove the user's virtual hosts, the OS account and the record."""
        name = validate_username(name)
        with claim(self._locks, "user", name, timeout=self._conflict_timeout, op=op):
            current = self._registry.users.find(name)
            if current is None:
                raise ResourceNotFound(f"System user '{name}' not found.")

            removed: list[VirtualHost] = []
            for vhost in self._registry.vhosts_for_user(name):
                removed.append(self._vhosts.delete(vhost.domain, op=op))

            if self._accounts.exists(name):
                result = self._accounts.remove(name)
                record_step(op, "accounts.remove", detail=result.output or name)
            else:
                record_step(op, "accounts.remove", status="skipped", detail="account absent")

            self._registry.users.delete(name)
            record_step(op, "registry.delete", detail=name)
            return current, removed


__all__ = ["SystemUserProvisioner", "UserChanges", "UserSpec"]
