"""OS account inspection and management."""
from __future__ import annotations

import grp
import pwd
from dataclasses import dataclass
from pathlib import Path

from ..executor import CommandResult, Executor


@dataclass(slots=True)
class AccountSpec:
    """Desired attributes for a tenant login account."""

    name: str
    home: Path
    shell: str = "/bin/bash"


@dataclass(slots=True)
class AccountStatus:
    """Current state of an account on the host."""

    exists: bool
    uid: int | None = None
    gid: int | None = None
    home: Path | None = None
    shell: str | None = None
    primary_group: str | None = None


def inspect_account(name: str) -> AccountStatus:
    """Return the current status for *name* from the passwd/group databases."""
    try:
        entry = pwd.getpwnam(name)
    except KeyError:
        return AccountStatus(exists=False)
    try:
        primary_group: str | None = grp.getgrgid(entry.pw_gid).gr_name
    except KeyError:
        primary_group = None
    return AccountStatus(
        exists=True,
        uid=entry.pw_uid,
        gid=entry.pw_gid,
        home=Path(entry.pw_dir),
        shell=entry.pw_shell,
        primary_group=primary_group,
    )


@dataclass(slots=True)
class AccountsProvider:
    """Create and remove accounts with ``useradd``/``userdel``."""

    executor: Executor
    useradd_bin: str = "useradd"
    userdel_bin: str = "userdel"
    timeout: float | None = None

    def exists(self, name: str) -> bool:
        """Return True when the OS already knows an account called *name*."""
        return inspect_account(name).exists

    def create_command(self, spec: AccountSpec) -> list[str]:
        """Return the ``useradd`` argument vector for *spec*."""
        return ["-m", "-d", str(spec.home), "-s", spec.shell, spec.name]

    def create(self, spec: AccountSpec) -> CommandResult:
        """Create the account and its home directory."""
        return self.executor.run(self.useradd_bin, self.create_command(spec), timeout=self.timeout)

    def remove(self, name: str) -> CommandResult:
        """Remove the account together with its home directory."""
        return self.executor.run(self.userdel_bin, ["-r", name], timeout=self.timeout)


__all__ = ["AccountSpec", "AccountStatus", "AccountsProvider", "inspect_account"]
