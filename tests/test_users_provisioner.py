"""Tests for system user provisioning."""
from __future__ import annotations

from pathlib import Path

import pytest

from hostctl.errors import (
    ExternalCommandError,
    PersistenceError,
    ResourceNotFound,
    ValidationError,
)
from hostctl.provisioning import UserChanges, UserSpec, VhostSpec
from hostctl.repository import YamlRepository
from hostctl.runtime import RuntimeContext

from conftest import FakeHost


def test_create_user(runtime: RuntimeContext, host: FakeHost) -> None:
    """The account, its home and the registry record are created together."""
    user = runtime.users.create(UserSpec(name="alice", description="Blog", created_by="ops"))

    home = runtime.config.accounts.home_root / "alice"
    assert user.home_directory == home
    assert user.shell == "/bin/bash"
    assert home.is_dir()
    assert (home.stat().st_mode & 0o777) == 0o755
    assert host.owners[home] == "alice"
    assert ("useradd", "-m", "-d", str(home), "-s", "/bin/bash", "alice") in host.calls
    stored = runtime.registry.users.find("alice")
    assert stored is not None
    assert stored.description == "Blog"
    assert stored.created_by == "ops"
    assert stored.created_at is not None


def test_invalid_name_makes_no_os_call(runtime: RuntimeContext, host: FakeHost) -> None:
    """Validation happens before anything touches the host."""
    with pytest.raises(ValidationError):
        runtime.users.create(UserSpec(name="bad name"))

    assert host.calls == []


def test_duplicate_user_is_rejected(runtime: RuntimeContext, host: FakeHost) -> None:
    """A second create for the same name fails without calling useradd again."""
    runtime.users.create(UserSpec(name="alice"))

    with pytest.raises(ValidationError, match="already exists"):
        runtime.users.create(UserSpec(name="alice"))

    assert len(host.commands("useradd")) == 1


def test_unmanaged_os_account_is_rejected(
    runtime: RuntimeContext,
    host: FakeHost,
    tmp_path: Path,
) -> None:
    """An account hostctl does not know about is never adopted."""
    host.run("useradd", ["-m", "-d", str(tmp_path / "eve"), "-s", "/bin/sh", "eve"])

    with pytest.raises(ValidationError, match="not managed"):
        runtime.users.create(UserSpec(name="eve"))

    assert runtime.registry.users.find("eve") is None


def test_useradd_failure_leaves_nothing(runtime: RuntimeContext, host: FakeHost) -> None:
    """A failed ``useradd`` surfaces its output and records nothing."""
    host.fail("useradd", stderr="useradd: cannot lock /etc/passwd")

    with pytest.raises(ExternalCommandError, match="cannot lock"):
        runtime.users.create(UserSpec(name="alice"))

    assert runtime.registry.users.list() == []


def test_registry_failure_removes_account_again(
    runtime: RuntimeContext,
    host: FakeHost,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """A failed registry write triggers ``userdel -r`` and reports the compensation."""

    def broken_create(self: YamlRepository, entity: object) -> object:
        raise PersistenceError("disk full")

    monkeypatch.setattr(YamlRepository, "create", broken_create)

    with pytest.raises(PersistenceError) as excinfo:
        runtime.users.create(UserSpec(name="alice"))

    assert excinfo.value.compensated is True
    assert excinfo.value.compensation_error is None
    assert "alice" not in host.accounts
    assert not (runtime.config.accounts.home_root / "alice").exists()
    assert host.calls[-1] == ("userdel", "-r", "alice")


def test_failed_compensation_is_reported(
    runtime: RuntimeContext,
    host: FakeHost,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """When ``userdel`` fails too, the error says the account was left behind."""

    def broken_create(self: YamlRepository, entity: object) -> object:
        raise PersistenceError("disk full")

    monkeypatch.setattr(YamlRepository, "create", broken_create)
    host.fail("userdel", stderr="userdel: user alice is currently used by process 1")

    with pytest.raises(PersistenceError) as excinfo:
        runtime.users.create(UserSpec(name="alice"))

    error = excinfo.value
    assert error.compensated is False
    assert error.compensation_error is not None
    assert "currently used" in error.compensation_error
    assert error.to_dict()["compensated"] is False
    assert error.rollback_errors


def test_update_changes_only_mutable_fields(runtime: RuntimeContext) -> None:
    """Description and access flags change; an empty description clears it."""
    runtime.users.create(UserSpec(name="alice", description="old"))

    updated = runtime.users.update("alice", UserChanges(ssh_enabled=True))
    assert updated.ssh_enabled is True
    assert updated.description == "old"

    cleared = runtime.users.update("alice", UserChanges(description=""))
    assert cleared.description is None
    assert runtime.registry.users.find("alice").ssh_enabled is True  # type: ignore[union-attr]


def test_update_missing_user(runtime: RuntimeContext) -> None:
    """Updating an unknown user is a not-found error."""
    with pytest.raises(ResourceNotFound):
        runtime.users.update("ghost", UserChanges(ftp_enabled=True))


def test_delete_cascades_virtual_hosts(runtime: RuntimeContext, host: FakeHost) -> None:
    """Deleting a user removes its hosts first, then the account and record."""
    runtime.users.create(UserSpec(name="alice"))
    runtime.vhosts.create(VhostSpec(domain="a.test", system_user="alice"))
    runtime.vhosts.create(VhostSpec(domain="b.test", system_user="alice"))

    user, removed = runtime.users.delete("alice")

    assert user.name == "alice"
    assert sorted(vhost.domain for vhost in removed) == ["a.test", "b.test"]
    assert runtime.registry.vhosts.list() == []
    assert runtime.registry.users.find("alice") is None
    assert not runtime.nginx_provider.site_exists("a.test")
    assert "alice" not in host.accounts
    assert not Path(user.home_directory).exists()


def test_delete_skips_userdel_when_account_absent(
    runtime: RuntimeContext,
    host: FakeHost,
) -> None:
    """A record whose OS account vanished is still removable."""
    runtime.users.create(UserSpec(name="alice"))
    del host.accounts["alice"]

    runtime.users.delete("alice")

    assert host.commands("userdel") == []
    assert runtime.registry.users.find("alice") is None
