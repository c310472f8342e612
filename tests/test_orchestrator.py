"""Tests for request dispatch, operation logging and concurrent submission."""
from __future__ import annotations

import json

import pytest

from hostctl.errors import ConfigTestFailure, ResourceConflict, ValidationError
from hostctl.provisioning import ProvisioningRequest
from hostctl.runtime import RuntimeContext

from conftest import FakeHost


def _records(runtime: RuntimeContext) -> list[dict[str, object]]:
    path = runtime.logger.path
    if not path.exists():
        return []
    return [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]


def _create_user(runtime: RuntimeContext, name: str) -> None:
    runtime.orchestrator.handle(
        ProvisioningRequest(operation="create", entity_type="user", payload={"name": name})
    )


def test_user_create_returns_entity(runtime: RuntimeContext) -> None:
    """A create request returns the stored user and its (empty) host list."""
    result = runtime.orchestrator.handle(
        ProvisioningRequest(
            operation="create",
            entity_type="user",
            payload={"name": "alice", "ssh_enabled": "yes"},
        )
    )

    entity = result.entity
    assert isinstance(entity, dict)
    assert entity["name"] == "alice"
    assert entity["ssh_enabled"] is True
    assert result.related == {"vhosts": []}
    assert result.op_id is not None
    assert result.to_dict()["message"] == "System user 'alice' created."


def test_unknown_operation_is_rejected(runtime: RuntimeContext) -> None:
    """Only the registered operation/entity pairs are dispatched."""
    with pytest.raises(ValidationError, match="Unsupported operation"):
        runtime.orchestrator.handle(ProvisioningRequest(operation="rename", entity_type="user"))


@pytest.mark.parametrize("field", ["shell", "home_directory"])
def test_user_update_rejects_immutable_fields(runtime: RuntimeContext, field: str) -> None:
    """Shell and home directory are fixed at creation."""
    _create_user(runtime, "alice")

    with pytest.raises(ValidationError, match="cannot be changed"):
        runtime.orchestrator.handle(
            ProvisioningRequest(
                operation="update",
                entity_type="user",
                entity_id="alice",
                payload={field: "/bin/zsh"},
            )
        )


def test_boolean_payload_values_are_validated(runtime: RuntimeContext) -> None:
    """Unrecognised flag values are a validation error."""
    with pytest.raises(ValidationError, match="must be a boolean"):
        runtime.orchestrator.handle(
            ProvisioningRequest(
                operation="create",
                entity_type="user",
                payload={"name": "alice", "ftp_enabled": "maybe"},
            )
        )


def test_mutations_are_logged(runtime: RuntimeContext) -> None:
    """Each mutating request appends one record with its steps and outcome."""
    _create_user(runtime, "alice")

    records = _records(runtime)
    assert len(records) == 1
    record = records[0]
    result = record["result"]
    steps = record["steps"]
    assert record["command"] == "user.create"
    assert isinstance(result, dict) and result["status"] == "success"
    assert isinstance(steps, list)
    assert [step["name"] for step in steps] == [
        "lock.user",
        "accounts.create",
        "home.permissions",
        "registry.create",
    ]


def test_failures_are_logged_with_exit_code(runtime: RuntimeContext, host: FakeHost) -> None:
    """A failing request is recorded as an error carrying its exit code."""
    _create_user(runtime, "alice")
    host.fail("nginx", "-t", stderr="nginx: [emerg] bad")

    with pytest.raises(ConfigTestFailure):
        runtime.orchestrator.handle(
            ProvisioningRequest(
                operation="create",
                entity_type="vhost",
                payload={"domain": "a.test", "system_user": "alice"},
            )
        )

    result = _records(runtime)[-1]["result"]
    assert isinstance(result, dict)
    assert result["status"] == "error"
    assert result["rc"] == 4
    assert result["context"]["error"] == "config_test_failure"


def test_read_operations_are_not_logged(runtime: RuntimeContext) -> None:
    """Lists and shows leave the operations log untouched."""
    result = runtime.orchestrator.handle(ProvisioningRequest(operation="list", entity_type="user"))

    assert result.entity == []
    assert _records(runtime) == []


def test_user_delete_reports_removed_hosts(runtime: RuntimeContext) -> None:
    """Deleting a user returns the hosts removed alongside it."""
    _create_user(runtime, "alice")
    runtime.orchestrator.handle(
        ProvisioningRequest(
            operation="create",
            entity_type="vhost",
            payload={"domain": "a.test", "system_user": "alice"},
        )
    )

    result = runtime.orchestrator.handle(
        ProvisioningRequest(operation="delete", entity_type="user", entity_id="alice")
    )

    removed = result.related["vhosts"]
    assert isinstance(removed, list)
    assert [item["domain"] for item in removed] == ["a.test"]


def test_vhost_show_includes_owner_and_site(runtime: RuntimeContext) -> None:
    """Showing a host returns its owner record and on-disk diagnostics."""
    _create_user(runtime, "alice")
    runtime.orchestrator.handle(
        ProvisioningRequest(
            operation="create",
            entity_type="vhost",
            payload={"domain": "a.test", "system_user": "alice"},
        )
    )

    result = runtime.orchestrator.handle(
        ProvisioningRequest(operation="show", entity_type="vhost", entity_id="a.test")
    )

    owner = result.related["owner"]
    site = result.related["site"]
    assert isinstance(owner, dict) and owner["name"] == "alice"
    assert isinstance(site, dict) and site["enabled"] is True
    assert result.related["certificate"] is None


def test_concurrent_create_of_same_domain_conflicts(
    runtime: RuntimeContext,
    host: FakeHost,
) -> None:
    """While one request provisions a domain, a second one is refused at once."""
    _create_user(runtime, "alice")
    request = ProvisioningRequest(
        operation="create",
        entity_type="vhost",
        payload={"domain": "a.test", "system_user": "alice"},
    )
    entered, release = host.block("systemctl")

    first = runtime.orchestrator.submit(request)
    assert entered.wait(5)
    second = runtime.orchestrator.submit(request)
    try:
        with pytest.raises(ResourceConflict):
            second.result(timeout=5)
    finally:
        release.set()

    assert first.result(timeout=5).entity is not None
    assert len(runtime.registry.vhosts.list()) == 1


def test_concurrent_create_of_same_account_conflicts(
    runtime: RuntimeContext,
    host: FakeHost,
) -> None:
    """While one request creates an account, a second one for that name is refused."""
    request = ProvisioningRequest(
        operation="create",
        entity_type="user",
        payload={"name": "bob"},
    )
    entered, release = host.block("useradd")

    first = runtime.orchestrator.submit(request)
    assert entered.wait(5)
    second = runtime.orchestrator.submit(request)
    try:
        with pytest.raises(ResourceConflict):
            second.result(timeout=5)
    finally:
        release.set()

    assert first.result(timeout=5).entity is not None
    assert len(host.commands("useradd")) == 1
    assert [user.name for user in runtime.registry.users.list()] == ["bob"]


def test_reloads_from_unrelated_requests_never_interleave(
    runtime: RuntimeContext,
    host: FakeHost,
) -> None:
    """Self-test and reload pairs run back to back under the web-server lock."""
    _create_user(runtime, "alice")
    _create_user(runtime, "bob")
    entered, release = host.block("systemctl")

    first = runtime.orchestrator.submit(
        ProvisioningRequest(
            operation="create",
            entity_type="vhost",
            payload={"domain": "a.test", "system_user": "alice"},
        )
    )
    assert entered.wait(5)
    second = runtime.orchestrator.submit(
        ProvisioningRequest(
            operation="create",
            entity_type="vhost",
            payload={"domain": "b.test", "system_user": "bob"},
        )
    )
    release.set()
    first.result(timeout=5)
    second.result(timeout=5)

    assert host.commands("nginx", "systemctl") == [
        ("nginx", "-t"),
        ("systemctl", "reload", "nginx"),
        ("nginx", "-t"),
        ("systemctl", "reload", "nginx"),
    ]
