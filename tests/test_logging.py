"""Tests for the structured operations log."""
from __future__ import annotations

import json
from pathlib import Path

import pytest

from hostctl.logging import StructuredLogger


def _records(logger: StructuredLogger) -> list[dict[str, object]]:
    lines = logger.path.read_text(encoding="utf-8").splitlines()
    return [json.loads(line) for line in lines]


def test_operation_is_appended_as_json_line(tmp_path: Path) -> None:
    """Each operation becomes one JSON document with steps and result."""
    logger = StructuredLogger(tmp_path / "logs")

    with logger.operation(
        "vhost.create",
        args={"domain": "example.com"},
        target={"entity_type": "vhost", "entity_id": "example.com"},
    ) as op:
        op.add_step("nginx.test", detail="ok")
        op.set_lock_wait_ms(12)
        op.set_lock_wait_ms(-5)
        op.success("live", context={"entity_id": "example.com"})

    (record,) = _records(logger)
    assert record["command"] == "vhost.create"
    assert record["op_id"] == op.op_id
    assert record["args"] == {"domain": "example.com"}
    assert record["target"] == {"entity_type": "vhost", "entity_id": "example.com"}
    assert record["steps"] == [{"name": "nginx.test", "status": "success", "detail": "ok"}]
    assert record["lock_wait_ms"] == 12
    assert record["result"]["status"] == "success"
    assert (logger.path.stat().st_mode & 0o777) == 0o640


def test_exception_is_recorded_and_propagates(tmp_path: Path) -> None:
    """A scope left by an exception is logged as an error."""
    logger = StructuredLogger(tmp_path / "logs")

    with pytest.raises(RuntimeError, match="kaboom"):
        with logger.operation("user.create"):
            raise RuntimeError("kaboom")

    (record,) = _records(logger)
    assert record["result"]["status"] == "error"
    assert record["result"]["errors"] == ["kaboom"]


def test_scope_without_outcome_defaults_to_success(tmp_path: Path) -> None:
    """Leaving a scope normally without an outcome records success."""
    logger = StructuredLogger(tmp_path / "logs")

    with logger.operation("webserver.reload"):
        pass

    (record,) = _records(logger)
    assert record["result"] == {"status": "success", "message": "Completed."}


def test_operation_scope_warning_sanitises_context(tmp_path: Path) -> None:
    """Warnings should be recorded with JSON-safe context values."""
    logger = StructuredLogger(tmp_path / "logs")

    class Custom:
        def __str__(self) -> str:
            return "<custom>"

    with logger.operation("certificate.renew_due", args={"path": Path("foo")}) as op:
        op.warning(
            "warned",
            warnings=("a.test: failed",),
            changed=1,
            context={"path": Path("/var/lib"), "obj": Custom()},
        )

    (record,) = _records(logger)
    result = record["result"]
    assert record["args"] == {"path": "foo"}
    assert result["status"] == "warning"
    assert result["warnings"] == ["a.test: failed"]
    assert result["changed"] == 1
    assert result["context"] == {"path": "/var/lib", "obj": "<custom>"}


def test_operation_scope_error_keeps_rc(tmp_path: Path) -> None:
    """Errors default their error list to the message and keep the exit code."""
    logger = StructuredLogger(tmp_path / "logs")

    with logger.operation("vhost.update") as op:
        op.error("boom", rc=4, context={"value": {1, 2}})

    (record,) = _records(logger)
    result = record["result"]
    assert result["status"] == "error"
    assert result["errors"] == ["boom"]
    assert result["rc"] == 4
    assert result["context"] == {"value": "{1, 2}"}


def test_structured_logger_disables_when_directory_unavailable(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Logger gracefully disables itself when log directory cannot be created."""
    log_dir = tmp_path / "logs"

    original_mkdir = Path.mkdir

    def fail_mkdir(self: Path, *args: object, **kwargs: object) -> None:
        if self == log_dir:
            raise PermissionError("no access")
        original_mkdir(self, *args, **kwargs)

    monkeypatch.setattr(Path, "mkdir", fail_mkdir)

    logger = StructuredLogger(log_dir)
    assert logger._enabled is False  # type: ignore[attr-defined]

    with logger.operation("demo", args={"foo": "bar"}) as op:
        op.success("done", changed=0)

    assert not logger.path.exists()


def test_structured_logger_disables_after_write_failure(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Write failures mark the logger disabled so subsequent writes are skipped."""
    logger = StructuredLogger(tmp_path / "logs")
    operations_path = logger.path

    original_open = Path.open

    def fail_open(self: Path, *args: object, **kwargs: object) -> object:
        if self == operations_path:
            raise OSError("disk full")
        return original_open(self, *args, **kwargs)

    monkeypatch.setattr(Path, "open", fail_open)

    with logger.operation("demo") as op:
        op.success("done")

    assert logger._enabled is False  # type: ignore[attr-defined]

    with logger.operation("demo-2") as op:
        op.success("done")
