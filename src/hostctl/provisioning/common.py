"""Helpers shared by the provisioners."""
from __future__ import annotations

from collections.abc import Callable, Iterator
from contextlib import ExitStack, contextmanager
from datetime import UTC, datetime

from ..errors import ProvisioningError, ResourceConflict
from ..locking import LockHandle, LockManager, LockTimeoutError
from ..logging import OperationScope


def utcnow() -> datetime:
    """Return the current time as an aware UTC timestamp."""
    return datetime.now(UTC)


def record_step(
    op: OperationScope | None,
    name: str,
    *,
    status: str = "success",
    detail: str | None = None,
) -> None:
    """Add a step to *op* when an operation scope is active."""
    if op is not None:
        op.add_step(name, status=status, detail=detail)


@contextmanager
def claim(
    locks: LockManager,
    kind: str,
    identifier: str,
    *,
    timeout: float,
    op: OperationScope | None = None,
) -> Iterator[LockHandle]:
    """Hold the ``(kind, identifier)`` lock or fail with :class:`ResourceConflict`."""
    with ExitStack() as stack:
        try:
            handle = stack.enter_context(locks.resource_lock(kind, identifier, timeout=timeout))
        except LockTimeoutError as exc:
            raise ResourceConflict(kind, identifier) from exc
        if op is not None:
            op.set_lock_wait_ms(handle.wait_ms)
        record_step(op, f"lock.{kind}", detail=identifier)
        yield handle


@contextmanager
def webserver(
    locks: LockManager,
    *,
    timeout: float,
    op: OperationScope | None = None,
) -> Iterator[LockHandle]:
    """Hold the global web-server lock for a write, test and reload sequence."""
    with ExitStack() as stack:
        try:
            handle = stack.enter_context(locks.webserver_lock(timeout=timeout))
        except LockTimeoutError as exc:
            raise ResourceConflict("webserver", "nginx") from exc
        if op is not None:
            op.set_lock_wait_ms(handle.wait_ms)
        yield handle


def attempt(
    step: str,
    action: Callable[[], object],
    errors: list[str],
    op: OperationScope | None = None,
) -> bool:
    """Run a compensating *action*, collecting its failure instead of raising."""
    try:
        action()
    except (ProvisioningError, OSError) as exc:
        errors.append(f"{step}: {exc}")
        record_step(op, f"rollback.{step}", status="error", detail=str(exc))
        return False
    record_step(op, f"rollback.{step}")
    return True


__all__ = ["attempt", "claim", "record_step", "utcnow", "webserver"]
