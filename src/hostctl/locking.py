"""File-based locks serialising provisioning work.

Two kinds of locks exist:

* per-resource locks keyed by ``(kind, identifier)`` held for the whole
  provisioning sequence of one user or virtual host;
* a single web-server lock held while site definitions are written,
  self-tested and reloaded, so that test/reload pairs from unrelated
  requests never interleave.

Locks use ``fcntl.flock`` on files below ``<runtime_dir>/locks``. ``flock``
locks belong to the open file description, so two threads of the same
process contend exactly like two processes would.
"""
from __future__ import annotations

import fcntl
import json
import os
import re
import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path

_POLL_INTERVAL = 0.05
_UNSAFE = re.compile(r"[^A-Za-z0-9._-]")


class LockTimeoutError(RuntimeError):
    """Raised when a lock cannot be acquired within the timeout."""

    def __init__(self, path: Path, timeout: float) -> None:
        """Describe which lock timed out."""
        super().__init__(f"Timed out after {timeout:g}s waiting for lock {path}")
        self.path = path
        self.timeout = timeout


@dataclass(frozen=True, slots=True)
class LockHandle:
    """Information about an acquired lock."""

    path: Path
    wait_ms: int


class LockManager:
    """Hand out resource and web-server locks."""

    def __init__(self, runtime_dir: Path, default_timeout: float = 30.0) -> None:
        """Store the lock root and the default wait timeout."""
        self._root = Path(runtime_dir).expanduser() / "locks"
        self._default_timeout = default_timeout

    @property
    def root(self) -> Path:
        """Return the directory holding lock files."""
        return self._root

    def resource_path(self, kind: str, identifier: str) -> Path:
        """Return the lock file path for ``(kind, identifier)``."""
        return self._root / _safe(kind) / f"{_safe(identifier.lower())}.lock"

    def webserver_path(self) -> Path:
        """Return the lock file path guarding web-server reloads."""
        return self._root / "nginx.lock"

    @contextmanager
    def resource_lock(
        self,
        kind: str,
        identifier: str,
        *,
        timeout: float | None = None,
    ) -> Iterator[LockHandle]:
        """Hold the lock for ``(kind, identifier)``.

        A *timeout* of ``0`` makes a single attempt.
        """
        with self._acquire(self.resource_path(kind, identifier), timeout) as handle:
            yield handle

    @contextmanager
    def webserver_lock(self, *, timeout: float | None = None) -> Iterator[LockHandle]:
        """Hold the global web-server lock."""
        with self._acquire(self.webserver_path(), timeout) as handle:
            yield handle

    # ------------------------------------------------------------------
    @contextmanager
    def _acquire(self, path: Path, timeout: float | None) -> Iterator[LockHandle]:
        limit = self._default_timeout if timeout is None else timeout
        path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(path, os.O_RDWR | os.O_CREAT, 0o640)
        started = time.monotonic()
        try:
            while True:
                try:
                    fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
                    break
                except BlockingIOError:
                    if time.monotonic() - started >= limit:
                        raise LockTimeoutError(path, limit) from None
                    time.sleep(_POLL_INTERVAL)
            wait_ms = int((time.monotonic() - started) * 1000)
            _write_metadata(fd, path)
            try:
                yield LockHandle(path=path, wait_ms=wait_ms)
            finally:
                fcntl.flock(fd, fcntl.LOCK_UN)
        finally:
            os.close(fd)


def _write_metadata(fd: int, path: Path) -> None:
    payload = {
        "pid": os.getpid(),
        "path": str(path),
        "acquired_at": datetime.now(UTC).isoformat(),
    }
    data = json.dumps(payload).encode("utf-8")
    os.ftruncate(fd, 0)
    os.pwrite(fd, data, 0)


def _safe(value: str) -> str:
    cleaned = _UNSAFE.sub("-", value.strip())
    return cleaned or "_"


__all__ = ["LockHandle", "LockManager", "LockTimeoutError"]
