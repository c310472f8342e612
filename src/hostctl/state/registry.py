"""Helpers for interacting with the hostctl state registry.

The registry directory (``/var/lib/hostctl/registry`` by default) stores YAML
artifacts such as ``system_users.yml`` and ``vhosts.yml``. Writes are atomic
(temporary file plus ``os.replace``) and read-modify-write cycles run inside
:meth:`StateRegistry.transaction` so concurrent requests never lose updates.
"""
from __future__ import annotations

import fcntl
import os
import tempfile
import threading
from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from copy import deepcopy
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

try:  # PyYAML is a runtime dependency declared in pyproject.toml
    import yaml
except Exception as exc:  # pragma: no cover - import failure handled in tests
    raise RuntimeError(
        "PyYAML is required to manage hostctl state. Install with `pip install hostctl`."
    ) from exc


class StateRegistryError(RuntimeError):
    """Raised when state registry operations fail."""


@dataclass(frozen=True)
class StateRegistry:
    """High-level interface to the YAML registry."""

    root: Path
    _guard: threading.RLock = field(
        default_factory=threading.RLock, init=False, repr=False, compare=False
    )
    _depth: list[int] = field(default_factory=lambda: [0], init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        """Normalise the root path after initialisation."""
        object.__setattr__(self, "root", Path(self.root).expanduser())

    def ensure_root(self) -> None:
        """Create the registry directory if it does not yet exist."""
        self.root.mkdir(parents=True, exist_ok=True)

    # ------------------------------------------------------------------
    # Public helpers
    # ------------------------------------------------------------------
    def path_for(self, name: str) -> Path:
        """Return the filesystem path for a named registry file."""
        return self.root / name

    def read(self, name: str, *, default: object | None = None) -> object | None:
        """Read a registry file, returning *default* when missing."""
        path = self.path_for(name)
        if not path.exists():
            return deepcopy(default)
        try:
            data = yaml.safe_load(path.read_text(encoding="utf-8"))
        except yaml.YAMLError as exc:  # pragma: no cover - delegated to PyYAML
            raise StateRegistryError(f"Failed to parse registry file {path}: {exc}") from exc
        except OSError as exc:
            raise StateRegistryError(f"Failed to read registry file {path}: {exc}") from exc
        return data if data is not None else deepcopy(default)

    def write(self, name: str, payload: Mapping[str, object]) -> None:
        """Atomically write *payload* to the given registry file."""
        try:
            self.ensure_root()
            path = self.path_for(name)
            tmp_fd, tmp_name = tempfile.mkstemp(dir=str(self.root), prefix=f".{path.name}.")
        except OSError as exc:
            raise StateRegistryError(f"Failed to prepare registry write for {name}: {exc}") from exc
        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(tmp_fd, "w", encoding="utf-8") as handle:
                yaml.safe_dump(dict(payload), handle, sort_keys=False)
            os.replace(tmp_path, path)
            os.chmod(path, 0o640)
        except OSError as exc:
            raise StateRegistryError(f"Failed to write registry file {path}: {exc}") from exc
        finally:
            tmp_path.unlink(missing_ok=True)

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Serialise read-modify-write cycles across threads and processes.

        Re-entrant within a thread; the ``flock`` is taken by the outermost
        caller only.
        """
        with self._guard:
            if self._depth[0]:
                self._depth[0] += 1
                try:
                    yield
                finally:
                    self._depth[0] -= 1
                return
            self.ensure_root()
            fd = os.open(self.root / ".registry.lock", os.O_RDWR | os.O_CREAT, 0o640)
            try:
                fcntl.flock(fd, fcntl.LOCK_EX)
                self._depth[0] = 1
                try:
                    yield
                finally:
                    self._depth[0] = 0
                    fcntl.flock(fd, fcntl.LOCK_UN)
            finally:
                os.close(fd)

    # Collection helpers -------------------------------------------------
    def read_collection(self, name: str, key: str) -> list[dict[str, Any]]:
        """Return the list stored under *key* inside registry file *name*."""
        raw = self.read(name, default={key: []})
        if not isinstance(raw, Mapping):
            raise StateRegistryError(f"Registry file {name} must contain a mapping.")
        entries = raw.get(key, [])
        if entries is None:
            return []
        if not isinstance(entries, list):
            raise StateRegistryError(f"Registry file {name} key '{key}' must be a list.")
        return [dict(entry) for entry in entries if isinstance(entry, Mapping)]

    def write_collection(self, name: str, key: str, entries: list[Mapping[str, object]]) -> None:
        """Persist *entries* under *key* in registry file *name*."""
        self.write(name, {key: [dict(entry) for entry in entries]})

    def mutate_collection(
        self,
        name: str,
        key: str,
        mutator: Callable[[list[dict[str, Any]]], list[dict[str, Any]]],
    ) -> list[dict[str, Any]]:
        """Apply *mutator* to a collection inside a transaction and persist it."""
        with self.transaction():
            entries = self.read_collection(name, key)
            updated = mutator(entries)
            self.write_collection(name, key, updated)
            return updated


__all__ = ["StateRegistry", "StateRegistryError"]
