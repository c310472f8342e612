"""Privileged file operations routed through the command executor.

hostctl itself may run unprivileged; anything that touches a path it does not
own (site definitions, home directories, document roots) is performed with
``mv``, ``ln``, ``rm``, ``mkdir``, ``chown`` and ``chmod`` via the
:class:`~hostctl.executor.Executor`. Content is first written to a staging
directory the process owns and then moved into place.
"""
from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass
from pathlib import Path

from ..errors import FilesystemError
from ..executor import CommandResult, Executor


@dataclass(slots=True)
class FileOperations:
    """Stage-and-move writes plus link, removal and ownership helpers."""

    executor: Executor
    staging_dir: Path
    timeout: float | None = None

    def write_text(self, destination: Path, content: str, *, mode: int = 0o644) -> None:
        """Place *content* at *destination* through a staged ``mv``."""
        try:
            self.staging_dir.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=str(self.staging_dir), prefix=f".{destination.name}."
            )
        except OSError as exc:
            raise FilesystemError(f"Cannot stage {destination}: {exc}") from exc
        tmp_path = Path(tmp_name)
        try:
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    handle.write(content)
                os.chmod(tmp_path, mode)
            except OSError as exc:
                raise FilesystemError(f"Cannot stage {destination}: {exc}") from exc
            self._run("mv", ["-f", str(tmp_path), str(destination)])
        finally:
            tmp_path.unlink(missing_ok=True)

    def symlink(self, source: Path, link: Path) -> CommandResult:
        """Point *link* at *source*, replacing any existing link."""
        return self._run("ln", ["-sfn", str(source), str(link)])

    def remove(self, path: Path) -> CommandResult:
        """Remove a file or link; a missing path is not an error."""
        return self._run("rm", ["-f", str(path)])

    def remove_tree(self, path: Path) -> CommandResult:
        """Recursively remove *path*."""
        return self._run("rm", ["-rf", str(path)])

    def make_directory(self, path: Path) -> CommandResult:
        """Create *path* and its parents."""
        return self._run("mkdir", ["-p", str(path)])

    def chown(self, path: Path, owner: str, *, recursive: bool = False) -> CommandResult:
        """Give *path* to ``owner:owner``."""
        args = ["-R"] if recursive else []
        return self._run("chown", [*args, f"{owner}:{owner}", str(path)])

    def chmod(self, path: Path, mode: int) -> CommandResult:
        """Set the permission bits of *path*."""
        return self._run("chmod", [format(mode, "o"), str(path)])

    # ------------------------------------------------------------------
    def _run(self, command: str, args: list[str]) -> CommandResult:
        return self.executor.run(command, args, timeout=self.timeout)


__all__ = ["FileOperations"]
