"""Privileged command execution for hostctl.

Every mutation of operating-system or web-server state goes through
:class:`CommandExecutor`. Commands are always argument vectors; nothing in
hostctl builds a shell string.
"""
from __future__ import annotations

import logging
import subprocess
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Protocol

from .errors import CommandTimeoutError, ExternalCommandError

_LOG = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class CommandResult:
    """Outcome of a finished command."""

    command: tuple[str, ...]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def output(self) -> str:
        """Return stdout and stderr joined for diagnostics."""
        parts = [part.strip() for part in (self.stdout, self.stderr) if part.strip()]
        return "\n".join(parts)


class Executor(Protocol):
    """Interface consumed by providers that need to run privileged tools."""

    def run(
        self,
        command: str,
        args: Sequence[str] = (),
        *,
        timeout: float | None = None,
        check: bool = True,
    ) -> CommandResult:
        """Run *command* with *args* and return the captured result."""


@dataclass(slots=True)
class CommandExecutor:
    """Run external commands with captured output and a hard deadline.

    ``default_timeout`` applies when a caller does not pass one. When
    ``use_sudo`` is set, the argument vector is prefixed with
    ``sudo -n`` so that a missing sudoers rule fails instead of prompting.
    The executor never retries.
    """

    default_timeout: float = 60.0
    use_sudo: bool = False
    sudo_bin: str = "sudo"
    env: dict[str, str] | None = field(default=None)

    def build_argv(self, command: str, args: Sequence[str] = ()) -> list[str]:
        """Return the argument vector that :meth:`run` would execute."""
        argv = [command, *(str(arg) for arg in args)]
        if self.use_sudo:
            argv = [self.sudo_bin, "-n", "--", *argv]
        return argv

    def run(
        self,
        command: str,
        args: Sequence[str] = (),
        *,
        timeout: float | None = None,
        check: bool = True,
    ) -> CommandResult:
        """Execute *command* and return its :class:`CommandResult`.

        Raises :class:`ExternalCommandError` on a non-zero exit (when *check*
        is true) and :class:`CommandTimeoutError` once the deadline elapses;
        ``subprocess.run`` kills the child before the timeout propagates.
        """
        argv = self.build_argv(command, args)
        deadline = self.default_timeout if timeout is None else timeout
        _LOG.debug("exec %s (timeout=%ss)", argv, deadline)
        try:
            completed = subprocess.run(  # noqa: S603
                argv,
                capture_output=True,
                text=True,
                check=False,
                timeout=deadline,
                env=self.env,
            )
        except subprocess.TimeoutExpired as exc:
            raise CommandTimeoutError(
                argv,
                deadline,
                stdout=_as_text(exc.stdout),
                stderr=_as_text(exc.stderr),
            ) from exc
        except FileNotFoundError as exc:
            raise ExternalCommandError(argv, 127, stderr=f"{argv[0]} not found: {exc}") from exc

        result = CommandResult(
            command=tuple(argv),
            returncode=completed.returncode,
            stdout=completed.stdout or "",
            stderr=completed.stderr or "",
        )
        if check and result.returncode != 0:
            raise ExternalCommandError(
                argv,
                result.returncode,
                stdout=result.stdout,
                stderr=result.stderr,
            )
        return result


def _as_text(value: str | bytes | None) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value


__all__ = ["CommandExecutor", "CommandResult", "Executor"]
