"""Error taxonomy shared by the provisioning core.

Every failure surfaced by hostctl derives from :class:`ProvisioningError`.
Subclasses carry the exit code the CLI should use and, where relevant, the
captured output of the external tool that failed so callers can render
diagnostics.
"""
from __future__ import annotations

from collections.abc import Sequence

from .exit_codes import ExitCode


class ProvisioningError(RuntimeError):
    """Base class for failures raised by provisioning operations."""

    exit_code: ExitCode = ExitCode.PROVIDER
    kind: str = "provisioning_error"

    def __init__(self, message: str, *, output: str | None = None) -> None:
        """Capture *message* and optional tool *output*."""
        super().__init__(message)
        self.message = message
        self.output = output
        self.rollback_errors: list[str] = []

    def add_rollback_errors(self, errors: Sequence[str]) -> None:
        """Record compensating steps that failed while unwinding."""
        self.rollback_errors.extend(errors)

    def to_dict(self) -> dict[str, object]:
        """Return the structured failure payload handed back to callers."""
        payload: dict[str, object] = {
            "error": self.kind,
            "message": self.message,
            "exit_code": int(self.exit_code),
        }
        if self.output:
            payload["output"] = self.output
        if self.rollback_errors:
            payload["rollback_errors"] = list(self.rollback_errors)
        return payload


class ValidationError(ProvisioningError):
    """Malformed or duplicate input, rejected before any OS action."""

    exit_code = ExitCode.VALIDATION
    kind = "validation_error"


class ResourceNotFound(ValidationError):
    """The referenced entity is not present in the registry."""

    kind = "not_found"


class ResourceConflict(ProvisioningError):
    """Another request currently holds a claim on the same identifier."""

    exit_code = ExitCode.VALIDATION
    kind = "resource_conflict"

    def __init__(self, kind: str, identifier: str) -> None:
        """Describe the contested ``(kind, identifier)`` pair."""
        super().__init__(
            f"{kind} '{identifier}' is being modified by another request; retry later."
        )
        self.resource_kind = kind
        self.identifier = identifier


class ExternalCommandError(ProvisioningError):
    """A privileged tool exited with a non-zero status."""

    kind = "external_command_error"

    def __init__(
        self,
        command: Sequence[str],
        exit_code: int,
        *,
        stdout: str = "",
        stderr: str = "",
    ) -> None:
        """Capture the argument vector, exit status and output streams."""
        self.command = list(command)
        self.returncode = exit_code
        self.stdout = stdout
        self.stderr = stderr
        detail = (stderr or stdout or "no output").strip()
        super().__init__(
            f"{' '.join(self.command)} failed (exit {exit_code}): {detail}",
            output=_combine_output(stdout, stderr),
        )

    def to_dict(self) -> dict[str, object]:
        """Include the command and exit status in the payload."""
        payload = super().to_dict()
        payload["command"] = list(self.command)
        payload["returncode"] = self.returncode
        return payload


class CommandTimeoutError(ProvisioningError):
    """A privileged command exceeded its deadline and was terminated."""

    kind = "timeout"

    def __init__(
        self,
        command: Sequence[str],
        timeout: float,
        *,
        stdout: str = "",
        stderr: str = "",
    ) -> None:
        """Capture the command and the deadline it exceeded."""
        self.command = list(command)
        self.timeout = timeout
        super().__init__(
            f"{' '.join(self.command)} timed out after {timeout:g}s",
            output=_combine_output(stdout, stderr),
        )


class ConfigTestFailure(ProvisioningError):
    """The web-server self-test rejected the configuration on disk."""

    kind = "config_test_failure"


class FilesystemError(ProvisioningError):
    """A local file operation hostctl performs itself failed."""

    exit_code = ExitCode.ENVIRONMENT
    kind = "filesystem_error"


class PersistenceError(ProvisioningError):
    """A registry write failed.

    When the failure follows an irreversible OS-level step the provisioner
    attempts a compensating action and records the outcome in
    :attr:`compensated` and :attr:`compensation_error`.
    """

    exit_code = ExitCode.ENVIRONMENT
    kind = "persistence_error"

    def __init__(
        self,
        message: str,
        *,
        compensated: bool | None = None,
        compensation_error: str | None = None,
    ) -> None:
        """Capture the message and the outcome of any compensation."""
        super().__init__(message)
        self.compensated = compensated
        self.compensation_error = compensation_error

    def to_dict(self) -> dict[str, object]:
        """Include compensation details when present."""
        payload = super().to_dict()
        if self.compensated is not None:
            payload["compensated"] = self.compensated
        if self.compensation_error:
            payload["compensation_error"] = self.compensation_error
        return payload


def _combine_output(stdout: str, stderr: str) -> str | None:
    parts = [part.strip() for part in (stdout, stderr) if part and part.strip()]
    return "\n".join(parts) if parts else None


__all__ = [
    "CommandTimeoutError",
    "ConfigTestFailure",
    "ExternalCommandError",
    "FilesystemError",
    "PersistenceError",
    "ProvisioningError",
    "ResourceConflict",
    "ResourceNotFound",
    "ValidationError",
]
