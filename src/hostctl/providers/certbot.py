"""Certbot provider wrapping the ACME client's non-interactive commands."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from ..executor import CommandResult, Executor


@dataclass(slots=True)
class CertbotProvider:
    """Issue, renew and delete certificates named after their domain."""

    executor: Executor
    certbot_bin: str = "certbot"
    live_dir: Path = Path("/etc/letsencrypt/live")
    timeout: float | None = None

    def issue_command(self, domain: str, email: str) -> list[str]:
        """Return the argument vector used to request a certificate."""
        return [
            "--nginx",
            "-d",
            domain,
            "--email",
            email,
            "--agree-tos",
            "--non-interactive",
            "--redirect",
        ]

    def issue(self, domain: str, email: str) -> CommandResult:
        """Request and install a certificate for *domain*."""
        return self.executor.run(
            self.certbot_bin,
            self.issue_command(domain, email),
            timeout=self.timeout,
        )

    def renew(self, domain: str) -> CommandResult:
        """Renew the certificate stored under *domain*."""
        return self.executor.run(
            self.certbot_bin,
            ["renew", "--cert-name", domain, "--non-interactive"],
            timeout=self.timeout,
        )

    def delete(self, domain: str) -> CommandResult:
        """Remove the local certificate lineage for *domain*."""
        return self.executor.run(
            self.certbot_bin,
            ["delete", "--cert-name", domain, "--non-interactive"],
            timeout=self.timeout,
        )


__all__ = ["CertbotProvider"]
