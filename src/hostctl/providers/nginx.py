"""Nginx provider for managing virtual-host site definitions."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from ..errors import ConfigTestFailure, ExternalCommandError
from ..executor import CommandResult, Executor
from .files import FileOperations


@dataclass(frozen=True, slots=True)
class SiteSnapshot:
    """On-disk state of one site definition, captured before a change."""

    domain: str
    content: str | None
    enabled: bool


@dataclass(slots=True)
class NginxProvider:
    """Write, activate, self-test and reload nginx site definitions.

    Definitions live at ``<sites_available>/<domain>``; activation is a
    symlink of the same name in ``sites_enabled``.
    """

    executor: Executor
    files: FileOperations
    sites_available: Path = Path("/etc/nginx/sites-available")
    sites_enabled: Path = Path("/etc/nginx/sites-enabled")
    nginx_bin: str = "nginx"
    systemctl_bin: str = "systemctl"
    service_name: str = "nginx"
    timeout: float | None = None

    def site_name(self, domain: str) -> str:
        """Return the canonical site name for *domain*."""
        return domain.replace("/", "-")

    def site_path(self, domain: str) -> Path:
        """Return the path to the nginx site definition."""
        return self.sites_available / self.site_name(domain)

    def enabled_path(self, domain: str) -> Path:
        """Return the path of the symlink in sites-enabled for *domain*."""
        return self.sites_enabled / self.site_name(domain)

    def read_site(self, domain: str) -> str | None:
        """Return the current definition text, or ``None`` when absent."""
        try:
            return self.site_path(domain).read_text(encoding="utf-8")
        except FileNotFoundError:
            return None

    def install_site(self, domain: str, content: str) -> None:
        """Write *content* as the definition for *domain*."""
        self.files.write_text(self.site_path(domain), content, mode=0o644)

    def enable(self, domain: str) -> None:
        """Enable the site by creating a symlink in sites-enabled."""
        self.files.symlink(self.site_path(domain), self.enabled_path(domain))

    def disable(self, domain: str) -> None:
        """Disable the site by removing the symlink."""
        self.files.remove(self.enabled_path(domain))

    def remove(self, domain: str) -> None:
        """Remove both the definition and symlink for *domain*."""
        self.disable(domain)
        self.files.remove(self.site_path(domain))

    def site_exists(self, domain: str) -> bool:
        """Return True when the site definition exists."""
        return self.site_path(domain).exists()

    def is_enabled(self, domain: str) -> bool:
        """Return True when the site is enabled via sites-enabled symlink."""
        target = self.enabled_path(domain)
        if not target.is_symlink():
            return False
        return Path(target.readlink()) == self.site_path(domain)

    def snapshot(self, domain: str) -> SiteSnapshot:
        """Capture the definition text and activation state of *domain*."""
        return SiteSnapshot(
            domain=domain,
            content=self.read_site(domain),
            enabled=self.is_enabled(domain),
        )

    def restore(self, snapshot: SiteSnapshot) -> None:
        """Put *snapshot* back on disk, removing anything written since."""
        if snapshot.content is None:
            self.remove(snapshot.domain)
            return
        self.install_site(snapshot.domain, snapshot.content)
        if snapshot.enabled:
            self.enable(snapshot.domain)
        else:
            self.disable(snapshot.domain)

    def diagnostics(self, domain: str) -> dict[str, object]:
        """Return diagnostic metadata for *domain*."""
        site_path = self.site_path(domain)
        enabled_path = self.enabled_path(domain)
        return {
            "site_path": str(site_path),
            "site_exists": site_path.exists(),
            "enabled_path": str(enabled_path),
            "enabled": self.is_enabled(domain),
        }

    def test_config(self) -> CommandResult:
        """Run ``nginx -t``; a rejection raises :class:`ConfigTestFailure`."""
        try:
            return self.executor.run(self.nginx_bin, ["-t"], timeout=self.timeout)
        except ExternalCommandError as exc:
            raise ConfigTestFailure(
                f"{self.nginx_bin} -t rejected the configuration (exit {exc.returncode}).",
                output=exc.output,
            ) from exc

    def reload(self) -> CommandResult:
        """Reload nginx through systemd to apply configuration changes."""
        return self.executor.run(
            self.systemctl_bin,
            ["reload", self.service_name],
            timeout=self.timeout,
        )

    def test_and_reload(self) -> tuple[CommandResult, CommandResult]:
        """Self-test and, when the test passes, reload."""
        tested = self.test_config()
        return tested, self.reload()


__all__ = ["NginxProvider", "SiteSnapshot"]
