"""Virtual-host provisioning: document root, site definition, test and reload.

Every change to a site definition happens while the global web-server lock is
held, and a failing self-test always puts the previous definition back before
the lock is released. Registry records never point at a configuration that is
not on disk.
"""
from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, replace
from pathlib import Path

from ..errors import ProvisioningError, ResourceNotFound, ValidationError
from ..locking import LockManager
from ..logging import OperationScope
from ..models import VhostStatus, VirtualHost
from ..providers import FileOperations, NginxProvider
from ..renderer import ConfigRenderer, VhostRenderSpec
from ..repository import ResourceRegistry
from ..validation import (
    validate_document_root,
    validate_domain,
    validate_php_version,
    validate_status,
    validate_username,
)
from .common import attempt, claim, record_step, utcnow, webserver


@dataclass(slots=True)
class VhostSpec:
    """Inputs for a new virtual host."""

    domain: str
    system_user: str
    document_root: Path | None = None
    php_version: str | None = None
    status: VhostStatus | str = VhostStatus.ACTIVE
    ssl_enabled: bool = False
    custom_config: str | None = None


@dataclass(slots=True)
class VhostChanges:
    """Field changes for an existing virtual host; ``None`` leaves a field alone.

    An empty ``custom_config`` clears the fragment.
    """

    system_user: str | None = None
    document_root: Path | None = None
    php_version: str | None = None
    status: VhostStatus | str | None = None
    ssl_enabled: bool | None = None
    custom_config: str | None = None


class VirtualHostProvisioner:
    """Create, update and delete nginx virtual hosts."""

    def __init__(
        self,
        *,
        registry: ResourceRegistry,
        nginx: NginxProvider,
        files: FileOperations,
        renderer: ConfigRenderer,
        locks: LockManager,
        php_versions: Sequence[str],
        default_php_version: str,
        lock_timeout: float = 30.0,
        conflict_timeout: float = 0.0,
    ) -> None:
        """Wire the provisioner to its collaborators."""
        self._registry = registry
        self._nginx = nginx
        self._files = files
        self._renderer = renderer
        self._locks = locks
        self._php_versions = tuple(php_versions)
        self._default_php_version = default_php_version
        self._lock_timeout = lock_timeout
        self._conflict_timeout = conflict_timeout

    @property
    def nginx(self) -> NginxProvider:
        """Return the web-server provider."""
        return self._nginx

    @property
    def locks(self) -> LockManager:
        """Return the lock manager shared with the other provisioners."""
        return self._locks

    @property
    def lock_timeout(self) -> float:
        """Seconds to wait for the global web-server lock."""
        return self._lock_timeout

    @property
    def conflict_timeout(self) -> float:
        """Seconds to wait for a per-resource lock."""
        return self._conflict_timeout

    def render(self, vhost: VirtualHost, *, tls: bool | None = None) -> str:
        """Render the site definition for *vhost* (optionally forcing TLS on/off)."""
        return self._renderer.render(
            VhostRenderSpec(
                domain=vhost.domain,
                document_root=vhost.document_root,
                owner=vhost.system_user,
                php_version=vhost.php_version,
                tls_enabled=vhost.ssl_enabled if tls is None else tls,
                custom_config=vhost.custom_config,
            )
        )

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------
    def create(self, spec: VhostSpec, *, op: OperationScope | None = None) -> VirtualHost:
        """Provision *spec* and return the live virtual host.

        A failure at any step leaves the registry and the filesystem as they
        were before the call; the raised error carries the self-test output
        and any compensating step that could not be completed.
        """
        domain = validate_domain(spec.domain)
        owner_name = validate_username(spec.system_user)
        php_version = validate_php_version(
            spec.php_version or self._default_php_version, self._php_versions
        )
        status = validate_status(spec.status)
        custom_config = spec.custom_config or None
        requested_root = (
            validate_document_root(spec.document_root) if spec.document_root else None
        )

        with claim(self._locks, "vhost", domain, timeout=self._conflict_timeout, op=op):
            if self._registry.vhosts.exists_by_unique_key(domain):
                raise ValidationError(f"Virtual host '{domain}' already exists.")
            if self._nginx.site_exists(domain) or self._nginx.enabled_path(domain).is_symlink():
                raise ValidationError(
                    f"A site definition for '{domain}' already exists at "
                    f"{self._nginx.site_path(domain)}; remove it first."
                )
            with claim(self._locks, "user", owner_name, timeout=self._lock_timeout, op=op):
                owner = self._registry.users.find(owner_name)
                if owner is None:
                    raise ResourceNotFound(f"System user '{owner_name}' not found.")
                document_root = requested_root or owner.home_directory / "public_html"
                now = utcnow()
                vhost = VirtualHost(
                    domain=domain,
                    document_root=document_root,
                    system_user=owner.name,
                    php_version=php_version,
                    ssl_enabled=spec.ssl_enabled,
                    status=VhostStatus.PENDING,
                    custom_config=custom_config,
                    created_at=now,
                    updated_at=now,
                )
                return self._provision(vhost, status, op)

    def _provision(
        self,
        vhost: VirtualHost,
        status: VhostStatus,
        op: OperationScope | None,
    ) -> VirtualHost:
        domain = vhost.domain
        created_root: Path | None = None
        registered = False
        try:
            created_root = self._ensure_document_root(vhost, op)
            vhost.nginx_config = self.render(vhost)
            record_step(op, "config.render", detail=domain)

            self._registry.vhosts.create(vhost)
            registered = True
            record_step(op, "registry.create", detail=f"{domain} status=pending")

            with webserver(self._locks, timeout=self._lock_timeout, op=op):
                site_written = False
                reloaded = False
                try:
                    self._nginx.install_site(domain, vhost.nginx_config)
                    site_written = True
                    record_step(op, "nginx.write_site", detail=str(self._nginx.site_path(domain)))
                    if status.serves_traffic:
                        self._nginx.enable(domain)
                        record_step(
                            op, "nginx.enable", detail=str(self._nginx.enabled_path(domain))
                        )
                    else:
                        record_step(op, "nginx.enable", status="skipped", detail=status.value)
                    result = self._nginx.test_config()
                    record_step(op, "nginx.test", detail=result.output or None)
                    self._nginx.reload()
                    reloaded = True
                    record_step(op, "nginx.reload")

                    vhost.status = status
                    vhost.updated_at = utcnow()
                    self._registry.vhosts.update(vhost)
                    record_step(op, "registry.update", detail=f"status={status.value}")
                except ProvisioningError as exc:
                    record_step(op, "nginx.apply", status="error", detail=str(exc))
                    errors: list[str] = []
                    if site_written:
                        attempt("nginx.remove", lambda: self._nginx.remove(domain), errors, op)
                    if reloaded:
                        attempt("nginx.reload", self._nginx.reload, errors, op)
                    exc.add_rollback_errors(errors)
                    raise
        except ProvisioningError as exc:
            errors = []
            if registered:
                attempt(
                    "registry.delete",
                    lambda: self._registry.vhosts.delete(domain),
                    errors,
                    op,
                )
            if created_root is not None:
                root = created_root
                attempt("docroot.remove", lambda: self._files.remove_tree(root), errors, op)
            exc.add_rollback_errors(errors)
            raise
        return vhost

    def _ensure_document_root(
        self,
        vhost: VirtualHost,
        op: OperationScope | None,
    ) -> Path | None:
        """Create the document root with a placeholder page; return the top created dir."""
        root = vhost.document_root
        if root.exists():
            record_step(op, "docroot.ensure", status="skipped", detail=f"{root} exists")
            return None
        top = root
        while not top.parent.exists() and top.parent != top.parent.parent:
            top = top.parent
        try:
            self._files.make_directory(root)
            self._files.write_text(
                root / "index.html",
                self._renderer.render_placeholder(vhost.domain, vhost.system_user),
            )
            self._files.chown(top, vhost.system_user, recursive=True)
            self._files.chmod(root, 0o755)
        except ProvisioningError as exc:
            errors: list[str] = []
            attempt("docroot.remove", lambda: self._files.remove_tree(top), errors, op)
            exc.add_rollback_errors(errors)
            raise
        record_step(op, "docroot.ensure", detail=str(root))
        return top

    # ------------------------------------------------------------------
    # Update
    # ------------------------------------------------------------------
    def update(
        self,
        domain: str,
        changes: VhostChanges,
        *,
        op: OperationScope | None = None,
    ) -> VirtualHost:
        """Apply *changes* to *domain*; a failing self-test restores everything."""
        domain = validate_domain(domain)
        with claim(self._locks, "vhost", domain, timeout=self._conflict_timeout, op=op):
            current = self._registry.vhosts.find(domain)
            if current is None:
                raise ResourceNotFound(f"Virtual host '{domain}' not found.")
            updated = self._apply_changes(current, changes)
            updated.nginx_config = self.render(updated)
            updated.updated_at = utcnow()
            record_step(op, "config.render", detail=domain)

            with webserver(self._locks, timeout=self._lock_timeout, op=op):
                snapshot = self._nginx.snapshot(domain)
                registry_updated = False
                try:
                    self._registry.vhosts.update(updated)
                    registry_updated = True
                    record_step(op, "registry.update", detail=domain)
                    self._nginx.install_site(domain, updated.nginx_config)
                    record_step(op, "nginx.write_site", detail=str(self._nginx.site_path(domain)))
                    if updated.status.serves_traffic:
                        self._nginx.enable(domain)
                        record_step(op, "nginx.enable", detail=updated.status.value)
                    else:
                        self._nginx.disable(domain)
                        record_step(op, "nginx.disable", detail=updated.status.value)
                    result = self._nginx.test_config()
                    record_step(op, "nginx.test", detail=result.output or None)
                    self._nginx.reload()
                    record_step(op, "nginx.reload")
                except ProvisioningError as exc:
                    record_step(op, "nginx.apply", status="error", detail=str(exc))
                    errors: list[str] = []
                    attempt("nginx.restore", lambda: self._nginx.restore(snapshot), errors, op)
                    if registry_updated:
                        attempt(
                            "registry.restore",
                            lambda: self._registry.vhosts.update(current),
                            errors,
                            op,
                        )
                    exc.add_rollback_errors(errors)
                    raise
            return updated

    def _apply_changes(self, current: VirtualHost, changes: VhostChanges) -> VirtualHost:
        if changes.system_user is not None and changes.system_user != current.system_user:
            raise ValidationError(
                f"Virtual host '{current.domain}' cannot change owner "
                f"({current.system_user} -> {changes.system_user})."
            )
        updated = replace(current)
        if changes.document_root is not None:
            updated.document_root = validate_document_root(changes.document_root)
        if changes.php_version is not None:
            updated.php_version = validate_php_version(changes.php_version, self._php_versions)
        if changes.status is not None:
            updated.status = validate_status(changes.status)
        if changes.custom_config is not None:
            updated.custom_config = changes.custom_config or None
        if changes.ssl_enabled is not None:
            if (
                not changes.ssl_enabled
                and current.ssl_enabled
                and self._registry.certificates.exists_by_unique_key(current.domain)
            ):
                raise ValidationError(
                    f"Virtual host '{current.domain}' has a certificate; "
                    "delete the certificate to disable TLS."
                )
            updated.ssl_enabled = changes.ssl_enabled
        return updated

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------
    def delete(self, domain: str, *, op: OperationScope | None = None) -> VirtualHost:
        """Remove the site definition and registry record; the document root stays."""
        domain = validate_domain(domain)
        with claim(self._locks, "vhost", domain, timeout=self._conflict_timeout, op=op):
            current = self._registry.vhosts.find(domain)
            if current is None:
                raise ResourceNotFound(f"Virtual host '{domain}' not found.")
            certificate = self._registry.certificates.find(domain)

            with webserver(self._locks, timeout=self._lock_timeout, op=op):
                snapshot = self._nginx.snapshot(domain)
                reloaded = False
                certificate_removed = False
                try:
                    self._nginx.remove(domain)
                    record_step(op, "nginx.remove", detail=str(self._nginx.site_path(domain)))
                    result = self._nginx.test_config()
                    record_step(op, "nginx.test", detail=result.output or None)
                    self._nginx.reload()
                    reloaded = True
                    record_step(op, "nginx.reload")
                    if certificate is not None:
                        self._registry.certificates.delete(domain)
                        certificate_removed = True
                        record_step(op, "registry.delete_certificate", detail=domain)
                    self._registry.vhosts.delete(domain)
                    record_step(op, "registry.delete", detail=domain)
                except ProvisioningError as exc:
                    record_step(op, "nginx.apply", status="error", detail=str(exc))
                    errors: list[str] = []
                    attempt("nginx.restore", lambda: self._nginx.restore(snapshot), errors, op)
                    if reloaded:
                        attempt("nginx.reload", self._nginx.reload, errors, op)
                    if certificate_removed and certificate is not None:
                        cert = certificate
                        attempt(
                            "registry.restore_certificate",
                            lambda: self._registry.certificates.create(cert),
                            errors,
                            op,
                        )
                    exc.add_rollback_errors(errors)
                    raise
            return current

    # ------------------------------------------------------------------
    # Web server
    # ------------------------------------------------------------------
    def reload(self, *, op: OperationScope | None = None) -> str:
        """Self-test and reload the web server; return the test output."""
        with webserver(self._locks, timeout=self._lock_timeout, op=op):
            result = self._nginx.test_config()
            record_step(op, "nginx.test", detail=result.output or None)
            self._nginx.reload()
            record_step(op, "nginx.reload")
        return result.output


__all__ = ["VhostChanges", "VhostSpec", "VirtualHostProvisioner"]
