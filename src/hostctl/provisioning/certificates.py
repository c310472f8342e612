"""Certificate issuance, renewal and removal for virtual hosts.

Enabling TLS changes the shape of the rendered site definition, so issuance
re-renders and re-applies the virtual host synchronously. ``ssl_enabled`` and
the certificate record are committed together or not at all.
"""
from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timedelta

from ..errors import ProvisioningError, ResourceNotFound, ValidationError
from ..logging import OperationScope
from ..models import Certificate, VirtualHost
from ..providers import CertbotProvider, NginxProvider, SiteSnapshot
from ..renderer import certificate_paths
from ..repository import ResourceRegistry
from ..tls import CertificateInspector, InspectionReport
from ..validation import validate_domain, validate_email
from .common import attempt, claim, record_step, utcnow, webserver
from .vhosts import VirtualHostProvisioner


@dataclass(slots=True)
class RenewalOutcome:
    """Result of renewing one certificate during a bulk run."""

    domain: str
    renewed: bool
    message: str
    expires_at: datetime | None = None

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "domain": self.domain,
            "renewed": self.renewed,
            "message": self.message,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
        }


class CertificateIssuer:
    """Drive the ACME client and keep certificate records in step with nginx."""

    def __init__(
        self,
        *,
        registry: ResourceRegistry,
        vhosts: VirtualHostProvisioner,
        certbot: CertbotProvider,
        inspector: CertificateInspector,
        validity_days: int = 90,
        renew_window_days: int = 30,
    ) -> None:
        """Wire the issuer to its collaborators."""
        self._registry = registry
        self._vhosts = vhosts
        self._certbot = certbot
        self._inspector = inspector
        self._validity = timedelta(days=validity_days)
        self._renew_window = timedelta(days=renew_window_days)

    @property
    def _nginx(self) -> NginxProvider:
        return self._vhosts.nginx

    # ------------------------------------------------------------------
    def issue(
        self,
        domain: str,
        email: str,
        *,
        op: OperationScope | None = None,
    ) -> tuple[VirtualHost, Certificate]:
        """Obtain a certificate for *domain* and switch its site to TLS."""
        domain = validate_domain(domain)
        email = validate_email(email)
        locks = self._vhosts.locks
        with claim(locks, "vhost", domain, timeout=self._vhosts.conflict_timeout, op=op):
            vhost = self._registry.vhosts.find(domain)
            if vhost is None:
                raise ResourceNotFound(f"Virtual host '{domain}' not found.")
            if self._registry.certificates.exists_by_unique_key(domain):
                raise ValidationError(f"Virtual host '{domain}' already has a certificate.")

            with webserver(locks, timeout=self._vhosts.lock_timeout, op=op):
                snapshot = self._nginx.snapshot(domain)
                try:
                    result = self._certbot.issue(domain, email)
                except ProvisioningError as exc:
                    record_step(op, "certbot.issue", status="error", detail=str(exc))
                    errors: list[str] = []
                    attempt("nginx.restore", lambda: self._nginx.restore(snapshot), errors, op)
                    exc.add_rollback_errors(errors)
                    raise
                record_step(op, "certbot.issue", detail=result.output or None)

                issued_at = utcnow()
                material = certificate_paths(self._certbot.live_dir, domain)
                certificate = Certificate(
                    domain=domain,
                    cert_path=material["cert"],
                    key_path=material["key"],
                    chain_path=material["chain"],
                    expires_at=issued_at + self._validity,
                    auto_renew=True,
                    issued_at=issued_at,
                    contact=email,
                )
                updated = replace(vhost, ssl_enabled=True, updated_at=issued_at)
                updated.nginx_config = self._vhosts.render(updated)
                record_step(op, "config.render", detail=f"{domain} tls=on")
                self._commit(vhost, updated, snapshot, op, certificate=certificate)
            return updated, certificate

    def renew(self, domain: str, *, op: OperationScope | None = None) -> Certificate:
        """Renew the certificate for *domain* and record the client's output."""
        domain = validate_domain(domain)
        locks = self._vhosts.locks
        with claim(locks, "vhost", domain, timeout=self._vhosts.conflict_timeout, op=op):
            certificate = self._registry.certificates.find(domain)
            if certificate is None:
                raise ResourceNotFound(f"No certificate recorded for '{domain}'.")

            # the --nginx installer reloads the web server after renewing
            with webserver(locks, timeout=self._vhosts.lock_timeout, op=op):
                try:
                    result = self._certbot.renew(domain)
                except ProvisioningError as exc:
                    record_step(op, "certbot.renew", status="error", detail=str(exc))
                    certificate.renewal_log = exc.output or exc.message
                    errors: list[str] = []
                    attempt(
                        "registry.update",
                        lambda: self._registry.certificates.update(certificate),
                        errors,
                        op,
                    )
                    exc.add_rollback_errors(errors)
                    raise
                record_step(op, "certbot.renew", detail=result.output or None)
                renewed_at = utcnow()
                expires_at = self._inspector.expiry(certificate.cert_path)
                certificate.expires_at = expires_at or renewed_at + self._validity
                certificate.last_renewed_at = renewed_at
                certificate.renewal_log = result.output or None
                self._registry.certificates.update(certificate)
                record_step(op, "registry.update", detail=f"expires_at={certificate.expires_at}")
            return certificate

    def due(self, *, now: datetime | None = None) -> list[Certificate]:
        """Return auto-renew certificates expiring inside the renewal window."""
        moment = now or utcnow()
        return [
            certificate
            for certificate in self._registry.certificates.list()
            if certificate.auto_renew and certificate.expires_at - moment <= self._renew_window
        ]

    def renew_due(
        self,
        *,
        now: datetime | None = None,
        op: OperationScope | None = None,
    ) -> list[RenewalOutcome]:
        """Renew every certificate that is due and report each outcome."""
        outcomes: list[RenewalOutcome] = []
        for certificate in self.due(now=now):
            try:
                renewed = self.renew(certificate.domain, op=op)
            except ProvisioningError as exc:
                outcomes.append(
                    RenewalOutcome(
                        domain=certificate.domain,
                        renewed=False,
                        message=exc.message,
                        expires_at=certificate.expires_at,
                    )
                )
                continue
            outcomes.append(
                RenewalOutcome(
                    domain=renewed.domain,
                    renewed=True,
                    message="Renewed.",
                    expires_at=renewed.expires_at,
                )
            )
        return outcomes

    def delete(self, domain: str, *, op: OperationScope | None = None) -> Certificate:
        """Switch *domain* back to plain HTTP and remove its certificate."""
        domain = validate_domain(domain)
        locks = self._vhosts.locks
        with claim(locks, "vhost", domain, timeout=self._vhosts.conflict_timeout, op=op):
            certificate = self._registry.certificates.find(domain)
            if certificate is None:
                raise ResourceNotFound(f"No certificate recorded for '{domain}'.")
            vhost = self._registry.vhosts.find(domain)

            with webserver(locks, timeout=self._vhosts.lock_timeout, op=op):
                snapshot = self._nginx.snapshot(domain)
                if vhost is not None:
                    plain = replace(vhost, ssl_enabled=False, updated_at=utcnow())
                    plain.nginx_config = self._vhosts.render(plain)
                    record_step(op, "config.render", detail=f"{domain} tls=off")
                    self._commit(vhost, plain, snapshot, op, removed=certificate)
                else:
                    self._registry.certificates.delete(domain)
                    record_step(op, "registry.delete_certificate", detail=domain)
                try:
                    result = self._certbot.delete(domain)
                except ProvisioningError as exc:
                    record_step(op, "certbot.delete", status="error", detail=str(exc))
                    errors: list[str] = []
                    attempt(
                        "registry.restore_certificate",
                        lambda: self._registry.certificates.create(certificate),
                        errors,
                        op,
                    )
                    if vhost is not None:
                        original = vhost
                        attempt(
                            "registry.restore",
                            lambda: self._registry.vhosts.update(original),
                            errors,
                            op,
                        )
                        attempt("nginx.restore", lambda: self._nginx.restore(snapshot), errors, op)
                        attempt("nginx.reload", self._nginx.test_and_reload, errors, op)
                    exc.add_rollback_errors(errors)
                    raise
                record_step(op, "certbot.delete", detail=result.output or None)
            return certificate

    def inspect(self, domain: str) -> InspectionReport:
        """Parse the recorded certificate material for *domain*."""
        domain = validate_domain(domain)
        certificate = self._registry.certificates.find(domain)
        if certificate is None:
            raise ResourceNotFound(f"No certificate recorded for '{domain}'.")
        return self._inspector.inspect(domain, certificate.cert_path, certificate.key_path)

    # ------------------------------------------------------------------
    def _commit(
        self,
        original: VirtualHost,
        updated: VirtualHost,
        snapshot: SiteSnapshot,
        op: OperationScope | None,
        *,
        certificate: Certificate | None = None,
        removed: Certificate | None = None,
    ) -> None:
        """Apply *updated*'s definition and records; undo everything on failure.

        The caller holds the web-server lock.
        """
        domain = updated.domain
        reloaded = False
        vhost_updated = False
        certificate_changed = False
        try:
            self._nginx.install_site(domain, updated.nginx_config or "")
            record_step(op, "nginx.write_site", detail=str(self._nginx.site_path(domain)))
            if updated.status.serves_traffic:
                self._nginx.enable(domain)
            result = self._nginx.test_config()
            record_step(op, "nginx.test", detail=result.output or None)
            self._nginx.reload()
            reloaded = True
            record_step(op, "nginx.reload")
            self._registry.vhosts.update(updated)
            vhost_updated = True
            record_step(op, "registry.update", detail=f"ssl_enabled={updated.ssl_enabled}")
            if certificate is not None:
                self._registry.certificates.create(certificate)
                certificate_changed = True
                record_step(op, "registry.create_certificate", detail=domain)
            if removed is not None:
                self._registry.certificates.delete(domain)
                certificate_changed = True
                record_step(op, "registry.delete_certificate", detail=domain)
        except ProvisioningError as exc:
            record_step(op, "nginx.apply", status="error", detail=str(exc))
            errors: list[str] = []
            if certificate_changed and removed is not None:
                restored = removed
                attempt(
                    "registry.restore_certificate",
                    lambda: self._registry.certificates.create(restored),
                    errors,
                    op,
                )
            if vhost_updated:
                attempt(
                    "registry.restore",
                    lambda: self._registry.vhosts.update(original),
                    errors,
                    op,
                )
            attempt("nginx.restore", lambda: self._nginx.restore(snapshot), errors, op)
            if reloaded:
                attempt("nginx.reload", self._nginx.test_and_reload, errors, op)
            exc.add_rollback_errors(errors)
            raise


__all__ = ["CertificateIssuer", "RenewalOutcome"]
