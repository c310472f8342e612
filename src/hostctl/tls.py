"""TLS material inspection for issued certificates."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path

from cryptography import x509
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.types import PrivateKeyTypes


class FindingSeverity(Enum):
    """Severities for certificate checks."""

    OK = "ok"
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True)
class Finding:
    """Individual check outcome."""

    scope: str
    check: str
    severity: FindingSeverity
    message: str
    path: Path | None = None

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "scope": self.scope,
            "check": self.check,
            "severity": self.severity.value,
            "message": self.message,
            "path": str(self.path) if self.path else None,
        }


@dataclass(frozen=True)
class InspectionReport:
    """Aggregate inspection results for one certificate."""

    domain: str
    findings: tuple[Finding, ...]
    not_valid_before: datetime | None
    not_valid_after: datetime | None

    @property
    def has_errors(self) -> bool:
        """Return True when any finding is classified as an error."""
        return any(f.severity is FindingSeverity.ERROR for f in self.findings)

    @property
    def status(self) -> FindingSeverity:
        """Return the worst severity seen."""
        if self.has_errors:
            return FindingSeverity.ERROR
        if any(f.severity is FindingSeverity.WARNING for f in self.findings):
            return FindingSeverity.WARNING
        return FindingSeverity.OK

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation of the report."""
        return {
            "domain": self.domain,
            "status": self.status.value,
            "not_valid_before": (
                self.not_valid_before.isoformat() if self.not_valid_before else None
            ),
            "not_valid_after": (
                self.not_valid_after.isoformat() if self.not_valid_after else None
            ),
            "findings": [finding.to_dict() for finding in self.findings],
        }


class CertificateInspector:
    """Parse certificate and key files and check expiry."""

    def __init__(self, warn_expiry_days: int = 30) -> None:
        """Warn when fewer than *warn_expiry_days* remain."""
        self._warn_expiry_days = warn_expiry_days

    def expiry(self, certificate: Path) -> datetime | None:
        """Return the certificate's ``notAfter`` or ``None`` when unreadable."""
        try:
            return _not_valid_after(_load_certificate(certificate))
        except (OSError, ValueError):
            return None

    def inspect(
        self,
        domain: str,
        certificate: Path,
        key: Path,
        *,
        now: datetime | None = None,
    ) -> InspectionReport:
        """Inspect *certificate* and *key* and return a structured report."""
        now = now or datetime.now(UTC)
        findings: list[Finding] = []

        cert_obj: x509.Certificate | None = None
        key_obj: PrivateKeyTypes | None = None
        not_before: datetime | None = None
        not_after: datetime | None = None

        try:
            cert_obj = _load_certificate(certificate)
            findings.append(
                Finding(
                    scope="certificate",
                    check="parse",
                    severity=FindingSeverity.OK,
                    message=f"Loaded certificate (serial {cert_obj.serial_number})",
                    path=certificate,
                )
            )
        except (OSError, ValueError) as exc:
            findings.append(
                Finding(
                    scope="certificate",
                    check="parse",
                    severity=FindingSeverity.ERROR,
                    message=f"Failed to load certificate: {exc}",
                    path=certificate,
                )
            )

        try:
            key_obj = serialization.load_pem_private_key(key.read_bytes(), password=None)
            findings.append(
                Finding(
                    scope="key",
                    check="parse",
                    severity=FindingSeverity.OK,
                    message="Loaded private key.",
                    path=key,
                )
            )
        except (OSError, ValueError, TypeError) as exc:
            findings.append(
                Finding(
                    scope="key",
                    check="parse",
                    severity=FindingSeverity.ERROR,
                    message=f"Failed to load private key: {exc}",
                    path=key,
                )
            )

        if cert_obj is not None and key_obj is not None:
            matched = _public_keys_match(cert_obj, key_obj)
            findings.append(
                Finding(
                    scope="certificate",
                    check="match",
                    severity=FindingSeverity.OK if matched else FindingSeverity.ERROR,
                    message=(
                        "Certificate and key match."
                        if matched
                        else "Certificate does not match the private key."
                    ),
                    path=certificate,
                )
            )

        if cert_obj is not None:
            not_before = _as_utc(cert_obj.not_valid_before_utc)
            not_after = _not_valid_after(cert_obj)
            if not_after <= now:
                severity = FindingSeverity.ERROR
                message = f"Certificate expired on {not_after.isoformat()}"
            else:
                days_remaining = (not_after - now).days
                if days_remaining <= self._warn_expiry_days:
                    severity = FindingSeverity.WARNING
                    message = (
                        "Certificate expires soon "
                        f"({not_after.isoformat()}, {days_remaining} day(s) remaining)"
                    )
                else:
                    severity = FindingSeverity.OK
                    message = f"Certificate valid until {not_after.isoformat()}"
            findings.append(
                Finding(
                    scope="certificate",
                    check="expiry",
                    severity=severity,
                    message=message,
                    path=certificate,
                )
            )

        return InspectionReport(
            domain=domain,
            findings=tuple(findings),
            not_valid_before=not_before,
            not_valid_after=not_after,
        )


def _load_certificate(path: Path) -> x509.Certificate:
    data = path.read_bytes()
    try:
        return x509.load_pem_x509_certificate(data)
    except ValueError:
        return x509.load_der_x509_certificate(data)


def _not_valid_after(cert: x509.Certificate) -> datetime:
    return _as_utc(cert.not_valid_after_utc)


def _public_keys_match(cert: x509.Certificate, private_key: PrivateKeyTypes) -> bool:
    cert_bytes = cert.public_key().public_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    key_bytes = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    return cert_bytes == key_bytes


def _as_utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=UTC)
    return moment.astimezone(UTC)


__all__ = ["CertificateInspector", "Finding", "FindingSeverity", "InspectionReport"]
