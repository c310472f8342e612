"""Entry point for provisioning requests.

A :class:`ProvisioningRequest` names an operation on one entity type. The
orchestrator validates the payload, dispatches to the matching provisioner
inside a structured-logging scope, and returns the affected entity together
with its related entities. :meth:`Orchestrator.submit` runs a request on a
worker thread so callers never block a shared event loop on slow tools.
"""
from __future__ import annotations

from collections.abc import Callable, Mapping
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from types import TracebackType
from typing import Any

from ..errors import ProvisioningError, ResourceNotFound, ValidationError
from ..logging import OperationScope, StructuredLogger
from ..models import Certificate, SystemUser, VirtualHost
from ..repository import ResourceRegistry
from ..validation import validate_domain, validate_username
from .certificates import CertificateIssuer
from .users import SystemUserProvisioner, UserChanges, UserSpec
from .vhosts import VhostChanges, VhostSpec, VirtualHostProvisioner

ENTITY_TYPES = ("user", "vhost", "certificate", "webserver")
READ_OPERATIONS = frozenset({"list", "show", "inspect"})


@dataclass(frozen=True, slots=True)
class ProvisioningRequest:
    """One inbound operation: ``{operation, entity_type, entity_id?, payload}``."""

    operation: str
    entity_type: str
    entity_id: str | None = None
    payload: Mapping[str, object] = field(default_factory=dict)

    @property
    def command(self) -> str:
        """Return the dotted operation name used in logs."""
        return f"{self.entity_type}.{self.operation}"


@dataclass(slots=True)
class ProvisioningResult:
    """Entity returned by a request plus its related entities."""

    request: ProvisioningRequest
    entity: dict[str, object] | list[dict[str, object]] | None
    related: dict[str, object] = field(default_factory=dict)
    message: str = ""
    op_id: str | None = None

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-serialisable representation."""
        return {
            "operation": self.request.operation,
            "entity_type": self.request.entity_type,
            "entity_id": self.request.entity_id,
            "message": self.message,
            "op_id": self.op_id,
            "entity": self.entity,
            "related": self.related,
        }


Handler = Callable[[ProvisioningRequest, OperationScope | None], ProvisioningResult]


class Orchestrator:
    """Validate, dispatch and log provisioning requests."""

    def __init__(
        self,
        *,
        registry: ResourceRegistry,
        users: SystemUserProvisioner,
        vhosts: VirtualHostProvisioner,
        certificates: CertificateIssuer,
        logger: StructuredLogger,
        workers: int = 4,
    ) -> None:
        """Wire the orchestrator; worker threads start on first :meth:`submit`."""
        self._registry = registry
        self._users = users
        self._vhosts = vhosts
        self._certificates = certificates
        self._logger = logger
        self._workers = workers
        self._pool: ThreadPoolExecutor | None = None
        self._handlers: dict[tuple[str, str], Handler] = {
            ("user", "create"): self._user_create,
            ("user", "update"): self._user_update,
            ("user", "delete"): self._user_delete,
            ("user", "show"): self._user_show,
            ("user", "list"): self._user_list,
            ("vhost", "create"): self._vhost_create,
            ("vhost", "update"): self._vhost_update,
            ("vhost", "delete"): self._vhost_delete,
            ("vhost", "enable_tls"): self._certificate_issue,
            ("vhost", "show"): self._vhost_show,
            ("vhost", "list"): self._vhost_list,
            ("certificate", "issue"): self._certificate_issue,
            ("certificate", "renew"): self._certificate_renew,
            ("certificate", "renew_due"): self._certificate_renew_due,
            ("certificate", "delete"): self._certificate_delete,
            ("certificate", "show"): self._certificate_show,
            ("certificate", "list"): self._certificate_list,
            ("certificate", "inspect"): self._certificate_inspect,
            ("webserver", "reload"): self._webserver_reload,
        }

    # ------------------------------------------------------------------
    def handle(self, request: ProvisioningRequest) -> ProvisioningResult:
        """Run *request* synchronously and return its result.

        Failures propagate as :class:`ProvisioningError`; mutating requests
        are recorded in the operations log either way.
        """
        handler = self._handlers.get((request.entity_type, request.operation))
        if handler is None:
            raise ValidationError(
                f"Unsupported operation '{request.operation}' for '{request.entity_type}'."
            )
        if request.operation in READ_OPERATIONS:
            return handler(request, None)

        target = {"entity_type": request.entity_type, "entity_id": request.entity_id}
        with self._logger.operation(
            request.command,
            args=dict(request.payload),
            target=target,
        ) as op:
            try:
                result = handler(request, op)
            except ProvisioningError as exc:
                op.error(exc.message, rc=int(exc.exit_code), context=exc.to_dict())
                raise
            result.op_id = op.op_id
            if op.result is None:
                op.success(result.message, context={"entity_id": request.entity_id})
            return result

    def submit(self, request: ProvisioningRequest) -> Future[ProvisioningResult]:
        """Queue *request* on the worker pool."""
        if self._pool is None:
            self._pool = ThreadPoolExecutor(
                max_workers=self._workers, thread_name_prefix="hostctl-provision"
            )
        return self._pool.submit(self.handle, request)

    def shutdown(self, *, wait: bool = True) -> None:
        """Stop the worker pool."""
        if self._pool is not None:
            self._pool.shutdown(wait=wait)
            self._pool = None

    def __enter__(self) -> Orchestrator:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.shutdown()

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------
    def _user_create(
        self, request: ProvisioningRequest, op: OperationScope | None
    ) -> ProvisioningResult:
        payload = request.payload
        spec = UserSpec(
            name=_required_str(payload, "name", request.entity_id),
            shell=_optional_str(payload, "shell"),
            ssh_enabled=_bool(payload, "ssh_enabled", False),
            ftp_enabled=_bool(payload, "ftp_enabled", False),
            description=_optional_str(payload, "description"),
            created_by=_optional_str(payload, "created_by"),
        )
        user = self._users.create(spec, op=op)
        return self._user_result(request, user, f"System user '{user.name}' created.")

    def _user_update(
        self, request: ProvisioningRequest, op: OperationScope | None
    ) -> ProvisioningResult:
        payload = request.payload
        name = _required_str(payload, "name", request.entity_id)
        for immutable in ("home_directory", "shell"):
            if immutable in payload:
                raise ValidationError(f"System user field '{immutable}' cannot be changed.")
        if "name" in payload and request.entity_id and payload["name"] != request.entity_id:
            raise ValidationError("System user names cannot be changed.")
        changes = UserChanges(
            description=_optional_str(payload, "description"),
            ssh_enabled=_optional_bool(payload, "ssh_enabled"),
            ftp_enabled=_optional_bool(payload, "ftp_enabled"),
        )
        user = self._users.update(name, changes, op=op)
        return self._user_result(request, user, f"System user '{user.name}' updated.")

    def _user_delete(
        self, request: ProvisioningRequest, op: OperationScope | None
    ) -> ProvisioningResult:
        name = _required_str(request.payload, "name", request.entity_id)
        user, removed = self._users.delete(name, op=op)
        return ProvisioningResult(
            request=request,
            entity=user.to_dict(),
            related={"vhosts": [vhost.to_dict() for vhost in removed]},
            message=f"System user '{user.name}' deleted.",
        )

    def _user_show(
        self, request: ProvisioningRequest, op: OperationScope | None
    ) -> ProvisioningResult:
        name = validate_username(_required_str(request.payload, "name", request.entity_id))
        user = self._registry.users.find(name)
        if user is None:
            raise ResourceNotFound(f"System user '{name}' not found.")
        return self._user_result(request, user, "")

    def _user_list(
        self, request: ProvisioningRequest, op: OperationScope | None
    ) -> ProvisioningResult:
        users = self._registry.users.list()
        return ProvisioningResult(request=request, entity=[user.to_dict() for user in users])

    def _user_result(
        self,
        request: ProvisioningRequest,
        user: SystemUser,
        message: str,
    ) -> ProvisioningResult:
        vhosts = self._registry.vhosts_for_user(user.name)
        return ProvisioningResult(
            request=request,
            entity=user.to_dict(),
            related={"vhosts": [vhost.to_dict() for vhost in vhosts]},
            message=message,
        )

    # ------------------------------------------------------------------
    # Virtual hosts
    # ------------------------------------------------------------------
    def _vhost_create(
        self, request: ProvisioningRequest, op: OperationScope | None
    ) -> ProvisioningResult:
        payload = request.payload
        document_root = _optional_str(payload, "document_root")
        spec = VhostSpec(
            domain=_required_str(payload, "domain", request.entity_id),
            system_user=_required_str(payload, "system_user"),
            document_root=Path(document_root) if document_root else None,
            php_version=_optional_str(payload, "php_version"),
            status=_optional_str(payload, "status") or "active",
            ssl_enabled=_bool(payload, "ssl_enabled", False),
            custom_config=_optional_str(payload, "custom_config"),
        )
        vhost = self._vhosts.create(spec, op=op)
        return self._vhost_result(request, vhost, f"Virtual host '{vhost.domain}' is live.")

    def _vhost_update(
        self, request: ProvisioningRequest, op: OperationScope | None
    ) -> ProvisioningResult:
        payload = request.payload
        domain = _required_str(payload, "domain", request.entity_id)
        if "domain" in payload and request.entity_id and payload["domain"] != request.entity_id:
            raise ValidationError("Virtual host domains cannot be changed.")
        document_root = _optional_str(payload, "document_root")
        changes = VhostChanges(
            system_user=_optional_str(payload, "system_user"),
            document_root=Path(document_root) if document_root else None,
            php_version=_optional_str(payload, "php_version"),
            status=_optional_str(payload, "status"),
            ssl_enabled=_optional_bool(payload, "ssl_enabled"),
            custom_config=_optional_str(payload, "custom_config"),
        )
        vhost = self._vhosts.update(domain, changes, op=op)
        return self._vhost_result(request, vhost, f"Virtual host '{vhost.domain}' updated.")

    def _vhost_delete(
        self, request: ProvisioningRequest, op: OperationScope | None
    ) -> ProvisioningResult:
        domain = _required_str(request.payload, "domain", request.entity_id)
        vhost = self._vhosts.delete(domain, op=op)
        return ProvisioningResult(
            request=request,
            entity=vhost.to_dict(),
            related={"owner": _as_dict(self._registry.users.find(vhost.system_user))},
            message=f"Virtual host '{vhost.domain}' deleted.",
        )

    def _vhost_show(
        self, request: ProvisioningRequest, op: OperationScope | None
    ) -> ProvisioningResult:
        domain = validate_domain(_required_str(request.payload, "domain", request.entity_id))
        vhost = self._registry.vhosts.find(domain)
        if vhost is None:
            raise ResourceNotFound(f"Virtual host '{domain}' not found.")
        result = self._vhost_result(request, vhost, "")
        result.related["site"] = self._vhosts.nginx.diagnostics(domain)
        return result

    def _vhost_list(
        self, request: ProvisioningRequest, op: OperationScope | None
    ) -> ProvisioningResult:
        owner = _optional_str(request.payload, "system_user")
        vhosts = (
            self._registry.vhosts_for_user(owner) if owner else self._registry.vhosts.list()
        )
        return ProvisioningResult(request=request, entity=[vhost.to_dict() for vhost in vhosts])

    def _vhost_result(
        self,
        request: ProvisioningRequest,
        vhost: VirtualHost,
        message: str,
    ) -> ProvisioningResult:
        return ProvisioningResult(
            request=request,
            entity=vhost.to_dict(),
            related={
                "owner": _as_dict(self._registry.users.find(vhost.system_user)),
                "certificate": _as_dict(self._registry.certificates.find(vhost.domain)),
            },
            message=message,
        )

    # ------------------------------------------------------------------
    # Certificates
    # ------------------------------------------------------------------
    def _certificate_issue(
        self, request: ProvisioningRequest, op: OperationScope | None
    ) -> ProvisioningResult:
        payload = request.payload
        domain = _required_str(payload, "domain", request.entity_id)
        email = _required_str(payload, "email")
        vhost, certificate = self._certificates.issue(domain, email, op=op)
        return ProvisioningResult(
            request=request,
            entity=certificate.to_dict(),
            related={"vhost": vhost.to_dict()},
            message=f"Certificate issued for '{domain}'.",
        )

    def _certificate_renew(
        self, request: ProvisioningRequest, op: OperationScope | None
    ) -> ProvisioningResult:
        domain = _required_str(request.payload, "domain", request.entity_id)
        certificate = self._certificates.renew(domain, op=op)
        return self._certificate_result(
            request, certificate, f"Certificate for '{certificate.domain}' renewed."
        )

    def _certificate_renew_due(
        self, request: ProvisioningRequest, op: OperationScope | None
    ) -> ProvisioningResult:
        outcomes = self._certificates.renew_due(op=op)
        failed = [outcome for outcome in outcomes if not outcome.renewed]
        if failed and op is not None:
            op.warning(
                f"{len(failed)} certificate(s) failed to renew.",
                warnings=[f"{outcome.domain}: {outcome.message}" for outcome in failed],
                changed=len(outcomes) - len(failed),
            )
        return ProvisioningResult(
            request=request,
            entity=[outcome.to_dict() for outcome in outcomes],
            message=f"{len(outcomes) - len(failed)} of {len(outcomes)} certificate(s) renewed.",
        )

    def _certificate_delete(
        self, request: ProvisioningRequest, op: OperationScope | None
    ) -> ProvisioningResult:
        domain = _required_str(request.payload, "domain", request.entity_id)
        certificate = self._certificates.delete(domain, op=op)
        return self._certificate_result(
            request, certificate, f"Certificate for '{certificate.domain}' deleted."
        )

    def _certificate_show(
        self, request: ProvisioningRequest, op: OperationScope | None
    ) -> ProvisioningResult:
        domain = validate_domain(_required_str(request.payload, "domain", request.entity_id))
        certificate = self._registry.certificates.find(domain)
        if certificate is None:
            raise ResourceNotFound(f"No certificate recorded for '{domain}'.")
        return self._certificate_result(request, certificate, "")

    def _certificate_list(
        self, request: ProvisioningRequest, op: OperationScope | None
    ) -> ProvisioningResult:
        certificates = self._registry.certificates.list()
        return ProvisioningResult(
            request=request,
            entity=[certificate.to_dict() for certificate in certificates],
        )

    def _certificate_inspect(
        self, request: ProvisioningRequest, op: OperationScope | None
    ) -> ProvisioningResult:
        domain = _required_str(request.payload, "domain", request.entity_id)
        report = self._certificates.inspect(domain)
        return ProvisioningResult(request=request, entity=report.to_dict())

    def _certificate_result(
        self,
        request: ProvisioningRequest,
        certificate: Certificate,
        message: str,
    ) -> ProvisioningResult:
        return ProvisioningResult(
            request=request,
            entity=certificate.to_dict(),
            related={"vhost": _as_dict(self._registry.vhosts.find(certificate.domain))},
            message=message,
        )

    # ------------------------------------------------------------------
    # Web server
    # ------------------------------------------------------------------
    def _webserver_reload(
        self, request: ProvisioningRequest, op: OperationScope | None
    ) -> ProvisioningResult:
        output = self._vhosts.reload(op=op)
        return ProvisioningResult(
            request=request,
            entity={"test_output": output},
            message="nginx configuration tested and reloaded.",
        )


# ----------------------------------------------------------------------
# Payload helpers
# ----------------------------------------------------------------------
def _required_str(payload: Mapping[str, object], key: str, fallback: str | None = None) -> str:
    value = payload.get(key, fallback)
    if value is None or str(value).strip() == "":
        raise ValidationError(f"Field '{key}' is required.")
    return str(value).strip()


def _optional_str(payload: Mapping[str, object], key: str) -> str | None:
    value = payload.get(key)
    if value is None:
        return None
    return str(value)


def _optional_bool(payload: Mapping[str, object], key: str) -> bool | None:
    if key not in payload or payload[key] is None:
        return None
    return _bool(payload, key, False)


def _bool(payload: Mapping[str, object], key: str, default: bool) -> bool:
    value: Any = payload.get(key, default)
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"1", "true", "yes", "on"}:
            return True
        if lowered in {"0", "false", "no", "off", ""}:
            return False
    if isinstance(value, int):
        return bool(value)
    raise ValidationError(f"Field '{key}' must be a boolean.")


def _as_dict(entity: SystemUser | VirtualHost | Certificate | None) -> dict[str, object] | None:
    return entity.to_dict() if entity is not None else None


__all__ = ["ENTITY_TYPES", "Orchestrator", "ProvisioningRequest", "ProvisioningResult"]
