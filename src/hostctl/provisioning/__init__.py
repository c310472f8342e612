"""Provisioning core: users, virtual hosts, certificates and the orchestrator."""
from __future__ import annotations

from .certificates import CertificateIssuer, RenewalOutcome
from .orchestrator import Orchestrator, ProvisioningRequest, ProvisioningResult
from .users import SystemUserProvisioner, UserChanges, UserSpec
from .vhosts import VhostChanges, VhostSpec, VirtualHostProvisioner

__all__ = [
    "CertificateIssuer",
    "Orchestrator",
    "ProvisioningRequest",
    "ProvisioningResult",
    "RenewalOutcome",
    "SystemUserProvisioner",
    "UserChanges",
    "UserSpec",
    "VhostChanges",
    "VhostSpec",
    "VirtualHostProvisioner",
]
