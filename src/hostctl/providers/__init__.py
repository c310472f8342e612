"""Provider interfaces for hostctl."""
from __future__ import annotations

from .accounts import AccountSpec, AccountsProvider, AccountStatus, inspect_account
from .certbot import CertbotProvider
from .files import FileOperations
from .nginx import NginxProvider, SiteSnapshot

__all__ = [
    "AccountSpec",
    "AccountStatus",
    "AccountsProvider",
    "CertbotProvider",
    "FileOperations",
    "NginxProvider",
    "SiteSnapshot",
    "inspect_account",
]
