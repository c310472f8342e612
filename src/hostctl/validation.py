"""Input validation applied before any OS-level action."""
from __future__ import annotations

import os
import re
from collections.abc import Sequence
from pathlib import Path

from .errors import ValidationError
from .models import VhostStatus

USERNAME_PATTERN = re.compile(r"^[a-z_][a-z0-9_-]*$")
DOMAIN_PATTERN = re.compile(r"^[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")
EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
MAX_USERNAME_LENGTH = 32
MAX_DOMAIN_LENGTH = 253


def validate_username(name: str) -> str:
    """Return *name* when it is a usable OS account name."""
    candidate = (name or "").strip()
    if not candidate:
        raise ValidationError("User name is required.")
    if len(candidate) > MAX_USERNAME_LENGTH:
        raise ValidationError(
            f"User name '{candidate}' exceeds {MAX_USERNAME_LENGTH} characters."
        )
    if not USERNAME_PATTERN.match(candidate):
        raise ValidationError(
            f"User name '{candidate}' must start with a lower-case letter or '_' and "
            "contain only lower-case letters, digits, '_' and '-'."
        )
    return candidate


def validate_domain(domain: str) -> str:
    """Return *domain* lower-cased when it is a DNS-style name."""
    candidate = (domain or "").strip().lower()
    if not candidate:
        raise ValidationError("Domain is required.")
    if len(candidate) > MAX_DOMAIN_LENGTH or not DOMAIN_PATTERN.match(candidate):
        raise ValidationError(f"Domain '{domain}' is not a valid DNS name.")
    labels = candidate.split(".")
    if any(not label or label.startswith("-") or label.endswith("-") for label in labels):
        raise ValidationError(f"Domain '{domain}' is not a valid DNS name.")
    return candidate


def validate_document_root(path: str | os.PathLike[str]) -> Path:
    """Return *path* when it is an absolute location without ``..`` segments."""
    candidate = Path(path)
    if not candidate.is_absolute():
        raise ValidationError(f"Document root '{path}' must be an absolute path.")
    if ".." in candidate.parts:
        raise ValidationError(f"Document root '{path}' must not contain '..'.")
    return candidate


def validate_php_version(version: str, allowed: Sequence[str]) -> str:
    """Return *version* when it is one of the configured runtimes."""
    candidate = str(version).strip()
    if candidate not in allowed:
        raise ValidationError(
            f"PHP version '{candidate}' is not supported (choose from {', '.join(allowed)})."
        )
    return candidate


def validate_status(value: str | VhostStatus) -> VhostStatus:
    """Return the :class:`VhostStatus` a caller asked for."""
    try:
        status = VhostStatus(value)
    except ValueError as exc:
        raise ValidationError(f"Unknown status '{value}'.") from exc
    if status not in VhostStatus.user_selectable():
        choices = ", ".join(item.value for item in VhostStatus.user_selectable())
        raise ValidationError(
            f"Status '{status.value}' cannot be requested (choose from {choices})."
        )
    return status


def validate_email(email: str) -> str:
    """Return *email* when it looks like a contact address."""
    candidate = (email or "").strip()
    if not EMAIL_PATTERN.match(candidate):
        raise ValidationError(f"Contact email '{email}' is not valid.")
    return candidate


__all__ = [
    "validate_document_root",
    "validate_domain",
    "validate_email",
    "validate_php_version",
    "validate_status",
    "validate_username",
]
