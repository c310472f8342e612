"""Tests for input validation."""
from __future__ import annotations

from pathlib import Path

import pytest

from hostctl.errors import ValidationError
from hostctl.models import VhostStatus
from hostctl.validation import (
    validate_document_root,
    validate_domain,
    validate_email,
    validate_php_version,
    validate_status,
    validate_username,
)


@pytest.mark.parametrize("name", ["alice", "_svc", "web_01", "a-b", "a" * 32])
def test_valid_usernames(name: str) -> None:
    """Lower-case letters, digits, underscores and dashes are accepted."""
    assert validate_username(name) == name


@pytest.mark.parametrize(
    "name",
    ["", "   ", "bad name", "root;rm", "../etc", "-leading", "x" * 33, "ünï", "Alice", "123"],
)
def test_invalid_usernames(name: str) -> None:
    """Anything else is rejected before an OS call is made."""
    with pytest.raises(ValidationError):
        validate_username(name)


@pytest.mark.parametrize(
    ("domain", "expected"),
    [
        ("example.com", "example.com"),
        ("Sub.Example.COM", "sub.example.com"),
        ("my-site.co.uk", "my-site.co.uk"),
    ],
)
def test_valid_domains(domain: str, expected: str) -> None:
    """DNS names are accepted and lower-cased."""
    assert validate_domain(domain) == expected


@pytest.mark.parametrize(
    "domain",
    ["", "localhost", "exa mple.com", "example.c", "a..b.com", "-a.com", "a-.com", "a/b.com"],
)
def test_invalid_domains(domain: str) -> None:
    """Malformed names are rejected."""
    with pytest.raises(ValidationError):
        validate_domain(domain)


def test_overlong_domain_is_rejected() -> None:
    """Names longer than DNS allows are rejected."""
    with pytest.raises(ValidationError):
        validate_domain(("a" * 60 + ".") * 5 + "com")


def test_document_root_must_be_absolute() -> None:
    """Document roots are absolute paths without parent references."""
    assert validate_document_root("/srv/www/a") == Path("/srv/www/a")
    for bad in ("public_html", "./www", "/srv/../etc"):
        with pytest.raises(ValidationError):
            validate_document_root(bad)


def test_php_version_must_be_configured() -> None:
    """Only configured runtimes are accepted."""
    assert validate_php_version("8.2", ("8.1", "8.2")) == "8.2"
    with pytest.raises(ValidationError, match="8.1, 8.2"):
        validate_php_version("7.4", ("8.1", "8.2"))


def test_status_values() -> None:
    """Callers may request any status but ``pending``."""
    assert validate_status("maintenance") is VhostStatus.MAINTENANCE
    assert validate_status(VhostStatus.INACTIVE) is VhostStatus.INACTIVE
    with pytest.raises(ValidationError, match="cannot be requested"):
        validate_status("pending")
    with pytest.raises(ValidationError, match="Unknown status"):
        validate_status("paused")


def test_email() -> None:
    """Contact addresses need a local part and a dotted domain."""
    assert validate_email(" ops@example.com ") == "ops@example.com"
    for bad in ("", "ops", "ops@example", "a b@example.com"):
        with pytest.raises(ValidationError):
            validate_email(bad)
