"""Tests for virtual-host rendering."""
from __future__ import annotations

from pathlib import Path

import pytest

from hostctl.renderer import (
    ConfigRenderer,
    VhostRenderSpec,
    certificate_paths,
    php_socket_path,
)
from hostctl.templates import TemplateEngine


@pytest.fixture
def renderer() -> ConfigRenderer:
    """Return a renderer using the built-in templates."""
    return ConfigRenderer(
        templates=TemplateEngine.with_overrides(None),
        php_socket_dir=Path("/run/php"),
        certificate_live_dir=Path("/etc/letsencrypt/live"),
    )


def _spec(**overrides: object) -> VhostRenderSpec:
    values: dict[str, object] = {
        "domain": "example.com",
        "document_root": Path("/home/alice/public_html"),
        "owner": "alice",
        "php_version": "8.2",
    }
    values.update(overrides)
    return VhostRenderSpec(**values)  # type: ignore[arg-type]


def test_plain_http_definition(renderer: ConfigRenderer) -> None:
    """Without TLS only port 80 is served and no certificate is referenced."""
    text = renderer.render(_spec())

    assert "listen 80;" in text
    assert "listen [::]:80;" in text
    assert "server_name example.com;" in text
    assert "root /home/alice/public_html;" in text
    assert "fastcgi_pass unix:/run/php/php8.2-fpm-alice.sock;" in text
    assert "ssl_certificate" not in text
    assert "return 301" not in text


def test_tls_definition_adds_redirect_block(renderer: ConfigRenderer) -> None:
    """With TLS the main block listens on 443 and port 80 redirects."""
    text = renderer.render(_spec(tls_enabled=True))

    assert "listen 443 ssl http2;" in text
    assert "ssl_certificate /etc/letsencrypt/live/example.com/fullchain.pem;" in text
    assert "ssl_certificate_key /etc/letsencrypt/live/example.com/privkey.pem;" in text
    assert "ssl_protocols TLSv1.2 TLSv1.3;" in text
    assert "return 301 https://$server_name$request_uri;" in text
    assert text.count("server {") == 2


def test_custom_config_is_inserted_verbatim(renderer: ConfigRenderer) -> None:
    """The operator fragment appears unchanged inside the server block."""
    fragment = "client_max_body_size 64m; # <raw & untouched>"

    text = renderer.render(_spec(custom_config=fragment))

    assert fragment in text
    assert text.index(fragment) < text.rindex("}")


def test_rendering_is_deterministic(renderer: ConfigRenderer) -> None:
    """Identical inputs produce byte-identical output."""
    spec = _spec(tls_enabled=True, custom_config="gzip on;")

    assert renderer.render(spec) == renderer.render(spec)


def test_hidden_files_are_denied_except_well_known(renderer: ConfigRenderer) -> None:
    """Dot-files are blocked while ACME challenges stay reachable."""
    text = renderer.render(_spec())

    assert r"location ~ /\.(?!well-known)" in text
    assert "deny all;" in text


def test_placeholder_mentions_domain_and_owner(renderer: ConfigRenderer) -> None:
    """The landing page names the site and its owner."""
    page = renderer.render_placeholder("example.com", "alice")

    assert "<title>Welcome to example.com</title>" in page
    assert "alice" in page


def test_path_helpers() -> None:
    """Socket and certificate paths follow the per-owner and per-domain layout."""
    assert php_socket_path(Path("/run/php"), "bob", "8.3") == Path("/run/php/php8.3-fpm-bob.sock")
    material = certificate_paths(Path("/le/live"), "example.org")
    assert material["cert"] == Path("/le/live/example.org/fullchain.pem")
    assert material["key"] == Path("/le/live/example.org/privkey.pem")
    assert material["chain"] == Path("/le/live/example.org/chain.pem")
