"""Virtual-host configuration rendering.

Rendering is pure: the same :class:`VhostRenderSpec` always produces
byte-identical text. Nothing here touches the filesystem beyond loading
templates.

``custom_config`` is inserted verbatim. It is an operator-supplied fragment
and is trusted as such; hostctl does not parse or sanitise it. The web-server
self-test is the only gate it passes through.
"""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from .templates import TemplateEngine

VHOST_TEMPLATE = "nginx/vhost.conf.j2"
PLACEHOLDER_TEMPLATE = "site/index.html.j2"
HTTP_PORT = 80
HTTPS_PORT = 443


@dataclass(frozen=True, slots=True)
class VhostRenderSpec:
    """Declarative inputs for one rendered site definition."""

    domain: str
    document_root: Path
    owner: str
    php_version: str
    tls_enabled: bool = False
    custom_config: str | None = None


def php_socket_path(socket_dir: Path, owner: str, php_version: str) -> Path:
    """Return the PHP-FPM pool socket for *owner* on *php_version*.

    Each OS account gets its own pool per runtime version, which keeps
    tenants' PHP processes apart.
    """
    return socket_dir / f"php{php_version}-fpm-{owner}.sock"


def certificate_paths(live_dir: Path, domain: str) -> dict[str, Path]:
    """Return the canonical certificate material paths for *domain*."""
    base = live_dir / domain
    return {
        "cert": base / "fullchain.pem",
        "key": base / "privkey.pem",
        "chain": base / "chain.pem",
    }


@dataclass(frozen=True)
class ConfigRenderer:
    """Render nginx site definitions and placeholder pages."""

    templates: TemplateEngine
    php_socket_dir: Path = Path("/var/run/php")
    certificate_live_dir: Path = Path("/etc/letsencrypt/live")

    def render(self, spec: VhostRenderSpec) -> str:
        """Return the site definition text for *spec*."""
        material = certificate_paths(self.certificate_live_dir, spec.domain)
        custom = spec.custom_config or ""
        context = {
            "domain": spec.domain,
            "document_root": str(spec.document_root),
            "php_socket": str(php_socket_path(self.php_socket_dir, spec.owner, spec.php_version)),
            "tls_enabled": spec.tls_enabled,
            "certificate": str(material["cert"]),
            "certificate_key": str(material["key"]),
            "http_port": HTTP_PORT,
            "https_port": HTTPS_PORT,
            "custom_config": custom,
        }
        return self.templates.render_to_string(VHOST_TEMPLATE, context)

    def render_placeholder(self, domain: str, owner: str) -> str:
        """Return the landing page written into a fresh document root."""
        return self.templates.render_to_string(
            PLACEHOLDER_TEMPLATE,
            {"domain": domain, "owner": owner},
        )


__all__ = [
    "ConfigRenderer",
    "HTTPS_PORT",
    "HTTP_PORT",
    "VhostRenderSpec",
    "certificate_paths",
    "php_socket_path",
]
