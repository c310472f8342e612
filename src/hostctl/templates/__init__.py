"""Jinja2 template engine with optional on-disk overrides.

Built-in templates ship inside this package. An operator may drop a file
with the same relative name into the configured ``templates_dir`` to shadow
the built-in copy.
"""
from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

import jinja2
from jinja2 import (
    ChoiceLoader,
    Environment,
    FileSystemLoader,
    PackageLoader,
    StrictUndefined,
    TemplateNotFound,
)

from ..errors import ProvisioningError
from ..exit_codes import ExitCode


class TemplateError(ProvisioningError):
    """Raised when a template cannot be located or rendered."""

    exit_code = ExitCode.ENVIRONMENT
    kind = "template_error"


@dataclass(frozen=True)
class TemplateEngine:
    """Render text templates with strict variable handling."""

    environment: Environment

    @classmethod
    def with_overrides(cls, override_dir: Path | None) -> TemplateEngine:
        """Return an engine that prefers templates from *override_dir*."""
        loaders = []
        if override_dir is not None and Path(override_dir).expanduser().is_dir():
            loaders.append(FileSystemLoader(str(Path(override_dir).expanduser())))
        loaders.append(PackageLoader("hostctl", "templates"))
        environment = Environment(
            loader=ChoiceLoader(loaders),
            undefined=StrictUndefined,
            autoescape=False,
            keep_trailing_newline=True,
            trim_blocks=True,
            lstrip_blocks=True,
        )
        return cls(environment=environment)

    def render_to_string(self, template_name: str, context: Mapping[str, object]) -> str:
        """Render *template_name* with *context* and return the text."""
        try:
            template = self.environment.get_template(template_name)
        except TemplateNotFound as exc:
            raise TemplateError(f"Template '{template_name}' not found.") from exc
        except jinja2.TemplateError as exc:
            raise TemplateError(f"Failed to load template '{template_name}': {exc}") from exc
        try:
            return template.render(**dict(context))
        except jinja2.TemplateError as exc:
            raise TemplateError(f"Failed to render template '{template_name}': {exc}") from exc


__all__ = ["TemplateEngine", "TemplateError"]
