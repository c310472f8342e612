"""Tests for the template rendering engine."""
from __future__ import annotations

from pathlib import Path

import pytest

from hostctl.templates import TemplateEngine, TemplateError


def test_render_to_string_uses_builtin_templates() -> None:
    """Built-in templates render with strict variables."""
    engine = TemplateEngine.with_overrides(None)

    output = engine.render_to_string("site/index.html.j2", {"domain": "a.test", "owner": "ann"})

    assert "Welcome to a.test" in output


def test_override_directory_shadows_builtin(tmp_path: Path) -> None:
    """A template with the same relative name in the override dir wins."""
    override = tmp_path / "templates" / "site"
    override.mkdir(parents=True)
    (override / "index.html.j2").write_text("custom {{ domain }}\n", encoding="utf-8")

    engine = TemplateEngine.with_overrides(tmp_path / "templates")

    assert engine.render_to_string("site/index.html.j2", {"domain": "b.test"}) == "custom b.test\n"


def test_missing_override_directory_falls_back(tmp_path: Path) -> None:
    """A configured but absent override directory is ignored."""
    engine = TemplateEngine.with_overrides(tmp_path / "nope")

    output = engine.render_to_string("site/index.html.j2", {"domain": "c.test", "owner": "cy"})

    assert "c.test" in output


def test_unknown_template_raises() -> None:
    """Missing templates surface as :class:`TemplateError`."""
    engine = TemplateEngine.with_overrides(None)

    with pytest.raises(TemplateError, match="not found"):
        engine.render_to_string("nginx/missing.j2", {})


def test_undefined_variable_raises() -> None:
    """StrictUndefined turns a missing context key into a render failure."""
    engine = TemplateEngine.with_overrides(None)

    with pytest.raises(TemplateError, match="Failed to render"):
        engine.render_to_string("site/index.html.j2", {"domain": "d.test"})


def test_syntax_error_in_override_raises(tmp_path: Path) -> None:
    """A broken override template is reported rather than crashing."""
    override = tmp_path / "nginx"
    override.mkdir()
    (override / "vhost.conf.j2").write_text("{% if %}\n", encoding="utf-8")

    engine = TemplateEngine.with_overrides(tmp_path)

    with pytest.raises(TemplateError, match="Failed to load"):
        engine.render_to_string("nginx/vhost.conf.j2", {})
