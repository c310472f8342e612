"""Command-line interface for hostctl.

Every mutating command builds a :class:`~hostctl.provisioning.ProvisioningRequest`
and hands it to the orchestrator's worker pool. Failures print the structured
error (including captured tool output and failed compensating steps) and exit
with the error's exit code.
"""
from __future__ import annotations

import json
import textwrap
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import NoReturn

import typer
from rich.console import Console
from rich.table import Table

from . import __version__
from .config import ConfigError, load_config
from .errors import ProvisioningError
from .exit_codes import ExitCode
from .models import VhostStatus
from .provisioning import ProvisioningRequest, ProvisioningResult
from .runtime import RuntimeContext, build_runtime

console = Console()
err_console = Console(stderr=True)

app = typer.Typer(
    add_completion=False,
    help=textwrap.dedent(
        """
        Provision hosting tenants on a single machine.

        Manages OS accounts, nginx virtual hosts and Let's Encrypt
        certificates while keeping the hostctl registry in step with the
        live system.
        """
    ).strip(),
)
users_app = typer.Typer(help="Manage tenant OS accounts.")
vhosts_app = typer.Typer(help="Manage nginx virtual hosts.")
certs_app = typer.Typer(help="Manage TLS certificates.")
nginx_app = typer.Typer(help="Operate the nginx web server.")
config_app = typer.Typer(help="Inspect the effective configuration.")

app.add_typer(users_app, name="user")
app.add_typer(vhosts_app, name="vhost")
app.add_typer(certs_app, name="cert")
app.add_typer(nginx_app, name="nginx")
app.add_typer(config_app, name="config")

CONFIG_FILE_OPTION = typer.Option(
    None,
    "--config-file",
    dir_okay=False,
    help="Override the path to hostctl's YAML config file.",
)

JSON_OPTION = typer.Option(
    False,
    "--json",
    help="Emit machine-readable JSON instead of formatted text.",
)

YES_OPTION = typer.Option(
    False,
    "--yes",
    "-y",
    help="Do not ask for confirmation.",
)

STATUS_CHOICES = ", ".join(status.value for status in VhostStatus.user_selectable())


# ----------------------------------------------------------------------
# Runtime plumbing
# ----------------------------------------------------------------------
def _ensure_runtime(
    ctx: typer.Context,
    config_file: Path | None,
    lock_timeout_override: float | None = None,
) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime

    overrides: dict[str, object] = {}
    if lock_timeout_override is not None:
        overrides["lock_timeout"] = lock_timeout_override

    try:
        config = load_config(config_file=config_file, overrides=overrides)
    except ConfigError as exc:
        err_console.print(f"[red]Configuration error:[/red] {exc}")
        raise typer.Exit(code=int(ExitCode.VALIDATION)) from exc
    runtime = build_runtime(config)
    ctx.obj = runtime
    return runtime


def _get_runtime(ctx: typer.Context) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime
    return _ensure_runtime(ctx, None, None)


@app.callback(invoke_without_command=True)
def _root(  # noqa: D401 - Typer displays help for us, docstring optional.
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show the hostctl version and exit.",
    ),
    config_file: Path | None = CONFIG_FILE_OPTION,
    lock_timeout: float | None = typer.Option(
        None,
        "--lock-timeout",
        help="Override the web-server lock timeout in seconds.",
    ),
) -> None:
    """Entry point callback invoked for every CLI execution."""
    if version:
        console.print(f"hostctl {__version__}")
        raise typer.Exit(code=0)

    _ensure_runtime(ctx, config_file, lock_timeout)

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        raise typer.Exit(code=0)


def _submit(
    runtime: RuntimeContext,
    request: ProvisioningRequest,
    *,
    json_output: bool,
) -> ProvisioningResult:
    """Run *request* on the worker pool, exiting with its error on failure."""
    try:
        return runtime.orchestrator.submit(request).result()
    except ProvisioningError as exc:
        _command_error(exc, json_output=json_output)


def _command_error(exc: ProvisioningError, *, json_output: bool) -> NoReturn:
    """Emit a structured error and terminate the command."""
    rc = int(exc.exit_code)
    if json_output:
        console.print_json(data=exc.to_dict())
        raise typer.Exit(code=rc)
    err_console.print(f"[red]{exc.message}[/red]")
    if exc.output:
        err_console.print(exc.output, style="dim", markup=False, highlight=False)
    for failure in exc.rollback_errors:
        err_console.print(f"[yellow]Rollback step failed:[/yellow] {failure}")
    compensated = getattr(exc, "compensated", None)
    if compensated is not None:
        state = "removed again" if compensated else "left in place"
        err_console.print(f"[yellow]OS account was {state} after the failure.[/yellow]")
    raise typer.Exit(code=rc)


# ----------------------------------------------------------------------
# Rendering helpers
# ----------------------------------------------------------------------
def _render_result(result: ProvisioningResult, *, json_output: bool) -> None:
    if json_output:
        console.print_json(data=result.to_dict())
        return
    if result.message:
        console.print(f"[green]{result.message}[/green]")
    if isinstance(result.entity, Mapping):
        _render_mapping(result.entity)
    for name, related in result.related.items():
        if related in (None, [], {}):
            continue
        console.print(f"[bold]{name}[/bold]")
        if isinstance(related, Mapping):
            _render_mapping(related)
        elif isinstance(related, Sequence) and not isinstance(related, str):
            for item in related:
                if isinstance(item, Mapping):
                    console.print(f"  - {item.get('domain') or item.get('name')}")


def _render_mapping(data: Mapping[str, object]) -> None:
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Key", style="bold")
    table.add_column("Value")
    for key, value in data.items():
        if isinstance(value, (dict, list)):
            rendered = json.dumps(value, indent=2, sort_keys=True)
        else:
            rendered = "" if value is None else str(value)
        table.add_row(key, rendered)
    console.print(table)


def _render_rows(
    result: ProvisioningResult,
    columns: Sequence[str],
    *,
    json_output: bool,
    empty: str,
) -> None:
    if json_output:
        console.print_json(data=result.entity or [])
        return
    rows = result.entity if isinstance(result.entity, list) else []
    if not rows:
        console.print(f"[yellow]{empty}[/yellow]")
        return
    table = Table(show_header=True, header_style="bold magenta")
    for column in columns:
        table.add_column(column)
    for row in rows:
        table.add_row(*(_cell(row.get(column)) for column in columns))
    console.print(table)


def _cell(value: object) -> str:
    return "" if value is None else str(value)


def _confirm(message: str, yes: bool) -> None:
    if yes:
        return
    if not typer.confirm(message, default=False):
        console.print("[yellow]Aborted.[/yellow]")
        raise typer.Exit(code=0)


# ----------------------------------------------------------------------
# user
# ----------------------------------------------------------------------
@users_app.command("create")
def user_create(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Account name (letters, digits, '_' and '-')."),
    shell: str | None = typer.Option(None, "--shell", help="Login shell."),
    description: str | None = typer.Option(None, "--description", help="Free-text note."),
    ssh: bool = typer.Option(False, "--ssh/--no-ssh", help="Record SSH access."),
    ftp: bool = typer.Option(False, "--ftp/--no-ftp", help="Record FTP access."),
    created_by: str | None = typer.Option(None, "--created-by", help="Requesting operator."),
    json_output: bool = JSON_OPTION,
) -> None:
    """Create an OS account with a home directory under the configured root."""
    runtime = _get_runtime(ctx)
    payload: dict[str, object] = {
        "name": name,
        "shell": shell,
        "description": description,
        "ssh_enabled": ssh,
        "ftp_enabled": ftp,
        "created_by": created_by,
    }
    request = ProvisioningRequest("create", "user", name, payload)
    _render_result(_submit(runtime, request, json_output=json_output), json_output=json_output)


@users_app.command("update")
def user_update(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Account to update."),
    description: str | None = typer.Option(None, "--description", help="Free-text note."),
    ssh: bool | None = typer.Option(None, "--ssh/--no-ssh", help="Record SSH access."),
    ftp: bool | None = typer.Option(None, "--ftp/--no-ftp", help="Record FTP access."),
    json_output: bool = JSON_OPTION,
) -> None:
    """Change an account's description or access flags."""
    runtime = _get_runtime(ctx)
    payload: dict[str, object] = {
        "name": name,
        "description": description,
        "ssh_enabled": ssh,
        "ftp_enabled": ftp,
    }
    request = ProvisioningRequest("update", "user", name, payload)
    _render_result(_submit(runtime, request, json_output=json_output), json_output=json_output)


@users_app.command("delete")
def user_delete(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Account to remove."),
    yes: bool = YES_OPTION,
    json_output: bool = JSON_OPTION,
) -> None:
    """Remove an account, its home directory and all of its virtual hosts."""
    runtime = _get_runtime(ctx)
    _confirm(f"Remove '{name}', its home directory and its virtual hosts?", yes)
    request = ProvisioningRequest("delete", "user", name, {"name": name})
    _render_result(_submit(runtime, request, json_output=json_output), json_output=json_output)


@users_app.command("list")
def user_list(ctx: typer.Context, json_output: bool = JSON_OPTION) -> None:
    """List managed accounts."""
    runtime = _get_runtime(ctx)
    result = _submit(runtime, ProvisioningRequest("list", "user"), json_output=json_output)
    _render_rows(
        result,
        ("name", "home_directory", "shell", "ssh_enabled", "ftp_enabled", "description"),
        json_output=json_output,
        empty="No system users registered.",
    )


@users_app.command("show")
def user_show(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Account to show."),
    json_output: bool = JSON_OPTION,
) -> None:
    """Show one account with its virtual hosts."""
    runtime = _get_runtime(ctx)
    request = ProvisioningRequest("show", "user", name, {"name": name})
    _render_result(_submit(runtime, request, json_output=json_output), json_output=json_output)


# ----------------------------------------------------------------------
# vhost
# ----------------------------------------------------------------------
def _read_custom_config(path: Path | None) -> str | None:
    if path is None:
        return None
    try:
        return path.read_text(encoding="utf-8")
    except OSError as exc:
        err_console.print(f"[red]Cannot read custom configuration {path}: {exc}[/red]")
        raise typer.Exit(code=int(ExitCode.VALIDATION)) from exc


@vhosts_app.command("create")
def vhost_create(
    ctx: typer.Context,
    domain: str = typer.Argument(..., help="Domain served by the virtual host."),
    user: str = typer.Option(..., "--user", "-u", help="Owning system user."),
    document_root: Path | None = typer.Option(
        None,
        "--document-root",
        file_okay=False,
        help="Directory to serve (defaults to <home>/public_html).",
    ),
    php_version: str | None = typer.Option(None, "--php", help="PHP-FPM version."),
    status: str = typer.Option("active", "--status", help=f"One of: {STATUS_CHOICES}."),
    ssl: bool = typer.Option(False, "--ssl/--no-ssl", help="Render HTTPS server blocks."),
    custom_config_file: Path | None = typer.Option(
        None,
        "--custom-config-file",
        dir_okay=False,
        help="File whose contents are appended verbatim to the server block.",
    ),
    json_output: bool = JSON_OPTION,
) -> None:
    """Create, test and enable an nginx virtual host."""
    runtime = _get_runtime(ctx)
    payload: dict[str, object] = {
        "domain": domain,
        "system_user": user,
        "document_root": str(document_root) if document_root else None,
        "php_version": php_version,
        "status": status,
        "ssl_enabled": ssl,
        "custom_config": _read_custom_config(custom_config_file),
    }
    request = ProvisioningRequest("create", "vhost", domain, payload)
    _render_result(_submit(runtime, request, json_output=json_output), json_output=json_output)


@vhosts_app.command("update")
def vhost_update(
    ctx: typer.Context,
    domain: str = typer.Argument(..., help="Virtual host to update."),
    document_root: Path | None = typer.Option(
        None, "--document-root", file_okay=False, help="Directory to serve."
    ),
    php_version: str | None = typer.Option(None, "--php", help="PHP-FPM version."),
    status: str | None = typer.Option(None, "--status", help=f"One of: {STATUS_CHOICES}."),
    ssl: bool | None = typer.Option(None, "--ssl/--no-ssl", help="Render HTTPS server blocks."),
    custom_config_file: Path | None = typer.Option(
        None,
        "--custom-config-file",
        dir_okay=False,
        help="Replace the custom fragment with this file's contents.",
    ),
    clear_custom_config: bool = typer.Option(
        False, "--clear-custom-config", help="Remove the custom fragment."
    ),
    json_output: bool = JSON_OPTION,
) -> None:
    """Re-render a virtual host with changed settings; failures restore the old one."""
    runtime = _get_runtime(ctx)
    custom_config = "" if clear_custom_config else _read_custom_config(custom_config_file)
    payload: dict[str, object] = {
        "domain": domain,
        "document_root": str(document_root) if document_root else None,
        "php_version": php_version,
        "status": status,
        "ssl_enabled": ssl,
        "custom_config": custom_config,
    }
    request = ProvisioningRequest("update", "vhost", domain, payload)
    _render_result(_submit(runtime, request, json_output=json_output), json_output=json_output)


@vhosts_app.command("delete")
def vhost_delete(
    ctx: typer.Context,
    domain: str = typer.Argument(..., help="Virtual host to remove."),
    yes: bool = YES_OPTION,
    json_output: bool = JSON_OPTION,
) -> None:
    """Remove a virtual host's nginx configuration; the document root is kept."""
    runtime = _get_runtime(ctx)
    _confirm(f"Remove the nginx site for '{domain}'?", yes)
    request = ProvisioningRequest("delete", "vhost", domain, {"domain": domain})
    _render_result(_submit(runtime, request, json_output=json_output), json_output=json_output)


@vhosts_app.command("enable-tls")
def vhost_enable_tls(
    ctx: typer.Context,
    domain: str = typer.Argument(..., help="Virtual host to secure."),
    email: str = typer.Option(..., "--email", help="Contact address for the CA account."),
    json_output: bool = JSON_OPTION,
) -> None:
    """Issue a Let's Encrypt certificate and switch the site to HTTPS."""
    runtime = _get_runtime(ctx)
    request = ProvisioningRequest("enable_tls", "vhost", domain, {"domain": domain, "email": email})
    _render_result(_submit(runtime, request, json_output=json_output), json_output=json_output)


@vhosts_app.command("list")
def vhost_list(
    ctx: typer.Context,
    user: str | None = typer.Option(None, "--user", "-u", help="Only this owner's hosts."),
    json_output: bool = JSON_OPTION,
) -> None:
    """List virtual hosts."""
    runtime = _get_runtime(ctx)
    request = ProvisioningRequest("list", "vhost", None, {"system_user": user})
    result = _submit(runtime, request, json_output=json_output)
    _render_rows(
        result,
        ("domain", "system_user", "php_version", "status", "ssl_enabled", "document_root"),
        json_output=json_output,
        empty="No virtual hosts registered.",
    )


@vhosts_app.command("show")
def vhost_show(
    ctx: typer.Context,
    domain: str = typer.Argument(..., help="Virtual host to show."),
    json_output: bool = JSON_OPTION,
) -> None:
    """Show one virtual host with its owner, certificate and site files."""
    runtime = _get_runtime(ctx)
    request = ProvisioningRequest("show", "vhost", domain, {"domain": domain})
    _render_result(_submit(runtime, request, json_output=json_output), json_output=json_output)


# ----------------------------------------------------------------------
# cert
# ----------------------------------------------------------------------
@certs_app.command("list")
def cert_list(ctx: typer.Context, json_output: bool = JSON_OPTION) -> None:
    """List recorded certificates."""
    runtime = _get_runtime(ctx)
    result = _submit(runtime, ProvisioningRequest("list", "certificate"), json_output=json_output)
    _render_rows(
        result,
        ("domain", "expires_at", "auto_renew", "last_renewed_at"),
        json_output=json_output,
        empty="No certificates recorded.",
    )


@certs_app.command("show")
def cert_show(
    ctx: typer.Context,
    domain: str = typer.Argument(..., help="Certificate domain."),
    json_output: bool = JSON_OPTION,
) -> None:
    """Show one certificate record."""
    runtime = _get_runtime(ctx)
    request = ProvisioningRequest("show", "certificate", domain, {"domain": domain})
    _render_result(_submit(runtime, request, json_output=json_output), json_output=json_output)


@certs_app.command("inspect")
def cert_inspect(
    ctx: typer.Context,
    domain: str = typer.Argument(..., help="Certificate domain."),
    json_output: bool = JSON_OPTION,
) -> None:
    """Parse the certificate files and report key match and expiry."""
    runtime = _get_runtime(ctx)
    request = ProvisioningRequest("inspect", "certificate", domain, {"domain": domain})
    result = _submit(runtime, request, json_output=json_output)
    if json_output:
        console.print_json(data=result.entity)
        return
    report = result.entity if isinstance(result.entity, Mapping) else {}
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Check")
    table.add_column("Severity")
    table.add_column("Message")
    findings = report.get("findings", [])
    for finding in findings if isinstance(findings, list) else []:
        table.add_row(
            f"{finding['scope']}.{finding['check']}",
            str(finding["severity"]),
            str(finding["message"]),
        )
    console.print(table)
    if report.get("status") == "error":
        raise typer.Exit(code=int(ExitCode.PROVIDER))


@certs_app.command("renew")
def cert_renew(
    ctx: typer.Context,
    domain: str = typer.Argument(..., help="Certificate domain."),
    json_output: bool = JSON_OPTION,
) -> None:
    """Renew one certificate now."""
    runtime = _get_runtime(ctx)
    request = ProvisioningRequest("renew", "certificate", domain, {"domain": domain})
    _render_result(_submit(runtime, request, json_output=json_output), json_output=json_output)


@certs_app.command("renew-due")
def cert_renew_due(ctx: typer.Context, json_output: bool = JSON_OPTION) -> None:
    """Renew every auto-renew certificate inside the renewal window."""
    runtime = _get_runtime(ctx)
    result = _submit(
        runtime, ProvisioningRequest("renew_due", "certificate"), json_output=json_output
    )
    if not json_output and result.message:
        console.print(f"[green]{result.message}[/green]")
    _render_rows(
        result,
        ("domain", "renewed", "expires_at", "message"),
        json_output=json_output,
        empty="No certificates are due for renewal.",
    )
    outcomes = result.entity if isinstance(result.entity, list) else []
    if any(not outcome.get("renewed") for outcome in outcomes):
        raise typer.Exit(code=int(ExitCode.PROVIDER))


@certs_app.command("delete")
def cert_delete(
    ctx: typer.Context,
    domain: str = typer.Argument(..., help="Certificate domain."),
    yes: bool = YES_OPTION,
    json_output: bool = JSON_OPTION,
) -> None:
    """Switch the site back to HTTP and delete its certificate."""
    runtime = _get_runtime(ctx)
    _confirm(f"Delete the certificate for '{domain}' and disable HTTPS?", yes)
    request = ProvisioningRequest("delete", "certificate", domain, {"domain": domain})
    _render_result(_submit(runtime, request, json_output=json_output), json_output=json_output)


# ----------------------------------------------------------------------
# nginx / config
# ----------------------------------------------------------------------
@nginx_app.command("reload")
def nginx_reload(ctx: typer.Context, json_output: bool = JSON_OPTION) -> None:
    """Test the nginx configuration and reload the service."""
    runtime = _get_runtime(ctx)
    request = ProvisioningRequest("reload", "webserver")
    _render_result(_submit(runtime, request, json_output=json_output), json_output=json_output)


@config_app.command("show")
def config_show(ctx: typer.Context, json_output: bool = JSON_OPTION) -> None:
    """Display the effective configuration after merges."""
    runtime = _get_runtime(ctx)
    data = runtime.config.to_dict()
    if json_output:
        console.print_json(data=data)
        return
    _render_mapping(data)


def main() -> None:
    """Console script entry point."""
    app()


__all__ = ["app", "main"]
