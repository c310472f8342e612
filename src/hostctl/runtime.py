"""Assemble the object graph for one hostctl process from its configuration."""
from __future__ import annotations

from dataclasses import dataclass

from .config import AppConfig
from .executor import CommandExecutor, Executor
from .locking import LockManager
from .logging import StructuredLogger
from .providers import AccountsProvider, CertbotProvider, FileOperations, NginxProvider
from .provisioning import (
    CertificateIssuer,
    Orchestrator,
    SystemUserProvisioner,
    VirtualHostProvisioner,
)
from .renderer import ConfigRenderer
from .repository import ResourceRegistry
from .state import StateRegistry
from .templates import TemplateEngine
from .tls import CertificateInspector


@dataclass
class RuntimeContext:
    """Aggregated runtime objects shared by commands."""

    config: AppConfig
    executor: Executor
    state: StateRegistry
    registry: ResourceRegistry
    locks: LockManager
    logger: StructuredLogger
    templates: TemplateEngine
    renderer: ConfigRenderer
    nginx_provider: NginxProvider
    accounts_provider: AccountsProvider
    certbot_provider: CertbotProvider
    users: SystemUserProvisioner
    vhosts: VirtualHostProvisioner
    certificates: CertificateIssuer
    orchestrator: Orchestrator


def build_runtime(config: AppConfig, *, executor: Executor | None = None) -> RuntimeContext:
    """Wire every collaborator from *config*; *executor* replaces the real one."""
    if executor is None:
        executor = CommandExecutor(
            default_timeout=config.commands.timeout,
            use_sudo=config.use_sudo,
        )
    state = StateRegistry(config.registry_dir)
    state.ensure_root()
    registry = ResourceRegistry(state)
    locks = LockManager(config.runtime_dir, config.lock_timeout)
    logger = StructuredLogger(config.logs_dir)
    templates = TemplateEngine.with_overrides(config.templates_dir)
    renderer = ConfigRenderer(
        templates=templates,
        php_socket_dir=config.php.socket_dir,
        certificate_live_dir=config.certbot.live_dir,
    )
    files = FileOperations(
        executor=executor,
        staging_dir=config.staging_dir,
        timeout=config.commands.timeout,
    )
    nginx_provider = NginxProvider(
        executor=executor,
        files=files,
        sites_available=config.nginx.sites_available,
        sites_enabled=config.nginx.sites_enabled,
        nginx_bin=config.nginx.nginx_bin,
        systemctl_bin=config.nginx.systemctl_bin,
        service_name=config.nginx.service_name,
        timeout=config.commands.timeout,
    )
    accounts_provider = AccountsProvider(
        executor=executor,
        useradd_bin=config.accounts.useradd_bin,
        userdel_bin=config.accounts.userdel_bin,
        timeout=config.commands.timeout,
    )
    certbot_provider = CertbotProvider(
        executor=executor,
        certbot_bin=config.certbot.certbot_bin,
        live_dir=config.certbot.live_dir,
        timeout=config.certbot.timeout,
    )
    vhosts = VirtualHostProvisioner(
        registry=registry,
        nginx=nginx_provider,
        files=files,
        renderer=renderer,
        locks=locks,
        php_versions=config.php.versions,
        default_php_version=config.php.default_version,
        lock_timeout=config.lock_timeout,
        conflict_timeout=config.conflict_timeout,
    )
    users = SystemUserProvisioner(
        registry=registry,
        accounts=accounts_provider,
        files=files,
        vhosts=vhosts,
        locks=locks,
        home_root=config.accounts.home_root,
        default_shell=config.accounts.default_shell,
        conflict_timeout=config.conflict_timeout,
    )
    certificates = CertificateIssuer(
        registry=registry,
        vhosts=vhosts,
        certbot=certbot_provider,
        inspector=CertificateInspector(warn_expiry_days=config.certbot.renew_window_days),
        validity_days=config.certbot.validity_days,
        renew_window_days=config.certbot.renew_window_days,
    )
    orchestrator = Orchestrator(
        registry=registry,
        users=users,
        vhosts=vhosts,
        certificates=certificates,
        logger=logger,
        workers=config.workers,
    )
    return RuntimeContext(
        config=config,
        executor=executor,
        state=state,
        registry=registry,
        locks=locks,
        logger=logger,
        templates=templates,
        renderer=renderer,
        nginx_provider=nginx_provider,
        accounts_provider=accounts_provider,
        certbot_provider=certbot_provider,
        users=users,
        vhosts=vhosts,
        certificates=certificates,
        orchestrator=orchestrator,
    )


__all__ = ["RuntimeContext", "build_runtime"]
