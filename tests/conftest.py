"""Shared fixtures: a fake host that emulates the privileged tools hostctl drives."""

from __future__ import annotations

import os
import shutil
import threading
from collections.abc import Iterator, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from pathlib import Path
from types import SimpleNamespace

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID

from hostctl.config import AppConfig, load_config
from hostctl.errors import ExternalCommandError
from hostctl.executor import CommandResult
from hostctl.runtime import RuntimeContext, build_runtime

NGINX_TEST_OK = (
    "nginx: the configuration file /etc/nginx/nginx.conf syntax is ok\n"
    "nginx: configuration file /etc/nginx/nginx.conf test is successful"
)


@dataclass
class _Failure:
    command: str
    match: tuple[str, ...]
    returncode: int
    stderr: str
    remaining: int | None


@dataclass
class _Block:
    command: str
    entered: threading.Event
    release: threading.Event
    used: bool = False


class FakeHost:
    """Executor double that applies file commands to the real (temporary) filesystem."""

    def __init__(self) -> None:
        """Start with no accounts and no scripted failures."""
        self.calls: list[tuple[str, ...]] = []
        self.accounts: dict[str, SimpleNamespace] = {}
        self.owners: dict[Path, str] = {}
        self.certbot_output = "Congratulations! Your certificate has been saved."
        self._failures: list[_Failure] = []
        self._blocks: list[_Block] = []
        self._lock = threading.Lock()
        self._next_uid = 2000

    # ------------------------------------------------------------------
    def fail(
        self,
        command: str,
        *match: str,
        returncode: int = 1,
        stderr: str = "",
        times: int | None = None,
    ) -> None:
        """Make *command* fail when its arguments contain every item of *match*."""
        self._failures.append(_Failure(command, match, returncode, stderr, times))

    def block(self, command: str) -> tuple[threading.Event, threading.Event]:
        """Pause the next *command* until the returned release event is set."""
        block = _Block(command, threading.Event(), threading.Event())
        self._blocks.append(block)
        return block.entered, block.release

    def commands(self, *names: str) -> list[tuple[str, ...]]:
        """Return recorded calls whose program is one of *names*."""
        return [call for call in self.calls if call[0] in names]

    def getpwnam(self, name: str) -> SimpleNamespace:
        """Stand-in for :func:`pwd.getpwnam` backed by the emulated accounts."""
        try:
            return self.accounts[name]
        except KeyError:
            raise KeyError(f"getpwnam(): name not found: '{name}'") from None

    # ------------------------------------------------------------------
    def run(
        self,
        command: str,
        args: Sequence[str] = (),
        *,
        timeout: float | None = None,
        check: bool = True,
    ) -> CommandResult:
        """Record and emulate one command."""
        argv = (command, *(str(arg) for arg in args))
        with self._lock:
            self.calls.append(argv)
            failure = self._match_failure(argv)
            block = self._match_block(command)
        if block is not None:
            block.entered.set()
            block.release.wait(10)
        if failure is not None:
            if check:
                raise ExternalCommandError(argv, failure.returncode, stderr=failure.stderr)
            return CommandResult(argv, failure.returncode, stderr=failure.stderr)
        stdout, stderr = self._apply(list(argv))
        return CommandResult(argv, 0, stdout=stdout, stderr=stderr)

    def _match_failure(self, argv: tuple[str, ...]) -> _Failure | None:
        for failure in self._failures:
            if failure.command != argv[0] or failure.remaining == 0:
                continue
            if all(item in argv[1:] for item in failure.match):
                if failure.remaining is not None:
                    failure.remaining -= 1
                return failure
        return None

    def _match_block(self, command: str) -> _Block | None:
        for block in self._blocks:
            if block.command == command and not block.used:
                block.used = True
                return block
        return None

    def _apply(self, argv: list[str]) -> tuple[str, str]:
        program, args = argv[0], argv[1:]
        if program == "mv":
            Path(args[-2]).replace(args[-1])
        elif program == "ln":
            source, link = Path(args[-2]), Path(args[-1])
            if link.is_symlink() or link.exists():
                link.unlink()
            link.symlink_to(source)
        elif program == "rm":
            target = Path(args[-1])
            if "-rf" in args and target.is_dir() and not target.is_symlink():
                shutil.rmtree(target)
            elif target.is_symlink() or target.exists():
                target.unlink()
        elif program == "mkdir":
            Path(args[-1]).mkdir(parents=True, exist_ok=True)
        elif program == "chown":
            self.owners[Path(args[-1])] = args[-2].split(":", 1)[0]
        elif program == "chmod":
            os.chmod(args[-1], int(args[-2], 8))
        elif program == "useradd":
            name, home = args[-1], Path(args[args.index("-d") + 1])
            home.mkdir(parents=True, exist_ok=True)
            self._next_uid += 1
            self.accounts[name] = SimpleNamespace(
                pw_name=name,
                pw_uid=self._next_uid,
                pw_gid=self._next_uid,
                pw_dir=str(home),
                pw_shell=args[args.index("-s") + 1],
            )
        elif program == "userdel":
            account = self.accounts.pop(args[-1], None)
            if account is None:
                message = f"userdel: user '{args[-1]}' does not exist"
                raise ExternalCommandError(argv, 6, stderr=message)
            shutil.rmtree(account.pw_dir, ignore_errors=True)
        elif program == "nginx":
            return "", NGINX_TEST_OK
        elif program == "certbot":
            return self.certbot_output, ""
        return "", ""


@pytest.fixture
def host(monkeypatch: pytest.MonkeyPatch) -> FakeHost:
    """Return a fake host whose accounts back the passwd lookups."""
    fake = FakeHost()
    monkeypatch.setattr(
        "hostctl.providers.accounts.pwd",
        SimpleNamespace(getpwnam=fake.getpwnam),
    )
    return fake


@pytest.fixture
def config(tmp_path: Path) -> AppConfig:
    """Return a configuration rooted entirely in *tmp_path*."""
    sites_available = tmp_path / "nginx" / "sites-available"
    sites_enabled = tmp_path / "nginx" / "sites-enabled"
    home_root = tmp_path / "home"
    for directory in (sites_available, sites_enabled, home_root):
        directory.mkdir(parents=True)
    return load_config(
        tmp_path / "config.yml",
        env={},
        overrides={
            "state_dir": str(tmp_path / "state"),
            "logs_dir": str(tmp_path / "logs"),
            "runtime_dir": str(tmp_path / "run"),
            "templates_dir": str(tmp_path / "templates"),
            "lock_timeout": 2.0,
            "accounts": {"home_root": str(home_root)},
            "nginx": {
                "sites_available": str(sites_available),
                "sites_enabled": str(sites_enabled),
            },
            "php": {"socket_dir": str(tmp_path / "php")},
            "certbot": {"live_dir": str(tmp_path / "letsencrypt" / "live")},
        },
    )


@pytest.fixture
def runtime(config: AppConfig, host: FakeHost) -> Iterator[RuntimeContext]:
    """Return a fully wired runtime that executes against *host*."""
    context = build_runtime(config, executor=host)
    yield context
    context.orchestrator.shutdown()


def write_certificate(
    directory: Path,
    name: str = "example.test",
    *,
    not_after: datetime | None = None,
    encoding: serialization.Encoding = serialization.Encoding.PEM,
) -> tuple[Path, Path]:
    """Create a self-signed ``fullchain.pem``/``privkey.pem`` pair in *directory*."""
    now = datetime.now(UTC)
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    subject = issuer = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, name)])
    cert = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(issuer)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(days=1))
        .not_valid_after(not_after or now + timedelta(days=60))
        .sign(key, hashes.SHA256())
    )
    directory.mkdir(parents=True, exist_ok=True)
    cert_path = directory / "fullchain.pem"
    key_path = directory / "privkey.pem"
    cert_path.write_bytes(cert.public_bytes(encoding))
    key_path.write_bytes(
        key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.PKCS8,
            serialization.NoEncryption(),
        )
    )
    return cert_path, key_path
