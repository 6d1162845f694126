"""Shared fixtures: isolated storage roots, a CA, and a recording command runner."""

from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Set, Tuple

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.x509.oid import NameOID

from devtls.ca import CAManager
from devtls.certificate import (
    certificate_to_pem,
    generate_private_key,
    private_key_to_pem,
    write_key_and_certificate,
)
from devtls.config import DevTLSConfig
from devtls.inventory import CertificateInventory
from devtls.issuer import CertificateIssuer
from devtls.runner import CommandResult


@pytest.fixture
def config(tmp_path, monkeypatch) -> DevTLSConfig:
    monkeypatch.setenv("DEVTLS_CONFIG_DIR", str(tmp_path / "config"))
    return DevTLSConfig(storage_root=tmp_path / "devtls", config_dir=tmp_path / "config")


@pytest.fixture
def ca_manager(config) -> CAManager:
    return CAManager(config)


@pytest.fixture
def ca(ca_manager) -> CAManager:
    """A CA manager with a generated CA."""
    ca_manager.generate()
    return ca_manager


@pytest.fixture
def issuer(config, ca) -> CertificateIssuer:
    return CertificateIssuer(config, ca)


@pytest.fixture
def inventory(config, issuer) -> CertificateInventory:
    return CertificateInventory(config, issuer)


def write_leaf(config: DevTLSConfig, ca: CAManager, identifier: str, not_after: datetime) -> Path:
    """Store a CA-signed leaf with an arbitrary expiry under certs/<identifier>."""
    ca_cert, ca_key = ca.load()
    key = generate_private_key()
    cert = (
        x509.CertificateBuilder()
        .subject_name(x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, identifier)]))
        .issuer_name(ca_cert.subject)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(not_after - timedelta(days=365))
        .not_valid_after(not_after)
        .sign(ca_key, hashes.SHA256())
    )
    cert_dir = config.certs_dir / identifier
    write_key_and_certificate(
        cert_dir / "key.pem",
        private_key_to_pem(key),
        cert_dir / "cert.pem",
        certificate_to_pem(cert),
    )
    return cert_dir


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class FakeRunner:
    """
    Records every command instead of executing it.

    ``certutil -d`` invocations are simulated against in-memory NSS
    databases keyed by their ``sql:`` URI so install idempotency can be
    asserted.
    """

    def __init__(
        self,
        platform: str = "linux",
        tools: Sequence[str] = ("certutil", "update-ca-certificates", "security"),
        elevated: bool = False,
        sudo_user: Optional[str] = None,
        failing: Sequence[str] = (),
    ):
        self.platform = platform
        self.tools: Set[str] = set(tools)
        self.elevated = elevated
        self.sudo_user = sudo_user
        self.failing: Set[str] = set(failing)
        self.calls: List[Tuple[List[str], bool]] = []
        self.nss: Dict[str, List[str]] = {}

    def which(self, tool: str) -> Optional[str]:
        return f"/usr/bin/{tool}" if tool in self.tools else None

    def is_elevated(self) -> bool:
        return self.elevated

    def invoking_user(self) -> Optional[str]:
        return self.sudo_user if self.elevated else None

    def format_command(self, argv: Sequence[str], privileged: bool = False) -> str:
        prefix = ["sudo"] if privileged and self.platform != "windows" else []
        return " ".join(prefix + list(argv))

    @property
    def privileged_calls(self) -> List[List[str]]:
        return [argv for argv, privileged in self.calls if privileged]

    def run(self, argv: Sequence[str], privileged: bool = False) -> CommandResult:
        argv = list(argv)
        self.calls.append((argv, privileged))

        if argv[0] in self.failing:
            return CommandResult(argv=argv, returncode=1, stderr=f"{argv[0]}: simulated failure")
        if argv[0] == "certutil" and "-d" in argv:
            return self._certutil(argv)
        return CommandResult(argv=argv, returncode=0)

    def _certutil(self, argv: List[str]) -> CommandResult:
        uri = argv[argv.index("-d") + 1]
        entries = self.nss.setdefault(uri, [])
        nickname = argv[argv.index("-n") + 1] if "-n" in argv else None

        if "-N" in argv:
            Path(uri[len("sql:"):], "cert9.db").touch()
            return CommandResult(argv=argv, returncode=0)
        if "-D" in argv:
            if nickname in entries:
                entries.remove(nickname)
                return CommandResult(argv=argv, returncode=0)
            return CommandResult(argv=argv, returncode=255, stderr="could not find certificate named")
        if "-A" in argv:
            entries.append(nickname)
            return CommandResult(argv=argv, returncode=0)
        if "-L" in argv:
            return CommandResult(argv=argv, returncode=0 if nickname in entries else 255)
        return CommandResult(argv=argv, returncode=0)


@pytest.fixture
def fake_runner() -> FakeRunner:
    return FakeRunner()
