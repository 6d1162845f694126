"""Data models for CA, inventory and trust results."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional

from devtls.naming import is_wildcard_identifier


class TrustStatus(str, Enum):
    """Per-target state of a trust installation."""

    NOT_ATTEMPTED = "NOT_ATTEMPTED"
    INSTALLED = "INSTALLED"
    SKIPPED = "SKIPPED"
    FAILED = "FAILED"


class TrustScope(str, Enum):
    """Whether a target is the OS trust store or an advisory browser store."""

    SYSTEM = "system"
    BROWSER = "browser"


@dataclass
class CAInfo:
    """Summary of the root CA certificate."""

    subject: str
    serial_number: str
    not_before: datetime
    not_after: datetime
    fingerprint_sha256: str
    cert_path: Path


@dataclass
class CertificateRecord:
    """One issued certificate found in the inventory."""

    domain: str  # sanitized identifier (directory name)
    not_before: datetime
    not_after: datetime
    path: Path

    @property
    def days_until_expiry(self) -> int:
        return (self.not_after - datetime.now(timezone.utc)).days

    @property
    def is_expired(self) -> bool:
        return self.not_after <= datetime.now(timezone.utc)

    @property
    def is_wildcard(self) -> bool:
        return is_wildcard_identifier(self.domain)

    @property
    def cert_path(self) -> Path:
        return self.path / "cert.pem"

    @property
    def key_path(self) -> Path:
        return self.path / "key.pem"


@dataclass
class TrustTargetResult:
    """Outcome for a single trust store target."""

    target: str
    scope: TrustScope
    status: TrustStatus = TrustStatus.NOT_ATTEMPTED
    message: Optional[str] = None
    manual_command: Optional[str] = None
    instructions: Optional[str] = None
    locations: List[str] = field(default_factory=list)  # NSS databases / keychains touched


@dataclass
class TrustReport:
    """Results of installing or querying every trust target."""

    platform: str
    targets: List[TrustTargetResult] = field(default_factory=list)

    @property
    def system(self) -> Optional[TrustTargetResult]:
        for result in self.targets:
            if result.scope == TrustScope.SYSTEM:
                return result
        return None

    @property
    def trusted(self) -> bool:
        """Overall trust only depends on the OS-level target."""
        system = self.system
        return system is not None and system.status == TrustStatus.INSTALLED


@dataclass
class AccountInfo:
    """Account details returned by the licensing service."""

    id: str
    email: str
    plan: str
    created_at: Optional[str] = None


@dataclass
class LicenseInfo:
    """Plan entitlements returned by the licensing service."""

    plan: str
    limits: Dict[str, int] = field(default_factory=dict)
    user: Optional[AccountInfo] = None


@dataclass
class WildcardDecision:
    """Result of asking whether another wildcard certificate may be issued."""

    allowed: bool
    plan: str
    current_count: int
    maximum: Optional[int] = None
    degraded: bool = False  # True if the licensing service could not be reached
    reason: Optional[str] = None
