"""
Installation of the CA certificate into OS and browser trust stores.

Each target is a standalone class exposing ``install(ctx)``,
``is_installed(ctx)`` and ``manual_command(ctx)``. Targets are picked from
``TARGETS_BY_PLATFORM`` using a single platform tag. Only the public CA
certificate path is ever handed to a target.
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional

from devtls.ca import CAManager
from devtls.certificate import get_common_name
from devtls.config import DevTLSConfig
from devtls.exceptions import (
    DevTLSError,
    NotFoundError,
    PrivilegeError,
    ToolMissingError,
    UserCancelledError,
)
from devtls.models import TrustReport, TrustScope, TrustStatus, TrustTargetResult
from devtls.runner import SubprocessRunner, current_platform, resolve_user_home, restore_ownership

logger = logging.getLogger(__name__)

NSS_NICKNAME = "DevTLS Local CA"
NSS_TRUST_FLAGS = "C,,"  # trusted CA for issuing server certificates
MAX_NSS_DELETES = 10

MACOS_SYSTEM_KEYCHAIN = "/Library/Keychains/System.keychain"
LINUX_ANCHOR_PATH = Path("/usr/local/share/ca-certificates/devtls.crt")

# (prompt, manual_command) -> proceed?
ConfirmCallback = Callable[[str, str], bool]


@dataclass
class TrustContext:
    """What a trust target is allowed to know."""

    ca_cert_path: Path
    ca_common_name: str
    runner: SubprocessRunner
    home: Path
    platform: str

    def nss_db_uri(self, directory: Path) -> str:
        return f"sql:{directory}"


def _nss_tool_missing(ctx: TrustContext) -> ToolMissingError:
    if ctx.platform == "darwin":
        install_hint = "brew install nss"
    else:
        install_hint = "sudo apt install libnss3-tools   (Fedora: sudo dnf install nss-tools)"
    return ToolMissingError(
        "certutil",
        f"Browsers use their own NSS certificate store. Install the NSS tools and run:\n"
        f"  {install_hint}\n"
        f'  certutil -d sql:$HOME/.pki/nssdb -A -t "{NSS_TRUST_FLAGS}" -n "{NSS_NICKNAME}" -i {ctx.ca_cert_path}',
    )


def _nss_add_command(ctx: TrustContext, db: Path) -> List[str]:
    return [
        "certutil", "-d", ctx.nss_db_uri(db), "-A",
        "-t", NSS_TRUST_FLAGS, "-n", NSS_NICKNAME, "-i", str(ctx.ca_cert_path),
    ]


def install_into_nss_db(ctx: TrustContext, db: Path) -> None:
    """
    Replace any previous entry named NSS_NICKNAME in ``db`` with the CA.

    Raises:
        DevTLSError: certutil could not add the certificate
    """
    runner = ctx.runner
    uri = ctx.nss_db_uri(db)

    if not any((db / name).exists() for name in ("cert9.db", "cert8.db")):
        result = runner.run(["certutil", "-d", uri, "-N", "--empty-password"])
        if not result.ok:
            raise DevTLSError(f"Failed to create NSS database {db}: {result.output}")

    # Delete until nothing named NSS_NICKNAME is left so reinstalling never duplicates
    for _ in range(MAX_NSS_DELETES):
        if not runner.run(["certutil", "-d", uri, "-D", "-n", NSS_NICKNAME]).ok:
            break

    result = runner.run(_nss_add_command(ctx, db))
    if not result.ok:
        raise DevTLSError(f"certutil failed for {db}: {result.output}")


def nss_db_has_ca(ctx: TrustContext, db: Path) -> bool:
    result = ctx.runner.run(["certutil", "-d", ctx.nss_db_uri(db), "-L", "-n", NSS_NICKNAME])
    return result.ok


class MacOSKeychainTarget:
    """System keychain via ``security add-trusted-cert``."""

    name = "macOS Keychain"
    scope = TrustScope.SYSTEM
    privileged = True

    def __init__(self, keychain: str = MACOS_SYSTEM_KEYCHAIN):
        self.keychain = keychain

    def _argv(self, ctx: TrustContext) -> List[str]:
        return [
            "security", "add-trusted-cert", "-d", "-r", "trustRoot",
            "-k", self.keychain, str(ctx.ca_cert_path),
        ]

    def manual_command(self, ctx: TrustContext) -> str:
        return ctx.runner.format_command(self._argv(ctx), privileged=True)

    def install(self, ctx: TrustContext) -> TrustTargetResult:
        if not ctx.runner.which("security"):
            raise ToolMissingError("security", "The macOS 'security' command is required; it ships with macOS.")

        result = ctx.runner.run(self._argv(ctx), privileged=True)
        if not result.ok:
            raise PrivilegeError(f"Failed to install CA into {self.keychain}: {result.output}", self.manual_command(ctx))

        return TrustTargetResult(
            target=self.name,
            scope=self.scope,
            status=TrustStatus.INSTALLED,
            locations=[self.keychain],
        )

    def is_installed(self, ctx: TrustContext) -> bool:
        result = ctx.runner.run(["security", "find-certificate", "-c", ctx.ca_common_name, self.keychain])
        return result.ok


class LinuxSystemTarget:
    """Debian-style anchors directory plus ``update-ca-certificates``."""

    name = "Linux system trust"
    scope = TrustScope.SYSTEM
    privileged = True

    def __init__(self, anchor_path: Path = LINUX_ANCHOR_PATH):
        self.anchor_path = Path(anchor_path)

    def _commands(self, ctx: TrustContext) -> List[List[str]]:
        return [
            ["cp", str(ctx.ca_cert_path), str(self.anchor_path)],
            ["update-ca-certificates"],
        ]

    def manual_command(self, ctx: TrustContext) -> str:
        return " && ".join(ctx.runner.format_command(argv, privileged=True) for argv in self._commands(ctx))

    def manual_instructions(self, ctx: TrustContext) -> str:
        return (
            "update-ca-certificates not found.\n\n"
            "For Fedora/RHEL/CentOS:\n"
            f"  sudo cp {ctx.ca_cert_path} /etc/pki/ca-trust/source/anchors/\n"
            "  sudo update-ca-trust\n\n"
            "For Arch Linux:\n"
            f"  sudo trust anchor --store {ctx.ca_cert_path}\n\n"
            "For other distributions, consult your documentation."
        )

    def install(self, ctx: TrustContext) -> TrustTargetResult:
        if not ctx.runner.which("update-ca-certificates"):
            raise ToolMissingError("update-ca-certificates", self.manual_instructions(ctx))

        for argv in self._commands(ctx):
            result = ctx.runner.run(argv, privileged=True)
            if not result.ok:
                raise PrivilegeError(f"'{argv[0]}' failed: {result.output}", self.manual_command(ctx))

        return TrustTargetResult(
            target=self.name,
            scope=self.scope,
            status=TrustStatus.INSTALLED,
            locations=[str(self.anchor_path)],
        )

    def is_installed(self, ctx: TrustContext) -> bool:
        # Approximation: only checks that the anchor was copied
        return self.anchor_path.exists()


class WindowsStoreTarget:
    """Root store via ``certutil -addstore``."""

    name = "Windows certificate store"
    scope = TrustScope.SYSTEM
    privileged = True

    def _argv(self, ctx: TrustContext) -> List[str]:
        return ["certutil", "-addstore", "Root", str(ctx.ca_cert_path)]

    def manual_command(self, ctx: TrustContext) -> str:
        return ctx.runner.format_command(self._argv(ctx), privileged=True)

    def install(self, ctx: TrustContext) -> TrustTargetResult:
        if not ctx.runner.which("certutil"):
            raise ToolMissingError("certutil", "certutil.exe ships with Windows; make sure System32 is on PATH.")

        result = ctx.runner.run(self._argv(ctx), privileged=True)
        if not result.ok:
            raise PrivilegeError(
                f"Failed to install CA: {result.output}. Try running as Administrator",
                self.manual_command(ctx),
            )

        return TrustTargetResult(
            target=self.name,
            scope=self.scope,
            status=TrustStatus.INSTALLED,
            locations=["Root"],
        )

    def is_installed(self, ctx: TrustContext) -> bool:
        result = ctx.runner.run(["certutil", "-store", "Root", ctx.ca_common_name])
        return result.ok


class ChromiumNSSTarget:
    """Shared NSS database used by Chrome/Chromium on Linux."""

    name = "Chrome/Chromium"
    scope = TrustScope.BROWSER
    privileged = False

    def database(self, ctx: TrustContext) -> Path:
        return ctx.home / ".pki" / "nssdb"

    def manual_command(self, ctx: TrustContext) -> str:
        return ctx.runner.format_command(_nss_add_command(ctx, self.database(ctx)))

    def install(self, ctx: TrustContext) -> TrustTargetResult:
        if ctx.platform != "linux":
            return TrustTargetResult(
                target=self.name,
                scope=self.scope,
                status=TrustStatus.SKIPPED,
                message="Chrome uses the system trust store on this platform",
            )

        if not ctx.runner.which("certutil"):
            raise _nss_tool_missing(ctx)

        db = self.database(ctx)
        pki_dir = db.parent
        created = not pki_dir.exists()
        db.mkdir(parents=True, exist_ok=True, mode=0o700)

        install_into_nss_db(ctx, db)

        sudo_user = ctx.runner.invoking_user()
        if sudo_user:
            restore_ownership(pki_dir if created else db, sudo_user)

        return TrustTargetResult(
            target=self.name,
            scope=self.scope,
            status=TrustStatus.INSTALLED,
            message="Restart Chrome for changes to take effect",
            locations=[str(db)],
        )

    def is_installed(self, ctx: TrustContext) -> bool:
        db = self.database(ctx)
        if ctx.platform != "linux" or not db.is_dir() or not ctx.runner.which("certutil"):
            return False
        return nss_db_has_ca(ctx, db)


class FirefoxNSSTarget:
    """Per-profile NSS databases of Firefox."""

    name = "Firefox"
    scope = TrustScope.BROWSER
    privileged = False
    profile_pattern = "*.default*"

    def profiles_root(self, ctx: TrustContext) -> Path:
        if ctx.platform == "darwin":
            return ctx.home / "Library" / "Application Support" / "Firefox" / "Profiles"
        if ctx.platform == "windows":
            appdata = os.environ.get("APPDATA")
            base = Path(appdata) if appdata else ctx.home / "AppData" / "Roaming"
            return base / "Mozilla" / "Firefox" / "Profiles"
        return ctx.home / ".mozilla" / "firefox"

    def profiles(self, ctx: TrustContext) -> List[Path]:
        root = self.profiles_root(ctx)
        if not root.is_dir():
            return []
        return sorted(p for p in root.glob(self.profile_pattern) if p.is_dir())

    def manual_command(self, ctx: TrustContext) -> str:
        return ctx.runner.format_command(_nss_add_command(ctx, self.profiles_root(ctx) / "<profile>"))

    def _skipped(self, message: str) -> TrustTargetResult:
        return TrustTargetResult(target=self.name, scope=self.scope, status=TrustStatus.SKIPPED, message=message)

    def install(self, ctx: TrustContext) -> TrustTargetResult:
        if ctx.platform == "windows":
            # certutil.exe on Windows is not the NSS tool
            return self._skipped("Set security.enterprise_roots.enabled=true in about:config to use the Windows store")

        profiles = self.profiles(ctx)
        if not profiles:
            return self._skipped("Firefox not installed or no profiles found")

        if not ctx.runner.which("certutil"):
            raise _nss_tool_missing(ctx)

        installed: List[str] = []
        errors: List[str] = []
        for profile in profiles:
            try:
                install_into_nss_db(ctx, profile)
                installed.append(str(profile))
            except DevTLSError as e:
                logger.debug(f"Firefox profile {profile.name}: {e}")
                errors.append(f"{profile.name}: {e}")

        sudo_user = ctx.runner.invoking_user()
        if sudo_user:
            restore_ownership(self.profiles_root(ctx), sudo_user)

        if not installed:
            return TrustTargetResult(
                target=self.name,
                scope=self.scope,
                status=TrustStatus.FAILED,
                message="; ".join(errors),
                manual_command=self.manual_command(ctx),
            )

        return TrustTargetResult(
            target=self.name,
            scope=self.scope,
            status=TrustStatus.INSTALLED,
            message="; ".join(errors) or None,
            locations=installed,
        )

    def is_installed(self, ctx: TrustContext) -> bool:
        if ctx.platform == "windows" or not ctx.runner.which("certutil"):
            return False
        profiles = self.profiles(ctx)
        return bool(profiles) and all(nss_db_has_ca(ctx, p) for p in profiles)


TARGETS_BY_PLATFORM: Dict[str, Callable[[], List[object]]] = {
    "darwin": lambda: [MacOSKeychainTarget(), ChromiumNSSTarget(), FirefoxNSSTarget()],
    "linux": lambda: [LinuxSystemTarget(), ChromiumNSSTarget(), FirefoxNSSTarget()],
    "windows": lambda: [WindowsStoreTarget(), ChromiumNSSTarget(), FirefoxNSSTarget()],
}


class TrustInstaller:
    """Runs every trust target for the current platform."""

    def __init__(
        self,
        config: DevTLSConfig,
        ca_manager: CAManager,
        runner: Optional[SubprocessRunner] = None,
        platform: Optional[str] = None,
        confirm: Optional[ConfirmCallback] = None,
        home: Optional[Path] = None,
        targets: Optional[List[object]] = None,
    ):
        self.config = config
        self.ca_manager = ca_manager
        self.platform = platform or current_platform()
        self.runner = runner or SubprocessRunner(platform=self.platform)
        self.confirm = confirm
        self.home = home
        if self.platform not in TARGETS_BY_PLATFORM and targets is None:
            raise ValueError(f"Unsupported operating system: {self.platform}")
        self.targets = targets if targets is not None else TARGETS_BY_PLATFORM[self.platform]()

    def _context(self) -> TrustContext:
        if not self.ca_manager.exists():
            raise NotFoundError("CA certificate not found. Run 'devtls init' first")

        cert_path = self.ca_manager.certificate_path
        ca_cert = self.ca_manager.load_certificate()
        return TrustContext(
            ca_cert_path=cert_path,
            ca_common_name=get_common_name(ca_cert),
            runner=self.runner,
            home=self.home or resolve_user_home(self.runner),
            platform=self.platform,
        )

    @property
    def system_target(self):
        for target in self.targets:
            if target.scope == TrustScope.SYSTEM:
                return target
        return None

    def install_target(self, target, ctx: TrustContext) -> TrustTargetResult:
        """
        Install into one target.

        Raises:
            UserCancelledError: Confirmation for a privileged command declined
            ToolMissingError: Required utility absent
            PrivilegeError: Privileged command failed
            DevTLSError: Any other failure
        """
        if target.privileged and not self.runner.is_elevated():
            command = target.manual_command(ctx)
            prompt = "This requires administrator privileges. Continue?"
            if self.confirm is None or not self.confirm(prompt, command):
                raise UserCancelledError(manual_command=command)

        logger.info(f"Installing CA certificate into {target.name}...")
        return target.install(ctx)

    def _attempt(self, target, ctx: TrustContext) -> TrustTargetResult:
        try:
            result = self.install_target(target, ctx)
        except ToolMissingError as e:
            logger.warning(f"{target.name}: {e}")
            return TrustTargetResult(
                target=target.name,
                scope=target.scope,
                status=TrustStatus.FAILED,
                message=str(e),
                instructions=e.instructions,
            )
        except (PrivilegeError, UserCancelledError) as e:
            logger.warning(f"{target.name}: {e}")
            return TrustTargetResult(
                target=target.name,
                scope=target.scope,
                status=TrustStatus.FAILED,
                message=str(e),
                manual_command=e.manual_command,
            )
        except (DevTLSError, OSError) as e:
            logger.warning(f"{target.name}: {e}")
            return TrustTargetResult(
                target=target.name,
                scope=target.scope,
                status=TrustStatus.FAILED,
                message=str(e),
                manual_command=target.manual_command(ctx),
            )

        if result.status == TrustStatus.INSTALLED:
            logger.info(f"CA installed into {target.name}")
        return result

    def install(self, include_browsers: bool = True) -> TrustReport:
        """
        Install the CA into the OS store and, optionally, browser stores.

        Each target is attempted independently; a failing target never
        prevents the others from running.

        Raises:
            NotFoundError: No CA has been generated
        """
        ctx = self._context()
        report = TrustReport(platform=self.platform)

        for target in self.targets:
            if target.scope == TrustScope.BROWSER and not include_browsers:
                report.targets.append(TrustTargetResult(target=target.name, scope=target.scope))
                continue
            report.targets.append(self._attempt(target, ctx))

        return report

    def install_system(self) -> TrustTargetResult:
        """Install into the OS store only, raising instead of collecting errors."""
        ctx = self._context()
        target = self.system_target
        if target is None:
            raise ValueError(f"No system trust target for {self.platform}")
        return self.install_target(target, ctx)

    def is_trusted(self) -> bool:
        """Best-effort check that the OS store contains the CA."""
        target = self.system_target
        if target is None or not self.ca_manager.exists():
            return False
        try:
            return target.is_installed(self._context())
        except (DevTLSError, OSError) as e:
            logger.debug(f"Trust check failed: {e}")
            return False

    def status(self) -> TrustReport:
        """Query every target without changing anything."""
        ctx = self._context()
        report = TrustReport(platform=self.platform)
        for target in self.targets:
            try:
                installed = target.is_installed(ctx)
            except (DevTLSError, OSError) as e:
                logger.debug(f"{target.name}: status check failed: {e}")
                installed = False
            report.targets.append(TrustTargetResult(
                target=target.name,
                scope=target.scope,
                status=TrustStatus.INSTALLED if installed else TrustStatus.NOT_ATTEMPTED,
            ))
        return report
