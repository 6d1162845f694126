"""External command execution, with optional privilege escalation."""

import logging
import os
import shlex
import shutil
import subprocess
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Sequence

logger = logging.getLogger(__name__)


def current_platform() -> str:
    """Normalize ``sys.platform`` to one of darwin, linux, windows."""
    if sys.platform == "darwin":
        return "darwin"
    if sys.platform.startswith("win") or sys.platform == "cygwin":
        return "windows"
    return "linux"


@dataclass
class CommandResult:
    """Exit status and captured output of an external command."""

    argv: List[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def output(self) -> str:
        return (self.stdout + self.stderr).strip()


@dataclass
class SubprocessRunner:
    """
    Runs commands with ``subprocess``.

    Privileged commands are prefixed with ``sudo`` on POSIX when the process
    is not already root; on Windows they run as is and fail unless the
    shell was started as Administrator. No timeout is applied, so a hung
    tool or an unanswered sudo prompt blocks the caller.
    """

    platform: str = field(default_factory=current_platform)

    def which(self, tool: str) -> Optional[str]:
        return shutil.which(tool)

    def is_elevated(self) -> bool:
        if self.platform == "windows":
            try:
                import ctypes
                return bool(ctypes.windll.shell32.IsUserAnAdmin())
            except (AttributeError, OSError):
                return False
        return hasattr(os, "geteuid") and os.geteuid() == 0

    def invoking_user(self) -> Optional[str]:
        """User who ran ``sudo``, when running elevated on their behalf."""
        if self.platform == "windows" or not self.is_elevated():
            return None
        return os.environ.get("SUDO_USER") or None

    def privileged_argv(self, argv: Sequence[str]) -> List[str]:
        argv = list(argv)
        if self.platform != "windows" and not self.is_elevated():
            return ["sudo"] + argv
        return argv

    def format_command(self, argv: Sequence[str], privileged: bool = False) -> str:
        """Shell-quoted command line, as a user would type it."""
        if privileged and self.platform != "windows":
            argv = ["sudo"] + list(argv)
        if self.platform == "windows":
            return subprocess.list2cmdline(list(argv))
        return shlex.join(list(argv))

    def run(self, argv: Sequence[str], privileged: bool = False) -> CommandResult:
        """
        Run a command and capture its output.

        Args:
            argv: Command and arguments
            privileged: Run with elevated privileges

        Returns:
            CommandResult; a missing executable yields returncode 127
        """
        final_argv = self.privileged_argv(argv) if privileged else list(argv)
        logger.debug(f"Running: {self.format_command(final_argv)}")

        try:
            # stdin stays attached so sudo can ask for a password
            result = subprocess.run(final_argv, capture_output=True, text=True)
        except FileNotFoundError as e:
            logger.debug(f"Command not found: {final_argv[0]}")
            return CommandResult(argv=final_argv, returncode=127, stderr=str(e))

        if result.returncode != 0:
            logger.debug(f"Command exited with {result.returncode}: {result.stderr.strip()}")
        return CommandResult(
            argv=final_argv,
            returncode=result.returncode,
            stdout=result.stdout or "",
            stderr=result.stderr or "",
        )


def resolve_user_home(runner: SubprocessRunner) -> Path:
    """
    Home directory of the person using the tool.

    Under ``sudo`` this is the invoking user's home rather than root's, so
    browser stores end up where that user's browsers look for them.
    """
    sudo_user = runner.invoking_user()
    if sudo_user:
        try:
            import pwd
            return Path(pwd.getpwnam(sudo_user).pw_dir)
        except (ImportError, KeyError):
            logger.debug(f"Could not look up home of {sudo_user}, using /home/{sudo_user}")
            return Path("/home") / sudo_user
    return Path.home()


def restore_ownership(path: Path, user: str) -> None:
    """Recursively hand ``path`` back to ``user`` (and their primary group)."""
    try:
        import pwd
        entry = pwd.getpwnam(user)
    except (ImportError, KeyError) as e:
        logger.warning(f"Cannot restore ownership of {path} to {user}: {e}")
        return

    uid, gid = entry.pw_uid, entry.pw_gid
    try:
        os.chown(path, uid, gid)
        for root, dirs, files in os.walk(path):
            for name in dirs + files:
                os.chown(os.path.join(root, name), uid, gid, follow_symlinks=False)
    except OSError as e:
        logger.warning(f"Failed to restore ownership of {path} to {user}: {e}")
        return

    logger.debug(f"Restored ownership of {path} to {user}")
