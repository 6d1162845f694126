"""Exception hierarchy for the local CA engine."""

from typing import List, Optional


class DevTLSError(Exception):
    """Base class for all engine errors. The message is meant for humans."""


class NotFoundError(DevTLSError):
    """A required CA or certificate file is absent."""


class CryptoError(DevTLSError):
    """Key generation, signing or verification failed."""


class ParseError(DevTLSError):
    """A PEM file on disk is malformed or inconsistent."""


class StorageError(DevTLSError):
    """Reading or writing a file or directory failed."""


class ToolMissingError(DevTLSError):
    """A required external certificate utility is not installed."""

    def __init__(self, tool: str, instructions: str):
        super().__init__(f"Required tool '{tool}' not found")
        self.tool = tool
        self.instructions = instructions


class PrivilegeError(DevTLSError):
    """A privileged command was refused or failed."""

    def __init__(self, message: str, manual_command: Optional[str] = None):
        super().__init__(message)
        self.manual_command = manual_command


class UserCancelledError(DevTLSError):
    """The user declined a privileged operation."""

    def __init__(self, message: str = "Installation cancelled by user", manual_command: Optional[str] = None):
        super().__init__(message)
        self.manual_command = manual_command


class RenewalError(DevTLSError):
    """Renewal stopped at a failing certificate."""

    def __init__(self, domain: str, cause: Exception, renewed: Optional[List[str]] = None):
        super().__init__(f"Failed to renew {domain}: {cause}")
        self.domain = domain
        self.cause = cause
        self.renewed = list(renewed or [])


class LicenseServiceError(DevTLSError):
    """The licensing service returned an error or could not be reached."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class WildcardLimitError(DevTLSError):
    """The account plan does not permit another wildcard certificate."""

    def __init__(self, plan: str, current: int, maximum: int):
        super().__init__(
            f"{plan.capitalize()} plan limit reached ({current}/{maximum} wildcard certs). "
            f"Upgrade for unlimited certs."
        )
        self.plan = plan
        self.current = current
        self.maximum = maximum
