"""Storage locations and account configuration."""

import json
import logging
import os
import sys
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Optional

from devtls.exceptions import ParseError, StorageError

logger = logging.getLogger(__name__)

HOME_ENV = "DEVTLS_HOME"
CONFIG_DIR_ENV = "DEVTLS_CONFIG_DIR"
DEFAULT_API_BASE_URL = "http://localhost:8081"


def default_storage_root() -> Path:
    """Directory holding the CA and issued certificates."""
    env_root = os.environ.get(HOME_ENV)
    if env_root:
        return Path(env_root).expanduser()
    return Path.home() / ".devtls"


def default_config_dir() -> Path:
    """Directory holding the account configuration file."""
    env_dir = os.environ.get(CONFIG_DIR_ENV)
    if env_dir:
        return Path(env_dir).expanduser()

    if sys.platform == "win32":
        appdata = os.environ.get("APPDATA")
        base = Path(appdata) if appdata else Path.home() / "AppData" / "Roaming"
        return base / "DevTLS"
    return Path.home() / ".config" / "devtls"


@dataclass
class DevTLSConfig:
    """
    Filesystem roots used by every component.

    Passed explicitly at construction so tests can point the engine at an
    isolated temporary directory.
    """

    storage_root: Path = field(default_factory=default_storage_root)
    config_dir: Path = field(default_factory=default_config_dir)

    def __post_init__(self) -> None:
        self.storage_root = Path(self.storage_root)
        self.config_dir = Path(self.config_dir)

    @property
    def ca_dir(self) -> Path:
        return self.storage_root / "ca"

    @property
    def certs_dir(self) -> Path:
        return self.storage_root / "certs"

    @property
    def ca_cert_path(self) -> Path:
        return self.ca_dir / "ca.crt"

    @property
    def ca_key_path(self) -> Path:
        return self.ca_dir / "ca.key"

    @property
    def account_config_path(self) -> Path:
        return self.config_dir / "config.json"


@dataclass
class AccountConfig:
    """Credentials for the licensing service, persisted as JSON."""

    api_base_url: str = DEFAULT_API_BASE_URL
    token: str = ""
    token_prefix: str = ""
    email: str = ""
    plan: str = "free"

    @property
    def logged_in(self) -> bool:
        return bool(self.token)


def load_account_config(config: DevTLSConfig) -> Optional[AccountConfig]:
    """
    Load the account configuration.

    Returns:
        AccountConfig, or None if no configuration file exists yet
    """
    path = config.account_config_path
    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    except OSError as e:
        raise StorageError(f"Failed to read {path}: {e}") from e

    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ParseError(f"Invalid configuration file {path}: {e}") from e
    if not isinstance(data, dict):
        raise ParseError(f"Invalid configuration file {path}: expected a JSON object")

    known = {k: v for k, v in data.items() if k in AccountConfig.__dataclass_fields__}
    return AccountConfig(**known)


def save_account_config(config: DevTLSConfig, account: AccountConfig) -> Path:
    """Write the account configuration with owner-only permissions."""
    path = config.account_config_path
    try:
        path.parent.mkdir(parents=True, exist_ok=True, mode=0o700)
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(asdict(account), f, indent=2)
        os.chmod(path, 0o600)
    except OSError as e:
        raise StorageError(f"Failed to save configuration to {path}: {e}") from e

    logger.debug(f"Saved account configuration to {path}")
    return path
