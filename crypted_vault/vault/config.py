"""
Vault Configuration — Storage location and validated settings.

Reads settings from environment variables:
    CRYPTED_STORAGE_DIR = <path>            (default: ~/.crypted)
    CRYPTED_ENV = development               (default dir: ./data/.crypted)
    CRYPTED_SESSION_TIMEOUT = <seconds>     (default: 1800)
    CRYPTED_KDF_ITERATIONS = <int>          (default: 100000)
    CRYPTED_DEFAULT_NETWORK = <network key> (default: eth-mainnet)

Security Note:
    Never log passwords or key material. Only log paths and settings.
"""
import os
import logging
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .crypto import KDF_ITERATIONS

logger = logging.getLogger("crypted.vault")

DEFAULT_SESSION_TIMEOUT = 30 * 60  # seconds
AUTH_FILE = "auth.json"
SESSION_FILE = ".session"
CONFIG_FILE = "config.json"
METADATA_FILE = "wallets.json"
WALLETS_DIR = "wallets"
RECORD_SUFFIX = ".enc"


def default_storage_dir() -> Path:
    """Resolve the storage directory from the environment.

    Returns:
        ``CRYPTED_STORAGE_DIR`` if set; ``./data/.crypted`` in development;
        ``~/.crypted`` otherwise.
    """
    custom = os.environ.get("CRYPTED_STORAGE_DIR")
    if custom:
        return Path(custom).expanduser()
    if os.environ.get("CRYPTED_ENV", "").lower() == "development":
        return Path.cwd() / "data" / ".crypted"
    return Path.home() / ".crypted"


class VaultConfig(BaseModel):
    """Validated vault configuration."""

    storage_dir: Path = Field(default_factory=default_storage_dir)
    session_timeout: int = Field(default=DEFAULT_SESSION_TIMEOUT, ge=1)
    kdf_iterations: int = Field(default=KDF_ITERATIONS, ge=1000)
    chain_type: str = Field(default="EVM")
    network: str = Field(default="eth-mainnet")

    @field_validator("storage_dir")
    @classmethod
    def expand_storage_dir(cls, v: Path) -> Path:
        """Expand ``~`` in the storage directory."""
        return v.expanduser()

    @property
    def auth_file(self) -> Path:
        return self.storage_dir / AUTH_FILE

    @property
    def session_file(self) -> Path:
        return self.storage_dir / SESSION_FILE

    @property
    def config_file(self) -> Path:
        return self.storage_dir / CONFIG_FILE

    @property
    def metadata_file(self) -> Path:
        return self.storage_dir / METADATA_FILE

    @property
    def wallets_dir(self) -> Path:
        return self.storage_dir / WALLETS_DIR

    @classmethod
    def from_env(cls, **overrides: Any) -> "VaultConfig":
        """Create VaultConfig by loading values from environment.

        Args:
            overrides: Explicit values that take precedence over the environment.

        Returns:
            Populated VaultConfig instance.
        """
        values: dict[str, Any] = {"storage_dir": default_storage_dir()}
        timeout = os.environ.get("CRYPTED_SESSION_TIMEOUT")
        if timeout is not None:
            values["session_timeout"] = int(timeout)
        iterations = os.environ.get("CRYPTED_KDF_ITERATIONS")
        if iterations is not None:
            values["kdf_iterations"] = int(iterations)
        network = os.environ.get("CRYPTED_DEFAULT_NETWORK")
        if network:
            values["network"] = network
        values.update(overrides)
        config = cls(**values)
        logger.debug(
            "Vault config: storage_dir=%s session_timeout=%ds",
            config.storage_dir, config.session_timeout,
        )
        return config


class AppConfig(BaseModel):
    """Free-form, non-secret application settings stored in ``config.json``."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    version: str = "0.1.0"
    active_wallet_id: Optional[str] = Field(default=None, alias="activeWalletId")
    theme: str = "default"

    def to_json(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)
