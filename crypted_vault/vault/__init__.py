"""Wallet Vault — Password-sealed wallet storage on the local filesystem.

Security Note (Threat Model):
    Records are sealed with AES-256-GCM under a key derived from the master
    password (PBKDF2-HMAC-SHA256); the password itself is only stored as a
    salted digest. While the vault is unlocked the password and decrypted
    keys live in process memory, so a memory dump of the process exposes
    them. This is an accepted limitation; OS keychain or hardware wallet
    integration is out of scope.
"""

from .wallet_vault import WalletVault
from .auth import CredentialGate, GateState, validate_password, password_requirements
from .store import RecordStore, RecordMetadata
from .key_rotation import rotate_password, restore_password
from .config import VaultConfig, AppConfig

__all__ = [
    "WalletVault",
    "CredentialGate",
    "GateState",
    "validate_password",
    "password_requirements",
    "RecordStore",
    "RecordMetadata",
    "rotate_password",
    "restore_password",
    "VaultConfig",
    "AppConfig",
]
