"""Exceptions raised by the Crypted vault."""


class VaultError(Exception):
    """Base exception for all vault errors."""


class WeakPassword(VaultError):
    """Raised when a password does not satisfy the password policy."""

    def __init__(self, errors: list[str]):
        self.errors = list(errors)
        super().__init__(", ".join(self.errors) or "Password is too weak")


class AlreadyInitialized(VaultError):
    """Raised when setting a master password on an initialized vault."""


class NotInitialized(VaultError):
    """Raised when the vault has no master password yet."""


class AuthenticationFailed(VaultError):
    """Raised when decryption fails (wrong password, corrupted or tampered data).

    The causes are deliberately indistinguishable.
    """

    def __init__(self, message: str = "Authentication failed"):
        super().__init__(message)


class Locked(VaultError):
    """Raised when an operation needs an unlocked vault."""

    def __init__(self, message: str = "Vault is locked"):
        super().__init__(message)


class RecordNotFound(VaultError, KeyError):
    """Raised when no encrypted record exists for an id."""

    def __str__(self) -> str:
        return Exception.__str__(self)


class AlreadyExists(VaultError):
    """Raised when a wallet or seed group is registered twice."""


class DerivationOrderError(VaultError):
    """Raised when a derivation would break index contiguity."""


class IndexAlreadyDerived(DerivationOrderError):
    """Raised when deriving an index that is already present or out of order."""


class SeedGroupNotFound(VaultError, KeyError):
    """Raised when a seed group id is unknown."""

    def __str__(self) -> str:
        return Exception.__str__(self)


class WalletNotFound(VaultError, KeyError):
    """Raised when a wallet id is unknown."""

    def __str__(self) -> str:
        return Exception.__str__(self)


class UnsupportedChain(VaultError):
    """Raised for a chain type or network with no adapter."""


class InvalidKeyMaterial(VaultError):
    """Raised when a private key or mnemonic cannot be imported."""
