"""
Credential & Session Gate — Master password and time-bounded session.

States:
    UNINITIALIZED → no ``auth.json``
    LOCKED        → credential exists, no live session
    UNLOCKED      → password verified within the sliding session timeout

Persisted files (storage directory, owner-only):
    auth.json → {passwordHash, createdAt, updatedAt}
    .session  → {authenticated, timestamp, expiresAt}   (epoch milliseconds)

Security Note:
    The master password is only kept as a salted PBKDF2 digest.
    Never log passwords or digests.
"""
import re
import time
import asyncio
import logging
from enum import Enum
from datetime import datetime, timezone
from typing import Callable, Optional

import orjson
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..exceptions import (
    AlreadyInitialized,
    AuthenticationFailed,
    NotInitialized,
    VaultError,
    WeakPassword,
)
from .config import VaultConfig
from .crypto import KDF_ITERATIONS, hash_password, verify_password
from .fs import ensure_private_dir, read_json, write_json

logger = logging.getLogger("crypted.vault")

MIN_PASSWORD_LENGTH = 8
SPECIAL_CHARACTERS = "!@#$%^&*()_+-=[]{};':\"\\|,.<>/?"

_UPPER = re.compile(r"[A-Z]")
_LOWER = re.compile(r"[a-z]")
_DIGIT = re.compile(r"[0-9]")


# ---------------------------------------------------------------------------
# Password policy
# ---------------------------------------------------------------------------

class PasswordCheck(BaseModel):
    """Result of validating a password against the policy."""

    valid: bool
    errors: list[str] = Field(default_factory=list)


def validate_password(password: str) -> PasswordCheck:
    """Validate a password against the master-password policy."""
    errors = []
    if len(password) < MIN_PASSWORD_LENGTH:
        errors.append(
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters long"
        )
    if not _UPPER.search(password):
        errors.append("Password must contain at least one uppercase letter")
    if not _LOWER.search(password):
        errors.append("Password must contain at least one lowercase letter")
    if not _DIGIT.search(password):
        errors.append("Password must contain at least one number")
    if not any(c in SPECIAL_CHARACTERS for c in password):
        errors.append("Password must contain at least one special character")
    return PasswordCheck(valid=not errors, errors=errors)


def password_requirements() -> list[str]:
    """Human-readable policy, for display."""
    return [
        f"At least {MIN_PASSWORD_LENGTH} characters long",
        "Contains at least one uppercase letter (A-Z)",
        "Contains at least one lowercase letter (a-z)",
        "Contains at least one number (0-9)",
        "Contains at least one special character (!@#$%^&*...)",
    ]


# ---------------------------------------------------------------------------
# Persisted models
# ---------------------------------------------------------------------------

class MasterCredential(BaseModel):
    """Salted master-password digest stored in ``auth.json``.

    ``iterations`` is the KDF work factor the vault was created with; it
    applies to the digest and to every sealed record. ``pendingPasswordHash``
    is only present while a password change is re-sealing records.
    """

    model_config = ConfigDict(populate_by_name=True)

    password_hash: str = Field(alias="passwordHash")
    iterations: int = Field(default=KDF_ITERATIONS, ge=1000)
    pending_password_hash: Optional[str] = Field(default=None, alias="pendingPasswordHash")
    created_at: datetime = Field(alias="createdAt")
    updated_at: datetime = Field(alias="updatedAt")

    def to_json(self) -> dict:
        return self.model_dump(by_alias=True, mode="json", exclude_none=True)


class Session(BaseModel):
    """Proof that the master password was recently verified."""

    model_config = ConfigDict(populate_by_name=True)

    authenticated: bool = True
    timestamp: int
    expires_at: int = Field(alias="expiresAt")

    def is_expired(self, now_ms: int) -> bool:
        return not self.authenticated or now_ms > self.expires_at

    def to_json(self) -> dict:
        return self.model_dump(by_alias=True)


class GateState(str, Enum):
    UNINITIALIZED = "uninitialized"
    LOCKED = "locked"
    UNLOCKED = "unlocked"


# ---------------------------------------------------------------------------
# Gate
# ---------------------------------------------------------------------------

class CredentialGate:
    """Owns the master credential and the sliding session.

    ``is_locked()`` only inspects the in-memory session against the clock;
    ``check_session()`` is the liveness check that re-reads ``.session``,
    destroys it when expired and otherwise extends it.
    """

    def __init__(
        self,
        config: VaultConfig,
        clock: Callable[[], float] = time.time,
    ):
        self._config = config
        self._clock = clock
        self._session: Optional[Session] = None
        self._iterations: Optional[int] = None

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def _now(self) -> datetime:
        return datetime.fromtimestamp(self._clock(), tz=timezone.utc)

    @property
    def session(self) -> Optional[Session]:
        return self._session

    @property
    def iterations(self) -> int:
        """KDF work factor of the loaded credential (config value until then)."""
        return self._iterations or self._config.kdf_iterations

    @property
    def storage_dir(self):
        return self._config.storage_dir

    async def init(self) -> None:
        """Create the storage directory with owner-only permissions."""
        await asyncio.to_thread(ensure_private_dir, self._config.storage_dir)

    async def _write_credential(self, credential: MasterCredential) -> None:
        await self.init()
        await asyncio.to_thread(
            write_json, self._config.auth_file, credential.to_json(),
        )

    async def get_credential(self) -> MasterCredential:
        """Read the persisted master credential.

        Raises:
            NotInitialized: If no master password has been set.
            VaultError: If ``auth.json`` is unreadable.
        """
        try:
            data = await asyncio.to_thread(read_json, self._config.auth_file)
        except orjson.JSONDecodeError as err:
            raise VaultError("Credential file is corrupted") from err
        if data is None:
            raise NotInitialized("Master password not set")
        try:
            return MasterCredential.model_validate(data)
        except ValidationError as err:
            raise VaultError("Credential file is corrupted") from err

    # ------------------------------------------------------------------
    # Session handling
    # ------------------------------------------------------------------

    async def _create_session(self) -> None:
        now = self._now_ms()
        self._session = Session(
            authenticated=True,
            timestamp=now,
            expires_at=now + self._config.session_timeout * 1000,
        )
        try:
            await asyncio.to_thread(
                write_json, self._config.session_file, self._session.to_json(),
            )
        except OSError as err:
            # the in-memory session still gates access
            logger.error("Failed to persist session: %s", err)

    async def _destroy_session(self) -> None:
        self._session = None
        await asyncio.to_thread(
            self._config.session_file.unlink, missing_ok=True,
        )

    async def check_session(self) -> bool:
        """Liveness check: validate and extend the persisted session.

        Returns:
            True if a live session exists (its expiry is extended),
            False if it is missing, unreadable or expired (it is destroyed).
        """
        try:
            data = await asyncio.to_thread(read_json, self._config.session_file)
            session = Session.model_validate(data) if data is not None else None
        except (orjson.JSONDecodeError, ValidationError) as err:
            logger.warning("Discarding unreadable session file: %s", err)
            session = None
        if session is None:
            if self._session is not None:
                await self._destroy_session()
            return False
        if session.is_expired(self._now_ms()):
            logger.info("Session expired, locking vault")
            await self._destroy_session()
            return False
        await self._create_session()
        return True

    def is_locked(self) -> bool:
        """Pure state query; no I/O."""
        return self._session is None or self._session.is_expired(self._now_ms())

    async def state(self) -> GateState:
        if not await self.has_password():
            return GateState.UNINITIALIZED
        return GateState.LOCKED if self.is_locked() else GateState.UNLOCKED

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def has_password(self) -> bool:
        """Check whether a master credential exists."""
        return await asyncio.to_thread(self._config.auth_file.exists)

    async def set_password(self, password: str) -> None:
        """Set the master password on an uninitialized vault and unlock it.

        The configured ``kdf_iterations`` is recorded in the credential and
        stays fixed for the lifetime of the vault.

        Raises:
            AlreadyInitialized: If a master password already exists.
            WeakPassword: If the password does not satisfy the policy.
        """
        if await self.has_password():
            raise AlreadyInitialized(
                "Master password already set. Use change_password to update."
            )
        check = validate_password(password)
        if not check.valid:
            raise WeakPassword(check.errors)

        iterations = self._config.kdf_iterations
        digest = await asyncio.to_thread(
            hash_password, password, iterations=iterations,
        )
        now = self._now()
        await self._write_credential(
            MasterCredential(
                password_hash=digest,
                iterations=iterations,
                created_at=now,
                updated_at=now,
            )
        )
        self._iterations = iterations
        await self._create_session()
        logger.info("Master password set")

    async def _verify(
        self, password: str, digest: str, credential: MasterCredential,
    ) -> bool:
        return await asyncio.to_thread(
            verify_password, password, digest, iterations=credential.iterations,
        )

    async def unlock(self, password: str) -> bool:
        """Verify the master password and issue a session.

        If a password change was interrupted before its credential was
        committed, the pending password is accepted too and the change is
        completed.

        Returns:
            True on success, False on a wrong password.

        Raises:
            NotInitialized: If no master password has been set.
        """
        credential = await self.get_credential()
        self._iterations = credential.iterations
        if await self._verify(password, credential.password_hash, credential):
            if credential.pending_password_hash:
                logger.warning(
                    "Unlocked with the previous password while a password change is pending"
                )
            await self._create_session()
            logger.info("Vault unlocked")
            return True
        pending = credential.pending_password_hash
        if pending and await self._verify(password, pending, credential):
            logger.warning("Completing interrupted password change")
            await self.commit_password()
            return True
        logger.warning("Unlock attempt failed")
        return False

    async def stage_password(self, old_password: str, new_password: str) -> None:
        """Record the digest of ``new_password`` as pending in ``auth.json``.

        The current password stays valid until ``commit_password``.

        Raises:
            AuthenticationFailed: If the current password is wrong.
            WeakPassword: If the new password does not satisfy the policy.
        """
        if not await self.unlock(old_password):
            raise AuthenticationFailed("Invalid current password")
        check = validate_password(new_password)
        if not check.valid:
            raise WeakPassword(check.errors)

        credential = await self.get_credential()
        digest = await asyncio.to_thread(
            hash_password, new_password, iterations=credential.iterations,
        )
        credential.pending_password_hash = digest
        await self._write_credential(credential)

    async def commit_password(self) -> None:
        """Promote the pending digest to the master credential.

        Raises:
            VaultError: If no password change is pending.
        """
        credential = await self.get_credential()
        if not credential.pending_password_hash:
            raise VaultError("No password change pending")
        credential.password_hash = credential.pending_password_hash
        credential.pending_password_hash = None
        credential.updated_at = self._now()
        await self._write_credential(credential)
        await self._create_session()
        logger.info("Master password changed")

    async def abort_password_change(self) -> None:
        """Drop a pending password digest, if any."""
        credential = await self.get_credential()
        if credential.pending_password_hash is None:
            return
        credential.pending_password_hash = None
        await self._write_credential(credential)
        logger.info("Pending password change discarded")

    async def change_password(self, old_password: str, new_password: str) -> None:
        """Replace the master password.

        Only the credential is updated here; re-sealing existing records is
        done by ``key_rotation.rotate_password`` between ``stage_password``
        and ``commit_password``.

        Raises:
            AuthenticationFailed: If the current password is wrong.
            WeakPassword: If the new password does not satisfy the policy.
        """
        await self.stage_password(old_password, new_password)
        await self.commit_password()

    async def lock(self) -> None:
        """Destroy the session. Idempotent."""
        await self._destroy_session()
        logger.debug("Vault locked")
