"""
RecordStore — One sealed file per vault entry plus a plaintext metadata index.

Layout (storage directory, owner-only):
- ``wallets/<record_id>.enc`` — base64 envelope of the canonical payload
- ``wallets.json``            — record_id → {type, name, chainType, network, updatedAt}
- ``config.json``             — free-form, non-secret application settings

The metadata index is a cache for listings, never a source of truth: it
can be rebuilt from the records with ``catalog(password)``.

Security Note:
    Never log payloads or ciphertext values. Only log record ids and
    operations. The metadata model cannot carry secret fields.
"""
import re
import asyncio
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

import orjson
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..exceptions import RecordNotFound
from .config import RECORD_SUFFIX, AppConfig, VaultConfig
from .crypto import (
    decode_envelope,
    deserialize_value,
    encode_envelope,
    seal,
    serialize_value,
    unseal,
)
from .fs import ensure_private_dir, read_json, set_secure_permissions, write_atomic, write_json

logger = logging.getLogger("crypted.vault")

_RECORD_ID = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9_.\-]*$")
_MAX_RECORD_ID = 255


class RecordMetadata(BaseModel):
    """Non-secret display metadata for one record."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    type: str = "unknown"
    name: Optional[str] = None
    chain_type: Optional[str] = Field(default=None, alias="chainType")
    network: Optional[str] = None
    updated_at: Optional[datetime] = Field(default=None, alias="updatedAt")

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "RecordMetadata":
        """Build metadata from a decrypted payload, keeping public fields only."""
        return cls(
            type=payload.get("type") or "unknown",
            name=payload.get("name"),
            chain_type=payload.get("chainType"),
            network=payload.get("network"),
        )

    def to_json(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


class RecordStore:
    """Encrypted, file-backed record store.

    Each ``put`` seals the payload with the caller's password; the store
    itself never keeps the password.
    """

    def __init__(self, config: VaultConfig):
        self._config = config
        self._initialized = False
        self._metadata_lock = asyncio.Lock()
        # KDF work factor of the vault; set from the credential on unlock
        self.iterations = config.kdf_iterations

    # ------------------------------------------------------------------
    # Paths & validation
    # ------------------------------------------------------------------

    @property
    def storage_dir(self) -> Path:
        return self._config.storage_dir

    @property
    def wallets_dir(self) -> Path:
        return self._config.wallets_dir

    def _validate_id(self, record_id: str) -> None:
        """Validate a record id.

        Raises:
            ValueError: If the id is empty, too long, or not a safe file name.
        """
        if not record_id:
            raise ValueError("Record id cannot be empty")
        if len(record_id) > _MAX_RECORD_ID:
            raise ValueError(f"Record id cannot exceed {_MAX_RECORD_ID} characters")
        if not _RECORD_ID.match(record_id):
            raise ValueError(f"Invalid record id: {record_id!r}")

    def _record_path(self, record_id: str) -> Path:
        self._validate_id(record_id)
        return self.wallets_dir / f"{record_id}{RECORD_SUFFIX}"

    async def init(self) -> None:
        """Create the storage and record directories (0700)."""
        await asyncio.to_thread(ensure_private_dir, self.storage_dir)
        await asyncio.to_thread(ensure_private_dir, self.wallets_dir)
        self._initialized = True

    async def _ensure_init(self) -> None:
        if not self._initialized:
            await self.init()

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------

    def _seal_payload(self, payload: Any, password: str) -> bytes:
        envelope = seal(
            serialize_value(payload), password,
            iterations=self.iterations,
        )
        return encode_envelope(envelope).encode("ascii")

    def _open_payload(self, data: bytes, password: str) -> Any:
        envelope = decode_envelope(data.decode("ascii", errors="replace"))
        plaintext = unseal(
            envelope, password, iterations=self.iterations,
        )
        return deserialize_value(plaintext)

    async def put(
        self,
        record_id: str,
        payload: Any,
        password: str,
        metadata: Optional[RecordMetadata] = None,
    ) -> None:
        """Seal and atomically write a record, overwriting any existing one.

        Args:
            record_id: Stable, non-secret record identifier.
            payload: JSON-serializable payload (secrets included).
            password: Password to seal the payload with.
            metadata: Optional display metadata to store in the index.
        """
        path = self._record_path(record_id)
        await self._ensure_init()
        data = await asyncio.to_thread(self._seal_payload, payload, password)
        await asyncio.to_thread(write_atomic, path, data)
        if metadata is not None:
            await self.save_metadata(record_id, metadata)
        logger.debug("Record stored: id=%s", record_id)

    async def get(self, record_id: str, password: str) -> Any:
        """Read and decrypt a record.

        Raises:
            RecordNotFound: If no record exists for ``record_id``.
            AuthenticationFailed: Wrong password or corrupted record.
        """
        path = self._record_path(record_id)
        try:
            data = await asyncio.to_thread(path.read_bytes)
        except FileNotFoundError:
            raise RecordNotFound(f"Record not found: {record_id}") from None
        return await asyncio.to_thread(self._open_payload, data, password)

    async def delete(self, record_id: str) -> None:
        """Remove a record and its metadata entry.

        Raises:
            RecordNotFound: If no record exists for ``record_id``.
        """
        path = self._record_path(record_id)
        try:
            await asyncio.to_thread(path.unlink)
        except FileNotFoundError:
            raise RecordNotFound(f"Record not found: {record_id}") from None
        await self.delete_metadata(record_id)
        logger.debug("Record deleted: id=%s", record_id)

    async def exists(self, record_id: str) -> bool:
        path = self._record_path(record_id)
        return await asyncio.to_thread(path.exists)

    def _list_ids(self) -> list[str]:
        if not self.wallets_dir.is_dir():
            return []
        return sorted(
            p.name[:-len(RECORD_SUFFIX)]
            for p in self.wallets_dir.iterdir()
            if p.is_file() and p.name.endswith(RECORD_SUFFIX)
            and not p.name.startswith(".")
        )

    async def list(self) -> list[str]:
        """List record ids. Needs no password."""
        return await asyncio.to_thread(self._list_ids)

    # ------------------------------------------------------------------
    # Metadata index
    # ------------------------------------------------------------------

    def _read_index(self) -> dict[str, Any]:
        try:
            data = read_json(self._config.metadata_file)
        except orjson.JSONDecodeError as err:
            logger.warning("Metadata index is corrupted, ignoring it: %s", err)
            return {}
        if not isinstance(data, dict):
            if data is not None:
                logger.warning("Metadata index has unexpected shape, ignoring it")
            return {}
        return data

    async def get_all_metadata(self) -> dict[str, RecordMetadata]:
        """Return the metadata index; invalid entries are skipped."""
        raw = await asyncio.to_thread(self._read_index)
        result = {}
        for record_id, entry in raw.items():
            try:
                result[record_id] = RecordMetadata.model_validate(entry)
            except ValidationError:
                logger.warning("Skipping invalid metadata entry: id=%s", record_id)
        return result

    async def get_metadata(self, record_id: str) -> Optional[RecordMetadata]:
        return (await self.get_all_metadata()).get(record_id)

    async def save_metadata(self, record_id: str, metadata: RecordMetadata) -> None:
        """Insert or replace one entry of the metadata index."""
        self._validate_id(record_id)
        await self._ensure_init()
        entry = metadata.model_copy(
            update={"updated_at": datetime.now(timezone.utc)}
        )
        async with self._metadata_lock:
            index = await asyncio.to_thread(self._read_index)
            index[record_id] = entry.to_json()
            await asyncio.to_thread(write_json, self._config.metadata_file, index)

    async def delete_metadata(self, record_id: str) -> None:
        """Drop one entry of the metadata index, if present."""
        async with self._metadata_lock:
            index = await asyncio.to_thread(self._read_index)
            if index.pop(record_id, None) is not None:
                await asyncio.to_thread(
                    write_json, self._config.metadata_file, index,
                )

    async def catalog(self, password: Optional[str] = None) -> dict[str, RecordMetadata]:
        """Metadata for every record on disk.

        Records missing from the index are decrypted to rebuild their entry
        when ``password`` is given (the index is repaired); otherwise they
        are listed with ``type="unknown"``.
        """
        ids = await self.list()
        metadata = await self.get_all_metadata()
        result = {}
        for record_id in ids:
            entry = metadata.get(record_id)
            if entry is None and password is not None:
                try:
                    payload = await self.get(record_id, password)
                except Exception as err:
                    logger.error(
                        "Failed to rebuild metadata for id=%s: %s", record_id, err,
                    )
                else:
                    entry = RecordMetadata.from_payload(payload)
                    await self.save_metadata(record_id, entry)
                    logger.info("Rebuilt metadata for id=%s", record_id)
            result[record_id] = entry or RecordMetadata()
        return result

    # ------------------------------------------------------------------
    # Application config
    # ------------------------------------------------------------------

    async def save_config(self, config: AppConfig) -> None:
        await self._ensure_init()
        await asyncio.to_thread(
            write_json, self._config.config_file, config.to_json(),
        )

    async def load_config(self) -> AppConfig:
        """Load ``config.json``, falling back to defaults when absent or invalid."""
        try:
            data = await asyncio.to_thread(read_json, self._config.config_file)
            return AppConfig.model_validate(data or {})
        except (orjson.JSONDecodeError, ValidationError) as err:
            logger.warning("Invalid config.json, using defaults: %s", err)
            return AppConfig()

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    async def export_record(self, record_id: str, password: str, output_path: Path) -> None:
        """Write a decrypted record as plaintext JSON (mode 0600)."""
        payload = await self.get(record_id, password)
        output_path = Path(output_path)
        await asyncio.to_thread(write_json, output_path, payload)
        await asyncio.to_thread(set_secure_permissions, output_path)
        logger.warning("Record exported in plaintext: id=%s", record_id)

    async def info(self) -> dict[str, Any]:
        ids = await self.list()
        metadata = await self.get_all_metadata()
        return {
            "storageDir": str(self.storage_dir),
            "walletsDir": str(self.wallets_dir),
            "walletCount": len(ids),
            "metadata": len(metadata),
        }

    async def clear_all(self) -> None:
        """Delete every record, the metadata index and ``config.json``."""
        for record_id in await self.list():
            await self.delete(record_id)
        for path in (self._config.metadata_file, self._config.config_file):
            await asyncio.to_thread(path.unlink, missing_ok=True)
        logger.warning("All vault records cleared")
