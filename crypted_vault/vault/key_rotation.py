"""
Vault Password Rotation — Re-sealing every record under a new master password.

The rotation runs in two phases:
1. Every record is decrypted with the old password. Any failure aborts the
   rotation before anything is written.
2. Every record is re-sealed with the new password (atomic per file). If a
   write fails, records already re-sealed are rolled back to the old
   password and the error is re-raised.

Security Note:
    Plaintext exists in memory only for the duration of the rotation.
    Never log plaintext or ciphertext values.
"""
import logging
from typing import Any

from pydantic import BaseModel

from .store import RecordStore

logger = logging.getLogger("crypted.vault")


class RotationStats(BaseModel):
    total: int = 0
    rotated: int = 0
    rolled_back: int = 0


async def rotate_password(
    store: RecordStore,
    old_password: str,
    new_password: str,
) -> RotationStats:
    """Re-seal all records from ``old_password`` to ``new_password``.

    Args:
        store: Record store holding the sealed records.
        old_password: Password the records are currently sealed with.
        new_password: Password to re-seal them with.

    Returns:
        Rotation statistics.

    Raises:
        AuthenticationFailed: If any record cannot be opened with the old
            password (nothing is modified).
        OSError: If a write fails (already rotated records are restored).
    """
    stats = RotationStats()
    record_ids = await store.list()
    stats.total = len(record_ids)

    logger.info("Starting password rotation (%d record(s))", stats.total)

    payloads: dict[str, Any] = {}
    for record_id in record_ids:
        payloads[record_id] = await store.get(record_id, old_password)

    done: list[str] = []
    try:
        for record_id, payload in payloads.items():
            await store.put(record_id, payload, new_password)
            done.append(record_id)
            stats.rotated += 1
    except Exception:
        logger.error(
            "Password rotation failed after %d record(s), rolling back",
            len(done),
        )
        for record_id in done:
            await store.put(record_id, payloads[record_id], old_password)
            stats.rolled_back += 1
        raise

    logger.info("Password rotation complete: %s", stats.model_dump())
    return stats


async def restore_password(
    store: RecordStore,
    new_password: str,
    old_password: str,
) -> RotationStats:
    """Undo a completed rotation (used when the credential update fails)."""
    return await rotate_password(store, new_password, old_password)
