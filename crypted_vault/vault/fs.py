"""File helpers for the vault storage directory.

All files are owner-only (0600) and directories 0700. Writes go to a
temporary file in the target directory and are moved into place with
``os.replace`` so a crash never leaves a half-written file.
"""
import os
import logging
import tempfile
from pathlib import Path
from typing import Any, Optional

import orjson

logger = logging.getLogger("crypted.vault")

SECURE_FILE_MODE = 0o600
SECURE_DIR_MODE = 0o700


def set_secure_permissions(path: Path, mode: int = SECURE_FILE_MODE) -> None:
    """Restrict a path to its owner. No-op outside POSIX."""
    if os.name == "posix":
        os.chmod(path, mode)


def ensure_private_dir(path: Path) -> None:
    """Create a directory (and parents) restricted to the owner."""
    path.mkdir(parents=True, exist_ok=True)
    set_secure_permissions(path, SECURE_DIR_MODE)


def write_atomic(path: Path, data: bytes) -> None:
    """Atomically replace ``path`` with ``data``, mode 0600."""
    fd, tmp_name = tempfile.mkstemp(
        dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp",
    )
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(data)
            fh.flush()
            os.fsync(fh.fileno())
        set_secure_permissions(tmp_path)
        os.replace(tmp_path, path)
    except BaseException:
        tmp_path.unlink(missing_ok=True)
        raise


def write_json(path: Path, value: Any) -> None:
    """Atomically write ``value`` as indented JSON."""
    write_atomic(path, orjson.dumps(value, option=orjson.OPT_INDENT_2))


def read_json(path: Path) -> Optional[Any]:
    """Read a JSON file, returning None when it does not exist.

    Raises:
        orjson.JSONDecodeError: If the file is not valid JSON.
    """
    try:
        data = path.read_bytes()
    except FileNotFoundError:
        return None
    return orjson.loads(data)
