"""GSM Opener backup export.

Dumps the entire store key-space into one portable JSON document that
the restore engine (or the GSM Opener mobile app) can read back.

Each stored value is decoded as JSON when possible so the backup stays
human-readable; values that are not JSON are kept as raw strings.

Backup file layout:
    gsm-opener-backup-<YYYY-MM-DD>.json

    {                                 # flat form (default)
      "gsm_devices": [...],
      "app_settings": {...},
      ...
    }

    {                                 # envelope form (--envelope)
      "version": "0.1.0",
      "timestamp": "...",
      "data": { ...flat form... }
    }
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, Field

from . import __version__
from .exceptions import StorageIOError
from .storage import StoreBackend

logger = logging.getLogger("gsmopener.backup")

BACKUP_PREFIX = "gsm-opener-backup-"
BACKUP_SUFFIX = ".json"


class BackupEnvelope(BaseModel):
    """Versioned wrapper around a flat backup.

    Attributes:
        version: GSM Opener version that wrote the backup.
        timestamp: When the backup was taken.
        data: Store key -> decoded value.
    """

    version: str = __version__
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    data: dict[str, Any] = Field(default_factory=dict)


def _decode(value: str) -> Any:
    try:
        return json.loads(value)
    except (json.JSONDecodeError, TypeError):
        return value


async def collect_store(store: StoreBackend) -> dict[str, Any]:
    """Read every key of the store and decode its value.

    Absent values are skipped.

    Args:
        store: Backend to read from.

    Returns:
        dict: Key -> decoded JSON value, or the raw string.
    """
    keys = await store.get_all_keys()
    pairs = await store.multi_get(keys)
    return {key: _decode(value) for key, value in pairs if value is not None}


async def create_backup(store: StoreBackend, envelope: bool = False) -> str:
    """Serialize the whole store to backup text. Does not modify the store.

    Args:
        store: Backend to read from.
        envelope: Wrap the data in a version/timestamp envelope.

    Returns:
        str: JSON text of the backup.
    """
    data = await collect_store(store)
    logger.info("Creating backup of %d keys", len(data))
    if envelope:
        return BackupEnvelope(data=data).model_dump_json()
    return json.dumps(data)


def backup_filename(when: Optional[datetime] = None) -> str:
    """Dated backup file name, e.g. gsm-opener-backup-2026-10-17.json."""
    day = (when or datetime.now(timezone.utc)).strftime("%Y-%m-%d")
    return f"{BACKUP_PREFIX}{day}{BACKUP_SUFFIX}"


async def save_backup_to_file(
    store: StoreBackend,
    output_dir: Path,
    envelope: bool = False,
) -> dict[str, Any]:
    """Write a dated backup file. An earlier backup of the same day is replaced.

    Args:
        store: Backend to read from.
        output_dir: Directory for the backup file.
        envelope: Wrap the data in a version/timestamp envelope.

    Returns:
        dict: Result with 'filepath', 'filename', 'key_count', 'size'.
    """
    text = await create_backup(store, envelope=envelope)
    out_dir = Path(output_dir).expanduser()
    filepath = out_dir / backup_filename()
    try:
        out_dir.mkdir(parents=True, exist_ok=True)
        filepath.write_text(text, encoding="utf-8")
    except OSError as exc:
        raise StorageIOError(f"Cannot write backup {filepath}: {exc}") from exc

    size = filepath.stat().st_size
    key_count = len(json.loads(text)["data"] if envelope else json.loads(text))
    logger.info("Backup written: %s (%d keys, %d bytes)", filepath, key_count, size)

    return {
        "filepath": str(filepath),
        "filename": filepath.name,
        "key_count": key_count,
        "size": size,
    }


def read_backup_file(path: Path) -> str:
    """Read backup text, tolerating a UTF-8 byte order mark."""
    return Path(path).expanduser().read_text(encoding="utf-8-sig")


def list_backups(backup_dir: Path) -> list[dict[str, Any]]:
    """List backup files.

    Args:
        backup_dir: Directory to scan.

    Returns:
        list[dict]: Backup metadata sorted newest first.
    """
    search_dir = Path(backup_dir).expanduser()
    if not search_dir.exists():
        return []

    backups = []
    for f in sorted(search_dir.glob(f"{BACKUP_PREFIX}*{BACKUP_SUFFIX}"), reverse=True):
        stat = f.stat()
        backups.append({
            "filepath": str(f),
            "filename": f.name,
            "size": stat.st_size,
            "created": datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc).isoformat(),
        })

    return backups
