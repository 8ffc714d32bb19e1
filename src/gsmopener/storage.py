"""
Key-value store backends -- where GSM Opener data lives.

Every backend honours the same small async contract: string keys,
string values, and five operations. Anything that goes wrong below
the contract surfaces as StorageIOError.

Memory: Plain dict. For tests and for embedding in another process.
JSON file: The whole key-space in one JSON object on disk.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Iterable, Optional

from .exceptions import StorageIOError

logger = logging.getLogger("gsmopener.storage")


class StoreBackend(ABC):
    """Abstract async key-value store."""

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        """Return the value stored under key, or None if absent."""

    @abstractmethod
    async def set(self, key: str, value: str) -> None:
        """Store value under key, replacing any previous value."""

    @abstractmethod
    async def multi_get(self, keys: Iterable[str]) -> list[tuple[str, Optional[str]]]:
        """Fetch several keys at once.

        Returns:
            (key, value) pairs in request order; value is None when absent.
        """

    @abstractmethod
    async def multi_remove(self, keys: Iterable[str]) -> None:
        """Remove several keys. Missing keys are ignored."""

    @abstractmethod
    async def get_all_keys(self) -> list[str]:
        """List every key currently stored."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable backend name."""


class MemoryStore(StoreBackend):
    """In-process dict store.

    Failures can be injected per operation, optionally per key, to
    exercise partial-failure paths::

        store.fail("set", "gsm_users")
        store.fail("get_all_keys")
    """

    def __init__(self, initial: Optional[dict[str, str]] = None):
        self.data: dict[str, str] = dict(initial or {})
        self._failures: set[tuple[str, Optional[str]]] = set()
        self.calls: list[str] = []

    @property
    def name(self) -> str:
        return "memory"

    def fail(self, operation: str, key: Optional[str] = None) -> None:
        """Make operation (optionally only for key) raise StorageIOError."""
        self._failures.add((operation, key))

    def heal(self) -> None:
        """Clear all injected failures."""
        self._failures.clear()

    def _check(self, operation: str, key: Optional[str] = None) -> None:
        self.calls.append(operation)
        if (operation, None) in self._failures or (operation, key) in self._failures:
            raise StorageIOError(f"Injected {operation} failure for {key or 'store'}")

    async def get(self, key: str) -> Optional[str]:
        self._check("get", key)
        return self.data.get(key)

    async def set(self, key: str, value: str) -> None:
        self._check("set", key)
        if not isinstance(value, str):
            raise StorageIOError(f"Value for {key} must be a string")
        self.data[key] = value

    async def multi_get(self, keys: Iterable[str]) -> list[tuple[str, Optional[str]]]:
        keys = list(keys)
        self._check("multi_get")
        for key in keys:
            self._check("get", key)
        return [(key, self.data.get(key)) for key in keys]

    async def multi_remove(self, keys: Iterable[str]) -> None:
        keys = list(keys)
        self._check("multi_remove")
        for key in keys:
            self._check("remove", key)
        for key in keys:
            self.data.pop(key, None)

    async def get_all_keys(self) -> list[str]:
        self._check("get_all_keys")
        return list(self.data)


class JsonFileStore(StoreBackend):
    """Whole key-space kept as a single JSON object file.

    The file is re-read on every call so external edits are picked up.
    Writes go to a temp file first and are moved into place.
    """

    def __init__(self, path: Path, indent: Optional[int] = None):
        self.path = Path(path).expanduser()
        self.indent = indent

    @property
    def name(self) -> str:
        return f"file:{self.path}"

    def _read(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            raw = self.path.read_text(encoding="utf-8")
        except OSError as exc:
            raise StorageIOError(f"Cannot read store {self.path}: {exc}") from exc
        if not raw.strip():
            return {}
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise StorageIOError(f"Store file {self.path} is corrupt: {exc}") from exc
        if not isinstance(data, dict):
            raise StorageIOError(f"Store file {self.path} is not a JSON object")
        return {str(k): v if isinstance(v, str) else json.dumps(v) for k, v in data.items()}

    def _write(self, data: dict[str, str]) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(dir=self.path.parent, prefix=".store-", suffix=".tmp")
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=self.indent)
            os.replace(tmp, self.path)
        except OSError as exc:
            raise StorageIOError(f"Cannot write store {self.path}: {exc}") from exc

    async def get(self, key: str) -> Optional[str]:
        return self._read().get(key)

    async def set(self, key: str, value: str) -> None:
        data = self._read()
        data[key] = value
        self._write(data)

    async def multi_get(self, keys: Iterable[str]) -> list[tuple[str, Optional[str]]]:
        data = self._read()
        return [(key, data.get(key)) for key in keys]

    async def multi_remove(self, keys: Iterable[str]) -> None:
        data = self._read()
        removed = 0
        for key in keys:
            if data.pop(key, None) is not None:
                removed += 1
        if removed:
            self._write(data)
        logger.debug("Removed %d key(s) from %s", removed, self.path)

    async def get_all_keys(self) -> list[str]:
        return list(self._read())
