"""Shared test fixtures for gsmopener."""

from __future__ import annotations

from pathlib import Path

import pytest
import pytest_asyncio

from gsmopener.repository import Repository
from gsmopener.storage import MemoryStore


@pytest.fixture
def tmp_home(tmp_path: Path) -> Path:
    """Provide a temporary GSM Opener home directory."""
    home = tmp_path / ".gsmopener"
    home.mkdir()
    return home


@pytest.fixture
def store() -> MemoryStore:
    """Empty in-memory store."""
    return MemoryStore()


@pytest.fixture
def device_fields() -> dict:
    """Valid fields for a new device, camelCase as the mobile app sends them."""
    return {
        "name": "Home Gate",
        "unitNumber": "+441234567890",
        "password": "1234",
        "type": "Connect4v",
        "relaySettings": {"accessControl": "AUT", "latchTime": "000"},
    }


@pytest_asyncio.fixture
async def repo(store: MemoryStore) -> Repository:
    """Initialized repository over the in-memory store."""
    repository = Repository(store)
    await repository.initialize()
    return repository
