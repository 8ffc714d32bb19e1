"""
Pydantic models for everything GSM Opener keeps on disk.

Field names are snake_case in Python and camelCase on the wire, so
stores and backups written by the GSM Opener mobile app load as-is.
Both spellings are accepted when building a model.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


def new_id() -> str:
    """Generate a fresh record id."""
    return uuid.uuid4().hex


def utcnow() -> datetime:
    """Current time, timezone-aware UTC."""
    return datetime.now(timezone.utc)


def _dedupe(values: list[str]) -> list[str]:
    seen: set[str] = set()
    out = []
    for value in values:
        if value not in seen:
            seen.add(value)
            out.append(value)
    return out


class StoredModel(BaseModel):
    """Base for every persisted record: camelCase aliases, lenient input."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )

    def to_store(self) -> dict:
        """Dump to the JSON-ready, camelCase form written to the store."""
        return self.model_dump(mode="json", by_alias=True)


class AccessControl(str, Enum):
    """Who may trigger the relay by calling the unit."""

    AUTHORIZED_ONLY = "AUT"
    ALLOW_ALL = "ALL"


class LogCategory(str, Enum):
    """Audit trail bucket for a log entry."""

    RELAY = "relay"
    SETTINGS = "settings"
    USER = "user"
    SYSTEM = "system"


class RelaySettings(StoredModel):
    """Relay behaviour configured on the unit.

    A latch time of ``"000"`` puts the relay in toggle mode; any other
    value holds it closed for that many seconds.
    """

    access_control: AccessControl = AccessControl.AUTHORIZED_ONLY
    latch_time: str = Field(default="000", pattern=r"^\d{3}$")

    @property
    def is_toggle(self) -> bool:
        return self.latch_time == "000"


class Device(StoredModel):
    """A GSM gate/relay unit controlled by SMS commands."""

    id: str = Field(default_factory=new_id)
    name: str
    unit_number: str
    password: str
    type: str = "Connect4v"
    authorized_users: list[str] = Field(default_factory=list)
    relay_settings: RelaySettings = Field(default_factory=RelaySettings)
    is_active: bool = True
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator("authorized_users")
    @classmethod
    def _unique_users(cls, value: list[str]) -> list[str]:
        return _dedupe(value)


class User(StoredModel):
    """A phone number allowed to operate one or more devices."""

    id: str = Field(default_factory=new_id)
    name: str
    phone: str


class LogEntry(StoredModel):
    """One immutable line of a device's audit trail."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    device_id: str
    timestamp: datetime = Field(default_factory=utcnow)
    action: str
    details: str = ""
    success: bool = True
    category: LogCategory = LogCategory.SYSTEM


class GlobalSettings(StoredModel):
    """Process-wide settings. Exactly one record exists per store."""

    admin_number: str = ""
    active_device_id: Optional[str] = None
    completed_steps: list[str] = Field(default_factory=list)

    @field_validator("completed_steps")
    @classmethod
    def _unique_steps(cls, value: list[str]) -> list[str]:
        return _dedupe(value)


class StoreSnapshot(BaseModel):
    """Point-in-time copy of the repository state handed to readers."""

    devices: list[Device] = Field(default_factory=list)
    users: list[User] = Field(default_factory=list)
    global_settings: GlobalSettings = Field(default_factory=GlobalSettings)

    @property
    def active_device(self) -> Optional[Device]:
        """The device the settings point at, if any."""
        active_id = self.global_settings.active_device_id
        if active_id is None:
            return None
        return next((d for d in self.devices if d.id == active_id), None)
