"""
Entity repository -- the system of record for devices, users, logs,
and global settings.

Everything is held in memory after initialize() and written through to
the store backend on every change. A change is committed to memory only
after the backend accepted it, so the cache never runs ahead of disk.

Cascading deletes are best effort: the primary record removal decides
the result, follow-up cleanups are attempted one by one and a failure
is logged without undoing what already happened.

Store layout:
    gsm_devices             # JSON list of devices
    gsm_users               # JSON list of users
    app_settings            # JSON global settings record
    device_logs_<deviceId>  # JSON list of log entries, oldest first
"""

from __future__ import annotations

import json
import logging
from typing import Any, Iterable, Mapping, Optional, Type, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from .exceptions import NotFoundError, StorageIOError, ValidationError
from .models import (
    Device,
    GlobalSettings,
    LogCategory,
    LogEntry,
    RelaySettings,
    StoreSnapshot,
    User,
    new_id,
    utcnow,
)
from .storage import StoreBackend

logger = logging.getLogger("gsmopener.repository")

DEVICES_KEY = "gsm_devices"
USERS_KEY = "gsm_users"
SETTINGS_KEY = "app_settings"
LOGS_KEY_PREFIX = "device_logs_"

DEVICE_REQUIRED = ("name", "unit_number", "password")
USER_REQUIRED = ("name", "phone")
GENERATED_FIELDS = ("id", "created_at", "updated_at")

M = TypeVar("M", bound=BaseModel)


def logs_key(device_id: str) -> str:
    """Store key holding the audit trail of one device."""
    return f"{LOGS_KEY_PREFIX}{device_id}"


def _field_names(model_cls: Type[BaseModel]) -> dict[str, str]:
    names: dict[str, str] = {}
    for name, info in model_cls.model_fields.items():
        names[name] = name
        if info.alias:
            names[info.alias] = name
    return names


def normalize_fields(
    model_cls: Type[BaseModel], fields: Mapping[str, Any], what: str
) -> dict[str, Any]:
    """Map camelCase or snake_case input keys onto model field names.

    Raises:
        ValidationError: If a key names no field of the model.
    """
    names = _field_names(model_cls)
    out: dict[str, Any] = {}
    for key, value in fields.items():
        name = names.get(key)
        if name is None:
            raise ValidationError(f"Unknown {what} field: {key}")
        out[name] = value
    return out


def _build(model_cls: Type[M], data: Mapping[str, Any]) -> M:
    try:
        return model_cls.model_validate(data)
    except PydanticValidationError as exc:
        raise ValidationError(str(exc)) from exc


def _missing(fields: Mapping[str, Any], required: Iterable[str]) -> list[str]:
    return [name for name in required if not str(fields.get(name) or "").strip()]


def _dump_list(records: Iterable[BaseModel]) -> str:
    return json.dumps([r.to_store() for r in records])


def _parse_records(raw: Optional[str], model_cls: Type[M], key: str) -> list[M]:
    """Decode a stored JSON list, skipping records that fail validation."""
    if raw is None:
        return []
    try:
        items = json.loads(raw)
    except json.JSONDecodeError as exc:
        logger.warning("Ignoring unreadable %s: %s", key, exc)
        return []
    if not isinstance(items, list):
        logger.warning("Ignoring %s: expected a list, got %s", key, type(items).__name__)
        return []

    records = []
    for item in items:
        try:
            records.append(model_cls.model_validate(item))
        except PydanticValidationError as exc:
            logger.warning("Skipping invalid record in %s: %s", key, exc.errors()[0]["msg"])
    return records


class Repository:
    """The GSM Opener system of record.

    Construct one per process and hand it to every consumer. Call
    initialize() before use and close() when done.

    Args:
        store: Key-value backend the repository persists to.
    """

    def __init__(self, store: StoreBackend):
        self.store = store
        self._devices: dict[str, Device] = {}
        self._users: dict[str, User] = {}
        self._logs: dict[str, list[LogEntry]] = {}
        self._settings = GlobalSettings()
        self._ready = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def ready(self) -> bool:
        return self._ready

    async def initialize(self) -> None:
        """Load all records and create the settings record on first run."""
        created = await self.load()
        if created:
            await self._save_settings(self._settings)
            logger.info("Created global settings record")
        logger.info(
            "Repository ready on %s: %d devices, %d users",
            self.store.name, len(self._devices), len(self._users),
        )

    async def load(self) -> bool:
        """(Re)read every record from the store into memory.

        Used on startup and after the store content was replaced by a
        restore.

        Returns:
            True if no settings record existed and defaults were used.
        """
        keys = await self.store.get_all_keys()
        log_keys = [k for k in keys if k.startswith(LOGS_KEY_PREFIX)]
        values = dict(await self.store.multi_get([DEVICES_KEY, USERS_KEY, SETTINGS_KEY, *log_keys]))

        devices: dict[str, Device] = {}
        for device in _parse_records(values.get(DEVICES_KEY), Device, DEVICES_KEY):
            if device.id in devices:
                logger.warning("Dropping duplicate device id %s", device.id)
                continue
            devices[device.id] = device

        users: dict[str, User] = {}
        for user in _parse_records(values.get(USERS_KEY), User, USERS_KEY):
            if user.id in users:
                logger.warning("Dropping duplicate user id %s", user.id)
                continue
            users[user.id] = user

        logs: dict[str, list[LogEntry]] = {}
        for key in log_keys:
            device_id = key[len(LOGS_KEY_PREFIX):]
            entries = _parse_records(values.get(key), LogEntry, key)
            if entries:
                logs[device_id] = sorted(entries, key=lambda e: e.timestamp)

        settings = GlobalSettings()
        created = True
        raw_settings = values.get(SETTINGS_KEY)
        if raw_settings is not None:
            try:
                settings = GlobalSettings.model_validate_json(raw_settings)
                created = False
            except PydanticValidationError as exc:
                logger.warning("Settings record unreadable, using defaults: %s", exc)

        self._devices = devices
        self._users = users
        self._logs = logs
        self._settings = settings
        self._ready = True

        if settings.active_device_id is not None and settings.active_device_id not in devices:
            logger.warning(
                "Active device %s no longer exists, clearing it", settings.active_device_id,
            )
            try:
                await self._save_settings(settings.model_copy(update={"active_device_id": None}))
            except StorageIOError as exc:
                logger.warning("Could not persist cleared active device: %s", exc)
                self._settings = settings.model_copy(update={"active_device_id": None})

        return created

    async def close(self) -> None:
        """Drop the in-memory cache. The repository must be re-initialized."""
        self._devices = {}
        self._users = {}
        self._logs = {}
        self._settings = GlobalSettings()
        self._ready = False
        logger.debug("Repository closed")

    def _require_ready(self) -> None:
        if not self._ready:
            raise RuntimeError("Repository not initialized; call initialize() first")

    # ------------------------------------------------------------------
    # Persistence helpers
    # ------------------------------------------------------------------

    async def _save_devices(self, devices: dict[str, Device]) -> None:
        await self.store.set(DEVICES_KEY, _dump_list(devices.values()))
        self._devices = devices

    async def _save_users(self, users: dict[str, User]) -> None:
        await self.store.set(USERS_KEY, _dump_list(users.values()))
        self._users = users

    async def _save_settings(self, settings: GlobalSettings) -> None:
        await self.store.set(SETTINGS_KEY, json.dumps(settings.to_store()))
        self._settings = settings

    # ------------------------------------------------------------------
    # Read accessors
    # ------------------------------------------------------------------

    # Readers get copies; ids of users that no longer exist (left by an
    # interrupted user deletion or an old backup) are hidden.

    def _view(self, device: Device) -> Device:
        return device.model_copy(deep=True, update={
            "authorized_users": [u for u in device.authorized_users if u in self._users],
        })

    @property
    def devices(self) -> list[Device]:
        self._require_ready()
        return [self._view(d) for d in self._devices.values()]

    @property
    def users(self) -> list[User]:
        self._require_ready()
        return [u.model_copy() for u in self._users.values()]

    @property
    def global_settings(self) -> GlobalSettings:
        self._require_ready()
        return self._settings.model_copy(deep=True)

    def get_device(self, device_id: str) -> Optional[Device]:
        self._require_ready()
        device = self._devices.get(device_id)
        return self._view(device) if device else None

    def get_user(self, user_id: str) -> Optional[User]:
        self._require_ready()
        user = self._users.get(user_id)
        return user.model_copy() if user else None

    def get_active_device(self) -> Optional[Device]:
        self._require_ready()
        active_id = self._settings.active_device_id
        return self.get_device(active_id) if active_id else None

    def get_device_users(self, device_id: str) -> list[User]:
        """Users authorized for a device, in authorization order."""
        device = self.get_device(device_id)
        if device is None:
            return []
        return [self._users[uid].model_copy() for uid in device.authorized_users]

    async def read_state(self) -> StoreSnapshot:
        """Copy of devices, users and settings for external readers."""
        self._require_ready()
        return StoreSnapshot(
            devices=self.devices,
            users=self.users,
            global_settings=self.global_settings,
        )

    def _check_users_exist(self, user_ids: Iterable[str]) -> None:
        unknown = [u for u in user_ids if u not in self._users]
        if unknown:
            raise NotFoundError(f"User not found: {', '.join(unknown)}")

    # ------------------------------------------------------------------
    # Devices
    # ------------------------------------------------------------------

    async def add_device(self, fields: Mapping[str, Any]) -> Device:
        """Create and persist a new device.

        Args:
            fields: Device attributes; name, unit_number and password are
                required. Any id or timestamps supplied are replaced.

        Returns:
            The stored Device.

        Raises:
            ValidationError: Required fields missing or values invalid.
            NotFoundError: authorized_users names an unknown user.
        """
        self._require_ready()
        data = normalize_fields(Device, fields, "device")
        missing = _missing(data, DEVICE_REQUIRED)
        if missing:
            raise ValidationError(f"Missing required device fields: {', '.join(missing)}")
        self._check_users_exist(data.get("authorized_users") or [])

        for name in GENERATED_FIELDS:
            data.pop(name, None)

        device_id = new_id()
        while device_id in self._devices:
            device_id = new_id()

        now = utcnow()
        device = _build(Device, {**data, "id": device_id, "created_at": now, "updated_at": now})

        await self._save_devices({**self._devices, device.id: device})
        logger.info("Added device %s (%s)", device.name, device.id)
        return self._view(device)

    async def update_device(self, device_id: str, partial: Mapping[str, Any]) -> Device:
        """Merge partial fields over a device and bump updated_at.

        Raises:
            NotFoundError: Unknown device id, or authorized_users names an
                unknown user.
            ValidationError: Merged record is invalid.
        """
        self._require_ready()
        existing = self._devices.get(device_id)
        if existing is None:
            raise NotFoundError(f"Device not found: {device_id}")

        changes = normalize_fields(Device, partial, "device")
        for name in ("id", "created_at"):
            changes.pop(name, None)
        if "authorized_users" in changes:
            self._check_users_exist(changes["authorized_users"] or [])

        relay = changes.get("relay_settings")
        if isinstance(relay, Mapping):
            changes["relay_settings"] = {
                **existing.relay_settings.model_dump(),
                **normalize_fields(RelaySettings, relay, "relay setting"),
            }

        merged = {**existing.model_dump(), **changes, "updated_at": utcnow()}
        device = _build(Device, merged)

        await self._save_devices({**self._devices, device_id: device})
        logger.info("Updated device %s", device_id)
        return self._view(device)

    async def delete_device(self, device_id: str) -> bool:
        """Delete a device, its audit trail, and its active-device marker.

        Only the device record removal decides the result. Log removal
        and the active-device reset are attempted independently after it.

        Returns:
            True if the device record was removed.
        """
        self._require_ready()
        device = self._devices.get(device_id)
        if device is None:
            logger.warning("Cannot delete unknown device %s", device_id)
            return False

        remaining = {k: v for k, v in self._devices.items() if k != device_id}
        try:
            await self._save_devices(remaining)
        except StorageIOError as exc:
            logger.error("Failed to delete device %s: %s", device_id, exc)
            return False

        try:
            await self.store.multi_remove([logs_key(device_id)])
            self._logs.pop(device_id, None)
        except StorageIOError as exc:
            logger.warning("Device %s deleted but its logs remain: %s", device_id, exc)

        if self._settings.active_device_id == device_id:
            try:
                await self._save_settings(
                    self._settings.model_copy(update={"active_device_id": None})
                )
            except StorageIOError as exc:
                logger.warning(
                    "Device %s deleted but still marked active: %s", device_id, exc,
                )

        logger.info("Deleted device %s (%s)", device.name, device_id)
        return True

    async def set_active_device(self, device_id: Optional[str]) -> bool:
        """Point the global settings at a device, or clear it with None.

        Raises:
            NotFoundError: Unknown device id.
        """
        self._require_ready()
        if device_id is not None and device_id not in self._devices:
            raise NotFoundError(f"Device not found: {device_id}")
        await self._save_settings(self._settings.model_copy(update={"active_device_id": device_id}))
        logger.info("Active device set to %s", device_id)
        return True

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    async def add_user(self, fields: Mapping[str, Any]) -> User:
        """Create and persist a new user.

        Raises:
            ValidationError: name or phone missing.
        """
        self._require_ready()
        data = normalize_fields(User, fields, "user")
        missing = _missing(data, USER_REQUIRED)
        if missing:
            raise ValidationError(f"Missing required user fields: {', '.join(missing)}")

        user_id = new_id()
        while user_id in self._users:
            user_id = new_id()

        user = _build(User, {**data, "id": user_id})
        await self._save_users({**self._users, user.id: user})
        logger.info("Added user %s (%s)", user.name, user.id)
        return user.model_copy()

    async def update_user(self, user_id: str, partial: Mapping[str, Any]) -> User:
        self._require_ready()
        existing = self._users.get(user_id)
        if existing is None:
            raise NotFoundError(f"User not found: {user_id}")

        changes = normalize_fields(User, partial, "user")
        changes.pop("id", None)
        user = _build(User, {**existing.model_dump(), **changes})

        await self._save_users({**self._users, user_id: user})
        return user.model_copy()

    async def delete_user(self, user_id: str) -> bool:
        """Delete a user and strip it from every device's authorized list.

        Returns:
            True if the user record was removed.
        """
        self._require_ready()
        if user_id not in self._users:
            logger.warning("Cannot delete unknown user %s", user_id)
            return False

        try:
            await self._save_users({k: v for k, v in self._users.items() if k != user_id})
        except StorageIOError as exc:
            logger.error("Failed to delete user %s: %s", user_id, exc)
            return False

        now = utcnow()
        devices = dict(self._devices)
        touched = 0
        for device in self._devices.values():
            if user_id in device.authorized_users:
                devices[device.id] = device.model_copy(update={
                    "authorized_users": [u for u in device.authorized_users if u != user_id],
                    "updated_at": now,
                })
                touched += 1

        if touched:
            try:
                await self._save_devices(devices)
            except StorageIOError as exc:
                logger.warning(
                    "User %s deleted but still listed on %d device(s): %s",
                    user_id, touched, exc,
                )

        logger.info("Deleted user %s", user_id)
        return True

    # ------------------------------------------------------------------
    # Authorization
    # ------------------------------------------------------------------

    def _pair(self, device_id: str, user_id: str) -> Device:
        self._require_ready()
        device = self._devices.get(device_id)
        if device is None:
            raise NotFoundError(f"Device not found: {device_id}")
        if user_id not in self._users:
            raise NotFoundError(f"User not found: {user_id}")
        return device

    async def authorize_user_for_device(self, device_id: str, user_id: str) -> Device:
        """Add a user to a device's authorized list. No-op if already there."""
        device = self._pair(device_id, user_id)
        if user_id in device.authorized_users:
            return self._view(device)

        device = device.model_copy(update={
            "authorized_users": [*device.authorized_users, user_id],
            "updated_at": utcnow(),
        })
        await self._save_devices({**self._devices, device_id: device})
        logger.info("Authorized user %s for device %s", user_id, device_id)
        return self._view(device)

    async def deauthorize_user_for_device(self, device_id: str, user_id: str) -> Device:
        """Remove a user from a device's authorized list. No-op if absent."""
        device = self._pair(device_id, user_id)
        if user_id not in device.authorized_users:
            return self._view(device)

        device = device.model_copy(update={
            "authorized_users": [u for u in device.authorized_users if u != user_id],
            "updated_at": utcnow(),
        })
        await self._save_devices({**self._devices, device_id: device})
        logger.info("Deauthorized user %s for device %s", user_id, device_id)
        return self._view(device)

    # ------------------------------------------------------------------
    # Audit logs
    # ------------------------------------------------------------------

    async def add_log_entry(
        self,
        device_id: str,
        action: str,
        details: str = "",
        success: bool = True,
        category: LogCategory | str = LogCategory.SYSTEM,
    ) -> LogEntry:
        """Append an entry to a device's audit trail.

        Entries for unknown devices are refused rather than stored as
        orphans.

        Raises:
            NotFoundError: Unknown device id.
            ValidationError: Unknown category.
        """
        self._require_ready()
        if device_id not in self._devices:
            raise NotFoundError(f"Device not found: {device_id}")

        entry = _build(LogEntry, {
            "device_id": device_id,
            "action": action,
            "details": details,
            "success": success,
            "category": category,
        })
        entries = [*self._logs.get(device_id, []), entry]
        await self.store.set(logs_key(device_id), _dump_list(entries))
        self._logs[device_id] = entries
        logger.debug("Logged %s for device %s", action, device_id)
        return entry

    def get_logs_for_device(self, device_id: str) -> list[LogEntry]:
        """Audit trail of a device, oldest first."""
        self._require_ready()
        return list(self._logs.get(device_id, []))

    async def clear_logs_for_device(self, device_id: str) -> bool:
        """Remove every log entry of a device. True even if there were none."""
        self._require_ready()
        await self.store.multi_remove([logs_key(device_id)])
        removed = len(self._logs.pop(device_id, []))
        logger.info("Cleared %d log entries for device %s", removed, device_id)
        return True

    # ------------------------------------------------------------------
    # Global settings
    # ------------------------------------------------------------------

    async def update_global_settings(self, partial: Mapping[str, Any]) -> GlobalSettings:
        """Merge partial fields into the settings record.

        Raises:
            NotFoundError: active_device_id names an unknown device.
            ValidationError: Unknown field or invalid value.
        """
        self._require_ready()
        changes = normalize_fields(GlobalSettings, partial, "settings")
        active_id = changes.get("active_device_id")
        if active_id is not None and active_id not in self._devices:
            raise NotFoundError(f"Device not found: {active_id}")

        settings = _build(GlobalSettings, {**self._settings.model_dump(), **changes})
        await self._save_settings(settings)
        return settings.model_copy(deep=True)

    async def mark_step_completed(self, step: str) -> GlobalSettings:
        """Record a finished setup step. Repeats are ignored."""
        self._require_ready()
        if step in self._settings.completed_steps:
            return self._settings.model_copy(deep=True)
        return await self.update_global_settings(
            {"completed_steps": [*self._settings.completed_steps, step]}
        )
