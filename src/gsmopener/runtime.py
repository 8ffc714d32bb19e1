"""
Opener runtime -- wires the store, repository, sync layer and audit
logger together.

Build one runtime per process and pass it (or its repository) to
whatever needs it. Nothing here is global.

    async with OpenerRuntime(home) as rt:
        device = await rt.add_device({"name": "Gate", ...})
        await rt.log_command(device.id, commands.open_gate(device.password))

Mutations made through the runtime refresh the cached snapshot
afterwards, so ``rt.sync.snapshot`` always reflects the last change.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Awaitable, Mapping, Optional, TypeVar

from .backup import create_backup, save_backup_to_file
from .commands import AuditLogger
from .config import OpenerConfig, load_config, resolve_home
from .models import Device, GlobalSettings, LogCategory, LogEntry, StoreSnapshot, User
from .repository import Repository
from .restore import RestoreReport, restore_backup_report
from .storage import JsonFileStore, StoreBackend
from .store_sync import StoreSync

logger = logging.getLogger("gsmopener.runtime")

T = TypeVar("T")


class OpenerRuntime:
    """Composition root for a GSM Opener session.

    Args:
        home: Data directory. Defaults to $GSMOPENER_HOME or ~/.gsmopener.
        store: Backend override; defaults to a JsonFileStore in home.
        config: Config override; defaults to ``<home>/config.yaml``.
    """

    def __init__(
        self,
        home: Optional[Path] = None,
        store: Optional[StoreBackend] = None,
        config: Optional[OpenerConfig] = None,
    ):
        self.home = resolve_home(home)
        self.config = config or load_config(self.home)
        self.store = store or JsonFileStore(
            self.home / self.config.store_file,
            indent=2 if self.config.pretty_store else None,
        )
        self.repository = Repository(self.store)
        self.sync = StoreSync(self.repository)
        self.audit = AuditLogger(self.repository)
        self._started = False

    @property
    def backup_dir(self) -> Path:
        return self.home / self.config.backup_dir

    async def start(self) -> StoreSnapshot:
        """Load the repository and publish the first snapshot."""
        await self.repository.initialize()
        await self.sync.refresh()
        self._started = True
        logger.info("Runtime started from %s", self.home)
        return self.sync.snapshot

    async def close(self) -> None:
        await self.repository.close()
        self._started = False

    async def __aenter__(self) -> "OpenerRuntime":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def _commit(self, operation: Awaitable[T]) -> T:
        try:
            return await operation
        finally:
            await self.sync.refresh()

    # ------------------------------------------------------------------
    # Devices
    # ------------------------------------------------------------------

    async def add_device(self, fields: Mapping[str, Any], activate: bool = False) -> Device:
        """Add a device, defaulting its type from config.

        Args:
            fields: Device attributes.
            activate: Also make it the active device.
        """
        data = dict(fields)
        if not data.get("type"):
            data["type"] = self.config.default_device_type
        device = await self.repository.add_device(data)
        try:
            if activate:
                await self.repository.set_active_device(device.id)
        finally:
            await self.sync.refresh()
        return device

    async def update_device(self, device_id: str, partial: Mapping[str, Any]) -> Device:
        return await self._commit(self.repository.update_device(device_id, partial))

    async def delete_device(self, device_id: str) -> bool:
        return await self._commit(self.repository.delete_device(device_id))

    async def set_active_device(self, device_id: Optional[str]) -> bool:
        return await self._commit(self.repository.set_active_device(device_id))

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    async def add_user(self, fields: Mapping[str, Any]) -> User:
        return await self._commit(self.repository.add_user(fields))

    async def update_user(self, user_id: str, partial: Mapping[str, Any]) -> User:
        return await self._commit(self.repository.update_user(user_id, partial))

    async def delete_user(self, user_id: str) -> bool:
        return await self._commit(self.repository.delete_user(user_id))

    async def authorize_user_for_device(self, device_id: str, user_id: str) -> Device:
        return await self._commit(self.repository.authorize_user_for_device(device_id, user_id))

    async def deauthorize_user_for_device(self, device_id: str, user_id: str) -> Device:
        return await self._commit(self.repository.deauthorize_user_for_device(device_id, user_id))

    # ------------------------------------------------------------------
    # Logs and settings
    # ------------------------------------------------------------------

    async def add_log_entry(
        self,
        device_id: str,
        action: str,
        details: str = "",
        success: bool = True,
        category: LogCategory | str = LogCategory.SYSTEM,
    ) -> LogEntry:
        return await self.repository.add_log_entry(device_id, action, details, success, category)

    async def log_command(self, device_id: str, command: str, success: bool = True) -> LogEntry:
        """Classify and record a command handed to the SMS transport."""
        return await self.audit.log_command(device_id, command, success)

    async def clear_logs_for_device(self, device_id: str) -> bool:
        return await self.repository.clear_logs_for_device(device_id)

    async def update_global_settings(self, partial: Mapping[str, Any]) -> GlobalSettings:
        return await self._commit(self.repository.update_global_settings(partial))

    async def mark_step_completed(self, step: str) -> GlobalSettings:
        return await self._commit(self.repository.mark_step_completed(step))

    # ------------------------------------------------------------------
    # Backup and restore
    # ------------------------------------------------------------------

    async def create_backup(self, envelope: bool = False) -> str:
        return await create_backup(self.store, envelope=envelope)

    async def save_backup(
        self, output_dir: Optional[Path] = None, envelope: bool = False
    ) -> dict[str, Any]:
        return await save_backup_to_file(
            self.store, output_dir or self.backup_dir, envelope=envelope,
        )

    async def restore_from_backup(self, text: str) -> RestoreReport:
        """Replace the store from backup text, then reload everything."""
        report = await restore_backup_report(self.store, text)
        await self.repository.initialize()
        await self.sync.refresh()
        return report
