"""Tests for the entity repository: CRUD, invariants and cascades."""

from __future__ import annotations

import json

import pytest

from gsmopener.exceptions import NotFoundError, StorageIOError, ValidationError
from gsmopener.models import AccessControl, LogCategory
from gsmopener.repository import (
    DEVICES_KEY,
    SETTINGS_KEY,
    USERS_KEY,
    Repository,
    logs_key,
)
from gsmopener.storage import MemoryStore


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


class TestLifecycle:
    """Tests for initialize / load / close."""

    @pytest.mark.asyncio
    async def test_initialize_creates_settings(self, store: MemoryStore) -> None:
        """First initialization writes the settings singleton."""
        repo = Repository(store)
        await repo.initialize()
        assert SETTINGS_KEY in store.data
        assert repo.global_settings.active_device_id is None

    @pytest.mark.asyncio
    async def test_use_before_initialize_fails(self, store: MemoryStore) -> None:
        repo = Repository(store)
        with pytest.raises(RuntimeError):
            repo.devices

    @pytest.mark.asyncio
    async def test_reload_sees_persisted_data(self, repo: Repository, store: MemoryStore,
                                              device_fields: dict) -> None:
        device = await repo.add_device(device_fields)
        fresh = Repository(store)
        await fresh.initialize()
        assert fresh.get_device(device.id) == device

    @pytest.mark.asyncio
    async def test_close_drops_cache(self, repo: Repository) -> None:
        await repo.close()
        assert not repo.ready
        with pytest.raises(RuntimeError):
            repo.users

    @pytest.mark.asyncio
    async def test_load_skips_invalid_records(self) -> None:
        """Broken records are skipped, valid ones survive."""
        store = MemoryStore({
            DEVICES_KEY: json.dumps([
                {"id": "d1", "name": "Ok", "unitNumber": "1", "password": "1234"},
                {"id": "d2", "name": "Bad latch", "unitNumber": "2", "password": "1234",
                 "relaySettings": {"latchTime": "9"}},
            ]),
            USERS_KEY: "not json",
        })
        repo = Repository(store)
        await repo.initialize()
        assert [d.id for d in repo.devices] == ["d1"]
        assert repo.users == []

    @pytest.mark.asyncio
    async def test_load_clears_dangling_active_device(self) -> None:
        store = MemoryStore({SETTINGS_KEY: json.dumps({"activeDeviceId": "gone"})})
        repo = Repository(store)
        await repo.initialize()
        assert repo.global_settings.active_device_id is None
        assert json.loads(store.data[SETTINGS_KEY])["activeDeviceId"] is None


# ---------------------------------------------------------------------------
# Devices
# ---------------------------------------------------------------------------


class TestDevices:
    """Tests for device CRUD."""

    @pytest.mark.asyncio
    async def test_add_device(self, repo: Repository, device_fields: dict) -> None:
        """New devices get an id, equal timestamps and no users."""
        device = await repo.add_device(device_fields)
        assert device.id
        assert device.created_at == device.updated_at
        assert device.authorized_users == []
        assert device.unit_number == "+441234567890"
        assert repo.get_device(device.id) == device

    @pytest.mark.asyncio
    async def test_add_device_ids_unique(self, repo: Repository, device_fields: dict) -> None:
        ids = {(await repo.add_device(device_fields)).id for _ in range(20)}
        assert len(ids) == 20

    @pytest.mark.asyncio
    async def test_supplied_id_is_replaced(self, repo: Repository, device_fields: dict) -> None:
        device = await repo.add_device({**device_fields, "id": "mine", "createdAt": "2020-01-01T00:00:00Z"})
        assert device.id != "mine"
        assert device.created_at.year != 2020

    @pytest.mark.asyncio
    @pytest.mark.parametrize("missing", ["name", "unitNumber", "password"])
    async def test_add_device_requires_fields(self, repo: Repository, device_fields: dict,
                                              missing: str) -> None:
        fields = dict(device_fields)
        fields[missing] = "  "
        with pytest.raises(ValidationError):
            await repo.add_device(fields)
        assert repo.devices == []

    @pytest.mark.asyncio
    async def test_add_device_unknown_field(self, repo: Repository, device_fields: dict) -> None:
        with pytest.raises(ValidationError):
            await repo.add_device({**device_fields, "colour": "red"})

    @pytest.mark.asyncio
    async def test_update_device_merges(self, repo: Repository, device_fields: dict) -> None:
        device = await repo.add_device(device_fields)
        updated = await repo.update_device(device.id, {"name": "Back Gate"})
        assert updated.name == "Back Gate"
        assert updated.password == "1234"
        assert updated.created_at == device.created_at
        assert updated.updated_at >= device.updated_at

    @pytest.mark.asyncio
    async def test_update_relay_settings_partially(self, repo: Repository,
                                                   device_fields: dict) -> None:
        """Nested relay settings merge field by field."""
        device = await repo.add_device(device_fields)
        updated = await repo.update_device(device.id, {"relaySettings": {"latchTime": "030"}})
        assert updated.relay_settings.latch_time == "030"
        assert updated.relay_settings.access_control == AccessControl.AUTHORIZED_ONLY

    @pytest.mark.asyncio
    async def test_update_invalid_latch(self, repo: Repository, device_fields: dict) -> None:
        device = await repo.add_device(device_fields)
        with pytest.raises(ValidationError):
            await repo.update_device(device.id, {"relay_settings": {"latch_time": "30"}})
        assert repo.get_device(device.id).relay_settings.latch_time == "000"

    @pytest.mark.asyncio
    async def test_update_cannot_change_id(self, repo: Repository, device_fields: dict) -> None:
        device = await repo.add_device(device_fields)
        updated = await repo.update_device(device.id, {"id": "other"})
        assert updated.id == device.id

    @pytest.mark.asyncio
    async def test_update_unknown_device(self, repo: Repository) -> None:
        with pytest.raises(NotFoundError):
            await repo.update_device("nope", {"name": "x"})

    @pytest.mark.asyncio
    async def test_failed_write_leaves_cache_untouched(self, repo: Repository,
                                                       store: MemoryStore,
                                                       device_fields: dict) -> None:
        store.fail("set", DEVICES_KEY)
        with pytest.raises(StorageIOError):
            await repo.add_device(device_fields)
        assert repo.devices == []

    @pytest.mark.asyncio
    async def test_set_active_device(self, repo: Repository, device_fields: dict) -> None:
        device = await repo.add_device(device_fields)
        assert await repo.set_active_device(device.id)
        assert repo.get_active_device() == device
        await repo.set_active_device(None)
        assert repo.get_active_device() is None

    @pytest.mark.asyncio
    async def test_set_active_unknown_device(self, repo: Repository) -> None:
        with pytest.raises(NotFoundError):
            await repo.set_active_device("nope")


class TestDeleteDevice:
    """Tests for the cascading device delete."""

    @pytest.mark.asyncio
    async def test_cascade(self, repo: Repository, store: MemoryStore, device_fields: dict) -> None:
        """Deleting the active device removes its logs and clears the active id."""
        device = await repo.add_device(device_fields)
        await repo.set_active_device(device.id)
        await repo.add_log_entry(device.id, "Gate Open Command", "****CC", True, "relay")

        assert await repo.delete_device(device.id)
        assert repo.get_device(device.id) is None
        assert repo.get_logs_for_device(device.id) == []
        assert logs_key(device.id) not in store.data
        assert repo.global_settings.active_device_id is None

    @pytest.mark.asyncio
    async def test_other_active_device_kept(self, repo: Repository, device_fields: dict) -> None:
        keep = await repo.add_device(device_fields)
        drop = await repo.add_device({**device_fields, "name": "Other"})
        await repo.set_active_device(keep.id)
        await repo.delete_device(drop.id)
        assert repo.global_settings.active_device_id == keep.id

    @pytest.mark.asyncio
    async def test_unknown_device(self, repo: Repository) -> None:
        assert await repo.delete_device("nope") is False

    @pytest.mark.asyncio
    async def test_log_removal_failure_is_not_fatal(self, repo: Repository, store: MemoryStore,
                                                    device_fields: dict) -> None:
        """A failing sub-step does not undo the primary removal."""
        device = await repo.add_device(device_fields)
        await repo.set_active_device(device.id)
        await repo.add_log_entry(device.id, "Status Check")
        store.fail("remove", logs_key(device.id))

        assert await repo.delete_device(device.id)
        assert repo.get_device(device.id) is None
        assert logs_key(device.id) in store.data
        assert repo.global_settings.active_device_id is None

    @pytest.mark.asyncio
    async def test_settings_failure_is_not_fatal(self, repo: Repository, store: MemoryStore,
                                                 device_fields: dict) -> None:
        device = await repo.add_device(device_fields)
        await repo.set_active_device(device.id)
        store.fail("set", SETTINGS_KEY)

        assert await repo.delete_device(device.id)
        assert repo.get_device(device.id) is None

    @pytest.mark.asyncio
    async def test_primary_failure_returns_false(self, repo: Repository, store: MemoryStore,
                                                 device_fields: dict) -> None:
        device = await repo.add_device(device_fields)
        store.fail("set", DEVICES_KEY)
        assert await repo.delete_device(device.id) is False
        assert repo.get_device(device.id) == device


# ---------------------------------------------------------------------------
# Users and authorization
# ---------------------------------------------------------------------------


class TestUsers:
    """Tests for users and device authorization."""

    @pytest.mark.asyncio
    async def test_add_user(self, repo: Repository) -> None:
        user = await repo.add_user({"name": "Alice", "phone": "+4411"})
        assert repo.get_user(user.id) == user

    @pytest.mark.asyncio
    async def test_add_user_requires_phone(self, repo: Repository) -> None:
        with pytest.raises(ValidationError):
            await repo.add_user({"name": "Alice", "phone": ""})

    @pytest.mark.asyncio
    async def test_update_user(self, repo: Repository) -> None:
        user = await repo.add_user({"name": "Alice", "phone": "1"})
        updated = await repo.update_user(user.id, {"phone": "2"})
        assert updated.phone == "2"
        assert updated.name == "Alice"

    @pytest.mark.asyncio
    async def test_update_unknown_user(self, repo: Repository) -> None:
        with pytest.raises(NotFoundError):
            await repo.update_user("nope", {"name": "x"})

    @pytest.mark.asyncio
    async def test_authorize_idempotent(self, repo: Repository, device_fields: dict) -> None:
        device = await repo.add_device(device_fields)
        user = await repo.add_user({"name": "Alice", "phone": "1"})
        await repo.authorize_user_for_device(device.id, user.id)
        again = await repo.authorize_user_for_device(device.id, user.id)
        assert again.authorized_users == [user.id]
        assert repo.get_device_users(device.id) == [user]

    @pytest.mark.asyncio
    async def test_deauthorize_idempotent(self, repo: Repository, device_fields: dict) -> None:
        device = await repo.add_device(device_fields)
        user = await repo.add_user({"name": "Alice", "phone": "1"})
        await repo.authorize_user_for_device(device.id, user.id)
        await repo.deauthorize_user_for_device(device.id, user.id)
        again = await repo.deauthorize_user_for_device(device.id, user.id)
        assert again.authorized_users == []

    @pytest.mark.asyncio
    async def test_authorize_unknown_ids(self, repo: Repository, device_fields: dict) -> None:
        device = await repo.add_device(device_fields)
        user = await repo.add_user({"name": "Alice", "phone": "1"})
        with pytest.raises(NotFoundError):
            await repo.authorize_user_for_device(device.id, "nope")
        with pytest.raises(NotFoundError):
            await repo.deauthorize_user_for_device("nope", user.id)

    @pytest.mark.asyncio
    async def test_delete_user_cascades(self, repo: Repository, device_fields: dict) -> None:
        """Deleting a user strips it from every device that listed it."""
        d1 = await repo.add_device(device_fields)
        d2 = await repo.add_device({**device_fields, "name": "Second"})
        d3 = await repo.add_device({**device_fields, "name": "Third"})
        alice = await repo.add_user({"name": "Alice", "phone": "1"})
        bob = await repo.add_user({"name": "Bob", "phone": "2"})
        for d in (d1, d2):
            await repo.authorize_user_for_device(d.id, alice.id)
        await repo.authorize_user_for_device(d2.id, bob.id)

        assert await repo.delete_user(alice.id)
        assert repo.get_user(alice.id) is None
        assert repo.get_device(d1.id).authorized_users == []
        assert repo.get_device(d2.id).authorized_users == [bob.id]
        assert repo.get_device(d3.id).authorized_users == []

    @pytest.mark.asyncio
    async def test_delete_user_cascade_failure(self, repo: Repository, store: MemoryStore,
                                               device_fields: dict) -> None:
        """Stale ids left by a failed cascade are hidden from readers."""
        device = await repo.add_device(device_fields)
        user = await repo.add_user({"name": "Alice", "phone": "1"})
        await repo.authorize_user_for_device(device.id, user.id)
        store.fail("set", DEVICES_KEY)

        assert await repo.delete_user(user.id)
        assert json.loads(store.data[DEVICES_KEY])[0]["authorizedUsers"] == [user.id]
        assert repo.get_device(device.id).authorized_users == []
        assert repo.get_device_users(device.id) == []

    @pytest.mark.asyncio
    async def test_add_device_unknown_user(self, repo: Repository, device_fields: dict) -> None:
        """A device cannot be created with ids of users that do not exist."""
        with pytest.raises(NotFoundError):
            await repo.add_device({**device_fields, "authorizedUsers": ["ghost"]})
        assert repo.devices == []

    @pytest.mark.asyncio
    async def test_update_device_unknown_user(self, repo: Repository, store: MemoryStore,
                                              device_fields: dict) -> None:
        device = await repo.add_device(device_fields)
        user = await repo.add_user({"name": "Alice", "phone": "1"})
        before = store.data[DEVICES_KEY]
        with pytest.raises(NotFoundError):
            await repo.update_device(device.id, {"authorizedUsers": [user.id, "ghost"]})
        assert store.data[DEVICES_KEY] == before
        assert repo.get_device(device.id).authorized_users == []

        updated = await repo.update_device(device.id, {"authorizedUsers": [user.id]})
        assert updated.authorized_users == [user.id]

    @pytest.mark.asyncio
    async def test_stale_user_ids_hidden_after_load(self) -> None:
        """Ids of missing users in stored data never reach readers."""
        store = MemoryStore({
            DEVICES_KEY: json.dumps([
                {"id": "d1", "name": "Gate", "unitNumber": "1", "password": "1234",
                 "authorizedUsers": ["u1", "ghost"]},
            ]),
            USERS_KEY: json.dumps([{"id": "u1", "name": "Alice", "phone": "1"}]),
        })
        repo = Repository(store)
        await repo.initialize()

        assert repo.devices[0].authorized_users == ["u1"]
        assert repo.get_device("d1").authorized_users == ["u1"]
        state = await repo.read_state()
        assert state.devices[0].authorized_users == ["u1"]
        assert [u.id for u in repo.get_device_users("d1")] == ["u1"]

    @pytest.mark.asyncio
    async def test_delete_unknown_user(self, repo: Repository) -> None:
        assert await repo.delete_user("nope") is False


# ---------------------------------------------------------------------------
# Logs and settings
# ---------------------------------------------------------------------------


class TestLogs:
    """Tests for the per-device audit trail."""

    @pytest.mark.asyncio
    async def test_append_in_order(self, repo: Repository, device_fields: dict) -> None:
        device = await repo.add_device(device_fields)
        first = await repo.add_log_entry(device.id, "One")
        second = await repo.add_log_entry(device.id, "Two", "details", False, LogCategory.RELAY)
        logs = repo.get_logs_for_device(device.id)
        assert [e.id for e in logs] == [first.id, second.id]
        assert logs[1].success is False
        assert logs[1].category == LogCategory.RELAY

    @pytest.mark.asyncio
    async def test_unknown_device_refused(self, repo: Repository) -> None:
        with pytest.raises(NotFoundError):
            await repo.add_log_entry("nope", "Orphan")

    @pytest.mark.asyncio
    async def test_unknown_category(self, repo: Repository, device_fields: dict) -> None:
        device = await repo.add_device(device_fields)
        with pytest.raises(ValidationError):
            await repo.add_log_entry(device.id, "X", category="weather")

    @pytest.mark.asyncio
    async def test_clear(self, repo: Repository, store: MemoryStore, device_fields: dict) -> None:
        device = await repo.add_device(device_fields)
        await repo.add_log_entry(device.id, "One")
        assert await repo.clear_logs_for_device(device.id)
        assert repo.get_logs_for_device(device.id) == []
        assert logs_key(device.id) not in store.data

    @pytest.mark.asyncio
    async def test_clear_when_empty(self, repo: Repository) -> None:
        assert await repo.clear_logs_for_device("anything") is True

    @pytest.mark.asyncio
    async def test_logs_survive_reload(self, repo: Repository, store: MemoryStore,
                                       device_fields: dict) -> None:
        device = await repo.add_device(device_fields)
        entry = await repo.add_log_entry(device.id, "One")
        fresh = Repository(store)
        await fresh.initialize()
        assert fresh.get_logs_for_device(device.id) == [entry]


class TestGlobalSettings:
    """Tests for the settings singleton."""

    @pytest.mark.asyncio
    async def test_partial_update(self, repo: Repository) -> None:
        await repo.update_global_settings({"adminNumber": "+4400"})
        settings = await repo.update_global_settings({"completed_steps": ["step1"]})
        assert settings.admin_number == "+4400"
        assert settings.completed_steps == ["step1"]

    @pytest.mark.asyncio
    async def test_active_device_must_exist(self, repo: Repository) -> None:
        with pytest.raises(NotFoundError):
            await repo.update_global_settings({"activeDeviceId": "nope"})

    @pytest.mark.asyncio
    async def test_mark_step_completed(self, repo: Repository) -> None:
        await repo.mark_step_completed("step4")
        settings = await repo.mark_step_completed("step4")
        assert settings.completed_steps == ["step4"]

    @pytest.mark.asyncio
    async def test_read_state_is_a_copy(self, repo: Repository, device_fields: dict) -> None:
        await repo.add_device(device_fields)
        state = await repo.read_state()
        state.devices.clear()
        assert len(repo.devices) == 1

    @pytest.mark.asyncio
    async def test_returned_records_are_copies(self, repo: Repository,
                                               device_fields: dict) -> None:
        """Changing a returned record does not touch the cache."""
        device = await repo.add_device(device_fields)
        user = await repo.add_user({"name": "Alice", "phone": "1"})

        device.name = "Changed"
        repo.get_device(device.id).authorized_users.append(user.id)
        repo.devices[0].relay_settings.latch_time = "999"
        repo.get_user(user.id).name = "Mallory"
        repo.global_settings.completed_steps.append("step9")

        stored = repo.get_device(device.id)
        assert stored.name == "Home Gate"
        assert stored.authorized_users == []
        assert stored.relay_settings.latch_time == "000"
        assert repo.get_user(user.id).name == "Alice"
        assert repo.global_settings.completed_steps == []
