"""Tests for the GSM Opener data models."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from gsmopener.models import (
    AccessControl,
    Device,
    GlobalSettings,
    LogCategory,
    LogEntry,
    RelaySettings,
    StoreSnapshot,
)


class TestRelaySettings:
    """Tests for relay configuration validation."""

    def test_defaults(self) -> None:
        """Fresh relay settings are authorized-only, toggle mode."""
        relay = RelaySettings()
        assert relay.access_control == AccessControl.AUTHORIZED_ONLY
        assert relay.latch_time == "000"
        assert relay.is_toggle

    @pytest.mark.parametrize("latch", ["5", "0005", "abc", "12a", ""])
    def test_latch_time_must_be_three_digits(self, latch: str) -> None:
        """Anything but exactly three digits is rejected."""
        with pytest.raises(ValidationError):
            RelaySettings(latch_time=latch)

    def test_unknown_access_control_rejected(self) -> None:
        with pytest.raises(ValidationError):
            RelaySettings(access_control="SOME")


class TestDevice:
    """Tests for the Device model."""

    def test_camel_case_input(self) -> None:
        """Mobile-app style camelCase keys populate snake_case fields."""
        device = Device.model_validate({
            "name": "Gate",
            "unitNumber": "123",
            "password": "1234",
            "authorizedUsers": ["u1"],
            "relaySettings": {"accessControl": "ALL", "latchTime": "030"},
        })
        assert device.unit_number == "123"
        assert device.authorized_users == ["u1"]
        assert device.relay_settings.access_control == AccessControl.ALLOW_ALL

    def test_to_store_uses_camel_case(self) -> None:
        device = Device(name="Gate", unit_number="123", password="1234")
        data = device.to_store()
        assert data["unitNumber"] == "123"
        assert data["relaySettings"] == {"accessControl": "AUT", "latchTime": "000"}
        assert "unit_number" not in data

    def test_authorized_users_deduplicated(self) -> None:
        device = Device(name="Gate", unit_number="1", password="1234",
                        authorized_users=["a", "b", "a"])
        assert device.authorized_users == ["a", "b"]

    def test_store_round_trip(self) -> None:
        """A stored device loads back equal."""
        device = Device(name="Gate", unit_number="1", password="1234")
        assert Device.model_validate(device.to_store()) == device


class TestLogEntry:
    """Tests for immutable log entries."""

    def test_frozen(self) -> None:
        entry = LogEntry(device_id="d1", action="Test")
        with pytest.raises(ValidationError):
            entry.action = "Changed"

    def test_category_values(self) -> None:
        assert {c.value for c in LogCategory} == {"relay", "settings", "user", "system"}


class TestSnapshot:
    """Tests for StoreSnapshot helpers."""

    def test_active_device(self) -> None:
        device = Device(name="Gate", unit_number="1", password="1234")
        snap = StoreSnapshot(
            devices=[device],
            global_settings=GlobalSettings(active_device_id=device.id),
        )
        assert snap.active_device == device

    def test_no_active_device(self) -> None:
        assert StoreSnapshot().active_device is None

    def test_completed_steps_deduplicated(self) -> None:
        settings = GlobalSettings(completed_steps=["step1", "step1", "step4"])
        assert settings.completed_steps == ["step1", "step4"]
