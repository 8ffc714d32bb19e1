"""
SMS command builder, classifier and audit logger.

GSM relay units are driven by short SMS bodies, most of them prefixed
with the unit's 4-digit password:

    1234CC              open gate (activate relay)
    1234DD              close gate (deactivate relay)
    1234GOT030#         latch time, 000 = toggle mode
    1234ALL# / 1234AUT# access control mode
    1234TEL0044...#     register admin number
    1234EE              status request
    P12345678#          change password (old, new)
    1234A001#0044...#   add authorized number at serial 001
    1234A001##          remove serial 001

Every command sent is classified into an audit entry. The password
in front of the action code is masked before anything is written.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Callable, Optional

from .models import AccessControl, LogCategory, LogEntry
from .repository import Repository

logger = logging.getLogger("gsmopener.commands")

PASSWORD_MASK = "****"

_SECRET_RE = re.compile(r"\d{4}(?=[A-Z])")
_LATCH_RE = re.compile(r"GOT(\d{3})")
_PASSWORD_CHANGE_RE = re.compile(r"P\d{4}\d{4}#")
_ADD_USER_RE = re.compile(r"A\d{3}#[^#]+#")
_REMOVE_USER_RE = re.compile(r"A\d{3}##")
_PIN_RE = re.compile(r"^\d{4}$")


@dataclass(frozen=True)
class CommandClassification:
    """What a command does, in audit-log terms."""

    action: str
    category: LogCategory
    details: str


@dataclass(frozen=True)
class CommandRule:
    """One step of the classification chain.

    Attributes:
        name: Short rule identifier.
        matches: Predicate over the raw command.
        describe: Builds the detail sentence from (raw, masked) command.
        action: Audit action label.
        category: Audit category.
    """

    name: str
    matches: Callable[[str], bool]
    describe: Callable[[str, str], str]
    action: str
    category: LogCategory


def mask_command(command: str) -> str:
    """Replace the password in front of the first action code with ``****``.

    Only a 4-digit run directly followed by an uppercase letter is
    treated as a password; commands without one come back unchanged.
    """
    return _SECRET_RE.sub(PASSWORD_MASK, command, count=1)


def _latch_detail(command: str, masked: str) -> str:
    match = _LATCH_RE.search(command)
    if match is None:
        setting = "unknown"
    elif match.group(1) == "000":
        setting = "toggle mode"
    else:
        setting = f"{int(match.group(1))} seconds"
    return f"Set relay timing to {setting}: {masked}"


def _contains(token: str) -> Callable[[str], bool]:
    return lambda command: token in command


def _search(pattern: re.Pattern) -> Callable[[str], bool]:
    return lambda command: pattern.search(command) is not None


def _say(text: str) -> Callable[[str, str], str]:
    return lambda command, masked: f"{text}: {masked}"


# First match wins. Order matters for commands holding several tokens.
COMMAND_RULES: tuple[CommandRule, ...] = (
    CommandRule("open", _contains("CC"),
                _say("Sent command to activate relay (open gate)"),
                "Gate Open Command", LogCategory.RELAY),
    CommandRule("close", _contains("DD"),
                _say("Sent command to deactivate relay (close gate)"),
                "Gate Close Command", LogCategory.RELAY),
    CommandRule("latch", _contains("GOT"), _latch_detail,
                "Relay Timing Setting", LogCategory.SETTINGS),
    CommandRule("allow_all", _contains("ALL"),
                _say('Set access mode to "Allow All" (any caller with password)'),
                "Access Control Setting", LogCategory.SETTINGS),
    CommandRule("authorized_only", _contains("AUT"),
                _say('Set access mode to "Authorized Only"'),
                "Access Control Setting", LogCategory.SETTINGS),
    CommandRule("admin", _contains("TEL"),
                _say("Registered administrator phone number"),
                "Admin Registration", LogCategory.SETTINGS),
    CommandRule("status", _contains("EE"),
                _say("Requested device status"),
                "Status Check", LogCategory.SYSTEM),
    CommandRule("password", _search(_PASSWORD_CHANGE_RE),
                _say("Changed device password"),
                "Password Change", LogCategory.SETTINGS),
    CommandRule("add_user", _search(_ADD_USER_RE),
                _say("Added authorized user"),
                "User Management", LogCategory.USER),
    CommandRule("remove_user", _search(_REMOVE_USER_RE),
                _say("Removed authorized user"),
                "User Management", LogCategory.USER),
)

# TODO: unknown commands land in "relay" because the log model has no
# neutral category; revisit once LogCategory grows one.
UNKNOWN_ACTION = "Unknown Command"
UNKNOWN_CATEGORY = LogCategory.RELAY


def match_rule(command: str) -> Optional[CommandRule]:
    """Return the first rule matching command, or None."""
    for rule in COMMAND_RULES:
        if rule.matches(command):
            return rule
    return None


def classify_command(command: str) -> CommandClassification:
    """Classify an outbound command into a redacted audit description."""
    masked = mask_command(command)
    rule = match_rule(command)
    if rule is None:
        return CommandClassification(UNKNOWN_ACTION, UNKNOWN_CATEGORY, masked)
    return CommandClassification(rule.action, rule.category, rule.describe(command, masked))


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------


def _pin(value: str, label: str = "password") -> str:
    if not _PIN_RE.match(value or ""):
        raise ValueError(f"{label} must be exactly 4 digits")
    return value


def _serial(value: int) -> str:
    if not 1 <= int(value) <= 999:
        raise ValueError("User serial must be between 1 and 999")
    return f"{int(value):03d}"


def open_gate(password: str) -> str:
    return f"{_pin(password)}CC"


def close_gate(password: str) -> str:
    return f"{_pin(password)}DD"


def status_check(password: str) -> str:
    return f"{_pin(password)}EE"


def access_control(password: str, mode: AccessControl | str) -> str:
    """Command switching the relay between authorized-only and allow-all."""
    return f"{_pin(password)}{AccessControl(mode).value}#"


def latch_time(password: str, seconds: int | str) -> str:
    """Latch time command; 0 selects toggle mode."""
    value = int(seconds)
    if not 0 <= value <= 999:
        raise ValueError("Latch time must be between 0 and 999 seconds")
    return f"{_pin(password)}GOT{value:03d}#"


def register_admin(password: str, phone: str) -> str:
    if not phone:
        raise ValueError("Admin phone number is required")
    return f"{_pin(password)}TEL{phone}#"


def change_password(old: str, new: str) -> str:
    return f"P{_pin(old, 'old password')}{_pin(new, 'new password')}#"


def add_authorized_user(password: str, serial: int, phone: str) -> str:
    if not phone or "#" in phone:
        raise ValueError("A phone number without '#' is required")
    return f"{_pin(password)}A{_serial(serial)}#{phone}#"


def remove_authorized_user(password: str, serial: int) -> str:
    return f"{_pin(password)}A{_serial(serial)}##"


# ---------------------------------------------------------------------------
# Audit logger
# ---------------------------------------------------------------------------


class AuditLogger:
    """Writes classified command entries to a device's audit trail.

    Args:
        repository: Initialized repository that stores the entries.
    """

    def __init__(self, repository: Repository):
        self.repository = repository

    async def log_command(self, device_id: str, command: str, success: bool = True) -> LogEntry:
        """Classify command and append it to the device's log."""
        result = classify_command(command)
        logger.debug("Classified command as %s (%s)", result.action, result.category.value)
        return await self.repository.add_log_entry(
            device_id, result.action, result.details, success, result.category,
        )

    async def log_failure(self, device_id: str, error: str | Exception) -> LogEntry:
        """Record a command that could not be handed to the SMS transport."""
        return await self.repository.add_log_entry(
            device_id, "SMS Error", f"Failed to send command: {error}", False, LogCategory.RELAY,
        )
