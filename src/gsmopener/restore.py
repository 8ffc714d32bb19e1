"""
Backup restore -- get data back out of whatever the user hands us.

Backup files travel through mail clients, chat apps and cloud drives
and often come back with log noise in front, garbage after the closing
brace, a dangling comma, or cut off halfway. Restore runs the text
through a pipeline of progressively weaker recovery steps:

    guard       empty input is refused, the store is not touched
    locate      drop anything before the first '{"' style opening
    balance     cut right after the first balanced closing bracket
    parse       strict JSON -> trailing-comma repair -> key/value extraction
    normalize   envelope 'data' / flat object / legacy device array
    replace     clear the store, write every key back

Each parse strategy is a pure function and can be used on its own.
Nothing is ever invented: only values actually found in the text are
written.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from .exceptions import (
    EmptyBackupError,
    MalformedBackupError,
    RestoreFailedError,
    StorageIOError,
    UnsupportedFormatError,
)
from .repository import DEVICES_KEY
from .storage import StoreBackend

logger = logging.getLogger("gsmopener.restore")

# Bare arrays are device lists from the earliest app versions.
LEGACY_DEVICE_LIST_KEY = DEVICES_KEY

START_MARKERS = ('{"', '{\n"', '{\r\n"', '{ "')

# A real array: "[" then a container, a string, "]" or a scalar followed by
# "," or "]". "[INFO]" and "[2026-10-17 07:00:00]" are log prefixes.
_ARRAY_OPEN_RE = re.compile(
    r"\[\s*(?:[{\[\"\]]"
    r"|(?:-?\d+(?:\.\d+)?(?:[eE][+-]?\d+)?|true|false|null)\s*[,\]])"
)

_TRAILING_COMMA_RE = re.compile(r",\s*([}\]])")
_PAIR_RE = re.compile(
    r'"([^"]+)"\s*:\s*('
    r'"(?:\\.|[^"\\])*"'
    r"|-?\d+(?:\.\d+)?(?:[eE][+-]?\d+)?"
    r"|true|false|null"
    r"|\{[^}]*\}"
    r"|\[[^\]]*\]"
    r")"
)


@dataclass(frozen=True)
class ParseResult:
    """Outcome of one parse strategy.

    Attributes:
        strategy: Name of the strategy that produced this result.
        value: Parsed value when the strategy succeeded.
        error: Failure reason, None on success.
    """

    strategy: str
    value: Any = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class RestoreReport:
    """What a restore actually did."""

    strategy: str = ""
    shape: str = ""
    keys_written: list[str] = field(default_factory=list)
    keys_failed: list[str] = field(default_factory=list)
    keys_skipped: list[str] = field(default_factory=list)
    cleared: bool = False
    trimmed_prefix: int = 0
    trimmed_suffix: int = 0

    @property
    def partial(self) -> bool:
        return bool(self.keys_failed)


# ---------------------------------------------------------------------------
# Text cleanup
# ---------------------------------------------------------------------------


def locate_start(text: str) -> str:
    """Drop leading noise before the earliest JSON object opening.

    Text that already opens with a JSON array is left alone; a bracketed
    log prefix such as "[INFO]" is noise like any other.
    """
    if _ARRAY_OPEN_RE.match(text):
        return text
    positions = [p for p in (text.find(m) for m in START_MARKERS) if p >= 0]
    if not positions:
        return text
    return text[min(positions):]


def _scan(text: str) -> tuple[list[int], list[bool]]:
    """Bracket depth and in-string flag before each character."""
    depths = []
    in_strings = []
    depth = 0
    in_string = False
    escaped = False
    for ch in text:
        depths.append(depth)
        in_strings.append(in_string)
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
        elif ch == '"':
            in_string = True
        elif ch in "{[":
            depth += 1
        elif ch in "}]" and depth > 0:
            depth -= 1
    return depths, in_strings


def trim_to_balanced(text: str) -> str:
    """Cut the text right after the first point its brackets balance out.

    Brackets inside quoted strings do not count. Text that never
    balances (truncated files) is returned unchanged.
    """
    depth = 0
    in_string = False
    escaped = False
    for i, ch in enumerate(text):
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
        elif ch == '"':
            in_string = True
        elif ch in "{[":
            depth += 1
        elif ch in "}]" and depth > 0:
            depth -= 1
            if depth == 0:
                return text[: i + 1]
    return text


# ---------------------------------------------------------------------------
# Parse strategies
# ---------------------------------------------------------------------------


def parse_strict(text: str) -> ParseResult:
    """Plain JSON parse."""
    try:
        return ParseResult("strict", json.loads(text))
    except json.JSONDecodeError as exc:
        return ParseResult("strict", error=str(exc))


def parse_repaired(text: str) -> ParseResult:
    """JSON parse after removing commas right before '}' or ']'."""
    fixed = _TRAILING_COMMA_RE.sub(r"\1", text)
    if fixed == text:
        return ParseResult("repaired", error="no trailing commas to repair")
    try:
        return ParseResult("repaired", json.loads(fixed))
    except json.JSONDecodeError as exc:
        return ParseResult("repaired", error=str(exc))


def extract_pairs(text: str) -> ParseResult:
    """Pull top-level ``"key": value`` pairs out of broken JSON.

    Only flat values are recovered: strings, numbers, booleans, null,
    and objects or arrays that contain no nested brackets.
    """
    depths, in_strings = _scan(text)
    top = 1 if text[:1] in ("{", "[") else 0

    extracted: dict[str, Any] = {}
    pos = 0
    while True:
        match = _PAIR_RE.search(text, pos)
        if match is None:
            break
        start = match.start()
        if in_strings[start] or depths[start] != top:
            pos = start + 1
            continue
        try:
            extracted[match.group(1)] = json.loads(match.group(2))
        except json.JSONDecodeError:
            pos = start + 1
            continue
        pos = match.end()

    if not extracted:
        return ParseResult("extracted", error="no key/value pairs found")
    return ParseResult("extracted", extracted)


PARSE_STRATEGIES: tuple[Callable[[str], ParseResult], ...] = (
    parse_strict,
    parse_repaired,
    extract_pairs,
)


def clean_backup_text(text: str) -> tuple[str, int, int]:
    """Strip whitespace, leading noise and anything after the JSON document.

    Returns:
        (cleaned text, characters dropped in front, characters dropped after)

    Raises:
        EmptyBackupError: Text is empty or whitespace only.
    """
    if not text or not text.strip():
        raise EmptyBackupError("Backup file appears to be empty")

    stripped = text.strip()
    located = locate_start(stripped)
    cleaned = trim_to_balanced(located)
    return cleaned, len(stripped) - len(located), len(located) - len(cleaned)


def parse_cleaned(cleaned: str) -> ParseResult:
    """Run the parse strategies in order over already cleaned text.

    Raises:
        MalformedBackupError: Every strategy failed.
    """
    failures = []
    for strategy in PARSE_STRATEGIES:
        result = strategy(cleaned)
        if result.ok:
            if failures:
                logger.warning(
                    "Backup recovered by %s parse after: %s", result.strategy, "; ".join(failures),
                )
            return result
        failures.append(f"{result.strategy}: {result.error}")

    raise MalformedBackupError(
        "Could not parse backup file - invalid JSON format (" + "; ".join(failures) + ")"
    )


def parse_backup(text: str) -> ParseResult:
    """Clean up backup text and run the parse strategies in order.

    Returns:
        The first successful ParseResult.

    Raises:
        EmptyBackupError: Text is empty or whitespace only.
        MalformedBackupError: Every strategy failed.
    """
    cleaned, _, _ = clean_backup_text(text)
    return parse_cleaned(cleaned)


def normalize_shape(parsed: Any) -> tuple[dict[str, Any], str]:
    """Turn a parsed backup into a store key-space.

    Returns:
        (key-space, shape name) where shape is 'envelope', 'flat' or 'legacy-array'.

    Raises:
        UnsupportedFormatError: Parsed value is neither an object nor an array.
    """
    if isinstance(parsed, dict):
        data = parsed.get("data")
        if isinstance(data, dict):
            return data, "envelope"
        return parsed, "flat"
    if isinstance(parsed, list):
        return {LEGACY_DEVICE_LIST_KEY: parsed}, "legacy-array"
    raise UnsupportedFormatError(f"Unsupported backup format: {type(parsed).__name__}")


# ---------------------------------------------------------------------------
# Store replacement
# ---------------------------------------------------------------------------


async def restore_backup_report(store: StoreBackend, text: str) -> RestoreReport:
    """Replace the store content with the data recovered from text.

    Clearing the old content is best effort. Individual key writes may
    fail; the restore still succeeds as long as one key was written.

    Returns:
        RestoreReport describing the restore.

    Raises:
        EmptyBackupError, MalformedBackupError, UnsupportedFormatError:
            Nothing usable in the text; the store is not touched.
        RestoreFailedError: No key could be written.
    """
    cleaned, prefix, suffix = clean_backup_text(text)
    result = parse_cleaned(cleaned)
    keyspace, shape = normalize_shape(result.value)

    report = RestoreReport(
        strategy=result.strategy, shape=shape, trimmed_prefix=prefix, trimmed_suffix=suffix,
    )
    if prefix or suffix:
        logger.info("Dropped %d leading and %d trailing characters of noise", prefix, suffix)

    entries = {}
    for key, value in keyspace.items():
        if value is None:
            report.keys_skipped.append(key)
        else:
            entries[key] = value
    if not entries:
        raise RestoreFailedError("Backup contains no data to restore")

    try:
        existing = await store.get_all_keys()
        if existing:
            await store.multi_remove(existing)
        report.cleared = True
        logger.info("Cleared %d existing keys", len(existing))
    except StorageIOError as exc:
        logger.warning("Could not clear existing data before restore: %s", exc)

    for key, value in entries.items():
        payload = value if isinstance(value, str) else json.dumps(value)
        try:
            await store.set(key, payload)
            report.keys_written.append(key)
        except StorageIOError as exc:
            logger.error("Failed to restore %s: %s", key, exc)
            report.keys_failed.append(key)

    if not report.keys_written:
        raise RestoreFailedError("Failed to restore any items")

    logger.info(
        "Restored %d/%d keys (%s parse, %s shape)",
        len(report.keys_written), len(keyspace), report.strategy, report.shape,
    )
    return report


async def restore_from_backup(store: StoreBackend, text: str) -> bool:
    """Restore the store from backup text.

    Returns:
        True once at least one key was written.
    """
    await restore_backup_report(store, text)
    return True
