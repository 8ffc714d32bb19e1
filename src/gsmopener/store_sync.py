"""
Store sync -- a cached view of the repository for readers.

Readers (a UI, a CLI table, a status endpoint) look at ``snapshot``
instead of hitting the repository. ``refresh()`` re-reads the
repository and republishes only when something actually changed, so
subscribers are not woken up for no-op writes.

Overlapping refreshes are not queued: a refresh that starts while
another is still running returns immediately and does nothing.
"""

from __future__ import annotations

import inspect
import logging
from typing import Awaitable, Callable, Optional, Protocol, Union

from .models import StoreSnapshot

logger = logging.getLogger("gsmopener.store_sync")

Listener = Callable[[StoreSnapshot], Union[None, Awaitable[None]]]


class StateSource(Protocol):
    """Anything that can produce a StoreSnapshot (normally a Repository)."""

    async def read_state(self) -> StoreSnapshot: ...


class StoreSync:
    """Cached, change-detecting snapshot of repository state.

    Args:
        source: Repository (or compatible) to read from.
        initial: Starting snapshot. Defaults to an empty store.
    """

    def __init__(self, source: StateSource, initial: Optional[StoreSnapshot] = None):
        self._source = source
        self._snapshot = initial or StoreSnapshot()
        self._version = 0
        self._refreshing = False
        self._listeners: list[Listener] = []

    @property
    def snapshot(self) -> StoreSnapshot:
        return self._snapshot

    @property
    def version(self) -> int:
        """Bumped once per published change."""
        return self._version

    @property
    def refreshing(self) -> bool:
        return self._refreshing

    def subscribe(self, listener: Listener) -> None:
        """Call listener with the new snapshot after every published change."""
        self._listeners.append(listener)

    def unsubscribe(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    async def refresh(self) -> bool:
        """Re-read the source and publish the result if it changed.

        Returns:
            True if a new snapshot was published. False when nothing
            changed, the read failed, or another refresh was in flight.
        """
        if self._refreshing:
            logger.debug("Refresh already in flight, skipping")
            return False

        self._refreshing = True
        try:
            try:
                state = await self._source.read_state()
            except Exception as exc:
                logger.error("Failed to refresh store snapshot: %s", exc)
                return False

            if state == self._snapshot:
                return False

            self._snapshot = state
            self._version += 1
            logger.debug(
                "Snapshot v%d: %d devices, %d users",
                self._version, len(state.devices), len(state.users),
            )
        finally:
            self._refreshing = False

        await self._notify(state)
        return True

    async def _notify(self, state: StoreSnapshot) -> None:
        for listener in list(self._listeners):
            try:
                result = listener(state)
                if inspect.isawaitable(result):
                    await result
            except Exception as exc:
                logger.warning("Snapshot listener %r failed: %s", listener, exc)
