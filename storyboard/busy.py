"""Busy-state tracking for entities and app-wide operations.

State is an immutable snapshot replaced on every change, so observers can
compare snapshots by identity. Clearing an absent id or key returns the
same snapshot unchanged.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Callable, TypeVar, Union

logger = logging.getLogger(__name__)

T = TypeVar("T")


class EntityKind(str, Enum):
    SCENES = "scenes"
    CHARACTERS = "characters"
    LOCATIONS = "locations"


class GlobalFlag(str, Enum):
    GENERATING_BLUEPRINT = "generating_blueprint"
    GENERATING_SCENES = "generating_scenes"
    BATCH_GENERATING = "batch_generating"
    GENERATING_REFERENCE_IMAGES = "generating_reference_images"
    UPLOADING = "uploading"


@dataclass(frozen=True)
class BusySnapshot:
    global_flags: frozenset[str] = field(default_factory=frozenset)
    scenes: frozenset[str] = field(default_factory=frozenset)
    characters: frozenset[str] = field(default_factory=frozenset)
    locations: frozenset[str] = field(default_factory=frozenset)

    def is_busy(self, entity_id: str) -> bool:
        return entity_id in self.scenes or entity_id in self.characters or entity_id in self.locations

    def is_global_busy(self, key: str) -> bool:
        return key in self.global_flags

    @property
    def any_busy(self) -> bool:
        return bool(self.global_flags or self.scenes or self.characters or self.locations)


# ------------------------------------------------------------------
# Actions and reducer
# ------------------------------------------------------------------

@dataclass(frozen=True)
class SetBusy:
    kind: EntityKind
    id: str


@dataclass(frozen=True)
class ClearBusy:
    kind: EntityKind
    id: str


@dataclass(frozen=True)
class SetGlobalBusy:
    key: str


@dataclass(frozen=True)
class ClearGlobalBusy:
    key: str


BusyAction = Union[SetBusy, ClearBusy, SetGlobalBusy, ClearGlobalBusy]


def reduce_busy(state: BusySnapshot, action: BusyAction) -> BusySnapshot:
    """Return the snapshot that results from applying ``action`` to ``state``."""
    if isinstance(action, (SetBusy, ClearBusy)):
        attr = EntityKind(action.kind).value
        current: frozenset[str] = getattr(state, attr)
        if isinstance(action, SetBusy):
            if action.id in current:
                return state
            return replace(state, **{attr: current | {action.id}})
        if action.id not in current:
            return state
        return replace(state, **{attr: current - {action.id}})

    key = action.key.value if isinstance(action.key, Enum) else action.key
    if isinstance(action, SetGlobalBusy):
        if key in state.global_flags:
            return state
        return replace(state, global_flags=state.global_flags | {key})
    if key not in state.global_flags:
        return state
    return replace(state, global_flags=state.global_flags - {key})


# ------------------------------------------------------------------
# Tracker
# ------------------------------------------------------------------

class BusyTracker:
    """Owns the current busy snapshot and notifies subscribers on change.

    ``on_error`` is the shared error sink used by the scoped helpers: a
    failed operation is reported there once and swallowed.
    """

    def __init__(self, on_error: Callable[[str], None] | None = None) -> None:
        self._state = BusySnapshot()
        self._subscribers: list[Callable[[BusySnapshot], None]] = []
        self._on_error = on_error

    @property
    def snapshot(self) -> BusySnapshot:
        return self._state

    def subscribe(self, callback: Callable[[BusySnapshot], None]) -> Callable[[], None]:
        """Register an observer; returns a function that unsubscribes it."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def dispatch(self, action: BusyAction) -> BusySnapshot:
        new_state = reduce_busy(self._state, action)
        if new_state is not self._state:
            self._state = new_state
            for callback in list(self._subscribers):
                callback(new_state)
        return new_state

    def is_busy(self, entity_id: str) -> bool:
        return self._state.is_busy(entity_id)

    def is_global_busy(self, key: str | GlobalFlag) -> bool:
        return self._state.is_global_busy(key.value if isinstance(key, GlobalFlag) else key)

    def report_error(self, exc: BaseException) -> None:
        message = str(exc) or exc.__class__.__name__
        if self._on_error is not None:
            self._on_error(message)
        else:
            logger.error("Unhandled operation error: %s", message)

    @asynccontextmanager
    async def entity_busy(self, kind: EntityKind, entity_id: str) -> AsyncIterator[None]:
        """Mark an entity busy for the duration of the block."""
        self.dispatch(SetBusy(kind, entity_id))
        try:
            yield
        finally:
            self.dispatch(ClearBusy(kind, entity_id))

    @asynccontextmanager
    async def global_busy(self, key: str | GlobalFlag) -> AsyncIterator[None]:
        """Mark an app-wide flag busy for the duration of the block."""
        flag = key.value if isinstance(key, GlobalFlag) else key
        self.dispatch(SetGlobalBusy(flag))
        try:
            yield
        finally:
            self.dispatch(ClearGlobalBusy(flag))

    async def run_scoped(
        self,
        kind: EntityKind,
        entity_id: str,
        operation: Callable[[], Awaitable[T]],
    ) -> T | None:
        """Run ``operation`` with the entity marked busy.

        Errors are forwarded to the error sink and swallowed; the busy flag
        is always cleared.
        """
        async with self.entity_busy(kind, entity_id):
            try:
                return await operation()
            except Exception as exc:
                logger.warning("%s %s failed: %s", kind.value, entity_id, exc)
                self.report_error(exc)
                return None

    async def run_global(
        self,
        key: str | GlobalFlag,
        operation: Callable[[], Awaitable[T]],
    ) -> T | None:
        """Same as :meth:`run_scoped` for an app-wide flag."""
        async with self.global_busy(key):
            try:
                return await operation()
            except Exception as exc:
                logger.warning("%s failed: %s", key, exc)
                self.report_error(exc)
                return None


def snapshot_summary(snapshot: BusySnapshot) -> dict[str, Any]:
    """Plain-data view of a snapshot, for logging and status output."""
    return {
        "global": sorted(snapshot.global_flags),
        "scenes": sorted(snapshot.scenes),
        "characters": sorted(snapshot.characters),
        "locations": sorted(snapshot.locations),
    }
