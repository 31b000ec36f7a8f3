"""Per-device, per-group snapshot store with field-level change detection."""

from __future__ import annotations

import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from enum import StrEnum
from types import MappingProxyType
from typing import Any

from yoto_sync.logging_abstraction import get_logger
from yoto_sync.metrics import registry
from yoto_sync.state.fields import SnapshotGroup, resolve_field

logger = get_logger(__name__)


@dataclass(frozen=True)
class ChangeSet:
    """Fields whose value differed between two consecutive snapshots of one group.

    ``known`` holds the changed keys that belong to the group's field enum,
    ``unmapped`` the changed keys that do not. A ChangeSet is falsy when
    nothing changed.
    """

    device_id: str
    group: SnapshotGroup
    source: str
    changed: frozenset[str] = frozenset()
    known: frozenset[StrEnum] = frozenset()
    unmapped: frozenset[str] = frozenset()

    def __bool__(self) -> bool:
        return bool(self.changed)

    def __contains__(self, key: object) -> bool:
        return key in self.changed


@dataclass(frozen=True)
class GroupSnapshot:
    """Read-only view of one group's last known values."""

    device_id: str
    group: SnapshotGroup
    fields: Mapping[str, Any]
    last_update: float | None
    version: int
    source: str | None

    def get(self, key: str, default: Any = None) -> Any:
        return self.fields.get(key, default)


@dataclass
class _GroupState:
    fields: dict[str, Any] = field(default_factory=dict)
    last_update: float | None = None
    version: int = 0
    source: str | None = None


def _as_number(value: Any) -> Decimal | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int | float):
        try:
            return Decimal(str(value))
        except InvalidOperation:
            return None
    if isinstance(value, str):
        text = value.strip()
        if not text or not (text[0].isdigit() or (text[0] == "-" and text[1:2].isdigit())):
            return None
        try:
            number = Decimal(text)
        except InvalidOperation:
            return None
        return number if number.is_finite() else None
    return None


def _as_bool(value: Any) -> bool | None:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ("true", "false"):
        return value.strip().lower() == "true"
    return None


def values_equal(old: Any, new: Any) -> bool:
    """Value equality where numbers compare numerically even when string-encoded."""
    if old is new:
        return True
    # bool is an int subclass: True == 1, but a flag becoming a number is a change
    if isinstance(old, bool) is not isinstance(new, bool) and not isinstance(old, str) and not isinstance(new, str):
        return False
    old_num, new_num = _as_number(old), _as_number(new)
    if old_num is not None and new_num is not None:
        return old_num == new_num
    old_bool, new_bool = _as_bool(old), _as_bool(new)
    if old_bool is not None and new_bool is not None:
        return old_bool == new_bool
    return bool(old == new)


class StateReconciler:
    """Stores the last snapshot of each (device, group) and diffs new ones against it.

    Not thread-safe: drive it from the single delivery sequence (the event
    loop) or synchronize externally.
    """

    lp: str = "reconciler:"

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._state: dict[str, dict[SnapshotGroup, _GroupState]] = {}
        self._reported_unmapped: set[tuple[SnapshotGroup, str]] = set()

    def apply_snapshot(
        self,
        device_id: str,
        group: SnapshotGroup | str,
        new_fields: Mapping[str, Any],
        source: str = "mqtt",
    ) -> ChangeSet:
        """Merge a snapshot into the stored group and return what changed.

        Keys present in ``new_fields`` replace stored values; absent keys are
        kept. The merged snapshot and the timestamp are swapped in together
        only after the diff completed, so a failure leaves the previous
        snapshot untouched.
        """
        group = SnapshotGroup(group)
        current = self._state.get(device_id, {}).get(group) or _GroupState()

        merged = dict(current.fields)
        changed: set[str] = set()
        for key, value in new_fields.items():
            if key not in current.fields or not values_equal(current.fields[key], value):
                changed.add(key)
            merged[key] = value

        known: set[StrEnum] = set()
        unmapped: set[str] = set()
        for key in changed:
            member = resolve_field(group, key)
            if member is None:
                unmapped.add(key)
                self._report_unmapped(group, key)
            else:
                known.add(member)

        changes = ChangeSet(
            device_id=device_id,
            group=group,
            source=source,
            changed=frozenset(changed),
            known=frozenset(known),
            unmapped=frozenset(unmapped),
        )
        updated = _GroupState(
            fields=merged,
            last_update=self._clock(),
            version=current.version + 1,
            source=source,
        )

        self._state.setdefault(device_id, {})[group] = updated
        registry.record_snapshot_applied(group.value, source, bool(changes))
        if changes:
            logger.debug(
                "%s %s/%s changed: %s",
                self.lp,
                device_id,
                group.value,
                sorted(changes.changed),
                extra={"device_id": device_id, "group": group.value, "source": source},
            )
        return changes

    def _report_unmapped(self, group: SnapshotGroup, key: str) -> None:
        if (group, key) in self._reported_unmapped:
            return
        self._reported_unmapped.add((group, key))
        logger.info(
            "%s Unmapped %s field '%s' stored as-is",
            self.lp,
            group.value,
            key,
            extra={"group": group.value, "field": key},
        )

    def get_snapshot(self, device_id: str, group: SnapshotGroup | str) -> GroupSnapshot | None:
        group = SnapshotGroup(group)
        state = self._state.get(device_id, {}).get(group)
        if state is None:
            return None
        return GroupSnapshot(
            device_id=device_id,
            group=group,
            fields=MappingProxyType(dict(state.fields)),
            last_update=state.last_update,
            version=state.version,
            source=state.source,
        )

    def devices(self) -> tuple[str, ...]:
        return tuple(self._state)

    def forget(self, device_id: str) -> None:
        _ = self._state.pop(device_id, None)
