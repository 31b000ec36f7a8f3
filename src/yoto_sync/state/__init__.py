"""Device state: field groups, normalization, reconciliation and liveness."""

from .fields import ConfigField, PlaybackField, SnapshotGroup, StatusField
from .reconciler import ChangeSet, GroupSnapshot, StateReconciler
from .watchdog import LivenessMonitor, LivenessWatchdog

__all__ = [
    "ChangeSet",
    "ConfigField",
    "GroupSnapshot",
    "LivenessMonitor",
    "LivenessWatchdog",
    "PlaybackField",
    "SnapshotGroup",
    "StateReconciler",
    "StatusField",
]
