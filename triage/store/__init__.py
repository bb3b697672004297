"""
Triage Store

Flat per-record persistence: snapshots, suggestions, run bookkeeping.
"""

from .backend import KeyValueBackend, JsonFileBackend, InMemoryBackend
from .snapshot_store import SnapshotStore
from .lifecycle import SuggestionLifecycle
from .run_state import RunStateStore

__all__ = [
    "KeyValueBackend",
    "JsonFileBackend",
    "InMemoryBackend",
    "SnapshotStore",
    "SuggestionLifecycle",
    "RunStateStore",
]
