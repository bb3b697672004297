"""
Snapshot Store

Durable storage of exactly one current Snapshot per issue, with a secondary
index on the state timestamp for "updated after T" range queries.

Layout (per project):
- snapshots/<issue_id>            current snapshot record
- snapshot_index/by_timestamp     issue_id -> state timestamp

The index is written before the record it describes and every range hit is
confirmed against the record itself, so an interrupted put can only leave
the index pointing at a record that is then filtered out, never hide a
record that should match.
"""

import logging
from bisect import bisect_right
from typing import Dict, Iterable, List, Optional, Tuple

from pydantic import ValidationError

from ..common.schemas import Snapshot
from .backend import KeyValueBackend

logger = logging.getLogger("triage.store.snapshot_store")


class SnapshotStore:
    """Current-state snapshots for one project."""

    CATEGORY = "snapshots"
    INDEX_CATEGORY = "snapshot_index"
    INDEX_KEY = "by_timestamp"

    def __init__(self, backend: KeyValueBackend, project_id: str):
        self._backend = backend
        self._project_id = str(project_id)

    @property
    def project_id(self) -> str:
        return self._project_id

    def put(self, issue_id: str, snapshot: Snapshot, timestamp: Optional[int] = None) -> Snapshot:
        """
        Make ``snapshot`` the current state of ``issue_id``.

        The previous record for the issue is replaced in a single move; there
        is never more than one record per issue.

        Args:
            issue_id: Issue identifier
            snapshot: Normalized snapshot
            timestamp: Index key; defaults to snapshot.state_updated_at

        Returns:
            The stored snapshot (state_updated_at equals the index key)
        """
        issue_id = str(issue_id)
        ts = snapshot.state_updated_at if timestamp is None else int(timestamp)
        if snapshot.state_updated_at != ts or snapshot.issue_id != issue_id:
            snapshot = snapshot.model_copy(update={"state_updated_at": ts, "issue_id": issue_id})
        return self.put_many([snapshot])[0]

    def put_many(self, snapshots: Iterable[Snapshot]) -> List[Snapshot]:
        """
        Store a batch of snapshots keyed by their own issue_id and
        state_updated_at.

        The index is read and written once for the whole batch, before any
        record. A later snapshot of the same issue in the batch wins.
        """
        latest: Dict[str, Snapshot] = {}
        for snapshot in snapshots:
            latest[snapshot.issue_id] = snapshot
        if not latest:
            return []

        index = self._load_index()
        for issue_id, snapshot in latest.items():
            index[issue_id] = snapshot.state_updated_at
        self._save_index(index)

        for issue_id, snapshot in latest.items():
            self._backend.put(
                self._project_id,
                self.CATEGORY,
                issue_id,
                {"state_updated_at": snapshot.state_updated_at, "snapshot": snapshot.model_dump(mode="json")},
            )
            logger.debug("Stored snapshot %s/%s at %d", self._project_id, issue_id, snapshot.state_updated_at)
        return list(latest.values())

    def get(self, issue_id: str) -> Optional[Snapshot]:
        record = self._backend.get(self._project_id, self.CATEGORY, str(issue_id))
        return self._to_snapshot(str(issue_id), record)

    def list_updated_after(self, timestamp: int) -> Dict[str, Snapshot]:
        """Snapshots whose state timestamp is strictly greater than ``timestamp``"""
        entries = self._sorted_entries()
        keys = [ts for ts, _ in entries]
        start = bisect_right(keys, timestamp)

        result: Dict[str, Snapshot] = {}
        for _, issue_id in entries[start:]:
            snapshot = self.get(issue_id)
            if snapshot is not None and snapshot.state_updated_at > timestamp:
                result[issue_id] = snapshot
        return result

    def list_all(self) -> Dict[str, Snapshot]:
        result: Dict[str, Snapshot] = {}
        for issue_id, record in self._backend.list(self._project_id, self.CATEGORY).items():
            snapshot = self._to_snapshot(issue_id, record)
            if snapshot is not None:
                result[issue_id] = snapshot
        return result

    def count(self) -> int:
        return len(self._load_index())

    def rebuild_index(self) -> int:
        """Regenerate the timestamp index from the stored records"""
        index = {
            issue_id: snapshot.state_updated_at
            for issue_id, snapshot in self.list_all().items()
        }
        self._save_index(index)
        logger.info("Rebuilt snapshot index for %s (%d entries)", self._project_id, len(index))
        return len(index)

    # ------------------------------------------------------------------

    def _sorted_entries(self) -> List[Tuple[int, str]]:
        return sorted((ts, issue_id) for issue_id, ts in self._load_index().items())

    def _load_index(self) -> Dict[str, int]:
        record = self._backend.get(self._project_id, self.INDEX_CATEGORY, self.INDEX_KEY)
        if record is None:
            if self._backend.list(self._project_id, self.CATEGORY):
                self.rebuild_index()
                record = self._backend.get(self._project_id, self.INDEX_CATEGORY, self.INDEX_KEY)
            if record is None:
                return {}
        entries = record.get("entries", {})
        return {str(issue_id): int(ts) for issue_id, ts in entries.items()}

    def _save_index(self, index: Dict[str, int]) -> None:
        self._backend.put(self._project_id, self.INDEX_CATEGORY, self.INDEX_KEY, {"entries": index})

    def _to_snapshot(self, issue_id: str, record: Optional[dict]) -> Optional[Snapshot]:
        if record is None:
            return None
        try:
            return Snapshot.model_validate(record.get("snapshot", {}))
        except ValidationError as e:
            logger.warning("Skipping invalid snapshot %s/%s: %s", self._project_id, issue_id, e)
            return None
