"""
Change-Set Resolver

Decides which snapshots a suggestion run evaluates.

Algorithm:
1. A single requested issue is returned as-is (no filtering)
2. Candidates: every snapshot on a full rescan or first run, otherwise the
   snapshots updated strictly after ``since``
3. Drop issues that already have a pending suggestion
4. Drop checked issues unless they changed after being checked (or full rescan)
5. Most recently changed first
"""

import logging
from typing import List, Optional

from ..common.schemas import Snapshot
from ..store.lifecycle import SuggestionLifecycle
from ..store.snapshot_store import SnapshotStore

logger = logging.getLogger("triage.suggester.change_set")


class ChangeSetResolver:
    """Builds the ordered work list for one project"""

    def __init__(self, snapshots: SnapshotStore, lifecycle: SuggestionLifecycle):
        self._snapshots = snapshots
        self._lifecycle = lifecycle

    def resolve(
        self,
        since: Optional[int] = None,
        full_rescan: bool = False,
        issue_id: Optional[str] = None,
    ) -> List[Snapshot]:
        """
        Args:
            since: Boundary state timestamp (exclusive); None on a first run
            full_rescan: Consider every snapshot and re-check checked issues
            issue_id: Evaluate just this issue

        Returns:
            Snapshots to evaluate, most recently changed first
        """
        if issue_id is not None:
            snapshot = self._snapshots.get(str(issue_id))
            return [snapshot] if snapshot is not None else []

        if full_rescan or since is None:
            candidates = self._snapshots.list_all()
        else:
            candidates = self._snapshots.list_updated_after(since)

        work: List[Snapshot] = []
        pending_skipped = 0
        checked_skipped = 0

        for candidate_id, snapshot in candidates.items():
            if self._lifecycle.has_pending(candidate_id):
                pending_skipped += 1
                continue

            if not full_rescan and self._checked_since_last_change(candidate_id, snapshot):
                checked_skipped += 1
                continue

            work.append(snapshot)

        work.sort(key=lambda s: s.state_updated_at, reverse=True)

        logger.info(
            "Resolved %d of %d candidates (%d pending, %d already checked)",
            len(work), len(candidates), pending_skipped, checked_skipped,
        )
        return work

    def _checked_since_last_change(self, issue_id: str, snapshot: Snapshot) -> bool:
        checked_at = self._lifecycle.get_checked_timestamp(issue_id)
        if checked_at is None:
            return False
        return snapshot.state_updated_at <= checked_at.timestamp()
