"""Tests for ChangeSetResolver."""

from datetime import timedelta
from unittest.mock import patch

import pytest

from triage.common.schemas import CheckedRecord, ProblemType, Suggestion
from triage.store.lifecycle import SuggestionLifecycle
from triage.store.snapshot_store import SnapshotStore
from triage.suggester.change_set import ChangeSetResolver

from triage.tests.timeline import NOW, ts


@pytest.fixture
def stores(backend):
    return SnapshotStore(backend, "3060"), SuggestionLifecycle(backend, "3060")


@pytest.fixture
def resolver(stores):
    return ChangeSetResolver(*stores)


def _check_at(lifecycle, issue_id, moment):
    with patch("triage.store.lifecycle.utc_now", return_value=moment):
        return lifecycle.mark_checked(issue_id)


class TestResolve:
    def test_first_run_takes_everything(self, stores, resolver, make_snapshot):
        snapshots, _ = stores
        snapshots.put("1", make_snapshot("1", state_updated_at=1000))
        snapshots.put("2", make_snapshot("2", state_updated_at=2000))

        work = resolver.resolve(since=None)
        assert [s.issue_id for s in work] == ["2", "1"]

    def test_only_strictly_newer(self, stores, resolver, make_snapshot):
        snapshots, _ = stores
        snapshots.put("1", make_snapshot("1", state_updated_at=1000))
        snapshots.put("2", make_snapshot("2", state_updated_at=2000))
        snapshots.put("3", make_snapshot("3", state_updated_at=3000))

        work = resolver.resolve(since=2000)
        assert [s.issue_id for s in work] == ["3"]

    def test_most_recent_first(self, stores, resolver, make_snapshot):
        snapshots, _ = stores
        for issue_id, changed in (("1", 3000), ("2", 1000), ("3", 2000)):
            snapshots.put(issue_id, make_snapshot(issue_id, state_updated_at=changed))

        work = resolver.resolve(since=0)
        assert [s.issue_id for s in work] == ["1", "3", "2"]

    def test_skips_pending(self, stores, resolver, make_snapshot):
        snapshots, lifecycle = stores
        snapshots.put("1", make_snapshot("1", state_updated_at=1000))
        lifecycle.create_pending("1", Suggestion.for_snapshot(
            make_snapshot("1"), ProblemType.STALE_ISSUE, reason="r", suggestion="s",
        ))

        assert resolver.resolve(since=None) == []
        assert resolver.resolve(full_rescan=True) == []

    def test_checked_issue_skipped_until_it_changes(self, stores, resolver, make_snapshot):
        snapshots, lifecycle = stores
        changed = NOW - timedelta(days=3)
        snapshots.put("1", make_snapshot("1", state_updated_at=ts(changed)))
        _check_at(lifecycle, "1", NOW - timedelta(days=2))

        assert resolver.resolve(since=None) == []

        # Changed after the check: eligible again
        snapshots.put("1", make_snapshot("1", state_updated_at=ts(NOW - timedelta(days=1))))
        assert [s.issue_id for s in resolver.resolve(since=None)] == ["1"]

    def test_checked_at_same_second_is_still_skipped(self, stores, resolver, make_snapshot):
        snapshots, lifecycle = stores
        moment = NOW - timedelta(days=2)
        snapshots.put("1", make_snapshot("1", state_updated_at=ts(moment)))
        _check_at(lifecycle, "1", moment)

        assert resolver.resolve(since=None) == []

    def test_full_rescan_includes_checked(self, stores, resolver, make_snapshot):
        snapshots, lifecycle = stores
        snapshots.put("1", make_snapshot("1", state_updated_at=ts(NOW - timedelta(days=3))))
        _check_at(lifecycle, "1", NOW - timedelta(days=2))

        work = resolver.resolve(since=ts(NOW), full_rescan=True)
        assert [s.issue_id for s in work] == ["1"]

    def test_single_issue_bypasses_filters(self, stores, resolver, make_snapshot):
        snapshots, lifecycle = stores
        snapshots.put("1", make_snapshot("1", state_updated_at=1000))
        _check_at(lifecycle, "1", NOW)

        assert [s.issue_id for s in resolver.resolve(since=5000, issue_id="1")] == ["1"]
        assert resolver.resolve(issue_id="404") == []
