"""Tests for SuggestionLifecycle (pending -> checked)."""

import logging
from datetime import timedelta
from unittest.mock import patch

import pytest

from triage.common.schemas import Disposition, ProblemType, Suggestion
from triage.store.lifecycle import SuggestionLifecycle
from triage.tests.timeline import NOW


@pytest.fixture
def lifecycle(backend):
    return SuggestionLifecycle(backend, "3060")


@pytest.fixture
def suggestion(make_snapshot):
    def _make(issue_id="100", problem_type=ProblemType.STALE_ISSUE, reason="No activity"):
        return Suggestion.for_snapshot(
            make_snapshot(issue_id),
            problem_type,
            reason=reason,
            suggestion="Check whether this is still being worked on.",
        )
    return _make


class TestPending:
    def test_create_and_get(self, lifecycle, suggestion):
        assert lifecycle.create_pending("100", suggestion()) is True
        pending = lifecycle.get_pending("100")
        assert pending.problem_type == ProblemType.STALE_ISSUE
        assert pending.issue_title == "Issue 100"
        assert lifecycle.has_pending("100")

    def test_at_most_one_pending(self, lifecycle, suggestion, caplog):
        lifecycle.create_pending("100", suggestion(reason="first"))

        with caplog.at_level(logging.WARNING, logger="triage.store.lifecycle"):
            created = lifecycle.create_pending("100", suggestion(reason="second"))

        assert created is False
        assert lifecycle.get_pending("100").reason == "first"
        assert "already pending" in caplog.text

    def test_list_pending(self, lifecycle, suggestion):
        lifecycle.create_pending("100", suggestion("100"))
        lifecycle.create_pending("101", suggestion("101"))
        assert set(lifecycle.list_pending()) == {"100", "101"}


class TestMarkChecked:
    def test_folds_pending_into_checked(self, lifecycle, suggestion):
        lifecycle.create_pending("100", suggestion())

        record = lifecycle.mark_checked(
            "100", Disposition(action_taken="commented", reviewer="jdoe", notes="Pinged author")
        )

        assert not lifecycle.has_pending("100")
        assert lifecycle.is_checked("100")
        assert record.action_taken == "commented"
        assert record.reviewer == "jdoe"
        assert record.original_suggestion.problem_type == ProblemType.STALE_ISSUE

        stored = lifecycle.get_checked("100")
        assert stored == record

    def test_without_pending_records_null_suggestion(self, lifecycle):
        record = lifecycle.mark_checked("100")
        assert record.action_taken == "marked_checked"
        assert record.original_suggestion is None
        assert lifecycle.get_checked_timestamp("100") == record.checked_at

    def test_checked_record_is_immutable(self, lifecycle):
        record = lifecycle.mark_checked("100")
        with pytest.raises(Exception):
            record.notes = "edited"

    def test_second_check_keeps_original_suggestion(self, lifecycle, suggestion, caplog):
        lifecycle.create_pending("100", suggestion())
        with patch("triage.store.lifecycle.utc_now", return_value=NOW):
            first = lifecycle.mark_checked("100", Disposition(action_taken="commented", reviewer="jdoe"))

        with caplog.at_level(logging.INFO, logger="triage.store.lifecycle"):
            with patch("triage.store.lifecycle.utc_now", return_value=NOW + timedelta(hours=1)):
                second = lifecycle.mark_checked("100", Disposition(reviewer="other"))

        assert second == first
        stored = lifecycle.get_checked("100")
        assert stored.original_suggestion.problem_type == ProblemType.STALE_ISSUE
        assert stored.checked_at == NOW
        assert stored.reviewer == "jdoe"
        assert "already checked" in caplog.text

    def test_new_suggestion_after_check_replaces_record(self, lifecycle, suggestion):
        lifecycle.create_pending("100", suggestion(reason="first"))
        lifecycle.mark_checked("100")
        lifecycle.create_pending("100", suggestion(reason="second"))

        record = lifecycle.mark_checked("100")
        assert record.original_suggestion.reason == "second"
        assert lifecycle.get_checked("100") == record

    def test_pending_allowed_again_after_check(self, lifecycle, suggestion):
        lifecycle.create_pending("100", suggestion())
        lifecycle.mark_checked("100")
        assert lifecycle.create_pending("100", suggestion()) is True

    def test_stats(self, lifecycle, suggestion):
        lifecycle.create_pending("100", suggestion("100"))
        lifecycle.create_pending("101", suggestion("101"))
        lifecycle.mark_checked("100")
        assert lifecycle.get_stats() == {"pending": 1, "checked": 1}
