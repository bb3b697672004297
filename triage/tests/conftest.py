"""Shared fixtures for triage tests."""

from datetime import timedelta

import pytest

from triage.tests.timeline import NOW, ts


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def make_snapshot():
    """Factory for snapshots changed one day before NOW unless overridden"""
    from triage.common.schemas import Snapshot

    def _make(issue_id="100", **overrides):
        data = {
            "issue_id": issue_id,
            "state_updated_at": ts(NOW - timedelta(days=1)),
            "title": f"Issue {issue_id}",
            "url": f"https://example.org/node/{issue_id}",
            "body": "Steps to reproduce: open the page. Expected: it loads.",
            "status": 1,
            "category": 2,
        }
        data.update(overrides)
        return Snapshot.model_validate(data)

    return _make


@pytest.fixture
def make_comment():
    from triage.common.schemas import Comment

    def _make(author, content, days_ago, **overrides):
        data = {
            "author": author,
            "content": content,
            "date": NOW - timedelta(days=days_ago),
        }
        data.update(overrides)
        return Comment.model_validate(data)

    return _make


@pytest.fixture
def backend():
    from triage.store.backend import InMemoryBackend
    return InMemoryBackend()
