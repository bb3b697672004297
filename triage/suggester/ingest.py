"""
Snapshot Ingestion

Turns normalized issue payloads from the ingestion collaborator into
Snapshots. Fetching, pagination and page scraping live in the collaborator;
this module only normalizes, filters inactive statuses, and derives the
status-change signal by comparing with the stored snapshot.

Accepted payload keys (source API names in parentheses):
    issue_id (nid), title, url, status (field_issue_status),
    category (field_issue_category), body (str or {"value": str}),
    changed, created, priority (field_issue_priority),
    component (field_issue_component), version (field_issue_version),
    comments, has_merge_request, mr_status, has_patch, ci_status
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from pydantic import ValidationError

from ..common.schemas import Comment, IssueCategory, IssueStatus, Snapshot, utc_now

logger = logging.getLogger("triage.suggester.ingest")


class IssueSource(ABC):
    """
    Ingestion collaborator: produces raw issue payloads for a project.

    Implementations own HTTP access, paging, retries and scraping.
    """

    @abstractmethod
    def fetch_issues(
        self,
        project_id: str,
        changed_since: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> Iterable[Dict[str, Any]]:
        """Issues changed after ``changed_since`` (all when None)"""
        pass


def _pick(raw: Dict[str, Any], *keys: str, default=None):
    for key in keys:
        if key in raw and raw[key] is not None:
            return raw[key]
    return default


def _as_int(value) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _as_str(value) -> Optional[str]:
    return None if value is None else str(value)


def _parse_status(value) -> Optional[IssueStatus]:
    code = _as_int(value)
    if code is None:
        return None
    try:
        return IssueStatus(code)
    except ValueError:
        return None


def _parse_category(value) -> Optional[IssueCategory]:
    code = _as_int(value)
    if code is None:
        return None
    try:
        return IssueCategory(code)
    except ValueError:
        return None


def _parse_comments(issue_id: str, raw_comments) -> List[Comment]:
    comments = []
    for raw_comment in raw_comments or []:
        try:
            comments.append(Comment.model_validate(raw_comment))
        except ValidationError as e:
            logger.warning("Dropping malformed comment on %s: %s", issue_id, e)
    return comments


def build_snapshot(
    raw: Dict[str, Any],
    previous: Optional[Snapshot] = None,
    now: Optional[datetime] = None,
) -> Optional[Snapshot]:
    """
    Normalize one payload.

    Args:
        raw: Payload from the ingestion collaborator
        previous: Currently stored snapshot of the same issue, if any
        now: Fallback state timestamp when the payload has no "changed"

    Returns:
        Snapshot, or None when the issue is not in an active status or the
        payload lacks an identifier/status
    """
    issue_id = _pick(raw, "issue_id", "nid")
    if issue_id is None:
        logger.warning("Dropping payload without an issue id")
        return None
    issue_id = str(issue_id)

    status = _parse_status(_pick(raw, "status", "field_issue_status"))
    if status is None or not status.is_active:
        return None

    changed = _as_int(raw.get("changed"))
    if changed is None:
        changed = int((now or utc_now()).timestamp())

    body = raw.get("body") or ""
    if isinstance(body, dict):
        body = body.get("value") or ""

    previous_status = previous.status if previous is not None else None

    return Snapshot(
        issue_id=issue_id,
        state_updated_at=changed,
        title=raw.get("title") or "",
        url=raw.get("url") or "",
        body=str(body),
        status=status,
        category=_parse_category(_pick(raw, "category", "field_issue_category")),
        priority=_as_str(_pick(raw, "priority", "field_issue_priority")),
        component=_as_str(_pick(raw, "component", "field_issue_component")),
        version=_as_str(_pick(raw, "version", "field_issue_version")),
        created=_as_int(raw.get("created")),
        comments=_parse_comments(issue_id, raw.get("comments")),
        has_merge_request=bool(raw.get("has_merge_request", False)),
        mr_status=_as_str(raw.get("mr_status")),
        has_patch=bool(raw.get("has_patch", False)),
        ci_status=_as_str(raw.get("ci_status")),
        previous_status=previous_status,
        status_changed=previous_status is not None and previous_status != status,
    )
