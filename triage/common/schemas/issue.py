"""
Issue Snapshot Schema

A Snapshot is the normalized state of one issue at its last-known source
change time. The state timestamp (source system's "changed" time) is the
authoritative versioning key, never the wall-clock capture time.
"""

import re
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from enum import IntEnum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, TypeAdapter, ValidationError, field_validator


# ============================================================================
# Enums
# ============================================================================

class IssueStatus(IntEnum):
    """Source-system issue status codes"""
    ACTIVE = 1
    FIXED = 2
    CLOSED_DUPLICATE = 3
    POSTPONED = 4
    CLOSED_WONT_FIX = 5
    CLOSED_WORKS_AS_DESIGNED = 6
    CLOSED_FIXED = 7
    NEEDS_REVIEW = 8
    NEEDS_WORK = 13
    RTBC = 14
    PATCH_TO_BE_PORTED = 15
    POSTPONED_INFO = 16
    CLOSED_OUTDATED = 17
    CLOSED_CANNOT_REPRODUCE = 18

    @property
    def display_name(self) -> str:
        return STATUS_NAMES[self]

    @property
    def is_active(self) -> bool:
        return self in ACTIVE_STATUSES


class IssueCategory(IntEnum):
    """Source-system issue category codes"""
    BUG = 1
    TASK = 2
    FEATURE = 3
    SUPPORT = 4
    PLAN = 5

    @property
    def display_name(self) -> str:
        return CATEGORY_NAMES[self]


STATUS_NAMES: Dict[IssueStatus, str] = {
    IssueStatus.ACTIVE: "Active",
    IssueStatus.FIXED: "Fixed",
    IssueStatus.CLOSED_DUPLICATE: "Closed (duplicate)",
    IssueStatus.POSTPONED: "Postponed",
    IssueStatus.CLOSED_WONT_FIX: "Closed (won't fix)",
    IssueStatus.CLOSED_WORKS_AS_DESIGNED: "Closed (works as designed)",
    IssueStatus.CLOSED_FIXED: "Closed (fixed)",
    IssueStatus.NEEDS_REVIEW: "Needs review",
    IssueStatus.NEEDS_WORK: "Needs work",
    IssueStatus.RTBC: "Reviewed & tested by the community",
    IssueStatus.PATCH_TO_BE_PORTED: "Patch (to be ported)",
    IssueStatus.POSTPONED_INFO: "Postponed (maintainer needs more info)",
    IssueStatus.CLOSED_OUTDATED: "Closed (outdated)",
    IssueStatus.CLOSED_CANNOT_REPRODUCE: "Closed (cannot reproduce)",
}

CATEGORY_NAMES: Dict[IssueCategory, str] = {
    IssueCategory.BUG: "Bug report",
    IssueCategory.TASK: "Task",
    IssueCategory.FEATURE: "Feature request",
    IssueCategory.SUPPORT: "Support request",
    IssueCategory.PLAN: "Plan",
}

# Only these statuses ever reach the core; ingestion drops the rest
ACTIVE_STATUSES = frozenset({
    IssueStatus.ACTIVE,
    IssueStatus.NEEDS_REVIEW,
    IssueStatus.NEEDS_WORK,
    IssueStatus.RTBC,
    IssueStatus.PATCH_TO_BE_PORTED,
    IssueStatus.POSTPONED_INFO,
})

# Prefix of synthetic comments the scraper writes for metadata-only changes
ISSUE_CHANGES_PREFIX = "[Issue changes:"

_QUESTION_RE = re.compile(r"\?(?:\s|$)")


def _coerce_code(value):
    """Accept "1" as well as 1 for enum-coded fields"""
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return value


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


_DATETIME = TypeAdapter(datetime)

# Scraped pages fall back to human-readable dates ("5 January 2024")
_TEXT_DATE_FORMATS = ("%d %B %Y", "%d %b %Y", "%B %d, %Y", "%b %d, %Y")


def _parse_comment_date(value):
    """
    Best-effort comment date.

    ISO 8601 strings, epoch numbers and datetimes pass through; scraped text
    dates and RFC 2822 dates are parsed; anything else becomes None so the
    comment itself is kept.
    """
    if value is None or isinstance(value, (datetime, int, float)):
        return value
    if not isinstance(value, str) or not value.strip():
        return None

    text = value.strip()
    try:
        return _DATETIME.validate_python(text)
    except ValidationError:
        pass

    for fmt in _TEXT_DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue

    try:
        return parsedate_to_datetime(text)
    except (TypeError, ValueError):
        return None


# ============================================================================
# Sub-models
# ============================================================================

class StatusChange(BaseModel):
    """Status transition recorded on a comment"""
    from_status: Optional[str] = Field(default=None, alias="from")
    to_status: Optional[str] = Field(default=None, alias="to")

    model_config = {"populate_by_name": True}


class Comment(BaseModel):
    """A single comment on an issue, in original order"""
    id: Optional[str] = None
    author: Optional[str] = None
    date: Optional[datetime] = None
    content: str = ""
    has_attachment: bool = False
    has_patch: bool = False
    has_mr_reference: bool = False
    status_change: Optional[StatusChange] = None

    @field_validator("id", "author", mode="before")
    @classmethod
    def _to_str(cls, value):
        return None if value is None else str(value)

    @field_validator("content", mode="before")
    @classmethod
    def _content_to_str(cls, value):
        return "" if value is None else value

    @field_validator("date", mode="before")
    @classmethod
    def _date_lenient(cls, value):
        return _parse_comment_date(value)

    @field_validator("date", mode="after")
    @classmethod
    def _date_utc(cls, value):
        return _as_utc(value)

    @property
    def is_change_annotation(self) -> bool:
        """True for synthetic "[Issue changes: ...]" comments"""
        return self.content.lstrip().startswith(ISSUE_CHANGES_PREFIX)

    @property
    def has_question(self) -> bool:
        return bool(_QUESTION_RE.search(self.content))


# ============================================================================
# Main Schema
# ============================================================================

class Snapshot(BaseModel):
    """
    Current state of one issue.

    state_updated_at is the source system's last-modified time (epoch
    seconds). It orders and versions snapshots; capture time is irrelevant.
    """
    issue_id: str = Field(..., description="Stable source identifier (nid)")
    state_updated_at: int = Field(..., description="Source last-modified time, epoch seconds")

    title: str = ""
    url: str = ""
    body: str = ""
    status: IssueStatus
    category: Optional[IssueCategory] = None
    priority: Optional[str] = None
    component: Optional[str] = None
    version: Optional[str] = None
    created: Optional[int] = None

    comments: List[Comment] = Field(default_factory=list)

    # Derived signals
    has_merge_request: bool = False
    mr_status: Optional[str] = None  # "draft", "open", ...
    has_patch: bool = False
    ci_status: Optional[str] = None  # "passed", "failed", ...
    previous_status: Optional[IssueStatus] = None
    status_changed: bool = False

    @field_validator("issue_id", mode="before")
    @classmethod
    def _issue_id_to_str(cls, value):
        return str(value)

    @field_validator("status", "previous_status", "category", mode="before")
    @classmethod
    def _enum_codes(cls, value):
        return _coerce_code(value)

    @property
    def status_name(self) -> str:
        return self.status.display_name

    @property
    def previous_status_name(self) -> Optional[str]:
        return self.previous_status.display_name if self.previous_status is not None else None

    @property
    def category_name(self) -> str:
        return self.category.display_name if self.category is not None else "Unknown"

    @property
    def has_ready_merge_request(self) -> bool:
        return self.has_merge_request and self.mr_status != "draft"

    @property
    def last_comment(self) -> Optional[Comment]:
        return self.comments[-1] if self.comments else None

    @property
    def updated_at(self) -> datetime:
        return datetime.fromtimestamp(self.state_updated_at, tz=timezone.utc)
