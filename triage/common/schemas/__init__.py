"""
Triage Schemas

Issue snapshots, suggestions and run bookkeeping.
"""

from .issue import (
    Snapshot,
    Comment,
    StatusChange,
    IssueStatus,
    IssueCategory,
    STATUS_NAMES,
    CATEGORY_NAMES,
    ACTIVE_STATUSES,
    ISSUE_CHANGES_PREFIX,
)
from .suggestion import (
    Suggestion,
    SuggestionSource,
    ProblemType,
    Disposition,
    CheckedRecord,
    RunState,
    SUGGESTABLE_STATUSES,
    TYPICAL_TARGET_STATUS,
    utc_now,
)

__all__ = [
    "Snapshot",
    "Comment",
    "StatusChange",
    "IssueStatus",
    "IssueCategory",
    "STATUS_NAMES",
    "CATEGORY_NAMES",
    "ACTIVE_STATUSES",
    "ISSUE_CHANGES_PREFIX",
    "Suggestion",
    "SuggestionSource",
    "ProblemType",
    "Disposition",
    "CheckedRecord",
    "RunState",
    "SUGGESTABLE_STATUSES",
    "TYPICAL_TARGET_STATUS",
    "utc_now",
]
