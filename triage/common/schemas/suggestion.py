"""
Suggestion Schemas

A Suggestion is one recommendation for one issue. It lives as a pending
record until a human disposes of it, then becomes an immutable checked record
that carries the original suggestion forward.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .issue import IssueStatus, Snapshot, _coerce_code


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================================
# Enums
# ============================================================================

class ProblemType(str, Enum):
    """Problem tags a suggestion can carry"""
    # Deterministic rules
    ACTIVE_WITH_READY_MR = "active_with_ready_mr"
    ACTIVE_WITH_PATCH = "active_with_patch"
    FAILING_CI_IN_REVIEW = "failing_ci_in_review"
    STALE_ISSUE = "stale_issue"
    UNANSWERED_QUESTION = "unanswered_question"

    # Semantic checks
    BUG_NOT_DETAILED = "bug_not_detailed"
    NO_TEST_STEPS = "no_test_steps"
    STATUS_CHANGE_NO_EXPLANATION = "status_change_no_explanation"
    RTBC_UNRESOLVED_DISCUSSION = "rtbc_unresolved_discussion"
    FEATURE_NO_USE_CASE = "feature_no_use_case"


class SuggestionSource(str, Enum):
    """Provenance of a suggestion"""
    RULE = "rule"
    SEMANTIC = "semantic"


# Statuses a suggestion may propose moving an issue to
SUGGESTABLE_STATUSES = frozenset({
    IssueStatus.ACTIVE,
    IssueStatus.NEEDS_REVIEW,
    IssueStatus.NEEDS_WORK,
    IssueStatus.POSTPONED_INFO,
})

# Typical target status per semantic problem type (None: revert / notify)
TYPICAL_TARGET_STATUS: Dict[ProblemType, Optional[IssueStatus]] = {
    ProblemType.BUG_NOT_DETAILED: IssueStatus.POSTPONED_INFO,
    ProblemType.NO_TEST_STEPS: IssueStatus.NEEDS_WORK,
    ProblemType.STATUS_CHANGE_NO_EXPLANATION: None,
    ProblemType.RTBC_UNRESOLVED_DISCUSSION: IssueStatus.NEEDS_WORK,
    ProblemType.FEATURE_NO_USE_CASE: IssueStatus.POSTPONED_INFO,
}


# ============================================================================
# Models
# ============================================================================

class Suggestion(BaseModel):
    """A single recommendation attached to one issue"""
    issue_id: str
    issue_title: str = ""
    issue_url: str = ""
    current_status: Optional[IssueStatus] = None
    current_status_name: Optional[str] = None

    problem_type: ProblemType
    reason: str
    suggestion: str = Field(..., description="Recommended action")
    suggested_comment: Optional[str] = None
    suggested_status: Optional[IssueStatus] = None
    suggested_status_name: Optional[str] = None

    created_at: datetime = Field(default_factory=utc_now)
    source: SuggestionSource = SuggestionSource.RULE

    @field_validator("current_status", "suggested_status", mode="before")
    @classmethod
    def _enum_codes(cls, value):
        return _coerce_code(value)

    @property
    def ai_generated(self) -> bool:
        return self.source == SuggestionSource.SEMANTIC

    @classmethod
    def for_snapshot(
        cls,
        snapshot: Snapshot,
        problem_type: ProblemType,
        reason: str,
        suggestion: str,
        suggested_comment: Optional[str] = None,
        suggested_status: Optional[IssueStatus] = None,
        source: SuggestionSource = SuggestionSource.RULE,
    ) -> "Suggestion":
        """Build a suggestion with the issue's display fields denormalized"""
        return cls(
            issue_id=snapshot.issue_id,
            issue_title=snapshot.title,
            issue_url=snapshot.url,
            current_status=snapshot.status,
            current_status_name=snapshot.status_name,
            problem_type=problem_type,
            reason=reason,
            suggestion=suggestion,
            suggested_comment=suggested_comment,
            suggested_status=suggested_status,
            suggested_status_name=suggested_status.display_name if suggested_status is not None else None,
            source=source,
        )


class Disposition(BaseModel):
    """What the human did with a suggestion"""
    action_taken: str = "marked_checked"
    reviewer: Optional[str] = None
    notes: Optional[str] = None


class CheckedRecord(BaseModel):
    """Immutable record of a disposed suggestion"""
    model_config = ConfigDict(frozen=True)

    issue_id: str
    checked_at: datetime
    action_taken: str
    reviewer: Optional[str] = None
    notes: Optional[str] = None
    original_suggestion: Optional[Suggestion] = None


class RunState(BaseModel):
    """Per-project run bookkeeping, read once and written once per invocation"""
    last_checked: Optional[int] = Field(default=None, description="Last ingestion pass, epoch seconds")
    last_suggestions_run: Optional[int] = Field(default=None, description="Last suggestion pass, epoch seconds")
    last_run: Optional[datetime] = None
    issues_count: int = 0
    total_issues_checked: int = 0
    total_suggestions_created: int = 0
