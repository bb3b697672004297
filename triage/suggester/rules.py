"""
Deterministic Rules

Zero-cost, explainable checks evaluated before any semantic check.
Rules run in a fixed order and the first one that fires wins; later rules are
never evaluated.

Rule order:
1. Active with a ready (non-draft) merge request -> Needs review
2. Active with a patch -> Needs review
3. Needs review with failing CI -> Needs work
4. Active / Needs work without activity -> stale notification
5. Old question without an answer from someone else -> notification
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Sequence

from ..common.schemas import IssueStatus, ProblemType, Snapshot, Suggestion, utc_now

logger = logging.getLogger("triage.suggester.rules")


@dataclass
class RuleContext:
    """Evaluation-time inputs shared by all rules"""
    now: datetime = field(default_factory=utc_now)
    stale_days: int = 5
    unanswered_days: int = 14


Rule = Callable[[Snapshot, RuleContext], Optional[Suggestion]]


def _days_since(moment: datetime, now: datetime) -> float:
    return (now - moment).total_seconds() / 86400


# ============================================================================
# Rules
# ============================================================================

def active_with_ready_mr(snapshot: Snapshot, ctx: RuleContext) -> Optional[Suggestion]:
    if snapshot.status != IssueStatus.ACTIVE or not snapshot.has_ready_merge_request:
        return None
    return Suggestion.for_snapshot(
        snapshot,
        ProblemType.ACTIVE_WITH_READY_MR,
        reason='Issue has a merge request that is not in draft, but status is still "Active"',
        suggestion='Set the issue to "Needs review" since there is a merge request ready for review.',
        suggested_comment=(
            "Hi! It looks like there's a merge request ready for review on this issue. "
            'Could you please set the status to "Needs review" so reviewers know it\'s ready? Thanks!'
        ),
        suggested_status=IssueStatus.NEEDS_REVIEW,
    )


def active_with_patch(snapshot: Snapshot, ctx: RuleContext) -> Optional[Suggestion]:
    if snapshot.status != IssueStatus.ACTIVE or not snapshot.has_patch:
        return None
    return Suggestion.for_snapshot(
        snapshot,
        ProblemType.ACTIVE_WITH_PATCH,
        reason='Issue has a patch uploaded but status is still "Active"',
        suggestion='Set the issue to "Needs review" since there is a patch uploaded.',
        suggested_comment=(
            "Hi! It looks like a patch has been uploaded to this issue. "
            'Could you please set the status to "Needs review" so reviewers know it\'s ready? Thanks!'
        ),
        suggested_status=IssueStatus.NEEDS_REVIEW,
    )


def failing_ci_in_review(snapshot: Snapshot, ctx: RuleContext) -> Optional[Suggestion]:
    if snapshot.status != IssueStatus.NEEDS_REVIEW or snapshot.ci_status != "failed":
        return None
    return Suggestion.for_snapshot(
        snapshot,
        ProblemType.FAILING_CI_IN_REVIEW,
        reason='CI is failing but issue is in "Needs review"',
        suggestion='Set the issue back to "Needs work" until the CI passes.',
        suggested_comment=(
            "The CI pipeline is currently failing. Please check the test results and fix any "
            'issues before setting back to "Needs review". Thanks!'
        ),
        suggested_status=IssueStatus.NEEDS_WORK,
    )


def stale_issue(snapshot: Snapshot, ctx: RuleContext) -> Optional[Suggestion]:
    """
    No source activity for more than ``stale_days``.

    Only the most recent comment is looked at: if it is within the window the
    issue is not stale. "now" is evaluation time, so the same snapshot can
    turn stale on a later pass without changing.
    """
    if snapshot.status not in (IssueStatus.ACTIVE, IssueStatus.NEEDS_WORK):
        return None

    days_idle = _days_since(snapshot.updated_at, ctx.now)
    if days_idle <= ctx.stale_days:
        return None

    last = snapshot.last_comment
    if last is not None and last.date is not None:
        if _days_since(last.date, ctx.now) <= ctx.stale_days:
            return None

    return Suggestion.for_snapshot(
        snapshot,
        ProblemType.STALE_ISSUE,
        reason=f"Issue has had no activity for {round(days_idle)} days",
        suggestion="Consider checking if this issue is still being worked on or if it needs attention.",
    )


def unanswered_question(snapshot: Snapshot, ctx: RuleContext) -> Optional[Suggestion]:
    """
    A question older than ``unanswered_days`` with no later reply from a
    different author. Synthetic "[Issue changes: ...]" comments are not
    replies. Comments are scanned in order; the first unanswered one wins.
    """
    cutoff = ctx.now - timedelta(days=ctx.unanswered_days)
    comments = snapshot.comments

    for i, comment in enumerate(comments):
        if not comment.content or comment.date is None:
            continue
        if comment.date > cutoff:
            continue
        if not comment.has_question:
            continue

        author = comment.author or ""
        answered = any(
            (later.author or "") != author
            and later.content
            and not later.is_change_annotation
            for later in comments[i + 1:]
        )
        if not answered:
            return Suggestion.for_snapshot(
                snapshot,
                ProblemType.UNANSWERED_QUESTION,
                reason=(
                    f"Question from {author or 'unknown'} has been unanswered "
                    f"for over {ctx.unanswered_days} days"
                ),
                suggestion="A question was asked but hasn't received a response. Consider following up.",
            )

    return None


DEFAULT_RULES: List[Rule] = [
    active_with_ready_mr,
    active_with_patch,
    failing_ci_in_review,
    stale_issue,
    unanswered_question,
]


# ============================================================================
# Engine
# ============================================================================

class RuleEngine:
    """
    Evaluates the ordered rule list against a snapshot.

    Returns the first matching rule's suggestion, or None when no
    deterministic rule fires (the caller then tries the semantic checks).
    """

    def __init__(
        self,
        rules: Optional[Sequence[Rule]] = None,
        stale_days: int = 5,
        unanswered_days: int = 14,
    ):
        self._rules = list(rules) if rules is not None else list(DEFAULT_RULES)
        self._stale_days = stale_days
        self._unanswered_days = unanswered_days

    @property
    def rule_names(self) -> List[str]:
        return [rule.__name__ for rule in self._rules]

    def evaluate(self, snapshot: Snapshot, now: Optional[datetime] = None) -> Optional[Suggestion]:
        ctx = RuleContext(
            now=now or utc_now(),
            stale_days=self._stale_days,
            unanswered_days=self._unanswered_days,
        )
        for rule in self._rules:
            suggestion = rule(snapshot, ctx)
            if suggestion is not None:
                logger.debug("Rule %s fired for %s", rule.__name__, snapshot.issue_id)
                return suggestion
        return None
