"""
Semantic Checks: LLM judgment over free text.

Runs only when no deterministic rule fired. The applicable checks are
computed first from the snapshot alone, then bundled into ONE request per
issue; the model reports at most one problem (its pick of the most
important). A verdict without a problem, or one that does not parse or
validate, means "no suggestion".

Context limits: description <= 2000 chars (tags stripped), last 5 comments
<= 500 chars each.
"""

import html
import logging
import re
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, StrictBool, ValidationError, field_validator, model_validator

from ..common.llm_client import LLMClient
from ..common.llm_utils import parse_llm_json
from ..common.schemas import (
    IssueCategory,
    IssueStatus,
    ProblemType,
    Snapshot,
    Suggestion,
    SuggestionSource,
    SUGGESTABLE_STATUSES,
    TYPICAL_TARGET_STATUS,
)
from ..common.schemas.issue import _coerce_code

logger = logging.getLogger("triage.suggester.semantic_check")


class SemanticCheck(str, Enum):
    """Checks the model can be asked to perform"""
    BUG_DETAIL = "bug_detail"
    TEST_STEPS = "test_steps"
    STATUS_CHANGE_EXPLANATION = "status_change_explanation"
    RTBC_UNRESOLVED = "rtbc_unresolved"
    FEATURE_USE_CASE = "feature_use_case"


CHECK_DESCRIPTIONS = {
    SemanticCheck.BUG_DETAIL: "- Is this bug report detailed enough? Does it explain what is wrong and why?",
    SemanticCheck.TEST_STEPS: "- If this touches the user interface, are testing instructions provided?",
    SemanticCheck.STATUS_CHANGE_EXPLANATION: "- The status was just changed. Is there a comment explaining why?",
    SemanticCheck.RTBC_UNRESOLVED: "- This is marked reviewed & tested. Were all earlier questions and suggestions addressed?",
    SemanticCheck.FEATURE_USE_CASE: "- Does this feature request explain the use case or reasoning?",
}

# Discussion and meta issues are exempt from semantic checks
_EXEMPT_TITLE_RE = re.compile(r"\b(?:discuss\w*|meta)\b", re.IGNORECASE)
_TAG_RE = re.compile(r"<[^>]+>")
_WS_RE = re.compile(r"\s+")


_BASE_PROMPT = """You are an issue queue hygiene assistant. You analyze one issue and decide whether it has a problem that needs attention.

You get the issue title, description, status, category and recent comments, plus a list of checks to perform.

Report AT MOST ONE problem: the most important one. If everything looks fine, say so.

Guidelines:
- Ask for test steps only on bug reports and feature requests, and only if they cannot be worked out from context.
- For unresolved discussion on reviewed & tested issues, name exactly what is unresolved and who asked. Read the later comments first: if the author says all feedback was addressed, or the person who asked says it is answered, treat it as resolved. Be lenient.
- Never move a reviewed & tested issue back for missing test steps or missing detail.
- For status changes, be lenient: reasoning is often obvious from context or screenshots you cannot see. Flag only when there is no reasoning at all.
- Proposed comments must be polite and constructive, and address people who asked for something with an @ mention.

Respond with JSON only:
{
    "has_problem": true/false,
    "problem_type": "bug_not_detailed" | "no_test_steps" | "status_change_no_explanation" | "rtbc_unresolved_discussion" | "feature_no_use_case",
    "reason": "Brief explanation of the problem",
    "suggestion": "What should be done to fix it",
    "suggested_comment": "A polite comment to post on the issue, or null for a notification only",
    "suggested_status": null or one of 1 (Active), 8 (Needs review), 13 (Needs work), 16 (Postponed - maintainer needs more info)
}"""


def _typical_statuses() -> str:
    lines = ["Typical statuses per problem type:"]
    for problem_type, status in TYPICAL_TARGET_STATUS.items():
        target = str(int(status)) if status is not None else "the previous status"
        lines.append(f"- {problem_type.value} -> {target}")
    return "\n".join(lines)


SYSTEM_PROMPT = "\n\n".join([
    _BASE_PROMPT,
    _typical_statuses(),
    "Be conservative: when in doubt, has_problem is false.",
])


class SemanticVerdict(BaseModel):
    """Structured response of the semantic backend"""
    has_problem: StrictBool
    problem_type: Optional[ProblemType] = None
    reason: str = ""
    suggestion: str = ""
    suggested_comment: Optional[str] = None
    suggested_status: Optional[IssueStatus] = None

    @field_validator("suggested_status", mode="before")
    @classmethod
    def _status_code(cls, value):
        return _coerce_code(value)

    @field_validator("suggested_status", mode="after")
    @classmethod
    def _suggestable(cls, value):
        if value is not None and value not in SUGGESTABLE_STATUSES:
            raise ValueError(f"status {int(value)} cannot be suggested")
        return value

    @model_validator(mode="after")
    def _problem_needs_type(self):
        if self.has_problem and (self.problem_type is None or not self.reason):
            raise ValueError("a reported problem needs problem_type and reason")
        return self


# ============================================================================
# Pure helpers
# ============================================================================

def is_exempt(snapshot: Snapshot) -> bool:
    """Discussion/meta issues never get semantic checks"""
    return bool(_EXEMPT_TITLE_RE.search(snapshot.title or ""))


def select_checks(snapshot: Snapshot) -> List[SemanticCheck]:
    """The set of checks that apply to this snapshot, in a stable order"""
    status = snapshot.status
    category = snapshot.category
    checks: List[SemanticCheck] = []

    if category == IssueCategory.BUG and status == IssueStatus.ACTIVE:
        checks.append(SemanticCheck.BUG_DETAIL)

    if category in (IssueCategory.BUG, IssueCategory.FEATURE) and status != IssueStatus.RTBC:
        checks.append(SemanticCheck.TEST_STEPS)

    if (
        snapshot.status_changed
        and snapshot.previous_status is not None
        and status in (IssueStatus.NEEDS_WORK, IssueStatus.POSTPONED_INFO)
    ):
        checks.append(SemanticCheck.STATUS_CHANGE_EXPLANATION)

    if status == IssueStatus.RTBC:
        checks.append(SemanticCheck.RTBC_UNRESOLVED)

    if category == IssueCategory.FEATURE and status == IssueStatus.ACTIVE:
        checks.append(SemanticCheck.FEATURE_USE_CASE)

    return checks


def clean_text(text: str, max_length: int) -> str:
    """Strip tags, decode entities, collapse whitespace, truncate"""
    text = _TAG_RE.sub(" ", text or "")
    text = html.unescape(text)
    text = _WS_RE.sub(" ", text).strip()
    if len(text) > max_length:
        text = text[:max_length] + "..."
    return text


def build_prompt(
    snapshot: Snapshot,
    checks: List[SemanticCheck],
    body_limit: int = 2000,
    comment_limit: int = 500,
    max_comments: int = 5,
) -> str:
    """Size-bounded user prompt for one issue"""
    comments_text = ""
    recent = snapshot.comments[-max_comments:] if max_comments > 0 else []
    for comment in recent:
        date = comment.date.isoformat() if comment.date else ""
        content = clean_text(comment.content, comment_limit)
        comments_text += f"\n---\nComment by {comment.author or 'Unknown'} ({date}):\n{content}\n"

    lines = [
        "Analyze this issue:",
        "",
        f"**Title:** {snapshot.title}",
        f"**Category:** {snapshot.category_name}",
        f"**Current Status:** {snapshot.status_name}",
    ]
    if snapshot.status_changed and snapshot.previous_status_name:
        lines.append(f"**Previous Status:** {snapshot.previous_status_name} (status just changed)")
    lines.extend([
        "",
        "**Description:**",
        clean_text(snapshot.body, body_limit),
        "",
        "**Recent Comments:**",
        comments_text or "(none)",
        "",
        "**Checks to perform:**",
        "\n".join(CHECK_DESCRIPTIONS[check] for check in checks),
        "",
        "Based on these checks, identify if there's a problem. "
        "Only identify ONE problem (the most important), and be conservative.",
    ])
    return "\n".join(lines)


# ============================================================================
# Dispatcher
# ============================================================================

class SemanticChecker:
    """
    Dispatches at most one LLM request per issue.

    Raises LLMRequestError (from the client) when the request fails after
    retries; the caller counts that as a per-issue failure.
    """

    def __init__(
        self,
        llm_client: Optional[LLMClient] = None,
        body_limit: int = 2000,
        comment_limit: int = 500,
        max_comments: int = 5,
        max_tokens: int = 800,
        timeout: float = 60.0,
    ):
        self._llm = llm_client
        self._body_limit = body_limit
        self._comment_limit = comment_limit
        self._max_comments = max_comments
        self._max_tokens = max_tokens
        self._timeout = timeout

    @classmethod
    def from_config(cls, config, llm_client: Optional[LLMClient]) -> "SemanticChecker":
        semantic = config.semantic
        return cls(
            llm_client=llm_client if semantic.enabled else None,
            body_limit=semantic.body_limit,
            comment_limit=semantic.comment_limit,
            max_comments=semantic.max_comments,
            max_tokens=semantic.max_tokens,
            timeout=semantic.timeout,
        )

    @property
    def is_available(self) -> bool:
        return self._llm is not None and self._llm.is_available

    def check(self, snapshot: Snapshot) -> Optional[Suggestion]:
        """
        Run the applicable semantic checks for one issue.

        Returns:
            A semantic suggestion, or None when nothing applies, the backend
            is unavailable, or the verdict reports no (valid) problem
        """
        if is_exempt(snapshot):
            logger.debug("Issue %s is a discussion/meta issue, skipping", snapshot.issue_id)
            return None

        checks = select_checks(snapshot)
        if not checks:
            return None

        if not self.is_available:
            logger.debug("Semantic backend unavailable, skipping %s", snapshot.issue_id)
            return None

        prompt = build_prompt(
            snapshot,
            checks,
            body_limit=self._body_limit,
            comment_limit=self._comment_limit,
            max_comments=self._max_comments,
        )
        raw = self._llm.generate_with_retry(
            prompt,
            system=SYSTEM_PROMPT,
            max_tokens=self._max_tokens,
            timeout=self._timeout,
        )
        return self._parse_response(snapshot, raw)

    def _parse_response(self, snapshot: Snapshot, raw: str) -> Optional[Suggestion]:
        data = parse_llm_json(raw)
        if not data:
            logger.warning("No JSON in semantic response for %s", snapshot.issue_id)
            return None

        try:
            verdict = SemanticVerdict.model_validate(data)
        except ValidationError as e:
            logger.warning("Invalid semantic verdict for %s: %s", snapshot.issue_id, e)
            return None

        if not verdict.has_problem:
            return None

        return Suggestion.for_snapshot(
            snapshot,
            verdict.problem_type,
            reason=verdict.reason,
            suggestion=verdict.suggestion,
            suggested_comment=verdict.suggested_comment or None,
            suggested_status=verdict.suggested_status,
            source=SuggestionSource.SEMANTIC,
        )
