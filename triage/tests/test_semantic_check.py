"""
Tests for the semantic checks

Check selection and prompt building are pure functions of the snapshot; the
checker is driven with a mocked LLM client.
"""

import json
import pytest
from unittest.mock import Mock

from triage.common.llm_client import LLMRequestError
from triage.common.schemas import IssueStatus, ProblemType, SuggestionSource
from triage.suggester.semantic_check import (
    SemanticCheck,
    SemanticChecker,
    build_prompt,
    clean_text,
    is_exempt,
    select_checks,
)

BUG, TASK, FEATURE, SUPPORT = 1, 2, 3, 4


class TestSelectChecks:
    def test_active_bug(self, make_snapshot):
        checks = select_checks(make_snapshot(status=1, category=BUG))
        assert checks == [SemanticCheck.BUG_DETAIL, SemanticCheck.TEST_STEPS]

    def test_active_feature(self, make_snapshot):
        checks = select_checks(make_snapshot(status=1, category=FEATURE))
        assert checks == [SemanticCheck.TEST_STEPS, SemanticCheck.FEATURE_USE_CASE]

    def test_rtbc_bug_only_checks_unresolved_discussion(self, make_snapshot):
        checks = select_checks(make_snapshot(status=14, category=BUG))
        assert checks == [SemanticCheck.RTBC_UNRESOLVED]

    def test_status_change_to_needs_work(self, make_snapshot):
        snapshot = make_snapshot(status=13, category=TASK, previous_status=8, status_changed=True)
        assert select_checks(snapshot) == [SemanticCheck.STATUS_CHANGE_EXPLANATION]

    def test_status_change_to_needs_review_is_not_checked(self, make_snapshot):
        snapshot = make_snapshot(status=8, category=TASK, previous_status=1, status_changed=True)
        assert select_checks(snapshot) == []

    def test_unchanged_status_is_not_checked(self, make_snapshot):
        assert select_checks(make_snapshot(status=16, category=TASK)) == []

    def test_support_request_in_review(self, make_snapshot):
        assert select_checks(make_snapshot(status=8, category=SUPPORT)) == []

    def test_missing_category(self, make_snapshot):
        assert select_checks(make_snapshot(status=1, category=None)) == []


class TestExempt:
    @pytest.mark.parametrize("title", [
        "[META] Roadmap for 11.x",
        "Discussion: should we drop PHP 8.1?",
        "Let's discuss the new menu UI",
    ])
    def test_exempt_titles(self, make_snapshot, title):
        assert is_exempt(make_snapshot(title=title))

    @pytest.mark.parametrize("title", ["Metadata lost on save", "Fix metatag output"])
    def test_similar_words_are_not_exempt(self, make_snapshot, title):
        assert not is_exempt(make_snapshot(title=title))


class TestPromptBuilding:
    def test_clean_text_strips_tags_and_entities(self):
        assert clean_text("<p>Hello&nbsp;<b>world</b> &amp; more</p>", 100) == "Hello world & more"

    def test_clean_text_truncates(self):
        assert clean_text("a" * 50, 10) == "a" * 10 + "..."

    def test_body_and_comments_are_bounded(self, make_snapshot, make_comment):
        comments = [make_comment(f"user{i}", f"comment {i} " + "x" * 1000, 10 - i) for i in range(8)]
        snapshot = make_snapshot(body="B" * 5000, category=BUG, comments=comments)

        prompt = build_prompt(snapshot, select_checks(snapshot))

        assert "B" * 2000 + "..." in prompt
        assert "B" * 2001 not in prompt
        assert "user0" not in prompt and "user2" not in prompt
        for i in range(3, 8):
            assert f"Comment by user{i}" in prompt
        assert "x" * 501 not in prompt

    def test_prompt_lists_only_selected_checks(self, make_snapshot):
        snapshot = make_snapshot(status=1, category=FEATURE)
        prompt = build_prompt(snapshot, select_checks(snapshot))
        assert "use case" in prompt
        assert "bug report detailed" not in prompt
        assert "Feature request" in prompt
        assert "Active" in prompt

    def test_prompt_mentions_previous_status(self, make_snapshot):
        snapshot = make_snapshot(status=13, previous_status=8, status_changed=True)
        prompt = build_prompt(snapshot, select_checks(snapshot))
        assert "**Previous Status:** Needs review" in prompt


class TestSemanticChecker:
    @pytest.fixture
    def llm(self):
        client = Mock()
        client.is_available = True
        return client

    @pytest.fixture
    def checker(self, llm):
        return SemanticChecker(llm_client=llm)

    def _respond(self, llm, payload):
        llm.generate_with_retry.return_value = json.dumps(payload)

    def test_problem_becomes_semantic_suggestion(self, checker, llm, make_snapshot):
        self._respond(llm, {
            "has_problem": True,
            "problem_type": "bug_not_detailed",
            "reason": "No steps to reproduce",
            "suggestion": "Ask for steps",
            "suggested_comment": "@alice could you add steps to reproduce?",
            "suggested_status": 16,
        })
        suggestion = checker.check(make_snapshot(status=1, category=BUG))

        assert suggestion.problem_type == ProblemType.BUG_NOT_DETAILED
        assert suggestion.source == SuggestionSource.SEMANTIC
        assert suggestion.ai_generated is True
        assert suggestion.suggested_status == IssueStatus.POSTPONED_INFO
        assert suggestion.suggested_status_name == "Postponed (maintainer needs more info)"

    def test_single_request_for_all_checks(self, checker, llm, make_snapshot):
        self._respond(llm, {"has_problem": False})
        checker.check(make_snapshot(status=1, category=BUG))

        assert llm.generate_with_retry.call_count == 1
        prompt = llm.generate_with_retry.call_args.args[0]
        assert "bug report detailed" in prompt
        assert "testing instructions" in prompt

    def test_no_problem(self, checker, llm, make_snapshot):
        self._respond(llm, {"has_problem": False})
        assert checker.check(make_snapshot(status=1, category=BUG)) is None

    def test_no_applicable_checks_skips_request(self, checker, llm, make_snapshot):
        assert checker.check(make_snapshot(status=8, category=SUPPORT)) is None
        llm.generate_with_retry.assert_not_called()

    def test_exempt_issue_skips_request(self, checker, llm, make_snapshot):
        assert checker.check(make_snapshot(title="[META] Plan", status=1, category=BUG)) is None
        llm.generate_with_retry.assert_not_called()

    def test_unavailable_backend(self, make_snapshot):
        assert SemanticChecker().check(make_snapshot(status=1, category=BUG)) is None

    @pytest.mark.parametrize("payload", [
        {"has_problem": True, "problem_type": "made_up", "reason": "x", "suggestion": "y"},
        {"has_problem": True, "reason": "missing type", "suggestion": "y"},
        {"has_problem": "yes", "problem_type": "no_test_steps", "reason": "x", "suggestion": "y"},
        {"has_problem": True, "problem_type": "no_test_steps", "reason": "x",
         "suggestion": "y", "suggested_status": 14},
        {"problem_type": "no_test_steps"},
    ])
    def test_invalid_verdicts_yield_nothing(self, checker, llm, make_snapshot, payload):
        self._respond(llm, payload)
        assert checker.check(make_snapshot(status=1, category=BUG)) is None

    def test_non_json_response(self, checker, llm, make_snapshot):
        llm.generate_with_retry.return_value = "I think this issue is fine."
        assert checker.check(make_snapshot(status=1, category=BUG)) is None

    def test_fenced_response(self, checker, llm, make_snapshot):
        llm.generate_with_retry.return_value = (
            '```json\n{"has_problem": true, "problem_type": "no_test_steps", '
            '"reason": "No test steps", "suggestion": "Add them", "suggested_status": "13"}\n```'
        )
        suggestion = checker.check(make_snapshot(status=1, category=FEATURE))
        assert suggestion.problem_type == ProblemType.NO_TEST_STEPS
        assert suggestion.suggested_status == IssueStatus.NEEDS_WORK

    def test_request_failure_propagates(self, checker, llm, make_snapshot):
        llm.generate_with_retry.side_effect = LLMRequestError("after 3 attempts")
        with pytest.raises(LLMRequestError):
            checker.check(make_snapshot(status=1, category=BUG))


class TestSystemPrompt:
    def test_lists_typical_statuses(self):
        from triage.suggester.semantic_check import SYSTEM_PROMPT
        assert "- bug_not_detailed -> 16" in SYSTEM_PROMPT
        assert "- no_test_steps -> 13" in SYSTEM_PROMPT
        assert "- status_change_no_explanation -> the previous status" in SYSTEM_PROMPT
        assert SYSTEM_PROMPT.endswith("has_problem is false.")
