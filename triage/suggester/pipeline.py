"""
Suggestion Pipeline

Ties the stores, the change-set resolver, the rule engine and the semantic
checker together for one project.

update_issues():
1. Load run bookkeeping
2. Normalize collaborator payloads into snapshots (inactive issues skipped)
3. Store snapshots, save bookkeeping

give_suggestions():
1. Load run bookkeeping (once)
2. Resolve the work list
3. Per issue: deterministic rules, else one semantic request
4. Persist at most one pending suggestion per issue
5. Save bookkeeping (once)

A failed semantic request is a per-issue failure; the run carries on.
"""

import logging
from dataclasses import dataclass, asdict
from datetime import datetime
from typing import Any, Dict, Iterable, Optional

from ..common.config import Project, TriageConfig
from ..common.llm_client import LLMClient, LLMRequestError
from ..common.schemas import Snapshot, Suggestion, utc_now
from ..store.backend import JsonFileBackend, KeyValueBackend
from ..store.lifecycle import SuggestionLifecycle
from ..store.run_state import RunStateStore
from ..store.snapshot_store import SnapshotStore
from .change_set import ChangeSetResolver
from .ingest import IssueSource, build_snapshot
from .rules import RuleEngine
from .semantic_check import SemanticChecker

logger = logging.getLogger("triage.suggester.pipeline")


@dataclass
class IngestSummary:
    """Outcome of an ingestion pass"""
    processed: int = 0
    stored: int = 0
    skipped: int = 0

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


@dataclass
class RunSummary:
    """Outcome of a suggestion pass"""
    issues_checked: int = 0
    suggestions_created: int = 0
    refused: int = 0  # a pending suggestion already existed
    failed: int = 0  # semantic request failed after retries

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


class SuggestionPipeline:
    """Ingestion and suggestion passes for one project"""

    def __init__(
        self,
        project: Project,
        backend: KeyValueBackend,
        rule_engine: Optional[RuleEngine] = None,
        semantic_checker: Optional[SemanticChecker] = None,
    ):
        self.project = project
        self.snapshots = SnapshotStore(backend, project.id)
        self.lifecycle = SuggestionLifecycle(backend, project.id)
        self.run_state = RunStateStore(backend, project.id)
        self.resolver = ChangeSetResolver(self.snapshots, self.lifecycle)
        self.rule_engine = rule_engine or RuleEngine()
        self.semantic_checker = semantic_checker or SemanticChecker()

    @classmethod
    def from_config(
        cls,
        config: TriageConfig,
        project: Project,
        llm_client: Optional[LLMClient] = None,
        backend: Optional[KeyValueBackend] = None,
    ) -> "SuggestionPipeline":
        if llm_client is None and config.semantic.enabled:
            llm_client = LLMClient.from_config(config)
        return cls(
            project=project,
            backend=backend or JsonFileBackend(config.state_path),
            rule_engine=RuleEngine(
                stale_days=config.rules.stale_days,
                unanswered_days=config.rules.unanswered_days,
            ),
            semantic_checker=SemanticChecker.from_config(config, llm_client),
        )

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    def update_issues(
        self,
        source: IssueSource,
        fetch_all: bool = False,
        limit: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> IngestSummary:
        """Pull changed issues from the collaborator and store snapshots"""
        now = now or utc_now()
        state = self.run_state.load()
        changed_since = None if fetch_all else state.last_checked

        payloads = source.fetch_issues(self.project.id, changed_since=changed_since, limit=limit)
        return self._ingest(payloads, state, now)

    def ingest_payloads(
        self,
        payloads: Iterable[Dict[str, Any]],
        now: Optional[datetime] = None,
    ) -> IngestSummary:
        """Store snapshots for payloads pushed by the collaborator"""
        now = now or utc_now()
        return self._ingest(payloads, self.run_state.load(), now)

    def _ingest(self, payloads, state, now: datetime) -> IngestSummary:
        summary = IngestSummary()
        batch: Dict[str, Snapshot] = {}

        for raw in payloads:
            summary.processed += 1
            issue_id = raw.get("issue_id", raw.get("nid"))
            previous = None
            if issue_id is not None:
                previous = batch.get(str(issue_id)) or self.snapshots.get(str(issue_id))

            snapshot = build_snapshot(raw, previous=previous, now=now)
            if snapshot is None:
                summary.skipped += 1
                continue

            batch[snapshot.issue_id] = snapshot
            summary.stored += 1

        self.snapshots.put_many(batch.values())

        state.last_checked = int(now.timestamp())
        state.issues_count = summary.stored
        state.last_run = now
        self.run_state.save(state)

        logger.info(
            "Ingested %s: %d processed, %d stored, %d skipped (inactive)",
            self.project.name, summary.processed, summary.stored, summary.skipped,
        )
        return summary

    # ------------------------------------------------------------------
    # Suggestions
    # ------------------------------------------------------------------

    def evaluate(self, snapshot: Snapshot, now: Optional[datetime] = None) -> Optional[Suggestion]:
        """
        Rules first, then at most one semantic request.

        Raises:
            LLMRequestError: the semantic request failed after retries
        """
        suggestion = self.rule_engine.evaluate(snapshot, now=now)
        if suggestion is not None:
            return suggestion
        return self.semantic_checker.check(snapshot)

    def give_suggestions(
        self,
        full_rescan: bool = False,
        issue_id: Optional[str] = None,
        limit: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> RunSummary:
        """
        Evaluate changed issues and create pending suggestions.

        Args:
            full_rescan: Ignore the last run boundary and re-check checked issues
            issue_id: Evaluate only this issue
            limit: Evaluate at most this many issues (most recent first)
            now: Evaluation time (defaults to the current time)
        """
        now = now or utc_now()
        state = self.run_state.load()
        summary = RunSummary()

        work = self.resolver.resolve(
            since=state.last_suggestions_run,
            full_rescan=full_rescan,
            issue_id=issue_id,
        )
        truncated = limit is not None and len(work) > limit
        if truncated:
            work = work[:limit]

        logger.info("Evaluating %d issue(s) for %s", len(work), self.project.name)

        for snapshot in work:
            try:
                suggestion = self.evaluate(snapshot, now=now)
            except LLMRequestError as e:
                summary.failed += 1
                logger.warning("Semantic check failed for %s: %s", snapshot.issue_id, e)
                continue

            summary.issues_checked += 1
            if suggestion is None:
                logger.debug("No suggestion for %s", snapshot.issue_id)
                continue

            if self.lifecycle.create_pending(snapshot.issue_id, suggestion):
                summary.suggestions_created += 1
            else:
                summary.refused += 1

        # Single-issue and truncated runs leave the boundary alone so that
        # the issues they did not look at are still picked up next time.
        if issue_id is None and not truncated:
            boundary = int(now.timestamp())
            if state.last_checked is not None:
                boundary = min(boundary, state.last_checked)
            state.last_suggestions_run = boundary
        state.total_issues_checked += summary.issues_checked
        state.total_suggestions_created += summary.suggestions_created
        self.run_state.save(state)

        logger.info(
            "Suggestion run for %s: %d checked, %d created, %d refused, %d failed",
            self.project.name, summary.issues_checked, summary.suggestions_created,
            summary.refused, summary.failed,
        )
        return summary
