"""
Suggester - Issue Hygiene Suggestions

Evaluates changed issue snapshots and proposes one corrective action each.

Key Components:
- ChangeSetResolver: Which snapshots a run looks at
- RuleEngine: Ordered deterministic rules, first match wins
- SemanticChecker: One bundled LLM request when no rule fired
- SuggestionPipeline: Ingestion and suggestion passes for one project

Rules for the Suggester:
1. Rules before semantic checks, never both for one issue
2. At most one pending suggestion per issue
3. A checked issue comes back only when its snapshot changes
4. Run bookkeeping is read once and written once per pass
"""

from .change_set import ChangeSetResolver
from .ingest import IssueSource, build_snapshot
from .rules import RuleEngine, RuleContext, DEFAULT_RULES
from .semantic_check import SemanticChecker, SemanticCheck, select_checks
from .pipeline import SuggestionPipeline, RunSummary, IngestSummary

__all__ = [
    "ChangeSetResolver",
    "IssueSource",
    "build_snapshot",
    "RuleEngine",
    "RuleContext",
    "DEFAULT_RULES",
    "SemanticChecker",
    "SemanticCheck",
    "select_checks",
    "SuggestionPipeline",
    "RunSummary",
    "IngestSummary",
]
