"""
Suggestion Lifecycle

Pending and checked suggestions for one project.

States:
- pending: created by a suggestion run, at most one per issue
- checked: written when a human disposes of the suggestion; carries the
  original suggestion forward and is never edited afterwards

pending -> checked is the only transition. An issue is re-evaluated after
being checked only when its snapshot changes again (see change_set).
"""

import logging
from datetime import datetime
from typing import Dict, Optional

from pydantic import ValidationError

from ..common.schemas import CheckedRecord, Disposition, Suggestion, utc_now
from .backend import KeyValueBackend

logger = logging.getLogger("triage.store.lifecycle")


class SuggestionLifecycle:
    """
    Manages pending and checked suggestions.

    Workflow:
    1. A suggestion run creates a pending suggestion for an issue
    2. A human reviews it (HTTP surface)
    3. mark_checked() moves it to the checked set with a disposition
    """

    PENDING = "pending"
    CHECKED = "checked"

    def __init__(self, backend: KeyValueBackend, project_id: str):
        self._backend = backend
        self._project_id = str(project_id)

    def create_pending(self, issue_id: str, suggestion: Suggestion) -> bool:
        """
        Store a pending suggestion for an issue.

        Args:
            issue_id: Issue the suggestion is about
            suggestion: Fully built suggestion

        Returns:
            True if stored, False if a pending suggestion already exists
            (the existing one is left untouched)
        """
        issue_id = str(issue_id)
        if self._backend.exists(self._project_id, self.PENDING, issue_id):
            logger.warning(
                "Refusing to create suggestion for %s/%s: one is already pending",
                self._project_id, issue_id,
            )
            return False

        self._backend.put(
            self._project_id, self.PENDING, issue_id, suggestion.model_dump(mode="json")
        )
        logger.info(
            "Created %s suggestion for %s/%s (%s)",
            suggestion.source.value, self._project_id, issue_id, suggestion.problem_type.value,
        )
        return True

    def get_pending(self, issue_id: str) -> Optional[Suggestion]:
        record = self._backend.get(self._project_id, self.PENDING, str(issue_id))
        return self._to_suggestion(str(issue_id), record)

    def has_pending(self, issue_id: str) -> bool:
        return self._backend.exists(self._project_id, self.PENDING, str(issue_id))

    def list_pending(self) -> Dict[str, Suggestion]:
        """All pending suggestions keyed by issue id"""
        pending = {}
        for issue_id, record in self._backend.list(self._project_id, self.PENDING).items():
            suggestion = self._to_suggestion(issue_id, record)
            if suggestion is not None:
                pending[issue_id] = suggestion
        return pending

    def mark_checked(self, issue_id: str, disposition: Optional[Disposition] = None) -> CheckedRecord:
        """
        Dispose of an issue's suggestion.

        The pending suggestion, if any, is folded into the checked record.
        Marking an issue without a pending suggestion still succeeds and
        records a null original suggestion, unless the issue is already
        checked: then the existing record is returned unchanged.

        Side effects:
            - Writes the checked record (stamped now)
            - Removes the pending record
        """
        issue_id = str(issue_id)
        disposition = disposition or Disposition()
        original = self.get_pending(issue_id)

        if original is None:
            existing = self.get_checked(issue_id)
            if existing is not None:
                logger.info(
                    "%s/%s already checked at %s, keeping that record",
                    self._project_id, issue_id, existing.checked_at.isoformat(),
                )
                return existing

        record = CheckedRecord(
            issue_id=issue_id,
            checked_at=utc_now(),
            action_taken=disposition.action_taken,
            reviewer=disposition.reviewer,
            notes=disposition.notes,
            original_suggestion=original,
        )

        # Checked record before the pending delete; the resolver skips both.
        self._backend.put(self._project_id, self.CHECKED, issue_id, record.model_dump(mode="json"))
        self._backend.delete(self._project_id, self.PENDING, issue_id)

        logger.info(
            "Marked %s/%s as checked (%s)%s",
            self._project_id, issue_id, disposition.action_taken,
            "" if original else " without a pending suggestion",
        )
        return record

    def get_checked(self, issue_id: str) -> Optional[CheckedRecord]:
        record = self._backend.get(self._project_id, self.CHECKED, str(issue_id))
        if record is None:
            return None
        try:
            return CheckedRecord.model_validate(record)
        except ValidationError as e:
            logger.warning("Invalid checked record %s/%s: %s", self._project_id, issue_id, e)
            return None

    def is_checked(self, issue_id: str) -> bool:
        return self._backend.exists(self._project_id, self.CHECKED, str(issue_id))

    def get_checked_timestamp(self, issue_id: str) -> Optional[datetime]:
        record = self.get_checked(issue_id)
        return record.checked_at if record else None

    def get_stats(self) -> Dict[str, int]:
        """Counts of pending and checked suggestions"""
        return {
            "pending": len(self._backend.list(self._project_id, self.PENDING)),
            "checked": len(self._backend.list(self._project_id, self.CHECKED)),
        }

    def _to_suggestion(self, issue_id: str, record: Optional[dict]) -> Optional[Suggestion]:
        if record is None:
            return None
        try:
            return Suggestion.model_validate(record)
        except ValidationError as e:
            logger.warning("Invalid pending suggestion %s/%s: %s", self._project_id, issue_id, e)
            return None
