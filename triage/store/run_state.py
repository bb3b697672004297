"""Per-project run bookkeeping."""

import logging

from pydantic import ValidationError

from ..common.schemas import RunState
from .backend import KeyValueBackend

logger = logging.getLogger("triage.store.run_state")


class RunStateStore:
    """Loads and saves the single RunState record of a project"""

    CATEGORY = "run_state"
    KEY = "global"

    def __init__(self, backend: KeyValueBackend, project_id: str):
        self._backend = backend
        self._project_id = str(project_id)

    def load(self) -> RunState:
        record = self._backend.get(self._project_id, self.CATEGORY, self.KEY)
        if record is None:
            return RunState()
        try:
            return RunState.model_validate(record)
        except ValidationError as e:
            logger.warning("Invalid run state for %s, starting fresh: %s", self._project_id, e)
            return RunState()

    def save(self, state: RunState) -> None:
        self._backend.put(self._project_id, self.CATEGORY, self.KEY, state.model_dump(mode="json"))
