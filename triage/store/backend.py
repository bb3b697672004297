"""
Persistence Backends

A durable mapping of (project, category, key) -> JSON record. Every write is
all-or-nothing for its key: the new record is written to a temporary file and
moved over the old one, so readers see either the old or the new version.
"""

import json
import logging
import os
import re
import tempfile
from abc import ABC, abstractmethod
from copy import deepcopy
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger("triage.store.backend")

_KEY_RE = re.compile(r"^[A-Za-z0-9_.\-]+$")


def _check_part(value: str) -> str:
    value = str(value)
    if not _KEY_RE.match(value) or value in (".", ".."):
        raise ValueError(f"Invalid storage key component: {value!r}")
    return value


class KeyValueBackend(ABC):
    """Flat per-record storage used by every store in the core."""

    @abstractmethod
    def put(self, project: str, category: str, key: str, record: Dict[str, Any]) -> None:
        """Write ``record``, replacing any previous record under the same key"""

    @abstractmethod
    def get(self, project: str, category: str, key: str) -> Optional[Dict[str, Any]]:
        """Read one record, or None when absent"""

    @abstractmethod
    def list(self, project: str, category: str) -> Dict[str, Dict[str, Any]]:
        """All records in a category; a missing category is empty"""

    @abstractmethod
    def delete(self, project: str, category: str, key: str) -> bool:
        """Remove one record; returns False if there was nothing to remove"""

    def exists(self, project: str, category: str, key: str) -> bool:
        return self.get(project, category, key) is not None


class JsonFileBackend(KeyValueBackend):
    """
    One pretty-printed JSON file per record:

        <base_dir>/<project>/<category>/<key>.json
    """

    def __init__(self, base_dir: Path):
        self._base_dir = Path(base_dir)

    @property
    def base_dir(self) -> Path:
        return self._base_dir

    def _category_dir(self, project: str, category: str) -> Path:
        return self._base_dir / _check_part(project) / _check_part(category)

    def _path(self, project: str, category: str, key: str) -> Path:
        return self._category_dir(project, category) / f"{_check_part(key)}.json"

    def put(self, project: str, category: str, key: str, record: Dict[str, Any]) -> None:
        directory = self._category_dir(project, category)
        directory.mkdir(parents=True, exist_ok=True)
        target = self._path(project, category, key)

        fd, tmp_name = tempfile.mkstemp(dir=directory, prefix=".tmp-", suffix=".json")
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(record, f, indent=2, default=str)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, target)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

    def get(self, project: str, category: str, key: str) -> Optional[Dict[str, Any]]:
        path = self._path(project, category, key)
        if not path.exists():
            return None
        return self._read(path)

    def list(self, project: str, category: str) -> Dict[str, Dict[str, Any]]:
        directory = self._category_dir(project, category)
        if not directory.is_dir():
            return {}

        records = {}
        for path in sorted(directory.glob("*.json")):
            if path.name.startswith(".tmp-"):
                continue
            record = self._read(path)
            if record is not None:
                records[path.stem] = record
        return records

    def delete(self, project: str, category: str, key: str) -> bool:
        path = self._path(project, category, key)
        try:
            path.unlink()
            return True
        except FileNotFoundError:
            return False

    def _read(self, path: Path) -> Optional[Dict[str, Any]]:
        try:
            with open(path) as f:
                data = json.load(f)
        except (json.JSONDecodeError, IOError) as e:
            logger.warning("Skipping unreadable record %s: %s", path, e)
            return None
        if not isinstance(data, dict):
            logger.warning("Skipping non-object record %s", path)
            return None
        return data


class InMemoryBackend(KeyValueBackend):
    """Dict-backed backend for tests and dry runs"""

    def __init__(self):
        self._data: Dict[tuple, Dict[str, Dict[str, Any]]] = {}

    def put(self, project: str, category: str, key: str, record: Dict[str, Any]) -> None:
        bucket = self._data.setdefault((project, category), {})
        bucket[str(key)] = json.loads(json.dumps(record, default=str))

    def get(self, project: str, category: str, key: str) -> Optional[Dict[str, Any]]:
        record = self._data.get((project, category), {}).get(str(key))
        return deepcopy(record) if record is not None else None

    def list(self, project: str, category: str) -> Dict[str, Dict[str, Any]]:
        return deepcopy(self._data.get((project, category), {}))

    def delete(self, project: str, category: str, key: str) -> bool:
        bucket = self._data.get((project, category), {})
        return bucket.pop(str(key), None) is not None
