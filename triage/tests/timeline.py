"""Fixed evaluation time shared by the time-dependent tests."""

from datetime import datetime, timezone


NOW = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


def ts(moment: datetime) -> int:
    return int(moment.timestamp())
