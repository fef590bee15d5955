from __future__ import annotations

from threading import Lock

from backend.review_invites.models import StatsSnapshot


class StatsAggregator:
    def __init__(self, *, success_count: int = 0, failed_count: int = 0) -> None:
        self._lock = Lock()
        self._success_count = success_count
        self._failed_count = failed_count

    def increment_success(self) -> None:
        with self._lock:
            self._success_count += 1

    def increment_failure(self) -> None:
        with self._lock:
            self._failed_count += 1

    def snapshot(self) -> StatsSnapshot:
        with self._lock:
            return StatsSnapshot(
                success_count=self._success_count,
                failed_count=self._failed_count,
            )
