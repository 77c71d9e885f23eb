"""
Bulk import metrics.

Each import fills its own ImportRunMetrics and hands it to the shared
ImportMetrics history only once it has finished, so concurrent imports never
write to the same run object.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import uuid4


class ImportStatus(str, Enum):
    """Final status of an import."""

    SUCCESS = "success"
    FAILED = "failed"


@dataclass
class ImportRunMetrics:
    """Metrics for a single import."""

    run_id: str
    started_at: datetime
    source: str = "rows"
    ended_at: Optional[datetime] = None
    status: ImportStatus = ImportStatus.SUCCESS

    rows_total: int = 0
    rows_accepted: int = 0
    rows_rejected: int = 0
    rows_duplicate_in_batch: int = 0
    rows_duplicate_in_store: int = 0

    duration_seconds: float = 0.0
    lookup_seconds: float = 0.0
    persist_seconds: float = 0.0
    error: Optional[str] = None

    @classmethod
    def start(cls, source: str) -> "ImportRunMetrics":
        now = datetime.now(timezone.utc)
        return cls(
            run_id=f"import-{now.strftime('%Y%m%d-%H%M%S')}-{uuid4().hex[:8]}",
            started_at=now,
            source=source,
        )

    def finish(self, status: ImportStatus, error: Optional[str] = None) -> None:
        self.ended_at = datetime.now(timezone.utc)
        self.status = status
        self.error = error
        self.duration_seconds = (self.ended_at - self.started_at).total_seconds()

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["started_at"] = self.started_at.isoformat()
        data["ended_at"] = self.ended_at.isoformat() if self.ended_at else None
        data["status"] = self.status.value
        return data


@dataclass
class AggregateImportMetrics:
    """Aggregated metrics across imports."""

    total_imports: int = 0
    successful_imports: int = 0
    failed_imports: int = 0

    total_rows: int = 0
    total_accepted: int = 0
    total_rejected: int = 0
    total_duplicates: int = 0

    avg_duration_seconds: float = 0.0
    last_import: Optional[datetime] = None
    last_failure: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        for key in ("last_import", "last_failure"):
            if data[key]:
                data[key] = data[key].isoformat()
        return data


class ImportMetrics:
    """In-memory history of finished imports."""

    def __init__(self, history_size: int = 100):
        self.history_size = history_size
        self._history: List[ImportRunMetrics] = []

    def record(self, run: ImportRunMetrics) -> None:
        self._history.append(run)
        if len(self._history) > self.history_size:
            self._history = self._history[-self.history_size :]

    def get_history(self, limit: Optional[int] = None) -> List[ImportRunMetrics]:
        """Most recent runs first."""
        history = list(reversed(self._history))
        return history[:limit] if limit else history

    def get_aggregate(self, hours: Optional[int] = None) -> AggregateImportMetrics:
        runs = self._history
        if hours is not None:
            cutoff = datetime.now(timezone.utc) - timedelta(hours=hours)
            runs = [r for r in runs if r.started_at >= cutoff]

        aggregate = AggregateImportMetrics()
        if not runs:
            return aggregate

        aggregate.total_imports = len(runs)
        aggregate.successful_imports = sum(
            1 for r in runs if r.status == ImportStatus.SUCCESS
        )
        aggregate.failed_imports = sum(1 for r in runs if r.status == ImportStatus.FAILED)
        aggregate.total_rows = sum(r.rows_total for r in runs)
        aggregate.total_accepted = sum(r.rows_accepted for r in runs)
        aggregate.total_rejected = sum(r.rows_rejected for r in runs)
        aggregate.total_duplicates = sum(
            r.rows_duplicate_in_batch + r.rows_duplicate_in_store for r in runs
        )
        aggregate.avg_duration_seconds = sum(r.duration_seconds for r in runs) / len(runs)
        aggregate.last_import = max(r.started_at for r in runs)

        failures = [r.started_at for r in runs if r.status == ImportStatus.FAILED]
        aggregate.last_failure = max(failures) if failures else None
        return aggregate


_metrics_instance: Optional[ImportMetrics] = None


def get_import_metrics() -> ImportMetrics:
    """Get or create the process-wide import metrics history."""
    global _metrics_instance
    if _metrics_instance is None:
        _metrics_instance = ImportMetrics()
    return _metrics_instance
