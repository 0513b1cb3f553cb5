"""
Run record for one funnel execution.

A Run is created in ``running`` status with a fixed universe size and is
finalized exactly once, as ``completed`` or ``failed``. Metrics are only
ever merged in.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from core.exceptions import InvalidRunTransition


class RunType(str, Enum):
    SWING = "swing"
    LONGTERM = "longterm"


class RunStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Run:
    run_type: RunType
    universe_size: int
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    started_at: datetime = field(default_factory=_utcnow)
    completed_at: Optional[datetime] = None
    status: RunStatus = RunStatus.RUNNING
    metrics: Dict[str, Any] = field(default_factory=dict)
    ai_calls_count: int = 0
    ai_cost: float = 0.0
    error_message: Optional[str] = None

    def __setattr__(self, name: str, value: Any) -> None:
        if name == "universe_size" and "universe_size" in self.__dict__:
            raise AttributeError("universe_size is fixed once the run is created")
        super().__setattr__(name, value)

    @property
    def is_finished(self) -> bool:
        return self.status != RunStatus.RUNNING

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.completed_at is None:
            return None
        return (self.completed_at - self.started_at).total_seconds()

    def merge_metrics(self, updates: Dict[str, Any]) -> None:
        """Add or update metric keys; existing keys not in ``updates`` are kept."""
        self.metrics.update(updates)

    def record_ai_usage(self, calls: int, cost: float) -> None:
        """Store AI counters; they never decrease."""
        self.ai_calls_count = max(self.ai_calls_count, calls)
        self.ai_cost = max(self.ai_cost, round(cost, 4))

    def mark_completed(self, at: Optional[datetime] = None) -> None:
        self._finish(RunStatus.COMPLETED, at)

    def mark_failed(self, error_message: str, at: Optional[datetime] = None) -> None:
        self._finish(RunStatus.FAILED, at)
        self.error_message = error_message

    def _finish(self, status: RunStatus, at: Optional[datetime]) -> None:
        if self.is_finished:
            raise InvalidRunTransition(
                f"Run {self.id} is already {self.status.value}; cannot mark {status.value}"
            )
        self.status = status
        self.completed_at = at or _utcnow()
