"""
Pipeline progress tracking.

Each run moves through fixed stages with fixed percentages:

    upload 10 -> integrity 25 -> movement 45 -> performance 65
    -> feedback 80 -> storage 90 -> notification 95 -> complete 100

plus an `error` terminal reachable from any stage. The error event keeps
the last reported percent, so every listener observes a non-decreasing
sequence.

Registries keep the latest PipelineProgress per run for pollers:
- ProgressRegistry: in-process, lazily purges finished runs after a grace window
- RedisProgressRegistry: shared across API and worker processes via core.cache,
  with the grace window applied as the key TTL

Registries are injected through the pipeline context, never module globals.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from core.cache import cache_key, get_cache, set_cache
from core.config import settings

logger = logging.getLogger(__name__)


class PipelineStage(str, Enum):
    UPLOAD = "upload"
    INTEGRITY = "integrity"
    MOVEMENT = "movement"
    PERFORMANCE = "performance"
    FEEDBACK = "feedback"
    STORAGE = "storage"
    NOTIFICATION = "notification"
    COMPLETE = "complete"
    ERROR = "error"


STAGE_PERCENT: Dict[PipelineStage, int] = {
    PipelineStage.UPLOAD: 10,
    PipelineStage.INTEGRITY: 25,
    PipelineStage.MOVEMENT: 45,
    PipelineStage.PERFORMANCE: 65,
    PipelineStage.FEEDBACK: 80,
    PipelineStage.STORAGE: 90,
    PipelineStage.NOTIFICATION: 95,
    PipelineStage.COMPLETE: 100,
}

STAGE_MESSAGES: Dict[PipelineStage, str] = {
    PipelineStage.UPLOAD: "Extracting frames and poses from video...",
    PipelineStage.INTEGRITY: "Analyzing video integrity and detecting anomalies...",
    PipelineStage.MOVEMENT: "Evaluating movement quality and technique...",
    PipelineStage.PERFORMANCE: "Analyzing performance and generating benchmarks...",
    PipelineStage.FEEDBACK: "Combining insights and generating recommendations...",
    PipelineStage.STORAGE: "Saving assessment results...",
    PipelineStage.NOTIFICATION: "Checking recruitment notification criteria...",
    PipelineStage.COMPLETE: "Analysis complete! Feedback generated successfully.",
}

# Rough seconds remaining when a stage starts
STAGE_ETA_S: Dict[PipelineStage, int] = {
    PipelineStage.UPLOAD: 25,
    PipelineStage.INTEGRITY: 20,
    PipelineStage.MOVEMENT: 12,
    PipelineStage.PERFORMANCE: 8,
    PipelineStage.FEEDBACK: 3,
    PipelineStage.STORAGE: 2,
    PipelineStage.NOTIFICATION: 1,
}

TERMINAL_STAGES = (PipelineStage.COMPLETE, PipelineStage.ERROR)

# Redis lifetime of a run that never reports a terminal stage
RUNNING_TTL_S = 3600


@dataclass(frozen=True)
class PipelineProgress:
    run_id: str
    stage: PipelineStage
    percent: int
    message: str
    eta_s: Optional[int] = None
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def terminal(self) -> bool:
        return self.stage in TERMINAL_STAGES

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "stage": self.stage.value,
            "percent": self.percent,
            "message": self.message,
            "eta_s": self.eta_s,
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PipelineProgress":
        updated_at = data.get("updated_at")
        return cls(
            run_id=data["run_id"],
            stage=PipelineStage(data["stage"]),
            percent=int(data["percent"]),
            message=data.get("message", ""),
            eta_s=data.get("eta_s"),
            updated_at=datetime.fromisoformat(updated_at) if updated_at else datetime.now(timezone.utc),
        )


ProgressObserver = Callable[[PipelineProgress], None]


class ProgressRegistry:
    """Latest progress per run, kept in process memory."""

    def __init__(self, grace_s: Optional[float] = None, clock: Callable[[], float] = time.monotonic):
        self.grace_s = settings.PROGRESS_GRACE_S if grace_s is None else grace_s
        self._clock = clock
        self._lock = threading.Lock()
        self._runs: Dict[str, PipelineProgress] = {}
        self._expires_at: Dict[str, float] = {}

    def publish(self, progress: PipelineProgress) -> None:
        with self._lock:
            self._purge()
            self._runs[progress.run_id] = progress
            if progress.terminal:
                self._expires_at[progress.run_id] = self._clock() + self.grace_s
            else:
                self._expires_at.pop(progress.run_id, None)

    def get(self, run_id: str) -> Optional[PipelineProgress]:
        with self._lock:
            self._purge()
            return self._runs.get(run_id)

    def active_runs(self) -> List[str]:
        with self._lock:
            self._purge()
            return [run_id for run_id, p in self._runs.items() if not p.terminal]

    def _purge(self) -> None:
        now = self._clock()
        expired = [run_id for run_id, at in self._expires_at.items() if at <= now]
        for run_id in expired:
            self._runs.pop(run_id, None)
            self._expires_at.pop(run_id, None)


class RedisProgressRegistry(ProgressRegistry):
    """
    Progress shared through Redis.

    Falls back to the in-process registry when Redis is unavailable, so a
    single-process deployment keeps working without it.
    """

    PREFIX = "progress"

    def __init__(self, client=None, grace_s: Optional[float] = None, clock: Callable[[], float] = time.monotonic):
        super().__init__(grace_s=grace_s, clock=clock)
        self._client = client

    def publish(self, progress: PipelineProgress) -> None:
        ttl = int(self.grace_s) if progress.terminal else RUNNING_TTL_S
        stored = set_cache(cache_key(self.PREFIX, progress.run_id), progress.to_dict(), ttl=max(1, ttl),
                           client=self._client)
        if not stored:
            super().publish(progress)

    def get(self, run_id: str) -> Optional[PipelineProgress]:
        data = get_cache(cache_key(self.PREFIX, run_id), client=self._client)
        if data is not None:
            return PipelineProgress.from_dict(data)
        return super().get(run_id)


class ProgressReporter:
    """
    Emits the progress events of one run.

    Enforces the non-decreasing percent order and forwards each event to
    the registry and the optional observer. Observer errors are logged and
    never interrupt the run.
    """

    def __init__(
        self,
        run_id: str,
        registry: Optional[ProgressRegistry] = None,
        observer: Optional[ProgressObserver] = None,
    ):
        self.run_id = run_id
        self.registry = registry
        self.observer = observer
        self.events: List[PipelineProgress] = []
        self._percent = 0

    @property
    def last(self) -> Optional[PipelineProgress]:
        return self.events[-1] if self.events else None

    def advance(self, stage: PipelineStage, message: Optional[str] = None) -> PipelineProgress:
        percent = max(self._percent, STAGE_PERCENT[stage])
        return self._emit(PipelineProgress(
            run_id=self.run_id,
            stage=stage,
            percent=percent,
            message=message or STAGE_MESSAGES[stage],
            eta_s=STAGE_ETA_S.get(stage),
        ))

    def fail(self, message: str) -> PipelineProgress:
        return self._emit(PipelineProgress(
            run_id=self.run_id,
            stage=PipelineStage.ERROR,
            percent=self._percent,
            message=message,
        ))

    def _emit(self, progress: PipelineProgress) -> PipelineProgress:
        self._percent = progress.percent
        self.events.append(progress)
        if self.registry is not None:
            self.registry.publish(progress)
        if self.observer is not None:
            try:
                self.observer(progress)
            except Exception as e:
                logger.warning(f"Progress observer failed for run {self.run_id}: {e}")
        return progress
