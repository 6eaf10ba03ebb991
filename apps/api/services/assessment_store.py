"""
Assessment result persistence.

Key-value semantics keyed by assessment id:
- put(assessment_id, evaluation)   idempotent, last write wins
- get(assessment_id)               StoredAssessment or None
- list_by_athlete(athlete_id)      ordered by submission time, oldest first

Stores keep the evaluation's `to_dict()` snapshot, never live objects, so
a stored result cannot change after the write.
"""

import copy
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from services.assessment_types import AssessmentRecord

logger = logging.getLogger(__name__)


def _snapshot(evaluation: Any) -> Dict[str, Any]:
    if isinstance(evaluation, dict):
        return copy.deepcopy(evaluation)
    return evaluation.to_dict()


def _stage_value(payload: Dict[str, Any], stage: str) -> Optional[Dict[str, Any]]:
    result = (payload.get("stages") or {}).get(stage) or {}
    return result.get("value") if result.get("status") == "completed" else None


@dataclass(frozen=True)
class StoredAssessment:
    """A persisted evaluation snapshot plus the fields used for lookups."""
    record: AssessmentRecord
    processing_status: str
    overall_status: Optional[str]
    composite_score: Optional[int]
    integrity_score: Optional[int]
    integrity_action: Optional[str]
    percentile: Optional[float]
    processed_at: datetime
    payload: Dict[str, Any]

    @property
    def assessment_id(self) -> str:
        return self.record.id

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "StoredAssessment":
        record = AssessmentRecord.from_dict(payload["assessment"])
        composite = payload.get("composite") or {}
        integrity = _stage_value(payload, "integrity") or {}
        performance = _stage_value(payload, "performance") or {}
        processed_at = payload.get("processed_at")
        return cls(
            record=record,
            processing_status=payload["processing_status"],
            overall_status=composite.get("overall_status"),
            composite_score=(composite.get("visual_summary") or {}).get("score_breakdown", {}).get("composite"),
            integrity_score=integrity.get("integrity_score"),
            integrity_action=integrity.get("recommended_action"),
            percentile=performance.get("percentile"),
            processed_at=datetime.fromisoformat(processed_at) if processed_at else datetime.now(timezone.utc),
            payload=payload,
        )

    def to_dict(self) -> Dict[str, Any]:
        return copy.deepcopy(self.payload)


class AssessmentStore(ABC):
    """Persistence collaborator for evaluation results."""

    @abstractmethod
    def put(self, assessment_id: str, evaluation: Any) -> StoredAssessment:
        """Write (or overwrite) the result for one assessment."""
        pass

    @abstractmethod
    def get(self, assessment_id: str) -> Optional[StoredAssessment]:
        pass

    @abstractmethod
    def list_by_athlete(self, athlete_id: str) -> List[StoredAssessment]:
        """All results for an athlete, oldest submission first."""
        pass


class InMemoryAssessmentStore(AssessmentStore):
    """Process-local store. Used by tests and single-process deployments."""

    def __init__(self):
        self._lock = threading.Lock()
        self._items: Dict[str, StoredAssessment] = {}

    def put(self, assessment_id: str, evaluation: Any) -> StoredAssessment:
        stored = StoredAssessment.from_payload(_snapshot(evaluation))
        with self._lock:
            self._items[assessment_id] = stored
        return stored

    def get(self, assessment_id: str) -> Optional[StoredAssessment]:
        with self._lock:
            return self._items.get(assessment_id)

    def list_by_athlete(self, athlete_id: str) -> List[StoredAssessment]:
        with self._lock:
            items = [s for s in self._items.values() if s.record.athlete_id == athlete_id]
        return sorted(items, key=lambda s: s.record.submitted_at)

    def __len__(self) -> int:
        return len(self._items)


class SqlAssessmentStore(AssessmentStore):
    """Store backed by the assessment_result table."""

    def __init__(self, session_factory: Optional[Callable[[], Session]] = None):
        if session_factory is None:
            from core.database import SessionLocal
            session_factory = SessionLocal
        self._session_factory = session_factory

    def put(self, assessment_id: str, evaluation: Any) -> StoredAssessment:
        from models import AssessmentResult

        payload = _snapshot(evaluation)
        stored = StoredAssessment.from_payload(payload)
        db = self._session_factory()
        try:
            row = db.query(AssessmentResult).filter(AssessmentResult.assessment_id == assessment_id).first()
            if row is None:
                row = AssessmentResult(assessment_id=assessment_id)
                db.add(row)
            row.athlete_id = stored.record.athlete_id
            row.test_type = stored.record.test_type.value
            row.raw_score = stored.record.raw_score
            row.submitted_at = stored.record.submitted_at
            row.processing_status = stored.processing_status
            row.overall_status = stored.overall_status
            row.composite_score = stored.composite_score
            row.integrity_score = stored.integrity_score
            row.integrity_action = stored.integrity_action
            row.percentile = stored.percentile
            row.payload = payload
            row.processed_at = stored.processed_at
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

        logger.debug(f"Stored assessment result {assessment_id} ({stored.processing_status})")
        return stored

    def get(self, assessment_id: str) -> Optional[StoredAssessment]:
        from models import AssessmentResult

        db = self._session_factory()
        try:
            row = db.query(AssessmentResult).filter(AssessmentResult.assessment_id == assessment_id).first()
            return StoredAssessment.from_payload(row.payload) if row else None
        finally:
            db.close()

    def list_by_athlete(self, athlete_id: str) -> List[StoredAssessment]:
        from models import AssessmentResult

        db = self._session_factory()
        try:
            rows = (
                db.query(AssessmentResult)
                .filter(AssessmentResult.athlete_id == athlete_id)
                .order_by(AssessmentResult.submitted_at.asc())
                .all()
            )
            return [StoredAssessment.from_payload(row.payload) for row in rows]
        finally:
            db.close()
