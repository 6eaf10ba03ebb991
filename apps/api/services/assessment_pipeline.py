"""
Assessment Evaluation Pipeline

Orchestrates one evaluation run:

    consent check
    upload       extract frames and poses once (CapturedVideo)
    integrity    IntegrityEvaluator       ┐
    movement     MovementEvaluator        ├ run concurrently, each wrapped on its own
    performance  BenchmarkEngine          ┘
    feedback     feedback_synthesizer.combine
    storage      one idempotent write keyed by assessment id
    notification recruitment alert when the quorum is met
    complete

Failure policy:
- ConsentDenied aborts before any analysis.
- A failing analytic stage is recorded in error_details and the run goes on
  (processing status "partial"). A failed frame extraction fails both
  video stages; performance only needs the raw score and still runs.
- A failing store write raises PersistenceFailure carrying the evaluation.
- Notification errors are logged and never fail the run.
- Cancellation is cooperative: the token is checked between stages.
  Stage work already running finishes on its thread and is discarded.

All collaborators come in through PipelineContext, so tests and workers
can swap any of them.
"""

import logging
import threading
import time
import uuid
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from core.config import settings
from core.events import EVENT_ASSESSMENT_EVALUATED, EVENT_ASSESSMENT_FAILED, emit
from core.exceptions import (
    AnalyzerFailure,
    AssessmentNotFound,
    ConsentDenied,
    PersistenceFailure,
    PipelineCancelled,
)
from services.assessment_consent import (
    ASSESSMENT_ANALYSIS,
    INTEGRITY_ACCESS_PURPOSE,
    INTEGRITY_ACCESS_TYPE,
    INTEGRITY_DATA_TYPES,
    ConsentGate,
)
from services.assessment_store import AssessmentStore, StoredAssessment
from services.assessment_types import AssessmentRecord, Athlete
from services.benchmarking import BenchmarkEngine, PerformanceVerdict, earlier_records
from services.feedback_synthesizer import CompositeVerdict, ConfidenceLevel, OverallStatus, combine
from services.integrity_evaluator import IntegrityEvaluator, IntegrityVerdict
from services.movement_evaluator import MovementAnalysis, MovementEvaluator
from services.progress_tracker import PipelineStage, ProgressObserver, ProgressRegistry, ProgressReporter
from services.recruitment_notifier import RecruitmentNotifier
from services.video_analysis import CapturedVideo, VideoAnalyzer, VideoSubmission

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Stage outcomes
# ---------------------------------------------------------------------------

class StageStatus(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class StageResult:
    """Outcome of one analytic stage: completed(value), failed(error) or skipped(reason)."""
    status: StageStatus
    value: Any = None
    error: Optional[str] = None
    reason: Optional[str] = None

    @classmethod
    def completed(cls, value: Any) -> "StageResult":
        return cls(StageStatus.COMPLETED, value=value)

    @classmethod
    def failed(cls, error: str) -> "StageResult":
        return cls(StageStatus.FAILED, error=error)

    @classmethod
    def skipped(cls, reason: str) -> "StageResult":
        return cls(StageStatus.SKIPPED, reason=reason)

    @property
    def ok(self) -> bool:
        return self.status == StageStatus.COMPLETED

    @property
    def is_failed(self) -> bool:
        return self.status == StageStatus.FAILED

    @property
    def is_skipped(self) -> bool:
        return self.status == StageStatus.SKIPPED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "value": self.value.to_dict() if self.ok and self.value is not None else None,
            "error": self.error,
            "reason": self.reason,
        }


class ProcessingStatus(str, Enum):
    COMPLETE = "complete"
    PARTIAL = "partial"
    FAILED = "failed"


STAGE_ERROR_LABELS = {
    "integrity": "Integrity analysis",
    "movement": "Movement analysis",
    "performance": "Performance analysis",
    "feedback": "Feedback generation",
}


def processing_status_for(stages: Sequence[StageResult], feedback_failed: bool = False) -> ProcessingStatus:
    """
    failed when no analytic stage produced a result (all failed or all
    disabled); partial when something failed but a result exists; else complete.
    """
    if not any(s.ok for s in stages):
        return ProcessingStatus.FAILED
    if feedback_failed or any(s.is_failed for s in stages):
        return ProcessingStatus.PARTIAL
    return ProcessingStatus.COMPLETE


# ---------------------------------------------------------------------------
# Run inputs and outputs
# ---------------------------------------------------------------------------

@dataclass
class ProcessingOptions:
    enable_integrity: bool = True
    enable_movement: bool = True
    enable_performance: bool = True
    enable_feedback: bool = True
    notify: bool = False
    include_history: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "enable_integrity": self.enable_integrity,
            "enable_movement": self.enable_movement,
            "enable_performance": self.enable_performance,
            "enable_feedback": self.enable_feedback,
            "notify": self.notify,
            "include_history": self.include_history,
        }


class CancellationToken:
    """Cooperative cancellation flag shared between a caller and a run."""

    def __init__(self):
        self._event = threading.Event()
        self.reason = "cancelled"

    def cancel(self, reason: str = "cancelled") -> None:
        self.reason = reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


@dataclass
class AssessmentEvaluation:
    record: AssessmentRecord
    athlete: Athlete
    integrity: StageResult
    movement: StageResult
    performance: StageResult
    composite: Optional[CompositeVerdict]
    processing_status: ProcessingStatus
    error_details: List[str] = field(default_factory=list)
    run_id: Optional[str] = None
    processed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    notified: bool = False

    @property
    def integrity_verdict(self) -> Optional[IntegrityVerdict]:
        return self.integrity.value if self.integrity.ok else None

    @property
    def movement_analysis(self) -> Optional[MovementAnalysis]:
        return self.movement.value if self.movement.ok else None

    @property
    def performance_verdict(self) -> Optional[PerformanceVerdict]:
        return self.performance.value if self.performance.ok else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "assessment": self.record.to_dict(),
            "athlete": self.athlete.to_dict(),
            "run_id": self.run_id,
            "processing_status": self.processing_status.value,
            "stages": {
                "integrity": self.integrity.to_dict(),
                "movement": self.movement.to_dict(),
                "performance": self.performance.to_dict(),
            },
            "composite": self.composite.to_dict() if self.composite else None,
            "error_details": list(self.error_details),
            "processed_at": self.processed_at.isoformat(),
        }


@dataclass
class AssessmentRequest:
    athlete: Athlete
    record: AssessmentRecord
    video: Optional[Union[VideoSubmission, CapturedVideo]] = None
    options: Optional[ProcessingOptions] = None
    run_id: Optional[str] = None


@dataclass
class BatchItemOutcome:
    assessment_id: str
    evaluation: Optional[AssessmentEvaluation] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "assessment_id": self.assessment_id,
            "ok": self.ok,
            "processing_status": self.evaluation.processing_status.value if self.evaluation else None,
            "error": self.error,
        }


@dataclass
class AthleteInsights:
    athlete_id: str
    total_assessments: int
    completed_analyses: int
    integrity_pass_rate: float
    top_performances: List[Dict[str, Any]]
    recent_trends: List[Dict[str, Any]]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "athlete_id": self.athlete_id,
            "total_assessments": self.total_assessments,
            "completed_analyses": self.completed_analyses,
            "integrity_pass_rate": round(self.integrity_pass_rate, 1),
            "top_performances": self.top_performances,
            "recent_trends": self.recent_trends,
        }


# ---------------------------------------------------------------------------
# Context
# ---------------------------------------------------------------------------

@dataclass
class PipelineContext:
    """Every collaborator a run needs. Built once per process and injected."""
    video_analyzer: VideoAnalyzer
    integrity: IntegrityEvaluator
    movement: MovementEvaluator
    benchmark: BenchmarkEngine
    store: AssessmentStore
    consent: ConsentGate
    notifier: RecruitmentNotifier
    progress: ProgressRegistry
    batch_concurrency: int = 5
    batch_delay_s: float = 1.0
    notify_min_conditions: int = 3
    notify_score_threshold: float = 85
    notify_percentile_threshold: float = 95
    sleep: Callable[[float], None] = time.sleep


def build_default_context(session_factory=None, redis_client=None) -> PipelineContext:
    """Production wiring: pose heuristics, SQL store and consent, Redis progress."""
    from services.assessment_consent import SqlConsentGate
    from services.assessment_store import SqlAssessmentStore
    from services.benchmarking import BenchmarkTable
    from services.progress_tracker import RedisProgressRegistry
    from services.recruitment_notifier import get_notifier
    from services.video_analysis.pose_heuristics import PoseHeuristicIntegrityAnalyzer, PrecomputedPoseAnalyzer

    video_analyzer = PrecomputedPoseAnalyzer()
    movement = MovementEvaluator(video_analyzer)
    return PipelineContext(
        video_analyzer=video_analyzer,
        integrity=IntegrityEvaluator(PoseHeuristicIntegrityAnalyzer(movement), video_analyzer),
        movement=movement,
        benchmark=BenchmarkEngine(BenchmarkTable()),
        store=SqlAssessmentStore(session_factory),
        consent=SqlConsentGate(session_factory),
        notifier=get_notifier(),
        progress=RedisProgressRegistry(client=redis_client),
        batch_concurrency=settings.BATCH_CONCURRENCY,
        batch_delay_s=settings.BATCH_DELAY_S,
        notify_min_conditions=settings.NOTIFY_MIN_CONDITIONS,
        notify_score_threshold=settings.NOTIFY_SCORE_THRESHOLD,
        notify_percentile_threshold=settings.NOTIFY_PERCENTILE_THRESHOLD,
    )


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------

class AssessmentPipeline:

    def __init__(self, context: PipelineContext):
        self.ctx = context

    # -- single run --------------------------------------------------------

    def run(
        self,
        athlete: Athlete,
        record: AssessmentRecord,
        video: Optional[Union[VideoSubmission, CapturedVideo]] = None,
        options: Optional[ProcessingOptions] = None,
        observer: Optional[ProgressObserver] = None,
        cancel_token: Optional[CancellationToken] = None,
        run_id: Optional[str] = None,
        history: Optional[Sequence[AssessmentRecord]] = None,
    ) -> AssessmentEvaluation:
        """
        Evaluate one assessment end to end.

        Args:
            history: the athlete's prior records; loaded from the store when
                None and options.include_history is set.

        Raises:
            ConsentDenied, PersistenceFailure, PipelineCancelled
        """
        options = options or ProcessingOptions()
        run_id = run_id or str(uuid.uuid4())
        reporter = ProgressReporter(run_id, self.ctx.progress, observer)

        try:
            return self._run(athlete, record, video, options, reporter, cancel_token, history)
        except (ConsentDenied, PipelineCancelled, PersistenceFailure) as e:
            emit(EVENT_ASSESSMENT_FAILED, assessment_id=record.id, athlete_id=athlete.id, error=str(e))
            raise
        except Exception as e:
            logger.error(f"Assessment run {run_id} failed for {record.id}: {e}", exc_info=True)
            reporter.fail(f"Assessment failed: {e}")
            emit(EVENT_ASSESSMENT_FAILED, assessment_id=record.id, athlete_id=athlete.id, error=str(e))
            raise

    def _run(
        self,
        athlete: Athlete,
        record: AssessmentRecord,
        video: Optional[Union[VideoSubmission, CapturedVideo]],
        options: ProcessingOptions,
        reporter: ProgressReporter,
        cancel_token: Optional[CancellationToken],
        history: Optional[Sequence[AssessmentRecord]],
    ) -> AssessmentEvaluation:
        if not self.ctx.consent.has_consent(athlete.id, ASSESSMENT_ANALYSIS):
            error = ConsentDenied(athlete.id, ASSESSMENT_ANALYSIS)
            reporter.fail(str(error))
            logger.warning(f"Assessment {record.id} blocked: no {ASSESSMENT_ANALYSIS} consent for athlete {athlete.id}")
            raise error

        self._checkpoint(PipelineStage.UPLOAD, reporter, cancel_token)
        reporter.advance(PipelineStage.UPLOAD)
        captured, capture_error = self._capture(video, options)
        prior = self._prior_history(athlete, record, options, history)

        pool = ThreadPoolExecutor(max_workers=3, thread_name_prefix="assessment-stage")
        try:
            futures = {
                "integrity": self._submit_integrity(pool, athlete, record, captured, capture_error, options, prior),
                "movement": self._submit_movement(pool, record, captured, capture_error, options),
                "performance": self._submit_performance(pool, athlete, record, options, prior),
            }

            self._checkpoint(PipelineStage.INTEGRITY, reporter, cancel_token)
            reporter.advance(PipelineStage.INTEGRITY)
            integrity = self._collect("integrity", futures["integrity"], record)
            if not integrity.is_skipped:
                self._record_integrity_access(athlete, integrity)

            self._checkpoint(PipelineStage.MOVEMENT, reporter, cancel_token)
            reporter.advance(PipelineStage.MOVEMENT)
            movement = self._collect("movement", futures["movement"], record)

            self._checkpoint(PipelineStage.PERFORMANCE, reporter, cancel_token)
            reporter.advance(PipelineStage.PERFORMANCE)
            performance = self._collect("performance", futures["performance"], record)
        finally:
            pool.shutdown(wait=False, cancel_futures=True)

        error_details = [
            f"{STAGE_ERROR_LABELS[name]}: {stage.error}"
            for name, stage in (("integrity", integrity), ("movement", movement), ("performance", performance))
            if stage.is_failed
        ]
        if not any(s.ok or s.is_failed for s in (integrity, movement, performance)):
            error_details.append("No analysis stage enabled")

        self._checkpoint(PipelineStage.FEEDBACK, reporter, cancel_token)
        reporter.advance(PipelineStage.FEEDBACK)
        composite = None
        feedback_failed = False
        if options.enable_feedback and (integrity.ok or performance.ok):
            try:
                composite = combine(
                    record,
                    integrity.value if integrity.ok else None,
                    performance.value if performance.ok else None,
                )
            except Exception as e:
                logger.error(f"Feedback generation failed for assessment {record.id}: {e}", exc_info=True)
                error_details.append(f"{STAGE_ERROR_LABELS['feedback']}: {e}")
                feedback_failed = True

        evaluation = AssessmentEvaluation(
            record=record,
            athlete=athlete,
            integrity=integrity,
            movement=movement,
            performance=performance,
            composite=composite,
            processing_status=processing_status_for((integrity, movement, performance), feedback_failed),
            error_details=error_details,
            run_id=reporter.run_id,
        )

        self._checkpoint(PipelineStage.STORAGE, reporter, cancel_token)
        reporter.advance(PipelineStage.STORAGE)
        try:
            self.ctx.store.put(record.id, evaluation)
        except Exception as e:
            logger.error(f"Storing assessment {record.id} failed: {e}", exc_info=True)
            reporter.fail(f"Storage failed: {e}")
            raise PersistenceFailure(f"Could not store assessment {record.id}: {e}", evaluation) from e

        if options.notify and composite is not None and composite.overall_status == OverallStatus.APPROVED:
            self._checkpoint(PipelineStage.NOTIFICATION, reporter, cancel_token)
            reporter.advance(PipelineStage.NOTIFICATION)
            evaluation.notified = self._notify(athlete, evaluation)

        reporter.advance(PipelineStage.COMPLETE)

        logger.info(
            f"Assessment {record.id} evaluated for athlete {athlete.id}: "
            f"{evaluation.processing_status.value}",
            extra={"extra_fields": {
                "assessment_id": record.id,
                "athlete_id": athlete.id,
                "run_id": reporter.run_id,
                "processing_status": evaluation.processing_status.value,
                "overall_status": composite.overall_status.value if composite else None,
                "errors": len(error_details),
            }},
        )
        emit(
            EVENT_ASSESSMENT_EVALUATED,
            assessment_id=record.id,
            athlete_id=athlete.id,
            processing_status=evaluation.processing_status.value,
            overall_status=composite.overall_status.value if composite else None,
        )
        return evaluation

    # -- stage helpers -----------------------------------------------------

    def _checkpoint(self, stage: PipelineStage, reporter: ProgressReporter,
                    cancel_token: Optional[CancellationToken]) -> None:
        if cancel_token is None or not cancel_token.cancelled:
            return
        error = PipelineCancelled(stage.value, cancel_token.reason)
        reporter.fail(str(error))
        logger.info(f"Run {reporter.run_id} {cancel_token.reason} before stage {stage.value}")
        raise error

    def _capture(self, video, options: ProcessingOptions):
        if not (options.enable_integrity or options.enable_movement):
            return None, None
        if isinstance(video, CapturedVideo):
            return video, None
        if video is None:
            return None, "no video submitted"
        try:
            return self.ctx.video_analyzer.capture(video), None
        except Exception as e:
            logger.error(f"Frame extraction failed for video {video.id}: {e}", exc_info=True)
            return None, f"frame extraction failed: {e}"

    def _prior_history(
        self,
        athlete: Athlete,
        record: AssessmentRecord,
        options: ProcessingOptions,
        history: Optional[Sequence[AssessmentRecord]],
    ) -> List[AssessmentRecord]:
        if history is not None:
            return earlier_records(history, record)
        if not options.include_history:
            return []
        try:
            stored = self.ctx.store.list_by_athlete(athlete.id)
        except Exception as e:
            logger.warning(f"Could not load history for athlete {athlete.id}: {e}")
            return []
        return earlier_records((s.record for s in stored), record)

    def _submit_integrity(self, pool, athlete, record, captured, capture_error, options, prior) -> Future:
        if not options.enable_integrity:
            return _done(StageResult.skipped("integrity analysis disabled"))
        if captured is None:
            return _done(StageResult.failed(capture_error))
        return pool.submit(self.ctx.integrity.evaluate, captured, record, athlete, prior)

    def _submit_movement(self, pool, record, captured, capture_error, options) -> Future:
        if not options.enable_movement:
            return _done(StageResult.skipped("movement analysis disabled"))
        if captured is None:
            return _done(StageResult.failed(capture_error))
        return pool.submit(self.ctx.movement.evaluate, captured, record.test_type)

    def _submit_performance(self, pool, athlete, record, options, prior) -> Future:
        if not options.enable_performance:
            return _done(StageResult.skipped("performance analysis disabled"))
        return pool.submit(self.ctx.benchmark.evaluate, athlete, record, prior)

    def _collect(self, name: str, future: Future, record: AssessmentRecord) -> StageResult:
        try:
            result = future.result()
        except AnalyzerFailure as e:
            logger.error(f"{STAGE_ERROR_LABELS[name]} failed for assessment {record.id}: {e.message}", exc_info=True)
            return StageResult.failed(e.message)
        except Exception as e:
            logger.error(f"{STAGE_ERROR_LABELS[name]} failed for assessment {record.id}: {e}", exc_info=True)
            return StageResult.failed(str(e) or e.__class__.__name__)
        if isinstance(result, StageResult):
            return result
        return StageResult.completed(result)

    def _record_integrity_access(self, athlete: Athlete, integrity: StageResult) -> None:
        try:
            self.ctx.consent.record_access(
                athlete.id,
                INTEGRITY_ACCESS_TYPE,
                INTEGRITY_ACCESS_PURPOSE,
                INTEGRITY_DATA_TYPES,
                success=integrity.ok,
                details=integrity.error,
            )
        except Exception as e:
            logger.warning(f"Could not write data access log for athlete {athlete.id}: {e}")

    # -- notification ------------------------------------------------------

    def notification_conditions(self, evaluation: AssessmentEvaluation) -> List[bool]:
        performance = evaluation.performance_verdict
        integrity = evaluation.integrity_verdict
        composite = evaluation.composite
        return [
            evaluation.record.raw_score >= self.ctx.notify_score_threshold,
            performance is not None and performance.percentile >= self.ctx.notify_percentile_threshold,
            integrity is not None and integrity.approved,
            composite is not None and composite.insights.confidence_level == ConfidenceLevel.HIGH,
        ]

    def should_notify(self, evaluation: AssessmentEvaluation) -> bool:
        return sum(self.notification_conditions(evaluation)) >= self.ctx.notify_min_conditions

    def _notify(self, athlete: Athlete, evaluation: AssessmentEvaluation) -> bool:
        if not self.should_notify(evaluation):
            return False
        composite = evaluation.composite
        performance = evaluation.performance_verdict
        try:
            self.ctx.notifier.notify(
                athlete.id,
                evaluation.record.test_type.value,
                evaluation.record.raw_score,
                performance.percentile if performance else 0,
                composite.insights.key_findings[:3],
                athlete_name=athlete.name,
                sport=athlete.main_sport,
                severity="high" if composite.insights.confidence_level == ConfidenceLevel.HIGH else "medium",
            )
        except Exception as e:
            logger.warning(f"Recruitment notification failed for assessment {evaluation.record.id}: {e}")
            return False
        return True

    # -- batch -------------------------------------------------------------

    def run_batch(
        self,
        requests: Sequence[AssessmentRequest],
        observer: Optional[ProgressObserver] = None,
    ) -> List[BatchItemOutcome]:
        """
        Evaluate many assessments, `batch_concurrency` at a time, pausing
        `batch_delay_s` between batches. Item failures are reported in the
        outcome list and never stop the batch. Outcomes keep request order.
        """
        size = max(1, self.ctx.batch_concurrency)
        outcomes: List[BatchItemOutcome] = []
        total = len(requests)

        for start in range(0, total, size):
            if start:
                self.ctx.sleep(self.ctx.batch_delay_s)
            chunk = requests[start:start + size]
            with ThreadPoolExecutor(max_workers=len(chunk), thread_name_prefix="assessment-batch") as pool:
                futures = [pool.submit(self._run_item, req, observer) for req in chunk]
                outcomes.extend(f.result() for f in futures)

        failed = sum(1 for o in outcomes if not o.ok)
        logger.info(f"Batch processing complete: {total - failed}/{total} assessments evaluated")
        return outcomes

    def _run_item(self, request: AssessmentRequest, observer: Optional[ProgressObserver]) -> BatchItemOutcome:
        try:
            evaluation = self.run(
                request.athlete,
                request.record,
                request.video,
                request.options,
                observer=observer,
                run_id=request.run_id,
            )
            return BatchItemOutcome(request.record.id, evaluation=evaluation)
        except PersistenceFailure as e:
            return BatchItemOutcome(request.record.id, evaluation=e.evaluation, error=str(e))
        except Exception as e:
            logger.warning(f"Batch item {request.record.id} failed: {e}")
            return BatchItemOutcome(request.record.id, error=str(e))

    # -- stored results ----------------------------------------------------

    def get_result(self, assessment_id: str) -> Optional[StoredAssessment]:
        return self.ctx.store.get(assessment_id)

    def list_results(self, athlete_id: str) -> List[StoredAssessment]:
        """Stored results for an athlete, newest submission first."""
        return list(reversed(self.ctx.store.list_by_athlete(athlete_id)))

    def reprocess(
        self,
        assessment_id: str,
        video: Optional[Union[VideoSubmission, CapturedVideo]] = None,
        options: Optional[ProcessingOptions] = None,
        athlete: Optional[Athlete] = None,
        observer: Optional[ProgressObserver] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> AssessmentEvaluation:
        """
        Re-run a stored assessment and overwrite its result.

        The record (and, unless given, the athlete) is reloaded from the
        store, so the stored result is never edited in place.
        """
        stored = self.ctx.store.get(assessment_id)
        if stored is None:
            raise AssessmentNotFound(assessment_id)
        if athlete is None:
            athlete = Athlete.from_dict(stored.payload["athlete"])
        logger.info(f"Reprocessing assessment {assessment_id}")
        return self.run(athlete, stored.record, video, options, observer=observer, cancel_token=cancel_token)

    def athlete_insights(self, athlete_id: str) -> AthleteInsights:
        results = self.ctx.store.list_by_athlete(athlete_id)

        completed = sum(1 for r in results if r.processing_status == ProcessingStatus.COMPLETE.value)
        checked = [r for r in results if r.integrity_action is not None]
        passed = [r for r in checked if r.integrity_action == "approve"]
        pass_rate = 100.0 * len(passed) / len(checked) if checked else 100.0

        top = sorted(
            (r for r in results if r.percentile is not None),
            key=lambda r: r.percentile,
            reverse=True,
        )[:5]
        top_performances = [
            {
                "assessment_id": r.assessment_id,
                "test_type": r.record.test_type.value,
                "score": r.record.raw_score,
                "percentile": r.percentile,
                "date": r.record.submitted_at.isoformat(),
            }
            for r in top
        ]

        return AthleteInsights(
            athlete_id=athlete_id,
            total_assessments=len(results),
            completed_analyses=completed,
            integrity_pass_rate=pass_rate,
            top_performances=top_performances,
            recent_trends=recent_trends([r.record for r in results]),
        )


def recent_trends(records: Sequence[AssessmentRecord], threshold_pct: float = 5.0) -> List[Dict[str, Any]]:
    """
    Per test type: average of the last three scores against the three
    before them. Changes beyond ±threshold_pct are improving/declining.
    """
    trends = []
    seen = []
    for r in records:
        if r.test_type not in seen:
            seen.append(r.test_type)

    for test_type in seen:
        scores = [r.raw_score for r in sorted(records, key=lambda r: r.submitted_at) if r.test_type == test_type]
        if len(scores) < 2:
            trends.append({"test_type": test_type.value, "trend": "stable", "change_percent": 0.0})
            continue

        recent = scores[-3:]
        older = scores[-6:-3]
        recent_avg = sum(recent) / len(recent)
        older_avg = sum(older) / len(older) if older else recent_avg
        change = (recent_avg - older_avg) / older_avg * 100 if older_avg else 0.0

        if change > threshold_pct:
            trend = "improving"
        elif change < -threshold_pct:
            trend = "declining"
        else:
            trend = "stable"
        trends.append({"test_type": test_type.value, "trend": trend, "change_percent": round(abs(change), 1)})
    return trends


def _done(result: StageResult) -> Future:
    future: Future = Future()
    future.set_result(result)
    return future


_default_pipeline: Optional[AssessmentPipeline] = None
_default_lock = threading.Lock()


def get_default_pipeline() -> AssessmentPipeline:
    """Process-wide pipeline with production wiring, built on first use."""
    global _default_pipeline
    with _default_lock:
        if _default_pipeline is None:
            _default_pipeline = AssessmentPipeline(build_default_context())
        return _default_pipeline
