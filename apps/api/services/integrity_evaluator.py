"""
Integrity Evaluator

Combines the five independent integrity signals into one verdict:

    composite = round(0.25 tampering + 0.30 movement + 0.15 environment
                      + 0.20 biometric + 0.10 temporal)

Risk ladder (configurable, inclusive lower bounds):
    >= low threshold (85)     low
    >= medium threshold (70)  medium
    >= high threshold (55)    high
    otherwise                 critical

Recommended action, first match wins:
    critical                                          -> reject
    high                                              -> review
    medium and (tampering or multiple persons)        -> review
    medium                                            -> request_resubmission
    low                                               -> approve

The sub-analyses come from an IntegritySignalAnalyzer collaborator and run
concurrently; everything in this module after that point is pure.
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from core.config import settings
from core.exceptions import AnalyzerFailure
from services.assessment_types import Athlete, AssessmentRecord
from services.video_analysis.base import IntegritySignalAnalyzer, VideoAnalyzer
from services.video_analysis.models import (
    BiometricSignal,
    CapturedVideo,
    EnvironmentSignal,
    MovementValiditySignal,
    TamperingSignal,
    TemporalSignal,
    VideoSubmission,
)

logger = logging.getLogger(__name__)


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class RecommendedAction(str, Enum):
    APPROVE = "approve"
    REVIEW = "review"
    REJECT = "reject"
    REQUEST_RESUBMISSION = "request_resubmission"


@dataclass(frozen=True)
class RiskThresholds:
    low: float = 85
    medium: float = 70
    high: float = 55

    def __post_init__(self):
        if not (100 >= self.low >= self.medium >= self.high >= 0):
            raise ValueError(
                f"Risk thresholds must satisfy 100 >= low >= medium >= high >= 0, "
                f"got low={self.low} medium={self.medium} high={self.high}"
            )


@dataclass(frozen=True)
class IntegrityWeights:
    tampering: float = 0.25
    movement: float = 0.30
    environment: float = 0.15
    biometric: float = 0.20
    temporal: float = 0.10

    def __post_init__(self):
        total = self.tampering + self.movement + self.environment + self.biometric + self.temporal
        if abs(total - 1.0) > 1e-6:
            raise ValueError(f"Integrity weights must sum to 1.0, got {total:.3f}")


@dataclass(frozen=True)
class IntegrityConfig:
    thresholds: RiskThresholds = field(default_factory=RiskThresholds)
    weights: IntegrityWeights = field(default_factory=IntegrityWeights)
    exercise_compliance_threshold: float = 70
    identity_confidence_threshold: float = 70
    batch_size: int = 5
    batch_delay_s: float = 1.0

    @classmethod
    def from_settings(cls, s=None) -> "IntegrityConfig":
        s = s or settings
        return cls(
            thresholds=RiskThresholds(
                low=s.INTEGRITY_LOW_RISK_THRESHOLD,
                medium=s.INTEGRITY_MEDIUM_RISK_THRESHOLD,
                high=s.INTEGRITY_HIGH_RISK_THRESHOLD,
            ),
            weights=IntegrityWeights(
                tampering=s.INTEGRITY_WEIGHT_TAMPERING,
                movement=s.INTEGRITY_WEIGHT_MOVEMENT,
                environment=s.INTEGRITY_WEIGHT_ENVIRONMENT,
                biometric=s.INTEGRITY_WEIGHT_BIOMETRIC,
                temporal=s.INTEGRITY_WEIGHT_TEMPORAL,
            ),
            exercise_compliance_threshold=s.EXERCISE_COMPLIANCE_THRESHOLD,
            identity_confidence_threshold=s.IDENTITY_CONFIDENCE_THRESHOLD,
            batch_size=s.BATCH_CONCURRENCY,
            batch_delay_s=s.BATCH_DELAY_S,
        )


@dataclass
class IntegritySignals:
    tampering: TamperingSignal
    movement: MovementValiditySignal
    environment: EnvironmentSignal
    biometric: BiometricSignal
    temporal: TemporalSignal

    def to_dict(self) -> Dict[str, Any]:
        return {
            "video_tampering": self.tampering.to_dict(),
            "movement_analysis": self.movement.to_dict(),
            "environmental_checks": self.environment.to_dict(),
            "biometric_consistency": self.biometric.to_dict(),
            "temporal_analysis": self.temporal.to_dict(),
        }


@dataclass
class IntegrityVerdict:
    assessment_id: str
    integrity_score: int
    risk_level: RiskLevel
    recommended_action: RecommendedAction
    flagged_reasons: List[str]
    suggestions: List[str]
    confidence: float
    signals: IntegritySignals
    analyzed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def flagged(self) -> bool:
        return self.risk_level in (RiskLevel.HIGH, RiskLevel.CRITICAL)

    @property
    def approved(self) -> bool:
        return self.recommended_action == RecommendedAction.APPROVE

    def to_dict(self) -> Dict[str, Any]:
        return {
            "assessment_id": self.assessment_id,
            "integrity_score": self.integrity_score,
            "risk_level": self.risk_level.value,
            "is_flagged": self.flagged,
            "recommended_action": self.recommended_action.value,
            "flagged_reasons": list(self.flagged_reasons),
            "suggestions": list(self.suggestions),
            "confidence": round(self.confidence, 3),
            "detection_results": self.signals.to_dict(),
            "analyzed_at": self.analyzed_at.isoformat(),
        }


# ---------------------------------------------------------------------------
# Combination rules
# ---------------------------------------------------------------------------

def composite_score(signals: IntegritySignals, weights: Optional[IntegrityWeights] = None) -> int:
    w = weights or IntegrityWeights()
    total = (
        signals.tampering.score * w.tampering
        + signals.movement.score * w.movement
        + signals.environment.score * w.environment
        + signals.biometric.score * w.biometric
        + signals.temporal.score * w.temporal
    )
    return int(round(total))


def risk_level_for(score: float, thresholds: Optional[RiskThresholds] = None) -> RiskLevel:
    t = thresholds or RiskThresholds()
    if score >= t.low:
        return RiskLevel.LOW
    if score >= t.medium:
        return RiskLevel.MEDIUM
    if score >= t.high:
        return RiskLevel.HIGH
    return RiskLevel.CRITICAL


def recommended_action(
    risk: RiskLevel,
    tampering_detected: bool,
    multiple_persons_detected: bool,
) -> RecommendedAction:
    if risk == RiskLevel.CRITICAL:
        return RecommendedAction.REJECT
    if risk == RiskLevel.HIGH:
        return RecommendedAction.REVIEW
    if risk == RiskLevel.MEDIUM:
        if tampering_detected or multiple_persons_detected:
            return RecommendedAction.REVIEW
        return RecommendedAction.REQUEST_RESUBMISSION
    return RecommendedAction.APPROVE


def flagged_reasons(signals: IntegritySignals, config: Optional[IntegrityConfig] = None) -> List[str]:
    config = config or IntegrityConfig()
    reasons = []

    if signals.tampering.tampering_detected:
        kind = signals.tampering.tampering_type.value if signals.tampering.tampering_type else "unknown"
        reasons.append(f"Video tampering detected: {kind}")

    if signals.movement.exercise_compliance < config.exercise_compliance_threshold:
        reasons.append("Exercise not performed correctly")

    if signals.movement.biomechanical_validity < 60:
        reasons.append("Biomechanically invalid movements detected")

    if signals.environment.suspicious_elements:
        kinds = ", ".join(e.type.value for e in signals.environment.suspicious_elements)
        reasons.append(f"Environmental anomalies: {kinds}")

    if signals.biometric.multiple_persons_detected:
        reasons.append("Multiple persons detected in video")

    if signals.biometric.identity_confidence < config.identity_confidence_threshold:
        reasons.append("Identity verification failed")

    if signals.temporal.suspicious_timelapses:
        reasons.append("Temporal manipulation detected")

    return reasons


def suggestions_for(signals: IntegritySignals, action: RecommendedAction) -> List[str]:
    suggestions = []

    if action == RecommendedAction.REQUEST_RESUBMISSION:
        suggestions.append("Please retake the assessment in a well-lit environment")
        suggestions.append("Ensure the camera captures your full body during the exercise")
        suggestions.append("Follow the exercise instructions carefully")
        if signals.environment.lighting_consistency < 80:
            suggestions.append("Improve lighting conditions - avoid backlighting and shadows")
        if signals.movement.exercise_compliance < 80:
            suggestions.append("Review the exercise demonstration video before retaking")

    elif action == RecommendedAction.REVIEW:
        suggestions.append("Manual review recommended by trained assessor")
        suggestions.append("Verify athlete identity using additional documentation")
        suggestions.append("Consider conducting live video assessment")

    elif action == RecommendedAction.REJECT:
        suggestions.append("Assessment rejected due to integrity violations")
        suggestions.append("Contact support if you believe this is an error")

    return suggestions


def overall_confidence(signals: IntegritySignals) -> float:
    """Mean of tampering, identity, movement-issue and timelapse confidences (0-1)."""
    issues = signals.movement.detected_issues
    lapses = signals.temporal.suspicious_timelapses
    confidences = [
        signals.tampering.confidence,
        signals.biometric.identity_confidence / 100,
        sum(i.confidence for i in issues) / max(1, len(issues)),
        sum(t.confidence for t in lapses) / max(1, len(lapses)),
    ]
    return sum(confidences) / len(confidences)


def build_verdict(
    assessment_id: str,
    signals: IntegritySignals,
    config: Optional[IntegrityConfig] = None,
) -> IntegrityVerdict:
    """Apply the combination rules to a complete set of signals."""
    config = config or IntegrityConfig()
    score = composite_score(signals, config.weights)
    risk = risk_level_for(score, config.thresholds)
    action = recommended_action(
        risk,
        signals.tampering.tampering_detected,
        signals.biometric.multiple_persons_detected,
    )
    return IntegrityVerdict(
        assessment_id=assessment_id,
        integrity_score=score,
        risk_level=risk,
        recommended_action=action,
        flagged_reasons=flagged_reasons(signals, config),
        suggestions=suggestions_for(signals, action),
        confidence=overall_confidence(signals),
        signals=signals,
    )


# ---------------------------------------------------------------------------
# Evaluator
# ---------------------------------------------------------------------------

@dataclass
class IntegrityRequest:
    video: Union[VideoSubmission, CapturedVideo]
    assessment: AssessmentRecord
    athlete: Athlete
    prior_history: Optional[Sequence[AssessmentRecord]] = None


@dataclass
class IntegrityBatchOutcome:
    assessment_id: str
    verdict: Optional[IntegrityVerdict] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.verdict is not None


class IntegrityEvaluator:
    """
    Runs the five sub-analyses concurrently and combines them.

    A failing sub-analysis fails the whole evaluation with AnalyzerFailure:
    a composite built from four signals would silently shift the weights.
    """

    def __init__(
        self,
        signal_analyzer: IntegritySignalAnalyzer,
        video_analyzer: Optional[VideoAnalyzer] = None,
        config: Optional[IntegrityConfig] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.signal_analyzer = signal_analyzer
        self.video_analyzer = video_analyzer
        self.config = config or IntegrityConfig.from_settings()
        self._sleep = sleep

    def _captured(self, video: Union[VideoSubmission, CapturedVideo]) -> CapturedVideo:
        if isinstance(video, CapturedVideo):
            return video
        if self.video_analyzer is None:
            raise AnalyzerFailure("integrity", "no video analyzer configured")
        return self.video_analyzer.capture(video)

    def collect_signals(
        self,
        video: Union[VideoSubmission, CapturedVideo],
        assessment: AssessmentRecord,
        athlete: Athlete,
        prior_history: Optional[Sequence[AssessmentRecord]] = None,
    ) -> IntegritySignals:
        captured = self._captured(video)
        analyzer = self.signal_analyzer
        calls = {
            "tampering": lambda: analyzer.analyze_tampering(captured),
            "movement": lambda: analyzer.analyze_movement(captured, assessment.test_type),
            "environment": lambda: analyzer.analyze_environment(captured),
            "biometric": lambda: analyzer.analyze_biometrics(captured, athlete, prior_history),
            "temporal": lambda: analyzer.analyze_temporal(captured, assessment.test_type),
        }

        with ThreadPoolExecutor(max_workers=len(calls), thread_name_prefix="integrity") as pool:
            futures = {name: pool.submit(call) for name, call in calls.items()}
            results = {}
            for name, future in futures.items():
                try:
                    results[name] = future.result()
                except AnalyzerFailure:
                    raise
                except Exception as e:
                    raise AnalyzerFailure("integrity", f"{name} analysis failed: {e}") from e

        return IntegritySignals(**results)

    def evaluate(
        self,
        video: Union[VideoSubmission, CapturedVideo],
        assessment: AssessmentRecord,
        athlete: Athlete,
        prior_history: Optional[Sequence[AssessmentRecord]] = None,
    ) -> IntegrityVerdict:
        signals = self.collect_signals(video, assessment, athlete, prior_history)
        verdict = build_verdict(assessment.id, signals, self.config)

        logger.info(
            f"Integrity analysis for assessment {assessment.id}: "
            f"score={verdict.integrity_score} risk={verdict.risk_level.value} "
            f"action={verdict.recommended_action.value}",
            extra={"extra_fields": {
                "assessment_id": assessment.id,
                "athlete_id": athlete.id,
                "integrity_score": verdict.integrity_score,
                "risk_level": verdict.risk_level.value,
                "flagged_reasons": len(verdict.flagged_reasons),
            }},
        )
        return verdict

    def evaluate_batch(self, requests: Sequence[IntegrityRequest]) -> List[IntegrityBatchOutcome]:
        """
        Evaluate many submissions, `batch_size` at a time.

        Results keep the input order. A failing item is reported in its
        outcome and does not stop the batch.
        """
        size = max(1, self.config.batch_size)
        outcomes: List[IntegrityBatchOutcome] = []
        logger.info(f"Starting integrity batch of {len(requests)} assessments")

        for start in range(0, len(requests), size):
            batch = requests[start:start + size]
            with ThreadPoolExecutor(max_workers=len(batch), thread_name_prefix="integrity-batch") as pool:
                futures = [
                    pool.submit(self.evaluate, r.video, r.assessment, r.athlete, r.prior_history)
                    for r in batch
                ]
                for request, future in zip(batch, futures):
                    try:
                        outcomes.append(IntegrityBatchOutcome(request.assessment.id, verdict=future.result()))
                    except Exception as e:
                        logger.warning(f"Integrity batch item {request.assessment.id} failed: {e}")
                        outcomes.append(IntegrityBatchOutcome(request.assessment.id, error=str(e)))

            if start + size < len(requests) and self.config.batch_delay_s > 0:
                self._sleep(self.config.batch_delay_s)

        logger.info(f"Integrity batch complete: {sum(o.ok for o in outcomes)}/{len(outcomes)} succeeded")
        return outcomes
