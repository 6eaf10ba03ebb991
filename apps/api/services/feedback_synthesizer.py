"""
Feedback Synthesizer

Combines the integrity and performance verdicts of one assessment into the
CompositeVerdict shown to the athlete and used for recruitment decisions.

Overall status, first match wins:
    integrity risk critical                                -> rejected
    integrity risk high                                    -> under_review
    integrity risk medium and tier needs_improvement       -> needs_resubmission
    integrity action request_resubmission                  -> needs_resubmission
    integrity action review                                -> under_review
    otherwise                                              -> approved

Composite score:
    round(0.3 * integrity + 0.6 * raw score + 0.1 * clamp(50 + 2 * improvement, 0, 100))

Either verdict may be missing (stage skipped or failed). A missing
integrity verdict counts as a clean 100 in the breakdown; a missing
performance verdict only removes the performance-driven content.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from services.assessment_types import AssessmentRecord
from services.benchmarking import OverallRating, PerformanceTier, PerformanceVerdict, Trend
from services.integrity_evaluator import IntegrityVerdict, RecommendedAction, RiskLevel

logger = logging.getLogger(__name__)


COMPOSITE_WEIGHTS = {"integrity": 0.3, "performance": 0.6, "improvement": 0.1}

RATING_PROGRESSION = [
    OverallRating.NEEDS_IMPROVEMENT,
    OverallRating.FAIR,
    OverallRating.GOOD,
    OverallRating.EXCELLENT,
    OverallRating.OUTSTANDING,
]

PRIORITY_ORDER = {"high": 0, "medium": 1, "low": 2}


class OverallStatus(str, Enum):
    APPROVED = "approved"
    UNDER_REVIEW = "under_review"
    NEEDS_RESUBMISSION = "needs_resubmission"
    REJECTED = "rejected"


class ConfidenceLevel(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


@dataclass
class Alert:
    type: str  # success | warning | error | info
    message: str
    priority: str  # high | medium | low

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "message": self.message, "priority": self.priority}


@dataclass
class IntegritySummary:
    integrity_score: int
    risk_level: RiskLevel
    flagged_issues: List[str]
    recommendations: List[str]
    approved: bool
    skipped: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "integrity_score": self.integrity_score,
            "risk_level": self.risk_level.value,
            "flagged_issues": list(self.flagged_issues),
            "recommendations": list(self.recommendations),
            "approved": self.approved,
            "skipped": self.skipped,
        }


@dataclass
class CombinedInsights:
    key_findings: List[str]
    action_items: List[str]
    overall_assessment: str
    confidence_level: ConfidenceLevel

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key_findings": list(self.key_findings),
            "action_items": list(self.action_items),
            "overall_assessment": self.overall_assessment,
            "confidence_level": self.confidence_level.value,
        }


@dataclass
class ActionPlan:
    immediate: List[str] = field(default_factory=list)
    follow_up: List[str] = field(default_factory=list)
    long_term: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "immediate": list(self.immediate),
            "follow_up": list(self.follow_up),
            "long_term": list(self.long_term),
        }


@dataclass
class ScoreBreakdown:
    integrity: float
    performance: float
    improvement: float
    composite: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "integrity": self.integrity,
            "performance": self.performance,
            "improvement": round(self.improvement, 2),
            "composite": self.composite,
        }


@dataclass
class Comparison:
    category: str
    value: float
    benchmark: float

    @property
    def status(self) -> str:
        if self.value > self.benchmark:
            return "above"
        if self.value == self.benchmark:
            return "at"
        return "below"

    def to_dict(self) -> Dict[str, Any]:
        return {"category": self.category, "value": self.value, "benchmark": self.benchmark, "status": self.status}


@dataclass
class ProgressIndicators:
    current_level: str
    next_level: str
    next_score: float
    next_timeframe: str
    trajectory: str  # upward | stable | declining

    def to_dict(self) -> Dict[str, Any]:
        return {
            "current_level": self.current_level,
            "next_target": {"level": self.next_level, "score": self.next_score, "timeframe": self.next_timeframe},
            "trajectory": self.trajectory,
        }


@dataclass
class VisualSummary:
    score_breakdown: ScoreBreakdown
    comparisons: List[Comparison]
    progress: ProgressIndicators

    def to_dict(self) -> Dict[str, Any]:
        return {
            "score_breakdown": self.score_breakdown.to_dict(),
            "comparisons": [c.to_dict() for c in self.comparisons],
            "progress_indicators": self.progress.to_dict(),
        }


@dataclass
class CompositeVerdict:
    assessment_id: str
    athlete_id: str
    overall_status: OverallStatus
    integrity: IntegritySummary
    insights: CombinedInsights
    next_steps: ActionPlan
    visual_summary: VisualSummary
    alerts: List[Alert]
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def composite_score(self) -> int:
        return self.visual_summary.score_breakdown.composite

    def to_dict(self) -> Dict[str, Any]:
        return {
            "assessment_id": self.assessment_id,
            "athlete_id": self.athlete_id,
            "overall_status": self.overall_status.value,
            "integrity_analysis": self.integrity.to_dict(),
            "combined_insights": self.insights.to_dict(),
            "next_steps": self.next_steps.to_dict(),
            "visual_summary": self.visual_summary.to_dict(),
            "alerts": [a.to_dict() for a in self.alerts],
            "created_at": self.created_at.isoformat(),
        }


# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------

def overall_status(
    integrity: Optional[IntegrityVerdict],
    performance: Optional[PerformanceVerdict],
) -> OverallStatus:
    if integrity is None:
        return OverallStatus.APPROVED
    if integrity.risk_level == RiskLevel.CRITICAL:
        return OverallStatus.REJECTED
    if integrity.risk_level == RiskLevel.HIGH:
        return OverallStatus.UNDER_REVIEW
    if (integrity.risk_level == RiskLevel.MEDIUM and performance is not None
            and performance.tier == PerformanceTier.NEEDS_IMPROVEMENT):
        return OverallStatus.NEEDS_RESUBMISSION
    if integrity.recommended_action == RecommendedAction.REQUEST_RESUBMISSION:
        return OverallStatus.NEEDS_RESUBMISSION
    if integrity.recommended_action == RecommendedAction.REVIEW:
        return OverallStatus.UNDER_REVIEW
    return OverallStatus.APPROVED


def composite_score(integrity_score: float, performance_score: float, improvement: float) -> int:
    normalized_improvement = max(0.0, min(100.0, 50 + improvement * 2))
    return int(round(
        integrity_score * COMPOSITE_WEIGHTS["integrity"]
        + performance_score * COMPOSITE_WEIGHTS["performance"]
        + normalized_improvement * COMPOSITE_WEIGHTS["improvement"]
    ))


def next_rating(current: OverallRating) -> OverallRating:
    index = RATING_PROGRESSION.index(current)
    return RATING_PROGRESSION[min(index + 1, len(RATING_PROGRESSION) - 1)]


def integrity_summary(integrity: Optional[IntegrityVerdict]) -> IntegritySummary:
    if integrity is None:
        return IntegritySummary(
            integrity_score=100,
            risk_level=RiskLevel.LOW,
            flagged_issues=[],
            recommendations=["Integrity check was skipped"],
            approved=True,
            skipped=True,
        )
    return IntegritySummary(
        integrity_score=integrity.integrity_score,
        risk_level=integrity.risk_level,
        flagged_issues=list(integrity.flagged_reasons),
        recommendations=list(integrity.suggestions),
        approved=integrity.approved,
    )


def combined_insights(
    record: AssessmentRecord,
    integrity: Optional[IntegrityVerdict],
    performance: Optional[PerformanceVerdict],
) -> CombinedInsights:
    findings: List[str] = []
    actions: List[str] = []
    confidence = ConfidenceLevel.HIGH
    test_name = record.test_type.value

    if integrity is not None:
        if integrity.integrity_score >= 90:
            findings.append("High video integrity - no significant anomalies detected")
        elif integrity.integrity_score >= 70:
            findings.append("Minor integrity concerns detected")
            confidence = ConfidenceLevel.MEDIUM
        else:
            findings.append("Significant integrity issues identified")
            confidence = ConfidenceLevel.LOW
        if integrity.flagged_reasons:
            actions.append(f"Address integrity issues: {', '.join(integrity.flagged_reasons)}")

    if performance is not None:
        p = performance.percentile
        if p >= 90:
            findings.append(f"Outstanding {test_name} performance ({p:.0f}th percentile)")
        elif p >= 75:
            findings.append(f"Strong {test_name} performance ({p:.0f}th percentile)")
        elif p >= 50:
            findings.append(f"Average {test_name} performance ({p:.0f}th percentile)")
        else:
            findings.append(f"Below average {test_name} performance ({p:.0f}th percentile)")
        if performance.improvement > 0:
            findings.append(f"Improved by {performance.improvement:.1f} points since last assessment")
        actions.extend(performance.next_steps.immediate)

    integrity_score = integrity.integrity_score if integrity is not None else 0
    percentile = performance.percentile if performance is not None else 0
    if integrity_score >= 85 and percentile >= 75:
        assessment = ("Excellent assessment with high integrity and strong performance. "
                      "Continue with current training approach.")
    elif integrity_score >= 70 and percentile >= 50:
        assessment = ("Solid assessment with room for improvement. "
                      "Focus on addressing identified areas for better results.")
    elif integrity is not None and integrity.integrity_score < 70:
        assessment = ("Assessment integrity concerns require attention before "
                      "performance can be reliably evaluated.")
    else:
        assessment = "Assessment completed with areas identified for development and improvement."

    return CombinedInsights(
        key_findings=findings,
        action_items=actions,
        overall_assessment=assessment,
        confidence_level=confidence,
    )


def action_plan(
    status: OverallStatus,
    integrity: Optional[IntegrityVerdict],
    performance: Optional[PerformanceVerdict],
) -> ActionPlan:
    plan = ActionPlan()

    if status == OverallStatus.REJECTED:
        plan.immediate.append("Assessment rejected - contact support for guidance")
        plan.immediate.append("Review assessment guidelines before resubmission")
    elif status == OverallStatus.UNDER_REVIEW:
        plan.immediate.append("Assessment under manual review - expect response within 24-48 hours")
        plan.immediate.append("Prepare additional documentation if requested")
        plan.follow_up.append("Monitor review status and respond to any requests")
    elif status == OverallStatus.NEEDS_RESUBMISSION:
        plan.immediate.append("Retake assessment following provided guidelines")
        if integrity is not None:
            plan.immediate.extend(integrity.suggestions)
        plan.follow_up.append("Schedule reassessment within 1-2 weeks")
    elif status == OverallStatus.APPROVED and performance is not None:
        plan.immediate.extend(performance.next_steps.immediate)
        plan.follow_up.extend(performance.next_steps.short_term)
        plan.long_term.extend(performance.next_steps.long_term)

    if performance is not None and performance.trend == Trend.DECLINING:
        plan.immediate.append("Analyze recent training changes that may be affecting performance")
        plan.follow_up.append("Consult with coach to adjust training program")

    return plan


def visual_summary(
    record: AssessmentRecord,
    integrity: Optional[IntegrityVerdict],
    performance: Optional[PerformanceVerdict],
) -> VisualSummary:
    integrity_score = integrity.integrity_score if integrity is not None else 100
    improvement = performance.improvement if performance is not None else 0.0
    score = record.raw_score

    breakdown = ScoreBreakdown(
        integrity=integrity_score,
        performance=score,
        improvement=improvement,
        composite=composite_score(integrity_score, score, improvement),
    )

    comparisons: List[Comparison] = []
    if performance is not None:
        comparisons.append(Comparison("Age Group Average", score, performance.age_group.curve.median))
        comparisons.append(Comparison("Elite Level", score, performance.age_group.curve.elite))
        comparisons.append(Comparison("National Average", score, performance.national.curve.median))

        target = performance.targets.next_level
        trend = performance.trend
        progress = ProgressIndicators(
            current_level=performance.overall_rating.value,
            next_level=next_rating(performance.overall_rating).value,
            next_score=target.score,
            next_timeframe=target.timeframe,
            trajectory="upward" if trend == Trend.IMPROVING else "declining" if trend == Trend.DECLINING else "stable",
        )
    else:
        progress = ProgressIndicators(
            current_level=OverallRating.FAIR.value,
            next_level=OverallRating.GOOD.value,
            next_score=80,
            next_timeframe="3-6 months",
            trajectory="stable",
        )

    return VisualSummary(score_breakdown=breakdown, comparisons=comparisons, progress=progress)


def generate_alerts(
    status: OverallStatus,
    integrity: Optional[IntegrityVerdict],
    performance: Optional[PerformanceVerdict],
) -> List[Alert]:
    """Every alert that applies, highest priority first."""
    alerts: List[Alert] = []

    if status == OverallStatus.APPROVED:
        alerts.append(Alert("success", "Assessment approved successfully!", "medium"))
    elif status == OverallStatus.UNDER_REVIEW:
        alerts.append(Alert("warning", "Assessment under review - response expected within 24-48 hours", "high"))
    elif status == OverallStatus.NEEDS_RESUBMISSION:
        alerts.append(Alert("warning", "Please retake the assessment following the provided guidelines", "high"))
    elif status == OverallStatus.REJECTED:
        alerts.append(Alert("error", "Assessment rejected due to integrity violations", "high"))

    if performance is not None:
        if performance.percentile >= 95:
            alerts.append(Alert(
                "success", "Outstanding performance! You're in the top 5% for your age group.", "medium"
            ))
        if performance.improvement > 10:
            alerts.append(Alert(
                "success", f"Great improvement! You've gained {performance.improvement:.1f} points.", "low"
            ))
        elif performance.improvement < -5:
            alerts.append(Alert(
                "warning",
                f"Performance declined by {abs(performance.improvement):.1f} points. "
                f"Consider reviewing your training.",
                "medium",
            ))

    if integrity is not None:
        if integrity.integrity_score < 60:
            alerts.append(Alert("error", "Significant integrity issues detected in your submission", "high"))
        elif integrity.integrity_score < 80:
            alerts.append(Alert(
                "warning", "Minor technical issues detected - consider improving recording conditions", "low"
            ))

    # sorted() is stable, so alerts of equal priority keep generation order
    return sorted(alerts, key=lambda a: PRIORITY_ORDER[a.priority])


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def combine(
    record: AssessmentRecord,
    integrity: Optional[IntegrityVerdict] = None,
    performance: Optional[PerformanceVerdict] = None,
) -> CompositeVerdict:
    """Synthesize the composite verdict; either input may be None (skipped)."""
    status = overall_status(integrity, performance)
    verdict = CompositeVerdict(
        assessment_id=record.id,
        athlete_id=record.athlete_id,
        overall_status=status,
        integrity=integrity_summary(integrity),
        insights=combined_insights(record, integrity, performance),
        next_steps=action_plan(status, integrity, performance),
        visual_summary=visual_summary(record, integrity, performance),
        alerts=generate_alerts(status, integrity, performance),
    )
    logger.info(
        f"Composite verdict for assessment {record.id}: {status.value} "
        f"(composite {verdict.composite_score})",
        extra={"extra_fields": {
            "assessment_id": record.id,
            "overall_status": status.value,
            "composite_score": verdict.composite_score,
            "integrity_skipped": integrity is None,
            "performance_skipped": performance is None,
        }},
    )
    return verdict
