"""
Movement/Quality Evaluator

Turns a pose sequence into exercise-compliance and technical-quality
scores for one test type.

Technical score:
    form        = 85 - 20 per critical - 10 per major - 5 per minor issue,
                  then averaged with biomechanical quality
    consistency = min(100, 100 * pace consistency + 100 * overall symmetry) / 2
    efficiency  = min(100, 50 * velocity smoothness + 50 * repetition accuracy)
    overall     = 0.5 * form + 0.3 * consistency + 0.2 * efficiency
All four are clamped to [0, 100].

Biomechanical quality is the mean of per-joint qualities, each graded by
how far the joint's representative angle falls outside its optimal range
(<10 deg excellent, <20 good, <30 fair, else poor).

The same MovementAnalysis feeds the integrity movement-validity signal,
so integrity and movement evaluation share inputs but not runtime output.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import numpy as np

from core.exceptions import AnalyzerFailure
from services.assessment_types import TestType
from services.video_analysis.base import VideoAnalyzer
from services.video_analysis.models import CapturedVideo, PoseFrame, VideoSubmission
from services.video_analysis import pose_geometry

logger = logging.getLogger(__name__)


FORM_BASELINE = 85.0
SEVERITY_DEDUCTIONS = {"critical": 20.0, "major": 10.0, "minor": 5.0}

QUALITY_SCORES = {"excellent": 100.0, "good": 85.0, "fair": 70.0, "poor": 50.0}

OPTIMAL_JOINT_RANGES: Dict[str, Tuple[float, float]] = {
    "knee": (90.0, 160.0),
    "hip": (90.0, 150.0),
    "elbow": (120.0, 170.0),
    "shoulder": (150.0, 180.0),
}

# Optimal duration of one repetition (or of the whole hold/run), ms
OPTIMAL_PACE_MS: Dict[TestType, float] = {
    TestType.STRENGTH: 3000,
    TestType.AGILITY: 2000,
    TestType.BALANCE: 30000,
    TestType.SPEED: 10000,
    TestType.ENDURANCE: 60000,
    TestType.FLEXIBILITY: 20000,
}

REPETITION_TESTS = {TestType.STRENGTH: "elbow", TestType.AGILITY: "knee"}
EXPECTED_REPETITIONS = 15

# Harder-to-execute tests are held to a lower compliance baseline
COMPLEXITY_ADJUSTMENT: Dict[TestType, float] = {
    TestType.SPEED: 0,
    TestType.AGILITY: -5,
    TestType.STRENGTH: -3,
    TestType.ENDURANCE: -2,
    TestType.FLEXIBILITY: -7,
    TestType.BALANCE: -10,
}

QUALITY_MODIFIER: Dict[TestType, float] = {
    TestType.BALANCE: 10,
    TestType.FLEXIBILITY: 8,
    TestType.AGILITY: 5,
    TestType.STRENGTH: 3,
    TestType.ENDURANCE: 0,
    TestType.SPEED: -2,
}


class FormIssueType(str, Enum):
    POSTURE = "posture"
    RANGE_OF_MOTION = "range_of_motion"
    TIMING = "timing"
    TECHNIQUE = "technique"


class Severity(str, Enum):
    CRITICAL = "critical"
    MAJOR = "major"
    MINOR = "minor"


FORM_ISSUE_DESCRIPTIONS: Dict[TestType, Dict[FormIssueType, Tuple[str, str]]] = {
    TestType.STRENGTH: {
        FormIssueType.POSTURE: ("Body not in straight line - sagging hips detected",
                                "Engage core muscles to maintain proper body alignment"),
        FormIssueType.RANGE_OF_MOTION: ("Insufficient range of motion detected",
                                        "Focus on full range of motion, maintain control"),
        FormIssueType.TIMING: ("Inconsistent rep timing - rushing through movement",
                               "Slow down - focus on controlled movements"),
        FormIssueType.TECHNIQUE: ("Improper form detected",
                                  "Maintain proper form throughout the movement"),
    },
    TestType.SPEED: {
        FormIssueType.POSTURE: ("Forward lean angle suboptimal for acceleration",
                                "Maintain slight forward lean, drive with leg power"),
        FormIssueType.RANGE_OF_MOTION: ("Limited knee drive height",
                                        "Focus on driving knees up toward chest"),
        FormIssueType.TIMING: ("Inconsistent stride frequency",
                               "Maintain consistent cadence throughout"),
        FormIssueType.TECHNIQUE: ("Arm swing not coordinated with leg movement",
                                  "Coordinate arm swing - opposite arm to leg"),
    },
    TestType.BALANCE: {
        FormIssueType.POSTURE: ("Body alignment issues detected",
                                "Focus on core engagement and proper alignment"),
        FormIssueType.RANGE_OF_MOTION: ("Head position too low",
                                        "Keep head in neutral position"),
        FormIssueType.TIMING: ("Unable to maintain position for full duration",
                               "Build endurance gradually, maintain form over time"),
        FormIssueType.TECHNIQUE: ("Weight not evenly distributed",
                                  "Distribute weight evenly and focus on stability"),
    },
    TestType.AGILITY: {
        FormIssueType.POSTURE: ("Body position not optimal for direction changes",
                                "Stay low with athletic position during direction changes"),
        FormIssueType.RANGE_OF_MOTION: ("Limited range in cutting movements",
                                        "Use full body range for efficient cutting"),
        FormIssueType.TIMING: ("Inconsistent movement timing",
                               "Practice consistent movement patterns"),
        FormIssueType.TECHNIQUE: ("Improper cutting technique",
                                  "Focus on quick, efficient directional changes"),
    },
    TestType.ENDURANCE: {
        FormIssueType.POSTURE: ("Form deterioration noted during prolonged activity",
                                "Maintain form even when fatigued"),
        FormIssueType.RANGE_OF_MOTION: ("Range of motion decreasing over time",
                                        "Focus on maintaining full range despite fatigue"),
        FormIssueType.TIMING: ("Pacing inconsistency",
                               "Work on consistent pacing strategies"),
        FormIssueType.TECHNIQUE: ("Technique breakdown under fatigue",
                                  "Practice maintaining technique under fatigue"),
    },
    TestType.FLEXIBILITY: {
        FormIssueType.POSTURE: ("Alignment issues during stretching",
                                "Maintain proper alignment during stretches"),
        FormIssueType.RANGE_OF_MOTION: ("Limited range of motion achieved",
                                        "Gradually increase range of motion"),
        FormIssueType.TIMING: ("Insufficient hold time",
                               "Hold stretches for adequate duration"),
        FormIssueType.TECHNIQUE: ("Improper stretching technique",
                                  "Focus on proper stretching technique and breathing"),
    },
}


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------

@dataclass
class FormIssue:
    type: FormIssueType
    severity: Severity
    description: str
    suggestion: str
    start_s: float = 0.0
    end_s: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "severity": self.severity.value,
            "description": self.description,
            "suggestion": self.suggestion,
            "time_range": [round(self.start_s, 2), round(self.end_s, 2)],
        }


@dataclass
class JointAssessment:
    angle: float
    optimal_range: Tuple[float, float]
    deviation: float
    quality: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "angle": round(self.angle, 1),
            "optimal_range": list(self.optimal_range),
            "deviation": round(self.deviation, 1),
            "quality": self.quality,
        }


@dataclass
class SymmetryAssessment:
    left_right: float
    anterior_posterior: float
    medial_lateral: float
    flags: List[str] = field(default_factory=list)

    @property
    def overall(self) -> float:
        return (self.left_right + self.anterior_posterior + self.medial_lateral) / 3

    def to_dict(self) -> Dict[str, Any]:
        return {
            "left_right": round(self.left_right, 3),
            "anterior_posterior": round(self.anterior_posterior, 3),
            "medial_lateral": round(self.medial_lateral, 3),
            "overall": round(self.overall, 3),
            "flags": list(self.flags),
        }


@dataclass
class RepetitionCount:
    detected: int
    expected: int
    timestamps_s: List[float] = field(default_factory=list)

    @property
    def accuracy(self) -> float:
        if self.expected <= 0:
            return 1.0
        return min(1.0, self.detected / self.expected)

    def to_dict(self) -> Dict[str, Any]:
        return {"detected": self.detected, "expected": self.expected, "accuracy": round(self.accuracy, 3)}


@dataclass
class PaceAnalysis:
    average_rep_duration_ms: float
    consistency: float
    optimal_pace_ms: float
    recommendation: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "average_rep_duration_ms": round(self.average_rep_duration_ms, 1),
            "consistency": round(self.consistency, 3),
            "optimal_pace_ms": self.optimal_pace_ms,
            "recommendation": self.recommendation,
        }


@dataclass
class TechnicalScore:
    form: float
    consistency: float
    efficiency: float
    overall: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "form": round(self.form, 2),
            "consistency": round(self.consistency, 2),
            "efficiency": round(self.efficiency, 2),
            "overall": round(self.overall, 2),
        }


@dataclass
class Recommendation:
    category: str
    priority: str
    description: str
    specific_feedback: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category": self.category,
            "priority": self.priority,
            "description": self.description,
            "specific_feedback": self.specific_feedback,
        }


@dataclass
class MovementAnalysis:
    """Everything the movement stage learned from one pose sequence."""
    test_type: TestType
    exercise_compliance: float
    biomechanical_validity: float
    movement_quality: float
    form_issues: List[FormIssue]
    technical_score: TechnicalScore
    joints: Dict[str, JointAssessment]
    symmetry: SymmetryAssessment
    smoothness: float
    repetitions: RepetitionCount
    pace: PaceAnalysis
    visibility: float
    duration_s: float
    strengths: List[str] = field(default_factory=list)
    weaknesses: List[str] = field(default_factory=list)
    recommendations: List[Recommendation] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "test_type": self.test_type.value,
            "exercise_compliance": round(self.exercise_compliance, 2),
            "biomechanical_validity": round(self.biomechanical_validity, 2),
            "movement_quality": round(self.movement_quality, 2),
            "form_issues": [i.to_dict() for i in self.form_issues],
            "technical_score": self.technical_score.to_dict(),
            "biomechanics": {
                "joint_angles": {name: j.to_dict() for name, j in self.joints.items()},
                "symmetry": self.symmetry.to_dict(),
                "velocity_smoothness": round(self.smoothness, 3),
            },
            "repetitions": self.repetitions.to_dict(),
            "pace_analysis": self.pace.to_dict(),
            "keypoint_visibility": round(self.visibility, 3),
            "duration_s": round(self.duration_s, 2),
            "strengths": list(self.strengths),
            "weaknesses": list(self.weaknesses),
            "recommendations": [r.to_dict() for r in self.recommendations],
        }


# ---------------------------------------------------------------------------
# Scoring rules
# ---------------------------------------------------------------------------

def _clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return max(low, min(high, value))


def deviation_from_range(angle: float, optimal_range: Tuple[float, float]) -> float:
    """Degrees outside the optimal range; 0 inside it."""
    low, high = optimal_range
    if angle < low:
        return low - angle
    if angle > high:
        return angle - high
    return 0.0


def joint_quality(deviation: float) -> str:
    if deviation < 10:
        return "excellent"
    if deviation < 20:
        return "good"
    if deviation < 30:
        return "fair"
    return "poor"


def biomechanical_quality(joints: Dict[str, JointAssessment]) -> float:
    if not joints:
        return QUALITY_SCORES["poor"]
    return sum(QUALITY_SCORES[j.quality] for j in joints.values()) / len(joints)


def compute_technical_score(
    form_issues: Sequence[FormIssue],
    bio_quality: float,
    pace_consistency: float,
    overall_symmetry: float,
    smoothness: float,
    repetition_accuracy: float,
) -> TechnicalScore:
    form = FORM_BASELINE
    for issue in form_issues:
        form -= SEVERITY_DEDUCTIONS[issue.severity.value]
    form = (form + bio_quality) / 2

    consistency = min(100.0, pace_consistency * 100 + overall_symmetry * 100) / 2
    efficiency = min(100.0, smoothness * 50 + repetition_accuracy * 50)
    overall = form * 0.5 + consistency * 0.3 + efficiency * 0.2

    return TechnicalScore(
        form=_clamp(form),
        consistency=_clamp(consistency),
        efficiency=_clamp(efficiency),
        overall=_clamp(overall),
    )


def symmetry_flags(left_right: float, anterior_posterior: float, medial_lateral: float) -> List[str]:
    flags = []
    if left_right < 0.8:
        flags.append("Left-right imbalance detected")
    if anterior_posterior < 0.8:
        flags.append("Forward-backward compensation")
    if medial_lateral < 0.85:
        flags.append("Side-to-side deviation")
    return flags


def pace_recommendation(actual_ms: float, optimal_ms: float) -> str:
    ratio = actual_ms / optimal_ms if optimal_ms else 1.0
    if ratio < 0.7:
        return "Slow down - focus on control and form rather than speed"
    if ratio > 1.3:
        return "Increase tempo - you have room to move faster while maintaining form"
    return "Good pacing - maintain this tempo"


def _form_issue(test_type: TestType, issue_type: FormIssueType, severity: Severity,
                duration_s: float) -> FormIssue:
    description, suggestion = FORM_ISSUE_DESCRIPTIONS.get(test_type, {}).get(
        issue_type, ("Form issue detected requiring attention", "Focus on proper form and technique")
    )
    return FormIssue(
        type=issue_type,
        severity=severity,
        description=description,
        suggestion=suggestion,
        start_s=0.0,
        end_s=duration_s,
    )


def detect_form_issues(
    test_type: TestType,
    joints: Dict[str, JointAssessment],
    symmetry: SymmetryAssessment,
    pace: PaceAnalysis,
    smoothness: float,
    duration_s: float,
) -> List[FormIssue]:
    """Threshold rules over the measured biomechanics, one issue per type at most."""
    issues = []

    if symmetry.anterior_posterior < 0.6:
        issues.append(_form_issue(test_type, FormIssueType.POSTURE, Severity.MAJOR, duration_s))
    elif symmetry.anterior_posterior < 0.8:
        issues.append(_form_issue(test_type, FormIssueType.POSTURE, Severity.MINOR, duration_s))

    poor_joints = sum(1 for j in joints.values() if j.quality == "poor")
    if poor_joints >= 2:
        issues.append(_form_issue(test_type, FormIssueType.RANGE_OF_MOTION, Severity.MAJOR, duration_s))
    elif poor_joints == 1:
        issues.append(_form_issue(test_type, FormIssueType.RANGE_OF_MOTION, Severity.MINOR, duration_s))

    if pace.consistency < 0.5:
        issues.append(_form_issue(test_type, FormIssueType.TIMING, Severity.MAJOR, duration_s))
    elif pace.consistency < 0.7:
        issues.append(_form_issue(test_type, FormIssueType.TIMING, Severity.MINOR, duration_s))

    if smoothness < 0.3:
        issues.append(_form_issue(test_type, FormIssueType.TECHNIQUE, Severity.CRITICAL, duration_s))
    elif smoothness < 0.5:
        issues.append(_form_issue(test_type, FormIssueType.TECHNIQUE, Severity.MAJOR, duration_s))

    return issues


def movement_insights(
    technical: TechnicalScore,
    symmetry: SymmetryAssessment,
    pace: PaceAnalysis,
    smoothness: float,
    form_issues: Sequence[FormIssue],
) -> Tuple[List[str], List[str], List[Recommendation]]:
    strengths: List[str] = []
    weaknesses: List[str] = []
    recommendations: List[Recommendation] = []

    if technical.form > 85:
        strengths.append("Excellent form and technique execution")
    if symmetry.overall > 0.9:
        strengths.append("Outstanding movement symmetry and balance")
    if pace.consistency > 0.8:
        strengths.append("Consistent pacing throughout the exercise")
    if smoothness > 0.8:
        strengths.append("Smooth, controlled movement patterns")

    if technical.form < 70:
        weaknesses.append("Form and technique need improvement")
        recommendations.append(Recommendation(
            category="technique",
            priority="high",
            description="Focus on proper form execution",
            specific_feedback="Practice basic movement patterns with slower tempo",
        ))

    if symmetry.overall < 0.8:
        weaknesses.append("Movement asymmetries detected")
        recommendations.append(Recommendation(
            category="form",
            priority="medium",
            description="Address movement imbalances",
            specific_feedback="Include unilateral exercises and mobility work",
        ))

    for issue in form_issues:
        if issue.severity in (Severity.CRITICAL, Severity.MAJOR):
            weaknesses.append(issue.description)
            recommendations.append(Recommendation(
                category="technique",
                priority="high" if issue.severity == Severity.CRITICAL else "medium",
                description=issue.description,
                specific_feedback=issue.suggestion,
            ))

    return strengths, weaknesses, recommendations


# ---------------------------------------------------------------------------
# Evaluator
# ---------------------------------------------------------------------------

class MovementEvaluator:
    """
    Scores exercise execution from pose keypoints.

    `evaluate` accepts either a raw VideoSubmission (frames and poses are
    obtained through the injected VideoAnalyzer) or an already captured
    video; `assess` works directly on pose frames.
    """

    def __init__(self, analyzer: Optional[VideoAnalyzer] = None):
        self.analyzer = analyzer

    def evaluate(self, video: Union[VideoSubmission, CapturedVideo], test_type: TestType) -> MovementAnalysis:
        if isinstance(video, CapturedVideo):
            captured = video
        else:
            if self.analyzer is None:
                raise AnalyzerFailure("movement", "no video analyzer configured")
            captured = self.analyzer.capture(video)
        return self.assess(captured.poses, test_type, captured.duration_s)

    def assess(
        self,
        poses: Sequence[PoseFrame],
        test_type: TestType,
        duration_s: Optional[float] = None,
    ) -> MovementAnalysis:
        if not poses:
            raise AnalyzerFailure("movement", "no pose frames detected")

        poses = sorted(poses, key=lambda p: p.timestamp_ms)
        if duration_s is None or duration_s <= 0:
            duration_s = (poses[-1].timestamp_ms - poses[0].timestamp_ms) / 1000.0

        joints = self._assess_joints(poses)
        symmetry = SymmetryAssessment(*pose_geometry.symmetry_profile(poses))
        symmetry.flags = symmetry_flags(symmetry.left_right, symmetry.anterior_posterior, symmetry.medial_lateral)
        smoothness = pose_geometry.velocity_smoothness(poses)
        repetitions = self._count_repetitions(poses, test_type)
        pace = self._analyze_pace(test_type, duration_s, repetitions)
        visibility = pose_geometry.keypoint_visibility(poses, min_confidence=pose_geometry.MIN_CONFIDENCE)

        form_issues = detect_form_issues(test_type, joints, symmetry, pace, smoothness, duration_s)
        bio_quality = biomechanical_quality(joints)
        technical = compute_technical_score(
            form_issues,
            bio_quality,
            pace.consistency,
            symmetry.overall,
            smoothness,
            repetitions.accuracy,
        )

        compliance = _clamp(
            100 * (0.7 * visibility + 0.3 * repetitions.accuracy) + COMPLEXITY_ADJUSTMENT.get(test_type, 0)
        )
        validity = _clamp(0.7 * bio_quality + 30 * symmetry.overall)
        quality = _clamp(100 * (smoothness + symmetry.overall) / 2 + QUALITY_MODIFIER.get(test_type, 0))

        strengths, weaknesses, recommendations = movement_insights(
            technical, symmetry, pace, smoothness, form_issues
        )

        logger.debug(
            f"Movement assessed for {test_type.value}: overall={technical.overall:.1f}, "
            f"issues={len(form_issues)}, reps={repetitions.detected}",
            extra={"extra_fields": {"test_type": test_type.value, "pose_frames": len(poses)}},
        )

        return MovementAnalysis(
            test_type=test_type,
            exercise_compliance=compliance,
            biomechanical_validity=validity,
            movement_quality=quality,
            form_issues=form_issues,
            technical_score=technical,
            joints=joints,
            symmetry=symmetry,
            smoothness=smoothness,
            repetitions=repetitions,
            pace=pace,
            visibility=visibility,
            duration_s=duration_s,
            strengths=strengths,
            weaknesses=weaknesses,
            recommendations=recommendations,
        )

    @staticmethod
    def _assess_joints(poses: Sequence[PoseFrame]) -> Dict[str, JointAssessment]:
        joints = {}
        for name, optimal_range in OPTIMAL_JOINT_RANGES.items():
            angle = pose_geometry.representative_joint_angle(poses, name)
            if angle is None:
                continue
            deviation = deviation_from_range(angle, optimal_range)
            joints[name] = JointAssessment(
                angle=angle,
                optimal_range=optimal_range,
                deviation=deviation,
                quality=joint_quality(deviation),
            )
        return joints

    @staticmethod
    def _count_repetitions(poses: Sequence[PoseFrame], test_type: TestType) -> RepetitionCount:
        joint = REPETITION_TESTS.get(test_type)
        if joint is None:
            return RepetitionCount(detected=1, expected=1)

        timestamps = np.array([p.timestamp_ms / 1000.0 for p in poses], dtype=float)
        best: List[float] = []
        for side in (0, 1):
            series = pose_geometry.joint_angle_series(poses, joint, side)
            reps = pose_geometry.repetition_times(series, timestamps)
            if len(reps) > len(best):
                best = reps
        return RepetitionCount(detected=len(best), expected=EXPECTED_REPETITIONS, timestamps_s=best)

    @staticmethod
    def _analyze_pace(test_type: TestType, duration_s: float, repetitions: RepetitionCount) -> PaceAnalysis:
        duration_ms = duration_s * 1000
        average = duration_ms / repetitions.detected if repetitions.detected > 1 else duration_ms
        optimal = OPTIMAL_PACE_MS.get(test_type, 3000)
        return PaceAnalysis(
            average_rep_duration_ms=average,
            consistency=pose_geometry.pace_consistency(repetitions.timestamps_s),
            optimal_pace_ms=optimal,
            recommendation=pace_recommendation(average, optimal),
        )
