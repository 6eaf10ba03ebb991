"""
Deterministic pose-heuristic analyzers.

PrecomputedPoseAnalyzer reads frames (and their poses) that the capture
client already decoded and attached to the submission. It never touches
pixels, so it is the analyzer used by the API, the Celery tasks and the
test suite.

PoseHeuristicIntegrityAnalyzer derives the five integrity signals from
frame statistics and pose geometry:
- tampering:   timestamp gaps, duplicated frames, resolution/background jumps, metadata
- movement:    the MovementEvaluator assessment of the same poses
- environment: brightness, background and shadow stability
- biometrics:  body proportion stability, face visibility, gait symmetry
- temporal:    frame cadence, centre-of-mass speed bursts, duration window

Identical inputs always yield identical signals.
"""

import logging
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from core.config import settings
from core.exceptions import AnalyzerFailure
from services.assessment_types import Athlete, AssessmentRecord, TestType
from services.movement_evaluator import MovementEvaluator, Severity
from services.video_analysis import pose_geometry
from services.video_analysis.base import IntegritySignalAnalyzer, VideoAnalyzer
from services.video_analysis.models import (
    NOSE,
    BiometricSignal,
    CapturedVideo,
    EnvironmentSignal,
    MovementIssue,
    MovementIssueType,
    MovementValiditySignal,
    PoseFrame,
    SuspiciousElement,
    SuspiciousElementType,
    SuspiciousTimelapse,
    TamperingSignal,
    TamperingType,
    TemporalSignal,
    TimelapseManipulation,
    VideoFrame,
    VideoSubmission,
)

logger = logging.getLogger(__name__)


# Plausible recording length per test, seconds
EXPECTED_DURATIONS_S: Dict[TestType, Tuple[float, float]] = {
    TestType.SPEED: (5, 30),
    TestType.AGILITY: (15, 60),
    TestType.STRENGTH: (30, 120),
    TestType.ENDURANCE: (120, 600),
    TestType.FLEXIBILITY: (60, 180),
    TestType.BALANCE: (30, 90),
}

MOVEMENT_ISSUE_DESCRIPTIONS: Dict[MovementIssueType, Dict[TestType, str]] = {
    MovementIssueType.INCORRECT_FORM: {
        TestType.SPEED: "Running form not optimal for maximum speed",
        TestType.STRENGTH: "Exercise performed with incorrect technique",
        TestType.AGILITY: "Movement pattern deviates from expected form",
        TestType.ENDURANCE: "Pacing and form inconsistent with endurance requirements",
        TestType.FLEXIBILITY: "Stretching technique not following proper form",
        TestType.BALANCE: "Balance position not maintained correctly",
    },
    MovementIssueType.IMPOSSIBLE_MOVEMENT: {
        TestType.SPEED: "Detected physically impossible acceleration",
        TestType.STRENGTH: "Strength demonstration exceeds human capabilities",
        TestType.AGILITY: "Movement speed or direction changes not humanly possible",
        TestType.ENDURANCE: "Endurance performance inconsistent with human limits",
        TestType.FLEXIBILITY: "Flexibility range exceeds anatomical possibilities",
        TestType.BALANCE: "Balance performance defies physics",
    },
    MovementIssueType.INCONSISTENT_PHYSICS: {
        TestType.SPEED: "Speed changes inconsistent with physics",
        TestType.STRENGTH: "Force application inconsistent with movement",
        TestType.AGILITY: "Directional changes violate momentum principles",
        TestType.ENDURANCE: "Energy expenditure patterns inconsistent",
        TestType.FLEXIBILITY: "Movement transitions violate biomechanics",
        TestType.BALANCE: "Center of gravity shifts impossible",
    },
    MovementIssueType.UNNATURAL_ACCELERATION: {
        TestType.SPEED: "Acceleration pattern appears artificially enhanced",
        TestType.STRENGTH: "Movement speed unnatural for strength exercise",
        TestType.AGILITY: "Acceleration between movements unnaturally fast",
        TestType.ENDURANCE: "Pacing changes unnaturally abrupt",
        TestType.FLEXIBILITY: "Transition speed between positions unnatural",
        TestType.BALANCE: "Recovery movements unnaturally fast",
    },
}

# Editing tools that re-encode footage
EDITING_SOFTWARE = ("after effects", "premiere", "final cut", "davinci", "capcut", "ffmpeg")

# Joint angles no human joint reaches in these test movements
IMPOSSIBLE_ANGLE_DEG = 185.0
PEAK_ACCELERATION_LIMIT = 4.0
SPEED_BURST_FACTOR = 3.0


def issue_description(issue_type: MovementIssueType, test_type: TestType) -> str:
    return MOVEMENT_ISSUE_DESCRIPTIONS.get(issue_type, {}).get(test_type, "Movement anomaly detected")


def duration_authenticity(duration_s: float, test_type: TestType) -> float:
    """100 inside the expected window; 40-80 outside, lower the further away."""
    low, high = EXPECTED_DURATIONS_S.get(test_type, (0, float("inf")))
    if low <= duration_s <= high:
        return 100.0
    distance = (low - duration_s) / low if duration_s < low else (duration_s - high) / high
    return float(np.clip(80 - 40 * distance, 40, 80))


def _clamp(value: float) -> float:
    return float(np.clip(value, 0, 100))


def _frame_intervals(frames: Sequence[VideoFrame]) -> np.ndarray:
    stamps = np.array([f.timestamp_ms for f in frames], dtype=float)
    return np.diff(stamps) if stamps.size > 1 else np.array([], dtype=float)


def _contiguous_ranges(indices: Sequence[int]) -> List[Tuple[int, int]]:
    ranges: List[Tuple[int, int]] = []
    for i in indices:
        if ranges and i == ranges[-1][1] + 1:
            ranges[-1] = (ranges[-1][0], i)
        else:
            ranges.append((i, i))
    return ranges


class PrecomputedPoseAnalyzer(VideoAnalyzer):
    """Serves frames and poses that arrived with the submission."""

    @property
    def name(self) -> str:
        return "precomputed"

    def extract(self, video: VideoSubmission) -> List[VideoFrame]:
        if not video.frames:
            raise AnalyzerFailure("upload", f"video {video.id} has no decoded frames")
        return sorted(video.frames, key=lambda f: f.timestamp_ms)

    def detect_pose(self, frames: Sequence[VideoFrame]) -> List[PoseFrame]:
        return [f.pose for f in frames if f.pose is not None]


class PoseHeuristicIntegrityAnalyzer(IntegritySignalAnalyzer):
    """Integrity signals from frame statistics and pose geometry."""

    def __init__(
        self,
        movement_evaluator: Optional[MovementEvaluator] = None,
        tampering_threshold: Optional[float] = None,
    ):
        self.movement_evaluator = movement_evaluator or MovementEvaluator()
        self.tampering_threshold = (
            tampering_threshold if tampering_threshold is not None
            else settings.TAMPERING_CONFIDENCE_THRESHOLD
        )

    # -- tampering ---------------------------------------------------------

    def analyze_tampering(self, video: CapturedVideo) -> TamperingSignal:
        frames = video.frames
        if not frames:
            raise AnalyzerFailure("integrity", "no frames to analyze for tampering")

        expected_interval = 1000.0 / (video.submission.frame_rate or 30.0)
        intervals = _frame_intervals(frames)

        gap_frames = [frames[i + 1].index for i, gap in enumerate(intervals) if gap > 2.5 * expected_interval]
        duplicate_frames = [
            frames[i].index for i in range(1, len(frames))
            if frames[i].checksum is not None and frames[i].checksum == frames[i - 1].checksum
        ]
        background = np.array([f.background for f in frames], dtype=float)
        jump_frames = [
            frames[i + 1].index for i, jump in enumerate(np.abs(np.diff(background))) if jump > 0.25
        ]

        n = len(frames)
        frame_continuity = _clamp(100 - 200 * (len(gap_frames) + len(duplicate_frames)) / n)
        pixel_integrity = _clamp(100 - 300 * len(jump_frames) / n)
        resolutions = {(f.width, f.height) for f in frames}
        compression_integrity = 100.0 if len(resolutions) == 1 else 60.0
        metadata_integrity = self._metadata_integrity(video)

        signal = TamperingSignal(
            compression_integrity=compression_integrity,
            metadata_integrity=metadata_integrity,
            pixel_integrity=pixel_integrity,
            frame_continuity=frame_continuity,
        )
        signal.confidence = float(np.clip((100 - signal.score) / 50, 0, 1))
        anomalies = min(compression_integrity, metadata_integrity, pixel_integrity, frame_continuity) < 80
        signal.tampering_detected = signal.confidence > self.tampering_threshold or anomalies

        if signal.tampering_detected:
            if duplicate_frames:
                signal.tampering_type = TamperingType.FRAME_DUPLICATION
            elif gap_frames:
                signal.tampering_type = TamperingType.SPLICE
            elif jump_frames:
                signal.tampering_type = TamperingType.OVERLAY
            elif metadata_integrity < 80:
                signal.tampering_type = TamperingType.SPEED_MANIPULATION
            else:
                signal.tampering_type = TamperingType.DEEPFAKE
            signal.suspicious_frames = sorted(set(gap_frames + duplicate_frames + jump_frames))
        return signal

    @staticmethod
    def _metadata_integrity(video: CapturedVideo) -> float:
        metadata = {str(k).lower(): str(v).lower() for k, v in video.submission.metadata.items()}
        score = 100.0
        software = metadata.get("software", "") + " " + metadata.get("encoder", "")
        if any(tool in software for tool in EDITING_SOFTWARE):
            score -= 40
        declared = video.submission.duration_s
        measured = video.duration_s
        if declared and measured and abs(declared - measured) / declared > 0.1:
            score -= 30
        return max(0.0, score)

    # -- movement ----------------------------------------------------------

    def analyze_movement(self, video: CapturedVideo, test_type: TestType) -> MovementValiditySignal:
        analysis = self.movement_evaluator.assess(video.poses, test_type, video.duration_s)
        issues: List[MovementIssue] = []

        serious = [i for i in analysis.form_issues if i.severity in (Severity.CRITICAL, Severity.MAJOR)]
        if serious:
            worst = Severity.CRITICAL if any(i.severity == Severity.CRITICAL for i in serious) else Severity.MAJOR
            issues.append(MovementIssue(
                type=MovementIssueType.INCORRECT_FORM,
                severity="high" if worst == Severity.CRITICAL else "medium",
                start_s=0.0,
                end_s=analysis.duration_s,
                description=issue_description(MovementIssueType.INCORRECT_FORM, test_type),
                confidence=0.8,
            ))

        peak = pose_geometry.peak_acceleration_ratio(video.poses)
        if peak > PEAK_ACCELERATION_LIMIT:
            issues.append(MovementIssue(
                type=MovementIssueType.UNNATURAL_ACCELERATION,
                severity="high" if peak > 2 * PEAK_ACCELERATION_LIMIT else "medium",
                start_s=0.0,
                end_s=analysis.duration_s,
                description=issue_description(MovementIssueType.UNNATURAL_ACCELERATION, test_type),
                confidence=float(min(1.0, 0.5 + peak / 20)),
            ))

        if any(j.angle > IMPOSSIBLE_ANGLE_DEG for j in analysis.joints.values()):
            issues.append(MovementIssue(
                type=MovementIssueType.IMPOSSIBLE_MOVEMENT,
                severity="high",
                start_s=0.0,
                end_s=analysis.duration_s,
                description=issue_description(MovementIssueType.IMPOSSIBLE_MOVEMENT, test_type),
                confidence=0.9,
            ))

        return MovementValiditySignal(
            exercise_compliance=analysis.exercise_compliance,
            biomechanical_validity=analysis.biomechanical_validity,
            movement_quality=analysis.movement_quality,
            detected_issues=issues,
        )

    # -- environment -------------------------------------------------------

    def analyze_environment(self, video: CapturedVideo) -> EnvironmentSignal:
        frames = video.frames
        if not frames:
            raise AnalyzerFailure("integrity", "no frames to analyze for environment")

        brightness = np.array([f.brightness for f in frames], dtype=float)
        background = np.array([f.background for f in frames], dtype=float)
        shadows = np.array([f.shadow_direction for f in frames], dtype=float)

        lighting = _clamp(100 - 200 * float(np.std(brightness)))
        background_auth = _clamp(100 - 300 * float(np.std(background)))
        shadow = _clamp(100 - 2 * float(np.std(shadows)))

        elements: List[SuspiciousElement] = []
        if lighting < 70:
            elements.append(SuspiciousElement(SuspiciousElementType.LIGHTING_MISMATCH, (100 - lighting) / 100))
        if background_auth < 70:
            elements.append(SuspiciousElement(SuspiciousElementType.CGI_BACKGROUND, (100 - background_auth) / 100))
        if shadow < 70:
            elements.append(SuspiciousElement(SuspiciousElementType.IMPOSSIBLE_SHADOWS, (100 - shadow) / 100))
        if video.submission.metadata.get("virtual_background"):
            elements.append(SuspiciousElement(SuspiciousElementType.GREEN_SCREEN, 0.9))

        return EnvironmentSignal(
            authenticity=_clamp(100 - 15 * len(elements)),
            lighting_consistency=lighting,
            background_authenticity=background_auth,
            shadow_analysis=shadow,
            suspicious_elements=elements,
        )

    # -- biometrics --------------------------------------------------------

    def analyze_biometrics(
        self,
        video: CapturedVideo,
        athlete: Athlete,
        prior_history: Optional[Sequence[AssessmentRecord]] = None,
    ) -> BiometricSignal:
        poses = video.poses
        if not poses:
            raise AnalyzerFailure("integrity", "no poses to verify athlete identity")

        face_visible = sum(1 for p in poses if p.get(NOSE, pose_geometry.MIN_CONFIDENCE) is not None) / len(poses)
        facial = 60 + 40 * face_visible
        if prior_history:
            # returning athletes have reference submissions to match against
            facial = min(100.0, facial + 5)

        consistency = pose_geometry.proportion_consistency(poses)
        body = 100 * consistency if consistency is not None else 75.0

        left_right, _, _ = pose_geometry.symmetry_profile(poses)
        gait = _clamp(60 + 40 * left_right)

        multiple = sum(1 for p in poses if p.person_count > 1) / len(poses) > 0.05

        logger.debug(
            f"Biometrics for athlete {athlete.id}: facial={facial:.1f} body={body:.1f} gait={gait:.1f}"
        )
        return BiometricSignal(
            facial_consistency=facial,
            body_proportion_consistency=body,
            gait_analysis=gait,
            multiple_persons_detected=multiple,
            suspicious_identity_changes=self._identity_changed(poses),
        )

    @staticmethod
    def _identity_changed(poses: Sequence[PoseFrame]) -> bool:
        vectors = [v for v in (pose_geometry.proportion_vector(p) for p in poses) if v is not None]
        if len(vectors) < 4:
            return False
        half = len(vectors) // 2
        first = np.mean(vectors[:half], axis=0)
        second = np.mean(vectors[half:], axis=0)
        return bool(np.max(np.abs(first - second)) > 0.05)

    # -- temporal ----------------------------------------------------------

    def analyze_temporal(self, video: CapturedVideo, test_type: TestType) -> TemporalSignal:
        frames = video.frames
        if len(frames) < 2:
            raise AnalyzerFailure("integrity", "not enough frames for temporal analysis")

        declared_rate = video.submission.frame_rate or 30.0
        expected_interval = 1000.0 / declared_rate
        intervals = _frame_intervals(frames)

        regular = (intervals > 0.5 * expected_interval) & (intervals < 1.5 * expected_interval)
        timestamp_validation = _clamp(100 * float(np.mean(regular)))

        positive = intervals[intervals > 0]
        measured_rate = 1000.0 / float(np.median(positive)) if positive.size else 0.0
        frame_rate_anomalies = abs(measured_rate - declared_rate) / declared_rate > 0.1

        timelapses: List[SuspiciousTimelapse] = []
        for i, gap in enumerate(intervals):
            if gap > 2 * expected_interval:
                timelapses.append(SuspiciousTimelapse(
                    start_s=frames[i].timestamp_ms / 1000.0,
                    end_s=frames[i + 1].timestamp_ms / 1000.0,
                    manipulation=TimelapseManipulation.SKIP,
                    confidence=float(min(1.0, 0.5 + gap / expected_interval / 20)),
                ))

        speed_consistency = 100.0
        times, _ = pose_geometry.centre_of_mass_track(video.poses)
        speeds = pose_geometry.speed_profile(video.poses)
        if speeds.size >= 3 and float(np.median(speeds)) > 0:
            fast = np.where(speeds > SPEED_BURST_FACTOR * float(np.median(speeds)))[0]
            speed_consistency = _clamp(100 - 300 * fast.size / speeds.size)
            for start, end in _contiguous_ranges(list(fast)):
                timelapses.append(SuspiciousTimelapse(
                    start_s=float(times[start]),
                    end_s=float(times[min(end + 1, len(times) - 1)]),
                    manipulation=TimelapseManipulation.SPEED_UP,
                    confidence=0.8,
                ))

        return TemporalSignal(
            speed_consistency=speed_consistency,
            timestamp_validation=timestamp_validation,
            duration_authenticity=duration_authenticity(video.duration_s, test_type),
            frame_rate_anomalies=frame_rate_anomalies,
            suspicious_timelapses=timelapses,
        )
