"""
Video Analysis Models

Value types exchanged with the video/pose analyzer collaborator:
- Frames and pose keypoints (the analyzer's output contract)
- The five integrity signals (one per integrity sub-analysis)

Every integrity signal exposes `score` in [0, 100], the mean of its finer
metrics, plus the evidence that produced it.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


# Keypoint names follow the MediaPipe Pose landmark naming
NOSE = "nose"
LEFT_SHOULDER = "left_shoulder"
RIGHT_SHOULDER = "right_shoulder"
LEFT_ELBOW = "left_elbow"
RIGHT_ELBOW = "right_elbow"
LEFT_WRIST = "left_wrist"
RIGHT_WRIST = "right_wrist"
LEFT_HIP = "left_hip"
RIGHT_HIP = "right_hip"
LEFT_KNEE = "left_knee"
RIGHT_KNEE = "right_knee"
LEFT_ANKLE = "left_ankle"
RIGHT_ANKLE = "right_ankle"

BODY_KEYPOINTS: Tuple[str, ...] = (
    NOSE,
    LEFT_SHOULDER, RIGHT_SHOULDER,
    LEFT_ELBOW, RIGHT_ELBOW,
    LEFT_WRIST, RIGHT_WRIST,
    LEFT_HIP, RIGHT_HIP,
    LEFT_KNEE, RIGHT_KNEE,
    LEFT_ANKLE, RIGHT_ANKLE,
)


def _mean(values: List[float]) -> float:
    return sum(values) / len(values) if values else 0.0


@dataclass(frozen=True)
class Keypoint:
    name: str
    x: float
    y: float
    confidence: float
    visible: bool = True


@dataclass(frozen=True)
class PoseFrame:
    """Named keypoints detected in one frame."""
    timestamp_ms: float
    keypoints: Dict[str, Keypoint]
    person_count: int = 1

    def get(self, name: str, min_confidence: float = 0.0) -> Optional[Keypoint]:
        kp = self.keypoints.get(name)
        if kp is None or not kp.visible or kp.confidence < min_confidence:
            return None
        return kp


@dataclass(frozen=True)
class VideoFrame:
    """
    One decoded frame with the image statistics the integrity checks use.

    brightness/background are normalized [0, 1]; checksum identifies the
    frame content (identical checksums mean duplicated frames).
    """
    index: int
    timestamp_ms: float
    width: int = 1920
    height: int = 1080
    brightness: float = 0.75
    background: float = 0.5
    shadow_direction: float = 0.0  # degrees
    checksum: Optional[str] = None
    pose: Optional[PoseFrame] = None


@dataclass
class VideoSubmission:
    """
    A video as handed to the pipeline.

    `frames` is filled when the capture client already decoded the video
    (and optionally ran pose detection on-device).
    """
    id: str
    uri: str = ""
    duration_s: Optional[float] = None
    frame_rate: float = 30.0
    width: int = 1920
    height: int = 1080
    metadata: Dict[str, Any] = field(default_factory=dict)
    frames: List[VideoFrame] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "uri": self.uri,
            "duration_s": self.duration_s,
            "frame_rate": self.frame_rate,
            "width": self.width,
            "height": self.height,
            "metadata": dict(self.metadata),
            "frame_count": len(self.frames),
        }


@dataclass(frozen=True)
class CapturedVideo:
    """Immutable extraction result shared by every analytic stage of a run."""
    submission: VideoSubmission
    frames: Tuple[VideoFrame, ...]
    poses: Tuple[PoseFrame, ...]

    @property
    def duration_s(self) -> float:
        if self.frames:
            return (self.frames[-1].timestamp_ms - self.frames[0].timestamp_ms) / 1000.0
        return self.submission.duration_s or 0.0


# ---------------------------------------------------------------------------
# Integrity signals
# ---------------------------------------------------------------------------

class TamperingType(str, Enum):
    DEEPFAKE = "deepfake"
    SPLICE = "splice"
    OVERLAY = "overlay"
    SPEED_MANIPULATION = "speed_manipulation"
    FRAME_DUPLICATION = "frame_duplication"


class MovementIssueType(str, Enum):
    INCORRECT_FORM = "incorrect_form"
    IMPOSSIBLE_MOVEMENT = "impossible_movement"
    INCONSISTENT_PHYSICS = "inconsistent_physics"
    UNNATURAL_ACCELERATION = "unnatural_acceleration"


class SuspiciousElementType(str, Enum):
    GREEN_SCREEN = "green_screen"
    CGI_BACKGROUND = "cgi_background"
    LIGHTING_MISMATCH = "lighting_mismatch"
    IMPOSSIBLE_SHADOWS = "impossible_shadows"


class TimelapseManipulation(str, Enum):
    SPEED_UP = "speed_up"
    SLOW_DOWN = "slow_down"
    SKIP = "skip"


@dataclass
class TamperingSignal:
    compression_integrity: float
    metadata_integrity: float
    pixel_integrity: float
    frame_continuity: float
    tampering_detected: bool = False
    tampering_type: Optional[TamperingType] = None
    confidence: float = 0.0  # 0-1, likelihood of tampering
    suspicious_frames: List[int] = field(default_factory=list)

    @property
    def score(self) -> float:
        return _mean([
            self.compression_integrity,
            self.metadata_integrity,
            self.pixel_integrity,
            self.frame_continuity,
        ])

    def to_dict(self) -> Dict[str, Any]:
        return {
            "score": round(self.score, 2),
            "compression_integrity": self.compression_integrity,
            "metadata_integrity": self.metadata_integrity,
            "pixel_integrity": self.pixel_integrity,
            "frame_continuity": self.frame_continuity,
            "tampering_detected": self.tampering_detected,
            "tampering_type": self.tampering_type.value if self.tampering_type else None,
            "confidence": round(self.confidence, 3),
            "suspicious_frames": list(self.suspicious_frames),
        }


@dataclass
class MovementIssue:
    type: MovementIssueType
    severity: str  # low | medium | high
    start_s: float
    end_s: float
    description: str
    confidence: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "severity": self.severity,
            "timeframe": {"start": self.start_s, "end": self.end_s},
            "description": self.description,
            "confidence": round(self.confidence, 3),
        }


@dataclass
class MovementValiditySignal:
    exercise_compliance: float
    biomechanical_validity: float
    movement_quality: float
    detected_issues: List[MovementIssue] = field(default_factory=list)

    @property
    def score(self) -> float:
        return _mean([self.exercise_compliance, self.biomechanical_validity, self.movement_quality])

    def to_dict(self) -> Dict[str, Any]:
        return {
            "score": round(self.score, 2),
            "exercise_compliance": round(self.exercise_compliance, 2),
            "biomechanical_validity": round(self.biomechanical_validity, 2),
            "movement_quality": round(self.movement_quality, 2),
            "detected_issues": [i.to_dict() for i in self.detected_issues],
        }


@dataclass
class SuspiciousElement:
    type: SuspiciousElementType
    confidence: float
    frame_index: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type.value, "confidence": round(self.confidence, 3), "frame_index": self.frame_index}


@dataclass
class EnvironmentSignal:
    authenticity: float
    lighting_consistency: float
    background_authenticity: float
    shadow_analysis: float
    suspicious_elements: List[SuspiciousElement] = field(default_factory=list)

    @property
    def score(self) -> float:
        return _mean([
            self.authenticity,
            self.lighting_consistency,
            self.background_authenticity,
            self.shadow_analysis,
        ])

    def to_dict(self) -> Dict[str, Any]:
        return {
            "score": round(self.score, 2),
            "authenticity": round(self.authenticity, 2),
            "lighting_consistency": round(self.lighting_consistency, 2),
            "background_authenticity": round(self.background_authenticity, 2),
            "shadow_analysis": round(self.shadow_analysis, 2),
            "suspicious_elements": [e.to_dict() for e in self.suspicious_elements],
        }


@dataclass
class BiometricSignal:
    facial_consistency: float
    body_proportion_consistency: float
    gait_analysis: float
    multiple_persons_detected: bool = False
    suspicious_identity_changes: bool = False

    @property
    def identity_confidence(self) -> float:
        return _mean([self.facial_consistency, self.body_proportion_consistency, self.gait_analysis])

    @property
    def score(self) -> float:
        return self.identity_confidence

    def to_dict(self) -> Dict[str, Any]:
        return {
            "score": round(self.score, 2),
            "facial_consistency": round(self.facial_consistency, 2),
            "body_proportion_consistency": round(self.body_proportion_consistency, 2),
            "gait_analysis": round(self.gait_analysis, 2),
            "identity_confidence": round(self.identity_confidence, 2),
            "multiple_persons_detected": self.multiple_persons_detected,
            "suspicious_identity_changes": self.suspicious_identity_changes,
        }


@dataclass
class SuspiciousTimelapse:
    start_s: float
    end_s: float
    manipulation: TimelapseManipulation
    confidence: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "start": self.start_s,
            "end": self.end_s,
            "suspected_manipulation": self.manipulation.value,
            "confidence": round(self.confidence, 3),
        }


@dataclass
class TemporalSignal:
    speed_consistency: float
    timestamp_validation: float
    duration_authenticity: float
    frame_rate_anomalies: bool = False
    suspicious_timelapses: List[SuspiciousTimelapse] = field(default_factory=list)

    @property
    def score(self) -> float:
        return _mean([self.speed_consistency, self.timestamp_validation, self.duration_authenticity])

    def to_dict(self) -> Dict[str, Any]:
        return {
            "score": round(self.score, 2),
            "speed_consistency": round(self.speed_consistency, 2),
            "timestamp_validation": round(self.timestamp_validation, 2),
            "duration_authenticity": round(self.duration_authenticity, 2),
            "frame_rate_anomalies": self.frame_rate_anomalies,
            "suspicious_timelapses": [t.to_dict() for t in self.suspicious_timelapses],
        }
