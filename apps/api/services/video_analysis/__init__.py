"""
Video Analysis Module

Contracts and value types for the computer-vision collaborator:
- Frame extraction and pose detection (VideoAnalyzer)
- The five integrity sub-analyses (IntegritySignalAnalyzer)
- Frames, pose keypoints and integrity signals

Concrete deterministic analyzers live in pose_heuristics; import them from
there (they depend on the movement evaluator, which depends on this
package).
"""

from .base import (
    VideoAnalyzer,
    IntegritySignalAnalyzer,
)
from .models import (
    Keypoint,
    PoseFrame,
    VideoFrame,
    VideoSubmission,
    CapturedVideo,
    TamperingType,
    MovementIssueType,
    SuspiciousElementType,
    TimelapseManipulation,
    TamperingSignal,
    MovementIssue,
    MovementValiditySignal,
    SuspiciousElement,
    EnvironmentSignal,
    BiometricSignal,
    SuspiciousTimelapse,
    TemporalSignal,
)

__all__ = [
    "VideoAnalyzer",
    "IntegritySignalAnalyzer",
    "Keypoint",
    "PoseFrame",
    "VideoFrame",
    "VideoSubmission",
    "CapturedVideo",
    "TamperingType",
    "MovementIssueType",
    "SuspiciousElementType",
    "TimelapseManipulation",
    "TamperingSignal",
    "MovementIssue",
    "MovementValiditySignal",
    "SuspiciousElement",
    "EnvironmentSignal",
    "BiometricSignal",
    "SuspiciousTimelapse",
    "TemporalSignal",
]
