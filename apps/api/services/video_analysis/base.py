"""
Base classes for the video/pose analyzer collaborators.

The pipeline never decodes video or runs a vision model itself. It talks to
two interfaces:
- VideoAnalyzer: frame extraction and pose detection
- IntegritySignalAnalyzer: the five integrity sub-analyses

Implementations must be deterministic for identical inputs: the integrity
decision table is only reproducible if its inputs are.
"""

from abc import ABC, abstractmethod
from typing import List, Optional, Sequence
import logging

from services.assessment_types import Athlete, AssessmentRecord, TestType
from services.video_analysis.models import (
    BiometricSignal,
    CapturedVideo,
    EnvironmentSignal,
    MovementValiditySignal,
    PoseFrame,
    TamperingSignal,
    TemporalSignal,
    VideoFrame,
    VideoSubmission,
)

logger = logging.getLogger(__name__)


class VideoAnalyzer(ABC):
    """
    Frame extraction and pose detection.

    Both calls may perform I/O (object storage, model servers) and may raise;
    the pipeline treats a failure here as a failure of every stage that
    needs the video.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Analyzer identifier recorded with results."""
        pass

    @abstractmethod
    def extract(self, video: VideoSubmission) -> List[VideoFrame]:
        """
        Decode the video into frames.

        Returns:
            Frames ordered by timestamp.
        """
        pass

    @abstractmethod
    def detect_pose(self, frames: Sequence[VideoFrame]) -> List[PoseFrame]:
        """
        Detect the athlete's keypoints in each frame.

        Frames without a detected person are omitted.
        """
        pass

    def capture(self, video: VideoSubmission) -> CapturedVideo:
        """Extract frames and poses once for all stages of a run."""
        frames = self.extract(video)
        poses = self.detect_pose(frames)
        logger.debug(
            f"{self.name} captured {len(frames)} frames, {len(poses)} poses for video {video.id}"
        )
        return CapturedVideo(submission=video, frames=tuple(frames), poses=tuple(poses))


class IntegritySignalAnalyzer(ABC):
    """
    The five independent integrity sub-analyses.

    Each method reads the same immutable CapturedVideo and returns one
    signal; none depends on another's output, so callers may run them
    concurrently.
    """

    @abstractmethod
    def analyze_tampering(self, video: CapturedVideo) -> TamperingSignal:
        pass

    @abstractmethod
    def analyze_movement(self, video: CapturedVideo, test_type: TestType) -> MovementValiditySignal:
        pass

    @abstractmethod
    def analyze_environment(self, video: CapturedVideo) -> EnvironmentSignal:
        pass

    @abstractmethod
    def analyze_biometrics(
        self,
        video: CapturedVideo,
        athlete: Athlete,
        prior_history: Optional[Sequence[AssessmentRecord]] = None,
    ) -> BiometricSignal:
        pass

    @abstractmethod
    def analyze_temporal(self, video: CapturedVideo, test_type: TestType) -> TemporalSignal:
        pass
