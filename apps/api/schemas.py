from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
import uuid

from services.assessment_pipeline import AssessmentEvaluation, ProcessingOptions
from services.assessment_types import AssessmentRecord, Athlete, Gender, TestType
from services.video_analysis import Keypoint, PoseFrame, VideoFrame, VideoSubmission


class AthleteIn(BaseModel):
    id: str
    name: str = ""
    age: int = Field(ge=5, le=100)
    gender: Gender = Gender.OTHER
    sports: List[str] = []
    primary_sport: Optional[str] = None

    def to_domain(self) -> Athlete:
        return Athlete(
            id=self.id,
            name=self.name,
            age=self.age,
            gender=self.gender,
            sports=list(self.sports),
            primary_sport=self.primary_sport,
        )


class AssessmentIn(BaseModel):
    id: Optional[str] = None  # generated when omitted
    test_type: TestType
    raw_score: float = Field(ge=0)
    submitted_at: Optional[datetime] = None
    notes: str = ""

    def to_domain(self, athlete_id: str) -> AssessmentRecord:
        return AssessmentRecord(
            id=self.id or str(uuid.uuid4()),
            athlete_id=athlete_id,
            test_type=self.test_type,
            raw_score=self.raw_score,
            submitted_at=self.submitted_at or datetime.now(timezone.utc),
            notes=self.notes,
        )


class KeypointIn(BaseModel):
    x: float
    y: float
    confidence: float = Field(ge=0, le=1)
    visible: bool = True


class PoseFrameIn(BaseModel):
    keypoints: Dict[str, KeypointIn]
    person_count: int = 1


class VideoFrameIn(BaseModel):
    """One decoded frame as produced by the capture client."""
    index: int
    timestamp_ms: float
    width: int = 1920
    height: int = 1080
    brightness: float = 0.75
    background: float = 0.5
    shadow_direction: float = 0.0
    checksum: Optional[str] = None
    pose: Optional[PoseFrameIn] = None

    def to_domain(self) -> VideoFrame:
        pose = None
        if self.pose is not None:
            pose = PoseFrame(
                timestamp_ms=self.timestamp_ms,
                keypoints={
                    name: Keypoint(name=name, x=kp.x, y=kp.y, confidence=kp.confidence, visible=kp.visible)
                    for name, kp in self.pose.keypoints.items()
                },
                person_count=self.pose.person_count,
            )
        return VideoFrame(
            index=self.index,
            timestamp_ms=self.timestamp_ms,
            width=self.width,
            height=self.height,
            brightness=self.brightness,
            background=self.background,
            shadow_direction=self.shadow_direction,
            checksum=self.checksum,
            pose=pose,
        )


class VideoIn(BaseModel):
    id: Optional[str] = None
    uri: str = ""
    duration_s: Optional[float] = None
    frame_rate: float = Field(default=30.0, gt=0)
    width: int = 1920
    height: int = 1080
    metadata: Dict[str, Any] = {}
    frames: List[VideoFrameIn] = []

    def to_domain(self) -> VideoSubmission:
        return VideoSubmission(
            id=self.id or str(uuid.uuid4()),
            uri=self.uri,
            duration_s=self.duration_s,
            frame_rate=self.frame_rate,
            width=self.width,
            height=self.height,
            metadata=dict(self.metadata),
            frames=[f.to_domain() for f in self.frames],
        )


class ProcessingOptionsIn(BaseModel):
    enable_integrity: bool = True
    enable_movement: bool = True
    enable_performance: bool = True
    enable_feedback: bool = True
    notify: bool = False
    include_history: bool = True

    def to_domain(self) -> ProcessingOptions:
        return ProcessingOptions(**self.model_dump())


class EvaluateRequest(BaseModel):
    athlete: AthleteIn
    assessment: AssessmentIn
    video: Optional[VideoIn] = None
    options: ProcessingOptionsIn = ProcessingOptionsIn()
    run_id: Optional[str] = None


class ReprocessRequest(BaseModel):
    """Re-run a stored assessment. The video has to be submitted again."""
    video: Optional[VideoIn] = None
    options: ProcessingOptionsIn = ProcessingOptionsIn()


class EvaluationResponse(BaseModel):
    """Serialized AssessmentEvaluation."""
    assessment: Dict[str, Any]
    athlete: Optional[Dict[str, Any]] = None
    run_id: Optional[str] = None
    processing_status: str
    stages: Dict[str, Any]
    composite: Optional[Dict[str, Any]] = None
    error_details: List[str] = []
    processed_at: datetime
    notified: bool = False

    @classmethod
    def from_evaluation(cls, evaluation: AssessmentEvaluation) -> "EvaluationResponse":
        return cls(**evaluation.to_dict(), notified=evaluation.notified)

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "EvaluationResponse":
        return cls(**payload)


class AsyncEvaluateResponse(BaseModel):
    task_id: str
    run_id: str
    assessment_id: str
    status: str = "queued"


class ProgressResponse(BaseModel):
    run_id: str
    stage: str
    percent: int
    message: str
    eta_s: Optional[int] = None
    updated_at: datetime


class TopPerformance(BaseModel):
    assessment_id: str
    test_type: str
    score: float
    percentile: float
    date: datetime


class TrendSummary(BaseModel):
    test_type: str
    trend: str
    change_percent: float


class AthleteInsightsResponse(BaseModel):
    athlete_id: str
    total_assessments: int
    completed_analyses: int
    integrity_pass_rate: float
    top_performances: List[TopPerformance]
    recent_trends: List[TrendSummary]


class ConsentUpdateRequest(BaseModel):
    athlete_id: str
    purpose: str = "assessment_analysis"
    granted: bool
    source: Optional[str] = "api"


class ConsentUpdateResponse(BaseModel):
    athlete_id: str
    purpose: str
    granted: bool

    model_config = ConfigDict(from_attributes=True)
