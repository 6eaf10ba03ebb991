"""
Pytest configuration and fixtures

Every test builds its own pipeline context from in-memory collaborators
(store, consent gate, progress registry, notifier), so no test touches a
database, Redis or the network unless it creates that engine itself.
"""
import os
import sys
from datetime import datetime, timedelta, timezone

import pytest

# In-memory SQLite and plain-text logs before any app module reads settings
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("LOG_FORMAT", "text")

# Add the parent directory to the path so we can import from services
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from services.assessment_consent import ASSESSMENT_ANALYSIS, InMemoryConsentGate  # noqa: E402
from services.assessment_pipeline import AssessmentPipeline, PipelineContext  # noqa: E402
from services.assessment_store import InMemoryAssessmentStore  # noqa: E402
from services.assessment_types import AssessmentRecord, Athlete, Gender, TestType  # noqa: E402
from services.benchmarking import BenchmarkEngine, BenchmarkTable  # noqa: E402
from services.integrity_evaluator import IntegrityConfig, IntegrityEvaluator  # noqa: E402
from services.movement_evaluator import MovementEvaluator  # noqa: E402
from services.progress_tracker import ProgressRegistry  # noqa: E402
from services.recruitment_notifier import LoggingNotifier  # noqa: E402
from services.video_analysis.pose_heuristics import PrecomputedPoseAnalyzer  # noqa: E402

from fixtures.video_fixtures import FixedSignalAnalyzer, make_signals, make_submission  # noqa: E402

BASE_TIME = datetime(2025, 3, 1, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def athlete():
    """20-year-old male track athlete (19-21 cohort)."""
    return Athlete(id="ath-1", name="Test Athlete", age=20, gender=Gender.MALE, sports=["athletics"])


@pytest.fixture
def make_record():
    """Factory for assessment records; `day` offsets submission time from a fixed base."""
    def _make(
        score: float = 80,
        test_type: TestType = TestType.STRENGTH,
        record_id: str = "assess-1",
        athlete_id: str = "ath-1",
        day: int = 0,
    ) -> AssessmentRecord:
        return AssessmentRecord(
            id=record_id,
            athlete_id=athlete_id,
            test_type=test_type,
            raw_score=score,
            submitted_at=BASE_TIME + timedelta(days=day),
        )
    return _make


@pytest.fixture
def video():
    return make_submission()


@pytest.fixture
def store():
    return InMemoryAssessmentStore()


@pytest.fixture
def consent():
    return InMemoryConsentGate(granted=[("ath-1", ASSESSMENT_ANALYSIS)])


@pytest.fixture
def notifier():
    return LoggingNotifier()


@pytest.fixture
def progress():
    return ProgressRegistry(grace_s=60)


@pytest.fixture
def build_pipeline(store, consent, notifier, progress):
    """
    Factory for pipelines wired with in-memory collaborators.

    Integrity signals come from FixedSignalAnalyzer (default composite 88);
    pass `signal_analyzer` to use another analyzer.
    """
    def _build(
        signals=None,
        signal_analyzer=None,
        table=None,
        store_override=None,
        **context_overrides,
    ) -> AssessmentPipeline:
        video_analyzer = PrecomputedPoseAnalyzer()
        analyzer = signal_analyzer or FixedSignalAnalyzer(signals or make_signals())
        context = PipelineContext(
            video_analyzer=video_analyzer,
            integrity=IntegrityEvaluator(analyzer, video_analyzer, config=IntegrityConfig()),
            movement=MovementEvaluator(video_analyzer),
            benchmark=BenchmarkEngine(table or BenchmarkTable()),
            store=store if store_override is None else store_override,
            consent=consent,
            notifier=notifier,
            progress=progress,
            sleep=lambda seconds: None,
        )
        for name, value in context_overrides.items():
            setattr(context, name, value)
        return AssessmentPipeline(context)
    return _build


@pytest.fixture
def sql_session_factory():
    """Session factory bound to a fresh in-memory SQLite database with all tables."""
    from sqlalchemy import create_engine
    from sqlalchemy.orm import sessionmaker
    from sqlalchemy.pool import StaticPool

    import models  # noqa: F401  (registers tables on Base)
    from core.database import Base

    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)
    Base.metadata.drop_all(bind=engine)
    engine.dispose()
