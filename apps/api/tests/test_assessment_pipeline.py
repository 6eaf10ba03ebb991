"""
Tests for the assessment evaluation pipeline.

Pipelines are wired by the `build_pipeline` fixture (conftest.py) with
in-memory collaborators and FixedSignalAnalyzer, so each test controls the
integrity composite directly and inspects store, consent log, progress
registry and notifier afterwards.
"""
from unittest.mock import MagicMock

import pytest

from core.events import EVENT_ASSESSMENT_EVALUATED, EVENT_ASSESSMENT_FAILED, subscribe, unsubscribe
from core.exceptions import AssessmentNotFound, ConsentDenied, NotificationFailure, PersistenceFailure, PipelineCancelled
from services.assessment_consent import INTEGRITY_ACCESS_TYPE
from services.assessment_pipeline import (
    AssessmentRequest,
    CancellationToken,
    ProcessingOptions,
    ProcessingStatus,
    StageStatus,
    recent_trends,
)
from services.assessment_store import AssessmentStore
from services.assessment_types import Athlete, Gender, TestType
from services.benchmarking import PerformanceTier
from services.feedback_synthesizer import OverallStatus
from services.progress_tracker import PipelineStage
from services.recruitment_notifier import RecruitmentNotifier

from fixtures.video_fixtures import EXAMPLE_ANCHORS, FixedCurveTable, FixedSignalAnalyzer, make_captured, make_signals, make_submission


class TestSingleRun:
    """End-to-end runs on the synthetic video"""

    def test_clean_excellent_assessment(self, build_pipeline, athlete, make_record, video, store):
        """Integrity 88, score 92 on the fixed curve: approved, excellent"""
        pipeline = build_pipeline(table=FixedCurveTable(EXAMPLE_ANCHORS))

        evaluation = pipeline.run(athlete, make_record(92), video)

        assert evaluation.processing_status == ProcessingStatus.COMPLETE
        assert evaluation.error_details == []
        assert evaluation.integrity_verdict.integrity_score == 88
        assert evaluation.integrity_verdict.approved
        assert evaluation.performance_verdict.tier == PerformanceTier.EXCELLENT
        assert evaluation.movement_analysis.repetitions.detected == 10
        assert evaluation.composite.overall_status == OverallStatus.APPROVED
        assert store.get("assess-1").overall_status == "approved"

    def test_low_integrity_rejects_top_score_without_notifying(self, build_pipeline, athlete, make_record, video,
                                                               notifier):
        pipeline = build_pipeline(signals=make_signals(50), table=FixedCurveTable(EXAMPLE_ANCHORS))

        evaluation = pipeline.run(athlete, make_record(99), video, ProcessingOptions(notify=True))

        assert evaluation.composite.overall_status == OverallStatus.REJECTED
        assert evaluation.integrity_verdict.risk_level.value == "critical"
        assert not evaluation.notified
        assert notifier.sent == []

    def test_improvement_from_stored_history(self, build_pipeline, athlete, make_record, video):
        """Second strength assessment: 70 then 85"""
        pipeline = build_pipeline()
        pipeline.run(athlete, make_record(70, record_id="a-1", day=0), video)

        evaluation = pipeline.run(athlete, make_record(85, record_id="a-2", day=7), video)

        assert evaluation.performance_verdict.improvement == 15
        assert evaluation.performance_verdict.trend.value == "stable"

    def test_explicit_history_overrides_store(self, build_pipeline, athlete, make_record, video):
        pipeline = build_pipeline()
        pipeline.run(athlete, make_record(70, record_id="a-1", day=0), video)

        evaluation = pipeline.run(athlete, make_record(85, record_id="a-2", day=7), video, history=[])

        assert evaluation.performance_verdict.improvement == 0

    def test_history_can_be_disabled(self, build_pipeline, athlete, make_record, video):
        pipeline = build_pipeline()
        pipeline.run(athlete, make_record(70, record_id="a-1", day=0), video)

        evaluation = pipeline.run(athlete, make_record(85, record_id="a-2", day=7), video,
                                  ProcessingOptions(include_history=False))

        assert evaluation.performance_verdict.improvement == 0

    def test_accepts_captured_video(self, build_pipeline, athlete, make_record):
        evaluation = build_pipeline().run(athlete, make_record(), make_captured())
        assert evaluation.processing_status == ProcessingStatus.COMPLETE

    def test_integrity_access_logged(self, build_pipeline, athlete, make_record, video, consent):
        build_pipeline().run(athlete, make_record(), video)

        assert len(consent.access_log) == 1
        entry = consent.access_log[0]
        assert entry.access_type == INTEGRITY_ACCESS_TYPE
        assert entry.data_types == ["video", "movement_patterns"]
        assert entry.success

    def test_pose_heuristics_end_to_end(self, build_pipeline, athlete, make_record, video):
        """Default analyzers on the clean synthetic video approve it"""
        from services.movement_evaluator import MovementEvaluator
        from services.video_analysis.pose_heuristics import PoseHeuristicIntegrityAnalyzer

        pipeline = build_pipeline(signal_analyzer=PoseHeuristicIntegrityAnalyzer(MovementEvaluator()))
        evaluation = pipeline.run(athlete, make_record(80), video)

        verdict = evaluation.integrity_verdict
        assert verdict.approved
        assert verdict.flagged_reasons == []
        assert 90 <= verdict.integrity_score <= 100


class TestPartialFailures:
    """Failing stages are recorded, the run goes on"""

    def test_failing_integrity_sub_analysis(self, build_pipeline, athlete, make_record, video, store, consent):
        pipeline = build_pipeline(signal_analyzer=FixedSignalAnalyzer(fail_on="tampering"))

        evaluation = pipeline.run(athlete, make_record(), video)

        assert evaluation.integrity.status == StageStatus.FAILED
        assert evaluation.movement.ok
        assert evaluation.performance.ok
        assert evaluation.processing_status == ProcessingStatus.PARTIAL
        assert evaluation.error_details == [
            "Integrity analysis: tampering analysis failed: tampering model unavailable"
        ]
        # feedback still produced from performance alone
        assert evaluation.composite.integrity.skipped
        assert store.get("assess-1").processing_status == "partial"
        assert consent.access_log[0].success is False

    def test_missing_video_fails_video_stages_only(self, build_pipeline, athlete, make_record):
        evaluation = build_pipeline().run(athlete, make_record(), None)

        assert evaluation.integrity.error == "no video submitted"
        assert evaluation.movement.error == "no video submitted"
        assert evaluation.performance.ok
        assert evaluation.processing_status == ProcessingStatus.PARTIAL
        assert evaluation.error_details == [
            "Integrity analysis: no video submitted",
            "Movement analysis: no video submitted",
        ]

    def test_undecodable_video(self, build_pipeline, athlete, make_record):
        evaluation = build_pipeline().run(athlete, make_record(), make_submission(frames=[]))
        assert evaluation.integrity.error == "frame extraction failed: video video-1 has no decoded frames"
        assert evaluation.movement.is_failed

    def test_failing_benchmark_engine(self, build_pipeline, athlete, make_record, video):
        benchmark = MagicMock()
        benchmark.evaluate.side_effect = RuntimeError("curve table unavailable")

        evaluation = build_pipeline(benchmark=benchmark).run(athlete, make_record(), video)

        assert evaluation.error_details == ["Performance analysis: curve table unavailable"]
        assert evaluation.processing_status == ProcessingStatus.PARTIAL
        assert evaluation.composite is not None

    def test_nothing_succeeds(self, build_pipeline, athlete, make_record):
        options = ProcessingOptions(enable_performance=False)
        evaluation = build_pipeline().run(athlete, make_record(), None, options)

        assert evaluation.performance.is_skipped
        assert evaluation.processing_status == ProcessingStatus.FAILED
        assert evaluation.composite is None


class TestOptions:

    def test_disabled_stages_are_skipped(self, build_pipeline, athlete, make_record, consent):
        options = ProcessingOptions(enable_integrity=False, enable_movement=False)
        evaluation = build_pipeline().run(athlete, make_record(), None, options)

        assert evaluation.integrity.is_skipped
        assert evaluation.integrity.reason == "integrity analysis disabled"
        assert evaluation.movement.is_skipped
        assert evaluation.processing_status == ProcessingStatus.COMPLETE
        assert evaluation.composite.integrity.skipped
        assert consent.access_log == []

    def test_all_analytic_stages_disabled_is_failed(self, build_pipeline, athlete, make_record, video, store):
        options = ProcessingOptions(enable_integrity=False, enable_movement=False, enable_performance=False)
        evaluation = build_pipeline().run(athlete, make_record(), video, options)

        assert evaluation.processing_status == ProcessingStatus.FAILED
        assert evaluation.composite is None
        assert evaluation.error_details == ["No analysis stage enabled"]
        assert store.get("assess-1").processing_status == "failed"

    def test_feedback_disabled(self, build_pipeline, athlete, make_record, video):
        evaluation = build_pipeline().run(athlete, make_record(), video, ProcessingOptions(enable_feedback=False))
        assert evaluation.composite is None
        assert evaluation.processing_status == ProcessingStatus.COMPLETE


class TestConsentAndCancellation:

    def test_no_consent_blocks_before_analysis(self, build_pipeline, make_record, video, store, progress):
        analyzer = FixedSignalAnalyzer()
        stranger = Athlete(id="ath-2", name="No Consent", age=20, gender=Gender.MALE)

        with pytest.raises(ConsentDenied):
            build_pipeline(signal_analyzer=analyzer).run(
                stranger, make_record(athlete_id="ath-2"), video, run_id="run-1"
            )

        assert analyzer.calls == []
        assert len(store) == 0
        assert progress.get("run-1").stage == PipelineStage.ERROR

    def test_revoked_consent_blocks_next_run(self, build_pipeline, athlete, make_record, video, consent):
        pipeline = build_pipeline()
        pipeline.run(athlete, make_record(record_id="a-1"), video)
        consent.revoke("ath-1", "assessment_analysis")

        with pytest.raises(ConsentDenied):
            pipeline.run(athlete, make_record(record_id="a-2"), video)

    def test_cancel_before_start(self, build_pipeline, athlete, make_record, video, store):
        token = CancellationToken()
        token.cancel()

        with pytest.raises(PipelineCancelled) as exc_info:
            build_pipeline().run(athlete, make_record(), video, cancel_token=token)

        assert exc_info.value.stage == "upload"
        assert len(store) == 0

    def test_cancel_between_stages(self, build_pipeline, athlete, make_record, video, store, progress):
        """Cancelled once integrity starts: stops before movement, keeps last percent"""
        token = CancellationToken()

        def observer(p):
            if p.stage == PipelineStage.INTEGRITY:
                token.cancel("cancelled by athlete")

        with pytest.raises(PipelineCancelled) as exc_info:
            build_pipeline().run(athlete, make_record(), video, observer=observer, cancel_token=token,
                                 run_id="run-c")

        assert exc_info.value.stage == "movement"
        assert len(store) == 0
        last = progress.get("run-c")
        assert last.stage == PipelineStage.ERROR
        assert last.percent == 25


class TestPersistence:

    def test_store_failure_carries_evaluation(self, build_pipeline, athlete, make_record, video, progress):
        failing = MagicMock(spec=AssessmentStore)
        failing.list_by_athlete.return_value = []
        failing.put.side_effect = RuntimeError("disk full")

        with pytest.raises(PersistenceFailure) as exc_info:
            build_pipeline(store_override=failing).run(athlete, make_record(), video, run_id="run-p")

        assert exc_info.value.evaluation is not None
        assert exc_info.value.evaluation.composite.overall_status == OverallStatus.APPROVED
        assert progress.get("run-p").message == "Storage failed: disk full"

    def test_rerun_overwrites_result(self, build_pipeline, athlete, make_record, video, store):
        pipeline = build_pipeline()
        pipeline.run(athlete, make_record(80), video)
        pipeline.run(athlete, make_record(90), video)

        assert len(store) == 1
        assert store.get("assess-1").record.raw_score == 90


class TestNotification:
    """Recruitment alert quorum"""

    def test_three_of_four_conditions_notify(self, build_pipeline, athlete, make_record, video, notifier):
        """Score 99, 95.5th percentile, approved integrity; confidence only medium"""
        evaluation = build_pipeline().run(athlete, make_record(99), video, ProcessingOptions(notify=True))

        assert evaluation.performance_verdict.percentile == pytest.approx(95.5)
        assert evaluation.notified
        assert len(notifier.sent) == 1
        alert = notifier.sent[0]
        assert alert["athlete_id"] == "ath-1"
        assert alert["sport"] == "athletics"
        assert alert["severity"] == "medium"
        assert len(alert["highlights"]) <= 3

    def test_two_conditions_do_not_notify(self, build_pipeline, athlete, make_record, video, notifier):
        pipeline = build_pipeline(table=FixedCurveTable(EXAMPLE_ANCHORS))
        evaluation = pipeline.run(athlete, make_record(92), video, ProcessingOptions(notify=True))

        assert pipeline.notification_conditions(evaluation) == [True, False, True, False]
        assert not evaluation.notified
        assert notifier.sent == []

    def test_notification_requires_opt_in(self, build_pipeline, athlete, make_record, video, notifier):
        build_pipeline().run(athlete, make_record(99), video)
        assert notifier.sent == []

    def test_notifier_failure_does_not_fail_run(self, build_pipeline, athlete, make_record, video, store):
        failing = MagicMock(spec=RecruitmentNotifier)
        failing.notify.side_effect = NotificationFailure("HTTP 500")

        evaluation = build_pipeline(notifier=failing).run(
            athlete, make_record(99), video, ProcessingOptions(notify=True)
        )

        failing.notify.assert_called_once()
        assert not evaluation.notified
        assert evaluation.processing_status == ProcessingStatus.COMPLETE
        assert store.get("assess-1") is not None


class TestProgress:

    def test_stage_sequence_and_percentages(self, build_pipeline, athlete, make_record, video, progress):
        events = []
        build_pipeline().run(athlete, make_record(), video, observer=events.append, run_id="run-1")

        assert [e.stage for e in events] == [
            PipelineStage.UPLOAD,
            PipelineStage.INTEGRITY,
            PipelineStage.MOVEMENT,
            PipelineStage.PERFORMANCE,
            PipelineStage.FEEDBACK,
            PipelineStage.STORAGE,
            PipelineStage.COMPLETE,
        ]
        assert [e.percent for e in events] == [10, 25, 45, 65, 80, 90, 100]
        assert progress.get("run-1").terminal

    def test_notification_stage_reported_when_sending(self, build_pipeline, athlete, make_record, video):
        events = []
        build_pipeline().run(athlete, make_record(99), video, ProcessingOptions(notify=True), observer=events.append)
        assert PipelineStage.NOTIFICATION in [e.stage for e in events]
        assert events[-1].percent == 100

    def test_failing_observer_ignored(self, build_pipeline, athlete, make_record, video):
        def observer(p):
            raise RuntimeError("socket closed")

        evaluation = build_pipeline().run(athlete, make_record(), video, observer=observer)
        assert evaluation.processing_status == ProcessingStatus.COMPLETE


class TestBatch:

    def test_batch_keeps_order_and_reports_failures(self, build_pipeline, athlete, make_record):
        sleep = MagicMock()
        pipeline = build_pipeline(sleep=sleep, batch_concurrency=2, batch_delay_s=0.5)
        stranger = Athlete(id="ath-2", name="No Consent", age=20, gender=Gender.MALE)
        requests = [
            AssessmentRequest(athlete, make_record(record_id="b-0"), make_submission()),
            AssessmentRequest(stranger, make_record(record_id="b-1", athlete_id="ath-2"), make_submission()),
            AssessmentRequest(athlete, make_record(record_id="b-2", day=1), make_submission()),
        ]

        outcomes = pipeline.run_batch(requests)

        assert [o.assessment_id for o in outcomes] == ["b-0", "b-1", "b-2"]
        assert [o.ok for o in outcomes] == [True, False, True]
        assert outcomes[1].error == "Athlete ath-2 has not provided consent for assessment_analysis"
        sleep.assert_called_once_with(0.5)

    def test_single_batch_does_not_sleep(self, build_pipeline, athlete, make_record):
        sleep = MagicMock()
        pipeline = build_pipeline(sleep=sleep, batch_concurrency=5)
        pipeline.run_batch([AssessmentRequest(athlete, make_record(), make_submission())])
        sleep.assert_not_called()


class TestStoredResults:

    def test_list_results_newest_first(self, build_pipeline, athlete, make_record, video):
        pipeline = build_pipeline()
        for day in (0, 14, 7):
            pipeline.run(athlete, make_record(record_id=f"a-{day}", day=day), video)

        assert [s.assessment_id for s in pipeline.list_results("ath-1")] == ["a-14", "a-7", "a-0"]
        assert pipeline.list_results("nobody") == []

    def test_reprocess_overwrites(self, build_pipeline, athlete, make_record, video, store):
        pipeline = build_pipeline()
        first = pipeline.run(athlete, make_record(80), video)

        again = pipeline.reprocess("assess-1", video)

        assert len(store) == 1
        assert again.record == first.record
        assert again.athlete.id == "ath-1"
        assert store.get("assess-1").processed_at == again.processed_at

    def test_reprocess_without_video_fails_video_stages(self, build_pipeline, athlete, make_record, video):
        pipeline = build_pipeline()
        pipeline.run(athlete, make_record(80), video)

        again = pipeline.reprocess("assess-1")

        assert again.processing_status == ProcessingStatus.PARTIAL
        assert pipeline.get_result("assess-1").processing_status == "partial"

    def test_reprocess_older_assessment_ignores_later_results(self, build_pipeline, athlete, make_record, video):
        pipeline = build_pipeline()
        pipeline.run(athlete, make_record(70, record_id="a-1", day=0), video)
        pipeline.run(athlete, make_record(85, record_id="a-2", day=7), video)

        again = pipeline.reprocess("a-1", video)

        assert again.performance_verdict.improvement == 0
        assert not any(a.message.startswith("Performance declined") for a in again.composite.alerts)

    def test_out_of_order_runs_use_earlier_history_only(self, build_pipeline, athlete, make_record, video):
        pipeline = build_pipeline()
        later = pipeline.run(athlete, make_record(85, record_id="a-2", day=7), video)
        earlier = pipeline.run(athlete, make_record(70, record_id="a-1", day=0), video)

        assert later.performance_verdict.improvement == 0
        assert earlier.performance_verdict.improvement == 0
        assert pipeline.reprocess("a-2", video).performance_verdict.improvement == 15

    def test_reprocess_unknown_assessment(self, build_pipeline):
        with pytest.raises(AssessmentNotFound):
            build_pipeline().reprocess("missing")

    def test_athlete_insights(self, build_pipeline, athlete, make_record, video):
        clean = build_pipeline(signals=make_signals(88))
        suspicious = build_pipeline(signals=make_signals(50))
        clean.run(athlete, make_record(90, record_id="a-1", day=0), video)
        suspicious.run(athlete, make_record(70, record_id="a-2", day=7), video)

        insights = clean.athlete_insights("ath-1")

        assert insights.total_assessments == 2
        assert insights.completed_analyses == 2
        assert insights.integrity_pass_rate == 50.0
        assert [p["assessment_id"] for p in insights.top_performances] == ["a-1", "a-2"]
        assert insights.recent_trends == [{"test_type": "strength", "trend": "stable", "change_percent": 0.0}]

    def test_insights_for_unknown_athlete(self, build_pipeline):
        insights = build_pipeline().athlete_insights("nobody")
        assert insights.total_assessments == 0
        assert insights.integrity_pass_rate == 100.0
        assert insights.top_performances == []


class TestRecentTrends:
    """Last three scores against the three before them"""

    def test_improving(self, make_record):
        records = [make_record(s, record_id=f"r-{i}", day=i) for i, s in enumerate([60, 60, 60, 70, 70, 70])]
        assert recent_trends(records) == [{"test_type": "strength", "trend": "improving", "change_percent": 16.7}]

    def test_declining_reports_absolute_change(self, make_record):
        records = [make_record(s, record_id=f"r-{i}", day=i) for i, s in enumerate([80, 80, 80, 70, 70, 70])]
        assert recent_trends(records) == [{"test_type": "strength", "trend": "declining", "change_percent": 12.5}]

    def test_small_change_is_stable(self, make_record):
        records = [make_record(s, record_id=f"r-{i}", day=i) for i, s in enumerate([80, 80, 80, 82, 82, 82])]
        assert recent_trends(records)[0]["trend"] == "stable"

    def test_one_entry_per_test_type(self, make_record):
        records = [
            make_record(70, record_id="s-1", day=0),
            make_record(50, test_type=TestType.SPEED, record_id="v-1", day=1),
        ]
        assert [t["test_type"] for t in recent_trends(records)] == ["strength", "speed"]


class TestEvents:

    def test_evaluated_event(self, build_pipeline, athlete, make_record, video):
        received = []

        def handler(**kwargs):
            received.append(kwargs)

        subscribe(EVENT_ASSESSMENT_EVALUATED, handler)
        try:
            build_pipeline().run(athlete, make_record(), video)
        finally:
            unsubscribe(EVENT_ASSESSMENT_EVALUATED, handler)

        assert received == [{
            "assessment_id": "assess-1",
            "athlete_id": "ath-1",
            "processing_status": "complete",
            "overall_status": "approved",
        }]

    def test_failed_event_on_consent_denied(self, build_pipeline, make_record, video):
        received = []

        def handler(**kwargs):
            received.append(kwargs)

        stranger = Athlete(id="ath-2", name="No Consent", age=20)
        subscribe(EVENT_ASSESSMENT_FAILED, handler)
        try:
            with pytest.raises(ConsentDenied):
                build_pipeline().run(stranger, make_record(athlete_id="ath-2"), video)
        finally:
            unsubscribe(EVENT_ASSESSMENT_FAILED, handler)

        assert received[0]["athlete_id"] == "ath-2"
