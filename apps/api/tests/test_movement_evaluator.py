"""
Tests for the movement/quality evaluator.

The synthetic athlete (see fixtures/video_fixtures.py) flexes both elbows
once per second for ten seconds with a static, upright body. That gives
ten clean repetitions, perfect symmetry and zero centre-of-mass movement,
so every score below can be worked out by hand.
"""
import pytest

from core.exceptions import AnalyzerFailure
from services.assessment_types import TestType
from services.movement_evaluator import (
    FormIssue,
    FormIssueType,
    JointAssessment,
    MovementEvaluator,
    PaceAnalysis,
    Severity,
    SymmetryAssessment,
    compute_technical_score,
    detect_form_issues,
    deviation_from_range,
    joint_quality,
    pace_recommendation,
    symmetry_flags,
)
from services.video_analysis.pose_heuristics import PrecomputedPoseAnalyzer

from fixtures.video_fixtures import make_captured, make_submission


def _pace(consistency=1.0):
    return PaceAnalysis(average_rep_duration_ms=3000, consistency=consistency, optimal_pace_ms=3000,
                        recommendation="Good pacing - maintain this tempo")


def _joint(quality):
    return JointAssessment(angle=120, optimal_range=(90, 160), deviation=0, quality=quality)


class TestJointRules:
    """Joint deviation and quality grading"""

    def test_inside_range_has_no_deviation(self):
        assert deviation_from_range(120, (90, 160)) == 0
        assert deviation_from_range(90, (90, 160)) == 0

    def test_outside_range_measures_distance_to_nearest_bound(self):
        assert deviation_from_range(70, (90, 160)) == 20
        assert deviation_from_range(175, (90, 160)) == 15

    @pytest.mark.parametrize("deviation,quality", [
        (0, "excellent"), (9.9, "excellent"), (10, "good"), (19, "good"), (25, "fair"), (30, "poor"),
    ])
    def test_quality_bands(self, deviation, quality):
        assert joint_quality(deviation) == quality


class TestTechnicalScore:
    """form / consistency / efficiency / overall"""

    def test_perfect_inputs_without_issues(self):
        """form (85+100)/2, consistency capped at 100 then halved"""
        score = compute_technical_score([], 100, 1.0, 1.0, 1.0, 1.0)
        assert score.form == pytest.approx(92.5)
        assert score.consistency == pytest.approx(50)
        assert score.efficiency == pytest.approx(100)
        assert score.overall == pytest.approx(81.25)

    def test_issue_deductions_by_severity(self):
        issues = [
            FormIssue(FormIssueType.TECHNIQUE, Severity.CRITICAL, "d", "s"),
            FormIssue(FormIssueType.POSTURE, Severity.MAJOR, "d", "s"),
            FormIssue(FormIssueType.TIMING, Severity.MINOR, "d", "s"),
        ]
        score = compute_technical_score(issues, 50, 0.5, 0.5, 0.5, 0.5)
        assert score.form == pytest.approx((85 - 35 + 50) / 2)
        assert score.consistency == pytest.approx(50)
        assert score.efficiency == pytest.approx(50)

    def test_scores_clamped_at_zero(self):
        issues = [FormIssue(FormIssueType.TECHNIQUE, Severity.CRITICAL, "d", "s")] * 10
        score = compute_technical_score(issues, 0, 0, 0, 0, 0)
        assert score.form == 0
        assert score.overall == 0


class TestFormIssues:
    """Threshold rules over measured biomechanics"""

    def _detect(self, ap=1.0, joints=None, pace=1.0, smoothness=1.0):
        symmetry = SymmetryAssessment(left_right=1.0, anterior_posterior=ap, medial_lateral=1.0)
        return detect_form_issues(TestType.STRENGTH, joints or {}, symmetry, _pace(pace), smoothness, 10.0)

    def test_clean_movement_has_no_issues(self):
        assert self._detect() == []

    def test_posture(self):
        assert [(i.type, i.severity) for i in self._detect(ap=0.5)] == [(FormIssueType.POSTURE, Severity.MAJOR)]
        assert [(i.type, i.severity) for i in self._detect(ap=0.7)] == [(FormIssueType.POSTURE, Severity.MINOR)]

    def test_range_of_motion_from_poor_joints(self):
        one = self._detect(joints={"knee": _joint("poor"), "hip": _joint("good")})
        two = self._detect(joints={"knee": _joint("poor"), "hip": _joint("poor")})
        assert [(i.type, i.severity) for i in one] == [(FormIssueType.RANGE_OF_MOTION, Severity.MINOR)]
        assert [(i.type, i.severity) for i in two] == [(FormIssueType.RANGE_OF_MOTION, Severity.MAJOR)]

    def test_timing(self):
        assert self._detect(pace=0.4)[0].severity == Severity.MAJOR
        assert self._detect(pace=0.6)[0].severity == Severity.MINOR

    def test_jerky_movement_is_critical_technique_issue(self):
        issues = self._detect(smoothness=0.2)
        assert issues[0].type == FormIssueType.TECHNIQUE
        assert issues[0].severity == Severity.CRITICAL
        assert issues[0].description == "Improper form detected"

    def test_issue_spans_whole_recording(self):
        issue = self._detect(ap=0.5)[0]
        assert (issue.start_s, issue.end_s) == (0.0, 10.0)


class TestHelpers:

    def test_symmetry_flags(self):
        assert symmetry_flags(1.0, 1.0, 1.0) == []
        assert symmetry_flags(0.7, 0.7, 0.8) == [
            "Left-right imbalance detected",
            "Forward-backward compensation",
            "Side-to-side deviation",
        ]

    def test_pace_recommendation(self):
        assert pace_recommendation(1000, 3000).startswith("Slow down")
        assert pace_recommendation(5000, 3000).startswith("Increase tempo")
        assert pace_recommendation(3000, 3000) == "Good pacing - maintain this tempo"


class TestMovementEvaluator:
    """End-to-end assessment of the synthetic strength video"""

    @pytest.fixture
    def analysis(self):
        return MovementEvaluator().assess(make_captured().poses, TestType.STRENGTH)

    def test_counts_one_repetition_per_elbow_cycle(self, analysis):
        assert analysis.repetitions.detected == 10
        assert analysis.repetitions.expected == 15
        assert analysis.pace.consistency == pytest.approx(1.0, abs=1e-6)

    def test_static_body_is_symmetric_and_smooth(self, analysis):
        assert analysis.symmetry.overall == pytest.approx(1.0)
        assert analysis.symmetry.flags == []
        assert analysis.smoothness == 1.0

    def test_joint_grading(self, analysis):
        """Hanging arms leave the shoulder far outside its optimal range"""
        assert analysis.joints["elbow"].quality == "excellent"
        assert analysis.joints["knee"].quality == "excellent"
        assert analysis.joints["hip"].quality == "good"
        assert analysis.joints["shoulder"].quality == "poor"

    def test_validity_scores(self, analysis):
        """bio quality (100 + 85 + 100 + 50) / 4 = 83.75"""
        assert analysis.exercise_compliance == pytest.approx(87.0)
        assert analysis.biomechanical_validity == pytest.approx(0.7 * 83.75 + 30)
        assert analysis.movement_quality == 100

    def test_one_poor_joint_is_minor_range_of_motion_issue(self, analysis):
        assert [(i.type, i.severity) for i in analysis.form_issues] == [
            (FormIssueType.RANGE_OF_MOTION, Severity.MINOR)
        ]
        assert analysis.weaknesses == []
        assert "Outstanding movement symmetry and balance" in analysis.strengths

    def test_scores_within_bounds(self, analysis):
        technical = analysis.technical_score
        for value in (technical.form, technical.consistency, technical.efficiency, technical.overall):
            assert 0 <= value <= 100

    def test_fast_reps_get_slow_down_advice(self, analysis):
        assert analysis.pace.recommendation.startswith("Slow down")

    def test_to_dict(self, analysis):
        data = analysis.to_dict()
        assert data["repetitions"]["detected"] == 10
        assert set(data["biomechanics"]["joint_angles"]) == {"knee", "hip", "elbow", "shoulder"}

    def test_evaluate_raw_submission_through_analyzer(self):
        analysis = MovementEvaluator(PrecomputedPoseAnalyzer()).evaluate(make_submission(), TestType.STRENGTH)
        assert analysis.repetitions.detected == 10

    def test_non_repetition_test_counts_single_effort(self):
        analysis = MovementEvaluator().assess(make_captured().poses, TestType.SPEED)
        assert (analysis.repetitions.detected, analysis.repetitions.expected) == (1, 1)

    def test_no_poses_fails_the_stage(self):
        with pytest.raises(AnalyzerFailure) as exc_info:
            MovementEvaluator().assess([], TestType.STRENGTH)
        assert exc_info.value.stage == "movement"
        assert str(exc_info.value) == "no pose frames detected"

    def test_raw_submission_without_analyzer_fails(self):
        with pytest.raises(AnalyzerFailure):
            MovementEvaluator().evaluate(make_submission(), TestType.STRENGTH)
