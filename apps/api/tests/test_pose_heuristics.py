"""
Tests for the deterministic pose-heuristic analyzers.

Each test starts from the clean synthetic video and introduces exactly one
anomaly (duplicated frames, a cut, editing-software metadata, a second
person, a virtual background, a swapped body) to check the signal that
should notice it.
"""
from dataclasses import replace

import pytest

from core.exceptions import AnalyzerFailure
from services.assessment_types import TestType
from services.video_analysis.models import (
    SuspiciousElementType,
    TamperingType,
    TimelapseManipulation,
    VideoFrame,
)
from services.video_analysis.pose_heuristics import (
    PoseHeuristicIntegrityAnalyzer,
    PrecomputedPoseAnalyzer,
    duration_authenticity,
)

from fixtures.video_fixtures import elbow_angle_at, make_captured, make_frames, make_pose, make_submission


@pytest.fixture
def analyzer():
    return PoseHeuristicIntegrityAnalyzer(tampering_threshold=0.7)


def _captured(frames=None, **kwargs):
    return make_captured(make_submission(frames=frames, **kwargs))


def _without(frames, start, end):
    """Drop frames[start:end] to simulate a cut."""
    return frames[:start] + frames[end:]


class TestPrecomputedPoseAnalyzer:

    def test_extract_orders_frames_by_timestamp(self):
        frames = make_frames(duration_s=1)
        captured = PrecomputedPoseAnalyzer().capture(make_submission(frames=list(reversed(frames))))
        assert [f.index for f in captured.frames] == list(range(30))
        assert len(captured.poses) == 30

    def test_frames_without_pose_are_skipped(self):
        frames = make_frames(duration_s=1, with_poses=False)
        captured = PrecomputedPoseAnalyzer().capture(make_submission(frames=frames))
        assert captured.poses == ()

    def test_video_without_frames_fails_upload(self):
        with pytest.raises(AnalyzerFailure) as exc_info:
            PrecomputedPoseAnalyzer().extract(make_submission(frames=[], video_id="empty"))
        assert exc_info.value.stage == "upload"
        assert str(exc_info.value) == "video empty has no decoded frames"


class TestTampering:
    """Frame continuity, pixel, compression and metadata checks"""

    def test_clean_video(self, analyzer):
        signal = analyzer.analyze_tampering(make_captured())
        assert signal.score == 100
        assert not signal.tampering_detected
        assert signal.tampering_type is None
        assert signal.confidence == 0

    def test_duplicated_frames(self, analyzer):
        """20 of 60 frames repeat their predecessor"""
        frames = make_frames(duration_s=2)
        frames = [replace(f, checksum="frame-0") if 1 <= f.index <= 20 else f for f in frames]

        signal = analyzer.analyze_tampering(_captured(frames))

        assert signal.tampering_detected
        assert signal.tampering_type == TamperingType.FRAME_DUPLICATION
        assert signal.frame_continuity < 80
        assert signal.suspicious_frames == list(range(1, 21))

    def test_cut_is_reported_as_splice(self):
        """One missing second; a zero threshold surfaces the small anomaly"""
        frames = _without(make_frames(), 100, 130)
        signal = PoseHeuristicIntegrityAnalyzer(tampering_threshold=0.0).analyze_tampering(_captured(frames))
        assert signal.tampering_detected
        assert signal.tampering_type == TamperingType.SPLICE
        assert signal.suspicious_frames == [130]

    def test_background_jump_is_overlay(self, analyzer):
        frames = [replace(f, background=0.9) if f.index >= 150 else f for f in make_frames()]
        signal = analyzer.analyze_tampering(_captured(frames))
        assert signal.pixel_integrity < 100
        # one jump in 300 frames stays below every alarm
        assert not signal.tampering_detected

        zero = PoseHeuristicIntegrityAnalyzer(tampering_threshold=0.0).analyze_tampering(_captured(frames))
        assert zero.tampering_type == TamperingType.OVERLAY

    def test_editing_software_in_metadata(self, analyzer):
        signal = analyzer.analyze_tampering(_captured(metadata={"software": "Adobe Premiere Pro 2024"}))
        assert signal.metadata_integrity == 60
        assert signal.tampering_detected
        assert signal.tampering_type == TamperingType.SPEED_MANIPULATION

    def test_declared_duration_mismatch(self, analyzer):
        signal = analyzer.analyze_tampering(_captured(duration_s=20.0))
        assert signal.metadata_integrity == 70

    def test_mixed_resolutions(self, analyzer):
        frames = [replace(f, width=1280, height=720) if f.index >= 150 else f for f in make_frames()]
        signal = analyzer.analyze_tampering(_captured(frames))
        assert signal.compression_integrity == 60
        assert signal.tampering_detected


class TestMovementValidity:

    def test_clean_video_has_no_movement_issues(self, analyzer):
        signal = analyzer.analyze_movement(make_captured(), TestType.STRENGTH)
        assert signal.exercise_compliance == pytest.approx(87.0)
        assert signal.movement_quality == 100
        assert signal.detected_issues == []


class TestEnvironment:

    def test_stable_scene(self, analyzer):
        signal = analyzer.analyze_environment(make_captured())
        assert signal.score == 100
        assert signal.suspicious_elements == []

    def test_virtual_background_flagged_as_green_screen(self, analyzer):
        signal = analyzer.analyze_environment(_captured(metadata={"virtual_background": True}))
        assert [e.type for e in signal.suspicious_elements] == [SuspiciousElementType.GREEN_SCREEN]
        assert signal.authenticity == 85

    def test_flickering_light(self, analyzer):
        frames = [replace(f, brightness=0.3 if f.index % 2 else 0.9) for f in make_frames()]
        signal = analyzer.analyze_environment(_captured(frames))
        assert signal.lighting_consistency < 70
        assert SuspiciousElementType.LIGHTING_MISMATCH in [e.type for e in signal.suspicious_elements]


class TestBiometrics:

    def test_single_consistent_athlete(self, analyzer, athlete):
        signal = analyzer.analyze_biometrics(make_captured(), athlete)
        assert signal.identity_confidence == pytest.approx(100)
        assert not signal.multiple_persons_detected
        assert not signal.suspicious_identity_changes

    def test_second_person_in_frame(self, analyzer, athlete):
        captured = make_captured(make_submission(frames=make_frames(person_count=2)))
        assert analyzer.analyze_biometrics(captured, athlete).multiple_persons_detected

    def test_body_swap_halfway(self, analyzer, athlete):
        """Forearms twice as long in the second half of the clip"""
        frames = []
        for i in range(300):
            ts = i * 1000.0 / 30
            pose = make_pose(ts, elbow_angle_at(ts / 1000.0), arm_scale=2.0 if i >= 150 else 1.0)
            frames.append(VideoFrame(index=i, timestamp_ms=ts, checksum=f"frame-{i}", pose=pose))

        signal = analyzer.analyze_biometrics(_captured(frames), athlete)

        assert signal.suspicious_identity_changes
        assert signal.body_proportion_consistency < 100

    def test_no_poses_fails(self, analyzer, athlete):
        captured = _captured(make_frames(with_poses=False))
        with pytest.raises(AnalyzerFailure):
            analyzer.analyze_biometrics(captured, athlete)


class TestTemporal:
    """Cadence, cuts and recording length"""

    @pytest.mark.parametrize("test_type,duration,expected", [
        (TestType.STRENGTH, 60, 100),
        (TestType.STRENGTH, 15, 60),
        (TestType.STRENGTH, 0, 40),
        (TestType.STRENGTH, 240, 40),
        (TestType.SPEED, 10, 100),
        (TestType.SPEED, 45, 60),
    ])
    def test_duration_authenticity(self, test_type, duration, expected):
        assert duration_authenticity(duration, test_type) == pytest.approx(expected)

    def test_regular_cadence(self, analyzer):
        signal = analyzer.analyze_temporal(make_captured(), TestType.STRENGTH)
        assert signal.timestamp_validation == 100
        assert signal.speed_consistency == 100
        assert not signal.frame_rate_anomalies
        assert signal.suspicious_timelapses == []

    def test_cut_reported_as_skip(self, analyzer):
        frames = _without(make_frames(), 100, 130)
        signal = analyzer.analyze_temporal(_captured(frames), TestType.STRENGTH)

        assert len(signal.suspicious_timelapses) == 1
        lapse = signal.suspicious_timelapses[0]
        assert lapse.manipulation == TimelapseManipulation.SKIP
        assert lapse.start_s == pytest.approx(3.3)
        assert lapse.end_s == pytest.approx(130 / 30)

    def test_wrong_declared_frame_rate(self, analyzer):
        captured = _captured(make_frames(fps=30), fps=60)
        assert analyzer.analyze_temporal(captured, TestType.STRENGTH).frame_rate_anomalies

    def test_single_frame_fails(self, analyzer):
        with pytest.raises(AnalyzerFailure):
            analyzer.analyze_temporal(_captured(make_frames(duration_s=1 / 30)), TestType.STRENGTH)
