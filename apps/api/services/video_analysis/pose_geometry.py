"""
pose_geometry.py
Biomechanical measurements computed from pose keypoint sequences.

Coordinates are image coordinates (x right, y down), normalized or in
pixels; every measurement here is scale-free.
"""

from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from services.video_analysis.models import (
    BODY_KEYPOINTS,
    LEFT_ANKLE, LEFT_ELBOW, LEFT_HIP, LEFT_KNEE, LEFT_SHOULDER, LEFT_WRIST,
    RIGHT_ANKLE, RIGHT_ELBOW, RIGHT_HIP, RIGHT_KNEE, RIGHT_SHOULDER, RIGHT_WRIST,
    PoseFrame,
)

MIN_CONFIDENCE = 0.5

# joint -> (left triplet, right triplet); the angle is measured at the middle point
JOINT_TRIPLETS: Dict[str, Tuple[Tuple[str, str, str], Tuple[str, str, str]]] = {
    "knee": ((LEFT_HIP, LEFT_KNEE, LEFT_ANKLE), (RIGHT_HIP, RIGHT_KNEE, RIGHT_ANKLE)),
    "hip": ((LEFT_SHOULDER, LEFT_HIP, LEFT_KNEE), (RIGHT_SHOULDER, RIGHT_HIP, RIGHT_KNEE)),
    "elbow": ((LEFT_SHOULDER, LEFT_ELBOW, LEFT_WRIST), (RIGHT_SHOULDER, RIGHT_ELBOW, RIGHT_WRIST)),
    "shoulder": ((LEFT_HIP, LEFT_SHOULDER, LEFT_ELBOW), (RIGHT_HIP, RIGHT_SHOULDER, RIGHT_ELBOW)),
}

# Segments whose length ratios identify a body
PROPORTION_SEGMENTS: Tuple[Tuple[str, str], ...] = (
    (LEFT_SHOULDER, LEFT_ELBOW),
    (LEFT_ELBOW, LEFT_WRIST),
    (LEFT_HIP, LEFT_KNEE),
    (LEFT_KNEE, LEFT_ANKLE),
    (RIGHT_SHOULDER, RIGHT_ELBOW),
    (RIGHT_ELBOW, RIGHT_WRIST),
    (RIGHT_HIP, RIGHT_KNEE),
    (RIGHT_KNEE, RIGHT_ANKLE),
)


def point(pose: PoseFrame, name: str) -> Optional[np.ndarray]:
    kp = pose.get(name, MIN_CONFIDENCE)
    if kp is None:
        return None
    return np.array([kp.x, kp.y], dtype=float)


def midpoint(pose: PoseFrame, a: str, b: str) -> Optional[np.ndarray]:
    pa, pb = point(pose, a), point(pose, b)
    if pa is None or pb is None:
        return None
    return (pa + pb) / 2


def angle_between_points(p1: np.ndarray, p2: np.ndarray, p3: np.ndarray) -> float:
    """
    Calculate angle at p2 formed by p1-p2-p3.

    Returns:
        Angle in degrees
    """
    v1 = p1 - p2
    v2 = p3 - p2
    cos_angle = np.dot(v1, v2) / (np.linalg.norm(v1) * np.linalg.norm(v2) + 1e-8)
    cos_angle = np.clip(cos_angle, -1.0, 1.0)
    return float(np.degrees(np.arccos(cos_angle)))


def angle_from_vertical(p1: np.ndarray, p2: np.ndarray) -> float:
    """Angle of line p1->p2 from the vertical axis (0 = upright)."""
    dx = p2[0] - p1[0]
    dy = p2[1] - p1[1]
    return float(np.degrees(np.arctan2(dx, -dy)))


def joint_angle_series(poses: Sequence[PoseFrame], joint: str, side: int) -> np.ndarray:
    """Per-frame angle of one joint on one side (0 left, 1 right); NaN where not visible."""
    a, b, c = JOINT_TRIPLETS[joint][side]
    values = []
    for pose in poses:
        pa, pb, pc = point(pose, a), point(pose, b), point(pose, c)
        if pa is None or pb is None or pc is None:
            values.append(np.nan)
        else:
            values.append(angle_between_points(pa, pb, pc))
    return np.array(values, dtype=float)


def representative_joint_angle(poses: Sequence[PoseFrame], joint: str) -> Optional[float]:
    """Median angle of a joint over both sides and all frames."""
    both = np.concatenate([joint_angle_series(poses, joint, 0), joint_angle_series(poses, joint, 1)])
    both = both[~np.isnan(both)]
    if both.size == 0:
        return None
    return float(np.median(both))


def _range_of_motion(series: np.ndarray) -> float:
    valid = series[~np.isnan(series)]
    if valid.size < 2:
        return 0.0
    return float(valid.max() - valid.min())


def symmetry_profile(poses: Sequence[PoseFrame]) -> Tuple[float, float, float]:
    """
    (left_right, anterior_posterior, medial_lateral) symmetry, each in [0, 1].

    left_right: ratio of left/right range of motion for knees and elbows.
    anterior_posterior: steadiness of torso lean.
    medial_lateral: steadiness of the hip midpoint relative to shoulder width.
    """
    ratios = []
    for joint in ("knee", "elbow"):
        left = _range_of_motion(joint_angle_series(poses, joint, 0))
        right = _range_of_motion(joint_angle_series(poses, joint, 1))
        if max(left, right) > 1.0:
            ratios.append(min(left, right) / max(left, right))
    left_right = float(np.mean(ratios)) if ratios else 1.0

    leans = []
    sways = []
    widths = []
    for pose in poses:
        hips = midpoint(pose, LEFT_HIP, RIGHT_HIP)
        shoulders = midpoint(pose, LEFT_SHOULDER, RIGHT_SHOULDER)
        if hips is not None and shoulders is not None:
            leans.append(angle_from_vertical(hips, shoulders))
        if hips is not None:
            sways.append(hips[0])
        ls, rs = point(pose, LEFT_SHOULDER), point(pose, RIGHT_SHOULDER)
        if ls is not None and rs is not None:
            widths.append(float(np.linalg.norm(ls - rs)))

    anterior_posterior = float(np.clip(1 - np.std(leans) / 45.0, 0, 1)) if len(leans) > 1 else 1.0
    if len(sways) > 1 and widths and np.mean(widths) > 0:
        medial_lateral = float(np.clip(1 - np.std(sways) / np.mean(widths), 0, 1))
    else:
        medial_lateral = 1.0
    return left_right, anterior_posterior, medial_lateral


def centre_of_mass_track(poses: Sequence[PoseFrame]) -> Tuple[np.ndarray, np.ndarray]:
    """(timestamps_s, positions) of the hip midpoint for frames where it is visible."""
    times, positions = [], []
    for pose in poses:
        hips = midpoint(pose, LEFT_HIP, RIGHT_HIP)
        if hips is not None:
            times.append(pose.timestamp_ms / 1000.0)
            positions.append(hips)
    return np.array(times, dtype=float), np.array(positions, dtype=float).reshape(-1, 2)


def speed_profile(poses: Sequence[PoseFrame]) -> np.ndarray:
    times, positions = centre_of_mass_track(poses)
    if len(times) < 2:
        return np.array([], dtype=float)
    dt = np.diff(times)
    dt[dt <= 0] = np.nan
    step = np.linalg.norm(np.diff(positions, axis=0), axis=1)
    speeds = step / dt
    return speeds[~np.isnan(speeds)]


def velocity_smoothness(poses: Sequence[PoseFrame]) -> float:
    """1 for constant-speed motion, falling towards 0 as speed fluctuates."""
    speeds = speed_profile(poses)
    if speeds.size < 3:
        return 1.0
    mean_speed = float(np.mean(speeds))
    if mean_speed <= 1e-9:
        return 1.0
    jerkiness = float(np.mean(np.abs(np.diff(speeds)))) / mean_speed
    return float(np.clip(1 - jerkiness, 0, 1))


def peak_acceleration_ratio(poses: Sequence[PoseFrame]) -> float:
    """Largest speed change between consecutive samples relative to mean speed."""
    speeds = speed_profile(poses)
    if speeds.size < 3:
        return 0.0
    mean_speed = float(np.mean(speeds))
    if mean_speed <= 1e-9:
        return 0.0
    return float(np.max(np.abs(np.diff(speeds))) / mean_speed)


def repetition_times(series: np.ndarray, timestamps_s: np.ndarray, hysteresis: float = 10.0) -> List[float]:
    """
    Times at which a joint-angle signal completes a flex/extend cycle.

    A repetition is counted each time the signal drops below (mean - h)
    after having been above (mean + h).
    """
    mask = ~np.isnan(series)
    values, times = series[mask], timestamps_s[mask]
    if values.size < 3:
        return []
    centre = float(np.mean(values))
    high, low = centre + hysteresis, centre - hysteresis
    armed = False
    reps = []
    for value, t in zip(values, times):
        if value > high:
            armed = True
        elif value < low and armed:
            reps.append(float(t))
            armed = False
    return reps


def pace_consistency(rep_times: Sequence[float]) -> float:
    """1 - coefficient of variation of the intervals between repetitions."""
    if len(rep_times) < 3:
        return 1.0
    intervals = np.diff(np.array(rep_times, dtype=float))
    mean_interval = float(np.mean(intervals))
    if mean_interval <= 0:
        return 0.0
    return float(np.clip(1 - np.std(intervals) / mean_interval, 0, 1))


def keypoint_visibility(poses: Sequence[PoseFrame], min_confidence: float = 0.7) -> float:
    """Mean fraction of body keypoints visible with at least `min_confidence`."""
    if not poses:
        return 0.0
    fractions = [
        sum(1 for name in BODY_KEYPOINTS if pose.get(name, min_confidence) is not None) / len(BODY_KEYPOINTS)
        for pose in poses
    ]
    return float(np.mean(fractions))


def proportion_vector(pose: PoseFrame) -> Optional[np.ndarray]:
    """Segment lengths normalized by their sum; None if any segment is hidden."""
    lengths = []
    for a, b in PROPORTION_SEGMENTS:
        pa, pb = point(pose, a), point(pose, b)
        if pa is None or pb is None:
            return None
        lengths.append(float(np.linalg.norm(pa - pb)))
    total = sum(lengths)
    if total <= 0:
        return None
    return np.array(lengths) / total


def proportion_consistency(poses: Sequence[PoseFrame]) -> Optional[float]:
    """1 when body segment proportions are identical in every frame."""
    vectors = [v for v in (proportion_vector(p) for p in poses) if v is not None]
    if len(vectors) < 2:
        return None
    stacked = np.vstack(vectors)
    mean = stacked.mean(axis=0)
    cv = np.mean(stacked.std(axis=0) / np.where(mean > 0, mean, 1))
    return float(np.clip(1 - cv * 2, 0, 1))
