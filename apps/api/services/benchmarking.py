"""
Percentile Benchmark Engine

Maps a raw assessment score to a percentile rank inside a reference cohort,
derives the performance tier, the athlete's trend, and forward-looking
target scores.

Cohort curves:
    A cohort is (age group, gender, test type, optional sport). Each curve
    holds seven anchors {5, 25, 50, 75, 90, 95, 99} -> score, generated from
    parametric rules (test/gender base score, age-group adjustment, fixed
    anchor offsets). Curves are built once, lazily, by BenchmarkTable and
    are read-only afterwards. The table is injected, never a module global,
    so concurrent test runs do not share state.

Percentile:
    Piecewise-linear interpolation between bracketing anchors.
    Below the 5th anchor:    p = max(1, 5 * s / v5)
    At/above the 99th anchor: p = 99
    Monotone non-decreasing in score for any valid curve.

Tier ladder (ties toward the higher tier):
    >=99 world_class, >=95 elite, >=90 excellent, >=75 above_average,
    >=50 average, >=25 below_average, else needs_improvement

Trend:
    Last three prior same-test scores, oldest first. Deltas > +1 count as
    up, < -1 as down. More ups -> improving, more downs -> declining,
    otherwise stable. Fewer than two points -> stable.

Target difficulty:
    Gap between target and current score as a fraction of the current
    score: <=10% easy, <=25% moderate, else challenging.
"""

import logging
import math
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from services.assessment_types import Athlete, AssessmentRecord, Gender, TestType

logger = logging.getLogger(__name__)


PERCENTILE_ANCHORS: Tuple[int, ...] = (5, 25, 50, 75, 90, 95, 99)

# Anchor score relative to the cohort median
ANCHOR_OFFSETS: Dict[int, float] = {
    5: -20,
    25: -10,
    50: 0,
    75: 8,
    90: 15,
    95: 20,
    99: 28,
}

# Median score per test type and gender for the 19-21 reference group
BASE_SCORES: Dict[TestType, Dict[str, float]] = {
    TestType.SPEED: {"male": 75, "female": 70},
    TestType.AGILITY: {"male": 72, "female": 74},
    TestType.STRENGTH: {"male": 78, "female": 70},
    TestType.ENDURANCE: {"male": 70, "female": 72},
    TestType.FLEXIBILITY: {"male": 65, "female": 75},
    TestType.BALANCE: {"male": 70, "female": 73},
}

AGE_ADJUSTMENTS: Dict[str, float] = {
    "14-15": -8,
    "16-18": -3,
    "19-21": 0,
    "22-24": 2,
    "25-27": 1,
    "28-30": -1,
    "31+": -5,
    "national": 5,
    "international": 8,
}

DEFAULT_AGE_GROUP = "19-21"
NATIONAL = "national"
INTERNATIONAL = "international"

SAMPLE_SIZES = {
    NATIONAL: 10000,
    INTERNATIONAL: 50000,
}
DEFAULT_SAMPLE_SIZE = 1000


class PerformanceTier(str, Enum):
    WORLD_CLASS = "world_class"
    ELITE = "elite"
    EXCELLENT = "excellent"
    ABOVE_AVERAGE = "above_average"
    AVERAGE = "average"
    BELOW_AVERAGE = "below_average"
    NEEDS_IMPROVEMENT = "needs_improvement"


class OverallRating(str, Enum):
    OUTSTANDING = "outstanding"
    EXCELLENT = "excellent"
    GOOD = "good"
    FAIR = "fair"
    NEEDS_IMPROVEMENT = "needs_improvement"


class Trend(str, Enum):
    IMPROVING = "improving"
    STABLE = "stable"
    DECLINING = "declining"


class Difficulty(str, Enum):
    EASY = "easy"
    MODERATE = "moderate"
    CHALLENGING = "challenging"


class DevelopmentStage(str, Enum):
    YOUTH = "youth"
    JUNIOR = "junior"
    SENIOR = "senior"
    VETERAN = "veteran"


TIER_LADDER: Tuple[Tuple[float, PerformanceTier], ...] = (
    (99, PerformanceTier.WORLD_CLASS),
    (95, PerformanceTier.ELITE),
    (90, PerformanceTier.EXCELLENT),
    (75, PerformanceTier.ABOVE_AVERAGE),
    (50, PerformanceTier.AVERAGE),
    (25, PerformanceTier.BELOW_AVERAGE),
)

RATING_LADDER: Tuple[Tuple[float, OverallRating], ...] = (
    (95, OverallRating.OUTSTANDING),
    (90, OverallRating.EXCELLENT),
    (75, OverallRating.GOOD),
    (50, OverallRating.FAIR),
)


@dataclass(frozen=True)
class AgeGroup:
    label: str
    min_age: int
    max_age: int
    stage: DevelopmentStage
    characteristics: Tuple[str, ...] = ()

    def contains(self, age: int) -> bool:
        return self.min_age <= age <= self.max_age


AGE_GROUPS: Tuple[AgeGroup, ...] = (
    AgeGroup("14-15", 14, 15, DevelopmentStage.YOUTH,
             ("Rapid physical development", "Skill acquisition focus", "Fun-based approach")),
    AgeGroup("16-18", 16, 18, DevelopmentStage.JUNIOR,
             ("Specialization begins", "Competitive focus", "Physical maturation")),
    AgeGroup("19-21", 19, 21, DevelopmentStage.JUNIOR,
             ("Peak development potential", "Elite pathway decisions", "University/college sports")),
    AgeGroup("22-24", 22, 24, DevelopmentStage.SENIOR,
             ("Physical peak approaching", "Professional opportunities", "Career decisions")),
    AgeGroup("25-27", 25, 27, DevelopmentStage.SENIOR,
             ("Physical prime", "Peak performance years", "Leadership roles")),
    AgeGroup("28-30", 28, 30, DevelopmentStage.SENIOR,
             ("Mature athlete", "Experience advantage", "Transition planning")),
    AgeGroup("31+", 31, 50, DevelopmentStage.VETERAN,
             ("Masters competition", "Fitness maintenance", "Injury prevention focus")),
)


@dataclass(frozen=True)
class SportBenchmark:
    """How much a test matters for a sport, with expected scores by level."""
    sport: str
    test_type: TestType
    importance: int  # 0-10
    beginner: float
    intermediate: float
    advanced: float
    elite: float

    @property
    def weight_modifier(self) -> float:
        return self.importance / 10


SPORT_BENCHMARKS: Dict[Tuple[str, TestType], SportBenchmark] = {
    (b.sport, b.test_type): b
    for b in (
        SportBenchmark("athletics", TestType.SPEED, 10, 60, 75, 85, 95),
        SportBenchmark("athletics", TestType.ENDURANCE, 9, 55, 70, 82, 92),
        SportBenchmark("football", TestType.AGILITY, 9, 65, 78, 87, 96),
        SportBenchmark("football", TestType.SPEED, 8, 62, 75, 85, 94),
        SportBenchmark("basketball", TestType.AGILITY, 9, 68, 80, 88, 95),
        SportBenchmark("basketball", TestType.STRENGTH, 7, 60, 73, 83, 92),
        SportBenchmark("hockey", TestType.SPEED, 8, 63, 76, 86, 94),
        SportBenchmark("hockey", TestType.AGILITY, 9, 66, 78, 87, 95),
    )
}


@dataclass(frozen=True)
class CohortKey:
    age_group: str
    gender: Gender
    test_type: TestType
    sport: Optional[str] = None

    def as_string(self) -> str:
        key = f"{self.age_group}_{self.gender.value}_{self.test_type.value}"
        if self.sport:
            key += f"_{self.sport}"
        return key

    def without_sport(self) -> "CohortKey":
        return CohortKey(self.age_group, self.gender, self.test_type)


@dataclass(frozen=True)
class BenchmarkCohortCurve:
    """Reference distribution for one cohort: percentile anchor -> score."""
    key: CohortKey
    anchors: Dict[int, float]
    sample_size: int = DEFAULT_SAMPLE_SIZE

    def __post_init__(self):
        if tuple(sorted(self.anchors)) != PERCENTILE_ANCHORS:
            raise ValueError(
                f"Cohort curve {self.key.as_string()} must define anchors {PERCENTILE_ANCHORS}"
            )
        values = [self.anchors[p] for p in PERCENTILE_ANCHORS]
        if any(b < a for a, b in zip(values, values[1:])):
            raise ValueError(
                f"Cohort curve {self.key.as_string()} anchors must be non-decreasing: {values}"
            )

    def score_at(self, percentile: int) -> float:
        return self.anchors[percentile]

    @property
    def median(self) -> float:
        return self.anchors[50]

    @property
    def elite(self) -> float:
        return self.anchors[95]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cohort": self.key.as_string(),
            "age_group": self.key.age_group,
            "gender": self.key.gender.value,
            "test_type": self.key.test_type.value,
            "sport": self.key.sport,
            "percentiles": {str(p): self.anchors[p] for p in PERCENTILE_ANCHORS},
            "sample_size": self.sample_size,
        }


# ---------------------------------------------------------------------------
# Pure scoring functions
# ---------------------------------------------------------------------------

def determine_age_group(age: Optional[int]) -> AgeGroup:
    """Age group containing `age`; ages outside every group use 19-21."""
    if age is not None:
        for group in AGE_GROUPS:
            if group.contains(age):
                return group
    return next(g for g in AGE_GROUPS if g.label == DEFAULT_AGE_GROUP)


def base_score(test_type: TestType, gender: Gender) -> float:
    by_gender = BASE_SCORES[test_type]
    if gender.value in by_gender:
        return by_gender[gender.value]
    return (by_gender["male"] + by_gender["female"]) / 2


def generate_curve(age_group: str, gender: Gender, test_type: TestType) -> BenchmarkCohortCurve:
    """Build the parametric reference curve for a cohort (or national/international pool)."""
    median = base_score(test_type, gender) + AGE_ADJUSTMENTS.get(age_group, 0)
    anchors = {p: median + offset for p, offset in ANCHOR_OFFSETS.items()}
    return BenchmarkCohortCurve(
        key=CohortKey(age_group, gender, test_type),
        anchors=anchors,
        sample_size=SAMPLE_SIZES.get(age_group, DEFAULT_SAMPLE_SIZE),
    )


def percentile_for_score(score: float, curve: BenchmarkCohortCurve) -> float:
    """Piecewise-linear percentile rank of `score` on `curve`, in [1, 99]."""
    anchors = curve.anchors
    top = PERCENTILE_ANCHORS[-1]
    if score >= anchors[top]:
        return float(top)

    # Highest bracket whose lower anchor is <= score
    for lower, upper in reversed(list(zip(PERCENTILE_ANCHORS, PERCENTILE_ANCHORS[1:]))):
        v_lo, v_hi = anchors[lower], anchors[upper]
        if score >= v_lo:
            return lower + (score - v_lo) / (v_hi - v_lo) * (upper - lower)

    v5 = anchors[PERCENTILE_ANCHORS[0]]
    if v5 <= 0:
        return 1.0
    return max(1.0, PERCENTILE_ANCHORS[0] * score / v5)


def tier_for_percentile(percentile: float) -> PerformanceTier:
    for threshold, tier in TIER_LADDER:
        if percentile >= threshold:
            return tier
    return PerformanceTier.NEEDS_IMPROVEMENT


def rating_for_percentile(percentile: float) -> OverallRating:
    for threshold, rating in RATING_LADDER:
        if percentile >= threshold:
            return rating
    return OverallRating.NEEDS_IMPROVEMENT


def trend_from_scores(scores: Sequence[float]) -> Trend:
    """Trend over chronologically ordered scores (oldest first)."""
    if len(scores) < 2:
        return Trend.STABLE

    recent = list(scores)[-3:]
    ups = downs = 0
    for previous, current in zip(recent, recent[1:]):
        diff = current - previous
        if diff > 1:
            ups += 1
        elif diff < -1:
            downs += 1

    if ups > downs:
        return Trend.IMPROVING
    if downs > ups:
        return Trend.DECLINING
    return Trend.STABLE


def earlier_records(history: Iterable[AssessmentRecord], record: AssessmentRecord) -> List[AssessmentRecord]:
    """Records submitted strictly before `record`, never `record` itself."""
    return [r for r in history if r.id != record.id and r.submitted_at < record.submitted_at]


def same_type_history(history: Iterable[AssessmentRecord], test_type: TestType) -> List[AssessmentRecord]:
    """Prior records of one test type, oldest first."""
    return sorted(
        (r for r in history if r.test_type == test_type),
        key=lambda r: r.submitted_at,
    )


def previous_score(history: Iterable[AssessmentRecord], test_type: TestType) -> Optional[float]:
    ordered = same_type_history(history, test_type)
    return ordered[-1].raw_score if ordered else None


def difficulty_for_gap(target: float, current: float) -> Difficulty:
    gap = target - current
    if gap <= 0:
        return Difficulty.EASY
    if current <= 0:
        return Difficulty.CHALLENGING
    if gap <= current * 0.10:
        return Difficulty.EASY
    if gap <= current * 0.25:
        return Difficulty.MODERATE
    return Difficulty.CHALLENGING


def gap_analysis(current: float, elite: float) -> str:
    gap_pct = (elite - current) / elite * 100 if elite else 0
    if gap_pct <= 5:
        return "You are very close to elite level performance"
    if gap_pct <= 15:
        return "You are approaching elite level performance"
    if gap_pct <= 30:
        return "You have a moderate gap to close to reach elite level"
    if gap_pct <= 50:
        return "You need significant improvement to reach elite level"
    return "You have substantial development needed to reach elite level"


def next_anchor_score(current: float, curve: BenchmarkCohortCurve) -> float:
    """Score of the anchor after the first anchor at or above `current`."""
    values = sorted(curve.anchors.values())
    for i, value in enumerate(values):
        if current <= value:
            return values[min(i + 1, len(values) - 1)]
    return curve.anchors[99]


# ---------------------------------------------------------------------------
# Cohort table
# ---------------------------------------------------------------------------

class BenchmarkTable:
    """
    Process-scoped table of cohort curves.

    Built on first access and never invalidated afterwards. Lookups fall
    back to the generated age-group curve when no exact cohort exists
    (sport-specific keys, unknown age groups).
    """

    def __init__(self):
        self._curves: Optional[Dict[str, BenchmarkCohortCurve]] = None
        self._lock = threading.Lock()

    def _build(self) -> Dict[str, BenchmarkCohortCurve]:
        curves: Dict[str, BenchmarkCohortCurve] = {}
        for gender in (Gender.MALE, Gender.FEMALE):
            for test_type in TestType:
                for group in AGE_GROUPS:
                    curve = generate_curve(group.label, gender, test_type)
                    curves[curve.key.as_string()] = curve
                for pool in (NATIONAL, INTERNATIONAL):
                    curve = generate_curve(pool, gender, test_type)
                    curves[curve.key.as_string()] = curve
        logger.info(f"Built benchmark table with {len(curves)} cohort curves")
        return curves

    def _table(self) -> Dict[str, BenchmarkCohortCurve]:
        if self._curves is None:
            with self._lock:
                if self._curves is None:
                    self._curves = self._build()
        return self._curves

    def get(self, key: CohortKey) -> BenchmarkCohortCurve:
        table = self._table()
        curve = table.get(key.as_string())
        if curve is None and key.sport:
            curve = table.get(key.without_sport().as_string())
        if curve is None:
            curve = generate_curve(key.age_group, key.gender, key.test_type)
        return curve

    def national(self, gender: Gender, test_type: TestType) -> BenchmarkCohortCurve:
        return self.get(CohortKey(NATIONAL, gender, test_type))

    def international(self, gender: Gender, test_type: TestType) -> BenchmarkCohortCurve:
        return self.get(CohortKey(INTERNATIONAL, gender, test_type))

    def keys(self) -> List[str]:
        return sorted(self._table())

    @property
    def is_built(self) -> bool:
        return self._curves is not None


# ---------------------------------------------------------------------------
# Verdict types
# ---------------------------------------------------------------------------

@dataclass
class TargetScore:
    score: float
    timeframe: str
    difficulty: Difficulty

    def to_dict(self) -> Dict[str, Any]:
        return {"score": self.score, "timeframe": self.timeframe, "difficulty": self.difficulty.value}


@dataclass
class ImprovementTargets:
    next_level: TargetScore
    elite: TargetScore
    world_class: TargetScore

    def to_dict(self) -> Dict[str, Any]:
        return {
            "next_level": self.next_level.to_dict(),
            "elite": self.elite.to_dict(),
            "world_class": self.world_class.to_dict(),
        }


@dataclass
class PerformanceComparison:
    """Athlete score against one reference curve."""
    athlete_score: float
    percentile: float
    tier: PerformanceTier
    curve: BenchmarkCohortCurve

    @property
    def vs_average(self) -> Tuple[float, float]:
        """(difference, percentage) against the cohort median."""
        median = self.curve.median
        return self.athlete_score - median, (self.athlete_score - median) / median * 100

    @property
    def vs_elite(self) -> Tuple[float, float]:
        elite = self.curve.elite
        return self.athlete_score - elite, (self.athlete_score - elite) / elite * 100

    @property
    def peer_rank(self) -> int:
        return math.ceil(self.percentile / 100 * self.curve.sample_size)

    def to_dict(self) -> Dict[str, Any]:
        avg_diff, avg_pct = self.vs_average
        elite_diff, elite_pct = self.vs_elite
        return {
            "athlete_score": self.athlete_score,
            "percentile": round(self.percentile, 2),
            "tier": self.tier.value,
            "vs_average": {"difference": round(avg_diff, 2), "percentage": round(avg_pct, 2)},
            "vs_elite": {
                "difference": round(elite_diff, 2),
                "percentage": round(elite_pct, 2),
                "gap_analysis": gap_analysis(self.athlete_score, self.curve.elite),
            },
            "vs_peers": {
                "rank": self.peer_rank,
                "total_in_group": self.curve.sample_size,
                "better_than": round(self.percentile, 2),
            },
            "benchmark": self.curve.to_dict(),
        }


@dataclass
class ScoreAnalysis:
    current_score: float
    expected_score: float
    deviation: float
    improvement: float
    trend: Trend

    def to_dict(self) -> Dict[str, Any]:
        return {
            "current_score": self.current_score,
            "expected_score": self.expected_score,
            "deviation": round(self.deviation, 2),
            "improvement": round(self.improvement, 2),
            "trend": self.trend.value,
        }


@dataclass
class PerformanceInsights:
    strengths: List[str] = field(default_factory=list)
    weaknesses: List[str] = field(default_factory=list)
    opportunities: List[str] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "strengths": list(self.strengths),
            "weaknesses": list(self.weaknesses),
            "opportunities": list(self.opportunities),
            "recommendations": list(self.recommendations),
        }


@dataclass
class NextSteps:
    immediate: List[str] = field(default_factory=list)
    short_term: List[str] = field(default_factory=list)
    long_term: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "immediate": list(self.immediate),
            "short_term": list(self.short_term),
            "long_term": list(self.long_term),
        }


@dataclass
class PerformanceVerdict:
    """Benchmark engine output for one assessment."""
    assessment_id: str
    athlete_id: str
    test_type: TestType
    percentile: float
    tier: PerformanceTier
    overall_rating: OverallRating
    score_analysis: ScoreAnalysis
    age_group: PerformanceComparison
    national: PerformanceComparison
    international: PerformanceComparison
    targets: ImprovementTargets
    insights: PerformanceInsights
    next_steps: NextSteps
    motivational_message: str
    sport: Optional[PerformanceComparison] = None

    @property
    def improvement(self) -> float:
        return self.score_analysis.improvement

    @property
    def trend(self) -> Trend:
        return self.score_analysis.trend

    def to_dict(self) -> Dict[str, Any]:
        return {
            "assessment_id": self.assessment_id,
            "athlete_id": self.athlete_id,
            "test_type": self.test_type.value,
            "percentile": round(self.percentile, 2),
            "tier": self.tier.value,
            "overall_rating": self.overall_rating.value,
            "score_analysis": self.score_analysis.to_dict(),
            "comparisons": {
                "age_group": self.age_group.to_dict(),
                "sport": self.sport.to_dict() if self.sport else None,
                "national": self.national.to_dict(),
                "international": self.international.to_dict(),
            },
            "targets": self.targets.to_dict(),
            "insights": self.insights.to_dict(),
            "next_steps": self.next_steps.to_dict(),
            "motivational_message": self.motivational_message,
        }


@dataclass
class QuickFeedback:
    overall_rating: OverallRating
    percentile: float
    improvement: float
    message: str
    next_target: TargetScore

    def to_dict(self) -> Dict[str, Any]:
        return {
            "overall_rating": self.overall_rating.value,
            "percentile": round(self.percentile, 2),
            "improvement": round(self.improvement, 2),
            "message": self.message,
            "next_target": self.next_target.to_dict(),
        }


MOTIVATIONAL_MESSAGES: Dict[OverallRating, str] = {
    OverallRating.OUTSTANDING: "Exceptional performance! You're performing at an elite level.",
    OverallRating.EXCELLENT: "Excellent work! You're performing well above average.",
    OverallRating.GOOD: "Good job! You're performing above the average for your age group.",
    OverallRating.FAIR: "Fair performance! There's room for improvement and growth.",
    OverallRating.NEEDS_IMPROVEMENT: "Every expert was once a beginner! Let's focus on improvement.",
}


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

class BenchmarkEngine:
    """Ranks scores against cohort curves and builds PerformanceVerdicts."""

    def __init__(self, table: Optional[BenchmarkTable] = None):
        self.table = table or BenchmarkTable()

    # --- contract -----------------------------------------------------------

    def rank(self, score: float, cohort_key: CohortKey) -> Tuple[float, PerformanceTier]:
        percentile = percentile_for_score(score, self.table.get(cohort_key))
        return percentile, tier_for_percentile(percentile)

    def targets(self, score: float, cohort_key: CohortKey, age: Optional[int] = None) -> ImprovementTargets:
        curve = self.table.get(cohort_key)
        percentile = percentile_for_score(score, curve)
        return self._targets(score, percentile, curve, age)

    def trend(self, history: Sequence[float]) -> Trend:
        return trend_from_scores(history)

    # --- helpers ------------------------------------------------------------

    def cohort_key_for(self, athlete: Athlete, test_type: TestType, sport: Optional[str] = None) -> CohortKey:
        return CohortKey(determine_age_group(athlete.age).label, athlete.gender, test_type, sport)

    def compare(self, score: float, curve: BenchmarkCohortCurve) -> PerformanceComparison:
        percentile = percentile_for_score(score, curve)
        return PerformanceComparison(
            athlete_score=score,
            percentile=percentile,
            tier=tier_for_percentile(percentile),
            curve=curve,
        )

    def _targets(
        self,
        score: float,
        percentile: float,
        curve: BenchmarkCohortCurve,
        age: Optional[int],
    ) -> ImprovementTargets:
        if percentile < 25:
            next_score, next_time = curve.score_at(25), "3-6 months"
        elif percentile < 50:
            next_score, next_time = curve.score_at(50), "2-4 months"
        elif percentile < 75:
            next_score, next_time = curve.score_at(75), "4-8 months"
        elif percentile < 90:
            next_score, next_time = curve.score_at(90), "6-12 months"
        else:
            next_score, next_time = curve.score_at(95), "8-18 months"

        if age is not None and age < 20:
            elite_time = "1-2 years"
        elif age is not None and age < 25:
            elite_time = "2-3 years"
        else:
            elite_time = "3-5 years"

        elite_score = curve.score_at(95)
        world_score = curve.score_at(99)
        return ImprovementTargets(
            next_level=TargetScore(round(next_score, 1), next_time, difficulty_for_gap(next_score, score)),
            elite=TargetScore(round(elite_score, 1), elite_time, difficulty_for_gap(elite_score, score)),
            world_class=TargetScore(round(world_score, 1), "3-10 years", difficulty_for_gap(world_score, score)),
        )

    def _insights(
        self,
        athlete: Athlete,
        test_type: TestType,
        age_group: PerformanceComparison,
        sport_comparison: Optional[PerformanceComparison],
    ) -> PerformanceInsights:
        insights = PerformanceInsights()
        name = test_type.value
        p = age_group.percentile

        if p >= 90:
            insights.strengths.append(f"Exceptional {name} performance for your age group")
            insights.opportunities.append("Consider competing at higher levels or specializing in this area")
        elif p >= 75:
            insights.strengths.append(f"Strong {name} performance compared to peers")
            insights.opportunities.append("Focus on consistency and gradual improvement")
        elif p < 50:
            insights.weaknesses.append(f"Below average {name} performance for your age group")
            insights.recommendations.append(f"Develop a targeted training plan for {name}")

        sport = athlete.main_sport
        if sport_comparison and sport:
            benchmark = SPORT_BENCHMARKS.get((sport, test_type))
            if benchmark and benchmark.importance >= 8:
                if sport_comparison.percentile >= 80:
                    insights.strengths.append(f"Excellent {name} performance for {sport}")
                elif sport_comparison.percentile < 60:
                    insights.weaknesses.append(f"{name} needs improvement for competitive {sport}")
                    insights.recommendations.append(f"Focus on sport-specific {name} training")

        if athlete.age < 18:
            insights.recommendations.append("Focus on developing fundamental movement skills")
            insights.opportunities.append("High potential for rapid improvement at your age")
        elif athlete.age > 25:
            insights.recommendations.append("Maintain current fitness levels and focus on technique refinement")
            insights.opportunities.append("Leverage experience and tactical knowledge")

        return insights

    def _next_steps(self, athlete: Athlete, score: float, test_type: TestType,
                    comparison: PerformanceComparison) -> NextSteps:
        steps = NextSteps()
        p = comparison.percentile

        if p < 50:
            steps.immediate.append(f"Review proper {test_type.value} technique with a coach")
            steps.immediate.append("Schedule 2-3 focused training sessions per week")
        elif p >= 90:
            steps.immediate.append("Maintain current training intensity")
            steps.immediate.append("Consider adding advanced variations to your routine")

        target = next_anchor_score(score, comparison.curve)
        steps.short_term.append(f"Target a score of {target:g} in your next assessment")
        if comparison.tier == PerformanceTier.BELOW_AVERAGE:
            steps.short_term.append("Complete a structured 8-week improvement program")
            steps.short_term.append("Take monthly assessments to track progress")
        elif comparison.tier == PerformanceTier.EXCELLENT:
            steps.short_term.append("Prepare for competitive events or trials")
            steps.short_term.append("Work with specialized coaches in your sport")

        elite = comparison.curve.elite
        if score < elite:
            steps.long_term.append(f"Work towards elite-level performance ({elite:g} score)")
        if athlete.age < 22 and p >= 75:
            steps.long_term.append("Consider pathways to professional or national team selection")
        steps.long_term.append("Develop a comprehensive athletic development plan")
        steps.long_term.append("Regular reassessment and goal adjustment every 6 months")
        return steps

    @staticmethod
    def _motivational_message(rating: OverallRating, improvement: float) -> str:
        message = MOTIVATIONAL_MESSAGES[rating]
        if improvement > 0:
            message += f" You've improved by {improvement:.1f} points - fantastic progress!"
        elif improvement == 0:
            message += " Consistency is key - keep maintaining your performance!"
        return message

    def evaluate(
        self,
        athlete: Athlete,
        record: AssessmentRecord,
        history: Optional[Sequence[AssessmentRecord]] = None,
    ) -> PerformanceVerdict:
        """
        Full performance verdict for one assessment.

        `history` may hold any of the athlete's records. Only those submitted
        before `record` count, so reprocessing an old assessment never
        compares it against later results.
        """
        prior = earlier_records(history or [], record)
        score = record.raw_score
        test_type = record.test_type

        age_key = self.cohort_key_for(athlete, test_type)
        age_group = self.compare(score, self.table.get(age_key))

        sport_comparison = None
        if athlete.main_sport:
            sport_key = self.cohort_key_for(athlete, test_type, athlete.main_sport)
            sport_comparison = self.compare(score, self.table.get(sport_key))

        national = self.compare(score, self.table.national(athlete.gender, test_type))
        international = self.compare(score, self.table.international(athlete.gender, test_type))

        same_type = same_type_history(prior, test_type)
        last = same_type[-1].raw_score if same_type else None
        improvement = score - last if last is not None else 0.0
        trend = trend_from_scores([r.raw_score for r in same_type])

        rating = rating_for_percentile(age_group.percentile)
        verdict = PerformanceVerdict(
            assessment_id=record.id,
            athlete_id=record.athlete_id,
            test_type=test_type,
            percentile=age_group.percentile,
            tier=age_group.tier,
            overall_rating=rating,
            score_analysis=ScoreAnalysis(
                current_score=score,
                expected_score=age_group.curve.median,
                deviation=score - age_group.curve.median,
                improvement=improvement,
                trend=trend,
            ),
            age_group=age_group,
            sport=sport_comparison,
            national=national,
            international=international,
            targets=self._targets(score, age_group.percentile, age_group.curve, athlete.age),
            insights=self._insights(athlete, test_type, age_group, sport_comparison),
            next_steps=self._next_steps(athlete, score, test_type, age_group),
            motivational_message=self._motivational_message(rating, improvement),
        )
        logger.info(
            f"Benchmarked assessment {record.id}: percentile {age_group.percentile:.1f}, "
            f"tier {age_group.tier.value}, trend {trend.value}"
        )
        return verdict

    def quick_feedback(
        self,
        athlete: Athlete,
        record: AssessmentRecord,
        history: Optional[Sequence[AssessmentRecord]] = None,
    ) -> QuickFeedback:
        verdict = self.evaluate(athlete, record, history)
        return QuickFeedback(
            overall_rating=verdict.overall_rating,
            percentile=verdict.percentile,
            improvement=verdict.improvement,
            message=verdict.motivational_message,
            next_target=verdict.targets.next_level,
        )
