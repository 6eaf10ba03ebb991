"""
Assessment Domain Types

Shared vocabulary of the evaluation pipeline: test types, the athlete
profile the evaluators read, and the immutable assessment record created
by the upload step.

Verdict types live next to the component that produces them
(benchmarking, integrity_evaluator, movement_evaluator,
feedback_synthesizer).
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


class TestType(str, Enum):
    """Physical test an athlete records on video."""
    __test__ = False  # not a pytest test class

    SPEED = "speed"
    AGILITY = "agility"
    STRENGTH = "strength"
    ENDURANCE = "endurance"
    FLEXIBILITY = "flexibility"
    BALANCE = "balance"


class Gender(str, Enum):
    MALE = "male"
    FEMALE = "female"
    OTHER = "other"


@dataclass
class Athlete:
    """Athlete profile fields the evaluators depend on."""
    id: str
    name: str
    age: int
    gender: Gender = Gender.OTHER
    sports: List[str] = field(default_factory=list)
    primary_sport: Optional[str] = None

    def __post_init__(self):
        if not isinstance(self.gender, Gender):
            self.gender = Gender(str(self.gender).lower())

    @property
    def main_sport(self) -> Optional[str]:
        if self.sports:
            return self.sports[0]
        return self.primary_sport

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "age": self.age,
            "gender": self.gender.value,
            "sports": list(self.sports),
            "primary_sport": self.primary_sport,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Athlete":
        return cls(
            id=str(data["id"]),
            name=data.get("name", ""),
            age=int(data["age"]),
            gender=Gender(data.get("gender", "other")),
            sports=list(data.get("sports") or []),
            primary_sport=data.get("primary_sport"),
        )


@dataclass(frozen=True)
class AssessmentRecord:
    """
    One submitted assessment.

    Immutable once created. The pipeline never changes it except to attach
    notes, which produces a new record.
    """
    id: str
    athlete_id: str
    test_type: TestType
    raw_score: float
    submitted_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    notes: str = ""

    def __post_init__(self):
        # Naive timestamps are UTC; history is ordered by submitted_at
        if self.submitted_at.tzinfo is None:
            object.__setattr__(self, "submitted_at", self.submitted_at.replace(tzinfo=timezone.utc))

    def with_notes(self, notes: str) -> "AssessmentRecord":
        return replace(self, notes=notes)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "athlete_id": self.athlete_id,
            "test_type": self.test_type.value,
            "raw_score": self.raw_score,
            "submitted_at": self.submitted_at.isoformat(),
            "notes": self.notes,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AssessmentRecord":
        submitted_at = data.get("submitted_at")
        if isinstance(submitted_at, str):
            submitted_at = datetime.fromisoformat(submitted_at)
        return cls(
            id=str(data["id"]),
            athlete_id=str(data["athlete_id"]),
            test_type=TestType(data["test_type"]),
            raw_score=float(data["raw_score"]),
            submitted_at=submitted_at or datetime.now(timezone.utc),
            notes=data.get("notes") or "",
        )
