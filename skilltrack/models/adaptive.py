from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict


class AdaptiveStrategy(str, Enum):
    ABSOLUTE_BEGINNER = "absolute_beginner"
    BEGINNER = "beginner"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"
    ACCELERATED = "accelerated"


class AdaptiveLevel(str, Enum):
    ABSOLUTE_BEGINNER = "absolute_beginner"
    BEGINNER = "beginner"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"


class Urgency(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class PerformanceTrend(str, Enum):
    IMPROVING = "improving"
    STABLE = "stable"
    DECLINING = "declining"


class AssessmentFlags(BaseModel):
    needs_environment_setup: bool = False
    needs_terminal_intro: bool = False


class TechnicalAssessment(BaseModel):
    # Free text on purpose: unknown levels are normalized, not rejected.
    overall: Optional[str] = None
    score: Optional[float] = None
    flags: AssessmentFlags = AssessmentFlags()


class ObjectiveContext(BaseModel):
    urgency: Optional[str] = None
    time_commitment_hours: Optional[float] = None


class AdaptiveSignals(BaseModel):
    """Raw planning signals. Every field may be missing or unrecognized."""

    technical_assessment: Optional[TechnicalAssessment] = None
    hours_per_week: Optional[float] = None
    objective_context: Optional[ObjectiveContext] = None
    performance_trend: Optional[Any] = None
    performance_average_score: Optional[float] = None
    generated_at: Optional[datetime] = None


class AdaptiveInputs(BaseModel):
    model_config = ConfigDict(frozen=True)

    technical_level_score: Optional[float] = None
    hours_per_week: Optional[float] = None
    time_commitment_hours: Optional[float] = None
    urgency: Optional[Urgency] = None
    needs_environment_setup: bool = False
    needs_terminal_intro: bool = False
    performance_trend: Optional[PerformanceTrend] = None


class AdaptivePlanMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    strategy: AdaptiveStrategy
    user_level: AdaptiveLevel
    inputs: AdaptiveInputs
    adjustments_applied: tuple[str, ...] = ()
    confidence: float
    computed_at: datetime
    computed_by: str = "server"


class PerformanceSummary(BaseModel):
    average_score: float = 0.0
    trend: PerformanceTrend = PerformanceTrend.STABLE
    consistently_high: bool = False
    consistently_low: bool = False
    sample_size: int = 0
