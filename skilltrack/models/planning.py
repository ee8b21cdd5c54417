from typing import Optional

from pydantic import BaseModel

from skilltrack.models.adaptive import AdaptivePlanMetadata, PerformanceSummary
from skilltrack.models.mastery import (
    BatchUpdateResult,
    ReviewInsertDecision,
    ReviewRecommendation,
    ReviewUnitScaffold,
    StrugglingArea,
)


class UnitCompletion(BaseModel):
    """What a completed unit reports back: the overall score and per-skill scores."""

    unit_id: str
    objective_id: Optional[str] = None
    day_number: int
    score: float
    skill_scores: list[dict] = []


class UnitCompletionResult(BaseModel):
    unit_id: str
    skill_updates: BatchUpdateResult
    performance: PerformanceSummary


class PlanningInputs(BaseModel):
    """Everything the content-planning collaborator needs for the next unit."""

    user_id: str
    objective_id: Optional[str] = None
    next_day: int
    adaptive: AdaptivePlanMetadata
    performance: PerformanceSummary
    review_decision: ReviewInsertDecision
    review_unit: Optional[ReviewUnitScaffold] = None
    recommendations: list[ReviewRecommendation] = []
    struggling: list[StrugglingArea] = []
