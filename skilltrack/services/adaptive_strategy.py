"""Pacing strategy for the next learning unit.

resolve() folds the planning signals into one AdaptivePlanMetadata snapshot:

    technical level   absolute_beginner | beginner | intermediate | advanced
    urgency           free text, keyword-matched to high | medium | low
    time commitment   hours per week
    readiness flags   environment setup / terminal intro needed
    trend             improving | stable | declining

It is synchronous, touches no storage and never raises; unrecognized inputs
fall back to defaults. load_performance_summary() is the only async helper,
used to derive the trend from stored unit results.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from skilltrack.db import mastery_store as store
from skilltrack.models.adaptive import (
    AdaptiveInputs,
    AdaptiveLevel,
    AdaptivePlanMetadata,
    AdaptiveSignals,
    AdaptiveStrategy,
    ObjectiveContext,
    PerformanceSummary,
    PerformanceTrend,
    TechnicalAssessment,
    Urgency,
)
from skilltrack.services.numbers import finite_or_none, round_half_up

logger = logging.getLogger(__name__)

DEFAULT_LEVEL = AdaptiveLevel.BEGINNER

# Checked in order, substring match on the lowercased text.
URGENCY_KEYWORDS = [
    (Urgency.HIGH, ("high", "urgent", "rush", "asap", "immediate")),
    (Urgency.MEDIUM, ("medium", "normal", "standard")),
    (Urgency.LOW, ("low", "flexible", "relaxed")),
]

BASE_CONFIDENCE = 0.3
SIGNAL_CONFIDENCE = 0.2
MAX_CONFIDENCE = 0.95

LOW_AVAILABILITY_HOURS = 10

TREND_DELTA = 5

# First match wins. Each predicate gets (level, urgency, needs_environment_setup, trend).
STRATEGY_RULES = [
    (
        lambda level, urgency, setup, trend: level == AdaptiveLevel.ABSOLUTE_BEGINNER,
        AdaptiveStrategy.ABSOLUTE_BEGINNER,
    ),
    (
        lambda level, urgency, setup, trend: level == AdaptiveLevel.ADVANCED and urgency == Urgency.HIGH,
        AdaptiveStrategy.ACCELERATED,
    ),
    (
        lambda level, urgency, setup, trend: setup and level == AdaptiveLevel.BEGINNER,
        AdaptiveStrategy.ABSOLUTE_BEGINNER,
    ),
    (
        lambda level, urgency, setup, trend: trend == PerformanceTrend.DECLINING,
        AdaptiveStrategy.BEGINNER,
    ),
]


# ── Normalization ─────────────────────────────────────────────────────

def normalize_level(value) -> AdaptiveLevel:
    try:
        return AdaptiveLevel(value)
    except ValueError:
        return DEFAULT_LEVEL


def normalize_urgency(value) -> Optional[Urgency]:
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip().lower()
    for urgency, keywords in URGENCY_KEYWORDS:
        if any(keyword in text for keyword in keywords):
            return urgency
    return None


def normalize_trend(value) -> Optional[PerformanceTrend]:
    try:
        return PerformanceTrend(value)
    except ValueError:
        return None


def _coerce(model, value):
    """Validate a nested signal; anything unusable becomes None."""
    if value is None or isinstance(value, model):
        return value
    try:
        return model.model_validate(value)
    except ValueError:
        logger.debug("Ignoring malformed %s signal: %r", model.__name__, value)
        return None


# ── Strategy ──────────────────────────────────────────────────────────

def resolve_strategy(
    user_level: AdaptiveLevel,
    urgency: Optional[Urgency],
    needs_environment_setup: bool,
    trend: Optional[PerformanceTrend],
) -> AdaptiveStrategy:
    for predicate, strategy in STRATEGY_RULES:
        if predicate(user_level, urgency, needs_environment_setup, trend):
            return strategy
    return AdaptiveStrategy(user_level.value)


def build_adjustments(
    *,
    needs_environment_setup: bool,
    needs_terminal_intro: bool,
    trend: Optional[PerformanceTrend],
    average_score: Optional[float],
    urgency: Optional[Urgency],
    time_commitment_hours: Optional[float],
) -> list[str]:
    notes = []

    if needs_environment_setup:
        notes.append("Includes environment setup tasks.")

    if needs_terminal_intro:
        notes.append("Adds terminal basics resources.")

    if trend == PerformanceTrend.DECLINING:
        notes.append("Pacing slowed due to recent performance.")
    elif trend == PerformanceTrend.IMPROVING:
        notes.append("Maintains pace with improving performance trend.")

    if average_score is not None:
        notes.append(f"Calibrated for average unit score of {round_half_up(average_score)}%.")

    if urgency == Urgency.HIGH:
        notes.append("Compressed schedule for high urgency objective.")

    if time_commitment_hours is not None and time_commitment_hours < LOW_AVAILABILITY_HOURS:
        notes.append("Reduced workload to respect limited weekly availability.")

    return notes


def _confidence(
    assessment: Optional[TechnicalAssessment],
    context: Optional[ObjectiveContext],
    trend: Optional[PerformanceTrend],
) -> float:
    confidence = BASE_CONFIDENCE
    if assessment is not None:
        confidence += SIGNAL_CONFIDENCE
    if context is not None and (context.urgency or context.time_commitment_hours):
        confidence += SIGNAL_CONFIDENCE
    if trend is not None:
        confidence += SIGNAL_CONFIDENCE
    return round(min(confidence, MAX_CONFIDENCE), 2)


def resolve(signals: AdaptiveSignals | dict | None = None) -> AdaptivePlanMetadata:
    """Compute the pacing metadata for the next unit. Pure apart from the timestamp."""
    if isinstance(signals, AdaptiveSignals):
        raw = signals
    elif isinstance(signals, dict):
        raw = AdaptiveSignals.model_construct(**signals)
    else:
        raw = AdaptiveSignals()

    assessment = _coerce(TechnicalAssessment, raw.technical_assessment)
    context = _coerce(ObjectiveContext, raw.objective_context)

    user_level = normalize_level(assessment.overall if assessment else None)
    urgency = normalize_urgency(context.urgency if context else None)
    time_commitment = finite_or_none(context.time_commitment_hours if context else None)
    needs_setup = bool(assessment and assessment.flags.needs_environment_setup)
    needs_terminal = bool(assessment and assessment.flags.needs_terminal_intro)
    trend = normalize_trend(raw.performance_trend)

    strategy = resolve_strategy(user_level, urgency, needs_setup, trend)

    adjustments = build_adjustments(
        needs_environment_setup=needs_setup,
        needs_terminal_intro=needs_terminal,
        trend=trend,
        average_score=finite_or_none(raw.performance_average_score),
        urgency=urgency,
        time_commitment_hours=time_commitment,
    )

    inputs = AdaptiveInputs(
        technical_level_score=finite_or_none(assessment.score if assessment else None),
        hours_per_week=finite_or_none(raw.hours_per_week),
        time_commitment_hours=time_commitment,
        urgency=urgency,
        needs_environment_setup=needs_setup,
        needs_terminal_intro=needs_terminal,
        performance_trend=trend,
    )

    computed_at = raw.generated_at if isinstance(raw.generated_at, datetime) else None

    return AdaptivePlanMetadata(
        strategy=strategy,
        user_level=user_level,
        inputs=inputs,
        adjustments_applied=tuple(adjustments),
        confidence=_confidence(assessment, context, trend),
        computed_at=computed_at or datetime.now(timezone.utc),
    )


# ── Performance trend ─────────────────────────────────────────────────

def determine_trend(scores: list[float]) -> PerformanceTrend:
    """Compare the mean of the first half of the scores with the second half.

    Scores are oldest first. With an odd count the middle score is in both
    halves.
    """
    if len(scores) < 2:
        return PerformanceTrend.STABLE

    first = scores[: (len(scores) + 1) // 2]
    second = scores[len(scores) // 2:]
    difference = sum(second) / len(second) - sum(first) / len(first)

    if difference > TREND_DELTA:
        return PerformanceTrend.IMPROVING
    if difference < -TREND_DELTA:
        return PerformanceTrend.DECLINING
    return PerformanceTrend.STABLE


def summarize_performance(scores: list[float]) -> PerformanceSummary:
    if not scores:
        return PerformanceSummary()

    return PerformanceSummary(
        average_score=sum(scores) / len(scores),
        trend=determine_trend(scores),
        consistently_high=sum(1 for s in scores if s >= 90) >= min(3, len(scores)),
        consistently_low=sum(1 for s in scores if s < 70) >= min(2, len(scores)),
        sample_size=len(scores),
    )


async def load_performance_summary(
    db,
    user_id: str,
    objective_id: Optional[str] = None,
    limit: int = 5,
) -> PerformanceSummary:
    """Summary of the learner's most recent unit scores."""
    scores = await store.recent_unit_scores(db, user_id, objective_id, limit=limit)
    return summarize_performance(scores)
