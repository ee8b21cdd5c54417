"""End-to-end: complete units, then gather the inputs for the next one."""

from datetime import timedelta

from skilltrack.db import mastery_store as store
from skilltrack.db.database import transaction
from skilltrack.models.adaptive import AdaptiveStrategy, PerformanceTrend
from skilltrack.models.mastery import ReviewType
from skilltrack.services import spaced_repetition
from skilltrack.services.unit_completion import complete_unit, prepare_next_unit


async def create_skills(db, *names):
    ids = []
    async with transaction(db):
        for name in names:
            skill = await store.create_skill(db, name=name, category="react")
            ids.append(skill["id"])
    return ids


class TestCompleteUnit:

    def test_records_result_and_updates_skills(self, with_db, now):
        async def body(db):
            components, hooks = await create_skills(db, "React Components", "React Hooks")
            async with transaction(db):
                await store.link_unit_skill(db, "unit-1", components, 60, "introduction", pre_unit_level=0)

            result = await complete_unit(
                db,
                "u1",
                {
                    "unit_id": "unit-1",
                    "objective_id": "obj-1",
                    "day_number": 1,
                    "score": 88,
                    "skill_scores": [
                        {"skill_id": components, "score": 95},
                        {"skill_id": hooks, "score": 80},
                        {"skill_id": "ghost", "score": 70},
                    ],
                },
                now=now,
            )

            assert [u.skill_id for u in result.skill_updates.results] == [components, hooks]
            assert [e.skill_id for e in result.skill_updates.errors] == ["ghost"]
            assert result.performance.sample_size == 1
            assert result.performance.average_score == 88

            assert await store.recent_unit_scores(db, "u1", "obj-1", limit=5) == [88]
            assert await store.get_review_schedule(db, "u1", components) is not None

        with_db(body)


class TestPrepareNextUnit:

    def test_stored_trend_drives_pacing(self, with_db, now):
        async def body(db):
            (skill_id,) = await create_skills(db, "React State")
            for day, score in enumerate([92, 90, 70, 60], 1):
                await complete_unit(
                    db,
                    "u1",
                    {
                        "unit_id": f"unit-{day}",
                        "objective_id": "obj-1",
                        "day_number": day,
                        "score": score,
                        "skill_scores": [{"skill_id": skill_id, "score": score}],
                    },
                    now=now + timedelta(days=day),
                )

            inputs = await prepare_next_unit(
                db,
                "u1",
                "obj-1",
                current_day=4,
                signals={"technical_assessment": {"overall": "intermediate"}},
                now=now + timedelta(days=4),
            )

            assert inputs.next_day == 5
            assert inputs.performance.trend == PerformanceTrend.DECLINING
            assert inputs.adaptive.strategy == AdaptiveStrategy.BEGINNER
            assert "Pacing slowed due to recent performance." in inputs.adaptive.adjustments_applied
            assert inputs.adaptive.computed_at == now + timedelta(days=4)
            assert inputs.review_decision.should_insert is False
            assert inputs.review_unit is None

        with_db(body)

    def test_caller_signals_win(self, with_db, now):
        async def body(db):
            async with transaction(db):
                for day, score in enumerate([90, 60]):
                    await store.record_unit_result(
                        db, "u1", f"unit-{day}", score, objective_id="obj-1",
                        completed_at=now + timedelta(days=day),
                    )

            inputs = await prepare_next_unit(
                db, "u1", "obj-1", current_day=2,
                signals={"performance_trend": "improving"}, now=now,
            )
            assert inputs.adaptive.inputs.performance_trend == PerformanceTrend.IMPROVING
            assert inputs.performance.trend == PerformanceTrend.DECLINING

        with_db(body)

    def test_overdue_skills_get_a_review_unit(self, with_db, now):
        async def body(db):
            skill_ids = await create_skills(db, "React Props", "React Events", "React Lists", "React Forms")
            for skill_id in skill_ids[:3]:
                await spaced_repetition.schedule_skill_review(db, "u1", skill_id, 0, now=now - timedelta(days=3))
            for score in (30, 35, 20):
                await complete_unit(
                    db,
                    "u1",
                    {
                        "unit_id": "unit-forms",
                        "day_number": 6,
                        "score": score,
                        "skill_scores": [{"skill_id": skill_ids[3], "score": score}],
                    },
                    now=now,
                )

            inputs = await prepare_next_unit(db, "u1", "obj-1", current_day=6, now=now)

            assert inputs.review_decision.should_insert is True
            assert inputs.review_unit is not None
            assert inputs.review_unit.day_number == 7
            assert inputs.review_unit.review_type == ReviewType.SPACED_REPETITION
            assert sorted(t.skill_id for t in inputs.review_unit.target_skills) == sorted(skill_ids[:3])

            assert [r.type for r in inputs.recommendations] == [
                ReviewType.SPACED_REPETITION, ReviewType.STRUGGLING_SKILL,
            ]
            (struggling,) = inputs.struggling
            assert struggling.skill_id == skill_ids[3]
            assert struggling.recommended_action.startswith("Immediate remediation unit required")

        with_db(body)

    def test_no_objective_means_no_review_unit(self, with_db, now):
        async def body(db):
            skill_ids = await create_skills(db, "React Props", "React Events", "React Lists")
            for skill_id in skill_ids:
                await spaced_repetition.schedule_skill_review(db, "u1", skill_id, 0, now=now - timedelta(days=3))

            inputs = await prepare_next_unit(db, "u1", None, current_day=0, now=now)
            assert inputs.review_decision.should_insert is True
            assert inputs.review_unit is None
            assert inputs.adaptive.confidence == 0.3

        with_db(body)
