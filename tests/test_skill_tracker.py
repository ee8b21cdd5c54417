"""Tests for the skill level tracker: level arithmetic, status rules, persistence, batches."""

from datetime import timedelta

import pytest

from skilltrack.config import settings
from skilltrack.db import mastery_store as store
from skilltrack.db.database import transaction
from skilltrack.errors import SkillNotFoundError, StaleRecordError
from skilltrack.models.mastery import PracticeType, SkillStatus
from skilltrack.services import skill_tracker
from skilltrack.services.numbers import clamp
from skilltrack.services.skill_tracker import (
    calculate_level_change,
    resolve_status,
    update_level,
    update_levels_from_unit,
    update_success_rate,
)


async def create_skills(db, *names):
    ids = []
    async with transaction(db):
        for name in names:
            skill = await store.create_skill(db, name=name, category="java_fundamentals")
            ids.append(skill["id"])
    return ids


class TestLevelChange:

    def test_practice_at_mid_level(self):
        # level 50, score 90, plain practice, no failures, first attempt
        delta = calculate_level_change(50, 90, PracticeType.PRACTICE, 0)
        assert delta == 15
        assert clamp(50 + delta, 0, 100) == 65
        rate = update_success_rate(0.0, 0, 90)
        assert rate == pytest.approx(0.9)
        assert resolve_status(65, rate) == SkillStatus.PRACTICING

    def test_base_buckets(self):
        assert calculate_level_change(0, 100, "practice", 0) == 15
        assert calculate_level_change(0, 85, "practice", 0) == 10
        assert calculate_level_change(0, 70, "practice", 0) == 5
        assert calculate_level_change(0, 69.9, "practice", 0) == 2
        assert calculate_level_change(0, 59, "practice", 0) == -5

    def test_practice_type_factors(self):
        assert calculate_level_change(0, 95, PracticeType.INTRODUCTION, 0) == 18
        assert calculate_level_change(0, 95, PracticeType.REVIEW, 0) == 12
        assert calculate_level_change(0, 95, PracticeType.MASTERY, 0) == 23  # 22.5 rounds up

    def test_diminishing_returns(self):
        assert calculate_level_change(60, 95, "practice", 0) == 15
        assert calculate_level_change(61, 95, "practice", 0) == 11  # 11.25
        assert calculate_level_change(81, 95, "practice", 0) == 8  # 7.5

    def test_failure_penalty(self):
        assert calculate_level_change(0, 95, "practice", 1) == 11  # 10.5
        assert calculate_level_change(0, 40, "practice", 2) == -3  # -3.5 rounds toward +inf

    def test_unknown_practice_type(self):
        with pytest.raises(ValueError):
            calculate_level_change(0, 95, "cramming", 0)

    def test_level_stays_in_bounds(self):
        for level in range(0, 101, 5):
            for performance in range(0, 101):
                for practice_type in PracticeType:
                    for failures in (0, 1, 4):
                        delta = calculate_level_change(level, performance, practice_type, failures)
                        if performance >= 60:
                            assert delta >= 0
                        else:
                            assert delta < 0
                        assert 0 <= clamp(level + delta, 0, 100) <= 100


class TestStatusRules:

    def test_mastered_boundary(self):
        assert resolve_status(90, 0.85) == SkillStatus.MASTERED
        assert resolve_status(89, 0.85) == SkillStatus.PROFICIENT
        assert resolve_status(90, 0.84) == SkillStatus.PROFICIENT

    def test_rules_are_ordered(self):
        assert resolve_status(70, 0.75) == SkillStatus.PROFICIENT
        assert resolve_status(40, 0.6) == SkillStatus.PRACTICING
        # learning is checked before struggling
        assert resolve_status(25, 0.2) == SkillStatus.LEARNING
        assert resolve_status(10, 0.4) == SkillStatus.STRUGGLING
        assert resolve_status(10, 0.5) == SkillStatus.NOT_STARTED
        assert resolve_status(0, 0.0) == SkillStatus.STRUGGLING

    def test_success_rate_running_mean(self):
        rate = 0.0
        for count, performance in enumerate([100, 50, 75]):
            rate = update_success_rate(rate, count, performance)
        assert rate == pytest.approx(0.75)


class TestUpdateLevel:

    def test_first_practice_creates_record(self, with_db, now):
        async def body(db):
            (skill_id,) = await create_skills(db, "Java Syntax Basics")
            result = await update_level(db, "u1", skill_id, 95, "introduction", now=now)

            assert result.skill_name == "Java Syntax Basics"
            assert result.previous_level == 0
            assert result.new_level == 18
            assert result.previous_status == SkillStatus.NOT_STARTED
            assert result.new_status == SkillStatus.NOT_STARTED
            assert result.status_changed is False
            assert result.mastered_now is False
            assert result.needs_review is False
            assert result.review_interval == 2
            assert result.next_review_at == now + timedelta(days=2)

            record = await store.get_mastery_record(db, "u1", skill_id)
            assert record["practice_count"] == 1
            assert record["success_rate"] == pytest.approx(0.95)
            assert record["last_practiced_at"] == now
            assert record["version"] == 1

        with_db(body)

    def test_failures_accumulate_and_reset(self, with_db, now):
        async def body(db):
            (skill_id,) = await create_skills(db, "Java Control Flow")

            first = await update_level(db, "u1", skill_id, 50, "practice", now=now)
            assert first.new_level == 0
            assert first.needs_review is True

            second = await update_level(db, "u1", skill_id, 50, "practice", now=now)
            assert second.new_level == 0
            record = await store.get_mastery_record(db, "u1", skill_id)
            assert record["consecutive_failures"] == 2
            assert record["needs_review"] is True

            third = await update_level(db, "u1", skill_id, 75, "practice", now=now)
            assert third.new_level == 4  # 5 * 0.7 = 3.5
            assert third.needs_review is False
            record = await store.get_mastery_record(db, "u1", skill_id)
            assert record["consecutive_failures"] == 0
            assert record["success_rate"] == pytest.approx((0.5 + 0.5 + 0.75) / 3)

        with_db(body)

    def test_mastered_at_stamped_once(self, with_db, now):
        async def body(db):
            (skill_id,) = await create_skills(db, "Java Methods")
            levels = []
            mastered_flags = []
            for day in range(6):
                result = await update_level(
                    db, "u1", skill_id, 100, PracticeType.MASTERY, now=now + timedelta(days=day)
                )
                levels.append(result.new_level)
                mastered_flags.append(result.mastered_now)

            assert levels == [23, 46, 69, 86, 97, 100]
            assert mastered_flags == [False, False, False, False, True, False]

            record = await store.get_mastery_record(db, "u1", skill_id)
            assert record["status"] == SkillStatus.MASTERED.value
            assert record["mastered_at"] == now + timedelta(days=4)

        with_db(body)

    def test_level_never_leaves_bounds(self, with_db, now):
        async def body(db):
            (skill_id,) = await create_skills(db, "Java Arrays")
            for _ in range(12):
                result = await update_level(db, "u1", skill_id, 100, "mastery", now=now)
                assert 0 <= result.new_level <= 100
            assert result.new_level == 100
            for _ in range(60):
                result = await update_level(db, "u1", skill_id, 0, "practice", now=now)
                assert 0 <= result.new_level <= 100
            assert result.new_level == 0

            record = await store.get_mastery_record(db, "u1", skill_id)
            assert 1 <= record["review_interval"] <= 60
            assert 0 <= record["success_rate"] <= 1

        with_db(body)

    def test_invalid_input_rejected_before_storage(self, with_db, now):
        async def body(db):
            (skill_id,) = await create_skills(db, "Java Strings")
            with pytest.raises(ValueError):
                await update_level(db, "u1", skill_id, 101, "practice", now=now)
            with pytest.raises(ValueError):
                await update_level(db, "u1", skill_id, 80, "cramming", now=now)
            assert await store.get_mastery_record(db, "u1", skill_id) is None

        with_db(body)

    def test_unknown_skill(self, with_db, now):
        async def body(db):
            with pytest.raises(SkillNotFoundError):
                await update_level(db, "u1", "no-such-skill", 80, "practice", now=now)

        with_db(body)

    def test_sync_review_schedule(self, with_db, now):
        async def body(db):
            (skill_id,) = await create_skills(db, "Java Inheritance")
            await update_level(db, "u1", skill_id, 95, "introduction", now=now, sync_review_schedule=True)
            schedule = await store.get_review_schedule(db, "u1", skill_id)
            assert schedule["current_interval"] == 1  # seeded from level 18
            assert schedule["review_count"] == 0

            later = now + timedelta(days=1)
            await update_level(db, "u1", skill_id, 95, "review", now=later, sync_review_schedule=True)
            schedule = await store.get_review_schedule(db, "u1", skill_id)
            assert schedule["current_interval"] == 2
            assert schedule["review_count"] == 1
            assert schedule["last_reviewed_at"] == later

        with_db(body)


class TestBatchUpdate:

    def test_failure_on_one_skill_keeps_the_others(self, with_db, now):
        async def body(db):
            intro_id, practice_id, bad_id = await create_skills(
                db, "Java Interfaces", "Java Generics", "Java Streams API"
            )
            async with transaction(db):
                await store.link_unit_skill(db, "unit-1", intro_id, 60, "introduction", pre_unit_level=0)

            batch = await update_levels_from_unit(
                db,
                "u1",
                "unit-1",
                [
                    {"skill_id": intro_id, "score": 95},
                    {"skill_id": "missing-skill", "score": 90},
                    {"skill_id": practice_id, "score": 80},
                    {"skill_id": bad_id, "score": 140},
                ],
                now=now,
            )

            assert batch.succeeded is False
            assert [r.skill_id for r in batch.results] == [intro_id, practice_id]
            assert sorted(e.skill_id for e in batch.errors) == sorted(["missing-skill", bad_id])

            by_id = {r.skill_id: r for r in batch.results}
            assert by_id[intro_id].new_level == 18  # declared as introduction
            assert by_id[practice_id].new_level == 10  # default practice

            (link,) = await store.get_unit_skills(db, "unit-1")
            assert link["post_unit_level"] == 18
            assert link["score_achieved"] == 95

            assert await store.get_review_schedule(db, "u1", intro_id) is not None
            assert await store.get_mastery_record(db, "u1", bad_id) is None

        with_db(body)

    def test_malformed_item_is_reported(self, with_db, now):
        async def body(db):
            (skill_id,) = await create_skills(db, "Java Polymorphism")
            batch = await update_levels_from_unit(
                db,
                "u1",
                "unit-2",
                [{"skill_id": skill_id, "score": "excellent"}, {"skill_id": skill_id, "score": 72}],
                now=now,
            )
            assert len(batch.errors) == 1
            assert batch.errors[0].skill_id == skill_id
            assert len(batch.results) == 1

        with_db(body)

    def test_non_mapping_item_is_reported(self, with_db, now):
        async def body(db):
            (skill_id,) = await create_skills(db, "Java Records")
            batch = await update_levels_from_unit(
                db, "u1", "unit-3", [None, {"skill_id": skill_id, "score": 80}], now=now
            )
            assert [e.skill_id for e in batch.errors] == [""]
            assert [r.skill_id for r in batch.results] == [skill_id]

        with_db(body)


class TestVersionedWrites:

    def test_lost_race_recomputes_from_fresh_row(self, with_db, now, monkeypatch):
        async def body(db):
            (skill_id,) = await create_skills(db, "Java Lambdas")
            async with transaction(db):
                snapshot = await store.find_or_create_mastery_record(db, "u1", skill_id, now)
            # Another writer moves the row after our read.
            await update_level(db, "u1", skill_id, 95, "introduction", now=now)

            real_find = store.find_or_create_mastery_record
            calls = []

            async def read_once_stale(*args, **kwargs):
                calls.append(args)
                if len(calls) == 1:
                    return dict(snapshot)
                return await real_find(*args, **kwargs)

            monkeypatch.setattr(store, "find_or_create_mastery_record", read_once_stale)
            result = await update_level(db, "u1", skill_id, 95, "introduction", now=now)

            assert len(calls) == 2
            assert result.previous_level == 18
            assert result.new_level == 36
            record = await store.get_mastery_record(db, "u1", skill_id)
            assert record["practice_count"] == 2
            assert record["version"] == 2

        with_db(body)

    def test_gives_up_after_max_attempts(self, with_db, now, monkeypatch):
        async def body(db):
            (skill_id,) = await create_skills(db, "Java Optionals")
            async with transaction(db):
                snapshot = await store.find_or_create_mastery_record(db, "u1", skill_id, now)
            await update_level(db, "u1", skill_id, 80, "practice", now=now)

            calls = []

            async def always_stale(*args, **kwargs):
                calls.append(args)
                return dict(snapshot)

            monkeypatch.setattr(store, "find_or_create_mastery_record", always_stale)
            monkeypatch.setattr(settings, "update_max_attempts", 2)

            with pytest.raises(StaleRecordError):
                await update_level(db, "u1", skill_id, 95, "practice", now=now)
            assert len(calls) == 2

            record = await store.get_mastery_record(db, "u1", skill_id)
            assert record["level"] == 10
            assert record["version"] == 1

        with_db(body)


class TestSkillMap:

    def test_groups_by_status(self, with_db, now):
        async def body(db):
            strong, weak, fresh = await create_skills(db, "SQL Basics", "SQL Joins", "SQL Aggregations")
            for _ in range(6):
                await update_level(db, "u1", strong, 100, "mastery", now=now)
            await update_level(db, "u1", weak, 20, "practice", now=now)
            await update_level(db, "u1", fresh, 95, "introduction", now=now)

            skill_map = await skill_tracker.get_user_skill_map(db, "u1")
            assert skill_map.mastered_skills == ["SQL Basics"]
            assert skill_map.struggling_areas == ["SQL Joins"]
            assert skill_map.not_started == ["SQL Aggregations"]
            assert skill_map.in_progress == []
            assert skill_map.overall_progress == 39  # (100 + 0 + 18) / 3

            objective_id = await store.create_objective(db, "SQL", ["SQL Joins"], user_id="u1")
            scoped = await skill_tracker.get_user_skill_map(db, "u1", objective_id)
            assert [s.skill_name for s in scoped.skills] == ["SQL Joins"]

        with_db(body)

    def test_empty(self, with_db):
        async def body(db):
            skill_map = await skill_tracker.get_user_skill_map(db, "nobody")
            assert skill_map.skills == []
            assert skill_map.overall_progress == 0

        with_db(body)
