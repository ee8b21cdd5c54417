"""
mastery_store.py - Raw SQL access for skills, mastery records and review schedules

Provides fetch/insert/update functions for:
- skills
- objectives (required-skill allowlist only)
- mastery_records (versioned writes)
- review_schedules
- unit_skills
- unit_results

None of these functions commit. Callers wrap them in database.transaction().
"""

import json
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from skilltrack.errors import StaleRecordError


def _new_id() -> str:
    return uuid.uuid4().hex


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def aware_now(value: Optional[datetime] = None) -> datetime:
    """value as an aware datetime, naive values read as UTC. The current time when None."""
    if value is None:
        return utcnow()
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def to_iso(value: Optional[datetime]) -> Optional[str]:
    """Fixed-width UTC text, so string order equals time order."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def from_iso(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    if isinstance(value, datetime):
        return aware_now(value)
    return datetime.strptime(value, "%Y-%m-%dT%H:%M:%S.%fZ").replace(tzinfo=timezone.utc)


_TIMESTAMP_FIELDS = (
    "created_at", "updated_at", "last_practiced_at", "next_review_at",
    "mastered_at", "last_reviewed_at", "completed_at",
)


def _row_to_dict(row, parse_json_fields: List[str] = None) -> Optional[Dict[str, Any]]:
    """Convert a database row to a dictionary with parsed timestamps and JSON fields."""
    if row is None:
        return None

    result = {key: row[key] for key in row.keys()}

    for field in _TIMESTAMP_FIELDS:
        if field in result:
            result[field] = from_iso(result[field])

    for field in parse_json_fields or []:
        if field in result and isinstance(result[field], str):
            result[field] = json.loads(result[field]) if result[field] else []

    return result


# ══════════════════════════════════════════════════════════════════════════════
# SKILLS
# ══════════════════════════════════════════════════════════════════════════════

async def get_skill(db, skill_id: str) -> Optional[Dict[str, Any]]:
    cursor = await db.execute("SELECT * FROM skills WHERE id = ?", (skill_id,))
    return _row_to_dict(await cursor.fetchone(), parse_json_fields=["prerequisites"])


async def get_skills(db, skill_ids: List[str]) -> List[Dict[str, Any]]:
    """Fetch skills by id, preserving the order of skill_ids and dropping unknown ids."""
    if not skill_ids:
        return []
    placeholders = ", ".join("?" for _ in skill_ids)
    cursor = await db.execute(
        f"SELECT * FROM skills WHERE id IN ({placeholders})",
        tuple(skill_ids),
    )
    by_id = {}
    for row in await cursor.fetchall():
        skill = _row_to_dict(row, parse_json_fields=["prerequisites"])
        by_id[skill["id"]] = skill
    return [by_id[sid] for sid in skill_ids if sid in by_id]


async def find_skill_by_name(db, name: str) -> Optional[Dict[str, Any]]:
    """Case-insensitive exact match on the skill name."""
    cursor = await db.execute(
        "SELECT * FROM skills WHERE lower(name) = lower(?)",
        (name,),
    )
    return _row_to_dict(await cursor.fetchone(), parse_json_fields=["prerequisites"])


async def create_skill(
    db,
    name: str,
    category: str,
    difficulty: str = "beginner",
    description: Optional[str] = None,
    parent_skill_id: Optional[str] = None,
    prerequisites: Optional[List[str]] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Insert a skill. Raises the backend's unique violation if the name exists."""
    skill_id = _new_id()
    await db.execute(
        """INSERT INTO skills (id, name, category, description, difficulty,
                              parent_skill_id, prerequisites, created_at)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
        (
            skill_id, name, category, description, difficulty,
            parent_skill_id, json.dumps(prerequisites or []), to_iso(now or utcnow()),
        ),
    )
    return await get_skill(db, skill_id)


# ══════════════════════════════════════════════════════════════════════════════
# OBJECTIVES
# ══════════════════════════════════════════════════════════════════════════════

async def create_objective(
    db,
    title: str,
    required_skills: List[str],
    user_id: Optional[str] = None,
) -> str:
    objective_id = _new_id()
    await db.execute(
        """INSERT INTO objectives (id, user_id, title, required_skills, created_at)
           VALUES (?, ?, ?, ?, ?)""",
        (objective_id, user_id, title, json.dumps(required_skills), to_iso(utcnow())),
    )
    return objective_id


async def get_objective_required_skills(db, objective_id: Optional[str]) -> List[str]:
    """Skill-name allowlist of an objective. Empty when unknown or unrestricted."""
    if not objective_id:
        return []
    cursor = await db.execute(
        "SELECT required_skills FROM objectives WHERE id = ?",
        (objective_id,),
    )
    row = await cursor.fetchone()
    if not row or not row["required_skills"]:
        return []
    return json.loads(row["required_skills"])


# ══════════════════════════════════════════════════════════════════════════════
# MASTERY RECORDS
# ══════════════════════════════════════════════════════════════════════════════

_MASTERY_SELECT = """SELECT m.*, s.name AS skill_name
                     FROM mastery_records m
                     JOIN skills s ON s.id = m.skill_id"""


async def get_mastery_record(db, user_id: str, skill_id: str) -> Optional[Dict[str, Any]]:
    cursor = await db.execute(
        f"{_MASTERY_SELECT} WHERE m.user_id = ? AND m.skill_id = ?",
        (user_id, skill_id),
    )
    record = _row_to_dict(await cursor.fetchone())
    if record:
        record["needs_review"] = bool(record["needs_review"])
    return record


async def find_or_create_mastery_record(
    db,
    user_id: str,
    skill_id: str,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Return the (user, skill) record, creating it at level 0 / not_started if absent."""
    stamp = to_iso(now or utcnow())
    await db.execute(
        """INSERT INTO mastery_records (id, user_id, skill_id, level, status, success_rate,
                                       practice_count, consecutive_failures, review_interval,
                                       needs_review, version, created_at, updated_at)
           VALUES (?, ?, ?, 0, 'not_started', 0, 0, 0, 1, 0, 0, ?, ?)
           ON CONFLICT (user_id, skill_id) DO NOTHING""",
        (_new_id(), user_id, skill_id, stamp, stamp),
    )
    return await get_mastery_record(db, user_id, skill_id)


async def update_mastery_record(
    db,
    user_id: str,
    skill_id: str,
    expected_version: int,
    *,
    level: int,
    status: str,
    success_rate: float,
    practice_count: int,
    consecutive_failures: int,
    last_practiced_at: datetime,
    next_review_at: datetime,
    review_interval: int,
    needs_review: bool,
    mastered_at: Optional[datetime],
) -> None:
    """Versioned write. Raises StaleRecordError if the row moved since it was read."""
    cursor = await db.execute(
        """UPDATE mastery_records
           SET level = ?, status = ?, success_rate = ?, practice_count = ?,
               consecutive_failures = ?, last_practiced_at = ?, next_review_at = ?,
               review_interval = ?, needs_review = ?, mastered_at = ?,
               version = version + 1, updated_at = ?
           WHERE user_id = ? AND skill_id = ? AND version = ?
           RETURNING id""",
        (
            level, status, success_rate, practice_count, consecutive_failures,
            to_iso(last_practiced_at), to_iso(next_review_at), review_interval,
            1 if needs_review else 0, to_iso(mastered_at), to_iso(utcnow()),
            user_id, skill_id, expected_version,
        ),
    )
    if not await cursor.fetchall():
        raise StaleRecordError(user_id, skill_id, expected_version)


async def list_mastery_records(db, user_id: str) -> List[Dict[str, Any]]:
    cursor = await db.execute(
        f"{_MASTERY_SELECT} WHERE m.user_id = ? ORDER BY s.name",
        (user_id,),
    )
    records = [_row_to_dict(r) for r in await cursor.fetchall()]
    for record in records:
        record["needs_review"] = bool(record["needs_review"])
    return records


async def find_struggling_records(db, user_id: str) -> List[Dict[str, Any]]:
    """Records that are struggling, failing repeatedly, or below a 0.7 success rate."""
    cursor = await db.execute(
        f"""{_MASTERY_SELECT}
            WHERE m.user_id = ?
              AND (m.status = 'struggling' OR m.consecutive_failures >= 2 OR m.success_rate < 0.7)
            ORDER BY s.name""",
        (user_id,),
    )
    records = [_row_to_dict(r) for r in await cursor.fetchall()]
    for record in records:
        record["needs_review"] = bool(record["needs_review"])
    return records


# ══════════════════════════════════════════════════════════════════════════════
# REVIEW SCHEDULES
# ══════════════════════════════════════════════════════════════════════════════

_SCHEDULE_SELECT = """SELECT r.*, s.name AS skill_name
                      FROM review_schedules r
                      JOIN skills s ON s.id = r.skill_id"""


def _schedule_from_row(row) -> Optional[Dict[str, Any]]:
    schedule = _row_to_dict(row)
    if schedule:
        schedule["is_retained"] = bool(schedule["is_retained"])
    return schedule


async def get_review_schedule(db, user_id: str, skill_id: str) -> Optional[Dict[str, Any]]:
    cursor = await db.execute(
        f"{_SCHEDULE_SELECT} WHERE r.user_id = ? AND r.skill_id = ?",
        (user_id, skill_id),
    )
    return _schedule_from_row(await cursor.fetchone())


async def create_review_schedule(
    db,
    user_id: str,
    skill_id: str,
    current_interval: int,
    next_review_at: datetime,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    stamp = to_iso(now or utcnow())
    await db.execute(
        """INSERT INTO review_schedules (id, user_id, skill_id, current_interval, next_review_at,
                                        review_count, average_review_score, is_retained,
                                        created_at, updated_at)
           VALUES (?, ?, ?, ?, ?, 0, 0, 0, ?, ?)
           ON CONFLICT (user_id, skill_id) DO NOTHING""",
        (_new_id(), user_id, skill_id, current_interval, to_iso(next_review_at), stamp, stamp),
    )
    return await get_review_schedule(db, user_id, skill_id)


async def update_review_schedule(
    db,
    user_id: str,
    skill_id: str,
    *,
    current_interval: int,
    next_review_at: datetime,
    last_reviewed_at: datetime,
    review_count: int,
    average_review_score: float,
    is_retained: bool,
) -> Dict[str, Any]:
    await db.execute(
        """UPDATE review_schedules
           SET current_interval = ?, next_review_at = ?, last_reviewed_at = ?,
               review_count = ?, average_review_score = ?, is_retained = ?, updated_at = ?
           WHERE user_id = ? AND skill_id = ?""",
        (
            current_interval, to_iso(next_review_at), to_iso(last_reviewed_at),
            review_count, average_review_score, 1 if is_retained else 0, to_iso(utcnow()),
            user_id, skill_id,
        ),
    )
    return await get_review_schedule(db, user_id, skill_id)


async def list_due_schedules(db, user_id: str, due_before: datetime) -> List[Dict[str, Any]]:
    """Schedules with next_review_at at or before due_before, earliest first."""
    cursor = await db.execute(
        f"""{_SCHEDULE_SELECT}
            WHERE r.user_id = ? AND r.next_review_at <= ?
            ORDER BY r.next_review_at, s.name""",
        (user_id, to_iso(due_before)),
    )
    return [_schedule_from_row(r) for r in await cursor.fetchall()]


# ══════════════════════════════════════════════════════════════════════════════
# UNIT SKILLS
# ══════════════════════════════════════════════════════════════════════════════

async def get_unit_skills(db, unit_id: str) -> List[Dict[str, Any]]:
    cursor = await db.execute(
        "SELECT * FROM unit_skills WHERE unit_id = ? ORDER BY created_at, id",
        (unit_id,),
    )
    return [_row_to_dict(r) for r in await cursor.fetchall()]


async def link_unit_skill(
    db,
    unit_id: str,
    skill_id: str,
    target_level: int,
    practice_type: str,
    pre_unit_level: Optional[int] = None,
) -> None:
    """Declare that a unit targets a skill. Re-linking the same pair keeps the first declaration."""
    await db.execute(
        """INSERT INTO unit_skills (id, unit_id, skill_id, target_level, practice_type,
                                   pre_unit_level, created_at)
           VALUES (?, ?, ?, ?, ?, ?, ?)
           ON CONFLICT (unit_id, skill_id) DO NOTHING""",
        (_new_id(), unit_id, skill_id, target_level, practice_type, pre_unit_level, to_iso(utcnow())),
    )


async def record_unit_skill_outcome(
    db,
    unit_id: str,
    skill_id: str,
    post_unit_level: int,
    score_achieved: float,
) -> None:
    await db.execute(
        """UPDATE unit_skills SET post_unit_level = ?, score_achieved = ?
           WHERE unit_id = ? AND skill_id = ?""",
        (post_unit_level, score_achieved, unit_id, skill_id),
    )


# ══════════════════════════════════════════════════════════════════════════════
# UNIT RESULTS
# ══════════════════════════════════════════════════════════════════════════════

async def record_unit_result(
    db,
    user_id: str,
    unit_id: str,
    score: float,
    objective_id: Optional[str] = None,
    completed_at: Optional[datetime] = None,
) -> str:
    result_id = _new_id()
    await db.execute(
        """INSERT INTO unit_results (id, user_id, objective_id, unit_id, score, completed_at)
           VALUES (?, ?, ?, ?, ?, ?)""",
        (result_id, user_id, objective_id, unit_id, score, to_iso(completed_at or utcnow())),
    )
    return result_id


async def recent_unit_scores(
    db,
    user_id: str,
    objective_id: Optional[str] = None,
    limit: int = 5,
) -> List[float]:
    """The most recent unit scores, returned oldest first."""
    if objective_id:
        cursor = await db.execute(
            """SELECT score FROM unit_results
               WHERE user_id = ? AND objective_id = ?
               ORDER BY completed_at DESC
               LIMIT ?""",
            (user_id, objective_id, limit),
        )
    else:
        cursor = await db.execute(
            """SELECT score FROM unit_results
               WHERE user_id = ?
               ORDER BY completed_at DESC
               LIMIT ?""",
            (user_id, limit),
        )
    rows = await cursor.fetchall()
    return [float(r["score"]) for r in reversed(rows)]
