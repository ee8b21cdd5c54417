"""Table definitions shared by the Alembic revision and the test databases.

Timestamps are stored as fixed-width UTC ISO-8601 text so that ``<=``
comparisons are chronological on both backends. Booleans are INTEGER 0/1.
"""

_TABLES = [
    """
    CREATE TABLE IF NOT EXISTS skills (
        id              TEXT PRIMARY KEY,
        name            TEXT NOT NULL,
        category        TEXT NOT NULL,
        description     TEXT,
        difficulty      TEXT NOT NULL DEFAULT 'beginner',
        parent_skill_id TEXT REFERENCES skills(id),
        prerequisites   TEXT NOT NULL DEFAULT '[]',
        created_at      TEXT NOT NULL
    )
    """,
    "CREATE UNIQUE INDEX IF NOT EXISTS uq_skills_name_ci ON skills (lower(name))",
    """
    CREATE TABLE IF NOT EXISTS objectives (
        id              TEXT PRIMARY KEY,
        user_id         TEXT,
        title           TEXT NOT NULL,
        required_skills TEXT NOT NULL DEFAULT '[]',
        created_at      TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS mastery_records (
        id                   TEXT PRIMARY KEY,
        user_id              TEXT NOT NULL,
        skill_id             TEXT NOT NULL REFERENCES skills(id),
        level                INTEGER NOT NULL DEFAULT 0 CHECK (level BETWEEN 0 AND 100),
        status               TEXT NOT NULL DEFAULT 'not_started',
        success_rate         {float} NOT NULL DEFAULT 0 CHECK (success_rate BETWEEN 0 AND 1),
        practice_count       INTEGER NOT NULL DEFAULT 0,
        consecutive_failures INTEGER NOT NULL DEFAULT 0,
        last_practiced_at    TEXT,
        next_review_at       TEXT,
        review_interval      INTEGER NOT NULL DEFAULT 1 CHECK (review_interval BETWEEN 1 AND 60),
        needs_review         INTEGER NOT NULL DEFAULT 0,
        mastered_at          TEXT,
        version              INTEGER NOT NULL DEFAULT 0,
        created_at           TEXT NOT NULL,
        updated_at           TEXT NOT NULL,
        UNIQUE (user_id, skill_id)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_mastery_user ON mastery_records (user_id)",
    """
    CREATE TABLE IF NOT EXISTS review_schedules (
        id                   TEXT PRIMARY KEY,
        user_id              TEXT NOT NULL,
        skill_id             TEXT NOT NULL REFERENCES skills(id),
        current_interval     INTEGER NOT NULL CHECK (current_interval BETWEEN 1 AND 60),
        next_review_at       TEXT NOT NULL,
        last_reviewed_at     TEXT,
        review_count         INTEGER NOT NULL DEFAULT 0,
        average_review_score {float} NOT NULL DEFAULT 0,
        is_retained          INTEGER NOT NULL DEFAULT 0,
        created_at           TEXT NOT NULL,
        updated_at           TEXT NOT NULL,
        UNIQUE (user_id, skill_id)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_review_due ON review_schedules (user_id, next_review_at)",
    """
    CREATE TABLE IF NOT EXISTS unit_skills (
        id              TEXT PRIMARY KEY,
        unit_id         TEXT NOT NULL,
        skill_id        TEXT NOT NULL REFERENCES skills(id),
        target_level    INTEGER NOT NULL,
        practice_type   TEXT NOT NULL,
        pre_unit_level  INTEGER,
        post_unit_level INTEGER,
        score_achieved  {float},
        created_at      TEXT NOT NULL,
        UNIQUE (unit_id, skill_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS unit_results (
        id           TEXT PRIMARY KEY,
        user_id      TEXT NOT NULL,
        objective_id TEXT,
        unit_id      TEXT NOT NULL,
        score        {float} NOT NULL,
        completed_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_unit_results_user ON unit_results (user_id, objective_id, completed_at)",
]

TABLE_NAMES = ["unit_results", "unit_skills", "review_schedules", "mastery_records", "objectives", "skills"]


def table_statements(dialect: str) -> list[str]:
    """Return the CREATE statements for the given SQLAlchemy dialect name."""
    float_type = "DOUBLE PRECISION" if dialect == "postgresql" else "REAL"
    return [stmt.strip().replace("{float}", float_type) for stmt in _TABLES]


async def create_schema(db, dialect: str = "sqlite"):
    """Create all tables on an open connection (used for in-memory databases)."""
    for stmt in table_statements(dialect):
        await db.execute(stmt)
    await db.commit()
