"""Database abstraction layer supporting both SQLite (aiosqlite) and PostgreSQL (asyncpg).

Backend is selected via the DATABASE_URL setting:
  - starts with "postgresql://" → asyncpg
  - absent / empty             → aiosqlite (uses DATABASE_PATH)

Every service takes the connection as an explicit ``db`` argument; nothing in
the services layer holds a connection of its own.

The PostgreSQL wrapper transparently converts:
  - ? placeholders → $1, $2, … (positional)
  - Row access by column name (dict-like)
  - begin() / commit() / rollback() onto an asyncpg transaction
"""

import logging
import re
import sqlite3
from contextlib import asynccontextmanager
from pathlib import Path

from alembic import command
from alembic.config import Config

from skilltrack.config import settings

logger = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).resolve().parents[2]


def _is_postgres() -> bool:
    return settings.database_url.startswith("postgresql://")


# ── SQLite ────────────────────────────────────────────────────────────

async def _connect_sqlite(path: str | None = None):
    import aiosqlite
    db = await aiosqlite.connect(path or settings.database_path)
    db.row_factory = aiosqlite.Row
    await db.execute("PRAGMA foreign_keys = ON")
    return db


# ── PostgreSQL wrapper ────────────────────────────────────────────────

_pg_pool = None


async def _get_pg_pool():
    global _pg_pool
    if _pg_pool is None:
        import asyncpg
        _pg_pool = await asyncpg.create_pool(
            settings.database_url,
            min_size=2,
            max_size=10,
        )
    return _pg_pool


class PgRow:
    """Wraps an asyncpg Record so dict(row) and row["col"] behave like sqlite3.Row."""

    __slots__ = ("_record",)

    def __init__(self, record):
        self._record = record

    def __getitem__(self, key):
        return self._record[key]

    def __contains__(self, key):
        return key in self._record.keys()

    def __len__(self):
        return len(self._record)

    def keys(self):
        return self._record.keys()

    def get(self, key, default=None):
        try:
            return self._record[key]
        except (KeyError, IndexError):
            return default


# Regex to replace ? placeholders with $1, $2, … while skipping quoted strings
_PARAM_RE = re.compile(r"'[^']*'|(\?)")


def _convert_placeholders(sql: str) -> str:
    """Replace ? with $1, $2, … for asyncpg, skipping ?s inside string literals."""
    counter = [0]

    def _replacer(match):
        if match.group(1) is None:
            return match.group(0)
        counter[0] += 1
        return f"${counter[0]}"

    return _PARAM_RE.sub(_replacer, sql)


def _returns_rows(sql: str) -> bool:
    stripped = sql.lstrip().upper()
    return stripped.startswith("SELECT") or stripped.startswith("WITH") or "RETURNING" in stripped


class PgCursor:
    """Mimics the aiosqlite cursor returned by execute()."""

    __slots__ = ("_rows", "_idx")

    def __init__(self, rows=None):
        self._rows = rows or []
        self._idx = 0

    async def fetchone(self):
        if self._idx < len(self._rows):
            row = self._rows[self._idx]
            self._idx += 1
            return PgRow(row)
        return None

    async def fetchall(self):
        remaining = self._rows[self._idx:]
        self._idx = len(self._rows)
        return [PgRow(r) for r in remaining]


class PgConnection:
    """Wraps a pooled asyncpg connection behind the aiosqlite calls the store uses.

    Outside begin()/commit() every statement autocommits.
    """

    def __init__(self, conn, pool=None):
        self._conn = conn
        self._pool = pool
        self._tx = None

    async def execute(self, sql: str, params=None):
        pg_sql = _convert_placeholders(sql)
        args = tuple(params) if params else ()
        if _returns_rows(pg_sql):
            return PgCursor(rows=await self._conn.fetch(pg_sql, *args))
        await self._conn.execute(pg_sql, *args)
        return PgCursor()

    async def begin(self):
        if self._tx is None:
            self._tx = self._conn.transaction()
            await self._tx.start()

    async def commit(self):
        if self._tx is not None:
            tx, self._tx = self._tx, None
            await tx.commit()

    async def rollback(self):
        if self._tx is not None:
            tx, self._tx = self._tx, None
            await tx.rollback()

    async def close(self):
        await self.rollback()
        if self._pool is not None:
            await self._pool.release(self._conn)


# ── Public API ────────────────────────────────────────────────────────

async def connect():
    """Open a connection for the configured backend. Caller must close() it."""
    if _is_postgres():
        pool = await _get_pg_pool()
        return PgConnection(await pool.acquire(), pool)
    return await _connect_sqlite()


@asynccontextmanager
async def transaction(db):
    """Commit everything executed inside the block, or roll it all back."""
    if isinstance(db, PgConnection):
        await db.begin()
    try:
        yield db
    except BaseException:
        await db.rollback()
        raise
    else:
        await db.commit()


def is_unique_violation(exc: BaseException) -> bool:
    """True for a duplicate-key error from either backend."""
    if isinstance(exc, sqlite3.IntegrityError):
        return "UNIQUE" in str(exc).upper()
    return "UniqueViolation" in type(exc).__name__


def _run_alembic_upgrade():
    """Run Alembic migrations to head (synchronous, called once at startup)."""
    alembic_cfg = Config(str(PROJECT_ROOT / "alembic.ini"))
    alembic_cfg.set_main_option("script_location", str(PROJECT_ROOT / "migrations"))

    if _is_postgres():
        alembic_cfg.set_main_option("sqlalchemy.url", settings.database_url)
    else:
        alembic_cfg.set_main_option(
            "sqlalchemy.url", f"sqlite:///{settings.database_path}"
        )

    command.upgrade(alembic_cfg, "head")


async def init_db():
    if _is_postgres():
        logger.info("Using PostgreSQL backend: %s", settings.database_url.split("@")[-1])
    else:
        db_path = Path(settings.database_path)
        db_path.parent.mkdir(parents=True, exist_ok=True)
        logger.info("Using SQLite backend: %s", settings.database_path)

    _run_alembic_upgrade()


async def close_db():
    """Shutdown hook: close the connection pool if using PostgreSQL."""
    global _pg_pool
    if _pg_pool is not None:
        await _pg_pool.close()
        _pg_pool = None
