#!/usr/bin/env python3
"""Seed the canonical skill catalog.

Usage:
    python scripts/seed_skills.py [--group java --group python] [--skip-migrations]

Reads DATABASE_PATH / DATABASE_URL from .env like the application does.

This script:
1. Runs Alembic migrations to head (unless --skip-migrations)
2. Loads skilltrack/data/skill_catalog.yaml
3. Creates every skill whose name is not in the catalog yet (case-insensitive)
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from dotenv import load_dotenv

load_dotenv(Path(__file__).resolve().parent.parent / ".env")

from skilltrack.config import settings  # noqa: E402
from skilltrack.db.database import close_db, connect, init_db  # noqa: E402
from skilltrack.services.skill_extractor import bulk_create_skills, load_skill_catalog  # noqa: E402


async def seed(groups: list[str] | None, run_migrations: bool) -> int:
    if run_migrations:
        await init_db()

    seeds = load_skill_catalog(groups)
    print(f"Catalog: {len(seeds)} skills")

    db = await connect()
    try:
        created = await bulk_create_skills(db, seeds)
    finally:
        await db.close()
        await close_db()

    print(f"Skills seeded: {len(created)} created, {len(seeds) - len(created)} skipped")
    return len(created)


def main():
    parser = argparse.ArgumentParser(description="Seed the canonical skill catalog")
    parser.add_argument(
        "--group",
        action="append",
        dest="groups",
        help="Catalog group to seed (repeatable, default: all groups)",
    )
    parser.add_argument(
        "--skip-migrations",
        action="store_true",
        help="Do not run Alembic migrations before seeding",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(levelname)-5s [%(name)s] %(message)s",
    )

    try:
        asyncio.run(seed(args.groups, not args.skip_migrations))
    except ValueError as exc:
        print(f"ERROR: {exc}")
        sys.exit(1)


if __name__ == "__main__":
    main()
