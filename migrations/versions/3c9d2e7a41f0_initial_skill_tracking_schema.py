"""initial_skill_tracking_schema

Skills catalog, per-learner mastery records, review schedules, the objective
skill allowlist and unit bookkeeping.

Revision ID: 3c9d2e7a41f0
Revises:
Create Date: 2026-10-12 09:14:37.208511

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

from skilltrack.db.schema import TABLE_NAMES, table_statements


revision: str = "3c9d2e7a41f0"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create all tables and indexes (statements use IF NOT EXISTS)."""
    dialect_name = op.get_bind().dialect.name
    for statement in table_statements(dialect_name):
        op.execute(sa.text(statement))


def downgrade() -> None:
    """Drop all tables in reverse dependency order."""
    for table in TABLE_NAMES:
        op.drop_table(table)
