"""Seed default certification criteria

Revision ID: 0002
Revises: 0001
Create Date: 2026-10-19

"""

import uuid
from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op
from app.services.certification_checks import DEFAULT_CRITERIA

# revision identifiers, used by Alembic.
revision: str = "0002"
down_revision: str | None = "0001"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

criteria_table = sa.table(
    "certification_criteria",
    sa.column("id", sa.String),
    sa.column("level", sa.String),
    sa.column("name", sa.String),
    sa.column("description", sa.Text),
    sa.column("weight", sa.Float),
    sa.column("auto_checkable", sa.Boolean),
)


def upgrade() -> None:
    op.bulk_insert(
        criteria_table,
        [
            {
                "id": str(uuid.uuid4()),
                "level": str(level),
                "name": name,
                "description": description,
                "weight": weight,
                "auto_checkable": auto,
            }
            for level, name, weight, auto, description in DEFAULT_CRITERIA
        ],
    )


def downgrade() -> None:
    names = [name for _, name, _, _, _ in DEFAULT_CRITERIA]
    op.execute(criteria_table.delete().where(criteria_table.c.name.in_(names)))
