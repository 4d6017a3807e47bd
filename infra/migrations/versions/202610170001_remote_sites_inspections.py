"""remote sites and inspections tables

Revision ID: 202610170001
Revises:
Create Date: 2026-10-17
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "202610170001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "sites",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("data", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_sites_created_at", "sites", ["created_at"])

    op.create_table(
        "inspections",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("site_name", sa.String(), nullable=False),
        sa.Column("inspector_name", sa.String(), nullable=False),
        sa.Column("date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("data", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_inspections_site_name", "inspections", ["site_name"])
    op.create_index("ix_inspections_inspector_name", "inspections", ["inspector_name"])
    op.create_index("ix_inspections_date", "inspections", ["date"])
    op.create_index("ix_inspections_created_at", "inspections", ["created_at"])


def downgrade() -> None:
    op.drop_index("ix_inspections_created_at", table_name="inspections")
    op.drop_index("ix_inspections_date", table_name="inspections")
    op.drop_index("ix_inspections_inspector_name", table_name="inspections")
    op.drop_index("ix_inspections_site_name", table_name="inspections")
    op.drop_table("inspections")

    op.drop_index("ix_sites_created_at", table_name="sites")
    op.drop_table("sites")
