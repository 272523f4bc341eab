"""Create marketplace trust tables

Revision ID: 0001
Revises:
Create Date: 2026-10-19

"""

from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("email", sa.String(320), unique=True, nullable=False),
        sa.Column("role", sa.String(20), nullable=False, server_default="user"),
        sa.Column("email_verified_at", sa.DateTime, nullable=True),
        sa.Column("created_at", sa.DateTime, nullable=False),
    )

    op.create_table(
        "skills",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("creator_id", sa.String(36), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("slug", sa.String(120), unique=True, nullable=False),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("version", sa.String(40), nullable=False, server_default="1.0.0"),
        sa.Column("file_url", sa.String(1024), nullable=True),
        sa.Column("description_long", sa.Text, nullable=True),
        sa.Column("test_coverage", sa.Float, nullable=True),
        sa.Column("static_analysis_score", sa.Float, nullable=True),
        sa.Column("rating_avg", sa.Float, nullable=True),
        sa.Column("rating_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("i18n_completeness", sa.Float, nullable=True),
        sa.Column("last_critical_defect_at", sa.DateTime, nullable=True),
        sa.Column("published_at", sa.DateTime, nullable=True),
        sa.Column("certification", sa.String(10), nullable=False, server_default="none"),
        sa.Column("quality_score", sa.Float, nullable=False, server_default="0"),
        sa.Column("certified_at", sa.DateTime, nullable=True),
        sa.Column("created_at", sa.DateTime, nullable=False),
    )
    op.create_index("ix_skills_creator_id", "skills", ["creator_id"])

    op.create_table(
        "purchases",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(36), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("skill_id", sa.String(36), sa.ForeignKey("skills.id", ondelete="CASCADE"), nullable=False),
        sa.Column("created_at", sa.DateTime, nullable=False),
        sa.UniqueConstraint("user_id", "skill_id", name="uq_purchases_user_skill"),
    )
    op.create_index("ix_purchases_user_id", "purchases", ["user_id"])
    op.create_index("ix_purchases_skill_id", "purchases", ["skill_id"])

    op.create_table(
        "download_grants",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("token", sa.String(64), unique=True, nullable=False),
        sa.Column("owner_id", sa.String(36), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("artifact_id", sa.String(36), sa.ForeignKey("skills.id", ondelete="CASCADE"), nullable=False),
        sa.Column("created_at", sa.DateTime, nullable=False),
        sa.Column("expires_at", sa.DateTime, nullable=False),
        sa.Column("max_uses", sa.Integer, nullable=False),
        sa.Column("use_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("revoked", sa.Boolean, nullable=False, server_default=sa.false()),
    )
    op.create_index("ix_download_grants_owner_artifact", "download_grants", ["owner_id", "artifact_id"])

    op.create_table(
        "agent_credentials",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("owner_id", sa.String(36), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.String(100), nullable=True),
        sa.Column("key_prefix", sa.String(32), nullable=False),
        sa.Column("secret_hash", sa.String(128), unique=True, nullable=False),
        sa.Column("permissions", sa.JSON, nullable=False),
        sa.Column("created_at", sa.DateTime, nullable=False),
        sa.Column("last_used_at", sa.DateTime, nullable=True),
        sa.Column("revoked_at", sa.DateTime, nullable=True),
    )
    op.create_index("ix_agent_credentials_owner_id", "agent_credentials", ["owner_id"])
    op.create_index("ix_agent_credentials_key_prefix", "agent_credentials", ["key_prefix"])

    op.create_table(
        "certification_criteria",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("level", sa.String(10), nullable=False),
        sa.Column("name", sa.String(64), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("weight", sa.Float, nullable=False),
        sa.Column("auto_checkable", sa.Boolean, nullable=False, server_default=sa.true()),
    )
    op.create_index("ix_certification_criteria_level", "certification_criteria", ["level"])

    op.create_table(
        "certification_requests",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("skill_id", sa.String(36), sa.ForeignKey("skills.id", ondelete="CASCADE"), nullable=False),
        sa.Column("target_level", sa.String(10), nullable=False),
        sa.Column("status", sa.String(10), nullable=False, server_default="pending"),
        sa.Column("requested_by", sa.String(36), nullable=False),
        sa.Column("requested_at", sa.DateTime, nullable=False),
        sa.Column("quality_score_at_request", sa.Float, nullable=False, server_default="0"),
        sa.Column("reviewed_by", sa.String(36), nullable=True),
        sa.Column("reviewed_at", sa.DateTime, nullable=True),
        sa.Column("feedback", sa.Text, nullable=True),
    )
    op.create_index("ix_certification_requests_skill_id", "certification_requests", ["skill_id"])

    op.create_table(
        "skill_certifications",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("skill_id", sa.String(36), sa.ForeignKey("skills.id", ondelete="CASCADE"), nullable=False),
        sa.Column("level", sa.String(10), nullable=False),
        sa.Column("quality_score", sa.Float, nullable=False),
        sa.Column("certified_by", sa.String(36), nullable=True),
        sa.Column("certified_at", sa.DateTime, nullable=False),
    )
    op.create_index("ix_skill_certifications_skill_id", "skill_certifications", ["skill_id"])


def downgrade() -> None:
    op.drop_index("ix_skill_certifications_skill_id", table_name="skill_certifications")
    op.drop_table("skill_certifications")
    op.drop_index("ix_certification_requests_skill_id", table_name="certification_requests")
    op.drop_table("certification_requests")
    op.drop_index("ix_certification_criteria_level", table_name="certification_criteria")
    op.drop_table("certification_criteria")
    op.drop_index("ix_agent_credentials_key_prefix", table_name="agent_credentials")
    op.drop_index("ix_agent_credentials_owner_id", table_name="agent_credentials")
    op.drop_table("agent_credentials")
    op.drop_index("ix_download_grants_owner_artifact", table_name="download_grants")
    op.drop_table("download_grants")
    op.drop_index("ix_purchases_skill_id", table_name="purchases")
    op.drop_index("ix_purchases_user_id", table_name="purchases")
    op.drop_table("purchases")
    op.drop_index("ix_skills_creator_id", table_name="skills")
    op.drop_table("skills")
    op.drop_table("users")
