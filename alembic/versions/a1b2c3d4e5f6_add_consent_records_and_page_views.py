"""Add consent_records and page_views tables

Revision ID: a1b2c3d4e5f6
Revises:
Create Date: 2026-10-18

"""

from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "a1b2c3d4e5f6"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # Consent audit trail
    op.create_table(
        "consent_records",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("visitor_id", sa.String(length=64), nullable=False),
        sa.Column("policy_version", sa.String(length=20), nullable=False),
        sa.Column("marketing_granted", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("action", sa.String(length=50), nullable=False),
        sa.Column(
            "consented_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.Column("ip_address", sa.String(length=45), nullable=True),
        sa.Column("user_agent", sa.String(length=512), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_consent_records_id", "consent_records", ["id"])
    op.create_index("ix_consent_records_visitor_id", "consent_records", ["visitor_id"])
    op.create_index("idx_consent_visitor_version", "consent_records", ["visitor_id", "policy_version"])

    # First-party page views
    op.create_table(
        "page_views",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("visitor_hash", sa.String(length=64), nullable=False),
        sa.Column("user_id", sa.String(length=128), nullable=True),
        sa.Column("path", sa.String(length=2048), nullable=False),
        sa.Column("utm_source", sa.String(length=255), nullable=True),
        sa.Column("utm_medium", sa.String(length=255), nullable=True),
        sa.Column("utm_campaign", sa.String(length=255), nullable=True),
        sa.Column("utm_term", sa.String(length=255), nullable=True),
        sa.Column("utm_content", sa.String(length=255), nullable=True),
        sa.Column("referrer", sa.Text(), nullable=True),
        sa.Column("locale", sa.String(length=10), nullable=False, server_default="en"),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_page_views_id", "page_views", ["id"])
    op.create_index("idx_page_views_created", "page_views", ["created_at"])
    op.create_index("idx_page_views_visitor_created", "page_views", ["visitor_hash", "created_at"])


def downgrade() -> None:
    op.drop_index("idx_page_views_visitor_created", table_name="page_views")
    op.drop_index("idx_page_views_created", table_name="page_views")
    op.drop_index("ix_page_views_id", table_name="page_views")
    op.drop_table("page_views")

    op.drop_index("idx_consent_visitor_version", table_name="consent_records")
    op.drop_index("ix_consent_records_visitor_id", table_name="consent_records")
    op.drop_index("ix_consent_records_id", table_name="consent_records")
    op.drop_table("consent_records")
