"""create health_reports and health_analyses

Revision ID: 0001
Revises:
Create Date: 2026-10-19 00:00:00

"""
from alembic import op
import sqlalchemy as sa

revision = "0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "health_reports",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("file_name", sa.Text(), nullable=False),
        sa.Column("file_type", sa.String(length=100), nullable=False),
        sa.Column("file_path", sa.Text(), nullable=False),
        sa.Column("uploaded_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_health_reports_uploaded_at", "health_reports", ["uploaded_at"])

    op.create_table(
        "health_analyses",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column(
            "report_id",
            sa.String(length=36),
            sa.ForeignKey("health_reports.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("life_score", sa.Integer(), nullable=False),
        sa.Column("metrics", sa.JSON(), nullable=False),
        sa.Column("insights", sa.JSON(), nullable=False),
        sa.Column("recommendations", sa.JSON(), nullable=False),
        sa.Column("summary", sa.Text(), nullable=False),
        sa.Column("analysis_date", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_health_analyses_report_id", "health_analyses", ["report_id"], unique=True)


def downgrade() -> None:
    op.drop_index("ix_health_analyses_report_id", table_name="health_analyses")
    op.drop_table("health_analyses")
    op.drop_index("ix_health_reports_uploaded_at", table_name="health_reports")
    op.drop_table("health_reports")
