"""add picking_logs table

Revision ID: 20261019_0001
Revises:
Create Date: 2026-10-19 09:30:00
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261019_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "picking_logs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("vep_token", sa.String(length=64), nullable=False),
        sa.Column("do_no", sa.String(length=64), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="generated"),
        sa.Column("payload_json", sa.Text(), nullable=False),
        sa.Column("message", sa.Text(), nullable=True),
        sa.Column("rescode", sa.String(length=20), nullable=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint(
            "status IN ('generated', 'picked', 'error')",
            name="ck_picking_logs_status",
        ),
    )
    op.create_index("ix_picking_logs_id", "picking_logs", ["id"], unique=False)
    op.create_index("ix_picking_logs_vep_token", "picking_logs", ["vep_token"], unique=False)
    op.create_index("ix_picking_logs_do_no", "picking_logs", ["do_no"], unique=False)
    op.create_index("ix_picking_logs_status", "picking_logs", ["status"], unique=False)
    op.create_index("ix_picking_logs_vep_token_do_no", "picking_logs", ["vep_token", "do_no"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_picking_logs_vep_token_do_no", table_name="picking_logs")
    op.drop_index("ix_picking_logs_status", table_name="picking_logs")
    op.drop_index("ix_picking_logs_do_no", table_name="picking_logs")
    op.drop_index("ix_picking_logs_vep_token", table_name="picking_logs")
    op.drop_index("ix_picking_logs_id", table_name="picking_logs")
    op.drop_table("picking_logs")
