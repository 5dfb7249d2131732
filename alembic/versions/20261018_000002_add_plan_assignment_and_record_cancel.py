"""Add plan assignments, plan targeting and record cancellation stamp

Revision ID: 20261018_000002
Revises: 20261018_000001
Create Date: 2026-10-18 15:30:00

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "20261018_000002"
down_revision: Union[str, None] = "20261018_000001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    with op.batch_alter_table("commission_plan") as batch_op:
        batch_op.add_column(
            sa.Column("target_user_type", sa.String(length=32), nullable=False, server_default="all")
        )

    with op.batch_alter_table("commission_record") as batch_op:
        batch_op.add_column(sa.Column("cancelled_at", sa.DateTime(), nullable=True))
        batch_op.add_column(sa.Column("cancelled_by", sa.String(), nullable=True))

    op.create_table(
        "commission_plan_assignment",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("plan_id", sa.String(), sa.ForeignKey("commission_plan.id", ondelete="CASCADE"), nullable=False),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("assigned_by", sa.String(), nullable=True),
        sa.Column("assigned_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("plan_id", "user_id", name="uq_commission_plan_assignment_user"),
    )
    op.create_index(op.f("ix_commission_plan_assignment_plan_id"), "commission_plan_assignment", ["plan_id"], unique=False)
    op.create_index(op.f("ix_commission_plan_assignment_user_id"), "commission_plan_assignment", ["user_id"], unique=False)


def downgrade() -> None:
    op.drop_index(op.f("ix_commission_plan_assignment_user_id"), table_name="commission_plan_assignment")
    op.drop_index(op.f("ix_commission_plan_assignment_plan_id"), table_name="commission_plan_assignment")
    op.drop_table("commission_plan_assignment")

    with op.batch_alter_table("commission_record") as batch_op:
        batch_op.drop_column("cancelled_by")
        batch_op.drop_column("cancelled_at")

    with op.batch_alter_table("commission_plan") as batch_op:
        batch_op.drop_column("target_user_type")
