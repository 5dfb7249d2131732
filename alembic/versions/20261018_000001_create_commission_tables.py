"""Create commission tables

Revision ID: 20261018_000001
Revises:
Create Date: 2026-10-18 09:00:00

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "20261018_000001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "commission_plan",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("trigger_type", sa.String(length=32), nullable=False, server_default="manual"),
        sa.Column("amount_type", sa.String(length=32), nullable=False, server_default="fixed"),
        sa.Column("amount_value", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("workflow_threshold", sa.Integer(), nullable=True),
        sa.Column("auto_trigger", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="active"),
        sa.Column("created_by", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )

    op.create_table(
        "commission_record",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("total_amount", sa.BigInteger(), nullable=False),
        sa.Column("days", sa.Integer(), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("issued_by", sa.String(), nullable=True),
        sa.Column("source_plan_id", sa.String(), sa.ForeignKey("commission_plan.id"), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("total_amount > 0", name="ck_commission_record_total_positive"),
        sa.CheckConstraint("days >= 1", name="ck_commission_record_days_positive"),
    )
    op.create_index(op.f("ix_commission_record_user_id"), "commission_record", ["user_id"], unique=False)
    op.create_index(op.f("ix_commission_record_source_plan_id"), "commission_record", ["source_plan_id"], unique=False)

    op.create_table(
        "commission_payout_entry",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("commission_record_id", sa.String(), sa.ForeignKey("commission_record.id"), nullable=False),
        sa.Column("day_number", sa.Integer(), nullable=False),
        sa.Column("amount", sa.BigInteger(), nullable=False),
        sa.Column("scheduled_date", sa.Date(), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="pending"),
        sa.Column("transaction_id", sa.String(), nullable=True),
        sa.Column("actual_date", sa.Date(), nullable=True),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.Column("attempt_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("failure_reason", sa.Text(), nullable=True),
        sa.Column("next_attempt_at", sa.DateTime(), nullable=True),
        sa.Column("claimed_at", sa.DateTime(), nullable=True),
        sa.Column("stale_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("commission_record_id", "day_number", name="uq_commission_payout_entry_day"),
        sa.CheckConstraint("amount > 0", name="ck_commission_payout_entry_amount_positive"),
    )
    op.create_index(
        op.f("ix_commission_payout_entry_commission_record_id"),
        "commission_payout_entry",
        ["commission_record_id"],
        unique=False,
    )
    op.create_index(
        "ix_commission_payout_entry_status_scheduled",
        "commission_payout_entry",
        ["status", "scheduled_date"],
        unique=False,
    )

    op.create_table(
        "user_commission_config",
        sa.Column("user_id", sa.String(), primary_key=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("deactivated_at", sa.DateTime(), nullable=True),
        sa.Column("updated_by", sa.String(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )

    op.create_table(
        "commission_operation_log",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("operation_type", sa.String(), nullable=False),
        sa.Column("target_type", sa.String(), nullable=False),
        sa.Column("target_id", sa.String(), nullable=False),
        sa.Column("user_id", sa.String(), nullable=True),
        sa.Column("operator_id", sa.String(), nullable=True),
        sa.Column("details", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index(op.f("ix_commission_operation_log_operation_type"), "commission_operation_log", ["operation_type"], unique=False)
    op.create_index(op.f("ix_commission_operation_log_target_id"), "commission_operation_log", ["target_id"], unique=False)
    op.create_index(op.f("ix_commission_operation_log_user_id"), "commission_operation_log", ["user_id"], unique=False)


def downgrade() -> None:
    op.drop_index(op.f("ix_commission_operation_log_user_id"), table_name="commission_operation_log")
    op.drop_index(op.f("ix_commission_operation_log_target_id"), table_name="commission_operation_log")
    op.drop_index(op.f("ix_commission_operation_log_operation_type"), table_name="commission_operation_log")
    op.drop_table("commission_operation_log")
    op.drop_table("user_commission_config")
    op.drop_index("ix_commission_payout_entry_status_scheduled", table_name="commission_payout_entry")
    op.drop_index(op.f("ix_commission_payout_entry_commission_record_id"), table_name="commission_payout_entry")
    op.drop_table("commission_payout_entry")
    op.drop_index(op.f("ix_commission_record_source_plan_id"), table_name="commission_record")
    op.drop_index(op.f("ix_commission_record_user_id"), table_name="commission_record")
    op.drop_table("commission_record")
    op.drop_table("commission_plan")
