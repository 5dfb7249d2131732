"""Commission plan, grant and daily payout models."""

import enum

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import relationship

from app.models.base import Base
from app.utils.clock import utcnow


class PlanTriggerType(str, enum.Enum):
    MANUAL = "manual"
    WORKFLOW_THRESHOLD = "workflow_threshold"


class PlanAmountType(str, enum.Enum):
    FIXED = "fixed"
    PERCENTAGE = "percentage"


class PlanStatus(str, enum.Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class PlanTargetUserType(str, enum.Enum):
    ALL = "all"
    SPECIFIC = "specific"  # only creators assigned to the plan


class PayoutEntryStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


# failure_reason stored on entries cancelled by an admin
CANCELLED_REASON = "cancelled"


def _enum_column(enum_class, default):
    return Column(
        Enum(enum_class, values_callable=lambda e: [member.value for member in e], native_enum=False, length=32),
        nullable=False,
        default=default,
    )


class CommissionPlan(Base):
    """
    Admin-configured payout rule.

    Describes who qualifies (trigger) and the nominal payout shape. The amount
    actually granted is always chosen by the admin at issuance time.
    """

    __tablename__ = "commission_plan"

    id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)

    trigger_type = _enum_column(PlanTriggerType, PlanTriggerType.MANUAL)
    amount_type = _enum_column(PlanAmountType, PlanAmountType.FIXED)
    amount_value = Column(Numeric(12, 2), nullable=False, default=0)
    workflow_threshold = Column(Integer, nullable=True)
    auto_trigger = Column(Boolean, nullable=False, default=False)
    target_user_type = _enum_column(PlanTargetUserType, PlanTargetUserType.ALL)
    status = _enum_column(PlanStatus, PlanStatus.ACTIVE)

    created_by = Column(String, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow, server_default=func.now())
    updated_at = Column(DateTime, nullable=False, default=utcnow, server_default=func.now(), onupdate=utcnow)

    records = relationship("CommissionRecord", back_populates="source_plan")


class CommissionRecord(Base):
    """
    One grant of a total amount to a creator, paid over `days` daily installments.
    Amounts and schedule never change after creation; progress lives on the
    payout entries. Cancellation only stamps cancelled_at.
    """

    __tablename__ = "commission_record"
    __table_args__ = (
        CheckConstraint("total_amount > 0", name="ck_commission_record_total_positive"),
        CheckConstraint("days >= 1", name="ck_commission_record_days_positive"),
    )

    id = Column(String, primary_key=True)
    user_id = Column(String, nullable=False, index=True)

    # Minor currency units (cents / WH coins)
    total_amount = Column(BigInteger, nullable=False)
    days = Column(Integer, nullable=False)
    reason = Column(Text, nullable=True)

    issued_by = Column(String, nullable=True)
    source_plan_id = Column(String, ForeignKey("commission_plan.id"), nullable=True, index=True)

    cancelled_at = Column(DateTime, nullable=True)
    cancelled_by = Column(String, nullable=True)

    created_at = Column(DateTime, nullable=False, default=utcnow, server_default=func.now())

    source_plan = relationship("CommissionPlan", back_populates="records")
    entries = relationship(
        "CommissionPayoutEntry",
        back_populates="record",
        cascade="all, delete-orphan",
        order_by="CommissionPayoutEntry.day_number",
    )


class CommissionPayoutEntry(Base):
    """One scheduled daily installment of a commission record."""

    __tablename__ = "commission_payout_entry"
    __table_args__ = (
        UniqueConstraint("commission_record_id", "day_number", name="uq_commission_payout_entry_day"),
        Index("ix_commission_payout_entry_status_scheduled", "status", "scheduled_date"),
        CheckConstraint("amount > 0", name="ck_commission_payout_entry_amount_positive"),
    )

    id = Column(String, primary_key=True)
    commission_record_id = Column(String, ForeignKey("commission_record.id"), nullable=False, index=True)

    day_number = Column(Integer, nullable=False)
    amount = Column(BigInteger, nullable=False)
    scheduled_date = Column(Date, nullable=False)

    status = _enum_column(PayoutEntryStatus, PayoutEntryStatus.PENDING)

    # Ledger outcome
    transaction_id = Column(String, nullable=True)
    actual_date = Column(Date, nullable=True)
    completed_at = Column(DateTime, nullable=True)

    # Retry bookkeeping
    attempt_count = Column(Integer, nullable=False, default=0)
    failure_reason = Column(Text, nullable=True)
    next_attempt_at = Column(DateTime, nullable=True)

    # Claim bookkeeping for the stale-claim sweep
    claimed_at = Column(DateTime, nullable=True)
    stale_count = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime, nullable=False, default=utcnow, server_default=func.now())
    updated_at = Column(DateTime, nullable=False, default=utcnow, server_default=func.now(), onupdate=utcnow)

    record = relationship("CommissionRecord", back_populates="entries")


class CommissionPlanAssignment(Base):
    """Creator assigned to a plan. Plans targeting specific creators are only offered to assignees."""

    __tablename__ = "commission_plan_assignment"
    __table_args__ = (
        UniqueConstraint("plan_id", "user_id", name="uq_commission_plan_assignment_user"),
    )

    id = Column(String, primary_key=True)
    plan_id = Column(String, ForeignKey("commission_plan.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String, nullable=False, index=True)
    assigned_by = Column(String, nullable=True)
    assigned_at = Column(DateTime, nullable=False, default=utcnow, server_default=func.now())


class UserCommissionConfig(Base):
    """Per-creator kill switch. No row means payouts are active."""

    __tablename__ = "user_commission_config"

    user_id = Column(String, primary_key=True)
    is_active = Column(Boolean, nullable=False, default=True)
    deactivated_at = Column(DateTime, nullable=True)
    updated_by = Column(String, nullable=True)
    updated_at = Column(DateTime, nullable=False, default=utcnow, server_default=func.now(), onupdate=utcnow)


class CommissionOperationLog(Base):
    """Audit trail for grants, payouts and admin actions."""

    __tablename__ = "commission_operation_log"

    id = Column(String, primary_key=True)
    operation_type = Column(String, nullable=False, index=True)
    target_type = Column(String, nullable=False)
    target_id = Column(String, nullable=False, index=True)
    user_id = Column(String, nullable=True, index=True)
    operator_id = Column(String, nullable=True)  # None for the system worker
    details = Column(JSON, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow, server_default=func.now())
