"""SQLAlchemy models for the commission service."""

from app.models.commission import (  # noqa: F401
    CommissionOperationLog,
    CommissionPayoutEntry,
    CommissionPlan,
    CommissionPlanAssignment,
    CommissionRecord,
    PayoutEntryStatus,
    PlanAmountType,
    PlanStatus,
    PlanTargetUserType,
    PlanTriggerType,
    UserCommissionConfig,
)
from app.models.creator import Creator  # noqa: F401
