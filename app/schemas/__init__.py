"""Pydantic schemas."""

from app.schemas.commission import (  # noqa: F401
    CommissionPlanCreate,
    CommissionPlanResponse,
    CommissionPlanUpdate,
    EarningsHistoryResponse,
    IssueCommissionByDaysRequest,
    IssueCommissionByDaysResponse,
)
