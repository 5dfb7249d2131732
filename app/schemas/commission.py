from datetime import date, datetime
from decimal import Decimal
from typing import Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, StrictInt


EntryStatusLiteral = Literal["pending", "processing", "completed", "failed"]
TriggerTypeLiteral = Literal["manual", "workflow_threshold"]
AmountTypeLiteral = Literal["fixed", "percentage"]
PlanStatusLiteral = Literal["active", "inactive"]
TargetUserTypeLiteral = Literal["all", "specific"]


class CommissionErrorDetail(BaseModel):
    """Body of a 400 response for rejected commission input."""
    reason: str
    message: str


class CommissionErrorResponse(BaseModel):
    detail: CommissionErrorDetail


class Pagination(BaseModel):
    page: int
    page_size: int = Field(..., serialization_alias="pageSize")
    total: int
    total_pages: int = Field(..., serialization_alias="totalPages")

    model_config = ConfigDict(populate_by_name=True)


# ============================================================================
# Issuance
# ============================================================================


class IssueCommissionByDaysRequest(BaseModel):
    user_id: str = Field(..., min_length=1)
    # Minor currency units. Non-integers pass through so the schedule generator
    # rejects them with a machine-readable reason.
    total_amount: Union[StrictInt, float]
    days: Union[StrictInt, float]
    reason: Optional[str] = Field(None, max_length=500)
    source_plan_id: Optional[str] = None


class DailyScheduleItem(BaseModel):
    day: int
    amount: int
    scheduled_date: date


class IssueCommissionByDaysResponse(BaseModel):
    commission_record_id: str
    user_id: str
    total_amount: int
    days: int
    daily_schedule: List[DailyScheduleItem]


class BatchIssueCommissionByDaysRequest(BaseModel):
    user_ids: List[str] = Field(..., min_length=1, max_length=200)
    total_amount: Union[StrictInt, float]
    days: Union[StrictInt, float]
    reason: Optional[str] = Field(None, max_length=500)
    source_plan_id: Optional[str] = None


class BatchIssueSucceeded(BaseModel):
    user_id: str
    commission_record_id: str


class BatchIssueFailed(BaseModel):
    user_id: str
    reason: str
    message: str


class BatchIssueCommissionByDaysResponse(BaseModel):
    total_amount: int
    days: int
    succeeded: List[BatchIssueSucceeded]
    failed: List[BatchIssueFailed]


# ============================================================================
# Earnings history
# ============================================================================


class EarningsHistoryItem(BaseModel):
    id: str
    commission_record_id: str
    day_number: int
    amount: int
    total_amount: int
    reason: Optional[str] = None
    scheduled_date: date
    actual_date: Optional[date] = None
    status: EntryStatusLiteral
    transaction_id: Optional[str] = None


class EarningsHistoryResponse(BaseModel):
    items: List[EarningsHistoryItem]
    pagination: Pagination


# ============================================================================
# Records
# ============================================================================


class PayoutEntryResponse(BaseModel):
    id: str
    day_number: int
    amount: int
    scheduled_date: date
    status: EntryStatusLiteral
    transaction_id: Optional[str] = None
    actual_date: Optional[date] = None
    attempt_count: int
    failure_reason: Optional[str] = None
    next_attempt_at: Optional[datetime] = None
    stale_count: int = 0

    model_config = {"from_attributes": True}


class RecordProgressResponse(BaseModel):
    status: str
    total_entries: int
    completed_entries: int
    pending_entries: int
    processing_entries: int
    failed_entries: int
    cancelled_entries: int
    paid_amount: int
    remaining_amount: int


class CommissionRecordResponse(BaseModel):
    id: str
    user_id: str
    total_amount: int
    days: int
    reason: Optional[str] = None
    issued_by: Optional[str] = None
    source_plan_id: Optional[str] = None
    created_at: datetime
    cancelled_at: Optional[datetime] = None
    cancelled_by: Optional[str] = None
    progress: RecordProgressResponse


class CommissionRecordDetailResponse(CommissionRecordResponse):
    entries: List[PayoutEntryResponse]


class CommissionRecordListResponse(BaseModel):
    items: List[CommissionRecordResponse]
    pagination: Pagination


class CancelRecordResponse(BaseModel):
    record_id: str
    cancelled_entries: int


# ============================================================================
# Plans and eligibility
# ============================================================================


class CommissionPlanBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    trigger_type: TriggerTypeLiteral = "manual"
    amount_type: AmountTypeLiteral = "fixed"
    amount_value: Decimal = Field(Decimal("0"), ge=0)
    workflow_threshold: Optional[int] = Field(None, ge=1)
    auto_trigger: bool = False
    target_user_type: TargetUserTypeLiteral = "all"


class CommissionPlanCreate(CommissionPlanBase):
    status: PlanStatusLiteral = "active"


class CommissionPlanUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    trigger_type: Optional[TriggerTypeLiteral] = None
    amount_type: Optional[AmountTypeLiteral] = None
    amount_value: Optional[Decimal] = Field(None, ge=0)
    workflow_threshold: Optional[int] = Field(None, ge=1)
    auto_trigger: Optional[bool] = None
    target_user_type: Optional[TargetUserTypeLiteral] = None
    status: Optional[PlanStatusLiteral] = None


class CommissionPlanResponse(CommissionPlanBase):
    id: str
    status: PlanStatusLiteral
    created_by: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class CommissionPlanListResponse(BaseModel):
    items: List[CommissionPlanResponse]
    pagination: Pagination


class PlanAssignmentRequest(BaseModel):
    user_id: str = Field(..., min_length=1)


class PlanAssignmentResponse(BaseModel):
    id: str
    plan_id: str
    user_id: str
    assigned_by: Optional[str] = None
    assigned_at: datetime

    model_config = {"from_attributes": True}


class EligiblePlanResponse(CommissionPlanResponse):
    eligibility_reason: str


class EligiblePlansResponse(BaseModel):
    plans: List[EligiblePlanResponse]
    creator_workflow_count: int = Field(..., serialization_alias="creatorWorkflowCount")

    model_config = ConfigDict(populate_by_name=True)


# ============================================================================
# Creator status, entries, stats, jobs
# ============================================================================


class CreatorSummaryResponse(BaseModel):
    id: str
    username: str
    email: Optional[str] = None
    role: str
    workflow_count: int
    created_at: datetime
    record_count: int
    total_issued_amount: int
    paid_amount: int
    commission_active: bool


class CreatorListResponse(BaseModel):
    items: List[CreatorSummaryResponse]
    pagination: Pagination


class UserCommissionStatusUpdate(BaseModel):
    is_active: bool


class UserCommissionStatusResponse(BaseModel):
    user_id: str
    is_active: bool
    deactivated_at: Optional[datetime] = None
    updated_by: Optional[str] = None
    updated_at: datetime

    model_config = {"from_attributes": True}


class CommissionStatsResponse(BaseModel):
    total_records: int
    total_issued_amount: int
    paid_amount: int
    pending_amount: int
    entry_counts: Dict[str, int]
    failed_count: int
    cancelled_count: int
    suspended_users: int


class DisbursementRunResponse(BaseModel):
    due: int
    claimed: int
    skipped: int
    completed: int
    retried: int
    failed: int
    lost: int
    released: int = 0


class StaleSweepResponse(BaseModel):
    reclaimed: int
