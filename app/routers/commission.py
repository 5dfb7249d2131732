"""Admin commission router: issuance, payout administration and plans."""

import logging
from typing import AsyncIterator, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import AuthenticatedUser, require_admin
from app.core.db import AsyncSessionFactory, get_db
from app.schemas.commission import (
    BatchIssueCommissionByDaysRequest,
    BatchIssueCommissionByDaysResponse,
    CancelRecordResponse,
    CommissionErrorResponse,
    CommissionPlanCreate,
    CommissionPlanListResponse,
    CommissionPlanResponse,
    CommissionPlanUpdate,
    CommissionRecordDetailResponse,
    CommissionRecordListResponse,
    CommissionStatsResponse,
    CreatorListResponse,
    DisbursementRunResponse,
    EarningsHistoryResponse,
    EligiblePlansResponse,
    EntryStatusLiteral,
    IssueCommissionByDaysRequest,
    IssueCommissionByDaysResponse,
    PayoutEntryResponse,
    PlanAssignmentRequest,
    PlanAssignmentResponse,
    PlanStatusLiteral,
    StaleSweepResponse,
    UserCommissionStatusResponse,
    UserCommissionStatusUpdate,
)
from app.services.commission import CommissionService
from app.services.commission_disbursement import DisbursementProcessor
from app.services.commission_errors import (
    CommissionNotFoundError,
    CommissionStateError,
    CommissionValidationError,
)
from app.services.wallet_ledger import WalletLedgerClient

logger = logging.getLogger(__name__)

router = APIRouter()


async def _service(db: AsyncSession = Depends(get_db)) -> CommissionService:
    return CommissionService(db)


async def get_disbursement_processor() -> AsyncIterator[DisbursementProcessor]:
    ledger = WalletLedgerClient()
    try:
        yield DisbursementProcessor(AsyncSessionFactory, ledger)
    finally:
        await ledger.close()


# OpenAPI shape of _validation_error responses
VALIDATION_ERROR_RESPONSES = {status.HTTP_400_BAD_REQUEST: {"model": CommissionErrorResponse}}


def _validation_error(exc: CommissionValidationError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail={"reason": exc.reason, "message": exc.message},
    )


# =============================================================================
# Issuance
# =============================================================================


@router.post(
    "/issue-by-days",
    response_model=IssueCommissionByDaysResponse,
    status_code=status.HTTP_201_CREATED,
    responses=VALIDATION_ERROR_RESPONSES,
)
async def issue_commission_by_days(
    payload: IssueCommissionByDaysRequest,
    admin: AuthenticatedUser = Depends(require_admin()),
    service: CommissionService = Depends(_service),
) -> IssueCommissionByDaysResponse:
    """Grant a total amount to a creator, paid in randomized daily installments."""
    try:
        return await service.issue_by_days(payload, issued_by=admin.id)
    except CommissionValidationError as exc:
        logger.info(
            "commission_issue_rejected",
            extra={"user_id": payload.user_id, "reason": exc.reason, "admin_id": admin.id},
        )
        raise _validation_error(exc)
    except CommissionNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))


@router.post(
    "/batch-issue-by-days",
    response_model=BatchIssueCommissionByDaysResponse,
    responses=VALIDATION_ERROR_RESPONSES,
)
async def batch_issue_commission_by_days(
    payload: BatchIssueCommissionByDaysRequest,
    admin: AuthenticatedUser = Depends(require_admin()),
    service: CommissionService = Depends(_service),
) -> BatchIssueCommissionByDaysResponse:
    """Grant the same amount to several creators. Per-creator failures are listed, not raised."""
    try:
        return await service.batch_issue_by_days(payload, issued_by=admin.id)
    except CommissionValidationError as exc:
        logger.info(
            "commission_batch_issue_rejected",
            extra={"user_count": len(payload.user_ids), "reason": exc.reason, "admin_id": admin.id},
        )
        raise _validation_error(exc)


# =============================================================================
# Creators
# =============================================================================


@router.get("/users", response_model=CreatorListResponse)
async def list_commission_creators(
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=20, ge=1, le=100, alias="pageSize"),
    search: Optional[str] = Query(default=None, max_length=100),
    role: Optional[str] = Query(default="creator"),
    plan_id: Optional[str] = Query(default=None),
    _admin: AuthenticatedUser = Depends(require_admin()),
    service: CommissionService = Depends(_service),
) -> CreatorListResponse:
    """Creators with their grant counts and paid totals. `plan_id` narrows to a plan's assignees."""
    return await service.list_creators(page, page_size, search=search, role=role, plan_id=plan_id)


@router.get("/users/{user_id}/earnings-history", response_model=EarningsHistoryResponse)
async def get_user_earnings_history(
    user_id: str,
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=20, ge=1, le=100, alias="pageSize"),
    entry_status: Optional[EntryStatusLiteral] = Query(default=None, alias="status"),
    _admin: AuthenticatedUser = Depends(require_admin()),
    service: CommissionService = Depends(_service),
) -> EarningsHistoryResponse:
    return await service.get_earnings_history(user_id, page, page_size, entry_status)


@router.get("/users/{user_id}/eligible-plans", response_model=EligiblePlansResponse)
async def get_user_eligible_plans(
    user_id: str,
    _admin: AuthenticatedUser = Depends(require_admin()),
    service: CommissionService = Depends(_service),
) -> EligiblePlansResponse:
    try:
        return await service.get_eligible_plans(user_id)
    except CommissionNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))


@router.put("/users/{user_id}/status", response_model=UserCommissionStatusResponse)
async def update_user_commission_status(
    user_id: str,
    payload: UserCommissionStatusUpdate,
    admin: AuthenticatedUser = Depends(require_admin()),
    service: CommissionService = Depends(_service),
) -> UserCommissionStatusResponse:
    """Suspend or resume payouts to a creator. Suspended entries stay pending."""
    return await service.set_user_status(user_id, payload.is_active, operator_id=admin.id)


# =============================================================================
# Records and entries
# =============================================================================


@router.get("/records", response_model=CommissionRecordListResponse)
async def list_commission_records(
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=20, ge=1, le=100, alias="pageSize"),
    user_id: Optional[str] = Query(default=None),
    _admin: AuthenticatedUser = Depends(require_admin()),
    service: CommissionService = Depends(_service),
) -> CommissionRecordListResponse:
    return await service.list_records(page, page_size, user_id)


@router.get("/records/{record_id}", response_model=CommissionRecordDetailResponse)
async def get_commission_record(
    record_id: str,
    _admin: AuthenticatedUser = Depends(require_admin()),
    service: CommissionService = Depends(_service),
) -> CommissionRecordDetailResponse:
    record = await service.get_record(record_id)
    if not record:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Commission record not found")
    return record


@router.put("/records/{record_id}/cancel", response_model=CancelRecordResponse)
async def cancel_commission_record(
    record_id: str,
    admin: AuthenticatedUser = Depends(require_admin()),
    service: CommissionService = Depends(_service),
) -> CancelRecordResponse:
    try:
        return await service.cancel_record(record_id, operator_id=admin.id)
    except CommissionNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))


@router.put("/entries/{entry_id}/retry", response_model=PayoutEntryResponse)
async def retry_payout_entry(
    entry_id: str,
    admin: AuthenticatedUser = Depends(require_admin()),
    service: CommissionService = Depends(_service),
) -> PayoutEntryResponse:
    try:
        return await service.retry_entry(entry_id, operator_id=admin.id)
    except CommissionNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    except CommissionStateError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))


@router.get("/stats", response_model=CommissionStatsResponse)
async def get_commission_stats(
    _admin: AuthenticatedUser = Depends(require_admin()),
    service: CommissionService = Depends(_service),
) -> CommissionStatsResponse:
    return await service.get_stats()


# =============================================================================
# Plans
# =============================================================================


@router.get("/plans", response_model=CommissionPlanListResponse)
async def list_commission_plans(
    plan_status: Optional[PlanStatusLiteral] = Query(default=None, alias="status"),
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=50, ge=1, le=100, alias="pageSize"),
    _admin: AuthenticatedUser = Depends(require_admin()),
    service: CommissionService = Depends(_service),
) -> CommissionPlanListResponse:
    return await service.list_plans(plan_status, page, page_size)


@router.post(
    "/plans",
    response_model=CommissionPlanResponse,
    status_code=status.HTTP_201_CREATED,
    responses=VALIDATION_ERROR_RESPONSES,
)
async def create_commission_plan(
    payload: CommissionPlanCreate,
    admin: AuthenticatedUser = Depends(require_admin()),
    service: CommissionService = Depends(_service),
) -> CommissionPlanResponse:
    try:
        return await service.create_plan(payload, created_by=admin.id)
    except CommissionValidationError as exc:
        raise _validation_error(exc)


@router.get("/plans/{plan_id}", response_model=CommissionPlanResponse)
async def get_commission_plan(
    plan_id: str,
    _admin: AuthenticatedUser = Depends(require_admin()),
    service: CommissionService = Depends(_service),
) -> CommissionPlanResponse:
    plan = await service.get_plan(plan_id)
    if not plan:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Commission plan not found")
    return plan


@router.put("/plans/{plan_id}", response_model=CommissionPlanResponse, responses=VALIDATION_ERROR_RESPONSES)
async def update_commission_plan(
    plan_id: str,
    payload: CommissionPlanUpdate,
    admin: AuthenticatedUser = Depends(require_admin()),
    service: CommissionService = Depends(_service),
) -> CommissionPlanResponse:
    try:
        return await service.update_plan(plan_id, payload, updated_by=admin.id)
    except CommissionValidationError as exc:
        raise _validation_error(exc)
    except CommissionNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))


@router.delete("/plans/{plan_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_commission_plan(
    plan_id: str,
    admin: AuthenticatedUser = Depends(require_admin()),
    service: CommissionService = Depends(_service),
) -> None:
    try:
        await service.delete_plan(plan_id, deleted_by=admin.id)
    except CommissionNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    except CommissionStateError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))


@router.post(
    "/plans/{plan_id}/assign",
    response_model=PlanAssignmentResponse,
    status_code=status.HTTP_201_CREATED,
)
async def assign_commission_plan(
    plan_id: str,
    payload: PlanAssignmentRequest,
    admin: AuthenticatedUser = Depends(require_admin()),
    service: CommissionService = Depends(_service),
) -> PlanAssignmentResponse:
    """Assign a creator to a plan. Plans targeting specific creators are only offered to assignees."""
    try:
        return await service.assign_plan(plan_id, payload.user_id, assigned_by=admin.id)
    except CommissionNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    except CommissionStateError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))


@router.delete("/plans/{plan_id}/users/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def unassign_commission_plan(
    plan_id: str,
    user_id: str,
    admin: AuthenticatedUser = Depends(require_admin()),
    service: CommissionService = Depends(_service),
) -> None:
    try:
        await service.unassign_plan(plan_id, user_id, operator_id=admin.id)
    except CommissionNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))


# =============================================================================
# Jobs
# =============================================================================


@router.post("/process-payouts", response_model=DisbursementRunResponse)
async def process_payouts(
    admin: AuthenticatedUser = Depends(require_admin()),
    processor: DisbursementProcessor = Depends(get_disbursement_processor),
) -> DisbursementRunResponse:
    """Run one disbursement tick now instead of waiting for the scheduler."""
    logger.info("manual_disbursement_triggered", extra={"admin_id": admin.id})
    result = await processor.run_tick()
    return DisbursementRunResponse(**result.__dict__)


@router.post("/sweep-stale-claims", response_model=StaleSweepResponse)
async def sweep_stale_claims(
    admin: AuthenticatedUser = Depends(require_admin()),
    processor: DisbursementProcessor = Depends(get_disbursement_processor),
) -> StaleSweepResponse:
    logger.info("manual_stale_sweep_triggered", extra={"admin_id": admin.id})
    return StaleSweepResponse(reclaimed=await processor.sweep_stale_claims())
