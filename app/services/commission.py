"""Commission service: admin issuance, creator earnings and payout administration."""

import logging
import random
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import Settings, get_settings
from app.models.commission import (
    CommissionPayoutEntry,
    CommissionPlan,
    CommissionPlanAssignment,
    CommissionRecord,
    PayoutEntryStatus,
    UserCommissionConfig,
)
from app.schemas.commission import (
    BatchIssueCommissionByDaysRequest,
    BatchIssueCommissionByDaysResponse,
    BatchIssueFailed,
    BatchIssueSucceeded,
    CancelRecordResponse,
    CommissionPlanCreate,
    CommissionPlanListResponse,
    CommissionPlanResponse,
    CommissionPlanUpdate,
    CommissionRecordDetailResponse,
    CommissionRecordListResponse,
    CommissionRecordResponse,
    CommissionStatsResponse,
    CreatorListResponse,
    CreatorSummaryResponse,
    DailyScheduleItem,
    EarningsHistoryItem,
    EarningsHistoryResponse,
    EligiblePlanResponse,
    EligiblePlansResponse,
    IssueCommissionByDaysRequest,
    IssueCommissionByDaysResponse,
    Pagination,
    PayoutEntryResponse,
    PlanAssignmentResponse,
    RecordProgressResponse,
    UserCommissionStatusResponse,
)
from app.services.commission_eligibility import CreatorSnapshot, eligible_plans
from app.services.commission_errors import CommissionNotFoundError, CommissionValidationError
from app.services.commission_schedule import validate_schedule_input
from app.services.commission_store import CommissionStore, CreatorSummary, EarningsHistoryRow, RecordProgress

logger = logging.getLogger(__name__)


def _value(field):
    return field.value if hasattr(field, "value") else field


def _pagination(page: int, page_size: int, total: int) -> Pagination:
    return Pagination(
        page=page,
        page_size=page_size,
        total=total,
        total_pages=(total + page_size - 1) // page_size if page_size else 0,
    )


class CommissionService:
    """Service for issuing commissions and administering their payouts."""

    def __init__(self, db: AsyncSession, settings: Optional[Settings] = None):
        self.db = db
        self.settings = settings or get_settings()
        self.store = CommissionStore(db, self.settings)

    # =========================================================================
    # Issuance
    # =========================================================================

    async def issue_by_days(
        self,
        data: IssueCommissionByDaysRequest,
        issued_by: Optional[str] = None,
        rng: Optional[random.Random] = None,
    ) -> IssueCommissionByDaysResponse:
        """Grant `total_amount` to a creator, paid out over `days` randomized daily installments."""
        creator = await self.store.get_creator(data.user_id)
        if creator is None or not creator.is_creator:
            raise CommissionNotFoundError(f"Creator {data.user_id} not found")

        record, entries = await self.store.create_record(
            data.user_id,
            data.total_amount,
            data.days,
            data.source_plan_id,
            reason=data.reason,
            issued_by=issued_by,
            rng=rng,
        )
        return IssueCommissionByDaysResponse(
            commission_record_id=record.id,
            user_id=record.user_id,
            total_amount=record.total_amount,
            days=record.days,
            daily_schedule=[
                DailyScheduleItem(day=e.day_number, amount=e.amount, scheduled_date=e.scheduled_date)
                for e in entries
            ],
        )

    async def batch_issue_by_days(
        self,
        data: BatchIssueCommissionByDaysRequest,
        issued_by: Optional[str] = None,
        rng: Optional[random.Random] = None,
    ) -> BatchIssueCommissionByDaysResponse:
        """
        Issue the same grant to several creators, one record each.

        Amount, days and plan are checked once up front and reject the whole
        batch. Per-creator problems (unknown creator, store errors) are reported
        in `failed` without stopping the rest.
        """
        validate_schedule_input(
            data.total_amount,
            data.days,
            max_days=self.settings.commission_max_days,
            max_total_amount=self.settings.commission_max_total_amount,
        )
        if data.source_plan_id is not None and await self.store.get_plan(data.source_plan_id) is None:
            raise CommissionValidationError(
                f"Commission plan {data.source_plan_id} does not exist", reason="UnknownCommissionPlan"
            )

        succeeded, failed = [], []
        # Same creator listed twice gets one grant
        for user_id in dict.fromkeys(data.user_ids):
            creator = await self.store.get_creator(user_id)
            if creator is None or not creator.is_creator:
                failed.append(
                    BatchIssueFailed(user_id=user_id, reason="CreatorNotFound", message=f"Creator {user_id} not found")
                )
                continue
            try:
                record, _ = await self.store.create_record(
                    user_id,
                    data.total_amount,
                    data.days,
                    data.source_plan_id,
                    reason=data.reason,
                    issued_by=issued_by,
                    rng=rng,
                )
            except CommissionValidationError as exc:
                failed.append(BatchIssueFailed(user_id=user_id, reason=exc.reason, message=exc.message))
                continue
            succeeded.append(BatchIssueSucceeded(user_id=user_id, commission_record_id=record.id))

        logger.info(
            "commission_batch_issued",
            extra={"succeeded": len(succeeded), "failed": len(failed), "issued_by": issued_by},
        )
        return BatchIssueCommissionByDaysResponse(
            total_amount=data.total_amount,
            days=data.days,
            succeeded=succeeded,
            failed=failed,
        )

    # =========================================================================
    # Creator views
    # =========================================================================

    async def list_creators(
        self,
        page: int = 1,
        page_size: int = 20,
        search: Optional[str] = None,
        role: Optional[str] = "creator",
        plan_id: Optional[str] = None,
    ) -> CreatorListResponse:
        summaries, total = await self.store.list_creators(
            page, page_size, search=search, role=role, plan_id=plan_id
        )
        return CreatorListResponse(
            items=[self._creator_to_response(s) for s in summaries],
            pagination=_pagination(page, page_size, total),
        )

    async def get_earnings_history(
        self,
        user_id: str,
        page: int = 1,
        page_size: int = 20,
        status: Optional[str] = None,
    ) -> EarningsHistoryResponse:
        rows, total = await self.store.history_for_user(user_id, page, page_size, status=status)
        return EarningsHistoryResponse(
            items=[self._history_to_response(row) for row in rows],
            pagination=_pagination(page, page_size, total),
        )

    async def get_eligible_plans(self, user_id: str) -> EligiblePlansResponse:
        creator = await self.store.get_creator(user_id)
        if creator is None:
            raise CommissionNotFoundError(f"Creator {user_id} not found")

        snapshot = CreatorSnapshot(
            id=creator.id,
            workflow_count=creator.workflow_count or 0,
            assigned_plan_ids=await self.store.assigned_plan_ids(creator.id),
        )
        matches = eligible_plans(await self.store.active_plans(), snapshot)
        return EligiblePlansResponse(
            plans=[
                EligiblePlanResponse(
                    **self._plan_to_response(match.plan).model_dump(),
                    eligibility_reason=match.reason,
                )
                for match in matches
            ],
            creator_workflow_count=snapshot.workflow_count,
        )

    # =========================================================================
    # Payout administration
    # =========================================================================

    async def set_user_status(
        self,
        user_id: str,
        is_active: bool,
        operator_id: Optional[str] = None,
    ) -> UserCommissionStatusResponse:
        config = await self.store.set_user_active(user_id, is_active, operator_id)
        return self._config_to_response(config)

    async def list_records(
        self,
        page: int = 1,
        page_size: int = 20,
        user_id: Optional[str] = None,
    ) -> CommissionRecordListResponse:
        records, total = await self.store.list_records(page, page_size, user_id)
        progress = await self.store.record_progress(r.id for r in records)
        return CommissionRecordListResponse(
            items=[
                CommissionRecordResponse(**self._record_fields(r), progress=self._progress_to_response(r, progress[r.id]))
                for r in records
            ],
            pagination=_pagination(page, page_size, total),
        )

    async def get_record(self, record_id: str) -> Optional[CommissionRecordDetailResponse]:
        record = await self.store.get_record(record_id)
        if not record:
            return None

        progress = await self.store.record_progress([record.id])
        return CommissionRecordDetailResponse(
            **self._record_fields(record),
            progress=self._progress_to_response(record, progress[record.id]),
            entries=[self._entry_to_response(e) for e in record.entries],
        )

    async def cancel_record(self, record_id: str, operator_id: Optional[str] = None) -> CancelRecordResponse:
        cancelled = await self.store.cancel_record(record_id, operator_id)
        return CancelRecordResponse(record_id=record_id, cancelled_entries=cancelled)

    async def retry_entry(self, entry_id: str, operator_id: Optional[str] = None) -> PayoutEntryResponse:
        entry = await self.store.requeue_failed_entry(entry_id, operator_id)
        return self._entry_to_response(entry)

    async def get_stats(self) -> CommissionStatsResponse:
        return CommissionStatsResponse(**await self.store.get_stats())

    # =========================================================================
    # Plans
    # =========================================================================

    async def list_plans(
        self,
        status: Optional[str] = None,
        page: int = 1,
        page_size: int = 50,
    ) -> CommissionPlanListResponse:
        plans, total = await self.store.list_plans(status, page, page_size)
        return CommissionPlanListResponse(
            items=[self._plan_to_response(p) for p in plans],
            pagination=_pagination(page, page_size, total),
        )

    async def get_plan(self, plan_id: str) -> Optional[CommissionPlanResponse]:
        plan = await self.store.get_plan(plan_id)
        if not plan:
            return None
        return self._plan_to_response(plan)

    async def create_plan(self, data: CommissionPlanCreate, created_by: Optional[str] = None) -> CommissionPlanResponse:
        plan = await self.store.create_plan(data.model_dump(), created_by)
        return self._plan_to_response(plan)

    async def update_plan(
        self,
        plan_id: str,
        data: CommissionPlanUpdate,
        updated_by: Optional[str] = None,
    ) -> CommissionPlanResponse:
        plan = await self.store.update_plan(plan_id, data.model_dump(exclude_unset=True), updated_by)
        return self._plan_to_response(plan)

    async def delete_plan(self, plan_id: str, deleted_by: Optional[str] = None) -> None:
        await self.store.delete_plan(plan_id, deleted_by)

    async def assign_plan(
        self,
        plan_id: str,
        user_id: str,
        assigned_by: Optional[str] = None,
    ) -> PlanAssignmentResponse:
        assignment = await self.store.assign_plan(plan_id, user_id, assigned_by)
        return self._assignment_to_response(assignment)

    async def unassign_plan(self, plan_id: str, user_id: str, operator_id: Optional[str] = None) -> None:
        await self.store.unassign_plan(plan_id, user_id, operator_id)

    # =========================================================================
    # Response builders
    # =========================================================================

    @staticmethod
    def _record_fields(record: CommissionRecord) -> dict:
        return {
            "id": record.id,
            "user_id": record.user_id,
            "total_amount": record.total_amount,
            "days": record.days,
            "reason": record.reason,
            "issued_by": record.issued_by,
            "source_plan_id": record.source_plan_id,
            "created_at": record.created_at,
            "cancelled_at": record.cancelled_at,
            "cancelled_by": record.cancelled_by,
        }

    @staticmethod
    def _progress_to_response(record: CommissionRecord, progress: RecordProgress) -> RecordProgressResponse:
        counts = progress.counts
        return RecordProgressResponse(
            status=progress.status,
            total_entries=progress.total_entries,
            completed_entries=counts.get(PayoutEntryStatus.COMPLETED.value, 0),
            pending_entries=counts.get(PayoutEntryStatus.PENDING.value, 0),
            processing_entries=counts.get(PayoutEntryStatus.PROCESSING.value, 0),
            failed_entries=counts.get(PayoutEntryStatus.FAILED.value, 0) - progress.cancelled_count,
            cancelled_entries=progress.cancelled_count,
            paid_amount=progress.paid_amount,
            remaining_amount=record.total_amount - progress.paid_amount,
        )

    @staticmethod
    def _entry_to_response(entry: CommissionPayoutEntry) -> PayoutEntryResponse:
        return PayoutEntryResponse(
            id=entry.id,
            day_number=entry.day_number,
            amount=entry.amount,
            scheduled_date=entry.scheduled_date,
            status=_value(entry.status),
            transaction_id=entry.transaction_id,
            actual_date=entry.actual_date,
            attempt_count=entry.attempt_count or 0,
            failure_reason=entry.failure_reason,
            next_attempt_at=entry.next_attempt_at,
            stale_count=entry.stale_count or 0,
        )

    @staticmethod
    def _history_to_response(row: EarningsHistoryRow) -> EarningsHistoryItem:
        entry = row.entry
        return EarningsHistoryItem(
            id=entry.id,
            commission_record_id=entry.commission_record_id,
            day_number=entry.day_number,
            amount=entry.amount,
            total_amount=row.total_amount,
            reason=row.reason,
            scheduled_date=entry.scheduled_date,
            actual_date=entry.actual_date,
            status=_value(entry.status),
            transaction_id=entry.transaction_id,
        )

    @staticmethod
    def _plan_to_response(plan: CommissionPlan) -> CommissionPlanResponse:
        return CommissionPlanResponse(
            id=plan.id,
            name=plan.name,
            description=plan.description,
            trigger_type=_value(plan.trigger_type),
            amount_type=_value(plan.amount_type),
            amount_value=plan.amount_value if plan.amount_value is not None else 0,
            workflow_threshold=plan.workflow_threshold,
            auto_trigger=bool(plan.auto_trigger),
            target_user_type=_value(plan.target_user_type) or "all",
            status=_value(plan.status),
            created_by=plan.created_by,
            created_at=plan.created_at,
            updated_at=plan.updated_at,
        )

    @staticmethod
    def _config_to_response(config: UserCommissionConfig) -> UserCommissionStatusResponse:
        return UserCommissionStatusResponse(
            user_id=config.user_id,
            is_active=config.is_active,
            deactivated_at=config.deactivated_at,
            updated_by=config.updated_by,
            updated_at=config.updated_at,
        )

    @staticmethod
    def _assignment_to_response(assignment: CommissionPlanAssignment) -> PlanAssignmentResponse:
        return PlanAssignmentResponse.model_validate(assignment)

    @staticmethod
    def _creator_to_response(summary: CreatorSummary) -> CreatorSummaryResponse:
        creator = summary.creator
        return CreatorSummaryResponse(
            id=creator.id,
            username=creator.username,
            email=creator.email,
            role=creator.role,
            workflow_count=creator.workflow_count or 0,
            created_at=creator.created_at,
            record_count=summary.record_count,
            total_issued_amount=summary.total_issued_amount,
            paid_amount=summary.paid_amount,
            commission_active=summary.is_active,
        )
