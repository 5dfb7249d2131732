"""
Commission Store.

Durable state for commission grants and their daily payout entries. Every
mutating method commits its own transaction, and every status transition is a
conditional UPDATE on the current status, so concurrent workers coordinate
through the database alone:

    pending -> processing            claim_entry
    processing -> pending            release_claim
    processing -> completed          complete_entry
    processing -> pending | failed   fail_entry / reclaim_stale_claims
    pending -> failed (cancelled)    cancel_record
    failed -> pending                requeue_failed_entry
"""

import logging
import random
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Tuple

from sqlalchemy import and_, case, delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import contains_eager, selectinload

from app.core.config import Settings, get_settings
from app.models.commission import (
    CANCELLED_REASON,
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
from app.models.creator import Creator
from app.services.commission_errors import (
    CommissionNotFoundError,
    CommissionStateError,
    CommissionValidationError,
)
from app.services.commission_schedule import generate_schedule
from app.utils.clock import utc_today, utcnow

logger = logging.getLogger(__name__)

# Plan fields that shape payouts; frozen once a record references the plan
PLAN_PAYOUT_FIELDS = ("trigger_type", "amount_type", "amount_value", "workflow_threshold")
PLAN_EDITABLE_FIELDS = ("name", "description", "auto_trigger", "status", "target_user_type") + PLAN_PAYOUT_FIELDS


@dataclass
class EarningsHistoryRow:
    entry: CommissionPayoutEntry
    total_amount: int
    reason: Optional[str]


@dataclass
class CreatorSummary:
    creator: Creator
    record_count: int = 0
    total_issued_amount: int = 0
    paid_amount: int = 0
    is_active: bool = True


@dataclass
class RecordProgress:
    record_id: str
    counts: Dict[str, int] = field(default_factory=dict)
    paid_amount: int = 0
    cancelled_count: int = 0

    @property
    def total_entries(self) -> int:
        return sum(self.counts.values())

    @property
    def status(self) -> str:
        pending = self.counts.get(PayoutEntryStatus.PENDING.value, 0)
        processing = self.counts.get(PayoutEntryStatus.PROCESSING.value, 0)
        completed = self.counts.get(PayoutEntryStatus.COMPLETED.value, 0)
        failed = self.counts.get(PayoutEntryStatus.FAILED.value, 0)

        if self.total_entries and completed == self.total_entries:
            return "completed"
        if pending or processing:
            return "in_progress" if (completed or processing or failed) else "pending"
        if self.cancelled_count:
            return "cancelled"
        return "failed" if failed else "pending"


def _status_value(status) -> str:
    return status.value if isinstance(status, PayoutEntryStatus) else status


def retry_backoff(attempt_count: int, base_seconds: int, max_seconds: int) -> timedelta:
    """Exponential delay before the next attempt: base, 2*base, 4*base ... capped."""
    delay = base_seconds * (2 ** max(attempt_count - 1, 0))
    return timedelta(seconds=min(delay, max_seconds))


class CommissionStore:
    """Persistence and query surface for commission records and payout entries."""

    def __init__(self, db: AsyncSession, settings: Optional[Settings] = None):
        self.db = db
        self.settings = settings or get_settings()

    # =========================================================================
    # Records
    # =========================================================================

    async def create_record(
        self,
        user_id: str,
        total_amount: int,
        days: int,
        source_plan_id: Optional[str] = None,
        *,
        reason: Optional[str] = None,
        issued_by: Optional[str] = None,
        start_date: Optional[date] = None,
        rng: Optional[random.Random] = None,
    ) -> Tuple[CommissionRecord, List[CommissionPayoutEntry]]:
        """Generate the daily schedule and persist the record with all its entries atomically."""
        if source_plan_id is not None:
            plan = await self.db.get(CommissionPlan, source_plan_id)
            if plan is None:
                raise CommissionValidationError(
                    f"Commission plan {source_plan_id} does not exist", reason="UnknownCommissionPlan"
                )

        if start_date is None:
            start_date = utc_today() + timedelta(days=self.settings.commission_schedule_start_offset_days)

        schedule = generate_schedule(
            total_amount,
            days,
            start_date,
            rng,
            max_days=self.settings.commission_max_days,
            max_total_amount=self.settings.commission_max_total_amount,
            weight_min=self.settings.commission_weight_min_permille,
            weight_max=self.settings.commission_weight_max_permille,
        )

        now = utcnow()
        record = CommissionRecord(
            id=str(uuid.uuid4()),
            user_id=user_id,
            total_amount=total_amount,
            days=days,
            reason=reason,
            issued_by=issued_by,
            source_plan_id=source_plan_id,
            created_at=now,
        )
        entries = [
            CommissionPayoutEntry(
                id=str(uuid.uuid4()),
                commission_record_id=record.id,
                day_number=item.day_number,
                amount=item.amount,
                scheduled_date=item.scheduled_date,
                status=PayoutEntryStatus.PENDING,
                attempt_count=0,
                stale_count=0,
                created_at=now,
                updated_at=now,
            )
            for item in schedule
        ]

        try:
            self.db.add(record)
            await self.db.flush()
            self.db.add_all(entries)
            self._log(
                "record_issued",
                "commission_record",
                record.id,
                user_id=user_id,
                operator_id=issued_by,
                details={
                    "total_amount": total_amount,
                    "days": days,
                    "source_plan_id": source_plan_id,
                    "first_scheduled_date": start_date.isoformat(),
                },
            )
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(
            "commission_record_created",
            extra={"record_id": record.id, "user_id": user_id, "total_amount": total_amount, "days": days},
        )
        return record, entries

    async def get_record(self, record_id: str) -> Optional[CommissionRecord]:
        result = await self.db.execute(
            select(CommissionRecord)
            .options(selectinload(CommissionRecord.entries))
            .where(CommissionRecord.id == record_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def list_records(
        self,
        page: int = 1,
        page_size: int = 20,
        user_id: Optional[str] = None,
    ) -> Tuple[List[CommissionRecord], int]:
        query = select(CommissionRecord)
        count_query = select(func.count(CommissionRecord.id))
        if user_id:
            query = query.where(CommissionRecord.user_id == user_id)
            count_query = count_query.where(CommissionRecord.user_id == user_id)

        total = (await self.db.execute(count_query)).scalar() or 0
        result = await self.db.execute(
            query.order_by(CommissionRecord.created_at.desc(), CommissionRecord.id)
            .limit(page_size)
            .offset((page - 1) * page_size)
        )
        return list(result.scalars().all()), total

    async def record_progress(self, record_ids: Iterable[str]) -> Dict[str, RecordProgress]:
        """Per-record entry counts by status and the amount already paid out."""
        record_ids = list(record_ids)
        progress = {record_id: RecordProgress(record_id=record_id) for record_id in record_ids}
        if not record_ids:
            return progress

        is_cancelled = case((CommissionPayoutEntry.failure_reason == CANCELLED_REASON, 1), else_=0)
        result = await self.db.execute(
            select(
                CommissionPayoutEntry.commission_record_id,
                CommissionPayoutEntry.status,
                func.count(CommissionPayoutEntry.id),
                func.coalesce(func.sum(CommissionPayoutEntry.amount), 0),
                func.coalesce(func.sum(is_cancelled), 0),
            )
            .where(CommissionPayoutEntry.commission_record_id.in_(record_ids))
            .group_by(CommissionPayoutEntry.commission_record_id, CommissionPayoutEntry.status)
        )
        for record_id, status, count, amount, cancelled in result.all():
            item = progress[record_id]
            status = _status_value(status)
            item.counts[status] = count
            if status == PayoutEntryStatus.COMPLETED.value:
                item.paid_amount = int(amount)
            item.cancelled_count += int(cancelled)
        return progress

    async def cancel_record(self, record_id: str, operator_id: Optional[str] = None) -> int:
        """
        Stop a grant. Still-pending entries fail with reason 'cancelled'; completed
        entries are untouched. An entry in flight keeps its claim, but if its credit
        fails it is cancelled instead of retried.
        """
        record = await self.db.get(CommissionRecord, record_id)
        if record is None:
            raise CommissionNotFoundError(f"Commission record {record_id} not found")

        now = utcnow()
        if record.cancelled_at is None:
            record.cancelled_at = now
            record.cancelled_by = operator_id
        result = await self.db.execute(
            update(CommissionPayoutEntry)
            .where(
                and_(
                    CommissionPayoutEntry.commission_record_id == record_id,
                    CommissionPayoutEntry.status == PayoutEntryStatus.PENDING,
                )
            )
            .values(
                status=PayoutEntryStatus.FAILED,
                failure_reason=CANCELLED_REASON,
                next_attempt_at=None,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        cancelled = result.rowcount or 0
        self._log(
            "record_cancelled",
            "commission_record",
            record_id,
            user_id=record.user_id,
            operator_id=operator_id,
            details={"cancelled_entries": cancelled},
        )
        await self.db.commit()
        logger.info("commission_record_cancelled", extra={"record_id": record_id, "cancelled_entries": cancelled})
        return cancelled

    # =========================================================================
    # Payout entries
    # =========================================================================

    async def get_entry(self, entry_id: str) -> Optional[CommissionPayoutEntry]:
        result = await self.db.execute(
            select(CommissionPayoutEntry)
            .options(selectinload(CommissionPayoutEntry.record))
            .where(CommissionPayoutEntry.id == entry_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def due_entries(
        self,
        as_of: date,
        limit: int,
        *,
        now: Optional[datetime] = None,
    ) -> List[CommissionPayoutEntry]:
        """
        Pending entries scheduled on or before `as_of`, oldest first.

        Entries still inside their retry backoff, entries of suspended
        creators and entries of cancelled records are left out.
        """
        now = now or utcnow()
        suspended_users = select(UserCommissionConfig.user_id).where(UserCommissionConfig.is_active.is_(False))

        result = await self.db.execute(
            select(CommissionPayoutEntry)
            .join(CommissionPayoutEntry.record)
            .options(contains_eager(CommissionPayoutEntry.record))
            .where(
                and_(
                    CommissionPayoutEntry.status == PayoutEntryStatus.PENDING,
                    CommissionPayoutEntry.scheduled_date <= as_of,
                    or_(
                        CommissionPayoutEntry.next_attempt_at.is_(None),
                        CommissionPayoutEntry.next_attempt_at <= now,
                    ),
                    CommissionRecord.user_id.not_in(suspended_users),
                    CommissionRecord.cancelled_at.is_(None),
                )
            )
            .order_by(
                CommissionPayoutEntry.scheduled_date.asc(),
                CommissionPayoutEntry.day_number.asc(),
                CommissionPayoutEntry.id.asc(),
            )
            .limit(limit)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().unique().all())

    async def claim_entry(self, entry_id: str) -> Tuple[Optional[CommissionPayoutEntry], bool]:
        """
        Reserve a pending entry for this worker.

        The single conditional UPDATE is the only mutual exclusion between
        workers: exactly one caller sees a row count of 1.
        """
        now = utcnow()
        result = await self.db.execute(
            update(CommissionPayoutEntry)
            .where(
                and_(
                    CommissionPayoutEntry.id == entry_id,
                    CommissionPayoutEntry.status == PayoutEntryStatus.PENDING,
                )
            )
            .values(status=PayoutEntryStatus.PROCESSING, claimed_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()

        if result.rowcount != 1:
            return None, False
        return await self.get_entry(entry_id), True

    async def release_claim(self, entry_id: str, *, reason: Optional[str] = None) -> bool:
        """Give a claimed entry back untouched, without counting an attempt."""
        result = await self.db.execute(
            update(CommissionPayoutEntry)
            .where(
                and_(
                    CommissionPayoutEntry.id == entry_id,
                    CommissionPayoutEntry.status == PayoutEntryStatus.PROCESSING,
                )
            )
            .values(status=PayoutEntryStatus.PENDING, claimed_at=None, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self.db.rollback()
            return False

        self._log("claim_released", "commission_payout_entry", entry_id, details={"reason": reason})
        await self.db.commit()
        return True

    async def complete_entry(self, entry_id: str, transaction_id: str, actual_date: date) -> bool:
        now = utcnow()
        result = await self.db.execute(
            update(CommissionPayoutEntry)
            .where(
                and_(
                    CommissionPayoutEntry.id == entry_id,
                    CommissionPayoutEntry.status == PayoutEntryStatus.PROCESSING,
                )
            )
            .values(
                status=PayoutEntryStatus.COMPLETED,
                transaction_id=transaction_id,
                actual_date=actual_date,
                completed_at=now,
                claimed_at=None,
                next_attempt_at=None,
                failure_reason=None,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self.db.rollback()
            logger.warning("complete_entry_lost_claim", extra={"entry_id": entry_id, "transaction_id": transaction_id})
            return False

        self._log(
            "entry_completed",
            "commission_payout_entry",
            entry_id,
            details={"transaction_id": transaction_id, "actual_date": actual_date.isoformat()},
        )
        await self.db.commit()
        return True

    async def fail_entry(
        self,
        entry_id: str,
        increment_attempt: bool,
        *,
        reason: Optional[str] = None,
        max_attempts: Optional[int] = None,
        backoff_base_seconds: Optional[int] = None,
        backoff_max_seconds: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> Optional[CommissionPayoutEntry]:
        """
        Record a failed credit attempt for a processing entry.

        increment_attempt=False is a terminal failure. Otherwise the attempt is
        counted and the entry goes back to pending with a backoff until the
        attempt cap is reached, then fails terminally.
        Returns the updated entry, or None if this worker no longer owns it.
        """
        now = now or utcnow()
        if max_attempts is None:
            max_attempts = self.settings.disbursement_max_attempts
        if backoff_base_seconds is None:
            backoff_base_seconds = self.settings.disbursement_backoff_base_seconds
        if backoff_max_seconds is None:
            backoff_max_seconds = self.settings.disbursement_backoff_max_seconds

        entry = await self.get_entry(entry_id)
        if entry is None or _status_value(entry.status) != PayoutEntryStatus.PROCESSING.value:
            await self.db.rollback()
            return None

        attempt_count = entry.attempt_count or 0
        next_attempt_at = None
        if increment_attempt:
            record_cancelled = await self._record_cancelled(entry.commission_record_id)
            attempt_count += 1
            if record_cancelled:
                new_status = PayoutEntryStatus.FAILED
                reason = CANCELLED_REASON
            elif attempt_count < max_attempts:
                new_status = PayoutEntryStatus.PENDING
                next_attempt_at = now + retry_backoff(attempt_count, backoff_base_seconds, backoff_max_seconds)
            else:
                new_status = PayoutEntryStatus.FAILED
        else:
            new_status = PayoutEntryStatus.FAILED

        result = await self.db.execute(
            update(CommissionPayoutEntry)
            .where(
                and_(
                    CommissionPayoutEntry.id == entry_id,
                    CommissionPayoutEntry.status == PayoutEntryStatus.PROCESSING,
                )
            )
            .values(
                status=new_status,
                attempt_count=attempt_count,
                failure_reason=reason,
                next_attempt_at=next_attempt_at,
                claimed_at=None,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self.db.rollback()
            return None

        self._log(
            "entry_retry_scheduled" if new_status == PayoutEntryStatus.PENDING else "entry_failed",
            "commission_payout_entry",
            entry_id,
            user_id=entry.record.user_id if entry.record else None,
            details={
                "attempt_count": attempt_count,
                "reason": reason,
                "next_attempt_at": next_attempt_at.isoformat() if next_attempt_at else None,
            },
        )
        await self.db.commit()
        return await self.get_entry(entry_id)

    async def requeue_failed_entry(self, entry_id: str, operator_id: Optional[str] = None) -> CommissionPayoutEntry:
        """Manual admin retry of a terminally failed entry. Cancelled entries stay cancelled."""
        entry = await self.get_entry(entry_id)
        if entry is None:
            raise CommissionNotFoundError(f"Payout entry {entry_id} not found")
        if _status_value(entry.status) != PayoutEntryStatus.FAILED.value:
            raise CommissionStateError(f"Only failed entries can be retried (status is {_status_value(entry.status)})")
        if entry.failure_reason == CANCELLED_REASON:
            raise CommissionStateError("Cancelled entries cannot be retried")
        if await self._record_cancelled(entry.commission_record_id):
            raise CommissionStateError("Entries of a cancelled record cannot be retried")

        now = utcnow()
        result = await self.db.execute(
            update(CommissionPayoutEntry)
            .where(
                and_(
                    CommissionPayoutEntry.id == entry_id,
                    CommissionPayoutEntry.status == PayoutEntryStatus.FAILED,
                )
            )
            .values(
                status=PayoutEntryStatus.PENDING,
                attempt_count=0,
                failure_reason=None,
                next_attempt_at=None,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self.db.rollback()
            raise CommissionStateError(f"Payout entry {entry_id} changed status concurrently")

        self._log(
            "entry_requeued",
            "commission_payout_entry",
            entry_id,
            user_id=entry.record.user_id if entry.record else None,
            operator_id=operator_id,
            details={"previous_reason": entry.failure_reason},
        )
        await self.db.commit()
        return await self.get_entry(entry_id)

    async def reclaim_stale_claims(self, older_than: datetime) -> List[CommissionPayoutEntry]:
        """
        Return entries stuck in processing since before `older_than` to pending.
        Stuck entries of a cancelled record are cancelled instead.
        """
        result = await self.db.execute(
            select(CommissionPayoutEntry.id, CommissionPayoutEntry.claimed_at, CommissionRecord.cancelled_at)
            .join(CommissionPayoutEntry.record)
            .where(
                and_(
                    CommissionPayoutEntry.status == PayoutEntryStatus.PROCESSING,
                    CommissionPayoutEntry.claimed_at < older_than,
                )
            )
        )
        stale = result.all()
        if not stale:
            return []

        now = utcnow()
        reclaimed_ids = []
        for entry_id, claimed_at, cancelled_at in stale:
            if cancelled_at is None:
                values = {"status": PayoutEntryStatus.PENDING}
            else:
                values = {"status": PayoutEntryStatus.FAILED, "failure_reason": CANCELLED_REASON, "next_attempt_at": None}
            # claimed_at guards against reclaiming an entry that was re-claimed meanwhile
            update_result = await self.db.execute(
                update(CommissionPayoutEntry)
                .where(
                    and_(
                        CommissionPayoutEntry.id == entry_id,
                        CommissionPayoutEntry.status == PayoutEntryStatus.PROCESSING,
                        CommissionPayoutEntry.claimed_at == claimed_at,
                    )
                )
                .values(
                    **values,
                    claimed_at=None,
                    stale_count=CommissionPayoutEntry.stale_count + 1,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            if update_result.rowcount == 1:
                reclaimed_ids.append(entry_id)
                self._log(
                    "stale_claim_reclaimed",
                    "commission_payout_entry",
                    entry_id,
                    details={"claimed_at": claimed_at.isoformat() if claimed_at else None},
                )
        await self.db.commit()

        reclaimed = []
        for entry_id in reclaimed_ids:
            entry = await self.get_entry(entry_id)
            if entry is not None:
                reclaimed.append(entry)
        return reclaimed

    async def history_for_user(
        self,
        user_id: str,
        page: int = 1,
        page_size: int = 20,
        *,
        status: Optional[str] = None,
    ) -> Tuple[List[EarningsHistoryRow], int]:
        """A creator's payout entries with the parent grant's total and reason, newest first."""
        conditions = [CommissionRecord.user_id == user_id]
        if status:
            conditions.append(CommissionPayoutEntry.status == PayoutEntryStatus(status))

        total = (
            await self.db.execute(
                select(func.count(CommissionPayoutEntry.id))
                .join(CommissionRecord, CommissionPayoutEntry.commission_record_id == CommissionRecord.id)
                .where(and_(*conditions))
            )
        ).scalar() or 0

        result = await self.db.execute(
            select(CommissionPayoutEntry, CommissionRecord.total_amount, CommissionRecord.reason)
            .join(CommissionRecord, CommissionPayoutEntry.commission_record_id == CommissionRecord.id)
            .where(and_(*conditions))
            .order_by(
                CommissionPayoutEntry.scheduled_date.desc(),
                CommissionRecord.created_at.desc(),
                CommissionPayoutEntry.day_number.desc(),
            )
            .limit(page_size)
            .offset((page - 1) * page_size)
        )
        rows = [
            EarningsHistoryRow(entry=entry, total_amount=total_amount, reason=reason)
            for entry, total_amount, reason in result.all()
        ]
        return rows, total

    async def get_stats(self) -> Dict[str, Any]:
        """Aggregate amounts and entry counts for the admin dashboard."""
        records_row = (
            await self.db.execute(
                select(
                    func.count(CommissionRecord.id),
                    func.coalesce(func.sum(CommissionRecord.total_amount), 0),
                )
            )
        ).one()

        is_cancelled = case((CommissionPayoutEntry.failure_reason == CANCELLED_REASON, 1), else_=0)
        status_rows = (
            await self.db.execute(
                select(
                    CommissionPayoutEntry.status,
                    func.count(CommissionPayoutEntry.id),
                    func.coalesce(func.sum(CommissionPayoutEntry.amount), 0),
                    func.coalesce(func.sum(is_cancelled), 0),
                ).group_by(CommissionPayoutEntry.status)
            )
        ).all()

        suspended = (
            await self.db.execute(
                select(func.count(UserCommissionConfig.user_id)).where(UserCommissionConfig.is_active.is_(False))
            )
        ).scalar() or 0

        counts = {status.value: 0 for status in PayoutEntryStatus}
        amounts = {status.value: 0 for status in PayoutEntryStatus}
        cancelled = 0
        for status, count, amount, cancelled_count in status_rows:
            status = _status_value(status)
            counts[status] = count
            amounts[status] = int(amount)
            cancelled += int(cancelled_count)

        return {
            "total_records": records_row[0] or 0,
            "total_issued_amount": int(records_row[1] or 0),
            "paid_amount": amounts[PayoutEntryStatus.COMPLETED.value],
            "pending_amount": amounts[PayoutEntryStatus.PENDING.value] + amounts[PayoutEntryStatus.PROCESSING.value],
            "entry_counts": counts,
            "failed_count": counts[PayoutEntryStatus.FAILED.value] - cancelled,
            "cancelled_count": cancelled,
            "suspended_users": suspended,
        }

    # =========================================================================
    # Creator payout switch
    # =========================================================================

    async def is_user_active(self, user_id: str) -> bool:
        # Column read, not db.get: the identity map may hold a row loaded before an admin toggle
        result = await self.db.execute(
            select(UserCommissionConfig.is_active).where(UserCommissionConfig.user_id == user_id)
        )
        is_active = result.scalar_one_or_none()
        return is_active is None or bool(is_active)

    async def set_user_active(
        self,
        user_id: str,
        is_active: bool,
        operator_id: Optional[str] = None,
    ) -> UserCommissionConfig:
        now = utcnow()
        config = await self.db.get(UserCommissionConfig, user_id)
        if config is None:
            config = UserCommissionConfig(user_id=user_id)
            self.db.add(config)

        config.is_active = is_active
        config.deactivated_at = None if is_active else now
        config.updated_by = operator_id
        config.updated_at = now

        self._log(
            "user_status_changed",
            "user",
            user_id,
            user_id=user_id,
            operator_id=operator_id,
            details={"is_active": is_active},
        )
        await self.db.commit()
        logger.info("commission_user_status_changed", extra={"user_id": user_id, "is_active": is_active})
        return config

    async def get_creator(self, user_id: str) -> Optional[Creator]:
        return await self.db.get(Creator, user_id)

    async def list_creators(
        self,
        page: int = 1,
        page_size: int = 20,
        *,
        search: Optional[str] = None,
        role: Optional[str] = "creator",
        plan_id: Optional[str] = None,
    ) -> Tuple[List[CreatorSummary], int]:
        """Creators with their grant counts, issued totals and paid totals, newest first."""
        conditions = []
        if role:
            conditions.append(Creator.role == role)
        if search:
            pattern = f"%{search}%"
            conditions.append(or_(Creator.username.ilike(pattern), Creator.email.ilike(pattern)))
        if plan_id:
            conditions.append(
                Creator.id.in_(
                    select(CommissionPlanAssignment.user_id).where(CommissionPlanAssignment.plan_id == plan_id)
                )
            )

        total = (
            await self.db.execute(select(func.count(Creator.id)).where(and_(True, *conditions)))
        ).scalar() or 0

        records = (
            select(
                CommissionRecord.user_id.label("user_id"),
                func.count(CommissionRecord.id).label("record_count"),
                func.sum(CommissionRecord.total_amount).label("total_issued"),
            )
            .group_by(CommissionRecord.user_id)
            .subquery()
        )
        paid = (
            select(
                CommissionRecord.user_id.label("user_id"),
                func.sum(CommissionPayoutEntry.amount).label("paid_amount"),
            )
            .join(CommissionPayoutEntry.record)
            .where(CommissionPayoutEntry.status == PayoutEntryStatus.COMPLETED)
            .group_by(CommissionRecord.user_id)
            .subquery()
        )

        result = await self.db.execute(
            select(
                Creator,
                func.coalesce(records.c.record_count, 0),
                func.coalesce(records.c.total_issued, 0),
                func.coalesce(paid.c.paid_amount, 0),
                UserCommissionConfig.is_active,
            )
            .outerjoin(records, records.c.user_id == Creator.id)
            .outerjoin(paid, paid.c.user_id == Creator.id)
            .outerjoin(UserCommissionConfig, UserCommissionConfig.user_id == Creator.id)
            .where(and_(True, *conditions))
            .order_by(Creator.created_at.desc(), Creator.id)
            .limit(page_size)
            .offset((page - 1) * page_size)
        )
        summaries = [
            CreatorSummary(
                creator=creator,
                record_count=int(record_count),
                total_issued_amount=int(total_issued),
                paid_amount=int(paid_amount),
                is_active=is_active is None or bool(is_active),
            )
            for creator, record_count, total_issued, paid_amount, is_active in result.all()
        ]
        return summaries, total

    # =========================================================================
    # Plans
    # =========================================================================

    async def list_plans(
        self,
        status: Optional[str] = None,
        page: int = 1,
        page_size: int = 50,
    ) -> Tuple[List[CommissionPlan], int]:
        query = select(CommissionPlan)
        count_query = select(func.count(CommissionPlan.id))
        if status:
            query = query.where(CommissionPlan.status == PlanStatus(status))
            count_query = count_query.where(CommissionPlan.status == PlanStatus(status))

        total = (await self.db.execute(count_query)).scalar() or 0
        result = await self.db.execute(
            query.order_by(CommissionPlan.created_at.desc(), CommissionPlan.id)
            .limit(page_size)
            .offset((page - 1) * page_size)
        )
        return list(result.scalars().all()), total

    async def active_plans(self) -> List[CommissionPlan]:
        result = await self.db.execute(
            select(CommissionPlan).where(CommissionPlan.status == PlanStatus.ACTIVE)
        )
        return list(result.scalars().all())

    async def get_plan(self, plan_id: str) -> Optional[CommissionPlan]:
        return await self.db.get(CommissionPlan, plan_id)

    async def create_plan(self, data: Dict[str, Any], created_by: Optional[str] = None) -> CommissionPlan:
        values = self._coerce_plan_fields(data)
        plan = CommissionPlan(id=str(uuid.uuid4()), created_by=created_by, **values)
        self._validate_plan(plan)
        self.db.add(plan)
        self._log("plan_created", "commission_plan", plan.id, operator_id=created_by, details={"name": plan.name})
        await self.db.commit()
        return plan

    async def update_plan(
        self,
        plan_id: str,
        data: Dict[str, Any],
        updated_by: Optional[str] = None,
    ) -> CommissionPlan:
        plan = await self.get_plan(plan_id)
        if plan is None:
            raise CommissionNotFoundError(f"Commission plan {plan_id} not found")

        values = self._coerce_plan_fields(data)
        payout_changes = [
            name for name in PLAN_PAYOUT_FIELDS
            if name in values and values[name] != getattr(plan, name)
        ]
        if payout_changes and await self._plan_in_use(plan_id):
            raise CommissionValidationError(
                f"Plan is referenced by commission records; cannot change {', '.join(payout_changes)}",
                reason="PlanInUse",
            )

        for name, value in values.items():
            setattr(plan, name, value)
        self._validate_plan(plan)

        self._log(
            "plan_updated",
            "commission_plan",
            plan_id,
            operator_id=updated_by,
            details={name: str(value) for name, value in values.items()},
        )
        await self.db.commit()
        return plan

    async def delete_plan(self, plan_id: str, deleted_by: Optional[str] = None) -> None:
        plan = await self.get_plan(plan_id)
        if plan is None:
            raise CommissionNotFoundError(f"Commission plan {plan_id} not found")
        if await self._plan_in_use(plan_id):
            raise CommissionStateError("Plan is referenced by commission records; deactivate it instead")

        await self.db.execute(
            delete(CommissionPlanAssignment).where(CommissionPlanAssignment.plan_id == plan_id)
        )
        await self.db.delete(plan)
        self._log("plan_deleted", "commission_plan", plan_id, operator_id=deleted_by, details={"name": plan.name})
        await self.db.commit()

    async def assign_plan(
        self,
        plan_id: str,
        user_id: str,
        assigned_by: Optional[str] = None,
    ) -> CommissionPlanAssignment:
        if await self.get_plan(plan_id) is None:
            raise CommissionNotFoundError(f"Commission plan {plan_id} not found")
        creator = await self.get_creator(user_id)
        if creator is None or not creator.is_creator:
            raise CommissionNotFoundError(f"Creator {user_id} not found")

        existing = await self.db.execute(
            select(CommissionPlanAssignment.id).where(
                and_(CommissionPlanAssignment.plan_id == plan_id, CommissionPlanAssignment.user_id == user_id)
            )
        )
        if existing.scalar_one_or_none() is not None:
            raise CommissionStateError(f"Creator {user_id} is already assigned to plan {plan_id}")

        assignment = CommissionPlanAssignment(
            id=str(uuid.uuid4()),
            plan_id=plan_id,
            user_id=user_id,
            assigned_by=assigned_by,
            assigned_at=utcnow(),
        )
        self.db.add(assignment)
        self._log("plan_assigned", "commission_plan", plan_id, user_id=user_id, operator_id=assigned_by)
        try:
            await self.db.commit()
        except IntegrityError:
            # Concurrent assign of the same pair
            await self.db.rollback()
            raise CommissionStateError(f"Creator {user_id} is already assigned to plan {plan_id}")
        return assignment

    async def unassign_plan(self, plan_id: str, user_id: str, operator_id: Optional[str] = None) -> None:
        result = await self.db.execute(
            delete(CommissionPlanAssignment)
            .where(
                and_(CommissionPlanAssignment.plan_id == plan_id, CommissionPlanAssignment.user_id == user_id)
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self.db.rollback()
            raise CommissionNotFoundError(f"Creator {user_id} is not assigned to plan {plan_id}")

        self._log("plan_unassigned", "commission_plan", plan_id, user_id=user_id, operator_id=operator_id)
        await self.db.commit()

    async def assigned_plan_ids(self, user_id: str) -> FrozenSet[str]:
        result = await self.db.execute(
            select(CommissionPlanAssignment.plan_id).where(CommissionPlanAssignment.user_id == user_id)
        )
        return frozenset(result.scalars().all())

    async def _record_cancelled(self, record_id: str) -> bool:
        result = await self.db.execute(
            select(CommissionRecord.cancelled_at).where(CommissionRecord.id == record_id)
        )
        return result.scalar_one_or_none() is not None

    async def _plan_in_use(self, plan_id: str) -> bool:
        result = await self.db.execute(
            select(CommissionRecord.id).where(CommissionRecord.source_plan_id == plan_id).limit(1)
        )
        return result.scalar_one_or_none() is not None

    @staticmethod
    def _coerce_plan_fields(data: Dict[str, Any]) -> Dict[str, Any]:
        enums = {
            "trigger_type": PlanTriggerType,
            "amount_type": PlanAmountType,
            "status": PlanStatus,
            "target_user_type": PlanTargetUserType,
        }
        values = {}
        for name, value in data.items():
            if name not in PLAN_EDITABLE_FIELDS:
                continue
            if name in enums and value is not None:
                try:
                    value = enums[name](value)
                except ValueError:
                    raise CommissionValidationError(f"Invalid {name}: {value}", reason="InvalidPlan")
            values[name] = value
        return values

    @staticmethod
    def _validate_plan(plan: CommissionPlan) -> None:
        if not plan.name:
            raise CommissionValidationError("Plan name is required", reason="InvalidPlan")
        if plan.trigger_type == PlanTriggerType.WORKFLOW_THRESHOLD and (
            plan.workflow_threshold is None or plan.workflow_threshold < 1
        ):
            raise CommissionValidationError(
                "workflow_threshold plans need a positive threshold", reason="InvalidPlan"
            )
        if plan.amount_value is not None and plan.amount_value < 0:
            raise CommissionValidationError("amount_value cannot be negative", reason="InvalidPlan")

    # =========================================================================
    # Helpers
    # =========================================================================

    def _log(
        self,
        operation_type: str,
        target_type: str,
        target_id: str,
        *,
        user_id: Optional[str] = None,
        operator_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Stage an audit row in the caller's transaction."""
        self.db.add(
            CommissionOperationLog(
                id=str(uuid.uuid4()),
                operation_type=operation_type,
                target_type=target_type,
                target_id=target_id,
                user_id=user_id,
                operator_id=operator_id,
                details=details,
                created_at=utcnow(),
            )
        )
