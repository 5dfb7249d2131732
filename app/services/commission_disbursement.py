"""
Disbursement Processor.

Pays due commission entries through the wallet ledger. Each tick:
1. fetches a batch of due pending entries
2. claims each one (skipping entries another worker won), then re-checks the
   creator switch and hands the claim back if payouts were suspended meanwhile
3. credits the wallet with the entry id as idempotency key
4. completes the entry, or records the failure for retry / terminal failure

Any number of processors may run concurrently against the same database; the
claim is the only coordination between them.
"""

import logging
from dataclasses import asdict, dataclass
from datetime import date, datetime, timedelta
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import Settings, get_settings
from app.models.commission import CommissionPayoutEntry, PayoutEntryStatus
from app.services.commission_store import CommissionStore
from app.services.wallet_ledger import WalletLedger, WalletLedgerError, WalletLedgerRejectedError
from app.utils.clock import utc_today, utcnow

logger = logging.getLogger(__name__)


@dataclass
class DisbursementTickResult:
    due: int = 0
    claimed: int = 0
    skipped: int = 0
    completed: int = 0
    retried: int = 0
    failed: int = 0
    lost: int = 0  # claim reclaimed by the stale sweep before we finished
    released: int = 0  # claimed, then handed back because the creator was suspended


class DisbursementProcessor:
    def __init__(
        self,
        session_factory: Callable[[], AsyncSession],
        ledger: WalletLedger,
        settings: Optional[Settings] = None,
    ):
        self.session_factory = session_factory
        self.ledger = ledger
        self.settings = settings or get_settings()

    async def run_tick(self, as_of: Optional[date] = None) -> DisbursementTickResult:
        """Process one batch of entries scheduled on or before `as_of` (today by default)."""
        as_of = as_of or utc_today()
        result = DisbursementTickResult()

        async with self.session_factory() as session:
            store = CommissionStore(session, self.settings)
            due = await store.due_entries(as_of, self.settings.disbursement_batch_size)
            due_ids = [entry.id for entry in due]
            result.due = len(due_ids)

            for entry_id in due_ids:
                entry, claimed = await store.claim_entry(entry_id)
                if not claimed:
                    result.skipped += 1
                    continue

                result.claimed += 1
                if not await store.is_user_active(entry.record.user_id):
                    # Suspended between due_entries and the claim
                    if await store.release_claim(entry.id, reason="creator suspended"):
                        result.released += 1
                    else:
                        result.lost += 1
                    continue

                outcome = await self._disburse(store, entry)
                setattr(result, outcome, getattr(result, outcome) + 1)

        logger.info("disbursement_tick", extra={"as_of": as_of.isoformat(), **asdict(result)})
        return result

    async def _disburse(self, store: CommissionStore, entry: CommissionPayoutEntry) -> str:
        """Credit one claimed entry and settle its status. Returns the tick counter to bump."""
        user_id = entry.record.user_id
        try:
            credit = await self.ledger.credit(
                user_id,
                entry.amount,
                idempotency_key=entry.id,
                description=f"Commission day {entry.day_number} of record {entry.commission_record_id}",
            )
        except WalletLedgerRejectedError as exc:
            logger.error(
                "commission_credit_rejected",
                extra={"entry_id": entry.id, "user_id": user_id, "status_code": exc.status_code, "error": exc.message},
            )
            updated = await store.fail_entry(entry.id, increment_attempt=False, reason=f"rejected: {exc.message}")
            return "failed" if updated is not None else "lost"
        except WalletLedgerError as exc:
            return await self._record_transient_failure(store, entry, exc.message)
        except Exception as exc:
            logger.exception("commission_credit_unexpected_error", extra={"entry_id": entry.id, "error": str(exc)})
            return await self._record_transient_failure(store, entry, str(exc))

        if not await store.complete_entry(entry.id, credit.transaction_id, utc_today()):
            return "lost"

        logger.info(
            "commission_entry_paid",
            extra={
                "entry_id": entry.id,
                "user_id": user_id,
                "amount": entry.amount,
                "transaction_id": credit.transaction_id,
                "replayed": credit.replayed,
            },
        )
        return "completed"

    async def _record_transient_failure(self, store: CommissionStore, entry: CommissionPayoutEntry, message: str) -> str:
        updated = await store.fail_entry(entry.id, increment_attempt=True, reason=message)
        if updated is None:
            return "lost"

        if updated.status == PayoutEntryStatus.PENDING:
            logger.warning(
                "commission_credit_retry_scheduled",
                extra={
                    "entry_id": entry.id,
                    "attempt_count": updated.attempt_count,
                    "next_attempt_at": updated.next_attempt_at.isoformat() if updated.next_attempt_at else None,
                    "error": message,
                },
            )
            return "retried"

        logger.error(
            "commission_credit_failed",
            extra={"entry_id": entry.id, "attempt_count": updated.attempt_count, "error": message},
        )
        return "failed"

    async def sweep_stale_claims(self, now: Optional[datetime] = None) -> int:
        """Return entries left in processing by a crashed worker to pending."""
        now = now or utcnow()
        cutoff = now - timedelta(minutes=self.settings.stale_claim_timeout_minutes)

        async with self.session_factory() as session:
            reclaimed = await CommissionStore(session, self.settings).reclaim_stale_claims(cutoff)

        for entry in reclaimed:
            if entry.stale_count >= self.settings.stale_claim_alert_threshold:
                logger.error(
                    "commission_entry_repeatedly_stale",
                    extra={
                        "entry_id": entry.id,
                        "record_id": entry.commission_record_id,
                        "stale_count": entry.stale_count,
                    },
                )

        if reclaimed:
            logger.warning("stale_claim_sweep", extra={"reclaimed": len(reclaimed), "cutoff": cutoff.isoformat()})
        return len(reclaimed)
