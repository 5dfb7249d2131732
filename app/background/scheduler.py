from __future__ import annotations

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from app.core.config import get_settings
from app.core.db import AsyncSessionFactory
from app.services.commission_disbursement import DisbursementProcessor
from app.services.wallet_ledger import WalletLedgerClient

logger = logging.getLogger(__name__)
settings = get_settings()

commission_scheduler = AsyncIOScheduler()


async def run_disbursement_cycle() -> None:
    """Pay every commission entry that is due today."""
    ledger = WalletLedgerClient(settings)
    try:
        processor = DisbursementProcessor(AsyncSessionFactory, ledger, settings)
        result = await processor.run_tick()
        if result.failed:
            logger.warning("disbursement_cycle_failures", extra={"failed": result.failed, "due": result.due})
    except Exception as exc:  # pragma: no cover - keep the scheduler alive
        logger.exception("Disbursement cycle failed", extra={"error": str(exc)})
    finally:
        await ledger.close()


async def run_stale_claim_sweep() -> None:
    """Release entries a crashed worker left in processing."""
    ledger = WalletLedgerClient(settings)
    try:
        await DisbursementProcessor(AsyncSessionFactory, ledger, settings).sweep_stale_claims()
    except Exception as exc:  # pragma: no cover - keep the scheduler alive
        logger.exception("Stale claim sweep failed", extra={"error": str(exc)})
    finally:
        await ledger.close()


def start_scheduler() -> None:
    if commission_scheduler.running:
        return
    commission_scheduler.add_job(run_disbursement_cycle, "interval", minutes=settings.disbursement_interval_minutes, id="commission-disbursement", max_instances=1, coalesce=True)
    commission_scheduler.add_job(run_stale_claim_sweep, "interval", minutes=settings.stale_claim_sweep_interval_minutes, id="commission-stale-claim-sweep", max_instances=1, coalesce=True)

    commission_scheduler.start()
    logger.info(
        "Commission scheduler started",
        extra={
            "disbursement_interval_minutes": settings.disbursement_interval_minutes,
            "stale_claim_sweep_interval_minutes": settings.stale_claim_sweep_interval_minutes,
        },
    )


def shutdown_scheduler() -> None:
    if commission_scheduler.running:
        commission_scheduler.shutdown(wait=False)
        logger.info("Commission scheduler stopped")
