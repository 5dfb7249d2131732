from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import AuthenticatedUser, require_creator
from app.core.db import get_db
from app.schemas.commission import EarningsHistoryResponse, EntryStatusLiteral
from app.services.commission import CommissionService

router = APIRouter()


async def _service(db: AsyncSession = Depends(get_db)) -> CommissionService:
    return CommissionService(db)


@router.get("/earnings-history", response_model=EarningsHistoryResponse)
async def get_my_earnings_history(
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=20, ge=1, le=100, alias="pageSize"),
    entry_status: Optional[EntryStatusLiteral] = Query(default=None, alias="status"),
    current_user: AuthenticatedUser = Depends(require_creator()),
    service: CommissionService = Depends(_service),
) -> EarningsHistoryResponse:
    """The signed-in creator's daily commission payouts, newest first."""
    return await service.get_earnings_history(current_user.id, page, page_size, entry_status)
