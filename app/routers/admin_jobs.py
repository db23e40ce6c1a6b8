from __future__ import annotations

from fastapi import APIRouter, Depends

from app.core.deps import get_sweeper, require_admin
from app.models.user import User
from app.schemas.transactions import SweepOut
from app.services.sweeper import TransactionSweeper


router = APIRouter(prefix="/admin/jobs", tags=["Admin - Jobs"])


@router.post("/sweep", response_model=SweepOut)
async def run_sweep(
    admin_user: User = Depends(require_admin),
    sweeper: TransactionSweeper = Depends(get_sweeper),
) -> SweepOut:
    result = await sweeper.run_once()
    return SweepOut(expired=result.expired, canceled=result.canceled)
