from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.db import get_db
from app.core.deps import get_transaction_service, require_organizer
from app.models.user import User
from app.schemas.transactions import PaginationOut, TransactionListOut, TransactionOut
from app.services.errors import TransactionError
from app.services.transaction_queries import get_organizer_transaction, list_organizer_transactions
from app.services.transactions import TransactionService


router = APIRouter(prefix="/organizer/transactions", tags=["Organizer - Transactions"])


@router.get("", response_model=TransactionListOut)
async def list_transactions(
    status: Optional[str] = Query(default=None),
    event_id: Optional[int] = Query(default=None),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=50),
    db: AsyncSession = Depends(get_db),
    organizer: User = Depends(require_organizer),
):
    try:
        result = await list_organizer_transactions(
            db,
            organizer=organizer,
            status=status,
            event_id=event_id,
            page=page,
            limit=limit,
        )
        return TransactionListOut(
            items=[TransactionOut.model_validate(t) for t in result["items"]],
            pagination=PaginationOut(**result["pagination"]),
        )
    except TransactionError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))


@router.get("/{transaction_id}", response_model=TransactionOut)
async def get_transaction(
    transaction_id: int,
    db: AsyncSession = Depends(get_db),
    organizer: User = Depends(require_organizer),
):
    try:
        trx = await get_organizer_transaction(db, organizer=organizer, transaction_id=transaction_id)
        return TransactionOut.model_validate(trx)
    except TransactionError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))


@router.post("/{transaction_id}/accept", response_model=TransactionOut)
async def accept_transaction(
    transaction_id: int,
    organizer: User = Depends(require_organizer),
    service: TransactionService = Depends(get_transaction_service),
) -> TransactionOut:
    try:
        trx = await service.accept_transaction(transaction_id=transaction_id, actor=organizer)
        return TransactionOut.model_validate(trx)
    except TransactionError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))


@router.post("/{transaction_id}/reject", response_model=TransactionOut)
async def reject_transaction(
    transaction_id: int,
    organizer: User = Depends(require_organizer),
    service: TransactionService = Depends(get_transaction_service),
) -> TransactionOut:
    try:
        trx = await service.reject_transaction(transaction_id=transaction_id, actor=organizer)
        return TransactionOut.model_validate(trx)
    except TransactionError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
