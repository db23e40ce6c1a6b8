from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.db import get_db
from app.core.deps import get_current_user, get_transaction_service
from app.models.user import User
from app.schemas.transactions import PaginationOut, TransactionCreateIn, TransactionListOut, TransactionOut
from app.services.errors import TransactionError
from app.services.transaction_queries import get_customer_transaction, list_customer_transactions
from app.services.transactions import OrderLine, TransactionService


router = APIRouter(prefix="/transactions", tags=["Transactions"])


@router.post("", response_model=TransactionOut, status_code=201)
async def create_transaction(
    payload: TransactionCreateIn,
    current_user: User = Depends(get_current_user),
    service: TransactionService = Depends(get_transaction_service),
) -> TransactionOut:
    try:
        trx = await service.create_transaction(
            user_id=current_user.id,
            event_id=payload.event_id,
            items=[OrderLine(ticket_tier_id=it.ticket_tier_id, quantity=it.quantity) for it in payload.items],
            use_points=payload.use_points,
            user_coupon_id=payload.user_coupon_id,
            event_voucher_id=payload.event_voucher_id,
        )
        return TransactionOut.model_validate(trx)
    except TransactionError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))


@router.get("", response_model=TransactionListOut)
async def my_transactions(
    status: Optional[str] = Query(default=None),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=50),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    try:
        result = await list_customer_transactions(
            db,
            user_id=current_user.id,
            status=status,
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
async def my_transaction(
    transaction_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    try:
        trx = await get_customer_transaction(db, user_id=current_user.id, transaction_id=transaction_id)
        return TransactionOut.model_validate(trx)
    except TransactionError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))


@router.post("/{transaction_id}/payment-proof", response_model=TransactionOut)
async def upload_payment_proof(
    transaction_id: int,
    file: UploadFile = File(...),
    current_user: User = Depends(get_current_user),
    service: TransactionService = Depends(get_transaction_service),
) -> TransactionOut:
    # one byte past the limit is enough to tell the file is too large
    data = await file.read(service.proof_max_bytes + 1)
    try:
        trx = await service.upload_payment_proof(
            transaction_id=transaction_id,
            user_id=current_user.id,
            data=data,
            filename=file.filename or "payment-proof",
            content_type=file.content_type or "application/octet-stream",
        )
        return TransactionOut.model_validate(trx)
    except TransactionError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))


@router.post("/{transaction_id}/cancel", response_model=TransactionOut)
async def cancel_transaction(
    transaction_id: int,
    current_user: User = Depends(get_current_user),
    service: TransactionService = Depends(get_transaction_service),
) -> TransactionOut:
    try:
        trx = await service.cancel_transaction(transaction_id=transaction_id, user_id=current_user.id)
        return TransactionOut.model_validate(trx)
    except TransactionError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
