from __future__ import annotations

import math
from typing import Optional

from sqlalchemy import and_, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.event import Event
from app.models.transaction import PaymentStatus, Transaction
from app.models.user import User
from app.services.errors import Forbidden, InvalidRequest, NotFound

MAX_PAGE_SIZE = 50


def _clamp_page(page: int, limit: int) -> tuple[int, int]:
    return max(1, int(page)), max(1, min(MAX_PAGE_SIZE, int(limit)))


def _check_status(status: Optional[str]) -> None:
    if status is None:
        return
    try:
        PaymentStatus(status)
    except ValueError:
        raise InvalidRequest(f"Unknown payment status '{status}'") from None


async def _paginate(db: AsyncSession, filters: list, page: int, limit: int, join_event: bool = False) -> dict:
    where_clause = and_(*filters)

    total_stmt = select(func.count()).select_from(Transaction)
    stmt = select(Transaction)
    if join_event:
        total_stmt = total_stmt.join(Event, Event.id == Transaction.event_id)
        stmt = stmt.join(Event, Event.id == Transaction.event_id)

    total_res = await db.execute(total_stmt.where(where_clause))
    total_count = int(total_res.scalar_one())

    res = await db.execute(
        stmt.where(where_clause)
        .order_by(Transaction.created_at.desc(), Transaction.id.desc())
        .limit(limit)
        .offset((page - 1) * limit)
    )
    transactions = list(res.scalars().all())

    return {
        "items": transactions,
        "pagination": {
            "page": page,
            "limit": limit,
            "total_count": total_count,
            "total_pages": math.ceil(total_count / limit),
        },
    }


async def list_customer_transactions(
    db: AsyncSession,
    *,
    user_id: int,
    status: Optional[str] = None,
    page: int = 1,
    limit: int = 10,
) -> dict:
    _check_status(status)
    page, limit = _clamp_page(page, limit)

    filters = [Transaction.user_id == user_id, Transaction.deleted_at.is_(None)]
    if status is not None:
        filters.append(Transaction.payment_status == status)

    return await _paginate(db, filters, page, limit)


async def get_customer_transaction(db: AsyncSession, *, user_id: int, transaction_id: int) -> Transaction:
    trx = await db.get(Transaction, transaction_id)
    if trx is None or trx.deleted_at is not None:
        raise NotFound("Transaction not found")
    if trx.user_id != user_id:
        raise Forbidden("You do not have access to this transaction")
    return trx


async def list_organizer_transactions(
    db: AsyncSession,
    *,
    organizer: User,
    status: Optional[str] = None,
    event_id: Optional[int] = None,
    page: int = 1,
    limit: int = 10,
) -> dict:
    _check_status(status)
    page, limit = _clamp_page(page, limit)

    filters = [Transaction.deleted_at.is_(None), Event.deleted_at.is_(None)]
    if organizer.role != "admin":
        filters.append(Event.organizer_user_id == organizer.id)
    if status is not None:
        filters.append(Transaction.payment_status == status)
    if event_id is not None:
        filters.append(Transaction.event_id == event_id)

    return await _paginate(db, filters, page, limit, join_event=True)


async def get_organizer_transaction(db: AsyncSession, *, organizer: User, transaction_id: int) -> Transaction:
    trx = await db.get(Transaction, transaction_id)
    if trx is None or trx.deleted_at is not None:
        raise NotFound("Transaction not found")

    if organizer.role != "admin" and trx.event.organizer_user_id != organizer.id:
        raise Forbidden("You do not have access to this transaction")
    return trx
