from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from sqlalchemy import select

from app.core.uow import SessionFactory, UnitOfWork
from app.models.transaction import PaymentStatus, Transaction
from app.services.transactions import TransactionService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SweepResult:
    expired: int
    canceled: int


class TransactionSweeper:
    """
    Forces timed-out transactions into a terminal state.

    Selection only collects ids. Each id is then handled by the state
    machine in its own unit of work, which re-checks status and deadline
    under lock; a row a user already moved on is skipped, and a row that
    fails is logged and left for the next pass.
    """

    def __init__(self, session_factory: SessionFactory, transactions: TransactionService):
        self._session_factory = session_factory
        self.transactions = transactions

    async def _due_ids(self, status: PaymentStatus, deadline_column) -> list[int]:
        now = self.transactions.now()
        async with UnitOfWork(self._session_factory) as uow:
            res = await uow.session.execute(
                select(Transaction.id)
                .where(
                    Transaction.payment_status == status.value,
                    deadline_column.is_not(None),
                    deadline_column < now,
                    Transaction.deleted_at.is_(None),
                )
                .order_by(Transaction.id.asc())
            )
            return [int(x) for x in res.scalars().all()]

    async def expire_overdue(self) -> int:
        """Unpaid past ``payment_deadline`` -> expired. Returns how many were expired."""
        ids = await self._due_ids(PaymentStatus.WAITING_FOR_PAYMENT, Transaction.payment_deadline)

        expired_count = 0
        for trx_id in ids:
            try:
                if await self.transactions.expire_transaction(trx_id):
                    expired_count += 1
            except Exception:
                logger.exception("[sweeper] Failed to expire transaction %s", trx_id)

        return expired_count

    async def cancel_unconfirmed(self) -> int:
        """Unconfirmed past ``confirmation_deadline`` -> canceled. Returns how many were canceled."""
        ids = await self._due_ids(PaymentStatus.WAITING_FOR_ADMIN_CONFIRMATION, Transaction.confirmation_deadline)

        canceled_count = 0
        for trx_id in ids:
            try:
                if await self.transactions.cancel_unconfirmed_transaction(trx_id):
                    canceled_count += 1
            except Exception:
                logger.exception("[sweeper] Failed to cancel unconfirmed transaction %s", trx_id)

        return canceled_count

    async def run_once(self) -> SweepResult:
        logger.debug("[sweeper] Executing transaction sweeps at %s", self.transactions.now().isoformat())

        result = SweepResult(
            expired=await self.expire_overdue(),
            canceled=await self.cancel_unconfirmed(),
        )

        if result.expired:
            logger.info("[sweeper] Expired %s transaction(s)", result.expired)
        if result.canceled:
            logger.info("[sweeper] Canceled %s unconfirmed transaction(s)", result.canceled)
        return result

    async def run_forever(self, interval_seconds: float) -> None:
        logger.info("[sweeper] Started, interval=%ss", interval_seconds)
        while True:
            try:
                await self.run_once()
            except Exception:
                logger.exception("[sweeper] Sweep pass failed")
            await asyncio.sleep(interval_seconds)
