from __future__ import annotations

import logging

from sqlalchemy import select, update

from app.core.uow import UnitOfWork
from app.models.event import TicketTier
from app.services.errors import InsufficientInventory, InvalidRequest, NotFound

logger = logging.getLogger(__name__)


class InventoryLedger:
    """
    Quota vs. sold count per ticket tier.

    Has no locking of its own. Callers run it inside the same UnitOfWork as
    the transaction rows it pays for, so the check-and-increment commits or
    rolls back together with them.
    """

    async def get_tier(self, uow: UnitOfWork, tier_id: int) -> TicketTier:
        tier = await uow.scalar_one_or_none(select(TicketTier).where(TicketTier.id == tier_id))
        if tier is None or tier.deleted_at is not None:
            raise NotFound(f"Ticket type {tier_id} not found")
        return tier

    async def reserve(self, uow: UnitOfWork, tier_id: int, qty: int) -> None:
        if qty < 1:
            raise InvalidRequest("Ticket quantity must be at least 1")

        # Check and increment in one statement: two buyers racing for the
        # last seats cannot both pass the WHERE clause.
        res = await uow.session.execute(
            update(TicketTier)
            .where(
                TicketTier.id == tier_id,
                TicketTier.deleted_at.is_(None),
                TicketTier.sold_count + qty <= TicketTier.quota,
            )
            .values(sold_count=TicketTier.sold_count + qty)
            .execution_options(synchronize_session=False)
        )
        if res.rowcount == 1:
            logger.debug("Reserved %s seat(s) on tier %s", qty, tier_id)
            return

        tier = await self.get_tier(uow, tier_id)
        await uow.session.refresh(tier)
        raise InsufficientInventory(tier.id, qty, tier.available, tier.name)

    async def release(self, uow: UnitOfWork, tier_id: int, qty: int) -> None:
        res = await uow.session.execute(
            update(TicketTier)
            .where(TicketTier.id == tier_id, TicketTier.sold_count >= qty)
            .values(sold_count=TicketTier.sold_count - qty)
            .execution_options(synchronize_session=False)
        )
        if res.rowcount != 1:
            # would push sold_count below zero
            raise InvalidRequest(f"Cannot release {qty} seat(s) from ticket type {tier_id}")
        logger.debug("Released %s seat(s) on tier %s", qty, tier_id)
