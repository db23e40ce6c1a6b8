from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

from sqlalchemy import delete, select, update

from app.core.uow import UnitOfWork
from app.models.coupon import UserCoupon
from app.models.points import PointUsage, UserPoint
from app.models.transaction import Transaction
from app.models.voucher import EventVoucher, EventVoucherUsage
from app.services.errors import DiscountInvalid, Forbidden, NotFound

logger = logging.getLogger(__name__)


PERCENTAGE = "percentage"
FIXED = "fixed"


def as_utc(dt: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything we store is UTC.
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def compute_discount(subtotal: int, discount_type: str, value: int, cap: int | None = None) -> int:
    # cap bounds percentage discounts only
    if discount_type == PERCENTAGE:
        amount = (subtotal * value) // 100
        if cap is not None and amount > cap:
            amount = cap
        return amount
    if discount_type == FIXED:
        return value
    raise DiscountInvalid(f"Unknown discount type '{discount_type}'")


def total_after_discounts(subtotal: int, points_used: int, coupon_discount: int, voucher_discount: int) -> int:
    return max(0, subtotal - points_used - coupon_discount - voucher_discount)


@dataclass
class AppliedDiscounts:
    subtotal: int
    points_used: int = 0
    coupon_discount: int = 0
    voucher_discount: int = 0
    point_usages: list[tuple[int, int]] = field(default_factory=list)  # (user_point_id, amount_used)
    user_coupon_id: int | None = None
    event_voucher_id: int | None = None

    @property
    def total_amount(self) -> int:
        return total_after_discounts(
            self.subtotal, self.points_used, self.coupon_discount, self.voucher_discount
        )


class DiscountResolver:
    """
    Applies points, coupon and voucher to a subtotal and reserves each.

    Every discount is computed against the original subtotal, never against
    what is left after the previous one; the sum is clamped at zero in
    ``total_amount``. Any invalid coupon or voucher raises and the enclosing
    UnitOfWork discards the whole order, including points already drawn.
    """

    async def apply(
        self,
        uow: UnitOfWork,
        *,
        user_id: int,
        event_id: int,
        subtotal: int,
        now: datetime,
        use_points: bool = False,
        user_coupon_id: int | None = None,
        event_voucher_id: int | None = None,
    ) -> AppliedDiscounts:
        applied = AppliedDiscounts(subtotal=subtotal)

        if use_points and subtotal > 0:
            await self._apply_points(uow, applied, user_id=user_id, now=now)

        if user_coupon_id is not None:
            await self._apply_coupon(uow, applied, user_id=user_id, coupon_id=user_coupon_id, now=now)

        if event_voucher_id is not None:
            await self._apply_voucher(uow, applied, event_id=event_id, voucher_id=event_voucher_id, now=now)

        return applied

    async def _apply_points(self, uow: UnitOfWork, applied: AppliedDiscounts, *, user_id: int, now: datetime) -> None:
        # earliest expiry first
        grants = await uow.lock_all(
            select(UserPoint)
            .where(
                UserPoint.user_id == user_id,
                UserPoint.is_used.is_(False),
                UserPoint.deleted_at.is_(None),
                UserPoint.expired_at > now,
            )
            .order_by(UserPoint.expired_at.asc(), UserPoint.id.asc())
        )

        remaining = applied.subtotal
        for grant in grants:
            if remaining <= 0:
                break
            if grant.amount <= 0:
                continue

            deduct = min(grant.amount, remaining)
            remaining -= deduct

            grant.amount -= deduct
            # a grant with balance left stays usable for later purchases
            grant.is_used = grant.amount == 0

            applied.points_used += deduct
            applied.point_usages.append((grant.id, deduct))

    async def _apply_coupon(
        self,
        uow: UnitOfWork,
        applied: AppliedDiscounts,
        *,
        user_id: int,
        coupon_id: int,
        now: datetime,
    ) -> None:
        coupon = await uow.lock_one_or_none(select(UserCoupon).where(UserCoupon.id == coupon_id))

        if coupon is None or coupon.deleted_at is not None:
            raise NotFound("Coupon not found")
        if coupon.user_id != user_id:
            raise Forbidden("This coupon does not belong to you")
        if coupon.is_used:
            raise DiscountInvalid("Coupon has already been used")
        if as_utc(coupon.expired_at) < now:
            raise DiscountInvalid("Coupon has expired")

        applied.coupon_discount = compute_discount(applied.subtotal, coupon.discount_type, coupon.discount_value)
        applied.user_coupon_id = coupon.id

        coupon.is_used = True
        coupon.used_at = now

    async def _apply_voucher(
        self,
        uow: UnitOfWork,
        applied: AppliedDiscounts,
        *,
        event_id: int,
        voucher_id: int,
        now: datetime,
    ) -> None:
        voucher = await uow.lock_one_or_none(select(EventVoucher).where(EventVoucher.id == voucher_id))

        if voucher is None or voucher.deleted_at is not None:
            raise NotFound("Voucher not found")
        if voucher.event_id != event_id:
            raise DiscountInvalid("This voucher does not belong to this event")
        if not voucher.is_active:
            raise DiscountInvalid("Voucher is not active")
        if as_utc(voucher.expired_at) < now:
            raise DiscountInvalid("Voucher has expired")
        if as_utc(voucher.start_date) > now:
            raise DiscountInvalid("Voucher is not yet valid")

        res = await uow.session.execute(
            update(EventVoucher)
            .where(EventVoucher.id == voucher.id, EventVoucher.used_count < EventVoucher.max_usage)
            .values(used_count=EventVoucher.used_count + 1)
            .execution_options(synchronize_session=False)
        )
        if res.rowcount != 1:
            raise DiscountInvalid("Voucher usage limit reached")

        applied.voucher_discount = compute_discount(
            applied.subtotal, voucher.discount_type, voucher.discount_value, voucher.max_discount
        )
        applied.event_voucher_id = voucher.id

    async def record_usages(self, uow: UnitOfWork, trx: Transaction, applied: AppliedDiscounts) -> None:
        """Write the audit rows that tie reservations to ``trx``; needs ``trx.id``."""
        for user_point_id, amount_used in applied.point_usages:
            uow.add(
                PointUsage(
                    user_point_id=user_point_id,
                    transaction_id=trx.id,
                    amount_used=amount_used,
                )
            )

        if applied.event_voucher_id is not None:
            uow.add(
                EventVoucherUsage(
                    voucher_id=applied.event_voucher_id,
                    user_id=trx.user_id,
                    transaction_id=trx.id,
                    discount_applied=applied.voucher_discount,
                )
            )

    async def rollback(self, uow: UnitOfWork, trx: Transaction) -> None:
        """
        Give back every point, the coupon and the voucher slot held by ``trx``.

        Usage rows are deleted as they are reversed, and the coupon is only
        freed while no other unreleased transaction holds it, so running this
        twice restores nothing the second time.
        """
        res = await uow.session.execute(select(PointUsage).where(PointUsage.transaction_id == trx.id))
        usages = list(res.scalars().all())

        for pu in usages:
            await uow.session.execute(
                update(UserPoint)
                .where(UserPoint.id == pu.user_point_id)
                .values(amount=UserPoint.amount + pu.amount_used, is_used=False)
                .execution_options(synchronize_session=False)
            )

        if usages:
            await uow.session.execute(
                delete(PointUsage)
                .where(PointUsage.transaction_id == trx.id)
                .execution_options(synchronize_session=False)
            )

        if trx.user_coupon_id is not None:
            # the coupon may already back a later order that is still live
            held_elsewhere = (
                select(Transaction.id)
                .where(
                    Transaction.user_coupon_id == trx.user_coupon_id,
                    Transaction.id != trx.id,
                    Transaction.released_at.is_(None),
                )
                .exists()
            )
            await uow.session.execute(
                update(UserCoupon)
                .where(
                    UserCoupon.id == trx.user_coupon_id,
                    UserCoupon.is_used.is_(True),
                    ~held_elsewhere,
                )
                .values(is_used=False, used_at=None)
                .execution_options(synchronize_session=False)
            )

        if trx.event_voucher_id is not None:
            res = await uow.session.execute(
                delete(EventVoucherUsage)
                .where(EventVoucherUsage.transaction_id == trx.id)
                .execution_options(synchronize_session=False)
            )
            if res.rowcount:
                await uow.session.execute(
                    update(EventVoucher)
                    .where(EventVoucher.id == trx.event_voucher_id, EventVoucher.used_count > 0)
                    .values(used_count=EventVoucher.used_count - 1)
                    .execution_options(synchronize_session=False)
                )

        logger.info(
            "Discounts rolled back for transaction %s: points=%s coupon=%s voucher=%s",
            trx.id,
            sum(pu.amount_used for pu in usages),
            trx.user_coupon_id,
            trx.event_voucher_id,
        )
