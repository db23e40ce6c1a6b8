import pytest

from app.models.coupon import UserCoupon
from app.models.event import TicketTier
from app.models.points import PointUsage, UserPoint
from app.models.transaction import Transaction
from app.models.voucher import EventVoucher, EventVoucherUsage
from app.services.discounts import compute_discount, total_after_discounts
from app.services.errors import DiscountInvalid, Forbidden, InsufficientInventory, NotFound
from app.services.transactions import OrderLine


def test_percentage_discount_is_floored():
    assert compute_discount(500000, "percentage", 10) == 50000
    assert compute_discount(999, "percentage", 15) == 149


def test_cap_applies_to_percentage_only():
    assert compute_discount(500000, "fixed", 25000) == 25000
    assert compute_discount(500000, "percentage", 50, cap=100000) == 100000
    assert compute_discount(500000, "fixed", 150000, cap=100000) == 150000
    assert compute_discount(500000, "percentage", 10, cap=100000) == 50000


def test_unknown_discount_type():
    with pytest.raises(DiscountInvalid):
        compute_discount(1000, "bogo", 1)


def test_total_is_clamped_at_zero():
    assert total_after_discounts(1000, 0, 0, 0) == 1000
    assert total_after_discounts(1000, 300, 500, 500) == 0


async def _buy(service, world, tier=None, quantity=1, **kwargs):
    tier = tier or world["tier"]
    return await service.create_transaction(
        user_id=world["buyer"].id,
        event_id=world["event"].id,
        items=[OrderLine(ticket_tier_id=tier.id, quantity=quantity)],
        **kwargs,
    )


@pytest.mark.asyncio
async def test_points_partially_consume_a_grant(service, seed, world):
    tier = await seed.tier(world["event"], price=7000, quota=10)
    grant = await seed.point(world["buyer"], amount=10000, expires_in_days=90)

    trx = await _buy(service, world, tier=tier, use_points=True)

    assert trx.points_used == 7000
    assert trx.total_amount == 0
    assert trx.payment_status == "done"
    assert trx.confirmed_at is not None

    stored = await seed.get(UserPoint, grant.id)
    assert stored.amount == 3000
    assert stored.is_used is False

    usages = await seed.all(PointUsage, transaction_id=trx.id)
    assert [(u.user_point_id, u.amount_used) for u in usages] == [(grant.id, 7000)]


@pytest.mark.asyncio
async def test_points_consumed_earliest_expiry_first(service, seed, world):
    late = await seed.point(world["buyer"], amount=50000, expires_in_days=60)
    early = await seed.point(world["buyer"], amount=30000, expires_in_days=10)
    expired = await seed.point(world["buyer"], amount=90000, expires_in_days=-1)

    trx = await _buy(service, world, use_points=True)  # subtotal 100000

    assert trx.points_used == 80000
    assert trx.total_amount == 20000
    assert trx.payment_status == "waiting_for_payment"

    assert (await seed.get(UserPoint, early.id)).amount == 0
    assert (await seed.get(UserPoint, early.id)).is_used is True
    assert (await seed.get(UserPoint, late.id)).amount == 0
    assert (await seed.get(UserPoint, expired.id)).amount == 90000

    usages = await seed.all(PointUsage, transaction_id=trx.id)
    assert sorted((u.user_point_id, u.amount_used) for u in usages) == sorted(
        [(early.id, 30000), (late.id, 50000)]
    )


@pytest.mark.asyncio
async def test_points_ignored_when_flag_off(service, seed, world):
    grant = await seed.point(world["buyer"], amount=10000)

    trx = await _buy(service, world)

    assert trx.points_used == 0
    assert (await seed.get(UserPoint, grant.id)).amount == 10000


@pytest.mark.asyncio
async def test_points_skipped_for_free_tier(service, seed, world):
    tier = await seed.tier(world["event"], price=0, quota=10, name="Free")
    grant = await seed.point(world["buyer"], amount=10000)

    trx = await _buy(service, world, tier=tier, use_points=True)

    assert trx.points_used == 0
    assert trx.payment_status == "done"
    assert (await seed.get(UserPoint, grant.id)).amount == 10000


@pytest.mark.asyncio
async def test_percentage_coupon(service, seed, world):
    tier = await seed.tier(world["event"], price=500000, quota=10)
    coupon = await seed.coupon(world["buyer"], "percentage", 10)

    trx = await _buy(service, world, tier=tier, user_coupon_id=coupon.id)

    assert trx.subtotal == 500000
    assert trx.coupon_discount == 50000
    assert trx.total_amount == 450000
    assert trx.user_coupon_id == coupon.id

    stored = await seed.get(UserCoupon, coupon.id)
    assert stored.is_used is True
    assert stored.used_at is not None


@pytest.mark.asyncio
async def test_fixed_coupon(service, seed, world):
    coupon = await seed.coupon(world["buyer"], "fixed", 25000)

    trx = await _buy(service, world, user_coupon_id=coupon.id)

    assert trx.coupon_discount == 25000
    assert trx.total_amount == 75000


@pytest.mark.asyncio
async def test_coupon_of_another_user_rejects_order(service, seed, world):
    stranger = await seed.user("customer")
    coupon = await seed.coupon(stranger)

    with pytest.raises(Forbidden):
        await _buy(service, world, user_coupon_id=coupon.id)

    assert (await seed.get(UserCoupon, coupon.id)).is_used is False
    assert (await seed.get(TicketTier, world["tier"].id)).sold_count == 0
    assert await seed.all(Transaction) == []


@pytest.mark.asyncio
async def test_used_or_expired_coupon_rejects_whole_order(service, seed, world):
    grant = await seed.point(world["buyer"], amount=40000)
    expired = await seed.coupon(world["buyer"], expires_in_days=-1)

    with pytest.raises(DiscountInvalid):
        await _buy(service, world, use_points=True, user_coupon_id=expired.id)

    # nothing half-applied
    assert (await seed.get(UserPoint, grant.id)).amount == 40000
    assert (await seed.get(TicketTier, world["tier"].id)).sold_count == 0
    assert await seed.all(PointUsage) == []

    coupon = await seed.coupon(world["buyer"])
    await _buy(service, world, user_coupon_id=coupon.id)
    with pytest.raises(DiscountInvalid):
        await _buy(service, world, user_coupon_id=coupon.id)


@pytest.mark.asyncio
async def test_missing_coupon(service, world):
    with pytest.raises(NotFound):
        await _buy(service, world, user_coupon_id=4242)


@pytest.mark.asyncio
async def test_voucher_applies_and_records_usage(service, seed, world):
    voucher = await seed.voucher(world["event"], "percentage", 20, max_usage=3)

    trx = await _buy(service, world, event_voucher_id=voucher.id)

    assert trx.voucher_discount == 20000
    assert trx.total_amount == 80000
    assert (await seed.get(EventVoucher, voucher.id)).used_count == 1

    usages = await seed.all(EventVoucherUsage, transaction_id=trx.id)
    assert len(usages) == 1
    assert usages[0].user_id == world["buyer"].id
    assert usages[0].discount_applied == 20000


@pytest.mark.asyncio
async def test_voucher_capped_by_max_discount(service, seed, world):
    voucher = await seed.voucher(world["event"], "percentage", 50, max_discount=15000)

    trx = await _buy(service, world, event_voucher_id=voucher.id)

    assert trx.voucher_discount == 15000
    assert trx.total_amount == 85000


@pytest.mark.asyncio
async def test_fixed_voucher_ignores_max_discount(service, seed, world):
    voucher = await seed.voucher(world["event"], "fixed", 30000, max_discount=15000)

    trx = await _buy(service, world, event_voucher_id=voucher.id)

    assert trx.voucher_discount == 30000
    assert trx.total_amount == 70000


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "overrides",
    [
        {"is_active": False},
        {"expires_in_days": -1},
        {"starts_in_days": 2},
        {"max_usage": 2, "used_count": 2},
    ],
)
async def test_invalid_voucher_rejects_order(service, seed, world, overrides):
    voucher = await seed.voucher(world["event"], **overrides)

    with pytest.raises(DiscountInvalid):
        await _buy(service, world, event_voucher_id=voucher.id)

    assert (await seed.get(TicketTier, world["tier"].id)).sold_count == 0
    assert (await seed.get(EventVoucher, voucher.id)).used_count == overrides.get("used_count", 0)


@pytest.mark.asyncio
async def test_voucher_from_another_event(service, seed, world):
    other_event = await seed.event(world["organizer"])
    voucher = await seed.voucher(other_event)

    with pytest.raises(DiscountInvalid):
        await _buy(service, world, event_voucher_id=voucher.id)


@pytest.mark.asyncio
async def test_voucher_usage_limit_is_shared(service, seed, world):
    voucher = await seed.voucher(world["event"], max_usage=1)
    other_buyer = await seed.user("customer")

    await _buy(service, world, event_voucher_id=voucher.id)

    with pytest.raises(DiscountInvalid):
        await service.create_transaction(
            user_id=other_buyer.id,
            event_id=world["event"].id,
            items=[OrderLine(ticket_tier_id=world["tier"].id, quantity=1)],
            event_voucher_id=voucher.id,
        )
    assert (await seed.get(EventVoucher, voucher.id)).used_count == 1


@pytest.mark.asyncio
async def test_stacked_discounts_are_computed_on_original_subtotal(service, seed, world):
    # 60% coupon + 60% voucher on the same subtotal: 120% of the price, clamped to 0
    await seed.point(world["buyer"], amount=10000)
    coupon = await seed.coupon(world["buyer"], "percentage", 60)
    voucher = await seed.voucher(world["event"], "percentage", 60)

    trx = await _buy(
        service,
        world,
        use_points=True,
        user_coupon_id=coupon.id,
        event_voucher_id=voucher.id,
    )

    assert trx.points_used == 10000
    assert trx.coupon_discount == 60000
    assert trx.voucher_discount == 60000
    assert trx.total_amount == 0
    assert trx.payment_status == "done"


@pytest.mark.asyncio
async def test_failed_inventory_leaves_discounts_untouched(service, seed, world):
    tier = await seed.tier(world["event"], quota=1)
    grant = await seed.point(world["buyer"], amount=10000)
    coupon = await seed.coupon(world["buyer"])

    with pytest.raises(InsufficientInventory):
        await _buy(service, world, tier=tier, quantity=2, use_points=True, user_coupon_id=coupon.id)

    assert (await seed.get(UserPoint, grant.id)).amount == 10000
    assert (await seed.get(UserCoupon, coupon.id)).is_used is False
