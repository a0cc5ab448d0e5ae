from datetime import timedelta
from decimal import Decimal

import pytest

from shop_orders.errors import CouponExhausted, CouponIneligible, CouponReason
from shop_orders.ledgers import (
    CouponLedger,
    StockLedger,
    adjusted_price,
    check_eligible,
    ensure_eligible,
)
from shop_orders.models import CouponCode


def make_coupon(**kw) -> CouponCode:
    values = dict(code="X", name="X", type="fixed", value=Decimal("10"), total=5, used=0,
                  min_amount=Decimal("0"), enabled=True, not_before=None, not_after=None)
    values.update(kw)
    return CouponCode(**values)


def test_fixed_discount_subtracts_value():
    assert adjusted_price(make_coupon(value=Decimal("10")), Decimal("50")) == Decimal("40.00")


def test_fixed_discount_never_below_one_cent():
    assert adjusted_price(make_coupon(value=Decimal("100")), Decimal("30")) == Decimal("0.01")


def test_percent_discount_rounds_to_cents():
    coupon = make_coupon(type="percent", value=Decimal("20"))
    assert adjusted_price(coupon, Decimal("99.99")) == Decimal("79.99")


def test_percent_discount_truncates():
    coupon = make_coupon(type="percent", value=Decimal("15"))
    # 33.33 * 0.85 = 28.3305
    assert adjusted_price(coupon, Decimal("33.33")) == Decimal("28.33")
    coupon = make_coupon(type="percent", value=Decimal("10"))
    # 0.19 * 0.9 = 0.171
    assert adjusted_price(coupon, Decimal("0.19")) == Decimal("0.17")


def test_full_percent_discount_keeps_one_cent():
    coupon = make_coupon(type="percent", value=Decimal("100"))
    assert adjusted_price(coupon, Decimal("12.00")) == Decimal("0.01")


def test_eligibility_rules_in_fixed_order(now, yesterday, tomorrow):
    # disabled wins over everything else
    coupon = make_coupon(enabled=False, used=5, not_after=yesterday, min_amount=Decimal("100"))
    assert check_eligible(coupon, Decimal("1"), now) is CouponReason.DISABLED

    coupon = make_coupon(used=5, not_after=yesterday)
    assert check_eligible(coupon, None, now) is CouponReason.EXHAUSTED

    coupon = make_coupon(not_before=tomorrow, not_after=yesterday)
    assert check_eligible(coupon, None, now) is CouponReason.NOT_STARTED

    coupon = make_coupon(not_after=yesterday, min_amount=Decimal("100"))
    assert check_eligible(coupon, Decimal("1"), now) is CouponReason.EXPIRED

    coupon = make_coupon(min_amount=Decimal("100"))
    assert check_eligible(coupon, Decimal("80"), now) is CouponReason.BELOW_MIN_AMOUNT


def test_min_amount_ignored_without_order_amount(now):
    coupon = make_coupon(min_amount=Decimal("100"))
    assert check_eligible(coupon, None, now) is None
    assert check_eligible(coupon, Decimal("100"), now) is None


def test_naive_window_bounds_are_treated_as_utc(now):
    naive_past = (now - timedelta(hours=1)).replace(tzinfo=None)
    coupon = make_coupon(not_after=naive_past)
    assert check_eligible(coupon, None, now) is CouponReason.EXPIRED


def test_ensure_eligible_raises_reason_codes(now):
    with pytest.raises(CouponExhausted) as exc:
        ensure_eligible(make_coupon(used=5), None, now)
    assert exc.value.reason is CouponReason.EXHAUSTED
    assert exc.value.code == "coupon_exhausted"

    with pytest.raises(CouponIneligible) as exc:
        ensure_eligible(make_coupon(min_amount=Decimal("100")), Decimal("80"), now)
    assert exc.value.reason is CouponReason.BELOW_MIN_AMOUNT


async def test_conditional_decrement_guards_stock(catalog, session_factory):
    sku = await catalog.sku(stock=3)
    async with session_factory() as session:
        async with session.begin():
            ledger = StockLedger(session)
            assert await ledger.conditional_decrement(sku.id, 2) is True
            assert await ledger.conditional_decrement(sku.id, 2) is False
            assert await ledger.conditional_decrement(sku.id, 1) is True
            assert await ledger.conditional_decrement(sku.id, 1) is False
    assert await catalog.stock(sku.id) == 0

    async with session_factory() as session:
        async with session.begin():
            await StockLedger(session).increment(sku.id, 4)
    assert await catalog.stock(sku.id) == 4


async def test_coupon_counter_stays_within_bounds(catalog, session_factory):
    coupon = await catalog.coupon(total=2)
    async with session_factory() as session:
        async with session.begin():
            ledger = CouponLedger(session)
            assert await ledger.conditional_increment(coupon.id) is True
            assert await ledger.conditional_increment(coupon.id) is True
            assert await ledger.conditional_increment(coupon.id) is False
    assert await catalog.used(coupon.id) == 2

    async with session_factory() as session:
        async with session.begin():
            ledger = CouponLedger(session)
            for _ in range(3):
                await ledger.decrement(coupon.id)
    assert await catalog.used(coupon.id) == 0


async def test_coupon_lookup_by_code(catalog, session_factory):
    await catalog.coupon(code="TAKEN")
    async with session_factory() as session:
        ledger = CouponLedger(session)
        assert (await ledger.get_by_code("TAKEN")).code == "TAKEN"
        assert await ledger.get_by_code("taken") is None
