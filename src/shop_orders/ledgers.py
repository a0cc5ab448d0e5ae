import logging
from datetime import datetime, timezone
from decimal import ROUND_DOWN, Decimal
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from shop_orders.errors import CouponExhausted, CouponIneligible, CouponReason
from shop_orders.models import CouponCode, CouponType, ProductSku

logger = logging.getLogger("orders.ledgers")

MIN_AMOUNT = Decimal("0.01")
CENT = Decimal("0.01")


class StockLedger:
    """Per-SKU stock counter. Works inside the caller's transaction."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def conditional_decrement(self, sku_id: int, quantity: int) -> bool:
        result = await self.session.execute(
            update(ProductSku)
            .where(ProductSku.id == sku_id, ProductSku.stock >= quantity)
            .values(stock=ProductSku.stock - quantity)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.info("[Ledger] Stock decrement refused for sku %s (qty %d)", sku_id, quantity)
            return False
        return True

    async def increment(self, sku_id: int, quantity: int) -> None:
        await self.session.execute(
            update(ProductSku)
            .where(ProductSku.id == sku_id)
            .values(stock=ProductSku.stock + quantity)
            .execution_options(synchronize_session=False)
        )


def _aware(value: datetime) -> datetime:
    # SQLite hands back naive timestamps; they are stored as UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def check_eligible(
    coupon: CouponCode,
    order_amount: Decimal | None = None,
    now: datetime | None = None,
) -> CouponReason | None:
    """
    Returns the first failing rule, or None when the coupon can be used.
    Rules are checked in a fixed order: enabled, quota, not_before, not_after,
    min_amount (only when an order amount is given).
    """
    now = now or datetime.now(timezone.utc)
    if not coupon.enabled:
        return CouponReason.DISABLED
    if coupon.total - coupon.used <= 0:
        return CouponReason.EXHAUSTED
    if coupon.not_before is not None and _aware(coupon.not_before) > now:
        return CouponReason.NOT_STARTED
    if coupon.not_after is not None and _aware(coupon.not_after) < now:
        return CouponReason.EXPIRED
    if order_amount is not None and order_amount < Decimal(coupon.min_amount):
        return CouponReason.BELOW_MIN_AMOUNT
    return None


def ensure_eligible(
    coupon: CouponCode,
    order_amount: Decimal | None = None,
    now: datetime | None = None,
) -> None:
    reason = check_eligible(coupon, order_amount, now)
    if reason is CouponReason.EXHAUSTED:
        raise CouponExhausted()
    if reason is not None:
        raise CouponIneligible(reason)


def adjusted_price(coupon: CouponCode, order_amount: Decimal) -> Decimal:
    value = Decimal(coupon.value)
    if coupon.type == CouponType.FIXED.value:
        # an order never costs less than one cent
        return max(MIN_AMOUNT, (order_amount - value).quantize(CENT))
    discounted = (order_amount * (100 - value) / 100).quantize(CENT, rounding=ROUND_DOWN)
    return max(MIN_AMOUNT, discounted)


class CouponLedger:
    """Coupon usage counter. Works inside the caller's transaction."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_code(self, code: str) -> CouponCode | None:
        result = await self.session.execute(select(CouponCode).where(CouponCode.code == code))
        return result.scalar_one_or_none()

    async def conditional_increment(self, coupon_id: int) -> bool:
        result = await self.session.execute(
            update(CouponCode)
            .where(CouponCode.id == coupon_id, CouponCode.used < CouponCode.total)
            .values(used=CouponCode.used + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.info("[Ledger] Coupon %s quota exhausted", coupon_id)
            return False
        return True

    async def decrement(self, coupon_id: int) -> None:
        await self.session.execute(
            update(CouponCode)
            .where(CouponCode.id == coupon_id, CouponCode.used > 0)
            .values(used=CouponCode.used - 1)
            .execution_options(synchronize_session=False)
        )
