"""
Order placement.

``OrderPlacementService.place`` validates the request, then in a single
transaction touches the address, creates the order and its items, decrements
stock for every item and, when a coupon is given, redeems it. Any failure rolls
the whole transaction back, stock decrements included. Cart cleanup and the
deferred cancellation are dispatched after commit and never undo the order.
"""
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Sequence
from uuid import UUID
from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shop_orders.cart import CartService
from shop_orders.config import Settings, settings as default_settings
from shop_orders.errors import (
    AddressNotFound,
    CouponExhausted,
    CouponNotFound,
    InsufficientStock,
    SkuNotFound,
    TemporaryFailure,
    ValidationError,
)
from shop_orders.ledgers import CouponLedger, StockLedger, adjusted_price, ensure_eligible
from shop_orders.models import CouponCode, Order, OrderItem, ProductSku, UserAddress
from shop_orders.orders import find_available_no, get_order
from shop_orders.scheduler import DeferredCancellationScheduler

logger = logging.getLogger("orders.placement")


@dataclass(frozen=True)
class PlaceItem:
    sku_id: int
    amount: int


# serialization_failure, deadlock_detected
RETRYABLE_SQLSTATES = {"40001", "40P01"}


def _is_transient(exc: DBAPIError) -> bool:
    if isinstance(exc, OperationalError) or exc.connection_invalidated:
        return True
    sqlstate = getattr(exc.orig, "sqlstate", None) or getattr(exc.orig, "pgcode", None)
    return sqlstate in RETRYABLE_SQLSTATES


class OrderPlacementService:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        scheduler: DeferredCancellationScheduler,
        cart: CartService | None = None,
        config: Settings = default_settings,
    ):
        self.session_factory = session_factory
        self.scheduler = scheduler
        self.cart = cart
        self.config = config

    async def place(
        self,
        user_id: UUID,
        address_id: int,
        remark: str | None,
        items: Sequence[PlaceItem],
        coupon_code: str | None = None,
    ) -> Order:
        if not items:
            raise ValidationError("Order must contain at least one item")
        for item in items:
            if item.amount < 1:
                raise ValidationError(f"Quantity for sku {item.sku_id} must be at least 1")

        attempts = max(1, self.config.PLACE_MAX_ATTEMPTS)
        for attempt in range(1, attempts + 1):
            try:
                order = await self._place_once(user_id, address_id, remark, items, coupon_code)
                break
            except DBAPIError as e:
                if not _is_transient(e):
                    raise
                logger.warning(
                    "[Placement] Transient failure for user %s (attempt %d/%d): %s",
                    user_id, attempt, attempts, e,
                )
                if attempt == attempts:
                    raise TemporaryFailure("Order could not be placed, please retry") from e
                await asyncio.sleep(self.config.PLACE_RETRY_DELAY * attempt)

        logger.info("[Placement] Order %s placed by user %s, total %s", order.no, user_id, order.total_amount)
        await self._after_commit(user_id, order, items)
        return order

    async def _place_once(
        self,
        user_id: UUID,
        address_id: int,
        remark: str | None,
        items: Sequence[PlaceItem],
        coupon_code: str | None,
    ) -> Order:
        async with self.session_factory() as session:
            async with session.begin():
                coupons = CouponLedger(session)
                coupon = None
                if coupon_code:
                    coupon = await coupons.get_by_code(coupon_code)
                    if coupon is None:
                        raise CouponNotFound(f"Coupon {coupon_code} does not exist")
                    # the order amount is not known yet, so the minimum is checked later
                    ensure_eligible(coupon)

                address = await session.get(UserAddress, address_id)
                if address is None or address.user_id != user_id:
                    raise AddressNotFound(f"Address {address_id} not found")
                address.last_used_at = datetime.now(timezone.utc)

                order = Order(
                    no=await find_available_no(session),
                    user_id=user_id,
                    address={
                        "address": address.full_address,
                        "zip": address.zip,
                        "contact_name": address.contact_name,
                        "contact_phone": address.contact_phone,
                    },
                    remark=remark,
                    total_amount=Decimal("0"),
                    items=[],
                )
                session.add(order)
                await session.flush()

                total = Decimal("0")
                for data in items:
                    sku = await session.get(ProductSku, data.sku_id)
                    if sku is None:
                        raise SkuNotFound(f"Sku {data.sku_id} not found")
                    order.items.append(OrderItem(
                        product_id=sku.product_id,
                        product_sku_id=sku.id,
                        amount=data.amount,
                        price=sku.price,
                    ))
                    total += Decimal(sku.price) * data.amount

                # a fixed lock order keeps concurrent multi-sku orders from deadlocking
                stock = StockLedger(session)
                for data in sorted(items, key=lambda i: i.sku_id):
                    if not await stock.conditional_decrement(data.sku_id, data.amount):
                        raise InsufficientStock(data.sku_id)

                if coupon is not None:
                    total = await self._redeem(coupons, coupon, order, total)

                order.total_amount = total
                # loaded before commit so a failed read is retried with the transaction
                return await get_order(session, order.id)

    async def _redeem(self, coupons: CouponLedger, coupon: CouponCode, order: Order, total: Decimal) -> Decimal:
        adjusted = adjusted_price(coupon, total)
        basis = adjusted if self.config.COUPON_MIN_AMOUNT_BASIS == "post_discount" else total
        ensure_eligible(coupon, basis)
        order.coupon_code_id = coupon.id
        if not await coupons.conditional_increment(coupon.id):
            raise CouponExhausted()
        return adjusted

    async def _after_commit(self, user_id: UUID, order: Order, items: Sequence[PlaceItem]) -> None:
        if self.cart is not None and self.config.CART_REMOVAL_ENABLED:
            try:
                await self.cart.remove(user_id, [item.sku_id for item in items])
            except Exception as e:
                logger.error("[Placement] Cart cleanup failed for order %s: %s", order.no, e)

        try:
            await self.scheduler.schedule(order.id, self.config.ORDER_TTL)
        except Exception as e:
            logger.error("[Placement] Could not schedule close of order %s: %s", order.no, e)
