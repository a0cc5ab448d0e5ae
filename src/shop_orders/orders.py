"""
Order state transitions after placement.

Each transition is a conditional UPDATE guarded by the state it starts from,
so two racing requests cannot both apply it; the loser gets
``InvalidStateTransition``.
"""
import logging
import secrets
from datetime import datetime, timezone
from typing import List
from uuid import UUID
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from shop_orders.errors import InvalidStateTransition, OrderNotFound, ValidationError
from shop_orders.models import Order, OrderItem, Product, RefundStatus, ShipStatus

logger = logging.getLogger("orders.orders")


async def find_available_no(session: AsyncSession) -> str:
    while True:
        no = datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S") + f"{secrets.randbelow(10**6):06d}"
        exists = await session.scalar(select(Order.id).where(Order.no == no))
        if exists is None:
            return no


async def get_order(
    session: AsyncSession,
    order_id: UUID,
    user_id: UUID | None = None,
) -> Order:
    stmt = select(Order).where(Order.id == order_id).execution_options(populate_existing=True)
    if user_id is not None:
        stmt = stmt.where(Order.user_id == user_id)
    order = (await session.execute(stmt)).scalar_one_or_none()
    if order is None:
        raise OrderNotFound(f"Order {order_id} not found")
    return order


async def list_orders(session: AsyncSession, user_id: UUID) -> List[Order]:
    result = await session.execute(
        select(Order).where(Order.user_id == user_id).order_by(Order.created_at.desc())
    )
    return list(result.scalars().all())


async def _transition(session: AsyncSession, order_id: UUID, guards, values: dict, error: str) -> None:
    result = await session.execute(
        update(Order)
        .where(Order.id == order_id, *guards)
        .values(updated_at=func.now(), **values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise InvalidStateTransition(error)


async def mark_received(session: AsyncSession, user_id: UUID, order_id: UUID) -> Order:
    async with session.begin():
        await get_order(session, order_id, user_id)
        await _transition(
            session,
            order_id,
            [Order.ship_status == ShipStatus.DELIVERED.value],
            {"ship_status": ShipStatus.RECEIVED.value},
            "Order has not been delivered",
        )
    return await get_order(session, order_id, user_id)


async def apply_refund(session: AsyncSession, user_id: UUID, order_id: UUID, reason: str) -> Order:
    async with session.begin():
        order = await get_order(session, order_id, user_id)
        if order.paid_at is None:
            raise InvalidStateTransition("Order is not paid, refund is not possible")
        extra = dict(order.extra or {})
        extra["refund_reason"] = reason
        await _transition(
            session,
            order_id,
            [Order.paid_at.is_not(None), Order.refund_status == RefundStatus.PENDING.value],
            {"refund_status": RefundStatus.APPLIED.value, "extra": extra},
            "Refund has already been requested",
        )
    logger.info("[Orders] Refund requested for order %s", order_id)
    return await get_order(session, order_id, user_id)


async def reject_refund(session: AsyncSession, order_id: UUID, reason: str) -> Order:
    async with session.begin():
        order = await get_order(session, order_id)
        extra = dict(order.extra or {})
        extra["refund_disagree_reason"] = reason
        await _transition(
            session,
            order_id,
            [Order.refund_status == RefundStatus.APPLIED.value],
            {"refund_status": RefundStatus.PENDING.value, "extra": extra},
            "Order has no pending refund request",
        )
    return await get_order(session, order_id)


async def ship(session: AsyncSession, order_id: UUID, express_company: str, express_no: str) -> Order:
    async with session.begin():
        await get_order(session, order_id)
        await _transition(
            session,
            order_id,
            [
                Order.paid_at.is_not(None),
                Order.ship_status == ShipStatus.PENDING.value,
                Order.refund_status != RefundStatus.SUCCESS.value,
            ],
            {
                "ship_status": ShipStatus.DELIVERED.value,
                "ship_data": {"express_company": express_company, "express_no": express_no},
            },
            "Order is unpaid or already shipped",
        )
    return await get_order(session, order_id)


async def mark_paid(
    session: AsyncSession,
    order_id: UUID,
    payment_method: str | None = None,
    payment_no: str | None = None,
) -> bool:
    """
    Records a completed payment. Refused for closed orders, so a cancellation
    that already released the ledgers is never silently undone.
    """
    async with session.begin():
        result = await session.execute(
            update(Order)
            .where(Order.id == order_id, Order.paid_at.is_(None), Order.closed.is_(False))
            .values(
                paid_at=datetime.now(timezone.utc),
                payment_method=payment_method,
                payment_no=payment_no,
                updated_at=func.now(),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return False
        items = await session.execute(
            select(OrderItem.product_id, func.sum(OrderItem.amount))
            .where(OrderItem.order_id == order_id)
            .group_by(OrderItem.product_id)
        )
        for product_id, amount in items.all():
            await session.execute(
                update(Product)
                .where(Product.id == product_id)
                .values(sold_count=Product.sold_count + amount)
                .execution_options(synchronize_session=False)
            )
    return True


async def submit_review(session: AsyncSession, user_id: UUID, order_id: UUID, reviews: List[dict]) -> Order:
    """
    Stores per-item ratings and flags the order reviewed in one transaction,
    then refreshes the rating and review count of every reviewed product.
    ``reviews`` holds dicts with ``id`` (order item id), ``rating`` and ``review``.
    """
    async with session.begin():
        order = await get_order(session, order_id, user_id)
        if order.paid_at is None:
            raise InvalidStateTransition("Order is not paid, review is not possible")
        await _transition(
            session,
            order_id,
            [Order.reviewed.is_(False)],
            {"reviewed": True},
            "Order has already been reviewed",
        )

        items = {item.id: item for item in order.items}
        now = datetime.now(timezone.utc)
        product_ids = set()
        for review in reviews:
            item = items.get(review["id"])
            if item is None:
                raise ValidationError(f"Item {review['id']} does not belong to order {order_id}")
            await session.execute(
                update(OrderItem)
                .where(OrderItem.id == item.id)
                .values(rating=review["rating"], review=review["review"], reviewed_at=now)
                .execution_options(synchronize_session=False)
            )
            product_ids.add(item.product_id)

        for product_id in product_ids:
            await _refresh_product_rating(session, product_id)
    session.expire_all()
    return await get_order(session, order_id, user_id)


async def _refresh_product_rating(session: AsyncSession, product_id: int) -> None:
    row = (await session.execute(
        select(func.count(OrderItem.id), func.avg(OrderItem.rating))
        .join(Order, Order.id == OrderItem.order_id)
        .where(
            OrderItem.product_id == product_id,
            OrderItem.reviewed_at.is_not(None),
            Order.paid_at.is_not(None),
        )
    )).one()
    count, rating = row
    await session.execute(
        update(Product)
        .where(Product.id == product_id)
        .values(review_count=count, rating=rating)
        .execution_options(synchronize_session=False)
    )
