"""
Deferred cancellation of unpaid orders.

``DeferredCancellationScheduler.schedule`` enqueues a ``close_order`` task to
fire after the order TTL. The task itself (``close_order``) may be delivered
more than once; it only acts when a single conditional update manages to flip
the order from "unpaid and open" to "closed", so duplicates and tasks that
lose the race against a payment are no-ops.
"""
import json
import logging
from typing import Protocol
from uuid import UUID
from aio_pika import DeliveryMode, ExchangeType, Message
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shop_orders.ledgers import CouponLedger, StockLedger
from shop_orders.messaging import ORDER_EXCHANGE, QUEUE_ORDER_CLOSE_DELAY, get_channel
from shop_orders.models import Order, OrderItem

logger = logging.getLogger("orders.scheduler")

CLOSE_ORDER_TASK = "close_order"


class TaskQueue(Protocol):
    async def enqueue(self, task: dict, delay: float) -> None: ...


class RabbitTaskQueue:
    """Delayed delivery through a TTL queue that dead-letters into order_close."""

    async def enqueue(self, task: dict, delay: float) -> None:
        channel = await get_channel()
        exchange = await channel.declare_exchange(
            ORDER_EXCHANGE, ExchangeType.DIRECT, durable=True
        )
        message = Message(
            body=json.dumps(task).encode(),
            delivery_mode=DeliveryMode.PERSISTENT,
            expiration=delay,
        )
        await exchange.publish(message, routing_key=QUEUE_ORDER_CLOSE_DELAY)


class DeferredCancellationScheduler:
    def __init__(self, queue: TaskQueue):
        self.queue = queue

    async def schedule(self, order_id: UUID, ttl: float) -> None:
        task = {"task": CLOSE_ORDER_TASK, "order_id": str(order_id)}
        await self.queue.enqueue(task, ttl)
        logger.info("[Scheduler] Close of order %s scheduled in %ss", order_id, ttl)


async def close_order(
    session_factory: async_sessionmaker[AsyncSession],
    order_id: UUID,
) -> bool:
    """
    Cancels an unpaid order and hands its stock and coupon usage back.
    Returns True when this call did the cancellation, False when the order was
    already paid, already closed or does not exist.
    """
    async with session_factory() as session:
        async with session.begin():
            result = await session.execute(
                update(Order)
                .where(Order.id == order_id, Order.paid_at.is_(None), Order.closed.is_(False))
                .values(closed=True)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                logger.info("[Scheduler] Order %s paid or already closed, skipping", order_id)
                return False

            items = await session.execute(
                select(OrderItem.product_sku_id, OrderItem.amount).where(OrderItem.order_id == order_id)
            )
            stock = StockLedger(session)
            for sku_id, amount in items.all():
                await stock.increment(sku_id, amount)

            coupon_id = await session.scalar(select(Order.coupon_code_id).where(Order.id == order_id))
            if coupon_id is not None:
                await CouponLedger(session).decrement(coupon_id)

    logger.info("[Scheduler] Order %s closed, ledgers released", order_id)
    return True
