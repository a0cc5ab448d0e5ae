import json
import logging

from aio_pika.abc import AbstractIncomingMessage

from shop_orders.messaging import (
    get_channel,
    DEAD_LETTER_ARGS,
    QUEUE_ORDER_CLOSE,
    QUEUE_PAYMENT_RESULTS,
)
from shop_orders.schemas import CloseOrderTask, PaymentResultEvent
from shop_orders.orders import mark_paid
from shop_orders.scheduler import CLOSE_ORDER_TASK, close_order
from shop_orders.db import get_session_factory
from shop_orders.config import settings

logger = logging.getLogger("orders.workers")

async def handle_close_message(body: str) -> None:
    try:
        task = CloseOrderTask(**json.loads(body))
    except Exception as e:
        logger.error("[Orders] Invalid close task: %s", e)
        return
    if task.task != CLOSE_ORDER_TASK:
        logger.warning("[Orders] Unknown task %s", task.task)
        return
    await close_order(get_session_factory(), task.order_id)

async def handle_payment_message(body: str) -> None:
    try:
        event = PaymentResultEvent(**json.loads(body))
    except Exception as e:
        logger.error("[Orders] Invalid result format: %s", e)
        return
    if event.result != "success":
        logger.info("[Orders] Payment for order %s failed, waiting for close", event.order_id)
        return

    async with get_session_factory()() as session:
        paid = await mark_paid(session, event.order_id, event.payment_method, event.payment_no)
    if paid:
        logger.info("[Orders] Order %s marked paid", event.order_id)
    else:
        # already paid (duplicate delivery) or closed before the payment arrived
        logger.warning("[Orders] Payment for order %s not applied", event.order_id)

async def consume(message: AbstractIncomingMessage, handler) -> None:
    """
    Acks on success. A failing message is requeued once; if its redelivery
    fails too it is rejected into the dead-letter queue.
    """
    async with message.process(ignore_processed=True):
        try:
            await handler(message.body.decode())
        except Exception as e:
            requeue = not message.redelivered
            logger.error(
                "[Orders] Handling message %s failed (%s): %s",
                message.message_id, "requeue" if requeue else "dead-letter", e,
            )
            await message.reject(requeue=requeue)

async def close_order_consumer():
    channel = await get_channel()
    queue = await channel.declare_queue(QUEUE_ORDER_CLOSE, durable=True, arguments=DEAD_LETTER_ARGS)
    await channel.set_qos(prefetch_count=settings.CLOSE_CONSUMER_PREFETCH)

    logger.info("[Orders] Starting close_order_consumer on '%s'", QUEUE_ORDER_CLOSE)
    async with queue.iterator() as it:
        async for message in it:
            await consume(message, handle_close_message)

async def result_consumer():
    channel = await get_channel()
    queue = await channel.declare_queue(QUEUE_PAYMENT_RESULTS, durable=True, arguments=DEAD_LETTER_ARGS)
    await channel.set_qos(prefetch_count=settings.RESULT_CONSUMER_PREFETCH)

    logger.info("[Orders] Starting result_consumer on '%s'", QUEUE_PAYMENT_RESULTS)
    async with queue.iterator() as it:
        async for message in it:
            logger.info("[Orders] Received result message: %s", message.body.decode())
            await consume(message, handle_payment_message)
