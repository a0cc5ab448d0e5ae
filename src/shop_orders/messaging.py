import asyncio
import logging
from aio_pika import connect_robust, ExchangeType
from aio_pika.abc import AbstractRobustConnection, AbstractRobustChannel
from shop_orders.config import settings

logger = logging.getLogger("orders.messaging")

PAYMENT_EXCHANGE      = "payment_exchange"
QUEUE_PAYMENT_RESULTS = "payment_results"

ORDER_EXCHANGE          = "order_exchange"
QUEUE_ORDER_CLOSE_DELAY = "order_close_delay"
QUEUE_ORDER_CLOSE       = "order_close"
QUEUE_DEAD_LETTER       = "orders_dead_letter"

# consumer queues park messages that keep failing in orders_dead_letter
DEAD_LETTER_ARGS = {
    "x-dead-letter-exchange": ORDER_EXCHANGE,
    "x-dead-letter-routing-key": QUEUE_DEAD_LETTER,
}

rabbit_connection: AbstractRobustConnection | None = None
rabbit_channel:    AbstractRobustChannel     | None = None

async def declare_topology(channel: AbstractRobustChannel) -> None:
    payments = await channel.declare_exchange(
        PAYMENT_EXCHANGE, ExchangeType.DIRECT, durable=True
    )
    queue_res = await channel.declare_queue(
        QUEUE_PAYMENT_RESULTS, durable=True, arguments=DEAD_LETTER_ARGS
    )
    await queue_res.bind(payments, QUEUE_PAYMENT_RESULTS)

    orders = await channel.declare_exchange(
        ORDER_EXCHANGE, ExchangeType.DIRECT, durable=True
    )
    # messages sit here until their expiration, then dead-letter into order_close
    queue_delay = await channel.declare_queue(
        QUEUE_ORDER_CLOSE_DELAY,
        durable=True,
        arguments={
            "x-dead-letter-exchange": ORDER_EXCHANGE,
            "x-dead-letter-routing-key": QUEUE_ORDER_CLOSE,
        },
    )
    await queue_delay.bind(orders, QUEUE_ORDER_CLOSE_DELAY)
    queue_close = await channel.declare_queue(
        QUEUE_ORDER_CLOSE, durable=True, arguments=DEAD_LETTER_ARGS
    )
    await queue_close.bind(orders, QUEUE_ORDER_CLOSE)
    queue_dead = await channel.declare_queue(QUEUE_DEAD_LETTER, durable=True)
    await queue_dead.bind(orders, QUEUE_DEAD_LETTER)

async def init_rabbit(retry_attempts: int = 5, retry_delay: int = 2) -> None:
    global rabbit_connection, rabbit_channel
    url = f"amqp://{settings.RABBIT_USER}:{settings.RABBIT_PASSWORD}@{settings.RABBIT_HOST}:{settings.RABBIT_PORT}/"

    for attempt in range(1, retry_attempts + 1):
        try:
            logger.info(f"[Orders] Connecting to RabbitMQ (attempt {attempt}/{retry_attempts})")
            rabbit_connection = await connect_robust(url)
            rabbit_channel    = await rabbit_connection.channel()
            await declare_topology(rabbit_channel)
            logger.info("[Orders] RabbitMQ setup complete")
            return
        except Exception as e:
            logger.error(f"[Orders] RabbitMQ init failed: {e}")
            if attempt < retry_attempts:
                await asyncio.sleep(retry_delay)
            else:
                logger.critical("[Orders] Could not connect to RabbitMQ, exiting")
                raise

async def get_channel() -> AbstractRobustChannel:
    if rabbit_channel is None:
        await init_rabbit()
    return rabbit_channel

async def close_rabbit() -> None:
    global rabbit_connection, rabbit_channel
    if rabbit_connection:
        await rabbit_connection.close()
        rabbit_connection = None
        rabbit_channel = None
        logger.info("[Orders] RabbitMQ connection closed")
