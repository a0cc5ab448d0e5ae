import logging
from typing import Iterable
from uuid import UUID
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shop_orders.models import CartItem

logger = logging.getLogger("orders.cart")


class CartService:
    """Cart rows live in the orders database but outside placement transactions."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def add(self, user_id: UUID, sku_id: int, amount: int) -> CartItem:
        async with self.session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    select(CartItem).where(CartItem.user_id == user_id, CartItem.product_sku_id == sku_id)
                )
                item = result.scalar_one_or_none()
                if item:
                    item.amount += amount
                else:
                    item = CartItem(user_id=user_id, product_sku_id=sku_id, amount=amount)
                    session.add(item)
            return item

    async def items(self, user_id: UUID) -> list[CartItem]:
        async with self.session_factory() as session:
            result = await session.execute(select(CartItem).where(CartItem.user_id == user_id))
            return list(result.scalars().all())

    async def remove(self, user_id: UUID, sku_ids: Iterable[int]) -> None:
        sku_ids = list(sku_ids)
        async with self.session_factory() as session:
            async with session.begin():
                await session.execute(
                    delete(CartItem).where(
                        CartItem.user_id == user_id,
                        CartItem.product_sku_id.in_(sku_ids),
                    )
                )
        logger.info("[Cart] Removed skus %s from cart of user %s", sku_ids, user_id)
