"""
Pytest fixtures: a fresh file-backed SQLite database per test and an
in-memory task queue standing in for RabbitMQ.
"""
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from shop_orders import db
from shop_orders.cart import CartService
from shop_orders.config import Settings
from shop_orders.models import CouponCode, Product, ProductSku, UserAddress
from shop_orders.placement import OrderPlacementService
from shop_orders.scheduler import DeferredCancellationScheduler


class MemoryQueue:
    def __init__(self):
        self.tasks = []

    async def enqueue(self, task: dict, delay: float) -> None:
        self.tasks.append((task, delay))


class BrokenQueue:
    async def enqueue(self, task: dict, delay: float) -> None:
        raise ConnectionError("broker unavailable")


@pytest_asyncio.fixture
async def engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    url = f"sqlite+aiosqlite:///{tmp_path / 'orders.db'}"
    db.configure(url)
    await db.create_all(db.engine)
    try:
        yield db.engine
    finally:
        await db.engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return db.get_session_factory()


@pytest.fixture
def config() -> Settings:
    return Settings(ORDER_TTL=60, PLACE_MAX_ATTEMPTS=3, PLACE_RETRY_DELAY=0)


@pytest.fixture
def queue() -> MemoryQueue:
    return MemoryQueue()


@pytest.fixture
def cart(session_factory) -> CartService:
    return CartService(session_factory)


@pytest.fixture
def service(session_factory, queue, cart, config) -> OrderPlacementService:
    return OrderPlacementService(
        session_factory,
        DeferredCancellationScheduler(queue),
        cart=cart,
        config=config,
    )


@pytest.fixture
def user_id() -> uuid.UUID:
    return uuid.uuid4()


class Catalog:
    """Seeds addresses, skus and coupons and reads counters back."""

    def __init__(self, session_factory):
        self.session_factory = session_factory

    async def _add(self, obj):
        async with self.session_factory() as session:
            async with session.begin():
                session.add(obj)
            return obj

    async def address(self, user_id) -> UserAddress:
        return await self._add(UserAddress(
            user_id=user_id,
            province="Zhejiang",
            city="Hangzhou",
            district="Xihu",
            address="1 Lakeside Road",
            zip="310000",
            contact_name="Lin",
            contact_phone="13800000000",
        ))

    async def sku(self, price="10.00", stock=10, title="Default") -> ProductSku:
        product = await self._add(Product(title=f"Product {title}", price=Decimal(price)))
        return await self._add(ProductSku(
            product_id=product.id, title=title, price=Decimal(price), stock=stock
        ))

    async def coupon(self, code="SAVE10", type="fixed", value="10", total=10, used=0,
                     min_amount="0", enabled=True, not_before=None, not_after=None) -> CouponCode:
        return await self._add(CouponCode(
            name=code,
            code=code,
            type=type,
            value=Decimal(value),
            total=total,
            used=used,
            min_amount=Decimal(min_amount),
            enabled=enabled,
            not_before=not_before,
            not_after=not_after,
        ))

    async def stock(self, sku_id) -> int:
        async with self.session_factory() as session:
            return await session.scalar(select(ProductSku.stock).where(ProductSku.id == sku_id))

    async def used(self, coupon_id) -> int:
        async with self.session_factory() as session:
            return await session.scalar(select(CouponCode.used).where(CouponCode.id == coupon_id))

    async def get(self, model, pk):
        async with self.session_factory() as session:
            return await session.get(model, pk)


@pytest.fixture
def catalog(session_factory) -> Catalog:
    return Catalog(session_factory)


@pytest.fixture
def now() -> datetime:
    return datetime.now(timezone.utc)


@pytest.fixture
def yesterday(now) -> datetime:
    return now - timedelta(days=1)


@pytest.fixture
def tomorrow(now) -> datetime:
    return now + timedelta(days=1)
