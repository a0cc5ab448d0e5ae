from typing import AsyncGenerator
from sqlalchemy import event
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import declarative_base
from shop_orders.config import settings

Base = declarative_base()

engine: AsyncEngine | None = None
AsyncSessionLocal: async_sessionmaker[AsyncSession] | None = None


def make_engine(url: str, echo: bool = False) -> AsyncEngine:
    """
    Creates an async engine. SQLite connections open write transactions with
    BEGIN IMMEDIATE so concurrent writers queue on the database lock instead
    of failing a lock upgrade halfway through a transaction.
    """
    backend = make_url(url).get_backend_name()
    if backend != "sqlite":
        return create_async_engine(url, echo=echo, pool_pre_ping=True)

    new_engine = create_async_engine(url, echo=echo, connect_args={"timeout": 30})

    @event.listens_for(new_engine.sync_engine, "connect")
    def _no_implicit_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(new_engine.sync_engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    return new_engine


def make_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=bind, class_=AsyncSession, expire_on_commit=False)


def configure(url: str | None = None) -> async_sessionmaker[AsyncSession]:
    global engine, AsyncSessionLocal
    engine = make_engine(url or settings.database_url(), echo=settings.DB_ECHO)
    AsyncSessionLocal = make_session_factory(engine)
    return AsyncSessionLocal


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    if AsyncSessionLocal is None:
        return configure()
    return AsyncSessionLocal


async def create_all(bind: AsyncEngine) -> None:
    # models must be imported so their tables are registered on Base
    from shop_orders import models  # noqa: F401
    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    async_session = get_session_factory()()
    try:
        yield async_session
    finally:
        await async_session.close()
