import asyncio
import logging
from fastapi import FastAPI, Depends, Query, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession
from uuid import UUID
from shop_orders import db, orders, schemas, workers
from shop_orders.cart import CartService
from shop_orders.db import create_all, get_session, get_session_factory
from shop_orders.errors import HTTP_STATUS, CouponIneligible, OrderError
from shop_orders.messaging import init_rabbit, close_rabbit
from shop_orders.placement import OrderPlacementService, PlaceItem
from shop_orders.scheduler import DeferredCancellationScheduler, RabbitTaskQueue
import uvicorn

logger = logging.getLogger("orders.api")
app = FastAPI(title="Orders Service")

@app.on_event("startup")
async def startup_event():
    get_session_factory()
    await create_all(db.engine)

    await init_rabbit()

    app.state.close_task = asyncio.create_task(workers.close_order_consumer())
    app.state.result_consumer_task = asyncio.create_task(workers.result_consumer())

@app.on_event("shutdown")
async def shutdown_event():
    app.state.close_task.cancel()
    app.state.result_consumer_task.cancel()
    await close_rabbit()

@app.exception_handler(OrderError)
async def order_error_handler(request: Request, exc: OrderError):
    body = {"code": exc.code, "detail": exc.detail}
    if isinstance(exc, CouponIneligible):
        body["reason"] = exc.reason.value
    if exc.code not in HTTP_STATUS:
        logger.error("[API] Unmapped order error %s", exc.code)
    return JSONResponse(status_code=HTTP_STATUS.get(exc.code, 400), content=body)

def get_placement_service() -> OrderPlacementService:
    factory = get_session_factory()
    return OrderPlacementService(
        factory,
        DeferredCancellationScheduler(RabbitTaskQueue()),
        cart=CartService(factory),
    )


@app.post(
    "/orders",
    response_model=schemas.OrderRead,
    responses={400: {"model": schemas.ErrorRead}, 404: {"model": schemas.ErrorRead},
               409: {"model": schemas.ErrorRead}, 503: {"model": schemas.ErrorRead}},
)
async def create_order(
    order_in: schemas.OrderCreateRequest,
    user_id: UUID = Query(..., description="Acting user"),
    service: OrderPlacementService = Depends(get_placement_service),
):
    return await service.place(
        user_id,
        order_in.address_id,
        order_in.remark,
        [PlaceItem(sku_id=i.sku_id, amount=i.amount) for i in order_in.items],
        order_in.coupon_code,
    )

@app.get("/orders", response_model=list[schemas.OrderRead])
async def list_orders(
    user_id: UUID,
    session: AsyncSession = Depends(get_session)
):
    return await orders.list_orders(session, user_id)

@app.get("/orders/{order_id}", response_model=schemas.OrderRead)
async def get_order(
    order_id: UUID,
    user_id: UUID,
    session: AsyncSession = Depends(get_session)
):
    return await orders.get_order(session, order_id, user_id)

@app.post("/orders/{order_id}/received", response_model=schemas.OrderRead)
async def received(
    order_id: UUID,
    user_id: UUID,
    session: AsyncSession = Depends(get_session)
):
    return await orders.mark_received(session, user_id, order_id)

@app.post("/orders/{order_id}/apply_refund", response_model=schemas.OrderRead)
async def apply_refund(
    order_id: UUID,
    req: schemas.RefundRequest,
    user_id: UUID,
    session: AsyncSession = Depends(get_session)
):
    return await orders.apply_refund(session, user_id, order_id, req.reason)

@app.post("/orders/{order_id}/review", response_model=schemas.OrderRead)
async def review(
    order_id: UUID,
    req: schemas.ReviewRequest,
    user_id: UUID,
    session: AsyncSession = Depends(get_session)
):
    return await orders.submit_review(session, user_id, order_id, [r.model_dump() for r in req.reviews])

@app.post("/admin/orders/{order_id}/ship", response_model=schemas.OrderRead)
async def ship(
    order_id: UUID,
    req: schemas.ShipRequest,
    session: AsyncSession = Depends(get_session)
):
    return await orders.ship(session, order_id, req.express_company, req.express_no)

@app.post("/admin/orders/{order_id}/refund/reject", response_model=schemas.OrderRead)
async def reject_refund(
    order_id: UUID,
    req: schemas.RefundRejectRequest,
    session: AsyncSession = Depends(get_session)
):
    return await orders.reject_refund(session, order_id, req.reason)


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    uvicorn.run("shop_orders.main:app", host="0.0.0.0", port=8000)
