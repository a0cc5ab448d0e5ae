from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, List
from uuid import UUID
from datetime import datetime
from decimal import Decimal

class OrderItemIn(BaseModel):
    sku_id: int
    amount: int = Field(..., ge=1, description="Quantity of the sku")

class OrderCreateRequest(BaseModel):
    address_id: int
    items: List[OrderItemIn] = Field(..., min_length=1)
    remark: Optional[str] = Field(None, description="Free-form note to the seller")
    coupon_code: Optional[str] = None

class RefundRequest(BaseModel):
    reason: str = Field(..., min_length=1)

class RefundRejectRequest(BaseModel):
    reason: str = Field(..., min_length=1)

class ShipRequest(BaseModel):
    express_company: str = Field(..., min_length=1)
    express_no: str = Field(..., min_length=1)

class ItemReview(BaseModel):
    id: int
    rating: int = Field(..., ge=1, le=5)
    review: str = Field(..., min_length=1)

class ReviewRequest(BaseModel):
    reviews: List[ItemReview] = Field(..., min_length=1)

class OrderItemRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    product_id: int
    product_sku_id: int
    amount: int
    price: Decimal
    rating: Optional[int]
    review: Optional[str]
    reviewed_at: Optional[datetime]

class OrderRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    no: str
    user_id: UUID
    address: dict
    remark: Optional[str]
    total_amount: Decimal
    paid_at: Optional[datetime]
    closed: bool
    reviewed: bool
    ship_status: str
    ship_data: Optional[dict]
    refund_status: str
    extra: Optional[dict]
    coupon_code_id: Optional[int]
    created_at: Optional[datetime]
    updated_at: Optional[datetime]
    items: List[OrderItemRead]

class ErrorRead(BaseModel):
    code: str
    detail: str
    reason: Optional[str] = None

class PaymentResultEvent(BaseModel):
    order_id: UUID
    result: str
    payment_method: Optional[str] = None
    payment_no: Optional[str] = None

class CloseOrderTask(BaseModel):
    task: str
    order_id: UUID
