import enum
import uuid
from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DECIMAL,
    ForeignKey,
    Integer,
    String,
    Text,
    TIMESTAMP,
    Uuid,
    func,
)
from sqlalchemy.orm import relationship
from shop_orders.db import Base


class ShipStatus(str, enum.Enum):
    PENDING = "pending"
    DELIVERED = "delivered"
    RECEIVED = "received"


class RefundStatus(str, enum.Enum):
    PENDING = "pending"
    APPLIED = "applied"
    PROCESSING = "processing"
    SUCCESS = "success"
    FAILED = "failed"


class CouponType(str, enum.Enum):
    FIXED = "fixed"
    PERCENT = "percent"


class UserAddress(Base):
    __tablename__ = "user_addresses"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Uuid(as_uuid=True), nullable=False, index=True)
    province = Column(String(64), nullable=False, default="")
    city = Column(String(64), nullable=False, default="")
    district = Column(String(64), nullable=False, default="")
    address = Column(String(255), nullable=False)
    zip = Column(String(16), nullable=False, default="")
    contact_name = Column(String(64), nullable=False)
    contact_phone = Column(String(32), nullable=False)
    last_used_at = Column(TIMESTAMP(timezone=True), nullable=True)
    created_at = Column(TIMESTAMP(timezone=True), server_default=func.now())

    @property
    def full_address(self) -> str:
        return f"{self.province}{self.city}{self.district}{self.address}"


class Product(Base):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, autoincrement=True)
    title = Column(String(255), nullable=False)
    on_sale = Column(Boolean, nullable=False, default=True)
    rating = Column(DECIMAL(3, 2), nullable=False, default=5)
    sold_count = Column(Integer, nullable=False, default=0)
    review_count = Column(Integer, nullable=False, default=0)
    price = Column(DECIMAL(10, 2), nullable=False)

    skus = relationship("ProductSku", back_populates="product")


class ProductSku(Base):
    __tablename__ = "product_skus"
    __table_args__ = (CheckConstraint("stock >= 0", name="ck_product_skus_stock"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False)
    title = Column(String(255), nullable=False)
    price = Column(DECIMAL(10, 2), nullable=False)
    stock = Column(Integer, nullable=False, default=0)

    product = relationship("Product", back_populates="skus")


class CouponCode(Base):
    __tablename__ = "coupon_codes"
    __table_args__ = (
        CheckConstraint("used >= 0", name="ck_coupon_codes_used_min"),
        CheckConstraint("used <= total", name="ck_coupon_codes_used_max"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    code = Column(String(32), nullable=False, unique=True)
    type = Column(String(16), nullable=False, default=CouponType.FIXED.value)
    value = Column(DECIMAL(10, 2), nullable=False)
    total = Column(Integer, nullable=False)
    used = Column(Integer, nullable=False, default=0)
    min_amount = Column(DECIMAL(10, 2), nullable=False, default=0)
    not_before = Column(TIMESTAMP(timezone=True), nullable=True)
    not_after = Column(TIMESTAMP(timezone=True), nullable=True)
    enabled = Column(Boolean, nullable=False, default=True)
    created_at = Column(TIMESTAMP(timezone=True), server_default=func.now())


class Order(Base):
    __tablename__ = "orders"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    no = Column(String(32), nullable=False, unique=True)
    user_id = Column(Uuid(as_uuid=True), nullable=False, index=True)
    # snapshot: address, zip, contact_name, contact_phone
    address = Column(JSON, nullable=False)
    remark = Column(Text, nullable=True)
    total_amount = Column(DECIMAL(10, 2), nullable=False, default=0)
    paid_at = Column(TIMESTAMP(timezone=True), nullable=True)
    payment_method = Column(String(32), nullable=True)
    payment_no = Column(String(64), nullable=True)
    closed = Column(Boolean, nullable=False, default=False)
    reviewed = Column(Boolean, nullable=False, default=False)
    ship_status = Column(String(16), nullable=False, default=ShipStatus.PENDING.value)
    ship_data = Column(JSON, nullable=True)
    refund_status = Column(String(16), nullable=False, default=RefundStatus.PENDING.value)
    refund_no = Column(String(64), nullable=True)
    extra = Column(JSON, nullable=True)
    coupon_code_id = Column(Integer, ForeignKey("coupon_codes.id"), nullable=True)
    created_at = Column(TIMESTAMP(timezone=True), server_default=func.now())
    updated_at = Column(TIMESTAMP(timezone=True), onupdate=func.now())

    items = relationship("OrderItem", back_populates="order", lazy="selectin")


class OrderItem(Base):
    __tablename__ = "order_items"
    __table_args__ = (CheckConstraint("amount >= 1", name="ck_order_items_amount"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(Uuid(as_uuid=True), ForeignKey("orders.id"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False)
    product_sku_id = Column(Integer, ForeignKey("product_skus.id"), nullable=False)
    amount = Column(Integer, nullable=False)
    price = Column(DECIMAL(10, 2), nullable=False)
    rating = Column(Integer, nullable=True)
    review = Column(Text, nullable=True)
    reviewed_at = Column(TIMESTAMP(timezone=True), nullable=True)

    order = relationship("Order", back_populates="items")


class CartItem(Base):
    __tablename__ = "cart_items"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Uuid(as_uuid=True), nullable=False, index=True)
    product_sku_id = Column(Integer, ForeignKey("product_skus.id"), nullable=False)
    amount = Column(Integer, nullable=False)
