"""
Business errors raised by the order workflows.

Every error carries a stable ``code`` (and coupon errors a ``reason``) so that
callers can branch on values instead of exception classes. The HTTP layer maps
``code`` to a status via ``HTTP_STATUS``.
"""
import enum


class CouponReason(str, enum.Enum):
    DISABLED = "disabled"
    EXHAUSTED = "exhausted"
    NOT_STARTED = "not_started"
    EXPIRED = "expired"
    BELOW_MIN_AMOUNT = "below_min_amount"


COUPON_MESSAGES = {
    CouponReason.DISABLED: "Coupon does not exist",
    CouponReason.EXHAUSTED: "Coupon has been fully redeemed",
    CouponReason.NOT_STARTED: "Coupon is not yet valid",
    CouponReason.EXPIRED: "Coupon has expired",
    CouponReason.BELOW_MIN_AMOUNT: "Order amount does not meet the coupon minimum",
}


class OrderError(Exception):
    code = "order_error"

    def __init__(self, detail: str | None = None):
        self.detail = detail or self.__class__.__name__
        super().__init__(self.detail)


class ValidationError(OrderError):
    code = "validation_error"


class NotFound(OrderError):
    code = "not_found"


class AddressNotFound(NotFound):
    code = "address_not_found"


class SkuNotFound(NotFound):
    code = "sku_not_found"


class CouponNotFound(NotFound):
    code = "coupon_not_found"


class OrderNotFound(NotFound):
    code = "order_not_found"


class InsufficientStock(OrderError):
    code = "insufficient_stock"

    def __init__(self, sku_id: int):
        self.sku_id = sku_id
        super().__init__(f"Insufficient stock for sku {sku_id}")


class CouponIneligible(OrderError):
    code = "coupon_ineligible"

    def __init__(self, reason: CouponReason):
        self.reason = reason
        super().__init__(COUPON_MESSAGES[reason])


class CouponExhausted(CouponIneligible):
    code = "coupon_exhausted"

    def __init__(self):
        super().__init__(CouponReason.EXHAUSTED)


class InvalidStateTransition(OrderError):
    code = "invalid_state_transition"


class TemporaryFailure(OrderError):
    code = "temporary_failure"


HTTP_STATUS = {
    ValidationError.code: 422,
    NotFound.code: 404,
    AddressNotFound.code: 404,
    SkuNotFound.code: 404,
    CouponNotFound.code: 404,
    OrderNotFound.code: 404,
    InsufficientStock.code: 409,
    CouponIneligible.code: 400,
    CouponExhausted.code: 409,
    InvalidStateTransition.code: 409,
    TemporaryFailure.code: 503,
}
