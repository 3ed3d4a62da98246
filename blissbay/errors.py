import logging
from typing import Any, Optional

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


# =====================================================
# EXCEPTIONS
# =====================================================

class AppError(HTTPException):
    """HTTPException carrying a machine-readable ``reason``."""

    status_code = status.HTTP_400_BAD_REQUEST
    reason = "bad_request"

    def __init__(
        self,
        detail: str = "An error occurred",
        reason: Optional[str] = None,
        status_code: Optional[int] = None,
        extra: Optional[dict] = None,
    ):
        super().__init__(status_code=status_code or self.status_code, detail=detail)
        if reason:
            self.reason = reason
        self.extra = extra or {}


class BadRequest(AppError):
    pass


class NotFound(AppError):
    status_code = status.HTTP_404_NOT_FOUND
    reason = "not_found"

    def __init__(self, detail: str = "Resource not found", **kwargs):
        super().__init__(detail, **kwargs)


class Forbidden(AppError):
    status_code = status.HTTP_403_FORBIDDEN
    reason = "forbidden"


class Conflict(AppError):
    status_code = status.HTTP_409_CONFLICT
    reason = "conflict"


class InsufficientStock(Conflict):
    reason = "insufficient_stock"


class CartLimitExceeded(AppError):
    reason = "cart_limit_exceeded"


class CheckoutFailed(Conflict):
    """Raised with one entry per offending cart line in ``extra["lines"]``."""

    reason = "checkout_validation_failed"


class PaymentFailed(AppError):
    status_code = status.HTTP_402_PAYMENT_REQUIRED
    reason = "payment_failed"


class GatewayError(Exception):
    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.code = code


# Coupon errors

class CouponNotFound(NotFound):
    reason = "coupon_not_found"


class CouponInactive(AppError):
    reason = "coupon_inactive"


class CouponExpired(AppError):
    reason = "coupon_expired"


class CouponBelowMinimum(AppError):
    reason = "coupon_below_minimum"


class CouponUsageLimitReached(AppError):
    reason = "coupon_usage_limit_reached"


class CouponNotApplicable(AppError):
    reason = "coupon_not_applicable"


# =====================================================
# HANDLERS
# =====================================================

def _error_body(detail: Any, reason: str, **extra) -> dict:
    body = {"detail": detail, "reason": reason}
    body.update(extra)
    return body


def register_error_handlers(app: FastAPI, debug: bool = False) -> None:

    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError):
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_body(exc.detail, exc.reason, **exc.extra),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        errors = [
            {
                "field": ".".join(str(p) for p in err.get("loc", ()) if p != "body"),
                "message": err.get("msg"),
            }
            for err in exc.errors()
        ]
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=_error_body("Validation error", "validation_error", errors=errors),
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        detail = str(exc) if debug else "Internal server error"
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=_error_body(detail, "internal_error"),
        )
