import logging
import math
from typing import Any, Dict, List, Optional

from fastapi import Body, FastAPI, HTTPException, Query, Response, status
from fastapi.exceptions import RequestValidationError
from pydantic import ValidationError

from . import storage
from .config import get_settings
from .logging_config import configure_logging
from .logic import validate_coupon_for_cart
from .models import (
    CartSnapshot,
    CategoryName,
    CouponPayload,
    CouponSummary,
    CouponUsageStats,
    FreeShippingCoupon,
    RedeemRequest,
    UsageResponse,
    ValidateCouponRequest,
    ValidateCouponResponse,
    parse_coupon,
)

logger = logging.getLogger(__name__)

ERR_NOT_FOUND = "coupon not found"
ERR_GENERIC = "coupon could not be validated"

settings = get_settings()
configure_logging(settings.log_level, settings.log_json)

app = FastAPI(title=settings.app_name)


@app.get("/health")
def health_check():
    return {"status": "ok"}


@app.post("/coupons", response_model=CouponPayload, status_code=status.HTTP_201_CREATED)
def create_coupon(payload: CouponPayload):
    try:
        coupon = storage.add_coupon(payload.root)
    except storage.CouponExistsError:
        raise HTTPException(status_code=400, detail="Coupon code already exists")

    logger.info("coupon %s created (%s)", coupon.code, coupon.discountType)
    return CouponPayload(coupon)


@app.get("/coupons", response_model=List[CouponPayload])
def list_coupons(
    response: Response,
    search: Optional[str] = None,
    is_active: Optional[bool] = Query(default=None, alias="isActive"),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
):
    coupons, total = storage.list_coupons(search=search, is_active=is_active, page=page, limit=limit)
    response.headers["X-Total-Count"] = str(total)
    response.headers["X-Total-Pages"] = str(math.ceil(total / limit))
    return [CouponPayload(coupon) for coupon in coupons]


@app.post("/coupons/validate", response_model=ValidateCouponResponse)
def validate_coupon(payload: ValidateCouponRequest):
    # outcomes are data: this route answers 200 whether or not the coupon applies
    try:
        coupon = storage.get_coupon(payload.code)
    except storage.CouponNotFoundError:
        return ValidateCouponResponse(valid=False, error=ERR_NOT_FOUND)

    try:
        usage_error = storage.check_usage(coupon, payload.userId)
        if usage_error is not None:
            return ValidateCouponResponse(valid=False, error=usage_error)

        cart = CartSnapshot(
            subtotal=payload.cartSubtotal,
            productIds=payload.productIds,
            items=payload.cartItems,
            userId=payload.userId,
        )
        result = validate_coupon_for_cart(coupon, cart, category_names=storage.category_names_for(coupon))
    except Exception:
        logger.exception("error validating coupon %s", coupon.code)
        return ValidateCouponResponse(valid=False, error=ERR_GENERIC)

    if not result.valid:
        return ValidateCouponResponse(**result.model_dump())

    shipping_discount = payload.shippingCost if isinstance(coupon, FreeShippingCoupon) else 0.0
    return ValidateCouponResponse(
        **result.model_dump(),
        coupon=CouponSummary(
            code=coupon.code,
            discountType=coupon.discountType,
            discountValue=coupon.discountValue,
            description=coupon.description,
        ),
        shippingDiscount=shipping_discount,
    )


@app.get("/coupons/{code}", response_model=CouponPayload)
def get_coupon(code: str):
    try:
        return CouponPayload(storage.get_coupon(code))
    except storage.CouponNotFoundError:
        raise HTTPException(status_code=404, detail="Coupon not found")


@app.put("/coupons/{code}", response_model=CouponPayload)
def update_coupon(code: str, changes: Dict[str, Any] = Body(...)):
    try:
        current = storage.get_coupon(code)
    except storage.CouponNotFoundError:
        raise HTTPException(status_code=404, detail="Coupon not found")

    # the merged record goes through the same checks as a new coupon
    try:
        coupon = parse_coupon({**current.model_dump(), **changes})
    except ValidationError as exc:
        raise RequestValidationError(exc.errors(include_url=False))

    try:
        storage.replace_coupon(current.code, coupon)
    except storage.CouponExistsError:
        raise HTTPException(status_code=400, detail="Coupon code already exists")

    logger.info("coupon %s updated", coupon.code, extra={"previous_code": current.code})
    return CouponPayload(coupon)


@app.delete("/coupons/{code}", status_code=status.HTTP_204_NO_CONTENT)
def delete_coupon(code: str):
    try:
        deleted = storage.delete_coupon(code)
    except storage.CouponNotFoundError:
        raise HTTPException(status_code=404, detail="Coupon not found")
    logger.info("coupon %s deleted", deleted)


@app.get("/coupons/{code}/usage", response_model=CouponUsageStats)
def coupon_usage(code: str):
    try:
        coupon = storage.get_coupon(code)
    except storage.CouponNotFoundError:
        raise HTTPException(status_code=404, detail="Coupon not found")

    return CouponUsageStats(
        code=coupon.code,
        totalUsages=storage.usage_count(coupon.code),
        totalUsageLimit=coupon.totalUsageLimit,
        customerUsageLimit=coupon.customerUsageLimit,
        customers=storage.usage_by_user(coupon.code),
    )


@app.post("/coupons/{code}/redeem", response_model=UsageResponse)
def redeem_coupon(code: str, payload: RedeemRequest):
    try:
        coupon = storage.get_coupon(code)
    except storage.CouponNotFoundError:
        raise HTTPException(status_code=404, detail="Coupon not found")

    try:
        storage.increment_usage(coupon, payload.userId)
    except storage.UsageLimitError as exc:
        raise HTTPException(status_code=409, detail=str(exc))

    logger.info("coupon %s redeemed", coupon.code, extra={"user_id": payload.userId})
    return UsageResponse(
        code=coupon.code,
        totalUsages=storage.usage_count(coupon.code),
        customerUsages=(
            storage.user_usage_count(coupon.code, payload.userId) if payload.userId is not None else None
        ),
    )


@app.put("/categories/{category_id}")
def set_category_name(category_id: str, payload: CategoryName):
    storage.set_category_name(category_id, payload.name)
    return {"id": category_id, "name": payload.name}


def run() -> None:
    import uvicorn

    uvicorn.run(
        "coupon_engine.main:app",
        host=settings.host,
        port=settings.port,
        reload=False,
    )


if __name__ == "__main__":
    run()
