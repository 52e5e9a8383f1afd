from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Discriminator,
    Field,
    NonNegativeInt,
    PositiveInt,
    RootModel,
    Tag,
    TypeAdapter,
    field_validator,
    model_validator,
)


class DiscountType(str, Enum):
    PERCENTAGE = "PERCENTAGE"
    FIXED_AMOUNT = "FIXED_AMOUNT"
    FREE_SHIPPING = "FREE_SHIPPING"
    BUY_X_GET_Y = "BUY_X_GET_Y"


# ---------------------------
# Coupons
# ---------------------------

class CouponBase(BaseModel):
    model_config = ConfigDict(frozen=True)

    code: str = Field(min_length=1)
    description: Optional[str] = None
    discountValue: float = Field(default=0.0, ge=0)
    isActive: bool = True

    startDate: Optional[datetime] = None
    endDate: Optional[datetime] = None
    minimumAmount: Optional[float] = Field(default=None, ge=0)

    # allow-lists; empty or missing means unrestricted
    applicableProducts: Optional[List[str]] = None
    applicableCategories: Optional[List[str]] = None
    applicableUsers: Optional[List[str]] = None

    # counted by the store, never by the evaluator
    totalUsageLimit: Optional[PositiveInt] = None
    customerUsageLimit: PositiveInt = 1

    @field_validator("code")
    @classmethod
    def normalize_code(cls, value: str) -> str:
        code = value.strip().upper()
        if not code:
            raise ValueError("code must not be blank")
        return code


class PercentageCoupon(CouponBase):
    discountType: Literal["PERCENTAGE"]


class FixedAmountCoupon(CouponBase):
    discountType: Literal["FIXED_AMOUNT"]


class FreeShippingCoupon(CouponBase):
    discountType: Literal["FREE_SHIPPING"]


class BuyXGetYCoupon(CouponBase):
    discountType: Literal["BUY_X_GET_Y"]
    getTargetId: str = Field(min_length=1)
    maxFreeQuantity: Optional[NonNegativeInt] = None


class QuantityBuyXGetYCoupon(BuyXGetYCoupon):
    """Buy ``buyQuantity`` of one target, get ``getQuantity`` of another free."""

    buyTargetId: str = Field(min_length=1)
    buyQuantity: PositiveInt
    getQuantity: PositiveInt

    @model_validator(mode="after")
    def check_distinct_targets(self) -> "QuantityBuyXGetYCoupon":
        if self.buyTargetId == self.getTargetId:
            raise ValueError("buyTargetId and getTargetId must differ")
        return self


class CategoryBuyXGetYCoupon(QuantityBuyXGetYCoupon):
    buyMode: Literal["CATEGORY"]


class ProductBuyXGetYCoupon(QuantityBuyXGetYCoupon):
    buyMode: Literal["PRODUCT"]


class ConditionalFreeCoupon(BuyXGetYCoupon):
    """Every unit of ``getTargetId`` is free once either condition holds."""

    buyMode: Literal["CONDITIONAL_FREE"]
    buyTargetId: Optional[str] = None

    @model_validator(mode="after")
    def check_condition_configured(self) -> "ConditionalFreeCoupon":
        if not self.buyTargetId and not self.minimumAmount:
            raise ValueError("CONDITIONAL_FREE needs buyTargetId or minimumAmount")
        return self


def _tag_value(value: Any) -> Optional[str]:
    if value is None:
        return None
    return str(getattr(value, "value", value))


def coupon_tag(value: Any) -> Optional[str]:
    """Pick the coupon variant from ``discountType`` and, for BUY_X_GET_Y, ``buyMode``."""
    if isinstance(value, dict):
        dtype, mode = value.get("discountType"), value.get("buyMode")
    else:
        dtype, mode = getattr(value, "discountType", None), getattr(value, "buyMode", None)

    dtype = _tag_value(dtype)
    if dtype == DiscountType.BUY_X_GET_Y.value:
        mode = _tag_value(mode)
        return f"{dtype}:{mode}" if mode else None
    return dtype


Coupon = Annotated[
    Union[
        Annotated[PercentageCoupon, Tag("PERCENTAGE")],
        Annotated[FixedAmountCoupon, Tag("FIXED_AMOUNT")],
        Annotated[FreeShippingCoupon, Tag("FREE_SHIPPING")],
        Annotated[CategoryBuyXGetYCoupon, Tag("BUY_X_GET_Y:CATEGORY")],
        Annotated[ProductBuyXGetYCoupon, Tag("BUY_X_GET_Y:PRODUCT")],
        Annotated[ConditionalFreeCoupon, Tag("BUY_X_GET_Y:CONDITIONAL_FREE")],
    ],
    Discriminator(
        coupon_tag,
        custom_error_type="invalid_coupon",
        custom_error_message="Unknown discountType/buyMode combination",
    ),
]

_coupon_adapter: TypeAdapter = TypeAdapter(Coupon)


def parse_coupon(data: Any) -> Coupon:
    return _coupon_adapter.validate_python(data)


class CouponPayload(RootModel[Coupon]):
    """A single coupon on the wire, in its flat form."""


# ---------------------------
# Cart
# ---------------------------

class CartItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    productId: str
    quantity: NonNegativeInt
    price: float = Field(ge=0)
    categoryId: Optional[str] = None


class CartSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    subtotal: Optional[float] = Field(default=None, ge=0)
    productIds: List[str] = Field(default_factory=list)
    items: List[CartItem] = Field(default_factory=list)
    userId: Optional[str] = None


# ---------------------------
# Evaluation output
# ---------------------------

class FreeItem(BaseModel):
    productId: str
    quantity: PositiveInt
    unitPrice: float = 0.0


class EvaluationResult(BaseModel):
    valid: bool
    error: Optional[str] = None
    discountAmount: float = 0.0
    freeItems: List[FreeItem] = Field(default_factory=list)
    notice: Optional[str] = None


class TotalsBreakdown(BaseModel):
    subtotal: float
    tax: float
    shippingCost: float
    shippingTax: float
    total: float


# ---------------------------
# API payloads
# ---------------------------

class CouponSummary(BaseModel):
    code: str
    discountType: DiscountType
    discountValue: float
    description: Optional[str] = None


class ValidateCouponRequest(BaseModel):
    code: str = Field(min_length=1)
    cartSubtotal: float = Field(ge=0)
    productIds: List[str]
    cartItems: List[CartItem]
    userId: Optional[str] = None
    shippingCost: float = Field(default=0.0, ge=0)


class ValidateCouponResponse(EvaluationResult):
    coupon: Optional[CouponSummary] = None
    shippingDiscount: float = 0.0


class RedeemRequest(BaseModel):
    userId: Optional[str] = None


class UsageResponse(BaseModel):
    code: str
    totalUsages: int
    customerUsages: Optional[int] = None


class CategoryName(BaseModel):
    name: str = Field(min_length=1)


class CouponUsageStats(BaseModel):
    code: str
    totalUsages: int
    totalUsageLimit: Optional[int] = None
    customerUsageLimit: int
    customers: Dict[str, int] = Field(default_factory=dict)
