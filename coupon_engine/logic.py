import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Iterable, List, Mapping, Optional, Set

from .models import (
    CartItem,
    CartSnapshot,
    CategoryBuyXGetYCoupon,
    ConditionalFreeCoupon,
    Coupon,
    CouponBase,
    EvaluationResult,
    FixedAmountCoupon,
    FreeItem,
    FreeShippingCoupon,
    PercentageCoupon,
    ProductBuyXGetYCoupon,
    QuantityBuyXGetYCoupon,
)
from .pricing import ZERO, to_decimal, truncate_money

logger = logging.getLogger(__name__)

ERR_INACTIVE = "coupon inactive"
ERR_NOT_STARTED = "not yet valid"
ERR_EXPIRED = "expired"
ERR_MINIMUM_AMOUNT = "minimum amount not met"
ERR_USER = "not eligible for this user"
ERR_PRODUCTS = "no applicable products in cart"
ERR_CATEGORIES = "no applicable categories in cart"


# ---------------------------
# Cart helpers
# ---------------------------

def compute_cart_value(cart: CartSnapshot) -> Decimal:
    if cart.subtotal is not None:
        return to_decimal(cart.subtotal)
    return sum((to_decimal(item.price) * item.quantity for item in cart.items), ZERO)


def get_cart_product_ids(cart: CartSnapshot) -> Set[str]:
    return set(cart.productIds) | {item.productId for item in cart.items}


def get_cart_categories(cart: CartSnapshot) -> Set[str]:
    return {item.categoryId for item in cart.items if item.categoryId}


def _as_utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment


# ---------------------------
# Eligibility gates
# ---------------------------

def check_eligibility(coupon: CouponBase, cart: CartSnapshot, now: datetime) -> Optional[str]:
    """Return the reason the coupon cannot be used on this cart, or None."""
    if not coupon.isActive:
        return ERR_INACTIVE

    now = _as_utc(now)
    if coupon.startDate is not None and now < _as_utc(coupon.startDate):
        return ERR_NOT_STARTED

    if coupon.endDate is not None and now > _as_utc(coupon.endDate):
        return ERR_EXPIRED

    # CONDITIONAL_FREE treats the minimum as one side of an OR, not a gate
    if coupon.minimumAmount is not None and not isinstance(coupon, ConditionalFreeCoupon):
        if compute_cart_value(cart) < to_decimal(coupon.minimumAmount):
            return ERR_MINIMUM_AMOUNT

    if coupon.applicableUsers and cart.userId not in coupon.applicableUsers:
        return ERR_USER

    if coupon.applicableProducts:
        if get_cart_product_ids(cart).isdisjoint(coupon.applicableProducts):
            return ERR_PRODUCTS

    if coupon.applicableCategories:
        if get_cart_categories(cart).isdisjoint(coupon.applicableCategories):
            return ERR_CATEGORIES

    return None


# ---------------------------
# Free item allocation
# ---------------------------

def _by_category(item: CartItem) -> Optional[str]:
    return item.categoryId


def _by_product(item: CartItem) -> Optional[str]:
    return item.productId


def allocate_free_units(
    items: Iterable[CartItem],
    matches: Callable[[CartItem], bool],
    budget: Optional[int],
) -> List[FreeItem]:
    """
    Hand out free units over matching lines in cart order.

    ``budget`` of None means every matching unit is free.
    """
    free_items: List[FreeItem] = []
    for item in items:
        if budget is not None and budget <= 0:
            break
        if item.quantity <= 0 or not matches(item):
            continue
        quantity = item.quantity if budget is None else min(budget, item.quantity)
        free_items.append(FreeItem(productId=item.productId, quantity=quantity, unitPrice=item.price))
        if budget is not None:
            budget -= quantity
    return free_items


def _quantity_free_units(coupon: QuantityBuyXGetYCoupon, cart: CartSnapshot) -> int:
    key = _by_category if isinstance(coupon, CategoryBuyXGetYCoupon) else _by_product
    bought = sum(item.quantity for item in cart.items if key(item) == coupon.buyTargetId)
    units = (bought // coupon.buyQuantity) * coupon.getQuantity
    if coupon.maxFreeQuantity is not None:
        units = min(units, coupon.maxFreeQuantity)
    return units


def _conditional_free_met(coupon: ConditionalFreeCoupon, cart: CartSnapshot) -> bool:
    if coupon.buyTargetId:
        if any(item.categoryId == coupon.buyTargetId and item.quantity > 0 for item in cart.items):
            return True
    if coupon.minimumAmount:
        return compute_cart_value(cart) >= to_decimal(coupon.minimumAmount)
    return False


def get_free_items(coupon: Coupon, cart: CartSnapshot) -> List[FreeItem]:
    """Free line items a BUY_X_GET_Y coupon grants for this cart; empty for other types."""
    if isinstance(coupon, QuantityBuyXGetYCoupon):
        key = _by_category if isinstance(coupon, CategoryBuyXGetYCoupon) else _by_product
        units = _quantity_free_units(coupon, cart)
        if units <= 0:
            return []
        return allocate_free_units(cart.items, lambda item: key(item) == coupon.getTargetId, units)

    if isinstance(coupon, ConditionalFreeCoupon):
        if not _conditional_free_met(coupon, cart):
            return []
        return allocate_free_units(
            cart.items, lambda item: item.categoryId == coupon.getTargetId, coupon.maxFreeQuantity
        )

    return []


def _display_name(target: Optional[str], category_names: Mapping[str, str]) -> str:
    if not target:
        return ""
    return category_names.get(target, target)


def _empty_reward_notice(
    coupon: Coupon, cart: CartSnapshot, category_names: Mapping[str, str]
) -> Optional[str]:
    if coupon.maxFreeQuantity == 0:
        # nothing the shopper adds can unlock a reward
        return None

    if isinstance(coupon, ProductBuyXGetYCoupon):
        bought = sum(item.quantity for item in cart.items if item.productId == coupon.buyTargetId)
        if bought < coupon.buyQuantity:
            return f"Add {coupon.buyQuantity - bought} more of product {coupon.buyTargetId} to unlock free items"
        return f"Add product {coupon.getTargetId} to your cart to receive it free"

    if isinstance(coupon, CategoryBuyXGetYCoupon):
        bought = sum(item.quantity for item in cart.items if item.categoryId == coupon.buyTargetId)
        if bought < coupon.buyQuantity:
            name = _display_name(coupon.buyTargetId, category_names)
            return f'Add {coupon.buyQuantity - bought} more from "{name}" to unlock free items'
        return f'Add items from "{_display_name(coupon.getTargetId, category_names)}" to receive them free'

    get_name = _display_name(coupon.getTargetId, category_names)
    if not _conditional_free_met(coupon, cart):
        conditions = []
        if coupon.buyTargetId:
            conditions.append(f'add an item from "{_display_name(coupon.buyTargetId, category_names)}"')
        if coupon.minimumAmount:
            conditions.append(f"reach a subtotal of {coupon.minimumAmount:.2f}")
        return f'To get "{get_name}" items free, ' + " or ".join(conditions)
    return f'Add items from "{get_name}" to receive them free'


# ---------------------------
# Discounts
# ---------------------------

def compute_discount(coupon: Coupon, cart_value: Decimal) -> Decimal:
    if isinstance(coupon, PercentageCoupon):
        discount = cart_value * to_decimal(coupon.discountValue) / 100
    elif isinstance(coupon, FixedAmountCoupon):
        discount = to_decimal(coupon.discountValue)
    elif isinstance(coupon, (FreeShippingCoupon, QuantityBuyXGetYCoupon, ConditionalFreeCoupon)):
        # shipping waivers and free items are applied by the caller
        discount = ZERO
    else:
        raise TypeError(f"Unsupported coupon type: {type(coupon).__name__}")

    # discount cannot exceed cart value and cannot be negative
    return truncate_money(max(ZERO, min(discount, cart_value)))


def calculate_coupon_discount(coupon: Coupon, cart: CartSnapshot) -> float:
    return float(compute_discount(coupon, compute_cart_value(cart)))


def validate_coupon_for_cart(
    coupon: Coupon,
    cart: CartSnapshot,
    now: Optional[datetime] = None,
    category_names: Optional[Mapping[str, str]] = None,
) -> EvaluationResult:
    """
    Decide whether ``coupon`` applies to ``cart`` and what it grants.

    Business rule failures come back as ``valid=False`` with a reason; nothing
    is raised for a well-formed coupon. A BUY_X_GET_Y coupon whose cart does not
    yet qualify is still valid, with no free items and a ``notice`` for the
    shopper.
    """
    if now is None:
        now = datetime.now(timezone.utc)

    error = check_eligibility(coupon, cart, now)
    if error is not None:
        logger.debug("coupon %s rejected: %s", coupon.code, error)
        return EvaluationResult(valid=False, error=error)

    free_items = get_free_items(coupon, cart)
    notice = None
    if isinstance(coupon, (QuantityBuyXGetYCoupon, ConditionalFreeCoupon)) and not free_items:
        notice = _empty_reward_notice(coupon, cart, category_names or {})

    return EvaluationResult(
        valid=True,
        discountAmount=calculate_coupon_discount(coupon, cart),
        freeItems=free_items,
        notice=notice,
    )
