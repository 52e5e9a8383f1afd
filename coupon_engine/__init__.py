from .logic import calculate_coupon_discount, get_free_items, validate_coupon_for_cart
from .models import CartItem, CartSnapshot, EvaluationResult, FreeItem, parse_coupon
from .pricing import calculate_total_with_coupon

__all__ = [
    "CartItem",
    "CartSnapshot",
    "EvaluationResult",
    "FreeItem",
    "calculate_coupon_discount",
    "calculate_total_with_coupon",
    "get_free_items",
    "parse_coupon",
    "validate_coupon_for_cart",
]
