from typing import Dict, List, Optional, Tuple

from .models import Coupon

# code -> Coupon
COUPONS_DB: Dict[str, Coupon] = {}

# couponCode -> total redemptions
USAGE_TOTAL: Dict[str, int] = {}

# (userId, couponCode) -> usageCount
USAGE_PER_USER: Dict[Tuple[str, str], int] = {}

# categoryId -> display name
CATEGORY_NAMES: Dict[str, str] = {}

ERR_TOTAL_LIMIT = "usage limit reached"
ERR_CUSTOMER_LIMIT = "customer usage limit reached"


class CouponNotFoundError(KeyError):
    pass


class CouponExistsError(ValueError):
    pass


class UsageLimitError(Exception):
    pass


def add_coupon(coupon: Coupon) -> Coupon:
    if coupon.code in COUPONS_DB:
        raise CouponExistsError(coupon.code)
    COUPONS_DB[coupon.code] = coupon
    return coupon


def get_coupon(code: str) -> Coupon:
    try:
        return COUPONS_DB[code.strip().upper()]
    except KeyError:
        raise CouponNotFoundError(code) from None


def list_coupons(
    search: Optional[str] = None,
    is_active: Optional[bool] = None,
    page: int = 1,
    limit: Optional[int] = None,
) -> Tuple[List[Coupon], int]:
    """Filter coupons by code/description text and active flag; return one page and the match count."""
    coupons = list(COUPONS_DB.values())
    if search:
        needle = search.strip().lower()
        coupons = [
            c for c in coupons if needle in c.code.lower() or needle in (c.description or "").lower()
        ]
    if is_active is not None:
        coupons = [c for c in coupons if c.isActive == is_active]

    total = len(coupons)
    if limit is not None:
        start = (page - 1) * limit
        coupons = coupons[start:start + limit]
    return coupons, total


def replace_coupon(old_code: str, coupon: Coupon) -> Coupon:
    """Store an edited coupon; redemption counters follow a renamed code."""
    current = get_coupon(old_code)
    if coupon.code != current.code:
        if coupon.code in COUPONS_DB:
            raise CouponExistsError(coupon.code)
        del COUPONS_DB[current.code]
        if current.code in USAGE_TOTAL:
            USAGE_TOTAL[coupon.code] = USAGE_TOTAL.pop(current.code)
        for user_id, code in [k for k in USAGE_PER_USER if k[1] == current.code]:
            USAGE_PER_USER[(user_id, coupon.code)] = USAGE_PER_USER.pop((user_id, code))
    COUPONS_DB[coupon.code] = coupon
    return coupon


def delete_coupon(code: str) -> str:
    coupon = get_coupon(code)
    del COUPONS_DB[coupon.code]
    USAGE_TOTAL.pop(coupon.code, None)
    for key in [k for k in USAGE_PER_USER if k[1] == coupon.code]:
        del USAGE_PER_USER[key]
    return coupon.code


def usage_count(code: str) -> int:
    return USAGE_TOTAL.get(code, 0)


def user_usage_count(code: str, user_id: str) -> int:
    return USAGE_PER_USER.get((user_id, code), 0)


def usage_by_user(code: str) -> Dict[str, int]:
    return {user_id: count for (user_id, key), count in USAGE_PER_USER.items() if key == code}


def check_usage(coupon: Coupon, user_id: Optional[str]) -> Optional[str]:
    """Return the usage limit the coupon has hit, or None."""
    if coupon.totalUsageLimit is not None and usage_count(coupon.code) >= coupon.totalUsageLimit:
        return ERR_TOTAL_LIMIT
    if user_id is not None and user_usage_count(coupon.code, user_id) >= coupon.customerUsageLimit:
        return ERR_CUSTOMER_LIMIT
    return None


def increment_usage(coupon: Coupon, user_id: Optional[str]) -> None:
    error = check_usage(coupon, user_id)
    if error is not None:
        raise UsageLimitError(error)
    USAGE_TOTAL[coupon.code] = usage_count(coupon.code) + 1
    if user_id is not None:
        key = (user_id, coupon.code)
        USAGE_PER_USER[key] = USAGE_PER_USER.get(key, 0) + 1


def set_category_name(category_id: str, name: str) -> None:
    CATEGORY_NAMES[category_id] = name


def category_names_for(coupon: Coupon) -> Dict[str, str]:
    """Request-scoped copy of the names a coupon's messages may mention."""
    targets = {getattr(coupon, "buyTargetId", None), getattr(coupon, "getTargetId", None)}
    return {cid: CATEGORY_NAMES[cid] for cid in targets if cid in CATEGORY_NAMES}


def reset() -> None:
    COUPONS_DB.clear()
    USAGE_TOTAL.clear()
    USAGE_PER_USER.clear()
    CATEGORY_NAMES.clear()
