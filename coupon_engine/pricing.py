from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal

from .models import TotalsBreakdown

MONEY_QUANT = Decimal("0.01")
ZERO = Decimal("0.00")


def to_decimal(value: float) -> Decimal:
    # via str so 0.1 stays 0.1 instead of its binary expansion
    return Decimal(str(value))


def truncate_money(value: Decimal) -> Decimal:
    return value.quantize(MONEY_QUANT, rounding=ROUND_DOWN)


def quantize_money(value: Decimal) -> Decimal:
    return value.quantize(MONEY_QUANT, rounding=ROUND_HALF_UP)


def calculate_total_with_coupon(
    subtotal: float,
    shipping_cost: float,
    coupon_discount: float,
    tax_rate: float,
    *,
    tax_included: bool,
    free_shipping: bool = False,
) -> TotalsBreakdown:
    """
    Assemble order totals after a coupon discount.

    When prices include tax the discount comes off the gross amount the
    customer sees, and tax is backed out of what remains. Otherwise the
    discount comes off the net subtotal and tax is added on top. Shipping is
    always quoted net of tax.
    """
    rate = to_decimal(tax_rate)
    shipping = ZERO if free_shipping else to_decimal(shipping_cost)
    discounted = max(ZERO, to_decimal(subtotal) - to_decimal(coupon_discount))

    shipping_tax = shipping * rate
    if tax_included:
        net_subtotal = discounted / (1 + rate)
        product_tax = discounted - net_subtotal
        total = discounted + shipping + shipping_tax
    else:
        net_subtotal = discounted
        product_tax = discounted * rate
        total = discounted + product_tax + shipping + shipping_tax

    return TotalsBreakdown(
        subtotal=float(quantize_money(net_subtotal)),
        tax=float(quantize_money(product_tax + shipping_tax)),
        shippingCost=float(quantize_money(shipping)),
        shippingTax=float(quantize_money(shipping_tax)),
        total=float(quantize_money(total)),
    )
