from decimal import Decimal

from coupon_engine import calculate_total_with_coupon
from coupon_engine.pricing import quantize_money, truncate_money


def test_money_rounding_modes():
    assert truncate_money(Decimal("4.999")) == Decimal("4.99")
    assert quantize_money(Decimal("4.995")) == Decimal("5.00")
    assert quantize_money(Decimal("1.004")) == Decimal("1.00")


def test_totals_tax_included():
    breakdown = calculate_total_with_coupon(120, 10, 12, 0.2, tax_included=True)
    # 108 gross after discount -> 90 net + 18 tax; shipping 10 + 2 tax
    assert breakdown.subtotal == 90.0
    assert breakdown.tax == 20.0
    assert breakdown.shippingCost == 10.0
    assert breakdown.shippingTax == 2.0
    assert breakdown.total == 120.0


def test_totals_tax_excluded():
    breakdown = calculate_total_with_coupon(100, 10, 20, 0.1, tax_included=False)
    assert breakdown.subtotal == 80.0
    assert breakdown.tax == 9.0
    assert breakdown.shippingTax == 1.0
    assert breakdown.total == 99.0


def test_discount_larger_than_subtotal_floors_at_zero():
    breakdown = calculate_total_with_coupon(30, 5, 50, 0.2, tax_included=True)
    assert breakdown.subtotal == 0.0
    assert breakdown.total == 6.0


def test_free_shipping_waives_shipping_and_its_tax():
    breakdown = calculate_total_with_coupon(100, 15, 0, 0.2, tax_included=False, free_shipping=True)
    assert breakdown.shippingCost == 0.0
    assert breakdown.shippingTax == 0.0
    assert breakdown.total == 120.0
