"""Tests for TotalsCalculator against in-memory carts."""

from checkout.cart.cart import Cart, LineItem, ShippingMethod
from checkout.discount.engine import AdjustmentData
from checkout.giftcard.gift_card import GiftCard
from checkout.tax.port import TaxLineData
from checkout.totals.calculator import TotalsCalculator, TotalsConfig


def _cart_with_items(*lines):
    cart = Cart.create(region_id="reg-001")
    for quantity, unit_price in lines:
        cart.add_items(LineItem(variant_id="var-001", quantity=quantity, unit_price=unit_price))
    return cart


def _calculate(cart, gift_cards=(), policy="half_up", **kwargs):
    return TotalsCalculator(policy).calculate(cart, TotalsConfig(**kwargs), gift_cards=list(gift_cards))


class TestSubtotal:
    def test_two_units_of_1000(self):
        cart = _cart_with_items((2, 1000))
        totals = _calculate(cart)
        assert totals.subtotal == 2000
        assert totals.total == 2000

    def test_empty_cart(self):
        totals = _calculate(Cart.create(region_id="reg-001"))
        assert totals.subtotal == 0
        assert totals.total == 0


class TestDiscountTotal:
    def test_adjustments_reduce_total(self):
        cart = _cart_with_items((2, 1000))
        cart.replace_adjustments([AdjustmentData(item_id=str(cart.items[0].id), discount_id="d-1", amount=200)])
        totals = _calculate(cart)
        assert totals.discount_total == 200
        assert totals.total == 1800

    def test_item_discount_is_capped_at_line_total(self):
        cart = _cart_with_items((1, 500))
        cart.replace_adjustments([AdjustmentData(item_id=str(cart.items[0].id), discount_id="d-1", amount=900)])
        totals = _calculate(cart)
        assert totals.discount_total == 500
        assert totals.total == 0


class TestShippingTotal:
    def test_shipping_adds_to_total(self):
        cart = _cart_with_items((2, 1000))
        cart.add_shipping_methods(ShippingMethod(shipping_option_id="opt-1", price=500, original_price=500))
        totals = _calculate(cart)
        assert totals.shipping_total == 500
        assert totals.total == 2500

    def test_zeroed_method_with_discount(self):
        cart = _cart_with_items((2, 1000))
        cart.add_shipping_methods(ShippingMethod(shipping_option_id="opt-1", price=0, original_price=500))
        cart.replace_adjustments([AdjustmentData(item_id=str(cart.items[0].id), discount_id="d-1", amount=200)])
        totals = _calculate(cart)
        assert totals.shipping_total == 0
        assert totals.total == 1800


class TestTaxTotal:
    def test_tax_on_discounted_line_and_shipping(self):
        cart = _cart_with_items((2, 1000))
        item = cart.items[0]
        method = ShippingMethod(shipping_option_id="opt-1", price=500, original_price=500)
        cart.add_shipping_methods(method)
        cart.replace_adjustments([AdjustmentData(item_id=str(item.id), discount_id="d-1", amount=200)])
        cart.replace_tax_lines(
            [
                TaxLineData(rate=25.0, name="VAT", item_id=str(item.id)),
                TaxLineData(rate=25.0, name="VAT", shipping_method_id=str(method.id)),
            ]
        )

        totals = _calculate(cart)

        assert totals.item_tax_total == 450
        assert totals.shipping_tax_total == 125
        assert totals.tax_total == 575
        assert totals.total == 2000 - 200 + 500 + 575

    def test_rounding_policy_applies_per_line(self):
        cart = _cart_with_items((1, 1005))
        cart.replace_tax_lines([TaxLineData(rate=10.0, name="tax", item_id=str(cart.items[0].id))])
        assert _calculate(cart).tax_total == 101
        assert _calculate(cart, policy="floor").tax_total == 100


class TestGiftCardTotal:
    def test_gift_card_is_limited_to_discounted_subtotal(self):
        cart = _cart_with_items((1, 1000))
        card = GiftCard.create(code="BIG", value=5000, region_id="reg-001")
        cart.add_shipping_methods(ShippingMethod(shipping_option_id="opt-1", price=500, original_price=500))
        totals = _calculate(cart, gift_cards=[card])
        assert totals.gift_card_total == 1000
        assert totals.total == 500

    def test_partial_gift_card(self):
        cart = _cart_with_items((1, 1000))
        card = GiftCard.create(code="SMALL", value=300, region_id="reg-001")
        totals = _calculate(cart, gift_cards=[card])
        assert totals.gift_card_total == 300
        assert totals.total == 700


class TestSelectedFields:
    def test_only_requested_fields_are_returned(self):
        cart = _cart_with_items((2, 1000))
        totals = _calculate(cart, fields=("subtotal",))
        assert totals.as_dict() == {"subtotal": 2000}
        assert totals.total is None
