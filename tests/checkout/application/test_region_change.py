"""Moving carts between regions."""

import pytest
from protean.exceptions import InvalidOperationError, ObjectNotFoundError, ValidationError
from protean.utils.globals import current_domain

from checkout.address.address import Address
from checkout.region.region import Region

DUAL_PRICES = [{"currency_code": "usd", "amount": 1000}, {"currency_code": "eur", "amount": 900}]


def _address(cart):
    return current_domain.repository_for(Address).get(cart.shipping_address_id)


class TestRegionChange:
    def test_items_are_repriced(self, cart_service, cart, eu_region, make_variant):
        variant = make_variant(prices=DUAL_PRICES)
        cart_service.add_line_item(cart.id, {"variant_id": variant.id, "quantity": 2})

        updated = cart_service.update(cart.id, {"region_id": eu_region.id})

        assert str(updated.region_id) == str(eu_region.id)
        assert updated.items[0].unit_price == 900
        totals = cart_service.totals.calculate(updated)
        assert totals.subtotal == 1800
        assert totals.tax_total == 360

    def test_later_items_use_new_region_prices(self, cart_service, cart, eu_region, make_variant):
        cart_service.update(cart.id, {"region_id": eu_region.id})
        variant = make_variant(prices=DUAL_PRICES)

        updated = cart_service.add_line_item(cart.id, {"variant_id": variant.id, "quantity": 1})
        assert updated.items[0].unit_price == 900

    def test_item_without_price_in_new_region(self, cart_service, cart_with_item, eu_region):
        with pytest.raises(InvalidOperationError) as exc:
            cart_service.update(cart_with_item.id, {"region_id": eu_region.id})
        assert "must be available in the region" in str(exc.value)
        assert str(cart_service.retrieve(cart_with_item.id).region_id) != str(eu_region.id)

    def test_rejected_with_shipping_method(self, cart_service, cart_with_item, shipping_option, eu_region):
        cart_service.add_shipping_method(cart_with_item.id, shipping_option.id)
        with pytest.raises(InvalidOperationError):
            cart_service.update(cart_with_item.id, {"region_id": eu_region.id})

    def test_rejected_with_discount(self, cart_service, cart_with_item, make_discount, eu_region):
        make_discount("TEN")
        cart_service.apply_discount(cart_with_item.id, "TEN")
        with pytest.raises(InvalidOperationError):
            cart_service.update(cart_with_item.id, {"region_id": eu_region.id})

    def test_rejected_after_authorization(self, cart_service, cart, eu_region):
        cart_service.authorize_payment(cart.id)
        with pytest.raises(InvalidOperationError):
            cart_service.update(cart.id, {"region_id": eu_region.id})

    def test_country_must_belong_to_new_region(self, cart_service, cart, eu_region):
        with pytest.raises(ValidationError):
            cart_service.update(cart.id, {"region_id": eu_region.id, "country_code": "us"})

    def test_country_is_assigned_to_shipping_address(self, cart_service, cart, eu_region):
        updated = cart_service.update(cart.id, {"region_id": eu_region.id, "country_code": "FR"})
        assert _address(updated).country_code == "fr"

    def test_single_country_region_sets_country(self, cart_service, eu_region, region):
        cart = cart_service.create({"region_id": eu_region.id})
        assert cart.shipping_address_id is None

        updated = cart_service.update(cart.id, {"region_id": region.id})
        assert _address(updated).country_code == "us"

    def test_gift_cards_and_sessions_are_cleared(self, cart_service, cart, gift_card, eu_region, fake_provider):
        cart_service.apply_gift_card(cart.id, "GIFT-500")
        cart_service.set_payment_sessions(cart.id)

        updated = cart_service.update(cart.id, {"region_id": eu_region.id})
        assert updated.gift_card_ids() == []
        assert list(updated.payment_sessions) == []
        assert len(fake_provider.calls_to("delete_payment")) == 1


class TestShippingAddressCountry:
    def test_foreign_country_moves_cart_to_matching_region(self, cart_service, cart, eu_region):
        updated = cart_service.update_shipping_address(cart.id, {"country_code": "de", "city": "Berlin"})

        assert str(updated.region_id) == str(eu_region.id)
        assert _address(updated).city == "Berlin"

    def test_country_without_region(self, cart_service, cart):
        with pytest.raises(ObjectNotFoundError):
            cart_service.update_shipping_address(cart.id, {"country_code": "jp"})

    def test_country_in_current_region_keeps_region(self, cart_service, cart, region):
        updated = cart_service.update_shipping_address(cart.id, {"country_code": "us", "city": "Austin"})
        assert str(updated.region_id) == str(region.id)

    def test_region_lookup_by_country(self, cart_service, eu_region):
        found = cart_service.regions.retrieve_by_country_code("FR")
        assert isinstance(found, Region)
        assert str(found.id) == str(eu_region.id)

    def test_foreign_country_reprices_and_taxes_items(self, cart_service, cart, eu_region, make_variant):
        variant = make_variant(prices=DUAL_PRICES)
        cart_service.add_line_item(cart.id, {"variant_id": variant.id, "quantity": 2})

        cart_service.update_shipping_address(cart.id, {"country_code": "de"})

        reloaded = cart_service.retrieve(cart.id)
        assert str(reloaded.region_id) == str(eu_region.id)
        assert reloaded.items[0].unit_price == 900
        assert len(reloaded.tax_lines) == 1
        assert cart_service.totals.calculate(reloaded).tax_total == 360


class TestRegionChangeTaxLines:
    def test_previous_region_tax_lines_are_replaced(self, cart_service, eu_region, region, make_variant):
        variant = make_variant(prices=DUAL_PRICES)
        cart = cart_service.create({"region_id": eu_region.id})
        cart_service.add_line_item(cart.id, {"variant_id": variant.id, "quantity": 1})
        assert len(cart_service.retrieve(cart.id).tax_lines) == 1

        cart_service.update(cart.id, {"region_id": region.id})

        reloaded = cart_service.retrieve(cart.id)
        assert reloaded.items[0].unit_price == 1000
        assert [line.rate for line in reloaded.tax_lines] == [0.0]
        assert cart_service.totals.calculate(reloaded).tax_total == 0
