"""Shared BDD fixtures and step definitions for the checkout domain."""

from datetime import UTC, datetime, timedelta

import pytest
from protean.exceptions import InvalidOperationError, ValidationError
from protean.utils.globals import current_domain
from pytest_bdd import given, parsers, then, when

from checkout.shipping.option import ShippingOption


@pytest.fixture()
def error():
    """Container for the error a rejected step raised."""
    return {"exc": None}


def _reload(cart_service, cart):
    return cart_service.retrieve(cart.id)


def _totals(cart_service, cart):
    return cart_service.totals.calculate(_reload(cart_service, cart))


# ---------------------------------------------------------------------------
# Given steps
# ---------------------------------------------------------------------------
@given("an empty cart in the US region", target_fixture="cart")
def empty_cart(cart_service, region):
    return cart_service.create({"region_id": region.id})


@given("an empty cart in the EU region", target_fixture="cart")
def empty_eu_cart(cart_service, eu_region):
    return cart_service.create({"region_id": eu_region.id})


@given(parsers.cfparse("the cart holds {quantity:d} units priced {price:d} {currency}"), target_fixture="cart")
def cart_holds_units(cart_service, cart, make_variant, quantity, price, currency):
    variant = make_variant(prices=[{"currency_code": currency, "amount": price}])
    return cart_service.add_line_item(cart.id, {"variant_id": variant.id, "quantity": quantity})


@given(parsers.cfparse("a shipping option priced {amount:d} for the cart region"), target_fixture="option")
def shipping_option_for_cart(cart, amount):
    option = ShippingOption(name="Standard", region_id=cart.region_id, profile_id="profile-default", amount=amount)
    current_domain.repository_for(ShippingOption).add(option)
    return option


@given(parsers.cfparse('a {rule_type} discount "{code}" worth {value:d}'))
def discount_exists(make_discount, cart, rule_type, code, value):
    make_discount(code, rule_type.replace(" ", "_"), value, regions=[cart.region_id])


@given(parsers.cfparse('an expired {rule_type} discount "{code}" worth {value:d}'))
def expired_discount_exists(make_discount, cart, rule_type, code, value):
    make_discount(
        code,
        rule_type.replace(" ", "_"),
        value,
        regions=[cart.region_id],
        starts_at=datetime.now(UTC) - timedelta(days=30),
        ends_at=datetime.now(UTC) - timedelta(days=1),
    )


@given(parsers.cfparse('the discount "{code}" is on the cart'))
def discount_on_cart(cart_service, cart, code):
    cart_service.apply_discount(cart.id, code)


@given("the shipping option is on the cart")
def option_on_cart(cart_service, cart, option):
    cart_service.add_shipping_method(cart.id, option.id)


# ---------------------------------------------------------------------------
# When steps
# ---------------------------------------------------------------------------
@when(parsers.cfparse('the discount "{code}" is applied'))
def apply_discount(cart_service, cart, code, error):
    try:
        cart_service.apply_discount(cart.id, code)
    except (InvalidOperationError, ValidationError) as exc:
        error["exc"] = exc


@when(parsers.cfparse('the discount "{code}" is removed'))
def remove_discount(cart_service, cart, code):
    cart_service.remove_discount(cart.id, code)


@when("the shipping option is added to the cart")
def add_shipping_option(cart_service, cart, option):
    cart_service.add_shipping_method(cart.id, option.id)


# ---------------------------------------------------------------------------
# Then steps
# ---------------------------------------------------------------------------
@then(parsers.cfparse("the cart {field} is {amount:d}"))
def cart_total_is(cart_service, cart, field, amount):
    totals = _totals(cart_service, cart)
    assert getattr(totals, field.replace(" ", "_")) == amount


@then(parsers.cfparse("the cart has {count:d} discount applied"))
def cart_has_discounts_singular(cart_service, cart, count):
    assert len(_reload(cart_service, cart).discount_ids()) == count


@then(parsers.cfparse("the cart has {count:d} discounts applied"))
def cart_has_discounts(cart_service, cart, count):
    assert len(_reload(cart_service, cart).discount_ids()) == count


@then("the cart action is rejected")
def cart_action_rejected(error):
    assert error["exc"] is not None, "Expected the action to be rejected but it succeeded"
    assert isinstance(error["exc"], (InvalidOperationError, ValidationError))
