"""Shipping methods on a cart.

A cart holds at most one shipping method per shipping profile. An item is
fulfillable when some method on the cart serves its profile; a method
without a profile serves every item.
"""

import json

import structlog
from protean.exceptions import InvalidOperationError, ObjectNotFoundError
from protean.utils.globals import current_domain

from checkout.cart.cart import Cart, ShippingMethod
from checkout.shipping.option import CustomShippingOption, ShippingOption
from checkout.totals.calculator import TotalsCalculator
from checkout.utils.transaction import run_transactionally

logger = structlog.get_logger(__name__)


class ShippingMethodManager:
    def __init__(self, totals: TotalsCalculator | None = None):
        self.totals = totals or TotalsCalculator()

    def validate_line_item_shipping_(self, methods, item) -> bool:
        return any(method.serves(item) for method in methods)

    def update_item_shipping(self, cart) -> None:
        for item in cart.items:
            has_shipping = self.validate_line_item_shipping_(cart.shipping_methods, item)
            if item.has_shipping != has_shipping:
                item.has_shipping = has_shipping

    def add_shipping_method(self, cart, option_id, data: dict | None = None, free_shipping: bool = False):
        custom_options = current_domain.repository_for(CustomShippingOption).for_cart(cart.id)
        custom_price = None
        if custom_options:
            match = next((c for c in custom_options if str(c.shipping_option_id) == str(option_id)), None)
            if match is None:
                raise ObjectNotFoundError({"_entity": "Wrong shipping option"})
            custom_price = match.price

        option = current_domain.repository_for(ShippingOption).get(option_id)
        if str(option.region_id) != str(cart.region_id):
            raise InvalidOperationError(f"The shipping option {option.name} is not available in the cart's region")

        unmet = option.unmet_requirement(self.totals.subtotal(cart))
        if unmet:
            raise InvalidOperationError(unmet)

        for existing in list(cart.shipping_methods):
            if str(existing.profile_id or "") == str(option.profile_id or ""):
                cart.remove_shipping_method(existing)

        price = option.amount if custom_price is None else custom_price
        method = ShippingMethod(
            shipping_option_id=option.id,
            name=option.name,
            price=0 if free_shipping else price,
            original_price=price,
            profile_id=option.profile_id,
            provider_id=option.provider_id,
            is_custom=custom_price is not None,
            data=json.dumps({**option.data_dict(), **(data or {})}),
        )
        cart.add_shipping_methods(method)
        self.update_item_shipping(cart)

        logger.info(
            "Shipping method added",
            cart_id=str(cart.id),
            shipping_option_id=str(option.id),
            price=method.price,
        )
        return method

    def remove_shipping_method(self, cart, method_id) -> None:
        method = cart.find_shipping_method(method_id)
        if method is None:
            raise ObjectNotFoundError({"_entity": f"Shipping method {method_id} was not found in cart {cart.id}"})
        cart.remove_shipping_method(method)
        self.update_item_shipping(cart)

    def prune_shipping_methods(self, cart) -> None:
        """Drop profile-restricted methods that no longer serve any item."""
        for method in list(cart.shipping_methods):
            if method.profile_id and not any(method.serves(item) for item in cart.items):
                cart.remove_shipping_method(method)
        self.update_item_shipping(cart)

    def adjust_free_shipping(self, cart, free_shipping: bool) -> None:
        """Zero every method's price, or restore the price it was added with."""
        for method in cart.shipping_methods:
            price = 0 if free_shipping else method.original_price or 0
            if method.price != price:
                method.price = price

    def create_custom_shipping_options(self, cart_id, options: list[dict]) -> list[CustomShippingOption]:
        def work(uow):
            cart = current_domain.repository_for(Cart).get(cart_id)
            cart.ensure_active()
            option_repo = current_domain.repository_for(ShippingOption)
            custom_repo = current_domain.repository_for(CustomShippingOption)

            created = []
            for entry in options:
                option = option_repo.get(entry["shipping_option_id"])
                if str(option.region_id) != str(cart.region_id):
                    raise InvalidOperationError(
                        f"The shipping option {option.name} is not available in the cart's region"
                    )
                custom = CustomShippingOption(
                    shipping_option_id=option.id,
                    cart_id=cart.id,
                    price=entry["price"],
                    metadata=json.dumps(entry.get("metadata") or {}),
                )
                custom_repo.add(custom)
                created.append(custom)

            logger.info("Custom shipping options created", cart_id=str(cart_id), count=len(created))
            return created

        return run_transactionally(work)
