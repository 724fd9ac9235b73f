"""Shipping options offered per region, and per-cart negotiated prices."""

import json

from protean.fields import Identifier, Integer, String, Text

from checkout.domain import checkout


@checkout.aggregate
class ShippingOption:
    name = String(required=True, max_length=100)
    region_id = Identifier(required=True)
    profile_id = Identifier()  # Unset: serves every shipping profile
    provider_id = String(max_length=50, default="manual")
    amount = Integer(required=True, min_value=0)
    min_subtotal = Integer(min_value=0)
    max_subtotal = Integer(min_value=0)
    data = Text()  # JSON object handed to the fulfillment provider

    def data_dict(self) -> dict:
        return json.loads(self.data) if self.data else {}

    def unmet_requirement(self, subtotal: int) -> str | None:
        if self.min_subtotal is not None and subtotal < self.min_subtotal:
            return f"Cart subtotal must be at least {self.min_subtotal} for {self.name}"
        if self.max_subtotal is not None and subtotal > self.max_subtotal:
            return f"Cart subtotal must not exceed {self.max_subtotal} for {self.name}"
        return None


@checkout.aggregate
class CustomShippingOption:
    shipping_option_id = Identifier(required=True)
    cart_id = Identifier(required=True)
    price = Integer(required=True, min_value=0)
    metadata = Text()  # JSON object


@checkout.repository(part_of=CustomShippingOption)
class CustomShippingOptionRepository:
    def for_cart(self, cart_id) -> list[CustomShippingOption]:
        return self._dao.query.filter(cart_id=str(cart_id)).all().items
