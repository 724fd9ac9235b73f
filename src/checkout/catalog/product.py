"""Catalog records the cart engine reads: products, variants and prices.

Products carry the associations that gate a line item (sales channels,
shipping profile) and the attributes discount conditions match on
(collection, type, tags). Variants hold inventory. Prices are stored per
variant as ``MoneyAmount`` rows keyed by currency or region, optionally
bounded by a quantity range.
"""

import json

from protean.exceptions import ValidationError
from protean.fields import Boolean, Identifier, Integer, String, Text

from checkout.domain import checkout


@checkout.aggregate
class Product:
    title = String(required=True, max_length=255)
    profile_id = Identifier()  # Shipping profile
    collection_id = Identifier()
    type_id = Identifier()
    tags = Text()  # JSON array of tag ids
    sales_channels = Text()  # JSON array of sales channel ids
    discountable = Boolean(default=True)
    is_giftcard = Boolean(default=False)

    @classmethod
    def create(
        cls,
        title,
        profile_id=None,
        collection_id=None,
        type_id=None,
        tags=None,
        sales_channels=None,
        discountable=True,
        is_giftcard=False,
    ):
        return cls(
            title=title,
            profile_id=profile_id,
            collection_id=collection_id,
            type_id=type_id,
            tags=json.dumps(list(tags or [])),
            sales_channels=json.dumps(list(sales_channels or [])),
            discountable=discountable,
            is_giftcard=is_giftcard,
        )

    def tag_ids(self) -> list[str]:
        return json.loads(self.tags) if self.tags else []

    def sales_channel_ids(self) -> list[str]:
        return json.loads(self.sales_channels) if self.sales_channels else []


@checkout.aggregate
class ProductVariant:
    product_id = Identifier(required=True)
    title = String(required=True, max_length=255)
    sku = String(max_length=100)
    inventory_quantity = Integer(default=0)
    manage_inventory = Boolean(default=True)
    allow_backorder = Boolean(default=False)

    def has_inventory_for(self, quantity: int) -> bool:
        if not self.manage_inventory or self.allow_backorder:
            return True
        return (self.inventory_quantity or 0) >= quantity


@checkout.aggregate
class MoneyAmount:
    """A variant price in one currency, optionally scoped to a region."""

    variant_id = Identifier(required=True)
    currency_code = String(required=True, max_length=3)
    amount = Integer(required=True, min_value=0)
    region_id = Identifier()
    min_quantity = Integer(min_value=1)
    max_quantity = Integer(min_value=1)

    @classmethod
    def create(cls, variant_id, currency_code, amount, region_id=None, min_quantity=None, max_quantity=None):
        if min_quantity and max_quantity and min_quantity > max_quantity:
            raise ValidationError({"quantity": ["min_quantity cannot exceed max_quantity"]})
        return cls(
            variant_id=variant_id,
            currency_code=currency_code.lower(),
            amount=amount,
            region_id=region_id,
            min_quantity=min_quantity,
            max_quantity=max_quantity,
        )

    def covers_quantity(self, quantity: int) -> bool:
        if self.min_quantity and quantity < self.min_quantity:
            return False
        if self.max_quantity and quantity > self.max_quantity:
            return False
        return True


@checkout.repository(part_of=MoneyAmount)
class MoneyAmountRepository:
    def for_variant(self, variant_id) -> list[MoneyAmount]:
        return self._dao.query.filter(variant_id=str(variant_id)).all().items
