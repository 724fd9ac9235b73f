"""Default price selection: lowest applicable money amount.

A money amount applies when it is scoped to the cart's region, or carries
the cart's currency without a region scope, and its quantity range covers
the requested quantity. Region-scoped prices win over plain currency prices.
"""

import structlog
from protean.exceptions import ValidationError
from protean.utils.globals import current_domain

from checkout.catalog.product import MoneyAmount
from checkout.pricing.port import PriceSelectionStrategy, PricingContext

logger = structlog.get_logger(__name__)


class DefaultPriceSelectionStrategy(PriceSelectionStrategy):
    def calculate_variant_price(self, variant_id: str, context: PricingContext) -> int:
        prices = current_domain.repository_for(MoneyAmount).for_variant(variant_id)
        applicable = [p for p in prices if p.covers_quantity(context.quantity)]

        region_prices = [p for p in applicable if p.region_id and str(p.region_id) == str(context.region_id)]
        currency_prices = [
            p for p in applicable if not p.region_id and p.currency_code == context.currency_code.lower()
        ]

        candidates = region_prices or currency_prices
        if not candidates:
            raise ValidationError(
                {"variant_id": [f"Variant {variant_id} has no price for region {context.region_id}"]}
            )

        amount = min(p.amount for p in candidates)
        logger.debug(
            "Selected variant price",
            variant_id=str(variant_id),
            region_id=str(context.region_id),
            quantity=context.quantity,
            amount=amount,
        )
        return amount
