"""Price selection port.

The cart engine never reads prices directly; it asks the configured strategy
for a variant's unit price in the cart's pricing context.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class PricingContext:
    region_id: str
    currency_code: str
    quantity: int = 1
    customer_id: str | None = None


class PriceSelectionStrategy(ABC):
    @abstractmethod
    def calculate_variant_price(self, variant_id: str, context: PricingContext) -> int:
        """Return the unit price of ``variant_id`` in ``context``."""
        ...
