"""Tax provider port.

Providers turn a cart's items and shipping methods into tax line
descriptions; the cart persists them as ``TaxLine`` entities.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class TaxLineData:
    rate: float
    name: str
    code: str | None = None
    item_id: str | None = None
    shipping_method_id: str | None = None


class TaxProvider(ABC):
    @abstractmethod
    def get_tax_lines(self, items, shipping_methods, region) -> list[TaxLineData]:
        """Return tax lines for ``items`` and ``shipping_methods`` in ``region``."""
        ...
