"""Checkout bounded context: cart mutation and checkout preparation.

Keeps a cart's line items, addresses, shipping methods, discounts, gift cards
and payment sessions consistent while totals are recomputed on every change.
Regions, products, customers and shipping options live here as well so that
every cart mutation can run inside a single unit of work.
"""

import structlog
from protean.domain import Domain

checkout = Domain(name="checkout")

logger = structlog.get_logger(__name__)
