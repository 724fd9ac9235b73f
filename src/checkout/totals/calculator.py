"""Cart totals.

Totals are never stored; they are derived from the cart's lines, the
persisted adjustments and tax lines, and the balances of applied gift cards:

    subtotal        = Σ unit_price × quantity
    discount_total  = Σ item adjustments
    shipping_total  = Σ shipping method prices (free shipping zeroes them)
    tax_total       = Σ rate × (line total − item discount) + Σ rate × shipping price
    gift_card_total = min(Σ balances, subtotal − discount_total)
    total           = subtotal − discount_total + shipping_total + tax_total − gift_card_total, floored at 0
"""

from dataclasses import dataclass, fields

from protean.utils.globals import current_domain

from checkout.giftcard.gift_card import GiftCard
from checkout.shared.money import percentage_of

ALL_TOTALS = (
    "subtotal",
    "discount_total",
    "shipping_total",
    "item_tax_total",
    "shipping_tax_total",
    "tax_total",
    "gift_card_total",
    "total",
)


@dataclass(frozen=True)
class TotalsConfig:
    """Which totals to compute and which relations to load for them."""

    fields: tuple[str, ...] = ALL_TOTALS
    relations: tuple[str, ...] = ("gift_cards",)


@dataclass(frozen=True)
class CartTotals:
    subtotal: int | None = None
    discount_total: int | None = None
    shipping_total: int | None = None
    item_tax_total: int | None = None
    shipping_tax_total: int | None = None
    tax_total: int | None = None
    gift_card_total: int | None = None
    total: int | None = None

    def as_dict(self, only=None) -> dict:
        names = only or [f.name for f in fields(self)]
        return {name: getattr(self, name) for name in names if getattr(self, name) is not None}


class TotalsCalculator:
    def __init__(self, rounding_policy: str = "half_up"):
        self.rounding_policy = rounding_policy

    def load_gift_cards(self, cart) -> list[GiftCard]:
        repo = current_domain.repository_for(GiftCard)
        return [repo.get(card_id) for card_id in cart.gift_card_ids()]

    def calculate(self, cart, config: TotalsConfig | None = None, gift_cards=None) -> CartTotals:
        config = config or TotalsConfig()
        if gift_cards is None:
            gift_cards = self.load_gift_cards(cart) if "gift_cards" in config.relations else []

        subtotal = self.subtotal(cart)
        discount_total = self.discount_total(cart, subtotal)
        shipping_total = self.shipping_total(cart)
        item_tax_total = self.item_tax_total(cart)
        shipping_tax_total = self.shipping_tax_total(cart)
        tax_total = item_tax_total + shipping_tax_total
        gift_card_total = self.gift_card_total(gift_cards, subtotal - discount_total)
        total = max(0, subtotal - discount_total + shipping_total + tax_total - gift_card_total)

        computed = {
            "subtotal": subtotal,
            "discount_total": discount_total,
            "shipping_total": shipping_total,
            "item_tax_total": item_tax_total,
            "shipping_tax_total": shipping_tax_total,
            "tax_total": tax_total,
            "gift_card_total": gift_card_total,
            "total": total,
        }
        return CartTotals(**{name: value for name, value in computed.items() if name in config.fields})

    def total(self, cart) -> int:
        return self.calculate(cart, TotalsConfig(fields=("total",))).total

    # -------------------------------------------------------------------
    # Components
    # -------------------------------------------------------------------
    def subtotal(self, cart) -> int:
        return sum(item.line_total() for item in cart.items)

    def item_discount(self, cart, item) -> int:
        return min(sum(a.amount for a in cart.adjustments_for(item.id)), item.line_total())

    def discount_total(self, cart, subtotal: int) -> int:
        return min(sum(self.item_discount(cart, item) for item in cart.items), subtotal)

    def shipping_total(self, cart) -> int:
        return sum(method.price or 0 for method in cart.shipping_methods)

    def item_tax_total(self, cart) -> int:
        total = 0
        for item in cart.items:
            taxable = item.line_total() - self.item_discount(cart, item)
            for line in cart.tax_lines_for_item(item.id):
                total += percentage_of(taxable, line.rate or 0, self.rounding_policy)
        return total

    def shipping_tax_total(self, cart) -> int:
        total = 0
        for method in cart.shipping_methods:
            for line in cart.tax_lines_for_shipping_method(method.id):
                total += percentage_of(method.price or 0, line.rate or 0, self.rounding_policy)
        return total

    def gift_card_total(self, gift_cards, remaining: int) -> int:
        balance = sum(card.balance or 0 for card in gift_cards)
        return max(0, min(balance, remaining))
