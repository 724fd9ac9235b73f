"""Cart aggregate with its line items, shipping methods and payment sessions.

The cart is a standard CQRS aggregate. It owns its line items, the shipping
methods chosen for them, the payment sessions opened with providers, and the
derived tax lines and discount adjustments (both keyed by the line item they
belong to). Discounts and gift cards are referenced by id.

State Machine:
    ACTIVE → COMPLETED (terminal; every mutation is rejected afterwards)
"""

import json
from datetime import UTC, datetime
from enum import Enum

from protean import atomic_change, invariant
from protean.exceptions import InvalidOperationError, ValidationError
from protean.fields import Boolean, DateTime, Float, HasMany, Identifier, Integer, String, Text

from checkout.cart.events import CartCompleted, CartCreated, CartCustomerUpdated, CartUpdated
from checkout.domain import checkout
from checkout.payment.gateway.port import PaymentSessionStatus


class CartStatus(Enum):
    ACTIVE = "active"
    COMPLETED = "completed"


def _load(value, default):
    return json.loads(value) if value else default


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------
@checkout.entity(part_of="Cart")
class LineItem:
    variant_id = Identifier(required=True)
    product_id = Identifier()
    title = String(max_length=255)
    quantity = Integer(required=True, min_value=1)
    unit_price = Integer(default=0, min_value=0)
    metadata = Text()  # JSON object
    should_merge = Boolean(default=True)
    allow_discounts = Boolean(default=True)
    has_shipping = Boolean(default=False)
    shipping_profile_id = Identifier()

    def metadata_dict(self) -> dict:
        return _load(self.metadata, {})

    def merge_metadata(self, values: dict):
        self.metadata = json.dumps({**self.metadata_dict(), **values})

    def line_total(self) -> int:
        return (self.unit_price or 0) * self.quantity


@checkout.entity(part_of="Cart")
class ShippingMethod:
    shipping_option_id = Identifier(required=True)
    name = String(max_length=100)
    price = Integer(default=0, min_value=0)
    original_price = Integer(default=0, min_value=0)
    profile_id = Identifier()
    provider_id = String(max_length=50)
    is_custom = Boolean(default=False)
    data = Text()  # JSON object

    def data_dict(self) -> dict:
        return _load(self.data, {})

    def serves(self, item) -> bool:
        return not self.profile_id or str(self.profile_id) == str(item.shipping_profile_id)


@checkout.entity(part_of="Cart")
class PaymentSession:
    provider_id = String(required=True, max_length=50)
    status = String(choices=PaymentSessionStatus, default=PaymentSessionStatus.PENDING.value)
    data = Text()  # JSON object owned by the provider
    amount = Integer(min_value=0)
    currency_code = String(max_length=3)
    is_selected = Boolean(default=False)
    payment_authorized_at = DateTime()

    def data_dict(self) -> dict:
        return _load(self.data, {})

    def set_data(self, data: dict):
        self.data = json.dumps(data or {})

    def is_authorized(self) -> bool:
        return self.status == PaymentSessionStatus.AUTHORIZED.value


@checkout.entity(part_of="Cart")
class TaxLine:
    item_id = Identifier()
    shipping_method_id = Identifier()
    rate = Float(default=0.0)
    name = String(max_length=100)
    code = String(max_length=50)


@checkout.entity(part_of="Cart")
class LineItemAdjustment:
    item_id = Identifier(required=True)
    discount_id = Identifier()
    amount = Integer(default=0, min_value=0)
    description = String(max_length=255)


# ---------------------------------------------------------------------------
# Aggregate Root
# ---------------------------------------------------------------------------
@checkout.aggregate
class Cart:
    email = String(max_length=255)
    customer_id = Identifier()
    region_id = Identifier(required=True)
    sales_channel_id = Identifier()
    billing_address_id = Identifier()
    shipping_address_id = Identifier()
    items = HasMany(LineItem)
    shipping_methods = HasMany(ShippingMethod)
    payment_sessions = HasMany(PaymentSession)
    tax_lines = HasMany(TaxLine)
    adjustments = HasMany(LineItemAdjustment)
    discounts = Text()  # JSON array of discount ids
    gift_cards = Text()  # JSON array of gift card ids
    payment_id = Identifier()
    status = String(choices=CartStatus, default=CartStatus.ACTIVE.value)
    metadata = Text()  # JSON object
    context = Text()  # JSON object
    payment_authorized_at = DateTime()
    completed_at = DateTime()
    created_at = DateTime()
    updated_at = DateTime()

    @invariant.post
    def at_most_one_selected_payment_session(self):
        if len([s for s in self.payment_sessions if s.is_selected]) > 1:
            raise ValidationError({"payment_sessions": ["Only one payment session can be selected"]})

    @invariant.post
    def completed_cart_has_completion_time(self):
        if self.status == CartStatus.COMPLETED.value and self.completed_at is None:
            raise ValidationError({"completed_at": ["A completed cart must record when it was completed"]})

    # -------------------------------------------------------------------
    # Factory
    # -------------------------------------------------------------------
    @classmethod
    def create(cls, region_id, email=None, customer_id=None, sales_channel_id=None, context=None, metadata=None):
        now = datetime.now(UTC)
        cart = cls(
            region_id=region_id,
            email=email.lower() if email else None,
            customer_id=customer_id,
            sales_channel_id=sales_channel_id,
            discounts=json.dumps([]),
            gift_cards=json.dumps([]),
            metadata=json.dumps(metadata or {}),
            context=json.dumps(context or {}),
            status=CartStatus.ACTIVE.value,
            created_at=now,
            updated_at=now,
        )
        cart.raise_(
            CartCreated(
                cart_id=str(cart.id),
                region_id=str(region_id),
                customer_id=str(customer_id) if customer_id else None,
                email=cart.email,
                sales_channel_id=str(sales_channel_id) if sales_channel_id else None,
            )
        )
        return cart

    # -------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------
    def is_completed(self) -> bool:
        return self.status == CartStatus.COMPLETED.value

    def ensure_active(self):
        if self.is_completed():
            raise InvalidOperationError(f"Cart {self.id} is completed and cannot be changed")

    def mark_updated(self):
        """Stamp ``updated_at``; ``CartUpdated`` is raised once per change set."""
        self.updated_at = datetime.now(UTC)
        if not any(isinstance(event, CartUpdated) for event in self._events):
            self.raise_(CartUpdated(cart_id=str(self.id), updated_at=self.updated_at))

    def complete(self, payment_id=None):
        self.ensure_active()
        now = datetime.now(UTC)
        with atomic_change(self):
            self.status = CartStatus.COMPLETED.value
            self.completed_at = now
            if payment_id:
                self.payment_id = payment_id
            self.updated_at = now
        self.raise_(
            CartCompleted(
                cart_id=str(self.id),
                payment_id=str(self.payment_id) if self.payment_id else None,
                completed_at=now,
            )
        )

    # -------------------------------------------------------------------
    # Customer
    # -------------------------------------------------------------------
    def assign_customer(self, customer_id, email=None):
        previous = self.customer_id
        self.customer_id = customer_id
        if email:
            self.email = email.lower()
        if str(previous) != str(customer_id):
            self.raise_(
                CartCustomerUpdated(
                    cart_id=str(self.id),
                    customer_id=str(customer_id),
                    previous_customer_id=str(previous) if previous else None,
                    email=self.email,
                )
            )

    # -------------------------------------------------------------------
    # Line items
    # -------------------------------------------------------------------
    def find_item(self, item_id):
        return next((i for i in self.items if str(i.id) == str(item_id)), None)

    def find_mergeable_item(self, variant_id, metadata: dict):
        return next(
            (
                i
                for i in self.items
                if i.should_merge and str(i.variant_id) == str(variant_id) and i.metadata_dict() == (metadata or {})
            ),
            None,
        )

    def remove_line_item(self, item):
        """Remove ``item`` together with the tax lines and adjustments keyed to it."""
        item_id = str(item.id)
        self.remove_items(item)
        stale_adjustments = [a for a in self.adjustments if str(a.item_id) == item_id]
        if stale_adjustments:
            self.remove_adjustments(stale_adjustments)
        stale_tax_lines = [t for t in self.tax_lines if t.item_id and str(t.item_id) == item_id]
        if stale_tax_lines:
            self.remove_tax_lines(stale_tax_lines)

    # -------------------------------------------------------------------
    # Derived lines
    # -------------------------------------------------------------------
    def replace_adjustments(self, adjustments):
        if self.adjustments:
            self.remove_adjustments(list(self.adjustments))
        for data in adjustments:
            self.add_adjustments(
                LineItemAdjustment(
                    item_id=data.item_id,
                    discount_id=data.discount_id,
                    amount=data.amount,
                    description=data.description,
                )
            )

    def adjustments_for(self, item_id) -> list:
        return [a for a in self.adjustments if str(a.item_id) == str(item_id)]

    def replace_tax_lines(self, tax_lines):
        self.clear_tax_lines()
        for data in tax_lines:
            self.add_tax_lines(
                TaxLine(
                    item_id=data.item_id,
                    shipping_method_id=data.shipping_method_id,
                    rate=data.rate,
                    name=data.name,
                    code=data.code,
                )
            )

    def clear_tax_lines(self):
        if self.tax_lines:
            self.remove_tax_lines(list(self.tax_lines))

    def tax_lines_for_item(self, item_id) -> list:
        return [t for t in self.tax_lines if t.item_id and str(t.item_id) == str(item_id)]

    def tax_lines_for_shipping_method(self, method_id) -> list:
        return [t for t in self.tax_lines if t.shipping_method_id and str(t.shipping_method_id) == str(method_id)]

    # -------------------------------------------------------------------
    # Shipping
    # -------------------------------------------------------------------
    def find_shipping_method(self, method_id):
        return next((m for m in self.shipping_methods if str(m.id) == str(method_id)), None)

    def remove_shipping_method(self, method):
        self.remove_shipping_methods(method)
        stale = self.tax_lines_for_shipping_method(method.id)
        if stale:
            self.remove_tax_lines(stale)

    # -------------------------------------------------------------------
    # Payment sessions
    # -------------------------------------------------------------------
    def find_payment_session(self, provider_id):
        return next((s for s in self.payment_sessions if s.provider_id == provider_id), None)

    def selected_payment_session(self):
        return next((s for s in self.payment_sessions if s.is_selected), None)

    def select_payment_session(self, provider_id):
        with atomic_change(self):
            for session in self.payment_sessions:
                session.is_selected = session.provider_id == provider_id

    def record_payment_authorization(self, payment_id, authorized_at=None):
        self.payment_id = payment_id
        self.payment_authorized_at = authorized_at or datetime.now(UTC)

    # -------------------------------------------------------------------
    # Discounts & gift cards
    # -------------------------------------------------------------------
    def discount_ids(self) -> list[str]:
        return _load(self.discounts, [])

    def set_discounts(self, discount_ids):
        self.discounts = json.dumps([str(d) for d in discount_ids])

    def gift_card_ids(self) -> list[str]:
        return _load(self.gift_cards, [])

    def set_gift_cards(self, gift_card_ids):
        self.gift_cards = json.dumps([str(g) for g in gift_card_ids])

    # -------------------------------------------------------------------
    # Metadata & context
    # -------------------------------------------------------------------
    def metadata_dict(self) -> dict:
        return _load(self.metadata, {})

    def set_metadata_key(self, key, value):
        if not isinstance(key, str) or not key.strip():
            raise ValidationError({"metadata": ["Key type is invalid. Metadata keys must be non-empty strings"]})
        if value is not None and not isinstance(value, (str, int, float, bool)):
            raise ValidationError({"metadata": ["Value type is invalid. Metadata values must be scalars"]})
        self.metadata = json.dumps({**self.metadata_dict(), key: value})

    def context_dict(self) -> dict:
        return _load(self.context, {})

    def merge_context(self, values: dict):
        self.context = json.dumps({**self.context_dict(), **values})


@checkout.repository(part_of=Cart)
class CartRepository:
    def find_by_payment_session(self, session_id) -> Cart | None:
        return next(
            (
                cart
                for cart in self._dao.query.all().items
                if any(str(s.id) == str(session_id) for s in cart.payment_sessions)
            ),
            None,
        )

    def find_by(self, **filters) -> list[Cart]:
        if not filters:
            return self._dao.query.all().items
        return self._dao.query.filter(**filters).all().items

    def remove(self, cart: Cart) -> None:
        self._dao.delete(cart)
