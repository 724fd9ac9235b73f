"""Cart operations.

Every public mutation loads the cart inside its own retryable unit of work,
applies the change, brings the derived state (item shipping flags, discount
adjustments, free shipping, tax lines, payment sessions) back in line and
persists the cart once. Completed carts reject every mutation.

Methods with a trailing underscore (``set_region_``, ``adjust_free_shipping_``)
work on a cart that is already loaded and leave persisting it to the caller.
"""

from __future__ import annotations

import structlog
from protean.exceptions import InvalidOperationError, ObjectNotFoundError, ValidationError
from protean.utils.globals import current_domain

from checkout.address.address import Address
from checkout.cart.cart import Cart, LineItem
from checkout.catalog.service import ProductVariantService
from checkout.config import CheckoutSettings, get_settings
from checkout.customer.service import CustomerService
from checkout.discount.conditions import DiscountConditionService
from checkout.discount.discount import Discount
from checkout.discount.engine import DiscountEngine
from checkout.giftcard.gift_card import GiftCard
from checkout.payment.gateway import PaymentProviderRegistry
from checkout.payment.orchestrator import PaymentOrchestrator
from checkout.pricing.default_strategy import DefaultPriceSelectionStrategy
from checkout.pricing.port import PriceSelectionStrategy, PricingContext
from checkout.region.service import RegionService
from checkout.shipping.manager import ShippingMethodManager
from checkout.tax.port import TaxProvider
from checkout.tax.system_provider import SystemTaxProvider
from checkout.totals.calculator import TotalsCalculator, TotalsConfig
from checkout.utils.transaction import run_transactionally

logger = structlog.get_logger(__name__)


class CartService:
    def __init__(
        self,
        payment_registry: PaymentProviderRegistry | None = None,
        *,
        settings: CheckoutSettings | None = None,
        price_strategy: PriceSelectionStrategy | None = None,
        tax_provider: TaxProvider | None = None,
        regions: RegionService | None = None,
        products: ProductVariantService | None = None,
        customers: CustomerService | None = None,
    ):
        self.settings = settings or get_settings()
        self.regions = regions or RegionService()
        self.products = products or ProductVariantService()
        self.customers = customers or CustomerService()
        self.price_strategy = price_strategy or DefaultPriceSelectionStrategy()
        self.tax_provider = tax_provider or SystemTaxProvider()

        self.totals = TotalsCalculator(rounding_policy=self.settings.rounding_policy)
        self.discounts = DiscountEngine(
            conditions=DiscountConditionService(self.customers),
            products=self.products,
            rounding_policy=self.settings.rounding_policy,
        )
        self.shipping = ShippingMethodManager(self.totals)
        self.payments = PaymentOrchestrator(
            payment_registry or PaymentProviderRegistry(),
            totals=self.totals,
            regions=self.regions,
            customers=self.customers,
            stamp_authorization=self.settings.stamp_payment_authorization,
            allow_partial_amounts=self.settings.partial_payment_sessions,
        )

    # -------------------------------------------------------------------
    # Loading & saving
    # -------------------------------------------------------------------
    def _repo(self):
        return current_domain.repository_for(Cart)

    def _load_active(self, cart_id) -> Cart:
        cart = self._repo().get(cart_id)
        cart.ensure_active()
        return cart

    def _save(self, cart) -> Cart:
        cart.mark_updated()
        self._repo().add(cart)
        return cart

    def _mutate(self, cart_id, change) -> Cart:
        """Run ``change(cart)`` on the active cart and persist the result."""

        def work(uow):
            cart = self._load_active(cart_id)
            change(cart)
            return self._save(cart)

        return run_transactionally(work)

    def _mutate_loaded(self, cart, change) -> Cart:
        """Like :meth:`_mutate`, for a cart the caller has already loaded.

        A stale in-memory cart cannot be reloaded, so a version conflict is
        raised instead of retried.
        """

        def work(uow):
            cart.ensure_active()
            change(cart)
            return self._save(cart)

        return run_transactionally(work, max_attempts=1)

    # -------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------
    def retrieve(self, cart_id) -> Cart:
        return self._repo().get(cart_id)

    def retrieve_with_totals(self, cart_id, totals_config: TotalsConfig | None = None) -> dict:
        return self.decorate_totals(self.retrieve(cart_id), totals_config)

    def list(self, **filters) -> list[Cart]:
        return self._repo().find_by(**filters)

    def decorate_totals(self, cart, totals_config: TotalsConfig | None = None) -> dict:
        """Return the cart's data together with the requested totals."""
        totals = self.totals.calculate(cart, totals_config)
        return {**cart.to_dict(), **totals.as_dict()}

    # -------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------
    def create(self, data: dict) -> Cart:
        if not data.get("region_id"):
            raise ValidationError({"region_id": ["A region is required to create a cart"]})

        def work(uow):
            region = self.regions.retrieve(data["region_id"])

            sales_channel_id = data.get("sales_channel_id")
            if not sales_channel_id and self.settings.validate_sales_channels:
                sales_channel_id = self.settings.default_sales_channel_id

            customer_id, email = data.get("customer_id"), data.get("email")
            if customer_id:
                customer = self.customers.retrieve(customer_id)
                email = email or customer.email
            elif email:
                customer_id = self.customers.retrieve_or_create_guest(email).id

            cart = Cart.create(
                region_id=region.id,
                email=email,
                customer_id=customer_id,
                sales_channel_id=sales_channel_id,
                context=data.get("context"),
                metadata=data.get("metadata"),
            )

            shipping_address = data.get("shipping_address") or data.get("shipping_address_id")
            if shipping_address:
                address = self._resolve_address(shipping_address)
                if not region.has_country(address.country_code):
                    raise InvalidOperationError("Shipping country must be in the cart region")
                cart.shipping_address_id = address.id
            elif len(region.country_codes()) == 1:
                self._assign_shipping_country(cart, region.country_codes()[0])

            billing_address = data.get("billing_address") or data.get("billing_address_id")
            if billing_address:
                cart.billing_address_id = self._resolve_address(billing_address).id

            for item in data.get("items") or []:
                self._add_line_item(cart, region, item, self.settings.validate_sales_channels)
            if cart.items:
                self._refresh(cart, region)

            self._repo().add(cart)
            logger.info("Cart created", cart_id=str(cart.id), region_id=str(region.id), items=len(cart.items))
            return cart

        return run_transactionally(work)

    def delete(self, cart_id):
        def work(uow):
            cart = self._repo().get(cart_id)
            if cart.is_completed():
                raise InvalidOperationError("Completed carts cannot be deleted")
            if cart.payment_authorized_at:
                raise InvalidOperationError("Can't delete a cart with an authorized payment")

            for session in list(cart.payment_sessions):
                self.payments.delete_session(session, cart)
            self._repo().remove(cart)
            logger.info("Cart deleted", cart_id=str(cart_id))
            return cart_id

        return run_transactionally(work)

    def complete(self, cart_id) -> Cart:
        """Close the cart once its payment is authorized (or nothing is owed)."""

        def work(uow):
            cart = self._load_active(cart_id)
            gift_cards = self.totals.load_gift_cards(cart)
            totals = self.totals.calculate(
                cart, TotalsConfig(fields=("subtotal", "discount_total", "total")), gift_cards
            )
            if totals.total > 0 and not cart.payment_authorized_at:
                raise InvalidOperationError("Cart payment has not been authorized")

            for discount, _ in self.discounts.applied_discounts(cart):
                discount.record_usage()
                current_domain.repository_for(Discount).add(discount)

            self._redeem_gift_cards(gift_cards, totals.subtotal - totals.discount_total)

            cart.complete(cart.payment_id)
            self._repo().add(cart)
            logger.info("Cart completed", cart_id=str(cart.id), payment_id=str(cart.payment_id))
            return cart

        return run_transactionally(work)

    def _redeem_gift_cards(self, gift_cards, remaining: int) -> None:
        repo = current_domain.repository_for(GiftCard)
        for card in gift_cards:
            if remaining <= 0:
                break
            used = min(card.balance, remaining)
            card.balance -= used
            remaining -= used
            repo.add(card)

    # -------------------------------------------------------------------
    # Line items
    # -------------------------------------------------------------------
    def add_line_item(self, cart_id, item: dict, validate_sales_channels: bool = True) -> Cart:
        def change(cart):
            region = self.regions.retrieve(cart.region_id)
            self._add_line_item(cart, region, item, validate_sales_channels and self.settings.validate_sales_channels)
            self._refresh(cart, region)

        return self._mutate(cart_id, change)

    def _add_line_item(self, cart, region, data: dict, validate_sales_channels: bool) -> LineItem:
        variant = self.products.retrieve_variant(data["variant_id"])
        product = self.products.retrieve_product(variant.product_id)

        if validate_sales_channels and cart.sales_channel_id:
            if not self.products.is_in_sales_channel(variant.id, cart.sales_channel_id):
                raise ValidationError(
                    {
                        "variant_id": [
                            f"The product {product.title} must belong to the sales channel "
                            "on which the cart has been created"
                        ]
                    }
                )

        quantity = data.get("quantity", 1)
        if quantity < 1:
            raise ValidationError({"quantity": ["Quantity must be at least 1"]})

        metadata = data.get("metadata") or {}
        should_merge = data.get("should_merge", True)
        existing = cart.find_mergeable_item(variant.id, metadata) if should_merge else None
        total_quantity = quantity + (existing.quantity if existing else 0)

        if not variant.has_inventory_for(total_quantity):
            raise InvalidOperationError(f"Variant with id: {variant.id} does not have the required inventory")

        unit_price = self._price_for(cart, region, variant.id, total_quantity)

        if existing:
            existing.quantity = total_quantity
            existing.unit_price = unit_price
            return existing

        line_item = LineItem(
            variant_id=variant.id,
            product_id=product.id,
            title=data.get("title") or product.title,
            quantity=quantity,
            unit_price=unit_price,
            should_merge=should_merge,
            allow_discounts=product.discountable,
            has_shipping=False,
            shipping_profile_id=product.profile_id,
        )
        line_item.merge_metadata(metadata)
        cart.add_items(line_item)
        return line_item

    def _price_for(self, cart, region, variant_id, quantity: int) -> int:
        return self.price_strategy.calculate_variant_price(
            variant_id,
            PricingContext(
                region_id=str(region.id),
                currency_code=region.currency_code,
                quantity=quantity,
                customer_id=str(cart.customer_id) if cart.customer_id else None,
            ),
        )

    def update_line_item(self, cart_id, line_item_id, patch: dict) -> Cart:
        def change(cart):
            item = cart.find_item(line_item_id)
            if item is None:
                raise ObjectNotFoundError({"_entity": f"Line item {line_item_id} was not found in cart {cart_id}"})

            region = self.regions.retrieve(cart.region_id)
            quantity = patch.get("quantity")
            if quantity is not None and quantity != item.quantity:
                if quantity < 1:
                    raise ValidationError({"quantity": ["Quantity must be at least 1"]})
                if not self.products.confirm_inventory(item.variant_id, quantity):
                    raise InvalidOperationError(
                        f"Variant with id: {item.variant_id} does not have the required inventory"
                    )
                item.unit_price = self._price_for(cart, region, item.variant_id, quantity)
                item.quantity = quantity

            if patch.get("metadata"):
                item.merge_metadata(patch["metadata"])

            self._refresh(cart, region)

        return self._mutate(cart_id, change)

    def remove_line_item(self, cart_id, line_item_id) -> Cart:
        """Remove a line item; removing an item the cart does not hold changes nothing."""

        def work(uow):
            cart = self._load_active(cart_id)
            item = cart.find_item(line_item_id)
            if item is None:
                return cart

            cart.remove_line_item(item)
            self.shipping.prune_shipping_methods(cart)
            self._refresh(cart, self.regions.retrieve(cart.region_id))
            return self._save(cart)

        return run_transactionally(work)

    # -------------------------------------------------------------------
    # Derived state
    # -------------------------------------------------------------------
    def _refresh(self, cart, region) -> None:
        self.shipping.update_item_shipping(cart)
        self._refresh_adjustments(cart)
        self.adjust_free_shipping_(cart)
        if region.automatic_taxes:
            self._replace_tax_lines(cart, region)
        if cart.payment_sessions:
            self.payments.set_payment_sessions(cart)

    def _refresh_adjustments(self, cart) -> None:
        adjustments = []
        for discount, rule in self.discounts.applied_discounts(cart):
            adjustments.extend(self.discounts.calculate_adjustments(cart.items, discount, rule))
        cart.replace_adjustments(adjustments)

    def adjust_free_shipping_(self, cart) -> None:
        self.shipping.adjust_free_shipping(cart, self.discounts.has_free_shipping(cart))

    def _replace_tax_lines(self, cart, region) -> None:
        cart.replace_tax_lines(self.tax_provider.get_tax_lines(cart.items, cart.shipping_methods, region))

    def create_tax_lines(self, cart_or_id) -> Cart:
        """Replace the cart's tax lines with the provider's current ones."""

        def change(cart):
            self._replace_tax_lines(cart, self.regions.retrieve(cart.region_id))

        if isinstance(cart_or_id, Cart):
            return self._mutate_loaded(cart_or_id, change)
        return self._mutate(cart_or_id, change)

    def delete_tax_lines(self, cart_id) -> Cart:
        return self._mutate(cart_id, lambda cart: cart.clear_tax_lines())

    # -------------------------------------------------------------------
    # Addresses & region
    # -------------------------------------------------------------------
    def _resolve_address(self, address_or_id) -> Address:
        repo = current_domain.repository_for(Address)
        if not isinstance(address_or_id, dict):
            return repo.get(address_or_id)

        if address_or_id.get("id"):
            address = repo.get(address_or_id["id"])
            address.apply(address_or_id)
        else:
            address = Address.from_payload(address_or_id)
        repo.add(address)
        return address

    def _assign_shipping_country(self, cart, country_code: str) -> None:
        repo = current_domain.repository_for(Address)
        if cart.shipping_address_id:
            address = repo.get(cart.shipping_address_id)
            address.country_code = country_code.lower()
        else:
            address = Address(country_code=country_code.lower())
            cart.shipping_address_id = address.id
        repo.add(address)

    def update_billing_address(self, cart_id, address_or_id) -> Cart:
        def change(cart):
            cart.billing_address_id = self._resolve_address(address_or_id).id

        return self._mutate(cart_id, change)

    def update_shipping_address(self, cart_id, address_or_id) -> Cart:
        def change(cart):
            self._update_shipping_address(cart, address_or_id)
            self._refresh(cart, self.regions.retrieve(cart.region_id))

        return self._mutate(cart_id, change)

    def _update_shipping_address(self, cart, address_or_id) -> None:
        address = self._resolve_address(address_or_id)
        cart.shipping_address_id = address.id

        region = self.regions.retrieve(cart.region_id)
        if address.country_code and not region.has_country(address.country_code):
            new_region = self.regions.retrieve_by_country_code(address.country_code)
            self.set_region_(cart, new_region.id, address.country_code)

    def set_region_(self, cart, region_id, country_code: str | None = None) -> None:
        """Move ``cart`` to another region, re-pricing its items.

        Tax lines are cleared; the caller's refresh computes them for the new
        region before the cart is persisted.
        """
        cart.ensure_active()
        if cart.payment_authorized_at:
            raise InvalidOperationError("Cannot change the region of a cart with an authorized payment")
        if cart.shipping_methods:
            raise InvalidOperationError("Cannot change the region of a cart with shipping methods")
        if cart.discount_ids():
            raise InvalidOperationError("Cannot change the region of a cart with discounts applied")

        region = self.regions.retrieve(region_id)
        if country_code and not region.has_country(country_code):
            raise ValidationError({"country_code": [f"Country {country_code} is not available in the cart's region"]})

        prices = {}
        for item in cart.items:
            try:
                prices[str(item.id)] = self._price_for(cart, region, item.variant_id, item.quantity)
            except ValidationError:
                raise InvalidOperationError(f"The product {item.title} must be available in the region") from None

        cart.region_id = region.id
        for item in cart.items:
            item.unit_price = prices[str(item.id)]

        cart.set_gift_cards([])
        for session in list(cart.payment_sessions):
            self.payments.delete_session(session, cart)

        if country_code:
            self._assign_shipping_country(cart, country_code)
        elif len(region.country_codes()) == 1:
            self._assign_shipping_country(cart, region.country_codes()[0])
        elif cart.shipping_address_id:
            address = current_domain.repository_for(Address).get(cart.shipping_address_id)
            if not region.has_country(address.country_code):
                cart.shipping_address_id = None

        self._refresh_adjustments(cart)
        cart.clear_tax_lines()

        logger.info("Cart region changed", cart_id=str(cart.id), region_id=str(region.id))

    # -------------------------------------------------------------------
    # General update
    # -------------------------------------------------------------------
    def update(self, cart_id, patch: dict) -> Cart:
        def change(cart):
            if patch.get("customer_id"):
                customer = self.customers.retrieve(patch["customer_id"])
                cart.assign_customer(customer.id, customer.email)
            elif patch.get("email"):
                customer = self.customers.retrieve_or_create_guest(patch["email"])
                cart.assign_customer(customer.id, patch["email"])

            if patch.get("sales_channel_id") and str(patch["sales_channel_id"]) != str(cart.sales_channel_id):
                self._change_sales_channel(cart, patch["sales_channel_id"])

            billing_address = patch.get("billing_address") or patch.get("billing_address_id")
            if billing_address:
                cart.billing_address_id = self._resolve_address(billing_address).id

            shipping_address = patch.get("shipping_address") or patch.get("shipping_address_id")
            if shipping_address:
                self._update_shipping_address(cart, shipping_address)

            if patch.get("region_id") and str(patch["region_id"]) != str(cart.region_id):
                self.set_region_(cart, patch["region_id"], patch.get("country_code"))

            if "discounts" in patch:
                cart.set_discounts([])
                for discount in patch["discounts"] or []:
                    self.discounts.apply_discount(cart, discount["code"])

            if "gift_cards" in patch:
                cart.set_gift_cards([])
                for gift_card in patch["gift_cards"] or []:
                    self._apply_gift_card(cart, gift_card["code"])

            if patch.get("context"):
                cart.merge_context(patch["context"])

            for key, value in (patch.get("metadata") or {}).items():
                cart.set_metadata_key(key, value)

            self._refresh(cart, self.regions.retrieve(cart.region_id))

        return self._mutate(cart_id, change)

    def _change_sales_channel(self, cart, sales_channel_id) -> None:
        """Switch channels, dropping items whose product is not sold there."""
        cart.sales_channel_id = sales_channel_id
        if not self.settings.validate_sales_channels:
            return
        for item in list(cart.items):
            if not self.products.is_in_sales_channel(item.variant_id, sales_channel_id):
                cart.remove_line_item(item)
        self.shipping.prune_shipping_methods(cart)

    def set_metadata(self, cart_id, key, value) -> Cart:
        return self._mutate(cart_id, lambda cart: cart.set_metadata_key(key, value))

    # -------------------------------------------------------------------
    # Discounts & gift cards
    # -------------------------------------------------------------------
    def apply_discount(self, cart_or_id, code: str) -> Cart:
        """Apply ``code`` to a loaded cart, or to the cart with that id."""

        def change(cart):
            self.discounts.apply_discount(cart, code)
            self._refresh(cart, self.regions.retrieve(cart.region_id))

        if isinstance(cart_or_id, Cart):
            return self._mutate_loaded(cart_or_id, change)
        return self._mutate(cart_or_id, change)

    def remove_discount(self, cart_id, code: str) -> Cart:
        def change(cart):
            self.discounts.remove_discount(cart, code)
            self._refresh(cart, self.regions.retrieve(cart.region_id))

        return self._mutate(cart_id, change)

    def _apply_gift_card(self, cart, code: str) -> GiftCard:
        card = current_domain.repository_for(GiftCard).get_by_code(code)
        if card is None:
            raise ObjectNotFoundError({"_entity": f"Gift card with code {code} was not found"})
        if card.is_disabled:
            raise InvalidOperationError("The gift card is disabled")
        if card.is_expired():
            raise InvalidOperationError("The gift card has expired")
        if str(card.region_id) != str(cart.region_id):
            raise InvalidOperationError("The gift card cannot be used in the current region")

        card_ids = cart.gift_card_ids()
        if str(card.id) not in card_ids:
            cart.set_gift_cards(card_ids + [str(card.id)])
        return card

    def apply_gift_card(self, cart_id, code: str) -> Cart:
        def change(cart):
            self._apply_gift_card(cart, code)
            self._refresh(cart, self.regions.retrieve(cart.region_id))

        return self._mutate(cart_id, change)

    def remove_gift_card(self, cart_id, code: str) -> Cart:
        def change(cart):
            card = current_domain.repository_for(GiftCard).get_by_code(code)
            if card is not None:
                cart.set_gift_cards([g for g in cart.gift_card_ids() if g != str(card.id)])
            self._refresh(cart, self.regions.retrieve(cart.region_id))

        return self._mutate(cart_id, change)

    # -------------------------------------------------------------------
    # Shipping
    # -------------------------------------------------------------------
    def add_shipping_method(self, cart_id, option_id, data: dict | None = None) -> Cart:
        def change(cart):
            self.shipping.add_shipping_method(
                cart, option_id, data, free_shipping=self.discounts.has_free_shipping(cart)
            )
            self._refresh(cart, self.regions.retrieve(cart.region_id))

        return self._mutate(cart_id, change)

    def remove_shipping_method(self, cart_id, method_id) -> Cart:
        def change(cart):
            self.shipping.remove_shipping_method(cart, method_id)
            self._refresh(cart, self.regions.retrieve(cart.region_id))

        return self._mutate(cart_id, change)

    def create_custom_shipping_options(self, cart_id, options: list[dict]):
        return self.shipping.create_custom_shipping_options(cart_id, options)

    # -------------------------------------------------------------------
    # Payment sessions
    # -------------------------------------------------------------------
    def set_payment_sessions(self, cart_id) -> Cart:
        return self._mutate(cart_id, self.payments.set_payment_sessions)

    def set_payment_session(self, cart_id, provider_id: str) -> Cart:
        def change(cart):
            region = self.regions.retrieve(cart.region_id)
            if provider_id not in region.provider_ids():
                raise InvalidOperationError("The payment method is not available in this region")
            if cart.find_payment_session(provider_id) is None:
                self.payments.create_session(provider_id, cart)
            cart.select_payment_session(provider_id)

        return self._mutate(cart_id, change)

    def _session_for(self, cart, provider_id):
        session = cart.find_payment_session(provider_id)
        if session is None:
            raise ObjectNotFoundError({"_entity": f"Payment session for provider {provider_id} was not found"})
        return session

    def refresh_payment_session(self, cart_id, provider_id: str) -> Cart:
        return self._mutate(
            cart_id, lambda cart: self.payments.refresh_session(self._session_for(cart, provider_id), cart)
        )

    def delete_payment_session(self, cart_id, provider_id: str) -> Cart:
        def change(cart):
            session = cart.find_payment_session(provider_id)
            if session is not None:
                self.payments.delete_session(session, cart)

        return self._mutate(cart_id, change)

    def update_payment_session(self, cart_id, data: dict) -> Cart:
        def change(cart):
            session = cart.selected_payment_session()
            if session is None:
                raise InvalidOperationError("A payment method has not been selected")
            self.payments.update_session_data(session, data)

        return self._mutate(cart_id, change)

    def authorize_payment(self, cart_id, context: dict | None = None) -> Cart:
        """Authorize the selected session; a cart owing nothing is authorized outright."""

        def change(cart):
            total = self.totals.total(cart)
            if total <= 0:
                cart.record_payment_authorization(None)
                return

            session = cart.selected_payment_session()
            if session is None:
                raise InvalidOperationError("You cannot complete a Cart without a payment session")

            session = self.payments.authorize_payment(session, context or {}, cart)
            if session is not None and session.is_authorized():
                region = self.regions.retrieve(cart.region_id)
                payment = self.payments.create_payment(cart, session, total, region.currency_code)
                cart.record_payment_authorization(payment.id, session.payment_authorized_at)
                logger.info("Cart payment authorized", cart_id=str(cart.id), payment_id=str(payment.id))

        return self._mutate(cart_id, change)
