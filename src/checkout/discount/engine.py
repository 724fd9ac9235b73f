"""Discount validation, slot handling and line item allocation.

A cart carries at most one free-shipping discount and at most one other
discount. Applying a discount of a kind that is already present replaces
it. Item adjustments are recomputed from scratch whenever the cart's items
or discounts change.
"""

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from decimal import Decimal

import structlog
from protean.exceptions import InvalidOperationError, ObjectNotFoundError, ValidationError
from protean.utils.globals import current_domain

from checkout.catalog.service import ProductVariantService
from checkout.discount.conditions import DiscountConditionService
from checkout.discount.discount import (
    AllocationType,
    ConditionType,
    Discount,
    DiscountRule,
    DiscountRuleType,
)
from checkout.shared.errors import DuplicateError
from checkout.shared.money import percentage_of, round_amount
from checkout.utils.transaction import run_transactionally

logger = structlog.get_logger(__name__)

PRODUCT_CONDITION_TYPES = (
    ConditionType.PRODUCTS,
    ConditionType.PRODUCT_COLLECTIONS,
    ConditionType.PRODUCT_TYPES,
    ConditionType.PRODUCT_TAGS,
)


@dataclass(frozen=True)
class AdjustmentData:
    item_id: str
    discount_id: str
    amount: int
    description: str = "discount"


class DiscountEngine:
    def __init__(
        self,
        conditions: DiscountConditionService | None = None,
        products: ProductVariantService | None = None,
        rounding_policy: str = "half_up",
    ):
        self.conditions = conditions or DiscountConditionService()
        self.products = products or ProductVariantService()
        self.rounding_policy = rounding_policy

    # -------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------
    def retrieve_by_code(self, code: str) -> Discount:
        discount = current_domain.repository_for(Discount).get_by_code(code)
        if discount is None:
            raise ObjectNotFoundError({"_entity": f"Discount with code {code} was not found"})
        return discount

    def rule_for(self, discount: Discount) -> DiscountRule:
        return current_domain.repository_for(DiscountRule).get(discount.rule_id)

    def applied_discounts(self, cart) -> list[tuple[Discount, DiscountRule]]:
        repo = current_domain.repository_for(Discount)
        pairs = []
        for discount_id in cart.discount_ids():
            discount = repo.get(discount_id)
            pairs.append((discount, self.rule_for(discount)))
        return pairs

    # -------------------------------------------------------------------
    # Validation
    # -------------------------------------------------------------------
    def validate_for_cart(self, discount: Discount, rule: DiscountRule, cart, now=None) -> None:
        now = now or datetime.now(UTC)
        code = discount.code

        if discount.is_disabled:
            raise InvalidOperationError(f"The discount code {code} is disabled")
        if not discount.has_started(now):
            raise InvalidOperationError(f"Discount {code} is not valid yet")
        if discount.has_expired(now):
            raise InvalidOperationError(f"Discount {code} is expired")
        if discount.usage_exhausted():
            raise InvalidOperationError(f"Discount {code} has been used maximum allowed times")
        if not discount.applies_to_region(cart.region_id):
            raise InvalidOperationError(f"The discount {code} is not available in current region")
        if rule.conditions_of(ConditionType.CUSTOMER_GROUPS) and not self.conditions.can_apply_for_customer(
            rule.id, cart.customer_id
        ):
            raise InvalidOperationError(f"Discount {code} is not valid for customer")

    # -------------------------------------------------------------------
    # Cart operations
    # -------------------------------------------------------------------
    def apply_discount(self, cart, code: str) -> Discount:
        """Validate ``code`` for ``cart`` and place it in its slot."""
        discount = self.retrieve_by_code(code)
        rule = self.rule_for(discount)
        self.validate_for_cart(discount, rule, cart)

        is_free_shipping = rule.type == DiscountRuleType.FREE_SHIPPING.value
        kept = [
            str(d.id)
            for d, r in self.applied_discounts(cart)
            if (r.type == DiscountRuleType.FREE_SHIPPING.value) != is_free_shipping
        ]
        cart.set_discounts(kept + [str(discount.id)])

        logger.info(
            "Discount applied",
            cart_id=str(cart.id),
            code=discount.code,
            rule_type=rule.type,
        )
        return discount

    def remove_discount(self, cart, code: str) -> bool:
        """Detach ``code`` from ``cart``; returns whether anything changed."""
        remaining = []
        removed = False
        for discount, _ in self.applied_discounts(cart):
            if discount.code == code.upper():
                removed = True
            else:
                remaining.append(str(discount.id))
        if removed:
            cart.set_discounts(remaining)
        return removed

    def has_free_shipping(self, cart) -> bool:
        return any(r.type == DiscountRuleType.FREE_SHIPPING.value for _, r in self.applied_discounts(cart))

    # -------------------------------------------------------------------
    # Allocation
    # -------------------------------------------------------------------
    def is_item_eligible(self, item, rule: DiscountRule) -> bool:
        if not item.allow_discounts:
            return False
        product_conditions = rule.conditions_of(*PRODUCT_CONDITION_TYPES)
        if not product_conditions:
            return True

        product = self.products.retrieve_product(item.product_id)
        values = {
            ConditionType.PRODUCTS.value: [product.id],
            ConditionType.PRODUCT_COLLECTIONS.value: [product.collection_id],
            ConditionType.PRODUCT_TYPES.value: [product.type_id],
            ConditionType.PRODUCT_TAGS.value: product.tag_ids(),
        }
        return all(condition.matches(values[condition.type]) for condition in product_conditions)

    def calculate_adjustments(self, items, discount: Discount, rule: DiscountRule) -> list[AdjustmentData]:
        if rule.type == DiscountRuleType.FREE_SHIPPING.value:
            return []

        eligible = [item for item in items if self.is_item_eligible(item, rule)]
        discount_id = str(discount.id)
        description = rule.description or "discount"

        if rule.type == DiscountRuleType.PERCENTAGE.value:
            amounts = {
                str(item.id): percentage_of(item.unit_price * item.quantity, rule.value, self.rounding_policy)
                for item in eligible
            }
        elif rule.allocation == AllocationType.ITEM.value:
            amounts = {
                str(item.id): min(rule.value * item.quantity, item.unit_price * item.quantity) for item in eligible
            }
        else:
            amounts = self._allocate_total(eligible, rule.value)

        return [
            AdjustmentData(item_id=item_id, discount_id=discount_id, amount=amount, description=description)
            for item_id, amount in amounts.items()
            if amount > 0
        ]

    def _allocate_total(self, items, value: int) -> dict[str, int]:
        """Spread a fixed amount over ``items`` in proportion to their totals."""
        subtotal = sum(item.unit_price * item.quantity for item in items)
        if subtotal <= 0:
            return {}

        to_allocate = min(value, subtotal)
        amounts = {}
        allocated = 0
        for index, item in enumerate(items):
            line_total = item.unit_price * item.quantity
            if index == len(items) - 1:
                share = to_allocate - allocated
            else:
                share = round_amount(Decimal(to_allocate) * line_total / subtotal, self.rounding_policy)
            amounts[str(item.id)] = min(share, line_total)
            allocated += amounts[str(item.id)]
        return amounts

    # -------------------------------------------------------------------
    # Dynamic codes
    # -------------------------------------------------------------------
    def create_dynamic_code(self, discount_id, data: dict) -> Discount:
        if not data.get("code"):
            raise ValidationError({"code": ["A dynamic discount needs a code"]})

        def work(uow):
            repo = current_domain.repository_for(Discount)
            parent = repo.get(discount_id)
            if not parent.is_dynamic:
                raise InvalidOperationError("Discount must be set to dynamic")
            if repo.get_by_code(data["code"]) is not None:
                raise DuplicateError({"code": [f"Discount with code {data['code'].upper()} already exists"]})

            now = datetime.now(UTC)
            ends_at = now + timedelta(seconds=parent.valid_duration) if parent.valid_duration else parent.ends_at
            child = Discount.create(
                code=data["code"],
                rule_id=parent.rule_id,
                regions=parent.region_ids(),
                is_dynamic=True,
                parent_discount_id=parent.id,
                starts_at=now,
                ends_at=ends_at,
                usage_limit=data.get("usage_limit", 1),
                metadata=data.get("metadata"),
            )
            repo.add(child)
            logger.info("Dynamic discount code created", parent_id=str(parent.id), code=child.code)
            return child

        return run_transactionally(work)
