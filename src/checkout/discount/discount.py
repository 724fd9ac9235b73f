"""Discounts, their rules and the conditions that restrict a rule.

A ``Discount`` is the redeemable code; its ``DiscountRule`` says how much is
taken off and from what. Dynamic discounts act as templates: each generated
child code points at the parent's rule.
"""

import json
from datetime import UTC, datetime, timedelta
from enum import Enum

from protean import invariant
from protean.exceptions import ValidationError
from protean.fields import Boolean, DateTime, HasMany, Identifier, Integer, String, Text

from checkout.domain import checkout


class DiscountRuleType(Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"
    FREE_SHIPPING = "free_shipping"


class AllocationType(Enum):
    TOTAL = "total"
    ITEM = "item"


class ConditionType(Enum):
    PRODUCTS = "products"
    PRODUCT_COLLECTIONS = "product_collections"
    PRODUCT_TYPES = "product_types"
    PRODUCT_TAGS = "product_tags"
    CUSTOMER_GROUPS = "customer_groups"


class ConditionOperator(Enum):
    IN = "in"
    NOT_IN = "not_in"


@checkout.entity(part_of="DiscountRule")
class DiscountCondition:
    type = String(required=True, choices=ConditionType)
    operator = String(required=True, choices=ConditionOperator)
    resource_ids = Text()  # JSON array

    def resources(self) -> list[str]:
        return json.loads(self.resource_ids) if self.resource_ids else []

    def set_resources(self, ids):
        self.resource_ids = json.dumps([str(i) for i in ids])

    def matches(self, values) -> bool:
        """Evaluate the condition against the ids an item or customer carries."""
        hit = bool(set(self.resources()) & {str(v) for v in values if v})
        return hit if self.operator == ConditionOperator.IN.value else not hit


@checkout.aggregate
class DiscountRule:
    type = String(required=True, choices=DiscountRuleType)
    value = Integer(default=0, min_value=0)  # Percent for percentage rules, minor units for fixed
    allocation = String(choices=AllocationType, default=AllocationType.TOTAL.value)
    description = String(max_length=255)
    conditions = HasMany(DiscountCondition)

    @invariant.post
    def percentage_cannot_exceed_hundred(self):
        if self.type == DiscountRuleType.PERCENTAGE.value and (self.value or 0) > 100:
            raise ValidationError({"value": ["A percentage discount cannot exceed 100"]})

    def find_condition(self, condition_type, operator):
        return next((c for c in self.conditions if c.type == condition_type and c.operator == operator), None)

    def conditions_of(self, *types) -> list:
        wanted = {t.value for t in types}
        return [c for c in self.conditions if c.type in wanted]


@checkout.aggregate
class Discount:
    code = String(required=True, max_length=100)
    rule_id = Identifier(required=True)
    is_dynamic = Boolean(default=False)
    parent_discount_id = Identifier()
    regions = Text()  # JSON array of region ids
    is_disabled = Boolean(default=False)
    starts_at = DateTime()
    ends_at = DateTime()
    valid_duration = Integer(min_value=0)  # Seconds; dynamic codes only
    usage_limit = Integer(min_value=0)
    usage_count = Integer(default=0, min_value=0)
    metadata = Text()  # JSON object
    created_at = DateTime()

    @invariant.post
    def usage_within_limit(self):
        if self.usage_limit is not None and (self.usage_count or 0) > self.usage_limit:
            raise ValidationError({"usage_count": ["Discount usage exceeds its limit"]})

    @classmethod
    def create(
        cls,
        code,
        rule_id,
        regions=None,
        is_dynamic=False,
        parent_discount_id=None,
        starts_at=None,
        ends_at=None,
        valid_duration=None,
        usage_limit=None,
        metadata=None,
    ):
        now = datetime.now(UTC)
        return cls(
            code=code.upper(),
            rule_id=rule_id,
            regions=json.dumps([str(r) for r in regions or []]),
            is_dynamic=is_dynamic,
            parent_discount_id=parent_discount_id,
            starts_at=starts_at or now,
            ends_at=ends_at,
            valid_duration=valid_duration,
            usage_limit=usage_limit,
            metadata=json.dumps(metadata or {}),
            created_at=now,
        )

    def region_ids(self) -> list[str]:
        return json.loads(self.regions) if self.regions else []

    def applies_to_region(self, region_id) -> bool:
        return str(region_id) in self.region_ids()

    def has_started(self, now=None) -> bool:
        now = now or datetime.now(UTC)
        return self.starts_at is None or self.starts_at <= now

    def has_expired(self, now=None) -> bool:
        now = now or datetime.now(UTC)
        if self.ends_at is not None and self.ends_at < now:
            return True
        if self.is_dynamic and self.valid_duration and self.starts_at:
            return self.starts_at + timedelta(seconds=self.valid_duration) < now
        return False

    def usage_exhausted(self) -> bool:
        return self.usage_limit is not None and (self.usage_count or 0) >= self.usage_limit

    def record_usage(self):
        self.usage_count = (self.usage_count or 0) + 1


@checkout.repository(part_of=Discount)
class DiscountRepository:
    def get_by_code(self, code: str) -> Discount | None:
        results = self._dao.query.filter(code=code.upper()).all()
        return results.first if results.items else None


@checkout.repository(part_of=DiscountRule)
class DiscountRuleRepository:
    def find_by_condition(self, condition_id) -> DiscountRule | None:
        return next(
            (
                rule
                for rule in self._dao.query.all().items
                if any(str(c.id) == str(condition_id) for c in rule.conditions)
            ),
            None,
        )
