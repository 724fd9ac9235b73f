"""Tests for Discount, DiscountRule and DiscountCondition."""

from datetime import UTC, datetime, timedelta

import pytest
from protean.exceptions import ValidationError

from checkout.discount.discount import ConditionType, Discount, DiscountCondition, DiscountRule


def _condition(operator, resource_ids, condition_type="products"):
    condition = DiscountCondition(type=condition_type, operator=operator)
    condition.set_resources(resource_ids)
    return condition


class TestDiscountCode:
    def test_code_is_upper_cased(self):
        discount = Discount.create(code="summer10", rule_id="rule-001", regions=["reg-001"])
        assert discount.code == "SUMMER10"

    def test_region_membership(self):
        discount = Discount.create(code="SUMMER10", rule_id="rule-001", regions=["reg-001"])
        assert discount.applies_to_region("reg-001")
        assert not discount.applies_to_region("reg-002")


class TestDiscountValidity:
    def test_future_start_has_not_started(self):
        discount = Discount.create(
            code="LATER", rule_id="rule-001", starts_at=datetime.now(UTC) + timedelta(days=1)
        )
        assert not discount.has_started()

    def test_past_end_has_expired(self):
        discount = Discount.create(
            code="GONE",
            rule_id="rule-001",
            starts_at=datetime.now(UTC) - timedelta(days=10),
            ends_at=datetime.now(UTC) - timedelta(days=1),
        )
        assert discount.has_expired()

    def test_dynamic_discount_expires_after_valid_duration(self):
        discount = Discount.create(
            code="DYN",
            rule_id="rule-001",
            is_dynamic=True,
            starts_at=datetime.now(UTC) - timedelta(hours=2),
            valid_duration=3600,
        )
        assert discount.has_expired()

    def test_dynamic_discount_within_valid_duration(self):
        discount = Discount.create(code="DYN", rule_id="rule-001", is_dynamic=True, valid_duration=3600)
        assert not discount.has_expired()

    def test_usage_limit(self):
        discount = Discount.create(code="ONCE", rule_id="rule-001", usage_limit=1)
        assert not discount.usage_exhausted()
        discount.record_usage()
        assert discount.usage_exhausted()

    def test_usage_cannot_exceed_limit(self):
        discount = Discount.create(code="ONCE", rule_id="rule-001", usage_limit=1)
        discount.record_usage()
        with pytest.raises(ValidationError):
            discount.record_usage()


class TestDiscountRule:
    def test_percentage_above_hundred_is_rejected(self):
        with pytest.raises(ValidationError):
            DiscountRule(type="percentage", value=150)

    def test_unknown_rule_type_is_rejected(self):
        with pytest.raises(ValidationError):
            DiscountRule(type="buy_one_get_one", value=10)

    def test_find_condition_by_type_and_operator(self):
        rule = DiscountRule(type="percentage", value=10)
        condition = _condition("in", ["prod-001"])
        rule.add_conditions(condition)
        assert rule.find_condition("products", "in") is condition
        assert rule.find_condition("products", "not_in") is None

    def test_conditions_of_filters_by_type(self):
        rule = DiscountRule(type="percentage", value=10)
        rule.add_conditions(_condition("in", ["prod-001"]))
        rule.add_conditions(_condition("in", ["vip"], condition_type="customer_groups"))
        assert len(rule.conditions_of(ConditionType.CUSTOMER_GROUPS)) == 1
        assert len(rule.conditions_of(ConditionType.PRODUCTS, ConditionType.PRODUCT_TAGS)) == 1


class TestDiscountCondition:
    def test_in_operator_matches_listed_resource(self):
        condition = _condition("in", ["prod-001", "prod-002"])
        assert condition.matches(["prod-002"])
        assert not condition.matches(["prod-003"])

    def test_not_in_operator_excludes_listed_resource(self):
        condition = _condition("not_in", ["prod-001"])
        assert not condition.matches(["prod-001"])
        assert condition.matches(["prod-003"])

    def test_missing_values_never_match_in(self):
        condition = _condition("in", ["col-001"], condition_type="product_collections")
        assert not condition.matches([None])
