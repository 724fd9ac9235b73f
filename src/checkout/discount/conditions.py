"""Discount condition management.

A rule holds at most one condition per (type, operator) pair. Creating a
second one is reported as a ``DuplicateError``; updating an existing
condition replaces its resource ids wholesale.
"""

import structlog
from protean.exceptions import ObjectNotFoundError, ValidationError
from protean.utils.globals import current_domain

from checkout.customer.service import CustomerService
from checkout.discount.discount import (
    ConditionOperator,
    ConditionType,
    Discount,
    DiscountCondition,
    DiscountRule,
)
from checkout.shared.errors import DuplicateError
from checkout.utils.transaction import run_transactionally

logger = structlog.get_logger(__name__)

# Checked in this order; the first non-empty list decides the condition type.
CONDITION_TYPE_PRIORITY = (
    ConditionType.PRODUCTS,
    ConditionType.PRODUCT_COLLECTIONS,
    ConditionType.PRODUCT_TYPES,
    ConditionType.PRODUCT_TAGS,
    ConditionType.CUSTOMER_GROUPS,
)


def _resource_id(resource):
    return str(resource["id"]) if isinstance(resource, dict) else str(resource)


class DiscountConditionService:
    def __init__(self, customers: CustomerService | None = None):
        self.customers = customers or CustomerService()

    def resolve_condition_type(self, data: dict) -> tuple[ConditionType, list[str]]:
        for condition_type in CONDITION_TYPE_PRIORITY:
            resources = data.get(condition_type.value)
            if resources:
                return condition_type, [_resource_id(r) for r in resources]
        raise ValidationError({"conditions": ["Missing one of products, collections, tags, types or customer groups"]})

    def upsert_condition(self, discount_id, data: dict) -> DiscountCondition:
        condition_type, resource_ids = self.resolve_condition_type(data)
        operator = data.get("operator", ConditionOperator.IN.value)
        if operator not in {o.value for o in ConditionOperator}:
            raise ValidationError({"operator": [f"Unknown condition operator {operator}"]})

        def work(uow):
            discount = current_domain.repository_for(Discount).get(discount_id)
            rule_repo = current_domain.repository_for(DiscountRule)
            rule = rule_repo.get(discount.rule_id)

            if data.get("id"):
                condition = next((c for c in rule.conditions if str(c.id) == str(data["id"])), None)
                if condition is None:
                    raise ObjectNotFoundError({"_entity": f"Discount condition {data['id']} was not found"})
                condition.set_resources(resource_ids)
            else:
                if rule.find_condition(condition_type.value, operator) is not None:
                    raise ValidationError(
                        {"conditions": [f"Condition ({condition_type.value}, {operator}) already exists on rule"]}
                    )
                condition = DiscountCondition(type=condition_type.value, operator=operator)
                condition.set_resources(resource_ids)
                rule.add_conditions(condition)

            rule_repo.add(rule)
            logger.info(
                "Discount condition saved",
                discount_id=str(discount_id),
                condition_id=str(condition.id),
                type=condition_type.value,
                operator=operator,
            )
            return condition

        def translate(exc):
            if isinstance(exc, ValidationError) and "conditions" in exc.messages:
                raise DuplicateError(
                    {
                        "conditions": [
                            f"Discount Condition with operator '{operator}' and type "
                            f"'{condition_type.value}' already exist on a Discount Rule"
                        ]
                    }
                ) from exc

        return run_transactionally(work, on_error=translate)

    def remove_condition(self, condition_id) -> None:
        def work(uow):
            rule_repo = current_domain.repository_for(DiscountRule)
            rule = rule_repo.find_by_condition(condition_id)
            if rule is None:
                return
            condition = next(c for c in rule.conditions if str(c.id) == str(condition_id))
            rule.remove_conditions(condition)
            rule_repo.add(rule)
            logger.info("Discount condition removed", condition_id=str(condition_id))

        run_transactionally(work)

    def can_apply_for_customer(self, rule_id, customer_id) -> bool:
        if not customer_id:
            return False

        rule = current_domain.repository_for(DiscountRule).get(rule_id)
        group_conditions = rule.conditions_of(ConditionType.CUSTOMER_GROUPS)
        if not group_conditions:
            return True

        groups = self.customers.retrieve(customer_id).group_ids()
        return all(condition.matches(groups) for condition in group_conditions)
