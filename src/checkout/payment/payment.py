"""Payment and refund records created from authorized payment sessions."""

import json
from datetime import UTC, datetime
from enum import Enum

from protean import invariant
from protean.exceptions import ValidationError
from protean.fields import DateTime, Identifier, Integer, String, Text

from checkout.domain import checkout


class RefundReason(Enum):
    DISCOUNT = "discount"
    RETURN = "return"
    SWAP = "swap"
    CLAIM = "claim"
    OTHER = "other"


@checkout.aggregate
class Payment:
    cart_id = Identifier()
    provider_id = String(required=True, max_length=50)
    amount = Integer(required=True, min_value=0)
    currency_code = String(required=True, max_length=3)
    amount_refunded = Integer(default=0, min_value=0)
    data = Text()  # JSON object owned by the provider
    captured_at = DateTime()
    canceled_at = DateTime()
    created_at = DateTime()

    @invariant.post
    def refunds_cannot_exceed_amount(self):
        if (self.amount_refunded or 0) > (self.amount or 0):
            raise ValidationError({"amount_refunded": ["Refunded amount cannot exceed the payment amount"]})

    @classmethod
    def create(cls, provider_id, amount, currency_code, cart_id=None, data=None):
        return cls(
            cart_id=cart_id,
            provider_id=provider_id,
            amount=amount,
            currency_code=currency_code.lower(),
            amount_refunded=0,
            data=json.dumps(data or {}),
            created_at=datetime.now(UTC),
        )

    def data_dict(self) -> dict:
        return json.loads(self.data) if self.data else {}

    def set_data(self, data: dict):
        self.data = json.dumps(data or {})

    def refundable(self) -> int:
        return (self.amount or 0) - (self.amount_refunded or 0)

    def mark_captured(self, data=None):
        if data is not None:
            self.set_data(data)
        self.captured_at = datetime.now(UTC)

    def mark_canceled(self, data=None):
        if data is not None:
            self.set_data(data)
        self.canceled_at = datetime.now(UTC)

    def record_refund(self, amount: int):
        self.amount_refunded = (self.amount_refunded or 0) + amount


@checkout.aggregate
class Refund:
    amount = Integer(required=True, min_value=1)
    reason = String(required=True, choices=RefundReason)
    note = String(max_length=1000)
    payment_ids = Text()  # JSON array; every payment drained by this refund
    created_at = DateTime()

    @classmethod
    def create(cls, amount, reason, payment_ids, note=None):
        return cls(
            amount=amount,
            reason=reason,
            note=note,
            payment_ids=json.dumps([str(p) for p in payment_ids]),
            created_at=datetime.now(UTC),
        )

    def payment_id_list(self) -> list[str]:
        return json.loads(self.payment_ids) if self.payment_ids else []


@checkout.repository(part_of=Payment)
class PaymentRepository:
    def for_cart(self, cart_id) -> list[Payment]:
        return self._dao.query.filter(cart_id=str(cart_id)).all().items
