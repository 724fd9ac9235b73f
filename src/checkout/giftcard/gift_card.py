"""Gift cards redeemable against a cart in their region."""

from datetime import UTC, datetime

from protean.fields import Boolean, DateTime, Identifier, Integer, String

from checkout.domain import checkout


@checkout.aggregate
class GiftCard:
    code = String(required=True, max_length=50)
    value = Integer(required=True, min_value=0)
    balance = Integer(required=True, min_value=0)
    region_id = Identifier(required=True)
    is_disabled = Boolean(default=False)
    ends_at = DateTime()

    @classmethod
    def create(cls, code, value, region_id, ends_at=None):
        return cls(code=code.upper(), value=value, balance=value, region_id=region_id, ends_at=ends_at)

    def is_expired(self, now=None) -> bool:
        now = now or datetime.now(UTC)
        return self.ends_at is not None and self.ends_at < now


@checkout.repository(part_of=GiftCard)
class GiftCardRepository:
    def get_by_code(self, code: str) -> GiftCard | None:
        results = self._dao.query.filter(code=code.upper()).all()
        return results.first if results.items else None
