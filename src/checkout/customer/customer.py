"""Customer records consulted at checkout.

Only what the cart engine needs: email, group memberships for discount
conditions, and metadata that payment providers read and extend.
"""

import json

from protean.fields import Boolean, String, Text

from checkout.domain import checkout


@checkout.aggregate
class Customer:
    email = String(required=True, max_length=255)
    first_name = String(max_length=100)
    last_name = String(max_length=100)
    has_account = Boolean(default=False)
    groups = Text()  # JSON array of customer group ids
    metadata = Text()  # JSON object

    @classmethod
    def create(cls, email, first_name=None, last_name=None, has_account=False, groups=None, metadata=None):
        return cls(
            email=email.lower(),
            first_name=first_name,
            last_name=last_name,
            has_account=has_account,
            groups=json.dumps(list(groups or [])),
            metadata=json.dumps(metadata or {}),
        )

    def group_ids(self) -> list[str]:
        return json.loads(self.groups) if self.groups else []

    def metadata_dict(self) -> dict:
        return json.loads(self.metadata) if self.metadata else {}

    def merge_metadata(self, values: dict):
        merged = self.metadata_dict()
        merged.update(values)
        self.metadata = json.dumps(merged)


@checkout.repository(part_of=Customer)
class CustomerRepository:
    def find_by_email(self, email: str) -> Customer | None:
        results = self._dao.query.filter(email=email.lower()).all()
        return results.first if results.items else None
