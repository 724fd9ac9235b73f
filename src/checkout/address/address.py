"""Address store referenced by carts for billing and shipping."""

import json

from protean.fields import Identifier, String, Text

from checkout.domain import checkout

ADDRESS_FIELDS = (
    "first_name",
    "last_name",
    "company",
    "address_1",
    "address_2",
    "city",
    "province",
    "postal_code",
    "country_code",
    "phone",
    "customer_id",
)


@checkout.aggregate
class Address:
    first_name = String(max_length=100)
    last_name = String(max_length=100)
    company = String(max_length=255)
    address_1 = String(max_length=255)
    address_2 = String(max_length=255)
    city = String(max_length=100)
    province = String(max_length=100)
    postal_code = String(max_length=20)
    country_code = String(max_length=2)
    phone = String(max_length=30)
    customer_id = Identifier()
    metadata = Text()  # JSON object

    @classmethod
    def from_payload(cls, payload: dict):
        values = {k: payload[k] for k in ADDRESS_FIELDS if payload.get(k) is not None}
        if values.get("country_code"):
            values["country_code"] = values["country_code"].lower()
        return cls(metadata=json.dumps(payload.get("metadata") or {}), **values)

    def apply(self, payload: dict):
        """Overwrite the fields present in ``payload``."""
        for key in ADDRESS_FIELDS:
            if key in payload:
                value = payload[key]
                if key == "country_code" and value:
                    value = value.lower()
                setattr(self, key, value)
        if "metadata" in payload:
            self.metadata = json.dumps(payload["metadata"] or {})

    def snapshot(self) -> dict:
        data = {k: getattr(self, k) for k in ADDRESS_FIELDS}
        data["id"] = str(self.id)
        if data["customer_id"]:
            data["customer_id"] = str(data["customer_id"])
        return data
