"""Region aggregate: the currency, countries and tax rate a cart is priced in.

A cart is always priced in its region's currency; the region also decides
which payment providers may hold sessions for the cart and which tax rate
the system tax provider applies.
"""

import json

from protean.exceptions import ValidationError
from protean.fields import Boolean, Float, String, Text

from checkout.domain import checkout


@checkout.aggregate
class Region:
    name = String(required=True, max_length=100)
    currency_code = String(required=True, max_length=3)
    tax_rate = Float(default=0.0, min_value=0.0)
    tax_code = String(max_length=50)
    countries = Text()  # JSON array of lowercase ISO 3166-1 alpha-2 codes
    payment_providers = Text()  # JSON array of provider ids
    automatic_taxes = Boolean(default=True)

    @classmethod
    def create(
        cls,
        name,
        currency_code,
        countries,
        payment_providers=None,
        tax_rate=0.0,
        tax_code=None,
        automatic_taxes=True,
    ):
        if not countries:
            raise ValidationError({"countries": ["A region needs at least one country"]})
        return cls(
            name=name,
            currency_code=currency_code.lower(),
            countries=json.dumps([c.lower() for c in countries]),
            payment_providers=json.dumps(list(payment_providers or [])),
            tax_rate=tax_rate,
            tax_code=tax_code,
            automatic_taxes=automatic_taxes,
        )

    def country_codes(self) -> list[str]:
        return json.loads(self.countries) if self.countries else []

    def provider_ids(self) -> list[str]:
        return json.loads(self.payment_providers) if self.payment_providers else []

    def has_country(self, country_code) -> bool:
        return bool(country_code) and country_code.lower() in self.country_codes()


@checkout.repository(part_of=Region)
class RegionRepository:
    def find_by_country(self, country_code: str) -> Region | None:
        code = country_code.lower()
        return next((r for r in self._dao.query.all().items if r.has_country(code)), None)
