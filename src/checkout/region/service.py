"""Region lookups used by the cart engine."""

from protean.exceptions import ObjectNotFoundError
from protean.utils.globals import current_domain

from checkout.region.region import Region


class RegionService:
    def retrieve(self, region_id) -> Region:
        return current_domain.repository_for(Region).get(region_id)

    def retrieve_by_country_code(self, country_code: str) -> Region:
        region = current_domain.repository_for(Region).find_by_country(country_code)
        if region is None:
            raise ObjectNotFoundError({"_entity": f"No region is configured for country {country_code}"})
        return region
