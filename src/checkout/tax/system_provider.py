"""Flat-rate tax provider driven by the region's configured rate."""

from checkout.tax.port import TaxLineData, TaxProvider


class SystemTaxProvider(TaxProvider):
    def get_tax_lines(self, items, shipping_methods, region) -> list[TaxLineData]:
        rate = region.tax_rate or 0.0
        lines = [
            TaxLineData(rate=rate, name="default", code=region.tax_code, item_id=str(item.id))
            for item in items
        ]
        lines.extend(
            TaxLineData(rate=rate, name="default", code=region.tax_code, shipping_method_id=str(method.id))
            for method in shipping_methods
        )
        return lines
