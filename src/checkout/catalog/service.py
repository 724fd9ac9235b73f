"""Product and variant lookups for the cart engine."""

from protean.utils.globals import current_domain

from checkout.catalog.product import Product, ProductVariant


class ProductVariantService:
    def retrieve_variant(self, variant_id) -> ProductVariant:
        return current_domain.repository_for(ProductVariant).get(variant_id)

    def retrieve_product(self, product_id) -> Product:
        return current_domain.repository_for(Product).get(product_id)

    def product_for_variant(self, variant_id) -> Product:
        return self.retrieve_product(self.retrieve_variant(variant_id).product_id)

    def is_in_sales_channel(self, variant_id, sales_channel_id) -> bool:
        if not sales_channel_id:
            return False
        return str(sales_channel_id) in self.product_for_variant(variant_id).sales_channel_ids()

    def confirm_inventory(self, variant_id, quantity: int) -> bool:
        return self.retrieve_variant(variant_id).has_inventory_for(quantity)
