import pytest
from protean.integrations.pytest import DomainFixture
from protean.utils.globals import current_domain

from checkout.cart.service import CartService
from checkout.catalog.product import MoneyAmount, Product, ProductVariant
from checkout.config import CheckoutSettings
from checkout.customer.customer import Customer
from checkout.discount.discount import Discount, DiscountCondition, DiscountRule
from checkout.giftcard.gift_card import GiftCard
from checkout.payment.gateway import PaymentProviderRegistry
from checkout.payment.gateway.fake_adapter import FakePaymentProvider
from checkout.region.region import Region
from checkout.shipping.option import ShippingOption


@pytest.fixture(scope="session")
def checkout_bed():
    from checkout.domain import checkout

    bed = DomainFixture(checkout)
    bed.setup()
    yield bed
    bed.teardown()


@pytest.fixture(autouse=True)
def _ctx(checkout_bed):
    with checkout_bed.domain_context():
        yield

        for _, provider in current_domain.providers.items():
            provider._data_reset()
        current_domain.event_store.store._data_reset()


def persist(obj):
    current_domain.repository_for(type(obj)).add(obj)
    return obj


# ---------------------------------------------------------------------------
# Engine wiring
# ---------------------------------------------------------------------------
@pytest.fixture()
def settings():
    return CheckoutSettings(
        transaction_max_attempts=3,
        transaction_backoff_seconds=0.0,
        validate_sales_channels=True,
        default_sales_channel_id=None,
        partial_payment_sessions=False,
        stamp_payment_authorization=True,
        rounding_policy="half_up",
    )


@pytest.fixture()
def fake_provider():
    return FakePaymentProvider("fake")


@pytest.fixture()
def registry(fake_provider):
    return PaymentProviderRegistry([fake_provider])


@pytest.fixture()
def cart_service(registry, settings):
    return CartService(registry, settings=settings)


# ---------------------------------------------------------------------------
# Reference data
# ---------------------------------------------------------------------------
@pytest.fixture()
def region():
    return persist(
        Region.create(
            name="United States",
            currency_code="USD",
            countries=["us"],
            payment_providers=["fake"],
        )
    )


@pytest.fixture()
def eu_region():
    return persist(
        Region.create(
            name="Europe",
            currency_code="EUR",
            countries=["de", "fr"],
            payment_providers=["system", "fake"],
            tax_rate=20.0,
            tax_code="VAT",
        )
    )


@pytest.fixture()
def make_variant():
    def _make(
        title="T-Shirt",
        prices=None,
        inventory=10,
        profile_id="profile-default",
        sales_channels=("sc-web",),
        discountable=True,
        collection_id=None,
        type_id=None,
        tags=None,
    ):
        product = persist(
            Product.create(
                title=title,
                profile_id=profile_id,
                collection_id=collection_id,
                type_id=type_id,
                tags=tags,
                sales_channels=list(sales_channels),
                discountable=discountable,
            )
        )
        variant = persist(ProductVariant(product_id=product.id, title=f"{title} / M", inventory_quantity=inventory))
        for price in prices or [{"currency_code": "usd", "amount": 1000}]:
            persist(MoneyAmount.create(variant_id=variant.id, **price))
        return variant

    return _make


@pytest.fixture()
def variant(make_variant):
    return make_variant()


@pytest.fixture()
def customer():
    return persist(Customer.create(email="jane@example.com", first_name="Jane", groups=["vip"]))


@pytest.fixture()
def make_discount(region):
    def _make(code, rule_type="percentage", value=10, allocation="total", regions=None, conditions=(), **kwargs):
        rule = DiscountRule(type=rule_type, value=value, allocation=allocation)
        for condition_type, operator, resource_ids in conditions:
            condition = DiscountCondition(type=condition_type, operator=operator)
            condition.set_resources(resource_ids)
            rule.add_conditions(condition)
        persist(rule)
        return persist(Discount.create(code=code, rule_id=rule.id, regions=regions or [region.id], **kwargs))

    return _make


@pytest.fixture()
def shipping_option(region):
    return persist(
        ShippingOption(name="Standard", region_id=region.id, profile_id="profile-default", amount=500)
    )


@pytest.fixture()
def gift_card(region):
    return persist(GiftCard.create(code="gift-500", value=500, region_id=region.id))


@pytest.fixture()
def cart(cart_service, region):
    return cart_service.create({"region_id": region.id})


@pytest.fixture()
def cart_with_item(cart_service, cart, variant):
    return cart_service.add_line_item(cart.id, {"variant_id": variant.id, "quantity": 2})
