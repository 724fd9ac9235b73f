"""Domain events for the Cart aggregate.

Published when the unit of work that raised them commits.
"""

from protean.fields import DateTime, Identifier, String

from checkout.domain import checkout


@checkout.event(part_of="Cart")
class CartCreated:
    """A cart was opened in a region."""

    __version__ = 1

    cart_id = Identifier(required=True)
    region_id = Identifier(required=True)
    customer_id = Identifier()
    email = String(max_length=255)
    sales_channel_id = Identifier()


@checkout.event(part_of="Cart")
class CartUpdated:
    """Cart contents or checkout details changed."""

    __version__ = 1

    cart_id = Identifier(required=True)
    updated_at = DateTime(required=True)


@checkout.event(part_of="Cart")
class CartCustomerUpdated:
    """The cart now belongs to a different customer."""

    __version__ = 1

    cart_id = Identifier(required=True)
    customer_id = Identifier(required=True)
    previous_customer_id = Identifier()
    email = String(max_length=255)


@checkout.event(part_of="Cart")
class CartCompleted:
    """Checkout finished; the cart is closed for changes."""

    __version__ = 1

    cart_id = Identifier(required=True)
    payment_id = Identifier()
    completed_at = DateTime(required=True)
