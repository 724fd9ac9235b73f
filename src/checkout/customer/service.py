"""Customer lookups and metadata updates used during checkout."""

import structlog
from protean.utils.globals import current_domain

from checkout.customer.customer import Customer

logger = structlog.get_logger(__name__)


class CustomerService:
    def retrieve(self, customer_id) -> Customer:
        return current_domain.repository_for(Customer).get(customer_id)

    def retrieve_or_create_guest(self, email: str) -> Customer:
        """Find the customer owning ``email``; register a guest if none exists."""
        repo = current_domain.repository_for(Customer)
        customer = repo.find_by_email(email)
        if customer is None:
            customer = Customer.create(email=email)
            repo.add(customer)
            logger.info("Registered guest customer", customer_id=str(customer.id))
        return customer

    def merge_metadata(self, customer_id, values: dict) -> Customer:
        repo = current_domain.repository_for(Customer)
        customer = repo.get(customer_id)
        customer.merge_metadata(values)
        repo.add(customer)
        return customer
