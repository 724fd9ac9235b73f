"""Payment provider port (abstract interface).

Every provider adapter implements this contract; the orchestrator picks one
by id from the registry and never branches on the concrete type. Calls are
synchronous and provider failures propagate as ``PaymentProviderError``.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum


class PaymentSessionStatus(Enum):
    PENDING = "pending"
    REQUIRES_MORE = "requires_more"
    AUTHORIZED = "authorized"
    CANCELED = "canceled"
    ERROR = "error"


class PaymentProviderError(Exception):
    """A provider rejected or failed an operation."""

    def __init__(self, provider_id: str, message: str):
        super().__init__(f"{provider_id}: {message}")
        self.provider_id = provider_id
        self.message = message


class PaymentAlreadyCaptured(PaymentProviderError):
    """Capture was requested for a payment the provider already captured."""


class PaymentNotFound(PaymentProviderError):
    """The provider holds no payment for the given session data."""


@dataclass(frozen=True)
class PaymentContext:
    """What a provider learns about the cart when a session is created or updated."""

    cart_id: str
    amount: int
    currency_code: str
    email: str | None = None
    customer_id: str | None = None
    shipping_address: dict | None = None
    shipping_methods: list[dict] = field(default_factory=list)
    customer_metadata: dict = field(default_factory=dict)
    context: dict = field(default_factory=dict)


@dataclass(frozen=True)
class PaymentSessionResponse:
    """Session data to store, plus data collected for other records.

    ``collected_data["customer"]`` is merged into the customer's metadata.
    """

    session_data: dict
    collected_data: dict = field(default_factory=dict)


@dataclass(frozen=True)
class AuthorizationResult:
    status: PaymentSessionStatus
    data: dict


class PaymentProvider(ABC):
    identifier: str = ""

    @abstractmethod
    def create_payment(self, context: PaymentContext) -> PaymentSessionResponse:
        """Open a payment at the provider for the cart in ``context``."""
        ...

    @abstractmethod
    def update_payment(self, session_data: dict, context: PaymentContext) -> PaymentSessionResponse:
        """Bring an existing payment in line with the cart in ``context``."""
        ...

    @abstractmethod
    def update_payment_data(self, session_data: dict, data: dict) -> dict:
        ...

    @abstractmethod
    def delete_payment(self, session) -> None:
        """Raise ``PaymentNotFound`` when the provider has no such payment."""
        ...

    @abstractmethod
    def authorize_payment(self, session, context: dict) -> AuthorizationResult:
        ...

    @abstractmethod
    def capture_payment(self, payment) -> dict:
        """Raise ``PaymentAlreadyCaptured`` when the payment was captured before."""
        ...

    @abstractmethod
    def cancel_payment(self, payment) -> dict:
        ...

    @abstractmethod
    def refund_payment(self, payment, amount: int) -> dict:
        ...

    @abstractmethod
    def get_payment_data(self, session) -> dict:
        ...

    @abstractmethod
    def get_status(self, data: dict) -> PaymentSessionStatus:
        ...
