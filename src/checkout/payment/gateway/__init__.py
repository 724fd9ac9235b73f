"""Payment provider registry.

The orchestrator is handed an explicit registry; ``"system"`` (manual
payments) is always available and other adapters are registered by id.
"""

from protean.exceptions import ObjectNotFoundError

from checkout.payment.gateway.port import PaymentProvider
from checkout.payment.gateway.system_adapter import SystemPaymentProvider


class PaymentProviderRegistry:
    def __init__(self, providers: list[PaymentProvider] | None = None) -> None:
        self._providers: dict[str, PaymentProvider] = {}
        self.register(SystemPaymentProvider())
        for provider in providers or []:
            self.register(provider)

    def register(self, provider: PaymentProvider, provider_id: str | None = None) -> None:
        self._providers[provider_id or provider.identifier] = provider

    def get(self, provider_id: str) -> PaymentProvider:
        try:
            return self._providers[provider_id]
        except KeyError:
            raise ObjectNotFoundError(
                {"_entity": f"Could not find a payment provider with id: {provider_id}"}
            ) from None

    def ids(self) -> list[str]:
        return sorted(self._providers)
