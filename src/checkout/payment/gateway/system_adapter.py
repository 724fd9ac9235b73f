"""Manual payment provider.

Payments are settled outside the system, so every step succeeds at once and
the stored data stays empty.
"""

from checkout.payment.gateway.port import (
    AuthorizationResult,
    PaymentContext,
    PaymentProvider,
    PaymentSessionResponse,
    PaymentSessionStatus,
)


class SystemPaymentProvider(PaymentProvider):
    identifier = "system"

    def create_payment(self, context: PaymentContext) -> PaymentSessionResponse:
        return PaymentSessionResponse(session_data={})

    def update_payment(self, session_data: dict, context: PaymentContext) -> PaymentSessionResponse:
        return PaymentSessionResponse(session_data=dict(session_data))

    def update_payment_data(self, session_data: dict, data: dict) -> dict:
        return {**session_data, **data}

    def delete_payment(self, session) -> None:
        return None

    def authorize_payment(self, session, context: dict) -> AuthorizationResult:
        return AuthorizationResult(status=PaymentSessionStatus.AUTHORIZED, data=session.data_dict())

    def capture_payment(self, payment) -> dict:
        return payment.data_dict()

    def cancel_payment(self, payment) -> dict:
        return payment.data_dict()

    def refund_payment(self, payment, amount: int) -> dict:
        return payment.data_dict()

    def get_payment_data(self, session) -> dict:
        return session.data_dict()

    def get_status(self, data: dict) -> PaymentSessionStatus:
        return PaymentSessionStatus.AUTHORIZED
