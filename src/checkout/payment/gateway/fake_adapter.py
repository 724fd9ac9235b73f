"""Configurable fake payment provider for development and testing.

Simulates a card gateway in memory. Payments opened through it are tracked
by id so that deleting an unknown payment or capturing twice behaves the way
a real gateway reports it. Every call is recorded in ``calls``.
"""

from uuid import uuid4

from checkout.payment.gateway.port import (
    AuthorizationResult,
    PaymentAlreadyCaptured,
    PaymentContext,
    PaymentNotFound,
    PaymentProvider,
    PaymentProviderError,
    PaymentSessionResponse,
    PaymentSessionStatus,
)


class FakePaymentProvider(PaymentProvider):
    """Configurable fake payment provider."""

    def __init__(self, identifier: str = "fake") -> None:
        self.identifier = identifier
        self.should_succeed: bool = True
        self.failure_reason: str = "Card declined"
        self.authorization_status: PaymentSessionStatus = PaymentSessionStatus.AUTHORIZED
        self.collected_customer_data: dict = {}
        self.payments: dict[str, dict] = {}
        self.calls: list[dict] = []

    def configure(
        self,
        should_succeed: bool = True,
        failure_reason: str = "Card declined",
        authorization_status: PaymentSessionStatus = PaymentSessionStatus.AUTHORIZED,
        collected_customer_data: dict | None = None,
    ) -> None:
        """Configure provider behavior at runtime."""
        self.should_succeed = should_succeed
        self.failure_reason = failure_reason
        self.authorization_status = authorization_status
        self.collected_customer_data = collected_customer_data or {}

    def calls_to(self, method: str) -> list[dict]:
        return [c for c in self.calls if c["method"] == method]

    def _record(self, method: str, **details) -> None:
        self.calls.append({"method": method, **details})
        if not self.should_succeed:
            raise PaymentProviderError(self.identifier, self.failure_reason)

    def create_payment(self, context: PaymentContext) -> PaymentSessionResponse:
        self._record("create_payment", cart_id=context.cart_id, amount=context.amount)
        payment_id = f"fake_pay_{uuid4().hex[:12]}"
        self.payments[payment_id] = {"captured": False}
        collected = {"customer": dict(self.collected_customer_data)} if self.collected_customer_data else {}
        return PaymentSessionResponse(
            session_data={
                "id": payment_id,
                "amount": context.amount,
                "currency": context.currency_code,
                "status": "requires_payment_method",
            },
            collected_data=collected,
        )

    def update_payment(self, session_data: dict, context: PaymentContext) -> PaymentSessionResponse:
        self._record("update_payment", payment_id=session_data.get("id"), amount=context.amount)
        return PaymentSessionResponse(
            session_data={**session_data, "amount": context.amount, "currency": context.currency_code}
        )

    def update_payment_data(self, session_data: dict, data: dict) -> dict:
        self._record("update_payment_data", payment_id=session_data.get("id"))
        return {**session_data, **data}

    def delete_payment(self, session) -> None:
        payment_id = session.data_dict().get("id")
        self._record("delete_payment", payment_id=payment_id)
        if self.payments.pop(payment_id, None) is None:
            raise PaymentNotFound(self.identifier, f"No such payment: {payment_id}")

    def authorize_payment(self, session, context: dict) -> AuthorizationResult:
        data = session.data_dict()
        self._record("authorize_payment", payment_id=data.get("id"))
        status = {
            PaymentSessionStatus.AUTHORIZED: "requires_capture",
            PaymentSessionStatus.REQUIRES_MORE: "requires_action",
        }.get(self.authorization_status, "canceled")
        return AuthorizationResult(status=self.authorization_status, data={**data, "status": status})

    def capture_payment(self, payment) -> dict:
        data = payment.data_dict()
        self._record("capture_payment", payment_id=data.get("id"))
        tracked = self.payments.setdefault(data.get("id"), {"captured": False})
        if tracked["captured"]:
            raise PaymentAlreadyCaptured(self.identifier, "Payment has already been captured")
        tracked["captured"] = True
        return {**data, "status": "succeeded"}

    def cancel_payment(self, payment) -> dict:
        data = payment.data_dict()
        self._record("cancel_payment", payment_id=data.get("id"))
        return {**data, "status": "canceled"}

    def refund_payment(self, payment, amount: int) -> dict:
        data = payment.data_dict()
        self._record("refund_payment", payment_id=data.get("id"), amount=amount)
        refunds = list(data.get("refunds", [])) + [{"id": f"fake_ref_{uuid4().hex[:12]}", "amount": amount}]
        return {**data, "refunds": refunds}

    def get_payment_data(self, session) -> dict:
        self._record("get_payment_data")
        return session.data_dict()

    def get_status(self, data: dict) -> PaymentSessionStatus:
        return {
            "requires_payment_method": PaymentSessionStatus.PENDING,
            "requires_confirmation": PaymentSessionStatus.PENDING,
            "processing": PaymentSessionStatus.PENDING,
            "requires_action": PaymentSessionStatus.REQUIRES_MORE,
            "canceled": PaymentSessionStatus.CANCELED,
            "requires_capture": PaymentSessionStatus.AUTHORIZED,
            "succeeded": PaymentSessionStatus.AUTHORIZED,
        }.get(data.get("status"), PaymentSessionStatus.PENDING)
