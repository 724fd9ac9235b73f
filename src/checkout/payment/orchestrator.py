"""Payment orchestration: sessions on carts, payments and refunds.

Session operations mutate the ``Cart`` passed in and leave persisting it to
the caller, which runs them inside its own unit of work. Payment and refund
operations persist their records themselves through
:func:`run_transactionally`, joining the caller's unit when there is one.
"""

from datetime import UTC, datetime

import structlog
from protean.exceptions import InvalidOperationError, ObjectNotFoundError, ValidationError
from protean.utils.globals import current_domain

from checkout.address.address import Address
from checkout.cart.cart import PaymentSession
from checkout.customer.service import CustomerService
from checkout.payment.gateway import PaymentProviderRegistry
from checkout.payment.gateway.port import (
    PaymentAlreadyCaptured,
    PaymentContext,
    PaymentNotFound,
    PaymentSessionStatus,
)
from checkout.payment.payment import Payment, Refund
from checkout.region.service import RegionService
from checkout.totals.calculator import TotalsCalculator
from checkout.utils.transaction import run_transactionally

logger = structlog.get_logger(__name__)


class PaymentOrchestrator:
    def __init__(
        self,
        registry: PaymentProviderRegistry,
        *,
        totals: TotalsCalculator | None = None,
        regions: RegionService | None = None,
        customers: CustomerService | None = None,
        stamp_authorization: bool = True,
        allow_partial_amounts: bool = False,
    ):
        self.registry = registry
        self.totals = totals or TotalsCalculator()
        self.regions = regions or RegionService()
        self.customers = customers or CustomerService()
        self.stamp_authorization = stamp_authorization
        self.allow_partial_amounts = allow_partial_amounts

    def list_providers(self) -> list[str]:
        return self.registry.ids()

    # -------------------------------------------------------------------
    # Context
    # -------------------------------------------------------------------
    def build_context(self, cart, amount: int | None = None) -> PaymentContext:
        region = self.regions.retrieve(cart.region_id)

        shipping_address = None
        if cart.shipping_address_id:
            shipping_address = current_domain.repository_for(Address).get(cart.shipping_address_id).snapshot()

        customer_metadata = {}
        if cart.customer_id:
            customer_metadata = self.customers.retrieve(cart.customer_id).metadata_dict()

        return PaymentContext(
            cart_id=str(cart.id),
            amount=self.totals.total(cart) if amount is None else amount,
            currency_code=region.currency_code,
            email=cart.email,
            customer_id=str(cart.customer_id) if cart.customer_id else None,
            shipping_address=shipping_address,
            shipping_methods=[
                {
                    "id": str(m.id),
                    "shipping_option_id": str(m.shipping_option_id),
                    "name": m.name,
                    "price": m.price,
                    "data": m.data_dict(),
                }
                for m in cart.shipping_methods
            ],
            customer_metadata=customer_metadata,
            context=cart.context_dict(),
        )

    def _process_collected_data(self, cart, response) -> None:
        customer_data = response.collected_data.get("customer")
        if customer_data and cart.customer_id:
            self.customers.merge_metadata(cart.customer_id, customer_data)

    # -------------------------------------------------------------------
    # Sessions
    # -------------------------------------------------------------------
    def retrieve_session(self, cart, session_id) -> PaymentSession:
        session = next((s for s in cart.payment_sessions if str(s.id) == str(session_id)), None)
        if session is None:
            raise ObjectNotFoundError({"_entity": f"Payment Session with {session_id} was not found"})
        return session

    def _owns(self, cart, session) -> bool:
        return any(str(s.id) == str(session.id) for s in cart.payment_sessions)

    def create_session(self, provider_id: str, cart, amount: int | None = None) -> PaymentSession:
        if amount is not None and not self.allow_partial_amounts:
            raise ValidationError({"amount": ["Payment session amounts require partial payment sessions"]})

        provider = self.registry.get(provider_id)
        context = self.build_context(cart, amount)
        response = provider.create_payment(context)
        self._process_collected_data(cart, response)

        session = PaymentSession(
            provider_id=provider_id,
            status=PaymentSessionStatus.PENDING.value,
            amount=amount,
            currency_code=context.currency_code,
            is_selected=False,
        )
        session.set_data(response.session_data)
        cart.add_payment_sessions(session)

        logger.info("Payment session created", cart_id=str(cart.id), provider_id=provider_id)
        return session

    def set_payment_sessions(self, cart) -> None:
        """Bring the cart's sessions in line with its region's providers.

        Running it again without changes to the cart keeps every session id
        and status.
        """
        region = self.regions.retrieve(cart.region_id)
        provider_ids = region.provider_ids()

        for session in list(cart.payment_sessions):
            if session.provider_id not in provider_ids:
                self.delete_session(session, cart)
            elif session.currency_code != region.currency_code:
                self.refresh_session(session, cart)
            else:
                self.update_session(session, cart)

        for provider_id in provider_ids:
            if cart.find_payment_session(provider_id) is None:
                self.create_session(provider_id, cart)

        if len(provider_ids) == 1:
            cart.select_payment_session(provider_ids[0])

    def refresh_session(self, session, cart) -> PaymentSession:
        """Replace ``session`` with a freshly created one for the same provider."""
        provider = self.registry.get(session.provider_id)
        self._delete_at_provider(provider, session)

        was_selected = session.is_selected
        amount = session.amount if self.allow_partial_amounts else None
        cart.remove_payment_sessions(session)

        refreshed = self.create_session(session.provider_id, cart, amount=amount)
        if was_selected:
            cart.select_payment_session(refreshed.provider_id)
        return refreshed

    def update_session(self, session, cart) -> PaymentSession:
        provider = self.registry.get(session.provider_id)
        response = provider.update_payment(session.data_dict(), self.build_context(cart, session.amount))
        self._process_collected_data(cart, response)
        session.set_data(response.session_data)
        return session

    def update_session_data(self, session, data: dict) -> PaymentSession:
        provider = self.registry.get(session.provider_id)
        session.set_data(provider.update_payment_data(session.data_dict(), data))
        return session

    def authorize_payment(self, session, context: dict, cart) -> PaymentSession | None:
        if session is None or not self._owns(cart, session):
            return None

        provider = self.registry.get(session.provider_id)
        result = provider.authorize_payment(session, context)
        session.set_data(result.data)
        session.status = result.status.value
        if self.stamp_authorization and result.status == PaymentSessionStatus.AUTHORIZED:
            session.payment_authorized_at = datetime.now(UTC)

        logger.info(
            "Payment session authorized",
            cart_id=str(cart.id),
            provider_id=session.provider_id,
            status=session.status,
        )
        return session

    def delete_session(self, session, cart) -> PaymentSession | None:
        if not self._owns(cart, session):
            return None
        self._delete_at_provider(self.registry.get(session.provider_id), session)
        cart.remove_payment_sessions(session)
        return session

    def delete_session_new(self, session) -> None:
        """Delete the provider's payment for ``session`` without touching a cart."""
        self._delete_at_provider(self.registry.get(session.provider_id), session)

    def _delete_at_provider(self, provider, session) -> None:
        try:
            provider.delete_payment(session)
        except PaymentNotFound:
            logger.info(
                "Payment already gone at provider",
                provider_id=session.provider_id,
                session_id=str(session.id),
            )

    # -------------------------------------------------------------------
    # Payments
    # -------------------------------------------------------------------
    def retrieve_payment(self, payment_id) -> Payment:
        return current_domain.repository_for(Payment).get(payment_id)

    def list_payments(self, payment_ids=None, cart_id=None) -> list[Payment]:
        repo = current_domain.repository_for(Payment)
        if payment_ids is not None:
            return [repo.get(payment_id) for payment_id in payment_ids]
        return repo.for_cart(cart_id)

    def retrieve_refund(self, refund_id) -> Refund:
        return current_domain.repository_for(Refund).get(refund_id)

    def get_status(self, payment) -> PaymentSessionStatus:
        return self.registry.get(payment.provider_id).get_status(payment.data_dict())

    def create_payment(self, cart, session, amount: int, currency_code: str) -> Payment:
        def work(uow):
            data = self.registry.get(session.provider_id).get_payment_data(session)
            payment = Payment.create(
                provider_id=session.provider_id,
                amount=amount,
                currency_code=currency_code,
                cart_id=cart.id,
                data=data,
            )
            current_domain.repository_for(Payment).add(payment)
            logger.info("Payment created", cart_id=str(cart.id), payment_id=str(payment.id), amount=amount)
            return payment

        return run_transactionally(work)

    def capture_payment(self, payment_id) -> Payment:
        def work(uow):
            repo = current_domain.repository_for(Payment)
            payment = repo.get(payment_id)
            try:
                data = self.registry.get(payment.provider_id).capture_payment(payment)
            except PaymentAlreadyCaptured:
                logger.info("Payment was already captured at provider", payment_id=str(payment_id))
                data = None
            payment.mark_captured(data)
            repo.add(payment)
            return payment

        return run_transactionally(work)

    def cancel_payment(self, payment_id) -> Payment:
        def work(uow):
            repo = current_domain.repository_for(Payment)
            payment = repo.get(payment_id)
            payment.mark_canceled(self.registry.get(payment.provider_id).cancel_payment(payment))
            repo.add(payment)
            return payment

        return run_transactionally(work)

    def refund_payment(self, payment_ids, amount: int, reason: str, note: str | None = None) -> Refund:
        """Refund ``amount`` across captured payments, draining them in order."""

        def work(uow):
            repo = current_domain.repository_for(Payment)
            payments = [repo.get(payment_id) for payment_id in payment_ids]
            captured = [p for p in payments if p.captured_at]

            refundable = sum(p.refundable() for p in captured)
            if refundable < amount:
                raise InvalidOperationError("Refund amount is greater that the refundable amount")

            balance = amount
            used = []
            for payment in captured:
                if balance <= 0:
                    break
                if payment.refundable() <= 0:
                    continue
                portion = min(payment.refundable(), balance)
                payment.set_data(self.registry.get(payment.provider_id).refund_payment(payment, portion))
                payment.record_refund(portion)
                repo.add(payment)
                balance -= portion
                used.append(str(payment.id))

            refund = Refund.create(amount=amount, reason=reason, note=note, payment_ids=used)
            current_domain.repository_for(Refund).add(refund)
            logger.info("Refund created", refund_id=str(refund.id), amount=amount, payment_ids=used)
            return refund

        return run_transactionally(work)

    def refund_from_payment(self, payment_id, amount: int, reason: str, note: str | None = None) -> Refund:
        def work(uow):
            repo = current_domain.repository_for(Payment)
            payment = repo.get(payment_id)
            if payment.refundable() < amount:
                raise InvalidOperationError("Refund amount is greater that the refundable amount")

            payment.set_data(self.registry.get(payment.provider_id).refund_payment(payment, amount))
            payment.record_refund(amount)
            repo.add(payment)

            refund = Refund.create(amount=amount, reason=reason, note=note, payment_ids=[payment.id])
            current_domain.repository_for(Refund).add(refund)
            return refund

        return run_transactionally(work)
