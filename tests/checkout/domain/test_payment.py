"""Tests for the Payment and Refund aggregates."""

import pytest
from protean.exceptions import ValidationError

from checkout.payment.payment import Payment, Refund


def _make_payment(amount=2000):
    return Payment.create(provider_id="fake", amount=amount, currency_code="USD", cart_id="cart-001")


class TestPayment:
    def test_create_defaults(self):
        payment = _make_payment()
        assert payment.currency_code == "usd"
        assert payment.amount_refunded == 0
        assert payment.refundable() == 2000
        assert payment.data_dict() == {}

    def test_capture_stamps_time_and_data(self):
        payment = _make_payment()
        payment.mark_captured({"status": "succeeded"})
        assert payment.captured_at is not None
        assert payment.data_dict() == {"status": "succeeded"}

    def test_capture_without_data_keeps_existing(self):
        payment = Payment.create(provider_id="fake", amount=100, currency_code="usd", data={"id": "pay_1"})
        payment.mark_captured()
        assert payment.data_dict() == {"id": "pay_1"}

    def test_cancel_stamps_time(self):
        payment = _make_payment()
        payment.mark_canceled()
        assert payment.canceled_at is not None

    def test_refunds_accumulate(self):
        payment = _make_payment()
        payment.record_refund(500)
        payment.record_refund(700)
        assert payment.amount_refunded == 1200
        assert payment.refundable() == 800

    def test_refunds_cannot_exceed_amount(self):
        payment = _make_payment(amount=1000)
        payment.record_refund(1000)
        with pytest.raises(ValidationError) as exc_info:
            payment.record_refund(1)
        assert "amount_refunded" in exc_info.value.messages


class TestRefund:
    def test_create_refund(self):
        refund = Refund.create(amount=500, reason="return", payment_ids=["pay-1", "pay-2"], note="Damaged")
        assert refund.payment_id_list() == ["pay-1", "pay-2"]
        assert refund.note == "Damaged"

    def test_unknown_reason_is_rejected(self):
        with pytest.raises(ValidationError):
            Refund.create(amount=500, reason="goodwill", payment_ids=["pay-1"])
