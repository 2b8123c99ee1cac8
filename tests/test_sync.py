"""Tests for the blocking facade."""

import concurrent.futures
import time

import pytest

from bankpay.engine.orchestrator import OnlinePayment
from bankpay.engine.store import InMemoryTransactionStore
from bankpay.exceptions import DuplicateTrackingNumberError
from bankpay.gateways.registry import GatewayRegistry
from bankpay.gateways.virtual import VirtualGateway
from bankpay.models.enums import PaymentState
from bankpay.models.payment import InvoiceBuilder, RefundInvoice
from bankpay.sync import BlockingOnlinePayment

from tests.helpers import CALLBACK_URL, VIRTUAL_ACCOUNT


def _blocking(latency_ms=0, timeout=5):
    registry = GatewayRegistry()
    gateway = VirtualGateway(page_url="https://bank.test/virtual", failure_rate=0.0, latency_ms=latency_ms)
    registry.register(gateway, (VIRTUAL_ACCOUNT,))
    return BlockingOnlinePayment(OnlinePayment(InMemoryTransactionStore(), registry), timeout=timeout)


@pytest.fixture
def blocking():
    payment = _blocking()
    with payment:
        yield payment


def _invoice(tracking_number=7):
    return (
        InvoiceBuilder()
        .set_tracking_number(tracking_number)
        .set_amount(900)
        .set_callback_url(CALLBACK_URL)
        .use_gateway("virtual")
        .build()
    )


def test_full_lifecycle(blocking):
    """Request, verify and refund run to completion from plain synchronous code."""
    requested = blocking.request(_invoice())
    assert blocking.get_state(7) == PaymentState.PENDING

    verified = blocking.verify(
        7, {"Result": "0", "RefId": requested.reference_id, "TransactionCode": "VTX-7"}
    )
    assert verified.succeeded
    assert verified.transaction_code == "VTX-7"

    refunded = blocking.refund(RefundInvoice(7))
    assert refunded.succeeded
    assert blocking.get_state(7) == PaymentState.REFUNDED


def test_errors_propagate_to_the_caller(blocking):
    """Library exceptions surface unchanged in the calling thread."""
    blocking.request(_invoice())

    with pytest.raises(DuplicateTrackingNumberError):
        blocking.request(_invoice())


def test_timeout_aborts_the_call():
    """A call that times out is cancelled and leaves nothing stored."""
    payment = _blocking(latency_ms=600, timeout=0.05)

    with payment:
        with pytest.raises(concurrent.futures.TimeoutError):
            payment.request(_invoice())

        time.sleep(1.2)
        assert payment.get_state(7) == PaymentState.CREATED


def test_closed_facade_refuses_calls(blocking):
    """Calls after close() fail instead of hanging."""
    blocking.close()
    blocking.close()

    with pytest.raises(RuntimeError, match="closed"):
        blocking.get_state(7)
