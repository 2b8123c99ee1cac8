"""
Blocking facade over OnlinePayment for callers without an event loop.

Each call is submitted to a private event loop running on a dedicated
thread and the calling thread waits for the result. The wrapped
OnlinePayment (its store locks and HTTP client included) becomes bound
to that private loop, so once wrapped it must only be used through the
facade. Calling the facade from a coroutine running on the private
loop itself blocks that loop forever; async code should await
OnlinePayment directly.
"""

import asyncio
import concurrent.futures
import threading
from typing import Any, Coroutine, Optional, TypeVar

from bankpay.engine.orchestrator import OnlinePayment
from bankpay.gateways.base import CallbackParams
from bankpay.models.enums import PaymentState
from bankpay.models.payment import (
    Invoice,
    PaymentRefundResult,
    PaymentRequestResult,
    PaymentVerifyResult,
    RefundInvoice,
)

T = TypeVar("T")


class BlockingOnlinePayment:
    def __init__(self, payment: OnlinePayment, timeout: Optional[float] = None):
        self.payment = payment
        self._timeout = timeout
        self._loop = asyncio.new_event_loop()
        self._thread = threading.Thread(target=self._loop.run_forever, name="bankpay-sync", daemon=True)
        self._thread.start()

    def _run(self, coro: Coroutine[Any, Any, T]) -> T:
        if self._loop.is_closed():
            coro.close()
            raise RuntimeError("BlockingOnlinePayment is closed")
        future = asyncio.run_coroutine_threadsafe(coro, self._loop)
        try:
            return future.result(self._timeout)
        except concurrent.futures.TimeoutError:
            # Cancel the in-flight call so it records nothing.
            future.cancel()
            raise

    def request(self, invoice: Invoice) -> PaymentRequestResult:
        return self._run(self.payment.request(invoice))

    def verify(self, tracking_number: int, callback_params: CallbackParams) -> PaymentVerifyResult:
        return self._run(self.payment.verify(tracking_number, callback_params))

    def refund(self, invoice: RefundInvoice) -> PaymentRefundResult:
        return self._run(self.payment.refund(invoice))

    def get_state(self, tracking_number: int) -> PaymentState:
        return self._run(self.payment.get_state(tracking_number))

    def close(self) -> None:
        if self._loop.is_closed():
            return
        self._loop.call_soon_threadsafe(self._loop.stop)
        self._thread.join()
        self._loop.close()

    def __enter__(self) -> "BlockingOnlinePayment":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
