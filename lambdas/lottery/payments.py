"""Mobile Money gateway adapter.

The simulated gateway stands in for the MoMo collection prompt (USSD push)
and the payout API. Engines only depend on ``request_payment`` and
``disburse_winnings``.
"""

import logging
import random
import string
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass
from decimal import Decimal

from lambdas.lottery.errors import AdapterFailure

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class PaymentResult:
    success: bool
    transaction_id: str | None = None


class SimulatedMoMoGateway:
    """Simulated MoMo gateway: 95% of collections succeed, payouts always do."""

    def __init__(self, latency_seconds: float = 0.0, success_rate: float = 0.95, rng=None, sleep=time.sleep):
        self.latency_seconds = latency_seconds
        self.success_rate = success_rate
        self._rng = rng or random.Random()
        self._sleep = sleep

    def _transaction_id(self) -> str:
        alphabet = string.ascii_uppercase + string.digits
        return "TX-" + "".join(self._rng.choice(alphabet) for _ in range(9))

    def request_payment(self, phone: str, amount: Decimal, provider: str) -> PaymentResult:
        log.info("[MoMo] Requesting GHS %s from %s via %s", amount, phone, provider)
        if self.latency_seconds:
            self._sleep(self.latency_seconds)
        success = self._rng.random() < self.success_rate
        return PaymentResult(success=success, transaction_id=self._transaction_id())

    def disburse_winnings(self, phone: str, amount: Decimal) -> bool:
        log.info("[MoMo] DISBURSING GHS %s to %s", amount, phone)
        if self.latency_seconds:
            self._sleep(self.latency_seconds)
        return True


def call_with_timeout(fn, timeout: float | None, *args, **kwargs):
    """Run an adapter call and wait at most ``timeout`` seconds for it.

    Raises concurrent.futures.TimeoutError when the call does not settle in time
    (the worker is not cancelled; a late result is discarded). Any error raised
    by the adapter itself comes back as AdapterFailure.
    """
    pool = ThreadPoolExecutor(max_workers=1) if timeout else None
    try:
        if pool is None:
            return fn(*args, **kwargs)
        return pool.submit(fn, *args, **kwargs).result(timeout=timeout)
    except FutureTimeout:
        raise
    except Exception as e:
        raise AdapterFailure(f"{getattr(fn, '__name__', 'adapter call')} failed: {e}") from e
    finally:
        if pool is not None:
            pool.shutdown(wait=False)
