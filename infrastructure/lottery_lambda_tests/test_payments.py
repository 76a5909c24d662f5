import threading
from concurrent.futures import TimeoutError as FutureTimeout
from decimal import Decimal

import pytest

from conftest import FixedRandom
from lambdas.lottery.errors import AdapterFailure, ErrorCode
from lambdas.lottery.payments import SimulatedMoMoGateway, call_with_timeout


def test_simulated_collection_follows_success_rate():
    ok = SimulatedMoMoGateway(rng=_SeqRandom(0.10)).request_payment("233241234567", Decimal("5"), "MTN")
    bad = SimulatedMoMoGateway(rng=_SeqRandom(0.96)).request_payment("233241234567", Decimal("5"), "MTN")
    assert ok.success is True
    assert bad.success is False
    assert ok.transaction_id.startswith("TX-")
    assert len(ok.transaction_id) == 12


def test_simulated_payout_always_succeeds_and_waits():
    slept = []
    gateway = SimulatedMoMoGateway(latency_seconds=2.0, sleep=slept.append)
    assert gateway.disburse_winnings("233241234567", Decimal("100")) is True
    assert slept == [2.0]


def test_call_with_timeout_returns_result():
    assert call_with_timeout(lambda a, b: a + b, 1, 2, b=3) == 5
    assert call_with_timeout(lambda: "inline", None) == "inline"


def test_call_with_timeout_wraps_adapter_errors():
    def boom():
        raise ConnectionError("gateway reset")

    with pytest.raises(AdapterFailure) as exc:
        call_with_timeout(boom, 1)
    assert exc.value.code == ErrorCode.ADAPTER_FAILURE
    assert "gateway reset" in exc.value.message


def test_call_with_timeout_gives_up_on_slow_calls():
    release = threading.Event()
    with pytest.raises(FutureTimeout):
        call_with_timeout(release.wait, 0.05, 5)
    release.set()


class _SeqRandom(FixedRandom):
    """FixedRandom that can also pick characters for transaction ids."""

    def choice(self, seq):
        return seq[0]
