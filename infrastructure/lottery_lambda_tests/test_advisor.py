from decimal import Decimal

from conftest import FakeBedrock
from lambdas.lottery.advisor import FALLBACK_ANNOUNCEMENT, MOCK_ANNOUNCEMENT, LotteryAdvisor
from lambdas.lottery.models import Ticket


def tickets():
    return [Ticket(ticket_id=f"t-{i}", phone="233241111111", stake=Decimal("5"), timestamp=i) for i in range(3)]


def test_mock_mode_never_calls_out():
    advisor = LotteryAdvisor()
    assert advisor.configured is False
    assert advisor.generate_announcement("CASH-1", Decimal("5000"), 1, Decimal("3500")) == MOCK_ANNOUNCEMENT
    assert advisor.detect_fraud(tickets()) is False


def test_announcement_uses_model_text():
    client = FakeBedrock(announcement="  Listeners, we have winners!  ")
    advisor = LotteryAdvisor(model_id="test-model", client=client)

    script = advisor.generate_announcement("CASH-1", Decimal("5010"), 2, Decimal("1753.50"))

    assert script == "Listeners, we have winners!"
    call = client.calls[0]
    assert call["modelId"] == "test-model"
    prompt = call["messages"][0]["content"][0]["text"]
    assert "CASH-1" in prompt
    assert "GHS 5,010.00" in prompt
    assert "GHS 1,753.50" in prompt


def test_empty_announcement_falls_back():
    advisor = LotteryAdvisor(model_id="test-model", client=FakeBedrock(announcement=""))
    assert advisor.generate_announcement("CASH-1", 0, 0, 0) == FALLBACK_ANNOUNCEMENT


def test_fraud_verdict_is_parsed_loosely():
    advisor = LotteryAdvisor(model_id="test-model", client=FakeBedrock(fraud=" TRUE\n"))
    assert advisor.detect_fraud(tickets()) is True


def test_unexpected_fraud_reply_counts_as_clean():
    advisor = LotteryAdvisor(model_id="test-model", client=FakeBedrock(fraud="maybe"))
    assert advisor.detect_fraud(tickets()) is False


def test_errors_fail_open():
    advisor = LotteryAdvisor(model_id="test-model", client=FakeBedrock(error=RuntimeError("throttled")))
    assert advisor.detect_fraud(tickets()) is False
    assert advisor.generate_announcement("CASH-1", 1, 1, 1) == FALLBACK_ANNOUNCEMENT


def test_empty_pool_is_not_sent_for_screening():
    client = FakeBedrock(fraud="true")
    advisor = LotteryAdvisor(model_id="test-model", client=client)
    assert advisor.detect_fraud([]) is False
    assert client.calls == []
