import sys
from pathlib import Path

# ---- Make repo root importable (tests live two dirs below repo root) ----
repo_root = Path(__file__).resolve().parents[2]
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))

import os
import threading
from decimal import Decimal

import pytest
from moto import mock_aws
import boto3

from lambdas.lottery.models import SystemConfig, Ticket, TransactionStatus
from lambdas.lottery.payments import PaymentResult
from lambdas.lottery.settings import TableNames
from lambdas.lottery.store import LedgerStore

AWS_REGION = os.environ.get("AWS_REGION", "us-east-2")

NOW = 1_760_000_000_000  # fixed epoch ms used as "now" across tests


@pytest.fixture(scope="function")
def aws_env(monkeypatch):
    monkeypatch.setenv("AWS_DEFAULT_REGION", AWS_REGION)
    monkeypatch.setenv("AWS_REGION", AWS_REGION)
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    yield


@pytest.fixture(scope="function")
def moto_aws(aws_env):
    with mock_aws():
        yield


def create_table_dynamodb(dynamodb_client, name, hash_key, range_key=None):
    key_schema=[{"AttributeName": hash_key, "KeyType": "HASH"}]
    attr_defs=[{"AttributeName": hash_key, "AttributeType": "S"}]
    if range_key:
        key_schema.append({"AttributeName": range_key, "KeyType": "RANGE"})
        attr_defs.append({"AttributeName": range_key, "AttributeType": "S"})
    return dynamodb_client.create_table(
        TableName=name,
        KeySchema=key_schema,
        AttributeDefinitions=attr_defs,
        BillingMode="PAY_PER_REQUEST",
    )


TABLE_KEYS = {
    "config": "config_id",
    "tickets": "ticket_id",
    "draws": "draw_id",
    "sessions": "session_id",
    "payments": "payment_ref",
    "audit": "log_id",
}


@pytest.fixture()
def ddb_client(moto_aws):
    return boto3.client("dynamodb", region_name=AWS_REGION)


@pytest.fixture()
def lottery_tables(ddb_client):
    tables = TableNames()
    for attr, key in TABLE_KEYS.items():
        create_table_dynamodb(ddb_client, getattr(tables, attr), key)
    return tables


@pytest.fixture()
def store(ddb_client, lottery_tables):
    return LedgerStore(client=ddb_client, tables=lottery_tables)


@pytest.fixture()
def seeded_store(store):
    store.init_config(SystemConfig(
        payoutPercentage=Decimal("0.7"),
        fixedPayoutAmount=Decimal("0"),
        minStake=Decimal("1"),
        maxStake=Decimal("10"),
        drawIntervalHours=Decimal("6"),
        nextDrawTime=NOW + 60_000,
        currentJackpot=Decimal("5000"),
    ))
    return store


def add_ticket(store, ticket_id, stake="10", phone="233241111111", draw_id="current",
               status=TransactionStatus.SUCCESS):
    ticket = Ticket(
        ticket_id=ticket_id,
        phone=phone,
        stake=Decimal(stake),
        drawId=draw_id,
        timestamp=NOW - 1000,
        status=status,
        provider="MTN",
    )
    store.put_ticket(ticket)
    return ticket


def audit_actions(store):
    items = store.client.scan(TableName=store.tables.audit)["Items"]
    return [i["action"]["S"] for i in items]


class FakeGateway:
    """Records every MoMo call; outcomes are configurable per test."""

    def __init__(self, collect_ok=True, disburse_ok=True, collect_error=None, disburse_error=None,
                 on_disburse=None):
        self.collect_ok = collect_ok
        self.disburse_ok = disburse_ok
        self.collect_error = collect_error
        self.disburse_error = disburse_error
        self.on_disburse = on_disburse
        self.collections = []
        self.disbursements = []
        self._lock = threading.Lock()

    def request_payment(self, phone, amount, provider):
        with self._lock:
            self.collections.append((phone, amount, provider))
        if self.collect_error:
            raise self.collect_error
        return PaymentResult(success=self.collect_ok, transaction_id="TX-TEST00001")

    def disburse_winnings(self, phone, amount):
        with self._lock:
            self.disbursements.append((phone, amount))
        if self.on_disburse:
            self.on_disburse(phone, amount)
        if self.disburse_error:
            raise self.disburse_error
        if callable(self.disburse_ok):
            return self.disburse_ok(phone)
        return self.disburse_ok


class FixedRandom:
    """random()-compatible source that always returns the same value."""

    def __init__(self, value):
        self.value = value

    def random(self):
        return self.value


class FakeBedrock:
    def __init__(self, announcement="Big winners today!", fraud="false", error=None):
        self.announcement = announcement
        self.fraud = fraud
        self.error = error
        self.calls = []

    def converse(self, **kwargs):
        self.calls.append(kwargs)
        if self.error:
            raise self.error
        prompt = kwargs["messages"][0]["content"][0]["text"]
        text = self.fraud if "suspicious patterns" in prompt else self.announcement
        return {"output": {"message": {"role": "assistant", "content": [{"text": text}]}}}


class Spy:
    def __init__(self):
        self.calls = []
    def __call__(self, *a, **kw):
        self.calls.append({"args": a, "kwargs": kw})
        return {"StatusCode": 202}


@pytest.fixture()
def spy():
    return Spy()
