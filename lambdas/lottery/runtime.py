"""Wiring of engines from environment settings, shared by the Lambda handlers."""

import boto3

from lambdas.lottery.advisor import LotteryAdvisor
from lambdas.lottery.draws import DrawEngine, lambda_notifier
from lambdas.lottery.payments import SimulatedMoMoGateway
from lambdas.lottery.settings import Settings
from lambdas.lottery.store import LedgerStore
from lambdas.lottery.ussd import SessionEngine


def build_store(settings: Settings) -> LedgerStore:
    return LedgerStore(tables=settings.tables, region=settings.region)


def build_gateway(settings: Settings) -> SimulatedMoMoGateway:
    return SimulatedMoMoGateway(latency_seconds=settings.payment_latency_seconds)


def build_session_engine(settings: Settings) -> SessionEngine:
    return SessionEngine(build_store(settings), build_gateway(settings), settings=settings)


def build_draw_engine(settings: Settings) -> DrawEngine:
    notify = None
    if settings.notify_lambda_name:
        lambda_client = boto3.client("lambda", region_name=settings.region)
        notify = lambda_notifier(lambda_client, settings.notify_lambda_name)
    return DrawEngine(
        build_store(settings),
        build_gateway(settings),
        LotteryAdvisor(model_id=settings.advisor_model_id, region=settings.region),
        settings=settings,
        notify=notify,
    )
