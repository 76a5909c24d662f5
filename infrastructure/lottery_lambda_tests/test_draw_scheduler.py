import importlib

from conftest import NOW, FakeGateway, FixedRandom, add_ticket
from lambdas.lottery.advisor import LotteryAdvisor
from lambdas.lottery.draws import DrawEngine
from lambdas.lottery.settings import Settings


def load_scheduler(store, now):
    from lambdas.draw import draw as draw_mod
    importlib.reload(draw_mod)
    draw_mod._ENGINE = DrawEngine(store, FakeGateway(), LotteryAdvisor(), rng=FixedRandom(0.0),
                                  clock=lambda: now, settings=Settings())
    return draw_mod


def test_tick_before_next_draw_time_does_nothing(seeded_store):
    draw_mod = load_scheduler(seeded_store, NOW)
    assert draw_mod.handler({"source": "aws.events"}, None) == {"executed": False}


def test_tick_after_next_draw_time_settles(seeded_store):
    add_ticket(seeded_store, "t-1")
    draw_mod = load_scheduler(seeded_store, NOW + 60_000)

    res = draw_mod.handler({"source": "aws.events"}, None)

    assert res["executed"] is True
    assert res["winners"] == 1
    assert res["failed_payouts"] == []
    assert res["draw_id"] == seeded_store.get_config().lastDrawId
