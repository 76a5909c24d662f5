import json
import importlib
from decimal import Decimal

from conftest import audit_actions


def load_admin(store):
    from lambdas.admin import update_config as cfg_mod
    importlib.reload(cfg_mod)
    cfg_mod._STORE = store
    return cfg_mod


def call(cfg_mod, body, email=None):
    event = {"httpMethod": "POST", "body": json.dumps(body)}
    if email:
        event["requestContext"] = {"authorizer": {"claims": {"email": email}}}
    res = cfg_mod.lambda_handler(event, None)
    return res["statusCode"], json.loads(res["body"])


def test_update_config_happy_path(seeded_store):
    cfg_mod = load_admin(seeded_store)

    status, body = call(cfg_mod, {"fixedPayoutAmount": 1000, "payoutPercentage": 0.6},
                        email="ops@homeradio.example")

    assert status == 200
    assert body["ok"] is True
    assert body["config"]["fixedPayoutAmount"] == 1000
    assert body["config"]["payoutPercentage"] == 0.6

    config = seeded_store.get_config()
    assert config.fixedPayoutAmount == Decimal("1000")
    assert config.payoutPercentage == Decimal("0.6")
    assert config.currentJackpot == Decimal("5000")
    assert "CONFIG_UPDATED" in audit_actions(seeded_store)


def test_current_jackpot_is_not_editable(seeded_store):
    cfg_mod = load_admin(seeded_store)
    status, body = call(cfg_mod, {"currentJackpot": 1})
    assert status == 400
    assert body["error"] == "No valid fields provided"
    assert seeded_store.get_config().currentJackpot == Decimal("5000")


def test_percentage_out_of_range_is_rejected(seeded_store):
    cfg_mod = load_admin(seeded_store)
    status, body = call(cfg_mod, {"payoutPercentage": 1.5})
    assert status == 400
    assert "payoutPercentage" in body["error"]
    assert seeded_store.get_config().payoutPercentage == Decimal("0.7")


def test_min_stake_above_existing_max_is_rejected(seeded_store):
    cfg_mod = load_admin(seeded_store)
    status, body = call(cfg_mod, {"minStake": 20})
    assert status == 400
    assert body["error"] == "minStake cannot exceed maxStake"


def test_non_numeric_value_is_rejected(seeded_store):
    cfg_mod = load_admin(seeded_store)
    status, _ = call(cfg_mod, {"drawIntervalHours": "soon"})
    assert status == 400


def test_non_finite_values_are_rejected(seeded_store):
    cfg_mod = load_admin(seeded_store)
    for body in ({"payoutPercentage": float("nan")}, {"maxStake": float("inf")}):
        status, resp = call(cfg_mod, body)
        assert status == 400
        assert resp["error"] == "Config values must be finite numbers"
    config = seeded_store.get_config()
    assert config.payoutPercentage == Decimal("0.7")
    assert config.maxStake == Decimal("10")


def test_missing_or_malformed_body(seeded_store):
    cfg_mod = load_admin(seeded_store)
    assert cfg_mod.lambda_handler({"httpMethod": "POST"}, None)["statusCode"] == 400
    assert cfg_mod.lambda_handler({"httpMethod": "POST", "body": "{not json"}, None)["statusCode"] == 400


def test_missing_config_is_404(store):
    cfg_mod = load_admin(store)
    status, _ = call(cfg_mod, {"minStake": 2})
    assert status == 404
