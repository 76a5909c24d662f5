import json
from urllib.parse import urlencode

import pytest

from lambdas.lottery.settings import Settings
from lambdas.lottery.ussd import (
    Step,
    normalize_text,
    parse_request,
    parse_steps,
    render_response,
    transition,
    walk,
)


def test_shortcode_prefix_is_dropped_before_tokenizing():
    assert parse_steps("*928*301#*1*1") == ["1", "1"]
    assert parse_steps("*928*301#*1*1") == parse_steps("1*1")


def test_bare_shortcode_has_no_keystrokes():
    assert parse_steps("*928*301#") == []
    assert parse_steps("") == []
    assert parse_steps(None) == []


def test_full_width_glyphs_and_whitespace_are_normalized():
    assert normalize_text(" ＊789＃＊1 ＊ 2 ") == "*1*2"
    assert parse_steps("＊789＃1＊1") == ["1", "1"]


def test_empty_tokens_are_discarded():
    assert parse_steps("1**1*") == ["1", "1"]


def test_only_text_after_final_hash_counts():
    assert parse_steps("*789#1#2*1") == ["2", "1"]


@pytest.mark.parametrize("step", [Step.WELCOME, Step.CONFIRM])
def test_two_cancels_at_either_step(step):
    assert transition(step, "2") == Step.CANCELLED


def test_unknown_tokens_are_invalid():
    assert transition(Step.WELCOME, "9") == Step.INVALID
    assert transition(Step.CONFIRM, "9") == Step.INVALID_CONFIRM


def test_walk_never_skips_confirm():
    assert walk(parse_steps("*789#1*1")) == [Step.WELCOME, Step.CONFIRM, Step.PROCESSING_PAYMENT]
    assert walk(["1"]) == [Step.WELCOME, Step.CONFIRM]
    assert walk([]) == [Step.WELCOME]


def test_walk_stops_at_first_terminal_step():
    assert walk(["2", "1", "1"]) == [Step.WELCOME, Step.CANCELLED]
    assert walk(["1", "1", "1", "1"])[-1] == Step.PROCESSING_PAYMENT


def test_parse_request_json_aliases():
    event = {
        "httpMethod": "POST",
        "headers": {"Content-Type": "application/json"},
        "body": json.dumps({"SESSIONID": "s-1", "MSISDN": "233241234567", "USERDATA": "*789#*1"}),
    }
    req = parse_request(event, Settings())
    assert req.session_id == "s-1"
    assert req.phone == "233241234567"
    assert req.user_id == "233241234567"
    assert req.steps == ["1"]


def test_parse_request_form_body_and_first_non_empty_alias():
    body = urlencode({"sessionID": "", "session_id": "s-2", "phoneNumber": "0241234567",
                      "text": "1*1", "userId": "u-9", "network": "vodafone"})
    event = {
        "httpMethod": "POST",
        "headers": {"content-type": "application/x-www-form-urlencoded"},
        "body": body,
    }
    req = parse_request(event, Settings())
    assert req.session_id == "s-2"
    assert req.user_id == "u-9"
    assert req.network == "vodafone"
    assert req.steps == ["1", "1"]


def test_parse_request_merges_query_and_body():
    event = {
        "httpMethod": "GET",
        "queryStringParameters": {"sessionId": "q-1", "msisdn": "233200000000", "text": "1"},
        "body": None,
    }
    req = parse_request(event, Settings())
    assert (req.session_id, req.phone, req.steps) == ("q-1", "233200000000", ["1"])


def test_parse_request_unknown_content_type_falls_back_to_form():
    event = {"httpMethod": "POST", "headers": {}, "body": "sessionId=f-1&msisdn=233&input=2"}
    req = parse_request(event, Settings())
    assert req.session_id == "f-1"
    assert req.steps == ["2"]


def test_custom_alias_list():
    settings = Settings(session_id_fields=["sid"])
    req = parse_request({"queryStringParameters": {"sid": "x", "sessionID": "ignored"}}, settings)
    assert req.session_id == "x"


def test_render_response_strips_con_and_end():
    req = parse_request({"queryStringParameters": {"sessionID": "s", "msisdn": "233"}}, Settings())
    cont = json.loads(render_response("CON Pick one", req)["body"])
    end = render_response("END Bye", req)
    assert cont["continueSession"] is True
    assert cont["message"] == "Pick one"
    assert end["statusCode"] == 200
    body = json.loads(end["body"])
    assert body["continueSession"] is False
    assert body["message"] == "Bye"
    assert body["UserID"] == body["userID"] == "233"
