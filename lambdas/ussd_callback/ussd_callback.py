import logging

from lambdas.lottery.runtime import build_session_engine
from lambdas.lottery.settings import Settings
from lambdas.lottery.ussd import BUSY_TEXT, handle_event, parse_request, render_response

# Set up logging
logger = logging.getLogger()
logger.setLevel(logging.INFO)

# ----------------- Engine Cache -----------------
_SETTINGS = None
_ENGINE = None


def _get_engine():
    """Build the session engine once per container."""
    global _SETTINGS, _ENGINE
    if _ENGINE is None:
        _SETTINGS = Settings.from_env()
        _ENGINE = build_session_engine(_SETTINGS)
    return _ENGINE, _SETTINGS


def lambda_handler(event, context):
    """
    USSD callback - one call per keystroke from the USSD aggregator.
    Expected request (query string, JSON or form body; field names vary by aggregator):
    {
        "sessionID": "abc123",
        "msisdn": "233241234567",
        "userData": "*789#*1*1",
        "network": "MTN"
    }
    Always answers 200 with {"continueSession": bool, "message": str}.
    """
    if event.get("httpMethod", "") not in ("POST", "GET"):
        return {"statusCode": 405, "body": "Method Not Allowed"}

    try:
        engine, settings = _get_engine()
    except Exception:
        logger.exception("Failed to initialise USSD engine")
        return render_response(BUSY_TEXT, parse_request(event, Settings()))

    return handle_event(event, engine, settings)
