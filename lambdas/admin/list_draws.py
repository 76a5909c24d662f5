import json
import logging

from lambdas.lottery.models import decimal_to_native
from lambdas.lottery.runtime import build_store
from lambdas.lottery.settings import Settings

logger = logging.getLogger()
logger.setLevel(logging.INFO)

_STORE = None


def _get_store():
    global _STORE
    if _STORE is None:
        _STORE = build_store(Settings.from_env())
    return _STORE


def lambda_handler(event, context):
    """
    Draw history, newest first.
    URL pattern: GET /admin/draws?limit=20&failed_only=true
    """
    params = event.get("queryStringParameters") or {}
    try:
        limit = int(params.get("limit", 20))
    except ValueError:
        return {"statusCode": 400, "body": json.dumps({"error": "limit must be an integer"})}
    failed_only = str(params.get("failed_only", "")).lower() == "true"

    try:
        draws = _get_store().list_draws()
        if failed_only:
            draws = [d for d in draws if d.failedPayouts]
        items = [decimal_to_native(d.to_item()) for d in draws[:max(limit, 0)]]
        return {"statusCode": 200, "body": json.dumps({"draws": items})}
    except Exception as e:
        logger.exception(f"Error listing draws: {str(e)}")
        return {"statusCode": 500, "body": json.dumps({"error": "Internal server error"})}
