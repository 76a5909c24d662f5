import json
import logging

from lambdas.lottery.runtime import build_draw_engine
from lambdas.lottery.settings import Settings

logger = logging.getLogger()
logger.setLevel(logging.INFO)

_ENGINE = None


def _get_engine():
    global _ENGINE
    if _ENGINE is None:
        _ENGINE = build_draw_engine(Settings.from_env())
    return _ENGINE


def lambda_handler(event, context):
    """
    Execute the draw now, regardless of nextDrawTime.
    URL pattern: POST /admin/draws/execute
    No parameters. Shares the draw lock with the scheduled path.
    """
    try:
        result = _get_engine().execute_draw()
        if result is None:
            return {
                'statusCode': 200,
                'body': json.dumps({
                    'ok': False,
                    'skipped': True,
                    'message': 'A draw is already in progress'
                })
            }

        return {
            'statusCode': 200,
            'body': json.dumps({
                'ok': True,
                'draw': result.to_dict(),
                'failed_payouts': result.failed_payouts
            }, default=str)
        }

    except Exception as e:
        logger.exception(f"Error executing draw: {str(e)}")
        return {
            'statusCode': 500,
            'body': json.dumps({'error': 'Internal server error'})
        }
