import json
import logging
from decimal import Decimal

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
    Return the control-center numbers for the operator dashboard.
    URL pattern: GET /admin/metrics
    Metrics returned:
      current_jackpot     – pool carried into the open window
      next_draw_time      – epoch ms of the next scheduled draw
      open_tickets        – paid tickets waiting for the next draw
      open_stakes         – sum of their stakes
      draws_completed     – number of settled draws
      total_stakes        – stakes across all settled draws
      total_paid_out      – prize money confirmed as disbursed
      revenue_estimate    – house share of settled stakes at the current payout percentage
      failed_payouts      – winners still awaiting a confirmed disbursement
    """
    try:
        store = _get_store()
        config = store.get_config()
        if config is None:
            return {
                'statusCode': 404,
                'body': json.dumps({'error': 'Config not found'})
            }

        # Scans are fine at radio-promo volume; pre-aggregate if the ticket table grows
        open_tickets = store.list_open_tickets()
        draws = store.list_draws()

        total_stakes = sum((d.totalStakes for d in draws), Decimal('0'))
        total_paid = sum(
            (d.prizePerWinner * (len(d.winners) - len(d.failedPayouts)) for d in draws), Decimal('0')
        )
        failed = [t for d in draws for t in d.failedPayouts]

        metrics = {
            'current_jackpot': config.currentJackpot,
            'next_draw_time': config.nextDrawTime,
            'open_tickets': len(open_tickets),
            'open_stakes': sum((t.stake for t in open_tickets), Decimal('0')),
            'draws_completed': len(draws),
            'total_stakes': total_stakes,
            'total_paid_out': total_paid,
            'revenue_estimate': total_stakes * (1 - config.payoutPercentage),
            'failed_payouts': len(failed),
        }

        return {
            'statusCode': 200,
            'body': json.dumps(decimal_to_native(metrics))
        }

    except Exception as e:
        logger.exception(f"Error computing metrics: {str(e)}")
        return {
            'statusCode': 500,
            'body': json.dumps({'error': 'Internal server error'})
        }
