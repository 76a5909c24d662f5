import json
import logging
from decimal import Decimal, InvalidOperation

from lambdas.lottery.errors import ValidationError
from lambdas.lottery.models import decimal_to_native
from lambdas.lottery.runtime import build_store
from lambdas.lottery.settings import Settings

logger = logging.getLogger()
logger.setLevel(logging.INFO)

EDITABLE_FIELDS = [
    'payoutPercentage',
    'fixedPayoutAmount',
    'minStake',
    'maxStake',
    'drawIntervalHours',
    'nextDrawTime',
]

_STORE = None


def _get_store():
    global _STORE
    if _STORE is None:
        _STORE = build_store(Settings.from_env())
    return _STORE


def _validate(fields, current):
    """Check the merged result of the update, not just the submitted fields."""
    try:
        values = {k: Decimal(str(v)) for k, v in fields.items()}
    except (InvalidOperation, ValueError):
        raise ValidationError('Config values must be numbers')
    if not all(v.is_finite() for v in values.values()):
        raise ValidationError('Config values must be finite numbers')

    if 'payoutPercentage' in values and not Decimal('0') < values['payoutPercentage'] <= Decimal('1'):
        raise ValidationError('payoutPercentage must be in (0, 1]')
    for field in ('fixedPayoutAmount', 'minStake', 'maxStake', 'nextDrawTime'):
        if field in values and values[field] < 0:
            raise ValidationError(f'{field} cannot be negative')
    if 'drawIntervalHours' in values and values['drawIntervalHours'] <= 0:
        raise ValidationError('drawIntervalHours must be positive')

    min_stake = values.get('minStake', current.minStake)
    max_stake = values.get('maxStake', current.maxStake)
    if min_stake > max_stake:
        raise ValidationError('minStake cannot exceed maxStake')

    if 'nextDrawTime' in values:
        values['nextDrawTime'] = int(values['nextDrawTime'])
    return values


def lambda_handler(event, context):
    """
    Merge operator edits into the system config.
    URL pattern: POST /admin/config
    Body can include: payoutPercentage, fixedPayoutAmount, minStake, maxStake,
    drawIntervalHours, nextDrawTime. currentJackpot is owned by the engines.
    """
    try:
        if not event.get('body'):
            return {
                'statusCode': 400,
                'body': json.dumps({'error': 'Missing request body'})
            }

        try:
            body = json.loads(event['body'], parse_float=Decimal)
        except ValueError:
            return {
                'statusCode': 400,
                'body': json.dumps({'error': 'Body must be JSON'})
            }

        fields = {f: body[f] for f in EDITABLE_FIELDS if f in body}
        if not fields:
            return {
                'statusCode': 400,
                'body': json.dumps({'error': 'No valid fields provided'})
            }

        store = _get_store()
        current = store.get_config()
        if current is None:
            return {
                'statusCode': 404,
                'body': json.dumps({'error': 'Config not found'})
            }

        try:
            values = _validate(fields, current)
        except ValidationError as e:
            return {
                'statusCode': 400,
                'body': json.dumps({'error': e.message})
            }

        updated = store.update_config(values)
        claims = ((event.get('requestContext') or {}).get('authorizer') or {}).get('claims') or {}
        store.log_audit(
            'CONFIG_UPDATED',
            ', '.join(f'{k}={v}' for k, v in values.items()),
            admin_id=claims.get('email', 'ADMIN'),
        )
        logger.info(f"Config updated: {sorted(values)}")

        return {
            'statusCode': 200,
            'body': json.dumps({'ok': True, 'config': decimal_to_native(updated.to_item())})
        }

    except Exception as e:
        logger.exception(f"Error updating config: {str(e)}")
        return {
            'statusCode': 500,
            'body': json.dumps({'error': 'Internal server error'})
        }
