import logging

from lambdas.lottery.runtime import build_draw_engine
from lambdas.lottery.settings import Settings

# ----------------- Logging -----------------
log = logging.getLogger()
log.setLevel(logging.INFO)
if not log.handlers:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")

# ----------------- Engine Cache -----------------
_ENGINE = None


def _get_engine():
    global _ENGINE
    if _ENGINE is None:
        _ENGINE = build_draw_engine(Settings.from_env())
    return _ENGINE


def handler(event, context):
    """Scheduled tick (EventBridge): run the draw if the config says it is due."""
    log.info("Draw scheduler invoked: %s", event)
    result = _get_engine().process_scheduled_draws()
    if result is None:
        return {"executed": False}
    log.info("Scheduled draw executed: %s", result.draw.draw_id)
    return {
        "executed": True,
        "draw_id": result.draw.draw_id,
        "winners": len(result.draw.winners),
        "failed_payouts": result.failed_payouts,
    }


if __name__ == "__main__":
    logging.getLogger().handlers.clear()
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")

    print(handler({"source": "manual"}, None))
