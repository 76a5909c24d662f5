"""Draw settlement.

Closes the open ("current") ticket pool under an advisory lock kept on the
config item, picks winners, pays them, records the draw, and rolls the
config into the next betting window.
"""

import json
import logging
import random
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import ROUND_DOWN, Decimal

from lambdas.lottery.errors import AdapterFailure, DrawInProgressError, StoreUnavailable
from lambdas.lottery.models import (
    Draw,
    DrawStatus,
    Payment,
    PayoutStatus,
    Ticket,
    decimal_to_native,
    now_ms,
    payout_ref,
)
from lambdas.lottery.payments import FutureTimeout, call_with_timeout
from lambdas.lottery.settings import Settings

log = logging.getLogger(__name__)

CENT = Decimal("0.01")


def new_draw_id(now: int) -> str:
    stamp = datetime.fromtimestamp(now / 1000, tz=timezone.utc).strftime("%Y%m%d%H%M%S")
    return f"CASH-{stamp}-{uuid.uuid4().hex[:8].upper()}"


def payout_pool_for(config, pool: Decimal) -> Decimal:
    """A manual fixed payout wins over the percentage of the pool."""
    if config.fixedPayoutAmount and config.fixedPayoutAmount > 0:
        return config.fixedPayoutAmount
    return pool * config.payoutPercentage


def prize_per_winner(payout_pool: Decimal, winner_count: int) -> Decimal:
    if winner_count <= 0:
        return Decimal("0")
    return (payout_pool / winner_count).quantize(CENT, rounding=ROUND_DOWN)


@dataclass
class TicketOutcome:
    ticket_id: str
    winner: bool = False
    payout_status: PayoutStatus | None = None
    settled: bool = False
    error: str | None = None


@dataclass
class DrawResult:
    draw: Draw
    outcomes: list = field(default_factory=list)

    @property
    def failed_payouts(self) -> list:
        return [o.ticket_id for o in self.outcomes if o.winner and o.payout_status != PayoutStatus.PAID]

    def to_dict(self) -> dict:
        return decimal_to_native(self.draw.to_item())


class DrawEngine:
    def __init__(self, store, gateway, advisor, rng=None, clock=now_ms, settings: Settings | None = None,
                 notify=None):
        self.store = store
        self.gateway = gateway
        self.advisor = advisor
        self.rng = rng or random.SystemRandom()
        self._clock = clock
        self.settings = settings or Settings()
        self.notify = notify

    def process_scheduled_draws(self) -> DrawResult | None:
        config = self.store.get_config()
        if config is None:
            log.warning("No system config found; skipping scheduled draw check")
            return None
        now = self._clock()
        if now < config.nextDrawTime:
            log.info("Next draw not due for %d ms", config.nextDrawTime - now)
            return None
        return self.execute_draw(scheduled=True)

    def execute_draw(self, scheduled: bool = False) -> DrawResult | None:
        """Settle the open pool. Returns None when another draw holds the lock."""
        if self.store.get_config() is None:
            raise StoreUnavailable("System config is missing")
        now = self._clock()
        draw_id = new_draw_id(now)
        try:
            self.store.acquire_draw_lock(draw_id, now, self.settings.draw_lock_lease_seconds * 1000)
        except DrawInProgressError as e:
            log.warning("Draw %s skipped: draw %s already in progress", draw_id, e.holder)
            return None

        try:
            # Snapshot the pool before the jackpot baseline so no stake is counted twice.
            tickets = self.store.list_open_tickets()
            config = self.store.get_config()
            if scheduled and self._clock() < config.nextDrawTime:
                log.info("Draw %s skipped: the window was already rolled by a concurrent run", draw_id)
                return None
            return self._settle(draw_id, config, tickets)
        finally:
            if not self.store.release_draw_lock(draw_id):
                self.store.log_audit(
                    "DRAW_LOCK_LOST",
                    f"Draw {draw_id} outlived its lock lease; check for an overlapping draw.",
                )

    def _settle(self, draw_id: str, config, tickets: list) -> DrawResult:
        total_stakes = sum((t.stake for t in tickets), Decimal("0"))
        pool = config.currentJackpot + total_stakes
        log.info("Draw %s: %d eligible tickets, stakes GHS %s, pool GHS %s",
                 draw_id, len(tickets), total_stakes, pool)

        fraud_suspected = self.advisor.detect_fraud(tickets)
        if fraud_suspected:
            log.warning("FRAUD ALERT on draw %s: suspicious betting patterns; proceeding", draw_id)
            self.store.log_audit(
                "FRAUD_ALERT",
                "AI detected suspicious betting patterns in this draw pool. Proceeding with caution.",
            )

        winners = {t.ticket_id for t in tickets if self.rng.random() < self.settings.win_probability}
        payout_pool = payout_pool_for(config, pool)
        prize = prize_per_winner(payout_pool, len(winners))

        outcomes = self._settle_tickets(draw_id, tickets, winners, prize)

        radio_script = self.advisor.generate_announcement(draw_id, pool, len(winners), prize)

        completed = self._clock()
        draw = Draw(
            draw_id=draw_id,
            scheduledTime=config.nextDrawTime,
            completedTime=completed,
            status=DrawStatus.COMPLETED,
            totalStakes=total_stakes,
            ticketCount=len(tickets),
            winners=sorted(winners),
            prizePerWinner=prize,
            payoutAmount=payout_pool if winners else Decimal("0"),
            jackpotPool=pool,
            radioScript=radio_script,
            fraudSuspected=fraud_suspected,
        )
        result = DrawResult(draw=draw, outcomes=outcomes)
        draw.failedPayouts = result.failed_payouts
        self.store.put_draw(draw)

        # Pool paid out -> reset to the floor; nobody won -> it carries forward.
        target = self.settings.jackpot_floor if winners else pool
        self.store.roll_config(
            draw_id,
            jackpot_delta=target - config.currentJackpot,
            next_draw_time=completed + config.draw_interval_ms,
        )
        self.store.log_audit(
            "DRAW_FINALIZED",
            f"Draw {draw_id} closed with pool GHS {pool:.2f}. Fixed payout reset.",
        )
        log.info("✅ Draw %s finalized: %d winner(s), prize GHS %s, %d failed payout(s)",
                 draw_id, len(winners), prize, len(draw.failedPayouts))
        return result

    def _settle_tickets(self, draw_id: str, tickets: list, winners: set, prize: Decimal) -> list:
        if not tickets:
            return []
        workers = max(1, min(self.settings.draw_max_workers, len(tickets)))
        with ThreadPoolExecutor(max_workers=workers) as pool:
            futures = [
                pool.submit(self._settle_ticket, draw_id, t, t.ticket_id in winners, prize)
                for t in tickets
            ]
            return [f.result() for f in futures]

    def _settle_ticket(self, draw_id: str, ticket: Ticket, is_winner: bool, prize: Decimal) -> TicketOutcome:
        outcome = TicketOutcome(ticket_id=ticket.ticket_id, winner=is_winner)
        fields = None
        if is_winner:
            try:
                outcome.payout_status = self._disburse(draw_id, ticket, prize)
            except Exception as e:
                # Nothing was sent: the payout-record check failed before the gateway call.
                log.exception("Payout for ticket %s in draw %s was not attempted", ticket.ticket_id, draw_id)
                outcome.payout_status = PayoutStatus.FAILED
                outcome.error = str(e)
            fields = {
                "isWinner": True,
                "prizeAmount": prize,
                "payoutStatus": outcome.payout_status.value,
                "payoutRef": payout_ref(ticket.ticket_id),
            }

        # A winner always leaves the open pool, whatever happened to the payout.
        try:
            outcome.settled = self.store.settle_ticket(ticket.ticket_id, draw_id, fields)
        except Exception as e:
            log.exception("Failed to settle ticket %s in draw %s", ticket.ticket_id, draw_id)
            outcome.error = str(e)
            return outcome

        if outcome.payout_status == PayoutStatus.PAID:
            self._notify_winner(draw_id, ticket, prize)
        return outcome

    def _disburse(self, draw_id: str, ticket: Ticket, prize: Decimal) -> PayoutStatus:
        ref = payout_ref(ticket.ticket_id)
        previous = self.store.get_payment(ref)
        if previous and previous.get("status") in (PayoutStatus.PAID.value, PayoutStatus.UNCONFIRMED.value):
            log.warning("Ticket %s already has payout %s (%s); not paying again",
                        ticket.ticket_id, ref, previous.get("status"))
            return PayoutStatus(previous["status"])

        try:
            paid = call_with_timeout(
                self.gateway.disburse_winnings,
                self.settings.disbursement_timeout_seconds,
                ticket.phone,
                prize,
            )
            status = PayoutStatus.PAID if paid else PayoutStatus.FAILED
        except FutureTimeout:
            log.warning("Disbursement to %s for ticket %s timed out; outcome unknown",
                        ticket.phone, ticket.ticket_id)
            status = PayoutStatus.UNCONFIRMED
        except AdapterFailure as e:
            log.warning("Disbursement to %s for ticket %s failed: %s", ticket.phone, ticket.ticket_id, e)
            status = PayoutStatus.FAILED

        now = self._clock()
        try:
            self.store.put_payment(Payment(
                payment_ref=ref,
                kind="DISBURSEMENT",
                phone=ticket.phone,
                amount=prize,
                status=status,
                provider=ticket.provider,
                ticketId=ticket.ticket_id,
                drawId=draw_id,
                createdAt=now,
                updatedAt=now,
            ))
        except StoreUnavailable:
            log.exception("Could not record payout %s (%s); the ticket still carries it", ref, status.value)
        if status == PayoutStatus.PAID:
            self.store.log_audit("MOMO_DISBURSEMENT", f"Paid GHS {prize:.2f} to {ticket.phone}")
        else:
            self.store.log_audit(
                "MOMO_DISBURSEMENT_FAILED",
                f"Payout of GHS {prize:.2f} to {ticket.phone} is {status.value}; needs reconciliation",
            )
        return status

    def _notify_winner(self, draw_id: str, ticket: Ticket, prize: Decimal):
        if self.notify is None:
            return
        try:
            self.notify({
                "ticket_id": ticket.ticket_id,
                "phone": ticket.phone,
                "amount": float(prize),
                "draw_id": draw_id,
            })
        except Exception:
            log.exception("Failed to trigger winner notification for ticket %s", ticket.ticket_id)


def lambda_notifier(lambda_client, function_name: str):
    """Hand winner payloads to the notify Lambda asynchronously."""

    def _invoke(payload: dict):
        log.info("Triggering Notify Lambda for winner: %s", payload)
        response = lambda_client.invoke(
            FunctionName=function_name,
            InvocationType="Event",
            Payload=json.dumps(payload),
        )
        log.info("Notify Lambda triggered. StatusCode: %s", response["StatusCode"])

    return _invoke
