"""USSD session engine.

Aggregators call the callback once per keystroke and resend the whole dial
string each time, and they retry on timeout. The engine therefore derives the
menu position from the keystroke list, persists every session, and replays
the stored final response for finished sessions instead of charging twice.
"""

import base64
import binascii
import json
import logging
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from urllib.parse import parse_qs

from lambdas.lottery.errors import AdapterFailure, StoreUnavailable, ValidationError
from lambdas.lottery.models import (
    MoMoProvider,
    Payment,
    PaymentStatus,
    Session,
    SessionStatus,
    Ticket,
    TicketStatus,
    TransactionStatus,
    collection_ref,
    now_ms,
    ticket_id_for,
)
from lambdas.lottery.payments import FutureTimeout, PaymentResult, call_with_timeout
from lambdas.lottery.settings import Settings

log = logging.getLogger(__name__)

BRAND = "Home Radio Cash Out"

WELCOME_MENU = "CON Welcome to {brand}\n1. Play & Win (GHS {stake})\n2. Exit"
CONFIRM_MENU = "CON Confirm stake of GHS {stake}?\n1. Confirm\n2. Cancel"
EXIT_TEXT = "END Thank you for using {brand}."
CANCELLED_TEXT = "END Transaction cancelled."
INVALID_TEXT = "END Invalid choice. Please dial again and choose 1 or 2."
INVALID_CONFIRM_TEXT = "END Invalid confirmation option. Please dial again."
SUCCESS_TEXT = "END Success! Your {brand} ticket {ticket_id} is active."
PAYMENT_FAILED_TEXT = "END MoMo transaction failed. Please try again."
IN_FLIGHT_TEXT = "END Your payment is being processed. Please wait for the MoMo prompt."
STAKE_UNAVAILABLE_TEXT = "END Staking is currently unavailable. Please try again later."
BUSY_TEXT = "END System busy. Please try again later."
INVALID_REQUEST_TEXT = "END Invalid request."


class Step(str, Enum):
    WELCOME = "WELCOME"
    CONFIRM = "CONFIRM"
    PROCESSING_PAYMENT = "PROCESSING_PAYMENT"
    COMPLETED = "COMPLETED"
    PAYMENT_FAILED = "PAYMENT_FAILED"
    CANCELLED = "CANCELLED"
    INVALID = "INVALID"
    INVALID_CONFIRM = "INVALID_CONFIRM"


# Steps at which the keystroke walk stops.
STOP_STEPS = {
    Step.PROCESSING_PAYMENT,
    Step.COMPLETED,
    Step.PAYMENT_FAILED,
    Step.CANCELLED,
    Step.INVALID,
    Step.INVALID_CONFIRM,
}


def transition(step: Step, token: str) -> Step:
    if step == Step.WELCOME:
        if token == "1":
            return Step.CONFIRM
        if token == "2":
            return Step.CANCELLED
        return Step.INVALID
    if step == Step.CONFIRM:
        if token == "1":
            return Step.PROCESSING_PAYMENT
        if token == "2":
            return Step.CANCELLED
        return Step.INVALID_CONFIRM
    return step


def walk(steps: list) -> list:
    """Fold keystrokes from WELCOME and return every step visited, in order."""
    trace = [Step.WELCOME]
    for token in steps:
        if trace[-1] in STOP_STEPS:
            break
        trace.append(transition(trace[-1], token))
    return trace


# ---------- Request parsing ----------
def normalize_text(text) -> str:
    t = text.strip() if isinstance(text, str) else ""
    t = t.replace("＃", "#").replace("＊", "*")
    t = "".join(t.split())
    # Some aggregators send the whole dial string (*928*301#*1), keep what follows the last '#'.
    if "#" in t:
        t = t[t.rindex("#") + 1:]
    return t


def parse_steps(text) -> list:
    return [s.strip() for s in normalize_text(text).split("*") if s.strip()]


def _parse_form(raw: str) -> dict:
    return {k: v[0] for k, v in parse_qs(raw or "", keep_blank_values=True).items()}


def _parse_json(raw: str):
    data = json.loads(raw or "{}")
    return data if isinstance(data, dict) else {}


def parse_body(event: dict) -> dict:
    raw = event.get("body") or ""
    if isinstance(raw, dict):
        return raw
    if event.get("isBase64Encoded") and raw:
        try:
            raw = base64.b64decode(raw).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError) as e:
            log.warning("Undecodable base64 callback body: %s", e)
            return {}

    headers = event.get("headers") or {}
    content_type = (headers.get("content-type") or headers.get("Content-Type") or "").lower()

    if "application/json" in content_type:
        try:
            return _parse_json(raw)
        except ValueError:
            return {}
    if "application/x-www-form-urlencoded" in content_type:
        return _parse_form(raw)
    try:
        return _parse_json(raw)
    except ValueError:
        return _parse_form(raw)


def pick_field(payload: dict, keys: list) -> str:
    for key in keys:
        value = payload.get(key)
        if isinstance(value, bool):
            continue
        if isinstance(value, (int, str)):
            value = str(value).strip()
            if value:
                return value
    return ""


@dataclass(frozen=True)
class UssdRequest:
    session_id: str
    phone: str
    user_id: str
    text: str
    network: str = ""

    @property
    def steps(self) -> list:
        return parse_steps(self.text)

    def validate(self):
        if not self.session_id:
            raise ValidationError("Missing session id")
        if not self.phone:
            raise ValidationError("Missing phone number")


def parse_request(event: dict, settings: Settings) -> UssdRequest:
    query = event.get("queryStringParameters") or {}
    payload = {**(query if isinstance(query, dict) else {}), **parse_body(event)}
    phone = pick_field(payload, settings.phone_fields)
    return UssdRequest(
        session_id=pick_field(payload, settings.session_id_fields),
        phone=phone,
        user_id=pick_field(payload, settings.user_id_fields) or phone,
        text=pick_field(payload, settings.text_fields),
        network=pick_field(payload, settings.network_fields),
    )


def render_response(text: str, request: UssdRequest) -> dict:
    """Turn a CON/END menu text into the aggregator's JSON reply."""
    is_continue = text.startswith("CON ")
    message = text[4:] if text.startswith(("CON ", "END ")) else text
    return {
        "statusCode": 200,
        "headers": {
            "Content-Type": "application/json; charset=utf-8",
            "Cache-Control": "no-store",
        },
        "body": json.dumps({
            "sessionID": request.session_id,
            "UserID": request.user_id,
            "userID": request.user_id,
            "msisdn": request.phone,
            "continueSession": is_continue,
            "message": message,
        }),
    }


def _money(amount: Decimal) -> str:
    if amount == amount.to_integral_value():
        return str(int(amount))
    return f"{amount:.2f}"


# ---------- Engine ----------
class SessionEngine:
    def __init__(self, store, gateway, settings: Settings | None = None, clock=now_ms):
        self.store = store
        self.gateway = gateway
        self.settings = settings or Settings()
        self._clock = clock

    @property
    def _stake(self) -> str:
        return _money(self.settings.stake_amount)

    def handle(self, request: UssdRequest) -> str:
        """Apply one inbound request to its session and return the CON/END text."""
        request.validate()
        now = self._clock()

        session = self.store.get_session(request.session_id)
        if session is not None and session.is_terminal and session.lastResponse:
            log.info("Replaying %s session %s", session.status.value, session.session_id)
            return session.lastResponse

        if session is not None and self._expired(session, now):
            log.info("Session %s expired at %s; starting over", session.session_id, session.expiresAt)
            session = None
        if session is None:
            session = Session(
                session_id=request.session_id,
                msisdn=request.phone,
                userId=request.user_id,
                provider=MoMoProvider.parse(request.network, self.settings.default_provider).value,
                createdAt=now,
            )

        # Once a collection has started the session belongs to the checkout, whatever was dialed.
        if session.paymentStatus != PaymentStatus.NOT_STARTED:
            return self._checkout(session, now)

        trace = walk(request.steps)
        step = trace[-1]
        if step == Step.PROCESSING_PAYMENT:
            return self._checkout(session, now)

        if step == Step.WELCOME:
            text, status = WELCOME_MENU.format(brand=BRAND, stake=self._stake), SessionStatus.ACTIVE
        elif step == Step.CONFIRM:
            text, status = CONFIRM_MENU.format(stake=self._stake), SessionStatus.ACTIVE
        elif step == Step.CANCELLED:
            status = SessionStatus.CANCELLED
            text = EXIT_TEXT.format(brand=BRAND) if trace[-2] == Step.WELCOME else CANCELLED_TEXT
        elif step == Step.INVALID:
            text, status = INVALID_TEXT, SessionStatus.FAILED
        else:
            text, status = INVALID_CONFIRM_TEXT, SessionStatus.FAILED

        session.step = step.value
        session.status = status
        self._save(session, text, now)
        return text

    def _expired(self, session: Session, now: int) -> bool:
        return (
            not session.is_terminal
            and session.paymentStatus == PaymentStatus.NOT_STARTED
            and session.expiresAt > 0
            and session.expiresAt * 1000 < now
        )

    def _save(self, session: Session, text: str, now: int):
        session.lastResponse = text
        session.updatedAt = now
        session.expiresAt = now // 1000 + self.settings.session_ttl_seconds
        self.store.put_session(session)

    def _finish(self, session: Session, step: Step, status: SessionStatus, text: str, now: int) -> str:
        session.step = step.value
        session.status = status
        self._save(session, text, now)
        return text

    # ---------- Checkout ----------
    def _checkout(self, session: Session, now: int) -> str:
        if session.paymentStatus == PaymentStatus.NOT_STARTED:
            config = self.store.get_config()
            if config is None:
                raise StoreUnavailable("System config is missing")
            stake = self.settings.stake_amount
            if not config.minStake <= stake <= config.maxStake:
                log.warning("Stake %s outside [%s, %s]; refusing session %s",
                            stake, config.minStake, config.maxStake, session.session_id)
                return self._finish(session, Step.PAYMENT_FAILED, SessionStatus.FAILED,
                                    STAKE_UNAVAILABLE_TEXT, now)

            session.stakeAmount = stake
            session.paymentRef = collection_ref(session.session_id)
            session.step = Step.PROCESSING_PAYMENT.value
            session.paymentStatus = PaymentStatus.INITIATED
            session.updatedAt = now
            session.expiresAt = now // 1000 + self.settings.session_ttl_seconds
            claimed = self.store.claim_session_payment(session, {
                "step": session.step,
                "paymentStatus": session.paymentStatus.value,
                "paymentRef": session.paymentRef,
                "stakeAmount": stake,
            })
            if not claimed:
                log.info("Payment for session %s already claimed by another request", session.session_id)
                current = self.store.get_session(session.session_id)
                if current is not None and current.is_terminal and current.lastResponse:
                    return current.lastResponse
                return IN_FLIGHT_TEXT
            if not self._collect(session, now):
                return self._finish(session, Step.PAYMENT_FAILED, SessionStatus.FAILED,
                                    PAYMENT_FAILED_TEXT, now)

        elif session.paymentStatus == PaymentStatus.INITIATED:
            # A previous attempt started collecting. Only a recorded success moves it forward.
            payment = self.store.get_payment(session.paymentRef or collection_ref(session.session_id))
            if not payment or payment.get("status") != TransactionStatus.SUCCESS.value:
                return IN_FLIGHT_TEXT
            session.paymentStatus = PaymentStatus.SUCCESS

        elif session.paymentStatus == PaymentStatus.FAILED:
            return self._finish(session, Step.PAYMENT_FAILED, SessionStatus.FAILED, PAYMENT_FAILED_TEXT, now)

        return self._issue_ticket(session, now)

    def _collect(self, session: Session, now: int) -> bool:
        """Ask the subscriber's wallet for the stake and record the outcome."""
        try:
            result = call_with_timeout(
                self.gateway.request_payment,
                self.settings.payment_timeout_seconds,
                session.msisdn,
                session.stakeAmount,
                session.provider,
            )
        except FutureTimeout:
            log.warning("MoMo collection timed out for session %s", session.session_id)
            result = PaymentResult(success=False)
        except AdapterFailure as e:
            log.warning("MoMo collection failed for session %s: %s", session.session_id, e)
            result = PaymentResult(success=False)

        status = TransactionStatus.SUCCESS if result.success else TransactionStatus.FAILED
        self.store.put_payment(Payment(
            payment_ref=session.paymentRef,
            kind="COLLECTION",
            phone=session.msisdn,
            amount=session.stakeAmount,
            status=status,
            provider=session.provider,
            sessionId=session.session_id,
            ticketId=ticket_id_for(session.session_id) if result.success else None,
            transactionId=result.transaction_id,
            createdAt=now,
            updatedAt=self._clock(),
        ))

        if not result.success:
            session.paymentStatus = PaymentStatus.FAILED
            self.store.log_audit("MOMO_PAYMENT_FAILED", f"Failed collection from {session.msisdn}")
            return False

        session.paymentStatus = PaymentStatus.SUCCESS
        self.store.update_session(session.session_id, {"paymentStatus": PaymentStatus.SUCCESS.value})
        return True

    def _issue_ticket(self, session: Session, now: int) -> str:
        ticket = Ticket(
            ticket_id=ticket_id_for(session.session_id),
            phone=session.msisdn,
            stake=session.stakeAmount,
            timestamp=now,
            provider=session.provider,
            sessionId=session.session_id,
            paymentRef=session.paymentRef,
        )
        if self.store.create_ticket_with_stake(ticket):
            self.store.log_audit("STAKE_COLLECTED", f"GHS {_money(ticket.stake)} staked by {ticket.phone}")
            log.info("Ticket %s issued to %s", ticket.ticket_id, ticket.phone)

        session.ticketId = ticket.ticket_id
        session.ticketStatus = TicketStatus.SUCCESS
        text = SUCCESS_TEXT.format(brand=BRAND, ticket_id=ticket.ticket_id)
        return self._finish(session, Step.COMPLETED, SessionStatus.COMPLETED, text, now)


def handle_event(event: dict, engine: SessionEngine, settings: Settings) -> dict:
    """Protocol boundary: every outcome is a 200 with a CON/END message."""
    request = parse_request(event, settings)
    try:
        text = engine.handle(request)
    except ValidationError as e:
        log.warning("Rejected USSD request: %s", e)
        text = INVALID_REQUEST_TEXT
    except Exception:
        log.exception("USSD request failed for session %s", request.session_id)
        text = BUSY_TEXT
    log.info("USSD request session=%s phone=%s text=%r response=%s",
             request.session_id, request.phone, request.text, text[:3])
    return render_response(text, request)

