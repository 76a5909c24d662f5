"""Documents kept in the ledger tables.

Each dataclass maps one DynamoDB item. Key attributes are snake_case,
document attributes keep the camelCase names the admin dashboard reads.
Money is always ``Decimal``.
"""

import time
from dataclasses import asdict, dataclass, field
from decimal import Decimal
from enum import Enum

CURRENT_DRAW = "current"
CONFIG_ID = "config"


class TransactionStatus(str, Enum):
    PENDING = "PENDING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


class DrawStatus(str, Enum):
    UPCOMING = "UPCOMING"
    ONGOING = "ONGOING"
    COMPLETED = "COMPLETED"


class SessionStatus(str, Enum):
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    FAILED = "FAILED"


class PaymentStatus(str, Enum):
    NOT_STARTED = "NOT_STARTED"
    INITIATED = "INITIATED"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


class TicketStatus(str, Enum):
    NOT_CREATED = "NOT_CREATED"
    SUCCESS = "SUCCESS"


class PayoutStatus(str, Enum):
    PAID = "PAID"
    FAILED = "FAILED"
    UNCONFIRMED = "UNCONFIRMED"


class MoMoProvider(str, Enum):
    MTN = "MTN"
    VODAFONE = "Vodafone"
    AIRTELTIGO = "AirtelTigo"

    @classmethod
    def parse(cls, value, default="MTN"):
        """Map a gateway network name (``mtn``, ``VODAFONE``, ``AIRTEL-TIGO``...) to a provider."""
        raw = "".join(ch for ch in str(value or "").lower() if ch.isalnum())
        for provider in cls:
            if raw and raw == provider.value.lower():
                return provider
        if raw in ("airtel", "tigo", "at"):
            return cls.AIRTELTIGO
        if raw in ("voda", "telecel"):
            return cls.VODAFONE
        return cls(default)


def now_ms() -> int:
    return int(time.time() * 1000)


def to_decimal(value, default="0") -> Decimal:
    if value is None:
        return Decimal(default)
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def decimal_to_native(x):
    if isinstance(x, Decimal):
        if x % 1 == 0:
            return int(x)
        return float(x)
    if isinstance(x, Enum):
        return x.value
    if isinstance(x, dict):
        return {k: decimal_to_native(v) for k, v in x.items()}
    if isinstance(x, (list, tuple)):
        return [decimal_to_native(i) for i in x]
    return x


def _item(obj) -> dict:
    """asdict() with enums flattened and ``None`` attributes dropped."""
    out = {}
    for k, v in asdict(obj).items():
        if v is None:
            continue
        out[k] = v.value if isinstance(v, Enum) else v
    return out


@dataclass
class SystemConfig:
    payoutPercentage: Decimal = Decimal("0.7")
    fixedPayoutAmount: Decimal = Decimal("0")
    minStake: Decimal = Decimal("1")
    maxStake: Decimal = Decimal("10")
    drawIntervalHours: Decimal = Decimal("6")
    nextDrawTime: int = 0
    currentJackpot: Decimal = Decimal("5000")
    lastDrawId: str | None = None

    @classmethod
    def initial(cls, now: int | None = None) -> "SystemConfig":
        now = now_ms() if now is None else now
        return cls(nextDrawTime=now + 6 * 60 * 60 * 1000)

    @classmethod
    def from_item(cls, item: dict) -> "SystemConfig":
        return cls(
            payoutPercentage=to_decimal(item.get("payoutPercentage"), "0.7"),
            fixedPayoutAmount=to_decimal(item.get("fixedPayoutAmount")),
            minStake=to_decimal(item.get("minStake"), "1"),
            maxStake=to_decimal(item.get("maxStake"), "10"),
            drawIntervalHours=to_decimal(item.get("drawIntervalHours"), "6"),
            nextDrawTime=int(item.get("nextDrawTime", 0)),
            currentJackpot=to_decimal(item.get("currentJackpot")),
            lastDrawId=item.get("lastDrawId"),
        )

    def to_item(self) -> dict:
        item = _item(self)
        item["config_id"] = CONFIG_ID
        return item

    @property
    def draw_interval_ms(self) -> int:
        return int(self.drawIntervalHours * 60 * 60 * 1000)


@dataclass
class Ticket:
    ticket_id: str
    phone: str
    stake: Decimal
    drawId: str = CURRENT_DRAW
    timestamp: int = 0
    status: TransactionStatus = TransactionStatus.SUCCESS
    isWinner: bool = False
    prizeAmount: Decimal = Decimal("0")
    provider: str | None = None
    sessionId: str | None = None
    paymentRef: str | None = None
    payoutStatus: PayoutStatus | None = None
    payoutRef: str | None = None

    @classmethod
    def from_item(cls, item: dict) -> "Ticket":
        payout = item.get("payoutStatus")
        return cls(
            ticket_id=item["ticket_id"],
            phone=item.get("phone", ""),
            stake=to_decimal(item.get("stake")),
            drawId=item.get("drawId", CURRENT_DRAW),
            timestamp=int(item.get("timestamp", 0)),
            status=TransactionStatus(item.get("status", "PENDING")),
            isWinner=bool(item.get("isWinner", False)),
            prizeAmount=to_decimal(item.get("prizeAmount")),
            provider=item.get("provider"),
            sessionId=item.get("sessionId"),
            paymentRef=item.get("paymentRef"),
            payoutStatus=PayoutStatus(payout) if payout else None,
            payoutRef=item.get("payoutRef"),
        )

    def to_item(self) -> dict:
        return _item(self)


@dataclass
class Draw:
    draw_id: str
    scheduledTime: int
    completedTime: int | None = None
    status: DrawStatus = DrawStatus.UPCOMING
    totalStakes: Decimal = Decimal("0")
    ticketCount: int = 0
    winners: list = field(default_factory=list)
    prizePerWinner: Decimal = Decimal("0")
    payoutAmount: Decimal = Decimal("0")
    jackpotPool: Decimal = Decimal("0")
    radioScript: str | None = None
    fraudSuspected: bool = False
    failedPayouts: list = field(default_factory=list)

    @classmethod
    def from_item(cls, item: dict) -> "Draw":
        completed = item.get("completedTime")
        return cls(
            draw_id=item["draw_id"],
            scheduledTime=int(item.get("scheduledTime", 0)),
            completedTime=int(completed) if completed is not None else None,
            status=DrawStatus(item.get("status", "UPCOMING")),
            totalStakes=to_decimal(item.get("totalStakes")),
            ticketCount=int(item.get("ticketCount", 0)),
            winners=list(item.get("winners", [])),
            prizePerWinner=to_decimal(item.get("prizePerWinner")),
            payoutAmount=to_decimal(item.get("payoutAmount")),
            jackpotPool=to_decimal(item.get("jackpotPool")),
            radioScript=item.get("radioScript"),
            fraudSuspected=bool(item.get("fraudSuspected", False)),
            failedPayouts=list(item.get("failedPayouts", [])),
        )

    def to_item(self) -> dict:
        return _item(self)


@dataclass
class Session:
    session_id: str
    msisdn: str
    step: str = "WELCOME"
    status: SessionStatus = SessionStatus.ACTIVE
    stakeAmount: Decimal = Decimal("0")
    paymentStatus: PaymentStatus = PaymentStatus.NOT_STARTED
    ticketStatus: TicketStatus = TicketStatus.NOT_CREATED
    paymentRef: str | None = None
    ticketId: str | None = None
    userId: str | None = None
    provider: str | None = None
    lastResponse: str | None = None
    createdAt: int = 0
    updatedAt: int = 0
    expiresAt: int = 0

    @classmethod
    def from_item(cls, item: dict) -> "Session":
        return cls(
            session_id=item["session_id"],
            msisdn=item.get("msisdn", ""),
            step=item.get("step", "WELCOME"),
            status=SessionStatus(item.get("status", "ACTIVE")),
            stakeAmount=to_decimal(item.get("stakeAmount")),
            paymentStatus=PaymentStatus(item.get("paymentStatus", "NOT_STARTED")),
            ticketStatus=TicketStatus(item.get("ticketStatus", "NOT_CREATED")),
            paymentRef=item.get("paymentRef"),
            ticketId=item.get("ticketId"),
            userId=item.get("userId"),
            provider=item.get("provider"),
            lastResponse=item.get("lastResponse"),
            createdAt=int(item.get("createdAt", 0)),
            updatedAt=int(item.get("updatedAt", 0)),
            expiresAt=int(item.get("expiresAt", 0)),
        )

    def to_item(self) -> dict:
        return _item(self)

    @property
    def is_terminal(self) -> bool:
        return self.status != SessionStatus.ACTIVE

    @property
    def is_settled(self) -> bool:
        return (
            self.status == SessionStatus.COMPLETED
            and self.ticketStatus == TicketStatus.SUCCESS
            and self.paymentStatus == PaymentStatus.SUCCESS
        )


@dataclass
class Payment:
    payment_ref: str
    kind: str
    phone: str
    amount: Decimal
    status: TransactionStatus | PayoutStatus
    provider: str | None = None
    sessionId: str | None = None
    ticketId: str | None = None
    drawId: str | None = None
    transactionId: str | None = None
    createdAt: int = 0
    updatedAt: int = 0

    def to_item(self) -> dict:
        return _item(self)


def collection_ref(session_id: str) -> str:
    return f"PAY-{session_id}"


def payout_ref(ticket_id: str) -> str:
    return f"PAYOUT-{ticket_id}"


def ticket_id_for(session_id: str) -> str:
    return f"TKT-{session_id}"
