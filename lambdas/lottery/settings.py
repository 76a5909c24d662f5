import os
from dataclasses import dataclass, field
from decimal import Decimal

# ----------------- Defaults -----------------
SESSION_ID_FIELDS = ["sessionID", "SESSIONID", "sessionId", "session_id", "SessionId"]
PHONE_FIELDS = ["msisdn", "MSISDN", "phoneNumber", "phone"]
USER_ID_FIELDS = ["UserID", "USERID", "userID", "userId", "userid"]
TEXT_FIELDS = ["userData", "USERDATA", "text", "input", "ussdString", "message", "INPUT"]
NETWORK_FIELDS = ["network", "NETWORK", "operator", "mno"]


def _env_list(name, default):
    raw = os.environ.get(name)
    if not raw:
        return list(default)
    return [part.strip() for part in raw.split(",") if part.strip()]


@dataclass(frozen=True)
class TableNames:
    config: str = "Lottery-Config"
    tickets: str = "Lottery-Tickets"
    draws: str = "Lottery-Draws"
    sessions: str = "Lottery-Sessions"
    payments: str = "Lottery-Payments"
    audit: str = "Lottery-Audit"

    @classmethod
    def from_env(cls) -> "TableNames":
        return cls(
            config=os.environ.get("CONFIG_TABLE", cls.config),
            tickets=os.environ.get("TICKETS_TABLE", cls.tickets),
            draws=os.environ.get("DRAWS_TABLE", cls.draws),
            sessions=os.environ.get("SESSIONS_TABLE", cls.sessions),
            payments=os.environ.get("PAYMENTS_TABLE", cls.payments),
            audit=os.environ.get("AUDIT_TABLE", cls.audit),
        )


@dataclass(frozen=True)
class Settings:
    """Runtime configuration, read once per Lambda container."""

    region: str = "us-east-2"
    tables: TableNames = field(default_factory=TableNames)

    # USSD
    stake_amount: Decimal = Decimal("5")
    session_ttl_seconds: int = 300
    default_provider: str = "MTN"
    session_id_fields: list = field(default_factory=lambda: list(SESSION_ID_FIELDS))
    phone_fields: list = field(default_factory=lambda: list(PHONE_FIELDS))
    user_id_fields: list = field(default_factory=lambda: list(USER_ID_FIELDS))
    text_fields: list = field(default_factory=lambda: list(TEXT_FIELDS))
    network_fields: list = field(default_factory=lambda: list(NETWORK_FIELDS))

    # Payments
    payment_timeout_seconds: float = 30.0
    disbursement_timeout_seconds: float = 30.0
    payment_latency_seconds: float = 0.0

    # Draws
    win_probability: float = 0.05
    jackpot_floor: Decimal = Decimal("5000")
    draw_lock_lease_seconds: int = 900
    draw_max_workers: int = 8
    notify_lambda_name: str | None = None

    # Advisor
    advisor_model_id: str | None = None

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            region=os.environ.get("AWS_REGION", "us-east-2"),
            tables=TableNames.from_env(),
            stake_amount=Decimal(os.environ.get("USSD_STAKE_AMOUNT", "5")),
            session_ttl_seconds=int(os.environ.get("USSD_SESSION_TTL_SECONDS", "300")),
            default_provider=os.environ.get("USSD_PROVIDER_DEFAULT", "MTN"),
            session_id_fields=_env_list("USSD_SESSION_ID_FIELDS", SESSION_ID_FIELDS),
            phone_fields=_env_list("USSD_PHONE_FIELDS", PHONE_FIELDS),
            user_id_fields=_env_list("USSD_USER_ID_FIELDS", USER_ID_FIELDS),
            text_fields=_env_list("USSD_TEXT_FIELDS", TEXT_FIELDS),
            network_fields=_env_list("USSD_NETWORK_FIELDS", NETWORK_FIELDS),
            payment_timeout_seconds=float(os.environ.get("PAYMENT_TIMEOUT_SECONDS", "30")),
            disbursement_timeout_seconds=float(os.environ.get("DISBURSEMENT_TIMEOUT_SECONDS", "30")),
            payment_latency_seconds=float(os.environ.get("PAYMENT_LATENCY_SECONDS", "0")),
            win_probability=float(os.environ.get("DRAW_WIN_PROBABILITY", "0.05")),
            jackpot_floor=Decimal(os.environ.get("JACKPOT_FLOOR", "5000")),
            draw_lock_lease_seconds=int(os.environ.get("DRAW_LOCK_LEASE_SECONDS", "900")),
            draw_max_workers=int(os.environ.get("DRAW_MAX_WORKERS", "8")),
            notify_lambda_name=os.environ.get("NOTIFY_LAMBDA_NAME"),
            advisor_model_id=os.environ.get("ADVISOR_MODEL_ID"),
        )
