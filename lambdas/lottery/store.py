"""DynamoDB-backed ledger for config, tickets, draws, sessions and payments.

Uses the low-level client (thread-safe) so the settlement fan-out can share one
store across worker threads. Items go through TypeSerializer/TypeDeserializer.
"""

import logging
import uuid
from decimal import Decimal

import boto3
from boto3.dynamodb.types import TypeDeserializer, TypeSerializer
from botocore.exceptions import BotoCoreError, ClientError

from lambdas.lottery.errors import DrawInProgressError, StoreUnavailable
from lambdas.lottery.models import (
    CONFIG_ID,
    CURRENT_DRAW,
    Draw,
    Session,
    SystemConfig,
    Ticket,
    TransactionStatus,
    now_ms,
)
from lambdas.lottery.settings import TableNames

log = logging.getLogger(__name__)

_ser = TypeSerializer()
_deser = TypeDeserializer()


def _to_ddb(item: dict) -> dict:
    return {k: _ser.serialize(v) for k, v in item.items()}


def _from_ddb(image: dict) -> dict:
    return {k: _deser.deserialize(v) for k, v in image.items()}


def _is_conditional_failure(err: ClientError) -> bool:
    code = err.response.get("Error", {}).get("Code", "")
    if code == "ConditionalCheckFailedException":
        return True
    if code == "TransactionCanceledException":
        reasons = err.response.get("CancellationReasons") or []
        if reasons:
            return any(r.get("Code") == "ConditionalCheckFailed" for r in reasons)
        return "ConditionalCheckFailed" in err.response.get("Error", {}).get("Message", "")
    return False


class _Update:
    """Builds an UpdateExpression with placeholder names for every attribute."""

    def __init__(self):
        self.names = {}
        self.values = {}
        self._set = []
        self._add = []
        self._remove = []

    def name(self, attr: str) -> str:
        for placeholder, existing in self.names.items():
            if existing == attr:
                return placeholder
        placeholder = f"#n{len(self.names)}"
        self.names[placeholder] = attr
        return placeholder

    def value(self, val) -> str:
        placeholder = f":v{len(self.values)}"
        self.values[placeholder] = _ser.serialize(val)
        return placeholder

    def set(self, attr, val):
        self._set.append(f"{self.name(attr)} = {self.value(val)}")
        return self

    def add(self, attr, val):
        self._add.append(f"{self.name(attr)} {self.value(val)}")
        return self

    def remove(self, attr):
        self._remove.append(self.name(attr))
        return self

    def expression(self) -> str:
        parts = []
        if self._set:
            parts.append("SET " + ", ".join(self._set))
        if self._add:
            parts.append("ADD " + ", ".join(self._add))
        if self._remove:
            parts.append("REMOVE " + ", ".join(self._remove))
        return " ".join(parts)

    def kwargs(self, condition: str | None = None) -> dict:
        kw = {
            "UpdateExpression": self.expression(),
            "ExpressionAttributeNames": self.names,
        }
        if self.values:
            kw["ExpressionAttributeValues"] = self.values
        if condition:
            kw["ConditionExpression"] = condition
        return kw


class LedgerStore:
    def __init__(self, client=None, tables: TableNames | None = None, region: str | None = None):
        self.client = client or boto3.client("dynamodb", region_name=region)
        self.tables = tables or TableNames()

    # ---------- low-level helpers ----------
    def _call(self, op: str, **kwargs):
        try:
            return getattr(self.client, op)(**kwargs)
        except ClientError as e:
            if _is_conditional_failure(e):
                raise
            log.exception("DynamoDB %s failed", op)
            raise StoreUnavailable(f"{op} failed: {e.response.get('Error', {}).get('Code', 'unknown')}") from e
        except BotoCoreError as e:
            log.exception("DynamoDB %s failed", op)
            raise StoreUnavailable(f"{op} failed: {type(e).__name__}") from e

    def _get(self, table: str, key: dict) -> dict | None:
        resp = self._call("get_item", TableName=table, Key=_to_ddb(key), ConsistentRead=True)
        if "Item" not in resp:
            return None
        return _from_ddb(resp["Item"])

    def _put(self, table: str, item: dict, condition: str | None = None):
        kw = {"TableName": table, "Item": _to_ddb(item)}
        if condition:
            kw["ConditionExpression"] = condition
        self._call("put_item", **kw)

    def _update(self, table: str, key: dict, update: _Update, condition: str | None = None,
                return_values: str = "NONE") -> dict | None:
        resp = self._call(
            "update_item",
            TableName=table,
            Key=_to_ddb(key),
            ReturnValues=return_values,
            **update.kwargs(condition),
        )
        attrs = resp.get("Attributes")
        return _from_ddb(attrs) if attrs else None

    def _scan_all(self, table: str, **kwargs) -> list:
        items = []
        last_evaluated_key = None
        while True:
            scan_kwargs = {"TableName": table, "ConsistentRead": True, **kwargs}
            if last_evaluated_key:
                scan_kwargs["ExclusiveStartKey"] = last_evaluated_key
            resp = self._call("scan", **scan_kwargs)
            items.extend(_from_ddb(i) for i in resp.get("Items", []))
            last_evaluated_key = resp.get("LastEvaluatedKey")
            if not last_evaluated_key:
                return items

    # ---------- SystemConfig ----------
    def get_config(self) -> SystemConfig | None:
        item = self._get(self.tables.config, {"config_id": CONFIG_ID})
        return SystemConfig.from_item(item) if item else None

    def init_config(self, config: SystemConfig | None = None) -> bool:
        """Create the config document if it does not exist yet. Returns True if created."""
        config = config or SystemConfig.initial()
        try:
            self._put(self.tables.config, config.to_item(), condition="attribute_not_exists(config_id)")
        except ClientError as e:
            if _is_conditional_failure(e):
                return False
            raise
        log.info("Initialized system config with jackpot %s", config.currentJackpot)
        return True

    def update_config(self, fields: dict) -> SystemConfig:
        """Merge the given fields into the config document, leaving the rest untouched."""
        update = _Update()
        for attr, val in fields.items():
            update.set(attr, val)
        item = self._update(
            self.tables.config,
            {"config_id": CONFIG_ID},
            update,
            condition="attribute_exists(config_id)",
            return_values="ALL_NEW",
        )
        return SystemConfig.from_item(item)

    def increment_jackpot(self, amount: Decimal):
        update = _Update().add("currentJackpot", amount)
        self._update(self.tables.config, {"config_id": CONFIG_ID}, update)

    def acquire_draw_lock(self, draw_id: str, now: int, lease_ms: int):
        update = _Update().set("drawLock", draw_id).set("drawLockExpiresAt", now + lease_ms)
        now_ph = update.value(now)
        lock, lock_exp = update.name("drawLock"), update.name("drawLockExpiresAt")
        condition = (
            f"attribute_exists(config_id) AND "
            f"(attribute_not_exists({lock}) OR {lock_exp} < {now_ph})"
        )
        try:
            self._update(self.tables.config, {"config_id": CONFIG_ID}, update, condition=condition)
        except ClientError as e:
            if _is_conditional_failure(e):
                current = self._get(self.tables.config, {"config_id": CONFIG_ID}) or {}
                raise DrawInProgressError(current.get("drawLock")) from e
            raise

    def release_draw_lock(self, draw_id: str) -> bool:
        update = _Update().remove("drawLock").remove("drawLockExpiresAt")
        condition = f"{update.name('drawLock')} = {update.value(draw_id)}"
        try:
            self._update(self.tables.config, {"config_id": CONFIG_ID}, update, condition=condition)
        except ClientError as e:
            if _is_conditional_failure(e):
                log.warning("Draw lock for %s was no longer held at release", draw_id)
                return False
            raise
        return True

    def roll_config(self, draw_id: str, jackpot_delta: Decimal, next_draw_time: int) -> SystemConfig | None:
        """Move the config into the next betting window, once per draw.

        Keyed on lastDrawId rather than the lock so a draw that outlived its lease
        still rolls. Returns None if this draw already rolled the config.
        """
        update = (
            _Update()
            .add("currentJackpot", jackpot_delta)
            .set("nextDrawTime", next_draw_time)
            .set("fixedPayoutAmount", Decimal("0"))
            .set("lastDrawId", draw_id)
        )
        last = update.name("lastDrawId")
        condition = (
            f"attribute_exists(config_id) AND "
            f"(attribute_not_exists({last}) OR {last} <> {update.value(draw_id)})"
        )
        try:
            item = self._update(
                self.tables.config,
                {"config_id": CONFIG_ID},
                update,
                condition=condition,
                return_values="ALL_NEW",
            )
        except ClientError as e:
            if _is_conditional_failure(e):
                log.warning("Config was already rolled for draw %s", draw_id)
                return None
            raise
        return SystemConfig.from_item(item)

    # ---------- Tickets ----------
    def get_ticket(self, ticket_id: str) -> Ticket | None:
        item = self._get(self.tables.tickets, {"ticket_id": ticket_id})
        return Ticket.from_item(item) if item else None

    def put_ticket(self, ticket: Ticket):
        """Raw ticket write that leaves the jackpot alone (seeding and backfills)."""
        self._put(self.tables.tickets, ticket.to_item())

    def list_open_tickets(self) -> list[Ticket]:
        items = self._scan_all(
            self.tables.tickets,
            FilterExpression="#d = :current AND #s = :success",
            ExpressionAttributeNames={"#d": "drawId", "#s": "status"},
            ExpressionAttributeValues={
                ":current": {"S": CURRENT_DRAW},
                ":success": {"S": TransactionStatus.SUCCESS.value},
            },
        )
        return [Ticket.from_item(i) for i in items]

    def create_ticket_with_stake(self, ticket: Ticket) -> bool:
        """Put the ticket and add its stake to the jackpot in one transaction.

        Returns False without touching the jackpot if the ticket already exists.
        """
        update = _Update().add("currentJackpot", ticket.stake)
        try:
            self._call(
                "transact_write_items",
                TransactItems=[
                    {
                        "Put": {
                            "TableName": self.tables.tickets,
                            "Item": _to_ddb(ticket.to_item()),
                            "ConditionExpression": "attribute_not_exists(ticket_id)",
                        }
                    },
                    {
                        "Update": {
                            "TableName": self.tables.config,
                            "Key": _to_ddb({"config_id": CONFIG_ID}),
                            **update.kwargs(),
                        }
                    },
                ],
            )
        except ClientError as e:
            if _is_conditional_failure(e):
                log.info("Ticket %s already exists; stake not re-applied", ticket.ticket_id)
                return False
            raise
        return True

    def settle_ticket(self, ticket_id: str, draw_id: str, winner_fields: dict | None = None) -> bool:
        """Stamp the closing draw on an open ticket. False if it was already settled."""
        update = _Update().set("drawId", draw_id)
        for attr, val in (winner_fields or {}).items():
            update.set(attr, val)
        condition = f"{update.name('drawId')} = {update.value(CURRENT_DRAW)}"
        try:
            self._update(self.tables.tickets, {"ticket_id": ticket_id}, update, condition=condition)
        except ClientError as e:
            if _is_conditional_failure(e):
                log.warning("Ticket %s was already settled; skipping", ticket_id)
                return False
            raise
        return True

    def mark_winner_notified(self, ticket_id: str) -> bool:
        """Flip winnerNotified once. False if it was already set."""
        update = _Update().set("winnerNotified", True).set("winnerNotifiedAt", now_ms())
        flag = update.name("winnerNotified")
        condition = f"attribute_exists(ticket_id) AND attribute_not_exists({flag})"
        try:
            self._update(self.tables.tickets, {"ticket_id": ticket_id}, update, condition=condition)
        except ClientError as e:
            if _is_conditional_failure(e):
                return False
            raise
        return True

    def clear_winner_notified(self, ticket_id: str):
        """Undo mark_winner_notified after a send that did not go out."""
        update = _Update().remove("winnerNotified").remove("winnerNotifiedAt")
        self._update(self.tables.tickets, {"ticket_id": ticket_id}, update)

    # ---------- Draws ----------
    def put_draw(self, draw: Draw):
        self._put(self.tables.draws, draw.to_item(), condition="attribute_not_exists(draw_id)")

    def get_draw(self, draw_id: str) -> Draw | None:
        item = self._get(self.tables.draws, {"draw_id": draw_id})
        return Draw.from_item(item) if item else None

    def list_draws(self) -> list[Draw]:
        draws = [Draw.from_item(i) for i in self._scan_all(self.tables.draws)]
        return sorted(draws, key=lambda d: d.completedTime or 0, reverse=True)

    # ---------- Sessions ----------
    def get_session(self, session_id: str) -> Session | None:
        item = self._get(self.tables.sessions, {"session_id": session_id})
        return Session.from_item(item) if item else None

    def put_session(self, session: Session):
        self._put(self.tables.sessions, session.to_item())

    def update_session(self, session_id: str, fields: dict):
        update = _Update()
        for attr, val in fields.items():
            update.set(attr, val)
        self._update(self.tables.sessions, {"session_id": session_id}, update)

    def claim_session_payment(self, session: Session, fields: dict) -> bool:
        """Move a session into payment processing unless a collection already started.

        Returns False if another request already claimed the payment.
        """
        update = _Update()
        for attr, val in fields.items():
            update.set(attr, val)
        status = update.name("paymentStatus")
        condition = (
            f"attribute_not_exists(session_id) OR attribute_not_exists({status}) "
            f"OR {status} = {update.value('NOT_STARTED')}"
        )
        item = session.to_item()
        item.pop("session_id", None)
        # Carry the session's base attributes so a first-time claim creates a full item.
        for attr, val in item.items():
            if attr not in fields:
                update.set(attr, val)
        try:
            self._update(self.tables.sessions, {"session_id": session.session_id}, update, condition=condition)
        except ClientError as e:
            if _is_conditional_failure(e):
                return False
            raise
        return True

    # ---------- Payments ----------
    def put_payment(self, payment):
        self._put(self.tables.payments, payment.to_item())

    def get_payment(self, payment_ref: str) -> dict | None:
        return self._get(self.tables.payments, {"payment_ref": payment_ref})

    # ---------- Audit ----------
    def log_audit(self, action: str, details: str, admin_id: str = "SYSTEM"):
        """Best-effort audit trail entry; failures are logged and swallowed."""
        item = {
            "log_id": str(uuid.uuid4()),
            "timestamp": now_ms(),
            "action": action,
            "details": details,
            "adminId": admin_id,
        }
        try:
            self._put(self.tables.audit, item)
        except Exception as e:
            log.warning("Failed to write audit log %s: %s", action, e)
