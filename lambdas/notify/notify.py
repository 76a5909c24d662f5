import os
import json
import logging
from twilio.rest import Client

from lambdas.lottery.runtime import build_store
from lambdas.lottery.settings import Settings

# Set up logging
logger = logging.getLogger()
logger.setLevel(logging.INFO)

# Twilio configuration (optional for testing)
TWILIO_SID = os.environ.get("TWILIO_ACCOUNT_SID")
TWILIO_TOKEN = os.environ.get("TWILIO_AUTH_TOKEN")
TWILIO_FROM = os.environ.get("TWILIO_FROM_NUMBER")

# Check if Twilio is configured
TWILIO_CONFIGURED = all([TWILIO_SID, TWILIO_TOKEN, TWILIO_FROM])
if TWILIO_CONFIGURED:
    twilio_client = Client(TWILIO_SID, TWILIO_TOKEN)
else:
    logger.warning("Twilio not configured. Running in mock mode.")
    twilio_client = None

_STORE = None


def _get_store():
    global _STORE
    if _STORE is None:
        _STORE = build_store(Settings.from_env())
    return _STORE


def _to_e164(phone):
    """Ghana MSISDNs arrive as 233XXXXXXXXX or 0XXXXXXXXX; Twilio wants +233XXXXXXXXX."""
    digits = "".join(ch for ch in str(phone) if ch.isdigit())
    if str(phone).startswith("+"):
        return "+" + digits
    if digits.startswith("0") and len(digits) == 10:
        return "+233" + digits[1:]
    return "+" + digits


def lambda_handler(event, context):
    """
    Notify Lambda - sends the winner SMS after a confirmed MoMo payout
    Expected event format (async invoke from the draw engine):
    {
        "ticket_id": "TKT-abc123",
        "phone": "233241234567",
        "amount": 3507.0,
        "draw_id": "CASH-20261018120000-1A2B3C4D"
    }
    """
    try:
        logger.info(f"Notify Lambda invoked with event: {event}")

        # Parse event (handle both direct invocation and API Gateway)
        if "body" in event:
            event = json.loads(event["body"])

        ticket_id = event.get("ticket_id")
        phone = event.get("phone")
        amount = float(event.get("amount", 0))
        draw_id = event.get("draw_id", "")

        if not ticket_id or not phone:
            logger.error("Missing required fields: ticket_id or phone")
            return {
                "statusCode": 400,
                "body": json.dumps({"error": "Missing ticket_id or phone"})
            }

        store = _get_store()
        ticket = store.get_ticket(ticket_id)
        if ticket is None:
            logger.error(f"Ticket {ticket_id} not found")
            return {
                "statusCode": 404,
                "body": json.dumps({"error": "Ticket not found"})
            }

        # Claim the notification first so retried invocations never text twice
        if not store.mark_winner_notified(ticket_id):
            logger.info(f"Winner already notified for ticket {ticket_id}. Skipping duplicate.")
            return {
                "statusCode": 200,
                "body": json.dumps({
                    "ok": True,
                    "message": "Notification already sent",
                    "skipped": True
                })
            }

        body = (
            f"Congratulations! You won GHS {amount:,.2f} "
            f"in Home Radio Cash Out draw {draw_id}. "
            f"The money has been sent to your MoMo wallet."
        )
        # Keep to a single SMS segment
        if len(body) > 160:
            body = f"You won GHS {amount:,.2f} on Home Radio Cash Out! Check your MoMo wallet."

        to_number = _to_e164(phone)
        if TWILIO_CONFIGURED:
            logger.info(f"Sending SMS to {to_number}")
            try:
                msg = twilio_client.messages.create(
                    to=to_number,
                    from_=TWILIO_FROM,
                    body=body
                )
            except Exception:
                # Release the claim so a retried invocation can send it
                store.clear_winner_notified(ticket_id)
                raise
            message_sid = msg.sid
        else:
            logger.info(f"📱 MOCK MODE: Would send SMS to {to_number}")
            logger.info(f"   Message: {body[:100]}...")
            message_sid = "MOCK-" + ticket_id

        logger.info(f"✅ Winner notified. Message SID: {message_sid}")

        return {
            "statusCode": 200,
            "body": json.dumps({
                "ok": True,
                "messageSid": message_sid,
                "phone": to_number
            })
        }

    except Exception as e:
        logger.exception(f"Error in notify lambda: {str(e)}")
        return {
            "statusCode": 500,
            "body": json.dumps({"error": "Internal server error"})
        }
