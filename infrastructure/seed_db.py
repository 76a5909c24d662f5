import sys
from decimal import Decimal
from pathlib import Path

import boto3

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from lambdas.lottery.models import SystemConfig, Ticket, now_ms  # noqa: E402
from lambdas.lottery.settings import Settings  # noqa: E402
from lambdas.lottery.store import LedgerStore  # noqa: E402

settings = Settings.from_env()
dynamodb = boto3.client('dynamodb', region_name=settings.region)

TABLE_KEYS = {
    'config': 'config_id',
    'tickets': 'ticket_id',
    'draws': 'draw_id',
    'sessions': 'session_id',
    'payments': 'payment_ref',
    'audit': 'log_id',
}

SAMPLE_STAKES = [
    ('233241000001', '5', 'MTN'),
    ('233201000002', '5', 'Vodafone'),
    ('233271000003', '10', 'AirtelTigo'),
]


def create_tables():
    existing = set(dynamodb.list_tables()['TableNames'])
    for attr, key in TABLE_KEYS.items():
        name = getattr(settings.tables, attr)
        if name in existing:
            print(f"{name} already exists, skipping")
            continue
        print(f"Creating {name}...")
        dynamodb.create_table(
            TableName=name,
            KeySchema=[{'AttributeName': key, 'KeyType': 'HASH'}],
            AttributeDefinitions=[{'AttributeName': key, 'AttributeType': 'S'}],
            BillingMode='PAY_PER_REQUEST',
        )
        dynamodb.get_waiter('table_exists').wait(TableName=name)

    # Abandoned USSD sessions are reaped by DynamoDB TTL (epoch seconds)
    dynamodb.update_time_to_live(
        TableName=settings.tables.sessions,
        TimeToLiveSpecification={'Enabled': True, 'AttributeName': 'expiresAt'},
    )
    print("Tables ready!")


def seed_config():
    store = LedgerStore(client=dynamodb, tables=settings.tables)
    if store.init_config(SystemConfig.initial()):
        print("System config seeded successfully!")
    else:
        print("System config already present, left untouched")


def seed_tickets():
    store = LedgerStore(client=dynamodb, tables=settings.tables)
    now = now_ms()
    print(f"Seeding {settings.tables.tickets}...")
    for i, (phone, stake, provider) in enumerate(SAMPLE_STAKES, start=1):
        ticket = Ticket(
            ticket_id=f"TKT-SAMPLE-{i:03d}",
            phone=phone,
            stake=Decimal(stake),
            timestamp=now,
            provider=provider,
        )
        # Goes through the jackpot transaction so the pool stays consistent
        if not store.create_ticket_with_stake(ticket):
            print(f"  {ticket.ticket_id} already exists")
    print("Sample tickets seeded successfully!")


if __name__ == '__main__':

    if len(sys.argv) < 2:
        print("Usage: python infrastructure/seed_db.py [tables|config|tickets|all]")
        sys.exit(1)

    option = sys.argv[1].lower()

    if option == 'tables' or option == 'all':
        create_tables()

    if option == 'config' or option == 'all':
        seed_config()

    if option == 'tickets' or option == 'all':
        seed_tickets()

    print("\nDatabase seeding completed!")
