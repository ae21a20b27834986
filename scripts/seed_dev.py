from datetime import timedelta

from dailydraw.config import load_settings
from dailydraw.db.engine import get_sessionmaker, make_engine
from dailydraw.db.utils import utcnow
from dailydraw.draw.bonus import schedule_bonus_drop
from dailydraw.draw.lifecycle import ensure_active_draw
from dailydraw.models import Base
from dailydraw.workflows import issue_ticket

DEV_WALLETS = [
    "7xKXtg2CW87d97TXJSDpbD5jBkheTqA83TZRuJosgAsU",
    "9WzDXwBbmkg8ZTbNMqUxvQRAyrZzDsGYdLVL9zYtAWWM",
    "HN7cABqLq46Es1jh92dQQisAq662SmxELLLsHHe4YWrH",
    "4Nd1mBQtrMJVYVfKf2PJy9NZUZdTAsp7D4xWLs4gDB4T",
    "2ojv9BAiHUrvsm9gxDe7fJSzbNZSJcxZvf8dqmWGHG8S",
]


def main() -> None:
    """Reset the development database and seed today's draw."""
    settings = load_settings()
    engine = make_engine()

    # The draws <-> tickets foreign key cycle makes SQLite DROP order fragile.
    with engine.connect() as conn:
        if conn.dialect.name == "sqlite":
            conn.exec_driver_sql("PRAGMA foreign_keys=OFF")
        Base.metadata.drop_all(bind=conn)
        if conn.dialect.name == "sqlite":
            conn.exec_driver_sql("PRAGMA foreign_keys=ON")
        conn.commit()
    Base.metadata.create_all(engine)

    Session = get_sessionmaker(engine)
    now = utcnow()

    draw = ensure_active_draw(Session, settings, now)
    tickets = [issue_ticket(Session, settings, wallet, now) for wallet in DEV_WALLETS]

    drops = [
        schedule_bonus_drop(Session, settings, amount=50, label="Warm-up bonus", delay_minutes=5, now=now),
        schedule_bonus_drop(Session, settings, amount=100, delay_minutes=30, now=now),
        schedule_bonus_drop(
            Session,
            settings,
            amount=250,
            label="Last call",
            scheduled_at=draw.closes_at - timedelta(minutes=10),
            now=now,
        ),
    ]

    print(
        f"Seeded draw {draw.id} (closes {draw.closes_at.isoformat()}) with "
        f"{len(tickets)} tickets and {len(drops)} bonus drops."
    )


if __name__ == "__main__":
    main()
