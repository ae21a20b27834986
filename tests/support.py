from __future__ import annotations

import random
import unittest
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy.pool import StaticPool

from dailydraw.config import Settings
from dailydraw.db.engine import get_sessionmaker, make_engine
from dailydraw.draw.lifecycle import ensure_active_draw
from dailydraw.models import Base, BonusDrop, BonusDropStatus, Draw, Ticket, TicketStatus

# 2025-06-10 12:00 in Madrid (CEST, UTC+2); today's cutover is 20:00Z.
NOON = datetime(2025, 6, 10, 10, 0, tzinfo=timezone.utc)
CUTOVER = datetime(2025, 6, 10, 20, 0, tzinfo=timezone.utc)


class DatabaseTestCase(unittest.TestCase):
    """Fresh in-memory database per test, shared by every session and thread."""

    settings = Settings(default_pool=1000, admin_token="admin-secret", cron_key="cron-secret")

    def setUp(self) -> None:
        self.engine = make_engine(
            "sqlite+pysqlite://",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        Base.metadata.create_all(self.engine)
        self.Session = get_sessionmaker(self.engine)

    def tearDown(self) -> None:
        self.engine.dispose()

    # -------- seeding helpers --------
    def make_draw(self, now: datetime = NOON, settings: Optional[Settings] = None) -> Draw:
        return ensure_active_draw(self.Session, settings or self.settings, now)

    def add_tickets(self, draw_id: int, count: int, prefix: str = "wallet") -> list[int]:
        with self.Session.begin() as session:
            tickets = [
                Ticket(
                    code=f"DRW-T{draw_id:03d}-{i:04d}",
                    wallet_address=f"{prefix}-{i}",
                    draw_id=draw_id,
                    status=TicketStatus.IN_DRAW.value,
                )
                for i in range(count)
            ]
            session.add_all(tickets)
            session.flush()
            return [t.id for t in tickets]

    def add_drop(
        self,
        draw_id: int,
        scheduled_at: datetime,
        *,
        amount: int = 100,
        label: str = "Bonus",
        created_at: Optional[datetime] = None,
        status: str = BonusDropStatus.SCHEDULED.value,
    ) -> int:
        with self.Session.begin() as session:
            drop = BonusDrop(
                draw_id=draw_id,
                label=label,
                amount=amount,
                scheduled_at=scheduled_at,
                status=status,
                created_at=created_at or scheduled_at - timedelta(minutes=30),
            )
            session.add(drop)
            session.flush()
            return drop.id

    def seeded_rng(self, seed: int = 7) -> random.Random:
        return random.Random(seed)
