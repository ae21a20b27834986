import unittest
from datetime import timedelta

from sqlalchemy import select

from dailydraw.draw.panic import (
    cancel_pending_bonuses,
    force_close_today,
    rollback_last_bonus,
)
from dailydraw.draw.selector import WinnerSelector
from dailydraw.errors import (
    InvalidTransition,
    NoDrawToday,
    NothingToCancel,
    NothingToRollback,
)
from dailydraw.models import BonusDrop, BonusDropStatus, Draw, DrawStatus

from tests.support import NOON, DatabaseTestCase


class NoDrawTodayTestCase(DatabaseTestCase):
    def test_every_action_requires_todays_draw(self):
        for action in (force_close_today, cancel_pending_bonuses, rollback_last_bonus):
            with self.subTest(action=action.__name__):
                with self.assertRaises(NoDrawToday):
                    with self.Session.begin() as session:
                        action(session, self.settings, NOON)
        with self.Session() as session:
            self.assertEqual(session.scalars(select(Draw)).all(), [])


class ForceCloseTestCase(DatabaseTestCase):
    def test_closes_immediately(self):
        draw_id = self.make_draw().id
        when = NOON + timedelta(minutes=3)
        with self.Session.begin() as session:
            result = force_close_today(session, self.settings, when)
        self.assertEqual(result.closes_at, when)

        with self.Session() as session:
            draw = session.get(Draw, draw_id)
            self.assertEqual(draw.status, DrawStatus.CLOSED.value)
            self.assertEqual(draw.closes_at, when)

        # Later lifecycle passes keep the override.
        again = self.make_draw(NOON + timedelta(minutes=10))
        self.assertEqual(again.status, DrawStatus.CLOSED.value)
        self.assertEqual(again.closes_at, when)

    def test_completed_draw_cannot_be_force_closed(self):
        draw_id = self.make_draw().id
        with self.Session.begin() as session:
            session.get(Draw, draw_id).status = DrawStatus.COMPLETED.value
        with self.assertRaises(InvalidTransition):
            with self.Session.begin() as session:
                force_close_today(session, self.settings, NOON)


class CancelPendingBonusesTestCase(DatabaseTestCase):
    def test_cancels_only_scheduled_drops(self):
        draw_id = self.make_draw().id
        self.add_tickets(draw_id, 3)
        fired = self.add_drop(draw_id, NOON - timedelta(minutes=5))
        WinnerSelector(self.Session).fire_bonus_drop(fired, now=NOON)
        pending = [self.add_drop(draw_id, NOON + timedelta(minutes=m)) for m in (5, 15)]

        with self.Session.begin() as session:
            result = cancel_pending_bonuses(session, self.settings, NOON)
        self.assertEqual(result.cancelled, 2)

        with self.Session() as session:
            statuses = {d.id: d.status for d in session.scalars(select(BonusDrop))}
        self.assertEqual(statuses[fired], BonusDropStatus.FIRED.value)
        for drop_id in pending:
            self.assertEqual(statuses[drop_id], BonusDropStatus.CANCELLED.value)

    def test_nothing_to_cancel(self):
        self.make_draw()
        with self.assertRaises(NothingToCancel):
            with self.Session.begin() as session:
                cancel_pending_bonuses(session, self.settings, NOON)


class RollbackLastBonusTestCase(DatabaseTestCase):
    def test_removes_newest_by_creation_time(self):
        draw_id = self.make_draw().id
        t1, t2, t3 = (NOON - timedelta(minutes=m) for m in (30, 20, 10))
        # Schedule order differs from creation order on purpose.
        first = self.add_drop(draw_id, NOON + timedelta(hours=3), created_at=t1)
        second = self.add_drop(draw_id, NOON + timedelta(hours=1), created_at=t2)
        third = self.add_drop(draw_id, NOON + timedelta(hours=2), created_at=t3)

        removed = []
        for _ in range(3):
            with self.Session.begin() as session:
                removed.append(rollback_last_bonus(session, self.settings, NOON).bonus_drop_id)
        self.assertEqual(removed, [third, second, first])

        with self.assertRaises(NothingToRollback):
            with self.Session.begin() as session:
                rollback_last_bonus(session, self.settings, NOON)

    def test_removes_cancelled_drop_too(self):
        draw_id = self.make_draw().id
        drop_id = self.add_drop(draw_id, NOON, status=BonusDropStatus.CANCELLED.value)
        with self.Session.begin() as session:
            result = rollback_last_bonus(session, self.settings, NOON)
        self.assertEqual(result.bonus_drop_id, drop_id)
        self.assertEqual(result.status, BonusDropStatus.CANCELLED.value)

    def test_refuses_when_newest_drop_has_a_winner(self):
        draw_id = self.make_draw().id
        self.add_tickets(draw_id, 2)
        drop_id = self.add_drop(draw_id, NOON - timedelta(minutes=1))
        WinnerSelector(self.Session).fire_bonus_drop(drop_id, now=NOON)

        with self.assertRaises(NothingToRollback):
            with self.Session.begin() as session:
                rollback_last_bonus(session, self.settings, NOON)
        with self.Session() as session:
            self.assertIsNotNone(session.get(BonusDrop, drop_id))


if __name__ == "__main__":
    unittest.main()
