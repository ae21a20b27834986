import unittest
from datetime import timedelta
from unittest.mock import patch

from sqlalchemy.exc import IntegrityError

from dailydraw.errors import InvalidTransition
from dailydraw.models import (
    BonusDrop,
    BonusDropStatus,
    Draw,
    DrawStatus,
    RewardKind,
    RewardRecord,
    Ticket,
    TicketStatus,
)
from dailydraw.models.status import can_transition, check_transition
from dailydraw.models.utils import TICKET_CODE_ALPHABET, generate_ticket_code

from tests.support import NOON, DatabaseTestCase


class TransitionTableTestCase(unittest.TestCase):
    def test_draw_transitions(self):
        self.assertTrue(can_transition("OPEN", DrawStatus.CLOSED))
        self.assertTrue(can_transition(DrawStatus.CLOSED, DrawStatus.OPEN))
        self.assertTrue(can_transition("CLOSED", DrawStatus.COMPLETED))
        self.assertFalse(can_transition("COMPLETED", DrawStatus.OPEN))

    def test_bonus_transitions_are_one_way(self):
        self.assertTrue(can_transition("SCHEDULED", BonusDropStatus.FIRED))
        self.assertTrue(can_transition("SCHEDULED", BonusDropStatus.CANCELLED))
        self.assertFalse(can_transition("FIRED", BonusDropStatus.CANCELLED))
        self.assertFalse(can_transition("CANCELLED", BonusDropStatus.SCHEDULED))

    def test_ticket_transitions(self):
        self.assertTrue(can_transition("IN_DRAW", TicketStatus.WON))
        self.assertTrue(can_transition("WON", TicketStatus.CLAIMED))
        self.assertFalse(can_transition("WON", TicketStatus.IN_DRAW))
        self.assertFalse(can_transition("bogus", TicketStatus.WON))

    def test_check_transition_raises(self):
        with self.assertRaises(InvalidTransition) as ctx:
            check_transition("FIRED", BonusDropStatus.SCHEDULED)
        self.assertEqual(ctx.exception.code, "INVALID_TRANSITION")


class TicketCodeTestCase(DatabaseTestCase):
    def test_format(self):
        code = generate_ticket_code()
        prefix, first, second = code.split("-")
        self.assertEqual(prefix, "DRW")
        self.assertEqual(len(first), 4)
        self.assertEqual(len(second), 4)
        self.assertTrue(set(first + second) <= set(TICKET_CODE_ALPHABET))

    def test_retries_on_collision_and_gives_up(self):
        draw_id = self.make_draw().id
        with self.Session.begin() as session:
            session.add(Ticket(code="DRW-AAAA-AAAA", wallet_address="w", draw_id=draw_id))

        with self.Session() as session:
            with patch("dailydraw.models.utils.secrets.choice", return_value="A"):
                with self.assertRaises(RuntimeError):
                    generate_ticket_code(session=session, max_attempts=3)


class ConstraintTestCase(DatabaseTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.draw_id = self.make_draw().id

    def test_one_draw_per_day_bucket(self):
        with self.assertRaises(IntegrityError):
            with self.Session.begin() as session:
                existing = session.get(Draw, self.draw_id)
                session.add(
                    Draw(
                        day_bucket=existing.day_bucket,
                        status=DrawStatus.OPEN.value,
                        closes_at=existing.closes_at,
                    )
                )

    def test_one_ticket_per_wallet_per_draw(self):
        self.add_tickets(self.draw_id, 1, prefix="dup")
        with self.assertRaises(IntegrityError):
            with self.Session.begin() as session:
                session.add(Ticket(code="DRW-XXXX-XXXX", wallet_address="dup-0", draw_id=self.draw_id))

    def test_ticket_cannot_move_between_draws(self):
        other = self.make_draw(NOON + timedelta(days=1))
        (ticket_id,) = self.add_tickets(self.draw_id, 1)
        with self.Session() as session:
            ticket = session.get(Ticket, ticket_id)
            with self.assertRaises(ValueError):
                ticket.draw_id = other.id

    def test_single_main_reward_per_draw(self):
        a, b = self.add_tickets(self.draw_id, 2)
        with self.Session.begin() as session:
            session.add(RewardRecord(draw_id=self.draw_id, ticket_id=a, kind=RewardKind.MAIN.value))
        with self.assertRaises(IntegrityError):
            with self.Session.begin() as session:
                session.add(
                    RewardRecord(draw_id=self.draw_id, ticket_id=b, kind=RewardKind.MAIN.value)
                )

    def test_single_bonus_reward_per_ticket_per_draw(self):
        (ticket_id,) = self.add_tickets(self.draw_id, 1)
        drops = [self.add_drop(self.draw_id, NOON + timedelta(minutes=m)) for m in (1, 2)]
        with self.Session.begin() as session:
            session.add(
                RewardRecord(
                    draw_id=self.draw_id,
                    ticket_id=ticket_id,
                    bonus_drop_id=drops[0],
                    kind=RewardKind.BONUS.value,
                )
            )
        with self.assertRaises(IntegrityError):
            with self.Session.begin() as session:
                session.add(
                    RewardRecord(
                        draw_id=self.draw_id,
                        ticket_id=ticket_id,
                        bonus_drop_id=drops[1],
                        kind=RewardKind.BONUS.value,
                    )
                )

    def test_latest_bonus_for_draw_breaks_ties_by_id(self):
        first = self.add_drop(self.draw_id, NOON, created_at=NOON)
        second = self.add_drop(self.draw_id, NOON, created_at=NOON)
        with self.Session() as session:
            self.assertEqual(BonusDrop.latest_for_draw(session, self.draw_id).id, max(first, second))


if __name__ == "__main__":
    unittest.main()
