"""Claim-and-select engine producing exactly one winner per target."""

from __future__ import annotations

import logging
import random
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Optional, Sequence

from sqlalchemy import and_, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from ..config import DEFAULT_CLAIM_STALE_SECONDS
from ..db.utils import as_utc, utcnow
from ..models import (
    BonusDrop,
    BonusDropStatus,
    Draw,
    DrawStatus,
    RewardKind,
    RewardRecord,
    Ticket,
    TicketStatus,
)

logger = logging.getLogger(__name__)

RESOLVED = "resolved"
FIRED = "fired"
ALREADY_HANDLED = "already_handled"
CANCELLED_NO_TICKETS = "cancelled_no_tickets"
CLOSED_NO_TICKETS = "closed_no_tickets"
SKIPPED = "skipped"

# Reasons a claimed outcome was rolled back.
CLAIM_SUPERSEDED = "claim_superseded"
TICKET_CHANGED = "ticket_changed"

MAIN_LABEL = "Main draw winner"


class _ClaimLost(Exception):
    """Raised inside the outcome transaction to roll it back."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


def _discarded_status(lost: _ClaimLost) -> str:
    # The picked ticket moved under us: nothing was handled, the target stays pending.
    if lost.reason == TICKET_CHANGED:
        return SKIPPED
    return ALREADY_HANDLED


@dataclass
class SelectionOutcome:
    """Value object describing what one selection attempt did.

    Attributes
    ----------
    status : str
        One of ``resolved``, ``fired``, ``already_handled``,
        ``cancelled_no_tickets``, ``closed_no_tickets`` or ``skipped``.
        ``skipped`` means the claim was released without an outcome and the
        target is still pending for the next cycle.
    target_type : str
        ``"draw"`` or ``"bonus_drop"``.
    target_id : int
        Primary key of the draw or bonus drop.
    reward_id : Optional[int]
        The new :class:`RewardRecord`, when one was written.
    reason : Optional[str]
        Short machine readable explanation for non-winning outcomes.
    """

    status: str
    target_type: str
    target_id: int
    reward_id: Optional[int] = None
    ticket_id: Optional[int] = None
    ticket_code: Optional[str] = None
    wallet_address: Optional[str] = None
    payout_amount: Optional[int] = None
    reason: Optional[str] = None

    @property
    def produced_reward(self) -> bool:
        return self.reward_id is not None

    def to_json(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "targetType": self.target_type,
            "targetId": self.target_id,
            "rewardId": self.reward_id,
            "ticketId": self.ticket_id,
            "ticketCode": self.ticket_code,
            "walletAddress": self.wallet_address,
            "payoutAmount": self.payout_amount,
            "reason": self.reason,
        }


class WinnerSelector:
    """Runs the claim -> select -> persist sequence for draws and bonus drops.

    Every instance method opens its own short transactions through
    ``session_factory``; no state is kept between calls, so any number of
    selectors in any number of processes can target the same rows.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        *,
        rng: Optional[random.Random] = None,
        stale_after: Optional[timedelta] = None,
    ) -> None:
        """Create a selector.

        Parameters
        ----------
        session_factory : sessionmaker
            Factory for sessions bound to the transactional store.
        rng : Optional[random.Random], default: None
            Source of the uniform pick. Defaults to :class:`random.SystemRandom`.
        stale_after : Optional[timedelta], default: None
            Age after which a claim that produced no outcome may be taken
            over by another invocation.
        """

        self._session_factory = session_factory
        self._rng = rng or random.SystemRandom()
        self._stale_after = (
            stale_after
            if stale_after is not None
            else timedelta(seconds=DEFAULT_CLAIM_STALE_SECONDS)
        )

    # -------- main draw --------
    def resolve_draw(self, draw_id: int, now: Optional[datetime] = None) -> SelectionOutcome:
        """Pick the main winner of ``draw_id``.

        Notes
        -----
        1. Claim the draw with a conditional update; zero rows means another
           invocation owns it or it is already resolved.
        2. Load the IN_DRAW tickets of the draw.
        3. With no tickets the draw is closed and marked resolved so automatic
           cycles stop retrying it.
        4. Otherwise pick uniformly and, in one transaction, complete the
           draw, flip the ticket to WON and insert the MAIN record.
        """
        now = as_utc(now or utcnow())
        token = self._claim_draw(draw_id, now)
        if token is None:
            return SelectionOutcome(
                status=ALREADY_HANDLED,
                target_type="draw",
                target_id=draw_id,
                reason="claim_not_acquired",
            )

        try:
            with self._session_factory.begin() as session:
                return self._complete_draw(session, draw_id, token, now)
        except _ClaimLost as lost:
            logger.info(f"Draw {draw_id}: outcome discarded ({lost.reason})")
            self._release_claim(Draw, draw_id, token)
            return SelectionOutcome(
                status=_discarded_status(lost),
                target_type="draw",
                target_id=draw_id,
                reason=lost.reason,
            )
        except IntegrityError:
            logger.warning(f"Draw {draw_id}: MAIN reward already recorded")
            return SelectionOutcome(
                status=ALREADY_HANDLED,
                target_type="draw",
                target_id=draw_id,
                reason="duplicate_reward",
            )
        except SQLAlchemyError:
            self._release_claim(Draw, draw_id, token)
            raise

    def _claim_draw(self, draw_id: int, now: datetime) -> Optional[str]:
        has_main = (
            select(RewardRecord.id)
            .where(
                RewardRecord.draw_id == Draw.id,
                RewardRecord.kind == RewardKind.MAIN.value,
            )
            .correlate(Draw)
            .exists()
        )
        return self._claim(
            Draw,
            draw_id,
            now,
            Draw.resolved_at.is_(None),
            Draw.status != DrawStatus.COMPLETED.value,
            ~has_main,
        )

    def _complete_draw(
        self, session: Session, draw_id: int, token: str, now: datetime
    ) -> SelectionOutcome:
        draw = session.get(Draw, draw_id)
        if draw is None:
            raise _ClaimLost("draw_missing")

        pool = self._eligible_pool(session, draw_id)
        if not pool:
            self._conditional_update(
                session,
                Draw,
                draw_id,
                token,
                {"status": DrawStatus.CLOSED.value, "resolved_at": now},
                Draw.resolved_at.is_(None),
            )
            logger.info(f"Draw {draw_id}: no eligible tickets, closed without winner")
            return SelectionOutcome(
                status=CLOSED_NO_TICKETS,
                target_type="draw",
                target_id=draw_id,
                reason="no_eligible_tickets",
            )

        ticket = self._pick(pool)
        self._conditional_update(
            session,
            Draw,
            draw_id,
            token,
            {
                "status": DrawStatus.COMPLETED.value,
                "resolved_at": now,
                "winner_ticket_id": ticket.id,
            },
            Draw.resolved_at.is_(None),
        )
        self._flip_ticket(session, ticket)
        reward = RewardRecord(
            draw_id=draw_id,
            ticket_id=ticket.id,
            kind=RewardKind.MAIN.value,
            label=MAIN_LABEL,
            payout_amount=draw.pool_amount,
            is_paid_out=False,
            created_at=now,
        )
        session.add(reward)
        session.flush()

        logger.info(
            f"Draw {draw_id}: ticket {ticket.code} won from a pool of {len(pool)}"
        )
        return SelectionOutcome(
            status=RESOLVED,
            target_type="draw",
            target_id=draw_id,
            reward_id=reward.id,
            ticket_id=ticket.id,
            ticket_code=ticket.code,
            wallet_address=ticket.wallet_address,
            payout_amount=reward.payout_amount,
        )

    # -------- bonus drops --------
    def fire_bonus_drop(
        self, drop_id: int, now: Optional[datetime] = None
    ) -> SelectionOutcome:
        """Fire ``drop_id``: claim it, then award it or cancel it for lack of tickets."""

        now = as_utc(now or utcnow())
        token = self._claim(
            BonusDrop,
            drop_id,
            now,
            BonusDrop.status == BonusDropStatus.SCHEDULED.value,
        )
        if token is None:
            return SelectionOutcome(
                status=ALREADY_HANDLED,
                target_type="bonus_drop",
                target_id=drop_id,
                reason="claim_not_acquired",
            )

        try:
            with self._session_factory.begin() as session:
                return self._complete_bonus(session, drop_id, token, now)
        except _ClaimLost as lost:
            logger.info(f"Bonus drop {drop_id}: outcome discarded ({lost.reason})")
            self._release_claim(BonusDrop, drop_id, token)
            return SelectionOutcome(
                status=_discarded_status(lost),
                target_type="bonus_drop",
                target_id=drop_id,
                reason=lost.reason,
            )
        except IntegrityError:
            logger.warning(f"Bonus drop {drop_id}: ticket already holds a bonus in this draw")
            self._release_claim(BonusDrop, drop_id, token)
            return SelectionOutcome(
                status=ALREADY_HANDLED,
                target_type="bonus_drop",
                target_id=drop_id,
                reason="duplicate_reward",
            )
        except SQLAlchemyError:
            self._release_claim(BonusDrop, drop_id, token)
            raise

    def _complete_bonus(
        self, session: Session, drop_id: int, token: str, now: datetime
    ) -> SelectionOutcome:
        drop = session.get(BonusDrop, drop_id)
        if drop is None:
            raise _ClaimLost("bonus_drop_missing")

        scheduled = BonusDrop.status == BonusDropStatus.SCHEDULED.value
        pool = self._eligible_pool(session, drop.draw_id, exclude_bonus_winners=True)
        if not pool:
            self._conditional_update(
                session,
                BonusDrop,
                drop_id,
                token,
                {"status": BonusDropStatus.CANCELLED.value},
                scheduled,
            )
            logger.info(f"Bonus drop {drop_id}: no eligible tickets, cancelled")
            return SelectionOutcome(
                status=CANCELLED_NO_TICKETS,
                target_type="bonus_drop",
                target_id=drop_id,
                reason="no_eligible_tickets",
            )

        ticket = self._pick(pool)
        self._conditional_update(
            session,
            BonusDrop,
            drop_id,
            token,
            {"status": BonusDropStatus.FIRED.value, "fired_at": now},
            scheduled,
        )
        self._flip_ticket(session, ticket)
        reward = RewardRecord(
            draw_id=drop.draw_id,
            ticket_id=ticket.id,
            bonus_drop_id=drop.id,
            kind=RewardKind.BONUS.value,
            label=drop.label,
            payout_amount=drop.amount,
            is_paid_out=False,
            created_at=now,
        )
        session.add(reward)
        session.flush()

        logger.info(f"Bonus drop {drop_id}: ticket {ticket.code} won {drop.amount}")
        return SelectionOutcome(
            status=FIRED,
            target_type="bonus_drop",
            target_id=drop_id,
            reward_id=reward.id,
            ticket_id=ticket.id,
            ticket_code=ticket.code,
            wallet_address=ticket.wallet_address,
            payout_amount=reward.payout_amount,
        )

    # -------- shared steps --------
    def _claim(self, model, target_id: int, now: datetime, *conditions) -> Optional[str]:
        """Take the claim on one row in a single committed UPDATE.

        Returns the claim token when this call's update applied, ``None``
        when it affected zero rows.
        """
        token = uuid.uuid4().hex
        stale_cutoff = now - self._stale_after
        stmt = (
            update(model)
            .where(
                model.id == target_id,
                *conditions,
                or_(model.claim_token.is_(None), model.claimed_at <= stale_cutoff),
            )
            .values(claim_token=token, claimed_at=now)
            .execution_options(synchronize_session=False)
        )
        with self._session_factory.begin() as session:
            claimed = session.execute(stmt).rowcount
        if claimed != 1:
            logger.debug(f"{model.__name__} {target_id}: claim not acquired")
            return None
        return token

    @staticmethod
    def _conditional_update(
        session: Session, model, target_id: int, token: str, values: dict, *conditions
    ) -> None:
        stmt = (
            update(model)
            .where(model.id == target_id, model.claim_token == token, *conditions)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if session.execute(stmt).rowcount != 1:
            raise _ClaimLost(CLAIM_SUPERSEDED)

    @staticmethod
    def _flip_ticket(session: Session, ticket: Ticket) -> None:
        stmt = (
            update(Ticket)
            .where(Ticket.id == ticket.id, Ticket.status == TicketStatus.IN_DRAW.value)
            .values(status=TicketStatus.WON.value)
            .execution_options(synchronize_session=False)
        )
        if session.execute(stmt).rowcount != 1:
            raise _ClaimLost(TICKET_CHANGED)
        ticket.status = TicketStatus.WON.value

    @staticmethod
    def _eligible_pool(
        session: Session, draw_id: int, *, exclude_bonus_winners: bool = False
    ) -> list[Ticket]:
        stmt = select(Ticket).where(
            Ticket.draw_id == draw_id,
            Ticket.status == TicketStatus.IN_DRAW.value,
        )
        if exclude_bonus_winners:
            already_won = (
                select(RewardRecord.id)
                .where(
                    and_(
                        RewardRecord.ticket_id == Ticket.id,
                        RewardRecord.draw_id == draw_id,
                        RewardRecord.kind == RewardKind.BONUS.value,
                    )
                )
                .correlate(Ticket)
                .exists()
            )
            stmt = stmt.where(~already_won)
        return list(session.scalars(stmt.order_by(Ticket.id.asc())))

    def _pick(self, pool: Sequence[Ticket]) -> Ticket:
        return self._rng.choice(list(pool))

    def _release_claim(self, model, target_id: int, token: str) -> None:
        """Drop a claim whose outcome was not written so the next cycle can retry."""

        stmt = (
            update(model)
            .where(model.id == target_id, model.claim_token == token)
            .values(claim_token=None, claimed_at=None)
            .execution_options(synchronize_session=False)
        )
        try:
            with self._session_factory.begin() as session:
                session.execute(stmt)
        except SQLAlchemyError as e:
            # The claim then expires after ``stale_after`` instead.
            logger.error(f"{model.__name__} {target_id}: could not release claim: {e}")


__all__ = [
    "ALREADY_HANDLED",
    "CANCELLED_NO_TICKETS",
    "CLOSED_NO_TICKETS",
    "FIRED",
    "RESOLVED",
    "SKIPPED",
    "TICKET_CHANGED",
    "SelectionOutcome",
    "WinnerSelector",
]
