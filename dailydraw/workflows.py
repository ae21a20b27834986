"""High level operations composed from the draw engine.

Every function here owns its transactions: it receives a ``sessionmaker``
and opens short ``session_factory.begin()`` blocks, so callers (the HTTP
layer, scripts, tests) never manage sessions themselves.
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from .config import Settings
from .db.utils import as_utc, dt_iso, utcnow
from .draw.bonus import (
    BonusRunSummary,
    fire_due_bonus_drops,
    live_bonus_drops,
    next_bonus_drop,
    schedule_bonus_drop,
    upcoming_bonus_drops,
)
from .draw.day_bucket import bucket_for_settings
from .draw.lifecycle import ensure_active_draw_in, find_today_draw
from .draw.ops_mode import OpsModeView, read_ops_mode, set_ops_mode
from .draw.panic import (
    CancelResult,
    ForceCloseResult,
    ReopenResult,
    RollbackResult,
    cancel_pending_bonuses,
    force_close_today,
    reopen_today,
    rollback_last_bonus,
)
from .draw.selector import (
    ALREADY_HANDLED,
    CLOSED_NO_TICKETS,
    RESOLVED,
    SKIPPED,
    SelectionOutcome,
    WinnerSelector,
)
from .errors import InvalidRequest, NoDrawToday, OpsFrozen, RecordNotFound
from .models import (
    BonusDrop,
    Draw,
    DrawStatus,
    OpsMode,
    RewardRecord,
    Ticket,
    TicketStatus,
)
from .models.status import check_transition
from .models.utils import generate_ticket_code

logger = logging.getLogger(__name__)

MAX_WALLET_LENGTH = 128


@dataclass
class DrawRunSummary:
    eligible: int = 0
    resolved: int = 0
    closed: int = 0
    already_handled: int = 0
    skipped: int = 0
    failed: int = 0
    outcomes: list[SelectionOutcome] = field(default_factory=list)

    def to_json(self) -> dict[str, Any]:
        return {
            "eligible": self.eligible,
            "resolved": self.resolved,
            "closed": self.closed,
            "alreadyHandled": self.already_handled,
            "skipped": self.skipped,
            "failed": self.failed,
            "outcomes": [o.to_json() for o in self.outcomes],
        }


@dataclass
class CycleSummary:
    """Result of one orchestration cycle. Always produced, even when idle."""

    mode: OpsMode
    ran_at: datetime
    bonus: BonusRunSummary = field(default_factory=BonusRunSummary)
    draws: DrawRunSummary = field(default_factory=DrawRunSummary)

    def to_json(self) -> dict[str, Any]:
        return {
            "mode": self.mode.value,
            "ranAt": dt_iso(self.ran_at),
            "bonus": self.bonus.to_json(),
            "draws": self.draws.to_json(),
        }


def make_selector(
    session_factory: sessionmaker,
    settings: Settings,
    rng: Optional[random.Random] = None,
) -> WinnerSelector:
    return WinnerSelector(
        session_factory,
        rng=rng,
        stale_after=timedelta(seconds=settings.claim_stale_seconds),
    )


def resolve_due_draws(
    session_factory: sessionmaker, selector: WinnerSelector, now: datetime
) -> DrawRunSummary:
    """Resolve every unresolved draw whose close time has passed, oldest first."""

    stmt = (
        select(Draw.id)
        .where(
            Draw.resolved_at.is_(None),
            Draw.status != DrawStatus.COMPLETED.value,
            Draw.closes_at <= now,
        )
        .order_by(Draw.closes_at.asc(), Draw.id.asc())
    )
    with session_factory() as session:
        due_ids = list(session.scalars(stmt))

    summary = DrawRunSummary(eligible=len(due_ids))
    for draw_id in due_ids:
        try:
            outcome = selector.resolve_draw(draw_id, now=now)
        except SQLAlchemyError:
            logger.exception(f"Draw {draw_id}: resolution failed")
            summary.failed += 1
            continue
        summary.outcomes.append(outcome)
        if outcome.status == RESOLVED:
            summary.resolved += 1
        elif outcome.status == CLOSED_NO_TICKETS:
            summary.closed += 1
        elif outcome.status == ALREADY_HANDLED:
            summary.already_handled += 1
        else:
            summary.skipped += 1
    return summary


def run_cycle(
    session_factory: sessionmaker,
    settings: Settings,
    now: Optional[datetime] = None,
    rng: Optional[random.Random] = None,
) -> CycleSummary:
    """Run one orchestration cycle.

    The cycle reads the effective ops mode, fires due bonus drops and, only
    in AUTO mode, resolves the main winner of every draw past its close
    time. Both paths go through the same :class:`WinnerSelector`, so
    overlapping or repeated cycles never produce a second winner.

    Parameters
    ----------
    session_factory : sessionmaker
        Factory bound to the shared database.
    settings : Settings
        Supplies the environment AUTO flag, batch limit and claim staleness.
    now : Optional[datetime], default: None
        Reference instant, defaults to the current time.
    rng : Optional[random.Random], default: None
        Injected for deterministic tests.

    Returns
    -------
    CycleSummary
        Counters for both paths.
    """
    now = as_utc(now or utcnow())
    selector = make_selector(session_factory, settings, rng)

    with session_factory.begin() as session:
        view = read_ops_mode(session, settings)

    summary = CycleSummary(mode=view.effective_mode, ran_at=now)
    summary.bonus = fire_due_bonus_drops(
        session_factory, selector, now=now, limit=settings.bonus_batch_limit
    )
    if view.effective_mode is OpsMode.AUTO:
        summary.draws = resolve_due_draws(session_factory, selector, now)

    logger.info(
        f"Cycle at {now.isoformat()} mode={view.effective_mode.value}: "
        f"bonus fired={summary.bonus.fired}/{summary.bonus.found}, "
        f"draws resolved={summary.draws.resolved}/{summary.draws.eligible}"
    )
    return summary


# -------- administrative actions --------
def ensure_not_frozen(settings: Settings) -> None:
    if settings.ops_frozen:
        raise OpsFrozen()


def admin_set_ops_mode(
    session_factory: sessionmaker, settings: Settings, mode: Any
) -> OpsModeView:
    ensure_not_frozen(settings)
    with session_factory.begin() as session:
        return set_ops_mode(session, settings, mode)


def admin_force_close_today(
    session_factory: sessionmaker, settings: Settings, now: Optional[datetime] = None
) -> ForceCloseResult:
    ensure_not_frozen(settings)
    with session_factory.begin() as session:
        return force_close_today(session, settings, now)


def admin_reopen_today(
    session_factory: sessionmaker, settings: Settings, now: Optional[datetime] = None
) -> ReopenResult:
    ensure_not_frozen(settings)
    with session_factory.begin() as session:
        return reopen_today(session, settings, now)


def admin_cancel_bonuses(
    session_factory: sessionmaker, settings: Settings, now: Optional[datetime] = None
) -> CancelResult:
    ensure_not_frozen(settings)
    with session_factory.begin() as session:
        return cancel_pending_bonuses(session, settings, now)


def admin_rollback_last_bonus(
    session_factory: sessionmaker, settings: Settings, now: Optional[datetime] = None
) -> RollbackResult:
    ensure_not_frozen(settings)
    with session_factory.begin() as session:
        return rollback_last_bonus(session, settings, now)


def admin_schedule_bonus(
    session_factory: sessionmaker,
    settings: Settings,
    *,
    amount: Any,
    label: Optional[str] = None,
    scheduled_at: Optional[datetime] = None,
    delay_minutes: Any = None,
    now: Optional[datetime] = None,
) -> BonusDrop:
    ensure_not_frozen(settings)
    return schedule_bonus_drop(
        session_factory,
        settings,
        amount=amount,
        label=label,
        scheduled_at=scheduled_at,
        delay_minutes=delay_minutes,
        now=now,
    )


def admin_resolve_today(
    session_factory: sessionmaker,
    settings: Settings,
    now: Optional[datetime] = None,
    rng: Optional[random.Random] = None,
) -> dict[str, Any]:
    """Manually pick today's main winner, whatever the ops mode.

    Idempotent: when the draw already has a MAIN record that record is
    returned and nothing is written.
    """
    ensure_not_frozen(settings)
    now = as_utc(now or utcnow())

    with session_factory() as session:
        draw = find_today_draw(session, settings, now)
        if draw is None:
            raise NoDrawToday()
        draw_id = draw.id
        existing = RewardRecord.main_for_draw(session, draw_id)
        if existing is not None:
            return {"created": False, "winner": existing.to_json()}
        # An empty pool would close the draw for good; refuse instead.
        has_entries = session.scalar(
            select(Ticket.id)
            .where(Ticket.draw_id == draw_id, Ticket.status == TicketStatus.IN_DRAW.value)
            .limit(1)
        )
        if has_entries is None:
            raise InvalidRequest("No tickets in today's draw", code="NO_TICKETS_IN_DRAW")

    outcome = make_selector(session_factory, settings, rng).resolve_draw(draw_id, now=now)

    with session_factory() as session:
        reward = RewardRecord.main_for_draw(session, draw_id)
        if outcome.status == CLOSED_NO_TICKETS:
            raise InvalidRequest("No tickets in today's draw", code="NO_TICKETS_IN_DRAW")
        if outcome.status == SKIPPED:
            raise InvalidRequest(
                "The picked ticket changed during resolution, try again",
                code="DRAW_RETRY",
            )
        if outcome.status == ALREADY_HANDLED and reward is None:
            raise InvalidRequest(
                "Today's draw is being resolved or was closed without a winner",
                code="DRAW_ALREADY_HANDLED",
            )
        return {
            "created": outcome.status == RESOLVED,
            "winner": reward.to_json() if reward is not None else None,
        }


def admin_mark_paid(
    session_factory: sessionmaker,
    settings: Settings,
    reward_id: int,
    settlement_ref: Optional[str] = None,
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    """Record that a reward was paid out and mark its ticket CLAIMED."""

    ensure_not_frozen(settings)
    now = as_utc(now or utcnow())
    with session_factory.begin() as session:
        reward = session.get(RewardRecord, reward_id)
        if reward is None:
            raise RecordNotFound(f"Reward {reward_id} not found", code="WINNER_NOT_FOUND")

        if not reward.is_paid_out:
            reward.is_paid_out = True
            reward.paid_at = now
        if settlement_ref:
            reward.settlement_ref = settlement_ref.strip()[:128]

        ticket = reward.ticket
        if ticket is not None and ticket.status != TicketStatus.CLAIMED.value:
            check_transition(ticket.status, TicketStatus.CLAIMED)
            ticket.status = TicketStatus.CLAIMED.value
        session.flush()

        logger.info(f"Reward {reward.id} marked paid (ref={reward.settlement_ref})")
        return reward.to_json()


# -------- entries --------
def issue_ticket(
    session_factory: sessionmaker,
    settings: Settings,
    wallet_address: str,
    now: Optional[datetime] = None,
) -> Ticket:
    """Enter ``wallet_address`` into today's draw.

    Returns the wallet's existing ticket when it already entered.

    Raises
    ------
    InvalidRequest
        ``INVALID_WALLET`` for a blank or oversized address, ``DRAW_CLOSED``
        when today's draw no longer accepts entries.
    """
    wallet = (wallet_address or "").strip()
    if not wallet or len(wallet) > MAX_WALLET_LENGTH:
        raise InvalidRequest("A wallet address is required", code="INVALID_WALLET")

    now = as_utc(now or utcnow())
    with session_factory.begin() as session:
        draw = ensure_active_draw_in(session, settings, now)

        existing = Ticket.get_for_wallet(session, draw.id, wallet)
        if existing is not None:
            return existing

        if draw.status != DrawStatus.OPEN.value or now >= draw.closes_at:
            raise InvalidRequest("Today's draw is closed", code="DRAW_CLOSED")

        ticket = Ticket(
            code=generate_ticket_code(session=session),
            wallet_address=wallet,
            draw_id=draw.id,
            status=TicketStatus.IN_DRAW.value,
            created_at=now,
        )
        try:
            with session.begin_nested():
                session.add(ticket)
        except IntegrityError:
            # The same wallet entered concurrently.
            ticket = Ticket.get_for_wallet(session, draw.id, wallet)
            if ticket is None:
                raise
            return ticket

        logger.info(f"Issued ticket {ticket.code} to {wallet} for draw {draw.id}")
        return ticket


# -------- read models --------
def today_summary(
    session_factory: sessionmaker, settings: Settings, now: Optional[datetime] = None
) -> dict[str, Any]:
    """Today's draw as shown to players; a placeholder when none exists yet."""

    now = as_utc(now or utcnow())
    bucket = bucket_for_settings(now, settings)
    with session_factory() as session:
        draw = find_today_draw(session, settings, now)
        if draw is None:
            return {
                "exists": False,
                "drawId": None,
                "dayBucket": dt_iso(bucket.day_bucket),
                "status": None,
                "closesAt": dt_iso(bucket.closes_at),
                "ticketCount": 0,
                "poolAmount": settings.default_pool,
                "winner": None,
            }

        main = RewardRecord.main_for_draw(session, draw.id)
        return {
            "exists": True,
            "drawId": draw.id,
            "dayBucket": dt_iso(draw.day_bucket),
            "status": draw.status,
            "closesAt": dt_iso(draw.closes_at),
            "ticketCount": draw.ticket_count(session),
            "poolAmount": draw.pool_amount,
            "resolvedAt": dt_iso(draw.resolved_at),
            "winner": main.to_json() if main is not None else None,
        }


def ticket_json(ticket: Ticket) -> dict[str, Any]:
    return {
        "id": ticket.id,
        "code": ticket.code,
        "walletAddress": ticket.wallet_address,
        "drawId": ticket.draw_id,
        "status": ticket.status,
        "createdAt": dt_iso(ticket.created_at),
    }


def admin_today_tickets(
    session_factory: sessionmaker,
    settings: Settings,
    now: Optional[datetime] = None,
    limit: int = 100,
) -> dict[str, Any]:
    """Today's tickets for the operator view, newest first."""

    limit = max(1, min(int(limit), 500))
    now = as_utc(now or utcnow())
    with session_factory() as session:
        draw = find_today_draw(session, settings, now)
        if draw is None:
            return {"drawId": None, "tickets": []}
        stmt = (
            select(Ticket)
            .where(Ticket.draw_id == draw.id)
            .order_by(Ticket.created_at.desc(), Ticket.id.desc())
            .limit(limit)
        )
        return {
            "drawId": draw.id,
            "tickets": [ticket_json(t) for t in session.scalars(stmt)],
        }


def ticket_history(
    session_factory: sessionmaker, wallet_address: str, limit: int = 200
) -> list[dict[str, Any]]:
    """Every ticket a wallet holds across draws, newest first.

    Raises
    ------
    InvalidRequest
        ``INVALID_WALLET`` for a blank address.
    """
    wallet = (wallet_address or "").strip()
    if not wallet:
        raise InvalidRequest("A wallet address is required", code="INVALID_WALLET")

    limit = max(1, min(int(limit), 200))
    stmt = (
        select(Ticket, Draw.day_bucket)
        .join(Draw, Draw.id == Ticket.draw_id)
        .where(Ticket.wallet_address == wallet)
        .order_by(Ticket.created_at.desc(), Ticket.id.desc())
        .limit(limit)
    )
    with session_factory() as session:
        return [
            {**ticket_json(ticket), "dayBucket": dt_iso(day_bucket)}
            for ticket, day_bucket in session.execute(stmt)
        ]


def recent_rewards(session_factory: sessionmaker, limit: int = 20) -> list[dict[str, Any]]:
    limit = max(1, min(int(limit), 100))
    with session_factory() as session:
        return [r.to_json() for r in RewardRecord.recent(session, limit)]


def ops_mode_view(session_factory: sessionmaker, settings: Settings) -> OpsModeView:
    with session_factory.begin() as session:
        return read_ops_mode(session, settings)


def bonus_drop_json(drop: BonusDrop) -> dict[str, Any]:
    return {
        "id": drop.id,
        "drawId": drop.draw_id,
        "label": drop.label,
        "amount": drop.amount,
        "scheduledAt": dt_iso(drop.scheduled_at),
        "status": drop.status,
    }


def upcoming_bonuses(
    session_factory: sessionmaker,
    settings: Settings,
    now: Optional[datetime] = None,
    limit: int = 50,
) -> dict[str, Any]:
    now = as_utc(now or utcnow())
    with session_factory() as session:
        draw = find_today_draw(session, settings, now)
        drops = upcoming_bonus_drops(session, draw, now, limit) if draw is not None else []
        nxt = next_bonus_drop(session, now)
        return {
            "drawId": draw.id if draw is not None else None,
            "upcoming": [bonus_drop_json(d) for d in drops],
            "next": bonus_drop_json(nxt) if nxt is not None else None,
        }


def live_bonuses(
    session_factory: sessionmaker, settings: Settings, now: Optional[datetime] = None
) -> list[dict[str, Any]]:
    """Today's pending and fired bonus drops in schedule order."""

    now = as_utc(now or utcnow())
    with session_factory() as session:
        draw = find_today_draw(session, settings, now)
        if draw is None:
            return []
        return [bonus_drop_json(d) for d in live_bonus_drops(session, draw)]


__all__ = [
    "CycleSummary",
    "DrawRunSummary",
    "admin_cancel_bonuses",
    "admin_force_close_today",
    "admin_mark_paid",
    "admin_reopen_today",
    "admin_resolve_today",
    "admin_rollback_last_bonus",
    "admin_schedule_bonus",
    "admin_set_ops_mode",
    "admin_today_tickets",
    "bonus_drop_json",
    "ensure_not_frozen",
    "issue_ticket",
    "live_bonuses",
    "ops_mode_view",
    "recent_rewards",
    "resolve_due_draws",
    "run_cycle",
    "ticket_history",
    "ticket_json",
    "today_summary",
    "upcoming_bonuses",
]
