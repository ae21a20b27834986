"""Scheduling and firing of bonus drops."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from ..config import Settings
from ..db.utils import as_utc, utcnow
from ..errors import InvalidRequest
from ..models import BonusDrop, BonusDropStatus, Draw
from .lifecycle import ensure_active_draw_in
from .selector import (
    ALREADY_HANDLED,
    CANCELLED_NO_TICKETS,
    FIRED,
    SKIPPED,
    SelectionOutcome,
    WinnerSelector,
)

logger = logging.getLogger(__name__)

ALLOWED_DELAY_MINUTES = (5, 15, 30, 60)
DEFAULT_LABEL = "Bonus"
MAX_LABEL_LENGTH = 64


@dataclass
class BonusRunSummary:
    """Counters for one pass over the due bonus drops."""

    found: int = 0
    fired: int = 0
    cancelled_no_tickets: int = 0
    already_handled: int = 0
    skipped: int = 0
    failed: int = 0
    outcomes: list[SelectionOutcome] = field(default_factory=list)

    def record(self, outcome: SelectionOutcome) -> None:
        self.outcomes.append(outcome)
        if outcome.status == FIRED:
            self.fired += 1
        elif outcome.status == CANCELLED_NO_TICKETS:
            self.cancelled_no_tickets += 1
        elif outcome.status == ALREADY_HANDLED:
            self.already_handled += 1
        elif outcome.status == SKIPPED:
            self.skipped += 1

    def to_json(self) -> dict[str, Any]:
        return {
            "found": self.found,
            "fired": self.fired,
            "cancelledNoTickets": self.cancelled_no_tickets,
            "alreadyHandled": self.already_handled,
            "skipped": self.skipped,
            "failed": self.failed,
            "outcomes": [o.to_json() for o in self.outcomes],
        }


def find_due_bonus_drops(session: Session, now: datetime, limit: int) -> list[BonusDrop]:
    """Return SCHEDULED drops due at ``now``, oldest schedule first, at most ``limit``."""

    stmt = (
        select(BonusDrop)
        .where(
            BonusDrop.status == BonusDropStatus.SCHEDULED.value,
            BonusDrop.scheduled_at <= as_utc(now),
        )
        .order_by(BonusDrop.scheduled_at.asc(), BonusDrop.id.asc())
        .limit(limit)
    )
    return list(session.scalars(stmt))


def fire_due_bonus_drops(
    session_factory: sessionmaker,
    selector: WinnerSelector,
    *,
    now: Optional[datetime] = None,
    limit: int = 25,
) -> BonusRunSummary:
    """Run the claim-and-select primitive against every due bonus drop.

    Each drop is processed independently: a persistence failure on one drop
    is logged and counted as ``failed`` and the remaining drops are still
    attempted. Drops beyond ``limit`` wait for the next cycle.
    """
    now = as_utc(now or utcnow())
    with session_factory() as session:
        due_ids = [drop.id for drop in find_due_bonus_drops(session, now, limit)]

    summary = BonusRunSummary(found=len(due_ids))
    for drop_id in due_ids:
        try:
            outcome = selector.fire_bonus_drop(drop_id, now=now)
        except SQLAlchemyError:
            logger.exception(f"Bonus drop {drop_id}: firing failed")
            summary.failed += 1
            continue
        summary.record(outcome)

    if due_ids:
        logger.info(
            f"Bonus run: found={summary.found} fired={summary.fired} "
            f"cancelled={summary.cancelled_no_tickets} "
            f"already_handled={summary.already_handled} skipped={summary.skipped} "
            f"failed={summary.failed}"
        )
    return summary


def _normalize_amount(amount: Any) -> int:
    try:
        value = float(amount)
    except (TypeError, ValueError):
        raise InvalidRequest("Bonus amount must be a number", code="INVALID_AMOUNT")
    if value != value or value in (float("inf"), float("-inf")):
        raise InvalidRequest("Bonus amount must be a number", code="INVALID_AMOUNT")
    result = int(round(value))
    if result < 1:
        raise InvalidRequest("Bonus amount must be a positive integer", code="INVALID_AMOUNT")
    return result


def resolve_scheduled_at(
    now: datetime,
    *,
    scheduled_at: Optional[datetime] = None,
    delay_minutes: Any = None,
) -> datetime:
    """Pick the fire time: an explicit instant wins, otherwise an allowed delay."""

    if scheduled_at is not None:
        return as_utc(scheduled_at)

    try:
        minutes = int(delay_minutes)
    except (TypeError, ValueError):
        raise InvalidRequest(
            "delay_minutes must be provided when scheduled_at is omitted",
            code="INVALID_DELAY_MINUTES",
        )
    if minutes not in ALLOWED_DELAY_MINUTES:
        allowed = "_".join(str(m) for m in ALLOWED_DELAY_MINUTES)
        raise InvalidRequest(
            f"delay_minutes must be one of {ALLOWED_DELAY_MINUTES}",
            code=f"INVALID_DELAY_MINUTES_ALLOWED_{allowed}",
        )
    return now + timedelta(minutes=minutes)


def schedule_bonus_drop(
    session_factory: sessionmaker,
    settings: Settings,
    *,
    amount: Any,
    label: Optional[str] = None,
    scheduled_at: Optional[datetime] = None,
    delay_minutes: Any = None,
    now: Optional[datetime] = None,
) -> BonusDrop:
    """Create a SCHEDULED bonus drop on today's draw.

    Parameters
    ----------
    session_factory : sessionmaker
        Factory used for the single transaction of this action.
    settings : Settings
        Used to locate (or create) today's draw.
    amount : Any
        Reward amount; must be a positive number and is rounded to an integer.
    label : Optional[str], default: None
        Display label, ``"Bonus"`` when blank, truncated to 64 characters.
    scheduled_at : Optional[datetime], default: None
        Explicit fire time. Takes precedence over ``delay_minutes``.
    delay_minutes : Any, default: None
        Minutes from ``now``; one of 5, 15, 30 or 60.
    now : Optional[datetime], default: None
        Reference instant, defaults to the current time.

    Returns
    -------
    BonusDrop
        The persisted drop.

    Raises
    ------
    InvalidRequest
        If the amount or the fire time is invalid.
    """
    now = as_utc(now or utcnow())
    value = _normalize_amount(amount)
    fire_at = resolve_scheduled_at(now, scheduled_at=scheduled_at, delay_minutes=delay_minutes)
    clean_label = (label or "").strip()[:MAX_LABEL_LENGTH] or DEFAULT_LABEL

    with session_factory.begin() as session:
        draw = ensure_active_draw_in(session, settings, now)
        drop = BonusDrop(
            draw_id=draw.id,
            label=clean_label,
            amount=value,
            scheduled_at=fire_at,
            status=BonusDropStatus.SCHEDULED.value,
            created_at=now,
        )
        session.add(drop)
        session.flush()

    logger.info(
        f"Scheduled bonus drop {drop.id} '{clean_label}' of {value} on draw {draw.id} "
        f"for {fire_at.isoformat()}"
    )
    return drop


def upcoming_bonus_drops(
    session: Session, draw: Draw, now: Optional[datetime] = None, limit: int = 50
) -> list[BonusDrop]:
    """SCHEDULED drops of ``draw`` that fire after ``now``, soonest first."""

    stmt = (
        select(BonusDrop)
        .where(
            BonusDrop.draw_id == draw.id,
            BonusDrop.status == BonusDropStatus.SCHEDULED.value,
            BonusDrop.scheduled_at > as_utc(now or utcnow()),
        )
        .order_by(BonusDrop.scheduled_at.asc(), BonusDrop.id.asc())
        .limit(limit)
    )
    return list(session.scalars(stmt))


def next_bonus_drop(session: Session, now: Optional[datetime] = None) -> Optional[BonusDrop]:
    """The next SCHEDULED drop across all draws, if any."""

    stmt = (
        select(BonusDrop)
        .where(
            BonusDrop.status == BonusDropStatus.SCHEDULED.value,
            BonusDrop.scheduled_at >= as_utc(now or utcnow()),
        )
        .order_by(BonusDrop.scheduled_at.asc(), BonusDrop.id.asc())
    )
    return session.scalars(stmt).first()


def live_bonus_drops(session: Session, draw: Draw) -> list[BonusDrop]:
    """SCHEDULED and FIRED drops of ``draw`` in schedule order; cancelled ones are hidden."""

    stmt = (
        select(BonusDrop)
        .where(
            BonusDrop.draw_id == draw.id,
            BonusDrop.status.in_(
                [BonusDropStatus.SCHEDULED.value, BonusDropStatus.FIRED.value]
            ),
        )
        .order_by(BonusDrop.scheduled_at.asc(), BonusDrop.id.asc())
    )
    return list(session.scalars(stmt))


__all__ = [
    "ALLOWED_DELAY_MINUTES",
    "BonusRunSummary",
    "find_due_bonus_drops",
    "fire_due_bonus_drops",
    "live_bonus_drops",
    "next_bonus_drop",
    "resolve_scheduled_at",
    "schedule_bonus_drop",
    "upcoming_bonus_drops",
]
