"""Operator overrides for today's draw and its bonus drops."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from ..config import Settings
from ..db.utils import as_utc, dt_iso, utcnow
from ..errors import InvalidRequest, NoDrawToday, NothingToCancel, NothingToRollback
from ..models import BonusDrop, BonusDropStatus, Draw, DrawStatus, RewardRecord
from ..models.status import check_transition
from .day_bucket import bucket_for_settings
from .lifecycle import find_today_draw

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ForceCloseResult:
    draw_id: int
    closes_at: datetime

    def to_json(self) -> dict[str, Any]:
        return {"drawId": self.draw_id, "closesAt": dt_iso(self.closes_at)}


@dataclass(frozen=True)
class ReopenResult:
    draw_id: int
    status: str
    closes_at: datetime

    def to_json(self) -> dict[str, Any]:
        return {
            "drawId": self.draw_id,
            "status": self.status,
            "closesAt": dt_iso(self.closes_at),
        }


@dataclass(frozen=True)
class CancelResult:
    draw_id: int
    cancelled: int

    def to_json(self) -> dict[str, Any]:
        return {"drawId": self.draw_id, "cancelled": self.cancelled}


@dataclass(frozen=True)
class RollbackResult:
    draw_id: int
    bonus_drop_id: int
    label: str
    status: str

    def to_json(self) -> dict[str, Any]:
        return {
            "drawId": self.draw_id,
            "deletedBonusDropId": self.bonus_drop_id,
            "label": self.label,
            "status": self.status,
        }


def _require_today(session: Session, settings: Settings, now: datetime) -> Draw:
    draw = find_today_draw(session, settings, now)
    if draw is None:
        raise NoDrawToday()
    return draw


def force_close_today(
    session: Session, settings: Settings, now: Optional[datetime] = None
) -> ForceCloseResult:
    """Close today's draw immediately.

    The close time is pulled back to ``now`` so the draw becomes eligible for
    resolution straight away. Raises :class:`NoDrawToday` when today's draw
    was never created and :class:`InvalidTransition` when it is already
    completed.
    """
    now = as_utc(now or utcnow())
    draw = _require_today(session, settings, now)

    if draw.status != DrawStatus.CLOSED.value:
        check_transition(draw.status, DrawStatus.CLOSED)
        draw.status = DrawStatus.CLOSED.value
    draw.closes_at = now
    session.flush()

    logger.warning(f"Draw {draw.id} force-closed at {now.isoformat()}")
    return ForceCloseResult(draw_id=draw.id, closes_at=now)


def reopen_today(
    session: Session, settings: Settings, now: Optional[datetime] = None
) -> ReopenResult:
    """Reopen today's force-closed draw and restore its cutover close time.

    Only an unresolved draw may be reopened. Ticket statuses are left alone,
    so bonus winners stay out of the main pool.

    Raises
    ------
    NoDrawToday
        Today's draw was never created.
    InvalidRequest
        ``DRAW_ALREADY_RESOLVED`` when the draw has a resolution or a MAIN
        reward.
    InvalidTransition
        When the draw is not CLOSED.
    """
    now = as_utc(now or utcnow())
    draw = _require_today(session, settings, now)

    if draw.resolved_at is not None or RewardRecord.main_for_draw(session, draw.id) is not None:
        raise InvalidRequest(
            f"Draw {draw.id} is already resolved and cannot be reopened",
            code="DRAW_ALREADY_RESOLVED",
        )
    check_transition(draw.status, DrawStatus.OPEN)

    draw.status = DrawStatus.OPEN.value
    draw.closes_at = bucket_for_settings(now, settings).closes_at
    session.flush()

    logger.warning(f"Draw {draw.id} reopened until {draw.closes_at.isoformat()}")
    return ReopenResult(draw_id=draw.id, status=draw.status, closes_at=draw.closes_at)


def cancel_pending_bonuses(
    session: Session, settings: Settings, now: Optional[datetime] = None
) -> CancelResult:
    """Cancel every SCHEDULED bonus drop of today's draw in a single update."""

    now = as_utc(now or utcnow())
    draw = _require_today(session, settings, now)

    stmt = (
        update(BonusDrop)
        .where(
            BonusDrop.draw_id == draw.id,
            BonusDrop.status == BonusDropStatus.SCHEDULED.value,
        )
        .values(status=BonusDropStatus.CANCELLED.value)
        .execution_options(synchronize_session=False)
    )
    cancelled = session.execute(stmt).rowcount or 0
    if cancelled == 0:
        raise NothingToCancel()

    # Loaded instances would otherwise still report SCHEDULED.
    session.expire_all()
    logger.warning(f"Cancelled {cancelled} scheduled bonus drop(s) on draw {draw.id}")
    return CancelResult(draw_id=draw.id, cancelled=cancelled)


def rollback_last_bonus(
    session: Session, settings: Settings, now: Optional[datetime] = None
) -> RollbackResult:
    """Delete the most recently created bonus drop of today's draw.

    The drop is removed whatever its status, except when it already produced
    a reward record: that winner stays on the books and the call raises
    :class:`NothingToRollback`.
    """
    now = as_utc(now or utcnow())
    draw = _require_today(session, settings, now)

    drop = BonusDrop.latest_for_draw(session, draw.id)
    if drop is None:
        raise NothingToRollback()
    if RewardRecord.for_bonus_drop(session, drop.id) is not None:
        raise NothingToRollback(
            f"Bonus drop {drop.id} already produced a winner and cannot be rolled back"
        )

    result = RollbackResult(
        draw_id=draw.id, bonus_drop_id=drop.id, label=drop.label, status=drop.status
    )
    session.delete(drop)
    session.flush()

    logger.warning(f"Rolled back bonus drop {drop.id} ('{drop.label}', {drop.status})")
    return result


__all__ = [
    "CancelResult",
    "ForceCloseResult",
    "ReopenResult",
    "RollbackResult",
    "cancel_pending_bonuses",
    "force_close_today",
    "reopen_today",
    "rollback_last_bonus",
]
