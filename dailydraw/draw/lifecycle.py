"""Guarantee one draw per day bucket and keep its close time in sync."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from ..config import Settings
from ..db.utils import as_utc, utcnow
from ..models import Draw, DrawStatus
from ..models.status import can_transition
from .day_bucket import bucket_for_settings

logger = logging.getLogger(__name__)


def find_today_draw(
    session: Session, settings: Settings, now: Optional[datetime] = None
) -> Optional[Draw]:
    """Return the draw owning ``now``'s bucket without creating it."""

    bucket = bucket_for_settings(now, settings)
    return Draw.get_by_day_bucket(session, bucket.day_bucket)


def ensure_active_draw_in(
    session: Session, settings: Settings, now: Optional[datetime] = None
) -> Draw:
    """Create, reopen or resync today's draw inside the caller's transaction.

    Parameters
    ----------
    session : Session
        Session with an active transaction; the caller commits.
    settings : Settings
        Supplies the reference timezone, cutover and default pool size.
    now : Optional[datetime], default: None
        Instant to bucket. Defaults to the current time.

    Returns
    -------
    Draw
        The draw owning ``now``'s bucket. When ``now`` precedes the cutover
        and the draw is unresolved it is OPEN with the bucketer's close time.
    """
    now = as_utc(now or utcnow())
    bucket = bucket_for_settings(now, settings)
    stmt = select(Draw).where(Draw.day_bucket == bucket.day_bucket)

    draw = session.scalar(stmt)
    if draw is None:
        draw = Draw(
            day_bucket=bucket.day_bucket,
            status=DrawStatus.OPEN.value,
            closes_at=bucket.closes_at,
            pool_amount=settings.default_pool,
        )
        try:
            with session.begin_nested():
                session.add(draw)
        except IntegrityError:
            # Lost the insert race on the unique day bucket; use the winner's row.
            draw = session.scalar(stmt)
            if draw is None:
                raise
        else:
            logger.info(
                f"Created draw {draw.id} for bucket {bucket.day_bucket.date()} "
                f"closing at {bucket.closes_at.isoformat()}"
            )
            return draw

    if (
        draw.resolved_at is None
        and draw.status != DrawStatus.OPEN.value
        and now < draw.closes_at
        and can_transition(draw.status, DrawStatus.OPEN)
    ):
        logger.info(f"Reopening draw {draw.id} (was {draw.status})")
        draw.status = DrawStatus.OPEN.value

    # Force-closed and resolved draws keep their overridden close time.
    if draw.status == DrawStatus.OPEN.value and draw.closes_at != bucket.closes_at:
        logger.warning(
            f"Resyncing close time of draw {draw.id}: "
            f"{draw.closes_at.isoformat()} -> {bucket.closes_at.isoformat()}"
        )
        draw.closes_at = bucket.closes_at

    session.flush()
    return draw


def ensure_active_draw(
    session_factory: sessionmaker, settings: Settings, now: Optional[datetime] = None
) -> Draw:
    """Run :func:`ensure_active_draw_in` in its own committed transaction."""

    with session_factory.begin() as session:
        return ensure_active_draw_in(session, settings, now)


__all__ = ["ensure_active_draw", "ensure_active_draw_in", "find_today_draw"]
