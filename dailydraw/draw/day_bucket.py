"""Map instants onto draw days anchored to a wall-clock cutover.

A draw day ends at a fixed wall-clock time (22:00 by default) in a reference
timezone. For any instant the bucketer answers two questions:

* when is the current-or-next cutover, as a UTC instant, and
* which calendar day (expressed as UTC midnight) owns the draw that closes at
  that cutover.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from ..db.utils import as_utc, utcnow

CORRECTION_PASSES = 3
"""Fixed-point passes used to convert a wall-clock time back to UTC."""


@dataclass(frozen=True)
class DayBucket:
    """Result of bucketing one instant.

    Attributes
    ----------
    closes_at : datetime
        Aware UTC instant of the current or next cutover.
    day_bucket : datetime
        Aware UTC midnight of the reference-timezone date that owns the draw.
    """

    closes_at: datetime
    day_bucket: datetime

    @property
    def day(self) -> date:
        return self.day_bucket.date()


def local_wall_clock(instant: datetime, tz: ZoneInfo) -> datetime:
    """Return the naive wall-clock reading of ``instant`` in ``tz``."""

    return as_utc(instant).astimezone(tz).replace(tzinfo=None)


def wall_clock_to_utc(
    local: datetime, tz: ZoneInfo, passes: int = CORRECTION_PASSES
) -> datetime:
    """Convert naive wall-clock ``local`` in ``tz`` to an aware UTC instant.

    Starts from the naive assumption that ``local`` is already UTC, then
    re-reads the wall clock of the guess in ``tz`` and subtracts the observed
    drift. One pass settles any fixed offset, the second absorbs a DST offset
    change between the guess and the answer. For wall times inside a DST gap
    no exact answer exists; the result then lies within one offset step of
    ``local``.
    """
    if local.tzinfo is not None:
        raise ValueError("wall_clock_to_utc expects a naive wall-clock datetime")

    guess = local.replace(tzinfo=timezone.utc)
    for _ in range(passes):
        drift = local_wall_clock(guess, tz) - local
        if not drift:
            break
        guess -= drift
    return guess


def compute_bucket(
    now: Optional[datetime],
    tz: ZoneInfo,
    cutover_hour: int = 22,
    cutover_minute: int = 0,
) -> DayBucket:
    """Return the cutover and day bucket that ``now`` belongs to.

    Before the cutover time-of-day the relevant cutover is today's, from the
    cutover onwards it is tomorrow's. Naive ``now`` is taken as UTC.
    """
    now = as_utc(now or utcnow())
    wall = local_wall_clock(now, tz)
    cutover = time(cutover_hour, cutover_minute)

    target_day = wall.date()
    if wall.time() >= cutover:
        target_day += timedelta(days=1)

    closes_at = wall_clock_to_utc(datetime.combine(target_day, cutover), tz)

    # The bucket is the reference-timezone date just before the cutover.
    owning_day = local_wall_clock(closes_at - timedelta(microseconds=1), tz).date()
    day_bucket = datetime.combine(owning_day, time(0, 0), tzinfo=timezone.utc)
    return DayBucket(closes_at=closes_at, day_bucket=day_bucket)


def bucket_for_settings(now: Optional[datetime], settings) -> DayBucket:
    """Shortcut using the timezone and cutover configured in ``settings``."""

    return compute_bucket(
        now,
        settings.tz,
        cutover_hour=settings.cutover_hour,
        cutover_minute=settings.cutover_minute,
    )


__all__ = [
    "CORRECTION_PASSES",
    "DayBucket",
    "bucket_for_settings",
    "compute_bucket",
    "local_wall_clock",
    "wall_clock_to_utc",
]
