from .day_bucket import DayBucket, bucket_for_settings, compute_bucket, wall_clock_to_utc
from .lifecycle import ensure_active_draw, ensure_active_draw_in, find_today_draw
from .selector import SelectionOutcome, WinnerSelector
from .bonus import (
    BonusRunSummary,
    fire_due_bonus_drops,
    live_bonus_drops,
    next_bonus_drop,
    schedule_bonus_drop,
    upcoming_bonus_drops,
)
from .ops_mode import OpsModeView, effective_mode, read_ops_mode, set_ops_mode
from .panic import cancel_pending_bonuses, force_close_today, reopen_today, rollback_last_bonus

__all__ = [
    "DayBucket",
    "bucket_for_settings",
    "compute_bucket",
    "wall_clock_to_utc",
    "ensure_active_draw",
    "ensure_active_draw_in",
    "find_today_draw",
    "SelectionOutcome",
    "WinnerSelector",
    "BonusRunSummary",
    "fire_due_bonus_drops",
    "live_bonus_drops",
    "next_bonus_drop",
    "schedule_bonus_drop",
    "upcoming_bonus_drops",
    "OpsModeView",
    "effective_mode",
    "read_ops_mode",
    "set_ops_mode",
    "cancel_pending_bonuses",
    "force_close_today",
    "reopen_today",
    "rollback_last_bonus",
]
