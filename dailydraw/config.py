"""Environment driven settings.

Values are read from the process environment after loading an optional
``.env`` file, following the same ``load_dotenv()`` + ``os.getenv`` approach
used by the database engine module.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import load_dotenv

from .errors import ConfigurationError

TRUTHY = {"1", "true", "yes", "on"}

DEFAULT_TIMEZONE = "Europe/Madrid"
DEFAULT_CUTOVER_HOUR = 22
DEFAULT_CUTOVER_MINUTE = 0
DEFAULT_BONUS_BATCH_LIMIT = 25
DEFAULT_CLAIM_STALE_SECONDS = 300


def env_flag(value: Optional[str]) -> bool:
    """Interpret an environment string as a boolean switch."""
    if value is None:
        return False
    return value.strip().lower() in TRUTHY


def _int_setting(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw.strip())
    except ValueError as e:
        raise ConfigurationError(
            f"Environment variable '{name}' must be an integer, got {raw!r}"
        ) from e


@dataclass(frozen=True)
class Settings:
    """Resolved configuration for the draw engine and its HTTP surface."""

    timezone_name: str = DEFAULT_TIMEZONE
    cutover_hour: int = DEFAULT_CUTOVER_HOUR
    cutover_minute: int = DEFAULT_CUTOVER_MINUTE
    auto_draw_enabled: bool = False
    ops_frozen: bool = False
    admin_token: Optional[str] = None
    cron_key: Optional[str] = None
    bonus_batch_limit: int = DEFAULT_BONUS_BATCH_LIMIT
    claim_stale_seconds: int = DEFAULT_CLAIM_STALE_SECONDS
    default_pool: int = 0

    def __post_init__(self) -> None:
        if not 0 <= self.cutover_hour <= 23:
            raise ConfigurationError("DRAW_CUTOVER_HOUR must be between 0 and 23")
        if not 0 <= self.cutover_minute <= 59:
            raise ConfigurationError("DRAW_CUTOVER_MINUTE must be between 0 and 59")
        if self.bonus_batch_limit < 1:
            raise ConfigurationError("DRAW_BONUS_BATCH_LIMIT must be at least 1")
        if self.claim_stale_seconds < 0:
            raise ConfigurationError("DRAW_CLAIM_STALE_SECONDS must not be negative")
        if self.default_pool < 0:
            raise ConfigurationError("DRAW_DEFAULT_POOL must not be negative")
        # Fail fast on unknown zones instead of at the first bucket computation.
        _ = self.tz

    @property
    def tz(self) -> ZoneInfo:
        try:
            return ZoneInfo(self.timezone_name)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ConfigurationError(
                f"Unknown DRAW_TIMEZONE {self.timezone_name!r}"
            ) from e

    def require_admin_token(self) -> str:
        if not self.admin_token:
            raise ConfigurationError("Environment variable 'DRAW_ADMIN_TOKEN' is not set")
        return self.admin_token

    def require_cron_key(self) -> str:
        if not self.cron_key:
            raise ConfigurationError("Environment variable 'DRAW_CRON_KEY' is not set")
        if self.admin_token and self.cron_key == self.admin_token:
            raise ConfigurationError(
                "DRAW_CRON_KEY must differ from DRAW_ADMIN_TOKEN"
            )
        return self.cron_key


def load_settings(env: Optional[Mapping[str, str]] = None) -> Settings:
    """Build :class:`Settings` from ``env`` (defaults to ``os.environ``).

    ``load_dotenv()`` only runs when reading the real process environment so
    tests can pass an explicit mapping without picking up a developer's
    ``.env`` file.
    """
    if env is None:
        load_dotenv()
        env = os.environ

    return Settings(
        timezone_name=(env.get("DRAW_TIMEZONE") or DEFAULT_TIMEZONE).strip(),
        cutover_hour=_int_setting(env, "DRAW_CUTOVER_HOUR", DEFAULT_CUTOVER_HOUR),
        cutover_minute=_int_setting(env, "DRAW_CUTOVER_MINUTE", DEFAULT_CUTOVER_MINUTE),
        auto_draw_enabled=env_flag(env.get("DRAW_AUTO_ENABLED")),
        ops_frozen=env_flag(env.get("DRAW_OPS_FROZEN")),
        admin_token=env.get("DRAW_ADMIN_TOKEN") or None,
        cron_key=env.get("DRAW_CRON_KEY") or None,
        bonus_batch_limit=_int_setting(
            env, "DRAW_BONUS_BATCH_LIMIT", DEFAULT_BONUS_BATCH_LIMIT
        ),
        claim_stale_seconds=_int_setting(
            env, "DRAW_CLAIM_STALE_SECONDS", DEFAULT_CLAIM_STALE_SECONDS
        ),
        default_pool=_int_setting(env, "DRAW_DEFAULT_POOL", 0),
    )
