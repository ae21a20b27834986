"""Resolve the automation mode from the persisted setting and the environment."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from sqlalchemy.orm import Session

from ..config import Settings
from ..db.utils import dt_iso
from ..errors import InvalidRequest
from ..models import OpsConfig, OpsMode

logger = logging.getLogger(__name__)


def effective_mode(persisted: OpsMode | str, env_allowed: bool) -> OpsMode:
    """AUTO only when the operator chose AUTO and the environment permits it."""

    if env_allowed and OpsMode(persisted) is OpsMode.AUTO:
        return OpsMode.AUTO
    return OpsMode.MANUAL


def env_auto_allowed(settings: Settings) -> bool:
    return bool(settings.auto_draw_enabled)


@dataclass(frozen=True)
class OpsModeView:
    mode: OpsMode
    env_auto_allowed: bool
    effective_mode: OpsMode
    updated_at: Optional[datetime] = None

    def to_json(self) -> dict[str, Any]:
        return {
            "mode": self.mode.value,
            "envAutoAllowed": self.env_auto_allowed,
            "effectiveMode": self.effective_mode.value,
            "updatedAt": dt_iso(self.updated_at),
        }


def read_ops_mode(session: Session, settings: Settings) -> OpsModeView:
    cfg = OpsConfig.get(session)
    allowed = env_auto_allowed(settings)
    persisted = OpsMode(cfg.mode)
    return OpsModeView(
        mode=persisted,
        env_auto_allowed=allowed,
        effective_mode=effective_mode(persisted, allowed),
        updated_at=cfg.updated_at,
    )


def set_ops_mode(session: Session, settings: Settings, mode: Any) -> OpsModeView:
    """Persist the operator's desired mode.

    Raises
    ------
    InvalidRequest
        ``INVALID_MODE`` for anything but MANUAL/AUTO, and
        ``AUTO_NOT_ALLOWED_IN_THIS_ENV`` when AUTO is requested on an
        environment where automatic draws are switched off.
    """
    raw = str(mode or "").strip().upper()
    try:
        requested = OpsMode(raw)
    except ValueError:
        raise InvalidRequest(f"Unknown ops mode {mode!r}", code="INVALID_MODE")

    if requested is OpsMode.AUTO and not env_auto_allowed(settings):
        raise InvalidRequest(
            "Automatic draws are disabled on this environment",
            code="AUTO_NOT_ALLOWED_IN_THIS_ENV",
        )

    cfg = OpsConfig.get(session)
    if cfg.mode != requested.value:
        logger.info(f"Ops mode changed: {cfg.mode} -> {requested.value}")
        cfg.mode = requested.value
    session.flush()
    return read_ops_mode(session, settings)


__all__ = [
    "OpsModeView",
    "effective_mode",
    "env_auto_allowed",
    "read_ops_mode",
    "set_ops_mode",
]
