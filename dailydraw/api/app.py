"""FastAPI application exposing the cycle trigger, admin actions and reads."""

import hmac
import logging
from typing import Optional

from fastapi import Depends, FastAPI, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import sessionmaker

from .. import workflows
from ..config import Settings, load_settings
from ..db.engine import get_sessionmaker, make_engine
from ..errors import (
    ConfigurationError,
    DrawError,
    InvalidRequest,
    NoDrawToday,
    NothingToRollback,
    OpsFrozen,
    RecordNotFound,
    Unauthorized,
)
from .schemas import IssueTicketRequest, MarkPaidRequest, OpsModeRequest, ScheduleBonusRequest

logger = logging.getLogger(__name__)

CRON_HEADER = "x-draw-cron-key"
ADMIN_HEADER = "x-admin-token"


def status_for(error: DrawError) -> int:
    if isinstance(error, Unauthorized):
        return 401
    if isinstance(error, ConfigurationError):
        return 500
    if isinstance(error, OpsFrozen):
        return 423
    if isinstance(error, (NoDrawToday, NothingToRollback, RecordNotFound)):
        return 404
    return 400


def _secret_matches(presented: Optional[str], expected: str) -> bool:
    if not presented:
        return False
    return hmac.compare_digest(presented.encode("utf-8"), expected.encode("utf-8"))


def _bearer(request: Request) -> Optional[str]:
    header = request.headers.get("authorization", "")
    scheme, _, value = header.partition(" ")
    if scheme.lower() != "bearer":
        return None
    return value.strip() or None


def create_app(
    settings: Optional[Settings] = None,
    session_factory: Optional[sessionmaker] = None,
) -> FastAPI:
    """Build the application.

    Parameters
    ----------
    settings : Optional[Settings], default: None
        Loaded from the environment when omitted.
    session_factory : Optional[sessionmaker], default: None
        Bound to ``DB_URL`` when omitted.
    """
    settings = settings or load_settings()
    if session_factory is None:
        session_factory = get_sessionmaker(make_engine())

    app = FastAPI(title="dailydraw")
    app.state.settings = settings
    app.state.session_factory = session_factory

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(DrawError)
    async def _draw_error(request: Request, exc: DrawError) -> JSONResponse:
        status = status_for(exc)
        if status >= 500:
            logger.error(f"{request.method} {request.url.path}: {exc.code}: {exc}")
        else:
            logger.info(f"{request.method} {request.url.path}: {exc.code}")
        return JSONResponse(
            status_code=status,
            content={"ok": False, "error": exc.code, "message": str(exc)},
        )

    @app.exception_handler(RequestValidationError)
    async def _invalid_body(request: Request, exc: RequestValidationError) -> JSONResponse:
        logger.info(f"{request.method} {request.url.path}: INVALID_REQUEST")
        return JSONResponse(
            status_code=400,
            content={
                "ok": False,
                "error": InvalidRequest.code,
                "message": "Malformed request",
                "details": jsonable_encoder(exc.errors()),
            },
        )

    def require_cron(request: Request) -> None:
        expected = settings.require_cron_key()
        if not _secret_matches(request.headers.get(CRON_HEADER), expected):
            raise Unauthorized()

    def require_admin(request: Request) -> None:
        expected = settings.require_admin_token()
        presented = request.headers.get(ADMIN_HEADER) or _bearer(request)
        if not _secret_matches(presented, expected):
            raise Unauthorized()

    # ---------- orchestration ----------
    @app.api_route("/internal/cycle", methods=["GET", "POST"], dependencies=[Depends(require_cron)])
    def run_cycle():
        summary = workflows.run_cycle(session_factory, settings)
        return {"ok": True, "summary": summary.to_json()}

    # ---------- admin ----------
    @app.get("/admin/ops-mode", dependencies=[Depends(require_admin)])
    def get_admin_ops_mode():
        return {"ok": True, **workflows.ops_mode_view(session_factory, settings).to_json()}

    @app.post("/admin/ops-mode", dependencies=[Depends(require_admin)])
    def set_admin_ops_mode(payload: OpsModeRequest):
        view = workflows.admin_set_ops_mode(session_factory, settings, payload.mode)
        return {"ok": True, **view.to_json()}

    @app.post("/admin/panic/close-today", dependencies=[Depends(require_admin)])
    def panic_close_today():
        result = workflows.admin_force_close_today(session_factory, settings)
        return {"ok": True, **result.to_json()}

    @app.post("/admin/draw/reopen", dependencies=[Depends(require_admin)])
    def reopen_today():
        result = workflows.admin_reopen_today(session_factory, settings)
        return {"ok": True, **result.to_json()}

    @app.get("/admin/draw/today/tickets", dependencies=[Depends(require_admin)])
    def today_tickets(limit: int = 100):
        return {"ok": True, **workflows.admin_today_tickets(session_factory, settings, limit=limit)}

    @app.post("/admin/panic/cancel-bonuses", dependencies=[Depends(require_admin)])
    def panic_cancel_bonuses():
        result = workflows.admin_cancel_bonuses(session_factory, settings)
        return {"ok": True, **result.to_json()}

    @app.post("/admin/panic/rollback-last-bonus", dependencies=[Depends(require_admin)])
    def panic_rollback_last_bonus():
        result = workflows.admin_rollback_last_bonus(session_factory, settings)
        return {"ok": True, **result.to_json()}

    @app.post("/admin/bonus", dependencies=[Depends(require_admin)])
    def schedule_bonus(payload: ScheduleBonusRequest):
        drop = workflows.admin_schedule_bonus(
            session_factory,
            settings,
            amount=payload.amount,
            label=payload.label,
            scheduled_at=payload.scheduled_at,
            delay_minutes=payload.delay_minutes,
        )
        return {"ok": True, "bonus": workflows.bonus_drop_json(drop)}

    @app.post("/admin/draw/resolve", dependencies=[Depends(require_admin)])
    def resolve_today():
        return {"ok": True, **workflows.admin_resolve_today(session_factory, settings)}

    @app.post("/admin/rewards/{reward_id}/mark-paid", dependencies=[Depends(require_admin)])
    def mark_paid(reward_id: int, payload: Optional[MarkPaidRequest] = None):
        ref = payload.settlement_ref if payload is not None else None
        reward = workflows.admin_mark_paid(session_factory, settings, reward_id, ref)
        return {"ok": True, "reward": reward}

    # ---------- public ----------
    @app.get("/draw/today")
    def draw_today():
        return {"ok": True, "draw": workflows.today_summary(session_factory, settings)}

    @app.get("/rewards/recent")
    def rewards_recent(limit: int = 20):
        return {"ok": True, "rewards": workflows.recent_rewards(session_factory, limit)}

    @app.get("/ops/mode")
    def ops_mode():
        view = workflows.ops_mode_view(session_factory, settings)
        return {"ok": True, "effectiveMode": view.effective_mode.value}

    @app.get("/bonus/upcoming")
    def bonus_upcoming():
        return {"ok": True, **workflows.upcoming_bonuses(session_factory, settings)}

    @app.get("/bonus/live")
    def bonus_live():
        return {"ok": True, "bonus": workflows.live_bonuses(session_factory, settings)}

    @app.get("/tickets/history")
    def tickets_history(wallet_address: Optional[str] = Query(None, alias="walletAddress")):
        return {"ok": True, "tickets": workflows.ticket_history(session_factory, wallet_address)}

    @app.post("/tickets")
    def issue_ticket(payload: IssueTicketRequest):
        ticket = workflows.issue_ticket(session_factory, settings, payload.wallet_address)
        return {"ok": True, "ticket": workflows.ticket_json(ticket)}

    return app


__all__ = ["create_app", "status_for"]
