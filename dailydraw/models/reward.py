"""Durable outcome of a main draw resolution or a bonus fire."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Optional

from sqlalchemy import (
    BigInteger,
    Boolean,
    ForeignKey,
    Index,
    String,
    select,
    text,
)
from sqlalchemy.orm import Mapped, Session, mapped_column, relationship

from ..db.utils import dt_iso
from .base import Base
from .status import RewardKind
from .types import ID_TYPE, UTCDateTime

if TYPE_CHECKING:
    from .bonus import BonusDrop
    from .draw import Draw
    from .ticket import Ticket


class RewardRecord(Base):
    """A winner: one ticket rewarded by a draw (MAIN) or a bonus drop (BONUS)."""

    __tablename__ = "reward_records"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    draw_id: Mapped[int] = mapped_column(
        ID_TYPE, ForeignKey("draws.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    ticket_id: Mapped[int] = mapped_column(
        ID_TYPE, ForeignKey("tickets.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    bonus_drop_id: Mapped[Optional[int]] = mapped_column(
        ID_TYPE, ForeignKey("bonus_drops.id", ondelete="SET NULL"), nullable=True
    )
    kind: Mapped[str] = mapped_column(String(8), nullable=False)
    label: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    payout_amount: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    is_paid_out: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=text("false")
    )
    settlement_ref: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    """Reference to the payout proof (e.g. a transaction signature)."""
    paid_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), nullable=False, default=lambda: datetime.now(timezone.utc)
    )

    draw: Mapped["Draw"] = relationship(back_populates="rewards")
    ticket: Mapped["Ticket"] = relationship("Ticket")
    bonus_drop: Mapped[Optional["BonusDrop"]] = relationship(back_populates="reward")

    __table_args__ = (
        # One MAIN record per draw, one BONUS record per (ticket, draw).
        Index(
            "uq_reward_main_per_draw",
            "draw_id",
            unique=True,
            sqlite_where=text("kind = 'MAIN'"),
            postgresql_where=text("kind = 'MAIN'"),
        ),
        Index(
            "uq_reward_bonus_per_ticket_draw",
            "ticket_id",
            "draw_id",
            unique=True,
            sqlite_where=text("kind = 'BONUS'"),
            postgresql_where=text("kind = 'BONUS'"),
        ),
        Index("ix_reward_records_created", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<RewardRecord(id={self.id}, kind='{self.kind}', draw_id={self.draw_id}, "
            f"ticket_id={self.ticket_id}, payout_amount={self.payout_amount})>"
        )

    @classmethod
    def main_for_draw(cls, session: Session, draw_id: int) -> Optional["RewardRecord"]:
        return session.scalar(
            select(cls).where(cls.draw_id == draw_id, cls.kind == RewardKind.MAIN.value)
        )

    @classmethod
    def for_bonus_drop(cls, session: Session, drop_id: int) -> Optional["RewardRecord"]:
        return session.scalar(select(cls).where(cls.bonus_drop_id == drop_id))

    @classmethod
    def recent(cls, session: Session, limit: int = 20) -> list["RewardRecord"]:
        stmt = select(cls).order_by(cls.created_at.desc(), cls.id.desc()).limit(limit)
        return list(session.scalars(stmt))

    def to_json(self) -> dict[str, Any]:
        ticket = self.ticket
        return {
            "id": self.id,
            "drawId": self.draw_id,
            "ticketId": self.ticket_id,
            "ticketCode": ticket.code if ticket is not None else None,
            "walletAddress": ticket.wallet_address if ticket is not None else None,
            "bonusDropId": self.bonus_drop_id,
            "kind": self.kind,
            "label": self.label,
            "payoutAmount": self.payout_amount,
            "isPaidOut": self.is_paid_out,
            "settlementRef": self.settlement_ref,
            "paidAt": dt_iso(self.paid_at),
            "createdAt": dt_iso(self.created_at),
        }
