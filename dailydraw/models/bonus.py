from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING, Optional

from sqlalchemy import BigInteger, ForeignKey, Index, String, select
from sqlalchemy.orm import Mapped, Session, mapped_column, relationship

from .base import Base
from .status import BonusDropStatus
from .types import ID_TYPE, UTCDateTime

if TYPE_CHECKING:
    from .draw import Draw
    from .reward import RewardRecord


class BonusDrop(Base):
    """A time-scheduled secondary reward event tied to a draw."""

    __tablename__ = "bonus_drops"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    draw_id: Mapped[int] = mapped_column(
        ID_TYPE, ForeignKey("draws.id", ondelete="CASCADE"), nullable=False, index=True
    )
    label: Mapped[str] = mapped_column(String(64), nullable=False)
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    scheduled_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default=BonusDropStatus.SCHEDULED.value
    )
    claim_token: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    claimed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    fired_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), nullable=False, default=lambda: datetime.now(timezone.utc)
    )

    draw: Mapped["Draw"] = relationship(back_populates="bonus_drops")
    reward: Mapped[Optional["RewardRecord"]] = relationship(
        back_populates="bonus_drop", uselist=False
    )

    __table_args__ = (
        Index("ix_bonus_drops_status_scheduled", "status", "scheduled_at"),
        Index("ix_bonus_drops_draw_created", "draw_id", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            "<BonusDrop("
            f"id={self.id}, draw_id={self.draw_id}, label='{self.label}', "
            f"amount={self.amount}, scheduled_at={self.scheduled_at}, status='{self.status}'"
            ")>"
        )

    @classmethod
    def latest_for_draw(cls, session: Session, draw_id: int) -> Optional["BonusDrop"]:
        """Return the most recently created drop of ``draw_id``."""

        stmt = (
            select(cls)
            .where(cls.draw_id == draw_id)
            .order_by(cls.created_at.desc(), cls.id.desc())
        )
        return session.scalars(stmt).first()
