from datetime import datetime, timezone
from typing import TYPE_CHECKING, Optional

from sqlalchemy import ForeignKey, Index, String, UniqueConstraint, select
from sqlalchemy.orm import Mapped, Session, mapped_column, relationship, validates

from .base import Base
from .status import TicketStatus
from .types import ID_TYPE, UTCDateTime

if TYPE_CHECKING:
    from .draw import Draw


class Ticket(Base):
    """An entry in exactly one draw."""

    __tablename__ = "tickets"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    code: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)
    wallet_address: Mapped[str] = mapped_column(String(128), nullable=False)
    draw_id: Mapped[int] = mapped_column(
        ID_TYPE, ForeignKey("draws.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default=TicketStatus.IN_DRAW.value
    )
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), nullable=False, default=lambda: datetime.now(timezone.utc)
    )

    draw: Mapped["Draw"] = relationship(
        "Draw", back_populates="tickets", foreign_keys=[draw_id]
    )

    __table_args__ = (
        UniqueConstraint("draw_id", "wallet_address", name="uq_ticket_wallet_per_draw"),
        Index("ix_tickets_draw_status", "draw_id", "status"),
    )

    @validates("draw_id")
    def _freeze_draw_id(self, _key: str, value: Optional[int]) -> Optional[int]:
        current = self.__dict__.get("draw_id")
        if current is not None and value != current:
            raise ValueError("A ticket cannot be moved to another draw")
        return value

    def __repr__(self) -> str:
        return (
            f"<Ticket(id={self.id}, code='{self.code}', draw_id={self.draw_id}, "
            f"status='{self.status}')>"
        )

    @classmethod
    def get_by_code(cls, session: Session, code: str) -> Optional["Ticket"]:
        return session.scalar(select(cls).where(cls.code == code))

    @classmethod
    def get_for_wallet(
        cls, session: Session, draw_id: int, wallet_address: str
    ) -> Optional["Ticket"]:
        """Return the wallet's ticket in ``draw_id`` if one was issued."""

        return session.scalar(
            select(cls).where(
                cls.draw_id == draw_id, cls.wallet_address == wallet_address
            )
        )
