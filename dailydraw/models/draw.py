"""Database model for the daily draw."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING, Optional

from sqlalchemy import (
    BigInteger,
    ForeignKey,
    Index,
    String,
    func,
    select,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship, Session

from .base import Base
from .status import DrawStatus
from .types import ID_TYPE, UTCDateTime

if TYPE_CHECKING:
    from .bonus import BonusDrop
    from .reward import RewardRecord
    from .ticket import Ticket


class Draw(Base):
    """The unit of competition for one calendar day bucket."""

    __tablename__ = "draws"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    """Primary key."""

    day_bucket: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, unique=True)
    """UTC midnight of the reference-timezone calendar day this draw owns."""

    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default=DrawStatus.OPEN.value
    )
    """Lifecycle status: ``OPEN``, ``CLOSED`` or ``COMPLETED``."""

    closes_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    """Instant at which entries stop; the bucketer's cutover unless force-closed."""

    pool_amount: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    """Reward-pool size paid to the main winner."""

    resolved_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    """When main selection finished, with or without a winner."""

    winner_ticket_id: Mapped[Optional[int]] = mapped_column(
        ID_TYPE,
        ForeignKey(
            "tickets.id",
            ondelete="SET NULL",
            use_alter=True,
            name="fk_draws_winner_ticket_id_tickets",
        ),
        nullable=True,
    )
    """Ticket that won the main selection."""

    claim_token: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    """Token written by the resolution claim; identifies the claiming invocation."""

    claimed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    """When the current resolution claim was taken."""

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    """Timestamp when the draw row was created."""

    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
    """Timestamp bumped on every ORM update."""

    tickets: Mapped[list["Ticket"]] = relationship(
        "Ticket",
        back_populates="draw",
        foreign_keys="Ticket.draw_id",
        order_by="Ticket.id",
    )
    """Entries belonging to this draw."""

    winner_ticket: Mapped[Optional["Ticket"]] = relationship(
        "Ticket", foreign_keys=[winner_ticket_id], post_update=True
    )
    """Relationship to the winning ticket, if any."""

    bonus_drops: Mapped[list["BonusDrop"]] = relationship(
        back_populates="draw", order_by="BonusDrop.scheduled_at"
    )
    """Scheduled secondary reward events."""

    rewards: Mapped[list["RewardRecord"]] = relationship(back_populates="draw")
    """Main and bonus outcomes recorded against this draw."""

    __table_args__ = (Index("ix_draws_status_closes_at", "status", "closes_at"),)

    def __repr__(self) -> str:  # pragma: no cover - repr is trivial
        return "<Draw(id={id}, day_bucket={bucket}, status={status}, closes_at={closes})>".format(
            id=self.id,
            bucket=self.day_bucket,
            status=self.status,
            closes=self.closes_at,
        )

    @property
    def is_resolved(self) -> bool:
        return self.resolved_at is not None

    @classmethod
    def get_by_day_bucket(cls, session: Session, day_bucket: datetime) -> Optional["Draw"]:
        """Return the draw anchored to ``day_bucket`` if it exists."""

        return session.scalar(select(cls).where(cls.day_bucket == day_bucket))

    def ticket_count(self, session: Session) -> int:
        """Number of tickets entered in this draw, regardless of status."""

        from .ticket import Ticket

        return session.scalar(
            select(func.count(Ticket.id)).where(Ticket.draw_id == self.id)
        ) or 0


__all__ = ["Draw"]
