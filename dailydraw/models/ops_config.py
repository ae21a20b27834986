from datetime import datetime, timezone

from sqlalchemy import String, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Mapped, Session, mapped_column

from .base import Base
from .status import OpsMode
from .types import UTCDateTime

SINGLETON_KEY = "singleton"


class OpsConfig(Base):
    """The operator's desired automation mode. Exactly one row exists."""

    __tablename__ = "ops_config"

    singleton: Mapped[str] = mapped_column(String(16), primary_key=True, default=SINGLETON_KEY)
    mode: Mapped[str] = mapped_column(String(8), nullable=False, default=OpsMode.MANUAL.value)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    def __repr__(self) -> str:
        return f"<OpsConfig(mode='{self.mode}', updated_at={self.updated_at})>"

    @classmethod
    def get(cls, session: Session) -> "OpsConfig":
        """Return the singleton row, creating it in MANUAL mode on first use."""

        stmt = select(cls).where(cls.singleton == SINGLETON_KEY)
        cfg = session.scalar(stmt)
        if cfg is not None:
            return cfg

        cfg = cls(singleton=SINGLETON_KEY, mode=OpsMode.MANUAL.value)
        try:
            with session.begin_nested():
                session.add(cfg)
        except IntegrityError:
            # Another process inserted the row first.
            cfg = session.scalar(stmt)
            if cfg is None:
                raise
        return cfg
