from .base import Base

# import models so Alembic/autoloaders can discover mappers
from .draw import Draw  # noqa: F401
from .ticket import Ticket  # noqa: F401
from .bonus import BonusDrop  # noqa: F401
from .reward import RewardRecord  # noqa: F401
from .ops_config import OpsConfig  # noqa: F401
from .status import (  # noqa: F401
    BonusDropStatus,
    DrawStatus,
    OpsMode,
    RewardKind,
    TicketStatus,
)

__all__ = [
    "Base",
    "Draw",
    "Ticket",
    "BonusDrop",
    "RewardRecord",
    "OpsConfig",
    "BonusDropStatus",
    "DrawStatus",
    "OpsMode",
    "RewardKind",
    "TicketStatus",
]
