"""Exception types raised by administrative actions and configuration."""

from __future__ import annotations


class DrawError(RuntimeError):
    """Base error carrying a machine readable ``code`` for API responses."""

    code = "DRAW_ERROR"

    def __init__(self, message: str = "", *, code: str | None = None) -> None:
        super().__init__(message or self.__class__.__doc__ or self.code)
        if code is not None:
            self.code = code


class ConfigurationError(DrawError):
    """A required setting is missing or malformed."""

    code = "CONFIG_MISSING"


class Unauthorized(DrawError):
    """The caller did not present a valid credential."""

    code = "UNAUTHORIZED"


class OpsFrozen(DrawError):
    """Administrative actions are frozen on this environment."""

    code = "OPS_FROZEN"


class NoDrawToday(DrawError):
    """No draw found for today."""

    code = "NO_DRAW"


class NothingToCancel(DrawError):
    """No scheduled bonus drops to cancel for today."""

    code = "NOTHING_TO_CANCEL"


class NothingToRollback(DrawError):
    """No bonus drops exist for today."""

    code = "NO_BONUS"


class InvalidRequest(DrawError):
    """The request parameters were rejected."""

    code = "INVALID_REQUEST"


class RecordNotFound(DrawError):
    """The referenced record does not exist."""

    code = "NOT_FOUND"


class InvalidTransition(DrawError):
    """A status change is not allowed by the transition table."""

    code = "INVALID_TRANSITION"


__all__ = [
    "DrawError",
    "ConfigurationError",
    "Unauthorized",
    "OpsFrozen",
    "NoDrawToday",
    "NothingToCancel",
    "NothingToRollback",
    "InvalidRequest",
    "RecordNotFound",
    "InvalidTransition",
]
