"""Utility helpers for the models package."""

from __future__ import annotations

import secrets
from typing import Optional
from sqlalchemy import select
from sqlalchemy.orm import Session

# No 0/O, 1/I/L: codes get read aloud and typed in by hand.
TICKET_CODE_ALPHABET = "ABCDEFGHJKMNPQRSTUVWXYZ23456789"


def generate_ticket_code(
    prefix: str = "DRW",
    session: Optional[Session] = None,
    chunk_length: int = 4,
    max_attempts: int = 32,
) -> str:
    """Return a unique ticket code such as ``DRW-7KQ2-M9XA``.

    When a session is provided, the helper retries if the generated value is
    already present (or pending) in ``Ticket.code``.
    """
    from .ticket import Ticket

    def _chunk() -> str:
        return "".join(secrets.choice(TICKET_CODE_ALPHABET) for _ in range(chunk_length))

    attempts = 0
    while attempts < max_attempts:
        candidate = f"{prefix}-{_chunk()}-{_chunk()}"

        if session is not None:
            pending = any(
                isinstance(obj, Ticket) and obj.code == candidate for obj in session.new
            )
            if pending or session.scalar(
                select(Ticket.id).where(Ticket.code == candidate)
            ) is not None:
                attempts += 1
                continue

        return candidate

    raise RuntimeError("Unable to generate a unique ticket code after multiple attempts")
