"""Bookkeeping tables for settlement cycles."""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base
from .draw import MONEY


class SettlementLock(Base):
    """Named mutual-exclusion row.

    ``holder`` is ``NULL`` while the lock is free. Acquisition is a
    conditional ``UPDATE ... WHERE holder IS NULL`` so at most one caller can
    win, whichever process it runs in.
    """

    __tablename__ = "settlement_locks"

    name: Mapped[str] = mapped_column(String(64), primary_key=True)
    holder: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    acquired_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    def __repr__(self) -> str:
        return f"<SettlementLock(name='{self.name}', holder={self.holder!r})>"


class SettlementRun(Base):
    """One trigger of the settlement lifecycle and where it ended up."""

    __tablename__ = "settlement_runs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    state: Mapped[str] = mapped_column(String(20), nullable=False, default="idle")
    draw_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("draws.id", ondelete="SET NULL"), nullable=True, index=True
    )
    winner_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_allocated: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal(0))
    total_disbursed: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal(0))
    failure_stage: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    failure_kind: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)
    failure_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    finished_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    def __repr__(self) -> str:
        return f"<SettlementRun(id={self.id}, state='{self.state}', draw_id={self.draw_id})>"
