"""SQLAlchemy ORM models backing the persistent state."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import DateTime, Integer, JSON, String
from sqlalchemy.orm import Mapped, mapped_column

from .database import Base


class StoredPick(Base):
    """The serialized daily pick, stored under an application-scoped key."""

    __tablename__ = "daily_picks"

    key: Mapped[str] = mapped_column(String(120), primary_key=True)
    recommendation: Mapped[dict[str, Any]] = mapped_column(JSON)
    based_on_id: Mapped[int] = mapped_column(Integer)
    created_at: Mapped[datetime] = mapped_column(DateTime)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )
