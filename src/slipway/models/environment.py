"""Environment model — a named deployment target and its live URL."""

from datetime import datetime
from sqlalchemy import String, DateTime
from sqlalchemy.orm import Mapped, mapped_column
from slipway.core.database import Base


class Environment(Base):
    __tablename__ = "environments"

    name: Mapped[str] = mapped_column(String(255), primary_key=True)
    current_url: Mapped[str | None] = mapped_column(String(2048), nullable=True)
    last_run_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
