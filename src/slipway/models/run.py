"""Pipeline run model — one execution of build → deploy for a single push."""

import uuid
from datetime import datetime
from sqlalchemy import String, Text, DateTime, JSON, Integer
from sqlalchemy.orm import Mapped, mapped_column
from slipway.core.database import Base
from slipway.pipeline.types import StageStatus
import enum


class RunStatus(str, enum.Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


class PipelineRun(Base):
    __tablename__ = "pipeline_runs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    event: Mapped[str] = mapped_column(String(50), default="push")
    branch: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    commit_ref: Mapped[str] = mapped_column(String(255), nullable=False)
    environment: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(20), default=RunStatus.PENDING.value, index=True)
    build_status: Mapped[str] = mapped_column(String(20), default=StageStatus.PENDING.value)
    deploy_status: Mapped[str] = mapped_column(String(20), default=StageStatus.PENDING.value)
    artifact_handle: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    published_url: Mapped[str | None] = mapped_column(String(2048), nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    finished_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    duration_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    trace: Mapped[dict | None] = mapped_column(JSON, nullable=True)  # per-stage timings and error codes
    logs: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
