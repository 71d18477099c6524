"""Coordination tables in the ``system`` schema."""

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import BigInteger, DateTime, Index, Integer, String, Text, func
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from bitredict.models.base import Base

SYSTEM_SCHEMA = "system"


class CronLock(Base):
    """
    One row per currently held job lock.

    The primary key on job_name is what makes acquisition atomic.
    """

    __tablename__ = "cron_locks"
    __table_args__ = ({"schema": SYSTEM_SCHEMA},)

    job_name: Mapped[str] = mapped_column(String(100), primary_key=True)
    locked_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    locked_by: Mapped[str] = mapped_column(String(255), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    execution_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    lock_metadata: Mapped[dict[str, Any] | None] = mapped_column(
        "metadata", JSONB, nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    def __repr__(self) -> str:
        return f"<CronLock {self.job_name} by {self.locked_by}>"


class CronExecutionLog(Base):
    """
    Audit log of coordinated job runs.

    status: started, completed, failed, timeout, force_released.
    """

    __tablename__ = "cron_execution_log"
    __table_args__ = ({"schema": SYSTEM_SCHEMA},)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    job_name: Mapped[str] = mapped_column(String(100), nullable=False)
    execution_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    duration_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    log_metadata: Mapped[dict[str, Any] | None] = mapped_column(
        "metadata", JSONB, nullable=True
    )


Index(
    "idx_cron_execution_log_job_started",
    CronExecutionLog.job_name,
    CronExecutionLog.started_at.desc(),
)


class IndexerCursor(Base):
    """Last fully processed block per (contract, event)."""

    __tablename__ = "indexer_cursors"
    __table_args__ = ({"schema": SYSTEM_SCHEMA},)

    contract: Mapped[str] = mapped_column(String(50), primary_key=True)
    event_name: Mapped[str] = mapped_column(String(100), primary_key=True)
    last_processed_block: Mapped[int] = mapped_column(BigInteger, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )
