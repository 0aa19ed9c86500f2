from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import (
    String,
    Integer,
    DateTime,
    JSON,
    Index,
    func,
)
from database.engine import Base
from datetime import datetime
from typing import Any


# ==================== Models ===================== #
class WorkflowEntityRecord(Base):
    """
    Versioned snapshot of one workflow entity.

    Jobs, applications, interviews and interviewer calendars share this table.
    The full pydantic dump lives in ``payload``; the indexed columns mirror the
    fields entities are queried by.
    """

    __tablename__ = "workflow_entities"

    entity_type: Mapped[str] = mapped_column(String(32), primary_key=True)
    entity_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str | None] = mapped_column(String(50), index=True)

    # Query columns
    job_id: Mapped[str | None] = mapped_column(String(64), index=True)
    application_id: Mapped[str | None] = mapped_column(String(64), index=True)
    rh_user_id: Mapped[str | None] = mapped_column(String(64), index=True)

    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    __table_args__ = (
        Index("ix_workflow_entities_type_status", "entity_type", "status"),
    )
