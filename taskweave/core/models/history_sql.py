from __future__ import annotations
from datetime import datetime
from sqlalchemy import (
    DateTime,
    Enum as SQLAlchemyEnum,
    Float,
    Index,
    String,
    Text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from taskweave.core.types.status import ExecutionStatus


class Base(DeclarativeBase):
    """SQLAlchemy declarative base for the history tables"""

    pass


class ExecutionRecordModel(Base):
    """
    One finished execution. Rows are written once and never updated.

    - execution_id: str # uuid4, primary key
    - workflow_name: str # definition name at start time
    - workflow_version: str # definition version at start time
    - overall_result: ExecutionStatus # COMPLETED, FAILED or STOPPED
    - start_ts: float # start time as epoch seconds, used for range queries and ordering
    - end_ts: float # end time as epoch seconds
    - total_duration: float # seconds
    - summary: str # one-line human summary
    - payload: str # full ExecutionResult, serialized as json
    - recorded_at: datetime # when the row was written
    """

    __tablename__ = 'taskweave_execution_history'

    execution_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    workflow_name: Mapped[str] = mapped_column(String(255), nullable=False)
    workflow_version: Mapped[str] = mapped_column(String(64), nullable=False)
    overall_result: Mapped[ExecutionStatus] = mapped_column(
        SQLAlchemyEnum(ExecutionStatus, native_enum=False),
        nullable=False,
    )
    start_ts: Mapped[float] = mapped_column(Float, nullable=False)
    end_ts: Mapped[float] = mapped_column(Float, nullable=False)
    total_duration: Mapped[float] = mapped_column(Float, nullable=False)
    summary: Mapped[str] = mapped_column(Text, nullable=False, default='')
    payload: Mapped[str] = mapped_column(Text, nullable=False)
    recorded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index('idx_taskweave_history_workflow_start', 'workflow_name', 'start_ts'),
    )
