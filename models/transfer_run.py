from sqlalchemy import Column, BigInteger, String, Enum, DateTime, Float, Integer, Text, Index
from sqlalchemy.dialects.postgresql import UUID, JSONB
from datetime import datetime
import uuid
from models.base import Base, Operation, Engine, JobState, TransferStatus


class TransferRun(Base):
    """
    Tracks one ingest job submitted to a target endpoint.

    Purpose:
    - Audit trail of all transfer jobs
    - Reconciliation entry point (job id, status file path)
    - Error tracking, including jobs that timed out but may still run remotely
    """
    __tablename__ = "transfer_runs"

    id = Column(BigInteger, primary_key=True, autoincrement=True)
    run_id = Column(UUID(as_uuid=True), default=uuid.uuid4, unique=True, nullable=False, index=True)

    # Job identification
    object_name = Column(String(255), nullable=False, index=True)
    operation = Column(Enum(Operation), nullable=False)
    engine = Column(Enum(Engine), nullable=False)
    job_id = Column(String(64), nullable=True, index=True)  # assigned by the target on submission
    connection_label = Column(String(255), nullable=True)

    # State
    job_state = Column(Enum(JobState), nullable=True)
    status = Column(Enum(TransferStatus), default=TransferStatus.RUNNING, nullable=False, index=True)

    # Timestamps
    started_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)
    completed_at = Column(DateTime, nullable=True)
    duration_seconds = Column(Float, nullable=True)

    # Statistics
    records_total = Column(Integer, nullable=True)
    records_processed = Column(Integer, default=0)
    records_failed = Column(Integer, default=0)
    status_records_written = Column(Integer, default=0)
    chunks_total = Column(Integer, nullable=True)
    chunks_succeeded = Column(Integer, nullable=True)

    # Error tracking
    error_message = Column(Text, nullable=True)
    error_details = Column(JSONB, nullable=True)

    status_file_path = Column(String(1024), nullable=True)

    __table_args__ = (
        Index("idx_transfer_run_object_started", "object_name", "started_at"),
        Index("idx_transfer_run_status", "status", "started_at"),
    )
