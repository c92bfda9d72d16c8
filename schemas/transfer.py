"""
Pydantic schemas for transfer jobs, progress events and status records
"""

from pydantic import BaseModel, Field
from typing import Optional, Dict, Any, List
from datetime import datetime
from models.base import Operation, Engine, JobState, Outcome
from core.exceptions import JobStateError
import logging

logger = logging.getLogger(__name__)

# A record is a plain ordered dict; its field set depends on the remote schema
Record = Dict[str, Any]

STATUS_COLUMNS: List[str] = [
    "row_number",
    "identifier",
    "target_id",
    "created",
    "outcome",
    "error_message",
]


class IngestProgress(BaseModel):
    """Snapshot pushed to progress callbacks during ingestion"""
    job_id: Optional[str] = None
    object_name: str
    operation: Operation
    engine: Engine
    state: JobState
    records_processed: int = 0
    records_failed: int = 0
    records_total: Optional[int] = None


class TransferJob(BaseModel):
    """
    One submission to the target endpoint.

    Owned and mutated by exactly one loop (the bulk poll loop or the direct
    chunk loop). State only moves forward; once terminal, any further
    mutation raises JobStateError.
    """

    job_id: Optional[str] = None
    object_name: str
    operation: Operation
    engine: Engine
    state: JobState = JobState.OPEN
    records_processed: int = 0
    records_failed: int = 0
    records_total: Optional[int] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    completed_at: Optional[datetime] = None
    error_message: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal

    def advance(
        self,
        state: Optional[JobState] = None,
        records_processed: Optional[int] = None,
        records_failed: Optional[int] = None,
        error_message: Optional[str] = None
    ) -> None:
        """Apply new state and counts, keeping transitions monotonic."""
        if self.is_terminal:
            raise JobStateError(
                "Job is already in a terminal state",
                context={"job_id": self.job_id, "state": self.state.value}
            )

        if records_processed is not None:
            self.records_processed = records_processed
        if records_failed is not None:
            self.records_failed = records_failed
        if error_message:
            self.error_message = error_message

        if state is not None:
            if state.rank < self.state.rank:
                logger.debug(
                    f"Ignoring backwards state {state.value} for job {self.job_id} "
                    f"(current: {self.state.value})"
                )
                return
            self.state = state
            if state.is_terminal:
                self.completed_at = datetime.utcnow()

    def apply_remote_info(self, info: Dict[str, Any]) -> None:
        """Apply a job info payload returned by the target endpoint."""
        state = info.get("state")
        self.advance(
            state=JobState(state) if state else None,
            records_processed=_as_int(info.get("numberRecordsProcessed")),
            records_failed=_as_int(info.get("numberRecordsFailed")),
            error_message=info.get("errorMessage") or None,
        )

    def progress(self) -> IngestProgress:
        return IngestProgress(
            job_id=self.job_id,
            object_name=self.object_name,
            operation=self.operation,
            engine=self.engine,
            state=self.state,
            records_processed=self.records_processed,
            records_failed=self.records_failed,
            records_total=self.records_total,
        )


class StatusRecord(BaseModel):
    """One row of the status file"""
    row_number: Optional[int] = None
    identifier: Optional[str] = None
    target_id: Optional[str] = None
    created: bool = False
    outcome: Outcome
    error_message: Optional[str] = None

    def to_row(self) -> Dict[str, Any]:
        return {
            "row_number": self.row_number if self.row_number is not None else "",
            "identifier": self.identifier or "",
            "target_id": self.target_id or "",
            "created": "true" if self.created else "false",
            "outcome": self.outcome.value,
            "error_message": self.error_message or "",
        }


class TransferResult(BaseModel):
    """Terminal summary of one ingest call"""
    job_id: Optional[str] = None
    object_name: str
    operation: Operation
    engine: Engine
    state: JobState
    records_total: int = 0
    records_processed: int = 0
    records_failed: int = 0
    status_records_written: int = 0
    chunks_total: Optional[int] = None
    chunks_succeeded: Optional[int] = None
    status_file_path: Optional[str] = None
    started_at: datetime
    completed_at: Optional[datetime] = None

    @property
    def all_failed(self) -> bool:
        """True when every submitted record failed; callers may treat this as an error."""
        return self.records_total > 0 and self.records_failed >= self.records_total

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.completed_at is None:
            return None
        return (self.completed_at - self.started_at).total_seconds()

    @classmethod
    def from_job(cls, job: TransferJob, **kwargs) -> "TransferResult":
        return cls(
            job_id=job.job_id,
            object_name=job.object_name,
            operation=job.operation,
            engine=job.engine,
            state=job.state,
            records_total=kwargs.pop("records_total", job.records_total or 0),
            records_processed=job.records_processed,
            records_failed=job.records_failed,
            started_at=job.created_at,
            completed_at=job.completed_at,
            **kwargs
        )


def _as_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    return int(value)
