"""
Pydantic schemas for API request/response models
"""

from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any
from datetime import datetime
from models.base import Operation, Engine, JobState, TransferStatus


# ============================================================================
# Health Check Schemas
# ============================================================================

class HealthCheckResponse(BaseModel):
    """Health check response model"""
    status: str = Field(..., description="Overall system status: healthy, degraded, unhealthy")
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    request_id: Optional[str] = None
    database_connected: bool
    runs_by_status: Dict[str, int] = Field(default_factory=dict)
    last_success_at: Optional[datetime] = None
    last_failure_at: Optional[datetime] = None

    @staticmethod
    def determine_status(database_connected: bool, runs_by_status: Dict[str, int]) -> str:
        """Unhealthy without a database, degraded while timed-out jobs await reconciliation"""
        if not database_connected:
            return "unhealthy"
        if runs_by_status.get(TransferStatus.TIMED_OUT.value, 0) > 0:
            return "degraded"
        return "healthy"

    class Config:
        json_schema_extra = {
            "example": {
                "status": "healthy",
                "timestamp": "2024-01-15T10:30:00Z",
                "database_connected": True,
                "runs_by_status": {"success": 42, "partial": 3, "failed": 1},
                "last_success_at": "2024-01-15T10:00:00Z"
            }
        }


# ============================================================================
# Transfer Run Schemas
# ============================================================================

class TransferRunResponse(BaseModel):
    """One row of the transfer run ledger"""
    run_id: str
    object_name: str
    operation: Operation
    engine: Engine
    job_id: Optional[str] = None
    connection_label: Optional[str] = None
    job_state: Optional[JobState] = None
    status: TransferStatus

    started_at: datetime
    completed_at: Optional[datetime] = None
    duration_seconds: Optional[float] = None

    records_total: Optional[int] = None
    records_processed: int = 0
    records_failed: int = 0
    status_records_written: int = 0
    chunks_total: Optional[int] = None
    chunks_succeeded: Optional[int] = None

    error_message: Optional[str] = None
    error_details: Optional[Dict[str, Any]] = None
    status_file_path: Optional[str] = None

    @classmethod
    def from_orm(cls, run):
        """Custom from_orm to explicitly convert UUID to string"""
        return cls(
            run_id=str(run.run_id),
            object_name=run.object_name,
            operation=run.operation,
            engine=run.engine,
            job_id=run.job_id,
            connection_label=run.connection_label,
            job_state=run.job_state,
            status=run.status,
            started_at=run.started_at,
            completed_at=run.completed_at,
            duration_seconds=run.duration_seconds,
            records_total=run.records_total,
            records_processed=run.records_processed or 0,
            records_failed=run.records_failed or 0,
            status_records_written=run.status_records_written or 0,
            chunks_total=run.chunks_total,
            chunks_succeeded=run.chunks_succeeded,
            error_message=run.error_message,
            error_details=run.error_details,
            status_file_path=run.status_file_path,
        )

    class Config:
        use_enum_values = True


class PaginationMetadata(BaseModel):
    """Pagination metadata"""
    total_items: int
    total_pages: int
    current_page: int
    page_size: int
    has_next: bool
    has_previous: bool


class TransferRunListResponse(BaseModel):
    """Paginated transfer run response"""
    items: List[TransferRunResponse]
    pagination: PaginationMetadata
    filters_applied: List[str] = Field(default_factory=list)
    request_id: Optional[str] = None


# ============================================================================
# Error Response Schema
# ============================================================================

class ErrorResponse(BaseModel):
    """Standard error response"""
    error: str
    detail: Optional[str] = None
    timestamp: datetime = Field(default_factory=datetime.utcnow)
