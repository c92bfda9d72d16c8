from sqlalchemy.orm import declarative_base
import enum

Base = declarative_base()


# ============================================================================
# ENUMS
# ============================================================================

class Operation(str, enum.Enum):
    """Write operation applied to the target"""
    INSERT = "insert"
    UPDATE = "update"
    UPSERT = "upsert"
    DELETE = "delete"


class Engine(str, enum.Enum):
    """Submission strategy"""
    BULK = "bulk"
    DIRECT = "direct"


class JobState(str, enum.Enum):
    """Transfer job state, using the remote endpoint's state names"""
    OPEN = "Open"
    UPLOAD_COMPLETE = "UploadComplete"
    IN_PROGRESS = "InProgress"
    COMPLETED = "JobComplete"
    FAILED = "Failed"
    ABORTED = "Aborted"

    @property
    def is_terminal(self) -> bool:
        return self in (JobState.COMPLETED, JobState.FAILED, JobState.ABORTED)

    @property
    def rank(self) -> int:
        if self.is_terminal:
            return 3
        return {
            JobState.OPEN: 0,
            JobState.UPLOAD_COMPLETE: 1,
            JobState.IN_PROGRESS: 2,
        }[self]


class Outcome(str, enum.Enum):
    """Per-record ingest outcome"""
    SUCCESS = "success"
    ERROR = "error"


class ReportLevel(str, enum.Enum):
    """Which outcomes are written to the status file"""
    NONE = "none"
    ERRORS = "errors"
    INSERTS = "inserts"
    ALL = "all"


class TransferStatus(str, enum.Enum):
    """Transfer run status in the ledger"""
    RUNNING = "running"
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
