"""
Transfer run ledger: one TransferRun row per ingest call
"""

from datetime import datetime
from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession
from core.exceptions import (
    JobFailedError,
    JobTimeoutError,
    LedgerError,
    PartialIngestError,
    TransferException
)
from models.base import Engine, Operation, TransferStatus
from models.transfer_run import TransferRun
from schemas.transfer import TransferResult
import logging
import uuid

logger = logging.getLogger(__name__)


def status_for_result(result: TransferResult) -> TransferStatus:
    if result.records_failed == 0:
        return TransferStatus.SUCCESS
    if result.all_failed:
        return TransferStatus.FAILED
    return TransferStatus.PARTIAL


def status_for_error(error: Exception) -> TransferStatus:
    if isinstance(error, JobTimeoutError):
        return TransferStatus.TIMED_OUT
    if isinstance(error, PartialIngestError):
        return TransferStatus.PARTIAL
    return TransferStatus.FAILED


class TransferRunRecorder:
    """
    Writes the audit trail of transfer runs.

    start() inserts a RUNNING row before anything is submitted; complete()
    closes it from either the TransferResult or the raised exception.
    """

    def __init__(self, db_session: AsyncSession):
        self.db = db_session
        self.transfer_run: Optional[TransferRun] = None

    async def start(
        self,
        object_name: str,
        operation: Operation,
        engine: Engine,
        records_total: Optional[int] = None,
        connection_label: Optional[str] = None,
        status_file_path: Optional[str] = None
    ) -> TransferRun:
        """Create the transfer run record"""
        self.transfer_run = TransferRun(
            run_id=uuid.uuid4(),
            object_name=object_name,
            operation=operation,
            engine=engine,
            connection_label=connection_label,
            status=TransferStatus.RUNNING,
            started_at=datetime.utcnow(),
            records_total=records_total,
            status_file_path=status_file_path
        )

        try:
            self.db.add(self.transfer_run)
            await self.db.commit()
            await self.db.refresh(self.transfer_run)
        except Exception as e:
            await self.db.rollback()
            raise LedgerError(
                "Failed to record transfer run start",
                context={"operation": "INSERT", "object_name": object_name},
                original_exception=e
            )

        logger.debug(f"Transfer run {self.transfer_run.run_id} started for {object_name}")
        return self.transfer_run

    async def complete(
        self,
        result: Optional[TransferResult] = None,
        error: Optional[Exception] = None
    ) -> Optional[TransferRun]:
        """Complete the transfer run with statistics or the error that ended it"""
        run = self.transfer_run
        if run is None:
            return None

        run.completed_at = datetime.utcnow()
        run.duration_seconds = (run.completed_at - run.started_at).total_seconds()

        if result is not None:
            run.status = status_for_result(result)
            run.job_id = result.job_id
            run.job_state = result.state
            run.records_total = result.records_total
            run.records_processed = result.records_processed
            run.records_failed = result.records_failed
            run.status_records_written = result.status_records_written
            run.chunks_total = result.chunks_total
            run.chunks_succeeded = result.chunks_succeeded
            run.status_file_path = result.status_file_path

        if error is not None:
            run.status = status_for_error(error)
            run.error_message = str(getattr(error, "message", error))
            if isinstance(error, TransferException):
                run.error_details = _json_safe(error.to_dict())

            if isinstance(error, JobTimeoutError):
                run.job_id = error.job_id
            elif isinstance(error, JobFailedError) and error.job is not None:
                run.job_id = error.job.job_id
                run.job_state = error.job.state
                run.records_processed = error.job.records_processed
                run.records_failed = error.job.records_failed
            elif isinstance(error, PartialIngestError):
                run.chunks_total = error.chunks_total
                run.chunks_succeeded = error.chunks_succeeded

        try:
            await self.db.commit()
        except Exception as e:
            await self.db.rollback()
            raise LedgerError(
                "Failed to record transfer run completion",
                context={"operation": "UPDATE", "run_id": str(run.run_id)},
                original_exception=e
            )

        logger.info(f"Transfer run {run.run_id} completed: {run.status.value}")
        return run


def _json_safe(value):
    if isinstance(value, dict):
        return {str(k): _json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_json_safe(v) for v in value]
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    return str(value)
