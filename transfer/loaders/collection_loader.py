"""
Direct-call ingestion through synchronous collection requests.

Records are split into chunks of at most DIRECT_MAX_RECORDS_PER_CALL and
sent one chunk at a time. Each call answers with one result per record in
submission order, so status records are written as soon as a chunk returns.
"""

import math
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union
from core.config import settings
from core.exceptions import (
    CorrelationError,
    InputError,
    PartialIngestError,
    SubmissionError,
    TransferException
)
from models.base import Engine, JobState, Operation, Outcome, ReportLevel
from schemas.transfer import Record, StatusRecord, TransferJob, TransferResult
from transfer.base import IngestProgressCallback, RecordConnection
from transfer.files import count_csv_rows, iter_csv_chunks
from transfer.loaders.status_writer import StatusWriter
import logging

logger = logging.getLogger(__name__)


class CollectionLoader:
    """
    Submit records through bounded synchronous calls.

    Chunks are strictly sequential: chunk N+1 is only sent after chunk N has
    returned and its status records are written.
    """

    def __init__(self, connection: RecordConnection, max_records_per_call: Optional[int] = None):
        self.connection = connection
        self.max_records_per_call = max_records_per_call or settings.DIRECT_MAX_RECORDS_PER_CALL

    async def load_records(
        self,
        object_name: str,
        operation: Operation,
        records: Sequence[Record],
        status_file_path: Optional[Union[str, Path]] = None,
        report_level: ReportLevel = ReportLevel.ERRORS,
        id_field: str = "Id",
        external_id_field: Optional[str] = None,
        progress_callback: Optional[IngestProgressCallback] = None
    ) -> TransferResult:
        """
        Write an in-memory record set.

        Raises:
            InputError: No records
            SubmissionError: The first call failed; nothing was written
            PartialIngestError: A later call failed; status records exist
                for the chunks that succeeded
        """
        if not records:
            raise InputError(
                "No records provided",
                context={"parameter": "records", "object_name": object_name}
            )

        size = self.max_records_per_call
        chunks = (list(records[start:start + size]) for start in range(0, len(records), size))

        return await self._submit(
            object_name=object_name,
            operation=operation,
            chunks=chunks,
            records_total=len(records),
            status_file_path=status_file_path,
            report_level=report_level,
            id_field=id_field,
            external_id_field=external_id_field,
            progress_callback=progress_callback
        )

    async def load_file(
        self,
        object_name: str,
        operation: Operation,
        file_path: Union[str, Path],
        status_file_path: Optional[Union[str, Path]] = None,
        report_level: ReportLevel = ReportLevel.ERRORS,
        id_field: str = "Id",
        external_id_field: Optional[str] = None,
        progress_callback: Optional[IngestProgressCallback] = None
    ) -> TransferResult:
        """Write the rows of a CSV file, reading one chunk at a time."""
        file_path = Path(file_path)
        if not file_path.exists():
            raise InputError(
                f"File not found: {file_path}",
                context={"parameter": "file_path", "value": str(file_path)}
            )

        records_total = count_csv_rows(file_path)
        if records_total == 0:
            raise InputError(
                f"File has no records: {file_path}",
                context={"parameter": "file_path", "value": str(file_path)}
            )

        return await self._submit(
            object_name=object_name,
            operation=operation,
            chunks=iter_csv_chunks(file_path, self.max_records_per_call),
            records_total=records_total,
            status_file_path=status_file_path,
            report_level=report_level,
            id_field=id_field,
            external_id_field=external_id_field,
            progress_callback=progress_callback
        )

    async def _submit(
        self,
        object_name: str,
        operation: Operation,
        chunks: Iterable[List[Record]],
        records_total: int,
        status_file_path: Optional[Union[str, Path]],
        report_level: ReportLevel,
        id_field: str,
        external_id_field: Optional[str],
        progress_callback: Optional[IngestProgressCallback]
    ) -> TransferResult:
        chunks_total = math.ceil(records_total / self.max_records_per_call)
        chunks_succeeded = 0
        records_processed = 0
        records_failed = 0

        job = TransferJob(
            object_name=object_name,
            operation=operation,
            engine=Engine.DIRECT,
            records_total=records_total
        )

        logger.info(
            f"Loading {records_total} {object_name} records via {chunks_total} direct calls "
            f"({operation.value}) on {self.connection.label}"
        )

        with StatusWriter(status_file_path, operation, report_level) as status_writer:
            for chunk in chunks:
                payload = _payload(chunk, operation, id_field)

                try:
                    results = await self.connection.save_records(
                        object_name, operation, payload, external_id_field=external_id_field
                    )
                except Exception as e:
                    job.advance(state=JobState.FAILED, error_message=str(e))
                    context = {
                        "object_name": object_name,
                        "operation": operation.value,
                        "chunk": chunks_succeeded + 1,
                        "connection": self.connection.label
                    }
                    if isinstance(e, TransferException):
                        context["error_type"] = type(e).__name__

                    if chunks_succeeded == 0:
                        logger.error(f"First direct call for {object_name} failed: {str(e)}")
                        raise SubmissionError(
                            "Direct call rejected before any record was written",
                            context=context,
                            original_exception=e
                        )

                    logger.error(
                        f"Direct call {chunks_succeeded + 1}/{chunks_total} for {object_name} "
                        f"failed after {chunks_succeeded} chunks succeeded: {str(e)}"
                    )
                    raise PartialIngestError(
                        "Direct load stopped after a failed call",
                        chunks_succeeded=chunks_succeeded,
                        chunks_total=chunks_total,
                        context=context,
                        original_exception=e
                    )

                if len(results) != len(chunk):
                    job.advance(
                        state=JobState.FAILED,
                        error_message=f"{len(results)} results for {len(chunk)} records"
                    )
                    logger.error(
                        f"Direct call {chunks_succeeded + 1}/{chunks_total} for {object_name} "
                        f"returned {len(results)} results for {len(chunk)} records"
                    )
                    raise CorrelationError(
                        "Direct call returned a different number of results than records sent",
                        context={
                            "object_name": object_name,
                            "chunk": chunks_succeeded + 1,
                            "chunks_succeeded": chunks_succeeded,
                            "chunks_total": chunks_total,
                            "job_state": job.state.value,
                            "records_sent": len(chunk),
                            "results_received": len(results)
                        }
                    )

                statuses = [
                    _status_from_result(records_processed + offset + 1, record, result, operation, id_field)
                    for offset, (record, result) in enumerate(zip(chunk, results))
                ]
                status_writer.write(statuses)

                chunks_succeeded += 1
                records_processed += len(chunk)
                records_failed += sum(1 for status in statuses if status.outcome == Outcome.ERROR)

                job.advance(
                    state=JobState.IN_PROGRESS,
                    records_processed=records_processed,
                    records_failed=records_failed
                )
                logger.debug(
                    f"Direct call {chunks_succeeded}/{chunks_total}: "
                    f"{len(chunk)} records, {records_failed} failed so far"
                )

                if progress_callback:
                    progress_callback(job.progress())

            job.advance(state=JobState.COMPLETED)

        logger.info(
            f"Direct load of {object_name} finished: {records_processed} processed, "
            f"{records_failed} failed, {status_writer.records_written} status rows"
        )

        return TransferResult.from_job(
            job,
            records_total=records_processed,
            status_records_written=status_writer.records_written,
            status_file_path=str(status_file_path) if status_writer.enabled else None,
            chunks_total=chunks_total,
            chunks_succeeded=chunks_succeeded
        )


def _payload(chunk: List[Record], operation: Operation, id_field: str) -> List[Record]:
    """Deletes only carry identifiers."""
    if operation == Operation.DELETE:
        return [{id_field: record.get(id_field)} for record in chunk]
    return chunk


def _status_from_result(
    row_number: int,
    record: Record,
    result: Dict[str, Any],
    operation: Operation,
    id_field: str
) -> StatusRecord:
    success = bool(result.get("success"))
    identifier = record.get(id_field)
    errors = result.get("errors") or []

    return StatusRecord(
        row_number=row_number,
        identifier=str(identifier) if identifier not in (None, "") else None,
        target_id=result.get("id") or None,
        created=bool(result.get("created", success and operation == Operation.INSERT)),
        outcome=Outcome.SUCCESS if success else Outcome.ERROR,
        error_message="; ".join(str(error) for error in errors) or None
    )
