"""
Batch-job ingestion through the endpoint's bulk ingest API.

Job lifecycle: create (Open) -> upload -> close (UploadComplete) -> the
endpoint moves it to InProgress -> poll until JobComplete, Failed or
Aborted -> fetch per-record results -> write status records.
"""

import asyncio
import math
import time
from collections import defaultdict, deque
from pathlib import Path
from typing import Any, AsyncIterable, AsyncIterator, Deque, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple, Union
from core.config import settings
from core.exceptions import (
    CorrelationError,
    IngestError,
    InputError,
    JobFailedError,
    JobTimeoutError,
    SubmissionError,
    TransferException
)
from models.base import Engine, JobState, Operation, Outcome, ReportLevel
from schemas.transfer import Record, StatusRecord, TransferJob, TransferResult
from transfer.base import IngestProgressCallback, RecordConnection
from transfer.files import iter_csv_chunks, iter_file_blocks, read_header, records_to_csv_bytes, serialize_value
from transfer.loaders.status_writer import StatusWriter
import logging

logger = logging.getLogger(__name__)

RESULT_ID_FIELD = "sf__Id"
RESULT_CREATED_FIELD = "sf__Created"
RESULT_ERROR_FIELD = "sf__Error"

NO_RESULT_MESSAGE = "No result returned for row"

# Status rows are buffered and flushed in blocks of this size
STATUS_FLUSH_SIZE = 1000


def suggest_polling_settings(record_count: Optional[int] = None) -> Tuple[float, float]:
    """
    Scale the poll interval and timeout with the job size.

    Every BULK_POLL_RECORD_SCALE_FACTOR records add one step: the interval
    grows up to BULK_POLL_MAX_INTERVAL, the timeout grows without bound.

    Returns:
        (poll_interval, poll_timeout) in seconds
    """
    record_count = record_count or settings.BULK_POLL_RECORD_SCALE_FACTOR
    scale = math.ceil(record_count / settings.BULK_POLL_RECORD_SCALE_FACTOR)

    poll_interval = min(settings.BULK_POLL_MIN_INTERVAL * scale, settings.BULK_POLL_MAX_INTERVAL)
    poll_timeout = settings.BULK_POLL_TIMEOUT * scale
    return poll_interval, poll_timeout


class BulkLoader:
    """
    Submit records as one bulk ingest job and drive it to a terminal state.

    Only one job is in flight per call. The loader owns the TransferJob for
    the duration of the call; nothing else mutates it.
    """

    def __init__(
        self,
        connection: RecordConnection,
        poll_interval: Optional[float] = None,
        poll_timeout: Optional[float] = None
    ):
        self.connection = connection
        self.poll_interval = poll_interval
        self.poll_timeout = poll_timeout

    async def load_file(
        self,
        object_name: str,
        operation: Operation,
        file_path: Union[str, Path],
        status_file_path: Optional[Union[str, Path]] = None,
        report_level: ReportLevel = ReportLevel.ERRORS,
        id_field: str = "Id",
        external_id_field: Optional[str] = None,
        records_total: Optional[int] = None,
        progress_callback: Optional[IngestProgressCallback] = None
    ) -> TransferResult:
        """
        Upload a CSV file as one ingest job.

        The file is streamed to the endpoint and read again, chunk by chunk,
        to correlate results; it is never loaded whole.

        Args:
            object_name: Target object type
            operation: insert, update, upsert or delete
            file_path: CSV file with a header row
            status_file_path: Where to write status records (optional)
            report_level: Which outcomes go to the status file
            id_field: Column holding the source identifier
            external_id_field: Match field for upserts
            records_total: Estimated row count, used for polling settings
                and progress reporting
            progress_callback: Called with an IngestProgress on every poll

        Raises:
            InputError: Missing or empty file, or a delete file without id_field
            SubmissionError: The job could not be created or uploaded
            JobTimeoutError: Polling exceeded the timeout
            JobFailedError: The job ended Failed or Aborted
            CorrelationError: Results could not be matched to uploaded rows
        """
        file_path = Path(file_path)
        if not file_path.exists():
            raise InputError(
                f"File not found: {file_path}",
                context={"parameter": "file_path", "value": str(file_path)}
            )

        columns = read_header(file_path)
        if not columns:
            raise InputError(
                f"File has no header row: {file_path}",
                context={"parameter": "file_path", "value": str(file_path)}
            )

        logger.info(
            f"Loading {object_name} from {file_path.name} via bulk job "
            f"({operation.value}) on {self.connection.label}"
        )

        upload_data: Union[bytes, AsyncIterable[bytes]]

        if operation == Operation.DELETE:
            if id_field not in columns:
                raise InputError(
                    f"Delete file has no '{id_field}' column: {file_path}",
                    context={"parameter": "id_field", "value": id_field, "columns": columns}
                )
            columns = [id_field]
            upload_data = _iter_id_blocks(file_path, id_field)
        else:
            upload_data = iter_file_blocks(file_path)

        def rows() -> Iterator[Dict[str, str]]:
            for chunk in iter_csv_chunks(file_path, settings.BULK_MAX_RECORDS_PER_BATCH):
                if operation == Operation.DELETE:
                    yield from ({id_field: row.get(id_field, "")} for row in chunk)
                else:
                    yield from chunk

        return await self._run_job(
            object_name=object_name,
            operation=operation,
            upload_data=upload_data,
            columns=columns,
            rows=rows,
            status_file_path=status_file_path,
            report_level=report_level,
            id_field=id_field,
            external_id_field=external_id_field,
            records_total=records_total,
            progress_callback=progress_callback
        )

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
        """Upload an in-memory record set as one ingest job. See load_file."""
        if not records:
            raise InputError(
                "No records provided",
                context={"parameter": "records", "object_name": object_name}
            )

        if operation == Operation.DELETE:
            records = [{id_field: record.get(id_field)} for record in records]

        payload = records_to_csv_bytes(records)
        columns = _record_columns(records)

        logger.info(
            f"Loading {len(records)} {object_name} records via bulk job "
            f"({operation.value}) on {self.connection.label}"
        )

        def rows() -> Iterator[Dict[str, str]]:
            for record in records:
                yield {column: serialize_value(record.get(column)) for column in columns}

        return await self._run_job(
            object_name=object_name,
            operation=operation,
            upload_data=payload,
            columns=columns,
            rows=rows,
            status_file_path=status_file_path,
            report_level=report_level,
            id_field=id_field,
            external_id_field=external_id_field,
            records_total=len(records),
            progress_callback=progress_callback
        )

    async def _run_job(
        self,
        object_name: str,
        operation: Operation,
        upload_data: Union[bytes, AsyncIterable[bytes]],
        columns: List[str],
        rows,
        status_file_path: Optional[Union[str, Path]],
        report_level: ReportLevel,
        id_field: str,
        external_id_field: Optional[str],
        records_total: Optional[int],
        progress_callback: Optional[IngestProgressCallback]
    ) -> TransferResult:
        poll_interval, poll_timeout = self._polling_settings(records_total)

        job = TransferJob(
            object_name=object_name,
            operation=operation,
            engine=Engine.BULK,
            records_total=records_total
        )

        # --------------------------------------------------
        # SUBMISSION: create, upload, close
        # --------------------------------------------------
        try:
            info = await self.connection.create_ingest_job(
                object_name, operation, external_id_field=external_id_field
            )
        except Exception as e:
            logger.error(f"Bulk job creation for {object_name} rejected: {str(e)}")
            raise SubmissionError(
                "Bulk job creation rejected",
                context={
                    "object_name": object_name,
                    "operation": operation.value,
                    "connection": self.connection.label
                },
                original_exception=e
            )

        job.job_id = info.get("id")
        logger.info(f"Bulk job {job.job_id} created for {object_name}")

        try:
            await self.connection.upload_job_data(job.job_id, upload_data)
            await self.connection.close_ingest_job(job.job_id)
        except Exception as e:
            logger.error(f"Upload to bulk job {job.job_id} failed: {str(e)}")
            raise SubmissionError(
                "Bulk job upload failed",
                context={
                    "object_name": object_name,
                    "job_id": job.job_id,
                    "connection": self.connection.label
                },
                original_exception=e
            )

        job.advance(state=JobState.UPLOAD_COMPLETE)

        # --------------------------------------------------
        # POLLING
        # --------------------------------------------------
        await self._poll_until_terminal(job, poll_interval, poll_timeout, progress_callback)

        logger.info(
            f"Bulk job {job.job_id} finished: {job.state.value} "
            f"(processed={job.records_processed}, failed={job.records_failed})"
        )

        # --------------------------------------------------
        # RESULTS
        # --------------------------------------------------
        status_writer = StatusWriter(status_file_path, operation, report_level)
        rows_uploaded: Optional[int] = None

        if status_writer.enabled:
            with status_writer:
                rows_uploaded = await self._write_results(job, columns, rows(), id_field, status_writer)

        result = TransferResult.from_job(
            job,
            records_total=rows_uploaded if rows_uploaded is not None else (records_total or job.records_processed),
            status_records_written=status_writer.records_written,
            status_file_path=str(status_file_path) if status_writer.enabled else None
        )

        if job.state != JobState.COMPLETED:
            raise JobFailedError(
                f"Bulk job ended in state {job.state.value}",
                job=job,
                context={
                    "object_name": object_name,
                    "job_id": job.job_id,
                    "state": job.state.value,
                    "job_error": job.error_message
                }
            )

        return result

    def _polling_settings(self, records_total: Optional[int]) -> Tuple[float, float]:
        suggested_interval, suggested_timeout = suggest_polling_settings(records_total)
        interval = self.poll_interval if self.poll_interval is not None else suggested_interval
        timeout = self.poll_timeout if self.poll_timeout is not None else suggested_timeout
        return interval, timeout

    async def _poll_until_terminal(
        self,
        job: TransferJob,
        poll_interval: float,
        poll_timeout: float,
        progress_callback: Optional[IngestProgressCallback]
    ) -> None:
        """Poll job status at a fixed interval; every poll is reported."""
        deadline = time.monotonic() + poll_timeout
        polls = 0

        while True:
            try:
                info = await self.connection.get_ingest_job(job.job_id)
            except TransferException:
                raise
            except Exception as e:
                raise IngestError(
                    "Failed to check bulk job status",
                    context={"job_id": job.job_id, "polls": polls},
                    original_exception=e
                )

            polls += 1
            job.apply_remote_info(info)
            logger.debug(
                f"Bulk job {job.job_id} poll {polls}: {job.state.value} "
                f"(processed={job.records_processed}, failed={job.records_failed})"
            )

            if progress_callback:
                progress_callback(job.progress())

            if job.is_terminal:
                return

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                logger.error(
                    f"Bulk job {job.job_id} still {job.state.value} after {poll_timeout}s; "
                    f"it may still complete remotely"
                )
                raise JobTimeoutError(
                    f"Bulk job did not finish within {poll_timeout} seconds",
                    job_id=job.job_id,
                    timeout=poll_timeout,
                    context={"state": job.state.value, "polls": polls}
                )

            await asyncio.sleep(min(poll_interval, remaining))

    async def _write_results(
        self,
        job: TransferJob,
        columns: List[str],
        rows: Iterable[Dict[str, str]],
        id_field: str,
        status_writer: StatusWriter
    ) -> int:
        """
        Write one status record per uploaded row. Returns rows uploaded.

        Results do not carry the source row position, so they are indexed by
        the field values the endpoint echoes back. Uploaded rows are then
        replayed in upload order, each consuming the first matching success
        or failure. Rows without a result are written as errors; results left
        unmatched at the end mean correlation failed.
        """
        successes = await self.connection.get_successful_results(job.job_id)
        failures = await self.connection.get_failed_results(job.job_id)

        match_columns = _match_columns(columns, successes, failures)
        success_index = _index_results(successes, match_columns)
        failure_index = _index_results(failures, match_columns)

        buffer: List[StatusRecord] = []
        row_number = 0
        unmatched_rows = 0

        for row in rows:
            row_number += 1
            key = tuple(row.get(column, "") for column in match_columns)
            identifier = row.get(id_field) or None

            if success_index.get(key):
                result = success_index[key].popleft()
                buffer.append(StatusRecord(
                    row_number=row_number,
                    identifier=identifier,
                    target_id=result.get(RESULT_ID_FIELD) or None,
                    created=str(result.get(RESULT_CREATED_FIELD, "")).lower() == "true",
                    outcome=Outcome.SUCCESS
                ))
            elif failure_index.get(key):
                result = failure_index[key].popleft()
                buffer.append(StatusRecord(
                    row_number=row_number,
                    identifier=identifier,
                    target_id=result.get(RESULT_ID_FIELD) or None,
                    outcome=Outcome.ERROR,
                    error_message=result.get(RESULT_ERROR_FIELD) or None
                ))
            else:
                unmatched_rows += 1
                buffer.append(StatusRecord(
                    row_number=row_number,
                    identifier=identifier,
                    outcome=Outcome.ERROR,
                    error_message=NO_RESULT_MESSAGE
                ))

            if len(buffer) >= STATUS_FLUSH_SIZE:
                status_writer.write(buffer)
                buffer = []

        if buffer:
            status_writer.write(buffer)

        leftover = sum(len(queue) for queue in success_index.values()) + \
            sum(len(queue) for queue in failure_index.values())
        if leftover:
            raise CorrelationError(
                "Job results could not be matched to uploaded rows",
                context={
                    "job_id": job.job_id,
                    "unmatched_results": leftover,
                    "rows_without_result": unmatched_rows
                }
            )

        if unmatched_rows:
            logger.warning(f"Bulk job {job.job_id}: {unmatched_rows} rows have no result")

        return row_number


async def _iter_id_blocks(file_path: Path, id_field: str) -> AsyncIterator[bytes]:
    """Id column of a CSV file as upload blocks, header in the first block only."""
    first = True
    for chunk in iter_csv_chunks(file_path, settings.BULK_MAX_RECORDS_PER_BATCH):
        yield records_to_csv_bytes(
            [{id_field: row.get(id_field, "")} for row in chunk],
            columns=[id_field],
            header=first
        )
        first = False


def _record_columns(records: Sequence[Record]) -> List[str]:
    columns: Dict[str, None] = {}
    for record in records:
        for field in record:
            columns.setdefault(field, None)
    return list(columns)


def _match_columns(
    columns: List[str],
    successes: List[Dict[str, Any]],
    failures: List[Dict[str, Any]]
) -> List[str]:
    """Uploaded columns that the endpoint echoes back in its results."""
    sample = successes[0] if successes else (failures[0] if failures else None)
    if sample is None:
        return list(columns)
    return [column for column in columns if column in sample]


def _index_results(
    results: List[Dict[str, Any]],
    match_columns: List[str]
) -> Dict[Tuple[str, ...], Deque[Dict[str, Any]]]:
    index: Dict[Tuple[str, ...], Deque[Dict[str, Any]]] = defaultdict(deque)
    for result in results:
        key = tuple("" if result.get(column) is None else str(result.get(column)) for column in match_columns)
        index[key].append(result)
    return index
