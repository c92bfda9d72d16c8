"""
Transfer Runner - picks an ingest engine and records the run.

This module ties the loaders to the rest of the system:
- Engine choice from the record count (bulk job vs direct calls)
- Zero-record inputs short-circuit without any remote call
- Optional run ledger (when a database session is given)
- Reporter notification for progress and the terminal result
"""

import math
from datetime import datetime
from pathlib import Path
from typing import Optional, Sequence, Union
from sqlalchemy.ext.asyncio import AsyncSession
from core.config import settings
from core.exceptions import InputError, LedgerError, TransferException
from models.base import Engine, JobState, Operation, ReportLevel
from schemas.transfer import IngestProgress, Record, TransferResult
from transfer.base import IngestProgressCallback, RecordConnection, StatusReporter
from transfer.files import count_csv_rows
from transfer.ledger import TransferRunRecorder
from transfer.loaders.bulk_loader import BulkLoader
from transfer.loaders.collection_loader import CollectionLoader
import logging

logger = logging.getLogger(__name__)

# Relative cost per call and per record of each engine
DIRECT_COST_PER_CALL = 0.1
DIRECT_COST_PER_RECORD = 0.001
BULK_COST_PER_BATCH = 1.0
BULK_COST_PER_RECORD = 0.0005


def suggest_engine(record_count: int) -> Engine:
    """
    Pick the cheaper engine for a record count.

    Direct calls win for small sets because a bulk job carries a fixed
    overhead (creation, upload, polling); ties go to direct calls.
    """
    direct_calls = math.ceil(record_count / settings.DIRECT_MAX_RECORDS_PER_CALL)
    bulk_batches = math.ceil(record_count / settings.BULK_MAX_RECORDS_PER_BATCH)

    direct_cost = direct_calls * DIRECT_COST_PER_CALL + record_count * DIRECT_COST_PER_RECORD
    bulk_cost = bulk_batches * BULK_COST_PER_BATCH + record_count * BULK_COST_PER_RECORD

    return Engine.DIRECT if direct_cost <= bulk_cost else Engine.BULK


class TransferRunner:
    """
    Ingest orchestrator for one target connection.

    Responsibilities:
    - Choose the engine (unless forced by the caller)
    - Run the bulk or direct loader
    - Record the run in the ledger
    - Notify the reporter
    """

    def __init__(
        self,
        target_connection: RecordConnection,
        db_session: Optional[AsyncSession] = None,
        reporter: Optional[StatusReporter] = None,
        poll_interval: Optional[float] = None,
        poll_timeout: Optional[float] = None,
        max_records_per_call: Optional[int] = None
    ):
        self.connection = target_connection
        self.db = db_session
        self.reporter = reporter
        self.bulk_loader = BulkLoader(target_connection, poll_interval=poll_interval, poll_timeout=poll_timeout)
        self.collection_loader = CollectionLoader(target_connection, max_records_per_call=max_records_per_call)

    async def ingest_file(
        self,
        object_name: str,
        operation: Operation,
        file_path: Union[str, Path],
        engine: Optional[Engine] = None,
        status_file_path: Optional[Union[str, Path]] = None,
        report_level: Optional[ReportLevel] = None,
        id_field: str = "Id",
        external_id_field: Optional[str] = None,
        progress_callback: Optional[IngestProgressCallback] = None
    ) -> TransferResult:
        """
        Ingest the rows of a CSV file.

        Args:
            object_name: Target object type
            operation: insert, update, upsert or delete
            file_path: CSV file with a header row
            engine: Force an engine instead of choosing by record count
            status_file_path: Where to write status records (optional)
            report_level: Which outcomes go to the status file
                (defaults to settings.DEFAULT_REPORT_LEVEL)
            id_field: Column holding the source identifier
            external_id_field: Match field for upserts
            progress_callback: Called with an IngestProgress on every poll
                or chunk, in addition to the reporter

        Returns:
            TransferResult; a file without rows yields a completed result with
            zero counts and no remote call.
        """
        file_path = Path(file_path)
        if not file_path.exists():
            raise InputError(
                f"File not found: {file_path}",
                context={"parameter": "file_path", "value": str(file_path)}
            )

        operation = Operation(operation)
        record_count = count_csv_rows(file_path)
        if record_count == 0:
            return self._empty_result(object_name, operation, engine)

        engine = Engine(engine) if engine else suggest_engine(record_count)
        report_level = ReportLevel(report_level or settings.DEFAULT_REPORT_LEVEL)
        logger.info(f"Ingesting {record_count} rows of {file_path.name} into {object_name} via {engine.value}")

        async def submit() -> TransferResult:
            callback = self._progress_callback(progress_callback)
            if engine == Engine.BULK:
                return await self.bulk_loader.load_file(
                    object_name, operation, file_path,
                    status_file_path=status_file_path,
                    report_level=report_level,
                    id_field=id_field,
                    external_id_field=external_id_field,
                    records_total=record_count,
                    progress_callback=callback
                )
            return await self.collection_loader.load_file(
                object_name, operation, file_path,
                status_file_path=status_file_path,
                report_level=report_level,
                id_field=id_field,
                external_id_field=external_id_field,
                progress_callback=callback
            )

        return await self._run(object_name, operation, engine, record_count, status_file_path, submit)

    async def ingest_records(
        self,
        object_name: str,
        operation: Operation,
        records: Sequence[Record],
        engine: Optional[Engine] = None,
        status_file_path: Optional[Union[str, Path]] = None,
        report_level: Optional[ReportLevel] = None,
        id_field: str = "Id",
        external_id_field: Optional[str] = None,
        progress_callback: Optional[IngestProgressCallback] = None
    ) -> TransferResult:
        """Ingest an in-memory record set. See ingest_file."""
        operation = Operation(operation)
        if not records:
            return self._empty_result(object_name, operation, engine)

        engine = Engine(engine) if engine else suggest_engine(len(records))
        report_level = ReportLevel(report_level or settings.DEFAULT_REPORT_LEVEL)
        logger.info(f"Ingesting {len(records)} records into {object_name} via {engine.value}")

        async def submit() -> TransferResult:
            callback = self._progress_callback(progress_callback)
            loader = self.bulk_loader if engine == Engine.BULK else self.collection_loader
            return await loader.load_records(
                object_name, operation, records,
                status_file_path=status_file_path,
                report_level=report_level,
                id_field=id_field,
                external_id_field=external_id_field,
                progress_callback=callback
            )

        return await self._run(object_name, operation, engine, len(records), status_file_path, submit)

    async def _run(self, object_name, operation, engine, record_count, status_file_path, submit) -> TransferResult:
        recorder = TransferRunRecorder(self.db) if self.db is not None else None
        if recorder:
            await recorder.start(
                object_name=object_name,
                operation=operation,
                engine=engine,
                records_total=record_count,
                connection_label=self.connection.label,
                status_file_path=str(status_file_path) if status_file_path else None
            )

        try:
            result = await submit()

        except TransferException as e:
            logger.error(
                f"Transfer of {object_name} failed: {e.message}",
                extra={"error_context": e.to_dict()}
            )
            if recorder:
                await self._complete_quietly(recorder, error=e)
            raise

        except Exception as e:
            logger.exception(f"Unexpected error during transfer of {object_name}")
            if recorder:
                await self._complete_quietly(recorder, error=e)
            raise TransferException(
                "Unexpected error during transfer",
                context={
                    "object_name": object_name,
                    "operation": operation.value,
                    "engine": engine.value
                },
                original_exception=e
            )

        if recorder:
            await recorder.complete(result=result)

        if self.reporter:
            self.reporter.on_result(result)

        return result

    async def _complete_quietly(self, recorder: TransferRunRecorder, error: Exception) -> None:
        """Close the ledger row without masking the transfer error."""
        try:
            await recorder.complete(error=error)
        except LedgerError as ledger_error:
            logger.error(
                f"Could not record failed transfer run: {ledger_error.message}",
                extra={"error_context": ledger_error.to_dict()}
            )

    def _progress_callback(
        self,
        progress_callback: Optional[IngestProgressCallback]
    ) -> Optional[IngestProgressCallback]:
        if self.reporter is None:
            return progress_callback

        def notify(progress: IngestProgress) -> None:
            self.reporter.on_ingest_progress(progress)
            if progress_callback:
                progress_callback(progress)

        return notify

    def _empty_result(self, object_name: str, operation: Operation, engine: Optional[Engine]) -> TransferResult:
        logger.info(f"No records to ingest into {object_name}; skipping")
        now = datetime.utcnow()
        result = TransferResult(
            object_name=object_name,
            operation=operation,
            engine=Engine(engine) if engine else Engine.DIRECT,
            state=JobState.COMPLETED,
            started_at=now,
            completed_at=now
        )
        if self.reporter:
            self.reporter.on_result(result)
        return result
