"""
StatusReporter that renders engine events through logging
"""

from schemas.transfer import IngestProgress, TransferResult
from transfer.base import StatusReporter
import logging

logger = logging.getLogger(__name__)


class LoggingStatusReporter(StatusReporter):
    """Logs progress at INFO, or at DEBUG when verbose progress is not wanted."""

    def __init__(self, progress_level: int = logging.INFO):
        self.progress_level = progress_level

    def on_extraction_progress(self, records_seen: int, records_written: int) -> None:
        logger.log(
            self.progress_level,
            f"Extraction progress: {records_seen} records retrieved, {records_written} written"
        )

    def on_ingest_progress(self, progress: IngestProgress) -> None:
        total = f"/{progress.records_total}" if progress.records_total is not None else ""
        logger.log(
            self.progress_level,
            f"{progress.engine.value} {progress.operation.value} {progress.object_name} "
            f"[{progress.job_id or '-'}] {progress.state.value}: "
            f"{progress.records_processed}{total} processed, {progress.records_failed} failed"
        )

    def on_result(self, result: TransferResult) -> None:
        level = logging.WARNING if result.records_failed else logging.INFO
        logger.log(
            level,
            f"{result.operation.value} {result.object_name} finished in state {result.state.value}: "
            f"{result.records_processed} processed, {result.records_failed} failed, "
            f"{result.status_records_written} status rows"
        )
        if result.all_failed:
            logger.error(f"Every record sent to {result.object_name} failed")
