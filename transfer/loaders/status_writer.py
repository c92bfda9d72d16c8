"""
Append-only status file for per-record ingest outcomes
"""

from pathlib import Path
from typing import Iterable, Optional, Union
from models.base import Operation, Outcome, ReportLevel
from schemas.transfer import STATUS_COLUMNS, StatusRecord
from transfer.files import CsvRecordWriter
import logging

logger = logging.getLogger(__name__)


def should_report(status: StatusRecord, report_level: ReportLevel, operation: Operation) -> bool:
    """
    Decide whether a status record goes to the status file.

    - none: nothing
    - errors: failed records only
    - inserts: successfully created records only
    - all: everything
    """
    if report_level == ReportLevel.NONE:
        return False
    if report_level == ReportLevel.ALL:
        return True
    if report_level == ReportLevel.INSERTS:
        return status.outcome == Outcome.SUCCESS and (status.created or operation == Operation.INSERT)
    return status.outcome == Outcome.ERROR


class StatusWriter:
    """
    Writes StatusRecords to a CSV sink as results arrive.

    The file is created on the first write, so a submission rejected before
    any result arrives leaves no status file. Rows are flushed on every
    write so a failed run still leaves a readable partial file. Without a
    path, or with report level "none", nothing is written.
    """

    def __init__(
        self,
        file_path: Optional[Union[str, Path]],
        operation: Operation,
        report_level: ReportLevel = ReportLevel.ERRORS,
        append: bool = False
    ):
        self.file_path = Path(file_path) if file_path else None
        self.operation = operation
        self.report_level = ReportLevel(report_level)
        self.append = append
        self.records_written = 0
        self._writer: Optional[CsvRecordWriter] = None

    @property
    def enabled(self) -> bool:
        return self.file_path is not None and self.report_level != ReportLevel.NONE

    def write(self, statuses: Iterable[StatusRecord]) -> int:
        """Filter by report level and append. Returns rows written."""
        if not self.enabled:
            return 0
        if self._writer is None:
            self._writer = CsvRecordWriter(self.file_path, append=self.append, columns=STATUS_COLUMNS).open()

        rows = [
            status.to_row()
            for status in statuses
            if should_report(status, self.report_level, self.operation)
        ]
        written = self._writer.write_records(rows)
        self.records_written += written
        return written

    def close(self) -> None:
        if self._writer is not None:
            self._writer.close()
            self._writer = None
            logger.debug(f"Status file {self.file_path} closed with {self.records_written} rows")

    def __enter__(self) -> "StatusWriter":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
