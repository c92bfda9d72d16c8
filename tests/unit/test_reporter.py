"""
Unit tests for the logging status reporter
"""

import logging
from datetime import datetime
from models.base import Engine, JobState, Operation
from schemas.transfer import IngestProgress, TransferResult
from transfer.reporter import LoggingStatusReporter


def make_result(records_total, records_failed):
    return TransferResult(
        job_id="750X",
        object_name="Contact",
        operation=Operation.UPDATE,
        engine=Engine.DIRECT,
        state=JobState.COMPLETED,
        records_total=records_total,
        records_processed=records_total,
        records_failed=records_failed,
        started_at=datetime.utcnow()
    )


class TestLoggingStatusReporter:
    """Test log rendering of engine events"""

    def test_progress_logged_at_configured_level(self, caplog):
        caplog.set_level(logging.DEBUG, logger="transfer.reporter")
        reporter = LoggingStatusReporter(progress_level=logging.DEBUG)

        reporter.on_extraction_progress(2000, 1950)
        reporter.on_ingest_progress(IngestProgress(
            job_id="750X",
            object_name="Contact",
            operation=Operation.UPDATE,
            engine=Engine.BULK,
            state=JobState.IN_PROGRESS,
            records_processed=500,
            records_total=2000
        ))

        first, second = caplog.records
        assert first.levelno == logging.DEBUG
        assert "2000 records retrieved, 1950 written" in first.getMessage()
        assert "[750X] InProgress: 500/2000 processed, 0 failed" in second.getMessage()

    def test_clean_result_logged_at_info(self, caplog):
        caplog.set_level(logging.DEBUG, logger="transfer.reporter")

        LoggingStatusReporter().on_result(make_result(10, 0))

        assert [record.levelno for record in caplog.records] == [logging.INFO]

    def test_record_failures_raise_the_level(self, caplog):
        caplog.set_level(logging.DEBUG, logger="transfer.reporter")

        LoggingStatusReporter().on_result(make_result(10, 3))

        assert [record.levelno for record in caplog.records] == [logging.WARNING]

    def test_every_record_failing_is_an_error(self, caplog):
        caplog.set_level(logging.DEBUG, logger="transfer.reporter")

        LoggingStatusReporter().on_result(make_result(4, 4))

        assert [record.levelno for record in caplog.records] == [logging.WARNING, logging.ERROR]
        assert "Every record sent to Contact failed" in caplog.records[-1].getMessage()
