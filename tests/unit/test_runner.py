"""
Unit tests for the transfer runner
"""

import pytest
from unittest.mock import Mock
from core.exceptions import JobTimeoutError, SubmissionError, TransferException
from models.base import Engine, JobState, Operation, ReportLevel, TransferStatus
from models.transfer_run import TransferRun
from transfer.base import StatusReporter
from transfer.runner import TransferRunner, suggest_engine


def make_records(count):
    return [{"Name": f"Account {i}"} for i in range(count)]


@pytest.fixture
def reporter():
    return Mock(spec=StatusReporter)


class TestSuggestEngine:
    """Test engine choice by record count"""

    def test_small_sets_use_direct_calls(self):
        assert suggest_engine(1) == Engine.DIRECT
        assert suggest_engine(100) == Engine.DIRECT

    def test_tie_goes_to_direct_calls(self):
        # direct: 5 * 0.1 + 1.0 == bulk: 1 + 0.5
        assert suggest_engine(1000) == Engine.DIRECT

    def test_large_sets_use_bulk_jobs(self):
        assert suggest_engine(1200) == Engine.BULK
        assert suggest_engine(250_000) == Engine.BULK


class TestTransferRunner:
    """Test ingestion orchestration"""

    @pytest.mark.asyncio
    async def test_small_record_set_goes_direct(self, make_connection, reporter):
        connection = make_connection()
        runner = TransferRunner(connection, reporter=reporter)
        seen = []

        result = await runner.ingest_records(
            "Account", Operation.INSERT, make_records(3),
            progress_callback=seen.append
        )

        assert result.engine == Engine.DIRECT
        assert connection.calls == ["save_records"]
        assert len(seen) == 1
        reporter.on_ingest_progress.assert_called_once()
        reporter.on_result.assert_called_once_with(result)

    @pytest.mark.asyncio
    async def test_forced_bulk_engine(self, make_connection, reporter):
        connection = make_connection(job_states=["InProgress", "JobComplete"])
        runner = TransferRunner(connection, reporter=reporter, poll_interval=0)

        result = await runner.ingest_records("Account", Operation.INSERT, make_records(3), engine=Engine.BULK)

        assert result.engine == Engine.BULK
        assert "create_ingest_job" in connection.calls
        assert reporter.on_ingest_progress.call_count == 2

    @pytest.mark.asyncio
    async def test_zero_records_skip_remote_calls(self, tmp_path, make_connection, reporter):
        connection = make_connection()
        header_only = tmp_path / "empty.csv"
        header_only.write_text("Name\n")
        runner = TransferRunner(connection, reporter=reporter)

        from_records = await runner.ingest_records("Account", Operation.INSERT, [])
        from_file = await runner.ingest_file("Account", Operation.INSERT, header_only)

        for result in (from_records, from_file):
            assert result.state == JobState.COMPLETED
            assert result.records_total == 0
            assert result.records_processed == 0
        assert connection.calls == []
        assert reporter.on_result.call_count == 2

    @pytest.mark.asyncio
    async def test_ingest_file_writes_status(self, tmp_path, make_connection, csv_rows):
        data_path = tmp_path / "accounts.csv"
        data_path.write_text("Name\nAcme\nGlobex\n")
        status_path = tmp_path / "status.csv"
        runner = TransferRunner(make_connection())

        result = await runner.ingest_file(
            "Account", Operation.INSERT, data_path,
            status_file_path=status_path,
            report_level=ReportLevel.ALL
        )

        assert result.engine == Engine.DIRECT
        assert len(csv_rows(status_path)) == 2

    @pytest.mark.asyncio
    async def test_run_recorded_in_ledger(self, make_connection, mock_db_session):
        runner = TransferRunner(make_connection(), db_session=mock_db_session)

        result = await runner.ingest_records("Account", Operation.INSERT, make_records(2))

        run = mock_db_session.add.call_args[0][0]
        assert isinstance(run, TransferRun)
        assert run.status == TransferStatus.SUCCESS
        assert run.engine == Engine.DIRECT
        assert run.records_processed == result.records_processed
        assert run.completed_at is not None
        assert mock_db_session.commit.await_count == 2

    @pytest.mark.asyncio
    async def test_failure_recorded_and_raised(self, make_connection, mock_db_session, reporter):
        connection = make_connection(chunk_errors={1: RuntimeError("INVALID_SESSION_ID")})
        runner = TransferRunner(connection, db_session=mock_db_session, reporter=reporter)

        with pytest.raises(SubmissionError):
            await runner.ingest_records("Account", Operation.INSERT, make_records(2))

        run = mock_db_session.add.call_args[0][0]
        assert run.status == TransferStatus.FAILED
        assert run.error_message == "Direct call rejected before any record was written"
        reporter.on_result.assert_not_called()

    @pytest.mark.asyncio
    async def test_timeout_recorded_with_job_id(self, make_connection, mock_db_session):
        connection = make_connection(job_states=["InProgress"])
        runner = TransferRunner(connection, db_session=mock_db_session, poll_interval=0.01, poll_timeout=0.03)

        with pytest.raises(JobTimeoutError):
            await runner.ingest_records("Account", Operation.INSERT, make_records(2), engine=Engine.BULK)

        run = mock_db_session.add.call_args[0][0]
        assert run.status == TransferStatus.TIMED_OUT
        assert run.job_id == connection.jobs[0]["id"]

    @pytest.mark.asyncio
    async def test_unexpected_error_wrapped(self, make_connection):
        connection = make_connection()

        async def broken(*args, **kwargs):
            raise KeyError("id")

        runner = TransferRunner(connection)
        runner.collection_loader.load_records = broken

        with pytest.raises(TransferException) as exc_info:
            await runner.ingest_records("Account", Operation.INSERT, make_records(1))

        assert isinstance(exc_info.value.original_exception, KeyError)

    @pytest.mark.asyncio
    async def test_missing_file(self, tmp_path, make_connection):
        with pytest.raises(TransferException):
            await TransferRunner(make_connection()).ingest_file("Account", Operation.INSERT, tmp_path / "nope.csv")
