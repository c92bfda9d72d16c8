"""
Pytest configuration and fixtures
"""

import io
import pytest
import pandas as pd
from typing import Any, Callable, Dict, List, Optional
from unittest.mock import AsyncMock, Mock
from models.base import JobState, Operation
from transfer.base import RecordConnection


class FakeRecordConnection(RecordConnection):
    """
    In-memory RecordConnection.

    Bulk jobs replay `job_states` on successive polls (the last entry
    repeats) and, unless results are given explicitly, answer with one
    result per uploaded row: rows whose 0-based index is in `fail_rows`
    fail, all others succeed. Collection writes fail per record when
    `fail_when(record)` returns a message, and raise for the chunk numbers
    (1-based) in `chunk_errors`.
    """

    label = "fake"

    def __init__(
        self,
        pages: Optional[List[Any]] = None,
        job_states: Optional[List[Any]] = None,
        fail_rows: Optional[set] = None,
        successful_results: Optional[List[Dict[str, str]]] = None,
        failed_results: Optional[List[Dict[str, str]]] = None,
        create_error: Optional[Exception] = None,
        chunk_errors: Optional[Dict[int, Exception]] = None,
        fail_when: Optional[Callable[[Dict[str, Any]], Optional[str]]] = None,
        on_save: Optional[Callable[[int, List[Dict[str, Any]]], None]] = None
    ):
        self.pages = pages or []
        self.job_states = list(job_states or [JobState.COMPLETED.value])
        self.fail_rows = fail_rows or set()
        self.successful_results = successful_results
        self.failed_results = failed_results
        self.create_error = create_error
        self.chunk_errors = chunk_errors or {}
        self.fail_when = fail_when
        self.on_save = on_save

        self.calls: List[str] = []
        self.queries: List[str] = []
        self.jobs: List[Dict[str, Any]] = []
        self.uploaded = b""
        self.saved_chunks: List[List[Dict[str, Any]]] = []
        self.polls = 0

    # Query

    async def query(self, query):
        self.calls.append("query")
        self.queries.append(query)
        for page in self.pages:
            if isinstance(page, Exception):
                raise page
            yield page

    # Bulk jobs

    async def create_ingest_job(self, object_name, operation, external_id_field=None, line_ending="LF"):
        self.calls.append("create_ingest_job")
        if self.create_error:
            raise self.create_error
        job = {
            "id": f"750FAKE{len(self.jobs) + 1:08d}",
            "state": JobState.OPEN.value,
            "object": object_name,
            "operation": Operation(operation).value,
            "externalIdFieldName": external_id_field
        }
        self.jobs.append(job)
        return job

    async def upload_job_data(self, job_id, data):
        self.calls.append("upload_job_data")
        if isinstance(data, bytes):
            self.uploaded += data
        else:
            async for block in data:
                self.uploaded += block

    async def close_ingest_job(self, job_id):
        self.calls.append("close_ingest_job")
        return {"id": job_id, "state": JobState.UPLOAD_COMPLETE.value}

    async def get_ingest_job(self, job_id):
        self.calls.append("get_ingest_job")
        entry = self.job_states[min(self.polls, len(self.job_states) - 1)]
        self.polls += 1

        if isinstance(entry, dict):
            return {"id": job_id, **entry}

        state = JobState(entry)
        rows = self.uploaded_rows()
        done = state.is_terminal
        return {
            "id": job_id,
            "state": state.value,
            "numberRecordsProcessed": len(rows) if done else 0,
            "numberRecordsFailed": len(self.fail_rows) if done else 0
        }

    async def get_successful_results(self, job_id):
        self.calls.append("get_successful_results")
        if self.successful_results is not None:
            return self.successful_results
        return [
            {"sf__Id": f"001FAKE{index:08d}", "sf__Created": "true", **row}
            for index, row in enumerate(self.uploaded_rows())
            if index not in self.fail_rows
        ]

    async def get_failed_results(self, job_id):
        self.calls.append("get_failed_results")
        if self.failed_results is not None:
            return self.failed_results
        return [
            {"sf__Id": "", "sf__Error": "REQUIRED_FIELD_MISSING:Required fields are missing", **row}
            for index, row in enumerate(self.uploaded_rows())
            if index in self.fail_rows
        ]

    def uploaded_rows(self) -> List[Dict[str, str]]:
        if not self.uploaded:
            return []
        frame = pd.read_csv(io.BytesIO(self.uploaded), dtype=str, keep_default_na=False)
        return frame.to_dict(orient="records")

    # Collections

    async def save_records(self, object_name, operation, records, external_id_field=None):
        self.calls.append("save_records")
        chunk_number = len(self.saved_chunks) + 1
        self.saved_chunks.append([dict(record) for record in records])

        if self.on_save:
            self.on_save(chunk_number, records)
        if chunk_number in self.chunk_errors:
            raise self.chunk_errors[chunk_number]

        results = []
        for offset, record in enumerate(records):
            error = self.fail_when(record) if self.fail_when else None
            if error:
                results.append({"id": None, "success": False, "errors": [error]})
            else:
                results.append({
                    "id": f"001FAKE{chunk_number:04d}{offset:04d}",
                    "success": True,
                    "created": Operation(operation) == Operation.INSERT,
                    "errors": []
                })
        return results


def read_rows(path) -> List[Dict[str, str]]:
    """Data rows of a CSV file as strings"""
    return pd.read_csv(path, dtype=str, keep_default_na=False).to_dict(orient="records")


@pytest.fixture
def make_connection():
    """Factory for FakeRecordConnection with per-test behaviour"""
    return FakeRecordConnection


@pytest.fixture
def csv_rows():
    return read_rows


@pytest.fixture
def sample_records():
    """Records as returned by a query page"""
    return [
        {"attributes": {"type": "Account"}, "Id": "001A", "Name": "Acme", "Industry": "Energy"},
        {"attributes": {"type": "Account"}, "Id": "001B", "Name": "Globex", "Industry": "Retail"},
        {"attributes": {"type": "Account"}, "Id": "001C", "Name": "Initech", "Industry": None},
    ]


@pytest.fixture
def mock_db_session():
    """AsyncSession stand-in: add is synchronous, the rest is awaited"""
    session = AsyncMock()
    session.add = Mock()
    return session
