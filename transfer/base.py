"""
Abstract connection handle and callback contracts shared by the engine
"""

from abc import ABC, abstractmethod
from typing import Any, AsyncIterable, AsyncIterator, Callable, Dict, List, Optional, Union
from models.base import Operation
from schemas.transfer import IngestProgress, Record, TransferResult

# record -> record | None; returning None drops the record
TransformCallback = Callable[[Record], Optional[Record]]

# (records_seen, records_written)
ExtractionProgressCallback = Callable[[int, int], None]

IngestProgressCallback = Callable[[IngestProgress], None]


class RecordConnection(ABC):
    """
    Authenticated session against one record endpoint.

    The engine only needs three families of calls:
    - a paged query
    - the bulk ingest job lifecycle (create, upload, close, status, results)
    - synchronous collection writes, bounded per call
    """

    label: str = "connection"

    @abstractmethod
    def query(self, query: str) -> AsyncIterator[List[Record]]:
        """
        Run a query and yield result pages in order.

        Implementations are async generators; exactly one page is in flight.
        """
        pass

    @abstractmethod
    async def create_ingest_job(
        self,
        object_name: str,
        operation: Operation,
        external_id_field: Optional[str] = None,
        line_ending: str = "LF"
    ) -> Dict[str, Any]:
        """Create a bulk ingest job; returns the job info (with "id" and "state")."""
        pass

    @abstractmethod
    async def upload_job_data(self, job_id: str, data: Union[bytes, AsyncIterable[bytes]]) -> None:
        """Upload CSV content for an open job."""
        pass

    @abstractmethod
    async def close_ingest_job(self, job_id: str) -> Dict[str, Any]:
        """Mark the upload complete so the endpoint starts processing."""
        pass

    @abstractmethod
    async def get_ingest_job(self, job_id: str) -> Dict[str, Any]:
        """
        Fetch job info. Keys used by the engine: state, numberRecordsProcessed,
        numberRecordsFailed, errorMessage.
        """
        pass

    @abstractmethod
    async def get_successful_results(self, job_id: str) -> List[Dict[str, str]]:
        """Successful rows in upload order (sf__Id, sf__Created, echoed fields)."""
        pass

    @abstractmethod
    async def get_failed_results(self, job_id: str) -> List[Dict[str, str]]:
        """Failed rows in upload order (sf__Id, sf__Error, echoed fields)."""
        pass

    @abstractmethod
    async def save_records(
        self,
        object_name: str,
        operation: Operation,
        records: List[Record],
        external_id_field: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        """
        Write one bounded chunk synchronously.

        Returns one result per record, in submission order:
        {"id": str | None, "success": bool, "created": bool, "errors": [str]}
        """
        pass


class StatusReporter(ABC):
    """
    Receives progress and result events.

    Called synchronously and in order with the engine's own state changes.
    Implementations must not raise; rendering is their concern.
    """

    @abstractmethod
    def on_extraction_progress(self, records_seen: int, records_written: int) -> None:
        pass

    @abstractmethod
    def on_ingest_progress(self, progress: IngestProgress) -> None:
        pass

    @abstractmethod
    def on_result(self, result: TransferResult) -> None:
        pass
