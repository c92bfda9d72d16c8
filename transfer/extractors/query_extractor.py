"""
Streaming query extractor.

Runs one query against the source (or target) endpoint and writes the
result set to a CSV file page by page:
- never buffers more than one page of records
- applies a caller transform that may rewrite or drop each record
- reports (records_seen, records_written) after every page
"""

import re
from pathlib import Path
from typing import List, Optional, Sequence, Union
from core.exceptions import ExtractionError, InputError
from schemas.transfer import Record
from transfer.base import ExtractionProgressCallback, RecordConnection, TransformCallback
from transfer.files import CsvRecordWriter, expand_record
import logging

logger = logging.getLogger(__name__)

_SELECT_LIST = re.compile(r"^\s*SELECT\s+(.+?)\s+FROM\s", re.IGNORECASE | re.DOTALL)
_FIELD_PATH = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)*$")


def select_fields(query: str) -> Optional[List[str]]:
    """
    Field paths of a plain SELECT list, in query order.

    Returns None when the list holds anything but field paths (functions,
    aliases, subqueries, TYPEOF); the header then comes from the first page.
    """
    match = _SELECT_LIST.match(query)
    if not match:
        return None

    fields = [item.strip() for item in match.group(1).split(",")]
    if not fields or not all(_FIELD_PATH.match(field) for field in fields):
        return None
    return fields


class QueryExtractor:
    """
    Extract query results from a record endpoint into local storage.

    Attributes:
        source_connection: Connection queried by default
        target_connection: Connection queried when use_source_connection=False
    """

    def __init__(
        self,
        source_connection: RecordConnection,
        target_connection: Optional[RecordConnection] = None
    ):
        self.source_connection = source_connection
        self.target_connection = target_connection

    def _select_connection(self, use_source_connection: bool) -> RecordConnection:
        if use_source_connection:
            return self.source_connection
        if self.target_connection is None:
            raise InputError(
                "No target connection configured for this extractor",
                context={"parameter": "use_source_connection"}
            )
        return self.target_connection

    async def extract_to_file(
        self,
        query: str,
        file_path: Union[str, Path],
        append_to_existing_file: bool = False,
        transform: Optional[TransformCallback] = None,
        progress_callback: Optional[ExtractionProgressCallback] = None,
        use_source_connection: bool = True,
        columns: Optional[Sequence[str]] = None
    ) -> int:
        """
        Stream a query result set into a CSV file.

        Args:
            query: Query text, passed through unchanged
            file_path: Destination CSV file
            append_to_existing_file: Append rows under the existing header
                instead of truncating the file
            transform: Called with each flattened record; return None to drop it
            progress_callback: Called with (records_seen, records_written)
                after each page
            use_source_connection: Query the source (True) or target connection
            columns: Fixed header for a new file. Without a transform it
                defaults to the query's SELECT list, otherwise to the fields
                of the first written page

        Returns:
            Number of records written after the transform

        Raises:
            ExtractionError: The query or the write failed. The file may hold a
                prefix of the result set and is left in place for inspection.
        """
        connection = self._select_connection(use_source_connection)
        file_path = Path(file_path)

        if columns is None and transform is None:
            columns = select_fields(query)

        records_seen = 0
        records_written = 0
        pages = 0

        logger.info(f"Querying records from {connection.label} into {file_path.name}: {query}")

        try:
            with CsvRecordWriter(file_path, append=append_to_existing_file, columns=columns) as writer:
                async for page in connection.query(query):
                    pages += 1
                    kept: List[Record] = []

                    for raw_record in page:
                        records_seen += 1
                        record = expand_record(raw_record)
                        if transform is not None:
                            record = transform(record)
                            if record is None:
                                continue
                        kept.append(record)

                    records_written += writer.write_records(kept)
                    logger.debug(
                        f"Page {pages}: {len(page)} records retrieved, {len(kept)} written"
                    )

                    if progress_callback:
                        progress_callback(records_seen, records_written)

        except ExtractionError:
            raise

        except Exception as e:
            logger.error(
                f"Query against {connection.label} failed after {records_seen} records: {str(e)}"
            )
            raise ExtractionError(
                "Query failed; destination file is incomplete",
                context={
                    "connection": connection.label,
                    "file_path": str(file_path),
                    "pages": pages,
                    "records_seen": records_seen,
                    "records_written": records_written
                },
                original_exception=e
            )

        if pages == 0 and progress_callback:
            progress_callback(0, 0)

        logger.info(
            f"Queried {records_seen} records from {connection.label}, "
            f"wrote {records_written} to {file_path.name} ({pages} pages)"
        )
        return records_written

    async def fetch_records(
        self,
        query: str,
        transform: Optional[TransformCallback] = None,
        progress_callback: Optional[ExtractionProgressCallback] = None,
        use_source_connection: bool = True
    ) -> List[Record]:
        """
        Run a query and keep the (transformed) result set in memory.

        Only suitable for small result sets, e.g. lookups of existing target
        records before an update.
        """
        connection = self._select_connection(use_source_connection)

        records: List[Record] = []
        records_seen = 0
        pages = 0

        logger.info(f"Querying records from {connection.label} into memory: {query}")

        try:
            async for page in connection.query(query):
                pages += 1
                for raw_record in page:
                    records_seen += 1
                    record = expand_record(raw_record)
                    if transform is not None:
                        record = transform(record)
                        if record is None:
                            continue
                    records.append(record)

                if progress_callback:
                    progress_callback(records_seen, len(records))

        except Exception as e:
            raise ExtractionError(
                "Query failed",
                context={
                    "connection": connection.label,
                    "pages": pages,
                    "records_seen": records_seen
                },
                original_exception=e
            )

        if pages == 0 and progress_callback:
            progress_callback(0, 0)

        logger.info(f"Queried {records_seen} records from {connection.label}, kept {len(records)}")
        return records
