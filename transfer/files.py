"""
CSV record files: append-safe writing, chunked reading and value formatting
"""

import pandas as pd
from datetime import date, datetime
from pathlib import Path
from typing import Any, AsyncIterator, Dict, Iterator, List, Optional, Sequence, Union
from core.config import settings
from schemas.transfer import Record
import logging

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


def expand_record(record: Record) -> Record:
    """
    Flatten nested relationship objects into dotted field names.

    {"Name": "A", "Owner": {"attributes": {...}, "Email": "x"}} becomes
    {"Name": "A", "Owner.Email": "x"}. The "attributes" metadata key is
    dropped at every level.
    """
    expanded: Record = {}

    def _walk(obj: Dict[str, Any], parent: Optional[str]) -> None:
        for key, value in obj.items():
            if key == "attributes":
                continue
            path = f"{parent}.{key}" if parent else key
            if isinstance(value, dict):
                _walk(value, path)
            else:
                expanded[path] = value

    _walk(record, None)
    return expanded


def serialize_value(value: Any) -> str:
    """Format one field value for a CSV cell"""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)


def read_header(file_path: PathLike) -> Optional[List[str]]:
    """Return the header of an existing CSV file, or None if absent or empty."""
    path = Path(file_path)
    if not path.exists() or path.stat().st_size == 0:
        return None
    try:
        frame = pd.read_csv(path, nrows=0, encoding="utf-8-sig")
    except pd.errors.EmptyDataError:
        return None
    return [str(column) for column in frame.columns]


class CsvRecordWriter:
    """
    Sequential, append-safe CSV writer.

    Opening in append mode on a non-empty file reuses the existing header
    and never writes it again. Rows are aligned to the header: missing
    fields are left empty, unknown fields are dropped.
    """

    def __init__(
        self,
        file_path: PathLike,
        append: bool = False,
        columns: Optional[Sequence[str]] = None
    ):
        self.file_path = Path(file_path)
        self.append = append
        self.columns: Optional[List[str]] = list(columns) if columns else None
        self.rows_written = 0
        self._handle = None
        self._header_written = False
        self._warned_fields: set = set()

    def open(self) -> "CsvRecordWriter":
        existing_header = read_header(self.file_path) if self.append else None

        if existing_header is not None:
            self.columns = existing_header
            self._header_written = True
            mode = "a"
        else:
            mode = "w"

        self.file_path.parent.mkdir(parents=True, exist_ok=True)
        self._handle = open(self.file_path, mode, encoding=settings.FILE_ENCODING, newline="")

        # Known columns go out up front so an empty result still has a header
        if self.columns and not self._header_written:
            self._write_frame([], header=True)
            self._header_written = True

        return self

    def write_records(self, records: Sequence[Record]) -> int:
        """Append records and flush. Returns the number of rows written."""
        if self._handle is None:
            raise RuntimeError("CsvRecordWriter is not open")
        if not records:
            return 0

        if self.columns is None:
            self.columns = _collect_columns(records)

        self._warn_dropped_fields(records)

        rows = [
            [serialize_value(value) for value in self._align(record)]
            for record in records
        ]
        self._write_frame(rows, header=not self._header_written)
        self._header_written = True
        self.rows_written += len(rows)
        return len(rows)

    def close(self) -> None:
        if self._handle is not None:
            self._handle.close()
            self._handle = None

    def __enter__(self) -> "CsvRecordWriter":
        return self.open()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _write_frame(self, rows: List[List[str]], header: bool) -> None:
        frame = pd.DataFrame(rows, columns=self.columns, dtype=object)
        frame.to_csv(self._handle, header=header, index=False, lineterminator="\n")
        self._handle.flush()

    def _align(self, record: Record) -> List[Any]:
        """Record values in header order; field names match case-insensitively."""
        lowered = None
        values = []
        for column in self.columns:
            if column in record:
                values.append(record[column])
                continue
            if lowered is None:
                lowered = {field.lower(): value for field, value in record.items()}
            values.append(lowered.get(column.lower()))
        return values

    def _warn_dropped_fields(self, records: Sequence[Record]) -> None:
        known = {column.lower() for column in self.columns}
        # A null lookup arrives as its own key, e.g. "Owner" for "Owner.Email"
        parents = {
            column.lower().rsplit(".", i)[0]
            for column in self.columns
            for i in range(1, column.count(".") + 1)
        }
        for record in records:
            for field, value in record.items():
                name = field.lower()
                if name in known or (value is None and name in parents):
                    continue
                if field not in self._warned_fields:
                    self._warned_fields.add(field)
                    logger.warning(
                        f"Field '{field}' is not in the header of {self.file_path.name} and is dropped"
                    )


def iter_csv_chunks(file_path: PathLike, chunk_size: int) -> Iterator[List[Record]]:
    """Read a CSV file as lists of string-valued records, chunk_size at a time."""
    path = Path(file_path)
    if path.stat().st_size == 0:
        return

    try:
        reader = pd.read_csv(
            path,
            dtype=str,
            keep_default_na=False,
            chunksize=chunk_size,
            encoding="utf-8-sig",
        )
    except pd.errors.EmptyDataError:
        return

    with reader:
        for frame in reader:
            yield frame.to_dict(orient="records")


def count_csv_rows(file_path: PathLike, chunk_size: int = 50_000) -> int:
    """Count data rows without loading the file."""
    return sum(len(chunk) for chunk in iter_csv_chunks(file_path, chunk_size))


async def iter_file_blocks(file_path: PathLike, block_size: Optional[int] = None) -> AsyncIterator[bytes]:
    """Yield a file's bytes in fixed-size blocks for streaming uploads."""
    block_size = block_size or settings.UPLOAD_BLOCK_SIZE
    with open(file_path, "rb") as handle:
        while True:
            block = handle.read(block_size)
            if not block:
                break
            yield block


def records_to_csv_bytes(
    records: Sequence[Record],
    columns: Optional[Sequence[str]] = None,
    header: bool = True
) -> bytes:
    """Serialize in-memory records to CSV bytes for a bulk upload."""
    columns = list(columns) if columns else _collect_columns(records)
    rows = [[serialize_value(record.get(column)) for column in columns] for record in records]
    frame = pd.DataFrame(rows, columns=columns, dtype=object)
    return frame.to_csv(index=False, header=header, lineterminator="\n").encode(settings.FILE_ENCODING)


def _collect_columns(records: Sequence[Record]) -> List[str]:
    """Union of field names in first-seen order."""
    columns: Dict[str, None] = {}
    for record in records:
        for field in record:
            columns.setdefault(field, None)
    return list(columns)
