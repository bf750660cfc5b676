"""
Bulk result file reader.

Reads upload and result files written in the JSON lines format of
``adbulk.bulk.writer`` back into typed records.
"""

import json
from pathlib import Path
from typing import Iterator, List, Optional, Type, Union

from pydantic import TypeAdapter, ValidationError

from adbulk.bulk.models import BulkRecord, Record, R, of_kind
from adbulk.bulk.errors import BulkError, BulkErrorKind
from adbulk.bulk.writer import FILE_FORMAT, FORMAT_VERSION
from adbulk.utils.logging import setup_logger

logger = setup_logger(__name__)

_record_adapter = TypeAdapter(Record)

class BulkFileReader:
    """Reads records from a bulk file.

    The file is opened lazily by ``read_entities`` and closed when iteration
    finishes, when parsing fails, or when the reader is closed. Use it as a
    context manager to guarantee release when iteration stops early.
    """

    def __init__(self, path: Union[str, Path]):
        self.bulk_file_path = Path(path)
        self._file = None

    def _open(self):
        try:
            self._file = open(self.bulk_file_path, "rb")
        except OSError as e:
            raise BulkError(
                f"Cannot open bulk file {self.bulk_file_path}: {e}",
                kind=BulkErrorKind.IO,
                operation="read",
                details={"path": str(self.bulk_file_path)}
            ) from e
        return self._file

    def _check_header(self, line: str) -> None:
        try:
            header = json.loads(line)
        except json.JSONDecodeError:
            header = None
        if not isinstance(header, dict) or header.get("format") != FILE_FORMAT:
            raise BulkError(
                f"{self.bulk_file_path} is not a bulk file",
                kind=BulkErrorKind.FORMAT,
                operation="read",
                details={"path": str(self.bulk_file_path), "line": 1}
            )
        if header.get("version") != FORMAT_VERSION:
            raise BulkError(
                f"Unsupported bulk file version {header.get('version')}",
                kind=BulkErrorKind.FORMAT,
                operation="read",
                details={"path": str(self.bulk_file_path), "line": 1}
            )

    def _decode(self, raw: bytes, line_number: int) -> str:
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise BulkError(
                f"Invalid UTF-8 on line {line_number} of {self.bulk_file_path}",
                kind=BulkErrorKind.FORMAT,
                operation="read",
                details={"path": str(self.bulk_file_path), "line": line_number, "reason": e.reason}
            ) from e

    def read_entities(self) -> Iterator[BulkRecord]:
        """
        Yield the records of the file in file order.

        Raises:
            BulkError: IO if the file cannot be opened, FORMAT on a bad header
                or an unparsable line
        """
        handle = self._open()
        try:
            self._check_header(self._decode(handle.readline(), 1))
            for line_number, raw in enumerate(handle, start=2):
                line = self._decode(raw, line_number)
                if not line.strip():
                    continue
                try:
                    yield _record_adapter.validate_json(line)
                except ValidationError as e:
                    raise BulkError(
                        f"Malformed record on line {line_number} of {self.bulk_file_path}",
                        kind=BulkErrorKind.FORMAT,
                        operation="read",
                        details={"path": str(self.bulk_file_path), "line": line_number, "errors": e.errors()}
                    ) from e
        finally:
            self.close()

    def read_entities_of(self, record_type: Type[R]) -> List[R]:
        """Read every record of one record type."""
        return of_kind(self.read_entities(), record_type)

    def close(self) -> None:
        if self._file is not None:
            self._file.close()
            self._file = None

    def __enter__(self) -> "BulkFileReader":
        return self

    def __exit__(self, exc_type, exc, tb) -> Optional[bool]:
        self.close()
        return None

def read_batch(path: Union[str, Path]) -> List[BulkRecord]:
    """Read every record of ``path``."""
    with BulkFileReader(path) as reader:
        return list(reader.read_entities())
