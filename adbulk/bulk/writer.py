"""
Bulk upload file writer.

Upload files are JSON lines: a header line followed by one record per line,
in the order the caller writes them. Use the writer as a context manager so
the file is closed on every exit path::

    with BulkFileWriter(path) as writer:
        writer.write_entity(campaign)
        writer.write_entity(target)
"""

import json
import os
from pathlib import Path
from typing import Iterable, Optional, Union

from adbulk.bulk.models import BulkRecord
from adbulk.bulk.errors import BulkError, BulkErrorKind
from adbulk.bulk.validators import BatchValidator
from adbulk.utils.logging import setup_logger

logger = setup_logger(__name__)

FILE_FORMAT = "adbulk"
FORMAT_VERSION = 1

class BulkFileWriter:
    """Writes records to an upload file."""

    def __init__(self, path: Union[str, Path], overwrite: bool = True, validate: bool = True):
        """
        Args:
            path: Destination file
            overwrite: Replace an existing file instead of failing
            validate: Check record order while writing; result files echo
                records as the service saw them and are written unchecked
        """
        self.path = Path(path)
        self.overwrite = overwrite
        self.validate = validate
        self.count = 0
        self._file = None
        self._validator = BatchValidator()

    def open(self) -> "BulkFileWriter":
        """
        Open the destination and write the header.

        Raises:
            BulkError: IO if the file cannot be opened for writing
        """
        if self._file is not None:
            return self
        if self.path.exists() and not self.overwrite:
            raise BulkError(
                f"Upload file {self.path} already exists",
                kind=BulkErrorKind.IO,
                operation="write",
                details={"path": str(self.path)}
            )
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._file = open(self.path, "w", encoding="utf-8", newline="\n")
            self._file.write(json.dumps({"format": FILE_FORMAT, "version": FORMAT_VERSION}) + "\n")
        except OSError as e:
            self._file = None
            raise BulkError(
                f"Cannot open upload file {self.path}: {e}",
                kind=BulkErrorKind.IO,
                operation="write",
                details={"path": str(self.path)}
            ) from e
        self._validator.reset()
        self.count = 0
        return self

    def write_entity(self, record: BulkRecord) -> None:
        """
        Append one record.

        Raises:
            BulkError: VALIDATION if the record references a temporary key that
                no earlier record of this file defines
        """
        if self._file is None:
            self.open()
        if self.validate:
            self._validator.accept(record, self.count)
        self._file.write(record.model_dump_json(exclude_none=True) + "\n")
        self.count += 1

    def write_entities(self, records: Iterable[BulkRecord]) -> int:
        for record in records:
            self.write_entity(record)
        return self.count

    def close(self, discard: bool = False) -> None:
        """Close the file; ``discard`` removes it as well."""
        if self._file is None:
            return
        try:
            self._file.close()
        finally:
            self._file = None
            if discard:
                try:
                    os.remove(self.path)
                except OSError as e:
                    logger.warning(f"Could not remove partial upload file {self.path}: {e}")
                else:
                    logger.debug(f"Removed partial upload file {self.path}")

    def __enter__(self) -> "BulkFileWriter":
        return self.open()

    def __exit__(self, exc_type, exc, tb) -> Optional[bool]:
        self.close(discard=exc_type is not None)
        if exc_type is None:
            logger.info(f"Wrote {self.count} records to {self.path}")
        return None

def write_batch(path: Union[str, Path], records: Iterable[BulkRecord], overwrite: bool = True) -> Path:
    """Write ``records`` to ``path`` in one go and return the path."""
    with BulkFileWriter(path, overwrite=overwrite) as writer:
        writer.write_entities(records)
    return writer.path
