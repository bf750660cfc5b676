"""Bulk file records, upload files and upload tracking."""

from adbulk.bulk.errors import BulkError, BulkErrorKind
from adbulk.bulk.models import Batch, BulkRecord, ResponseMode, Status

__all__ = [
    "Batch",
    "BulkError",
    "BulkErrorKind",
    "BulkRecord",
    "ResponseMode",
    "Status",
]
