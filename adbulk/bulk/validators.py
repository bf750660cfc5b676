"""
Validators for bulk batches.

Only structural rules are checked locally: record order and identifier usage.
Business rules (budgets, locations, duplicate targets) are left to the service
and come back as errors on result records.
"""

from typing import Iterable, List, Optional, Set

from adbulk.bulk.models import BulkRecord, Status
from adbulk.bulk.errors import BulkError, BulkErrorKind

class BatchValidator:
    """Validates records before they are written to an upload file."""

    def __init__(self):
        self._defined: Set[int] = set()
        self._count = 0

    def reset(self) -> None:
        self._defined.clear()
        self._count = 0

    @staticmethod
    def validate_record(record: BulkRecord) -> None:
        """
        Validate a single record on its own.

        Args:
            record: Record to validate

        Raises:
            BulkError: VALIDATION if the record can never be accepted
        """
        if record.status == Status.DELETED:
            if record.identifier is None or record.identifier < 0:
                raise BulkError(
                    "Deleted records must carry a permanent identifier",
                    kind=BulkErrorKind.VALIDATION,
                    operation="validate_record",
                    details={"kind": getattr(record, "kind", None), "identifier": record.identifier}
                )
            for reference in record.references():
                if reference < 0:
                    raise BulkError(
                        "Deleted records cannot reference temporary keys",
                        kind=BulkErrorKind.VALIDATION,
                        operation="validate_record",
                        details={"kind": getattr(record, "kind", None), "reference": reference}
                    )

    def accept(self, record: BulkRecord, position: Optional[int] = None) -> None:
        """
        Validate ``record`` as the next record of the batch.

        A temporary key may only be referenced after a record defining it has
        been accepted.

        Raises:
            BulkError: VALIDATION if the record is out of order or malformed
        """
        position = self._count if position is None else position
        self.validate_record(record)

        missing = [key for key in record.references() if key < 0 and key not in self._defined]
        if missing:
            raise BulkError(
                f"Record {position} references temporary key(s) {missing} before they are defined",
                kind=BulkErrorKind.VALIDATION,
                operation="validate_order",
                details={"position": position, "kind": getattr(record, "kind", None), "missing": missing}
            )

        self._defined.update(record.defines())
        self._count += 1

    @classmethod
    def validate_batch(cls, records: Iterable[BulkRecord]) -> None:
        """
        Validate a complete batch.

        Args:
            records: Records in write order

        Raises:
            BulkError: VALIDATION if the batch is empty or a rule is broken
        """
        records: List[BulkRecord] = list(records)
        if not records:
            raise BulkError(
                "Batch cannot be empty",
                kind=BulkErrorKind.VALIDATION,
                operation="validate_batch"
            )

        validator = cls()
        for position, record in enumerate(records):
            validator.accept(record, position)
