"""
Temporary key bookkeeping.

Records inside one upload refer to entities that do not exist yet through
negative integers chosen by the caller (for example a campaign written with
id ``-123`` and targets written with ``campaign_id=-123``). ``TemporaryKeyMap``
keeps one placeholder per key and resolves it to the permanent id once the
result file of a successful upload has been read.
"""

from typing import Dict, Iterable, List, Optional
from dataclasses import dataclass
import logging

from adbulk.bulk.models import BulkRecord

logger = logging.getLogger(__name__)

@dataclass
class KeyPlaceholder:
    """A not yet created entity, addressed by its temporary key."""
    key: int
    kind: Optional[str] = None
    client_id: Optional[str] = None
    position: Optional[int] = None
    permanent_id: Optional[int] = None

    @property
    def resolved(self) -> bool:
        return self.permanent_id is not None

class TemporaryKeyMap:
    """Allocates temporary keys and maps them to permanent ids."""

    def __init__(self):
        self._placeholders: Dict[int, KeyPlaceholder] = {}
        self._next_key = -1

    def allocate(self, kind: Optional[str] = None) -> int:
        """Return a fresh, unused temporary key."""
        while self._next_key in self._placeholders:
            self._next_key -= 1
        key = self._next_key
        self._placeholders[key] = KeyPlaceholder(key=key, kind=kind)
        self._next_key -= 1
        return key

    def reserve(self, key: int, kind: Optional[str] = None) -> int:
        """Claim a caller chosen key such as ``-123``."""
        if key >= 0:
            raise ValueError(f"Temporary keys must be negative, got {key}")
        if key in self._placeholders:
            raise ValueError(f"Temporary key {key} is already in use")
        self._placeholders[key] = KeyPlaceholder(key=key, kind=kind)
        return key

    def define(self, record: BulkRecord, position: Optional[int] = None) -> None:
        """Register ``record`` as the one introducing its temporary key(s)."""
        for key in record.defines():
            placeholder = self._placeholders.setdefault(key, KeyPlaceholder(key=key))
            if placeholder.position is not None:
                # Targets written with the same key share one entity.
                continue
            placeholder.kind = getattr(record, "kind", placeholder.kind)
            placeholder.client_id = record.client_id
            placeholder.position = position

    def define_all(self, records: Iterable[BulkRecord]) -> None:
        for position, record in enumerate(records):
            self.define(record, position)

    def is_defined(self, key: int) -> bool:
        placeholder = self._placeholders.get(key)
        return placeholder is not None and placeholder.position is not None

    def bind(self, submitted: List[BulkRecord], results: List[BulkRecord]) -> Dict[int, int]:
        """
        Resolve placeholders from the result records of an upload.

        A submitted record is paired with its result by ``client_id`` when it
        has one, otherwise by position among records of the same kind.

        Args:
            submitted: Records in the order they were written
            results: Records read back from the result file

        Returns:
            Mapping of temporary key to permanent id for the keys resolved now
        """
        by_client_id = {r.client_id: r for r in results if r.client_id and not r.has_errors}
        by_kind: Dict[str, List[BulkRecord]] = {}
        for result in results:
            by_kind.setdefault(getattr(result, "kind", ""), []).append(result)

        seen_per_kind: Dict[str, int] = {}
        resolved: Dict[int, int] = {}
        for record in submitted:
            kind = getattr(record, "kind", "")
            index = seen_per_kind.get(kind, 0)
            seen_per_kind[kind] = index + 1

            keys = [key for key in record.defines() if key in self._placeholders]
            if not keys:
                continue

            match = by_client_id.get(record.client_id) if record.client_id else None
            if match is None:
                candidates = by_kind.get(kind, [])
                match = candidates[index] if index < len(candidates) else None
            if match is None or match.has_errors:
                continue

            permanent_id = match.identifier
            if permanent_id is None or permanent_id <= 0:
                continue
            for key in keys:
                placeholder = self._placeholders[key]
                if placeholder.permanent_id is None:
                    placeholder.permanent_id = permanent_id
                    resolved[key] = permanent_id

        if resolved:
            logger.debug(f"Resolved temporary keys: {resolved}")
        return resolved

    def resolve(self, key: int) -> int:
        """
        Return the permanent id for ``key``.

        Raises:
            KeyError: If the key is unknown or not resolved yet
        """
        if key > 0:
            return key
        placeholder = self._placeholders.get(key)
        if placeholder is None or placeholder.permanent_id is None:
            raise KeyError(f"Temporary key {key} has not been resolved")
        return placeholder.permanent_id

    def get(self, key: int) -> Optional[KeyPlaceholder]:
        return self._placeholders.get(key)

    def __contains__(self, key: int) -> bool:
        return key in self._placeholders

    def __len__(self) -> int:
        return len(self._placeholders)
