"""
Error handling for bulk operations.

Every failure surfaced by this package is a ``BulkError``. What went wrong is
carried by ``BulkError.kind`` rather than by subclasses, so callers branch on
the kind:

- AUTHORIZATION: credentials could not be exchanged for a token
- OPERATION_IN_PROGRESS: the result file was requested before the upload finished
- REJECTED: the upload or some of its operations were refused; see ``errors``
- TRANSIENT: remote or network failure, the submission may be retried
- CANCELLED: the caller cancelled tracking
- TIMEOUT: tracking gave up waiting
- VALIDATION: the batch was refused locally before upload
- IO / FORMAT: a bulk file or service response could not be read or parsed
"""
from typing import Optional, Dict, Any, List, Callable
from enum import Enum
from datetime import datetime, timezone
from functools import wraps
import asyncio
import logging

from pydantic import BaseModel, Field

from adbulk.bulk.models import OperationError

logger = logging.getLogger(__name__)

class BulkErrorKind(str, Enum):
    """Closed set of failure kinds."""
    AUTHORIZATION = "authorization"
    OPERATION_IN_PROGRESS = "operation_in_progress"
    REJECTED = "rejected"
    TRANSIENT = "transient"
    CANCELLED = "cancelled"
    TIMEOUT = "timeout"
    VALIDATION = "validation"
    IO = "io"
    FORMAT = "format"

RETRYABLE_KINDS = frozenset({BulkErrorKind.TRANSIENT, BulkErrorKind.OPERATION_IN_PROGRESS})

class BulkError(Exception):
    """Failure of a bulk operation."""

    def __init__(
        self,
        message: str,
        kind: BulkErrorKind,
        operation: Optional[str] = None,
        errors: Optional[List[OperationError]] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.kind = kind
        self.operation = operation
        self.errors = list(errors or [])
        self.details = details or {}
        self.timestamp = datetime.now(timezone.utc)

    @property
    def retryable(self) -> bool:
        """Whether repeating the same call may succeed."""
        return self.kind in RETRYABLE_KINDS

    def describe(self) -> str:
        """One line suitable for status output."""
        if self.errors:
            return "; ".join(str(error) for error in self.errors)
        return self.message

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary format."""
        return {
            "status": "error",
            "kind": self.kind.value,
            "message": self.message,
            "operation": self.operation,
            "errors": [error.model_dump() for error in self.errors],
            "details": self.details,
            "timestamp": self.timestamp.isoformat()
        }

    def __repr__(self) -> str:
        return f"BulkError(kind={self.kind.value!r}, message={self.message!r})"

class RetryPolicy(BaseModel):
    """Capped exponential backoff between attempts."""
    max_attempts: int = Field(default=3, ge=1, description="Attempts including the first call")
    base_delay: float = Field(default=0.1, ge=0)
    max_delay: float = Field(default=1.0, ge=0)
    backoff_factor: float = Field(default=2.0, ge=1)

    def delay(self, attempt: int) -> float:
        """Seconds to wait after failed attempt number ``attempt`` (1-based)."""
        return min(self.base_delay * self.backoff_factor ** (attempt - 1), self.max_delay)

def retryable(
    policy: Optional[RetryPolicy] = None,
    kinds: frozenset = frozenset({BulkErrorKind.TRANSIENT})
):
    """
    Retry an async function on ``BulkError``s of the given kinds.

    Any other error, and the last failure once ``policy.max_attempts`` is
    used up, propagates unchanged.

    Args:
        policy: Backoff settings, ``RetryPolicy()`` by default
        kinds: Error kinds worth another attempt
    """
    policy = policy or RetryPolicy()

    def decorator(func: Callable):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            for attempt in range(1, policy.max_attempts + 1):
                try:
                    return await func(*args, **kwargs)
                except BulkError as e:
                    if e.kind not in kinds or attempt == policy.max_attempts:
                        raise
                    delay = policy.delay(attempt)
                    logger.warning(
                        f"{func.__name__} attempt {attempt}/{policy.max_attempts} failed "
                        f"({e.kind.value}), retrying in {delay:.2f}s: {e.message}"
                    )
                    await asyncio.sleep(delay)

        return wrapper
    return decorator
