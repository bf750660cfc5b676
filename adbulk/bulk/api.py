"""
Remote bulk service boundary.

``BulkApi`` is the only thing the submission client knows about the remote
service: request an upload URL, upload a file, poll the upload status and
download the result file. ``HttpBulkApi`` implements it over a JSON HTTP
endpoint with a pooled ``requests`` session; the session is blocking, so
each call runs in the loop's default executor.
"""

from abc import ABC, abstractmethod
from enum import Enum
from functools import partial
from pathlib import Path
from typing import Dict, List, Optional, Type, TypeVar
import asyncio
import logging

from pydantic import BaseModel, Field, ValidationError
from requests import Session
from requests.adapters import HTTPAdapter, Retry
import requests

from adbulk.bulk.models import OperationError, ResponseMode
from adbulk.bulk.errors import BulkError, BulkErrorKind

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)

class UploadRequestStatus(str, Enum):
    """Server side state of an upload."""
    PENDING_FILE_UPLOAD = "PendingFileUpload"
    FILE_UPLOADED = "FileUploaded"
    IN_PROGRESS = "InProgress"
    COMPLETED = "Completed"
    COMPLETED_WITH_ERRORS = "CompletedWithErrors"
    FAILED = "Failed"
    ABORTED = "Aborted"
    EXPIRED = "Expired"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

TERMINAL_STATUSES = frozenset({
    UploadRequestStatus.COMPLETED,
    UploadRequestStatus.COMPLETED_WITH_ERRORS,
    UploadRequestStatus.FAILED,
    UploadRequestStatus.ABORTED,
    UploadRequestStatus.EXPIRED,
})

class UploadTicket(BaseModel):
    """Where to upload a file, and the request that tracks it."""
    request_id: str
    upload_url: str

class UploadStatus(BaseModel):
    """One poll of an upload."""
    request_id: str
    request_status: UploadRequestStatus
    percent_complete: int = Field(default=0, ge=0, le=100)
    result_file_url: Optional[str] = None
    errors: List[OperationError] = Field(default_factory=list)

class BulkApi(ABC):
    """Asynchronous interface to a remote bulk service."""

    @abstractmethod
    async def get_bulk_upload_url(
        self,
        account_id: int,
        response_mode: ResponseMode,
        token: str
    ) -> UploadTicket:
        """Reserve an upload request."""

    @abstractmethod
    async def upload_file(self, ticket: UploadTicket, path: Path, token: str) -> None:
        """Send the upload file for ``ticket``."""

    @abstractmethod
    async def get_bulk_upload_status(self, request_id: str, token: str) -> UploadStatus:
        """Poll the state of an upload request."""

    @abstractmethod
    async def download_file(self, url: str, destination: Path, token: str) -> Path:
        """Download a result file to ``destination``."""

    async def close(self) -> None:
        """Release connections."""

class HttpBulkApi(BulkApi):
    """
    ``BulkApi`` over HTTP.

    Endpoints (relative to ``base_url``):
        POST /bulkupload              -> {"request_id", "upload_url"}
        PUT  <upload_url>             (file body)
        GET  /bulkupload/{request_id} -> UploadStatus JSON
        GET  <result_file_url>        (file body)
    """

    def __init__(
        self,
        base_url: str,
        developer_token: Optional[str] = None,
        customer_id: Optional[int] = None,
        timeout: int = 30,
        max_retries: int = 3,
        backoff_factor: float = 0.3,
        retry_on_status: Optional[List[int]] = None,
        pool_size: int = 10,
        session: Optional[Session] = None
    ):
        self.base_url = base_url.rstrip("/")
        self.developer_token = developer_token
        self.customer_id = customer_id
        self.timeout = timeout
        self._session = session or self._create_session(
            max_retries, backoff_factor, retry_on_status or [500, 502, 503, 504], pool_size
        )

    @staticmethod
    def _create_session(max_retries: int, backoff_factor: float, retry_on_status: List[int], pool_size: int) -> Session:
        session = Session()
        retry_strategy = Retry(
            total=max_retries,
            backoff_factor=backoff_factor,
            status_forcelist=retry_on_status,
            allowed_methods=["GET", "PUT"]
        )
        adapter = HTTPAdapter(
            max_retries=retry_strategy,
            pool_connections=pool_size,
            pool_maxsize=pool_size
        )
        session.mount("http://", adapter)
        session.mount("https://", adapter)
        return session

    def _headers(self, token: str) -> Dict[str, str]:
        headers = {"Authorization": f"Bearer {token}"}
        if self.developer_token:
            headers["DeveloperToken"] = self.developer_token
        if self.customer_id is not None:
            headers["CustomerId"] = str(self.customer_id)
        return headers

    async def _call(self, operation: str, func, *args, **kwargs) -> requests.Response:
        loop = asyncio.get_running_loop()
        try:
            response = await loop.run_in_executor(
                None, partial(func, *args, timeout=self.timeout, **kwargs)
            )
        except requests.RequestException as e:
            raise BulkError(
                f"{operation} failed: {e}",
                kind=BulkErrorKind.TRANSIENT,
                operation=operation
            ) from e
        self._raise_for_status(operation, response)
        return response

    @staticmethod
    def _parse_errors(response: requests.Response) -> List[OperationError]:
        try:
            payload = response.json()
        except ValueError:
            return []
        if not isinstance(payload, dict):
            return []
        raw = payload.get("errors") or payload.get("operation_errors") or []
        raw = raw + (payload.get("batch_errors") or [])
        errors = []
        for error in raw:
            try:
                errors.append(OperationError.model_validate(error))
            except ValidationError:
                logger.warning(f"Ignoring unparsable operation error: {error!r}")
        return errors

    @staticmethod
    def _parse(operation: str, response: requests.Response, model: Type[M]) -> M:
        try:
            return model.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise BulkError(
                f"{operation} returned an unexpected response body",
                kind=BulkErrorKind.FORMAT,
                operation=operation,
                details={"status_code": response.status_code, "body": response.text[:1000]}
            ) from e

    def _raise_for_status(self, operation: str, response: requests.Response) -> None:
        status = response.status_code
        if status < 400:
            return
        errors = self._parse_errors(response)
        details = {"status_code": status}
        if status in (401, 403):
            kind = BulkErrorKind.AUTHORIZATION
        elif status in (400, 404, 409, 422):
            kind = BulkErrorKind.REJECTED
        else:
            kind = BulkErrorKind.TRANSIENT
        raise BulkError(
            f"{operation} failed with HTTP {status}",
            kind=kind,
            operation=operation,
            errors=errors,
            details=details
        )

    async def get_bulk_upload_url(self, account_id: int, response_mode: ResponseMode, token: str) -> UploadTicket:
        response = await self._call(
            "get_bulk_upload_url",
            self._session.post,
            f"{self.base_url}/bulkupload",
            json={"account_id": account_id, "response_mode": response_mode.value},
            headers=self._headers(token)
        )
        return self._parse("get_bulk_upload_url", response, UploadTicket)

    async def upload_file(self, ticket: UploadTicket, path: Path, token: str) -> None:
        # Read up front so the handle is released before the request leaves.
        try:
            data = Path(path).read_bytes()
        except OSError as e:
            raise BulkError(
                f"Cannot read upload file {path}: {e}",
                kind=BulkErrorKind.IO,
                operation="upload_file"
            ) from e
        await self._call(
            "upload_file",
            self._session.put,
            ticket.upload_url,
            data=data,
            headers={**self._headers(token), "Content-Type": "application/x-ndjson"}
        )

    async def get_bulk_upload_status(self, request_id: str, token: str) -> UploadStatus:
        response = await self._call(
            "get_bulk_upload_status",
            self._session.get,
            f"{self.base_url}/bulkupload/{request_id}",
            headers=self._headers(token)
        )
        return self._parse("get_bulk_upload_status", response, UploadStatus)

    async def download_file(self, url: str, destination: Path, token: str) -> Path:
        response = await self._call(
            "download_file",
            self._session.get,
            url,
            headers=self._headers(token)
        )
        destination = Path(destination)
        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
            destination.write_bytes(response.content)
        except OSError as e:
            raise BulkError(
                f"Cannot write result file {destination}: {e}",
                kind=BulkErrorKind.IO,
                operation="download_file"
            ) from e
        return destination

    async def close(self) -> None:
        self._session.close()
        logger.info("HTTP bulk session closed")
