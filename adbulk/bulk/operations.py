"""
Bulk upload submission and tracking.

``BulkServiceManager`` uploads a bulk file, tracks the remote request until
it finishes and downloads the result file. Tracking suspends with
``asyncio.sleep`` between polls, so one event loop can track many uploads at
once (see ``BulkServiceManager.start_upload``).

Cancelling tracking, through a ``CancellationToken`` or by cancelling the
task, only stops the local polling. The remote upload keeps running and its
result stays available on the service until it expires; keep the
``request_id`` if the result is still needed.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, Union
import asyncio
import threading

from pydantic import BaseModel

from adbulk.auth.credentials import CredentialProvider
from adbulk.bulk.api import BulkApi, UploadRequestStatus, UploadStatus
from adbulk.bulk.errors import BulkError, BulkErrorKind, retryable
from adbulk.bulk.models import ResponseMode
from adbulk.utils.logging import RequestLogAdapter, setup_logger

logger = setup_logger(__name__)

class CancellationToken:
    """
    Cooperative cancellation signal for tracking.

    ``cancel`` may be called from any thread. The token binds to the event
    loop of the first coroutine that waits on it.
    """

    def __init__(self):
        self._flag = threading.Event()
        self._lock = threading.Lock()
        self._event: Optional[asyncio.Event] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    @property
    def is_cancelled(self) -> bool:
        return self._flag.is_set()

    def cancel(self) -> None:
        with self._lock:
            self._flag.set()
            event, loop = self._event, self._loop
        if event is None:
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is loop:
            event.set()
        elif not loop.is_closed():
            loop.call_soon_threadsafe(event.set)

    def _bind(self) -> asyncio.Event:
        with self._lock:
            if self._event is None:
                self._loop = asyncio.get_running_loop()
                self._event = asyncio.Event()
                if self._flag.is_set():
                    self._event.set()
            return self._event

    async def sleep(self, delay: float) -> bool:
        """Wait up to ``delay`` seconds; return True if cancelled meanwhile."""
        event = self._bind()
        try:
            await asyncio.wait_for(event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return False
        return True

@dataclass(frozen=True)
class BulkOperationProgress:
    """Percent complete reported on a poll."""
    percent_complete: int

ProgressCallback = Callable[[BulkOperationProgress], None]

class ProgressReporter:
    """Serialises calls to a progress callback.

    A failing callback is logged and never interrupts tracking.
    """

    def __init__(self, callback: ProgressCallback):
        self._callback = callback
        self._lock = threading.Lock()

    def __call__(self, progress: BulkOperationProgress) -> None:
        with self._lock:
            try:
                self._callback(progress)
            except Exception as e:
                logger.warning(f"Progress callback failed: {e}")

class FileUploadParameters(BaseModel):
    """What to upload and where to put the result file."""
    upload_file_path: Path
    result_file_directory: Path
    result_file_name: Optional[str] = None
    overwrite_result_file: bool = True
    response_mode: ResponseMode = ResponseMode.ERRORS_AND_RESULTS

class BulkUploadOperation:
    """A submitted upload, tracked by ``request_id``."""

    def __init__(
        self,
        request_id: str,
        api: BulkApi,
        credentials: CredentialProvider,
        response_mode: ResponseMode = ResponseMode.ERRORS_AND_RESULTS,
        poll_interval: float = 5.0,
        timeout: float = 600.0
    ):
        self.request_id = request_id
        self.response_mode = response_mode
        self.poll_interval = poll_interval
        self.timeout = timeout
        self.status: Optional[UploadStatus] = None
        self._api = api
        self._credentials = credentials
        self._log = RequestLogAdapter(logger, request_id)

    @retryable()
    async def get_status(self) -> UploadStatus:
        """Poll the service once."""
        token = await get_token(self._credentials)
        self.status = await self._api.get_bulk_upload_status(self.request_id, token)
        return self.status

    def _raise_for_failure(self, status: UploadStatus) -> None:
        if status.request_status == UploadRequestStatus.FAILED:
            raise BulkError(
                f"Bulk upload {self.request_id} could not be completed",
                kind=BulkErrorKind.REJECTED,
                operation="track",
                errors=status.errors,
                details={"request_id": self.request_id}
            )
        if status.request_status in (UploadRequestStatus.ABORTED, UploadRequestStatus.EXPIRED):
            raise BulkError(
                f"Bulk upload {self.request_id} ended with status {status.request_status.value}",
                kind=BulkErrorKind.TRANSIENT,
                operation="track",
                errors=status.errors,
                details={"request_id": self.request_id, "request_status": status.request_status.value}
            )

    async def track(
        self,
        progress: Optional[ProgressCallback] = None,
        cancellation: Optional[CancellationToken] = None,
        poll_interval: Optional[float] = None,
        timeout: Optional[float] = None
    ) -> UploadStatus:
        """
        Poll until the upload finishes.

        Args:
            progress: Called with the percent complete after every poll
            cancellation: Stops polling when cancelled; the remote upload is not aborted
            poll_interval: Seconds between polls, defaults to the operation's
            timeout: Seconds before giving up, defaults to the operation's

        Returns:
            The final status (Completed or CompletedWithErrors)

        Raises:
            BulkError: CANCELLED, TIMEOUT, REJECTED (status Failed), TRANSIENT
                (status Aborted/Expired or remote failure), AUTHORIZATION
        """
        cancellation = cancellation or CancellationToken()
        if cancellation.is_cancelled:
            raise BulkError(
                f"Tracking of bulk upload {self.request_id} was cancelled",
                kind=BulkErrorKind.CANCELLED,
                operation="track",
                details={"request_id": self.request_id}
            )
        if progress is not None and not isinstance(progress, ProgressReporter):
            progress = ProgressReporter(progress)

        if poll_interval is None:
            poll_interval = self.poll_interval
        if timeout is None:
            timeout = self.timeout
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout

        while True:
            status = await self.get_status()
            if progress is not None:
                progress(BulkOperationProgress(status.percent_complete))

            self._raise_for_failure(status)
            if status.request_status.is_terminal:
                self._log.info(f"Upload finished: {status.request_status.value}")
                return status
            if status.errors:
                # Errors on a running upload are reported again once it ends.
                self._log.warning(
                    f"Upload still {status.request_status.value} "
                    f"with {len(status.errors)} errors"
                )

            remaining = deadline - loop.time()
            if remaining <= 0:
                raise BulkError(
                    f"Bulk upload {self.request_id} did not finish within {timeout} seconds",
                    kind=BulkErrorKind.TIMEOUT,
                    operation="track",
                    details={"request_id": self.request_id, "percent_complete": status.percent_complete}
                )
            if await cancellation.sleep(min(poll_interval, remaining)):
                raise BulkError(
                    f"Tracking of bulk upload {self.request_id} was cancelled",
                    kind=BulkErrorKind.CANCELLED,
                    operation="track",
                    details={"request_id": self.request_id, "percent_complete": status.percent_complete}
                )

    async def download_result_file(
        self,
        result_file_directory: Union[str, Path],
        result_file_name: Optional[str] = None,
        overwrite: bool = True
    ) -> Optional[Path]:
        """
        Download the result file without waiting.

        Returns:
            Path of the downloaded file, or None if the service produced none

        Raises:
            BulkError: OPERATION_IN_PROGRESS if the upload has not finished yet,
                IO if the destination exists and ``overwrite`` is False
        """
        status = self.status
        if status is None or not status.request_status.is_terminal:
            status = await self.get_status()
        if not status.request_status.is_terminal:
            raise BulkError(
                "The result file for the bulk operation is not yet available for download.",
                kind=BulkErrorKind.OPERATION_IN_PROGRESS,
                operation="download_result_file",
                details={"request_id": self.request_id, "percent_complete": status.percent_complete}
            )
        self._raise_for_failure(status)
        if not status.result_file_url:
            self._log.info("Upload produced no result file")
            return None

        destination = Path(result_file_directory) / (result_file_name or f"{self.request_id}.jsonl")
        if destination.exists() and not overwrite:
            raise BulkError(
                f"Result file {destination} already exists",
                kind=BulkErrorKind.IO,
                operation="download_result_file",
                details={"path": str(destination)}
            )
        token = await get_token(self._credentials)
        return await self._api.download_file(status.result_file_url, destination, token)

async def get_token(credentials: CredentialProvider) -> str:
    """Fetch a token, reporting any provider failure as AUTHORIZATION."""
    try:
        return await credentials.get_token()
    except BulkError:
        raise
    except Exception as e:
        raise BulkError(
            f"Couldn't get OAuth tokens: {e}",
            kind=BulkErrorKind.AUTHORIZATION,
            operation="get_token"
        ) from e

class BulkServiceManager:
    """Uploads bulk files and retrieves their results."""

    def __init__(
        self,
        api: BulkApi,
        credentials: CredentialProvider,
        account_id: int,
        poll_interval: float = 5.0,
        timeout: float = 600.0
    ):
        self.api = api
        self.credentials = credentials
        self.account_id = account_id
        self.poll_interval = poll_interval
        self.timeout = timeout

    @retryable()
    async def submit(
        self,
        upload_file_path: Union[str, Path],
        response_mode: ResponseMode = ResponseMode.ERRORS_AND_RESULTS
    ) -> BulkUploadOperation:
        """
        Upload a bulk file without waiting for it to be processed.

        Raises:
            BulkError: AUTHORIZATION, REJECTED, TRANSIENT or IO
        """
        token = await get_token(self.credentials)
        ticket = await self.api.get_bulk_upload_url(self.account_id, response_mode, token)
        await self.api.upload_file(ticket, Path(upload_file_path), token)
        logger.info(f"Uploaded {upload_file_path} as request {ticket.request_id}")
        return BulkUploadOperation(
            request_id=ticket.request_id,
            api=self.api,
            credentials=self.credentials,
            response_mode=response_mode,
            poll_interval=self.poll_interval,
            timeout=self.timeout
        )

    async def upload_file(
        self,
        parameters: FileUploadParameters,
        progress: Optional[ProgressCallback] = None,
        cancellation: Optional[CancellationToken] = None
    ) -> Optional[Path]:
        """
        Upload a file, wait for it to be processed and download the result file.

        Returns:
            Path of the result file, or None if the service produced none
        """
        operation = await self.submit(parameters.upload_file_path, parameters.response_mode)
        await operation.track(progress=progress, cancellation=cancellation)
        return await operation.download_result_file(
            parameters.result_file_directory,
            parameters.result_file_name,
            parameters.overwrite_result_file
        )

    def start_upload(
        self,
        parameters: FileUploadParameters,
        progress: Optional[ProgressCallback] = None,
        cancellation: Optional[CancellationToken] = None
    ) -> "asyncio.Task[Optional[Path]]":
        """Run ``upload_file`` as a task, for uploads that do not depend on each other."""
        return asyncio.get_running_loop().create_task(
            self.upload_file(parameters, progress, cancellation),
            name=f"bulk-upload:{parameters.upload_file_path}"
        )

    async def close(self) -> None:
        await self.api.close()
