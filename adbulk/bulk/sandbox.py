"""
In-process bulk service.

``SandboxBulkApi`` plays the remote side of ``BulkApi`` against an in-memory
account: uploads are read with ``BulkFileReader``, applied record by record
once enough polls have happened, and answered with a result file written by
``BulkFileWriter``. It is used by the test-suite and by the example harness
when ``api.environment`` is ``sandbox``.

Behaviour worth knowing:
- temporary keys are resolved per upload, in file order
- every record succeeds or fails on its own; an upload whose records all
  fail ends as ``Failed`` and carries their errors
- deleting something already deleted succeeds again with status Deleted
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Set, Union
from uuid import uuid4
import shutil
import tempfile

from adbulk.bulk.api import BulkApi, UploadRequestStatus, UploadStatus, UploadTicket
from adbulk.bulk.errors import BulkError, BulkErrorKind
from adbulk.bulk.models import (
    BulkCampaign, BulkCampaignDayTimeTargetBid, BulkCampaignLocationTargetBid,
    BulkCampaignRadiusTargetBid, BulkRecord, Campaign, LocationType, OperationError,
    RECORD_TYPES, ResponseMode, Status
)
from adbulk.bulk.reader import BulkFileReader
from adbulk.bulk.writer import BulkFileWriter
from adbulk.utils.logging import setup_logger

logger = setup_logger(__name__)

# Platform error numbers for the errors the sandbox produces.
ERROR_NUMBERS = {
    "CampaignIdInvalid": 1100,
    "CampaignNameMissing": 1102,
    "TargetIdInvalid": 1205,
    "ParentRecordFailed": 4830,
    "BulkFileInvalid": 3220,
    "BulkFileEmpty": 3221,
}

BID_PARTS = {
    "CampaignDayTimeTargetBid": "CampaignDayTimeTarget",
    "CampaignLocationTargetBid": "CampaignLocationTarget",
    "CampaignRadiusTargetBid": "CampaignRadiusTarget",
}

LOCATION_FIELDS = {
    LocationType.CITY: "city_bids",
    LocationType.COUNTRY: "country_bids",
    LocationType.METRO_AREA: "metro_area_bids",
    LocationType.STATE: "state_bids",
    LocationType.POSTAL_CODE: "postal_code_bids",
}

def _error(code: str, message: str, field_path: Optional[str] = None) -> OperationError:
    return OperationError(
        code=code,
        message=message,
        error_number=ERROR_NUMBERS.get(code),
        field_path=field_path
    )

@dataclass
class StoredCampaign:
    campaign: Campaign
    status: Status = Status.ACTIVE

@dataclass
class StoredTarget:
    target_id: int
    campaign_id: int
    parts: Dict[str, BulkRecord] = field(default_factory=dict)
    deleted_parts: Set[str] = field(default_factory=set)

@dataclass
class _Request:
    request_id: str
    account_id: int
    response_mode: ResponseMode
    status: UploadRequestStatus = UploadRequestStatus.PENDING_FILE_UPLOAD
    records: List[BulkRecord] = field(default_factory=list)
    percent_complete: int = 0
    errors: List[OperationError] = field(default_factory=list)
    result_path: Optional[Path] = None

class SandboxBulkApi(BulkApi):
    """In-memory stand-in for a remote bulk service."""

    def __init__(
        self,
        storage_directory: Optional[Union[str, Path]] = None,
        valid_tokens: Optional[Set[str]] = None,
        polls_to_complete: int = 3,
        first_id: int = 100000
    ):
        """
        Args:
            storage_directory: Where result files are kept, a temporary directory otherwise
            valid_tokens: Accepted tokens; any non-empty token when None
            polls_to_complete: Status polls before an upload is processed
            first_id: First permanent id handed out
        """
        self.storage_directory = Path(storage_directory or tempfile.mkdtemp(prefix="adbulk-sandbox-"))
        self.valid_tokens = valid_tokens
        self.polls_to_complete = max(1, polls_to_complete)
        self.campaigns: Dict[int, StoredCampaign] = {}
        self.targets: Dict[int, StoredTarget] = {}
        self._requests: Dict[str, _Request] = {}
        self._next_id = first_id
        self._faults: Dict[str, List[BulkError]] = {}

    def inject_fault(self, operation: str, error: BulkError, times: int = 1) -> None:
        """Make the next ``times`` calls of ``operation`` raise ``error``."""
        self._faults.setdefault(operation, []).extend([error] * times)

    def _maybe_fail(self, operation: str) -> None:
        pending = self._faults.get(operation)
        if pending:
            raise pending.pop(0)

    def _check_token(self, token: str, operation: str) -> None:
        if not token or (self.valid_tokens is not None and token not in self.valid_tokens):
            raise BulkError(
                "Authentication token is invalid or expired",
                kind=BulkErrorKind.AUTHORIZATION,
                operation=operation,
                errors=[OperationError(code="AuthenticationTokenExpired", message="Invalid credentials", error_number=109)]
            )

    def _request(self, request_id: str, operation: str) -> _Request:
        request = self._requests.get(request_id)
        if request is None:
            raise BulkError(
                f"Unknown bulk request {request_id}",
                kind=BulkErrorKind.REJECTED,
                operation=operation,
                errors=[OperationError(code="InvalidBulkUploadRequestId", message=f"Request {request_id} not found")]
            )
        return request

    def _allocate_id(self) -> int:
        self._next_id += 1
        return self._next_id

    async def get_bulk_upload_url(self, account_id: int, response_mode: ResponseMode, token: str) -> UploadTicket:
        self._check_token(token, "get_bulk_upload_url")
        self._maybe_fail("get_bulk_upload_url")
        request_id = uuid4().hex
        self._requests[request_id] = _Request(request_id, account_id, response_mode)
        return UploadTicket(request_id=request_id, upload_url=f"sandbox://upload/{request_id}")

    async def upload_file(self, ticket: UploadTicket, path: Path, token: str) -> None:
        self._check_token(token, "upload_file")
        self._maybe_fail("upload_file")
        request = self._request(ticket.request_id, "upload_file")
        try:
            with BulkFileReader(path) as reader:
                request.records = list(reader.read_entities())
        except BulkError as e:
            if e.kind == BulkErrorKind.IO:
                raise
            request.status = UploadRequestStatus.FAILED
            request.errors = [_error("BulkFileInvalid", e.message)]
            return
        request.status = UploadRequestStatus.FILE_UPLOADED
        logger.debug(f"Sandbox received {len(request.records)} records for {request.request_id}")

    async def get_bulk_upload_status(self, request_id: str, token: str) -> UploadStatus:
        self._check_token(token, "get_bulk_upload_status")
        self._maybe_fail("get_bulk_upload_status")
        request = self._request(request_id, "get_bulk_upload_status")

        if request.status in (UploadRequestStatus.FILE_UPLOADED, UploadRequestStatus.IN_PROGRESS):
            step = -(-100 // self.polls_to_complete)
            request.percent_complete = min(100, request.percent_complete + step)
            request.status = UploadRequestStatus.IN_PROGRESS
            if request.percent_complete >= 100:
                self._process(request)

        return UploadStatus(
            request_id=request.request_id,
            request_status=request.status,
            percent_complete=request.percent_complete,
            result_file_url=f"sandbox://results/{request.request_id}" if request.result_path else None,
            errors=request.errors
        )

    async def download_file(self, url: str, destination: Path, token: str) -> Path:
        self._check_token(token, "download_file")
        self._maybe_fail("download_file")
        request = self._request(url.rsplit("/", 1)[-1], "download_file")
        if request.result_path is None:
            raise BulkError(
                f"No result file for request {request.request_id}",
                kind=BulkErrorKind.REJECTED,
                operation="download_file"
            )
        destination = Path(destination)
        destination.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(request.result_path, destination)
        return destination

    def _process(self, request: _Request) -> None:
        if not request.records:
            request.status = UploadRequestStatus.FAILED
            request.errors = [_error("BulkFileEmpty", "The bulk file contains no records")]
            return

        keys: Dict[int, int] = {}
        results = [self._apply(record, keys) for record in request.records]
        failed = [result for result in results if result.has_errors]

        if len(failed) == len(results):
            request.status = UploadRequestStatus.FAILED
            request.errors = [error for result in failed for error in result.errors]
            return

        request.status = (
            UploadRequestStatus.COMPLETED_WITH_ERRORS if failed else UploadRequestStatus.COMPLETED
        )
        written = failed if request.response_mode == ResponseMode.ERRORS_ONLY else results
        request.result_path = self.storage_directory / f"result_{request.request_id}.jsonl"
        with BulkFileWriter(request.result_path, validate=False) as writer:
            writer.write_entities(written)

    def _resolve(self, value: Optional[int], keys: Dict[int, int]) -> Optional[int]:
        if value is None or value > 0:
            return value
        return keys.get(value)

    def _apply(self, record: BulkRecord, keys: Dict[int, int]) -> BulkRecord:
        result = record.model_copy(deep=True)
        result.errors = []
        if isinstance(record, BulkCampaign):
            errors = self._apply_campaign(result, keys)
        elif record.kind in BID_PARTS:
            errors = self._apply_bid(result, keys)
        else:
            errors = self._apply_target(result, keys)
        if errors:
            result.errors = errors
        return result

    def _apply_campaign(self, result: BulkCampaign, keys: Dict[int, int]) -> List[OperationError]:
        campaign_id = result.campaign.id
        stored = self.campaigns.get(campaign_id) if campaign_id and campaign_id > 0 else None

        if result.status == Status.DELETED:
            if stored is None:
                return [_error("CampaignIdInvalid", f"Campaign {campaign_id} does not exist", "Id")]
            stored.status = Status.DELETED
            return []

        if campaign_id is None or campaign_id < 0:
            if not result.campaign.name:
                return [_error("CampaignNameMissing", "A new campaign requires a name", "Name")]
            new_id = self._allocate_id()
            if campaign_id is not None:
                keys[campaign_id] = new_id
            result.campaign.id = new_id
            result.status = Status.ACTIVE
            self.campaigns[new_id] = StoredCampaign(result.campaign.model_copy())
            return []

        if stored is None or stored.status == Status.DELETED:
            return [_error("CampaignIdInvalid", f"Campaign {campaign_id} does not exist", "Id")]
        updates = result.campaign.model_dump(exclude_none=True, exclude={"id"})
        stored.campaign = stored.campaign.model_copy(update=updates)
        result.campaign = stored.campaign.model_copy()
        result.status = stored.status
        return []

    def _campaign_errors(self, campaign_id: Optional[int], original: Optional[int], allow_deleted: bool) -> List[OperationError]:
        if campaign_id is None:
            if original is not None and original < 0:
                return [_error("ParentRecordFailed", f"Campaign {original} was not created", "Parent Id")]
            return [_error("CampaignIdInvalid", "A campaign id is required", "Parent Id")]
        stored = self.campaigns.get(campaign_id)
        if stored is None or (stored.status == Status.DELETED and not allow_deleted):
            return [_error("CampaignIdInvalid", f"Campaign {campaign_id} does not exist", "Parent Id")]
        return []

    def _apply_target(self, result: BulkRecord, keys: Dict[int, int]) -> List[OperationError]:
        deleting = result.status == Status.DELETED
        campaign_id = self._resolve(result.campaign_id, keys)
        errors = self._campaign_errors(campaign_id, result.campaign_id, allow_deleted=deleting)
        if errors:
            return errors
        result.campaign_id = campaign_id

        target_id = self._resolve(result.target_id, keys)
        if deleting:
            stored = self.targets.get(target_id) if target_id else None
            if stored is None or stored.campaign_id != campaign_id:
                return [_error("TargetIdInvalid", f"Target {result.target_id} does not exist", "Target Id")]
            stored.deleted_parts.add(result.kind)
            stored.parts.pop(result.kind, None)
            return []

        if target_id is None and (result.target_id is None or result.target_id < 0):
            target_id = self._allocate_id()
            self.targets[target_id] = StoredTarget(target_id=target_id, campaign_id=campaign_id)
            if result.target_id is not None:
                keys[result.target_id] = target_id

        stored = self.targets.get(target_id)
        if stored is None or stored.campaign_id != campaign_id:
            return [_error("TargetIdInvalid", f"Target {result.target_id} does not exist", "Target Id")]

        result.target_id = target_id
        result.status = Status.ACTIVE
        stored.parts[result.kind] = result.model_copy(deep=True)
        stored.deleted_parts.discard(result.kind)
        return []

    def _apply_bid(self, result: BulkRecord, keys: Dict[int, int]) -> List[OperationError]:
        campaign_id = self._resolve(result.campaign_id, keys)
        errors = self._campaign_errors(campaign_id, result.campaign_id, allow_deleted=False)
        if errors:
            return errors
        target_id = self._resolve(result.target_id, keys)
        stored = self.targets.get(target_id) if target_id else None
        if stored is None or stored.campaign_id != campaign_id:
            return [_error("TargetIdInvalid", f"Target {result.target_id} does not exist", "Target Id")]

        result.campaign_id = campaign_id
        result.target_id = target_id
        part_kind = BID_PARTS[result.kind]
        part = stored.parts.get(part_kind)
        if part is None:
            part = RECORD_TYPES[part_kind](campaign_id=campaign_id, target_id=target_id, status=Status.ACTIVE)
            stored.parts[part_kind] = part
            stored.deleted_parts.discard(part_kind)

        if isinstance(result, BulkCampaignDayTimeTargetBid):
            bids, match = part.bids, self._same_window
        elif isinstance(result, BulkCampaignLocationTargetBid):
            bids, match = getattr(part, LOCATION_FIELDS[result.location_type]), self._same_location
        elif isinstance(result, BulkCampaignRadiusTargetBid):
            bids, match = part.bids, self._same_point
        else:
            return [_error("BulkFileInvalid", f"Unsupported record {result.kind}")]

        for index, bid in enumerate(bids):
            if match(bid, result.bid):
                bids[index] = result.bid.model_copy()
                break
        else:
            bids.append(result.bid.model_copy())
        result.status = Status.ACTIVE
        return []

    @staticmethod
    def _same_window(a, b) -> bool:
        return (a.day, a.from_hour, a.from_minute, a.to_hour, a.to_minute) == \
            (b.day, b.from_hour, b.from_minute, b.to_hour, b.to_minute)

    @staticmethod
    def _same_location(a, b) -> bool:
        return a.location == b.location

    @staticmethod
    def _same_point(a, b) -> bool:
        return (a.latitude_degrees, a.longitude_degrees, a.radius_unit) == \
            (b.latitude_degrees, b.longitude_degrees, b.radius_unit)

    def get_target_part(self, target_id: int, kind: str) -> Optional[BulkRecord]:
        """Current state of one part of a stored target."""
        stored = self.targets.get(target_id)
        return stored.parts.get(kind) if stored else None
