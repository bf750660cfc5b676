"""Tests for the HTTP bulk service client."""
import pytest
import requests
from unittest.mock import Mock

from adbulk.bulk.api import HttpBulkApi, UploadRequestStatus, UploadTicket
from adbulk.bulk.errors import BulkError, BulkErrorKind
from adbulk.bulk.models import ResponseMode

def make_response(status_code=200, payload=None, content=b""):
    """Create a mock HTTP response."""
    response = Mock(spec=requests.Response)
    response.status_code = status_code
    response.content = content
    response.text = content.decode("utf-8", "replace")
    if payload is None:
        response.json.side_effect = ValueError("no json")
    else:
        response.json.return_value = payload
    return response

@pytest.fixture
def session():
    return Mock(spec=requests.Session)

@pytest.fixture
def api(session):
    return HttpBulkApi(
        "https://bulk.example.com/v13/",
        developer_token="dev-token",
        customer_id=42,
        session=session
    )

class TestHttpBulkApi:
    """Test cases for HttpBulkApi."""

    @pytest.mark.asyncio
    async def test_get_bulk_upload_url(self, api, session):
        session.post.return_value = make_response(payload={"request_id": "r1", "upload_url": "https://up/r1"})

        ticket = await api.get_bulk_upload_url(7, ResponseMode.ERRORS_ONLY, "token")

        assert ticket == UploadTicket(request_id="r1", upload_url="https://up/r1")
        args, kwargs = session.post.call_args
        assert args[0] == "https://bulk.example.com/v13/bulkupload"
        assert kwargs["json"] == {"account_id": 7, "response_mode": "ErrorsOnly"}
        assert kwargs["headers"]["Authorization"] == "Bearer token"
        assert kwargs["headers"]["DeveloperToken"] == "dev-token"
        assert kwargs["headers"]["CustomerId"] == "42"
        assert kwargs["timeout"] == 30

    @pytest.mark.asyncio
    async def test_get_status(self, api, session):
        session.get.return_value = make_response(payload={
            "request_id": "r1",
            "request_status": "CompletedWithErrors",
            "percent_complete": 100,
            "result_file_url": "https://dl/r1",
        })

        status = await api.get_bulk_upload_status("r1", "token")

        assert status.request_status == UploadRequestStatus.COMPLETED_WITH_ERRORS
        assert status.request_status.is_terminal
        assert session.get.call_args.args[0] == "https://bulk.example.com/v13/bulkupload/r1"

    @pytest.mark.asyncio
    async def test_upload_file(self, api, session, tmp_path):
        path = tmp_path / "upload.jsonl"
        path.write_bytes(b'{"format": "adbulk", "version": 1}\n')
        session.put.return_value = make_response()

        await api.upload_file(UploadTicket(request_id="r1", upload_url="https://up/r1"), path, "token")

        kwargs = session.put.call_args.kwargs
        assert kwargs["data"] == path.read_bytes()
        assert kwargs["headers"]["Content-Type"] == "application/x-ndjson"

    @pytest.mark.asyncio
    async def test_upload_missing_file(self, api, tmp_path):
        with pytest.raises(BulkError) as exc_info:
            await api.upload_file(UploadTicket(request_id="r1", upload_url="u"), tmp_path / "none", "token")
        assert exc_info.value.kind == BulkErrorKind.IO

    @pytest.mark.asyncio
    async def test_download_file(self, api, session, tmp_path):
        session.get.return_value = make_response(content=b"result")

        path = await api.download_file("https://dl/r1", tmp_path / "out" / "result.jsonl", "token")

        assert path.read_bytes() == b"result"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status_code,kind", [
        (401, BulkErrorKind.AUTHORIZATION),
        (403, BulkErrorKind.AUTHORIZATION),
        (400, BulkErrorKind.REJECTED),
        (404, BulkErrorKind.REJECTED),
        (503, BulkErrorKind.TRANSIENT),
    ])
    async def test_status_mapping(self, api, session, status_code, kind):
        session.get.return_value = make_response(status_code)

        with pytest.raises(BulkError) as exc_info:
            await api.get_bulk_upload_status("r1", "token")

        assert exc_info.value.kind == kind
        assert exc_info.value.details["status_code"] == status_code

    @pytest.mark.asyncio
    async def test_rejection_errors_are_parsed(self, api, session):
        session.post.return_value = make_response(400, payload={
            "operation_errors": [{"code": "InvalidAccountId", "message": "Account 7 not found", "error_number": 1029}],
            "batch_errors": [{"code": "BulkFileInvalid", "message": "Bad file"}],
        })

        with pytest.raises(BulkError) as exc_info:
            await api.get_bulk_upload_url(7, ResponseMode.ERRORS_AND_RESULTS, "token")

        assert [e.code for e in exc_info.value.errors] == ["InvalidAccountId", "BulkFileInvalid"]

    @pytest.mark.asyncio
    async def test_incomplete_status_body(self, api, session):
        session.get.return_value = make_response(payload={"request_id": "r1"})

        with pytest.raises(BulkError) as exc_info:
            await api.get_bulk_upload_status("r1", "token")

        assert exc_info.value.kind == BulkErrorKind.FORMAT
        assert exc_info.value.operation == "get_bulk_upload_status"

    @pytest.mark.asyncio
    async def test_non_json_ticket_body(self, api, session):
        session.post.return_value = make_response(content=b"<html>Bad gateway</html>")

        with pytest.raises(BulkError) as exc_info:
            await api.get_bulk_upload_url(7, ResponseMode.ERRORS_ONLY, "token")

        assert exc_info.value.kind == BulkErrorKind.FORMAT
        assert exc_info.value.details["body"] == "<html>Bad gateway</html>"

    @pytest.mark.asyncio
    async def test_unparsable_operation_errors_are_skipped(self, api, session):
        session.post.return_value = make_response(400, payload={
            "operation_errors": [{"message": "no code"}, {"code": "InvalidAccountId", "message": "Account 7 not found"}],
        })

        with pytest.raises(BulkError) as exc_info:
            await api.get_bulk_upload_url(7, ResponseMode.ERRORS_AND_RESULTS, "token")

        assert exc_info.value.kind == BulkErrorKind.REJECTED
        assert [e.code for e in exc_info.value.errors] == ["InvalidAccountId"]

    @pytest.mark.asyncio
    async def test_connection_error_is_transient(self, api, session):
        session.get.side_effect = requests.ConnectionError("connection reset")

        with pytest.raises(BulkError) as exc_info:
            await api.get_bulk_upload_status("r1", "token")

        assert exc_info.value.kind == BulkErrorKind.TRANSIENT
        assert exc_info.value.retryable

    @pytest.mark.asyncio
    async def test_close(self, api, session):
        await api.close()
        session.close.assert_called_once()

def test_default_session_mounts_retry_adapter():
    """Test the pooled session is configured with retries."""
    api = HttpBulkApi("https://bulk.example.com", max_retries=5, pool_size=4)
    adapter = api._session.get_adapter("https://bulk.example.com")
    assert adapter.max_retries.total == 5
    assert 503 in adapter.max_retries.status_forcelist
