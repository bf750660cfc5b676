"""Tests for the bulk phase runner, workflow and status reporter."""
import json
import logging

import pytest
import requests
from unittest.mock import AsyncMock, Mock

from adbulk.auth.credentials import StaticTokenProvider
from adbulk.config import BulkConfig
from adbulk.bulk.api import HttpBulkApi
from adbulk.bulk.errors import BulkError, BulkErrorKind
from adbulk.bulk.models import (
    BulkCampaign, BulkCampaignDayTimeTarget, BulkCampaignDayTimeTargetBid, BulkCampaignRadiusTarget,
    Campaign, OperationError, Status
)
from adbulk.bulk.operations import BulkOperationProgress, BulkServiceManager
from adbulk.bulk.reporter import StatusReporter, format_record
from adbulk.bulk.services import (
    BulkPhaseRunner, PhaseState, TargetsBulkWorkflow, describe_failure
)

@pytest.fixture
def messages():
    return []

@pytest.fixture
def reporter(messages):
    return StatusReporter(sink=messages.append)

@pytest.fixture
def config(tmp_path):
    return BulkConfig(file_directory=str(tmp_path / "files"))

@pytest.fixture
def runner(manager, reporter, config):
    return BulkPhaseRunner(manager, reporter, config)

class TestBulkPhaseRunner:
    """Test cases for BulkPhaseRunner."""

    @pytest.mark.asyncio
    async def test_successful_phase(self, runner, messages, campaign):
        records = [BulkCampaign(client_id="c1", campaign=campaign.model_copy(update={"id": -1}))]

        result = await runner.run_phase("Added", records)

        assert result.succeeded
        assert result.state == PhaseState.COMPLETED
        assert result.error is None
        assert result.request_id
        assert result.finished_at >= result.started_at
        assert result.result_file.name == "result.jsonl"
        assert result.records[0].campaign.id > 0
        assert messages[0] == "Starting UploadFileAsync . . ."
        assert ["34 % Complete", "68 % Complete", "100 % Complete"] == [m for m in messages if m.endswith("Complete")]
        assert "Added Entities" in messages
        assert "BulkCampaign:" in messages

    @pytest.mark.asyncio
    async def test_validation_failure_stops_before_upload(self, runner, sandbox, messages):
        records = [BulkCampaignDayTimeTarget(campaign_id=-123, target_id=-1)]

        result = await runner.run_phase("Added", records)

        assert result.state == PhaseState.FAILED
        assert result.error.kind == BulkErrorKind.VALIDATION
        assert not sandbox._requests
        assert "Starting UploadFileAsync . . ." not in messages

    @pytest.mark.asyncio
    async def test_rejected_phase_reports_errors(self, runner, messages):
        records = [BulkCampaign(campaign=Campaign(id=999999, name="Renamed"))]

        result = await runner.run_phase("Updated", records)

        assert not result.succeeded
        assert result.error.kind == BulkErrorKind.REJECTED
        assert result.records == []
        assert messages[-1].startswith("CampaignIdInvalid: ")

    @pytest.mark.asyncio
    async def test_result_not_ready_is_reported(self, reporter, messages, config):
        operation = Mock(request_id="r1")
        operation.track = AsyncMock()
        operation.download_result_file = AsyncMock(side_effect=BulkError(
            "The result file for the bulk operation is not yet available for download.",
            kind=BulkErrorKind.OPERATION_IN_PROGRESS
        ))
        manager = Mock()
        manager.submit = AsyncMock(return_value=operation)
        runner = BulkPhaseRunner(manager, reporter, config)

        result = await runner.run_phase("Added", [BulkCampaign(campaign=Campaign(id=-1, name="A"))])

        assert result.error.kind == BulkErrorKind.OPERATION_IN_PROGRESS
        assert messages.count("The result file for the bulk operation is not yet available for download.") == 1

    @pytest.mark.asyncio
    async def test_malformed_service_response_fails_phase(self, reporter, messages, config):
        def respond(payload):
            response = Mock(spec=requests.Response)
            response.status_code = 200
            response.text = json.dumps(payload)
            response.json.return_value = payload
            return response

        session = Mock(spec=requests.Session)
        session.post.return_value = respond({"request_id": "r1", "upload_url": "https://up/r1"})
        session.put.return_value = respond({})
        session.get.return_value = respond({"request_id": "r1"})
        api = HttpBulkApi("https://bulk.example.com/v13", session=session)
        manager = BulkServiceManager(api, StaticTokenProvider("token"), account_id=1, poll_interval=0.01, timeout=1)
        runner = BulkPhaseRunner(manager, reporter, config)

        result = await runner.run_phase("Added", [BulkCampaign(campaign=Campaign(id=-1, name="A"))])

        assert result.state == PhaseState.FAILED
        assert result.error.kind == BulkErrorKind.FORMAT
        assert "get_bulk_upload_status returned an unexpected response body" in messages

class TestTargetsBulkWorkflow:
    """Test cases for TargetsBulkWorkflow."""

    @pytest.mark.asyncio
    async def test_add_update_delete(self, runner, sandbox, messages):
        workflow = TargetsBulkWorkflow(runner)

        added, updated, deleted = await workflow.run()

        assert added.succeeded and updated.succeeded and deleted.succeeded
        campaign_id = workflow.keys.resolve(TargetsBulkWorkflow.CAMPAIGN_KEY)
        target_id = workflow.keys.resolve(TargetsBulkWorkflow.TARGET_KEY)

        campaigns = workflow.added_campaigns(added)
        assert campaigns[0].campaign.id == campaign_id
        assert campaigns[0].client_id == "YourClientIdGoesHere"
        assert workflow.added_day_time_targets(added)[0].target_id == target_id
        assert any(isinstance(r, BulkCampaignRadiusTarget) for r in added.records)

        assert [type(r) for r in updated.records] == [BulkCampaignDayTimeTargetBid]
        assert updated.records[0].bid.bid_adjustment == 15

        assert len(deleted.records) == 4
        assert all(r.status == Status.DELETED for r in deleted.records)
        assert sandbox.campaigns[campaign_id].status == Status.DELETED
        for name in ("Added Entities", "Updated Entities", "Deleted Entities"):
            assert name in messages

    @pytest.mark.asyncio
    async def test_stops_without_ids(self, sandbox, reporter, messages, config):
        manager = BulkServiceManager(sandbox, StaticTokenProvider(None), account_id=1, poll_interval=0.01)
        workflow = TargetsBulkWorkflow(BulkPhaseRunner(manager, reporter, config))

        results = await workflow.run()

        assert len(results) == 1
        assert results[0].error.kind == BulkErrorKind.AUTHORIZATION
        assert any(m.startswith("Couldn't get OAuth tokens.") for m in messages)
        assert messages[-1].startswith("Stopping:")
        assert not sandbox._requests

    @pytest.mark.asyncio
    async def test_update_failure_does_not_stop_delete(self, runner, manager, sandbox):
        submit = manager.submit

        async def flaky_submit(path, response_mode):
            # The second upload (the update) is refused outright.
            flaky_submit.calls += 1
            if flaky_submit.calls == 2:
                raise BulkError("Upload refused", kind=BulkErrorKind.REJECTED,
                                errors=[OperationError(code="BulkFileInvalid", message="Bad file")])
            return await submit(path, response_mode)
        flaky_submit.calls = 0
        manager.submit = flaky_submit

        added, updated, deleted = await TargetsBulkWorkflow(runner).run()

        assert added.succeeded
        assert updated.error.kind == BulkErrorKind.REJECTED
        assert deleted.succeeded

class TestStatusReporter:
    """Test cases for StatusReporter."""

    def test_report_never_raises(self):
        logger = Mock(spec=logging.Logger)
        reporter = StatusReporter(logger=logger, sink=Mock(side_effect=OSError("broken pipe")))

        reporter.report("hello")

        logger.info.assert_called_once_with("hello")
        logger.debug.assert_called_once()

    def test_report_progress(self, reporter, messages):
        reporter.report_progress(BulkOperationProgress(68))
        assert messages == ["68 % Complete"]

    def test_format_record_with_errors(self):
        record = BulkCampaign(
            campaign=Campaign(id=5, name="Shoes"),
            errors=[OperationError(code="CampaignIdInvalid", message="Bad id", error_number=1100, field_path="Id")]
        )

        lines = format_record(record)

        assert lines[:3] == ["BulkCampaign:", "Id: 5", "Name: Shoes"]
        assert lines[-4:] == ["Error: CampaignIdInvalid", "Number: 1100", "Message: Bad id", "FieldPath: Id"]

def test_describe_failure():
    """Test status lines for failed phases."""
    rejected = BulkError("refused", kind=BulkErrorKind.REJECTED,
                         errors=[OperationError(code="A", message="a"), OperationError(code="B", message="b")])
    assert describe_failure(rejected) == ["A: a; B: b"]
    assert describe_failure(BulkError("slow", kind=BulkErrorKind.TIMEOUT)) == ["slow"]
    pending = BulkError("The result file for the bulk operation is not yet available for download.",
                        kind=BulkErrorKind.OPERATION_IN_PROGRESS)
    assert describe_failure(pending) == [pending.message]
