"""
Bulk workflow services.

``BulkPhaseRunner`` runs one upload end to end: write the records, upload,
track, download and read the results, and report what happened. Failures
stop at the phase boundary: they are reported and returned on the
``PhaseResult`` instead of being raised.

``TargetsBulkWorkflow`` chains three phases over one campaign: add the
campaign with day/time, location and radius targets, update one day/time
bid, then delete everything again.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import List, Optional

from adbulk.config import BulkConfig
from adbulk.bulk.builder import BulkEntityBuilder
from adbulk.bulk.errors import BulkError, BulkErrorKind
from adbulk.bulk.keys import TemporaryKeyMap
from adbulk.bulk.models import (
    BudgetLimitType, BulkCampaign, BulkCampaignDayTimeTarget, BulkRecord, Campaign, Day,
    DayTimeTargetBid, DistanceUnit, IntentOption, LocationTargetBid, Minute, RadiusTargetBid,
    ResponseMode
)
from adbulk.bulk.operations import BulkServiceManager, CancellationToken
from adbulk.bulk.reader import BulkFileReader
from adbulk.bulk.reporter import StatusReporter
from adbulk.bulk.writer import BulkFileWriter
from adbulk.utils.logging import setup_logger

logger = setup_logger(__name__)

class PhaseState(str, Enum):
    """Linear lifecycle of one phase."""
    IDLE = "idle"
    BUILDING = "building"
    SERIALIZED = "serialized"
    SUBMITTED = "submitted"
    POLLING = "polling"
    COMPLETED = "completed"
    FAILED = "failed"

@dataclass
class PhaseResult:
    """Outcome of one phase."""
    name: str
    state: PhaseState = PhaseState.IDLE
    records: List[BulkRecord] = field(default_factory=list)
    result_file: Optional[Path] = None
    request_id: Optional[str] = None
    error: Optional[BulkError] = None
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None

    @property
    def succeeded(self) -> bool:
        return self.state == PhaseState.COMPLETED

    @property
    def failed_records(self) -> List[BulkRecord]:
        return [record for record in self.records if record.has_errors]

def describe_failure(error: BulkError) -> List[str]:
    """Status lines for a failed phase."""
    if error.kind == BulkErrorKind.REJECTED and error.errors:
        return [error.describe()]
    return [error.message]

class BulkPhaseRunner:
    """Runs single upload phases."""

    def __init__(self, manager: BulkServiceManager, reporter: StatusReporter, config: Optional[BulkConfig] = None):
        self.manager = manager
        self.reporter = reporter
        self.config = config or BulkConfig()

    def _transition(self, result: PhaseResult, state: PhaseState) -> None:
        logger.debug(f"Phase {result.name}: {result.state.value} -> {state.value}")
        result.state = state

    async def run_phase(
        self,
        name: str,
        records: List[BulkRecord],
        response_mode: Optional[ResponseMode] = None,
        cancellation: Optional[CancellationToken] = None
    ) -> PhaseResult:
        """
        Upload ``records`` and read back the results.

        Args:
            name: Phase name used in status output ("Added", "Updated", ...)
            records: Records in write order
            response_mode: Defaults to the configured response mode
            cancellation: Stops tracking; the remote upload is left running

        Returns:
            PhaseResult; ``error`` is set when the phase failed
        """
        result = PhaseResult(name=name)
        directory = Path(self.config.file_directory)
        upload_path = directory / self.config.upload_file_name
        response_mode = response_mode or self.config.response_mode

        try:
            self._transition(result, PhaseState.BUILDING)
            with BulkFileWriter(upload_path) as writer:
                writer.write_entities(records)
            self._transition(result, PhaseState.SERIALIZED)

            self.reporter.report("Starting UploadFileAsync . . .")
            operation = await self.manager.submit(upload_path, response_mode)
            result.request_id = operation.request_id
            self._transition(result, PhaseState.SUBMITTED)

            self._transition(result, PhaseState.POLLING)
            await operation.track(progress=self.reporter.report_progress, cancellation=cancellation)
            result.result_file = await operation.download_result_file(
                directory,
                self.config.result_file_name,
                self.config.overwrite_result_file
            )

            if result.result_file is not None:
                with BulkFileReader(result.result_file) as reader:
                    result.records = list(reader.read_entities())
            self.reporter.report(f"Upload Results Bulk File Path: {result.result_file}")
            self.reporter.report(f"{name} Entities")
            self.reporter.output_records(result.records)
            self._transition(result, PhaseState.COMPLETED)

        except BulkError as e:
            result.error = e
            self._transition(result, PhaseState.FAILED)
            logger.error(f"Phase {name} failed ({e.kind.value}): {e.message}")
            for line in describe_failure(e):
                self.reporter.report(line)
        finally:
            result.finished_at = datetime.now(timezone.utc)

        return result

def default_campaign() -> Campaign:
    return Campaign(
        name=f"Women's Shoes {datetime.now(timezone.utc):%Y-%m-%d %H:%M:%S}",
        description="Red shoes line.",
        budget_type=BudgetLimitType.MONTHLY_BUDGET_SPEND_UNTIL_DEPLETED,
        monthly_budget=1000.00,
        time_zone="PacificTimeUSCanadaTijuana",
        daylight_saving=True
    )

def default_day_time_bids() -> List[DayTimeTargetBid]:
    return [
        DayTimeTargetBid(bid_adjustment=10, day=Day.FRIDAY, from_hour=11, from_minute=Minute.ZERO,
                         to_hour=13, to_minute=Minute.FIFTEEN),
        DayTimeTargetBid(bid_adjustment=20, day=Day.SATURDAY, from_hour=11, from_minute=Minute.ZERO,
                         to_hour=13, to_minute=Minute.FIFTEEN),
    ]

def default_location_bids() -> dict:
    return {
        "city_bids": [LocationTargetBid(bid_adjustment=15, location="Toronto, Toronto ON CA")],
        "country_bids": [LocationTargetBid(bid_adjustment=15, location="CA")],
        "metro_area_bids": [LocationTargetBid(bid_adjustment=15, location="Seattle-Tacoma, WA, WA US")],
        "state_bids": [LocationTargetBid(bid_adjustment=15, location="US-WA")],
        "postal_code_bids": [LocationTargetBid(bid_adjustment=10, location="98052, WA US")],
    }

def default_radius_bids() -> List[RadiusTargetBid]:
    return [
        RadiusTargetBid(bid_adjustment=50, latitude_degrees=47.755367, longitude_degrees=-122.091827,
                        radius=11, radius_unit=DistanceUnit.KILOMETERS)
    ]

class TargetsBulkWorkflow:
    """Add, update and delete a campaign with targets in three uploads."""

    CAMPAIGN_KEY = -123
    TARGET_KEY = -1

    def __init__(self, runner: BulkPhaseRunner, client_id: str = "YourClientIdGoesHere"):
        self.runner = runner
        self.reporter = runner.reporter
        self.client_id = client_id
        self.keys = TemporaryKeyMap()

    async def run(
        self,
        campaign: Optional[Campaign] = None,
        updated_bid: Optional[DayTimeTargetBid] = None,
        cancellation: Optional[CancellationToken] = None
    ) -> List[PhaseResult]:
        """
        Run the add, update and delete phases in order.

        The update and delete phases need the ids assigned by the add phase;
        if those are missing the workflow stops after the add phase.

        Returns:
            Results of the phases that ran
        """
        self.keys = TemporaryKeyMap()
        builder = BulkEntityBuilder(self.keys)
        results: List[PhaseResult] = []

        # Add
        batch = builder.prepare_campaign_with_targets(
            campaign or default_campaign(),
            day_time_bids=default_day_time_bids(),
            location_bids=default_location_bids(),
            intent_option=IntentOption.PEOPLE_IN,
            radius_bids=default_radius_bids(),
            campaign_key=self.CAMPAIGN_KEY,
            target_key=self.TARGET_KEY,
            client_id=self.client_id
        )
        added = await self.runner.run_phase("Added", batch.records, cancellation=cancellation)
        results.append(added)
        if added.succeeded:
            self.keys.bind(batch.records, added.records)

        try:
            campaign_id = self.keys.resolve(self.CAMPAIGN_KEY)
            target_id = self.keys.resolve(self.TARGET_KEY)
        except KeyError as e:
            self.reporter.report(f"Stopping: the add phase returned no usable ids ({e.args[0]})")
            return results

        # Update one bid without replacing the rest of the day/time target.
        bid = updated_bid or DayTimeTargetBid(
            bid_adjustment=15, day=Day.FRIDAY, from_hour=11, from_minute=Minute.ZERO,
            to_hour=13, to_minute=Minute.FIFTEEN
        )
        update = builder.build_batch([builder.targets.prepare_day_time_bid(campaign_id, target_id, bid)])
        results.append(await self.runner.run_phase("Updated", update.records, cancellation=cancellation))

        # Delete
        delete = builder.prepare_target_delete(campaign_id, target_id)
        results.append(await self.runner.run_phase("Deleted", delete.records, cancellation=cancellation))
        return results

    def added_campaigns(self, result: PhaseResult) -> List[BulkCampaign]:
        return [r for r in result.records if isinstance(r, BulkCampaign)]

    def added_day_time_targets(self, result: PhaseResult) -> List[BulkCampaignDayTimeTarget]:
        return [r for r in result.records if isinstance(r, BulkCampaignDayTimeTarget)]
