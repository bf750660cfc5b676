"""
Status output for bulk workflows.

``StatusReporter`` is the single sink for progress and result messages. It
logs every message and may forward it to another callable (a console print,
a UI). Calls are serialised and never raise, so reporting can't break an
upload.
"""

import logging
import threading
from typing import Callable, Iterable, List, Optional

from adbulk.bulk.models import (
    BulkCampaign, BulkCampaignDayTimeTarget, BulkCampaignDayTimeTargetBid,
    BulkCampaignLocationTarget, BulkCampaignLocationTargetBid, BulkCampaignRadiusTarget,
    BulkCampaignRadiusTargetBid, BulkRecord, DayTimeTargetBid, RadiusTargetBid
)
from adbulk.bulk.operations import BulkOperationProgress
from adbulk.utils.logging import setup_logger

class StatusReporter:
    """Thread-safe, non-raising status sink."""

    def __init__(self, logger: Optional[logging.Logger] = None, sink: Optional[Callable[[str], None]] = None):
        self.logger = logger or setup_logger("adbulk.status")
        self.sink = sink
        self._lock = threading.Lock()

    def report(self, message: str) -> None:
        with self._lock:
            try:
                self.logger.info(message)
                if self.sink is not None:
                    self.sink(message)
            except Exception as e:
                self.logger.debug(f"Status sink failed: {e}")

    def report_progress(self, progress: BulkOperationProgress) -> None:
        self.report(f"{progress.percent_complete} % Complete")

    def output_records(self, records: Iterable[BulkRecord]) -> None:
        """Report every record, grouped the way it was read."""
        for record in records:
            for line in format_record(record):
                self.report(line)

def _format_day_time_bid(bid: DayTimeTargetBid) -> List[str]:
    return [
        "Campaign Management DayTimeTargetBid Object:",
        f"BidAdjustment: {bid.bid_adjustment}",
        f"Day: {bid.day.value}",
        f"From Hour: {bid.from_hour}",
        f"From Minute: {bid.from_minute.value}",
        f"To Hour: {bid.to_hour}",
        f"To Minute: {bid.to_minute.value}",
    ]

def _format_radius_bid(bid: RadiusTargetBid) -> List[str]:
    return [
        "Campaign Management RadiusTargetBid Object:",
        f"BidAdjustment: {bid.bid_adjustment}",
        f"LatitudeDegrees: {bid.latitude_degrees}",
        f"LongitudeDegrees: {bid.longitude_degrees}",
        f"Radius: {bid.radius} {bid.radius_unit.value}",
    ]

def _format_errors(record: BulkRecord) -> List[str]:
    lines = []
    for error in record.errors:
        lines.append(f"Error: {error.code}")
        if error.error_number is not None:
            lines.append(f"Number: {error.error_number}")
        lines.append(f"Message: {error.message}")
        if error.field_path:
            lines.append(f"FieldPath: {error.field_path}")
    return lines

def format_record(record: BulkRecord) -> List[str]:
    """Human readable lines for one record, including its errors."""
    lines: List[str] = []
    if isinstance(record, BulkCampaign):
        campaign = record.campaign
        lines.append("BulkCampaign:")
        lines.append(f"Id: {campaign.id}")
        lines.append(f"Name: {campaign.name}")
        if campaign.budget_type is not None:
            lines.append(f"BudgetType: {campaign.budget_type.value}")
        if campaign.monthly_budget is not None:
            lines.append(f"MonthlyBudget: {campaign.monthly_budget}")
        if campaign.time_zone:
            lines.append(f"TimeZone: {campaign.time_zone}")
    else:
        lines.append(f"Bulk{record.kind}:")
        lines.append(f"Campaign Id: {record.campaign_id}")
        lines.append(f"Target Id: {record.target_id}")
        if isinstance(record, BulkCampaignDayTimeTarget):
            for bid in record.bids:
                lines.extend(_format_day_time_bid(bid))
        elif isinstance(record, BulkCampaignLocationTarget):
            if record.intent_option is not None:
                lines.append(f"IntentOption: {record.intent_option.value}")
            for location_type, bid in record.all_bids():
                lines.append(
                    f"{location_type.value}: {bid.location} BidAdjustment: {bid.bid_adjustment} "
                    f"IsExcluded: {bid.is_excluded}"
                )
        elif isinstance(record, BulkCampaignRadiusTarget):
            for bid in record.bids:
                lines.extend(_format_radius_bid(bid))
        elif isinstance(record, BulkCampaignDayTimeTargetBid):
            lines.extend(_format_day_time_bid(record.bid))
        elif isinstance(record, BulkCampaignLocationTargetBid):
            lines.append(
                f"{record.location_type.value}: {record.bid.location} "
                f"BidAdjustment: {record.bid.bid_adjustment} IsExcluded: {record.bid.is_excluded}"
            )
        elif isinstance(record, BulkCampaignRadiusTargetBid):
            lines.extend(_format_radius_bid(record.bid))

    if record.status is not None:
        lines.append(f"Status: {record.status.value}")
    if record.client_id:
        lines.append(f"ClientId: {record.client_id}")
    lines.extend(_format_errors(record))
    return lines
