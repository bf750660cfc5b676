"""
Bulk record builders.

This module prepares the records for add, update and delete uploads. Nothing
is checked against the service here; rejected values come back as errors on
the result records.
"""

import logging
from typing import Any, Dict, List, Optional

from adbulk.bulk.models import (
    Batch, BulkCampaign, BulkCampaignDayTimeTarget, BulkCampaignDayTimeTargetBid,
    BulkCampaignLocationTarget, BulkCampaignLocationTargetBid, BulkCampaignRadiusTarget,
    BulkCampaignRadiusTargetBid, BulkRecord, Campaign, DayTimeTargetBid, IntentOption,
    LocationTargetBid, LocationType, RadiusTargetBid, Status
)
from adbulk.bulk.keys import TemporaryKeyMap
from adbulk.bulk.validators import BatchValidator

logger = logging.getLogger(__name__)

class CampaignBuilder:
    """Builds campaign records."""

    @staticmethod
    def prepare_create(campaign: Campaign, client_id: Optional[str] = None) -> BulkCampaign:
        """
        Prepare a create campaign record.

        Args:
            campaign: Campaign to create; ``id`` should be a temporary key if
                other records of the batch point at it

        Returns:
            BulkCampaign ready to be written
        """
        if campaign.id is not None and campaign.id > 0:
            raise ValueError("A new campaign cannot carry a permanent id")
        return BulkCampaign(client_id=client_id, campaign=campaign)

    @staticmethod
    def prepare_update(campaign_id: int, updates: Dict[str, Any]) -> BulkCampaign:
        """
        Prepare an update campaign record.

        Args:
            campaign_id: Permanent id of the campaign
            updates: Campaign fields to change

        Returns:
            BulkCampaign ready to be written
        """
        return BulkCampaign(campaign=Campaign(id=campaign_id, **updates))

    @staticmethod
    def prepare_delete(campaign_id: int) -> BulkCampaign:
        """Prepare a delete campaign record."""
        return BulkCampaign(campaign=Campaign(id=campaign_id), status=Status.DELETED)

class TargetBuilder:
    """Builds campaign target and target bid records."""

    @staticmethod
    def prepare_day_time_target(
        campaign_id: int,
        target_id: int,
        bids: List[DayTimeTargetBid]
    ) -> BulkCampaignDayTimeTarget:
        """Prepare a day/time target. Replaces every existing day/time bid of the target."""
        return BulkCampaignDayTimeTarget(campaign_id=campaign_id, target_id=target_id, bids=bids)

    @staticmethod
    def prepare_location_target(
        campaign_id: int,
        target_id: int,
        intent_option: Optional[IntentOption] = None,
        **bids: List[LocationTargetBid]
    ) -> BulkCampaignLocationTarget:
        """
        Prepare a location target.

        Args:
            campaign_id: Campaign id or temporary key
            target_id: Target id or temporary key
            intent_option: Optional intent option
            **bids: ``city_bids``, ``country_bids``, ``metro_area_bids``,
                ``state_bids`` and/or ``postal_code_bids``
        """
        return BulkCampaignLocationTarget(
            campaign_id=campaign_id,
            target_id=target_id,
            intent_option=intent_option,
            **bids
        )

    @staticmethod
    def prepare_radius_target(
        campaign_id: int,
        target_id: int,
        bids: List[RadiusTargetBid]
    ) -> BulkCampaignRadiusTarget:
        return BulkCampaignRadiusTarget(campaign_id=campaign_id, target_id=target_id, bids=bids)

    @staticmethod
    def prepare_day_time_bid(
        campaign_id: int,
        target_id: int,
        bid: DayTimeTargetBid
    ) -> BulkCampaignDayTimeTargetBid:
        """Prepare a single day/time bid update, leaving the other bids of the target untouched."""
        return BulkCampaignDayTimeTargetBid(campaign_id=campaign_id, target_id=target_id, bid=bid)

    @staticmethod
    def prepare_location_bid(
        campaign_id: int,
        target_id: int,
        location_type: LocationType,
        bid: LocationTargetBid
    ) -> BulkCampaignLocationTargetBid:
        return BulkCampaignLocationTargetBid(
            campaign_id=campaign_id,
            target_id=target_id,
            location_type=location_type,
            bid=bid
        )

    @staticmethod
    def prepare_radius_bid(
        campaign_id: int,
        target_id: int,
        bid: RadiusTargetBid
    ) -> BulkCampaignRadiusTargetBid:
        return BulkCampaignRadiusTargetBid(campaign_id=campaign_id, target_id=target_id, bid=bid)

    @staticmethod
    def prepare_delete(record_type, campaign_id: int, target_id: int) -> BulkRecord:
        """
        Prepare a delete record for a target.

        Args:
            record_type: One of the target record classes
            campaign_id: Permanent campaign id
            target_id: Permanent target id
        """
        return record_type(campaign_id=campaign_id, target_id=target_id, status=Status.DELETED)

class BulkEntityBuilder:
    """High-level builder for campaign and target batches."""

    def __init__(self, keys: Optional[TemporaryKeyMap] = None):
        """Initialize builders."""
        self.keys = keys if keys is not None else TemporaryKeyMap()
        self.campaigns = CampaignBuilder()
        self.targets = TargetBuilder()
        self.validator = BatchValidator()

    def prepare_campaign_with_targets(
        self,
        campaign: Campaign,
        day_time_bids: Optional[List[DayTimeTargetBid]] = None,
        location_bids: Optional[Dict[str, List[LocationTargetBid]]] = None,
        intent_option: Optional[IntentOption] = None,
        radius_bids: Optional[List[RadiusTargetBid]] = None,
        campaign_key: Optional[int] = None,
        target_key: Optional[int] = None,
        client_id: Optional[str] = None
    ) -> Batch:
        """
        Prepare a new campaign together with its targets.

        The campaign and the target get temporary keys (``campaign_key`` and
        ``target_key`` when given, allocated otherwise) so the targets can
        point at the campaign before either exists.

        Returns:
            Batch with the campaign first and its targets after it
        """
        if campaign_key is None:
            campaign_key = self.keys.allocate("Campaign")
        else:
            self.keys.reserve(campaign_key, "Campaign")
        if target_key is None:
            target_key = self.keys.allocate("Target")
        else:
            self.keys.reserve(target_key, "Target")

        records: List[BulkRecord] = [
            self.campaigns.prepare_create(campaign.model_copy(update={"id": campaign_key}), client_id)
        ]
        if day_time_bids:
            records.append(self.targets.prepare_day_time_target(campaign_key, target_key, day_time_bids))
        if location_bids:
            records.append(self.targets.prepare_location_target(
                campaign_key, target_key, intent_option, **location_bids
            ))
        if radius_bids:
            records.append(self.targets.prepare_radius_target(campaign_key, target_key, radius_bids))

        return self.build_batch(records)

    def prepare_target_delete(self, campaign_id: int, target_id: int, include_campaign: bool = True) -> Batch:
        """
        Prepare deletion of a campaign target, and optionally the campaign itself.

        Deleting a target record removes the whole target set of that kind.
        """
        records: List[BulkRecord] = []
        if include_campaign:
            records.append(self.campaigns.prepare_delete(campaign_id))
        for record_type in (BulkCampaignDayTimeTarget, BulkCampaignLocationTarget, BulkCampaignRadiusTarget):
            records.append(self.targets.prepare_delete(record_type, campaign_id, target_id))
        return self.build_batch(records)

    def build_batch(self, records: List[BulkRecord]) -> Batch:
        """
        Validate record order and register temporary keys.

        Raises:
            BulkError: VALIDATION if the batch is empty or out of order
        """
        self.validator.validate_batch(records)
        self.keys.define_all(records)
        logger.debug(f"Prepared batch of {len(records)} records")
        return Batch(records)
