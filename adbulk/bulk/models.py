"""
Bulk record models.

This module defines the records that make up a bulk upload: a campaign, the
day/time, location and radius targets attached to it, and bid sub-records used
to change a single bid of an existing target.

Identifiers follow the bulk convention: a negative integer is a temporary key
chosen by the caller to link records inside one upload, a positive integer is
a permanent id assigned by the service, and ``None`` means absent.
"""

from typing import Annotated, Iterator, List, Literal, Optional, Type, TypeVar, Union
from enum import Enum
from pydantic import BaseModel, ConfigDict, Field, model_validator

class Status(str, Enum):
    """Lifecycle status of a record."""
    ACTIVE = "Active"
    PAUSED = "Paused"
    DELETED = "Deleted"

class ResponseMode(str, Enum):
    """Controls what the service writes to the result file."""
    ERRORS_ONLY = "ErrorsOnly"
    ERRORS_AND_RESULTS = "ErrorsAndResults"

class Day(str, Enum):
    """Day of the week."""
    MONDAY = "Monday"
    TUESDAY = "Tuesday"
    WEDNESDAY = "Wednesday"
    THURSDAY = "Thursday"
    FRIDAY = "Friday"
    SATURDAY = "Saturday"
    SUNDAY = "Sunday"

class Minute(str, Enum):
    """Quarter-hour boundaries accepted by day/time targets."""
    ZERO = "Zero"
    FIFTEEN = "Fifteen"
    THIRTY = "Thirty"
    FORTY_FIVE = "FortyFive"

    @property
    def minutes(self) -> int:
        return {"Zero": 0, "Fifteen": 15, "Thirty": 30, "FortyFive": 45}[self.value]

class DistanceUnit(str, Enum):
    """Unit of a radius target."""
    MILES = "Miles"
    KILOMETERS = "Kilometers"

class IntentOption(str, Enum):
    """Which users a location target reaches."""
    PEOPLE_IN = "PeopleIn"
    PEOPLE_SEARCHING_FOR_OR_VIEWING_PAGES = "PeopleSearchingForOrViewingPages"
    PEOPLE_IN_OR_SEARCHING_FOR_OR_VIEWING_PAGES = "PeopleInOrSearchingForOrViewingPages"

class LocationType(str, Enum):
    """Kind of location a location bid points at."""
    CITY = "City"
    COUNTRY = "Country"
    METRO_AREA = "MetroArea"
    STATE = "State"
    POSTAL_CODE = "PostalCode"

class BudgetLimitType(str, Enum):
    """Campaign budget type."""
    MONTHLY_BUDGET_SPEND_UNTIL_DEPLETED = "MonthlyBudgetSpendUntilDepleted"
    DAILY_BUDGET_ACCELERATED = "DailyBudgetAccelerated"
    DAILY_BUDGET_STANDARD = "DailyBudgetStandard"

MIN_BID_ADJUSTMENT = -100
MAX_BID_ADJUSTMENT = 900

class OperationError(BaseModel):
    """Error attached by the service to a record or to the whole upload."""
    code: str = Field(..., description="Symbolic error code")
    message: str = Field(..., description="Human readable description")
    error_number: Optional[int] = Field(None, description="Numeric error code")
    field_path: Optional[str] = Field(None, description="Offending field, when known")

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"

class Campaign(BaseModel):
    """Campaign settings."""
    id: Optional[int] = None
    name: Optional[str] = None
    description: Optional[str] = None
    budget_type: Optional[BudgetLimitType] = None
    monthly_budget: Optional[float] = Field(None, ge=0)
    daily_budget: Optional[float] = Field(None, ge=0)
    time_zone: Optional[str] = None
    daylight_saving: Optional[bool] = None

class _Bid(BaseModel):
    bid_adjustment: int = Field(default=0, ge=MIN_BID_ADJUSTMENT, le=MAX_BID_ADJUSTMENT)

class DayTimeTargetBid(_Bid):
    """Bid adjustment for a window of one day."""
    day: Day
    from_hour: int = Field(..., ge=0, le=23)
    from_minute: Minute = Minute.ZERO
    to_hour: int = Field(..., ge=0, le=24)
    to_minute: Minute = Minute.ZERO

    @model_validator(mode="after")
    def validate_window(self):
        """The window must end after it starts."""
        start = self.from_hour * 60 + self.from_minute.minutes
        end = self.to_hour * 60 + self.to_minute.minutes
        if end <= start or end > 24 * 60:
            raise ValueError("Day/time bid must end after it starts and no later than 24:00")
        return self

class LocationTargetBid(_Bid):
    """Bid adjustment for one location.

    Bid adjustments are ignored by the service for exclusions.
    """
    location: str = Field(..., min_length=1, description="Location name or code, e.g. 'US-WA'")
    is_excluded: bool = False

class RadiusTargetBid(_Bid):
    """Bid adjustment for a circle around a point."""
    latitude_degrees: float = Field(..., ge=-90, le=90)
    longitude_degrees: float = Field(..., ge=-180, le=180)
    radius: int = Field(..., gt=0)
    radius_unit: DistanceUnit = DistanceUnit.MILES

class BulkRecord(BaseModel):
    """Common fields of every record in a bulk file."""
    model_config = ConfigDict(validate_assignment=True)

    client_id: Optional[str] = Field(
        None, description="Copied unchanged from the uploaded record to its result record"
    )
    status: Optional[Status] = None
    errors: List[OperationError] = Field(default_factory=list)

    @property
    def identifier(self) -> Optional[int]:
        """Id of the entity this record describes."""
        return None

    def defines(self) -> List[int]:
        """Temporary keys this record introduces for later records."""
        if self.identifier is not None and self.identifier < 0:
            return [self.identifier]
        return []

    def references(self) -> List[int]:
        """Ids of other entities this record points at."""
        return []

    @property
    def has_errors(self) -> bool:
        return bool(self.errors)

class BulkCampaign(BulkRecord):
    """A campaign row."""
    kind: Literal["Campaign"] = "Campaign"
    campaign: Campaign = Field(default_factory=Campaign)

    @property
    def identifier(self) -> Optional[int]:
        return self.campaign.id

class _CampaignTargetRecord(BulkRecord):
    campaign_id: Optional[int] = None
    target_id: Optional[int] = None

    @property
    def identifier(self) -> Optional[int]:
        return self.target_id

    def references(self) -> List[int]:
        return [self.campaign_id] if self.campaign_id is not None else []

class BulkCampaignDayTimeTarget(_CampaignTargetRecord):
    """Full day/time bid set of a campaign target. Uploading it replaces existing bids."""
    kind: Literal["CampaignDayTimeTarget"] = "CampaignDayTimeTarget"
    bids: List[DayTimeTargetBid] = Field(default_factory=list)

class BulkCampaignLocationTarget(_CampaignTargetRecord):
    """Full location bid set of a campaign target."""
    kind: Literal["CampaignLocationTarget"] = "CampaignLocationTarget"
    intent_option: Optional[IntentOption] = None
    city_bids: List[LocationTargetBid] = Field(default_factory=list)
    country_bids: List[LocationTargetBid] = Field(default_factory=list)
    metro_area_bids: List[LocationTargetBid] = Field(default_factory=list)
    state_bids: List[LocationTargetBid] = Field(default_factory=list)
    postal_code_bids: List[LocationTargetBid] = Field(default_factory=list)

    def all_bids(self) -> Iterator[tuple]:
        """Yield ``(LocationType, LocationTargetBid)`` pairs in a stable order."""
        groups = (
            (LocationType.CITY, self.city_bids),
            (LocationType.COUNTRY, self.country_bids),
            (LocationType.METRO_AREA, self.metro_area_bids),
            (LocationType.STATE, self.state_bids),
            (LocationType.POSTAL_CODE, self.postal_code_bids),
        )
        for location_type, bids in groups:
            for bid in bids:
                yield location_type, bid

class BulkCampaignRadiusTarget(_CampaignTargetRecord):
    """Full radius bid set of a campaign target."""
    kind: Literal["CampaignRadiusTarget"] = "CampaignRadiusTarget"
    bids: List[RadiusTargetBid] = Field(default_factory=list)

class _TargetBidRecord(_CampaignTargetRecord):
    # Bid rows change one bid of an existing target and never introduce a key.
    def defines(self) -> List[int]:
        return []

    def references(self) -> List[int]:
        return [i for i in (self.campaign_id, self.target_id) if i is not None]

class BulkCampaignDayTimeTargetBid(_TargetBidRecord):
    """A single day/time bid of an existing campaign target."""
    kind: Literal["CampaignDayTimeTargetBid"] = "CampaignDayTimeTargetBid"
    bid: DayTimeTargetBid

class BulkCampaignLocationTargetBid(_TargetBidRecord):
    """A single location bid of an existing campaign target."""
    kind: Literal["CampaignLocationTargetBid"] = "CampaignLocationTargetBid"
    location_type: LocationType
    intent_option: Optional[IntentOption] = None
    bid: LocationTargetBid

class BulkCampaignRadiusTargetBid(_TargetBidRecord):
    """A single radius bid of an existing campaign target."""
    kind: Literal["CampaignRadiusTargetBid"] = "CampaignRadiusTargetBid"
    bid: RadiusTargetBid

Record = Annotated[
    Union[
        BulkCampaign,
        BulkCampaignDayTimeTarget,
        BulkCampaignLocationTarget,
        BulkCampaignRadiusTarget,
        BulkCampaignDayTimeTargetBid,
        BulkCampaignLocationTargetBid,
        BulkCampaignRadiusTargetBid,
    ],
    Field(discriminator="kind"),
]

RECORD_TYPES = {
    cls.model_fields["kind"].default: cls
    for cls in (
        BulkCampaign,
        BulkCampaignDayTimeTarget,
        BulkCampaignLocationTarget,
        BulkCampaignRadiusTarget,
        BulkCampaignDayTimeTargetBid,
        BulkCampaignLocationTargetBid,
        BulkCampaignRadiusTargetBid,
    )
}

R = TypeVar("R", bound=BulkRecord)

def of_kind(records, record_type: Type[R]) -> List[R]:
    """Filter records down to one record type."""
    return [record for record in records if isinstance(record, record_type)]

class Batch:
    """Ordered records of one upload."""

    def __init__(self, records: Optional[List[BulkRecord]] = None):
        self.records: List[BulkRecord] = list(records or [])

    def add(self, record: BulkRecord) -> "Batch":
        self.records.append(record)
        return self

    def extend(self, records) -> "Batch":
        self.records.extend(records)
        return self

    def of_kind(self, record_type: Type[R]) -> List[R]:
        return of_kind(self.records, record_type)

    def __iter__(self):
        return iter(self.records)

    def __len__(self) -> int:
        return len(self.records)

    def __repr__(self) -> str:
        return f"Batch({len(self.records)} records)"
