"""Pydantic models for profiles, listings, analytics and digests."""

from datetime import UTC, date, datetime
from enum import StrEnum
from typing import Any, Final, Self

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class UserRole(StrEnum):
    """Role a profile signs up with."""

    TENANT = "tenant"
    LANDLORD = "landlord"
    AGENT = "agent"


class ListingType(StrEnum):
    """Whether a listing is for rent or for sale."""

    RENTAL = "rental"
    SALE = "sale"


class SaleStatus(StrEnum):
    """Progress of a sale listing."""

    AVAILABLE = "available"
    PENDING = "pending"
    IN_CONTRACT = "in_contract"
    SOLD = "sold"


class PropertyType(StrEnum):
    """Building / unit type."""

    APARTMENT_BUILDING = "apartment_building"
    APARTMENT_HOUSE = "apartment_house"
    FULL_HOUSE = "full_house"
    DUPLEX = "duplex"
    BASEMENT = "basement"
    DETACHED_HOUSE = "detached_house"
    SEMI_ATTACHED_HOUSE = "semi_attached_house"
    FULLY_ATTACHED_TOWNHOUSE = "fully_attached_townhouse"
    CONDO = "condo"
    CO_OP = "co_op"


class ParkingType(StrEnum):
    """Parking availability."""

    YES = "yes"
    INCLUDED = "included"
    OPTIONAL = "optional"
    NO = "no"
    CARPORT = "carport"


PARKING_INCLUDED: Final = (ParkingType.YES, ParkingType.INCLUDED)


class HeatType(StrEnum):
    """Who pays for heat."""

    INCLUDED = "included"
    TENANT_PAYS = "tenant_pays"


class LeaseLength(StrEnum):
    """Lease term offered on a rental."""

    SHORT_TERM = "short_term"
    ONE_YEAR = "1_year"
    EIGHTEEN_MONTHS = "18_months"
    TWO_YEARS = "2_years"


class Profile(BaseModel):
    """A registered user."""

    model_config = ConfigDict(frozen=True)

    id: str
    full_name: str
    role: UserRole = UserRole.TENANT
    email: str | None = None
    phone: str | None = None
    agency: str | None = None
    is_admin: bool = False
    is_banned: bool = False
    can_feature_listings: bool = False
    max_featured_listings_per_user: int | None = Field(default=None, ge=0)
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class ListingImage(BaseModel):
    """An image (or video) attached to a listing."""

    model_config = ConfigDict(frozen=True)

    id: int
    listing_id: str
    image_url: str
    is_featured: bool = False
    sort_order: int = 0


def _capitalize_words(value: str) -> str:
    return " ".join(part[:1].upper() + part[1:].lower() for part in value.split())


class ListingCreate(BaseModel):
    """Payload for posting a new listing."""

    listing_type: ListingType = ListingType.RENTAL
    title: str = Field(min_length=1, max_length=200)
    description: str | None = None
    location: str = Field(min_length=1)
    neighborhood: str | None = None
    cross_streets: str | None = None
    bedrooms: int = Field(ge=0, le=20)
    additional_rooms: int = Field(default=0, ge=0)
    bathrooms: float = Field(ge=0, le=20)
    floor: int | None = None
    square_footage: int | None = Field(default=None, ge=0)
    price: int | None = Field(default=None, ge=0)
    call_for_price: bool = False
    asking_price: int | None = Field(default=None, ge=0)
    sale_status: SaleStatus | None = None
    property_type: PropertyType = PropertyType.APARTMENT_BUILDING
    parking: ParkingType = ParkingType.NO
    lease_length: LeaseLength | None = None
    heat: HeatType = HeatType.TENANT_PAYS
    broker_fee: bool = False
    contact_name: str = Field(min_length=1)
    contact_phone: str = Field(min_length=1)
    latitude: float | None = Field(default=None, ge=-90, le=90)
    longitude: float | None = Field(default=None, ge=-180, le=180)
    is_featured: bool = False
    is_active: bool = True
    approved: bool = False

    @field_validator("contact_name")
    @classmethod
    def capitalize_contact_name(cls, v: str) -> str:
        """Title-case each word of the contact name."""
        return _capitalize_words(v.strip())

    @model_validator(mode="after")
    def check_coordinates(self) -> Self:
        """Ensure both lat and lon are present or both are absent."""
        if (self.latitude is None) != (self.longitude is None):
            raise ValueError("Both latitude and longitude must be provided, or neither")
        return self

    @model_validator(mode="after")
    def default_sale_status(self) -> Self:
        """Sale listings start as available; rentals carry no sale status."""
        if self.listing_type == ListingType.SALE and self.sale_status is None:
            self.sale_status = SaleStatus.AVAILABLE
        elif self.listing_type == ListingType.RENTAL:
            self.sale_status = None
        return self


class ListingUpdate(BaseModel):
    """Partial update; only fields that were explicitly sent are applied."""

    title: str | None = Field(default=None, min_length=1, max_length=200)
    description: str | None = None
    location: str | None = None
    neighborhood: str | None = None
    cross_streets: str | None = None
    bedrooms: int | None = Field(default=None, ge=0, le=20)
    additional_rooms: int | None = Field(default=None, ge=0)
    bathrooms: float | None = Field(default=None, ge=0, le=20)
    floor: int | None = None
    square_footage: int | None = Field(default=None, ge=0)
    price: int | None = Field(default=None, ge=0)
    call_for_price: bool | None = None
    asking_price: int | None = Field(default=None, ge=0)
    property_type: PropertyType | None = None
    parking: ParkingType | None = None
    lease_length: LeaseLength | None = None
    heat: HeatType | None = None
    broker_fee: bool | None = None
    contact_name: str | None = None
    contact_phone: str | None = None
    latitude: float | None = Field(default=None, ge=-90, le=90)
    longitude: float | None = Field(default=None, ge=-180, le=180)
    is_featured: bool | None = None
    is_active: bool | None = None
    approved: bool | None = None

    @field_validator("contact_name")
    @classmethod
    def capitalize_contact_name(cls, v: str | None) -> str | None:
        """Title-case each word of the contact name."""
        if v is None:
            return None
        return _capitalize_words(v.strip())

    def changes(self) -> dict[str, Any]:
        """Fields explicitly present in the request body."""
        return self.model_dump(exclude_unset=True)


class Listing(BaseModel):
    """A stored listing."""

    model_config = ConfigDict(frozen=True)

    id: str
    user_id: str
    listing_type: ListingType = ListingType.RENTAL
    title: str
    description: str | None = None
    location: str
    neighborhood: str | None = None
    cross_streets: str | None = None
    bedrooms: int = Field(ge=0)
    additional_rooms: int = 0
    bathrooms: float = Field(ge=0)
    floor: int | None = None
    square_footage: int | None = None
    price: int | None = None
    call_for_price: bool = False
    asking_price: int | None = None
    sale_status: SaleStatus | None = None
    property_type: PropertyType = PropertyType.APARTMENT_BUILDING
    parking: ParkingType = ParkingType.NO
    lease_length: LeaseLength | None = None
    heat: HeatType = HeatType.TENANT_PAYS
    broker_fee: bool = False
    contact_name: str
    contact_phone: str
    latitude: float | None = None
    longitude: float | None = None
    is_featured: bool = False
    featured_started_at: datetime | None = None
    featured_expires_at: datetime | None = None
    is_active: bool = True
    approved: bool = False
    views: int = 0
    expires_at: datetime | None = None
    last_published_at: datetime | None = None
    deactivated_at: datetime | None = None
    approval_email_sent_at: datetime | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @property
    def effective_price(self) -> int | None:
        """Rent for rentals, asking price for sales."""
        if self.listing_type == ListingType.SALE:
            return self.asking_price
        return self.price

    def is_featured_active(self, now: datetime) -> bool:
        """Featured and still inside its featured window."""
        return (
            self.is_featured
            and self.featured_expires_at is not None
            and self.featured_expires_at > now
        )


class AdminSettings(BaseModel):
    """Singleton marketplace limits."""

    model_config = ConfigDict(frozen=True)

    max_featured_listings: int = Field(default=8, ge=0)
    max_featured_per_user: int = Field(default=0, ge=0)
    max_featured_boost_positions: int = Field(default=4, ge=0)
    updated_at: datetime | None = None


class ImpersonationSession(BaseModel):
    """An admin acting as another user for a bounded time."""

    model_config = ConfigDict(frozen=True)

    id: int
    admin_user_id: str
    impersonated_user_id: str
    session_token: str
    started_at: datetime
    expires_at: datetime
    ended_at: datetime | None = None
    ip_address: str | None = None
    user_agent: str | None = None

    def is_open(self, now: datetime) -> bool:
        """Not ended and not past its expiry."""
        return self.ended_at is None and self.expires_at > now


class AnalyticsEvent(BaseModel):
    """A raw client event as stored."""

    model_config = ConfigDict(frozen=True)

    session_id: str
    anon_id: str
    user_id: str | None = None
    event_name: str
    props: dict[str, Any] = Field(default_factory=dict)
    occurred_at: datetime
    ua: str | None = None
    ip_hash: str | None = None


class DailyAnalytics(BaseModel):
    """One day's rolled-up engagement figures."""

    model_config = ConfigDict(frozen=True)

    date: date
    dau: int = 0
    visitors: int = 0
    returners: int = 0
    avg_session_minutes: float = 0.0
    listing_views: int = 0
    post_starts: int = 0
    post_submits: int = 0
    post_success: int = 0
    post_abandoned: int = 0


class TopListing(BaseModel):
    """Per-listing views/impressions for a day or a window."""

    model_config = ConfigDict(frozen=True)

    listing_id: str
    views: int = 0
    impressions: int = 0
    ctr: float = 0.0
    rank: int = 0


class TopFilter(BaseModel):
    """How often a filter key/value pair was applied."""

    model_config = ConfigDict(frozen=True)

    filter_key: str
    filter_value: str
    uses: int = 0
    rank: int = 0


class DigestTemplateType(StrEnum):
    """How a digest template selects listings."""

    UNSENT_ONLY = "unsent_only"
    RECENT_BY_CATEGORY = "recent_by_category"
    ALL_ACTIVE = "all_active"


class DigestSort(StrEnum):
    """Listing order inside a digest."""

    NEWEST_FIRST = "newest_first"
    PRICE_ASC = "price_asc"
    PRICE_DESC = "price_desc"
    FEATURED_FIRST = "featured_first"


class DigestFilterConfig(BaseModel):
    """Listing filters applied when a template digest is built."""

    bedrooms: list[int] = Field(default_factory=list)
    price_min: int | None = Field(default=None, ge=0)
    price_max: int | None = Field(default=None, ge=0)
    locations: list[str] = Field(default_factory=list)
    property_types: list[PropertyType] = Field(default_factory=list)
    broker_fee: bool | None = None
    date_range_days: int | None = Field(default=None, ge=1)
    parking: list[ParkingType] = Field(default_factory=list)
    lease_length: list[LeaseLength] = Field(default_factory=list)


class DigestTemplateInput(BaseModel):
    """Fields an admin can set on a digest template."""

    name: str = Field(min_length=1, max_length=120)
    description: str | None = None
    template_type: DigestTemplateType = DigestTemplateType.UNSENT_ONLY
    filter_config: DigestFilterConfig = Field(default_factory=DigestFilterConfig)
    category_limits: dict[str, int] = Field(default_factory=dict)
    sort_preference: DigestSort = DigestSort.NEWEST_FIRST
    allow_resend: bool = False
    resend_after_days: int = Field(default=7, ge=0)
    ignore_send_history: bool = False
    subject_template: str = "Daily Listing Digest - {date}"
    is_default: bool = False

    @field_validator("category_limits")
    @classmethod
    def check_category_limits(cls, v: dict[str, int]) -> dict[str, int]:
        """Only known bedroom categories with non-negative limits."""
        valid = {"studio", "1bed", "2bed", "3bed", "4plus"}
        unknown = set(v) - valid
        if unknown:
            raise ValueError(f"Unknown categories: {', '.join(sorted(unknown))}")
        if any(limit < 0 for limit in v.values()):
            raise ValueError("Category limits must be >= 0")
        return v


class DigestTemplate(DigestTemplateInput):
    """A stored digest template."""

    model_config = ConfigDict(frozen=True)

    id: int
    usage_count: int = 0
    last_used_at: datetime | None = None
    created_at: datetime | None = None
