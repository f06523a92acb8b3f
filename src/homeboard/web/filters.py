"""ListingFilter model and FastAPI dependency for browse query parsing."""

from __future__ import annotations

from typing import Annotated, Final, Self

from fastapi import Depends, Query
from pydantic import BaseModel, field_validator, model_validator

from homeboard.models import ListingType, PropertyType

# ---------------------------------------------------------------------------
# Valid option sets
# ---------------------------------------------------------------------------

VALID_SORT_OPTIONS: Final = {
    "newest",
    "oldest",
    "price_asc",
    "price_desc",
    "bedrooms_asc",
    "bedrooms_desc",
    "bathrooms_asc",
    "bathrooms_desc",
}
VALID_PROPERTY_TYPES: Final = {v.value for v in PropertyType}
VALID_POSTER_TYPES: Final = {"owner", "agent"}

MAX_BEDROOMS: Final = 20
MAX_PER_PAGE: Final = 100


def _parse_optional_int(value: str | None) -> int | None:
    """Parse a string to int, returning None for empty/whitespace/non-numeric values."""
    if value is None:
        return None
    value = value.strip()
    if not value:
        return None
    try:
        return int(value)
    except (ValueError, TypeError):
        return None


def _parse_optional_float(value: str | None) -> float | None:
    if value is None:
        return None
    value = value.strip()
    if not value:
        return None
    try:
        return float(value)
    except (ValueError, TypeError):
        return None


def _validate_enum_field(value: object, valid_set: set[str]) -> str | None:
    """Strip, lowercase, and validate against a set. Returns None if invalid."""
    if not value:
        return None
    cleaned = str(value).strip().lower()
    return cleaned if cleaned in valid_set else None


def _split_multi(values: object) -> list[str]:
    """Flatten repeated and comma-separated query values."""
    if not values:
        return []
    if isinstance(values, str):
        values = [values]
    if not isinstance(values, list):
        return []
    out: list[str] = []
    for raw in values:
        for part in str(raw).split(","):
            part = part.strip()
            if part and part not in out:
                out.append(part)
    return out


def parse_sort(value: str | None) -> str:
    """Return a known sort key, defaulting to newest."""
    cleaned = _validate_enum_field(value, VALID_SORT_OPTIONS)
    return cleaned or "newest"


# ---------------------------------------------------------------------------
# Filter models
# ---------------------------------------------------------------------------


class MapBounds(BaseModel):
    """Visible map rectangle in degrees."""

    north: float
    south: float
    east: float
    west: float

    @model_validator(mode="after")
    def check_order(self) -> Self:
        """North must not be below south, east must not be west of west."""
        if self.north < self.south or self.east < self.west:
            raise ValueError("Invalid map bounds")
        return self


class ListingFilter(BaseModel):
    """Validated browse filter parameters.

    All fields default to None/[]/False (no filter). Validators coerce
    strings to the correct type and silently discard invalid values.
    """

    listing_type: ListingType = ListingType.RENTAL
    bedrooms: list[int] = []
    min_bathrooms: float | None = None
    property_types: list[str] = []
    property_type: str | None = None
    min_price: int | None = None
    max_price: int | None = None
    parking_included: bool = False
    neighborhoods: list[str] = []
    no_fee_only: bool = False
    bounds: MapBounds | None = None
    featured_only: bool = False
    poster_type: str | None = None
    agency_name: str | None = None

    # --- validators ---

    @field_validator("listing_type", mode="before")
    @classmethod
    def coerce_listing_type(cls, v: object) -> str:
        cleaned = _validate_enum_field(v, {t.value for t in ListingType})
        return cleaned or ListingType.RENTAL.value

    @field_validator("bedrooms", mode="before")
    @classmethod
    def coerce_bedrooms(cls, v: object) -> list[int]:
        if isinstance(v, list) and all(isinstance(b, int) for b in v):
            candidates: list[int | None] = list(v)
        else:
            candidates = [_parse_optional_int(s) for s in _split_multi(v)]
        return sorted({b for b in candidates if b is not None and 0 <= b <= MAX_BEDROOMS})

    @field_validator("min_bathrooms", mode="before")
    @classmethod
    def coerce_min_bathrooms(cls, v: object) -> float | None:
        if v is None:
            return None
        parsed = float(v) if isinstance(v, int | float) else _parse_optional_float(str(v))
        if parsed is None or parsed < 0:
            return None
        return parsed

    @field_validator("property_types", mode="before")
    @classmethod
    def filter_property_types(cls, v: object) -> list[str]:
        return [t for t in (s.lower() for s in _split_multi(v)) if t in VALID_PROPERTY_TYPES]

    @field_validator("property_type", mode="before")
    @classmethod
    def validate_property_type(cls, v: object) -> str | None:
        return _validate_enum_field(v, VALID_PROPERTY_TYPES)

    @field_validator("min_price", "max_price", mode="before")
    @classmethod
    def coerce_price(cls, v: object) -> int | None:
        if v is None:
            return None
        parsed = v if isinstance(v, int) else _parse_optional_int(str(v))
        if parsed is None or parsed < 0:
            return None
        return parsed

    @field_validator("neighborhoods", mode="before")
    @classmethod
    def clean_neighborhoods(cls, v: object) -> list[str]:
        return _split_multi(v)

    @field_validator("parking_included", "no_fee_only", "featured_only", mode="before")
    @classmethod
    def coerce_flag(cls, v: object) -> bool:
        if isinstance(v, bool):
            return v
        if v is None:
            return False
        return str(v).strip().lower() in ("1", "true", "yes", "on")

    @field_validator("poster_type", mode="before")
    @classmethod
    def validate_poster_type(cls, v: object) -> str | None:
        return _validate_enum_field(v, VALID_POSTER_TYPES)

    @field_validator("agency_name", mode="before")
    @classmethod
    def clean_agency_name(cls, v: object) -> str | None:
        if v is None:
            return None
        s = str(v).strip()
        return s if s else None

    @model_validator(mode="after")
    def drop_inverted_price_range(self) -> Self:
        """An inverted price range is treated as no max price."""
        if (
            self.min_price is not None
            and self.max_price is not None
            and self.min_price > self.max_price
        ):
            self.max_price = None
        return self


# ---------------------------------------------------------------------------
# FastAPI dependency
# ---------------------------------------------------------------------------


def _parse_bounds(
    north: str | None, south: str | None, east: str | None, west: str | None
) -> MapBounds | None:
    values = [_parse_optional_float(x) for x in (north, south, east, west)]
    if any(v is None for v in values):
        return None
    n, s, e, w = values
    if n is None or s is None or e is None or w is None or n < s or e < w:
        return None
    return MapBounds(north=n, south=s, east=e, west=w)


def parse_filters(
    listing_type: str | None = None,
    bedrooms: list[str] = Query(default=[]),
    min_bathrooms: str | None = None,
    property_types: list[str] = Query(default=[]),
    property_type: str | None = None,
    min_price: str | None = None,
    max_price: str | None = None,
    parking_included: str | None = None,
    neighborhoods: list[str] = Query(default=[]),
    no_fee_only: str | None = None,
    north: str | None = None,
    south: str | None = None,
    east: str | None = None,
    west: str | None = None,
    featured_only: str | None = None,
    poster_type: str | None = None,
    agency_name: str | None = None,
) -> ListingFilter:
    """FastAPI dependency that parses query params into a ListingFilter."""
    return ListingFilter.model_validate(
        {
            "listing_type": listing_type,
            "bedrooms": bedrooms,
            "min_bathrooms": min_bathrooms,
            "property_types": property_types,
            "property_type": property_type,
            "min_price": min_price,
            "max_price": max_price,
            "parking_included": parking_included,
            "neighborhoods": neighborhoods,
            "no_fee_only": no_fee_only,
            "bounds": _parse_bounds(north, south, east, west),
            "featured_only": featured_only,
            "poster_type": poster_type,
            "agency_name": agency_name,
        }
    )


FilterDep = Annotated[ListingFilter, Depends(parse_filters)]
