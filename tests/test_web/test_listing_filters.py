"""Tests for ListingFilter parsing."""

from homeboard.models import ListingType
from homeboard.web.filters import ListingFilter, parse_filters, parse_sort


class TestListingFilterValidation:
    """Coercion and graceful dropping of bad values."""

    def test_defaults(self) -> None:
        f = ListingFilter()
        assert f.listing_type == ListingType.RENTAL
        assert f.bedrooms == []
        assert f.min_price is None
        assert f.bounds is None
        assert f.parking_included is False

    def test_listing_type_fallback(self) -> None:
        assert ListingFilter(listing_type="SALE").listing_type == ListingType.SALE
        assert ListingFilter(listing_type="lease").listing_type == ListingType.RENTAL

    def test_bedrooms_comma_and_repeat(self) -> None:
        f = ListingFilter(bedrooms=["3,1", "1", "x", "99"])
        assert f.bedrooms == [1, 3]

    def test_prices(self) -> None:
        f = ListingFilter(min_price="1500", max_price="abc")
        assert f.min_price == 1500
        assert f.max_price is None
        assert ListingFilter(min_price="-5").min_price is None

    def test_inverted_price_range_drops_max(self) -> None:
        f = ListingFilter(min_price=3000, max_price=2000)
        assert f.min_price == 3000
        assert f.max_price is None

    def test_property_types_filtered(self) -> None:
        f = ListingFilter(property_types=["Condo,castle", "basement"])
        assert f.property_types == ["condo", "basement"]
        assert ListingFilter(property_type="castle").property_type is None

    def test_flags(self) -> None:
        f = ListingFilter(parking_included="true", no_fee_only="0", featured_only="on")
        assert f.parking_included is True
        assert f.no_fee_only is False
        assert f.featured_only is True

    def test_poster_and_agency(self) -> None:
        f = ListingFilter(poster_type=" Agent ", agency_name="  ")
        assert f.poster_type == "agent"
        assert f.agency_name is None
        assert ListingFilter(poster_type="broker").poster_type is None

    def test_min_bathrooms(self) -> None:
        assert ListingFilter(min_bathrooms="1.5").min_bathrooms == 1.5
        assert ListingFilter(min_bathrooms="-1").min_bathrooms is None


class TestParseFilters:
    def test_bounds_require_all_four(self) -> None:
        f = parse_filters(north="40.7", south="40.6", east="-73.9", west=None)
        assert f.bounds is None

    def test_bounds_parsed(self) -> None:
        f = parse_filters(north="40.7", south="40.6", east="-73.9", west="-74.0")
        assert f.bounds is not None
        assert f.bounds.north == 40.7

    def test_inverted_bounds_dropped(self) -> None:
        assert parse_filters(north="40.6", south="40.7", east="-73.9", west="-74.0").bounds is None


def test_parse_sort() -> None:
    assert parse_sort("PRICE_ASC") == "price_asc"
    assert parse_sort("cheapest") == "newest"
    assert parse_sort(None) == "newest"
