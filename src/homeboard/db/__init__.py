"""Database storage for the marketplace."""

from homeboard.db.row_mappers import ListingCard, OwnerSummary
from homeboard.db.storage import MarketplaceStorage

__all__ = ["ListingCard", "MarketplaceStorage", "OwnerSummary"]
