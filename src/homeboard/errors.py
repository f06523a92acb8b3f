"""Domain errors raised by services and mapped to HTTP responses by the web layer."""


class MarketplaceError(Exception):
    """Base class for expected, user-facing failures."""

    status_code = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ListingRuleError(MarketplaceError):
    """A listing payload broke a marketplace rule (e.g. broker fee set)."""


class FeatureLimitError(MarketplaceError):
    """Featuring a listing was refused by permission or capacity limits."""

    status_code = 409


class PermissionDeniedError(MarketplaceError):
    """The caller lacks the role required for the action."""

    status_code = 403


class NotFoundError(MarketplaceError):
    """The requested record does not exist or is not visible to the caller."""

    status_code = 404


class ImpersonationError(MarketplaceError):
    """An impersonation token is invalid, expired or ended."""

    status_code = 401


class EmailDeliveryError(MarketplaceError):
    """The email provider rejected or could not receive a message."""

    status_code = 502
