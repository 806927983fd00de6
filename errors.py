"""Business errors raised by the catalog, cart and order modules.

Each class carries the HTTP status the API layer answers with.
"""

from typing import Any, List, Optional


class MarketplaceError(Exception):
    status_code = 500

    def __init__(self, message: str, errors: Optional[List[Any]] = None):
        super().__init__(message)
        self.message = message
        self.errors = errors


class ValidationError(MarketplaceError):
    """Malformed or missing input fields."""
    status_code = 400


class AuthenticationError(MarketplaceError):
    status_code = 401


class AuthorizationError(MarketplaceError):
    """Principal does not own the resource or lacks the role."""
    status_code = 403


class NotFoundError(MarketplaceError):
    status_code = 404


class UnavailableError(MarketplaceError):
    """Listing cannot be sold right now."""
    status_code = 400

    def __init__(self, message: str, listing_id: Optional[str] = None):
        super().__init__(message)
        self.listing_id = listing_id


class InsufficientStockError(UnavailableError):
    pass


class InvalidStateError(MarketplaceError):
    """Order status does not permit the requested transition."""
    status_code = 400
