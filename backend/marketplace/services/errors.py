class MarketplaceError(ValueError):
    """Base class for user-visible marketplace errors."""


class MarketplaceValidationError(MarketplaceError):
    pass


class MarketplaceNotFoundError(MarketplaceError):
    pass


class MarketplaceForbiddenError(MarketplaceError):
    pass


class MarketplaceConflictError(MarketplaceError):
    pass


class InvalidStateTransitionError(MarketplaceConflictError):
    """The booking's current status does not permit the requested transition."""
