from typing import NoReturn

from fastapi import HTTPException

from marketplace.services.errors import (
    MarketplaceConflictError,
    MarketplaceError,
    MarketplaceForbiddenError,
    MarketplaceNotFoundError,
)


def raise_http_error(exc: MarketplaceError) -> NoReturn:
    if isinstance(exc, MarketplaceNotFoundError):
        raise HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, MarketplaceForbiddenError):
        raise HTTPException(status_code=403, detail=str(exc))
    if isinstance(exc, MarketplaceConflictError):
        raise HTTPException(status_code=409, detail=str(exc))
    raise HTTPException(status_code=400, detail=str(exc))
