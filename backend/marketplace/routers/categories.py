from fastapi import APIRouter

from marketplace.models import Category
from marketplace.routers.common import raise_http_error
from marketplace.services.catalog_store import category_store
from marketplace.services.errors import MarketplaceError

router = APIRouter(prefix="/categories", tags=["categories"])


@router.get("", response_model=list[Category])
def list_categories():
    return category_store.list_categories()


@router.get("/{slug}", response_model=Category)
def get_category(slug: str):
    try:
        return category_store.get_category_by_slug(slug)
    except MarketplaceError as exc:
        raise_http_error(exc)
