from typing import Optional

from fastapi import APIRouter, Header, Query

from marketplace.auth import assert_actor_authorized
from marketplace.models import MatchRequest, ProviderMatch, ProviderProfile, ProviderProfileRequest
from marketplace.routers.common import raise_http_error
from marketplace.services.errors import MarketplaceError
from marketplace.services.matching import matching_engine
from marketplace.services.provider_directory import provider_directory

router = APIRouter(prefix="/providers", tags=["providers"])


@router.post("/match", response_model=list[ProviderMatch])
def match_providers(payload: MatchRequest):
    try:
        return matching_engine.match_providers(
            category_id=payload.category_id,
            postal_code=payload.postal_code,
            city=payload.city,
            preferred_time=payload.preferred_time,
        )
    except MarketplaceError as exc:
        raise_http_error(exc)


@router.get("/profile", response_model=ProviderProfile)
def get_own_profile(
    user_id: str = Query(...),
    authorization: Optional[str] = Header(default=None),
):
    assert_actor_authorized(actor_user_id=user_id, authorization=authorization)
    try:
        return provider_directory.get_profile_for_user(user_id)
    except MarketplaceError as exc:
        raise_http_error(exc)


@router.put("/profile", response_model=ProviderProfile)
def save_profile(
    payload: ProviderProfileRequest,
    authorization: Optional[str] = Header(default=None),
):
    assert_actor_authorized(actor_user_id=payload.user_id, authorization=authorization)
    try:
        return provider_directory.save_profile(payload.user_id, payload)
    except MarketplaceError as exc:
        raise_http_error(exc)


@router.get("/{profile_id}", response_model=ProviderProfile)
def get_provider(profile_id: str):
    try:
        return provider_directory.get_profile(profile_id)
    except MarketplaceError as exc:
        raise_http_error(exc)
